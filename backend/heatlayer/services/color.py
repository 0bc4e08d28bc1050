"""RGB/HSL color model used to shade heatmap cells.

Colors are immutable value objects.  Blending between two ramp colors is done
in HSL space so that a green -> red ramp passes through yellow instead of the
muddy brown a per-channel RGB average produces.
"""

from __future__ import annotations

import math
import numbers
import re
from dataclasses import dataclass

HEX_RE = re.compile(
    r"#?([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})([a-f\d]{2})?",
    re.IGNORECASE,
)


class ParseError(ValueError):
    """Raised when a color string does not match the 6/8 digit hex pattern."""


def to_hex(component: int) -> str:
    return f"{int(component):02x}"


def _round_channel(value: float) -> int:
    # Half-up rounding; round() would send 127.5 and 2.5 to the even neighbour.
    return min(255, max(0, int(math.floor(value * 255.0 + 0.5))))


def _format_alpha(a: float) -> str:
    if float(a).is_integer():
        return str(int(a))
    return f"{a:.6g}"


@dataclass(frozen=True)
class RGB:
    r: int
    g: int
    b: int
    a: float = 1.0

    def __post_init__(self) -> None:
        for name in ("r", "g", "b"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, numbers.Integral):
                raise ValueError(f"RGB channel {name}={value!r} must be an integer")
            if not 0 <= value <= 255:
                raise ValueError(f"RGB channel {name}={value!r} outside [0, 255]")

    @classmethod
    def from_hex(cls, hex_color: str) -> RGB:
        """Parse ``RRGGBB`` or ``RRGGBBAA`` (leading ``#`` optional)."""
        match = HEX_RE.fullmatch(hex_color) if isinstance(hex_color, str) else None
        if match is None:
            raise ParseError(f"Invalid hex color: {hex_color!r}")
        r, g, b, a = match.groups()
        alpha = int(a, 16) / 255.0 if a is not None else 1.0
        return cls(int(r, 16), int(g, 16), int(b, 16), alpha)

    def hex(self) -> str:
        return f"#{to_hex(self.r)}{to_hex(self.g)}{to_hex(self.b)}"

    def rgba(self) -> str:
        return f"rgba({self.r},{self.g},{self.b},{_format_alpha(self.a)})"

    def as_tuple(self) -> tuple[int, int, int, int]:
        """Return ``(r, g, b, alpha)`` with alpha scaled to a byte."""
        return self.r, self.g, self.b, _round_channel(self.a)

    def opacity(self, a: float) -> RGB:
        return RGB(self.r, self.g, self.b, a)

    def opacify(self, a: float) -> RGB:
        return RGB(self.r, self.g, self.b, self.a * a)

    def hsl(self) -> HSL:
        r = self.r / 255.0
        g = self.g / 255.0
        b = self.b / 255.0

        hi = max(r, g, b)
        lo = min(r, g, b)
        lightness = (hi + lo) / 2.0

        if hi == lo:
            return HSL(0.0, 0.0, lightness)

        d = hi - lo
        saturation = d / (2.0 - hi - lo) if lightness > 0.5 else d / (hi + lo)
        if hi == r:
            hue = (g - b) / d + (6.0 if g < b else 0.0)
        elif hi == g:
            hue = (b - r) / d + 2.0
        else:
            hue = (r - g) / d + 4.0
        return HSL(hue / 6.0, saturation, lightness)

    def interpolate(self, other: RGB, val: float) -> RGB:
        """Blend toward ``other`` at position ``val`` in [0, 1] through HSL."""
        start = self.hsl()
        end = other.hsl()
        blended = HSL(
            start.h + val * (end.h - start.h),
            start.s + val * (end.s - start.s),
            start.l + val * (end.l - start.l),
        )
        alpha = self.a + val * (other.a - self.a)
        return blended.rgb().opacity(alpha)


def _hue_to_rgb(p: float, q: float, t: float) -> float:
    if t < 0:
        t += 1.0
    if t > 1:
        t -= 1.0
    if t < 1.0 / 6.0:
        return p + (q - p) * 6.0 * t
    if t < 1.0 / 2.0:
        return q
    if t < 2.0 / 3.0:
        return p + (q - p) * (2.0 / 3.0 - t) * 6.0
    return p


@dataclass(frozen=True)
class HSL:
    h: float
    s: float
    l: float  # noqa: E741

    def rgb(self) -> RGB:
        if self.s == 0:
            # achromatic
            r = g = b = self.l
        else:
            q = self.l * (1.0 + self.s) if self.l < 0.5 else self.l + self.s - self.l * self.s
            p = 2.0 * self.l - q
            r = _hue_to_rgb(p, q, self.h + 1.0 / 3.0)
            g = _hue_to_rgb(p, q, self.h)
            b = _hue_to_rgb(p, q, self.h - 1.0 / 3.0)
        return RGB(_round_channel(r), _round_channel(g), _round_channel(b))


@dataclass(frozen=True)
class ColorRamp:
    """Two-color gradient indexed by position in [0, 1]."""

    start: RGB
    end: RGB

    @classmethod
    def from_hex(cls, start_hex: str, end_hex: str) -> ColorRamp:
        return cls(RGB.from_hex(start_hex), RGB.from_hex(end_hex))

    def color_at(self, t: float) -> RGB:
        return self.start.interpolate(self.end, t)
