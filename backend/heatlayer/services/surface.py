"""Drawing surfaces the cell renderer paints onto."""

from __future__ import annotations

import io
from typing import Protocol

from PIL import Image, ImageDraw, ImageFilter

from .color import RGB


class DrawingSurface(Protocol):
    def clear(self) -> None: ...

    def fill_rect(self, x: float, y: float, width: float, height: float, color: RGB) -> None: ...

    def stroke_rect(self, x: float, y: float, width: float, height: float, color: RGB) -> None: ...

    def set_blur(self, radius_px: float) -> None: ...


def _corners(x: float, y: float, width: float, height: float) -> list[float]:
    # Projected cells can come back with negative extents (north-up screen y).
    x0, x1 = sorted((x, x + width))
    y0, y1 = sorted((y, y + height))
    return [x0, y0, x1, y1]


class ImageSurface:
    """Transparent RGBA canvas backed by Pillow.

    The blur works like a display filter: painted pixels stay crisp and the
    Gaussian blur is applied whenever a snapshot is taken.
    """

    def __init__(self, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Surface size must be positive, got {width}x{height}")
        self.width = int(width)
        self.height = int(height)
        self.blur_radius_px = 0.0
        self._image = Image.new("RGBA", (self.width, self.height), (0, 0, 0, 0))
        self._draw = ImageDraw.Draw(self._image, "RGBA")

    def clear(self) -> None:
        self._image.paste((0, 0, 0, 0), (0, 0, self.width, self.height))

    def fill_rect(self, x: float, y: float, width: float, height: float, color: RGB) -> None:
        self._draw.rectangle(_corners(x, y, width, height), fill=color.as_tuple())

    def stroke_rect(self, x: float, y: float, width: float, height: float, color: RGB) -> None:
        self._draw.rectangle(_corners(x, y, width, height), outline=color.as_tuple(), width=1)

    def set_blur(self, radius_px: float) -> None:
        self.blur_radius_px = max(0.0, float(radius_px))

    def snapshot(self) -> Image.Image:
        image = self._image.copy()
        if self.blur_radius_px > 0:
            image = image.filter(ImageFilter.GaussianBlur(radius=self.blur_radius_px))
        return image

    def to_png(self) -> bytes:
        buf = io.BytesIO()
        self.snapshot().save(buf, format="PNG")
        return buf.getvalue()
