"""Curves that remap a normalized intensity in [0, 1] onto [min, max]."""

from __future__ import annotations

import math
from typing import Any, Callable

INTERPOLATION_METHODS = ("linear", "exp", "log")
_METHOD_ALIASES = {"lin": "linear"}


class UnsupportedMethodError(ValueError):
    """Raised when an interpolation method name is not recognised."""

    def __init__(self, method: Any) -> None:
        self.method = method
        super().__init__(
            f"Unsupported interpolation method: {method!r} "
            f"(expected one of {', '.join(INTERPOLATION_METHODS)})"
        )


def normalize_method(method: Any) -> str:
    normalized = str(method or "").strip().lower()
    normalized = _METHOD_ALIASES.get(normalized, normalized)
    if normalized not in INTERPOLATION_METHODS:
        raise UnsupportedMethodError(method)
    return normalized


def make_curve(min_value: float, max_value: float, method: str) -> Callable[[float], float]:
    """Build ``f(x)`` mapping [0, 1] onto [min_value, max_value].

    linear -> straight line
    exp    -> compresses low values, expands high ones (hot spots stand out)
    log    -> expands low values, compresses high ones (faint density stands out)
    """
    kind = normalize_method(method)
    delta = max_value - min_value

    if kind == "linear":
        def fx(x: float) -> float:
            return delta * x
    elif kind == "exp":
        # No real logarithm for delta <= -1; the curve yields NaN and nothing is painted.
        rate = math.log(1.0 + delta) if delta > -1.0 else math.nan

        def fx(x: float) -> float:
            return math.exp(x * rate) - 1.0
    else:
        def fx(x: float) -> float:
            return delta * math.log2(x + 1.0)

    def curve(x: float) -> float:
        return min_value + fx(x)

    return curve
