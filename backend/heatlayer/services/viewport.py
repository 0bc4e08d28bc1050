"""Bounding boxes and the map projection used to place grid cells on screen."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from pyproj import Transformer

MAX_MERCATOR_LAT = 85.05112878

_wgs84_to_3857 = Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)


@dataclass(frozen=True)
class BBox:
    west: float
    south: float
    east: float
    north: float

    @classmethod
    def from_values(cls, values: Sequence[float]) -> BBox:
        if len(values) != 4:
            raise ValueError(f"bbox needs 4 values (west, south, east, north), got {len(values)}")
        west, south, east, north = (float(v) for v in values)
        return cls(west=west, south=south, east=east, north=north)

    def clamped(self) -> BBox:
        """Limit to valid lon/lat ranges before building a facet query."""
        return BBox(
            west=max(-180.0, self.west),
            south=max(-90.0, self.south),
            east=min(180.0, self.east),
            north=min(90.0, self.north),
        )


class Viewport(Protocol):
    def get_bounds(self) -> BBox: ...

    def project(self, lng: float, lat: float) -> tuple[float, float]: ...


def _to_mercator(lng: float, lat: float) -> tuple[float, float]:
    lat = max(min(lat, MAX_MERCATOR_LAT), -MAX_MERCATOR_LAT)
    return _wgs84_to_3857.transform(lng, lat)


class MercatorViewport:
    """Fixed-size Web Mercator view onto ``bounds``, projecting to container pixels."""

    def __init__(self, bounds: BBox, width: int, height: int) -> None:
        if width <= 0 or height <= 0:
            raise ValueError(f"Viewport size must be positive, got {width}x{height}")
        self.bounds = bounds
        self.width = int(width)
        self.height = int(height)

        self._origin_x, self._origin_y = _to_mercator(bounds.west, bounds.north)
        east_x, south_y = _to_mercator(bounds.east, bounds.south)
        span_x = east_x - self._origin_x
        span_y = self._origin_y - south_y
        if span_x <= 0 or span_y <= 0:
            raise ValueError(f"Degenerate viewport bounds: {bounds!r}")
        self._scale_x = self.width / span_x
        self._scale_y = self.height / span_y

    def get_bounds(self) -> BBox:
        return self.bounds

    def project(self, lng: float, lat: float) -> tuple[float, float]:
        mx, my = _to_mercator(lng, lat)
        return (mx - self._origin_x) * self._scale_x, (self._origin_y - my) * self._scale_y
