from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from ..services.color import ColorRamp
from ..services.interpolation import normalize_method

logger = logging.getLogger(__name__)

ENV_SOLR_URL = "HEATLAYER_SOLR_URL"
ENV_FIELD = "HEATLAYER_FIELD"
ENV_BLUR_PX = "HEATLAYER_BLUR_PX"
ENV_OPACITY = "HEATLAYER_OPACITY"
ENV_COLORS = "HEATLAYER_COLORS"
ENV_INTERP = "HEATLAYER_INTERP"
ENV_DEBOUNCE_MS = "HEATLAYER_DEBOUNCE_MS"
ENV_FETCH_TIMEOUT_SECONDS = "HEATLAYER_FETCH_TIMEOUT_SECONDS"

DEFAULT_SOLR_URL = "http://localhost:8983/solr/collection1"
DEFAULT_FIELD = "geo"
DEFAULT_QUERY: tuple[tuple[str, str], ...] = (("q", "*:*"),)
DEFAULT_BLUR_PX = 10.0
DEFAULT_OPACITY = 0.5
DEFAULT_COLORS = ("00ff00", "ff0000")
DEFAULT_INTERP = "linear"
DEFAULT_DEBOUNCE_MS = 200
DEFAULT_FETCH_TIMEOUT_SECONDS = 10.0


class SettingsError(ValueError):
    """Raised when layer options are out of range."""


@dataclass(frozen=True)
class HeatmapOptions:
    blur_radius_px: float = DEFAULT_BLUR_PX
    opacity: float = DEFAULT_OPACITY
    colors: tuple[str, str] = DEFAULT_COLORS
    interpolation_method: str = DEFAULT_INTERP
    heatmap_field: str = DEFAULT_FIELD
    query: tuple[tuple[str, str], ...] = DEFAULT_QUERY
    ramp: ColorRamp = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not 0.0 <= float(self.opacity) <= 1.0:
            raise SettingsError(f"opacity must be within [0, 1], got {self.opacity!r}")
        if float(self.blur_radius_px) < 0.0:
            raise SettingsError(f"blur_radius_px must be >= 0, got {self.blur_radius_px!r}")
        if len(self.colors) != 2:
            raise SettingsError(f"colors must be a (start, end) pair, got {self.colors!r}")
        # Fail fast on bad colors/methods instead of mid-render.
        object.__setattr__(self, "colors", (str(self.colors[0]), str(self.colors[1])))
        object.__setattr__(self, "query", _query_pairs(self.query))
        object.__setattr__(self, "ramp", ColorRamp.from_hex(*self.colors))
        object.__setattr__(self, "interpolation_method", normalize_method(self.interpolation_method))


QueryInput = Union[Mapping[str, str], Iterable[tuple[str, str]]]


def _query_pairs(query: QueryInput) -> tuple[tuple[str, str], ...]:
    items = query.items() if isinstance(query, Mapping) else query
    return tuple((str(key), str(value)) for key, value in items)


def _str_from_env(env_name: str, fallback: str) -> str:
    raw = os.getenv(env_name, "").strip()
    return raw or fallback


def _int_from_env(env_name: str, fallback: int, *, min_value: int) -> int:
    raw = os.getenv(env_name, "").strip()
    if not raw:
        return fallback
    try:
        parsed = int(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; using fallback=%d", env_name, raw, fallback)
        return fallback
    return parsed if parsed >= min_value else fallback


def _float_from_env(env_name: str, fallback: float, *, min_value: float, max_value: float | None = None) -> float:
    raw = os.getenv(env_name, "").strip()
    if not raw:
        return fallback
    try:
        parsed = float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; using fallback=%s", env_name, raw, fallback)
        return fallback
    if parsed < min_value or (max_value is not None and parsed > max_value):
        logger.warning("Out of range %s=%r; using fallback=%s", env_name, raw, fallback)
        return fallback
    return parsed


def _colors_from_env(env_name: str, fallback: tuple[str, str]) -> tuple[str, str]:
    raw = os.getenv(env_name, "").strip()
    if not raw:
        return fallback
    parts = [item.strip() for item in raw.split(",") if item.strip()]
    if len(parts) != 2:
        logger.warning("Invalid %s=%r (expected 'start,end'); using fallback=%s", env_name, raw, fallback)
        return fallback
    return parts[0], parts[1]


def solr_url() -> str:
    return _str_from_env(ENV_SOLR_URL, DEFAULT_SOLR_URL).rstrip("/")


def debounce_seconds() -> float:
    return _int_from_env(ENV_DEBOUNCE_MS, DEFAULT_DEBOUNCE_MS, min_value=0) / 1000.0


def fetch_timeout_seconds() -> float:
    return _float_from_env(ENV_FETCH_TIMEOUT_SECONDS, DEFAULT_FETCH_TIMEOUT_SECONDS, min_value=0.1)


def options_from_env(**overrides: Any) -> HeatmapOptions:
    """Layer options from ``HEATLAYER_*`` env vars; keyword overrides win."""
    values: dict[str, Any] = {
        "blur_radius_px": _float_from_env(ENV_BLUR_PX, DEFAULT_BLUR_PX, min_value=0.0),
        "opacity": _float_from_env(ENV_OPACITY, DEFAULT_OPACITY, min_value=0.0, max_value=1.0),
        "colors": _colors_from_env(ENV_COLORS, DEFAULT_COLORS),
        "interpolation_method": _str_from_env(ENV_INTERP, DEFAULT_INTERP),
        "heatmap_field": _str_from_env(ENV_FIELD, DEFAULT_FIELD),
    }
    values.update({key: value for key, value in overrides.items() if value is not None})
    return HeatmapOptions(**values)
