"""Solr facet.heatmap acquisition via httpx.

Issues a ``rows=0`` faceting query for the clamped viewport bounds and turns
the ``ints2D`` heatmap facet into a :class:`Grid`.

Usage
-----
    async with SolrHeatmapClient("http://localhost:8983/solr/places") as client:
        grid = await client.fetch_grid(BBox(-125.0, 24.0, -66.5, 50.0))
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any

import httpx

from .grid import Grid, GridShapeError
from .viewport import BBox

logger = logging.getLogger(__name__)

HEATMAP_FORMAT = "ints2D"
_GRID_KEYS = ("minX", "maxX", "minY", "maxY", "rows", "columns")


class FetchFailure(RuntimeError):
    """Raised when the heatmap service does not return a usable grid."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _format_coord(value: float) -> str:
    return f"{value:.15g}"


def heatmap_geom(bbox: BBox) -> str:
    clamped = bbox.clamped()
    return (
        f"[{_format_coord(clamped.west)} {_format_coord(clamped.south)} TO "
        f"{_format_coord(clamped.east)} {_format_coord(clamped.north)}]"
    )


def parse_facet_heatmap(values: Any) -> dict[str, Any]:
    """Turn Solr's flat ``[key, value, key, value, ...]`` facet list into a dict."""
    if isinstance(values, Mapping):
        return dict(values)
    if isinstance(values, (str, bytes)) or not isinstance(values, Sequence):
        raise FetchFailure(f"Unexpected heatmap facet payload type: {type(values).__name__}")
    return {str(values[i]): values[i + 1] for i in range(0, len(values) - 1, 2)}


def grid_from_facet(facet: Mapping[str, Any]) -> Grid:
    missing = [key for key in _GRID_KEYS if key not in facet]
    if missing:
        raise FetchFailure(f"Heatmap facet missing keys: {', '.join(missing)}")
    try:
        return Grid.from_rows(
            min_x=facet["minX"],
            min_y=facet["minY"],
            max_x=facet["maxX"],
            max_y=facet["maxY"],
            rows=facet["rows"],
            columns=facet["columns"],
            cells=facet.get("counts_ints2D"),
        )
    except (GridShapeError, TypeError, ValueError) as exc:
        raise FetchFailure(f"Malformed heatmap grid: {exc}") from exc


class SolrHeatmapClient:
    def __init__(
        self,
        base_url: str,
        *,
        field: str = "geo",
        query: Mapping[str, str] | Iterable[tuple[str, str]] | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.field = field
        if query is None:
            query = {"q": "*:*"}
        items = query.items() if isinstance(query, Mapping) else query
        # Ordered pairs; repeated keys (several fq filters) are kept.
        self.query = [(str(key), str(value)) for key, value in items]
        self._client = client if client is not None else httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def __aenter__(self) -> SolrHeatmapClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def build_params(self, bbox: BBox) -> list[tuple[str, str]]:
        params = list(self.query)
        params.extend(
            [
                ("rows", "0"),
                ("facet", "true"),
                ("facet.heatmap", self.field),
                ("facet.heatmap.geom", heatmap_geom(bbox)),
                ("facet.heatmap.format", HEATMAP_FORMAT),
                ("wt", "json"),
            ]
        )
        return params

    async def fetch_grid(self, bbox: BBox) -> Grid:
        url = f"{self.base_url}/select"
        params = self.build_params(bbox)
        try:
            response = await self._client.get(url, params=params)
        except httpx.HTTPError as exc:
            raise FetchFailure(f"Heatmap request to {url} failed: {exc}") from exc

        if response.status_code != 200:
            raise FetchFailure(
                f"Heatmap call failed with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
            values = payload["facet_counts"]["facet_heatmaps"][self.field]
        except (ValueError, KeyError, TypeError) as exc:
            raise FetchFailure(f"Heatmap response missing facet for field {self.field!r}") from exc

        grid = grid_from_facet(parse_facet_heatmap(values))
        logger.info(
            "Fetched heatmap field=%s geom=%s rows=%d columns=%d",
            self.field,
            heatmap_geom(bbox),
            grid.rows,
            grid.columns,
        )
        return grid
