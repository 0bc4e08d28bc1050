"""Heatlayer API: server-side heatmap snapshots over a Solr facet.heatmap field."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Query, Response
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .services.color import ParseError
from .services.grid import Grid, compute_stats
from .services.interpolation import UnsupportedMethodError
from .services.renderer import render_heatmap
from .services.solr_fetch import FetchFailure, SolrHeatmapClient
from .services.surface import ImageSurface
from .services.viewport import BBox, MercatorViewport

logger = logging.getLogger(__name__)

SOLR_URL = settings.solr_url()
FETCH_TIMEOUT_SECONDS = settings.fetch_timeout_seconds()
MAX_IMAGE_DIM = 4096

CACHE_MISS = "public, max-age=15"

app = FastAPI(title="Heatlayer API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET"],
    allow_headers=["*"],
)


def get_solr_client(heatmap_field: str, query: tuple[tuple[str, str], ...]) -> SolrHeatmapClient:
    return SolrHeatmapClient(
        SOLR_URL,
        field=heatmap_field,
        query=query,
        timeout=FETCH_TIMEOUT_SECONDS,
    )


def _bbox_or_400(west: float, south: float, east: float, north: float) -> BBox:
    bbox = BBox.from_values((west, south, east, north)).clamped()
    if bbox.west >= bbox.east or bbox.south >= bbox.north:
        raise HTTPException(status_code=400, detail=f"Empty bounding box: {bbox}")
    return bbox


def _options_or_400(**overrides: Any) -> settings.HeatmapOptions:
    try:
        return settings.options_from_env(**overrides)
    except (UnsupportedMethodError, ParseError, settings.SettingsError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


async def _fetch(options: settings.HeatmapOptions, bbox: BBox) -> Grid:
    async with get_solr_client(options.heatmap_field, options.query) as client:
        try:
            return await client.fetch_grid(bbox)
        except FetchFailure as exc:
            logger.warning("Heatmap fetch failed for bbox=%s: %s", bbox, exc)
            raise HTTPException(status_code=502, detail=str(exc)) from exc


@app.get("/api/v1/health")
def health():
    return {"ok": True, "solr_url": SOLR_URL}


@app.get("/api/v1/heatmap.png")
async def heatmap_png(
    west: float = Query(..., ge=-180, le=180, description="West longitude (WGS84)"),
    south: float = Query(..., ge=-90, le=90, description="South latitude (WGS84)"),
    east: float = Query(..., ge=-180, le=180, description="East longitude (WGS84)"),
    north: float = Query(..., ge=-90, le=90, description="North latitude (WGS84)"),
    width: int = Query(512, ge=1, le=MAX_IMAGE_DIM, description="Image width in px"),
    height: int = Query(512, ge=1, le=MAX_IMAGE_DIM, description="Image height in px"),
    interp: str | None = Query(None, description="Interpolation method (linear, exp, log)"),
    opacity: float | None = Query(None, ge=0, le=1, description="Layer opacity"),
    blur: float | None = Query(None, ge=0, description="Blur radius in px"),
):
    bbox = _bbox_or_400(west, south, east, north)
    options = _options_or_400(interpolation_method=interp, opacity=opacity, blur_radius_px=blur)
    try:
        viewport = MercatorViewport(bbox, width, height)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    grid = await _fetch(options, bbox)
    surface = ImageSurface(width, height)
    painted = render_heatmap(grid, options, project=viewport.project, surface=surface)

    return Response(
        content=surface.to_png(),
        media_type="image/png",
        headers={
            "Cache-Control": CACHE_MISS,
            "X-Heatmap-Cells": str(painted),
        },
    )


@app.get("/api/v1/heatmap/stats")
async def heatmap_stats(
    west: float = Query(..., ge=-180, le=180),
    south: float = Query(..., ge=-90, le=90),
    east: float = Query(..., ge=-180, le=180),
    north: float = Query(..., ge=-90, le=90),
):
    bbox = _bbox_or_400(west, south, east, north)
    options = _options_or_400()
    grid = await _fetch(options, bbox)
    stats = compute_stats(grid)
    return {
        "bbox": [grid.min_x, grid.min_y, grid.max_x, grid.max_y],
        "rows": grid.rows,
        "columns": grid.columns,
        "min": stats.min if stats.has_data else None,
        "max": stats.max if stats.has_data else None,
    }
