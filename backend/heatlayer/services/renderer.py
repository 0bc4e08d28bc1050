"""Cell renderer: density grid -> one filled rectangle per non-empty cell.

Intensity for a cell is ``curve(value / stats.max)`` where ``curve`` is the
configured 0..1 interpolation curve.  Cells with intensity <= 0 (including
undefined intensity when ``stats.max`` is 0) are left transparent.  The
resulting intensity picks a color along the ramp in HSL space, and the layer
opacity is composited onto the ramp color's own alpha.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from .color import RGB, ColorRamp
from .grid import Grid, GridStats, compute_stats
from .interpolation import make_curve
from .surface import DrawingSurface

if TYPE_CHECKING:
    from ..config.settings import HeatmapOptions

logger = logging.getLogger(__name__)

Projector = Callable[[float, float], tuple[float, float]]

GRID_OUTLINE_COLOR = RGB(0, 255, 0)


def render_cells(
    grid: Grid,
    stats: GridStats,
    *,
    ramp: ColorRamp,
    method: str,
    opacity: float,
    project: Projector,
    surface: DrawingSurface,
) -> int:
    """Paint every cell with positive intensity; returns the painted cell count."""
    if not stats.has_data:
        return 0

    norm_curve = make_curve(0.0, 1.0, method)
    if stats.max == 0:
        # value / max is undefined for every cell
        return 0
    dx, dy = grid.cell_size()

    painted = 0
    for i, row in enumerate(grid.cells):
        if row is None:
            continue
        y = grid.max_y - i * dy
        for j, value in enumerate(row):
            ratio = value / stats.max
            # Every curve on [0, 1] is positive exactly where its input is.
            if not ratio > 0:
                continue
            t = norm_curve(ratio)
            if not t > 0:
                continue

            x = grid.min_x + j * dx
            color = ramp.color_at(t).opacify(opacity)
            x1, y1 = project(x, y)
            x2, y2 = project(x + dx, y - dy)
            surface.fill_rect(x1, y1, x2 - x1, y2 - y1, color)
            painted += 1

    return painted


def render_heatmap(
    grid: Grid,
    options: HeatmapOptions,
    *,
    project: Projector,
    surface: DrawingSurface,
) -> int:
    """Stats, cells, then the surface blur pass."""
    stats = compute_stats(grid)
    if not stats.has_data:
        logger.info("Heatmap grid %dx%d has no data; nothing painted", grid.rows, grid.columns)
        return 0

    painted = render_cells(
        grid,
        stats,
        ramp=options.ramp,
        method=options.interpolation_method,
        opacity=options.opacity,
        project=project,
        surface=surface,
    )
    surface.set_blur(options.blur_radius_px)
    logger.info(
        "Painted %d/%d heatmap cells (min=%s max=%s method=%s)",
        painted,
        grid.rows * grid.columns,
        stats.min,
        stats.max,
        options.interpolation_method,
    )
    return painted


def render_grid_outline(grid: Grid, *, project: Projector, surface: DrawingSurface) -> None:
    """Stroke the grid's bounding box; a debugging aid for alignment issues."""
    ul_x, ul_y = project(grid.min_x, grid.max_y)
    lr_x, lr_y = project(grid.max_x, grid.min_y)
    surface.stroke_rect(ul_x, ul_y, lr_x - ul_x, lr_y - ul_y, GRID_OUTLINE_COLOR)
