"""Sparse density grid returned by the heatmap facet, plus min/max statistics.

A grid covers a lon/lat bounding box split into ``rows`` x ``columns`` cells.
Row 0 is the northernmost band.  Whole rows may be absent (``None``) when the
server has no data for that latitude band; a missing value inside a present
row is stored as NaN.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np


class GridShapeError(ValueError):
    """Raised when rows/columns disagree with the cell data."""


@dataclass(frozen=True)
class GridStats:
    min: float
    max: float

    @property
    def has_data(self) -> bool:
        return self.min <= self.max


NO_DATA = GridStats(min=math.inf, max=-math.inf)


def _row_to_array(row: Sequence[Any], columns: int, index: int) -> np.ndarray:
    values = np.array(
        [np.nan if value is None else float(value) for value in row],
        dtype=np.float64,
    )
    if values.shape != (columns,):
        raise GridShapeError(f"Row {index} has {values.size} values, expected columns={columns}")
    return values


@dataclass(frozen=True, eq=False)
class Grid:
    min_x: float
    min_y: float
    max_x: float
    max_y: float
    rows: int
    columns: int
    cells: tuple[Optional[np.ndarray], ...]

    def __post_init__(self) -> None:
        if self.rows < 0 or self.columns < 0:
            raise GridShapeError(f"Negative grid shape rows={self.rows} columns={self.columns}")
        if len(self.cells) != self.rows:
            raise GridShapeError(f"Grid has {len(self.cells)} rows of data, expected rows={self.rows}")
        for index, row in enumerate(self.cells):
            if row is not None and row.shape != (self.columns,):
                raise GridShapeError(
                    f"Row {index} has shape {row.shape}, expected ({self.columns},)"
                )

    @classmethod
    def from_rows(
        cls,
        *,
        min_x: float,
        min_y: float,
        max_x: float,
        max_y: float,
        rows: int,
        columns: int,
        cells: Sequence[Optional[Sequence[Any]]] | None,
    ) -> Grid:
        """Build a grid from nested sequences; ``cells=None`` means every row is absent."""
        rows = int(rows)
        columns = int(columns)
        if cells is None:
            cells = [None] * rows
        if len(cells) != rows:
            raise GridShapeError(f"Grid has {len(cells)} rows of data, expected rows={rows}")
        parsed = tuple(
            None if row is None else _row_to_array(row, columns, index)
            for index, row in enumerate(cells)
        )
        return cls(
            min_x=float(min_x),
            min_y=float(min_y),
            max_x=float(max_x),
            max_y=float(max_y),
            rows=rows,
            columns=columns,
            cells=parsed,
        )

    @property
    def has_data(self) -> bool:
        return any(row is not None and np.isfinite(row).any() for row in self.cells)

    def cell_size(self) -> tuple[float, float]:
        """Width and height of one cell in degrees."""
        dx = (self.max_x - self.min_x) / self.columns if self.columns else 0.0
        dy = (self.max_y - self.min_y) / self.rows if self.rows else 0.0
        return dx, dy


def compute_stats(grid: Grid) -> GridStats:
    """Min/max over every present value; ``NO_DATA`` when there is none."""
    present = [row for row in grid.cells if row is not None]
    if not present:
        return NO_DATA

    values = np.concatenate(present)
    finite = values[np.isfinite(values)]
    if finite.size == 0:
        return NO_DATA
    return GridStats(min=float(finite.min()), max=float(finite.max()))
