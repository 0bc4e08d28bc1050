"""Debounced fetch -> stats -> paint cycle driven by viewport events.

States: IDLE -> SCHEDULED -> FETCHING -> PAINTING -> IDLE.  Every viewport
event bumps the request token, so a response that arrives after a newer
event is dropped instead of painted over fresher state.  An in-flight
request is only cancelled on zoom start; on pan its result is ignored.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional

from ..config import settings
from ..config.settings import HeatmapOptions
from .grid import Grid
from .renderer import render_heatmap
from .solr_fetch import FetchFailure
from .surface import DrawingSurface
from .viewport import BBox, Viewport

logger = logging.getLogger(__name__)

FetchGrid = Callable[[BBox], Awaitable[Grid]]
ErrorCallback = Callable[[Exception], None]


class SchedulerState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    FETCHING = "fetching"
    PAINTING = "painting"


class RenderScheduler:
    def __init__(
        self,
        fetch_grid: FetchGrid,
        viewport: Viewport,
        surface: DrawingSurface,
        options: HeatmapOptions,
        *,
        debounce_seconds: Optional[float] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._fetch_grid = fetch_grid
        self._viewport = viewport
        self._surface = surface
        self._options = options
        if debounce_seconds is None:
            debounce_seconds = settings.debounce_seconds()
        self._debounce_seconds = max(0.0, float(debounce_seconds))
        self._on_error = on_error

        self._token = 0
        self._timer: asyncio.TimerHandle | None = None
        self._inflight: set[asyncio.Task[None]] = set()
        self.state = SchedulerState.IDLE
        self.last_error: Exception | None = None

    async def __aenter__(self) -> RenderScheduler:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    @property
    def token(self) -> int:
        return self._token

    @property
    def debounce_seconds(self) -> float:
        return self._debounce_seconds

    @property
    def options(self) -> HeatmapOptions:
        return self._options

    def reset_options(self, options: HeatmapOptions) -> None:
        self._options = options

    # ------------------------------------------------------------------
    # Host events
    # ------------------------------------------------------------------

    def on_viewport_change(self) -> None:
        """Restart the debounce window; supersedes any pending or in-flight cycle."""
        loop = asyncio.get_running_loop()
        self._cancel_timer()
        self._token += 1
        self._surface.clear()
        self._timer = loop.call_later(self._debounce_seconds, self._on_timer, self._token)
        self.state = SchedulerState.SCHEDULED

    def on_zoom_start(self) -> None:
        self._cancel_timer()
        self._cancel_inflight()
        self._token += 1
        self._surface.clear()
        self.state = SchedulerState.IDLE

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _on_timer(self, token: int) -> None:
        self._timer = None
        if token != self._token:
            return
        bounds = self._viewport.get_bounds().clamped()
        self.state = SchedulerState.FETCHING
        logger.debug("Heatmap fetch token=%d bounds=%s", token, bounds)
        task = asyncio.get_running_loop().create_task(self._run_cycle(token, bounds))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run_cycle(self, token: int, bounds: BBox) -> None:
        try:
            grid = await self._fetch_grid(bounds)
        except FetchFailure as exc:
            logger.warning("Heatmap fetch failed (token=%d): %s", token, exc)
            self._fail(token, exc)
            return
        except Exception as exc:
            logger.exception("Heatmap fetch raised unexpectedly (token=%d)", token)
            self._fail(token, exc)
            return

        if token != self._token:
            logger.debug("Dropping stale heatmap response token=%d latest=%d", token, self._token)
            return

        self.state = SchedulerState.PAINTING
        try:
            self._surface.clear()
            render_heatmap(grid, self._options, project=self._viewport.project, surface=self._surface)
            self.last_error = None
        except Exception as exc:
            logger.exception("Heatmap render failed for token=%d", token)
            self._surface.clear()
            self._report(exc)
        finally:
            self.state = SchedulerState.IDLE

    def _fail(self, token: int, exc: Exception) -> None:
        if token != self._token:
            return
        self._surface.clear()
        self.state = SchedulerState.IDLE
        self._report(exc)

    def _report(self, exc: Exception) -> None:
        self.last_error = exc
        if self._on_error is None:
            return
        try:
            self._on_error(exc)
        except Exception:
            logger.exception("Heatmap error callback raised")

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _cancel_inflight(self) -> None:
        for task in list(self._inflight):
            task.cancel()

    async def join(self) -> None:
        """Wait until no timer is armed and no cycle is running."""
        while self._timer is not None or self._inflight:
            if self._inflight:
                await asyncio.gather(*list(self._inflight), return_exceptions=True)
            else:
                await asyncio.sleep(self._debounce_seconds / 2)

    async def aclose(self) -> None:
        self._cancel_timer()
        self._token += 1
        tasks = list(self._inflight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self.state = SchedulerState.IDLE
