import asyncio
import logging

import pytest

from heatlayer.config import settings
from heatlayer.config.settings import HeatmapOptions
from heatlayer.services.grid import Grid
from heatlayer.services.scheduler import RenderScheduler, SchedulerState
from heatlayer.services.solr_fetch import FetchFailure
from heatlayer.services.viewport import BBox

pytestmark = pytest.mark.anyio

DEBOUNCE = 0.02


class RecordingSurface:
    def __init__(self) -> None:
        self.fills: list = []
        self.clears = 0
        self.blur = None

    def clear(self) -> None:
        self.clears += 1
        self.fills.clear()

    def fill_rect(self, x, y, width, height, color) -> None:
        self.fills.append((x, y, width, height, color))

    def stroke_rect(self, x, y, width, height, color) -> None:
        pass

    def set_blur(self, radius_px) -> None:
        self.blur = radius_px


class FakeViewport:
    def __init__(self) -> None:
        self.bounds = BBox(-10.0, -10.0, 10.0, 10.0)

    def get_bounds(self) -> BBox:
        return self.bounds

    def project(self, lng: float, lat: float) -> tuple[float, float]:
        return lng, -lat


def _grid(value: float, columns: int = 1) -> Grid:
    return Grid.from_rows(
        min_x=0,
        min_y=0,
        max_x=columns,
        max_y=1,
        rows=1,
        columns=columns,
        cells=[[value] * columns],
    )


def _scheduler(fetch_grid, surface=None, viewport=None, **kwargs) -> RenderScheduler:
    return RenderScheduler(
        fetch_grid,
        viewport or FakeViewport(),
        surface or RecordingSurface(),
        HeatmapOptions(blur_radius_px=3),
        debounce_seconds=DEBOUNCE,
        **kwargs,
    )


async def test_rapid_viewport_changes_issue_one_fetch_for_last_bounds() -> None:
    requested: list[BBox] = []
    viewport = FakeViewport()

    async def fetch_grid(bbox: BBox) -> Grid:
        requested.append(bbox)
        return _grid(4)

    surface = RecordingSurface()
    async with _scheduler(fetch_grid, surface=surface, viewport=viewport) as scheduler:
        for step in range(5):
            viewport.bounds = BBox(step, step, step + 1, step + 1)
            scheduler.on_viewport_change()
            assert scheduler.state is SchedulerState.SCHEDULED
        await scheduler.join()

        assert requested == [BBox(4.0, 4.0, 5.0, 5.0)]
        assert scheduler.state is SchedulerState.IDLE
        assert len(surface.fills) == 1
        assert surface.blur == 3


async def test_fetch_bounds_are_clamped() -> None:
    requested: list[BBox] = []
    viewport = FakeViewport()
    viewport.bounds = BBox(-200.0, -95.0, 250.0, 91.0)

    async def fetch_grid(bbox: BBox) -> Grid:
        requested.append(bbox)
        return _grid(1)

    async with _scheduler(fetch_grid, viewport=viewport) as scheduler:
        scheduler.on_viewport_change()
        await scheduler.join()

    assert requested == [BBox(-180.0, -90.0, 180.0, 90.0)]


async def test_stale_response_is_not_painted() -> None:
    gates = [asyncio.Event(), asyncio.Event()]
    grids = [_grid(1, columns=1), _grid(1, columns=2)]
    calls: list[int] = []

    async def fetch_grid(bbox: BBox) -> Grid:
        index = len(calls)
        calls.append(index)
        await gates[index].wait()
        return grids[index]

    surface = RecordingSurface()
    async with _scheduler(fetch_grid, surface=surface) as scheduler:
        scheduler.on_viewport_change()
        await asyncio.sleep(DEBOUNCE * 3)
        assert calls == [0]
        assert scheduler.state is SchedulerState.FETCHING

        scheduler.on_viewport_change()
        await asyncio.sleep(DEBOUNCE * 3)
        assert calls == [0, 1]

        gates[1].set()
        await asyncio.sleep(0.01)
        assert len(surface.fills) == 2

        gates[0].set()
        await scheduler.join()

        # The older single-cell grid never replaced the newer frame.
        assert len(surface.fills) == 2
        assert scheduler.state is SchedulerState.IDLE


async def test_viewport_change_during_fetch_supersedes_result() -> None:
    gate = asyncio.Event()
    calls: list[BBox] = []

    async def fetch_grid(bbox: BBox) -> Grid:
        calls.append(bbox)
        if len(calls) == 1:
            await gate.wait()
        return _grid(2)

    surface = RecordingSurface()
    async with _scheduler(fetch_grid, surface=surface) as scheduler:
        scheduler.on_viewport_change()
        await asyncio.sleep(DEBOUNCE * 3)
        token_before = scheduler.token

        scheduler.on_viewport_change()
        gate.set()
        await asyncio.sleep(0)
        assert surface.fills == []

        await scheduler.join()
        assert scheduler.token == token_before + 1
        assert len(calls) == 2
        assert len(surface.fills) == 1


async def test_zoom_start_cancels_timer_and_inflight_request() -> None:
    started = asyncio.Event()
    cancelled = asyncio.Event()
    calls = 0

    async def fetch_grid(bbox: BBox) -> Grid:
        nonlocal calls
        calls += 1
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return _grid(1)

    surface = RecordingSurface()
    async with _scheduler(fetch_grid, surface=surface) as scheduler:
        scheduler.on_viewport_change()
        scheduler.on_zoom_start()
        await asyncio.sleep(DEBOUNCE * 3)
        assert calls == 0

        scheduler.on_viewport_change()
        await asyncio.wait_for(started.wait(), timeout=1)
        clears_before = surface.clears
        scheduler.on_zoom_start()
        await asyncio.wait_for(cancelled.wait(), timeout=1)

        assert surface.clears == clears_before + 1
        assert scheduler.state is SchedulerState.IDLE
        assert surface.fills == []


async def test_fetch_failure_returns_to_idle_and_reports(caplog: pytest.LogCaptureFixture) -> None:
    errors: list[Exception] = []
    outcomes = [FetchFailure("heatmap call failed", status_code=500), _grid(3)]

    async def fetch_grid(bbox: BBox) -> Grid:
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    caplog.set_level(logging.WARNING)
    surface = RecordingSurface()
    async with _scheduler(fetch_grid, surface=surface, on_error=errors.append) as scheduler:
        scheduler.on_viewport_change()
        await scheduler.join()

        assert scheduler.state is SchedulerState.IDLE
        assert surface.fills == []
        assert isinstance(scheduler.last_error, FetchFailure)
        assert [type(e) for e in errors] == [FetchFailure]
        assert "Heatmap fetch failed" in caplog.text

        # The next viewport change retries independently.
        scheduler.on_viewport_change()
        await scheduler.join()
        assert len(surface.fills) == 1
        assert scheduler.last_error is None


async def test_reset_options_applies_to_next_cycle() -> None:
    async def fetch_grid(bbox: BBox) -> Grid:
        return _grid(5)

    surface = RecordingSurface()
    async with _scheduler(fetch_grid, surface=surface) as scheduler:
        scheduler.reset_options(HeatmapOptions(opacity=0.2, blur_radius_px=0))
        scheduler.on_viewport_change()
        await scheduler.join()

    assert surface.fills[0][4].a == pytest.approx(0.2)
    assert surface.blur == 0


async def test_aclose_releases_pending_timer() -> None:
    calls = 0

    async def fetch_grid(bbox: BBox) -> Grid:
        nonlocal calls
        calls += 1
        return _grid(1)

    scheduler = _scheduler(fetch_grid)
    async with scheduler:
        scheduler.on_viewport_change()

    await asyncio.sleep(DEBOUNCE * 3)
    assert calls == 0
    assert scheduler.state is SchedulerState.IDLE


async def test_debounce_window_comes_from_env_unless_given(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fetch_grid(bbox: BBox) -> Grid:
        return _grid(1)

    monkeypatch.setenv(settings.ENV_DEBOUNCE_MS, "1000")
    from_env = RenderScheduler(fetch_grid, FakeViewport(), RecordingSurface(), HeatmapOptions())
    explicit = RenderScheduler(
        fetch_grid, FakeViewport(), RecordingSurface(), HeatmapOptions(), debounce_seconds=0.05
    )

    assert from_env.debounce_seconds == pytest.approx(1.0)
    assert explicit.debounce_seconds == pytest.approx(0.05)

    monkeypatch.delenv(settings.ENV_DEBOUNCE_MS)
    default = RenderScheduler(fetch_grid, FakeViewport(), RecordingSurface(), HeatmapOptions())
    assert default.debounce_seconds == pytest.approx(0.2)
