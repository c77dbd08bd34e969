from __future__ import annotations

import asyncio

import pytest

from geo.viewport import Viewport, ViewportTracker, parse_viewport, same_viewport, zoom_bucket

AUSTIN = {"west": -97.80, "south": 30.20, "east": -97.70, "north": 30.30, "zoom": 12.0}


def _shifted(d: float, **over) -> dict:
    vp = {**AUSTIN, **over}
    vp["west"] += d
    vp["east"] += d
    return vp


def test_parse_viewport_accepts_mappings_sequences_and_viewports():
    vp = parse_viewport(AUSTIN)
    assert vp == Viewport(-97.80, 30.20, -97.70, 30.30, 12.0)
    assert parse_viewport([-97.80, 30.20, -97.70, 30.30]) == Viewport(-97.80, 30.20, -97.70, 30.30, 0.0)
    assert parse_viewport(vp) == vp


@pytest.mark.parametrize(
    "raw",
    [
        None,
        "garbage",
        [1, 2, 3],
        {"west": None, "south": 30.2, "east": -97.7, "north": 30.3},
        {"west": "x", "south": 30.2, "east": -97.7, "north": 30.3},
        {"west": float("nan"), "south": 30.2, "east": -97.7, "north": 30.3},
        {"west": -97.8, "south": 30.4, "east": -97.7, "north": 30.3},
        {"west": -97.7, "south": 30.2, "east": -97.8, "north": 30.3},
        {"west": -97.8, "south": -95.0, "east": -97.7, "north": 30.3},
    ],
)
def test_parse_viewport_rejects_malformed_bounds(raw):
    assert parse_viewport(raw) is None


def test_zoom_bucket_rounds_and_clamps():
    assert zoom_bucket(12.4) == 12
    assert zoom_bucket(12.6) == 13
    assert zoom_bucket(1.0) == 3
    assert zoom_bucket(22.0) == 18


def test_same_viewport_uses_metric_shift_and_zoom_bucket():
    a = parse_viewport(AUSTIN)
    # ~1m east at this latitude.
    assert same_viewport(a, parse_viewport(_shifted(0.00001)), min_shift_m=5.0)
    assert not same_viewport(a, parse_viewport(_shifted(0.01)), min_shift_m=5.0)
    assert same_viewport(a, parse_viewport({**AUSTIN, "zoom": 12.3}), min_shift_m=5.0)
    assert not same_viewport(a, parse_viewport({**AUSTIN, "zoom": 13.0}), min_shift_m=5.0)


def test_burst_of_bounds_events_settles_once():
    settled: list[Viewport] = []

    async def run() -> ViewportTracker:
        t = ViewportTracker(settled.append, quiet_period_s=0.1)
        for i in range(10):
            t.on_bounds_change(_shifted(i * 0.001))
            await asyncio.sleep(0.001)
        assert t.pending
        await asyncio.sleep(0.3)
        return t

    t = asyncio.run(run())
    assert len(settled) == 1
    assert settled[0].west == pytest.approx(-97.80 + 9 * 0.001)
    assert t.current_viewport == settled[0]
    assert t.stats["raw"] == 10
    assert t.stats["settled"] == 1


def test_malformed_events_do_not_start_the_timer():
    settled: list[Viewport] = []

    async def run() -> ViewportTracker:
        t = ViewportTracker(settled.append, quiet_period_s=0.01)
        t.on_bounds_change({"west": None})
        t.on_bounds_change("nope")
        assert not t.pending
        await asyncio.sleep(0.05)
        return t

    t = asyncio.run(run())
    assert settled == []
    assert t.current_viewport is None
    assert t.stats["dropped"] == 2


def test_tiny_pan_and_zoom_jitter_are_suppressed():
    settled: list[Viewport] = []

    async def run() -> ViewportTracker:
        t = ViewportTracker(settled.append, quiet_period_s=10.0, min_shift_m=5.0)
        t.on_bounds_change(AUSTIN)
        t.flush()
        t.on_bounds_change(_shifted(0.00001))
        t.flush()
        t.on_bounds_change({**AUSTIN, "zoom": 12.2})
        t.flush()
        t.on_bounds_change(_shifted(0.02))
        t.flush()
        return t

    t = asyncio.run(run())
    assert len(settled) == 2
    assert t.stats["suppressed"] == 2
    assert t.current_viewport.west == pytest.approx(-97.78)


def test_close_drops_pending_settle():
    settled: list[Viewport] = []

    async def run() -> None:
        t = ViewportTracker(settled.append, quiet_period_s=0.02)
        t.on_bounds_change(AUSTIN)
        t.close()
        await asyncio.sleep(0.06)
        assert t.flush() is None

    asyncio.run(run())
    assert settled == []


def test_bounds_without_event_loop_wait_for_flush():
    settled: list[Viewport] = []
    t = ViewportTracker(settled.append, quiet_period_s=0.02)

    t.on_bounds_change(_shifted(0.5))
    t.on_bounds_change(AUSTIN)
    assert not t.pending
    assert settled == []

    vp = t.flush()
    assert settled == [vp]
    assert vp.west == -97.80
