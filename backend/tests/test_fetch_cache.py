from __future__ import annotations

import asyncio
from typing import Any

from fetch.cache import LayerDataFetcher
from fetch.client import FetchFailure
from fetch.filters import NO_FILTERS
from geo.viewport import Viewport
from layers.registry import get_registry

VP_A = Viewport(-97.80, 30.20, -97.70, 30.30, 12.0)
VP_B = Viewport(-97.75, 30.20, -97.65, 30.30, 12.0)


def _points(n: int = 3) -> list[dict[str, Any]]:
    return [
        {
            "type": "Feature",
            "geometry": {"type": "Point", "coordinates": [-97.75 + i * 0.001, 30.25]},
            "properties": {"attom_id": 1000 + i, "attomId": float(1000 + i)},
        }
        for i in range(n)
    ]


class FakeSource:
    def __init__(self, *, delay: float = 0.0) -> None:
        self.delay = delay
        self.calls: list[tuple[str, Any, Any]] = []
        self.fail: set[str] = set()
        self.active = 0
        self.max_active = 0

    async def load(self, descriptor, bbox, filters):
        self.calls.append((descriptor.key, bbox, filters))
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if descriptor.key in self.fail:
                raise FetchFailure("provider down", status_code=503)
            return _points()
        finally:
            self.active -= 1


class FakeTelemetry:
    def __init__(self) -> None:
        self.events: list[dict[str, Any]] = []

    def record(self, **kw) -> None:
        self.events.append(kw)


class UncancellableSource:
    """Each load waits on a future the test resolves; cancellation does not stop the request."""

    def __init__(self) -> None:
        self.pending: list[asyncio.Future] = []

    async def load(self, descriptor, bbox, filters):
        fut = asyncio.get_running_loop().create_future()
        self.pending.append(fut)
        while True:
            try:
                return await asyncio.shield(fut)
            except asyncio.CancelledError:
                continue


async def _superseded_then_settled(outcome):
    errors: list[str] = []
    src = UncancellableSource()
    f = LayerDataFetcher(get_registry(), src, on_error=lambda k, e: errors.append(k))
    first = asyncio.ensure_future(f.ensure_layer_data("parcels", VP_A))
    await asyncio.sleep(0.01)
    second = asyncio.ensure_future(f.ensure_layer_data("parcels", VP_B))
    await asyncio.sleep(0.01)
    assert len(src.pending) == 2

    src.pending[1].set_result(_points())
    newer = await second
    # The superseded request settles only after the newer one committed.
    outcome(src.pending[0])
    older = await first
    return f, errors, older, newer


def test_superseded_fetch_failing_late_is_suppressed():
    def fail(fut):
        fut.set_exception(FetchFailure("provider down", status_code=503))

    f, errors, older, newer = asyncio.run(_superseded_then_settled(fail))
    assert older is None
    assert newer is not None
    assert f.current("parcels") is newer
    assert f.current_key("parcels").bbox == VP_B.rounded_key()
    assert errors == []
    assert f.stats["failed"] == 0
    assert f.stats["cancelled"] == 1


def test_superseded_fetch_succeeding_late_is_discarded():
    def succeed(fut):
        fut.set_result(_points(5))

    f, errors, older, newer = asyncio.run(_superseded_then_settled(succeed))
    assert older is None
    assert f.current("parcels") is newer
    assert len(newer) == 3
    assert newer.generation_id == 1
    assert f.stats["completed"] == 1
    assert errors == []


def test_generation_has_positional_ids_and_business_keys():
    async def run():
        f = LayerDataFetcher(get_registry(), FakeSource())
        return await f.ensure_layer_data("properties", VP_A)

    gen = asyncio.run(run())
    assert gen.generation_id == 1
    assert [x.positional_id for x in gen.features] == [0, 1, 2]
    assert [x.business_key for x in gen.features] == ["1000", "1001", "1002"]
    assert gen.business_key_index()["1001"] == (1,)
    assert [x["id"] for x in gen.to_geojson()["features"]] == [0, 1, 2]


def test_new_viewport_supersedes_in_flight_fetch():
    async def run():
        src = FakeSource(delay=0.05)
        f = LayerDataFetcher(get_registry(), src)
        first = asyncio.ensure_future(f.ensure_layer_data("parcels", VP_A))
        await asyncio.sleep(0.01)
        assert f.in_flight("parcels")
        second = await f.ensure_layer_data("parcels", VP_B)
        return f, src, await first, second

    f, src, first, second = asyncio.run(run())
    assert first is None
    assert second is not None and second.generation_id == 1
    assert f.current("parcels") is second
    assert f.current_key("parcels").bbox == VP_B.rounded_key()
    assert f.stats["cancelled"] == 1
    assert f.stats["completed"] == 1
    assert src.max_active == 1
    assert not f.in_flight("parcels")


def test_same_key_requests_join_the_in_flight_fetch():
    async def run():
        src = FakeSource(delay=0.02)
        f = LayerDataFetcher(get_registry(), src)
        a, b = await asyncio.gather(
            f.ensure_layer_data("parcels", VP_A), f.ensure_layer_data("parcels", VP_A)
        )
        return f, src, a, b

    f, src, a, b = asyncio.run(run())
    assert a is b
    assert len(src.calls) == 1
    assert f.stats["joined"] == 1


def test_current_key_is_served_from_memory_and_payloads_are_reused():
    async def run():
        src = FakeSource()
        f = LayerDataFetcher(get_registry(), src)
        g1 = await f.ensure_layer_data("parcels", VP_A)
        again = await f.ensure_layer_data("parcels", VP_A)
        g2 = await f.ensure_layer_data("parcels", VP_B)
        g3 = await f.ensure_layer_data("parcels", VP_A)
        return f, src, g1, again, g2, g3

    f, src, g1, again, g2, g3 = asyncio.run(run())
    assert again is g1
    assert [g.generation_id for g in (g1, g2, g3)] == [1, 2, 3]
    assert len(src.calls) == 2
    assert f.stats["cacheHits"] == 1
    assert f.stats["payloadHits"] == 1


def test_payload_cache_evicts_least_recently_used():
    vp_c = Viewport(-97.70, 30.20, -97.60, 30.30, 12.0)

    async def run():
        src = FakeSource()
        f = LayerDataFetcher(get_registry(), src, max_payloads=2)
        for vp in (VP_A, VP_B, VP_A, vp_c, VP_A, VP_B):
            await f.ensure_layer_data("parcels", vp)
        return f, src

    f, src = asyncio.run(run())
    # Revisiting A kept it warm, so C pushed out B instead.
    assert [c[1] for c in src.calls] == [VP_A.bbox, VP_B.bbox, vp_c.bbox, VP_B.bbox]
    assert f.stats["payloadHits"] == 2


def test_failed_fetch_keeps_previous_generation_and_reports():
    errors: list[tuple[str, BaseException]] = []

    async def run():
        src = FakeSource()
        f = LayerDataFetcher(get_registry(), src, on_error=lambda k, e: errors.append((k, e)))
        good = await f.ensure_layer_data("parcels", VP_A)
        src.fail.add("parcels")
        stale = await f.ensure_layer_data("parcels", VP_B)
        return f, good, stale

    f, good, stale = asyncio.run(run())
    assert stale is good
    assert f.current("parcels") is good
    assert f.current_key("parcels").bbox == VP_A.rounded_key()
    assert f.stats["failed"] == 1
    assert len(errors) == 1
    key, err = errors[0]
    assert key == "parcels"
    assert isinstance(err, FetchFailure)
    assert err.layer_key == "parcels"
    assert err.status_code == 503


def test_first_fetch_failure_resolves_to_none():
    errors: list[str] = []

    async def run():
        src = FakeSource()
        src.fail.add("parcels")
        f = LayerDataFetcher(get_registry(), src, on_error=lambda k, e: errors.append(k))
        return f, await f.ensure_layer_data("parcels", VP_A)

    f, gen = asyncio.run(run())
    assert gen is None
    assert f.current("parcels") is None
    assert errors == ["parcels"]


def test_filters_only_key_filterable_layers():
    async def run():
        src = FakeSource()
        f = LayerDataFetcher(get_registry(), src)
        await f.ensure_layer_data("parcels", VP_A, filters={"hasForeclosure": True})
        await f.ensure_layer_data("properties", VP_A, filters={"hasForeclosure": True})
        # Same active predicates, different inactive values: served from memory.
        await f.ensure_layer_data(
            "properties", VP_A, filters={"hasForeclosure": True, "zipCode": ""}
        )
        await f.ensure_layer_data("properties", VP_A, filters={"absenteeOnly": True})
        return f, src

    f, src = asyncio.run(run())
    assert f.current_key("parcels").filter_signature == NO_FILTERS
    assert src.calls[0][2] is None
    assert src.calls[1][2] == {"hasForeclosure": True}
    assert len(src.calls) == 3
    assert f.stats["cacheHits"] == 1


def test_explicit_cancel_and_forget():
    async def run():
        src = FakeSource(delay=0.05)
        f = LayerDataFetcher(get_registry(), src)
        pending = asyncio.ensure_future(f.ensure_layer_data("parcels", VP_A))
        await asyncio.sleep(0.01)
        f.cancel("parcels")
        cancelled = await pending

        src.delay = 0.0
        g1 = await f.ensure_layer_data("parcels", VP_A)
        f.forget("parcels")
        assert f.current("parcels") is None
        g2 = await f.ensure_layer_data("parcels", VP_A)
        return src, cancelled, g1, g2

    src, cancelled, g1, g2 = asyncio.run(run())
    assert cancelled is None
    # Generation ids keep increasing across `forget`.
    assert (g1.generation_id, g2.generation_id) == (1, 2)
    assert len(src.calls) == 3


def test_fetch_outcomes_are_recorded_to_telemetry():
    tel = FakeTelemetry()

    async def run():
        src = FakeSource()
        f = LayerDataFetcher(get_registry(), src, telemetry=tel)
        await f.ensure_layer_data("fema_flood", VP_A)
        src.fail.add("fema_flood")
        await f.ensure_layer_data("fema_flood", VP_B)

    asyncio.run(run())
    assert [e["outcome"] for e in tel.events] == ["ok", "failed"]
    assert tel.events[0]["layer_key"] == "fema_flood"
    assert tel.events[0]["aoi"]["west"] == VP_A.west
    assert tel.events[0]["stats"]["features"] == 3
