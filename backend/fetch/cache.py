from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from loguru import logger

from fetch.client import FetchFailure
from fetch.filters import NO_FILTERS, filter_signature as compute_filter_signature
from fetch.source import LayerSource
from geo.viewport import Viewport
from layers.loaders import mint_generation
from layers.normalize import normalize_features
from layers.registry import LayerRegistry
from layers.types import FeatureCollectionGeneration, LayerDescriptor

ErrorCallback = Callable[[str, BaseException], None]


@dataclass(frozen=True)
class CacheKey:
    layer_key: str
    bbox: tuple[float, float, float, float]
    filter_signature: str


@dataclass
class CancelToken:
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class _InFlight:
    key: CacheKey
    token: CancelToken
    task: "asyncio.Task[FeatureCollectionGeneration | None]"


class LayerDataFetcher:
    """
    Per-layer fetch + generation cache.

    - at most one in-flight fetch per layer key; a request for a different cache key cancels it
    - a request for the in-flight key joins it, a request for the current key is served from memory
    - a failed fetch keeps the previous generation (stale-while-error) and reports via `on_error`
    - a superseded fetch resolves to None and its result is never committed
    """

    def __init__(
        self,
        registry: LayerRegistry,
        source: LayerSource,
        *,
        on_error: ErrorCallback | None = None,
        decimals: int = 4,
        max_payloads: int = 32,
        telemetry: Any | None = None,
    ) -> None:
        self.registry = registry
        self.source = source
        self.on_error = on_error
        self.decimals = int(decimals)
        self.max_payloads = int(max_payloads)
        self.telemetry = telemetry

        self._current: dict[str, FeatureCollectionGeneration] = {}
        self._current_key: dict[str, CacheKey] = {}
        self._inflight: dict[str, _InFlight] = {}
        # Generation ids are per layer and never reset, even after `forget`.
        self._counters: dict[str, int] = {}
        # Normalized features per cache key, so returning to a recent view needs no I/O.
        self._payloads: dict[CacheKey, list[dict[str, Any]]] = {}

        self.stats: dict[str, int] = {
            "started": 0,
            "completed": 0,
            "cancelled": 0,
            "failed": 0,
            "cacheHits": 0,
            "payloadHits": 0,
            "joined": 0,
        }

    def current(self, layer_key: str) -> FeatureCollectionGeneration | None:
        return self._current.get(layer_key)

    def current_key(self, layer_key: str) -> CacheKey | None:
        return self._current_key.get(layer_key)

    def in_flight(self, layer_key: str) -> bool:
        return layer_key in self._inflight

    def cache_key(self, layer_key: str, viewport: Viewport, signature: str) -> CacheKey:
        return CacheKey(
            layer_key=layer_key,
            bbox=viewport.rounded_key(self.decimals),
            filter_signature=signature,
        )

    async def ensure_layer_data(
        self,
        layer_key: str,
        viewport: Viewport,
        filter_signature: str | None = None,
        *,
        filters: Mapping[str, Any] | None = None,
    ) -> FeatureCollectionGeneration | None:
        descriptor = self.registry.get(layer_key)
        if not descriptor.source.filterable:
            filters = None
            signature = NO_FILTERS
        elif filter_signature is None:
            signature = compute_filter_signature(filters)
        else:
            signature = filter_signature
        key = self.cache_key(layer_key, viewport, signature)

        inflight = self._inflight.get(layer_key)
        if inflight is not None and inflight.key == key:
            self.stats["joined"] += 1
            return await self._await(inflight)

        cur = self._current.get(layer_key)
        if cur is not None and self._current_key.get(layer_key) == key:
            if inflight is not None:
                self._cancel(inflight, reason="view returned to current data")
            self.stats["cacheHits"] += 1
            return cur

        if inflight is not None:
            self._cancel(inflight, reason="superseded")

        payload = _lru_get(self._payloads, key)
        if payload is not None:
            self.stats["payloadHits"] += 1
            return self._commit(descriptor, key, payload)

        token = CancelToken()
        task = asyncio.ensure_future(self._run(descriptor, key, token, viewport, filters))
        entry = _InFlight(key=key, token=token, task=task)
        self._inflight[layer_key] = entry
        self.stats["started"] += 1
        return await self._await(entry)

    def cancel(self, layer_key: str) -> None:
        entry = self._inflight.get(layer_key)
        if entry is not None:
            self._cancel(entry, reason="cancelled by caller")

    def cancel_all(self) -> None:
        for entry in list(self._inflight.values()):
            self._cancel(entry, reason="shutdown")

    def forget(self, layer_key: str) -> None:
        """
        Drop everything cached for a layer (used when the layer leaves the active set).
        """
        self.cancel(layer_key)
        self._current.pop(layer_key, None)
        self._current_key.pop(layer_key, None)
        for k in [k for k in self._payloads if k.layer_key == layer_key]:
            self._payloads.pop(k, None)

    async def _await(self, entry: _InFlight) -> FeatureCollectionGeneration | None:
        # asyncio.wait does not propagate our own cancellation into the shared fetch task.
        await asyncio.wait({entry.task})
        if entry.token.cancelled or entry.task.cancelled():
            return None
        return entry.task.result()

    async def _run(
        self,
        descriptor: LayerDescriptor,
        key: CacheKey,
        token: CancelToken,
        viewport: Viewport,
        filters: Mapping[str, Any] | None,
    ) -> FeatureCollectionGeneration | None:
        layer_key = descriptor.key
        t0 = time.perf_counter()
        try:
            raw = await self.source.load(descriptor, viewport.bbox, filters)
        except FetchFailure as e:
            if token.cancelled:
                return None
            e.layer_key = e.layer_key or layer_key
            self.stats["failed"] += 1
            ms = (time.perf_counter() - t0) * 1000.0
            logger.warning(f"fetch failed: layer={layer_key} after {ms:.0f}ms: {e}")
            self._record(key, viewport, outcome="failed", ms=ms, features=0)
            if self.on_error is not None:
                self.on_error(layer_key, e)
            return self._current.get(layer_key)
        finally:
            entry = self._inflight.get(layer_key)
            if entry is not None and entry.token is token:
                self._inflight.pop(layer_key, None)

        if token.cancelled:
            return None

        features = normalize_features(descriptor.source.normalizer, raw)
        _lru_put(self._payloads, key, features, max_items=self.max_payloads)
        gen = self._commit(descriptor, key, features)
        self.stats["completed"] += 1
        ms = (time.perf_counter() - t0) * 1000.0
        logger.info(
            f"fetched layer={layer_key} generation={gen.generation_id} "
            f"features={len(gen)} in {ms:.0f}ms"
        )
        self._record(key, viewport, outcome="ok", ms=ms, features=len(gen))
        return gen

    def _commit(
        self,
        descriptor: LayerDescriptor,
        key: CacheKey,
        features: list[dict[str, Any]],
    ) -> FeatureCollectionGeneration:
        gid = self._counters.get(key.layer_key, 0) + 1
        self._counters[key.layer_key] = gid
        gen = mint_generation(
            key.layer_key,
            gid,
            features,
            business_key_field=descriptor.source.business_key,
        )
        self._current[key.layer_key] = gen
        self._current_key[key.layer_key] = key
        return gen

    def _cancel(self, entry: _InFlight, *, reason: str) -> None:
        entry.token.cancel()
        entry.task.cancel()
        if self._inflight.get(entry.key.layer_key) is entry:
            self._inflight.pop(entry.key.layer_key, None)
        self.stats["cancelled"] += 1
        logger.debug(f"fetch cancelled: layer={entry.key.layer_key} ({reason})")

    def _record(self, key: CacheKey, viewport: Viewport, *, outcome: str, ms: float, features: int) -> None:
        if self.telemetry is None:
            return
        self.telemetry.record(
            layer_key=key.layer_key,
            outcome=outcome,
            filter_signature=key.filter_signature,
            view_zoom=viewport.zoom,
            aoi=viewport.as_dict(),
            stats={"timingsMs": {"total": ms}, "features": features, "stats": dict(self.stats)},
        )


def _lru_get(cache: dict, key):
    value = cache.pop(key, None)
    if value is not None:
        cache[key] = value
    return value


def _lru_put(cache: dict, key, value, *, max_items: int) -> None:
    cache.pop(key, None)
    cache[key] = value
    while len(cache) > max_items:
        cache.pop(next(iter(cache)))
