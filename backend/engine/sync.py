from __future__ import annotations

import asyncio
from typing import Any, Callable, Iterable

import httpx
from loguru import logger

from commands.parser import CommandIntent
from engine.config import EngineSettings
from fetch.arcgis import ArcGISClient
from fetch.cache import LayerDataFetcher
from fetch.client import ProviderClient
from fetch.filters import default_filters, filter_signature
from fetch.source import LayerSource, ProviderLayerSource
from geo.viewport import Viewport, ViewportTracker
from layers.registry import LayerRegistry, get_registry
from layers.types import FeatureCollectionGeneration, business_key_str
from render.adapter import RenderSurfaceAdapter
from render.surface import RenderSurface
from selection.reconciler import FeatureStateReconciler, ReconcileResult
from telemetry.singleton import get_store

ErrorCallback = Callable[[str, BaseException], None]
ClickCallback = Callable[[str, str], None]


class MapSyncEngine:
    """
    Host-facing facade.

    Viewport settles fan out into one fetch per visible layer; completed generations are
    synced to the surface and then reconciled against the current selection signals.
    Selection changes never trigger a fetch.
    """

    def __init__(
        self,
        *,
        registry: LayerRegistry,
        surface: RenderSurface,
        source: LayerSource,
        settings: EngineSettings | None = None,
        on_error: ErrorCallback | None = None,
        on_feature_click: ClickCallback | None = None,
        telemetry: Any | None = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.registry = registry
        self.source = source
        self._on_error = on_error
        self._on_feature_click = on_feature_click

        self.adapter = RenderSurfaceAdapter(
            surface, registry, on_feature_event=self._on_feature_event
        )
        self.reconciler = FeatureStateReconciler(self.adapter)
        self.fetcher = LayerDataFetcher(
            registry,
            source,
            on_error=self._on_fetch_error,
            decimals=self.settings.bbox_decimals,
            telemetry=telemetry,
        )
        self.tracker = ViewportTracker(
            self._on_viewport_settled,
            quiet_period_s=self.settings.debounce_s,
            min_shift_m=self.settings.min_pan_m,
        )

        self.visible: dict[str, bool] = {d.key: d.default_visible for d in registry}
        self.opacity: dict[str, float] = {d.key: 1.0 for d in registry}
        self.filters: dict[str, Any] = default_filters()
        self.selected_key: str | None = None
        self.highlighted_keys: frozenset[str] = frozenset()
        self.filter_matches: frozenset[str] | None = None
        self.hovered: tuple[str, str] | None = None

        self._active: set[str] = set(registry.keys())
        self._tasks: set[asyncio.Task] = set()
        # Sources created by `create_engine`, closed in `aclose`.
        self._owned_sources: list[ProviderLayerSource] = []

    @property
    def viewport(self) -> Viewport | None:
        return self.tracker.current_viewport

    # Viewport

    def on_bounds_change(self, raw_bounds: Any) -> None:
        self.tracker.on_bounds_change(raw_bounds)

    # Command bridge entry points

    def set_layer_visible(self, layer_key: str, visible: bool) -> None:
        desc = self.registry.find(layer_key)
        if desc is None:
            logger.warning(f"set_layer_visible: unknown layer {layer_key!r}")
            return
        visible = bool(visible)
        self.visible[desc.key] = visible
        if self.adapter.is_synced(desc.key):
            self.adapter.sync_layer(
                desc, self.fetcher.current(desc.key), visible, self.opacity[desc.key]
            )
        if visible:
            self._schedule_refresh([desc.key])

    def set_layer_opacity(self, layer_key: str, opacity: float) -> None:
        desc = self.registry.find(layer_key)
        if desc is None:
            logger.warning(f"set_layer_opacity: unknown layer {layer_key!r}")
            return
        self.opacity[desc.key] = max(0.0, min(1.0, float(opacity)))
        if self.adapter.is_synced(desc.key):
            self.adapter.sync_layer(
                desc,
                self.fetcher.current(desc.key),
                self.visible[desc.key],
                self.opacity[desc.key],
            )

    def set_filter_predicate(self, key: str, value: Any) -> None:
        if isinstance(value, (list, tuple, set)):
            value = list(value)
        self._replace_filters({**self.filters, str(key): value})

    def clear_all_filters(self) -> None:
        self._replace_filters(default_filters())

    def apply_command(self, intent: CommandIntent) -> bool:
        """
        Dispatch a parsed chat command. Returns False for intents naming unknown layers.
        """
        if intent.kind == "layer":
            if intent.key is None or intent.key not in self.registry:
                logger.warning(f"command for unknown layer {intent.key!r} ignored")
                return False
            self.set_layer_visible(intent.key, intent.action == "show")
            return True
        if intent.kind == "filter":
            if intent.key is None:
                return False
            self.set_filter_predicate(intent.key, intent.value)
            return True
        if intent.kind == "clear-all":
            self.clear_all_filters()
            for desc in self.registry:
                if self.visible.get(desc.key) != desc.default_visible:
                    self.set_layer_visible(desc.key, desc.default_visible)
            return True
        return False

    # Selection signals

    def set_selection(self, business_key: Any | None) -> None:
        self.selected_key = business_key_str(business_key)
        self._reconcile_all()

    def set_highlights(self, business_keys: Iterable[Any] | None) -> None:
        keys = (business_key_str(k) for k in (business_keys or ()))
        self.highlighted_keys = frozenset(k for k in keys if k is not None)
        self._reconcile_all()

    def set_filter_matches(self, business_keys: Iterable[Any] | None) -> None:
        if business_keys is None:
            self.filter_matches = None
        else:
            keys = (business_key_str(k) for k in business_keys)
            self.filter_matches = frozenset(k for k in keys if k is not None)
        self._reconcile_all()

    def set_hover(self, layer_key: str, business_key: Any | None) -> None:
        bk = business_key_str(business_key)
        nxt = (layer_key, bk) if bk is not None else None
        prev = self.hovered
        if nxt == prev:
            return
        self.hovered = nxt
        for key in {k for k in (prev[0] if prev else None, layer_key) if k}:
            self._reconcile(key)

    # Layer lifecycle

    def deactivate_layer(self, layer_key: str) -> None:
        self._active.discard(layer_key)
        self.adapter.dispose(layer_key)
        self.fetcher.forget(layer_key)

    def activate_layer(self, layer_key: str) -> None:
        if layer_key not in self.registry:
            raise KeyError(f"Unknown layer key: {layer_key!r}")
        self._active.add(layer_key)
        if self.visible.get(layer_key):
            self._schedule_refresh([layer_key])

    async def refresh(
        self, layer_keys: Iterable[str] | None = None
    ) -> dict[str, FeatureCollectionGeneration | None]:
        vp = self.tracker.current_viewport
        if vp is None:
            return {}
        wanted = list(layer_keys) if layer_keys is not None else self.registry.keys()
        keys = [k for k in wanted if k in self._active and self.visible.get(k)]
        results = await asyncio.gather(*(self._refresh_layer(k, vp) for k in keys))
        return dict(zip(keys, results))

    async def wait_idle(self) -> None:
        """
        Wait until every scheduled refresh has finished (tests, graceful shutdown).
        """
        while self._tasks:
            await asyncio.wait(list(self._tasks))

    async def aclose(self) -> None:
        self.tracker.close()
        self.fetcher.cancel_all()
        for t in list(self._tasks):
            t.cancel()
        if self._tasks:
            await asyncio.wait(list(self._tasks))
        self.adapter.dispose_all()
        for src in self._owned_sources:
            await src.aclose()
        self._owned_sources.clear()

    # Internals

    def _replace_filters(self, new_filters: dict[str, Any]) -> None:
        before = filter_signature(self.filters)
        self.filters = new_filters
        if filter_signature(new_filters) == before:
            return
        keys = [d.key for d in self.registry if d.source.filterable]
        self._schedule_refresh(keys)

    def _on_viewport_settled(self, vp: Viewport) -> None:
        self._schedule_refresh(None)

    def _schedule_refresh(self, layer_keys: list[str] | None) -> None:
        if self.tracker.current_viewport is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("no running event loop; refresh deferred to the next viewport settle")
            return
        task = loop.create_task(self.refresh(layer_keys))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _refresh_layer(self, layer_key: str, vp: Viewport) -> FeatureCollectionGeneration | None:
        desc = self.registry.get(layer_key)
        filters = dict(self.filters) if desc.source.filterable else None
        try:
            gen = await self.fetcher.ensure_layer_data(layer_key, vp, filters=filters)
            # Superseded, or a newer generation has landed in the meantime.
            if gen is None or self.fetcher.current(layer_key) is not gen:
                return None
            if layer_key not in self._active:
                return None
            self.adapter.sync_layer(desc, gen, self.visible.get(layer_key, False), self.opacity[layer_key])
            self._reconcile(layer_key)
        except Exception as e:
            logger.exception(f"refresh failed for layer {layer_key}")
            self._report(layer_key, e)
            return None
        return gen

    def _reconcile(self, layer_key: str) -> ReconcileResult | None:
        desc = self.registry.find(layer_key)
        if desc is None or not desc.selectable:
            return None
        gen = self.fetcher.current(layer_key)
        if gen is None or self.adapter.current_generation_id(layer_key) != gen.generation_id:
            return None
        hovered = self.hovered[1] if self.hovered and self.hovered[0] == layer_key else None
        return self.reconciler.reconcile(
            layer_key,
            gen,
            self.selected_key,
            self.highlighted_keys,
            self.filter_matches,
            hovered_business_key=hovered,
        )

    def _reconcile_all(self) -> None:
        for key in self.adapter.synced_keys():
            self._reconcile(key)

    def _on_feature_event(self, event: str, layer_key: str, positional_id: int | None) -> None:
        gen = self.fetcher.current(layer_key)
        bk = None
        if (
            gen is not None
            and positional_id is not None
            and self.adapter.current_generation_id(layer_key) == gen.generation_id
        ):
            bk = gen.business_key_at(int(positional_id))

        if event == "click":
            if bk is None:
                return
            self.set_selection(bk)
            if self._on_feature_click is not None:
                self._on_feature_click(layer_key, bk)
        elif event == "mouseenter":
            self.set_hover(layer_key, bk)
        elif event == "mouseleave":
            self.set_hover(layer_key, None)

    def _on_fetch_error(self, layer_key: str, error: BaseException) -> None:
        self._report(layer_key, error)

    def _report(self, layer_key: str, error: BaseException) -> None:
        if self._on_error is not None:
            self._on_error(layer_key, error)


def create_engine(
    surface: RenderSurface,
    *,
    settings: EngineSettings | None = None,
    registry: LayerRegistry | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    on_error: ErrorCallback | None = None,
    on_feature_click: ClickCallback | None = None,
) -> MapSyncEngine:
    """
    Engine wired to the HTTP provider at `settings.api_base_url` (env defaults).
    """
    settings = settings or EngineSettings.from_env()
    provider = ProviderClient(
        settings.api_base_url, timeout_s=settings.http_timeout_s, transport=transport
    )
    source = ProviderLayerSource(provider, ArcGISClient(timeout_s=settings.http_timeout_s))
    engine = MapSyncEngine(
        registry=registry or get_registry(),
        surface=surface,
        source=source,
        settings=settings,
        on_error=on_error,
        on_feature_click=on_feature_click,
        telemetry=get_store(),
    )
    engine._owned_sources.append(source)
    return engine
