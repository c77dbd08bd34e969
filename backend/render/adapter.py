from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Mapping

from loguru import logger

from layers.registry import LayerRegistry
from layers.types import TOP, FeatureCollectionGeneration, LayerDescriptor, empty_feature_collection
from render.paint import (
    build_layer_specs,
    dimming_paint,
    interactive_layer_id,
    native_layer_ids,
    opacity_paint,
)
from render.surface import RenderSurface

# (event, layer_key, positional_id); positional_id is None for "mouseleave".
FeatureEventHandler = Callable[[str, str, "int | None"], None]
StatePredicate = Callable[[int, Mapping[str, bool]], bool]

FEATURE_EVENTS = ("click", "mouseenter", "mouseleave")


@dataclass
class _LayerRecord:
    descriptor: LayerDescriptor
    native_ids: list[str]
    generation_id: int | None
    feature_count: int
    visible: bool
    opacity: float
    dimming: bool = False
    # Feature state this adapter has written since the last data swap.
    states: dict[int, dict[str, bool]] = field(default_factory=dict)


class RenderSurfaceAdapter:
    """
    Owns every source, native layer and feature-state write on the surface.

    Repeated `sync_layer` calls with unchanged inputs issue no surface calls; data is only
    replaced when the generation changes, and a data swap drops all feature state.
    """

    def __init__(
        self,
        surface: RenderSurface,
        registry: LayerRegistry | None = None,
        *,
        on_feature_event: FeatureEventHandler | None = None,
    ) -> None:
        self.surface = surface
        self.registry = registry
        self.on_feature_event = on_feature_event
        self._records: dict[str, _LayerRecord] = {}

    def synced_keys(self) -> list[str]:
        return list(self._records.keys())

    def is_synced(self, layer_key: str) -> bool:
        return layer_key in self._records

    def current_generation_id(self, layer_key: str) -> int | None:
        rec = self._records.get(layer_key)
        return rec.generation_id if rec is not None else None

    def feature_state(self, layer_key: str, positional_id: int) -> dict[str, bool]:
        rec = self._records.get(layer_key)
        if rec is None:
            return {}
        return dict(rec.states.get(positional_id, {}))

    def sync_layer(
        self,
        descriptor: LayerDescriptor,
        generation: FeatureCollectionGeneration | None,
        visible: bool,
        opacity: float,
    ) -> None:
        key = descriptor.key
        opacity = max(0.0, min(1.0, float(opacity)))
        rec = self._records.get(key)

        if rec is not None and rec.descriptor != descriptor:
            logger.debug(f"render: descriptor changed for {key}, rebuilding")
            self.dispose(key)
            rec = None

        if rec is None:
            self._create(descriptor, generation, visible, opacity)
            return

        if generation is not None and generation.generation_id != rec.generation_id:
            self.surface.set_source_data(key, generation.to_geojson())
            # Positional ids from the previous generation mean nothing now.
            self.surface.remove_feature_state(key)
            rec.states.clear()
            rec.generation_id = generation.generation_id
            rec.feature_count = len(generation)

        if bool(visible) != rec.visible:
            value = "visible" if visible else "none"
            for lid in rec.native_ids:
                self.surface.set_layout_property(lid, "visibility", value)
            rec.visible = bool(visible)

        if opacity != rec.opacity:
            self._write_opacity(rec, opacity)
            rec.opacity = opacity

    def set_dimming(self, layer_key: str, active: bool) -> None:
        rec = self._records.get(layer_key)
        if rec is None or rec.dimming == bool(active):
            return
        rec.dimming = bool(active)
        for lid in rec.native_ids:
            props = dimming_paint(rec.descriptor, lid, opacity=rec.opacity, dimming=rec.dimming)
            for name, value in props.items():
                self.surface.set_paint_property(lid, name, value)

    def apply_feature_state(self, layer_key: str, positional_id: int, patch: Mapping[str, bool]) -> None:
        rec = self._records.get(layer_key)
        if rec is None:
            logger.debug(f"render: feature state for unsynced layer {layer_key} ignored")
            return
        pid = int(positional_id)
        if pid < 0 or pid >= rec.feature_count:
            logger.debug(f"render: positional id {pid} out of range for {layer_key}")
            return
        clean = {str(k): bool(v) for k, v in patch.items()}
        if not clean:
            return
        self.surface.set_feature_state(layer_key, pid, clean)
        rec.states.setdefault(pid, {}).update(clean)

    def clear_feature_state(self, layer_key: str, predicate: StatePredicate | None = None) -> int:
        """
        Remove feature state; everything when `predicate` is None. Returns the number of
        tracked features cleared.
        """
        rec = self._records.get(layer_key)
        if rec is None:
            return 0
        if predicate is None:
            n = len(rec.states)
            self.surface.remove_feature_state(layer_key)
            rec.states.clear()
            return n
        hits = [pid for pid, st in rec.states.items() if predicate(pid, st)]
        for pid in hits:
            self.surface.remove_feature_state(layer_key, pid)
            rec.states.pop(pid, None)
        return len(hits)

    def dispose(self, layer_key: str) -> None:
        rec = self._records.pop(layer_key, None)
        if rec is None:
            return
        for lid in reversed(rec.native_ids):
            if self.surface.has_layer(lid):
                self.surface.remove_layer(lid)
        if self.on_feature_event is not None:
            interactive = interactive_layer_id(rec.descriptor)
            for event in FEATURE_EVENTS:
                self.surface.off(event, interactive)
        if self.surface.has_source(layer_key):
            self.surface.remove_source(layer_key)
        logger.debug(f"render: disposed {layer_key}")

    def dispose_all(self) -> None:
        for key in list(self._records.keys()):
            self.dispose(key)

    def _create(
        self,
        descriptor: LayerDescriptor,
        generation: FeatureCollectionGeneration | None,
        visible: bool,
        opacity: float,
    ) -> None:
        key = descriptor.key
        data = generation.to_geojson() if generation is not None else empty_feature_collection()
        self.surface.add_source(key, data)

        before_id = self._insertion_point(descriptor)
        specs = build_layer_specs(descriptor, visible=visible, opacity=opacity)
        # Each spec goes directly below `before_id`, so bottom -> top order is preserved.
        for spec in specs:
            self.surface.add_layer(spec, before_id)

        self._records[key] = _LayerRecord(
            descriptor=descriptor,
            native_ids=[s["id"] for s in specs],
            generation_id=generation.generation_id if generation is not None else None,
            feature_count=len(generation) if generation is not None else 0,
            visible=bool(visible),
            opacity=opacity,
        )
        if self.on_feature_event is not None:
            self._bind_events(descriptor)
        logger.debug(f"render: created {key} below {before_id or 'top'}")

    def _insertion_point(self, descriptor: LayerDescriptor) -> str | None:
        """
        Bottom-most native layer of the nearest anchor that is on the surface, else None (top).
        """
        seen = {descriptor.key}
        anchor = descriptor.z_order_anchor
        while anchor != TOP and anchor not in seen:
            seen.add(anchor)
            rec = self._records.get(anchor)
            if rec is not None:
                return rec.native_ids[0]
            nxt = self.registry.find(anchor) if self.registry is not None else None
            if nxt is None:
                break
            anchor = nxt.z_order_anchor
        return None

    def _write_opacity(self, rec: _LayerRecord, opacity: float) -> None:
        for lid in rec.native_ids:
            props = opacity_paint(rec.descriptor, lid, opacity=opacity, dimming=rec.dimming)
            for name, value in props.items():
                self.surface.set_paint_property(lid, name, value)

    def _bind_events(self, descriptor: LayerDescriptor) -> None:
        key = descriptor.key
        interactive = interactive_layer_id(descriptor)
        handler = self.on_feature_event
        assert handler is not None

        for event in FEATURE_EVENTS:
            def _cb(feature_id: int | None, _event: str = event) -> None:
                handler(_event, key, feature_id)

            self.surface.on(event, interactive, _cb)
