from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

FeatureCallback = Callable[[int | None], None]


class RenderSurface(Protocol):
    """
    The imperative map surface (Mapbox GL style): sources, ordered native layers and
    per-feature state keyed by numeric feature id.
    """

    def add_source(self, source_id: str, data: dict[str, Any]) -> None: ...

    def set_source_data(self, source_id: str, data: dict[str, Any]) -> None: ...

    def remove_source(self, source_id: str) -> None: ...

    def has_source(self, source_id: str) -> bool: ...

    def add_layer(self, spec: dict[str, Any], before_id: str | None = None) -> None: ...

    def remove_layer(self, layer_id: str) -> None: ...

    def has_layer(self, layer_id: str) -> bool: ...

    def set_layout_property(self, layer_id: str, name: str, value: Any) -> None: ...

    def set_paint_property(self, layer_id: str, name: str, value: Any) -> None: ...

    def set_feature_state(self, source_id: str, feature_id: int, state: dict[str, bool]) -> None: ...

    def remove_feature_state(
        self, source_id: str, feature_id: int | None = None, key: str | None = None
    ) -> None: ...

    def on(self, event: str, layer_id: str, callback: FeatureCallback) -> None: ...

    def off(self, event: str, layer_id: str) -> None: ...


@dataclass
class RecordingSurface:
    """
    In-memory `RenderSurface` for headless use and tests.

    Mirrors the real surface's failure modes that matter to callers: duplicate ids and
    unknown `before_id`s raise, and every mutating call is counted in `calls`.
    """

    sources: dict[str, dict[str, Any]] = field(default_factory=dict)
    layers: dict[str, dict[str, Any]] = field(default_factory=dict)
    order: list[str] = field(default_factory=list)
    feature_state: dict[str, dict[int, dict[str, bool]]] = field(default_factory=dict)
    handlers: dict[tuple[str, str], FeatureCallback] = field(default_factory=dict)
    calls: Counter = field(default_factory=Counter)

    def add_source(self, source_id: str, data: dict[str, Any]) -> None:
        self.calls["add_source"] += 1
        if source_id in self.sources:
            raise ValueError(f"Source already exists: {source_id}")
        self.sources[source_id] = data

    def set_source_data(self, source_id: str, data: dict[str, Any]) -> None:
        self.calls["set_source_data"] += 1
        if source_id not in self.sources:
            raise KeyError(f"No such source: {source_id}")
        self.sources[source_id] = data

    def remove_source(self, source_id: str) -> None:
        self.calls["remove_source"] += 1
        users = [lid for lid, spec in self.layers.items() if spec.get("source") == source_id]
        if users:
            raise ValueError(f"Source {source_id} is still used by {users}")
        self.sources.pop(source_id, None)
        self.feature_state.pop(source_id, None)

    def has_source(self, source_id: str) -> bool:
        return source_id in self.sources

    def add_layer(self, spec: dict[str, Any], before_id: str | None = None) -> None:
        self.calls["add_layer"] += 1
        layer_id = spec["id"]
        if layer_id in self.layers:
            raise ValueError(f"Layer already exists: {layer_id}")
        if spec.get("source") not in self.sources:
            raise KeyError(f"Layer {layer_id} references unknown source {spec.get('source')}")
        if before_id is None:
            self.order.append(layer_id)
        else:
            if before_id not in self.layers:
                raise KeyError(f"before_id not on surface: {before_id}")
            self.order.insert(self.order.index(before_id), layer_id)
        self.layers[layer_id] = {
            **spec,
            "layout": dict(spec.get("layout") or {}),
            "paint": dict(spec.get("paint") or {}),
        }

    def remove_layer(self, layer_id: str) -> None:
        self.calls["remove_layer"] += 1
        if layer_id in self.layers:
            self.layers.pop(layer_id)
            self.order.remove(layer_id)
        for k in [k for k in self.handlers if k[1] == layer_id]:
            self.handlers.pop(k, None)

    def has_layer(self, layer_id: str) -> bool:
        return layer_id in self.layers

    def set_layout_property(self, layer_id: str, name: str, value: Any) -> None:
        self.calls["set_layout_property"] += 1
        self.layers[layer_id]["layout"][name] = value

    def set_paint_property(self, layer_id: str, name: str, value: Any) -> None:
        self.calls["set_paint_property"] += 1
        self.layers[layer_id]["paint"][name] = value

    def set_feature_state(self, source_id: str, feature_id: int, state: dict[str, bool]) -> None:
        self.calls["set_feature_state"] += 1
        if source_id not in self.sources:
            raise KeyError(f"No such source: {source_id}")
        self.feature_state.setdefault(source_id, {}).setdefault(int(feature_id), {}).update(state)

    def remove_feature_state(
        self, source_id: str, feature_id: int | None = None, key: str | None = None
    ) -> None:
        self.calls["remove_feature_state"] += 1
        states = self.feature_state.get(source_id)
        if not states:
            return
        if feature_id is None:
            states.clear()
            return
        if key is None:
            states.pop(int(feature_id), None)
            return
        st = states.get(int(feature_id))
        if st is not None:
            st.pop(key, None)

    def on(self, event: str, layer_id: str, callback: FeatureCallback) -> None:
        self.handlers[(event, layer_id)] = callback

    def off(self, event: str, layer_id: str) -> None:
        self.handlers.pop((event, layer_id), None)

    # Helpers for headless hosts / tests.

    def fire(self, event: str, layer_id: str, feature_id: int | None = None) -> bool:
        cb = self.handlers.get((event, layer_id))
        if cb is None:
            return False
        cb(feature_id)
        return True

    def state_of(self, source_id: str, feature_id: int) -> dict[str, bool]:
        return dict(self.feature_state.get(source_id, {}).get(int(feature_id), {}))

    def flagged(self, source_id: str, flag: str) -> set[int]:
        return {
            fid
            for fid, st in self.feature_state.get(source_id, {}).items()
            if st.get(flag)
        }

    def layout(self, layer_id: str, name: str) -> Any:
        return self.layers[layer_id]["layout"].get(name)

    def paint(self, layer_id: str, name: str) -> Any:
        return self.layers[layer_id]["paint"].get(name)
