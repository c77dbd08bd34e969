from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

import yaml

from layers.schema import LayerModel, LayerTableModel
from layers.types import TOP, LayerDescriptor, SourceSpec, StylingRule


def _default_table_path() -> Path:
    return Path(__file__).resolve().parent / "registry.yaml"


def registry_path() -> Path:
    return Path(os.getenv("PARCELMAP_LAYERS_FILE") or _default_table_path())


@dataclass(frozen=True)
class LayerRegistry:
    """
    Immutable, ordered set of layer descriptors keyed by layer key.
    """

    descriptors: tuple[LayerDescriptor, ...]

    def __post_init__(self) -> None:
        _validate(self.descriptors)

    def __contains__(self, key: object) -> bool:
        return any(d.key == key for d in self.descriptors)

    def __iter__(self):
        return iter(self.descriptors)

    def __len__(self) -> int:
        return len(self.descriptors)

    def keys(self) -> list[str]:
        return [d.key for d in self.descriptors]

    def find(self, key: str | None) -> LayerDescriptor | None:
        k = (key or "").strip()
        for d in self.descriptors:
            if d.key == k:
                return d
        return None

    def get(self, key: str) -> LayerDescriptor:
        d = self.find(key)
        if d is None:
            raise KeyError(f"Unknown layer key: {key!r}")
        return d

    def default_visible(self) -> list[str]:
        return [d.key for d in self.descriptors if d.default_visible]

    def selectable(self) -> list[str]:
        return [d.key for d in self.descriptors if d.selectable]

    def anchor_chain(self, key: str) -> list[str]:
        """
        Anchors above `key`, nearest first, ending before "top".
        """
        out: list[str] = []
        anchor = self.get(key).z_order_anchor
        while anchor != TOP:
            out.append(anchor)
            anchor = self.get(anchor).z_order_anchor
        return out

    def paint_order(self) -> list[str]:
        """
        Layer keys bottom -> top (deeper anchor chains paint lower).
        """
        depth = {d.key: len(self.anchor_chain(d.key)) for d in self.descriptors}
        return sorted(self.keys(), key=lambda k: -depth[k])


def _validate(descriptors: tuple[LayerDescriptor, ...]) -> None:
    keys: set[str] = set()
    for d in descriptors:
        if d.key in keys:
            raise ValueError(f"Duplicate layer key: {d.key}")
        keys.add(d.key)
    by_key = {d.key: d for d in descriptors}
    for d in descriptors:
        seen = {d.key}
        anchor = d.z_order_anchor
        while anchor != TOP:
            if anchor not in by_key:
                raise ValueError(f"Layer {d.key!r} is anchored to unknown layer {anchor!r}")
            if anchor in seen:
                raise ValueError(f"Anchor cycle through layer {d.key!r}")
            seen.add(anchor)
            anchor = by_key[anchor].z_order_anchor


def descriptor_from_model(m: LayerModel) -> LayerDescriptor:
    s = m.style
    src = m.source
    return LayerDescriptor(
        key=m.key,
        display_name=m.title,
        geometry_kind=m.kind,
        z_order_anchor=m.anchor,
        default_visible=m.defaultVisible,
        selectable=m.selectable,
        source=SourceSpec(
            kind=src.kind,
            layer_type=src.layerType,
            endpoints=tuple(src.endpoints),
            business_key=src.businessKey,
            filterable=src.filterable,
            normalizer=src.normalizer,
        ),
        styling_rule=StylingRule(
            color=s.color,
            opacity=s.opacity,
            color_property=s.colorProperty,
            outline_color=s.outlineColor,
            line_width=s.lineWidth,
            line_opacity=s.lineOpacity,
            line_dasharray=tuple(s.lineDasharray) if s.lineDasharray else None,
            gradient=tuple(s.gradient),
            thresholds=tuple(s.thresholds),
            circle_radius=s.circleRadius,
            label_property=s.labelProperty,
            highlight_color=s.highlightColor,
            selected_color=s.selectedColor,
            dim_factor=s.dimFactor,
        ),
    )


def build_registry(data: dict) -> LayerRegistry:
    table = LayerTableModel.model_validate(data)
    return LayerRegistry(descriptors=tuple(descriptor_from_model(m) for m in table.layers))


def load_registry(path: Path) -> LayerRegistry:
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid layer table root: {path}")
    return build_registry(data)


@lru_cache(maxsize=1)
def get_registry() -> LayerRegistry:
    return load_registry(registry_path())


def clear_registry_cache() -> None:
    """
    Drop the cached registry so a changed `PARCELMAP_LAYERS_FILE` is picked up (tests, dev).
    """
    get_registry.cache_clear()
