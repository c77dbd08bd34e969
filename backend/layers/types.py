from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

GeometryKind = Literal["point", "line", "fill"]
SourceKind = Literal["properties", "layer", "arcgis"]
NormalizerKind = Literal["zoning", "flood", "diameter"]

# Anchor value meaning "insert above everything this engine manages".
TOP = "top"


@dataclass(frozen=True)
class StylingRule:
    color: str
    opacity: float = 0.35
    # Feature attribute carrying a normalized colour (e.g. `_zone_color`), falls back to `color`.
    color_property: str | None = None
    outline_color: str | None = None
    line_width: float = 1.5
    line_opacity: float = 0.8
    line_dasharray: tuple[float, ...] | None = None
    # Diameter-graded line colours: `gradient[i]` applies from `thresholds[i]` upwards.
    gradient: tuple[str, ...] = ()
    thresholds: tuple[float, ...] = ()
    circle_radius: float = 6.0
    label_property: str | None = None
    highlight_color: str = "#ef4444"
    selected_color: str = "#ef4444"
    dim_factor: float = 0.3


@dataclass(frozen=True)
class SourceSpec:
    kind: SourceKind
    # `/layers/:layerType` for kind=layer.
    layer_type: str | None = None
    # ArcGIS MapServer layer URLs for kind=arcgis.
    endpoints: tuple[str, ...] = ()
    business_key: str | None = None
    filterable: bool = False
    normalizer: NormalizerKind | None = None


@dataclass(frozen=True)
class LayerDescriptor:
    """
    Static description of one logical layer. Built once from the registry table.
    """

    key: str
    display_name: str
    geometry_kind: GeometryKind
    styling_rule: StylingRule
    source: SourceSpec
    z_order_anchor: str = TOP
    default_visible: bool = False
    # Participates in selection / highlight / filter-match reconciliation.
    selectable: bool = False


@dataclass(frozen=True)
class Feature:
    positional_id: int
    business_key: str | None
    geometry: dict[str, Any]
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class FeatureCollectionGeneration:
    """
    One fetched snapshot of a layer. Positional ids are only meaningful within it.
    """

    layer_key: str
    generation_id: int
    features: tuple[Feature, ...]

    def __len__(self) -> int:
        return len(self.features)

    def business_key_index(self) -> dict[str, tuple[int, ...]]:
        out: dict[str, list[int]] = {}
        for f in self.features:
            if f.business_key is None:
                continue
            out.setdefault(f.business_key, []).append(f.positional_id)
        return {k: tuple(v) for k, v in out.items()}

    def business_key_at(self, positional_id: int) -> str | None:
        if 0 <= positional_id < len(self.features):
            return self.features[positional_id].business_key
        return None

    def to_geojson(self) -> dict[str, Any]:
        return {
            "type": "FeatureCollection",
            "features": [
                {
                    "type": "Feature",
                    # The surface keys feature state on this numeric id.
                    "id": f.positional_id,
                    "geometry": f.geometry,
                    "properties": f.attributes,
                }
                for f in self.features
            ],
        }


def empty_feature_collection() -> dict[str, Any]:
    return {"type": "FeatureCollection", "features": []}


def business_key_str(value: Any) -> str | None:
    """
    Canonical string form of a business key: 123, 123.0 and "123" are the same parcel.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if value != value:
            return None
        if value.is_integer():
            return str(int(value))
        return str(value)
    if isinstance(value, int):
        return str(value)
    s = str(value).strip()
    return s or None
