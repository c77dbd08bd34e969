from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping

from shapely.errors import ShapelyError
from shapely.geometry import shape

from layers.types import Feature, FeatureCollectionGeneration, business_key_str

_GEOMETRY_TYPES = {
    "Point",
    "MultiPoint",
    "LineString",
    "MultiLineString",
    "Polygon",
    "MultiPolygon",
}


def load_geojson_file(path: Path) -> list[dict[str, Any]]:
    data = json.loads(path.read_text(encoding="utf-8"))
    return clean_geojson_features(data)


def clean_geojson_features(data: Any) -> list[dict[str, Any]]:
    """
    Features of a GeoJSON FeatureCollection (or bare feature list) with a usable geometry.

    Features without geometry, with an unknown type or with coordinates shapely refuses are
    dropped.
    """
    if isinstance(data, Mapping):
        raw = data.get("features") or []
    elif isinstance(data, list):
        raw = data
    else:
        return []

    out: list[dict[str, Any]] = []
    for f in raw:
        if not isinstance(f, Mapping):
            continue
        geom = f.get("geometry")
        if not isinstance(geom, Mapping) or geom.get("type") not in _GEOMETRY_TYPES:
            continue
        if not geom.get("coordinates"):
            continue
        try:
            g = shape(geom)
        except (ShapelyError, ValueError, TypeError, IndexError):
            continue
        if g.is_empty:
            continue
        props = f.get("properties")
        out.append(
            {
                "type": "Feature",
                "geometry": dict(geom),
                "properties": dict(props) if isinstance(props, Mapping) else {},
            }
        )
    return out


def records_to_point_features(records: Iterable[Any]) -> list[dict[str, Any]]:
    """
    Provider property records -> GeoJSON point features (records without a location are skipped).
    """
    out: list[dict[str, Any]] = []
    for rec in records or []:
        if not isinstance(rec, Mapping):
            continue
        lon = _first_number(rec, ("longitude", "lon", "lng"))
        lat = _first_number(rec, ("latitude", "lat"))
        if lon is None or lat is None:
            continue
        out.append(
            {
                "type": "Feature",
                "geometry": {"type": "Point", "coordinates": [lon, lat]},
                "properties": dict(rec),
            }
        )
    return out


def _first_number(rec: Mapping[str, Any], keys: tuple[str, ...]) -> float | None:
    for k in keys:
        v = rec.get(k)
        if v is None or isinstance(v, bool):
            continue
        try:
            return float(v)
        except (TypeError, ValueError):
            continue
    return None


def mint_generation(
    layer_key: str,
    generation_id: int,
    features: Iterable[Mapping[str, Any]],
    *,
    business_key_field: str | None,
) -> FeatureCollectionGeneration:
    """
    Assign positional ids 0..n-1 in input order and resolve business keys.
    """
    out: list[Feature] = []
    for i, f in enumerate(features):
        props = dict(f.get("properties") or {})
        bk = business_key_str(props.get(business_key_field)) if business_key_field else None
        out.append(
            Feature(
                positional_id=i,
                business_key=bk,
                geometry=dict(f.get("geometry") or {}),
                attributes=props,
            )
        )
    return FeatureCollectionGeneration(
        layer_key=layer_key, generation_id=int(generation_id), features=tuple(out)
    )
