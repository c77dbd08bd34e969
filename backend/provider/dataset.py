from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from loguru import logger
from shapely.geometry import shape

from geo.aoi import BBox
from geo.index import FeatureIndex, build_feature_index
from layers.loaders import load_geojson_file, records_to_point_features
from layers.types import business_key_str
from provider.filters import record_matches

PROPERTY_LAYER = "parcels"
PROPERTY_KEY_FIELD = "attom_id"


def data_dir() -> Path:
    env = os.getenv("PARCELMAP_PROVIDER_DATA")
    if env:
        return Path(env)
    return Path(__file__).resolve().parent / "data"


def _property_record(feature: Mapping[str, Any]) -> dict[str, Any] | None:
    props = dict(feature.get("properties") or {})
    key = business_key_str(props.get(PROPERTY_KEY_FIELD))
    if key is None:
        return None
    c = shape(feature["geometry"]).centroid
    rec = {k: v for k, v in props.items() if k != PROPERTY_KEY_FIELD}
    rec["attomId"] = key
    rec["longitude"] = round(float(c.x), 6)
    rec["latitude"] = round(float(c.y), 6)
    return rec


@dataclass
class ProviderDataset:
    """
    Reference data behind the provider API: one GeoJSON file per layer type.

    Property records are derived from the parcel polygons (centroid + attributes).
    """

    layers: dict[str, FeatureIndex]
    records: dict[str, dict[str, Any]]
    record_index: FeatureIndex

    def layer_types(self) -> list[str]:
        return sorted(self.layers.keys())

    def layer(self, layer_type: str, aoi: BBox) -> dict[str, Any] | None:
        idx = self.layers.get(layer_type)
        if idx is None:
            return None
        return {"type": "FeatureCollection", "features": idx.query_bbox(aoi)}

    def properties(self, aoi: BBox, filters: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for f in self.record_index.query_bbox(aoi):
            rec = f["properties"]
            if filters and not record_matches(rec, filters):
                continue
            out.append(rec)
        return out

    def property(self, business_key: str) -> dict[str, Any] | None:
        return self.records.get(str(business_key))


def load_dataset(path: Path) -> ProviderDataset:
    layers: dict[str, FeatureIndex] = {}
    for p in sorted(path.glob("*.geojson")):
        layers[p.stem] = build_feature_index(load_geojson_file(p))

    records: dict[str, dict[str, Any]] = {}
    parcels = layers.get(PROPERTY_LAYER)
    for f in parcels.features if parcels is not None else []:
        rec = _property_record(f)
        if rec is not None:
            records[rec["attomId"]] = rec

    logger.info(
        f"Provider dataset loaded from {path}: layers={sorted(layers)} properties={len(records)}"
    )
    return ProviderDataset(
        layers=layers,
        records=records,
        record_index=build_feature_index(records_to_point_features(records.values())),
    )


@lru_cache(maxsize=1)
def get_dataset() -> ProviderDataset:
    return load_dataset(data_dir())


def clear_dataset_cache() -> None:
    get_dataset.cache_clear()
