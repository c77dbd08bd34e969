from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from shapely.geometry import box as shapely_box
from shapely.geometry import shape
from shapely.strtree import STRtree

from geo.aoi import BBox


@dataclass
class FeatureIndex:
    """
    STRtree over GeoJSON features for bbox slicing.

    Input data is EPSG:4326 (lon/lat degrees). Results keep the input feature order.
    """

    features: list[dict[str, Any]]
    _tree: STRtree = field(repr=False)
    _slice_cache: dict[tuple[float, float, float, float], list[int]] = field(
        default_factory=dict, repr=False
    )

    def __len__(self) -> int:
        return len(self.features)

    def query_bbox(self, aoi: BBox, *, decimals: int = 4) -> list[dict[str, Any]]:
        key = aoi.rounded_key(decimals)
        idxs = self._slice_cache.get(key)
        if idxs is None:
            b = aoi.normalized()
            bbox = shapely_box(b.min_lon, b.min_lat, b.max_lon, b.max_lat)
            idxs = sorted(_to_int_list(self._tree.query(bbox, predicate="intersects")))
            _bounded_cache_put(self._slice_cache, key, idxs, max_items=64)
        return [self.features[i] for i in idxs]


def build_feature_index(features: list[dict[str, Any]]) -> FeatureIndex:
    geoms = [shape(f["geometry"]) for f in features]
    return FeatureIndex(features=list(features), _tree=STRtree(geoms))


def _to_int_list(idxs: Any) -> list[int]:
    if idxs is None:
        return []
    return [int(i) for i in idxs]


def _bounded_cache_put(cache: dict, key, value, *, max_items: int) -> None:
    cache[key] = value
    if len(cache) > max_items:
        oldest = next(iter(cache.keys()))
        if oldest != key:
            cache.pop(oldest, None)
