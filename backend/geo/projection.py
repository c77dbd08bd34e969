from __future__ import annotations

import math
from functools import lru_cache

from pyproj import Transformer

from geo.aoi import BBox

# Web Mercator is undefined at the poles.
MERCATOR_MAX_LAT = 85.05112878


@lru_cache(maxsize=1)
def transformer_4326_to_3857() -> Transformer:
    return Transformer.from_crs("EPSG:4326", "EPSG:3857", always_xy=True)


def to_3857(lon: float, lat: float) -> tuple[float, float]:
    lat = max(-MERCATOR_MAX_LAT, min(MERCATOR_MAX_LAT, float(lat)))
    x, y = transformer_4326_to_3857().transform(float(lon), lat)
    return float(x), float(y)


def max_corner_shift_m(a: BBox, b: BBox) -> float:
    """
    Largest displacement (EPSG:3857 metres, approx) between matching corners of two boxes.
    """
    out = 0.0
    for (lon_a, lat_a), (lon_b, lat_b) in (
        ((a.min_lon, a.min_lat), (b.min_lon, b.min_lat)),
        ((a.max_lon, a.max_lat), (b.max_lon, b.max_lat)),
    ):
        xa, ya = to_3857(lon_a, lat_a)
        xb, yb = to_3857(lon_b, lat_b)
        out = max(out, math.hypot(xa - xb, ya - yb))
    return out
