from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class BBox:
    """
    WGS84 bounding box in lon/lat degrees.

    Convention used throughout this repo:
    - minLon, minLat, maxLon, maxLat  (== west, south, east, north)
    """

    min_lon: float
    min_lat: float
    max_lon: float
    max_lat: float

    @classmethod
    def parse(cls, raw: str) -> "BBox":
        """
        Parse the `w,s,e,n` query-string form used by the provider API.
        """
        parts = [p.strip() for p in str(raw or "").split(",")]
        if len(parts) != 4:
            raise ValueError(f"bbox must have 4 comma-separated numbers, got {raw!r}")
        w, s, e, n = (float(p) for p in parts)
        bbox = cls(min_lon=w, min_lat=s, max_lon=e, max_lat=n)
        if not bbox.is_valid():
            raise ValueError(f"Invalid bbox: {raw!r}")
        return bbox

    def is_valid(self) -> bool:
        vals = (self.min_lon, self.min_lat, self.max_lon, self.max_lat)
        if not all(isinstance(v, (int, float)) and math.isfinite(v) for v in vals):
            return False
        if self.min_lat > self.max_lat or self.min_lon > self.max_lon:
            return False
        return -90.0 <= self.min_lat and self.max_lat <= 90.0

    def normalized(self) -> "BBox":
        min_lon = min(self.min_lon, self.max_lon)
        max_lon = max(self.min_lon, self.max_lon)
        min_lat = min(self.min_lat, self.max_lat)
        max_lat = max(self.min_lat, self.max_lat)
        return BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)

    def rounded_key(self, decimals: int = 4) -> tuple[float, float, float, float]:
        """
        A stable, hashable key for caching viewport-derived fetches.

        decimals=4 is ~11m-ish in latitude, which is good enough for interactive panning.
        """
        b = self.normalized()
        return (
            round(b.min_lon, decimals),
            round(b.min_lat, decimals),
            round(b.max_lon, decimals),
            round(b.max_lat, decimals),
        )

    def as_param(self) -> str:
        return f"{self.min_lon},{self.min_lat},{self.max_lon},{self.max_lat}"

    def as_envelope(self) -> dict[str, Any]:
        # ArcGIS envelope geometry in WGS84.
        return {
            "xmin": self.min_lon,
            "ymin": self.min_lat,
            "xmax": self.max_lon,
            "ymax": self.max_lat,
            "spatialReference": {"wkid": 4326},
        }
