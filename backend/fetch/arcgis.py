from __future__ import annotations

import asyncio
import json
from typing import Any, Iterable, Sequence

import httpx
from loguru import logger

from fetch.client import FetchFailure
from geo.aoi import BBox

MAX_RECORDS = 1000
MAX_PAGES = 7
ENDPOINT_CONCURRENCY = 3


def build_query_params(bbox: BBox, *, offset: int = 0, max_records: int = MAX_RECORDS) -> dict[str, str]:
    return {
        "where": "1=1",
        "geometry": json.dumps(bbox.as_envelope(), separators=(",", ":")),
        "geometryType": "esriGeometryEnvelope",
        "inSR": "4326",
        "spatialRel": "esriSpatialRelIntersects",
        "outFields": "*",
        "outSR": "4326",
        "f": "json",
        "resultOffset": str(int(offset)),
        "resultRecordCount": str(int(max_records)),
    }


def ring_signed_area(ring: Sequence[Sequence[float]]) -> float:
    """
    Positive for clockwise rings, which Esri uses for exterior rings.
    """
    area = 0.0
    n = len(ring)
    j = n - 1
    for i in range(n):
        area += (ring[i][0] - ring[j][0]) * (ring[i][1] + ring[j][1])
        j = i
    return area / 2.0


def group_rings(rings: list[list[list[float]]]) -> list[list[list[list[float]]]]:
    """
    Split a flat Esri ring list into polygons: each exterior ring starts a new polygon and
    the holes that follow belong to it.
    """
    polygons: list[list[list[list[float]]]] = []
    current: list[list[list[float]]] | None = None
    for ring in rings:
        if ring_signed_area(ring) > 0:
            if current:
                polygons.append(current)
            current = [ring]
        elif current is not None:
            current.append(ring)
        else:
            current = [ring]
    if current:
        polygons.append(current)
    return polygons or [rings]


def esri_to_geojson(feature: dict[str, Any], geometry_type: str) -> dict[str, Any] | None:
    geom = feature.get("geometry")
    if not isinstance(geom, dict):
        return None

    if geometry_type == "esriGeometryPolyline":
        paths = geom.get("paths") or []
        if not paths:
            return None
        if len(paths) == 1:
            geometry: dict[str, Any] = {"type": "LineString", "coordinates": paths[0]}
        else:
            geometry = {"type": "MultiLineString", "coordinates": paths}
    elif geometry_type == "esriGeometryPolygon":
        rings = geom.get("rings") or []
        if not rings:
            return None
        grouped = group_rings(rings) if len(rings) > 1 else [[rings[0]]]
        if len(grouped) == 1:
            geometry = {"type": "Polygon", "coordinates": grouped[0]}
        else:
            geometry = {"type": "MultiPolygon", "coordinates": grouped}
    elif geometry_type == "esriGeometryPoint":
        x, y = geom.get("x"), geom.get("y")
        if x is None or y is None:
            return None
        geometry = {"type": "Point", "coordinates": [x, y]}
    else:
        return None

    return {
        "type": "Feature",
        "geometry": geometry,
        "properties": dict(feature.get("attributes") or {}),
    }


class ArcGISClient:
    """
    Envelope queries against ArcGIS MapServer layers, merged across several endpoints.

    A failing endpoint is logged and contributes no features; the layer fetch only fails
    when every endpoint failed.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_s: float = 15.0,
        max_pages: int = MAX_PAGES,
        max_records: int = MAX_RECORDS,
        concurrency: int = ENDPOINT_CONCURRENCY,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_s)
        self.max_pages = int(max_pages)
        self.max_records = int(max_records)
        self.concurrency = max(1, int(concurrency))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def query_endpoint(self, url: str, bbox: BBox) -> list[dict[str, Any]]:
        """
        All features of one MapServer layer intersecting `bbox` (paginated). Raises FetchFailure.
        """
        out: list[dict[str, Any]] = []
        offset = 0
        for _page in range(self.max_pages):
            data = await self._get_page(url, bbox, offset)
            raw = data.get("features") or []
            if not raw:
                break
            geom_type = data.get("geometryType") or "esriGeometryPolyline"
            for f in raw:
                gj = esri_to_geojson(f, geom_type)
                if gj is not None:
                    out.append(gj)
            if not data.get("exceededTransferLimit") and len(raw) < self.max_records:
                break
            offset += self.max_records
        return out

    async def fetch_layer(self, endpoints: Iterable[str], bbox: BBox) -> list[dict[str, Any]]:
        urls = list(endpoints)
        sem = asyncio.Semaphore(self.concurrency)

        async def run(url: str) -> list[dict[str, Any]] | None:
            async with sem:
                try:
                    return await self.query_endpoint(url, bbox)
                except FetchFailure as e:
                    logger.warning(f"ArcGIS endpoint failed: {url}: {e}")
                    return None

        results = await asyncio.gather(*(run(u) for u in urls))
        if urls and all(r is None for r in results):
            raise FetchFailure(f"All {len(urls)} ArcGIS endpoints failed")

        features = [f for r in results if r for f in r]
        logger.debug(f"ArcGIS: {len(features)} features from {len(urls)} endpoints")
        return features

    async def _get_page(self, url: str, bbox: BBox, offset: int) -> dict[str, Any]:
        params = build_query_params(bbox, offset=offset, max_records=self.max_records)
        try:
            resp = await self._client.get(f"{url.rstrip('/')}/query", params=params)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise FetchFailure(
                f"{e.response.status_code} from {url}", status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise FetchFailure(f"request to {url} failed: {e}") from e

        # Some servers answer errors with an HTML page and a 200.
        text = resp.text
        if not text or text.lstrip().startswith("<"):
            raise FetchFailure(f"non-JSON response from {url}")
        try:
            data = json.loads(text)
        except ValueError as e:
            raise FetchFailure(f"invalid JSON from {url}") from e
        if not isinstance(data, dict):
            raise FetchFailure(f"unexpected payload from {url}")
        if data.get("error"):
            err = data["error"]
            msg = err.get("message") if isinstance(err, dict) else str(err)
            raise FetchFailure(f"{url}: {msg}")
        return data
