from __future__ import annotations

from typing import Any, Mapping

import httpx
from loguru import logger

from fetch.filters import filters_to_params
from geo.aoi import BBox


class FetchFailure(Exception):
    """
    A provider request failed (network error, non-2xx status or an undecodable payload).
    """

    def __init__(
        self,
        message: str,
        *,
        layer_key: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.layer_key = layer_key
        self.status_code = status_code


class ProviderClient:
    """
    Async client for the property data provider:

    - GET /properties?bbox=w,s,e,n&<filters>  -> {properties: [...]} or [...]
    - GET /property/{businessKey}             -> record
    - GET /layers/{layerType}?bbox=w,s,e,n    -> GeoJSON FeatureCollection
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout_s: float = 15.0,
        client: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout_s, transport=transport
        )

    async def __aenter__(self) -> "ProviderClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_properties(
        self, bbox: BBox, filters: Mapping[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        params = {"bbox": bbox.as_param(), **filters_to_params(filters)}
        data = await self._get_json("/properties", params=params)
        if isinstance(data, Mapping):
            rows = data.get("properties") or []
        else:
            rows = data
        if not isinstance(rows, list):
            raise FetchFailure("Unexpected /properties payload shape")
        return [r for r in rows if isinstance(r, Mapping)]

    async def fetch_property(self, business_key: str) -> dict[str, Any]:
        data = await self._get_json(f"/property/{business_key}")
        if not isinstance(data, Mapping):
            raise FetchFailure(f"Unexpected /property/{business_key} payload shape")
        return dict(data)

    async def fetch_layer(self, layer_type: str, bbox: BBox) -> dict[str, Any]:
        data = await self._get_json(f"/layers/{layer_type}", params={"bbox": bbox.as_param()})
        if not isinstance(data, Mapping) or not isinstance(data.get("features"), list):
            raise FetchFailure(f"Unexpected /layers/{layer_type} payload shape")
        return dict(data)

    async def _get_json(self, path: str, *, params: Mapping[str, str] | None = None) -> Any:
        try:
            resp = await self._client.get(path, params=params)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            code = e.response.status_code
            logger.warning(f"Provider request failed: GET {path} -> {code}")
            raise FetchFailure(f"GET {path} returned {code}", status_code=code) from e
        except httpx.HTTPError as e:
            logger.warning(f"Provider request failed: GET {path}: {e}")
            raise FetchFailure(f"GET {path} failed: {e}") from e
        try:
            return resp.json()
        except ValueError as e:
            raise FetchFailure(f"GET {path} returned invalid JSON") from e
