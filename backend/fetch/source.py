from __future__ import annotations

from typing import Any, Mapping, Protocol

from fetch.arcgis import ArcGISClient
from fetch.client import FetchFailure, ProviderClient
from geo.aoi import BBox
from layers.loaders import clean_geojson_features, records_to_point_features
from layers.types import LayerDescriptor


class LayerSource(Protocol):
    async def load(
        self,
        descriptor: LayerDescriptor,
        bbox: BBox,
        filters: Mapping[str, Any] | None,
    ) -> list[dict[str, Any]]:
        """
        Raw GeoJSON features for `descriptor` inside `bbox`. Raises FetchFailure.
        """
        ...


class ProviderLayerSource:
    """
    Dispatches on `descriptor.source.kind` to the provider API or ArcGIS endpoints.
    """

    def __init__(self, provider: ProviderClient, arcgis: ArcGISClient | None = None) -> None:
        self.provider = provider
        self.arcgis = arcgis or ArcGISClient()

    async def aclose(self) -> None:
        await self.provider.aclose()
        await self.arcgis.aclose()

    async def load(
        self,
        descriptor: LayerDescriptor,
        bbox: BBox,
        filters: Mapping[str, Any] | None,
    ) -> list[dict[str, Any]]:
        src = descriptor.source
        if src.kind == "properties":
            rows = await self.provider.fetch_properties(
                bbox, filters if src.filterable else None
            )
            return records_to_point_features(rows)
        if src.kind == "layer":
            fc = await self.provider.fetch_layer(src.layer_type or descriptor.key, bbox)
            return clean_geojson_features(fc)
        if src.kind == "arcgis":
            return clean_geojson_features(await self.arcgis.fetch_layer(src.endpoints, bbox))
        raise FetchFailure(f"Unsupported source kind {src.kind!r}", layer_key=descriptor.key)
