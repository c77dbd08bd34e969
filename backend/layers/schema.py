from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, model_validator

GeometryKind = Literal["point", "line", "fill"]
SourceKind = Literal["properties", "layer", "arcgis"]
NormalizerKind = Literal["zoning", "flood", "diameter"]


class LayerStyleModel(BaseModel):
    color: str
    opacity: float = Field(default=0.35, ge=0.0, le=1.0)
    colorProperty: str | None = None
    outlineColor: str | None = None
    lineWidth: float = Field(default=1.5, gt=0.0)
    lineOpacity: float = Field(default=0.8, ge=0.0, le=1.0)
    lineDasharray: list[float] | None = None
    gradient: list[str] = Field(default_factory=list)
    thresholds: list[float] = Field(default_factory=list)
    circleRadius: float = Field(default=6.0, gt=0.0)
    labelProperty: str | None = None
    highlightColor: str = "#ef4444"
    selectedColor: str = "#ef4444"
    dimFactor: float = Field(default=0.3, ge=0.0, le=1.0)

    @model_validator(mode="after")
    def _gradient_matches_thresholds(self) -> "LayerStyleModel":
        if len(self.gradient) != len(self.thresholds):
            raise ValueError("style.gradient and style.thresholds must have the same length")
        return self


class LayerSourceModel(BaseModel):
    kind: SourceKind
    layerType: str | None = None
    endpoints: list[str] = Field(default_factory=list)
    businessKey: str | None = None
    filterable: bool = False
    normalizer: NormalizerKind | None = None

    @model_validator(mode="after")
    def _kind_has_location(self) -> "LayerSourceModel":
        if self.kind == "layer" and not self.layerType:
            raise ValueError("source.kind=layer requires `layerType`")
        if self.kind == "arcgis" and not self.endpoints:
            raise ValueError("source.kind=arcgis requires at least one endpoint")
        return self


class LayerModel(BaseModel):
    """
    One row of the layer table.

    `anchor` is the key of the layer this one is painted directly below, or "top".
    """

    key: str
    title: str
    kind: GeometryKind
    anchor: str = "top"
    defaultVisible: bool = False
    selectable: bool = False
    source: LayerSourceModel
    style: LayerStyleModel


class LayerTableModel(BaseModel):
    layers: list[LayerModel]
