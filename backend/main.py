from __future__ import annotations

from dataclasses import asdict

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from commands.parser import parse as parse_command
from engine.log import configure_logging
from geo.aoi import BBox
from layers.normalize import FLOOD_RISK_COLORS, zoning_legend
from layers.registry import get_registry
from provider.dataset import get_dataset
from provider.filters import parse_filter_params
from telemetry.singleton import get_store

configure_logging()

app = FastAPI(title="parcel-map-sync")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ApiCommand(BaseModel):
    text: str


def _parse_bbox(raw: str) -> BBox:
    try:
        aoi = BBox.parse(raw)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    if not aoi.is_valid():
        raise HTTPException(status_code=422, detail=f"Invalid bbox: {raw!r}")
    return aoi


@app.get("/layers")
def list_layers():
    return [
        {
            "key": d.key,
            "title": d.display_name,
            "kind": d.geometry_kind,
            "source": d.source.kind,
            "layerType": d.source.layer_type,
            "anchor": d.z_order_anchor,
            "defaultVisible": d.default_visible,
            "selectable": d.selectable,
        }
        for d in get_registry()
    ]


@app.get("/layers/{layer_type}")
def get_layer(layer_type: str, bbox: str = Query(...)):
    fc = get_dataset().layer(layer_type, _parse_bbox(bbox))
    if fc is None:
        raise HTTPException(status_code=404, detail=f"Unknown layer type: {layer_type!r}")
    return fc


@app.get("/properties")
def get_properties(request: Request, bbox: str = Query(...)):
    filters = parse_filter_params(
        {k: v for k, v in request.query_params.items() if k != "bbox"}
    )
    return {"properties": get_dataset().properties(_parse_bbox(bbox), filters)}


@app.get("/property/{business_key}")
def get_property(business_key: str):
    rec = get_dataset().property(business_key)
    if rec is None:
        raise HTTPException(status_code=404, detail=f"Unknown property: {business_key!r}")
    return rec


@app.get("/legend")
def get_legend():
    return {"zoning": zoning_legend(), "flood": dict(FLOOD_RISK_COLORS)}


@app.post("/commands/parse")
def post_command(body: ApiCommand):
    intent = parse_command(body.text)
    return {"intent": asdict(intent) if intent is not None else None}


@app.get("/telemetry/summary")
def telemetry_summary(layerKey: str | None = None, sinceMs: int | None = None):
    store = get_store()
    if store is None:
        return []
    return store.summary(layer_key=layerKey, since_ms=sinceMs)


@app.get("/telemetry/slowest")
def telemetry_slowest(layerKey: str | None = None, limit: int = 25):
    store = get_store()
    if store is None:
        return []
    return store.slowest(layer_key=layerKey, limit=limit)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8000)
