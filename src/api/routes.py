"""
Spatial engine HTTP API

엔드포인트:
    POST /api/v1/convert
    POST /api/v1/convert/batch
    POST /api/v1/distance
    POST /api/v1/cluster
    POST /api/v1/optimize
    POST /api/v1/tiles/preload
    GET  /api/v1/stats
"""

import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from engine.metrics import geodesic_m, haversine_m
from engine.session import SpatialEngine
from engine.tiles import calculate_preload_tiles
from engine.transform import calculate_distance
from shared.types import (
    Cluster,
    ConversionResult,
    Coordinate,
    CoordinateSystem,
    EngineError,
    ErrorKind,
    MarkerItem,
    ViewportBounds,
    validate_coordinate,
)

logger = logging.getLogger("api")

router = APIRouter(prefix="/api/v1", tags=["spatial"])

_STATUS_BY_KIND = {
    ErrorKind.INVALID_PARAMETER: 400,
    ErrorKind.UNSUPPORTED_CONVERSION: 400,
    ErrorKind.OUT_OF_RANGE: 422,
}


def get_engine(request: Request) -> SpatialEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        engine = SpatialEngine()
        request.app.state.engine = engine
    return engine


# ─── Schemas ───────────────────────────────────────────────

class CoordinateIn(BaseModel):
    latitude: Any = Field(..., description="위도 (-90~90)")
    longitude: Any = Field(..., description="경도 (-180~180)")


class ConvertRequest(CoordinateIn):
    source: CoordinateSystem = CoordinateSystem.WGS84
    target: CoordinateSystem = CoordinateSystem.GCJ02


class BatchConvertRequest(BaseModel):
    coordinates: List[CoordinateIn]
    source: CoordinateSystem = CoordinateSystem.WGS84
    target: CoordinateSystem = CoordinateSystem.GCJ02


class DistanceRequest(BaseModel):
    a: CoordinateIn
    b: CoordinateIn


class MarkerIn(BaseModel):
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    payload: Any = None


class ClusterRequest(BaseModel):
    markers: List[MarkerIn]
    zoom: float = Field(..., ge=0, le=25)
    radius_px: Optional[float] = Field(None, gt=0)


class BoundsIn(BaseModel):
    north: float
    south: float
    east: float
    west: float


class OptimizeRequest(BaseModel):
    markers: List[MarkerIn]
    bounds: BoundsIn
    zoom: float = Field(..., ge=0, le=25)
    buffer: float = Field(0.0, ge=0)


class PreloadRequest(BaseModel):
    center: CoordinateIn
    zoom: int = Field(..., ge=0, le=22)
    width: int = Field(..., gt=0)
    height: int = Field(..., gt=0)
    preload_radius: int = Field(1, ge=0, le=5)


# ─── Helpers ───────────────────────────────────────────────

def _elapsed_meta(start_ms: float) -> Dict[str, int]:
    return {"processing_time_ms": int(time.time() * 1000 - start_ms)}


def _coord_dict(c: Optional[Coordinate]) -> Optional[Dict[str, float]]:
    if c is None:
        return None
    return {"latitude": c.latitude, "longitude": c.longitude}


def _result_dict(r: ConversionResult) -> Dict[str, Any]:
    return {"success": r.success, "coordinate": _coord_dict(r.coordinate), "error": r.error}


def _to_marker(m: MarkerIn) -> MarkerItem:
    coord = None
    if m.latitude is not None and m.longitude is not None:
        coord = Coordinate(latitude=m.latitude, longitude=m.longitude)
    return MarkerItem(coordinate=coord, payload=m.payload)


def _item_dict(item: Any) -> Dict[str, Any]:
    if isinstance(item, Cluster):
        return {
            "center": _coord_dict(item.center),
            "count": item.count,
            "is_cluster": item.is_cluster,
            "payloads": [m.payload for m in item.members],
        }
    return {"coordinate": _coord_dict(item.coordinate), "payload": item.payload}


def _require_coordinate(c: CoordinateIn) -> Coordinate:
    try:
        return validate_coordinate(c.model_dump())
    except EngineError as e:
        raise HTTPException(status_code=_STATUS_BY_KIND[e.kind], detail=str(e))


# ─── Routes ────────────────────────────────────────────────

@router.post("/convert")
def convert_endpoint(req: ConvertRequest, engine: SpatialEngine = Depends(get_engine)):
    start_ms = time.time() * 1000
    result = engine.convert(req.model_dump(include={"latitude", "longitude"}), req.source, req.target)
    if not result.success:
        logger.info(f"Conversion rejected: {result.error}")
        raise HTTPException(status_code=_STATUS_BY_KIND.get(result.error_kind, 400), detail=result.error)

    return {
        "success": True,
        "data": {
            "input": {"latitude": req.latitude, "longitude": req.longitude, "system": req.source.value},
            "output": {**_coord_dict(result.coordinate), "system": req.target.value},
        },
        "meta": _elapsed_meta(start_ms),
    }


@router.post("/convert/batch")
def convert_batch_endpoint(req: BatchConvertRequest, engine: SpatialEngine = Depends(get_engine)):
    """일괄 변환. 개별 실패는 결과에 담기고 전체 요청은 실패하지 않음."""
    start_ms = time.time() * 1000
    results = engine.convert_batch([c.model_dump() for c in req.coordinates], req.source, req.target)
    failed = sum(1 for r in results if not r.success)
    return {
        "success": True,
        "data": {
            "results": [_result_dict(r) for r in results],
            "summary": {"total": len(results), "failed": failed},
        },
        "meta": _elapsed_meta(start_ms),
    }


@router.post("/distance")
def distance_endpoint(req: DistanceRequest):
    a = _require_coordinate(req.a)
    b = _require_coordinate(req.b)
    return {
        "success": True,
        "data": {
            "haversine_m": haversine_m(a.latitude, a.longitude, b.latitude, b.longitude),
            "krasovsky_m": calculate_distance(a, b),
            "geodesic_m": geodesic_m(a, b),
        },
    }


@router.post("/cluster")
def cluster_endpoint(req: ClusterRequest, engine: SpatialEngine = Depends(get_engine)):
    start_ms = time.time() * 1000
    clusters = engine.cluster([_to_marker(m) for m in req.markers], req.zoom, req.radius_px)
    return {
        "success": True,
        "data": {"clusters": [_item_dict(c) for c in clusters], "total": len(clusters)},
        "meta": _elapsed_meta(start_ms),
    }


@router.post("/optimize")
def optimize_endpoint(req: OptimizeRequest, engine: SpatialEngine = Depends(get_engine)):
    start_ms = time.time() * 1000
    bounds = ViewportBounds(**req.bounds.model_dump())
    result = engine.optimize([_to_marker(m) for m in req.markers], bounds, req.zoom, buffer=req.buffer)
    window = result.virtualization
    return {
        "success": True,
        "data": {
            "visible": [_item_dict(item) for item in result.visible],
            "clustered": result.lod.clustered,
            "lod_level": {"min_zoom": result.lod.level.min_zoom, "max_zoom": result.lod.level.max_zoom},
            "window": {"total": window.total, "start_index": window.start_index,
                       "end_index": window.end_index},
            "summary": {
                "original_count": result.original_count,
                "optimized_count": result.optimized_count,
                "reduction_ratio": result.reduction_ratio,
            },
        },
        "meta": _elapsed_meta(start_ms),
    }


@router.post("/tiles/preload")
def preload_tiles_endpoint(req: PreloadRequest):
    center = _require_coordinate(req.center)
    tiles = calculate_preload_tiles(center, req.zoom, req.width, req.height, req.preload_radius)
    return {
        "success": True,
        "data": {"tiles": [{"x": t.x, "y": t.y, "z": t.z} for t in tiles], "total": len(tiles)},
    }


@router.get("/stats")
def stats_endpoint(engine: SpatialEngine = Depends(get_engine)):
    return {"success": True, "data": engine.stats()}
