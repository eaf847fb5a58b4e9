"""
Value types shared by every engine module.

All types are created per call and are immutable, except where a field holds
a list that the producing function fills before returning it.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from numbers import Real
from typing import Any, Generic, List, Optional, Tuple, TypeVar

from shared.constants import LAT_RANGE, LNG_RANGE

T = TypeVar("T")


class CoordinateSystem(str, Enum):
    WGS84 = "wgs84"
    GCJ02 = "gcj02"
    BD09LL = "bd09ll"
    BD09MC = "bd09mc"


class ErrorKind(str, Enum):
    INVALID_PARAMETER = "INVALID_PARAMETER"
    OUT_OF_RANGE = "OUT_OF_RANGE"
    UNSUPPORTED_CONVERSION = "UNSUPPORTED_CONVERSION"


class EngineError(ValueError):
    """Validation failure carrying an ErrorKind.

    str(err) reads "<KIND>: <message>", the same shape the HTTP layer puts in
    its error detail.
    """

    def __init__(self, kind: ErrorKind, message: str):
        self.kind = kind
        self.message = message
        super().__init__(f"{kind.value}: {message}")


@dataclass(frozen=True)
class Coordinate:
    latitude: float
    longitude: float

    def as_tuple(self) -> Tuple[float, float]:
        return self.latitude, self.longitude


@dataclass(frozen=True)
class ConversionResult:
    coordinate: Optional[Coordinate]
    success: bool
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None

    @classmethod
    def ok(cls, coordinate: Coordinate) -> "ConversionResult":
        return cls(coordinate=coordinate, success=True)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str,
                coordinate: Optional[Coordinate] = None) -> "ConversionResult":
        return cls(coordinate=coordinate, success=False,
                   error=f"{kind.value}: {message}", error_kind=kind)


@dataclass(frozen=True)
class MarkerItem(Generic[T]):
    coordinate: Coordinate
    payload: T = None


@dataclass(frozen=True)
class Cluster(Generic[T]):
    center: Coordinate
    members: List[MarkerItem[T]] = field(default_factory=list)
    is_cluster: bool = False

    @property
    def count(self) -> int:
        return len(self.members)


@dataclass(frozen=True)
class ViewportBounds:
    north: float
    south: float
    east: float
    west: float

    @property
    def is_valid(self) -> bool:
        return self.north >= self.south and self.east >= self.west

    def expanded(self, buffer: float) -> "ViewportBounds":
        return ViewportBounds(
            north=self.north + buffer,
            south=self.south - buffer,
            east=self.east + buffer,
            west=self.west - buffer,
        )

    def contains(self, coordinate: Coordinate) -> bool:
        """Inclusive on all four edges; an inverted bounds contains nothing."""
        if not self.is_valid:
            return False
        return (self.south <= coordinate.latitude <= self.north
                and self.west <= coordinate.longitude <= self.east)


@dataclass(frozen=True)
class Region:
    """Center + span description of a map viewport."""
    latitude: float
    longitude: float
    latitude_delta: float
    longitude_delta: float

    def to_bounds(self) -> ViewportBounds:
        half_lat = self.latitude_delta / 2
        half_lng = self.longitude_delta / 2
        return ViewportBounds(
            north=self.latitude + half_lat,
            south=self.latitude - half_lat,
            east=self.longitude + half_lng,
            west=self.longitude - half_lng,
        )


@dataclass(frozen=True)
class LODLevel:
    min_zoom: float
    max_zoom: float
    max_items: int
    cluster_threshold: int
    simplification: float = 0.0

    def __post_init__(self):
        if not 0.0 <= self.simplification <= 1.0:
            raise EngineError(ErrorKind.OUT_OF_RANGE,
                              f"simplification must be within [0, 1], got {self.simplification}")
        if self.min_zoom > self.max_zoom:
            raise EngineError(ErrorKind.INVALID_PARAMETER,
                              f"min_zoom {self.min_zoom} exceeds max_zoom {self.max_zoom}")

    def contains(self, zoom: float) -> bool:
        return self.min_zoom <= zoom <= self.max_zoom


@dataclass(frozen=True)
class LODResult:
    items: list
    level: LODLevel
    clustered: bool


@dataclass(frozen=True)
class VirtualizationResult:
    visible: list
    total: int
    start_index: int
    end_index: int
    bounds: ViewportBounds


@dataclass(frozen=True)
class FrameSample:
    frame_time_ms: float
    fps: float
    timestamp: float
    dropped_frames: int = 0


@dataclass(frozen=True)
class PerformanceStats:
    current_fps: float
    average_fps: float
    dropped_frames: int
    frame_count: int
    is_performance_good: bool
    recommendations: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class PerformanceSnapshot:
    timestamp: float
    fps: float
    memory_mb: float
    render_time_ms: float


@dataclass(frozen=True)
class PerformanceReport:
    average_fps: float
    average_memory_mb: float
    average_render_time_ms: float
    score: float                  # 0-100
    fps_trend: str                # improving | stable | declining
    memory_trend: str
    recommendations: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class TileCoordinate:
    x: int
    y: int
    z: int


@dataclass(frozen=True)
class OptimizationResult:
    visible: list
    virtualization: VirtualizationResult
    lod: LODResult
    original_count: int
    optimized_count: int
    reduction_ratio: float
    processing_time_ms: float


# ─── Validation helpers ────────────────────────────────────

def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _read_lat_lng(obj: Any) -> Tuple[Any, Any]:
    if isinstance(obj, Coordinate):
        return obj.latitude, obj.longitude
    if isinstance(obj, dict):
        return obj.get("latitude"), obj.get("longitude")
    return getattr(obj, "latitude", None), getattr(obj, "longitude", None)


def validate_coordinate(obj: Any) -> Coordinate:
    """
    Build a Coordinate from a Coordinate, a mapping or any object exposing
    latitude/longitude. Raises EngineError; never clamps.
    """
    if obj is None:
        raise EngineError(ErrorKind.INVALID_PARAMETER, "coordinate is required")

    lat, lng = _read_lat_lng(obj)
    if not _is_number(lat) or not _is_number(lng):
        raise EngineError(ErrorKind.INVALID_PARAMETER, "latitude and longitude must be numbers")

    lat, lng = float(lat), float(lng)
    if math.isnan(lat) or math.isnan(lng):
        raise EngineError(ErrorKind.INVALID_PARAMETER, "latitude and longitude must not be NaN")

    if not (LAT_RANGE[0] <= lat <= LAT_RANGE[1]) or not (LNG_RANGE[0] <= lng <= LNG_RANGE[1]):
        raise EngineError(ErrorKind.OUT_OF_RANGE,
                          f"({lat}, {lng}) is outside latitude [-90, 90] / longitude [-180, 180]")

    if isinstance(obj, Coordinate):
        return obj
    return Coordinate(latitude=lat, longitude=lng)


def coordinate_of(item: Any) -> Optional[Coordinate]:
    """
    Position of a marker-like item, or None when it has no usable coordinate.

    Understands MarkerItem / anything with `.coordinate`, Cluster (`.center`),
    bare Coordinates and mappings carrying either a "coordinate" entry or
    latitude/longitude keys.
    """
    if item is None:
        return None
    if isinstance(item, Coordinate):
        candidate = item
    elif isinstance(item, Cluster):
        candidate = item.center
    elif isinstance(item, dict):
        candidate = item.get("coordinate", item)
    else:
        candidate = getattr(item, "coordinate", item)

    try:
        return validate_coordinate(candidate)
    except EngineError:
        return None
