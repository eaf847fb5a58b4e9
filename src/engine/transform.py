"""
Coordinate conversion between WGS84, GCJ02 and BD09LL.

WGS84 <-> GCJ02 uses the published offset polynomial (no-op outside the
China bounding box); GCJ02 <-> BD09LL is a small polar perturbation.
WGS84 <-> BD09LL chains through GCJ02. BD09MC (projected meters) is not
supported by the pure algorithm.

The inverse directions are one-way approximations, not exact inverses:
a round trip lands a few meters (well under 1e-4 degrees) from the start point.

Usage:
    from engine.transform import convert
    from shared.types import Coordinate, CoordinateSystem

    result = convert(Coordinate(39.915, 116.404), CoordinateSystem.BD09LL, CoordinateSystem.GCJ02)
    # → ConversionResult(coordinate=Coordinate(39.909..., 116.397...), success=True)
"""

import logging
from typing import Any, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

import numpy as np

from shared.constants import (
    BD09_LAT_OFFSET,
    BD09_LNG_OFFSET,
    CHINA_LAT_RANGE,
    CHINA_LNG_RANGE,
    GCJ02_EE,
    KRASOVSKY_RADIUS_M,
    X_PI,
)
from shared.types import (
    ConversionResult,
    Coordinate,
    CoordinateSystem,
    EngineError,
    ErrorKind,
    validate_coordinate,
)
from engine.metrics import haversine_m

logger = logging.getLogger("Transform")

SystemLike = Union[CoordinateSystem, str]

# ─── Core math (works on floats and numpy arrays alike) ────

def _transform_lat(x, y):
    ret = -100.0 + 2.0 * x + 3.0 * y + 0.2 * y * y + 0.1 * x * y + 0.2 * np.sqrt(np.abs(x))
    ret += (20.0 * np.sin(6.0 * x * np.pi) + 20.0 * np.sin(2.0 * x * np.pi)) * 2.0 / 3.0
    ret += (20.0 * np.sin(y * np.pi) + 40.0 * np.sin(y / 3.0 * np.pi)) * 2.0 / 3.0
    ret += (160.0 * np.sin(y / 12.0 * np.pi) + 320 * np.sin(y * np.pi / 30.0)) * 2.0 / 3.0
    return ret


def _transform_lng(x, y):
    ret = 300.0 + x + 2.0 * y + 0.1 * x * x + 0.1 * x * y + 0.1 * np.sqrt(np.abs(x))
    ret += (20.0 * np.sin(6.0 * x * np.pi) + 20.0 * np.sin(2.0 * x * np.pi)) * 2.0 / 3.0
    ret += (20.0 * np.sin(x * np.pi) + 40.0 * np.sin(x / 3.0 * np.pi)) * 2.0 / 3.0
    ret += (150.0 * np.sin(x / 12.0 * np.pi) + 300.0 * np.sin(x / 30.0 * np.pi)) * 2.0 / 3.0
    return ret


def _gcj02_delta(lat, lng):
    """(dLat, dLng) offset in degrees at the given point."""
    d_lat = _transform_lat(lng - 105.0, lat - 35.0)
    d_lng = _transform_lng(lng - 105.0, lat - 35.0)

    rad_lat = lat / 180.0 * np.pi
    magic = np.sin(rad_lat)
    magic = 1 - GCJ02_EE * magic * magic
    sqrt_magic = np.sqrt(magic)

    d_lat = (d_lat * 180.0) / ((KRASOVSKY_RADIUS_M * (1 - GCJ02_EE)) / (magic * sqrt_magic) * np.pi)
    d_lng = (d_lng * 180.0) / (KRASOVSKY_RADIUS_M / sqrt_magic * np.cos(rad_lat) * np.pi)
    return d_lat, d_lng


def _in_china(lat, lng):
    return ((lng >= CHINA_LNG_RANGE[0]) & (lng <= CHINA_LNG_RANGE[1])
            & (lat >= CHINA_LAT_RANGE[0]) & (lat <= CHINA_LAT_RANGE[1]))


def out_of_china(lat: float, lng: float) -> bool:
    return not bool(_in_china(lat, lng))


def _wgs84_to_gcj02(lat, lng):
    d_lat, d_lng = _gcj02_delta(lat, lng)
    inside = _in_china(lat, lng)
    return np.where(inside, lat + d_lat, lat), np.where(inside, lng + d_lng, lng)


def _gcj02_to_wgs84(lat, lng):
    d_lat, d_lng = _gcj02_delta(lat, lng)
    inside = _in_china(lat, lng)
    return np.where(inside, lat - d_lat, lat), np.where(inside, lng - d_lng, lng)


def _gcj02_to_bd09(lat, lng):
    z = np.sqrt(lng * lng + lat * lat) + 0.00002 * np.sin(lat * X_PI)
    theta = np.arctan2(lat, lng) + 0.000003 * np.cos(lng * X_PI)
    return z * np.sin(theta) + BD09_LAT_OFFSET, z * np.cos(theta) + BD09_LNG_OFFSET


def _bd09_to_gcj02(lat, lng):
    x = lng - BD09_LNG_OFFSET
    y = lat - BD09_LAT_OFFSET
    z = np.sqrt(x * x + y * y) - 0.00002 * np.sin(y * X_PI)
    theta = np.arctan2(y, x) - 0.000003 * np.cos(x * X_PI)
    return z * np.sin(theta), z * np.cos(theta)


def _wgs84_to_bd09(lat, lng):
    return _gcj02_to_bd09(*_wgs84_to_gcj02(lat, lng))


def _bd09_to_wgs84(lat, lng):
    return _gcj02_to_wgs84(*_bd09_to_gcj02(lat, lng))


_PIPELINES = {
    (CoordinateSystem.WGS84, CoordinateSystem.GCJ02): _wgs84_to_gcj02,
    (CoordinateSystem.GCJ02, CoordinateSystem.WGS84): _gcj02_to_wgs84,
    (CoordinateSystem.GCJ02, CoordinateSystem.BD09LL): _gcj02_to_bd09,
    (CoordinateSystem.BD09LL, CoordinateSystem.GCJ02): _bd09_to_gcj02,
    (CoordinateSystem.WGS84, CoordinateSystem.BD09LL): _wgs84_to_bd09,
    (CoordinateSystem.BD09LL, CoordinateSystem.WGS84): _bd09_to_wgs84,
}


def is_supported(source: CoordinateSystem, target: CoordinateSystem) -> bool:
    return source == target or (source, target) in _PIPELINES


def parse_system(value: SystemLike) -> CoordinateSystem:
    if isinstance(value, CoordinateSystem):
        return value
    try:
        return CoordinateSystem(str(value).lower())
    except ValueError:
        raise EngineError(ErrorKind.INVALID_PARAMETER, f"unknown coordinate system: {value!r}")


def transform_coordinate(coordinate: Coordinate, source: CoordinateSystem,
                         target: CoordinateSystem) -> Coordinate:
    """
    Pure conversion of an already validated coordinate.
    Raises EngineError(UNSUPPORTED_CONVERSION) for pairs without a pipeline.
    """
    if source == target:
        return coordinate
    pipeline = _PIPELINES.get((source, target))
    if pipeline is None:
        raise EngineError(ErrorKind.UNSUPPORTED_CONVERSION,
                          f"{source.value} -> {target.value}")
    lat, lng = pipeline(coordinate.latitude, coordinate.longitude)
    return Coordinate(latitude=float(lat), longitude=float(lng))


def convert_arrays(latitudes: Sequence[float], longitudes: Sequence[float],
                   source: SystemLike, target: SystemLike) -> Tuple[np.ndarray, np.ndarray]:
    """
    Vectorised conversion for bulk numeric data. No per-item validation:
    callers feed clean arrays. Returns (latitudes, longitudes) as float64 arrays.
    """
    src, dst = parse_system(source), parse_system(target)
    lats = np.asarray(latitudes, dtype=np.float64)
    lngs = np.asarray(longitudes, dtype=np.float64)
    if lats.shape != lngs.shape:
        raise EngineError(ErrorKind.INVALID_PARAMETER, "latitude and longitude arrays differ in shape")
    if src == dst:
        return lats.copy(), lngs.copy()
    pipeline = _PIPELINES.get((src, dst))
    if pipeline is None:
        raise EngineError(ErrorKind.UNSUPPORTED_CONVERSION, f"{src.value} -> {dst.value}")
    out_lat, out_lng = pipeline(lats, lngs)
    return np.asarray(out_lat, dtype=np.float64), np.asarray(out_lng, dtype=np.float64)


# ─── Conversion strategies ─────────────────────────────────

class ConversionStrategy(Protocol):
    def convert(self, coordinate: Coordinate, source: CoordinateSystem,
                target: CoordinateSystem) -> ConversionResult: ...

    def convert_batch(self, coordinates: List[Coordinate], source: CoordinateSystem,
                      target: CoordinateSystem) -> List[ConversionResult]: ...


class PureConversion:
    """Only the in-process algorithm; never calls out."""

    def convert(self, coordinate, source, target):
        try:
            return ConversionResult.ok(transform_coordinate(coordinate, source, target))
        except EngineError as e:
            return ConversionResult.failure(e.kind, e.message, coordinate)

    def convert_batch(self, coordinates, source, target):
        return [self.convert(c, source, target) for c in coordinates]


class DelegateFirstConversion:
    """
    Ask a host-provided delegate first, fall back to the pure algorithm when
    the delegate raises or reports failure.

    The delegate needs a `convert(coordinate, source, target)` returning a
    ConversionResult; `convert_batch` is used when present.
    """

    def __init__(self, delegate: Any, fallback: Optional[ConversionStrategy] = None):
        self.delegate = delegate
        self.fallback = fallback or PureConversion()

    def convert(self, coordinate, source, target):
        try:
            result = self.delegate.convert(coordinate, source, target)
            if result is not None and result.success:
                return result
            logger.warning(f"Delegate conversion reported failure ({getattr(result, 'error', None)}), "
                           f"falling back to pure algorithm")
        except Exception as e:
            logger.warning(f"Delegate conversion failed, falling back to pure algorithm: {e}")
        return self.fallback.convert(coordinate, source, target)

    def convert_batch(self, coordinates, source, target):
        batch = getattr(self.delegate, "convert_batch", None)
        if batch is not None:
            try:
                results = batch(coordinates, source, target)
                if (results is not None and len(results) == len(coordinates)
                        and all(r.success for r in results)):
                    return list(results)
                logger.warning("Delegate batch conversion incomplete, falling back per item")
            except Exception as e:
                logger.warning(f"Delegate batch conversion failed, falling back per item: {e}")
        return [self.convert(c, source, target) for c in coordinates]


class CoordinateTransformer:
    """
    Validating front door over a ConversionStrategy. Never raises: every
    problem comes back as a failed ConversionResult.
    """

    def __init__(self, strategy: Optional[ConversionStrategy] = None):
        self.strategy = strategy or PureConversion()

    def _prepare(self, coordinate: Any, source: SystemLike, target: SystemLike):
        """(coordinate, src, dst, None) or (None, None, None, failure)."""
        try:
            valid = validate_coordinate(coordinate)
        except EngineError as e:
            echo = coordinate if isinstance(coordinate, Coordinate) else None
            if echo is None and e.kind == ErrorKind.OUT_OF_RANGE:
                lat, lng = _lat_lng(coordinate)
                echo = Coordinate(latitude=float(lat), longitude=float(lng))
            return None, None, None, ConversionResult.failure(e.kind, e.message, echo)

        try:
            src, dst = parse_system(source), parse_system(target)
        except EngineError as e:
            return None, None, None, ConversionResult.failure(e.kind, e.message, valid)

        if not is_supported(src, dst):
            return None, None, None, ConversionResult.failure(
                ErrorKind.UNSUPPORTED_CONVERSION, f"{src.value} -> {dst.value}", valid)
        return valid, src, dst, None

    def convert(self, coordinate: Any, source: SystemLike, target: SystemLike) -> ConversionResult:
        valid, src, dst, failure = self._prepare(coordinate, source, target)
        if failure is not None:
            return failure
        if src == dst:
            return ConversionResult.ok(valid)
        return self.strategy.convert(valid, src, dst)

    def convert_batch(self, coordinates: Iterable[Any], source: SystemLike,
                      target: SystemLike) -> List[ConversionResult]:
        coordinates = list(coordinates or [])
        if not coordinates:
            return []

        results: List[Optional[ConversionResult]] = [None] * len(coordinates)
        pending_idx, pending = [], []
        src = dst = None
        for i, raw in enumerate(coordinates):
            valid, src_i, dst_i, failure = self._prepare(raw, source, target)
            if failure is not None:
                results[i] = failure
            elif src_i == dst_i:
                results[i] = ConversionResult.ok(valid)
            else:
                src, dst = src_i, dst_i
                pending_idx.append(i)
                pending.append(valid)

        if pending:
            for i, result in zip(pending_idx, self.strategy.convert_batch(pending, src, dst)):
                results[i] = result

        failed = sum(1 for r in results if not r.success)
        if failed:
            logger.debug(f"Batch conversion: {failed}/{len(results)} items failed")
        return results


def _lat_lng(obj: Any):
    if isinstance(obj, dict):
        return obj.get("latitude"), obj.get("longitude")
    return getattr(obj, "latitude", None), getattr(obj, "longitude", None)


_default_transformer = CoordinateTransformer()


def convert(coordinate: Any, source: SystemLike, target: SystemLike) -> ConversionResult:
    return _default_transformer.convert(coordinate, source, target)


def convert_batch(coordinates: Iterable[Any], source: SystemLike,
                  target: SystemLike) -> List[ConversionResult]:
    return _default_transformer.convert_batch(coordinates, source, target)


# ─── Geometry helpers ──────────────────────────────────────

def calculate_distance(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance in meters on the Krasovsky radius used by the offset math."""
    return haversine_m(a.latitude, a.longitude, b.latitude, b.longitude,
                       radius=KRASOVSKY_RADIUS_M)


def is_point_in_polygon(point: Coordinate, polygon: Sequence[Coordinate]) -> bool:
    """Even-odd ray casting. Polygons with fewer than 3 vertices contain nothing."""
    if polygon is None or len(polygon) < 3:
        return False

    inside = False
    x, y = point.latitude, point.longitude
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i].latitude, polygon[i].longitude
        xj, yj = polygon[j].latitude, polygon[j].longitude
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside
