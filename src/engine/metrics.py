"""
Distance utilities: great-circle, ellipsoidal and pixel-space distances.
"""

from math import radians, sin, cos, sqrt, atan2, pi
from typing import Optional

from pyproj import Geod

from shared.constants import EARTH_MEAN_RADIUS_M, WEB_MERCATOR_RADIUS_M, TILE_SIZE_PX
from shared.types import Coordinate

# Initialize once to avoid overhead
GEOD_WGS84 = Geod(ellps="WGS84")


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float,
                radius: float = EARTH_MEAN_RADIUS_M) -> float:
    """
    Calculate the distance in meters between two coordinates on a sphere.
    `radius` defaults to the mean earth radius; callers that need to match a
    specific projection pass their own.
    """
    dlat = radians(lat2 - lat1)
    dlng = radians(lng2 - lng1)

    a = sin(dlat/2)**2 + cos(radians(lat1)) * cos(radians(lat2)) * sin(dlng/2)**2
    a = min(1.0, max(0.0, a))  # rounding can push near-antipodal pairs past 1
    c = 2 * atan2(sqrt(a), sqrt(1 - a))

    return radius * c


def geodesic_m(a: Coordinate, b: Coordinate) -> float:
    """
    Ellipsoidal (WGS84) distance in meters.
    Geod.inv expects (lon, lat) order!
    """
    _, _, distance = GEOD_WGS84.inv(a.longitude, a.latitude, b.longitude, b.latitude)
    return float(distance)


def pixels_per_meter(zoom_level: float) -> float:
    """Screen pixels per ground meter at the equator for a 256px-tile pyramid."""
    return (TILE_SIZE_PX * 2 ** zoom_level) / (2 * pi * WEB_MERCATOR_RADIUS_M)


def pixel_distance(a: Coordinate, b: Coordinate, zoom_level: float,
                   ppm: Optional[float] = None) -> float:
    """
    Distance between two coordinates in screen pixels at `zoom_level`.
    Pass a precomputed `ppm` when measuring many pairs at the same zoom.
    """
    if ppm is None:
        ppm = pixels_per_meter(zoom_level)
    meters = haversine_m(a.latitude, a.longitude, b.latitude, b.longitude,
                         radius=WEB_MERCATOR_RADIUS_M)
    return meters * ppm
