"""
Slippy-map tile math for preloading the tiles around a viewport.
"""

import math
from typing import List

from pyproj import Transformer

from shared.constants import EPSG_WEB_MERCATOR, EPSG_WGS84, TILE_SIZE_PX, WEB_MERCATOR_RADIUS_M
from shared.types import Coordinate, TileCoordinate

# Initialize Transformer once to avoid overhead
# always_xy=True forces input/output to be (lon, lat) / (x, y) rather than (lat, lon)
TRANSFORM_TO_MERCATOR = Transformer.from_crs(EPSG_WGS84, EPSG_WEB_MERCATOR, always_xy=True)

_HALF_WORLD_M = math.pi * WEB_MERCATOR_RADIUS_M


def lat_lng_to_tile(coordinate: Coordinate, zoom: int) -> TileCoordinate:
    """
    Tile containing `coordinate` at `zoom` (XYZ scheme, y grows southward).
    always_xy expects (lon, lat) order!
    """
    x_m, y_m = TRANSFORM_TO_MERCATOR.transform(xx=coordinate.longitude, yy=coordinate.latitude)
    n = 2 ** zoom
    x = math.floor((x_m + _HALF_WORLD_M) / (2 * _HALF_WORLD_M) * n)
    y = math.floor((_HALF_WORLD_M - y_m) / (2 * _HALF_WORLD_M) * n)
    return TileCoordinate(x=int(x), y=int(y), z=zoom)


def calculate_preload_tiles(center: Coordinate, zoom: int, width: int, height: int,
                            preload_radius: int = 1) -> List[TileCoordinate]:
    """Tiles covering a width×height px viewport plus `preload_radius` tiles of margin."""
    center_tile = lat_lng_to_tile(center, zoom)

    tiles_x = math.ceil(width / TILE_SIZE_PX) + preload_radius * 2
    tiles_y = math.ceil(height / TILE_SIZE_PX) + preload_radius * 2
    start_x = center_tile.x - tiles_x // 2
    start_y = center_tile.y - tiles_y // 2
    n = 2 ** zoom

    tiles = []
    for x in range(start_x, start_x + tiles_x):
        for y in range(start_y, start_y + tiles_y):
            if 0 <= x < n and 0 <= y < n:
                tiles.append(TileCoordinate(x=x, y=y, z=zoom))
    return tiles
