"""
Viewport culling: keep only the items inside an axis-aligned lat/lng box.
"""

from typing import List, Sequence, TypeVar

from shared.types import Coordinate, Region, ViewportBounds, coordinate_of

T = TypeVar("T")


def is_in_viewport(coordinate: Coordinate, bounds: ViewportBounds, buffer: float = 0.0) -> bool:
    """Inclusive edge test. Inverted bounds contain nothing, buffer or not."""
    if not bounds.is_valid:
        return False
    return bounds.expanded(buffer).contains(coordinate)


def filter_in_viewport(items: Sequence[T], bounds: ViewportBounds, buffer: float = 0.0) -> List[T]:
    """Items whose coordinate lies within `bounds` grown by `buffer` degrees, in input order."""
    if not items or not bounds.is_valid:
        return []

    box = bounds.expanded(buffer)
    kept = []
    for item in items:
        coord = coordinate_of(item)
        if coord is not None and box.contains(coord):
            kept.append(item)
    return kept


def filter_in_region(items: Sequence[T], region: Region, buffer: float = 0.0) -> List[T]:
    return filter_in_viewport(items, region.to_bounds(), buffer)
