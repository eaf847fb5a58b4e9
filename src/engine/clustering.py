"""
Zoom-adaptive greedy marker clustering.

Each unvisited item seeds a cluster and absorbs every later unvisited item
whose pixel distance to the seed is within the zoom-adjusted radius. The pass
is O(n²); a few thousand items fit a sub-second budget, larger sets should be
culled to the viewport first.
"""

import logging
import time
from typing import Any, List, Sequence

from engine.metrics import pixel_distance, pixels_per_meter
from shared.constants import (
    CLUSTER_RADIUS_MIN_FACTOR,
    CLUSTER_RADIUS_REFERENCE_ZOOM,
    CLUSTER_RADIUS_STEP,
    DEFAULT_CLUSTER_RADIUS_PX,
)
from shared.types import Cluster, Coordinate, coordinate_of

logger = logging.getLogger("Clusterer")


def adjusted_cluster_radius(zoom_level: float, base_radius_px: float) -> float:
    """Radius shrinks as zoom increases, never below half the base radius."""
    factor = max(CLUSTER_RADIUS_MIN_FACTOR,
                 1 - (zoom_level - CLUSTER_RADIUS_REFERENCE_ZOOM) * CLUSTER_RADIUS_STEP)
    return base_radius_px * factor


def cluster_center(coordinates: Sequence[Coordinate]) -> Coordinate:
    # Plain mean: no antimeridian wraparound handling.
    n = len(coordinates)
    return Coordinate(
        latitude=sum(c.latitude for c in coordinates) / n,
        longitude=sum(c.longitude for c in coordinates) / n,
    )


def cluster_markers(items: Sequence[Any], zoom_level: float,
                    base_radius_px: float = DEFAULT_CLUSTER_RADIUS_PX) -> List[Cluster]:
    """
    Partition `items` into clusters.

    Every item with a valid coordinate lands in exactly one cluster; items
    with a missing or malformed coordinate are skipped. Members keep their
    input order and are returned as given (payloads untouched).
    """
    if not items:
        return []

    start = time.perf_counter()
    radius = adjusted_cluster_radius(zoom_level, base_radius_px)
    ppm = pixels_per_meter(zoom_level)

    coords = [coordinate_of(item) for item in items]
    visited = bytearray(len(items))
    skipped = 0
    for idx, coord in enumerate(coords):
        if coord is None:
            visited[idx] = 1
            skipped += 1

    clusters: List[Cluster] = []
    for i in range(len(items)):
        if visited[i]:
            continue
        visited[i] = 1
        seed = coords[i]
        member_idx = [i]

        for j in range(i + 1, len(items)):
            if visited[j]:
                continue
            if pixel_distance(seed, coords[j], zoom_level, ppm=ppm) <= radius:
                visited[j] = 1
                member_idx.append(j)

        members = [items[k] for k in member_idx]
        if len(member_idx) > 1:
            center = cluster_center([coords[k] for k in member_idx])
            clusters.append(Cluster(center=center, members=members, is_cluster=True))
        else:
            clusters.append(Cluster(center=seed, members=members, is_cluster=False))

    if skipped:
        logger.debug(f"Skipped {skipped} item(s) without a valid coordinate")
    logger.debug(f"Clustered {len(items) - skipped} items into {len(clusters)} groups "
                 f"(zoom={zoom_level}, radius={radius:.1f}px) in "
                 f"{(time.perf_counter() - start) * 1000:.1f}ms")
    return clusters
