"""
Level-of-detail selection and the truncate → cluster → simplify pipeline.
"""

import logging
from typing import Any, Callable, List, Optional, Sequence

from engine.clustering import cluster_markers
from shared.constants import DEFAULT_CLUSTER_RADIUS_PX, DEFAULT_LOD_TABLE
from shared.types import EngineError, ErrorKind, LODLevel, LODResult

logger = logging.getLogger("LOD")

DEFAULT_LOD_LEVELS = tuple(LODLevel(*row) for row in DEFAULT_LOD_TABLE)

Simplifier = Callable[[Any, float], Any]


def select_level(zoom: float, levels: Sequence[LODLevel] = DEFAULT_LOD_LEVELS) -> LODLevel:
    """First level whose [min_zoom, max_zoom] holds `zoom`, else the last one."""
    if not levels:
        raise EngineError(ErrorKind.INVALID_PARAMETER, "at least one LOD level is required")
    for level in levels:
        if level.contains(zoom):
            return level
    return levels[-1]


def apply_lod(items: Sequence[Any], zoom: float,
              levels: Optional[Sequence[LODLevel]] = None,
              simplify: Optional[Simplifier] = None,
              cluster_radius_px: float = DEFAULT_CLUSTER_RADIUS_PX) -> LODResult:
    """
    Reduce `items` for display at `zoom`.

    1. Keep the first `max_items` items (input order, not importance).
    2. If more than `cluster_threshold` remain (and the threshold is > 0),
       replace them with the output of cluster_markers.
    3. If `simplify` is given and the level's simplification is > 0, map
       `simplify(item, simplification)` over what is left.
    """
    level = select_level(zoom, levels if levels is not None else DEFAULT_LOD_LEVELS)

    reduced: List[Any] = list(items or [])[:level.max_items]
    clustered = False

    if level.cluster_threshold > 0 and len(reduced) > level.cluster_threshold:
        reduced = cluster_markers(reduced, zoom, cluster_radius_px)
        clustered = True

    if simplify is not None and level.simplification > 0:
        reduced = [simplify(item, level.simplification) for item in reduced]

    logger.debug(f"LOD zoom={zoom} level=[{level.min_zoom}, {level.max_zoom}] "
                 f"in={len(items or [])} out={len(reduced)} clustered={clustered}")
    return LODResult(items=reduced, level=level, clustered=clustered)
