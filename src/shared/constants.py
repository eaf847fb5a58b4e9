"""
Spatial engine shared constants

Geodetic parameters, China-region bounds, clustering / LOD defaults and
scheduler tuning limits. Every module reads its fixed numbers from here.
"""

import math

# ─── Coordinate Reference Systems ──────────────────────────
EPSG_WGS84 = "EPSG:4326"
EPSG_WEB_MERCATOR = "EPSG:3857"    # slippy-map tile projection

# ─── Earth radii (kept distinct per call site) ─────────────
KRASOVSKY_RADIUS_M = 6378245.0     # GCJ02 offset math + calculate_distance
EARTH_MEAN_RADIUS_M = 6371000      # generic haversine
WEB_MERCATOR_RADIUS_M = 6378137    # pixel distance at a zoom level
GCJ02_EE = 0.00669342162296594323  # eccentricity squared

# ─── GCJ02 / BD09 ──────────────────────────────────────────
X_PI = math.pi * 3000.0 / 180.0
BD09_LNG_OFFSET = 0.0065
BD09_LAT_OFFSET = 0.006

# China bounding box, outside of which WGS84 <-> GCJ02 is a no-op
CHINA_LNG_RANGE = (72.004, 137.8347)
CHINA_LAT_RANGE = (0.8293, 55.8271)

LAT_RANGE = (-90.0, 90.0)
LNG_RANGE = (-180.0, 180.0)

# ─── Clustering ────────────────────────────────────────────
TILE_SIZE_PX = 256
DEFAULT_CLUSTER_RADIUS_PX = 50.0
CLUSTER_RADIUS_MIN_FACTOR = 0.5
CLUSTER_RADIUS_REFERENCE_ZOOM = 10
CLUSTER_RADIUS_STEP = 0.1

# ─── Level of detail ───────────────────────────────────────
# (min_zoom, max_zoom, max_items, cluster_threshold, simplification)
DEFAULT_LOD_TABLE = (
    (3, 8, 50, 10, 0.8),
    (9, 12, 200, 5, 0.5),
    (13, 16, 500, 3, 0.2),
    (17, 21, 1000, 0, 0.0),
)

# ─── Render scheduler ──────────────────────────────────────
DEFAULT_WINDOW_SIZE = 100
DEFAULT_BATCH_SIZE = 50
DEFAULT_TARGET_FPS = 60.0
FRAME_HISTORY_SIZE = 100
FPS_SAMPLE_WINDOW = 10
DROPPED_FRAME_FACTOR = 1.5

SEVERE_FPS_RATIO = 0.5             # below: halve window / batch
DEGRADED_FPS_RATIO = 0.8           # below: shrink by 20%
HEALTHY_FPS_RATIO = 0.95           # above: grow by 10%
SEVERE_MIN_WINDOW, SEVERE_MIN_BATCH = 20, 10
DEGRADED_MIN_WINDOW, DEGRADED_MIN_BATCH = 50, 25
MAX_WINDOW, MAX_BATCH = 200, 100

# ─── Performance monitor ───────────────────────────────────
PERF_MONITOR_INTERVAL_S = 5.0
PERF_HISTORY_SIZE = 100
PERF_REPORT_WINDOW = 20            # most recent snapshots used by the report
LOW_FPS_THRESHOLD = 30.0
SLOW_RENDER_MS = 33.0              # one frame at 30 fps
MEMORY_LIMIT_MB = 512.0
FPS_TREND_THRESHOLD = 2.0
MEMORY_TREND_THRESHOLD_MB = 5.0

# ─── Rate limiting / caching ───────────────────────────────
DEFAULT_DEBOUNCE_MS = 300
LOCATION_CACHE_TTL_S = 60.0
CACHE_CLEANUP_INTERVAL_S = 300.0

# ─── Server ────────────────────────────────────────────────
DEV_PORT = 8000
