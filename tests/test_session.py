"""
Unit tests for SpatialEngine sessions and tile preloading.
"""

import asyncio
import math

import pytest

from engine.monitor import PerformanceMonitor
from engine.session import SpatialEngine
from engine.tiles import calculate_preload_tiles, lat_lng_to_tile
from shared.config import Settings
from shared.types import Coordinate, CoordinateSystem, MarkerItem, TileCoordinate, ViewportBounds

BOUNDS = ViewportBounds(north=40.0, south=39.8, east=116.5, west=116.3)


def _expected_tile(lat, lng, zoom):
    n = 2 ** zoom
    lat_rad = math.radians(lat)
    x = math.floor((lng + 180.0) / 360.0 * n)
    y = math.floor((1.0 - math.log(math.tan(lat_rad) + 1.0 / math.cos(lat_rad)) / math.pi) / 2.0 * n)
    return x, y


def _markers_in_bounds(n):
    return [
        MarkerItem(coordinate=Coordinate(39.81 + (i % 10) * 0.015, 116.31 + (i // 10) * 0.015), payload=i)
        for i in range(n)
    ]


@pytest.fixture
def engine():
    e = SpatialEngine(Settings(VIRTUAL_WINDOW_SIZE=100, BATCH_SIZE=50, ENABLE_LOD=True))
    yield e
    e.destroy()


# -----------------------------------------------------------------------------
# Tiles
# -----------------------------------------------------------------------------
@pytest.mark.parametrize("lat,lng,zoom", [
    (39.915, 116.404, 10),
    (31.2304, 121.4737, 14),
    (-33.86, 151.21, 8),
])
def test_lat_lng_to_tile_matches_slippy_formula(lat, lng, zoom):
    tile = lat_lng_to_tile(Coordinate(lat, lng), zoom)
    assert (tile.x, tile.y) == _expected_tile(lat, lng, zoom)
    assert tile.z == zoom


def test_preload_tiles_cover_viewport_plus_margin():
    center = Coordinate(39.915, 116.404)
    tiles = calculate_preload_tiles(center, 10, 512, 512, preload_radius=1)

    assert len(tiles) == 16
    assert lat_lng_to_tile(center, 10) in tiles
    assert len(set(tiles)) == len(tiles)


def test_preload_tiles_clipped_to_world():
    tiles = calculate_preload_tiles(Coordinate(80.0, -170.0), 1, 512, 512, preload_radius=1)
    assert sorted((t.x, t.y) for t in tiles) == [(0, 0), (0, 1), (1, 0), (1, 1)]
    assert all(isinstance(t, TileCoordinate) and t.z == 1 for t in tiles)


# -----------------------------------------------------------------------------
# Engine session
# -----------------------------------------------------------------------------
def test_engine_convert_uses_its_transformer(engine):
    result = engine.convert(Coordinate(39.915, 116.404), CoordinateSystem.BD09LL, CoordinateSystem.GCJ02)
    assert result.success is True

    batch = engine.convert_batch([Coordinate(39.915, 116.404), None], "wgs84", "gcj02")
    assert [r.success for r in batch] == [True, False]


def test_optimize_culls_then_virtualizes(engine):
    outside = [MarkerItem(coordinate=Coordinate(10, 10), payload="far") for _ in range(5)]
    inside = _markers_in_bounds(40)

    # Zoom 18 keeps every item and never clusters
    result = engine.optimize(outside + inside, BOUNDS, zoom=18)

    assert result.original_count == 45
    assert result.optimized_count == 40
    assert result.visible == inside
    assert result.lod.clustered is False
    assert result.reduction_ratio == pytest.approx(5 / 45)
    assert result.processing_time_ms >= 0


def test_optimize_clusters_at_low_zoom(engine):
    result = engine.optimize(_markers_in_bounds(40), BOUNDS, zoom=5)
    assert result.lod.clustered is True
    assert result.optimized_count < 40
    assert sum(c.count for c in result.visible) == 40


def test_optimize_empty_input(engine):
    result = engine.optimize([], BOUNDS, zoom=12)
    assert result.visible == []
    assert result.reduction_ratio == 0.0


def test_lod_can_be_disabled():
    e = SpatialEngine(Settings(ENABLE_LOD=False))
    try:
        markers = _markers_in_bounds(40)
        result = e.apply_lod(markers, 5)
        assert result.items == markers
        assert result.clustered is False
    finally:
        e.destroy()


def test_engine_cluster_uses_configured_radius():
    markers = [MarkerItem(coordinate=Coordinate(39.915, 116.404)),
               MarkerItem(coordinate=Coordinate(39.925, 116.404))]
    tight = SpatialEngine(Settings(CLUSTER_RADIUS_PX=5))
    loose = SpatialEngine(Settings(CLUSTER_RADIUS_PX=100))
    try:
        assert len(tight.cluster(markers, 12)) == 2
        assert len(loose.cluster(markers, 12)) == 1
        assert len(tight.cluster(markers, 12, radius_px=100)) == 1
    finally:
        tight.destroy()
        loose.destroy()


def test_sessions_do_not_share_state():
    a, b = SpatialEngine(), SpatialEngine()
    try:
        a.cache_location("user", Coordinate(1, 1))
        a.record_frame(0.0)
        a.record_frame(16.0)
        assert b.cached_location("user") is None
        assert b.stats()["frame_count"] == 0
    finally:
        a.destroy()
        b.destroy()


def test_reset_clears_runtime_state(engine):
    engine.cache_location("user", Coordinate(1, 1))
    engine.record_frame(0.0)
    engine.record_frame(16.0)

    engine.reset()

    stats = engine.stats()
    assert stats["location_cache_size"] == 0
    assert stats["frame_count"] == 0
    assert stats["window_size"] == 100


def test_destroy_is_idempotent_and_context_manager():
    with SpatialEngine() as e:
        e.cache_location("user", Coordinate(1, 1))
    assert e.cached_location("user") is None
    e.destroy()


@pytest.mark.asyncio
async def test_engine_batch_execute_and_debounce(engine):
    ran = []
    await engine.batch_execute([lambda i=i: ran.append(i) for i in range(120)])
    assert ran == list(range(120))

    seen = []
    engine.debounce_location("gps", seen.append, "fix-1", delay_ms=20)
    engine.debounce_location("gps", seen.append, "fix-2", delay_ms=20)
    await asyncio.sleep(0.06)
    assert seen == ["fix-2"]


@pytest.mark.asyncio
async def test_auto_cleanup_purges_expired_locations(engine):
    engine.location_cache.ttl_s = 0
    engine.cache_location("user", Coordinate(1, 1))

    task = engine.start_auto_cleanup(interval_s=0.01)
    await asyncio.sleep(0.05)
    assert len(engine.location_cache) == 0

    engine.stop_auto_cleanup()
    await asyncio.sleep(0)
    assert task.cancelled() or task.done()


@pytest.mark.asyncio
async def test_performance_monitoring_retunes_scheduler(engine):
    engine.monitor = PerformanceMonitor(engine.scheduler, memory_sampler=lambda: 50.0)
    t = 0.0
    engine.record_frame(t)
    for _ in range(10):
        t += 40.0
        engine.record_frame(t)

    task = engine.start_performance_monitoring(interval_s=0.01)
    await asyncio.sleep(0.05)
    engine.stop_performance_monitoring()

    assert engine.monitor.adjustments >= 1
    assert engine.scheduler.window_size < 100
    report = engine.performance_report()
    assert report.average_fps == pytest.approx(25.0)
    assert engine.stats()["performance_report"]["average_fps"] == pytest.approx(25.0)

    await asyncio.sleep(0)
    assert task.cancelled() or task.done()


@pytest.mark.asyncio
async def test_destroy_stops_performance_monitoring():
    e = SpatialEngine()
    task = e.start_performance_monitoring(interval_s=0.01)
    e.destroy()
    await asyncio.sleep(0)
    assert task.cancelled() or task.done()
