"""
SpatialEngine: one map session's worth of engine state.

Owns the conversion strategy, render scheduler, performance monitor, location
cache and debounce timers. Build one per map view / test, call destroy() when
done (or use it as a context manager). Instances share nothing.

Usage:
    from engine.session import SpatialEngine

    with SpatialEngine() as engine:
        result = engine.optimize(markers, bounds, zoom=12)
        result.visible  # items to draw
"""

import asyncio
import logging
import time
from dataclasses import asdict
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from engine.cache import LocationCache
from engine.clustering import cluster_markers
from engine.lod import DEFAULT_LOD_LEVELS, Simplifier, apply_lod
from engine.monitor import PerformanceMonitor
from engine.ratelimit import Debouncer
from engine.scheduler import RenderScheduler
from engine.transform import ConversionStrategy, CoordinateTransformer, SystemLike
from engine.viewport import filter_in_viewport
from shared.config import Settings, settings as default_settings
from shared.constants import CACHE_CLEANUP_INTERVAL_S
from shared.types import (
    Cluster,
    ConversionResult,
    Coordinate,
    LODLevel,
    LODResult,
    OptimizationResult,
    PerformanceReport,
    ViewportBounds,
)

logger = logging.getLogger("SpatialEngine")


class SpatialEngine:
    def __init__(
        self,
        config: Optional[Settings] = None,
        strategy: Optional[ConversionStrategy] = None,
        lod_levels: Optional[Sequence[LODLevel]] = None,
    ):
        self.config = config or default_settings
        self.transformer = CoordinateTransformer(strategy)
        self.lod_levels = tuple(lod_levels) if lod_levels else DEFAULT_LOD_LEVELS
        self.scheduler = RenderScheduler(
            window_size=self.config.VIRTUAL_WINDOW_SIZE,
            batch_size=self.config.BATCH_SIZE,
            target_fps=self.config.TARGET_FPS,
            enable_virtualization=self.config.ENABLE_VIRTUALIZATION,
            enable_batching=self.config.ENABLE_BATCHING,
            yield_interval_s=self.config.BATCH_YIELD_MS / 1000.0,
            history_size=self.config.FRAME_HISTORY_SIZE,
        )
        self.monitor = PerformanceMonitor(
            self.scheduler,
            history_size=self.config.PERF_HISTORY_SIZE,
            memory_limit_mb=self.config.MEMORY_LIMIT_MB,
        )
        self.location_cache = LocationCache(ttl_s=self.config.LOCATION_CACHE_TTL_S)
        self.debouncer = Debouncer(delay_ms=self.config.DEBOUNCE_DELAY_MS)
        self._cleanup_task: Optional[asyncio.Task] = None
        self._monitor_task: Optional[asyncio.Task] = None
        self._destroyed = False
        logger.info(f"Engine created (window={self.scheduler.window_size}, "
                    f"batch={self.scheduler.batch_size}, target_fps={self.scheduler.target_fps})")

    # ─── Conversion ────────────────────────────────────────

    def convert(self, coordinate: Any, source: SystemLike, target: SystemLike) -> ConversionResult:
        return self.transformer.convert(coordinate, source, target)

    def convert_batch(self, coordinates: Iterable[Any], source: SystemLike,
                      target: SystemLike) -> List[ConversionResult]:
        return self.transformer.convert_batch(coordinates, source, target)

    # ─── Marker pipeline ───────────────────────────────────

    def cluster(self, items: Sequence[Any], zoom: float,
                radius_px: Optional[float] = None) -> List[Cluster]:
        radius = self.config.CLUSTER_RADIUS_PX if radius_px is None else radius_px
        return cluster_markers(items, zoom, radius)

    def cull(self, items: Sequence[Any], bounds: ViewportBounds, buffer: float = 0.0) -> List[Any]:
        return filter_in_viewport(items, bounds, buffer)

    def apply_lod(self, items: Sequence[Any], zoom: float,
                  simplify: Optional[Simplifier] = None) -> LODResult:
        if not self.config.ENABLE_LOD:
            return LODResult(items=list(items or []), level=self.lod_levels[-1], clustered=False)
        return apply_lod(items, zoom, self.lod_levels, simplify, self.config.CLUSTER_RADIUS_PX)

    def optimize(self, items: Sequence[Any], bounds: ViewportBounds, zoom: float,
                 simplify: Optional[Simplifier] = None, buffer: float = 0.0) -> OptimizationResult:
        """Cull → LOD (maybe cluster) → virtualize, with reduction metrics."""
        start = time.perf_counter()
        items = list(items or [])

        culled = self.cull(items, bounds, buffer)
        lod = self.apply_lod(culled, zoom, simplify)
        window = self.scheduler.virtualize(lod.items, bounds.expanded(buffer))

        elapsed_ms = (time.perf_counter() - start) * 1000
        optimized = len(window.visible)
        result = OptimizationResult(
            visible=window.visible,
            virtualization=window,
            lod=lod,
            original_count=len(items),
            optimized_count=optimized,
            reduction_ratio=(len(items) - optimized) / len(items) if items else 0.0,
            processing_time_ms=elapsed_ms,
        )
        logger.debug(f"Optimized {len(items)} -> {optimized} items in {elapsed_ms:.1f}ms")
        return result

    async def batch_execute(self, operations: Iterable[Callable[[], Any]],
                            batch_size: Optional[int] = None) -> None:
        await self.scheduler.batch_execute(operations, batch_size)

    def record_frame(self, now_ms: Optional[float] = None):
        return self.scheduler.record_frame(now_ms)

    # ─── Location helpers ──────────────────────────────────

    def debounce_location(self, key: str, callback: Callable[..., Any], *args,
                          delay_ms: Optional[float] = None) -> None:
        self.debouncer.call(key, callback, *args, delay_ms=delay_ms)

    def cache_location(self, key: str, location: Coordinate) -> None:
        self.location_cache.put(key, location)

    def cached_location(self, key: str) -> Optional[Coordinate]:
        return self.location_cache.get(key)

    def start_auto_cleanup(self, interval_s: float = CACHE_CLEANUP_INTERVAL_S) -> asyncio.Task:
        """Purge expired cache entries every `interval_s` until stopped."""
        self.stop_auto_cleanup()

        async def _loop():
            while True:
                await asyncio.sleep(interval_s)
                self.location_cache.purge_expired()

        self._cleanup_task = asyncio.ensure_future(_loop())
        return self._cleanup_task

    def stop_auto_cleanup(self) -> None:
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            self._cleanup_task = None

    # ─── Performance monitoring ────────────────────────────

    def start_performance_monitoring(self, interval_s: Optional[float] = None) -> asyncio.Task:
        """Sample performance every `interval_s` and retune the scheduler on anomalies."""
        self.stop_performance_monitoring()
        interval = self.config.PERF_MONITOR_INTERVAL_S if interval_s is None else interval_s

        async def _loop():
            while True:
                await asyncio.sleep(interval)
                self.monitor.collect()

        self._monitor_task = asyncio.ensure_future(_loop())
        logger.info(f"Performance monitoring started (interval={interval}s)")
        return self._monitor_task

    def stop_performance_monitoring(self) -> None:
        if self._monitor_task is not None:
            self._monitor_task.cancel()
            self._monitor_task = None
            logger.info("Performance monitoring stopped")

    def performance_report(self) -> PerformanceReport:
        return self.monitor.report()

    # ─── Lifecycle ─────────────────────────────────────────

    def stats(self) -> Dict[str, Any]:
        perf = self.scheduler.performance_stats()
        return {
            "location_cache_size": len(self.location_cache),
            "debounce_timers": len(self.debouncer),
            "pending_operations": self.scheduler.pending,
            "window_size": self.scheduler.window_size,
            "batch_size": self.scheduler.batch_size,
            "current_fps": perf.current_fps,
            "average_fps": perf.average_fps,
            "dropped_frames": perf.dropped_frames,
            "frame_count": perf.frame_count,
            "is_performance_good": perf.is_performance_good,
            "recommendations": perf.recommendations,
            "performance_report": asdict(self.performance_report()),
        }

    def reset(self) -> None:
        """Drop cached locations, pending timers and performance data; keep configuration."""
        self.debouncer.cancel_all()
        self.location_cache.clear()
        self.scheduler.reset_stats()
        self.monitor.reset()

    def destroy(self) -> None:
        if self._destroyed:
            return
        self.stop_auto_cleanup()
        self.stop_performance_monitoring()
        self.debouncer.cancel_all()
        self.location_cache.clear()
        self.scheduler.destroy()
        self._destroyed = True
        logger.info("Engine destroyed")

    def __enter__(self) -> "SpatialEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.destroy()
