"""
Periodic render performance sampling.

Each collect() takes one snapshot (FPS and last frame time from the render
scheduler, process memory from psutil). A snapshot that crosses a threshold
is logged and retunes the scheduler through adaptive_adjust().
"""

import logging
import os
import time
from collections import deque
from typing import Callable, Deque, List, Optional

import numpy as np
import psutil

from engine.scheduler import RenderScheduler
from shared import constants
from shared.types import PerformanceReport, PerformanceSnapshot

logger = logging.getLogger("PerformanceMonitor")


def process_memory_mb() -> float:
    """Resident set size of the current process in MB."""
    return psutil.Process(os.getpid()).memory_info().rss / (1024 * 1024)


def _trend(first: float, second: float, threshold: float, higher_is_better: bool = True) -> str:
    change = second - first if higher_is_better else first - second
    if change > threshold:
        return "improving"
    if change < -threshold:
        return "declining"
    return "stable"


class PerformanceMonitor:
    def __init__(
        self,
        scheduler: RenderScheduler,
        history_size: int = constants.PERF_HISTORY_SIZE,
        memory_limit_mb: float = constants.MEMORY_LIMIT_MB,
        memory_sampler: Callable[[], float] = process_memory_mb,
        clock: Callable[[], float] = time.time,
    ):
        self.scheduler = scheduler
        self.memory_limit_mb = memory_limit_mb
        self.adjustments = 0
        self._memory_sampler = memory_sampler
        self._clock = clock
        self._history: Deque[PerformanceSnapshot] = deque(maxlen=history_size)

    def collect(self) -> Optional[PerformanceSnapshot]:
        """Take one snapshot and react to anomalies. Returns None if sampling failed."""
        try:
            frames = self.scheduler.frame_history()
            snapshot = PerformanceSnapshot(
                timestamp=self._clock(),
                fps=self.scheduler.current_fps(),
                memory_mb=float(self._memory_sampler()),
                render_time_ms=frames[-1].frame_time_ms if frames else 0.0,
            )
        except Exception as e:
            logger.error(f"Failed to collect performance data: {e}")
            return None

        self._history.append(snapshot)
        self.check_anomalies(snapshot)
        return snapshot

    def check_anomalies(self, snapshot: PerformanceSnapshot) -> List[str]:
        warnings = []
        # 0 fps means fewer than two frames recorded, not a stalled renderer
        if 0 < snapshot.fps < constants.LOW_FPS_THRESHOLD:
            warnings.append(f"Low frame rate: {snapshot.fps:.1f} fps")
        if snapshot.memory_mb > self.memory_limit_mb:
            warnings.append(f"High memory usage: {snapshot.memory_mb:.1f} MB")
        if snapshot.render_time_ms > constants.SLOW_RENDER_MS:
            warnings.append(f"Slow frame: {snapshot.render_time_ms:.1f} ms")

        if warnings:
            logger.warning(f"Performance anomaly detected: {'; '.join(warnings)}")
            self.adjustments += 1
            self.scheduler.adaptive_adjust()
        return warnings

    def history(self) -> List[PerformanceSnapshot]:
        return list(self._history)

    def report(self) -> PerformanceReport:
        """Averages, a 0-100 score and trends over the most recent snapshots."""
        if not self._history:
            return PerformanceReport(
                average_fps=0.0,
                average_memory_mb=0.0,
                average_render_time_ms=0.0,
                score=0.0,
                fps_trend="stable",
                memory_trend="stable",
                recommendations=["No performance data collected yet"],
            )

        recent = list(self._history)[-constants.PERF_REPORT_WINDOW:]
        fps = np.array([s.fps for s in recent])
        memory = np.array([s.memory_mb for s in recent])
        render = np.array([s.render_time_ms for s in recent])

        avg_fps = float(fps.mean())
        avg_memory = float(memory.mean())
        avg_render = float(render.mean())

        fps_score = min(100.0, avg_fps / self.scheduler.target_fps * 100)
        memory_score = max(0.0, 100 - avg_memory / self.memory_limit_mb * 100)
        render_score = max(0.0, 100 - avg_render / constants.SLOW_RENDER_MS * 100)
        score = (fps_score + memory_score + render_score) / 3

        half = len(recent) // 2
        if half == 0:
            fps_trend = memory_trend = "stable"
        else:
            fps_trend = _trend(fps[:half].mean(), fps[half:].mean(), constants.FPS_TREND_THRESHOLD)
            memory_trend = _trend(memory[:half].mean(), memory[half:].mean(),
                                  constants.MEMORY_TREND_THRESHOLD_MB, higher_is_better=False)

        recommendations = []
        if score < 60:
            recommendations.append("Overall performance is poor; review rendering end to end")
        elif score < 80:
            recommendations.append("Performance could be better; target the slowest stage")
        if fps_score < 70:
            recommendations.append("Frame rate is low; enable render optimizations")
        if memory_score < 70:
            recommendations.append("Memory usage is high; reduce cached or rendered items")
        if fps_trend == "declining":
            recommendations.append("Frame rate is trending down")
        if memory_trend == "declining":
            recommendations.append("Memory usage keeps growing; check for leaks")

        return PerformanceReport(
            average_fps=avg_fps,
            average_memory_mb=avg_memory,
            average_render_time_ms=avg_render,
            score=score,
            fps_trend=fps_trend,
            memory_trend=memory_trend,
            recommendations=recommendations,
        )

    def reset(self) -> None:
        self._history.clear()
        self.adjustments = 0
