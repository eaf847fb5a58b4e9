"""
Unit tests for the performance monitor: anomaly detection, adaptive retuning and reports.
"""

import itertools

import pytest

from engine.monitor import PerformanceMonitor
from engine.scheduler import RenderScheduler
from shared.types import PerformanceSnapshot


def _feed_frames(scheduler, frame_ms, count):
    t = 0.0
    scheduler.record_frame(t)
    for _ in range(count):
        t += frame_ms
        scheduler.record_frame(t)


def _scheduler():
    return RenderScheduler(window_size=100, batch_size=50, target_fps=60)


def test_healthy_snapshot_leaves_scheduler_alone():
    scheduler = _scheduler()
    _feed_frames(scheduler, 16.0, 10)
    monitor = PerformanceMonitor(scheduler, memory_sampler=lambda: 50.0)

    snapshot = monitor.collect()

    assert snapshot.fps == pytest.approx(62.5)
    assert snapshot.render_time_ms == pytest.approx(16.0)
    assert snapshot.memory_mb == 50.0
    assert monitor.adjustments == 0
    assert (scheduler.window_size, scheduler.batch_size) == (100, 50)


def test_low_fps_triggers_adaptive_adjust():
    scheduler = _scheduler()
    _feed_frames(scheduler, 40.0, 10)
    monitor = PerformanceMonitor(scheduler, memory_sampler=lambda: 50.0)

    monitor.collect()

    assert monitor.adjustments == 1
    assert (scheduler.window_size, scheduler.batch_size) == (50, 25)


def test_memory_over_limit_is_an_anomaly():
    monitor = PerformanceMonitor(_scheduler(), memory_limit_mb=512)
    warnings = monitor.check_anomalies(
        PerformanceSnapshot(timestamp=0.0, fps=62.5, memory_mb=600.0, render_time_ms=16.0))

    assert len(warnings) == 1
    assert "memory" in warnings[0]
    assert monitor.adjustments == 1


def test_no_frames_yet_is_not_an_anomaly():
    scheduler = _scheduler()
    monitor = PerformanceMonitor(scheduler, memory_sampler=lambda: 50.0)

    snapshot = monitor.collect()

    assert snapshot.fps == 0.0
    assert snapshot.render_time_ms == 0.0
    assert monitor.adjustments == 0


def test_failed_sample_is_skipped(caplog):
    def broken_sampler():
        raise OSError("process gone")

    monitor = PerformanceMonitor(_scheduler(), memory_sampler=broken_sampler)

    assert monitor.collect() is None
    assert monitor.history() == []
    assert "process gone" in caplog.text


def test_history_is_bounded():
    monitor = PerformanceMonitor(_scheduler(), history_size=5, memory_sampler=lambda: 50.0)
    for _ in range(8):
        monitor.collect()
    assert len(monitor.history()) == 5


def test_empty_report():
    report = PerformanceMonitor(_scheduler()).report()
    assert report.score == 0.0
    assert (report.fps_trend, report.memory_trend) == ("stable", "stable")
    assert report.recommendations


def test_report_averages_and_fps_trend():
    scheduler = _scheduler()
    monitor = PerformanceMonitor(scheduler, memory_sampler=lambda: 50.0)

    _feed_frames(scheduler, 40.0, 10)
    monitor.collect()
    monitor.collect()
    _feed_frames(scheduler, 16.0, 10)
    monitor.collect()
    monitor.collect()

    report = monitor.report()
    assert report.average_fps == pytest.approx((25.0 + 25.0 + 62.5 + 62.5) / 4)
    assert report.average_render_time_ms == pytest.approx(28.0)
    assert report.fps_trend == "improving"
    assert report.memory_trend == "stable"
    assert 0 <= report.score <= 100


def test_report_flags_growing_memory():
    scheduler = _scheduler()
    _feed_frames(scheduler, 16.0, 10)
    readings = itertools.chain([50.0, 50.0, 80.0], itertools.repeat(80.0))
    monitor = PerformanceMonitor(scheduler, memory_sampler=lambda: next(readings))

    for _ in range(4):
        monitor.collect()

    report = monitor.report()
    assert report.memory_trend == "declining"
    assert report.fps_trend == "stable"
    assert "Memory usage keeps growing; check for leaks" in report.recommendations


def test_reset_clears_history():
    monitor = PerformanceMonitor(_scheduler(), memory_sampler=lambda: 50.0)
    monitor.collect()
    monitor.reset()
    assert monitor.history() == []
    assert monitor.adjustments == 0
