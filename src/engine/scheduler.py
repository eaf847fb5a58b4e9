"""
Render scheduling: windowed visibility, cooperative batch execution and
frame-rate driven tuning.

One RenderScheduler belongs to one engine session and is driven from a single
event loop; nothing here is thread-safe and nothing needs to be.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from shared import constants
from shared.types import (
    Coordinate,
    FrameSample,
    PerformanceStats,
    ViewportBounds,
    VirtualizationResult,
    coordinate_of,
)

logger = logging.getLogger("RenderScheduler")

Operation = Callable[[], Any]


class RenderScheduler:
    def __init__(
        self,
        window_size: int = constants.DEFAULT_WINDOW_SIZE,
        batch_size: int = constants.DEFAULT_BATCH_SIZE,
        target_fps: float = constants.DEFAULT_TARGET_FPS,
        enable_virtualization: bool = True,
        enable_batching: bool = True,
        yield_interval_s: float = 0.0,
        history_size: int = constants.FRAME_HISTORY_SIZE,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.window_size = int(window_size)
        self.batch_size = int(batch_size)
        self.target_fps = float(target_fps)
        self.enable_virtualization = enable_virtualization
        self.enable_batching = enable_batching
        self.yield_interval_s = yield_interval_s
        self._clock = clock

        self._queue: Deque[Operation] = deque()
        self._runner: Optional[asyncio.Task] = None
        self._batch_override: Optional[int] = None

        self._history: Deque[FrameSample] = deque(maxlen=history_size)
        self._last_frame_ms: Optional[float] = None
        self._frame_count = 0
        self._dropped_frames = 0

    # ─── Virtualization ────────────────────────────────────

    def virtualize(
        self,
        items: Sequence[Any],
        bounds: ViewportBounds,
        window_size: Optional[int] = None,
        get_coordinate: Optional[Callable[[Any], Optional[Coordinate]]] = None,
    ) -> VirtualizationResult:
        """
        Collect up to `window_size` items inside `bounds`, scanning in order.

        start_index / end_index bracket the first contiguous run of matches
        only. Matches after a gap still land in `visible` but do not move
        end_index. Both are 0 when nothing matches.
        """
        items = list(items or [])
        total = len(items)
        if not self.enable_virtualization:
            return VirtualizationResult(visible=items, total=total, start_index=0,
                                        end_index=max(total - 1, 0), bounds=bounds)

        limit = self.window_size if window_size is None else int(window_size)
        locate = get_coordinate or coordinate_of
        start = time.perf_counter()

        visible: List[Any] = []
        start_index = end_index = -1
        run_open = False
        for i, item in enumerate(items):
            if len(visible) >= limit:
                break
            coord = locate(item)
            if coord is not None and bounds.contains(coord):
                if start_index == -1:
                    start_index = i
                    run_open = True
                if run_open:
                    end_index = i
                visible.append(item)
            elif start_index != -1:
                run_open = False

        logger.debug(f"Virtualized {len(visible)}/{total} items in "
                     f"{(time.perf_counter() - start) * 1000:.2f}ms")
        return VirtualizationResult(
            visible=visible,
            total=total,
            start_index=max(start_index, 0),
            end_index=max(end_index, 0),
            bounds=bounds,
        )

    # ─── Batch execution ───────────────────────────────────

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def is_processing(self) -> bool:
        return self._runner is not None and not self._runner.done()

    async def batch_execute(self, operations: Iterable[Operation],
                            batch_size: Optional[int] = None) -> None:
        """
        Queue `operations` and return once the queue has drained.

        A single runner pulls a batch at a time, runs it synchronously, then
        yields to the event loop before the next batch. The batch size is
        read before every batch: the latest explicit `batch_size` wins until
        the queue drains, otherwise the current `self.batch_size` (which
        adaptive_adjust may change mid-drain). Callers arriving while the
        runner is busy share it.
        """
        operations = list(operations or [])
        if not self.enable_batching:
            for op in operations:
                self._run_operation(op)
            return

        if batch_size is not None:
            self._batch_override = int(batch_size)
        self._queue.extend(operations)
        if not self.is_processing:
            self._runner = asyncio.ensure_future(self._process_queue())
        await asyncio.shield(self._runner)

    def _current_batch_size(self) -> int:
        size = self.batch_size if self._batch_override is None else self._batch_override
        return max(size, 1)

    async def _process_queue(self) -> None:
        start = time.perf_counter()
        batches = 0
        try:
            while self._queue:
                count = min(self._current_batch_size(), len(self._queue))
                for _ in range(count):
                    self._run_operation(self._queue.popleft())
                batches += 1
                await asyncio.sleep(self.yield_interval_s)
        finally:
            self._batch_override = None
        logger.debug(f"Render queue drained: {batches} batch(es) in "
                     f"{(time.perf_counter() - start) * 1000:.1f}ms")

    @staticmethod
    def _run_operation(operation: Operation) -> None:
        try:
            operation()
        except Exception as e:
            logger.error(f"Render operation failed: {e}")

    # ─── Frame monitoring ──────────────────────────────────

    @property
    def frame_time_budget_ms(self) -> float:
        return 1000.0 / self.target_fps

    def record_frame(self, now_ms: Optional[float] = None) -> Optional[FrameSample]:
        """
        Register a frame boundary. The first call only primes the clock;
        later calls append a FrameSample to the rolling history.
        """
        if now_ms is None:
            now_ms = self._clock() * 1000.0

        sample = None
        if self._last_frame_ms is not None:
            frame_time = now_ms - self._last_frame_ms
            if frame_time > 0:
                if frame_time > self.frame_time_budget_ms * constants.DROPPED_FRAME_FACTOR:
                    self._dropped_frames += 1
                sample = FrameSample(frame_time_ms=frame_time, fps=1000.0 / frame_time,
                                     timestamp=now_ms, dropped_frames=self._dropped_frames)
                self._history.append(sample)

        self._last_frame_ms = now_ms
        self._frame_count += 1
        return sample

    def frame_history(self) -> List[FrameSample]:
        return list(self._history)

    def current_fps(self) -> float:
        if len(self._history) < 2:
            return 0.0
        recent = list(self._history)[-constants.FPS_SAMPLE_WINDOW:]
        avg_frame_time = float(np.mean([s.frame_time_ms for s in recent]))
        return 1000.0 / avg_frame_time

    def average_fps(self) -> float:
        if not self._history:
            return 0.0
        return float(np.mean([s.fps for s in self._history]))

    def performance_stats(self) -> PerformanceStats:
        current = self.current_fps()
        is_good = current >= self.target_fps * constants.DEGRADED_FPS_RATIO

        recommendations = []
        if not is_good:
            recommendations.append("Frame rate below target; reduce rendered items")
            recommendations.append("Enable virtualization to limit the visible window")
            recommendations.append("Use LOD levels to cluster at low zoom")
            recommendations.append("Enable batching to spread render work across frames")
        if self._dropped_frames > self._frame_count * 0.1:
            recommendations.append("High dropped-frame ratio; look for work blocking the event loop")

        return PerformanceStats(
            current_fps=current,
            average_fps=self.average_fps(),
            dropped_frames=self._dropped_frames,
            frame_count=self._frame_count,
            is_performance_good=is_good,
            recommendations=recommendations,
        )

    def adaptive_adjust(self) -> Tuple[int, int]:
        """
        Retune window_size / batch_size from the current FPS.
        Returns the (window_size, batch_size) in effect afterwards.
        """
        if len(self._history) < 2:
            return self.window_size, self.batch_size

        fps = self.current_fps()
        target = self.target_fps
        if fps < target * constants.SEVERE_FPS_RATIO:
            self.window_size = max(constants.SEVERE_MIN_WINDOW, int(self.window_size * 0.5))
            self.batch_size = max(constants.SEVERE_MIN_BATCH, int(self.batch_size * 0.5))
            logger.warning(f"Severe frame drop ({fps:.1f} fps), window={self.window_size} "
                           f"batch={self.batch_size}")
        elif fps < target * constants.DEGRADED_FPS_RATIO:
            self.window_size = max(constants.DEGRADED_MIN_WINDOW, int(self.window_size * 0.8))
            self.batch_size = max(constants.DEGRADED_MIN_BATCH, int(self.batch_size * 0.8))
            logger.info(f"Frame rate degraded ({fps:.1f} fps), window={self.window_size} "
                        f"batch={self.batch_size}")
        elif fps > target * constants.HEALTHY_FPS_RATIO:
            self.window_size = min(constants.MAX_WINDOW, int(round(self.window_size * 1.1)))
            self.batch_size = min(constants.MAX_BATCH, int(round(self.batch_size * 1.1)))
        return self.window_size, self.batch_size

    # ─── Lifecycle ─────────────────────────────────────────

    def reset_stats(self) -> None:
        self._history.clear()
        self._frame_count = 0
        self._dropped_frames = 0
        self._last_frame_ms = None
        logger.info("Render performance stats reset")

    def destroy(self) -> None:
        self._queue.clear()
        if self._runner is not None and not self._runner.done():
            self._runner.cancel()
        self._runner = None
        self._batch_override = None
        self._history.clear()
        self._last_frame_ms = None
        logger.info("Render scheduler destroyed")


async def batch_process(items: Sequence[Any], processor: Callable[[Any], Awaitable[Any]],
                        batch_size: int = 10, delay_s: float = 0.0) -> List[Any]:
    """
    Run an async `processor` over `items`, `batch_size` at a time.
    Items in a batch run concurrently; results keep input order.
    """
    results: List[Any] = []
    items = list(items or [])
    for i in range(0, len(items), batch_size):
        batch = items[i:i + batch_size]
        results.extend(await asyncio.gather(*(processor(item) for item in batch)))
        if i + batch_size < len(items) and delay_s > 0:
            await asyncio.sleep(delay_s)
    return results
