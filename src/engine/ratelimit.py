"""
Debounce and throttle primitives for gesture / location bursts.

Debounce timers are asyncio TimerHandles, so debounced callables must be
invoked from inside a running event loop. Handles are owned by whoever
created them: nothing is cancelled implicitly, call cancel() / cancel_all().
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

from shared.constants import DEFAULT_DEBOUNCE_MS

logger = logging.getLogger("RateLimit")


class Debounced:
    """
    Trailing mode (default): the last call of a burst runs once the burst
    has been quiet for `delay_ms`.
    Leading mode: the first call of a burst runs immediately, the rest of the
    burst is dropped.
    """

    def __init__(self, fn: Callable[..., Any], delay_ms: float, leading: bool = False,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        self.fn = fn
        self.delay_s = delay_ms / 1000.0
        self.leading = leading
        self._loop = loop
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def __call__(self, *args, **kwargs) -> None:
        loop = self._loop or asyncio.get_running_loop()
        fire_now = self.leading and self._handle is None
        self.cancel()

        if self.leading:
            self._handle = loop.call_later(self.delay_s, self._clear)
            if fire_now:
                self.fn(*args, **kwargs)
        else:
            self._handle = loop.call_later(self.delay_s, self._fire, args, kwargs)

    def _fire(self, args, kwargs) -> None:
        self._handle = None
        self.fn(*args, **kwargs)

    def _clear(self) -> None:
        self._handle = None

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


def debounce(fn: Callable[..., Any], delay_ms: float = DEFAULT_DEBOUNCE_MS,
             leading: bool = False) -> Debounced:
    return Debounced(fn, delay_ms, leading=leading)


class Throttled:
    """At most one call per `interval_ms`; the first call in a window fires immediately."""

    def __init__(self, fn: Callable[..., Any], interval_ms: float,
                 clock: Callable[[], float] = time.monotonic):
        self.fn = fn
        self.interval_s = interval_ms / 1000.0
        self._clock = clock
        self._last_call: Optional[float] = None

    def __call__(self, *args, **kwargs) -> Any:
        now = self._clock()
        if self._last_call is not None and now - self._last_call < self.interval_s:
            return None
        self._last_call = now
        return self.fn(*args, **kwargs)

    def reset(self) -> None:
        self._last_call = None


def throttle(fn: Callable[..., Any], interval_ms: float,
             clock: Callable[[], float] = time.monotonic) -> Throttled:
    return Throttled(fn, interval_ms, clock=clock)


class Debouncer:
    """Keyed trailing debounce, e.g. one timer per location source."""

    def __init__(self, delay_ms: float = DEFAULT_DEBOUNCE_MS):
        self.delay_ms = delay_ms
        self._timers: Dict[str, Debounced] = {}

    def call(self, key: str, callback: Callable[..., Any], *args,
             delay_ms: Optional[float] = None) -> None:
        def run(*call_args):
            self._timers.pop(key, None)
            callback(*call_args)

        timer = Debounced(run, self.delay_ms if delay_ms is None else delay_ms)
        # Raises outside a running loop; the registry only holds scheduled timers.
        timer(*args)

        existing = self._timers.get(key)
        if existing is not None:
            existing.cancel()
        self._timers[key] = timer

    def cancel(self, key: str) -> bool:
        timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def cancel_all(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        if self._timers:
            logger.debug(f"Cancelled {len(self._timers)} debounce timer(s)")
        self._timers.clear()

    def __len__(self) -> int:
        return len(self._timers)
