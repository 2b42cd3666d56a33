"""
Timer scheduling for the pipeline.

Every timer the pipeline owns (periodic flush, heatmap flush, long-press)
goes through a Scheduler so it can be cancelled deterministically and
driven by virtual time in tests.
"""

import asyncio
import heapq
import itertools
import logging
import time
from typing import Any, Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)


class TimerHandle:
    """Cancellable handle for a scheduled callback."""

    def __init__(self, when: float, callback: Callable[..., Any], args: tuple):
        self.when = when
        self._callback = callback
        self._args = args
        self._cancelled = False
        self._fired = False
        self._loop_handle: Optional[asyncio.TimerHandle] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def active(self) -> bool:
        """True until the callback has run or the handle was cancelled."""
        return not (self._cancelled or self._fired)

    def cancel(self):
        """Cancel the callback. Safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._loop_handle is not None:
            self._loop_handle.cancel()

    def _run(self):
        if not self.active:
            return
        self._fired = True
        try:
            self._callback(*self._args)
        except Exception:
            logger.warning("Scheduled callback %r failed", self._callback, exc_info=True)


class Scheduler:
    """
    Interface shared by the real and the virtual scheduler.

    Times are in seconds on a monotonic clock.
    """

    def now(self) -> float:
        raise NotImplementedError

    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> TimerHandle:
        raise NotImplementedError

    def spawn(self, coro: Awaitable) -> "asyncio.Future":
        """Run a coroutine in the background on the running event loop."""
        return asyncio.ensure_future(coro)


class LoopScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> TimerHandle:
        loop = self._get_loop()
        handle = TimerHandle(self.now() + delay, callback, args)
        handle._loop_handle = loop.call_later(delay, handle._run)
        return handle

    def spawn(self, coro: Awaitable) -> "asyncio.Future":
        return asyncio.ensure_future(coro, loop=self._get_loop())


class ManualScheduler(Scheduler):
    """
    Virtual-time scheduler.

    Nothing fires until advance() is called, which makes timer-driven
    behaviour (long-press, periodic flush) testable without sleeping.

    Usage:
        scheduler = ManualScheduler()
        scheduler.call_later(0.5, fire)
        scheduler.advance(0.5)  # fire() runs here
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._counter = itertools.count()
        self._timers: List[tuple] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args) -> TimerHandle:
        handle = TimerHandle(self._now + delay, callback, args)
        heapq.heappush(self._timers, (handle.when, next(self._counter), handle))
        return handle

    def advance(self, seconds: float):
        """
        Move virtual time forward, firing due timers in order.

        Timers scheduled by a firing callback are honoured if they fall
        inside the advanced window.
        """
        target = self._now + seconds
        while self._timers and self._timers[0][0] <= target:
            when, _, handle = heapq.heappop(self._timers)
            self._now = max(self._now, when)
            handle._run()
        self._now = target

    @property
    def pending(self) -> int:
        """Number of timers that are still waiting to fire."""
        return sum(1 for _, _, handle in self._timers if handle.active)
