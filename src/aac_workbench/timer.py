# SPDX-License-Identifier: Apache-2.0
"""
Single-slot delay timer over an injectable scheduler.

The default scheduler is the running asyncio loop (``loop.call_later``).
Tests pass a ManualScheduler and advance time explicitly.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from typing import Any, Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle: ...


class LoopScheduler:
    """Schedules on whichever asyncio loop is running at call time."""

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


# ============================================================================
# Manual scheduler (deterministic time)
# ============================================================================


class _ManualHandle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler driven by explicit ``advance()`` calls instead of a clock."""

    def __init__(self) -> None:
        self.now = 0.0
        self._queue: list[tuple[float, int, _ManualHandle, Callable[[], Any]]] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], Any]) -> _ManualHandle:
        handle = _ManualHandle()
        heapq.heappush(self._queue, (self.now + delay, next(self._seq), handle, callback))
        return handle

    @property
    def pending(self) -> int:
        return sum(1 for _, _, h, _ in self._queue if not h.cancelled)

    def advance(self, seconds: float) -> None:
        """Move time forward, firing every due callback in order."""
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle, callback = heapq.heappop(self._queue)
            self.now = when
            if not handle.cancelled:
                callback()
        self.now = target


# ============================================================================
# SingleSlotTimer
# ============================================================================


class SingleSlotTimer:
    """Holds at most one pending callback.

    ``schedule()`` cancels whatever is pending and replaces it, so only the
    most recent request ever fires.
    """

    def __init__(self, scheduler: Scheduler | None = None) -> None:
        self._scheduler = scheduler or LoopScheduler()
        self._handle: TimerHandle | None = None

    @property
    def is_pending(self) -> bool:
        return self._handle is not None

    def schedule(self, delay: float, callback: Callable[[], Any]) -> None:
        self.cancel()

        def _fire() -> None:
            self._handle = None
            callback()

        self._handle = self._scheduler.call_later(delay, _fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
