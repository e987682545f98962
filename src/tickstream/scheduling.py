"""Timer and ticker handles on top of the asyncio event loop.

Components take a ``Scheduler`` instead of calling the loop directly, so the
pacing of replay and batch flushing can be driven by any clock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class TimerHandle(Protocol):
    """Cancellable scheduled callback."""

    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    """Source of one-shot and periodic timers."""

    def call_later(self, delay: float, callback: Callback) -> TimerHandle: ...

    def call_every(self, interval: float, callback: Callback) -> TimerHandle: ...


class PeriodicHandle:
    """
    Fires ``callback`` every ``interval`` seconds until cancelled.

    Deadlines are computed from the start time, so a slow callback does not
    push later ticks back.
    """

    def __init__(
        self, loop: asyncio.AbstractEventLoop, interval: float, callback: Callback
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got: {interval}")
        self._loop = loop
        self._interval = interval
        self._callback = callback
        self._start = loop.time()
        self._count = 0
        self._cancelled = False
        self._handle = loop.call_at(self._start + interval, self._run)

    @property
    def interval(self) -> float:
        return self._interval

    def _run(self) -> None:
        if self._cancelled:
            return
        self._count += 1
        # Schedule the next deadline first; the callback may cancel us
        self._handle = self._loop.call_at(
            self._start + (self._count + 1) * self._interval, self._run
        )
        self._callback()

    def cancel(self) -> None:
        self._cancelled = True
        self._handle.cancel()

    def cancelled(self) -> bool:
        return self._cancelled


class LoopScheduler:
    """Scheduler backed by the running asyncio loop (resolved at call time)."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        return self._get_loop().call_later(delay, callback)

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        return PeriodicHandle(self._get_loop(), interval, callback)
