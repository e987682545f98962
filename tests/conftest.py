"""Shared fixtures: a manually driven clock, fake client connections and tick builders."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from tickstream.bus.event_bus import EventBus
from tickstream.constants import EventKind
from tickstream.data.market_data import Tick
from tickstream.feed.parser import StockRow
from tickstream.gateway.connection import ConnectionSendError
from tickstream.protocol.codec import WireMessage, decode


class ManualTimer:
    def __init__(
        self,
        scheduler: ManualScheduler,
        when: float,
        callback: Callable[[], None],
        interval: float | None = None,
    ) -> None:
        self._scheduler = scheduler
        self.when = when
        self.callback = callback
        self.interval = interval
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler:
    """Scheduler whose clock only moves when ``advance`` is called."""

    def __init__(self) -> None:
        self.now = 0.0
        self._timers: list[ManualTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self, self.now + delay, callback)
        self._timers.append(timer)
        return timer

    def call_every(self, interval: float, callback: Callable[[], None]) -> ManualTimer:
        timer = ManualTimer(self, self.now + interval, callback, interval)
        self._timers.append(timer)
        return timer

    @property
    def active_timers(self) -> int:
        return sum(1 for t in self._timers if not t.cancelled())

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due timers in deadline order."""
        target = self.now + seconds
        while True:
            due = [t for t in self._timers if not t.cancelled() and t.when <= target + 1e-9]
            if not due:
                break
            timer = min(due, key=lambda t: t.when)
            self.now = max(self.now, timer.when)
            if timer.interval is None:
                timer.cancel()
            else:
                timer.when += timer.interval
            timer.callback()
        self._timers = [t for t in self._timers if not t.cancelled()]
        self.now = target


class FakeConnection:
    """In-memory client connection recording every frame it is sent."""

    def __init__(self, fail: bool = False) -> None:
        self.sent: list[str] = []
        self.fail = fail
        self.open = True
        self.close_calls = 0

    @property
    def is_open(self) -> bool:
        return self.open

    def send(self, data: str) -> None:
        if self.fail:
            raise ConnectionSendError("simulated transport failure")
        self.sent.append(data)

    async def close(self) -> None:
        self.open = False
        self.close_calls += 1

    @property
    def messages(self) -> list[WireMessage | None]:
        return [decode(frame) for frame in self.sent]


class EventRecorder:
    """Collects payloads published on a bus, per event kind."""

    def __init__(self, bus: EventBus, *kinds: EventKind) -> None:
        self.events: dict[EventKind, list[Any]] = {kind: [] for kind in kinds}
        for kind in kinds:
            bus.subscribe(kind, self.events[kind].append)

    def __getitem__(self, kind: EventKind) -> list[Any]:
        return self.events[kind]


def make_tick(
    index: int = 0,
    symbol: str = "AAPL",
    close: float | None = None,
    volume: int = 1000,
    open_int: int | None = None,
) -> Tick:
    price = close if close is not None else 100.0 + index
    return Tick(
        symbol=symbol,
        date=f"2020-01-{index % 28 + 1:02d}",
        open=price - 0.5,
        high=price + 1.0,
        low=price - 1.0,
        close=price,
        volume=volume,
        open_int=open_int,
    )


def make_rows(count: int, start_day: int = 1) -> list[StockRow]:
    return [
        StockRow(
            date=f"2020-01-{start_day + i:02d}",
            open=10.0 + i,
            high=11.0 + i,
            low=9.0 + i,
            close=10.5 + i,
            volume=100 * (i + 1),
        )
        for i in range(count)
    ]


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()
