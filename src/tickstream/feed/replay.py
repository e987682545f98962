"""Data Replay Engine.

Turns a static, date-sorted tick dataset into a timed stream published on the
event bus.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date

from tickstream.bus.event_bus import EventBus
from tickstream.bus.events import ErrorEvent, ReplayStatusEvent
from tickstream.constants import (
    BASE_INTERVAL_SECONDS,
    ErrorCode,
    EventKind,
    ReplayState,
    ReplayStatus,
)
from tickstream.data.market_data import Tick
from tickstream.feed.normalize import (
    filter_ticks_by_date_range,
    normalize_to_ticks,
    sort_ticks_by_date,
)
from tickstream.feed.parser import StockRow
from tickstream.scheduling import LoopScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplayConfig:
    """Playback settings for ``DataReplay.start``."""

    speed_multiplier: float = 1.0  # 2.0 = twice as fast, 0.5 = half speed
    loop: bool = False
    start_date: date | None = None
    end_date: date | None = None

    def __post_init__(self) -> None:
        if self.speed_multiplier <= 0:
            raise ValueError(f"speed_multiplier must be positive, got: {self.speed_multiplier}")


@dataclass(frozen=True)
class ReplayProgress:
    """Point-in-time view of the replay cursor."""

    state: ReplayState
    symbol: str | None
    current_index: int
    total_ticks: int

    @property
    def is_playing(self) -> bool:
        return self.state is ReplayState.PLAYING

    @property
    def is_paused(self) -> bool:
        return self.state is ReplayState.PAUSED

    @property
    def progress(self) -> float:
        return self.current_index / self.total_ticks if self.total_ticks > 0 else 0.0


class DataReplay:
    """
    Replays historical ticks at a configurable speed.

    State machine::

        IDLE -> PLAYING <-> PAUSED -> STOPPED
        load() returns to IDLE from any state.

    Usage:
        replay = DataReplay(bus)
        replay.load("AAPL", rows)
        replay.start(ReplayConfig(speed_multiplier=10, loop=True))
    """

    def __init__(
        self,
        bus: EventBus,
        scheduler: Scheduler | None = None,
        base_interval: float = BASE_INTERVAL_SECONDS,
    ) -> None:
        self._bus = bus
        self._scheduler = scheduler or LoopScheduler()
        self.base_interval = base_interval

        self._symbol: str | None = None
        self._ticks: list[Tick] = []
        self._playlist: list[Tick] = []
        self._cursor = 0
        self._config = ReplayConfig()
        self._state = ReplayState.IDLE
        self._ticker: TimerHandle | None = None

    # ------------------------------------------------------------------
    # Dataset
    # ------------------------------------------------------------------

    def load(self, symbol: str, rows: Iterable[StockRow]) -> None:
        """
        Replace the dataset with ``rows`` for ``symbol`` and reset to IDLE.

        Raises:
            ValueError: If a row date is not ISO formatted. The current
                dataset and playback are left untouched.
        """
        ticks = sort_ticks_by_date(normalize_to_ticks(symbol, rows))
        self.stop()
        self._symbol = symbol
        self._ticks = ticks
        self._playlist = list(self._ticks)
        self._cursor = 0
        self._state = ReplayState.IDLE
        logger.info(f"Loaded {len(self._ticks)} ticks for {symbol}")

    @property
    def ticks(self) -> list[Tick]:
        """All loaded ticks, oldest first."""
        return list(self._ticks)

    @property
    def symbol(self) -> str | None:
        return self._symbol

    @property
    def state(self) -> ReplayState:
        return self._state

    @property
    def config(self) -> ReplayConfig:
        return self._config

    @property
    def interval(self) -> float:
        """Seconds between ticks for the current config."""
        return self.base_interval / self._config.speed_multiplier

    # ------------------------------------------------------------------
    # Playback control
    # ------------------------------------------------------------------

    def start(self, config: ReplayConfig | None = None) -> bool:
        """
        Begin playback.

        Configuration problems are published as error events and leave the
        engine in its previous state.

        Returns:
            True if playback started.
        """
        config = config or ReplayConfig()

        if not self._ticks:
            self._reject("No data loaded for replay", ErrorCode.NO_DATA)
            return False

        if self._state is ReplayState.PLAYING:
            logger.debug("Replay already playing")
            return False

        playlist = self._ticks
        if config.start_date is not None or config.end_date is not None:
            playlist = filter_ticks_by_date_range(self._ticks, config.start_date, config.end_date)

        if not playlist:
            self._reject("No data in specified date range", ErrorCode.NO_DATA_IN_RANGE)
            return False

        self._cancel_ticker()
        self._config = config
        self._playlist = playlist
        self._cursor = 0
        self._state = ReplayState.PLAYING
        self._publish_status(ReplayStatus.STARTED)

        self._ticker = self._scheduler.call_every(self.interval, self._play_next_tick)
        logger.info(
            f"Replaying {len(playlist)} ticks of {self._symbol} at {config.speed_multiplier}x "
            f"(interval {self.interval:.3f}s, loop={config.loop})"
        )
        return True

    def pause(self) -> None:
        if self._state is not ReplayState.PLAYING:
            return
        self._cancel_ticker()
        self._state = ReplayState.PAUSED
        self._publish_status(ReplayStatus.PAUSED)

    def resume(self) -> None:
        if self._state is not ReplayState.PAUSED:
            return
        self._state = ReplayState.PLAYING
        self._ticker = self._scheduler.call_every(self.interval, self._play_next_tick)
        self._publish_status(ReplayStatus.RESUMED)

    def stop(self) -> None:
        """Cancel playback. No-op unless playing or paused."""
        if self._state not in (ReplayState.PLAYING, ReplayState.PAUSED):
            return
        self._cancel_ticker()
        self._state = ReplayState.STOPPED
        self._publish_status(ReplayStatus.STOPPED)
        logger.info(f"Replay stopped at {self._cursor}/{len(self._playlist)}")

    def seek_to(self, index: int) -> bool:
        """Move the cursor. Out-of-range indexes are ignored."""
        if 0 <= index < len(self._playlist):
            self._cursor = index
            return True
        return False

    def status(self) -> ReplayProgress:
        return ReplayProgress(
            state=self._state,
            symbol=self._symbol,
            current_index=self._cursor,
            total_ticks=len(self._playlist),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _play_next_tick(self) -> None:
        if self._cursor >= len(self._playlist):
            if self._config.loop:
                self._cursor = 0
                logger.debug(f"Replay of {self._symbol} looping to start")
            else:
                self.stop()
                return

        tick = self._playlist[self._cursor]
        self._cursor += 1
        self._bus.publish(EventKind.TICK, tick)

    def _cancel_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def _publish_status(self, status: ReplayStatus) -> None:
        self._bus.publish(EventKind.REPLAY_STATUS, ReplayStatusEvent(status, self._symbol))

    def _reject(self, message: str, code: ErrorCode) -> None:
        logger.warning(f"Replay start rejected: {message}")
        self._bus.publish(EventKind.ERROR, ErrorEvent(message=message, code=code))
