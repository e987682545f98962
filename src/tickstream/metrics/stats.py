"""Market metrics calculator.

Keeps a bounded newest-first window of ticks and derives aggregate statistics
from it.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Sequence
from datetime import datetime, timezone

from tickstream.constants import DISPLAY_PRECISION, METRICS_WINDOW_SIZE
from tickstream.data.market_data import MarketMetrics, Tick

logger = logging.getLogger(__name__)


def empty_metrics() -> MarketMetrics:
    """Snapshot for an empty window."""
    return MarketMetrics(
        total_ticks=0,
        total_volume=0,
        average_price=0.0,
        highest_price=0.0,
        lowest_price=0.0,
        price_change=0.0,
        price_change_percent=0.0,
        last_update=datetime.now(timezone.utc),
    )


def calculate(window: Sequence[Tick]) -> MarketMetrics:
    """
    Compute metrics for a newest-first window.

    Price change is measured from the oldest tick (last element) to the newest
    (first element). A non-positive base price gives a change percent of 0.
    """
    if not window:
        return empty_metrics()

    prices = [t.close for t in window]
    total_volume = sum(t.volume for t in window)

    first_price = window[-1].close
    last_price = window[0].close
    price_change = last_price - first_price
    price_change_percent = (price_change / first_price) * 100 if first_price > 0 else 0.0

    return MarketMetrics(
        total_ticks=len(window),
        total_volume=total_volume,
        average_price=round(sum(prices) / len(prices), DISPLAY_PRECISION),
        highest_price=round(max(prices), DISPLAY_PRECISION),
        lowest_price=round(min(prices), DISPLAY_PRECISION),
        price_change=round(price_change, DISPLAY_PRECISION),
        price_change_percent=round(price_change_percent, DISPLAY_PRECISION),
        last_update=datetime.now(timezone.utc),
    )


class MetricsCalculator:
    """Rolling-window metrics over the most recent ticks."""

    def __init__(self, max_ticks: int = METRICS_WINDOW_SIZE) -> None:
        if max_ticks <= 0:
            raise ValueError(f"max_ticks must be positive, got: {max_ticks}")
        self.max_ticks = max_ticks
        self._window: deque[Tick] = deque(maxlen=max_ticks)

    def add_tick(self, tick: Tick) -> MarketMetrics:
        """Prepend ``tick`` (oldest entries fall off the tail) and recompute."""
        self._window.appendleft(tick)
        return self.calculate()

    def calculate(self) -> MarketMetrics:
        return calculate(self._window)

    def reset(self) -> None:
        self._window.clear()
        logger.debug("Metrics window reset")

    @property
    def ticks(self) -> list[Tick]:
        """Window contents, newest first."""
        return list(self._window)

    def __len__(self) -> int:
        return len(self._window)
