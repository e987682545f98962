"""Market data structures and types."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Tick:
    """One OHLCV observation for a symbol."""

    symbol: str
    date: str
    open: float
    high: float
    low: float
    close: float
    volume: int
    open_int: int | None = None
    time: str | None = None

    def __post_init__(self) -> None:
        # Zero or negative open interest means "not reported"
        if self.open_int is not None and self.open_int <= 0:
            object.__setattr__(self, "open_int", None)

    @property
    def timestamp(self) -> datetime:
        """Trading date combined with the intraday time when present."""
        if self.time:
            return datetime.fromisoformat(f"{self.date}T{self.time}")
        return datetime.fromisoformat(self.date)


@dataclass(frozen=True)
class MarketMetrics:
    """Aggregate statistics over the rolling tick window."""

    total_ticks: int
    total_volume: int
    average_price: float
    highest_price: float
    lowest_price: float
    price_change: float
    price_change_percent: float
    last_update: datetime
