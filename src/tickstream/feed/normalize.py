"""Row to tick conversion, ordering and date filtering."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date

from tickstream.data.market_data import Tick
from tickstream.feed.parser import StockRow


def normalize_to_tick(symbol: str, row: StockRow) -> Tick:
    """Open interest is kept only when positive."""
    return Tick(
        symbol=symbol,
        date=row.date,
        open=row.open,
        high=row.high,
        low=row.low,
        close=row.close,
        volume=row.volume,
        open_int=row.open_int if row.open_int > 0 else None,
    )


def normalize_to_ticks(symbol: str, rows: Iterable[StockRow]) -> list[Tick]:
    return [normalize_to_tick(symbol, row) for row in rows]


def sort_ticks_by_date(ticks: Iterable[Tick]) -> list[Tick]:
    """Oldest first. Stable: equal dates keep their input order."""
    return sorted(ticks, key=lambda t: t.timestamp)


def filter_ticks_by_date_range(
    ticks: Sequence[Tick], start: date | None = None, end: date | None = None
) -> list[Tick]:
    """Ticks whose trading date falls in ``[start, end]``; None bounds are open."""
    result = []
    for tick in ticks:
        day = tick.timestamp.date()
        if start is not None and day < start:
            continue
        if end is not None and day > end:
            continue
        result.append(tick)
    return result
