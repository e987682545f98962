"""Market data types."""

from tickstream.data.market_data import MarketMetrics, Tick

__all__ = ["MarketMetrics", "Tick"]
