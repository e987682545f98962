"""Historical feed: file parsing, normalization and replay."""

from tickstream.feed.parser import StockFile, StockRow, get_stock_files, parse_stock_file
from tickstream.feed.replay import DataReplay, ReplayConfig, ReplayProgress

__all__ = [
    "DataReplay",
    "ReplayConfig",
    "ReplayProgress",
    "StockFile",
    "StockRow",
    "get_stock_files",
    "parse_stock_file",
]
