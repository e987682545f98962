"""Stock file discovery and CSV parsing.

Files are daily OHLCV dumps named ``<symbol>.us.txt`` with the header
``Date,Open,High,Low,Close,Volume,OpenInt``.
"""

from __future__ import annotations

import csv
import logging
import math
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from tickstream.constants import STOCK_FILE_SUFFIX

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockRow:
    """One parsed CSV line."""

    date: str
    open: float
    high: float
    low: float
    close: float
    volume: int
    open_int: int = 0


@dataclass(frozen=True)
class StockFile:
    """A discovered data file and the symbol it holds."""

    symbol: str
    path: Path


def _to_float(value: str | None) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) else 0.0


def _is_iso_date(value: str) -> bool:
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _to_int(value: str | None) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        pass
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return 0


def parse_stock_rows(lines: list[str]) -> list[StockRow]:
    """
    Parse CSV text lines (header first).

    Unparseable numbers become 0. Rows without a YYYY-MM-DD date are skipped.
    """
    reader = csv.DictReader(line for line in lines if line.strip())
    rows = []
    skipped = 0
    for record in reader:
        record = {(k or "").strip(): (v or "").strip() for k, v in record.items()}
        if not record.get("Date"):
            continue
        if not _is_iso_date(record["Date"]):
            skipped += 1
            continue
        rows.append(
            StockRow(
                date=record["Date"],
                open=_to_float(record.get("Open")),
                high=_to_float(record.get("High")),
                low=_to_float(record.get("Low")),
                close=_to_float(record.get("Close")),
                volume=_to_int(record.get("Volume")),
                open_int=_to_int(record.get("OpenInt")),
            )
        )
    if skipped:
        logger.warning(f"Skipped {skipped} row(s) with unparseable dates")
    return rows


def parse_stock_file(file_path: str | Path) -> list[StockRow]:
    """
    Parse a stock data file.

    Raises:
        ValueError: If the file cannot be read or parsed.
    """
    path = Path(file_path)
    try:
        with open(path, encoding="utf-8", newline="") as f:
            rows = parse_stock_rows(f.readlines())
    except (OSError, csv.Error, UnicodeDecodeError) as e:
        raise ValueError(f"Failed to parse stock file {path}: {e}") from e

    logger.debug(f"Parsed {len(rows)} rows from {path}")
    return rows


def extract_symbol_from_filename(filename: str) -> str:
    """``"a.us.txt"`` -> ``"A"``."""
    name = Path(filename).name
    if name.lower().endswith(STOCK_FILE_SUFFIX):
        name = name[: -len(STOCK_FILE_SUFFIX)]
    return name.upper()


def get_stock_files(directory: str | Path) -> list[StockFile]:
    """
    List stock files in ``directory``, sorted by symbol.

    Raises:
        FileNotFoundError: If the directory does not exist.
    """
    root = Path(directory)
    if not root.is_dir():
        raise FileNotFoundError(f"Data directory not found: {root}")

    files = [
        StockFile(symbol=extract_symbol_from_filename(p.name), path=p)
        for p in root.iterdir()
        if p.is_file() and p.name.lower().endswith(STOCK_FILE_SUFFIX)
    ]
    return sorted(files, key=lambda f: f.symbol)
