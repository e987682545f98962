"""Compact wire codec.

Every frame is a JSON object ``{"t": <tag>, "d": <payload>}``. Payloads are
positional arrays rather than keyed objects:

- tick:     ``[symbol, date, open, high, low, close, volume, openInt?]``
- batch:    ``[[tick], [tick], ...]`` (same ``t`` tag as a single tick)
- metrics:  ``[totalTicks, totalVolume, avg, high, low, change, changePct, iso]``
- snapshot: ``[[tick], ...]`` newest first
- error:    ``"<message>"``

``decode`` never raises: anything malformed comes back as ``None``.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Union

from tickstream.constants import WIRE_PRECISION, MessageTag
from tickstream.data.market_data import MarketMetrics, Tick

logger = logging.getLogger(__name__)

_SEPARATORS = (",", ":")


# ============================================
# Message Types
# ============================================


@dataclass(frozen=True)
class TickMessage:
    tick: Tick


@dataclass(frozen=True)
class TickBatchMessage:
    ticks: tuple[Tick, ...]


@dataclass(frozen=True)
class MetricsMessage:
    metrics: MarketMetrics


@dataclass(frozen=True)
class SnapshotMessage:
    """Recent tick history, newest first."""

    ticks: tuple[Tick, ...]


@dataclass(frozen=True)
class ErrorMessage:
    message: str


WireMessage = Union[TickMessage, TickBatchMessage, MetricsMessage, SnapshotMessage, ErrorMessage]


# ============================================
# Payload Encoding
# ============================================


def _is_number(value: Any) -> bool:
    """Finite int or float. JSON booleans and Infinity/NaN literals are rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


def _format_timestamp(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def encode_tick(tick: Tick) -> list[Any]:
    """Positional array for one tick. Open interest is only emitted when positive."""
    payload: list[Any] = [
        tick.symbol,
        tick.date,
        round(tick.open, WIRE_PRECISION),
        round(tick.high, WIRE_PRECISION),
        round(tick.low, WIRE_PRECISION),
        round(tick.close, WIRE_PRECISION),
        int(round(tick.volume)),
    ]
    if tick.open_int:
        payload.append(int(round(tick.open_int)))
    return payload


def decode_tick(payload: Any) -> Tick:
    """
    Rebuild a tick from its positional array.

    Raises:
        ValueError: If the array has the wrong arity or element types.
    """
    if not isinstance(payload, list) or len(payload) not in (7, 8):
        raise ValueError(f"Tick payload must have 7 or 8 elements, got: {payload!r}")

    symbol, date = payload[0], payload[1]
    if not isinstance(symbol, str) or not isinstance(date, str):
        raise ValueError("Tick symbol and date must be strings")
    if not all(_is_number(v) for v in payload[2:7]):
        raise ValueError("Tick prices and volume must be numeric")

    open_int = None
    if len(payload) == 8 and payload[7] is not None:
        if not _is_number(payload[7]):
            raise ValueError("Tick open interest must be numeric")
        open_int = int(round(payload[7])) if payload[7] > 0 else None

    return Tick(
        symbol=symbol,
        date=date,
        open=float(payload[2]),
        high=float(payload[3]),
        low=float(payload[4]),
        close=float(payload[5]),
        volume=int(round(payload[6])),
        open_int=open_int,
    )


def encode_metrics(metrics: MarketMetrics) -> list[Any]:
    return [
        metrics.total_ticks,
        int(round(metrics.total_volume)),
        round(metrics.average_price, WIRE_PRECISION),
        round(metrics.highest_price, WIRE_PRECISION),
        round(metrics.lowest_price, WIRE_PRECISION),
        round(metrics.price_change, WIRE_PRECISION),
        round(metrics.price_change_percent, WIRE_PRECISION),
        _format_timestamp(metrics.last_update),
    ]


def decode_metrics(payload: Any) -> MarketMetrics:
    """
    Rebuild a metrics snapshot from its positional array.

    Raises:
        ValueError: If the array has the wrong arity or element types.
    """
    if not isinstance(payload, list) or len(payload) != 8:
        raise ValueError(f"Metrics payload must have 8 elements, got: {payload!r}")
    if not all(_is_number(v) for v in payload[:7]) or not isinstance(payload[7], str):
        raise ValueError("Metrics payload has invalid element types")

    return MarketMetrics(
        total_ticks=int(payload[0]),
        total_volume=int(round(payload[1])),
        average_price=float(payload[2]),
        highest_price=float(payload[3]),
        lowest_price=float(payload[4]),
        price_change=float(payload[5]),
        price_change_percent=float(payload[6]),
        last_update=datetime.fromisoformat(payload[7]),
    )


# ============================================
# Envelope
# ============================================


def to_envelope(message: WireMessage) -> dict[str, Any]:
    """Convert a message to its ``{"t", "d"}`` envelope."""
    if isinstance(message, TickMessage):
        return {"t": MessageTag.TICK.value, "d": encode_tick(message.tick)}
    if isinstance(message, TickBatchMessage):
        return {"t": MessageTag.TICK.value, "d": [encode_tick(t) for t in message.ticks]}
    if isinstance(message, MetricsMessage):
        return {"t": MessageTag.METRICS.value, "d": encode_metrics(message.metrics)}
    if isinstance(message, SnapshotMessage):
        return {"t": MessageTag.SNAPSHOT.value, "d": [encode_tick(t) for t in message.ticks]}
    if isinstance(message, ErrorMessage):
        return {"t": MessageTag.ERROR.value, "d": message.message}
    raise TypeError(f"Unsupported message type: {type(message).__name__}")


def encode(message: WireMessage) -> str:
    """Serialize a message to a compact JSON frame."""
    return json.dumps(to_envelope(message), separators=_SEPARATORS)


def from_envelope(envelope: Any) -> WireMessage | None:
    """Decode an already-parsed envelope. Returns None if invalid."""
    if not isinstance(envelope, dict) or "t" not in envelope or "d" not in envelope:
        return None

    try:
        tag = MessageTag(envelope["t"])
    except (ValueError, TypeError):
        return None

    data = envelope["d"]
    try:
        if tag is MessageTag.TICK:
            if not isinstance(data, list) or not data:
                return None
            # A batch is an array of tick arrays
            if isinstance(data[0], list):
                return TickBatchMessage(ticks=tuple(decode_tick(item) for item in data))
            return TickMessage(tick=decode_tick(data))
        if tag is MessageTag.METRICS:
            return MetricsMessage(metrics=decode_metrics(data))
        if tag is MessageTag.SNAPSHOT:
            if not isinstance(data, list):
                return None
            return SnapshotMessage(ticks=tuple(decode_tick(item) for item in data))
        if tag is MessageTag.ERROR:
            if not isinstance(data, str):
                return None
            return ErrorMessage(message=data)
    except (ValueError, TypeError, OverflowError) as e:
        logger.debug(f"Rejected '{tag.value}' frame: {e}")
        return None

    return None


def decode(raw: str | bytes) -> WireMessage | None:
    """Parse a JSON frame. Malformed input returns None instead of raising."""
    try:
        envelope = json.loads(raw)
    except (ValueError, TypeError):
        return None
    return from_envelope(envelope)


# ============================================
# Client Requests
# ============================================


def parse_client_request(raw: str | bytes) -> str | None:
    """
    Extract the request type from a client frame such as ``{"type": "request_snapshot"}``.

    Returns:
        The request type string (possibly one we do not support), or None if
        the object carries no string ``type``.

    Raises:
        ValueError: If the frame is not a JSON object.
    """
    try:
        message = json.loads(raw)
    except (ValueError, TypeError) as e:
        raise ValueError(f"Invalid message format: {e}") from e

    if not isinstance(message, dict):
        raise ValueError("Invalid message format: expected a JSON object")

    request_type = message.get("type")
    return request_type if isinstance(request_type, str) else None

