"""Event payloads published on the bus alongside ticks and metrics."""

from __future__ import annotations

from dataclasses import dataclass

from tickstream.constants import ConnectionStatus, ErrorCode, ReplayStatus


@dataclass(frozen=True)
class ErrorEvent:
    """Non-fatal error reported by a component."""

    message: str
    code: ErrorCode | None = None


@dataclass(frozen=True)
class ReplayStatusEvent:
    """Replay lifecycle transition."""

    status: ReplayStatus
    symbol: str | None = None


@dataclass(frozen=True)
class ConnectionEvent:
    """Client connected or disconnected."""

    status: ConnectionStatus
    client_id: str
