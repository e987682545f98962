"""Client connection wrappers.

The gateway talks to clients through the ``Connection`` protocol: a
synchronous, non-blocking ``send`` plus an async ``close``. The WebSocket
implementation queues outgoing frames and drains them from its own task so
one slow client never stalls a broadcast to the others.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Protocol

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from tickstream.constants import MAX_PENDING_MESSAGES

logger = logging.getLogger(__name__)

CLOSE_DRAIN_TIMEOUT = 1.0  # seconds


class ConnectionSendError(Exception):
    """Raised when a frame cannot be queued for a client."""


class Connection(Protocol):
    """A live client session as seen by the gateway."""

    @property
    def is_open(self) -> bool: ...

    def send(self, data: str) -> None: ...

    async def close(self) -> None: ...


class WebSocketConnection:
    """``Connection`` backed by a websockets server connection."""

    def __init__(
        self, websocket: ServerConnection, max_pending: int = MAX_PENDING_MESSAGES
    ) -> None:
        self._ws = websocket
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=max_pending)
        self._closed = False
        self._writer = asyncio.create_task(self._drain())

    @property
    def is_open(self) -> bool:
        return not self._closed and self._ws.state is State.OPEN

    @property
    def remote_address(self) -> str:
        address = self._ws.remote_address
        if isinstance(address, tuple) and len(address) >= 2:
            return f"{address[0]}:{address[1]}"
        return str(address)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def send(self, data: str) -> None:
        if not self.is_open:
            raise ConnectionSendError("Connection is not open")
        try:
            self._queue.put_nowait(data)
        except asyncio.QueueFull as e:
            raise ConnectionSendError(
                f"Outgoing queue full ({self._queue.maxsize} frames pending)"
            ) from e

    async def _drain(self) -> None:
        while True:
            data = await self._queue.get()
            try:
                await self._ws.send(data)
            except ConnectionClosed as e:
                logger.debug(f"Writer for {self.remote_address} stopped: {e}")
                self._closed = True
                return
            finally:
                self._queue.task_done()

    async def close(self, drain_timeout: float = CLOSE_DRAIN_TIMEOUT) -> None:
        """Flush queued frames (bounded by ``drain_timeout``), then close. Idempotent."""
        was_closed = self._closed
        self._closed = True
        if not self._writer.done():
            if not was_closed:
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(self._queue.join(), drain_timeout)
            self._writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer
        await self._ws.close()
