"""WebSocket Gateway.

Owns client connections, listens to the event bus and fans encoded messages
out to every open client. Ticks are batched: a batch is flushed once it holds
``batch_size`` ticks or ``batch_delay_ms`` after its first tick, whichever
comes first.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from http import HTTPStatus
from itertools import islice
from typing import Any

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed
from websockets.http11 import Request, Response

from tickstream.bus.event_bus import EventBus, Subscription
from tickstream.bus.events import ConnectionEvent, ErrorEvent
from tickstream.constants import (
    BATCH_DELAY_MS,
    BATCH_SIZE,
    DEFAULT_PATH,
    MAX_PENDING_MESSAGES,
    MAX_RECENT_TICKS,
    SNAPSHOT_SIZE,
    ClientRequest,
    ConnectionStatus,
    EventKind,
)
from tickstream.data.market_data import MarketMetrics, Tick
from tickstream.gateway.connection import Connection, WebSocketConnection
from tickstream.metrics.stats import MetricsCalculator
from tickstream.protocol.codec import (
    ErrorMessage,
    MetricsMessage,
    SnapshotMessage,
    TickBatchMessage,
    WireMessage,
    encode,
    parse_client_request,
)
from tickstream.scheduling import LoopScheduler, Scheduler, TimerHandle

logger = logging.getLogger(__name__)


class WSGateway:
    """
    Connection gateway and broadcaster.

    Bus subscriptions:
    - tick: recent buffer, metrics update, outgoing batch
    - metrics: sent with the pending batch, or immediately if none is pending
    - error: broadcast as an error message
    """

    def __init__(
        self,
        bus: EventBus,
        metrics: MetricsCalculator | None = None,
        scheduler: Scheduler | None = None,
        *,
        max_recent_ticks: int = MAX_RECENT_TICKS,
        snapshot_size: int = SNAPSHOT_SIZE,
        batch_size: int = BATCH_SIZE,
        batch_delay_ms: float = BATCH_DELAY_MS,
        max_pending_messages: int = MAX_PENDING_MESSAGES,
    ) -> None:
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got: {batch_size}")

        self._bus = bus
        self.metrics = metrics or MetricsCalculator()
        self._scheduler = scheduler or LoopScheduler()

        self.snapshot_size = snapshot_size
        self.batch_size = batch_size
        self.batch_delay = batch_delay_ms / 1000.0
        self.max_pending_messages = max_pending_messages

        self._clients: dict[str, Connection] = {}
        self._client_counter = 0
        self._recent: deque[Tick] = deque(maxlen=max_recent_ticks)

        self._batch: list[Tick] = []
        self._batch_timer: TimerHandle | None = None
        self._pending_metrics: MarketMetrics | None = None

        self._server: Server | None = None
        self.path = DEFAULT_PATH
        self._closing: set[asyncio.Task[Any]] = set()

        self._subscriptions: list[Subscription] = [
            bus.subscribe(EventKind.TICK, self._on_tick),
            bus.subscribe(EventKind.METRICS, self._on_metrics),
            bus.subscribe(EventKind.ERROR, self._on_error),
        ]

    # ------------------------------------------------------------------
    # Listener
    # ------------------------------------------------------------------

    async def start(self, host: str, port: int, path: str = DEFAULT_PATH) -> None:
        """Start accepting WebSocket connections on ``ws://host:port{path}``."""
        if self._server is not None:
            logger.warning("WebSocket server already started")
            return

        self.path = path
        self._server = await serve(
            self._handle_websocket, host, port, process_request=self._check_path
        )
        logger.info(f"WebSocket server started on ws://{host}:{self.port}{path}")

    @property
    def port(self) -> int | None:
        """Bound port (useful when started with port 0)."""
        if self._server is None:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    @property
    def is_running(self) -> bool:
        return self._server is not None

    def _check_path(self, connection: ServerConnection, request: Request) -> Response | None:
        if request.path != self.path:
            return connection.respond(HTTPStatus.NOT_FOUND, "Not Found\n")
        return None

    async def _handle_websocket(self, websocket: ServerConnection) -> None:
        connection = WebSocketConnection(websocket, max_pending=self.max_pending_messages)
        client_id = self.register(connection)
        try:
            async for raw in websocket:
                self.handle_client_message(client_id, raw)
        except ConnectionClosed as e:
            logger.debug(f"{client_id} closed: {e}")
        finally:
            self.unregister(client_id)
            await connection.close()

    async def stop(self) -> None:
        """Flush pending ticks, close every client, then close the listener."""
        self.flush()
        self._cancel_batch_timer()

        for subscription in self._subscriptions:
            self._bus.unsubscribe(subscription)
        self._subscriptions.clear()

        clients = list(self._clients.items())
        self._clients.clear()
        results = await asyncio.gather(
            *(connection.close() for _, connection in clients), return_exceptions=True
        )
        for (client_id, _), result in zip(clients, results):
            if isinstance(result, Exception):
                logger.warning(f"Error closing {client_id}: {result}")

        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("WebSocket server stopped")

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def register(self, connection: Connection) -> str:
        """Add a connection to the live set and send it the current snapshot."""
        self._client_counter += 1
        client_id = f"client-{self._client_counter}"
        self._clients[client_id] = connection
        logger.info(f"Client connected: {client_id} (Total: {len(self._clients)})")
        self._bus.publish(
            EventKind.CONNECTION_STATUS, ConnectionEvent(ConnectionStatus.CONNECTED, client_id)
        )

        # A failed snapshot send prunes the client and publishes its disconnect
        if self._recent:
            self.send_snapshot(client_id)
        return client_id

    def unregister(self, client_id: str) -> None:
        """Remove a client that went away. Unknown ids are ignored."""
        if self._clients.pop(client_id, None) is None:
            return
        logger.info(f"Client disconnected: {client_id} (Total: {len(self._clients)})")
        self._bus.publish(
            EventKind.CONNECTION_STATUS, ConnectionEvent(ConnectionStatus.DISCONNECTED, client_id)
        )

    def _prune(self, client_id: str) -> None:
        connection = self._clients.get(client_id)
        self.unregister(client_id)
        if connection is not None:
            self._close_in_background(connection)

    def _close_in_background(self, connection: Connection) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(connection.close())
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    @property
    def connection_count(self) -> int:
        return len(self._clients)

    @property
    def client_ids(self) -> list[str]:
        return list(self._clients)

    # ------------------------------------------------------------------
    # Client requests
    # ------------------------------------------------------------------

    def handle_client_message(self, client_id: str, raw: str | bytes) -> None:
        if client_id not in self._clients:
            return

        try:
            request = parse_client_request(raw)
        except ValueError as e:
            logger.warning(f"Error parsing message from {client_id}: {e}")
            self.send_to(client_id, ErrorMessage("Invalid message format"))
            return

        if request == ClientRequest.REQUEST_SNAPSHOT:
            self.send_snapshot(client_id)
        elif request == ClientRequest.REQUEST_METRICS:
            self.send_to(client_id, MetricsMessage(self.metrics.calculate()))
        else:
            logger.warning(f"Unknown message type from {client_id}: {request!r}")

    def send_snapshot(self, client_id: str) -> bool:
        ticks = tuple(islice(self._recent, self.snapshot_size))
        return self.send_to(client_id, SnapshotMessage(ticks))

    def send_to(self, client_id: str, message: WireMessage) -> bool:
        """Send to one client. A failed send prunes that client."""
        connection = self._clients.get(client_id)
        if connection is None:
            return False
        if not connection.is_open:
            self._prune(client_id)
            return False
        try:
            connection.send(encode(message))
        except Exception as e:
            logger.warning(f"Error sending to {client_id}: {e}")
            self._prune(client_id)
            return False
        return True

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    def broadcast(self, message: WireMessage) -> int:
        """
        Send ``message`` to every open client.

        Clients that are closed or fail to send are pruned after the pass.

        Returns:
            Number of clients the message was handed to.
        """
        if not self._clients:
            return 0

        serialized = encode(message)
        failed: list[str] = []
        delivered = 0

        for client_id, connection in self._clients.items():
            if not connection.is_open:
                failed.append(client_id)
                continue
            try:
                connection.send(serialized)
                delivered += 1
            except Exception as e:
                logger.warning(f"Error sending to {client_id}: {e}")
                failed.append(client_id)

        for client_id in failed:
            self._prune(client_id)
        return delivered

    def flush(self) -> int:
        """
        Broadcast the pending tick batch, followed by any coalesced metrics.

        Returns:
            Number of ticks flushed.
        """
        self._cancel_batch_timer()

        flushed = len(self._batch)
        if self._batch:
            ticks = tuple(self._batch)
            self._batch.clear()
            self.broadcast(TickBatchMessage(ticks))

        if self._pending_metrics is not None:
            metrics, self._pending_metrics = self._pending_metrics, None
            self.broadcast(MetricsMessage(metrics))

        return flushed

    @property
    def pending_batch_size(self) -> int:
        return len(self._batch)

    @property
    def recent_ticks(self) -> list[Tick]:
        """Recent tick buffer, newest first."""
        return list(self._recent)

    def _cancel_batch_timer(self) -> None:
        if self._batch_timer is not None:
            self._batch_timer.cancel()
            self._batch_timer = None

    def _on_batch_timer(self) -> None:
        self._batch_timer = None
        self.flush()

    # ------------------------------------------------------------------
    # Bus handlers
    # ------------------------------------------------------------------

    def _on_tick(self, tick: Tick) -> None:
        self._recent.appendleft(tick)
        metrics = self.metrics.add_tick(tick)
        # Queue before publishing so the metrics handler sees a pending batch
        self._batch.append(tick)
        self._bus.publish(EventKind.METRICS, metrics)

        if len(self._batch) >= self.batch_size:
            self.flush()
        elif self._batch_timer is None:
            self._batch_timer = self._scheduler.call_later(self.batch_delay, self._on_batch_timer)

    def _on_metrics(self, metrics: MarketMetrics) -> None:
        if self._batch:
            self._pending_metrics = metrics
        else:
            self.broadcast(MetricsMessage(metrics))

    def _on_error(self, error: ErrorEvent) -> None:
        message = error.message if isinstance(error, ErrorEvent) else str(error)
        self.broadcast(ErrorMessage(message))
