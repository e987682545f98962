"""Market data server.

Wires the event bus, replay engine, metrics calculator and WebSocket gateway
together and runs them until a shutdown signal arrives.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass

from tickstream.bus.event_bus import EventBus
from tickstream.bus.events import ConnectionEvent, ErrorEvent, ReplayStatusEvent
from tickstream.config_loader import AppConfig
from tickstream.constants import LOG_FORMAT, ErrorCode, EventKind, ReplayState
from tickstream.feed.parser import StockFile, get_stock_files, parse_stock_file
from tickstream.feed.replay import DataReplay, ReplayConfig
from tickstream.gateway.ws_gateway import WSGateway
from tickstream.metrics.stats import MetricsCalculator
from tickstream.scheduling import Scheduler

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    # websockets logs every handshake at INFO
    logging.getLogger("websockets").setLevel(logging.WARNING)


@dataclass(frozen=True)
class ServerStatus:
    """Snapshot of server state for logging and tests."""

    running: bool
    clients: int
    replay_state: ReplayState
    symbol: str | None
    current_index: int
    total_ticks: int


class MarketDataServer:
    """
    Streaming server application.

    Startup order: gateway listener first, then dataset load and replay, so a
    bad dataset still leaves clients able to connect and receive the error.
    """

    def __init__(self, config: AppConfig, scheduler: Scheduler | None = None) -> None:
        self.config = config
        self.bus = EventBus()

        gateway_settings = config.gateway
        self.metrics = MetricsCalculator(max_ticks=gateway_settings.metrics_window)
        self.replay = DataReplay(self.bus, scheduler=scheduler)
        self.gateway = WSGateway(
            self.bus,
            self.metrics,
            scheduler,
            max_recent_ticks=gateway_settings.max_recent_ticks,
            snapshot_size=gateway_settings.snapshot_size,
            batch_size=gateway_settings.batch_size,
            batch_delay_ms=gateway_settings.batch_delay_ms,
            max_pending_messages=gateway_settings.max_pending_messages,
        )

        self.bus.subscribe(EventKind.ERROR, self._log_error)
        self.bus.subscribe(EventKind.REPLAY_STATUS, self._log_replay_status)
        self.bus.subscribe(EventKind.CONNECTION_STATUS, self._log_connection)

        self._running = False
        self._shutdown_event = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Open the listener and begin replaying."""
        server = self.config.server
        await self.gateway.start(server.host, server.port, server.path)
        self._running = True
        self.load_and_start_replay()

    async def run(self) -> None:
        """Run until SIGINT/SIGTERM (or ``request_shutdown``)."""
        loop = asyncio.get_running_loop()
        try:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, self._handle_signal)
        except NotImplementedError:
            logger.warning("Signal handlers not supported in this environment. Use Ctrl+C to stop.")

        await self.start()
        logger.info("Server running. Press Ctrl+C to stop.")

        try:
            await self._shutdown_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        if not self._running:
            return
        logger.info("Shutting down...")
        self._running = False
        self.replay.stop()
        await self.gateway.stop()
        logger.info("Shutdown complete.")

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    def _handle_signal(self) -> None:
        logger.info("Signal received, initiating shutdown...")
        self.request_shutdown()

    # ------------------------------------------------------------------
    # Dataset
    # ------------------------------------------------------------------

    def available_files(self) -> list[StockFile]:
        """Stock files in the data directory, restricted to the symbol allow-list."""
        files = get_stock_files(self.config.data.directory)
        allowed = set(self.config.data.symbols)
        if allowed:
            files = [f for f in files if f.symbol in allowed]
        return files

    def load_and_start_replay(self) -> bool:
        """
        Load the first available symbol and start replay.

        Failures are logged and published as ``LOAD_ERROR`` so connected
        clients are told; the listener stays up.

        Returns:
            True if replay started.
        """
        try:
            files = self.available_files()
            if not files:
                raise FileNotFoundError(
                    f"No stock files found in {self.config.data.directory}"
                    + (f" for symbols {self.config.data.symbols}" if self.config.data.symbols else "")
                )
            stock_file = files[0]
            logger.info(f"Loading {stock_file.symbol} from {stock_file.path}")
            rows = parse_stock_file(stock_file.path)
            self.replay.load(stock_file.symbol, rows)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to load market data: {e}")
            self.bus.publish(
                EventKind.ERROR,
                ErrorEvent(message=f"Failed to load market data: {e}", code=ErrorCode.LOAD_ERROR),
            )
            return False

        replay = self.config.replay
        return self.replay.start(
            ReplayConfig(
                speed_multiplier=replay.speed,
                loop=replay.loop,
                start_date=replay.start_date,
                end_date=replay.end_date,
            )
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    def status(self) -> ServerStatus:
        progress = self.replay.status()
        return ServerStatus(
            running=self._running,
            clients=self.gateway.connection_count,
            replay_state=progress.state,
            symbol=progress.symbol,
            current_index=progress.current_index,
            total_ticks=progress.total_ticks,
        )

    # ------------------------------------------------------------------
    # Bus logging
    # ------------------------------------------------------------------

    def _log_error(self, error: ErrorEvent) -> None:
        code = f" [{error.code.value}]" if error.code else ""
        logger.error(f"Error event{code}: {error.message}")

    def _log_replay_status(self, event: ReplayStatusEvent) -> None:
        logger.info(f"Replay {event.status.value}: {event.symbol}")

    def _log_connection(self, event: ConnectionEvent) -> None:
        logger.debug(f"{event.client_id} {event.status.value}")
