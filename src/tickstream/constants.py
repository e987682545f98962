"""Core constants for tickstream."""

from enum import Enum


class EventKind(str, Enum):
    """Event kinds carried by the event bus."""

    TICK = "tick"
    METRICS = "metrics"
    ERROR = "error"
    REPLAY_STATUS = "replay-status"
    CONNECTION_STATUS = "connection-status"


class ReplayState(str, Enum):
    """Replay engine lifecycle state."""

    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


class ReplayStatus(str, Enum):
    """Replay status transitions published on the bus."""

    STARTED = "started"
    STOPPED = "stopped"
    PAUSED = "paused"
    RESUMED = "resumed"


class ConnectionStatus(str, Enum):
    """Client connection lifecycle events."""

    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ErrorCode(str, Enum):
    """Codes attached to error events."""

    NO_DATA = "NO_DATA"
    NO_DATA_IN_RANGE = "NO_DATA_IN_RANGE"
    LOAD_ERROR = "LOAD_ERROR"


class MessageTag(str, Enum):
    """One-letter wire envelope tags."""

    TICK = "t"
    METRICS = "m"
    SNAPSHOT = "s"
    ERROR = "e"


class ClientRequest(str, Enum):
    """Requests a client may send to the server."""

    REQUEST_SNAPSHOT = "request_snapshot"
    REQUEST_METRICS = "request_metrics"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


# ============================================
# Replay
# ============================================

BASE_INTERVAL_SECONDS = 1.0  # one tick per second at 1x speed

# ============================================
# Metrics / Gateway
# ============================================

METRICS_WINDOW_SIZE = 10_000
MAX_RECENT_TICKS = 1_000
SNAPSHOT_SIZE = 100
BATCH_SIZE = 10
BATCH_DELAY_MS = 50
MAX_PENDING_MESSAGES = 1_000

DISPLAY_PRECISION = 2
WIRE_PRECISION = 3

# ============================================
# Application Constants
# ============================================

APP_NAME = "tickstream"
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_PATH = "/ws"
DEFAULT_DATA_DIRECTORY = "./data/stocks"
STOCK_FILE_SUFFIX = ".us.txt"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
