"""Wire protocol module."""

from tickstream.protocol.codec import (
    ErrorMessage,
    MetricsMessage,
    SnapshotMessage,
    TickBatchMessage,
    TickMessage,
    WireMessage,
    decode,
    encode,
    parse_client_request,
)

__all__ = [
    "ErrorMessage",
    "MetricsMessage",
    "SnapshotMessage",
    "TickBatchMessage",
    "TickMessage",
    "WireMessage",
    "decode",
    "encode",
    "parse_client_request",
]
