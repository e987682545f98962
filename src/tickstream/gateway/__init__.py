"""Client gateway module."""

from tickstream.gateway.connection import Connection, ConnectionSendError, WebSocketConnection
from tickstream.gateway.ws_gateway import WSGateway

__all__ = ["Connection", "ConnectionSendError", "WebSocketConnection", "WSGateway"]
