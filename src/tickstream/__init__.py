"""tickstream: historical market data replayed as a live WebSocket feed."""

__version__ = "0.1.0"
