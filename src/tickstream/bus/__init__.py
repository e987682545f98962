"""Event bus module."""

from tickstream.bus.event_bus import EventBus, Subscription
from tickstream.bus.events import ConnectionEvent, ErrorEvent, ReplayStatusEvent

__all__ = [
    "EventBus",
    "Subscription",
    "ConnectionEvent",
    "ErrorEvent",
    "ReplayStatusEvent",
]
