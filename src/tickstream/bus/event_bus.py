"""In-process publish/subscribe hub.

Producers and consumers never reference each other directly; they agree on an
``EventKind`` and exchange payloads through a bus instance handed to each
component at construction time.
"""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from tickstream.constants import EventKind

logger = logging.getLogger(__name__)

Handler = Callable[[Any], None]


@dataclass(frozen=True)
class Subscription:
    """Token returned by ``subscribe``; pass it to ``unsubscribe``."""

    kind: EventKind
    token: int


class EventBus:
    """
    Synchronous typed event bus.

    Handlers run in registration order on the publisher's call stack. A handler
    that raises is logged and skipped; remaining handlers still receive the
    event.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventKind, list[tuple[int, Handler]]] = {
            kind: [] for kind in EventKind
        }
        self._tokens = itertools.count(1)

    def subscribe(self, kind: EventKind | str, handler: Handler) -> Subscription:
        """Register ``handler`` for ``kind``."""
        kind = EventKind(kind)
        token = next(self._tokens)
        self._handlers[kind].append((token, handler))
        return Subscription(kind=kind, token=token)

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove a handler. Returns False if it was not registered."""
        handlers = self._handlers[subscription.kind]
        for i, (token, _) in enumerate(handlers):
            if token == subscription.token:
                del handlers[i]
                return True
        return False

    def publish(self, kind: EventKind | str, payload: Any) -> int:
        """
        Deliver ``payload`` to every current subscriber of ``kind``.

        Returns:
            Number of handlers that completed without raising.
        """
        kind = EventKind(kind)
        delivered = 0
        # Copy so handlers may (un)subscribe while we iterate
        for _, handler in list(self._handlers[kind]):
            try:
                handler(payload)
                delivered += 1
            except Exception:
                logger.exception(f"Handler {handler!r} failed for '{kind.value}' event")
        return delivered

    def subscriber_count(self, kind: EventKind | str) -> int:
        return len(self._handlers[EventKind(kind)])
