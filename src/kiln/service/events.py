"""Synchronous, typed publish/subscribe for monitor events."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

from kiln.models.events import EVENT_TYPES

logger = logging.getLogger("kiln.events")

Handler = Callable[[Any], None]


class UnknownEventError(ValueError):
    """Raised when subscribing to an event name that does not exist."""


class EventBus:
    """Delivers each published event to its subscribers on the publishing thread.

    A failing handler is logged and skipped; it never affects other
    handlers or the publisher.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handlers: dict[str, list[Handler]] = {}
        self._catch_all: list[Handler] = []

    def subscribe(self, event: type | str, handler: Handler) -> Callable[[], None]:
        """Subscribe ``handler`` to an event class or name.

        Returns a callable that removes the subscription.
        """
        name = event if isinstance(event, str) else getattr(event, "name", None)
        if name not in EVENT_TYPES:
            raise UnknownEventError(f"Unknown event '{event}'. Available: {', '.join(EVENT_TYPES)}")
        with self._lock:
            self._handlers.setdefault(name, []).append(handler)

        def unsubscribe() -> None:
            with self._lock:
                handlers = self._handlers.get(name, [])
                if handler in handlers:
                    handlers.remove(handler)

        return unsubscribe

    def subscribe_all(self, handler: Handler) -> Callable[[], None]:
        with self._lock:
            self._catch_all.append(handler)

        def unsubscribe() -> None:
            with self._lock:
                if handler in self._catch_all:
                    self._catch_all.remove(handler)

        return unsubscribe

    def publish(self, event: Any) -> None:
        with self._lock:
            handlers = [*self._handlers.get(event.name, []), *self._catch_all]
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception("Handler %r failed on %s", handler, event.name)
