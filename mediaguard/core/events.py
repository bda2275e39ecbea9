from typing import Callable, List

import structlog

from mediaguard.models.registry import RegistryEvent

logger = structlog.get_logger()

EventHandler = Callable[[RegistryEvent], None]


class EventBus:
    """Fan-out of registry events to subscribers, with a log line per event."""

    def __init__(self):
        self._handlers: List[EventHandler] = []

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """Register a handler; returns a callable that unsubscribes it."""
        self._handlers.append(handler)

        def unsubscribe():
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, event: RegistryEvent) -> None:
        logger.info("Registry event",
                    event_name=event.name,
                    actor=event.actor,
                    exact_hash=event.exact_hash,
                    **event.details)

        # State is already committed; a failing observer must not undo it
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.error("Event handler failed", event_name=event.name, error=str(e))
