"""Minimal in-process event dispatcher.

Subscribers register per event type (or for `DomainEvent` to receive all).
Dispatch is best-effort: a failing subscriber is logged and skipped.
"""

import logging
from collections import defaultdict
from typing import Callable, DefaultDict, List, Type

from apiorch.domain.events.api_events import DomainEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]

class EventDispatcher:
    """Publishes domain events to registered handlers."""

    def __init__(self) -> None:
        self._handlers: DefaultDict[Type[DomainEvent], List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def dispatch(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        for event_type, handlers in list(self._handlers.items()):
            if not isinstance(event, event_type):
                continue
            for handler in list(handlers):
                try:
                    handler(event)
                except Exception as e:
                    logger.error(f"Event handler {handler!r} failed for {type(event).__name__}: {e}", exc_info=True)
