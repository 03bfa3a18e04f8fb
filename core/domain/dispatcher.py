# core/domain/dispatcher.py
from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable, DefaultDict, List, Type, TypeVar

from .events import DomainEvent

logger = logging.getLogger(__name__)

EventT = TypeVar("EventT", bound=DomainEvent)
Handler = Callable[[EventT], None]


class DomainEventDispatcher:
    """
    Synchronous in-process dispatcher.

        @register_handler(PurchaseOrderApproved)
        def notify_author(event: PurchaseOrderApproved) -> None:
            ...

        emit(PurchaseOrderApproved(po_id=1, number="PO-2025-0001"))

    Handlers are side effects (notifications); a failing handler is logged
    and does not stop the others.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[Type[DomainEvent], List[Handler]] = defaultdict(list)

    def register_handler(self, event_type: Type[EventT]):
        def decorator(func: Handler) -> Handler:
            if func not in self._handlers[event_type]:
                self._handlers[event_type].append(func)
            logger.debug("Registered %s for %s", func.__name__, event_type.__name__)
            return func

        return decorator

    def handlers_for(self, event_type: Type[DomainEvent]) -> List[Handler]:
        return list(self._handlers.get(event_type, []))

    def emit(self, event: DomainEvent) -> None:
        event_type = type(event)
        handlers = self._handlers.get(event_type, [])
        if not handlers:
            logger.debug("No handlers registered for %s", event_type.__name__)
            return

        for handler in handlers:
            try:
                handler(event)  # type: ignore[arg-type]
            except Exception:
                logger.exception(
                    "Handler %s failed for event %s",
                    handler.__name__,
                    event_type.__name__,
                )


dispatcher = DomainEventDispatcher()

register_handler = dispatcher.register_handler
emit = dispatcher.emit
