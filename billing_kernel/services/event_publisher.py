"""
DomainEventPublisher -- in-process delivery of committed domain events.

Contract:
    Subscribers register for one event class (or for every event).  The
    reconciliation service publishes only after its transaction commits,
    in the order the events were raised.

Failure modes:
    A subscriber that raises is logged with its traceback and skipped; the
    remaining subscribers still run and the committed state is unchanged.
    Notification delivery is an external concern, so its failures never
    reach the caller of a billing command.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable

from billing_kernel.domain.events import DomainEvent
from billing_kernel.logging_config import get_logger

logger = get_logger("services.event_publisher")

Subscriber = Callable[[DomainEvent], None]


class DomainEventPublisher:
    """Synchronous publish/subscribe for billing domain events."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_type: dict[type[DomainEvent], list[Subscriber]] = {}
        self._catch_all: list[Subscriber] = []

    def subscribe(
        self,
        handler: Subscriber,
        event_type: type[DomainEvent] | None = None,
    ) -> None:
        """Register ``handler`` for ``event_type`` (every event when None)."""
        with self._lock:
            if event_type is None:
                self._catch_all.append(handler)
            else:
                self._by_type.setdefault(event_type, []).append(handler)

    def _handlers_for(self, event: DomainEvent) -> list[Subscriber]:
        with self._lock:
            handlers = list(self._by_type.get(type(event), ()))
            handlers.extend(self._catch_all)
        return handlers

    def publish(self, events: Iterable[DomainEvent]) -> int:
        """
        Deliver events to their subscribers.

        Returns the number of successful deliveries.
        """
        delivered = 0
        for event in events:
            for handler in self._handlers_for(event):
                try:
                    handler(event)
                    delivered += 1
                except Exception:
                    logger.exception(
                        "event_subscriber_failed",
                        extra={
                            "event_type": event.event_type,
                            "event_invoice_id": str(event.invoice_id),
                            "subscriber": getattr(handler, "__qualname__", repr(handler)),
                        },
                    )
            logger.debug(
                "domain_event_published",
                extra={"event_type": event.event_type, "event_invoice_id": str(event.invoice_id)},
            )
        return delivered
