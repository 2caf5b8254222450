"""
In-memory event bus.

Dispatches each published event to its subscribers inline, in
subscription order. Single-process stand-in for the Kafka bus.
"""
from typing import Iterable

from internal.domain.events import DomainEvent, EventKind
from internal.infrastructure.metrics import prometheus as metrics
from internal.usecase.ports import EventHandler
from pkg.logger.logger import get_logger


logger = get_logger(__name__)


class InMemoryEventBus:
    """
    Synchronous-dispatch event bus.

    A failing handler is logged and recorded in ``failures``; it does not
    fail the publisher, matching the decoupling a broker provides.
    """

    def __init__(self) -> None:
        self._handlers: dict[EventKind, list[EventHandler]] = {}
        self.published: list[DomainEvent] = []
        self.failures: list[tuple[DomainEvent, Exception]] = []

    def subscribe(self, kinds: Iterable[EventKind], handler: EventHandler) -> None:
        for kind in kinds:
            self._handlers.setdefault(EventKind(kind), []).append(handler)

    async def publish(self, event: DomainEvent) -> None:
        self.published.append(event)
        for handler in list(self._handlers.get(event.kind, ())):
            try:
                await handler(event)
                metrics.EVENTS_CONSUMED.labels(
                    event_type=event.kind.value, status="success"
                ).inc()
            except Exception as e:
                metrics.EVENTS_CONSUMED.labels(
                    event_type=event.kind.value, status="error"
                ).inc()
                logger.exception(
                    "Event handler failed",
                    event_type=event.kind.value,
                    event_id=event.event_id,
                    error=str(e),
                )
                self.failures.append((event, e))

    def of_kind(self, kind: EventKind) -> list[DomainEvent]:
        """Published events with the given tag, in publication order."""
        return [event for event in self.published if event.kind == kind]
