"""
Event publishing shared by the use cases.

State changes and the events announcing them are written together through
the stores' ``*_with_outbox`` methods. ``OutboxRelay`` then moves recorded
events to the bus; an event the bus refuses stays in the outbox and is
published by a later flush.
"""
import asyncio
from collections import OrderedDict
from typing import Optional

from internal.domain.errors import EventPublishError
from internal.domain.events import DomainEvent
from internal.infrastructure.metrics import prometheus as metrics
from internal.usecase.ports import IEventBus, IOutbox
from pkg.logger.logger import get_logger
from pkg.resilience.retry import retry_async, with_timeout


logger = get_logger(__name__)


async def publish_event(
    event_bus: IEventBus,
    event: DomainEvent,
    io_timeout: Optional[float] = 5.0,
    max_attempts: int = 3,
) -> None:
    """
    Publish an event with a timeout and bounded retries.

    Args:
        event_bus: Destination bus.
        event: Event to publish.
        io_timeout: Time budget per attempt.
        max_attempts: Total attempts for retryable failures.

    Raises:
        EventPublishError: If the event could not be published.
    """
    try:
        await retry_async(
            lambda: with_timeout(event_bus.publish(event), "event_bus.publish", io_timeout),
            operation="event_bus.publish",
            max_attempts=max_attempts,
        )
    except EventPublishError:
        raise
    except Exception as e:
        logger.error(
            "Failed to publish domain event",
            event_type=event.kind.value,
            entity_id=event.entity_id,
            error=str(e),
        )
        raise EventPublishError(event.kind.value, str(e)) from e


class OutboxRelay:
    """
    Outbox event publisher.

    Publishes recorded events in recording order. When an event of an
    entity cannot be published, later events of the same entity are held
    back so consumers keep seeing them in order.
    """

    def __init__(
        self,
        outbox: IOutbox,
        event_bus: IEventBus,
        batch_size: int = 100,
        io_timeout: Optional[float] = 5.0,
        max_attempts: int = 3,
    ) -> None:
        """
        Initialize the relay.

        Args:
            outbox: Outbox the stores record events in.
            event_bus: Destination bus.
            batch_size: Number of events read per flush.
            io_timeout: Time budget for outbox and bus calls.
            max_attempts: Publish attempts per event and flush.
        """
        self._outbox = outbox
        self._event_bus = event_bus
        self._batch_size = batch_size
        self._io_timeout = io_timeout
        self._max_attempts = max_attempts
        # Events being published right now; an inline subscriber flushing
        # the same entity must not publish them a second time
        self._in_flight: set[str] = set()
        # Ids this relay published recently; a flush working from an older
        # snapshot of the outbox must not publish them again
        self._delivered: OrderedDict[str, None] = OrderedDict()
        self._delivered_limit = max(batch_size * 10, 1000)
        self._task: Optional[asyncio.Task] = None

    async def flush(self, entity_id: Optional[str] = None) -> int:
        """
        Publish unprocessed outbox events.

        Never raises: whatever is not published stays in the outbox.

        Args:
            entity_id: Only flush the events of this entity.

        Returns:
            Number of events published.
        """
        try:
            events = await with_timeout(
                self._outbox.list_unprocessed(self._batch_size, entity_id),
                "outbox.list_unprocessed",
                self._io_timeout,
            )
        except Exception as e:
            logger.error("Failed to read outbox", entity_id=entity_id, error=str(e))
            return 0

        blocked: set[str] = set()
        published = 0
        for event in events:
            if event.entity_id in blocked or self._seen(event.event_id):
                continue
            if await self._deliver(event):
                published += 1
            else:
                blocked.add(event.entity_id)

        if entity_id is None and published:
            logger.info("Published outbox events", count=published, total=len(events))
        return published

    def _seen(self, event_id: str) -> bool:
        return event_id in self._in_flight or event_id in self._delivered

    async def _deliver(self, event: DomainEvent) -> bool:
        self._in_flight.add(event.event_id)
        try:
            await publish_event(self._event_bus, event, self._io_timeout, self._max_attempts)
            await with_timeout(
                self._outbox.mark_processed(event.event_id),
                "outbox.mark_processed",
                self._io_timeout,
            )
        except Exception as e:
            metrics.OUTBOX_EVENTS.labels(status="deferred").inc()
            logger.warning(
                "Outbox event left for a later flush",
                event_id=event.event_id,
                event_type=event.kind.value,
                entity_id=event.entity_id,
                error=str(e),
            )
            return False
        finally:
            self._in_flight.discard(event.event_id)

        self._delivered[event.event_id] = None
        if len(self._delivered) > self._delivered_limit:
            self._delivered.popitem(last=False)
        metrics.OUTBOX_EVENTS.labels(status="published").inc()
        return True

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, interval: float = 1.0) -> None:
        """Start flushing the whole outbox every ``interval`` seconds."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run(interval), name="mdm-outbox-relay")
        logger.info("Outbox relay started", interval=interval)

    async def stop(self) -> None:
        """Cancel the background task and wait for it to finish."""
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Outbox relay stopped")

    async def _run(self, interval: float) -> None:
        while True:
            await self.flush()
            await asyncio.sleep(interval)
