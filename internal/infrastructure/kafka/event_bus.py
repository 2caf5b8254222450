"""
Kafka-backed event bus.
"""
from typing import Iterable, Optional

from internal.domain.events import DomainEvent, EventKind
from internal.usecase.ports import EventHandler

from .consumer import KafkaConsumer
from .producer import KafkaProducer


class KafkaEventBus:
    """
    IEventBus over a Kafka producer and consumer.

    Publishing only needs the producer; a bus without a consumer is a
    publish-only bus (e.g. for an API process).
    """

    def __init__(self, producer: KafkaProducer, consumer: Optional[KafkaConsumer] = None) -> None:
        self._producer = producer
        self._consumer = consumer

    async def publish(self, event: DomainEvent) -> None:
        await self._producer.publish(event)

    def subscribe(self, kinds: Iterable[EventKind], handler: EventHandler) -> None:
        if self._consumer is None:
            raise RuntimeError("Event bus has no consumer")
        self._consumer.subscribe(kinds, handler)

    async def start(self) -> None:
        await self._producer.start()
        if self._consumer:
            await self._consumer.start()

    async def stop(self) -> None:
        if self._consumer:
            await self._consumer.stop()
        await self._producer.stop()

    async def run(self) -> None:
        """Consume until stopped."""
        if self._consumer is None:
            raise RuntimeError("Event bus has no consumer")
        await self._consumer.consume()
