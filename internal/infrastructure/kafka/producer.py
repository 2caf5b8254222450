"""
Kafka Producer for event publishing.

Publishes domain events to the MDM events topic. The message key is the
entity id, so events about one entity land on one partition and keep
their order.
"""
import json
from typing import Optional

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError

from internal.domain.errors import EventPublishError
from internal.domain.events import DomainEvent
from pkg.logger.logger import get_logger
from pkg.resilience.circuit_breaker import CircuitBreaker, CircuitBreakerError


logger = get_logger(__name__)


class KafkaProducer:
    """
    Kafka producer for publishing domain events.

    Handles serialization and reliable delivery of events. Sends go
    through a circuit breaker so an unreachable broker fails fast.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str = "mdm-events",
        client_id: str = "mdm-core",
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        """
        Initialize the Kafka producer.

        Args:
            bootstrap_servers: Comma-separated list of Kafka brokers.
            topic: Topic receiving domain events.
            client_id: Client identifier for the producer.
            circuit_breaker: Breaker guarding sends.
        """
        self._bootstrap_servers = bootstrap_servers
        self._topic = topic
        self._client_id = client_id
        self._producer: Optional[AIOKafkaProducer] = None
        self._breaker = circuit_breaker or CircuitBreaker(
            name="kafka-producer",
            tracked_exceptions=(KafkaError, OSError),
        )

    async def start(self) -> None:
        """Start the Kafka producer."""
        self._producer = AIOKafkaProducer(
            bootstrap_servers=self._bootstrap_servers,
            client_id=self._client_id,
            value_serializer=lambda v: json.dumps(v).encode("utf-8"),
            key_serializer=lambda k: k.encode("utf-8") if k else None,
            acks="all",
            enable_idempotence=True,
        )
        await self._producer.start()
        logger.info("Kafka producer started", bootstrap_servers=self._bootstrap_servers)

    async def stop(self) -> None:
        """Stop the Kafka producer."""
        if self._producer:
            await self._producer.stop()
            self._producer = None
            logger.info("Kafka producer stopped")

    async def publish(self, event: DomainEvent) -> None:
        """
        Publish a domain event.

        Args:
            event: The event to publish.

        Raises:
            EventPublishError: If the broker rejected the event or the
                circuit is open.
        """
        if not self._producer:
            raise RuntimeError("Producer not started")

        try:
            await self._breaker.call(
                self._producer.send_and_wait,
                topic=self._topic,
                key=event.entity_id,
                value=event.to_dict(),
            )
        except (KafkaError, CircuitBreakerError) as e:
            raise EventPublishError(event.kind.value, str(e)) from e

        logger.debug(
            "Event published to Kafka",
            topic=self._topic,
            event_type=event.kind.value,
            entity_id=event.entity_id,
        )
