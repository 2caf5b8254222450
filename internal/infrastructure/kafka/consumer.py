"""
Kafka Consumer for domain events.

Consumes the MDM events topic and dispatches each event to the handlers
subscribed to its kind. Offsets are committed manually after the
handlers succeed.
"""
import json
from typing import Any, Iterable, Optional

from aiokafka import AIOKafkaConsumer, TopicPartition
from aiokafka.errors import KafkaError

from internal.domain.events import DomainEvent, EventKind
from internal.infrastructure.metrics import prometheus as metrics
from internal.usecase.ports import EventHandler
from pkg.logger.logger import get_logger, set_correlation_id


logger = get_logger(__name__)


class KafkaConsumer:
    """
    Kafka consumer for processing domain events.

    Delivery is at-least-once: a failed message is rewound and retried up
    to ``max_retries`` times, then logged and skipped so one poison
    message cannot block its partition.
    """

    def __init__(
        self,
        bootstrap_servers: str,
        group_id: str,
        topic: str = "mdm-events",
        client_id: str = "mdm-core-consumer",
        max_retries: int = 3,
    ) -> None:
        """
        Initialize the Kafka consumer.

        Args:
            bootstrap_servers: Comma-separated list of Kafka brokers.
            group_id: Consumer group identifier.
            topic: Topic to consume from.
            client_id: Client identifier for the consumer.
            max_retries: Attempts per message before it is skipped.
        """
        self._bootstrap_servers = bootstrap_servers
        self._group_id = group_id
        self._topic = topic
        self._client_id = client_id
        self._consumer: Optional[AIOKafkaConsumer] = None
        self._handlers: dict[EventKind, list[EventHandler]] = {}
        self._running = False
        self._max_retries = max_retries
        self._retry_counts: dict[str, int] = {}  # Track retries per message position

        # Statistics
        self._stats = {
            "processed": 0,
            "errors": 0,
            "skipped": 0,  # Messages skipped after max retries
            "ignored": 0,  # No handler for the event kind
        }

    @property
    def stats(self) -> dict[str, int]:
        return dict(self._stats)

    def subscribe(self, kinds: Iterable[EventKind], handler: EventHandler) -> None:
        """
        Register a handler for event kinds.

        Args:
            kinds: Event kinds to handle.
            handler: Async function receiving the DomainEvent.
        """
        for kind in kinds:
            kind = EventKind(kind)
            self._handlers.setdefault(kind, []).append(handler)
            logger.info("Registered handler for event type", event_type=kind.value)

    async def start(self) -> None:
        """Start the Kafka consumer."""
        self._consumer = AIOKafkaConsumer(
            self._topic,
            bootstrap_servers=self._bootstrap_servers,
            group_id=self._group_id,
            client_id=self._client_id,
            value_deserializer=lambda v: json.loads(v.decode("utf-8")),
            auto_offset_reset="earliest",
            enable_auto_commit=False,
        )
        await self._consumer.start()
        self._running = True
        logger.info(
            "Kafka consumer started",
            topic=self._topic,
            group_id=self._group_id,
        )

    async def stop(self) -> None:
        """Stop the Kafka consumer."""
        self._running = False
        if self._consumer:
            await self._consumer.stop()
            self._consumer = None
            logger.info("Kafka consumer stopped", stats=self._stats)

    async def consume(self) -> None:
        """
        Start consuming messages.

        This is a blocking method that runs until stop() is called.
        """
        if not self._consumer:
            raise RuntimeError("Consumer not started")

        try:
            async for msg in self._consumer:
                if not self._running:
                    break
                await self._handle_record(msg)
        except KafkaError as e:
            logger.error("Kafka consumer error", error=str(e))
            raise

    async def _handle_record(self, msg: Any) -> None:
        """
        Process one record and decide whether to commit, retry or skip.

        Args:
            msg: Kafka record.
        """
        msg_key = f"{msg.topic}:{msg.partition}:{msg.offset}"

        try:
            await self._process_message(msg)
            self._stats["processed"] += 1
            self._retry_counts.pop(msg_key, None)
            await self._consumer.commit()
        except Exception as e:
            self._retry_counts[msg_key] = self._retry_counts.get(msg_key, 0) + 1
            retry_count = self._retry_counts[msg_key]

            logger.error(
                "Error processing message",
                topic=msg.topic,
                partition=msg.partition,
                offset=msg.offset,
                retry=retry_count,
                max_retries=self._max_retries,
                error=str(e),
            )

            if retry_count >= self._max_retries:
                # Skip message after max retries to avoid infinite loop
                logger.warning(
                    "Max retries reached, skipping message",
                    topic=msg.topic,
                    partition=msg.partition,
                    offset=msg.offset,
                )
                self._stats["skipped"] += 1
                self._retry_counts.pop(msg_key, None)
                await self._consumer.commit()
            else:
                self._stats["errors"] += 1
                # Rewind so the same record is fetched again
                self._consumer.seek(TopicPartition(msg.topic, msg.partition), msg.offset)

    async def _process_message(self, msg: Any) -> None:
        """
        Decode a record and run the handlers for its kind.

        Args:
            msg: Kafka record to process.
        """
        value = msg.value
        event_type = value.get("event_type", "unknown") if isinstance(value, dict) else "unknown"

        logger.debug(
            "Received message",
            topic=msg.topic,
            partition=msg.partition,
            offset=msg.offset,
            event_type=event_type,
        )

        try:
            kind = EventKind(event_type)
        except ValueError:
            kind = None
        handlers = self._handlers.get(kind, []) if kind else []
        if not handlers:
            self._stats["ignored"] += 1
            metrics.EVENTS_CONSUMED.labels(event_type=event_type, status="skipped").inc()
            return

        event = DomainEvent.from_dict(value)
        set_correlation_id(event.event_id)
        try:
            for handler in handlers:
                await handler(event)
        except Exception:
            metrics.EVENTS_CONSUMED.labels(event_type=event_type, status="error").inc()
            raise
        metrics.EVENTS_CONSUMED.labels(event_type=event_type, status="success").inc()
