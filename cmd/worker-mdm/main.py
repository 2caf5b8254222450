"""
MDM Orchestrator Worker Entry Point.

Consumes domain events from Kafka and links ingested media to products
and articles. Runs the pending-resolution sweeper and the outbox relay
alongside the consumer.
"""

import asyncio
import signal
from typing import Optional

from dotenv import load_dotenv
from prometheus_client import start_http_server

from config.settings import get_settings
from internal.infrastructure.kafka import KafkaConsumer, KafkaEventBus, KafkaProducer
from internal.infrastructure.postgres import (
    PostgresArticleStore,
    PostgresLinkStore,
    PostgresMediaStore,
    PostgresOutbox,
    PostgresProductStore,
    create_pool,
)
from internal.infrastructure.redis import RedisPendingStore
from internal.infrastructure.storage import LocalBinaryStore
from internal.usecase.context_adapters import StoreMediaSink, StoreProductLookup
from internal.usecase.link_resolver import LinkResolver
from internal.usecase.mdm_orchestrator import MdmOrchestrator, PendingSweeper
from internal.usecase.publishing import OutboxRelay
from pkg.logger.logger import get_logger, setup_logging

# Load environment variables
load_dotenv()

settings = get_settings()

# Setup logging
setup_logging(
    level=settings.log_level,
    json_format=settings.log_format == "json",
    service=settings.app_name,
)

logger = get_logger(__name__)


class MdmWorker:
    """
    Worker running the MDM orchestrator.

    Wires the Postgres, Redis, Kafka and filesystem adapters to the
    orchestrator and consumes until stopped.
    """

    def __init__(self) -> None:
        """Initialize the worker."""
        self._db_pool = None
        self._pending: Optional[RedisPendingStore] = None
        self._event_bus: Optional[KafkaEventBus] = None
        self._sweeper: Optional[PendingSweeper] = None
        self._relay: Optional[OutboxRelay] = None

    async def start(self) -> None:
        """Start the worker."""
        logger.info("Starting MDM Orchestrator Worker...")

        # Initialize database pool
        try:
            self._db_pool = await create_pool(
                settings.database_url,
                min_size=settings.db_pool_min_size,
                max_size=settings.db_pool_max_size,
            )
            logger.info("Database pool created")
        except Exception as e:
            logger.error("Failed to create database pool", error=str(e))
            raise

        self._pending = RedisPendingStore(settings.redis_url)
        await self._pending.connect()

        products = PostgresProductStore(self._db_pool)
        articles = PostgresArticleStore(self._db_pool)
        media = PostgresMediaStore(self._db_pool, LocalBinaryStore(settings.media_storage_root))
        links = PostgresLinkStore(self._db_pool)

        self._event_bus = KafkaEventBus(
            producer=KafkaProducer(
                bootstrap_servers=settings.kafka_bootstrap_servers,
                topic=settings.kafka_events_topic,
                client_id=settings.kafka_client_id,
            ),
            consumer=KafkaConsumer(
                bootstrap_servers=settings.kafka_bootstrap_servers,
                group_id=settings.kafka_group_id,
                topic=settings.kafka_events_topic,
                client_id=f"{settings.kafka_client_id}-orchestrator",
                max_retries=settings.kafka_max_message_retries,
            ),
        )

        self._relay = OutboxRelay(
            PostgresOutbox(self._db_pool),
            self._event_bus,
            io_timeout=settings.io_timeout_seconds,
        )

        orchestrator = MdmOrchestrator(
            resolver=LinkResolver(
                StoreProductLookup(products, articles, settings.io_timeout_seconds)
            ),
            media_sink=StoreMediaSink(media, settings.io_timeout_seconds),
            link_store=links,
            pending_store=self._pending,
            relay=self._relay,
            max_attempts=settings.mdm_retry_max_attempts,
            retry_horizon=settings.retry_horizon,
            io_timeout=settings.io_timeout_seconds,
        )
        orchestrator.subscribe(self._event_bus)

        await self._event_bus.start()
        self._relay.start(settings.outbox_relay_interval_seconds)

        self._sweeper = PendingSweeper(orchestrator, settings.mdm_sweep_interval_seconds)
        self._sweeper.start()

        logger.info(
            "MDM Orchestrator Worker started successfully",
            topic=settings.kafka_events_topic,
            group_id=settings.kafka_group_id,
        )

        # Start consuming
        try:
            await self._event_bus.run()
        except asyncio.CancelledError:
            logger.info("Worker consumption cancelled")

    async def stop(self) -> None:
        """Stop the worker."""
        logger.info("Stopping MDM Orchestrator Worker...")

        if self._sweeper:
            await self._sweeper.stop()

        if self._relay:
            await self._relay.stop()

        if self._event_bus:
            await self._event_bus.stop()

        if self._pending:
            await self._pending.disconnect()

        if self._db_pool:
            await self._db_pool.close()

        logger.info("MDM Orchestrator Worker stopped")


async def main() -> None:
    """Main entry point."""
    start_http_server(settings.metrics_port)

    worker = MdmWorker()
    shutdown_event = asyncio.Event()

    # Handle shutdown signals
    def signal_handler() -> None:
        logger.info("Received shutdown signal")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        # Start worker in a task
        worker_task = asyncio.create_task(worker.start())

        # Wait for shutdown signal or for the worker to fail
        stop_task = asyncio.create_task(shutdown_event.wait())
        await asyncio.wait({worker_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

        # Cancel worker task
        worker_task.cancel()
        stop_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass

        # Graceful shutdown
        await worker.stop()
    except Exception as e:
        logger.error("Worker failed", error=str(e))
        await worker.stop()
        raise


if __name__ == "__main__":
    asyncio.run(main())
