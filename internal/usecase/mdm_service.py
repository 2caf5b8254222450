"""
MDM service facade.

Single entry point for adapters (HTTP, CLI, workers): wires the use cases
around shared stores, registry and event bus.
"""
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from internal.domain.clock import utcnow
from internal.domain.linking import LinkStatusView
from internal.domain.media import Media
from internal.domain.product import Article, Product, ProductStatus
from internal.domain.typology import Typology
from internal.domain.value_objects import TypologyRef
from internal.usecase.context_adapters import StoreMediaSink, StoreProductLookup
from internal.usecase.create_article import CreateArticleUseCase
from internal.usecase.create_product import CreateProductInput, CreateProductUseCase
from internal.usecase.filename_parser import FilenameParser
from internal.usecase.ingest_media import IngestMediaUseCase
from internal.usecase.link_resolver import LinkResolver
from internal.usecase.mdm_orchestrator import (
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_RETRY_HORIZON,
    MdmOrchestrator,
)
from internal.usecase.ports import (
    IArticleStore,
    IEventBus,
    ILinkStore,
    IMediaStore,
    IOutbox,
    IPendingStore,
    IProductStore,
    ITypologyStore,
)
from internal.usecase.publishing import OutboxRelay
from internal.usecase.schema_validator import SchemaValidator
from internal.usecase.typology_registry import TypologyRegistry
from internal.usecase.update_product import UpdateProductInput, UpdateProductUseCase


class MdmService:
    """
    Facade over the MDM core.

    Stores record their events in ``outbox``; ``relay`` moves them to the
    bus right after each write and again on every later flush.

    The orchestrator is subscribed to the bus given here. With the
    in-memory bus that makes linking run inline with publication; with
    Kafka the worker process consumes the events instead.
    """

    def __init__(
        self,
        products: IProductStore,
        articles: IArticleStore,
        media: IMediaStore,
        links: ILinkStore,
        pending: IPendingStore,
        event_bus: IEventBus,
        outbox: IOutbox,
        typologies: Optional[ITypologyStore] = None,
        registry: Optional[TypologyRegistry] = None,
        parser: Optional[FilenameParser] = None,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_horizon: timedelta = DEFAULT_RETRY_HORIZON,
        io_timeout: Optional[float] = 5.0,
        subscribe_orchestrator: bool = True,
        now: Callable[[], datetime] = utcnow,
    ) -> None:
        """
        Initialize the service.

        Args:
            products: Product store.
            articles: Article store.
            media: Media store.
            links: Link store.
            pending: Pending-resolution store.
            event_bus: Domain event bus.
            outbox: Outbox the stores record their events in.
            typologies: Store of published typologies for a fresh registry.
            registry: Typology registry; a fresh one over ``typologies`` when omitted.
            parser: Filename parser; the default formats when omitted.
            max_attempts: Resolution attempts before a pending media fails.
            retry_horizon: Time after which a pending media fails.
            io_timeout: Time budget for store and bus calls.
            subscribe_orchestrator: Register the orchestrator on ``event_bus``.
            now: Wall-clock source for link and retry timestamps.
        """
        self.relay = OutboxRelay(outbox, event_bus, io_timeout=io_timeout)
        self.registry = registry or TypologyRegistry(
            store=typologies, relay=self.relay, io_timeout=io_timeout
        )
        self.validator = SchemaValidator(self.registry)
        self.parser = parser or FilenameParser()

        self._create_product = CreateProductUseCase(
            products, self.validator, self.relay, io_timeout
        )
        self._update_product = UpdateProductUseCase(
            products, self.validator, self.registry, self.relay, io_timeout
        )
        self._create_article = CreateArticleUseCase(
            products, articles, self.validator, self.relay, io_timeout
        )
        self._ingest_media = IngestMediaUseCase(media, self.parser, self.relay, io_timeout)

        self.orchestrator = MdmOrchestrator(
            resolver=LinkResolver(StoreProductLookup(products, articles, io_timeout)),
            media_sink=StoreMediaSink(media, io_timeout),
            link_store=links,
            pending_store=pending,
            relay=self.relay,
            max_attempts=max_attempts,
            retry_horizon=retry_horizon,
            io_timeout=io_timeout,
            now=now,
        )
        if subscribe_orchestrator:
            self.orchestrator.subscribe(event_bus)

    async def publish_typology(self, typology: Typology) -> TypologyRef:
        """Publish a typology draft; see ``TypologyRegistry.publish``."""
        return await self.registry.publish(typology)

    async def create_product(
        self,
        ean: str,
        typology_ref: TypologyRef,
        attributes: dict[str, Any],
        status: ProductStatus = ProductStatus.DRAFT,
    ) -> Product:
        """Create a product; see ``CreateProductUseCase``."""
        output = await self._create_product.execute(
            CreateProductInput(ean, typology_ref, attributes, status)
        )
        return output.product

    async def update_product(
        self,
        ean: str,
        attributes: dict[str, Any],
        expected_version: int,
        migrate: bool = False,
        status: Optional[ProductStatus] = None,
        replace: bool = False,
    ) -> Product:
        """Update a product under its concurrency token; see ``UpdateProductUseCase``."""
        return await self._update_product.execute(
            UpdateProductInput(
                ean,
                attributes,
                expected_version,
                migrate=migrate,
                status=status,
                replace=replace,
            )
        )

    async def create_article(
        self,
        sku: str,
        product_ean: str,
        attribute_overrides: Optional[dict[str, Any]] = None,
    ) -> Article:
        return await self._create_article.execute(sku, product_ean, attribute_overrides)

    async def ingest_media(self, filename: str, data: bytes) -> Media:
        return await self._ingest_media.execute(filename, data)

    async def get_link_status(self, media_id: str) -> LinkStatusView:
        return await self.orchestrator.get_link_status(media_id)
