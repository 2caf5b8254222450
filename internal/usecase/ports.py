"""
Ports consumed by the MDM core.

Storage and messaging collaborators are described as Protocols; the
infrastructure package provides Postgres, Redis, Kafka, filesystem and
in-memory implementations.
"""
from typing import Awaitable, Callable, Iterable, Optional, Protocol

from internal.domain.events import DomainEvent, EventKind
from internal.domain.linking import PendingResolution, ProductMediaLink
from internal.domain.media import LinkStatus, Media
from internal.domain.product import Article, Product
from internal.domain.typology import Typology


EventHandler = Callable[[DomainEvent], Awaitable[None]]


class IProductStore(Protocol):
    """Protocol for product persistence."""

    async def get(self, ean: str) -> Optional[Product]:
        """Get product by EAN."""
        ...

    async def find_by_ean(self, ean: str) -> list[Product]:
        """Get every product stored under an EAN (more than one means bad data)."""
        ...

    async def save(self, product: Product, expected_version: Optional[int]) -> Product:
        """
        Compare-and-set write.

        ``expected_version`` is None for a create; otherwise the stored
        version must equal it or ConcurrentModificationError is raised.
        """
        ...

    async def save_with_outbox(
        self,
        product: Product,
        expected_version: Optional[int],
        event: DomainEvent,
    ) -> Product:
        """Compare-and-set write that records ``event`` in the outbox atomically."""
        ...


class IArticleStore(Protocol):
    """Protocol for article persistence."""

    async def get_by_sku(self, sku: str, product_ean: str) -> Optional[Article]:
        """Get article by SKU, scoped to its product."""
        ...

    async def save(self, article: Article) -> Article:
        """Insert an article; raises DuplicateArticleError if it exists."""
        ...

    async def save_with_outbox(self, article: Article, event: DomainEvent) -> Article:
        """Insert an article and record ``event`` in the outbox atomically."""
        ...


class IBinaryStore(Protocol):
    """Protocol for binary content storage."""

    async def save_binary(self, ref: str, data: bytes) -> str:
        """Store binary content under a reference and return it."""
        ...

    async def read_binary(self, ref: str) -> Optional[bytes]:
        """Read binary content, None when the reference is unknown."""
        ...


class IMediaStore(Protocol):
    """Protocol for media persistence."""

    async def save_binary(self, ref: str, data: bytes) -> str:
        """Store binary content under a reference and return it."""
        ...

    async def save(self, media: Media) -> Media:
        """Insert media metadata (no-op when the id already exists)."""
        ...

    async def save_with_outbox(self, media: Media, event: DomainEvent) -> tuple[Media, bool]:
        """
        Insert media metadata and record ``event`` in the outbox atomically.

        Returns the stored media and whether it was inserted; the event is
        only recorded for an insert.
        """
        ...

    async def get(self, media_id: str) -> Optional[Media]:
        """Get media by id."""
        ...

    async def update_link_status(
        self,
        media_id: str,
        status: LinkStatus,
        reason: Optional[str] = None,
        candidates: Optional[list[str]] = None,
        event: Optional[DomainEvent] = None,
    ) -> None:
        """
        Set the link status of a media asset.

        ``reason`` and ``candidates`` replace the stored ones; ``event``, when
        given, is recorded in the outbox in the same write.
        """
        ...

    async def list_by_link_status(self, status: LinkStatus, limit: int = 100) -> list[str]:
        """Ids of media in a link status, oldest first."""
        ...


class ILinkStore(Protocol):
    """Protocol for product/media links."""

    async def get(self, media_id: str) -> Optional[ProductMediaLink]:
        ...

    async def create(self, link: ProductMediaLink) -> ProductMediaLink:
        """Insert a link; raises LinkAlreadyExistsError if the media is linked."""
        ...

    async def create_with_outbox(
        self, link: ProductMediaLink, event: DomainEvent
    ) -> ProductMediaLink:
        """Insert a link and record ``event`` in the outbox atomically."""
        ...


class IPendingStore(Protocol):
    """Protocol for durable pending-resolution markers."""

    async def get(self, media_id: str) -> Optional[PendingResolution]:
        ...

    async def put(self, pending: PendingResolution) -> None:
        ...

    async def delete(self, media_id: str) -> None:
        ...

    async def list_by_ean(self, ean: str) -> list[PendingResolution]:
        ...

    async def list_all(self) -> list[PendingResolution]:
        ...


class ITypologyStore(Protocol):
    """Protocol for typology version persistence."""

    async def append(self, typology: Typology) -> None:
        """Persist one published version."""
        ...

    async def append_with_outbox(self, typology: Typology, event: DomainEvent) -> None:
        """Persist one published version and record ``event`` in the outbox."""
        ...

    async def load_all(self) -> list[Typology]:
        """Load every published version."""
        ...


class IOutbox(Protocol):
    """
    Protocol for the transactional outbox.

    Stores record events here in the same write as the state change; the
    relay publishes them and marks them processed.
    """

    async def list_unprocessed(
        self, limit: int = 100, entity_id: Optional[str] = None
    ) -> list[DomainEvent]:
        """Unpublished events in recording order, optionally for one entity."""
        ...

    async def mark_processed(self, event_id: str) -> None:
        ...


class IEventBus(Protocol):
    """Protocol for the domain event bus (at-least-once, per-entity ordering)."""

    async def publish(self, event: DomainEvent) -> None:
        ...

    def subscribe(self, kinds: Iterable[EventKind], handler: EventHandler) -> None:
        ...
