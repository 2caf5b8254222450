"""
In-memory stores.

Process-local implementations of the store ports, used by tests and by
single-process deployments. Entities are copied on the way in and out so
callers never share mutable state with the store. Stores built on the same
``InMemoryOutbox`` record their events in it together with the state change.
"""
import asyncio
from copy import deepcopy
from dataclasses import replace
from typing import Optional

from internal.domain.clock import utcnow
from internal.domain.errors import (
    ConcurrentModificationError,
    DuplicateArticleError,
    DuplicateProductError,
    LinkAlreadyExistsError,
    MediaNotFoundError,
)
from internal.domain.events import DomainEvent
from internal.domain.linking import PendingResolution, ProductMediaLink
from internal.domain.media import LinkStatus, Media
from internal.domain.product import Article, Product
from internal.domain.typology import Typology


class InMemoryOutbox:
    """Ordered list of recorded events and the ids already published."""

    def __init__(self) -> None:
        self._events: list[DomainEvent] = []
        self._processed: set[str] = set()

    def add(self, event: DomainEvent) -> None:
        """Record an event; called by the stores while holding their lock."""
        self._events.append(deepcopy(event))

    async def list_unprocessed(
        self, limit: int = 100, entity_id: Optional[str] = None
    ) -> list[DomainEvent]:
        pending = [
            event for event in self._events
            if event.event_id not in self._processed
            and (entity_id is None or event.entity_id == entity_id)
        ]
        return [deepcopy(event) for event in pending[:limit]]

    async def mark_processed(self, event_id: str) -> None:
        self._processed.add(event_id)

    def unprocessed(self) -> list[DomainEvent]:
        return [e for e in self._events if e.event_id not in self._processed]

    def __len__(self) -> int:
        return len(self._events)


class InMemoryProductStore:
    """Product store with compare-and-set saves."""

    def __init__(self, outbox: Optional[InMemoryOutbox] = None) -> None:
        self._products: dict[str, Product] = {}
        self._outbox = outbox if outbox is not None else InMemoryOutbox()
        self._lock = asyncio.Lock()

    async def get(self, ean: str) -> Optional[Product]:
        product = self._products.get(ean)
        return deepcopy(product) if product else None

    async def find_by_ean(self, ean: str) -> list[Product]:
        product = self._products.get(ean)
        return [deepcopy(product)] if product else []

    async def save(self, product: Product, expected_version: Optional[int]) -> Product:
        """
        Store a product if the stored version matches.

        Args:
            product: New product state.
            expected_version: None for a create, else the version being replaced.

        Returns:
            The stored product.

        Raises:
            DuplicateProductError: If a create hits an existing EAN.
            ConcurrentModificationError: If the stored version moved on.
        """
        async with self._lock:
            return self._store(product, expected_version)

    async def save_with_outbox(
        self,
        product: Product,
        expected_version: Optional[int],
        event: DomainEvent,
    ) -> Product:
        """Store a product like ``save`` and record ``event`` with it."""
        async with self._lock:
            stored = self._store(product, expected_version)
            self._outbox.add(event)
            return stored

    def _store(self, product: Product, expected_version: Optional[int]) -> Product:
        current = self._products.get(product.ean)
        if expected_version is None:
            if current is not None:
                raise DuplicateProductError(product.ean)
        elif current is None or current.version != expected_version:
            raise ConcurrentModificationError(
                product.ean,
                expected_version,
                current.version if current else None,
            )
        self._products[product.ean] = deepcopy(product)
        return deepcopy(product)

    def __len__(self) -> int:
        return len(self._products)


class InMemoryArticleStore:
    """Article store keyed by (product EAN, SKU)."""

    def __init__(self, outbox: Optional[InMemoryOutbox] = None) -> None:
        self._articles: dict[tuple[str, str], Article] = {}
        self._outbox = outbox if outbox is not None else InMemoryOutbox()
        self._lock = asyncio.Lock()

    async def get_by_sku(self, sku: str, product_ean: str) -> Optional[Article]:
        article = self._articles.get((product_ean, sku))
        return deepcopy(article) if article else None

    async def save(self, article: Article) -> Article:
        async with self._lock:
            return self._store(article)

    async def save_with_outbox(self, article: Article, event: DomainEvent) -> Article:
        async with self._lock:
            stored = self._store(article)
            self._outbox.add(event)
            return stored

    def _store(self, article: Article) -> Article:
        key = (article.product_ean, article.sku)
        if key in self._articles:
            raise DuplicateArticleError(article.sku, article.product_ean)
        self._articles[key] = deepcopy(article)
        return deepcopy(article)


class InMemoryMediaStore:
    """Media metadata and binaries held in dictionaries."""

    def __init__(self, outbox: Optional[InMemoryOutbox] = None) -> None:
        self._media: dict[str, Media] = {}
        self._binaries: dict[str, bytes] = {}
        self._outbox = outbox if outbox is not None else InMemoryOutbox()

    async def save_binary(self, ref: str, data: bytes) -> str:
        self._binaries[ref] = bytes(data)
        return ref

    async def read_binary(self, ref: str) -> Optional[bytes]:
        return self._binaries.get(ref)

    async def save(self, media: Media) -> Media:
        stored = self._media.setdefault(media.id, deepcopy(media))
        return deepcopy(stored)

    async def save_with_outbox(self, media: Media, event: DomainEvent) -> tuple[Media, bool]:
        """
        Insert media unless the id is taken.

        Returns:
            The stored media and whether this call inserted it. The event
            is recorded only on insert.
        """
        existing = self._media.get(media.id)
        if existing is not None:
            return deepcopy(existing), False
        self._media[media.id] = deepcopy(media)
        self._outbox.add(event)
        return deepcopy(media), True

    async def get(self, media_id: str) -> Optional[Media]:
        media = self._media.get(media_id)
        return deepcopy(media) if media else None

    async def update_link_status(
        self,
        media_id: str,
        status: LinkStatus,
        reason: Optional[str] = None,
        candidates: Optional[list[str]] = None,
        event: Optional[DomainEvent] = None,
    ) -> None:
        media = self._media.get(media_id)
        if media is None:
            raise MediaNotFoundError(media_id)
        media.link_status = status
        media.link_reason = reason
        media.link_candidates = list(candidates or [])
        media.updated_at = utcnow()
        if event is not None:
            self._outbox.add(event)

    async def list_by_link_status(self, status: LinkStatus, limit: int = 100) -> list[str]:
        matching = sorted(
            (m for m in self._media.values() if m.link_status == status),
            key=lambda m: m.created_at,
        )
        return [m.id for m in matching[:limit]]

    def __len__(self) -> int:
        return len(self._media)


class InMemoryLinkStore:
    """Link store enforcing one link per media id."""

    def __init__(self, outbox: Optional[InMemoryOutbox] = None) -> None:
        self._links: dict[str, ProductMediaLink] = {}
        self._outbox = outbox if outbox is not None else InMemoryOutbox()

    async def get(self, media_id: str) -> Optional[ProductMediaLink]:
        return self._links.get(media_id)

    async def create(self, link: ProductMediaLink) -> ProductMediaLink:
        if link.media_id in self._links:
            raise LinkAlreadyExistsError(link.media_id)
        self._links[link.media_id] = link
        return link

    async def create_with_outbox(
        self, link: ProductMediaLink, event: DomainEvent
    ) -> ProductMediaLink:
        created = await self.create(link)
        self._outbox.add(event)
        return created

    def all(self) -> list[ProductMediaLink]:
        return list(self._links.values())


class InMemoryPendingStore:
    """Pending-resolution markers keyed by media id."""

    def __init__(self) -> None:
        self._pending: dict[str, PendingResolution] = {}

    async def get(self, media_id: str) -> Optional[PendingResolution]:
        pending = self._pending.get(media_id)
        return replace(pending) if pending else None

    async def put(self, pending: PendingResolution) -> None:
        self._pending[pending.media_id] = replace(pending)

    async def delete(self, media_id: str) -> None:
        self._pending.pop(media_id, None)

    async def list_by_ean(self, ean: str) -> list[PendingResolution]:
        return [replace(p) for p in self._pending.values() if p.ean == ean]

    async def list_all(self) -> list[PendingResolution]:
        return [replace(p) for p in self._pending.values()]

    def __len__(self) -> int:
        return len(self._pending)


class InMemoryTypologyStore:
    """Append-only list of published typology versions."""

    def __init__(self, outbox: Optional[InMemoryOutbox] = None) -> None:
        self._typologies: list[Typology] = []
        self._outbox = outbox if outbox is not None else InMemoryOutbox()

    async def append(self, typology: Typology) -> None:
        self._typologies.append(typology)

    async def append_with_outbox(self, typology: Typology, event: DomainEvent) -> None:
        self._typologies.append(typology)
        self._outbox.add(event)

    async def load_all(self) -> list[Typology]:
        return list(self._typologies)
