"""
Domain events.

Events are the only channel of information between the PIM side, the DAM
side and the orchestrator. They are immutable once emitted and carry a
logical timestamp plus the id of the entity they are ordered by.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from .clock import LogicalClock, default_clock, utcnow
from .linking import ProductMediaLink
from .media import LinkStatus, Media
from .product import Article, Product
from .typology import Typology


class EventKind(str, Enum):
    """Tag of a domain event."""

    PRODUCT_UPSERTED = "product.upserted"
    ARTICLE_UPSERTED = "article.upserted"
    MEDIA_INGESTED = "media.ingested"
    MEDIA_LINKED = "media.linked"
    MEDIA_LINK_FAILED = "media.link_failed"
    TYPOLOGY_PUBLISHED = "typology.published"


@dataclass(frozen=True)
class DomainEvent:
    """
    Immutable domain event.

    Attributes:
        kind: Event tag.
        entity_id: Id of the entity the event is ordered by.
        logical_timestamp: Position in this process' emission order.
        payload: Event data.
        event_id: Unique event identifier, used for de-duplication.
        occurred_at: Wall-clock emission time.
    """
    kind: EventKind
    entity_id: str
    logical_timestamp: int
    payload: dict = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid4()))
    occurred_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        """Convert to the wire representation."""
        return {
            "event_id": self.event_id,
            "event_type": self.kind.value,
            "entity_id": self.entity_id,
            "logical_timestamp": self.logical_timestamp,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DomainEvent":
        """Create DomainEvent from its wire representation."""
        return cls(
            kind=EventKind(data["event_type"]),
            entity_id=data["entity_id"],
            logical_timestamp=int(data.get("logical_timestamp", 0)),
            payload=dict(data.get("payload") or {}),
            event_id=data.get("event_id") or str(uuid4()),
            occurred_at=(
                datetime.fromisoformat(data["occurred_at"])
                if data.get("occurred_at")
                else utcnow()
            ),
        )


def product_upserted(
    product: Product,
    created: bool,
    clock: LogicalClock = default_clock,
) -> DomainEvent:
    """Event emitted after a product create or update is durable."""
    return DomainEvent(
        kind=EventKind.PRODUCT_UPSERTED,
        entity_id=product.ean,
        logical_timestamp=clock.tick(),
        payload={
            "ean": product.ean,
            "typology": product.typology_ref.to_dict(),
            "version": product.version,
            "status": product.status.value,
            "created": created,
        },
    )


def article_upserted(article: Article, clock: LogicalClock = default_clock) -> DomainEvent:
    """Event emitted after an article is stored; ordered by its product."""
    return DomainEvent(
        kind=EventKind.ARTICLE_UPSERTED,
        entity_id=article.product_ean,
        logical_timestamp=clock.tick(),
        payload={"sku": article.sku, "product_ean": article.product_ean},
    )


def media_ingested(media: Media, clock: LogicalClock = default_clock) -> DomainEvent:
    """Event emitted after a media asset is stored."""
    return DomainEvent(
        kind=EventKind.MEDIA_INGESTED,
        entity_id=media.id,
        logical_timestamp=clock.tick(),
        payload={
            "media_id": media.id,
            "filename": media.original_filename,
            "parsed_key": media.parsed_key.to_dict(),
            "format": media.media_format.to_dict(),
        },
    )


def media_linked(link: ProductMediaLink, clock: LogicalClock = default_clock) -> DomainEvent:
    return DomainEvent(
        kind=EventKind.MEDIA_LINKED,
        entity_id=link.media_id,
        logical_timestamp=clock.tick(),
        payload=link.to_dict(),
    )


def media_link_failed(
    media_id: str,
    status: LinkStatus,
    reason: str,
    candidates: Optional[list[str]] = None,
    clock: LogicalClock = default_clock,
) -> DomainEvent:
    """Event emitted when a media asset reaches a terminal non-linked state."""
    return DomainEvent(
        kind=EventKind.MEDIA_LINK_FAILED,
        entity_id=media_id,
        logical_timestamp=clock.tick(),
        payload={
            "media_id": media_id,
            "status": status.value,
            "reason": reason,
            "candidates": candidates or [],
            "terminal": status.is_terminal,
        },
    )


def typology_published(typology: Typology, clock: LogicalClock = default_clock) -> DomainEvent:
    return DomainEvent(
        kind=EventKind.TYPOLOGY_PUBLISHED,
        entity_id=typology.id,
        logical_timestamp=clock.tick(),
        payload={
            "typology_id": typology.id,
            "version": typology.version,
            "display_name": typology.display_name,
        },
    )
