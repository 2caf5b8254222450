"""
Domain model for product/media linking.

Link outcomes are first-class results, not exceptions: the resolver
returns one of Linked, Ambiguous or Unmatched and the orchestrator turns
it into a ProductMediaLink, a pending marker or a terminal status.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Union

from .clock import utcnow
from .media import LinkStatus


REASON_NO_EAN = "no EAN token"
REASON_PRODUCT_NOT_FOUND = "product not found"
REASON_ARTICLE_NOT_FOUND = "article not found for product"
REASON_AMBIGUOUS = "ambiguous"
REASON_RETRY_EXHAUSTED = "retry horizon exceeded"

# Reasons a later product or article upsert may resolve
RETRYABLE_REASONS = frozenset({REASON_PRODUCT_NOT_FOUND, REASON_ARTICLE_NOT_FOUND})


@dataclass(frozen=True)
class Linked:
    """Media resolves to a product, optionally to one of its articles."""

    product_ean: str
    article_sku: Optional[str] = None


@dataclass(frozen=True)
class Ambiguous:
    """Media matches more than one product."""

    candidates: tuple[str, ...]


@dataclass(frozen=True)
class Unmatched:
    """Media matches nothing, for the given reason."""

    reason: str

    @property
    def retryable(self) -> bool:
        return self.reason in RETRYABLE_REASONS


LinkOutcome = Union[Linked, Ambiguous, Unmatched]


@dataclass(frozen=True)
class ProductMediaLink:
    """
    Link between a media asset and its product/article target.

    Unique per media id.

    Attributes:
        media_id: Linked media asset.
        product_ean: Target product.
        article_sku: Target article, if the media is article-level.
        linked_at: Timestamp of link creation.
    """
    media_id: str
    product_ean: str
    article_sku: Optional[str] = None
    linked_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "media_id": self.media_id,
            "product_ean": self.product_ean,
            "article_sku": self.article_sku,
            "linked_at": self.linked_at.isoformat(),
        }


@dataclass
class PendingResolution:
    """
    Durable marker for media waiting on a product or article.

    Attributes:
        media_id: Media awaiting resolution.
        ean: EAN the media waits for.
        reason: Reason of the last unmatched outcome.
        attempts: Resolution attempts made so far.
        max_attempts: Attempt budget.
        first_seen_at: When the marker was created.
        deadline: Retry horizon; past it the media fails.
    """
    media_id: str
    ean: str
    reason: str
    attempts: int = 1
    max_attempts: int = 10
    first_seen_at: datetime = field(default_factory=utcnow)
    deadline: Optional[datetime] = None

    @classmethod
    def open(
        cls,
        media_id: str,
        ean: str,
        reason: str,
        max_attempts: int,
        horizon: timedelta,
        now: Optional[datetime] = None,
    ) -> "PendingResolution":
        """Create a marker for a first unmatched attempt."""
        now = now or utcnow()
        return cls(
            media_id=media_id,
            ean=ean,
            reason=reason,
            attempts=1,
            max_attempts=max_attempts,
            first_seen_at=now,
            deadline=now + horizon,
        )

    def record_attempt(self, reason: str) -> None:
        self.attempts += 1
        self.reason = reason

    def is_exhausted(self, now: Optional[datetime] = None) -> bool:
        """Whether the attempt budget or the retry horizon is used up."""
        now = now or utcnow()
        if self.attempts >= self.max_attempts:
            return True
        return self.deadline is not None and now >= self.deadline

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "media_id": self.media_id,
            "ean": self.ean,
            "reason": self.reason,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "first_seen_at": self.first_seen_at.isoformat(),
            "deadline": self.deadline.isoformat() if self.deadline else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PendingResolution":
        """Create PendingResolution from dictionary."""
        deadline = data.get("deadline")
        return cls(
            media_id=data["media_id"],
            ean=data["ean"],
            reason=data.get("reason", ""),
            attempts=int(data.get("attempts", 1)),
            max_attempts=int(data.get("max_attempts", 10)),
            first_seen_at=datetime.fromisoformat(data["first_seen_at"]),
            deadline=datetime.fromisoformat(deadline) if deadline else None,
        )


@dataclass(frozen=True)
class LinkStatusView:
    """
    Link status of a media asset as exposed to adapters.

    Attributes:
        media_id: Media identifier.
        status: Current link status.
        product_ean: Linked product, when linked.
        article_sku: Linked article, when linked at article level.
        reason: Reason for pending, ambiguous or failed states.
        candidates: Matching EANs of an ambiguous media.
    """
    media_id: str
    status: LinkStatus
    product_ean: Optional[str] = None
    article_sku: Optional[str] = None
    reason: Optional[str] = None
    candidates: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "media_id": self.media_id,
            "status": self.status.value,
            "product_ean": self.product_ean,
            "article_sku": self.article_sku,
            "reason": self.reason,
            "candidates": list(self.candidates),
        }
