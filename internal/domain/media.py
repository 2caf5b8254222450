"""
Domain model for Media assets.

DAM-side entities: an uploaded asset, the identifiers parsed from its
filename and the format descriptor resolved from its extension.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .clock import utcnow
from .errors import DomainValidationError


class LinkStatus(str, Enum):
    """Link status of a media asset."""

    UNLINKED = "unlinked"
    PENDING = "pending"
    LINKED = "linked"
    AMBIGUOUS = "ambiguous"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Terminal statuses are never changed by the orchestrator again."""
        return self in (LinkStatus.LINKED, LinkStatus.AMBIGUOUS, LinkStatus.FAILED)


class MediaKind(str, Enum):
    """Broad family of a media format."""

    IMAGE = "image"
    DOCUMENT = "document"
    VIDEO = "video"
    MODEL = "model"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class MediaFormat:
    """
    Format descriptor resolved from a file extension.

    Attributes:
        extension: Lower-cased extension without the dot.
        kind: Media family.
        mime_type: MIME type.
    """
    extension: str
    kind: MediaKind = MediaKind.UNKNOWN
    mime_type: str = "application/octet-stream"

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "extension": self.extension,
            "kind": self.kind.value,
            "mime_type": self.mime_type,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MediaFormat":
        """Create MediaFormat from dictionary."""
        return cls(
            extension=data.get("extension", ""),
            kind=MediaKind(data.get("kind", MediaKind.UNKNOWN.value)),
            mime_type=data.get("mime_type", "application/octet-stream"),
        )


@dataclass(frozen=True)
class ParsedFileKey:
    """
    Identifiers extracted from an uploaded filename.

    Any field may be absent; the link policy decides what absence means.

    Attributes:
        ean: First EAN token found.
        sku: SKU token.
        tag: Free-form remainder of the name (e.g. "front").
        extension: Lower-cased file extension.
        ean_candidates: Every distinct EAN token, in order of appearance.
    """
    ean: Optional[str] = None
    sku: Optional[str] = None
    tag: Optional[str] = None
    extension: str = ""
    ean_candidates: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.ean and not self.ean_candidates:
            object.__setattr__(self, "ean_candidates", (self.ean,))

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "ean": self.ean,
            "sku": self.sku,
            "tag": self.tag,
            "extension": self.extension,
            "ean_candidates": list(self.ean_candidates),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ParsedFileKey":
        """Create ParsedFileKey from dictionary."""
        return cls(
            ean=data.get("ean"),
            sku=data.get("sku"),
            tag=data.get("tag"),
            extension=data.get("extension", ""),
            ean_candidates=tuple(data.get("ean_candidates") or ()),
        )


@dataclass
class Media:
    """
    Media is the aggregate root of the DAM side.

    Its link status is only changed by the MDM orchestrator.

    Attributes:
        id: Identifier derived from filename and content.
        original_filename: Name the asset was uploaded with.
        parsed_key: Identifiers parsed from the filename.
        media_format: Format descriptor.
        storage_ref: Reference of the stored binary.
        content_hash: SHA-256 of the binary content.
        size_bytes: Size of the binary content.
        link_status: Current link status.
        link_reason: Why the media is pending, ambiguous or failed.
        link_candidates: Matching EANs when the media is ambiguous.
        created_at: Timestamp of ingestion.
        updated_at: Timestamp of last status change.
    """
    id: str
    original_filename: str
    parsed_key: ParsedFileKey
    media_format: MediaFormat
    storage_ref: str = ""
    content_hash: str = ""
    size_bytes: int = 0
    link_status: LinkStatus = LinkStatus.UNLINKED
    link_reason: Optional[str] = None
    link_candidates: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        """Validate domain invariants after initialization."""
        if not self.id:
            raise DomainValidationError("Media id is required")
        if not self.original_filename:
            raise DomainValidationError("original_filename is required")
        if not isinstance(self.link_status, LinkStatus):
            self.link_status = LinkStatus(self.link_status)

    def to_dict(self) -> dict:
        """
        Convert to dictionary representation.

        Returns:
            Dictionary with all media data.
        """
        return {
            "id": self.id,
            "original_filename": self.original_filename,
            "parsed_key": self.parsed_key.to_dict(),
            "format": self.media_format.to_dict(),
            "storage_ref": self.storage_ref,
            "content_hash": self.content_hash,
            "size_bytes": self.size_bytes,
            "link_status": self.link_status.value,
            "link_reason": self.link_reason,
            "link_candidates": list(self.link_candidates),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
