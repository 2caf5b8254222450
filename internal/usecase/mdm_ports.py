"""
Ports owned by the MDM orchestrator.

The PIM and DAM sides are reached only through these narrow Protocols,
so neither side imports the other's concrete modules.
"""
from typing import Optional, Protocol

from internal.domain.events import DomainEvent
from internal.domain.media import LinkStatus, ParsedFileKey


class IProductLookup(Protocol):
    """What the orchestrator needs to know about products and articles."""

    async def find_products(self, ean: str) -> list[str]:
        """EANs of the products matching an EAN (more than one means bad data)."""
        ...

    async def find_article(self, sku: str, product_ean: str) -> Optional[str]:
        """SKU of the article of ``product_ean`` with this SKU, if any."""
        ...


class IMediaSink(Protocol):
    """What the orchestrator needs to read and change on media assets."""

    async def get_parsed_key(self, media_id: str) -> Optional[ParsedFileKey]:
        ...

    async def get_link_status(self, media_id: str) -> Optional[LinkStatus]:
        ...

    async def get_link_reason(self, media_id: str) -> tuple[Optional[str], list[str]]:
        """Stored reason and candidate EANs of the current link status."""
        ...

    async def list_unlinked(self, limit: int = 100) -> list[str]:
        """Ids of media no resolution has settled yet, oldest first."""
        ...

    async def update_link_status(
        self,
        media_id: str,
        status: LinkStatus,
        reason: Optional[str] = None,
        candidates: Optional[list[str]] = None,
        event: Optional[DomainEvent] = None,
    ) -> None:
        """Set the status; ``event`` is recorded in the outbox in the same write."""
        ...
