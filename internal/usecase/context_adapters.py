"""
Adapters from the PIM and DAM stores to the orchestrator ports.
"""
from typing import Optional

from internal.domain.events import DomainEvent
from internal.domain.media import LinkStatus, ParsedFileKey
from internal.usecase.ports import IArticleStore, IMediaStore, IProductStore
from pkg.resilience.retry import with_timeout


class StoreProductLookup:
    """IProductLookup backed by the product and article stores."""

    def __init__(
        self,
        products: IProductStore,
        articles: IArticleStore,
        io_timeout: Optional[float] = 5.0,
    ) -> None:
        self._products = products
        self._articles = articles
        self._io_timeout = io_timeout

    async def find_products(self, ean: str) -> list[str]:
        products = await with_timeout(
            self._products.find_by_ean(ean), "product_store.find_by_ean", self._io_timeout
        )
        return [product.ean for product in products]

    async def find_article(self, sku: str, product_ean: str) -> Optional[str]:
        article = await with_timeout(
            self._articles.get_by_sku(sku, product_ean),
            "article_store.get_by_sku",
            self._io_timeout,
        )
        return article.sku if article else None


class StoreMediaSink:
    """IMediaSink backed by the media store."""

    def __init__(self, media: IMediaStore, io_timeout: Optional[float] = 5.0) -> None:
        self._media = media
        self._io_timeout = io_timeout

    async def get_parsed_key(self, media_id: str) -> Optional[ParsedFileKey]:
        media = await with_timeout(self._media.get(media_id), "media_store.get", self._io_timeout)
        return media.parsed_key if media else None

    async def get_link_status(self, media_id: str) -> Optional[LinkStatus]:
        media = await with_timeout(self._media.get(media_id), "media_store.get", self._io_timeout)
        return media.link_status if media else None

    async def get_link_reason(self, media_id: str) -> tuple[Optional[str], list[str]]:
        media = await with_timeout(self._media.get(media_id), "media_store.get", self._io_timeout)
        if media is None:
            return None, []
        return media.link_reason, list(media.link_candidates)

    async def list_unlinked(self, limit: int = 100) -> list[str]:
        return await with_timeout(
            self._media.list_by_link_status(LinkStatus.UNLINKED, limit),
            "media_store.list_by_link_status",
            self._io_timeout,
        )

    async def update_link_status(
        self,
        media_id: str,
        status: LinkStatus,
        reason: Optional[str] = None,
        candidates: Optional[list[str]] = None,
        event: Optional[DomainEvent] = None,
    ) -> None:
        await with_timeout(
            self._media.update_link_status(media_id, status, reason, candidates, event),
            "media_store.update_link_status",
            self._io_timeout,
        )
