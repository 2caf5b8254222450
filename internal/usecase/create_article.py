"""
Create Article Use Case.

Articles are variants of an existing product; their attribute overrides
are checked against the owning product's typology version.
"""
from typing import Any, Optional

from internal.domain.errors import DuplicateArticleError, ProductNotFoundError
from internal.domain.events import article_upserted
from internal.domain.product import Article
from internal.domain.value_objects import Sku
from internal.usecase.create_product import record_violations
from internal.usecase.ports import IArticleStore, IProductStore
from internal.usecase.publishing import OutboxRelay
from internal.usecase.schema_validator import SchemaValidator
from pkg.logger.logger import get_logger
from pkg.resilience.retry import with_timeout


logger = get_logger(__name__)


class CreateArticleUseCase:
    """Use case for adding an article to a product."""

    def __init__(
        self,
        product_repository: IProductStore,
        article_repository: IArticleStore,
        validator: SchemaValidator,
        relay: OutboxRelay,
        io_timeout: Optional[float] = 5.0,
    ) -> None:
        self._products = product_repository
        self._articles = article_repository
        self._validator = validator
        self._relay = relay
        self._io_timeout = io_timeout

    async def execute(
        self,
        sku: str,
        product_ean: str,
        attribute_overrides: Optional[dict[str, Any]] = None,
    ) -> Article:
        """
        Create an article.

        Args:
            sku: Article identifier.
            product_ean: EAN of the owning product.
            attribute_overrides: Per-article attribute values.

        Returns:
            The stored article.

        Raises:
            ProductNotFoundError: If the owning product does not exist.
            DuplicateArticleError: If the SKU already exists for the product.
            ValidationError: If an override violates the typology.
        """
        sku = Sku(sku).value
        overrides = dict(attribute_overrides or {})

        product = await with_timeout(
            self._products.get(product_ean), "product_store.get", self._io_timeout
        )
        if product is None:
            raise ProductNotFoundError(product_ean)

        existing = await with_timeout(
            self._articles.get_by_sku(sku, product.ean),
            "article_store.get_by_sku",
            self._io_timeout,
        )
        if existing:
            raise DuplicateArticleError(sku, product.ean)

        if overrides:
            result = self._validator.validate_overrides(product.typology_ref, overrides)
            if not result.is_valid:
                record_violations(result)
                result.raise_for_violations()

        article = Article(sku=sku, product_ean=product.ean, attribute_overrides=overrides)
        article = await with_timeout(
            self._articles.save_with_outbox(article, article_upserted(article)),
            "article_store.save_with_outbox",
            self._io_timeout,
        )
        await self._relay.flush(article.product_ean)

        logger.info("Article created", sku=sku, product_ean=product.ean)

        return article
