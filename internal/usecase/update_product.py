"""
Update Product Use Case.

Single-writer-per-aggregate updates with an optimistic concurrency token.
A stale token fails; updates are never merged behind the caller's back.
"""
from typing import Any, Optional

from internal.domain.errors import ConcurrentModificationError, ProductNotFoundError
from internal.domain.events import product_upserted
from internal.domain.product import Product, ProductStatus
from internal.infrastructure.metrics import prometheus as metrics
from internal.usecase.create_product import record_violations
from internal.usecase.ports import IProductStore
from internal.usecase.publishing import OutboxRelay
from internal.usecase.schema_validator import SchemaValidator
from internal.usecase.typology_registry import TypologyRegistry
from pkg.logger.logger import get_logger
from pkg.resilience.retry import with_timeout


logger = get_logger(__name__)


class UpdateProductInput:
    """Input DTO for updating a product."""

    def __init__(
        self,
        ean: str,
        attributes: dict[str, Any],
        expected_version: int,
        migrate: bool = False,
        status: Optional[ProductStatus] = None,
        replace: bool = False,
    ) -> None:
        """
        Initialize update product input.

        Args:
            ean: Product identifier.
            attributes: Attribute changes; a None value removes the attribute.
            expected_version: Version the caller last read.
            migrate: Re-point the product to the latest typology version.
            status: Optional new lifecycle status.
            replace: Replace the attribute map instead of merging into it.
        """
        self.ean = ean
        self.attributes = attributes
        self.expected_version = expected_version
        self.migrate = migrate
        self.status = status
        self.replace = replace


class UpdateProductUseCase:
    """
    Use case for updating an existing product.

    Validation runs against the product's stored typology version unless
    the caller asks for a migration, in which case the latest version is
    used and its new required attributes must be supplied.
    """

    def __init__(
        self,
        repository: IProductStore,
        validator: SchemaValidator,
        registry: TypologyRegistry,
        relay: OutboxRelay,
        io_timeout: Optional[float] = 5.0,
    ) -> None:
        self._repository = repository
        self._validator = validator
        self._registry = registry
        self._relay = relay
        self._io_timeout = io_timeout

    async def execute(self, input_dto: UpdateProductInput) -> Product:
        """
        Execute the update product use case.

        Args:
            input_dto: Update request.

        Returns:
            The updated product.

        Raises:
            ProductNotFoundError: If no product has the EAN.
            ConcurrentModificationError: If expected_version is stale.
            ValidationError: If the resulting attributes violate the typology.
        """
        current = await with_timeout(
            self._repository.get(input_dto.ean), "product_store.get", self._io_timeout
        )
        if current is None:
            raise ProductNotFoundError(input_dto.ean)

        if current.version != input_dto.expected_version:
            metrics.CONCURRENT_MODIFICATIONS.inc()
            raise ConcurrentModificationError(
                current.ean, input_dto.expected_version, current.version
            )

        target_ref = current.typology_ref
        if input_dto.migrate:
            target_ref = self._registry.latest_ref(current.typology_ref.typology_id)
            if target_ref != current.typology_ref:
                logger.info(
                    "Migrating product to latest typology version",
                    ean=current.ean,
                    from_version=current.typology_ref.version,
                    to_version=target_ref.version,
                )

        attributes = self._merge(current, input_dto)

        result = self._validator.validate(target_ref, attributes)
        if not result.is_valid:
            record_violations(result)
            logger.info(
                "Product update rejected by schema validation",
                ean=current.ean,
                typology=str(target_ref),
                fields=result.fields(),
            )
            result.raise_for_violations()

        updated = current.apply(target_ref, attributes, input_dto.status)

        try:
            saved = await with_timeout(
                self._repository.save_with_outbox(
                    updated,
                    input_dto.expected_version,
                    product_upserted(updated, created=False),
                ),
                "product_store.save_with_outbox",
                self._io_timeout,
            )
        except ConcurrentModificationError:
            metrics.CONCURRENT_MODIFICATIONS.inc()
            logger.info(
                "Product update lost a concurrent write",
                ean=current.ean,
                expected_version=input_dto.expected_version,
            )
            raise

        await self._relay.flush(saved.ean)
        metrics.PRODUCTS_UPSERTED.labels(operation="update").inc()
        logger.info("Product updated", ean=saved.ean, version=saved.version)

        return saved

    def _merge(self, current: Product, input_dto: UpdateProductInput) -> dict[str, Any]:
        if input_dto.replace:
            base: dict[str, Any] = {}
        else:
            base = dict(current.attributes)
        for name, value in input_dto.attributes.items():
            if value is None:
                base.pop(name, None)
            else:
                base[name] = value
        return base
