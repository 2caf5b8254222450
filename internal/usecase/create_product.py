"""
Create Product Use Case.

Validates a new product against its typology before anything is stored.
The product and its ProductUpserted event are written in one transaction,
so the event exists exactly when the product does.
"""
from typing import Any, Optional

from internal.domain.errors import DuplicateProductError
from internal.domain.events import product_upserted
from internal.domain.product import Product, ProductStatus
from internal.domain.value_objects import Ean, TypologyRef
from internal.infrastructure.metrics import prometheus as metrics
from internal.usecase.ports import IProductStore
from internal.usecase.publishing import OutboxRelay
from internal.usecase.schema_validator import SchemaValidator, ValidationResult
from pkg.logger.logger import get_logger
from pkg.resilience.retry import with_timeout


logger = get_logger(__name__)


class CreateProductInput:
    """Input DTO for creating a product."""

    def __init__(
        self,
        ean: str,
        typology_ref: TypologyRef,
        attributes: dict[str, Any],
        status: ProductStatus = ProductStatus.DRAFT,
    ) -> None:
        """
        Initialize create product input.

        Args:
            ean: Product identifier.
            typology_ref: Typology version to validate against.
            attributes: Attribute name to value.
            status: Initial lifecycle status.
        """
        self.ean = ean
        self.typology_ref = typology_ref
        self.attributes = attributes
        self.status = status


class CreateProductOutput:
    """Output DTO for created product."""

    def __init__(self, product: Product) -> None:
        self.product = product

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return self.product.to_dict()


def record_violations(result: ValidationResult) -> None:
    """Count rejected violations per typology and kind."""
    for violation in result.violations:
        metrics.VALIDATION_FAILURES.labels(
            typology_id=result.typology_ref.typology_id,
            violation=type(violation).__name__,
        ).inc()


class CreateProductUseCase:
    """
    Use case for creating a new product.

    The typology check runs before any mutation; a failed validation
    leaves the store untouched.
    """

    def __init__(
        self,
        repository: IProductStore,
        validator: SchemaValidator,
        relay: OutboxRelay,
        io_timeout: Optional[float] = 5.0,
    ) -> None:
        """
        Initialize the use case.

        Args:
            repository: Product store for persistence.
            validator: Schema validator.
            relay: Relay publishing the recorded ProductUpserted events.
            io_timeout: Time budget for store calls.
        """
        self._repository = repository
        self._validator = validator
        self._relay = relay
        self._io_timeout = io_timeout

    async def execute(self, input_dto: CreateProductInput) -> CreateProductOutput:
        """
        Execute the create product use case.

        This method:
        1. Validates the EAN and checks it is unused
        2. Validates attributes against the typology version
        3. Stores the product together with its ProductUpserted event
        4. Hands the event to the relay

        A bus outage after step 3 does not fail the call; the event stays
        in the outbox until a later flush publishes it.

        Args:
            input_dto: Input data for creating the product.

        Returns:
            CreateProductOutput with the created product.

        Raises:
            DomainValidationError: If the EAN is malformed.
            DuplicateProductError: If a product with the EAN exists.
            UnknownTypologyError: If the typology reference does not resolve.
            ValidationError: If the attributes violate the typology.
        """
        ean = Ean(input_dto.ean).value

        existing = await with_timeout(
            self._repository.get(ean), "product_store.get", self._io_timeout
        )
        if existing:
            raise DuplicateProductError(ean)

        result = self._validator.validate(input_dto.typology_ref, input_dto.attributes)
        if not result.is_valid:
            record_violations(result)
            logger.info(
                "Product rejected by schema validation",
                ean=ean,
                typology=str(result.typology_ref),
                fields=result.fields(),
            )
            result.raise_for_violations()

        product = Product(
            ean=ean,
            typology_ref=result.typology_ref,
            attributes=dict(input_dto.attributes),
            status=input_dto.status,
        )

        created = await with_timeout(
            self._repository.save_with_outbox(
                product, None, product_upserted(product, created=True)
            ),
            "product_store.save_with_outbox",
            self._io_timeout,
        )
        await self._relay.flush(created.ean)

        metrics.PRODUCTS_UPSERTED.labels(operation="create").inc()
        logger.info("Product created", ean=ean, typology=str(created.typology_ref))

        return CreateProductOutput(product=created)
