"""
Domain model for Product and Article.

This module contains the PIM-side entities following DDD principles.
Attribute values are validated against a typology by the schema
validator before any state change reaches these entities.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from .clock import utcnow
from .errors import DomainValidationError
from .value_objects import Ean, Sku, TypologyRef


class ProductStatus(str, Enum):
    """Product lifecycle status."""

    DRAFT = "draft"
    ACTIVE = "active"
    RETIRED = "retired"


_ALLOWED_TRANSITIONS = {
    ProductStatus.DRAFT: {ProductStatus.DRAFT, ProductStatus.ACTIVE, ProductStatus.RETIRED},
    ProductStatus.ACTIVE: {ProductStatus.ACTIVE, ProductStatus.RETIRED},
    ProductStatus.RETIRED: {ProductStatus.RETIRED},
}


@dataclass
class Product:
    """
    Product is the aggregate root of the PIM side.

    Attributes:
        ean: Product identifier.
        typology_ref: Typology version the attributes were validated against.
        attributes: Attribute name to typed value.
        status: Lifecycle status.
        version: Optimistic concurrency token, incremented on every write.
        created_at: Timestamp of creation.
        updated_at: Timestamp of last update.
    """
    ean: str
    typology_ref: TypologyRef
    attributes: dict[str, Any] = field(default_factory=dict)
    status: ProductStatus = ProductStatus.DRAFT
    version: int = 1
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        """Validate domain invariants after initialization."""
        Ean(self.ean)
        if not isinstance(self.status, ProductStatus):
            self.status = ProductStatus(self.status)
        if self.version < 1:
            raise DomainValidationError("Product version must be >= 1")

    def apply(
        self,
        typology_ref: TypologyRef,
        attributes: dict[str, Any],
        status: Optional[ProductStatus] = None,
    ) -> "Product":
        """
        Build the next state of this product.

        The receiver is left untouched so a failed save keeps the prior
        state intact.

        Args:
            typology_ref: Typology version the new attributes validated against.
            attributes: Complete, validated attribute map.
            status: Optional new lifecycle status.

        Returns:
            New Product with an incremented version.

        Raises:
            DomainValidationError: If the status transition is not allowed.
        """
        new_status = ProductStatus(status) if status is not None else self.status
        if new_status not in _ALLOWED_TRANSITIONS[self.status]:
            raise DomainValidationError(
                f"Cannot move product {self.ean} from {self.status.value} to {new_status.value}"
            )
        return Product(
            ean=self.ean,
            typology_ref=typology_ref,
            attributes=dict(attributes),
            status=new_status,
            version=self.version + 1,
            created_at=self.created_at,
            updated_at=utcnow(),
        )

    def to_dict(self) -> dict:
        """
        Convert to dictionary representation.

        Returns:
            Dictionary with all product data.
        """
        return {
            "ean": self.ean,
            "typology": self.typology_ref.to_dict(),
            "attributes": {k: serialize_value(v) for k, v in self.attributes.items()},
            "status": self.status.value,
            "version": self.version,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@dataclass
class Article:
    """
    Article is a sellable variant of a product.

    Attributes:
        sku: Article identifier.
        product_ean: EAN of the owning product.
        attribute_overrides: Per-article attribute values.
        created_at: Timestamp of creation.
    """
    sku: str
    product_ean: str
    attribute_overrides: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        """Validate domain invariants after initialization."""
        Sku(self.sku)
        Ean(self.product_ean)

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "sku": self.sku,
            "product_ean": self.product_ean,
            "attribute_overrides": {
                k: serialize_value(v) for k, v in self.attribute_overrides.items()
            },
            "created_at": self.created_at.isoformat(),
        }


def serialize_value(value: Any) -> Any:
    """Convert an attribute value to a JSON-friendly form."""
    if isinstance(value, Decimal):
        return float(value)
    return value
