"""
Domain-specific exceptions.

Custom exceptions for schema validation, aggregate lifecycle and
infrastructure failures of the MDM core.
"""
from typing import Any, Iterable, Optional


class DomainError(Exception):
    """Base exception for domain errors."""

    def __init__(self, message: str) -> None:
        """
        Initialize domain error.

        Args:
            message: Error message describing the issue.
        """
        self.message = message
        super().__init__(self.message)


class DomainValidationError(DomainError):
    """Exception raised when domain validation fails."""
    pass


# ---------------------------------------------------------------------------
# Typology / schema validation
# ---------------------------------------------------------------------------


class UnknownTypologyError(DomainValidationError):
    """Exception raised when a typology id or version is not registered."""

    def __init__(self, typology_id: str, version: Optional[int] = None) -> None:
        """
        Initialize unknown typology error.

        Args:
            typology_id: The typology identifier that was requested.
            version: The requested version, if any.
        """
        if version is None:
            message = f"Typology '{typology_id}' is not registered"
        else:
            message = f"Typology '{typology_id}' has no version {version}"
        super().__init__(message)
        self.typology_id = typology_id
        self.version = version


class DuplicateTypologyIdError(DomainError):
    """Exception raised when a typology publication loses against an existing version."""

    def __init__(self, typology_id: str, latest_version: int) -> None:
        super().__init__(
            f"Typology '{typology_id}' already published at version {latest_version}"
        )
        self.typology_id = typology_id
        self.latest_version = latest_version


class AttributeViolation(DomainValidationError):
    """
    Base class for a single attribute-level violation.

    Violations are collected by the schema validator rather than raised one
    by one, so a caller sees every problem of a record at once.
    """

    def __init__(self, field: str, message: str) -> None:
        """
        Initialize attribute violation.

        Args:
            field: Attribute name the violation refers to.
            message: Human-readable description.
        """
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "type": type(self).__name__,
            "field": self.field,
            "message": self.message,
        }


class UnknownAttributeError(AttributeViolation):
    """Attribute is not declared by the typology."""

    def __init__(self, field: str, typology_id: str) -> None:
        super().__init__(
            field, f"Attribute '{field}' is not declared in typology '{typology_id}'"
        )
        self.typology_id = typology_id


class TypeMismatchError(AttributeViolation):
    """Attribute value does not match the declared data kind."""

    def __init__(self, field: str, expected: str, value: Any) -> None:
        super().__init__(
            field,
            f"Attribute '{field}' expects {expected}, got {type(value).__name__}",
        )
        self.expected = expected
        self.value = value


class ConstraintViolationError(AttributeViolation):
    """Attribute value is missing or violates a declared constraint."""

    def __init__(self, field: str, constraint: str, message: str) -> None:
        super().__init__(field, message)
        self.constraint = constraint

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["constraint"] = self.constraint
        return data


class ValidationError(DomainValidationError):
    """Exception raised when a record fails schema validation."""

    def __init__(self, violations: Iterable[AttributeViolation]) -> None:
        """
        Initialize validation error.

        Args:
            violations: Every violation found in the record.
        """
        self.violations = list(violations)
        fields = ", ".join(v.field for v in self.violations)
        super().__init__(
            f"Validation failed with {len(self.violations)} violation(s): {fields}"
        )

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "message": self.message,
            "violations": [v.to_dict() for v in self.violations],
        }


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


class ProductNotFoundError(DomainError):
    """Exception raised when a product is not found."""

    def __init__(self, ean: str) -> None:
        """
        Initialize product not found error.

        Args:
            ean: The EAN of the product that was not found.
        """
        super().__init__(f"Product with EAN {ean} not found")
        self.ean = ean


class DuplicateProductError(DomainError):
    """Exception raised when attempting to create a product with an existing EAN."""

    def __init__(self, ean: str) -> None:
        super().__init__(f"Product with EAN {ean} already exists")
        self.ean = ean


class DuplicateArticleError(DomainError):
    """Exception raised when an article SKU already exists for a product."""

    def __init__(self, sku: str, product_ean: str) -> None:
        super().__init__(f"Article {sku} already exists for product {product_ean}")
        self.sku = sku
        self.product_ean = product_ean


class ConcurrentModificationError(DomainError):
    """
    Exception raised when a write carries a stale concurrency token.

    The caller must reload the aggregate and retry; writes are never merged.
    """

    def __init__(
        self,
        entity_id: str,
        expected_version: int,
        actual_version: Optional[int] = None,
    ) -> None:
        super().__init__(
            f"Concurrent modification of {entity_id}: "
            f"expected version {expected_version}, found {actual_version}"
        )
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class MediaNotFoundError(DomainError):
    """Exception raised when a media asset is not found."""

    def __init__(self, media_id: str) -> None:
        super().__init__(f"Media {media_id} not found")
        self.media_id = media_id


class LinkAlreadyExistsError(DomainError):
    """Exception raised when a media asset is already linked."""

    def __init__(self, media_id: str) -> None:
        super().__init__(f"Media {media_id} is already linked")
        self.media_id = media_id


# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


class InfrastructureError(DomainError):
    """Exception raised when an external collaborator fails."""

    retryable = False


class InfrastructureTimeoutError(InfrastructureError):
    """Exception raised when storage or bus I/O exceeds its time budget."""

    retryable = True

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(f"Operation '{operation}' timed out after {timeout}s")
        self.operation = operation
        self.timeout = timeout


class EventPublishError(InfrastructureError):
    """Exception raised when event publishing fails."""

    retryable = True

    def __init__(self, event_type: str, reason: str) -> None:
        """
        Initialize event publish error.

        Args:
            event_type: Type of event that failed to publish.
            reason: The reason for the failure.
        """
        super().__init__(f"Failed to publish event '{event_type}': {reason}")
        self.event_type = event_type
        self.reason = reason
