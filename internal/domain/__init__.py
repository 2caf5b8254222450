"""
Domain package for the MDM core.

Contains domain entities, value objects, events and domain errors.
"""
from .typology import (
    AttributeConstraints,
    AttributeDefinition,
    AttributeKind,
    Typology,
)
from .product import Article, Product, ProductStatus
from .media import LinkStatus, Media, MediaFormat, MediaKind, ParsedFileKey
from .linking import (
    Ambiguous,
    Linked,
    LinkOutcome,
    LinkStatusView,
    PendingResolution,
    ProductMediaLink,
    Unmatched,
)
from .events import DomainEvent, EventKind
from .value_objects import Ean, Sku, TypologyRef
from .errors import (
    DomainError,
    DomainValidationError,
    UnknownTypologyError,
    DuplicateTypologyIdError,
    AttributeViolation,
    UnknownAttributeError,
    TypeMismatchError,
    ConstraintViolationError,
    ValidationError,
    ProductNotFoundError,
    DuplicateProductError,
    DuplicateArticleError,
    ConcurrentModificationError,
    MediaNotFoundError,
    LinkAlreadyExistsError,
    InfrastructureError,
    InfrastructureTimeoutError,
    EventPublishError,
)

__all__ = [
    "AttributeConstraints",
    "AttributeDefinition",
    "AttributeKind",
    "Typology",
    "TypologyRef",
    "Article",
    "Product",
    "ProductStatus",
    "LinkStatus",
    "Media",
    "MediaFormat",
    "MediaKind",
    "ParsedFileKey",
    "Ambiguous",
    "Linked",
    "LinkOutcome",
    "LinkStatusView",
    "PendingResolution",
    "ProductMediaLink",
    "Unmatched",
    "DomainEvent",
    "EventKind",
    "Ean",
    "Sku",
    # Errors
    "DomainError",
    "DomainValidationError",
    "UnknownTypologyError",
    "DuplicateTypologyIdError",
    "AttributeViolation",
    "UnknownAttributeError",
    "TypeMismatchError",
    "ConstraintViolationError",
    "ValidationError",
    "ProductNotFoundError",
    "DuplicateProductError",
    "DuplicateArticleError",
    "ConcurrentModificationError",
    "MediaNotFoundError",
    "LinkAlreadyExistsError",
    "InfrastructureError",
    "InfrastructureTimeoutError",
    "EventPublishError",
]
