"""
Domain model for Typology.

A typology is a named, versioned attribute schema for a product category.
Typologies are data: adding a category means publishing a new typology,
never adding a code path.
"""
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Union

from .errors import DomainValidationError
from .value_objects import TypologyRef

Number = Union[int, float, Decimal]


class AttributeKind(str, Enum):
    """Data kinds an attribute can declare."""

    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ENUMERATION = "enumeration"


@dataclass(frozen=True)
class AttributeConstraints:
    """
    Validation constraints for an attribute.

    Attributes:
        min_value: Inclusive lower bound for numbers.
        max_value: Inclusive upper bound for numbers.
        min_length: Minimum length for text.
        max_length: Maximum length for text.
        pattern: Regular expression a text value must fully match.
        allowed_values: Permitted values for enumerations (and optionally text).
    """
    min_value: Optional[Number] = None
    max_value: Optional[Number] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    allowed_values: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        """Validate constraint consistency."""
        if (
            self.min_value is not None
            and self.max_value is not None
            and self.min_value > self.max_value
        ):
            raise DomainValidationError("min_value must be <= max_value")
        if self.min_length is not None and self.min_length < 0:
            raise DomainValidationError("min_length cannot be negative")
        if (
            self.min_length is not None
            and self.max_length is not None
            and self.min_length > self.max_length
        ):
            raise DomainValidationError("min_length must be <= max_length")
        if self.pattern is not None:
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise DomainValidationError(f"Invalid pattern '{self.pattern}': {e}") from e

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "min_value": _number_to_json(self.min_value),
            "max_value": _number_to_json(self.max_value),
            "min_length": self.min_length,
            "max_length": self.max_length,
            "pattern": self.pattern,
            "allowed_values": list(self.allowed_values),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AttributeConstraints":
        """Create AttributeConstraints from dictionary."""
        return cls(
            min_value=data.get("min_value"),
            max_value=data.get("max_value"),
            min_length=data.get("min_length"),
            max_length=data.get("max_length"),
            pattern=data.get("pattern"),
            allowed_values=tuple(data.get("allowed_values") or ()),
        )


@dataclass(frozen=True)
class AttributeDefinition:
    """
    One attribute declared by a typology.

    Attributes:
        name: Attribute name, unique within the typology.
        kind: Declared data kind.
        required: Whether a value must be present.
        constraints: Value constraints.
        shared: Marks attributes common across typologies (e.g. price).
        description: Optional free-form description.
    """
    name: str
    kind: AttributeKind
    required: bool = False
    constraints: AttributeConstraints = field(default_factory=AttributeConstraints)
    shared: bool = False
    description: str = ""

    def __post_init__(self) -> None:
        """Validate definition invariants."""
        if not self.name:
            raise DomainValidationError("Attribute name is required")
        if not isinstance(self.kind, AttributeKind):
            object.__setattr__(self, "kind", AttributeKind(self.kind))
        if self.kind == AttributeKind.ENUMERATION and not self.constraints.allowed_values:
            raise DomainValidationError(
                f"Enumeration attribute '{self.name}' needs allowed_values"
            )

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {
            "name": self.name,
            "kind": self.kind.value,
            "required": self.required,
            "constraints": self.constraints.to_dict(),
            "shared": self.shared,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "AttributeDefinition":
        """Create AttributeDefinition from dictionary."""
        return cls(
            name=data["name"],
            kind=AttributeKind(data["kind"]),
            required=bool(data.get("required", False)),
            constraints=AttributeConstraints.from_dict(data.get("constraints") or {}),
            shared=bool(data.get("shared", False)),
            description=data.get("description", ""),
        )


@dataclass(frozen=True)
class Typology:
    """
    Typology is a versioned attribute schema.

    A typology with version 0 is an unpublished draft; the registry assigns
    the version on publication.

    Attributes:
        id: Typology identifier.
        display_name: Human-readable name.
        attributes: Ordered attribute definitions.
        version: Schema version (0 for drafts).
        published_at: Publication timestamp.
    """
    id: str
    display_name: str
    attributes: tuple[AttributeDefinition, ...] = ()
    version: int = 0
    published_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        """Validate domain invariants after initialization."""
        if not self.id:
            raise DomainValidationError("Typology id is required")
        if self.version < 0:
            raise DomainValidationError("Typology version cannot be negative")
        object.__setattr__(self, "attributes", tuple(self.attributes))
        seen: set[str] = set()
        for attribute in self.attributes:
            if attribute.name in seen:
                raise DomainValidationError(
                    f"Attribute '{attribute.name}' declared twice in typology '{self.id}'"
                )
            seen.add(attribute.name)

    @property
    def ref(self) -> TypologyRef:
        """Reference to this published version."""
        return TypologyRef(typology_id=self.id, version=self.version)

    @property
    def is_draft(self) -> bool:
        return self.version == 0

    def attribute(self, name: str) -> Optional[AttributeDefinition]:
        """Look up an attribute definition by name."""
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        return None

    def required_attributes(self) -> list[AttributeDefinition]:
        return [a for a in self.attributes if a.required]

    def revise(
        self,
        attributes: Optional[tuple[AttributeDefinition, ...]] = None,
        display_name: Optional[str] = None,
    ) -> "Typology":
        """
        Build a draft for the next version of this typology.

        The draft keeps this version number so the registry can detect a
        publisher that revised an outdated version.
        """
        return replace(
            self,
            attributes=tuple(attributes) if attributes is not None else self.attributes,
            display_name=display_name or self.display_name,
            published_at=None,
        )

    def to_dict(self) -> dict:
        """
        Convert to dictionary representation.

        Returns:
            Dictionary with all typology data.
        """
        return {
            "id": self.id,
            "display_name": self.display_name,
            "version": self.version,
            "attributes": [a.to_dict() for a in self.attributes],
            "published_at": self.published_at.isoformat() if self.published_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Typology":
        """Create Typology from dictionary."""
        published_at = data.get("published_at")
        return cls(
            id=data["id"],
            display_name=data.get("display_name", data["id"]),
            attributes=tuple(
                AttributeDefinition.from_dict(a) for a in data.get("attributes", [])
            ),
            version=int(data.get("version", 0)),
            published_at=(
                datetime.fromisoformat(published_at)
                if isinstance(published_at, str)
                else published_at
            ),
        )


def _number_to_json(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    return value
