"""
Value Objects for the MDM domain.

Value objects are immutable and defined by their attributes.
"""
import re
from dataclasses import dataclass

from .errors import DomainValidationError


_EAN_RE = re.compile(r"\d+")
_SKU_RE = re.compile(r"[A-Za-z0-9]+")


@dataclass(frozen=True)
class Ean:
    """
    EAN value object, the product-level identifier.

    Attributes:
        value: Digits of the EAN.
    """
    value: str

    def __post_init__(self) -> None:
        """Validate EAN constraints."""
        if not self.value:
            raise DomainValidationError("EAN cannot be empty")
        if not _EAN_RE.fullmatch(self.value):
            raise DomainValidationError("EAN must contain digits only")
        if len(self.value) > 32:
            raise DomainValidationError("EAN must be <= 32 characters")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Sku:
    """
    SKU value object, the article-level identifier.

    Attributes:
        value: Alphanumeric SKU.
    """
    value: str

    def __post_init__(self) -> None:
        """Validate SKU constraints."""
        if not self.value:
            raise DomainValidationError("SKU cannot be empty")
        if not _SKU_RE.fullmatch(self.value):
            raise DomainValidationError("SKU must be alphanumeric")
        if len(self.value) > 64:
            raise DomainValidationError("SKU must be <= 64 characters")

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class TypologyRef:
    """
    Reference to one published version of a typology.

    Attributes:
        typology_id: Typology identifier.
        version: Published version number (>= 1).
    """
    typology_id: str
    version: int

    def __post_init__(self) -> None:
        """Validate reference constraints."""
        if not self.typology_id:
            raise DomainValidationError("Typology id cannot be empty")
        if self.version < 1:
            raise DomainValidationError("Typology version must be >= 1")

    def to_dict(self) -> dict:
        """Convert to dictionary representation."""
        return {"typology_id": self.typology_id, "version": self.version}

    @classmethod
    def from_dict(cls, data: dict) -> "TypologyRef":
        """Create TypologyRef from dictionary."""
        return cls(typology_id=data["typology_id"], version=int(data["version"]))

    def __str__(self) -> str:
        return f"{self.typology_id}@v{self.version}"
