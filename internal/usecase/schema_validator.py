"""
Schema Validator.

Validates attribute maps against a typology version. Field definitions
are runtime data; the validator is generic over them and never names a
specific typology or attribute.
"""
import math
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Mapping

from internal.domain.errors import (
    AttributeViolation,
    ConstraintViolationError,
    TypeMismatchError,
    UnknownAttributeError,
    ValidationError,
)
from internal.domain.typology import AttributeDefinition, AttributeKind, Typology
from internal.domain.value_objects import TypologyRef
from internal.usecase.typology_registry import TypologyRegistry


@dataclass
class ValidationResult:
    """
    Result of validating one attribute map.

    Attributes:
        typology_ref: Typology version the map was validated against.
        violations: Every violation found, in declaration order.
    """
    typology_ref: TypologyRef
    violations: list[AttributeViolation] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.violations

    def fields(self) -> list[str]:
        """Names of the attributes with violations."""
        return [v.field for v in self.violations]

    def raise_for_violations(self) -> None:
        """
        Raise if any violation was found.

        Raises:
            ValidationError: Carrying every violation.
        """
        if self.violations:
            raise ValidationError(self.violations)


Checker = Callable[[AttributeDefinition, Any], list[AttributeViolation]]


class SchemaValidator:
    """
    Generic validator for typology-driven attribute maps.

    Validation is side-effect free and reports all violations at once.
    """

    def __init__(self, registry: TypologyRegistry) -> None:
        """
        Initialize the validator.

        Args:
            registry: Registry resolving typology references.
        """
        self._registry = registry
        self._checkers: dict[AttributeKind, Checker] = {
            AttributeKind.TEXT: _check_text,
            AttributeKind.NUMBER: _check_number,
            AttributeKind.BOOLEAN: _check_boolean,
            AttributeKind.ENUMERATION: _check_enumeration,
        }

    def validate(
        self,
        typology_ref: TypologyRef,
        values: Mapping[str, Any],
    ) -> ValidationResult:
        """
        Validate a full attribute map.

        Args:
            typology_ref: Typology version to validate against.
            values: Attribute name to value.

        Returns:
            ValidationResult listing every violation.

        Raises:
            UnknownTypologyError: If the reference does not resolve.
        """
        typology = self._registry.resolve(typology_ref)
        return ValidationResult(
            typology_ref=typology.ref,
            violations=self._collect(typology, values, check_required=True),
        )

    def validate_overrides(
        self,
        typology_ref: TypologyRef,
        values: Mapping[str, Any],
    ) -> ValidationResult:
        """
        Validate a partial attribute map (e.g. article overrides).

        Declared-ness, kinds and constraints are checked; required
        attributes are not, since the owning product already carries them.
        """
        typology = self._registry.resolve(typology_ref)
        return ValidationResult(
            typology_ref=typology.ref,
            violations=self._collect(typology, values, check_required=False),
        )

    def _collect(
        self,
        typology: Typology,
        values: Mapping[str, Any],
        check_required: bool,
    ) -> list[AttributeViolation]:
        violations: list[AttributeViolation] = []

        for definition in typology.attributes:
            value = values.get(definition.name)
            if value is None:
                if check_required and definition.required:
                    violations.append(
                        ConstraintViolationError(
                            definition.name,
                            "required",
                            f"Attribute '{definition.name}' is required",
                        )
                    )
                continue
            violations.extend(self._checkers[definition.kind](definition, value))

        for name in values:
            if typology.attribute(name) is None:
                violations.append(UnknownAttributeError(name, typology.id))

        return violations


def _check_text(definition: AttributeDefinition, value: Any) -> list[AttributeViolation]:
    if not isinstance(value, str):
        return [TypeMismatchError(definition.name, "text", value)]

    name = definition.name
    constraints = definition.constraints
    violations: list[AttributeViolation] = []
    if constraints.min_length is not None and len(value) < constraints.min_length:
        violations.append(
            ConstraintViolationError(
                name, "min_length",
                f"Attribute '{name}' must be at least {constraints.min_length} characters",
            )
        )
    if constraints.max_length is not None and len(value) > constraints.max_length:
        violations.append(
            ConstraintViolationError(
                name, "max_length",
                f"Attribute '{name}' must be at most {constraints.max_length} characters",
            )
        )
    if constraints.pattern is not None and not re.fullmatch(constraints.pattern, value):
        violations.append(
            ConstraintViolationError(
                name, "pattern",
                f"Attribute '{name}' does not match pattern {constraints.pattern!r}",
            )
        )
    if constraints.allowed_values and value not in constraints.allowed_values:
        violations.append(_not_allowed(definition, value))
    return violations


def _check_number(definition: AttributeDefinition, value: Any) -> list[AttributeViolation]:
    # bool is an int subclass but never a number attribute
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return [TypeMismatchError(definition.name, "number", value)]

    name = definition.name
    constraints = definition.constraints
    if isinstance(value, float) and not math.isfinite(value):
        return [ConstraintViolationError(name, "finite", f"Attribute '{name}' must be finite")]
    if isinstance(value, Decimal) and not value.is_finite():
        return [ConstraintViolationError(name, "finite", f"Attribute '{name}' must be finite")]

    violations: list[AttributeViolation] = []
    if constraints.min_value is not None and value < constraints.min_value:
        violations.append(
            ConstraintViolationError(
                name, "min_value", f"Attribute '{name}' must be >= {constraints.min_value}"
            )
        )
    if constraints.max_value is not None and value > constraints.max_value:
        violations.append(
            ConstraintViolationError(
                name, "max_value", f"Attribute '{name}' must be <= {constraints.max_value}"
            )
        )
    return violations


def _check_boolean(definition: AttributeDefinition, value: Any) -> list[AttributeViolation]:
    if not isinstance(value, bool):
        return [TypeMismatchError(definition.name, "boolean", value)]
    return []


def _check_enumeration(definition: AttributeDefinition, value: Any) -> list[AttributeViolation]:
    if not isinstance(value, str):
        return [TypeMismatchError(definition.name, "enumeration", value)]
    if value not in definition.constraints.allowed_values:
        return [_not_allowed(definition, value)]
    return []


def _not_allowed(definition: AttributeDefinition, value: str) -> ConstraintViolationError:
    allowed = ", ".join(definition.constraints.allowed_values)
    return ConstraintViolationError(
        definition.name,
        "allowed_values",
        f"Attribute '{definition.name}' value {value!r} not in [{allowed}]",
    )
