"""
Unit tests for the schema validator.
"""
from decimal import Decimal

import pytest
import pytest_asyncio

from internal.domain.errors import (
    ConstraintViolationError,
    TypeMismatchError,
    UnknownAttributeError,
    UnknownTypologyError,
    ValidationError,
)
from internal.domain.typology import (
    AttributeConstraints,
    AttributeDefinition,
    AttributeKind,
    Typology,
)
from internal.domain.value_objects import TypologyRef
from internal.usecase.schema_validator import SchemaValidator
from internal.usecase.typology_registry import TypologyRegistry


class TestSchemaValidator:
    """Tests for SchemaValidator."""

    @pytest_asyncio.fixture
    async def registry(self, electronics_typology):
        registry = TypologyRegistry()
        await registry.publish(electronics_typology)
        await registry.publish(
            Typology(
                id="apparel",
                display_name="Apparel",
                attributes=(
                    AttributeDefinition(
                        name="size",
                        kind=AttributeKind.ENUMERATION,
                        required=True,
                        constraints=AttributeConstraints(allowed_values=("S", "M", "L")),
                    ),
                    AttributeDefinition(
                        name="label",
                        kind=AttributeKind.TEXT,
                        constraints=AttributeConstraints(min_length=2, max_length=5),
                    ),
                    AttributeDefinition(name="organic", kind=AttributeKind.BOOLEAN),
                    AttributeDefinition(
                        name="weight",
                        kind=AttributeKind.NUMBER,
                        constraints=AttributeConstraints(min_value=0, max_value=10),
                    ),
                ),
            )
        )
        return registry

    @pytest.fixture
    def validator(self, registry):
        return SchemaValidator(registry)

    @pytest.fixture
    def electronics(self):
        return TypologyRef("electronics", 1)

    @pytest.fixture
    def apparel(self):
        return TypologyRef("apparel", 1)

    def test_valid_map_passes(self, validator, electronics, laptop_attributes):
        """Test that a conformant map has no violations."""
        result = validator.validate(electronics, laptop_attributes)

        assert result.is_valid
        assert result.typology_ref == electronics
        result.raise_for_violations()

    def test_optional_attribute_may_be_absent(self, validator, electronics, laptop_attributes):
        """Test that the optional colour attribute can be omitted."""
        del laptop_attributes["couleur"]

        assert validator.validate(electronics, laptop_attributes).is_valid

    def test_missing_battery_is_the_only_violation(
        self, validator, electronics, laptop_attributes
    ):
        """Test that omitting the required battery yields exactly one violation."""
        del laptop_attributes["batterie"]

        result = validator.validate(electronics, laptop_attributes)

        assert len(result.violations) == 1
        violation = result.violations[0]
        assert isinstance(violation, ConstraintViolationError)
        assert violation.field == "batterie"
        assert violation.constraint == "required"

    def test_missing_required_attribute_is_reported(self, validator, electronics, laptop_attributes):
        """Test that a missing required field names the field."""
        del laptop_attributes["RAM"]

        result = validator.validate(electronics, laptop_attributes)

        assert not result.is_valid
        violation = result.violations[0]
        assert isinstance(violation, ConstraintViolationError)
        assert violation.field == "RAM"
        assert violation.constraint == "required"

    def test_none_counts_as_missing(self, validator, electronics, laptop_attributes):
        """Test that an explicit None does not satisfy required."""
        laptop_attributes["processeur"] = None

        result = validator.validate(electronics, laptop_attributes)

        assert result.fields() == ["processeur"]

    def test_undeclared_attribute_is_reported(self, validator, electronics, laptop_attributes):
        """Test that unknown keys are rejected."""
        laptop_attributes["gpu"] = "RTX 4070"

        result = validator.validate(electronics, laptop_attributes)

        assert len(result.violations) == 1
        assert isinstance(result.violations[0], UnknownAttributeError)
        assert result.violations[0].field == "gpu"

    def test_all_violations_are_collected(self, validator, electronics):
        """Test that every problem is reported at once."""
        result = validator.validate(
            electronics,
            {"RAM": "lots", "prix": "cheap", "gpu": "RTX"},
        )

        by_field = {v.field: v for v in result.violations}
        assert set(by_field) == {"processeur", "RAM", "batterie", "prix", "gpu"}
        assert by_field["RAM"].constraint == "pattern"
        assert isinstance(by_field["prix"], TypeMismatchError)
        assert isinstance(by_field["gpu"], UnknownAttributeError)

        with pytest.raises(ValidationError) as exc_info:
            result.raise_for_violations()
        assert len(exc_info.value.violations) == 5

    def test_pattern_must_match_whole_value(self, validator, electronics, laptop_attributes):
        """Test that patterns are anchored."""
        laptop_attributes["RAM"] = "16 GB DDR5"

        assert validator.validate(electronics, laptop_attributes).fields() == ["RAM"]

    @pytest.mark.parametrize("value", [True, "10", float("nan"), Decimal("Infinity")])
    def test_invalid_numbers_are_rejected(self, validator, electronics, laptop_attributes, value):
        """Test that booleans, strings and non-finite numbers are not numbers."""
        laptop_attributes["prix"] = value

        assert validator.validate(electronics, laptop_attributes).fields() == ["prix"]

    @pytest.mark.parametrize("value", [0, 12, 9.5, Decimal("1299.99")])
    def test_numbers_accept_int_float_decimal(self, validator, electronics, laptop_attributes, value):
        """Test accepted numeric types."""
        laptop_attributes["prix"] = value

        assert validator.validate(electronics, laptop_attributes).is_valid

    def test_min_value_constraint(self, validator, electronics, laptop_attributes):
        """Test that a negative price violates min_value."""
        laptop_attributes["prix"] = -1

        result = validator.validate(electronics, laptop_attributes)

        assert result.violations[0].constraint == "min_value"

    def test_enumeration_and_length_constraints(self, validator, apparel):
        """Test enumeration, text length, boolean and range checks."""
        result = validator.validate(
            apparel,
            {"size": "XL", "label": "x", "organic": "yes", "weight": 11},
        )

        constraints = {
            v.field: getattr(v, "constraint", type(v).__name__) for v in result.violations
        }
        assert constraints == {
            "size": "allowed_values",
            "label": "min_length",
            "organic": "TypeMismatchError",
            "weight": "max_value",
        }

    def test_validate_overrides_skips_required(self, validator, electronics):
        """Test that partial maps only check what is present."""
        assert validator.validate_overrides(electronics, {"prix": 999}).is_valid
        assert validator.validate_overrides(electronics, {"prix": -5}).fields() == ["prix"]
        assert validator.validate_overrides(electronics, {"x": 1}).fields() == ["x"]

    def test_unknown_typology_raises(self, validator):
        """Test that an unresolvable reference raises instead of collecting."""
        with pytest.raises(UnknownTypologyError):
            validator.validate(TypologyRef("electronics", 9), {})

    def test_validation_has_no_side_effects(self, validator, electronics, laptop_attributes):
        """Test that the input map is not modified."""
        snapshot = dict(laptop_attributes)

        validator.validate(electronics, laptop_attributes)

        assert laptop_attributes == snapshot
