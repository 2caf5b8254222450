"""
Unit tests for domain entities.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from internal.domain.clock import LogicalClock
from internal.domain.errors import DomainValidationError, ValidationError, UnknownAttributeError
from internal.domain.events import DomainEvent, EventKind, media_link_failed, product_upserted
from internal.domain.linking import PendingResolution, Unmatched
from internal.domain.media import LinkStatus, ParsedFileKey
from internal.domain.product import Article, Product, ProductStatus
from internal.domain.typology import (
    AttributeConstraints,
    AttributeDefinition,
    AttributeKind,
    Typology,
)
from internal.domain.value_objects import Ean, Sku, TypologyRef


class TestValueObjects:
    """Tests for EAN, SKU and typology references."""

    def test_ean_accepts_digits(self):
        """Test that a digit string is a valid EAN."""
        assert Ean("4006381333931").value == "4006381333931"

    @pytest.mark.parametrize("value", ["", "12a45", "1" * 33])
    def test_invalid_ean_raises_error(self, value):
        """Test that malformed EANs are rejected."""
        with pytest.raises(DomainValidationError):
            Ean(value)

    def test_sku_must_be_alphanumeric(self):
        """Test that SKUs with separators are rejected."""
        assert Sku("AB12").value == "AB12"
        with pytest.raises(DomainValidationError):
            Sku("AB-12")

    def test_typology_ref_requires_published_version(self):
        """Test that version 0 cannot be referenced."""
        with pytest.raises(DomainValidationError):
            TypologyRef("electronics", 0)

        ref = TypologyRef("electronics", 2)
        assert str(ref) == "electronics@v2"
        assert TypologyRef.from_dict(ref.to_dict()) == ref


class TestTypology:
    """Tests for Typology entity."""

    def test_new_typology_is_draft(self, electronics_typology):
        """Test that a typology starts as an unpublished draft."""
        assert electronics_typology.is_draft
        assert [a.name for a in electronics_typology.required_attributes()] == [
            "processeur",
            "RAM",
            "batterie",
            "prix",
        ]

    def test_duplicate_attribute_names_raise_error(self):
        """Test that an attribute cannot be declared twice."""
        with pytest.raises(DomainValidationError) as exc_info:
            Typology(
                id="t",
                display_name="T",
                attributes=(
                    AttributeDefinition(name="a", kind=AttributeKind.TEXT),
                    AttributeDefinition(name="a", kind=AttributeKind.NUMBER),
                ),
            )

        assert "declared twice" in str(exc_info.value)

    def test_enumeration_needs_allowed_values(self):
        """Test that an enumeration without values is rejected."""
        with pytest.raises(DomainValidationError):
            AttributeDefinition(name="color", kind=AttributeKind.ENUMERATION)

    def test_inconsistent_constraints_raise_error(self):
        """Test min/max and pattern consistency checks."""
        with pytest.raises(DomainValidationError):
            AttributeConstraints(min_value=10, max_value=1)
        with pytest.raises(DomainValidationError):
            AttributeConstraints(pattern="(")

    def test_dict_round_trip_keeps_definitions(self, electronics_typology):
        """Test that serialization preserves kinds and constraints."""
        restored = Typology.from_dict(electronics_typology.to_dict())

        assert restored == electronics_typology
        assert restored.attribute("RAM").constraints.pattern == r"\d+ ?(GB|Go)"


class TestProduct:
    """Tests for Product aggregate."""

    @pytest.fixture
    def product(self):
        return Product(
            ean="12345",
            typology_ref=TypologyRef("electronics", 1),
            attributes={"processeur": "Intel i7"},
        )

    def test_apply_increments_version(self, product):
        """Test that applying a change returns a new version."""
        updated = product.apply(product.typology_ref, {"processeur": "M2"})

        assert updated.version == 2
        assert updated.attributes == {"processeur": "M2"}
        assert product.version == 1
        assert product.attributes == {"processeur": "Intel i7"}

    def test_retired_product_cannot_be_reactivated(self, product):
        """Test lifecycle transition rules."""
        retired = product.apply(product.typology_ref, {}, ProductStatus.RETIRED)

        with pytest.raises(DomainValidationError):
            retired.apply(retired.typology_ref, {}, ProductStatus.ACTIVE)

    def test_to_dict_serializes_decimals(self):
        """Test that Decimal attribute values serialize as floats."""
        product = Product(
            ean="1",
            typology_ref=TypologyRef("t", 1),
            attributes={"prix": Decimal("9.90")},
        )

        assert product.to_dict()["attributes"]["prix"] == 9.9

    def test_article_validates_identifiers(self):
        """Test that an article checks its SKU and owner EAN."""
        with pytest.raises(DomainValidationError):
            Article(sku="bad sku", product_ean="123")


class TestPendingResolution:
    """Tests for pending resolution markers."""

    def test_exhausted_by_attempts(self):
        """Test that the attempt budget exhausts a marker."""
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        marker = PendingResolution.open("m1", "123", "product not found", 2, timedelta(hours=1), now)

        assert not marker.is_exhausted(now)
        marker.record_attempt("product not found")
        assert marker.is_exhausted(now)

    def test_exhausted_by_deadline(self):
        """Test that the horizon exhausts a marker."""
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        marker = PendingResolution.open("m1", "123", "product not found", 10, timedelta(hours=1), now)

        assert not marker.is_exhausted(now + timedelta(minutes=59))
        assert marker.is_exhausted(now + timedelta(hours=1))

    def test_dict_round_trip(self):
        """Test that markers survive serialization."""
        marker = PendingResolution.open("m1", "123", "product not found", 3, timedelta(hours=1))

        assert PendingResolution.from_dict(marker.to_dict()) == marker

    def test_unmatched_retryable_reasons(self):
        """Test which unmatched reasons are worth retrying."""
        assert Unmatched("product not found").retryable
        assert Unmatched("article not found for product").retryable
        assert not Unmatched("no EAN token").retryable


class TestEvents:
    """Tests for domain events."""

    def test_logical_clock_is_monotonic(self):
        """Test that each tick is strictly greater than the last."""
        clock = LogicalClock()
        ticks = [clock.tick() for _ in range(5)]

        assert ticks == sorted(set(ticks))
        assert clock.last == ticks[-1]

    def test_product_upserted_is_keyed_by_ean(self):
        """Test entity id and payload of ProductUpserted."""
        clock = LogicalClock()
        product = Product(ean="12345", typology_ref=TypologyRef("electronics", 1))

        event = product_upserted(product, created=True, clock=clock)

        assert event.kind == EventKind.PRODUCT_UPSERTED
        assert event.entity_id == "12345"
        assert event.logical_timestamp == 1
        assert event.payload["typology"] == {"typology_id": "electronics", "version": 1}

    def test_wire_round_trip(self):
        """Test that events survive the wire representation."""
        event = media_link_failed("m1", LinkStatus.AMBIGUOUS, "ambiguous", ["1", "2"])

        restored = DomainEvent.from_dict(event.to_dict())

        assert restored == event
        assert restored.payload["terminal"] is True


class TestErrors:
    """Tests for the validation error hierarchy."""

    def test_validation_error_carries_every_violation(self):
        """Test that ValidationError lists all fields."""
        error = ValidationError([
            UnknownAttributeError("a", "t"),
            UnknownAttributeError("b", "t"),
        ])

        assert [v["field"] for v in error.to_dict()["violations"]] == ["a", "b"]
        assert "2 violation(s)" in str(error)

    def test_parsed_key_defaults_candidates_from_ean(self):
        """Test that a single EAN becomes the only candidate."""
        assert ParsedFileKey(ean="123").ean_candidates == ("123",)
