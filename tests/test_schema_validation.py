"""Unit tests for purchase request validation."""

import json
import pytest
from decimal import Decimal

from spendgate.schema import PurchaseRequest, SchemaValidator, ValidationError


class TestPurchaseRequestSchema:
    """Test PurchaseRequest model validation."""

    def test_valid_purchase_request(self):
        """Test that a valid purchase parses successfully."""
        data = {
            "item": "USB-C cable",
            "amount": "12.99",
            "currency": "usd",
            "merchant": "  Acme Electronics ",
            "merchant_url": "https://acme.example/checkout",
            "category": "electronics",
        }

        request = PurchaseRequest(**data)

        assert request.item == "USB-C cable"
        assert request.amount == Decimal("12.99")
        assert request.currency == "USD"
        assert request.merchant == "Acme Electronics"
        assert request.international is False

    def test_invalid_negative_amount(self):
        """Test that negative amounts are rejected."""
        with pytest.raises(Exception):  # Pydantic ValidationError
            PurchaseRequest(item="Cable", amount=-5, merchant="Acme")

    def test_invalid_zero_amount(self):
        """Test that zero amounts are rejected."""
        with pytest.raises(Exception):
            PurchaseRequest(item="Cable", amount=0, merchant="Acme")

    def test_blank_merchant_rejected(self):
        with pytest.raises(Exception):
            PurchaseRequest(item="Cable", amount=5, merchant="   ")

    def test_blank_category_becomes_none(self):
        request = PurchaseRequest(item="Cable", amount=5, merchant="Acme", category="  ")

        assert request.category is None

    def test_currency_must_be_three_letters(self):
        with pytest.raises(Exception):
            PurchaseRequest(item="Cable", amount=5, merchant="Acme", currency="US")


class TestSchemaValidator:
    """Test SchemaValidator."""

    def setup_method(self):
        self.validator = SchemaValidator()

    def test_validate_valid_dict(self):
        """Test validation of valid dictionary."""
        request = self.validator.validate(
            {"item": "Notebook", "amount": 4.5, "merchant": "Paper Co"}
        )

        assert request.amount == Decimal("4.5")
        assert request.currency == "USD"

    def test_validate_valid_json_string(self):
        """Test validation of valid JSON string."""
        raw = json.dumps({"item": "Notebook", "amount": "4.50", "merchant": "Paper Co"})

        request = self.validator.validate(raw)

        assert request.item == "Notebook"

    def test_validate_invalid_json(self):
        """Test that invalid JSON raises ValidationError."""
        with pytest.raises(ValidationError) as exc_info:
            self.validator.validate("{not json")

        assert "PARSE_ERROR" in exc_info.value.message
        assert exc_info.value.status_code == 400

    def test_missing_required_fields_listed(self):
        with pytest.raises(ValidationError) as exc_info:
            self.validator.validate({"merchant": "Paper Co"})

        assert exc_info.value.message == "Missing required fields: item, amount"
        fields = [err["field"] for err in exc_info.value.errors]
        assert fields == ["item", "amount"]

    def test_non_object_payload_rejected(self):
        with pytest.raises(ValidationError):
            self.validator.validate("[1, 2, 3]")

    def test_bad_amount_is_schema_error(self):
        with pytest.raises(ValidationError) as exc_info:
            self.validator.validate({"item": "Cable", "amount": -1, "merchant": "Acme"})

        assert exc_info.value.message == "VALIDATION_ERROR: Schema validation failed"
        assert exc_info.value.errors[0]["field"] == "amount"

    def test_validate_safe_returns_error(self):
        request, error = self.validator.validate_safe({"item": "Cable"})

        assert request is None
        assert isinstance(error, ValidationError)

    def test_validate_safe_returns_request(self):
        request, error = self.validator.validate_safe(
            {"item": "Cable", "amount": 3, "merchant": "Acme"}
        )

        assert error is None
        assert request.merchant == "Acme"
