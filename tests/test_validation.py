"""
Unit tests for input validation helpers and the product catalog.
"""
from decimal import Decimal

import pytest

from paymongo_relay.core.catalog import get_product, list_products
from paymongo_relay.core.validation import (
    generate_id,
    mask_sensitive,
    sanitize_input,
    validate_email,
    validate_mobile,
)


class TestValidation:
    """Test suite for checkout input validation."""

    @pytest.mark.unit
    @pytest.mark.parametrize("email", ["juan@example.com", "a.b+c@sub.domain.ph"])
    def test_valid_email(self, email: str) -> None:
        assert validate_email(email)

    @pytest.mark.unit
    @pytest.mark.parametrize("email", ["", "juan", "juan@", "juan@example", "ju an@example.com"])
    def test_invalid_email(self, email: str) -> None:
        assert not validate_email(email)

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "mobile", ["09171234567", "0917-123-4567", "639171234567", "+63 917 123 4567"]
    )
    def test_valid_mobile(self, mobile: str) -> None:
        assert validate_mobile(mobile)

    @pytest.mark.unit
    @pytest.mark.parametrize("mobile", ["", "9171234567", "0817123456", "+1 415 555 0100"])
    def test_invalid_mobile(self, mobile: str) -> None:
        assert not validate_mobile(mobile)

    @pytest.mark.unit
    def test_sanitize_input_strips_angle_brackets(self) -> None:
        assert sanitize_input("  <script>alert(1)</script> ") == "scriptalert(1)/script"
        assert sanitize_input(42) == 42

    @pytest.mark.unit
    def test_mask_sensitive(self) -> None:
        masked = mask_sensitive(
            {"email": "juan@example.com", "mobile": "09171234567", "product": "Freelancer Plan"}
        )

        assert masked == {
            "email": "ju***@example.com",
            "mobile": "091****4567",
            "product": "Freelancer Plan",
        }

    @pytest.mark.unit
    def test_generate_id(self) -> None:
        first = generate_id("PAY")
        second = generate_id("PAY")

        assert first.startswith("PAY")
        assert first == first.upper()
        assert first != second


class TestCatalog:
    """Test suite for the static product catalog."""

    @pytest.mark.unit
    def test_known_product(self) -> None:
        product = get_product("Customization Plan")

        assert product is not None
        assert product.amount == Decimal("5000.00")
        assert product.currency == "PHP"

    @pytest.mark.unit
    def test_unknown_product(self) -> None:
        assert get_product("Lifetime Access") is None
        assert get_product("customization plan") is None

    @pytest.mark.unit
    def test_list_products(self) -> None:
        names = {product.name for product in list_products()}
        assert "START UP VA Course" in names
        assert len(names) == 6
