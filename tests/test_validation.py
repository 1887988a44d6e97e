"""
Tests for input validation and sanitisation
"""

import pytest
from decimal import Decimal

from securebank.currency import Currency
from securebank.errors import ValidationError
from securebank.validation import (
    parse_amount, sanitize_input, validate_account_number, validate_bank_code,
    validate_currency, validate_email, validate_name, validate_password_strength,
    validate_reference,
)


class TestParseAmount:
    """Test monetary amount parsing"""

    def test_accepts_strings_ints_and_decimals(self):
        assert parse_amount("100.50") == Decimal("100.50")
        assert parse_amount(25) == Decimal("25")
        assert parse_amount(Decimal("0.01")) == Decimal("0.01")

    def test_float_keeps_its_decimal_form(self):
        """0.1 must not become 0.1000000000000000055511151231257827"""
        assert parse_amount(0.1) == Decimal("0.1")

    @pytest.mark.parametrize("value", ["abc", "", None, True, "NaN", "Infinity"])
    def test_rejects_non_numbers(self, value):
        with pytest.raises(ValidationError, match="must be a number"):
            parse_amount(value)

    @pytest.mark.parametrize("value", ["0", "-5", 0, "-0.01"])
    def test_rejects_non_positive(self, value):
        with pytest.raises(ValidationError, match="greater than zero"):
            parse_amount(value)

    def test_rejects_too_many_decimal_places(self):
        with pytest.raises(ValidationError, match="2 decimal places"):
            parse_amount("10.001")

    def test_trailing_zeros_are_not_extra_places(self):
        amount = parse_amount("1.000")
        assert amount == Decimal("1.00")
        assert str(amount) == "1.00"
        assert parse_amount("250.5000") == Decimal("250.50")

    def test_allow_zero(self):
        assert parse_amount("0.00", allow_zero=True) == Decimal("0")
        with pytest.raises(ValidationError, match="cannot be negative"):
            parse_amount("-100", allow_zero=True)
        with pytest.raises(ValidationError, match="must be a number"):
            parse_amount("abc", allow_zero=True)

    def test_maximum(self):
        assert parse_amount("1000000", maximum=Decimal("1000000")) == Decimal("1000000")
        with pytest.raises(ValidationError, match="exceeds maximum"):
            parse_amount("1000000.01", maximum=Decimal("1000000"))

    def test_error_names_field(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_amount("x", field="initial_balance")
        assert exc_info.value.field == "initial_balance"


class TestFieldValidators:
    """Test individual field validators"""

    def test_email_is_normalized(self):
        assert validate_email("  Alice@Example.COM ") == "alice@example.com"

    @pytest.mark.parametrize("email", ["not-an-email", "a@b", "a b@c.com", ""])
    def test_bad_email(self, email):
        with pytest.raises(ValidationError, match="Invalid email"):
            validate_email(email)

    def test_names(self):
        assert validate_name("Mary-Jane O'Neil") == "Mary-Jane O'Neil"
        with pytest.raises(ValidationError):
            validate_name("A")
        with pytest.raises(ValidationError):
            validate_name("Robert1")

    def test_account_number(self):
        assert validate_account_number("1234567890") == "1234567890"
        for bad in ("123456789", "12345678901", "12345abcde"):
            with pytest.raises(ValidationError, match="10 digits"):
                validate_account_number(bad)

    def test_bank_code(self):
        assert validate_bank_code("absazajj") == "ABSAZAJJ"
        with pytest.raises(ValidationError, match="Invalid SWIFT"):
            validate_bank_code("AB")
        with pytest.raises(ValidationError, match="Unsupported bank code"):
            validate_bank_code("DEUTDEFF")

    def test_internal_bank_code_accepted(self):
        assert validate_bank_code("SECBZAJJ", internal_bank_code="SECBZAJJ") == "SECBZAJJ"

    def test_currency(self):
        assert validate_currency("usd") == Currency.USD
        with pytest.raises(ValidationError, match="Currency must be one of"):
            validate_currency("JPY")

    def test_reference(self):
        assert validate_reference("Invoice 42") == "Invoice 42"
        with pytest.raises(ValidationError):
            validate_reference("x" * 36)
        with pytest.raises(ValidationError):
            validate_reference("<script>")


class TestPasswordStrength:
    """Test password policy"""

    def test_strong_password(self):
        valid, problems = validate_password_strength("Str0ng@Pass1")
        assert valid
        assert problems == []

    def test_reports_each_missing_class(self):
        valid, problems = validate_password_strength("short")
        assert not valid
        assert any("at least 8" in p for p in problems)
        assert any("uppercase" in p for p in problems)
        assert any("number" in p for p in problems)
        assert any("special character" in p for p in problems)

    def test_weak_fragment(self):
        valid, problems = validate_password_strength("MyPassword1!")
        assert not valid
        assert any("weak patterns" in p for p in problems)

    def test_configurable_minimum(self):
        valid, _ = validate_password_strength("Str0ng@Pass1", min_length=16)
        assert not valid


class TestSanitizeInput:
    def test_strips_markup(self):
        assert sanitize_input('<b onclick=x>hi</b>') == 'b xhi/b'

    def test_strips_javascript_scheme(self):
        assert "javascript:" not in sanitize_input("javascript:alert(1)")

    def test_non_strings_pass_through(self):
        assert sanitize_input(42) == 42
