"""
Tests for money arithmetic and settlement-currency conversion
"""

import pytest
from decimal import Decimal
from datetime import datetime, timezone

from securebank.currency import (
    Currency, CurrencyConverter, ExchangeRate, Money, SETTLEMENT_CURRENCY, quantize,
)


class TestMoney:
    """Test Money value object"""

    def test_amount_is_quantized_half_up(self):
        """Amounts are rounded to two places, half up"""
        assert Money(Decimal('10.005')).amount == Decimal('10.01')
        assert Money(Decimal('10.004')).amount == Decimal('10.00')

    def test_non_decimal_input_goes_through_str(self):
        """Floats are converted via their string form"""
        assert Money(0.1).amount == Decimal('0.10')

    def test_default_currency_is_settlement_currency(self):
        assert Money(Decimal('1')).currency == Currency.ZAR
        assert SETTLEMENT_CURRENCY == Currency.ZAR

    def test_arithmetic_and_comparison(self):
        a = Money(Decimal('100.00'))
        b = Money(Decimal('40.50'))
        assert a + b == Money(Decimal('140.50'))
        assert a - b == Money(Decimal('59.50'))
        assert a * Decimal('0.005') == Money(Decimal('0.50'))
        assert b < a
        assert a.min(b) == b

    def test_currency_mismatch_rejected(self):
        """Adding different currencies raises"""
        with pytest.raises(ValueError, match="Cannot add"):
            Money(Decimal('1'), Currency.USD) + Money(Decimal('1'), Currency.ZAR)

    def test_to_string(self):
        assert Money(Decimal('1234.5')).to_string() == "ZAR 1,234.50"

    def test_from_code(self):
        assert Currency.from_code("GBP") == Currency.GBP
        with pytest.raises(ValueError, match="Unsupported currency"):
            Currency.from_code("JPY")

    def test_quantize_helper(self):
        assert quantize(Decimal('2.345')) == Decimal('2.35')


class TestCurrencyConverter:
    """Test conversion into the settlement currency"""

    def test_default_rates(self):
        converter = CurrencyConverter.with_default_rates()
        assert converter.rate_to_settlement(Currency.USD) == Decimal('18.75')
        assert converter.rate_to_settlement(Currency.EUR) == Decimal('20.45')
        assert converter.rate_to_settlement(Currency.GBP) == Decimal('23.85')
        assert converter.rate_to_settlement(Currency.ZAR) == Decimal('1')

    def test_convert_with_default_rate(self):
        converter = CurrencyConverter.with_default_rates()
        result = converter.convert(Money(Decimal('100'), Currency.USD))
        assert result == Money(Decimal('1875.00'), Currency.ZAR)

    def test_convert_with_explicit_rate(self):
        converter = CurrencyConverter.with_default_rates()
        result = converter.convert(Money(Decimal('10'), Currency.EUR), Decimal('20.123'))
        assert result.amount == Decimal('201.23')

    def test_missing_rate(self):
        """A converter without rates cannot convert foreign currency"""
        converter = CurrencyConverter()
        with pytest.raises(ValueError, match="No exchange rate"):
            converter.rate_to_settlement(Currency.USD)

    def test_non_positive_rate_rejected(self):
        converter = CurrencyConverter()
        rate = ExchangeRate(Currency.USD, Currency.ZAR, Decimal('0'), datetime.now(timezone.utc))
        with pytest.raises(ValueError, match="must be positive"):
            converter.set_rate(rate)
