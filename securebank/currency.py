"""
Currency Support Module

Handles ISO 4217 currency codes, exchange rates into the settlement currency
and Decimal precision for financial calculations. NEVER uses float for
monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, getcontext
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, Optional
from enum import Enum

# Set global decimal context for financial precision
getcontext().prec = 28


class Currency(Enum):
    """ISO 4217 currency codes accepted for transfers, with precision info"""
    ZAR = ("ZAR", 2)  # South African Rand, settlement currency
    USD = ("USD", 2)
    EUR = ("EUR", 2)
    GBP = ("GBP", 2)

    def __init__(self, code: str, precision: int):
        self.code = code
        self.precision = precision

    @classmethod
    def from_code(cls, code: str) -> 'Currency':
        """Look up a currency by its ISO code"""
        try:
            return cls[code]
        except KeyError:
            raise ValueError(f"Unsupported currency: {code}")


SETTLEMENT_CURRENCY = Currency.ZAR

CENT = Decimal('0.01')


def quantize(value: Decimal, currency: Currency = SETTLEMENT_CURRENCY) -> Decimal:
    """Round a Decimal to the currency's precision (half-up)"""
    return value.quantize(
        Decimal('0.1') ** currency.precision,
        rounding=ROUND_HALF_UP
    )


@dataclass(frozen=True)
class Money:
    """
    Immutable money representation with currency and proper precision.
    All monetary values MUST use this class or raw Decimal.
    """
    amount: Decimal
    currency: Currency = SETTLEMENT_CURRENCY

    def __post_init__(self):
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, 'amount', Decimal(str(self.amount)))
        object.__setattr__(self, 'amount', quantize(self.amount, self.currency))

    @classmethod
    def zero(cls, currency: Currency = SETTLEMENT_CURRENCY) -> 'Money':
        return cls(Decimal('0'), currency)

    def _check_currency(self, other: 'Money', verb: str) -> None:
        if self.currency != other.currency:
            raise ValueError(f"Cannot {verb} {self.currency.code} and {other.currency.code}")

    def __add__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "add")
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        self._check_currency(other, "subtract")
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, multiplier: Decimal) -> 'Money':
        if not isinstance(multiplier, Decimal):
            multiplier = Decimal(str(multiplier))
        return Money(self.amount * multiplier, self.currency)

    def __neg__(self) -> 'Money':
        return Money(-self.amount, self.currency)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Money):
            return False
        return self.amount == other.amount and self.currency == other.currency

    def __hash__(self) -> int:
        return hash((self.amount, self.currency))

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount <= other.amount

    def __gt__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount > other.amount

    def __ge__(self, other: 'Money') -> bool:
        self._check_currency(other, "compare")
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == Decimal('0')

    def is_positive(self) -> bool:
        return self.amount > Decimal('0')

    def is_negative(self) -> bool:
        return self.amount < Decimal('0')

    def min(self, other: 'Money') -> 'Money':
        return self if self <= other else other

    def to_string(self) -> str:
        """Format for display"""
        return f"{self.currency.code} {self.amount:,.{self.currency.precision}f}"


@dataclass(frozen=True)
class ExchangeRate:
    """Conversion rate from one currency into another"""
    from_currency: Currency
    to_currency: Currency
    rate: Decimal
    timestamp: datetime


# Indicative rates into ZAR used when the caller does not supply one
DEFAULT_ZAR_RATES = {
    Currency.USD: Decimal('18.75'),
    Currency.EUR: Decimal('20.45'),
    Currency.GBP: Decimal('23.85'),
}


class CurrencyConverter:
    """Converts requested amounts into the settlement currency"""

    def __init__(self, settlement_currency: Currency = SETTLEMENT_CURRENCY):
        self.settlement_currency = settlement_currency
        self._rates: Dict[tuple, ExchangeRate] = {}

    @classmethod
    def with_default_rates(cls) -> 'CurrencyConverter':
        converter = cls()
        now = datetime.now(timezone.utc)
        for currency, rate in DEFAULT_ZAR_RATES.items():
            converter.set_rate(ExchangeRate(currency, Currency.ZAR, rate, now))
        return converter

    def set_rate(self, rate: ExchangeRate) -> None:
        """Set exchange rate for currency pair"""
        if rate.rate <= Decimal('0'):
            raise ValueError("Exchange rate must be positive")
        self._rates[(rate.from_currency, rate.to_currency)] = rate

    def get_rate(self, from_currency: Currency, to_currency: Currency) -> Optional[ExchangeRate]:
        """Get exchange rate for currency pair"""
        if from_currency == to_currency:
            return ExchangeRate(from_currency, to_currency, Decimal('1'),
                                datetime.now(timezone.utc))
        return self._rates.get((from_currency, to_currency))

    def rate_to_settlement(self, currency: Currency) -> Decimal:
        """
        Rate converting one unit of ``currency`` into the settlement currency

        Raises:
            ValueError: If no exchange rate is available
        """
        rate = self.get_rate(currency, self.settlement_currency)
        if not rate:
            raise ValueError(
                f"No exchange rate available for {currency.code} -> {self.settlement_currency.code}"
            )
        return rate.rate

    def convert(self, money: Money, rate: Optional[Decimal] = None) -> Money:
        """Convert money into the settlement currency, optionally at a given rate"""
        if rate is None:
            rate = self.rate_to_settlement(money.currency)
        return Money(money.amount * rate, self.settlement_currency)
