"""
Input validation and sanitisation

All checks raise ValidationError naming the offending field, and run before
anything touches the ledger.
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Tuple

from .currency import Currency
from .errors import ValidationError


EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
NAME_PATTERN = re.compile(r"^[a-zA-Z\s'-]{2,50}$")
ACCOUNT_NUMBER_PATTERN = re.compile(r'^[0-9]{10}$')
SWIFT_PATTERN = re.compile(r'^[A-Z]{6}[A-Z0-9]{2}([A-Z0-9]{3})?$')
REFERENCE_PATTERN = re.compile(r'^[a-zA-Z0-9\s\-_]{1,35}$')
PASSWORD_PATTERN = re.compile(
    r'^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]{8,128}$'
)

SUPPORTED_CURRENCIES = ("USD", "EUR", "GBP", "ZAR")

# South African clearing banks accepted as transfer destinations
SUPPORTED_BANK_CODES = {
    "ABSAZAJJ": "ABSA Bank",
    "FIRNZAJJ": "First National Bank",
    "NEDSZAJJ": "Nedbank",
    "SBZAZAJJ": "Standard Bank",
    "CABLZAJJ": "Capitec Bank",
    "INVEZAJJ": "Investec Bank",
    "AFRCZAJJ": "African Bank",
    "BIDVZAJJ": "Bidvest Bank",
    "GROSZAJJ": "Grobank",
    "HABAZAJJ": "Habib Overseas Bank",
}

WEAK_PASSWORD_FRAGMENTS = ("password", "123456", "qwerty", "admin", "letmein")

MAX_INPUT_LENGTH = 1000

TWO_PLACES = Decimal('0.01')

_DANGEROUS_CHARS = re.compile(r'[<>"\'&]')
_JS_SCHEME = re.compile(r'javascript:', re.IGNORECASE)
_EVENT_HANDLER = re.compile(r'on\w+=', re.IGNORECASE)


def sanitize_input(value: Any) -> Any:
    """Strip markup and script fragments from free text; non-strings pass through"""
    if not isinstance(value, str):
        return value
    value = _DANGEROUS_CHARS.sub('', value)
    value = _JS_SCHEME.sub('', value)
    value = _EVENT_HANDLER.sub('', value)
    return value.strip()[:MAX_INPUT_LENGTH]


def parse_amount(value: Any, field: str = "amount",
                 maximum: Optional[Decimal] = None,
                 allow_zero: bool = False) -> Decimal:
    """
    Parse a monetary amount into a Decimal

    Accepts Decimal, int or numeric strings. Floats are converted through
    their string form so 0.1 stays 0.1. Trailing zeros beyond the second
    decimal place are dropped, so "1.000" parses as 1.00.

    Raises:
        ValidationError: If the amount is not a number, not positive (or
            negative when ``allow_zero``), has more than two significant
            decimal places or exceeds ``maximum``
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(field, "Amount must be a number")
    try:
        if isinstance(value, float):
            amount = Decimal(str(value))
        else:
            amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(field, "Amount must be a number")

    if not amount.is_finite():
        raise ValidationError(field, "Amount must be a number")
    if allow_zero:
        if amount < 0:
            raise ValidationError(field, "Amount cannot be negative")
    elif amount <= 0:
        raise ValidationError(field, "Amount must be greater than zero")
    if amount.normalize().as_tuple().exponent < -2:
        raise ValidationError(field, "Amount cannot have more than 2 decimal places")
    if maximum is not None and amount > maximum:
        raise ValidationError(field, f"Amount exceeds maximum limit of {maximum:,.2f}")
    if amount.as_tuple().exponent < -2:
        amount = amount.quantize(TWO_PLACES)
    return amount


def validate_email(email: str, field: str = "email") -> str:
    if not isinstance(email, str) or not EMAIL_PATTERN.match(email.strip()):
        raise ValidationError(field, "Invalid email format")
    return email.strip().lower()


def validate_name(name: str, field: str = "name") -> str:
    if not isinstance(name, str) or not NAME_PATTERN.match(name.strip()):
        raise ValidationError(
            field, "Name must be 2-50 characters and contain only letters, spaces, hyphens and apostrophes"
        )
    return name.strip()


def validate_account_number(account_number: str, field: str = "account_number") -> str:
    if not isinstance(account_number, str) or not ACCOUNT_NUMBER_PATTERN.match(account_number):
        raise ValidationError(field, "Account number must be exactly 10 digits")
    return account_number


def validate_bank_code(bank_code: str, internal_bank_code: Optional[str] = None,
                       field: str = "bank_code") -> str:
    if not isinstance(bank_code, str):
        raise ValidationError(field, "Bank code is required")
    code = bank_code.strip().upper()
    if not SWIFT_PATTERN.match(code):
        raise ValidationError(field, "Invalid SWIFT/BIC code format")
    if code not in SUPPORTED_BANK_CODES and code != internal_bank_code:
        raise ValidationError(field, f"Unsupported bank code: {code}")
    return code


def validate_currency(code: str, field: str = "currency") -> Currency:
    if not isinstance(code, str) or code.upper() not in SUPPORTED_CURRENCIES:
        raise ValidationError(field, f"Currency must be one of {', '.join(SUPPORTED_CURRENCIES)}")
    return Currency.from_code(code.upper())


def validate_reference(reference: str, field: str = "reference") -> str:
    if not isinstance(reference, str) or not REFERENCE_PATTERN.match(reference):
        raise ValidationError(
            field, "Reference must be 1-35 characters of letters, digits, spaces, hyphens or underscores"
        )
    return reference.strip() or reference


def validate_password_strength(password: str, min_length: int = 8) -> Tuple[bool, List[str]]:
    """Check a candidate password, returning (valid, problems)"""
    problems = []
    if not isinstance(password, str):
        return False, ["Password is required"]

    if len(password) < min_length:
        problems.append(f"Password must be at least {min_length} characters long")
    if len(password) > 128:
        problems.append("Password must not exceed 128 characters")
    if not any(c.islower() for c in password):
        problems.append("Password must contain at least one lowercase letter")
    if not any(c.isupper() for c in password):
        problems.append("Password must contain at least one uppercase letter")
    if not any(c.isdigit() for c in password):
        problems.append("Password must contain at least one number")
    if not any(c in "@$!%*?&" for c in password):
        problems.append("Password must contain at least one special character (@$!%*?&)")
    if not problems and not PASSWORD_PATTERN.match(password):
        problems.append("Password contains unsupported characters")

    lowered = password.lower()
    if any(fragment in lowered for fragment in WEAK_PASSWORD_FRAGMENTS):
        problems.append("Password contains common weak patterns")

    return not problems, problems
