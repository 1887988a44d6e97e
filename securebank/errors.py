"""
Error Taxonomy

Every failure surfaced by the core is a BankingError carrying a stable,
machine-readable ``kind``, a human-readable message and a details dict.
Validation, ledger and limit errors also subclass ValueError so callers that
only care about "bad request" can catch them generically.
"""

from datetime import datetime
from typing import Any, Dict, Optional


class BankingError(Exception):
    """Base class for all typed failures"""

    kind = "banking_error"
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        result = {"error": self.kind, "message": self.message}
        for key, value in self.details.items():
            if isinstance(value, datetime):
                value = value.isoformat()
            elif value is not None and not isinstance(value, (int, bool)):
                value = str(value)
            result[key] = value
        return result


class ValidationError(BankingError, ValueError):
    """Malformed or out-of-range input; never touches the ledger"""

    kind = "validation_error"

    def __init__(self, field: str, message: str):
        super().__init__(message, field=field)
        self.field = field


# Authentication / authorization

class AuthError(BankingError):
    kind = "auth_error"


class InvalidCredentials(AuthError):
    kind = "invalid_credentials"

    def __init__(self, message: str = "Invalid credentials",
                 remaining_attempts: Optional[int] = None):
        super().__init__(message, remaining_attempts=remaining_attempts)
        self.remaining_attempts = remaining_attempts


class AccountLocked(AuthError):
    kind = "account_locked"

    def __init__(self, locked_until: Optional[datetime] = None):
        super().__init__("Account temporarily locked", locked_until=locked_until)
        self.locked_until = locked_until


class AccountInactive(AuthError):
    kind = "account_inactive"

    def __init__(self):
        super().__init__("Account is inactive. Please contact support.")


class RateLimited(AuthError):
    kind = "rate_limited"
    retryable = True

    def __init__(self, retry_after: Optional[int] = None):
        super().__init__("Too many attempts. Please try again later.",
                         retry_after=retry_after)
        self.retry_after = retry_after


class InvalidSession(AuthError):
    kind = "invalid_session"

    def __init__(self, message: str = "Invalid or expired session"):
        super().__init__(message)


class Forbidden(AuthError):
    kind = "forbidden"

    def __init__(self, message: str = "Admin access required"):
        super().__init__(message)


# Ledger

class LedgerError(BankingError, ValueError):
    kind = "ledger_error"


class InsufficientFunds(LedgerError):
    kind = "insufficient_funds"

    def __init__(self, required, available):
        super().__init__(
            f"Insufficient funds: required {required}, available {available}",
            required=required, available=available
        )
        self.required = required
        self.available = available


class InvalidAmount(LedgerError):
    kind = "invalid_amount"


class AccountNotFound(LedgerError):
    kind = "account_not_found"

    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id} not found", account_id=account_id)


# Processing

class ProcessorError(BankingError):
    kind = "processor_error"


class LimitExceeded(ProcessorError, ValueError):
    kind = "limit_exceeded"

    def __init__(self, message: str, limit=None):
        super().__init__(message, limit=limit)
        self.limit = limit


class Busy(ProcessorError):
    """Lock could not be acquired in time; safe to retry"""

    kind = "busy"
    retryable = True

    def __init__(self, message: str = "Account is busy, please retry"):
        super().__init__(message)


class InternalFailure(ProcessorError):
    """Opaque failure; detail stays in the server-side log"""

    kind = "internal_failure"

    def __init__(self, message: str = "An internal error occurred"):
        super().__init__(message)


class TransactionNotFound(ProcessorError):
    kind = "transaction_not_found"

    def __init__(self, transaction_id: str):
        super().__init__(f"Transaction {transaction_id} not found",
                         transaction_id=transaction_id)


class InvalidTransition(ProcessorError):
    kind = "invalid_transition"
