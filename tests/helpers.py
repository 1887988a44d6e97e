"""
Shared test helpers: a controllable clock and a fully wired in-memory system
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from securebank.config import SecureBankConfig
from securebank.service import BankingSystem
from securebank.storage import InMemoryStorage
from securebank.transactions import TransferRequest


TEST_SECRET = "test-signing-key-that-is-long-enough-for-hs256"
STRONG_PASSWORD = "Str0ng@Pass1"

# 10:00 UTC is 12:00 in Johannesburg, inside business hours
DEFAULT_START = datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to"""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or DEFAULT_START

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_config(**overrides) -> SecureBankConfig:
    settings = {"database_url": "memory", "jwt_secret": TEST_SECRET}
    settings.update(overrides)
    return SecureBankConfig(**settings)


def build_system(clock: Optional[FakeClock] = None, **overrides) -> BankingSystem:
    return BankingSystem(
        config=make_config(**overrides),
        storage=InMemoryStorage(),
        clock=clock or FakeClock(),
    )


def create_customer(system: BankingSystem, email: str = "alice@example.com",
                    balance=None, first_name: str = "Alice", last_name: str = "Smith",
                    password: str = STRONG_PASSWORD):
    account = system.account_manager.create_account(email, password, first_name, last_name)
    if balance is not None:
        system.transaction_processor.fund_new_account(account, balance)
    return account


def external_transfer(amount, currency: str = "ZAR", reference: str = "Invoice 42",
                      recipient_account: str = "1234567890",
                      recipient_bank: str = "ABSAZAJJ", **kwargs) -> TransferRequest:
    return TransferRequest(
        recipient_name="Bob Jones",
        recipient_email="bob@example.com",
        recipient_account=recipient_account,
        recipient_bank=recipient_bank,
        amount=amount,
        reference=reference,
        currency=currency,
        **kwargs
    )
