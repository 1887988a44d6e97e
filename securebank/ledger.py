"""
Account Ledger

Authoritative store of account balances. Every balance change happens under
the account's lock and inside a storage transaction, and writes exactly one
append-only ledger entry alongside the new balance. Value only enters or
leaves the system through the sentinel external counterparties.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from .currency import Currency, Money, SETTLEMENT_CURRENCY, quantize
from .errors import AccountNotFound, InsufficientFunds, InvalidAmount, ValidationError
from .locks import AccountLocks
from .logging_config import get_logger
from .storage import Clock, StorageInterface, StorageRecord, parse_datetime, utc_now


logger = get_logger("securebank.ledger")

SYSTEM_DEPOSIT = "SYSTEM_DEPOSIT"
SYSTEM_WITHDRAWAL = "SYSTEM_WITHDRAWAL"
SYSTEM_FEES = "SYSTEM_FEES"

EXTERNAL_COUNTERPARTIES = frozenset({SYSTEM_DEPOSIT, SYSTEM_WITHDRAWAL, SYSTEM_FEES})


class EntryDirection(Enum):
    DEBIT = "debit"
    CREDIT = "credit"


@dataclass
class LedgerEntry(StorageRecord):
    """One balance change on one account"""
    account_id: str
    sequence: int
    direction: EntryDirection
    amount: Decimal
    balance_after: Decimal
    reference: Optional[str] = None
    counterparty: Optional[str] = None

    def to_dict(self):
        result = super().to_dict()
        result['direction'] = self.direction.value
        return result

    @classmethod
    def from_dict(cls, data: Dict) -> 'LedgerEntry':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            account_id=data['account_id'],
            sequence=data['sequence'],
            direction=EntryDirection(data['direction']),
            amount=Decimal(data['amount']),
            balance_after=Decimal(data['balance_after']),
            reference=data.get('reference'),
            counterparty=data.get('counterparty'),
        )


Amount = Union[Money, Decimal]


class AccountLedger:
    """Balance table plus entry journal for settlement-currency accounts"""

    def __init__(self, storage: StorageInterface, locks: Optional[AccountLocks] = None,
                 clock: Optional[Clock] = None, currency: Currency = SETTLEMENT_CURRENCY):
        self.storage = storage
        self.locks = locks or AccountLocks()
        self.clock = clock or utc_now
        self.currency = currency
        self.balances_table = "balances"
        self.entries_table = "ledger_entries"

    def locked(self, *account_ids: str):
        """Hold the ledger locks for ``account_ids``; shared with the processor"""
        return self.locks.acquire(*account_ids)

    def open_account(self, account_id: str) -> None:
        """Create a zero balance for a new account (no-op when it already exists)"""
        if self.storage.exists(self.balances_table, account_id):
            return
        now = self.clock()
        self.storage.save(self.balances_table, account_id, {
            'id': account_id,
            'balance': str(quantize(Decimal('0'), self.currency)),
            'currency': self.currency.code,
            'version': 0,
            'created_at': now.isoformat(),
            'updated_at': now.isoformat(),
        })

    def has_account(self, account_id: str) -> bool:
        return self.storage.exists(self.balances_table, account_id)

    def get_balance(self, account_id: str) -> Decimal:
        data = self.storage.load(self.balances_table, account_id)
        if data is None:
            raise AccountNotFound(account_id)
        return Decimal(data['balance'])

    def total_balance(self) -> Decimal:
        """Sum of every account balance"""
        return sum(
            (Decimal(row['balance']) for row in self.storage.load_all(self.balances_table)),
            Decimal('0.00')
        )

    def get_entries(self, account_id: str, limit: Optional[int] = None) -> List[LedgerEntry]:
        """Ledger entries for an account, most recent first"""
        entries = [
            LedgerEntry.from_dict(d)
            for d in self.storage.find(self.entries_table, {'account_id': account_id})
        ]
        entries.sort(key=lambda e: e.sequence, reverse=True)
        return entries[:limit] if limit else entries

    def _normalize(self, amount: Amount) -> Decimal:
        if isinstance(amount, Money):
            if amount.currency != self.currency:
                raise InvalidAmount(
                    f"Ledger amounts must be in {self.currency.code}, got {amount.currency.code}"
                )
            value = amount.amount
        elif isinstance(amount, Decimal):
            value = amount
        else:
            raise InvalidAmount("Ledger amounts must be Decimal or Money")
        if not value.is_finite() or value <= 0:
            raise InvalidAmount("Amount must be positive")
        if value != quantize(value, self.currency):
            raise InvalidAmount("Amount cannot have more than 2 decimal places")
        return value

    def debit(self, account_id: str, amount: Amount, reference: Optional[str] = None,
              counterparty: Optional[str] = None) -> Decimal:
        """
        Decrease an account's balance

        Returns:
            New balance

        Raises:
            InvalidAmount: If the amount is not a positive settlement amount
            InsufficientFunds: If the amount exceeds the current balance
            AccountNotFound: If the account has no ledger balance
        """
        value = self._normalize(amount)
        with self.locked(account_id):
            with self.storage.atomic():
                return self._apply(account_id, EntryDirection.DEBIT, value,
                                   reference, counterparty)

    def credit(self, account_id: str, amount: Amount, reference: Optional[str] = None,
               counterparty: Optional[str] = None) -> Decimal:
        """Increase an account's balance; returns the new balance"""
        value = self._normalize(amount)
        with self.locked(account_id):
            with self.storage.atomic():
                return self._apply(account_id, EntryDirection.CREDIT, value,
                                   reference, counterparty)

    def transfer_atomic(self, from_account_id: str, to_account_id: str, amount: Amount,
                        reference: Optional[str] = None) -> Tuple[Decimal, Decimal]:
        """
        Move value between two accounts; both sides apply or neither does

        Returns:
            (new source balance, new destination balance)
        """
        if from_account_id == to_account_id:
            raise ValidationError("to_account", "Cannot transfer to the same account")
        value = self._normalize(amount)
        with self.locked(from_account_id, to_account_id):
            with self.storage.atomic():
                source = self._apply(from_account_id, EntryDirection.DEBIT, value,
                                     reference, to_account_id)
                destination = self._apply(to_account_id, EntryDirection.CREDIT, value,
                                          reference, from_account_id)
        return source, destination

    def _apply(self, account_id: str, direction: EntryDirection, value: Decimal,
               reference: Optional[str], counterparty: Optional[str]) -> Decimal:
        data = self.storage.load(self.balances_table, account_id)
        if data is None:
            raise AccountNotFound(account_id)

        balance = Decimal(data['balance'])
        if direction == EntryDirection.DEBIT:
            if value > balance:
                raise InsufficientFunds(required=value, available=balance)
            new_balance = balance - value
        else:
            new_balance = balance + value
        new_balance = quantize(new_balance, self.currency)

        now = self.clock()
        data['balance'] = str(new_balance)
        data['version'] = data.get('version', 0) + 1
        data['updated_at'] = now.isoformat()
        self.storage.save(self.balances_table, account_id, data)

        entry = LedgerEntry(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=account_id,
            sequence=data['version'],
            direction=direction,
            amount=value,
            balance_after=new_balance,
            reference=reference,
            counterparty=counterparty,
        )
        self.storage.save(self.entries_table, entry.id, entry.to_dict())

        logger.debug(f"{direction.value} {value} on {account_id}, balance now {new_balance}")
        return new_balance
