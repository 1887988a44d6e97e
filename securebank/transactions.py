"""
Transaction Processing Module

Validates and executes transfers, deposits and withdrawals. Every money
movement takes the ledger locks of the accounts involved, re-checks funds
under those locks, then mutates the ledger and writes the immutable
transaction record in a single storage transaction.

Transaction lifecycle: PENDING -> COMPLETED | FAILED | CANCELLED. Completed,
failed and cancelled are terminal. Failing or cancelling a pending transfer
credits the full debited amount back to the sender in the same storage
transaction as the status change.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from .accounts import Account, AccountManager
from .audit import AuditTrail, AuditEventType
from .currency import (
    Currency, CurrencyConverter, Money, SETTLEMENT_CURRENCY, quantize,
)
from .errors import (
    InsufficientFunds, InternalFailure, InvalidTransition, LimitExceeded,
    TransactionNotFound, ValidationError,
)
from .ledger import AccountLedger, SYSTEM_DEPOSIT, SYSTEM_FEES, SYSTEM_WITHDRAWAL
from .logging_config import get_logger, log_action, log_transaction
from .rate_limit import FixedWindowRateLimiter
from .risk import RiskFactors, assess
from .storage import Clock, StorageInterface, StorageRecord, parse_datetime, utc_now
from .validation import (
    parse_amount, sanitize_input, validate_account_number, validate_bank_code,
    validate_currency, validate_email, validate_name, validate_reference,
)


logger = get_logger("securebank.transactions")

DEFAULT_DEPOSIT_REFERENCE = "Account deposit"
DEFAULT_WITHDRAWAL_REFERENCE = "Account withdrawal"
INITIAL_DEPOSIT_REFERENCE = "Initial account deposit"


class TransactionType(Enum):
    """Types of money movement"""
    INTERNATIONAL_TRANSFER = "international_transfer"
    DOMESTIC_TRANSFER = "domestic_transfer"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class TransactionStatus(Enum):
    """States of a transaction"""
    PENDING = "pending"        # Funds debited, awaiting settlement
    COMPLETED = "completed"
    FAILED = "failed"          # Settlement failed, funds returned
    CANCELLED = "cancelled"    # Withdrawn before settlement, funds returned


TERMINAL_STATUSES = frozenset({
    TransactionStatus.COMPLETED, TransactionStatus.FAILED, TransactionStatus.CANCELLED
})


@dataclass
class Transaction(StorageRecord):
    """
    Immutable record of a money movement

    ``from_account_ref`` and ``to_account_ref`` are account numbers or the
    SYSTEM_DEPOSIT / SYSTEM_WITHDRAWAL sentinels. ``from_account_id`` is the
    ledger account debited, kept so failures can be compensated.
    """
    sequence: int
    transaction_type: TransactionType
    status: TransactionStatus
    from_account_ref: str
    to_account_ref: str
    requested_amount: Decimal
    requested_currency: Currency
    exchange_rate: Decimal
    settlement_amount: Decimal
    fees: Decimal
    reference: str
    risk_score: int = 0
    completed_at: Optional[datetime] = None
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    recipient_name: Optional[str] = None
    recipient_email: Optional[str] = None
    recipient_bank: Optional[str] = None
    purpose: Optional[str] = None
    failure_reason: Optional[str] = None
    initiated_by: Optional[str] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_pending(self) -> bool:
        return self.status == TransactionStatus.PENDING

    @property
    def amount_debited(self) -> Decimal:
        """Total taken from the sender's balance"""
        if self.transaction_type == TransactionType.DEPOSIT:
            return Decimal('0.00')
        return self.settlement_amount + self.fees

    def transition(self, new_status: TransactionStatus, now: datetime,
                   reason: Optional[str] = None) -> None:
        """Move a pending transaction to a terminal status"""
        if self.is_terminal:
            raise InvalidTransition(
                f"Transaction {self.id} is {self.status.value} and cannot become {new_status.value}"
            )
        if new_status == TransactionStatus.PENDING:
            raise InvalidTransition("Transaction is already pending")
        self.status = new_status
        self.updated_at = now
        self.completed_at = now
        if reason:
            self.failure_reason = reason

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result['transaction_type'] = self.transaction_type.value
        result['status'] = self.status.value
        result['requested_currency'] = self.requested_currency.code
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        return cls(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            sequence=data['sequence'],
            transaction_type=TransactionType(data['transaction_type']),
            status=TransactionStatus(data['status']),
            from_account_ref=data['from_account_ref'],
            to_account_ref=data['to_account_ref'],
            requested_amount=Decimal(data['requested_amount']),
            requested_currency=Currency.from_code(data['requested_currency']),
            exchange_rate=Decimal(data['exchange_rate']),
            settlement_amount=Decimal(data['settlement_amount']),
            fees=Decimal(data['fees']),
            reference=data['reference'],
            risk_score=data.get('risk_score', 0),
            completed_at=parse_datetime(data.get('completed_at')),
            from_account_id=data.get('from_account_id'),
            to_account_id=data.get('to_account_id'),
            recipient_name=data.get('recipient_name'),
            recipient_email=data.get('recipient_email'),
            recipient_bank=data.get('recipient_bank'),
            purpose=data.get('purpose'),
            failure_reason=data.get('failure_reason'),
            initiated_by=data.get('initiated_by'),
            client_ip=data.get('client_ip'),
            user_agent=data.get('user_agent'),
        )

    def to_public_dict(self) -> Dict[str, Any]:
        """Caller-facing representation without internal ledger ids"""
        result = self.to_dict()
        result.pop('from_account_id', None)
        result.pop('to_account_id', None)
        result.pop('updated_at', None)
        return result


@dataclass
class TransferRequest:
    recipient_name: str
    recipient_email: str
    recipient_account: str
    recipient_bank: str
    amount: Any
    reference: str
    currency: str = "ZAR"
    purpose: Optional[str] = None
    exchange_rate: Optional[Any] = None


@dataclass
class TransactionLimits:
    """Per-call business limits, all in the settlement currency"""
    max_amount: Decimal = Decimal('1000000.00')
    transfer_limit: Decimal = Decimal('100000.00')
    deposit_limit: Decimal = Decimal('500000.00')
    withdrawal_limit: Decimal = Decimal('50000.00')
    withdrawal_fee_rate: Decimal = Decimal('0.001')
    withdrawal_fee_cap: Decimal = Decimal('50.00')


@dataclass
class TransferQuote:
    requested_amount: Decimal
    requested_currency: Currency
    exchange_rate: Decimal
    settlement_amount: Decimal
    fees: Decimal
    transaction_type: TransactionType

    @property
    def total_debit(self) -> Decimal:
        return self.settlement_amount + self.fees

    def to_dict(self) -> Dict[str, Any]:
        return {
            'requested_amount': str(self.requested_amount),
            'requested_currency': self.requested_currency.code,
            'exchange_rate': str(self.exchange_rate),
            'settlement_amount': str(self.settlement_amount),
            'settlement_currency': SETTLEMENT_CURRENCY.code,
            'fees': str(self.fees),
            'total_debit': str(self.total_debit),
            'transaction_type': self.transaction_type.value,
        }


@dataclass
class TransactionReceipt:
    transaction: Transaction
    new_balance: Decimal

    @property
    def transaction_id(self) -> str:
        return self.transaction.id

    @property
    def status(self) -> TransactionStatus:
        return self.transaction.status

    @property
    def amount_debited(self) -> Decimal:
        return self.transaction.amount_debited

    def to_dict(self) -> Dict[str, Any]:
        return {
            'transaction_id': self.transaction.id,
            'status': self.transaction.status.value,
            'amount_debited': str(self.amount_debited),
            'new_balance': str(self.new_balance),
            'transaction': self.transaction.to_public_dict(),
        }


def transfer_fee(settlement_amount: Decimal) -> Decimal:
    """Tiered transfer fee in the settlement currency"""
    if settlement_amount <= Decimal('1000'):
        return Decimal('50.00')
    if settlement_amount <= Decimal('10000'):
        return Decimal('100.00')
    if settlement_amount <= Decimal('50000'):
        return Decimal('250.00')
    return quantize(min(settlement_amount * Decimal('0.005'), Decimal('500')))


def withdrawal_fee(amount: Decimal, rate: Decimal = Decimal('0.001'),
                   cap: Decimal = Decimal('50.00')) -> Decimal:
    return quantize(min(amount * rate, cap))


class TransactionProcessor:
    """Executes money movements against the account ledger"""

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        ledger: AccountLedger,
        accounts: AccountManager,
        limits: Optional[TransactionLimits] = None,
        converter: Optional[CurrencyConverter] = None,
        velocity_limiter: Optional[FixedWindowRateLimiter] = None,
        velocity_max: int = 10,
        velocity_window: timedelta = timedelta(hours=1),
        internal_bank_code: Optional[str] = None,
        risk_timezone: str = "Africa/Johannesburg",
        pending_timeout: timedelta = timedelta(hours=72),
        clock: Optional[Clock] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.ledger = ledger
        self.accounts = accounts
        self.limits = limits or TransactionLimits()
        self.converter = converter or CurrencyConverter.with_default_rates()
        self.clock = clock or utc_now
        self.velocity_limiter = velocity_limiter or FixedWindowRateLimiter("transfer", self.clock)
        self.velocity_max = velocity_max
        self.velocity_window = velocity_window
        self.internal_bank_code = internal_bank_code
        self.risk_timezone = ZoneInfo(risk_timezone)
        self.pending_timeout = pending_timeout
        self.transactions_table = "transactions"

    # Transfers

    def quote_transfer(self, amount: Any, currency: str = "ZAR",
                       exchange_rate: Optional[Any] = None) -> TransferQuote:
        """Preview conversion and fees for a transfer without touching the ledger"""
        requested = parse_amount(amount, "amount", self.limits.max_amount)
        requested_currency = validate_currency(currency)
        return self._quote(requested, requested_currency, exchange_rate)

    def _quote(self, requested: Decimal, currency: Currency,
               exchange_rate: Optional[Any]) -> TransferQuote:
        if currency == SETTLEMENT_CURRENCY:
            rate = Decimal('1')
        elif exchange_rate is not None:
            rate = self._parse_rate(exchange_rate)
        else:
            rate = self.converter.rate_to_settlement(currency)

        settlement = self.converter.convert(Money(requested, currency), rate).amount
        if settlement <= 0:
            raise ValidationError("amount", "Amount is too small to settle")
        transaction_type = (
            TransactionType.DOMESTIC_TRANSFER if currency == SETTLEMENT_CURRENCY
            else TransactionType.INTERNATIONAL_TRANSFER
        )
        return TransferQuote(
            requested_amount=requested,
            requested_currency=currency,
            exchange_rate=rate,
            settlement_amount=settlement,
            fees=transfer_fee(settlement),
            transaction_type=transaction_type,
        )

    @staticmethod
    def _parse_rate(value: Any) -> Decimal:
        try:
            rate = Decimal(str(value))
        except ArithmeticError:
            raise ValidationError("exchange_rate", "Exchange rate must be a number")
        if not rate.is_finite() or rate <= 0:
            raise ValidationError("exchange_rate", "Exchange rate must be positive")
        return rate

    def initiate_transfer(self, account: Account, request: TransferRequest,
                          client_ip: Optional[str] = None,
                          user_agent: Optional[str] = None) -> TransactionReceipt:
        """
        Debit the sender and record a transfer

        Transfers to the bank's own code settle immediately between ledger
        accounts and complete; transfers to other banks stay pending until
        complete_transaction or fail_transaction is called.

        Raises:
            ValidationError: Malformed request
            LimitExceeded: Velocity or per-transfer limit exceeded
            InsufficientFunds: Settlement amount plus fees exceeds the balance
            Busy: Account locks not obtained in time
        """
        recipient_name = validate_name(sanitize_input(request.recipient_name), "recipient_name")
        recipient_email = validate_email(sanitize_input(request.recipient_email), "recipient_email")
        recipient_account = validate_account_number(
            sanitize_input(request.recipient_account), "recipient_account"
        )
        recipient_bank = validate_bank_code(
            sanitize_input(request.recipient_bank), self.internal_bank_code, "recipient_bank"
        )
        currency = validate_currency(request.currency)
        reference = validate_reference(sanitize_input(request.reference))
        requested = parse_amount(request.amount, "amount", self.limits.max_amount)
        purpose = sanitize_input(request.purpose) if request.purpose else None

        recipient = None
        if recipient_bank == self.internal_bank_code:
            if recipient_account == account.account_number:
                raise ValidationError("recipient_account", "Cannot transfer to your own account")
            recipient = self.accounts.get_account_by_number(recipient_account)
            if recipient is None or not recipient.is_active:
                raise ValidationError("recipient_account", "Recipient account not found")

        quote = self._quote(requested, currency, request.exchange_rate)

        lock_ids = [account.id] + ([recipient.id] if recipient else [])
        with self.ledger.locked(*lock_ids):
            balance = self.ledger.get_balance(account.id)
            if quote.total_debit > balance:
                raise InsufficientFunds(required=quote.total_debit, available=balance)
            if quote.settlement_amount > self.limits.transfer_limit:
                raise LimitExceeded(
                    f"Transfer amount exceeds limit of {self.limits.transfer_limit:,.2f}",
                    limit=self.limits.transfer_limit
                )
            # Only transfers that pass the funds and amount checks count towards velocity
            if not self.velocity_limiter.allow(account.id, self.velocity_max, self.velocity_window):
                log_action(logger, "warning", "Transfer velocity limit exceeded",
                           account_id=account.id, action="transfer", resource="transaction")
                raise LimitExceeded("Too many transfers, please try again later",
                                    limit=self.velocity_max)

            now = self.clock()
            risk = assess(RiskFactors(
                settlement_amount=quote.settlement_amount,
                is_international=quote.transaction_type == TransactionType.INTERNATIONAL_TRANSFER,
                hour=now.astimezone(self.risk_timezone).hour,
                first_time_recipient=self._is_first_time_recipient(
                    account.account_number, recipient_account
                ),
            ))

            with self.storage.atomic():
                transaction = Transaction(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    sequence=self._next_sequence(),
                    transaction_type=quote.transaction_type,
                    status=TransactionStatus.PENDING,
                    from_account_ref=account.account_number,
                    to_account_ref=recipient_account,
                    requested_amount=requested,
                    requested_currency=currency,
                    exchange_rate=quote.exchange_rate,
                    settlement_amount=quote.settlement_amount,
                    fees=quote.fees,
                    reference=reference,
                    risk_score=risk.score,
                    from_account_id=account.id,
                    to_account_id=recipient.id if recipient else None,
                    recipient_name=recipient_name,
                    recipient_email=recipient_email,
                    recipient_bank=recipient_bank,
                    purpose=purpose,
                    initiated_by=account.id,
                    client_ip=client_ip,
                    user_agent=sanitize_input(user_agent),
                )
                if recipient:
                    self.ledger.transfer_atomic(account.id, recipient.id,
                                                quote.settlement_amount, reference)
                    transaction.status = TransactionStatus.COMPLETED
                    transaction.completed_at = now
                else:
                    self.ledger.debit(account.id, quote.settlement_amount, reference,
                                      SYSTEM_WITHDRAWAL)
                self.ledger.debit(account.id, quote.fees, reference, SYSTEM_FEES)
                self._save_transaction(transaction)

            new_balance = self.ledger.get_balance(account.id)

        self.audit_trail.log_event(
            AuditEventType.TRANSACTION_CREATED, "transaction", transaction.id,
            {
                "type": transaction.transaction_type,
                "status": transaction.status,
                "settlement_amount": transaction.settlement_amount,
                "fees": transaction.fees,
                "risk_score": risk.score,
                "risk_reasons": risk.reasons,
            },
            actor_id=account.id
        )
        log_transaction(logger, "Transfer initiated", transaction, "transfer",
                        account_id=account.id, client_ip=client_ip,
                        risk_level=risk.risk_level,
                        extra={"fees": str(transaction.fees), "risk_score": risk.score})
        return TransactionReceipt(transaction, new_balance)

    def _is_first_time_recipient(self, from_ref: str, to_ref: str) -> bool:
        return not self.storage.find(self.transactions_table, {
            'from_account_ref': from_ref,
            'to_account_ref': to_ref,
            'status': TransactionStatus.COMPLETED.value,
        })

    # Lifecycle

    def complete_transaction(self, transaction_id: str,
                             actor_id: Optional[str] = None) -> Transaction:
        """Mark a pending transfer as settled"""
        transaction = self.get_transaction(transaction_id)
        with self.ledger.locked(*self._lock_ids(transaction)):
            transaction = self.get_transaction(transaction_id)
            transaction.transition(TransactionStatus.COMPLETED, self.clock())
            self._save_transaction(transaction)

        self.audit_trail.log_event(
            AuditEventType.TRANSACTION_COMPLETED, "transaction", transaction.id,
            {"settlement_amount": transaction.settlement_amount}, actor_id=actor_id
        )
        log_transaction(logger, "Transaction completed", transaction, "complete")
        return transaction

    def fail_transaction(self, transaction_id: str, reason: str,
                         actor_id: Optional[str] = None) -> Transaction:
        """
        Mark a pending transfer as failed and return the debited funds

        Raises:
            InvalidTransition: If the transaction is already terminal
            InternalFailure: If the compensating credit could not be applied;
                the transaction is left pending so the failure can be retried
        """
        return self._reverse(transaction_id, TransactionStatus.FAILED,
                             AuditEventType.TRANSACTION_FAILED, reason, actor_id)

    def cancel_transaction(self, transaction_id: str,
                           reason: str = "Cancelled by account holder",
                           actor_id: Optional[str] = None) -> Transaction:
        """Cancel a pending transfer and return the debited funds"""
        return self._reverse(transaction_id, TransactionStatus.CANCELLED,
                             AuditEventType.TRANSACTION_CANCELLED, reason, actor_id)

    def _reverse(self, transaction_id: str, status: TransactionStatus,
                 event_type: AuditEventType, reason: str,
                 actor_id: Optional[str]) -> Transaction:
        transaction = self.get_transaction(transaction_id)
        with self.ledger.locked(*self._lock_ids(transaction)):
            transaction = self.get_transaction(transaction_id)
            now = self.clock()
            # Raises before any compensation if already terminal
            transaction.transition(status, now, reason)
            try:
                with self.storage.atomic():
                    self._compensate(transaction)
                    self._save_transaction(transaction)
            except Exception as exc:
                logger.critical(
                    f"Compensation failed for transaction {transaction.id}: {exc}",
                    exc_info=True
                )
                self.audit_trail.log_event(
                    AuditEventType.COMPENSATION_FAILED, "transaction", transaction.id,
                    {"target_status": status, "reason": reason, "error": str(exc)},
                    actor_id=actor_id
                )
                raise InternalFailure() from exc

        self.audit_trail.log_event(
            event_type, "transaction", transaction.id,
            {"reason": reason, "refunded": transaction.amount_debited},
            actor_id=actor_id
        )
        log_transaction(logger, f"Transaction {status.value}", transaction, status.value,
                        extra={"reason": reason})
        return transaction

    def _compensate(self, transaction: Transaction) -> None:
        account_id = transaction.from_account_id
        reference = f"Reversal {transaction.reference}"[:35]
        self.ledger.credit(account_id, transaction.settlement_amount, reference,
                           SYSTEM_WITHDRAWAL)
        if transaction.fees > 0:
            self.ledger.credit(account_id, transaction.fees, reference, SYSTEM_FEES)

    def expire_stale_transfers(self) -> List[Transaction]:
        """Fail pending transfers older than the settlement timeout"""
        cutoff = self.clock() - self.pending_timeout
        expired = []
        for data in self.storage.find(self.transactions_table,
                                      {'status': TransactionStatus.PENDING.value}):
            transaction = Transaction.from_dict(data)
            if transaction.created_at > cutoff:
                continue
            try:
                expired.append(self.fail_transaction(transaction.id, "Settlement timed out"))
            except InvalidTransition:
                logger.info(f"Transaction {transaction.id} settled before it could expire")
            except InternalFailure:
                logger.error(f"Transaction {transaction.id} left pending after failed expiry")
        return expired

    def _lock_ids(self, transaction: Transaction) -> List[str]:
        return [i for i in (transaction.from_account_id, transaction.to_account_id) if i]

    # Deposits and withdrawals

    def deposit(self, account: Account, amount: Any, reference: Optional[str] = None,
                client_ip: Optional[str] = None,
                user_agent: Optional[str] = None) -> TransactionReceipt:
        """Credit an account from outside the bank; completes immediately"""
        value = parse_amount(amount, "amount", self.limits.max_amount)
        if value > self.limits.deposit_limit:
            raise LimitExceeded(
                f"Deposit amount exceeds maximum limit of {self.limits.deposit_limit:,.2f}",
                limit=self.limits.deposit_limit
            )
        reference = (validate_reference(sanitize_input(reference)) if reference
                     else DEFAULT_DEPOSIT_REFERENCE)
        return self._deposit(account, value, reference, account.id, client_ip, user_agent)

    def parse_opening_balance(self, amount: Any) -> Decimal:
        """Validate an opening balance; nothing or zero opens an empty account"""
        if amount is None or amount == "":
            return Decimal('0.00')
        return parse_amount(amount, "initial_balance", self.limits.max_amount, allow_zero=True)

    def fund_new_account(self, account: Account, amount: Any,
                         initiated_by: Optional[str] = None) -> Optional[TransactionReceipt]:
        """Opening balance for an account that has already been created"""
        value = self.parse_opening_balance(amount)
        if value == 0:
            return None
        return self._deposit(account, value, INITIAL_DEPOSIT_REFERENCE, initiated_by)

    def credit_opening_balance(self, account: Account, value: Decimal,
                               initiated_by: Optional[str] = None) -> Transaction:
        """
        Record the opening deposit of an account that is still being created

        Runs inside the caller's ledger lock and storage transaction, so a
        failure here discards the new account too. Call log_completed once
        that unit has committed.
        """
        transaction, _ = self._record_deposit(account, value, INITIAL_DEPOSIT_REFERENCE,
                                              initiated_by)
        return transaction

    def _deposit(self, account: Account, value: Decimal, reference: str,
                 initiated_by: Optional[str], client_ip: Optional[str] = None,
                 user_agent: Optional[str] = None) -> TransactionReceipt:
        with self.ledger.locked(account.id):
            transaction, new_balance = self._record_deposit(
                account, value, reference, initiated_by, client_ip, user_agent
            )

        self.log_completed(transaction, account.id, "deposit")
        return TransactionReceipt(transaction, new_balance)

    def _record_deposit(self, account: Account, value: Decimal, reference: str,
                        initiated_by: Optional[str], client_ip: Optional[str] = None,
                        user_agent: Optional[str] = None):
        now = self.clock()
        with self.storage.atomic():
            transaction = self._external_record(
                TransactionType.DEPOSIT, SYSTEM_DEPOSIT, account.account_number,
                value, Decimal('0.00'), reference, now, initiated_by,
                client_ip, user_agent, to_account_id=account.id
            )
            new_balance = self.ledger.credit(account.id, value, reference, SYSTEM_DEPOSIT)
            self._save_transaction(transaction)
        return transaction, new_balance

    def withdraw(self, account: Account, amount: Any, reference: Optional[str] = None,
                 client_ip: Optional[str] = None,
                 user_agent: Optional[str] = None) -> TransactionReceipt:
        """
        Pay out from an account; completes immediately

        Raises:
            LimitExceeded: Above the per-withdrawal limit
            InsufficientFunds: Amount plus fee exceeds the balance
        """
        value = parse_amount(amount, "amount", self.limits.max_amount)
        if value > self.limits.withdrawal_limit:
            raise LimitExceeded(
                f"Withdrawal amount exceeds maximum limit of {self.limits.withdrawal_limit:,.2f}",
                limit=self.limits.withdrawal_limit
            )
        reference = (validate_reference(sanitize_input(reference)) if reference
                     else DEFAULT_WITHDRAWAL_REFERENCE)
        fee = withdrawal_fee(value, self.limits.withdrawal_fee_rate, self.limits.withdrawal_fee_cap)

        with self.ledger.locked(account.id):
            balance = self.ledger.get_balance(account.id)
            if value + fee > balance:
                raise InsufficientFunds(required=value + fee, available=balance)

            now = self.clock()
            with self.storage.atomic():
                transaction = self._external_record(
                    TransactionType.WITHDRAWAL, account.account_number, SYSTEM_WITHDRAWAL,
                    value, fee, reference, now, account.id, client_ip, user_agent,
                    from_account_id=account.id
                )
                new_balance = self.ledger.debit(account.id, value, reference, SYSTEM_WITHDRAWAL)
                if fee > 0:
                    new_balance = self.ledger.debit(account.id, fee, reference, SYSTEM_FEES)
                self._save_transaction(transaction)

        self.log_completed(transaction, account.id, "withdraw")
        return TransactionReceipt(transaction, new_balance)

    def _external_record(self, transaction_type: TransactionType, from_ref: str, to_ref: str,
                         value: Decimal, fee: Decimal, reference: str, now: datetime,
                         initiated_by: Optional[str], client_ip: Optional[str],
                         user_agent: Optional[str], from_account_id: Optional[str] = None,
                         to_account_id: Optional[str] = None) -> Transaction:
        risk = assess(RiskFactors(
            settlement_amount=value,
            is_international=False,
            hour=now.astimezone(self.risk_timezone).hour,
            first_time_recipient=False,
        ))
        return Transaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            sequence=self._next_sequence(),
            transaction_type=transaction_type,
            status=TransactionStatus.COMPLETED,
            from_account_ref=from_ref,
            to_account_ref=to_ref,
            requested_amount=value,
            requested_currency=SETTLEMENT_CURRENCY,
            exchange_rate=Decimal('1'),
            settlement_amount=value,
            fees=fee,
            reference=reference,
            risk_score=risk.score,
            completed_at=now,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            initiated_by=initiated_by,
            client_ip=client_ip,
            user_agent=sanitize_input(user_agent),
        )

    def log_completed(self, transaction: Transaction, account_id: str, action: str) -> None:
        """Audit and log a deposit or withdrawal after its unit has committed"""
        self.audit_trail.log_event(
            AuditEventType.TRANSACTION_COMPLETED, "transaction", transaction.id,
            {
                "type": transaction.transaction_type,
                "amount": transaction.settlement_amount,
                "fees": transaction.fees,
            },
            actor_id=transaction.initiated_by
        )
        log_transaction(logger, f"{transaction.transaction_type.value.capitalize()} completed",
                        transaction, action, account_id=account_id,
                        client_ip=transaction.client_ip,
                        extra={"fees": str(transaction.fees)})

    # Queries

    def get_transaction(self, transaction_id: str) -> Transaction:
        data = self.storage.load(self.transactions_table, transaction_id)
        if data is None:
            raise TransactionNotFound(transaction_id)
        return Transaction.from_dict(data)

    def list_for_account(self, account: Account, limit: Optional[int] = None) -> List[Transaction]:
        """Transactions sent or received by an account, most recent first"""
        found: Dict[str, Transaction] = {}
        for ref_field in ('from_account_ref', 'to_account_ref'):
            for data in self.storage.find(self.transactions_table,
                                          {ref_field: account.account_number}):
                found[data['id']] = Transaction.from_dict(data)
        return self._most_recent_first(list(found.values()), limit)

    def list_all(self, limit: Optional[int] = None) -> List[Transaction]:
        transactions = [Transaction.from_dict(d)
                        for d in self.storage.load_all(self.transactions_table)]
        return self._most_recent_first(transactions, limit)

    @staticmethod
    def _most_recent_first(transactions: List[Transaction],
                           limit: Optional[int]) -> List[Transaction]:
        transactions.sort(key=lambda t: (t.created_at, t.sequence), reverse=True)
        return transactions[:limit] if limit else transactions

    def _next_sequence(self) -> int:
        # Called inside atomic(), so the storage lock serialises numbering
        return self.storage.count(self.transactions_table) + 1

    def _save_transaction(self, transaction: Transaction) -> None:
        self.storage.save(self.transactions_table, transaction.id, transaction.to_dict())
