"""
Account Management Module

Provisions customer and administrator accounts, looks them up by email or
account number, and keeps the login bookkeeping (failed attempts, lockout,
login history). Balances are not stored here; they belong to the ledger.
"""

import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .audit import AuditTrail, AuditEventType
from .credentials import CredentialStore
from .errors import AccountNotFound, ValidationError
from .ledger import AccountLedger
from .logging_config import get_logger, log_action
from .storage import Clock, StorageInterface, StorageRecord, parse_datetime, utc_now
from .validation import (
    ACCOUNT_NUMBER_PATTERN, sanitize_input, validate_email, validate_name,
    validate_password_strength,
)


logger = get_logger("securebank.accounts")

ACCOUNT_NUMBER_PREFIX = "62"
LOGIN_HISTORY_LIMIT = 10


class AccountRole(Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"


@dataclass
class Account(StorageRecord):
    """Account holder record; soft-deactivated, never deleted"""
    account_number: str
    email: str
    first_name: str
    last_name: str
    role: AccountRole = AccountRole.CUSTOMER
    is_active: bool = True
    failed_login_attempts: int = 0
    locked_until: Optional[datetime] = None
    last_login: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def is_admin(self) -> bool:
        return self.role == AccountRole.ADMIN

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now


@dataclass
class AccountView:
    """Account data safe to return to callers: no credential or session fields"""
    id: str
    account_number: str
    email: str
    first_name: str
    last_name: str
    role: AccountRole
    is_active: bool
    balance: Decimal
    currency: str
    last_login: Optional[datetime]
    created_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'account_number': self.account_number,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'role': self.role.value,
            'is_active': self.is_active,
            'balance': str(self.balance),
            'currency': self.currency,
            'last_login': self.last_login.isoformat() if self.last_login else None,
            'created_at': self.created_at.isoformat(),
        }


@dataclass
class LoginAttempt(StorageRecord):
    account_id: str
    success: bool
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None
    reason: Optional[str] = None


class AccountManager:
    """Creates accounts and maintains their authentication bookkeeping"""

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        ledger: AccountLedger,
        credentials: CredentialStore,
        clock: Optional[Clock] = None,
        password_min_length: int = 8
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.ledger = ledger
        self.credentials = credentials
        self.clock = clock or utc_now
        self.password_min_length = password_min_length
        self.accounts_table = "accounts"
        self.history_table = "login_history"

    def create_account(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role: AccountRole = AccountRole.CUSTOMER,
        created_by: Optional[str] = None,
        on_created: Optional[Callable[[Account], Any]] = None
    ) -> Account:
        """
        Create a new account with credentials and an empty ledger balance

        Args:
            email: Login identifier, unique across accounts
            password: Plaintext password, checked for strength then hashed
            first_name: Holder's first name
            last_name: Holder's last name
            role: Admin or customer
            created_by: Account id of the administrator provisioning it
            on_created: Called with the new account under its ledger lock and
                inside the creating storage transaction; if it raises, the
                account is not created

        Returns:
            Created Account object

        Raises:
            ValidationError: On malformed fields, weak password or duplicate email
        """
        email = validate_email(sanitize_input(email))
        first_name = validate_name(sanitize_input(first_name), "first_name")
        last_name = validate_name(sanitize_input(last_name), "last_name")

        valid, problems = validate_password_strength(password, self.password_min_length)
        if not valid:
            raise ValidationError("password", "; ".join(problems))

        now = self.clock()
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_number="",
            email=email,
            first_name=first_name,
            last_name=last_name,
            role=role,
        )

        # KDF runs before the storage lock is taken
        password_hash, salt = self.credentials.hash_password(password)

        with self.ledger.locked(account.id):
            with self.storage.atomic():
                if self.get_account_by_email(email):
                    raise ValidationError("email", "User with this email already exists")
                account.account_number = self._generate_account_number()
                self._save_account(account)
                self.credentials.store_hash(account.id, password_hash, salt)
                self.ledger.open_account(account.id)
                if on_created:
                    on_created(account)

        self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=account.id,
            metadata={
                "account_number": account.account_number,
                "email": email,
                "role": role.value,
            },
            actor_id=created_by
        )
        log_action(logger, "info", "Account created", account_id=account.id,
                   action="create_account", resource="account",
                   extra={"account_number": account.account_number, "role": role.value})
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        data = self.storage.load(self.accounts_table, account_id)
        if data:
            return self._account_from_dict(data)
        return None

    def require_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if account is None:
            raise AccountNotFound(account_id)
        return account

    def get_account_by_email(self, email: str) -> Optional[Account]:
        matches = self.storage.find(self.accounts_table, {'email': email.strip().lower()})
        return self._account_from_dict(matches[0]) if matches else None

    def get_account_by_number(self, account_number: str) -> Optional[Account]:
        matches = self.storage.find(self.accounts_table, {'account_number': account_number})
        return self._account_from_dict(matches[0]) if matches else None

    def find_by_identifier(self, identifier: str) -> Optional[Account]:
        """Look up by email, or by account number when the identifier is 10 digits"""
        if not identifier:
            return None
        identifier = identifier.strip()
        if ACCOUNT_NUMBER_PATTERN.match(identifier):
            return self.get_account_by_number(identifier)
        return self.get_account_by_email(identifier)

    def list_accounts(self) -> List[Account]:
        accounts = [self._account_from_dict(d) for d in self.storage.load_all(self.accounts_table)]
        accounts.sort(key=lambda a: a.created_at, reverse=True)
        return accounts

    def set_active(self, account_id: str, is_active: bool,
                   changed_by: Optional[str] = None) -> Account:
        """Activate or deactivate an account"""
        account = self.require_account(account_id)
        account.is_active = is_active
        account.updated_at = self.clock()
        self._save_account(account)

        self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_ACTIVATED if is_active
            else AuditEventType.ACCOUNT_DEACTIVATED,
            entity_type="account",
            entity_id=account_id,
            metadata={"is_active": is_active},
            actor_id=changed_by
        )
        return account

    def save(self, account: Account) -> None:
        account.updated_at = self.clock()
        self._save_account(account)

    def view(self, account: Account) -> AccountView:
        """Build the safe, balance-bearing view of an account"""
        return AccountView(
            id=account.id,
            account_number=account.account_number,
            email=account.email,
            first_name=account.first_name,
            last_name=account.last_name,
            role=account.role,
            is_active=account.is_active,
            balance=self.ledger.get_balance(account.id),
            currency=self.ledger.currency.code,
            last_login=account.last_login,
            created_at=account.created_at,
        )

    # Login history

    def record_login_attempt(self, account_id: str, success: bool,
                             client_ip: Optional[str] = None,
                             user_agent: Optional[str] = None,
                             reason: Optional[str] = None) -> LoginAttempt:
        """Append a login attempt and prune the account's history to the latest entries"""
        now = self.clock()
        attempt = LoginAttempt(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=account_id,
            success=success,
            client_ip=client_ip,
            user_agent=sanitize_input(user_agent),
            reason=reason,
        )
        self.storage.save(self.history_table, attempt.id, attempt.to_dict())

        history = self.storage.find(self.history_table, {'account_id': account_id})
        history.sort(key=lambda h: h['created_at'], reverse=True)
        for stale in history[LOGIN_HISTORY_LIMIT:]:
            self.storage.delete(self.history_table, stale['id'])
        return attempt

    def get_login_history(self, account_id: str,
                          limit: int = LOGIN_HISTORY_LIMIT) -> List[LoginAttempt]:
        """Most recent login attempts first"""
        history = [
            LoginAttempt.from_dict(d)
            for d in self.storage.find(self.history_table, {'account_id': account_id})
        ]
        history.sort(key=lambda h: h.created_at, reverse=True)
        return history[:limit]

    def _generate_account_number(self) -> str:
        """Generate a unique 10-digit account number"""
        while True:
            candidate = f"{ACCOUNT_NUMBER_PREFIX}{secrets.randbelow(10 ** 8):08d}"
            if not self.storage.find(self.accounts_table, {'account_number': candidate}):
                return candidate

    def _save_account(self, account: Account) -> None:
        self.storage.save(self.accounts_table, account.id, self._account_to_dict(account))

    def _account_to_dict(self, account: Account) -> Dict:
        result = account.to_dict()
        result['role'] = account.role.value
        return result

    def _account_from_dict(self, data: Dict) -> Account:
        return Account(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            account_number=data['account_number'],
            email=data['email'],
            first_name=data['first_name'],
            last_name=data['last_name'],
            role=AccountRole(data.get('role', AccountRole.CUSTOMER.value)),
            is_active=data.get('is_active', True),
            failed_login_attempts=data.get('failed_login_attempts', 0),
            locked_until=parse_datetime(data.get('locked_until')),
            last_login=parse_datetime(data.get('last_login')),
        )
