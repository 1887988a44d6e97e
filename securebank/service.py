"""
Banking system facade

Wires the components together and implements the token-guarded operations
exposed to callers. Typed BankingErrors pass through unchanged; anything
else is logged with its traceback and surfaced as an opaque InternalFailure.
"""

import functools
from datetime import timedelta
from decimal import Decimal
from typing import Any, List, Optional

from .accounts import AccountManager, AccountRole, AccountView
from .audit import AuditTrail
from .config import SecureBankConfig, get_config
from .credentials import CredentialStore
from .errors import BankingError, Forbidden, InternalFailure, InvalidSession, ValidationError
from .ledger import AccountLedger
from .locks import AccountLocks
from .logging_config import get_logger, log_action
from .rate_limit import FixedWindowRateLimiter
from .sessions import AuthResult, LockoutPolicy, SessionManager
from .storage import Clock, StorageInterface, create_storage, utc_now
from .transactions import (
    Transaction, TransactionLimits, TransactionProcessor, TransactionReceipt,
    TransferQuote, TransferRequest,
)
from .validation import sanitize_input


logger = get_logger("securebank.service")

DEFAULT_FAILURE_REASON = "Settlement failed"


def guarded(method):
    """Let typed errors through; log and mask everything else"""
    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        try:
            return method(self, *args, **kwargs)
        except BankingError:
            raise
        except Exception:
            logger.exception(f"Unexpected error in {method.__name__}")
            raise InternalFailure()
    return wrapper


class BankingSystem:
    """Core banking system with all components initialized"""

    def __init__(self, config: Optional[SecureBankConfig] = None,
                 storage: Optional[StorageInterface] = None,
                 clock: Optional[Clock] = None):
        self.config = config or get_config()
        self.clock = clock or utc_now
        self.storage = storage or create_storage(self.config.database_url)

        self.audit_trail = AuditTrail(self.storage, clock=self.clock)
        self.ledger_locks = AccountLocks(timeout=self.config.lock_timeout_seconds)
        self.auth_locks = AccountLocks(timeout=self.config.lock_timeout_seconds)
        self.ledger = AccountLedger(self.storage, self.ledger_locks, clock=self.clock)
        self.credentials = CredentialStore(
            self.storage, self.config.password_hash_iterations, clock=self.clock
        )
        self.account_manager = AccountManager(
            self.storage, self.audit_trail, self.ledger, self.credentials,
            clock=self.clock, password_min_length=self.config.password_min_length
        )
        self.login_limiter = FixedWindowRateLimiter("login", self.clock)
        self.transfer_limiter = FixedWindowRateLimiter("transfer", self.clock)
        self.session_manager = SessionManager(
            self.storage, self.audit_trail, self.account_manager, self.credentials,
            self.login_limiter,
            secret=self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            policy=LockoutPolicy(
                max_failed_attempts=self.config.max_failed_login_attempts,
                lockout_duration=timedelta(minutes=self.config.lockout_minutes),
                rate_limit_attempts=self.config.login_rate_limit_attempts,
                rate_limit_window=timedelta(minutes=self.config.login_rate_limit_window_minutes),
                session_ttl=timedelta(hours=self.config.session_ttl_hours),
            ),
            locks=self.auth_locks,
            clock=self.clock,
        )
        self.transaction_processor = TransactionProcessor(
            self.storage, self.audit_trail, self.ledger, self.account_manager,
            limits=TransactionLimits(
                max_amount=Decimal(self.config.max_transaction_amount),
                transfer_limit=Decimal(self.config.transfer_limit),
                deposit_limit=Decimal(self.config.deposit_limit),
                withdrawal_limit=Decimal(self.config.withdrawal_limit),
                withdrawal_fee_rate=Decimal(self.config.withdrawal_fee_rate),
                withdrawal_fee_cap=Decimal(self.config.withdrawal_fee_cap),
            ),
            velocity_limiter=self.transfer_limiter,
            velocity_max=self.config.transfer_velocity_max,
            velocity_window=timedelta(minutes=self.config.transfer_velocity_window_minutes),
            internal_bank_code=self.config.internal_bank_code,
            risk_timezone=self.config.risk_timezone,
            pending_timeout=timedelta(hours=self.config.pending_transfer_timeout_hours),
            clock=self.clock,
        )

    # Session operations

    @guarded
    def login(self, identifier: str, password: str, client_ip: Optional[str] = None,
              user_agent: Optional[str] = None) -> AuthResult:
        return self.session_manager.authenticate(identifier, password, client_ip, user_agent)

    @guarded
    def logout(self, token: str) -> bool:
        revoked = self.session_manager.revoke(token)
        if revoked:
            logger.info("Session revoked on logout")
        return revoked

    @guarded
    def verify_session(self, token: str) -> AccountView:
        _, account = self._authorize(token)
        return self.account_manager.view(account)

    # Customer operations

    @guarded
    def transfer(self, token: str, request: TransferRequest,
                 client_ip: Optional[str] = None,
                 user_agent: Optional[str] = None) -> TransactionReceipt:
        _, account = self._authorize(token)
        return self.transaction_processor.initiate_transfer(account, request,
                                                            client_ip, user_agent)

    @guarded
    def quote_transfer(self, token: str, amount: Any, currency: str = "ZAR",
                       exchange_rate: Optional[Any] = None) -> TransferQuote:
        self._authorize(token)
        return self.transaction_processor.quote_transfer(amount, currency, exchange_rate)

    @guarded
    def deposit(self, token: str, amount: Any, reference: Optional[str] = None,
                client_ip: Optional[str] = None,
                user_agent: Optional[str] = None) -> TransactionReceipt:
        _, account = self._authorize(token)
        return self.transaction_processor.deposit(account, amount, reference,
                                                  client_ip, user_agent)

    @guarded
    def withdraw(self, token: str, amount: Any, reference: Optional[str] = None,
                 client_ip: Optional[str] = None,
                 user_agent: Optional[str] = None) -> TransactionReceipt:
        _, account = self._authorize(token)
        return self.transaction_processor.withdraw(account, amount, reference,
                                                   client_ip, user_agent)

    @guarded
    def list_transactions(self, token: str, limit: Optional[int] = None) -> List[Transaction]:
        _, account = self._authorize(token)
        return self.transaction_processor.list_for_account(account, limit)

    @guarded
    def cancel_transfer(self, token: str, transaction_id: str) -> Transaction:
        """Cancel one of the caller's own pending transfers"""
        _, account = self._authorize(token)
        transaction = self.transaction_processor.get_transaction(transaction_id)
        if transaction.from_account_id != account.id:
            raise Forbidden("Transaction does not belong to this account")
        return self.transaction_processor.cancel_transaction(transaction_id, actor_id=account.id)

    # Admin operations

    @guarded
    def admin_list_users(self, token: str) -> List[AccountView]:
        self._authorize(token, admin=True)
        return [self.account_manager.view(a) for a in self.account_manager.list_accounts()]

    @guarded
    def admin_list_transactions(self, token: str, limit: Optional[int] = None) -> List[Transaction]:
        self._authorize(token, admin=True)
        return self.transaction_processor.list_all(limit)

    @guarded
    def admin_create_user(self, token: str, email: str, password: str, first_name: str,
                          last_name: str, role: str = "customer",
                          initial_balance: Optional[Any] = None) -> AccountView:
        _, admin = self._authorize(token, admin=True)
        return self._provision(email, password, first_name, last_name, role,
                               initial_balance, created_by=admin.id)

    @guarded
    def admin_toggle_user_status(self, token: str, account_id: str,
                                 is_active: Optional[bool] = None) -> AccountView:
        """
        Activate or deactivate an account; flips the current state when
        ``is_active`` is not given. Deactivation revokes every open session.
        """
        _, admin = self._authorize(token, admin=True)
        if account_id == admin.id:
            raise ValidationError("account_id", "Administrators cannot change their own status")

        target = self.account_manager.require_account(account_id)
        new_state = (not target.is_active) if is_active is None else is_active
        account = self.account_manager.set_active(account_id, new_state, changed_by=admin.id)
        if not new_state:
            revoked = self.session_manager.revoke_all(account_id)
            log_action(logger, "info", "Account deactivated", account_id=account_id,
                       action="deactivate", resource="account",
                       extra={"sessions_revoked": revoked, "changed_by": admin.id})
        return self.account_manager.view(account)

    @guarded
    def admin_complete_transaction(self, token: str, transaction_id: str) -> Transaction:
        """Record that a pending transfer has settled with the receiving bank"""
        _, admin = self._authorize(token, admin=True)
        return self.transaction_processor.complete_transaction(transaction_id, actor_id=admin.id)

    @guarded
    def admin_fail_transaction(self, token: str, transaction_id: str,
                               reason: Optional[str] = None) -> Transaction:
        """Record a settlement failure; the sender's funds and fee are returned"""
        _, admin = self._authorize(token, admin=True)
        reason = sanitize_input(reason) if reason else None
        return self.transaction_processor.fail_transaction(
            transaction_id, reason or DEFAULT_FAILURE_REASON, actor_id=admin.id
        )

    @guarded
    def admin_run_maintenance(self, token: str) -> dict:
        self._authorize(token, admin=True)
        return self.run_maintenance()

    # Provisioning and maintenance

    def bootstrap_admin(self) -> Optional[AccountView]:
        """Create the configured administrator if it does not exist yet"""
        email, password = self.config.admin_email, self.config.admin_password
        if not email or not password:
            return None
        existing = self.account_manager.get_account_by_email(email)
        if existing:
            return self.account_manager.view(existing)
        logger.info("Creating bootstrap administrator account")
        return self._provision(email, password, "System", "Administrator", "admin", None)

    def _provision(self, email: str, password: str, first_name: str, last_name: str,
                   role: str, initial_balance: Optional[Any],
                   created_by: Optional[str] = None) -> AccountView:
        try:
            account_role = AccountRole(role)
        except ValueError:
            raise ValidationError("role", "Role must be 'admin' or 'customer'")
        opening_balance = self.transaction_processor.parse_opening_balance(initial_balance)

        funded: List[Transaction] = []

        def fund(account):
            if opening_balance > 0:
                funded.append(self.transaction_processor.credit_opening_balance(
                    account, opening_balance, created_by
                ))

        account = self.account_manager.create_account(
            email, password, first_name, last_name, account_role, created_by,
            on_created=fund
        )
        for transaction in funded:
            self.transaction_processor.log_completed(transaction, account.id, "deposit")
        return self.account_manager.view(account)

    def run_maintenance(self) -> dict:
        """Expire stale sessions and pending transfers, drop old rate-limit windows"""
        return {
            'sessions_expired': self.session_manager.cleanup_expired(),
            'transfers_expired': len(self.transaction_processor.expire_stale_transfers()),
            'rate_limit_windows_purged': (self.login_limiter.purge_expired()
                                          + self.transfer_limiter.purge_expired()),
        }

    def _authorize(self, token: Optional[str], admin: bool = False):
        resolved = self.session_manager.resolve(token)
        if resolved is None:
            raise InvalidSession()
        session, account = resolved
        if admin and account.role != AccountRole.ADMIN:
            log_action(logger, "warning", "Non-admin attempted admin operation",
                       account_id=account.id, action="admin", resource="account")
            raise Forbidden()
        return session, account

    def close(self) -> None:
        self.storage.close()
