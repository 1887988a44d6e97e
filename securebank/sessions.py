"""
Session Manager

Issues, validates and revokes bearer session tokens. A token is an
HS256-signed JWT naming a server-side session row; the row is authoritative
for expiry and revocation, and stores only a SHA-256 digest of the token.

Session states: ACTIVE -> EXPIRED, ACTIVE -> REVOKED. There are no
transitions out of EXPIRED or REVOKED, and expiry never slides.
"""

import hashlib
import hmac
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Optional, Tuple

import jwt

from .accounts import Account, AccountManager, AccountView
from .audit import AuditTrail, AuditEventType
from .credentials import CredentialStore
from .errors import AccountInactive, AccountLocked, InvalidCredentials, RateLimited
from .locks import AccountLocks
from .logging_config import get_logger, log_action
from .rate_limit import FixedWindowRateLimiter
from .storage import Clock, StorageInterface, StorageRecord, parse_datetime, utc_now
from .validation import sanitize_input


logger = get_logger("securebank.sessions")


class SessionState(Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


@dataclass
class Session(StorageRecord):
    """Server-side session; ``created_at`` is the issue time"""
    account_id: str
    token_hash: str
    expires_at: datetime
    state: SessionState = SessionState.ACTIVE
    revoked_at: Optional[datetime] = None
    client_ip: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def issued_at(self) -> datetime:
        return self.created_at

    def is_valid(self, now: datetime) -> bool:
        return self.state == SessionState.ACTIVE and self.expires_at > now


@dataclass
class LockoutPolicy:
    """Login throttling and session lifetime settings"""
    max_failed_attempts: int = 5
    lockout_duration: timedelta = timedelta(minutes=15)
    rate_limit_attempts: int = 10
    rate_limit_window: timedelta = timedelta(minutes=15)
    session_ttl: timedelta = timedelta(hours=24)


@dataclass
class AuthResult:
    token: str
    account: AccountView
    expires_at: datetime
    session_id: str

    def to_dict(self) -> Dict:
        return {
            'token': self.token,
            'user': self.account.to_dict(),
            'expires_at': self.expires_at.isoformat(),
        }


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode('utf-8')).hexdigest()


class SessionManager:
    """Authenticates account holders and manages their sessions"""

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        accounts: AccountManager,
        credentials: CredentialStore,
        rate_limiter: FixedWindowRateLimiter,
        secret: str,
        algorithm: str = "HS256",
        policy: Optional[LockoutPolicy] = None,
        locks: Optional[AccountLocks] = None,
        clock: Optional[Clock] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.accounts = accounts
        self.credentials = credentials
        self.rate_limiter = rate_limiter
        self.secret = secret
        self.algorithm = algorithm
        self.policy = policy or LockoutPolicy()
        self.locks = locks or AccountLocks()
        self.clock = clock or utc_now
        self.sessions_table = "sessions"

    def authenticate(self, identifier: str, password: str,
                     client_ip: Optional[str] = None,
                     user_agent: Optional[str] = None) -> AuthResult:
        """
        Verify credentials and open a new session

        The client's rate limit is checked before any credential work. Failed
        password attempts are counted per account, and reaching the policy
        threshold locks the account for the lockout duration.

        Raises:
            RateLimited: Too many attempts from this client
            InvalidCredentials: Unknown identifier or wrong password
            AccountInactive: Account has been deactivated
            AccountLocked: Account is inside a lockout window
        """
        rate_key = client_ip or "unknown"
        if not self.rate_limiter.allow(rate_key, self.policy.rate_limit_attempts,
                                       self.policy.rate_limit_window):
            retry_after = self.rate_limiter.retry_after(rate_key)
            log_action(logger, "warning", "Login rate limit exceeded",
                       action="login", resource="session", client_ip=client_ip,
                       extra={"retry_after": retry_after})
            self.audit_trail.log_event(
                AuditEventType.LOGIN_RATE_LIMITED, "client", rate_key,
                {"retry_after": retry_after}
            )
            raise RateLimited(retry_after=retry_after)

        found = self.accounts.find_by_identifier(sanitize_input(identifier or ""))
        if found is None:
            self.credentials.check_unknown(password)
            log_action(logger, "info", "Login failed: unknown identifier",
                       action="login", resource="session", client_ip=client_ip)
            raise InvalidCredentials()

        with self.locks.acquire(found.id):
            account = self.accounts.require_account(found.id)
            now = self.clock()

            if not account.is_active:
                self.accounts.record_login_attempt(account.id, False, client_ip,
                                                   user_agent, "inactive")
                raise AccountInactive()

            if account.is_locked(now):
                self.accounts.record_login_attempt(account.id, False, client_ip,
                                                   user_agent, "locked")
                raise AccountLocked(account.locked_until)

            if account.locked_until is not None:
                # Lockout window has passed; start counting afresh
                account.locked_until = None
                account.failed_login_attempts = 0

            if not self.credentials.check(account.id, password):
                self._register_failure(account, now, client_ip, user_agent)

            session, token = self._open_session(account, now, client_ip, user_agent)

        self.audit_trail.log_event(
            AuditEventType.LOGIN_SUCCESS, "account", account.id,
            {"session_id": session.id, "client_ip": client_ip},
            actor_id=account.id
        )
        log_action(logger, "info", "Login succeeded", account_id=account.id,
                   action="login", resource="session", client_ip=client_ip)
        return AuthResult(
            token=token,
            account=self.accounts.view(account),
            expires_at=session.expires_at,
            session_id=session.id,
        )

    def _register_failure(self, account: Account, now: datetime,
                          client_ip: Optional[str], user_agent: Optional[str]) -> None:
        account.failed_login_attempts += 1
        remaining = max(0, self.policy.max_failed_attempts - account.failed_login_attempts)
        locked = account.failed_login_attempts >= self.policy.max_failed_attempts
        if locked:
            account.locked_until = now + self.policy.lockout_duration

        with self.storage.atomic():
            self.accounts.save(account)
            self.accounts.record_login_attempt(account.id, False, client_ip,
                                               user_agent, "invalid_password")

        self.audit_trail.log_event(
            AuditEventType.LOGIN_FAILED, "account", account.id,
            {"failed_attempts": account.failed_login_attempts, "client_ip": client_ip}
        )
        if locked:
            self.audit_trail.log_event(
                AuditEventType.ACCOUNT_LOCKED, "account", account.id,
                {"locked_until": account.locked_until}
            )
            log_action(logger, "warning", "Account locked after repeated failures",
                       account_id=account.id, action="lock_account", resource="account",
                       extra={"locked_until": account.locked_until.isoformat()})

        raise InvalidCredentials(
            f"Invalid credentials. {remaining} attempts remaining.",
            remaining_attempts=remaining
        )

    def _open_session(self, account: Account, now: datetime, client_ip: Optional[str],
                      user_agent: Optional[str]) -> Tuple[Session, str]:
        account.failed_login_attempts = 0
        account.locked_until = None
        account.last_login = now

        session_id = str(uuid.uuid4())
        expires_at = now + self.policy.session_ttl
        token = jwt.encode(
            {
                "sub": account.id,
                "sid": session_id,
                "iat": int(now.timestamp()),
                "exp": int(expires_at.timestamp()),
            },
            self.secret,
            algorithm=self.algorithm,
        )
        session = Session(
            id=session_id,
            created_at=now,
            updated_at=now,
            account_id=account.id,
            token_hash=hash_token(token),
            expires_at=expires_at,
            client_ip=client_ip,
            user_agent=sanitize_input(user_agent),
        )

        with self.storage.atomic():
            self.accounts.save(account)
            self._save_session(session)
            self.accounts.record_login_attempt(account.id, True, client_ip, user_agent)
        return session, token

    def resolve(self, token: Optional[str]) -> Optional[Tuple[Session, Account]]:
        """
        Find the live session and owning account for a token

        Returns None when the token is missing, forged, expired or revoked,
        or when the owner has been deactivated. An expired session is marked
        EXPIRED on the way out.
        """
        session = self._load_for_token(token)
        if session is None or session.state != SessionState.ACTIVE:
            return None

        now = self.clock()
        if session.expires_at <= now:
            session.state = SessionState.EXPIRED
            session.updated_at = now
            self._save_session(session)
            logger.debug(f"Session {session.id} expired")
            return None

        account = self.accounts.get_account(session.account_id)
        if account is None or not account.is_active:
            return None
        return session, account

    def validate(self, token: Optional[str]) -> Optional[AccountView]:
        """Safe account view for a valid token, else None"""
        resolved = self.resolve(token)
        if resolved is None:
            return None
        return self.accounts.view(resolved[1])

    def revoke(self, token: Optional[str]) -> bool:
        """
        Revoke the session behind a token

        Returns True when an active session was revoked, False when the token
        is unknown or its session is already expired or revoked.
        """
        session = self._load_for_token(token)
        if session is None or session.state != SessionState.ACTIVE:
            return False
        self._revoke(session)
        return True

    def revoke_all(self, account_id: str) -> int:
        """Revoke every active session of an account; returns how many"""
        revoked = 0
        for session in self.get_sessions(account_id):
            if session.state == SessionState.ACTIVE:
                self._revoke(session)
                revoked += 1
        return revoked

    def cleanup_expired(self) -> int:
        """Mark every active session past its expiry as EXPIRED; returns how many"""
        now = self.clock()
        expired = 0
        for data in self.storage.find(self.sessions_table, {'state': SessionState.ACTIVE.value}):
            session = self._session_from_dict(data)
            if session.expires_at <= now:
                session.state = SessionState.EXPIRED
                session.updated_at = now
                self._save_session(session)
                expired += 1
        if expired:
            logger.info(f"Expired {expired} stale sessions")
        return expired

    def get_sessions(self, account_id: str) -> List[Session]:
        sessions = [
            self._session_from_dict(d)
            for d in self.storage.find(self.sessions_table, {'account_id': account_id})
        ]
        sessions.sort(key=lambda s: s.created_at)
        return sessions

    def _revoke(self, session: Session) -> None:
        now = self.clock()
        session.state = SessionState.REVOKED
        session.revoked_at = now
        session.updated_at = now
        self._save_session(session)
        self.audit_trail.log_event(
            AuditEventType.SESSION_REVOKED, "session", session.id,
            {"account_id": session.account_id}, actor_id=session.account_id
        )

    def _load_for_token(self, token: Optional[str]) -> Optional[Session]:
        if not token:
            return None
        try:
            # Expiry is enforced against the session row with the injected clock
            claims = jwt.decode(
                token, self.secret, algorithms=[self.algorithm],
                options={"verify_exp": False, "verify_iat": False}
            )
        except jwt.InvalidTokenError:
            return None

        session_id = claims.get("sid")
        if not isinstance(session_id, str):
            return None
        data = self.storage.load(self.sessions_table, session_id)
        if data is None:
            return None
        session = self._session_from_dict(data)
        if not hmac.compare_digest(session.token_hash, hash_token(token)):
            return None
        if claims.get("sub") != session.account_id:
            return None
        return session

    def _save_session(self, session: Session) -> None:
        data = session.to_dict()
        data['state'] = session.state.value
        self.storage.save(self.sessions_table, session.id, data)

    def _session_from_dict(self, data: Dict) -> Session:
        return Session(
            id=data['id'],
            created_at=parse_datetime(data['created_at']),
            updated_at=parse_datetime(data['updated_at']),
            account_id=data['account_id'],
            token_hash=data['token_hash'],
            expires_at=parse_datetime(data['expires_at']),
            state=SessionState(data['state']),
            revoked_at=parse_datetime(data.get('revoked_at')),
            client_ip=data.get('client_ip'),
            user_agent=data.get('user_agent'),
        )
