"""
Tests for authentication, lockout and session lifecycle
"""

import threading
from decimal import Decimal

import jwt
import pytest

from securebank.audit import AuditEventType
from securebank.errors import (
    AccountInactive, AccountLocked, InvalidCredentials, RateLimited,
)
from securebank.sessions import SessionState, hash_token

from helpers import FakeClock, STRONG_PASSWORD, TEST_SECRET, build_system, create_customer


class TestAuthentication:
    """Test login, failed-attempt counting and lockout"""

    def setup_method(self):
        self.clock = FakeClock()
        self.system = build_system(self.clock)
        self.sessions = self.system.session_manager
        self.account = create_customer(self.system, balance="100.00")

    def test_login_by_email(self):
        result = self.sessions.authenticate("alice@example.com", STRONG_PASSWORD, "10.0.0.1")
        assert result.account.id == self.account.id
        assert result.account.balance == Decimal("100.00")
        assert result.expires_at == self.clock.now + self.sessions.policy.session_ttl
        assert self.sessions.validate(result.token).id == self.account.id

    def test_login_by_account_number(self):
        result = self.sessions.authenticate(self.account.account_number, STRONG_PASSWORD)
        assert result.account.account_number == self.account.account_number

    def test_unknown_identifier(self):
        with pytest.raises(InvalidCredentials):
            self.sessions.authenticate("nobody@example.com", STRONG_PASSWORD)

    def test_unknown_identifier_does_the_same_hashing_work(self, monkeypatch):
        """Unknown and known identifiers both run one password verification"""
        verified = []
        original_verify = self.system.credentials.verify

        def counting_verify(plaintext, *args, **kwargs):
            verified.append(plaintext)
            return original_verify(plaintext, *args, **kwargs)

        monkeypatch.setattr(self.system.credentials, "verify", counting_verify)
        with pytest.raises(InvalidCredentials):
            self.sessions.authenticate("nobody@example.com", "Wr0ng@Pass1")
        with pytest.raises(InvalidCredentials):
            self.sessions.authenticate("alice@example.com", "Wr0ng@Pass1")
        assert verified == ["Wr0ng@Pass1", "Wr0ng@Pass1"]

    def test_decoy_credential_never_verifies(self):
        assert not self.system.credentials.check_unknown(STRONG_PASSWORD)
        assert not self.system.credentials.check_unknown("")

    def test_wrong_password_reports_remaining_attempts(self):
        with pytest.raises(InvalidCredentials, match="4 attempts remaining") as exc_info:
            self.sessions.authenticate("alice@example.com", "Wr0ng@Pass1")
        assert exc_info.value.remaining_attempts == 4

    def test_lockout_after_five_failures(self):
        """The fifth failure locks the account; the right password is then refused"""
        remaining = []
        for _ in range(5):
            with pytest.raises(InvalidCredentials) as exc_info:
                self.sessions.authenticate("alice@example.com", "Wr0ng@Pass1")
            remaining.append(exc_info.value.remaining_attempts)
        assert remaining == [4, 3, 2, 1, 0]

        with pytest.raises(AccountLocked) as exc_info:
            self.sessions.authenticate("alice@example.com", STRONG_PASSWORD)
        assert exc_info.value.locked_until == self.clock.now + self.sessions.policy.lockout_duration

        locked = self.system.audit_trail.get_events_by_type(AuditEventType.ACCOUNT_LOCKED)
        assert len(locked) == 1

    def test_lockout_expires(self):
        """After the lockout window the counter starts afresh"""
        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                self.sessions.authenticate("alice@example.com", "Wr0ng@Pass1")

        self.clock.advance(minutes=16)
        self.sessions.authenticate("alice@example.com", STRONG_PASSWORD)

        account = self.system.account_manager.get_account(self.account.id)
        assert account.failed_login_attempts == 0
        assert account.locked_until is None
        assert account.last_login == self.clock.now

    def test_failure_count_resets_after_expired_lock(self):
        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                self.sessions.authenticate("alice@example.com", "Wr0ng@Pass1")
        self.clock.advance(minutes=16)

        with pytest.raises(InvalidCredentials) as exc_info:
            self.sessions.authenticate("alice@example.com", "Wr0ng@Pass1")
        assert exc_info.value.remaining_attempts == 4

    def test_success_resets_failures(self):
        for _ in range(3):
            with pytest.raises(InvalidCredentials):
                self.sessions.authenticate("alice@example.com", "Wr0ng@Pass1")
        self.sessions.authenticate("alice@example.com", STRONG_PASSWORD)
        assert self.system.account_manager.get_account(self.account.id).failed_login_attempts == 0

    def test_inactive_account(self):
        self.system.account_manager.set_active(self.account.id, False)
        with pytest.raises(AccountInactive):
            self.sessions.authenticate("alice@example.com", STRONG_PASSWORD)

    def test_login_history_recorded(self):
        with pytest.raises(InvalidCredentials):
            self.sessions.authenticate("alice@example.com", "Wr0ng@Pass1", "10.0.0.1")
        self.clock.advance(seconds=1)
        self.sessions.authenticate("alice@example.com", STRONG_PASSWORD, "10.0.0.1", "pytest")

        history = self.system.account_manager.get_login_history(self.account.id)
        assert [h.success for h in history] == [True, False]
        assert history[1].reason == "invalid_password"
        assert history[0].user_agent == "pytest"


class TestConcurrentFailures:
    def test_simultaneous_failures_are_all_counted(self):
        """Five racing wrong-password attempts leave a count of five and a lock"""
        clock = FakeClock()
        system = build_system(clock)
        account = create_customer(system)
        remaining = []
        barrier = threading.Barrier(5)

        def attempt():
            barrier.wait()
            try:
                system.session_manager.authenticate("alice@example.com", "Wr0ng@Pass1",
                                                    "10.0.0.1")
            except InvalidCredentials as exc:
                remaining.append(exc.remaining_attempts)

        threads = [threading.Thread(target=attempt) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert sorted(remaining) == [0, 1, 2, 3, 4]
        stored = system.account_manager.get_account(account.id)
        assert stored.failed_login_attempts == 5
        assert stored.locked_until == clock.now + system.session_manager.policy.lockout_duration


class TestLoginRateLimit:
    """Test per-client throttling ahead of credential checks"""

    def setup_method(self):
        self.clock = FakeClock()
        self.system = build_system(self.clock, login_rate_limit_attempts=3)
        self.sessions = self.system.session_manager
        create_customer(self.system)

    def test_rate_limited_after_threshold(self):
        for _ in range(3):
            self.sessions.authenticate("alice@example.com", STRONG_PASSWORD, "10.0.0.1")

        with pytest.raises(RateLimited) as exc_info:
            self.sessions.authenticate("alice@example.com", STRONG_PASSWORD, "10.0.0.1")
        assert exc_info.value.retry_after == 15 * 60

    def test_other_clients_unaffected(self):
        for _ in range(3):
            self.sessions.authenticate("alice@example.com", STRONG_PASSWORD, "10.0.0.1")
        self.sessions.authenticate("alice@example.com", STRONG_PASSWORD, "10.0.0.2")

    def test_window_resets(self):
        for _ in range(3):
            self.sessions.authenticate("alice@example.com", STRONG_PASSWORD, "10.0.0.1")
        self.clock.advance(minutes=15)
        self.sessions.authenticate("alice@example.com", STRONG_PASSWORD, "10.0.0.1")

    def test_rate_limit_is_checked_before_credentials(self):
        """Unknown identifiers still consume the client's budget"""
        for _ in range(3):
            with pytest.raises(InvalidCredentials):
                self.sessions.authenticate("nobody@example.com", "x", "10.0.0.1")
        with pytest.raises(RateLimited):
            self.sessions.authenticate("alice@example.com", STRONG_PASSWORD, "10.0.0.1")


class TestSessionLifecycle:
    """Test validation, expiry and revocation of session tokens"""

    def setup_method(self):
        self.clock = FakeClock()
        self.system = build_system(self.clock)
        self.sessions = self.system.session_manager
        self.account = create_customer(self.system)
        self.result = self.sessions.authenticate("alice@example.com", STRONG_PASSWORD)

    def test_only_digest_is_stored(self):
        stored = self.system.storage.load("sessions", self.result.session_id)
        assert stored["token_hash"] == hash_token(self.result.token)
        assert self.result.token not in str(stored)

    def test_expiry(self):
        """Sessions stop validating after their TTL and are marked expired"""
        self.clock.advance(hours=23, minutes=59)
        assert self.sessions.validate(self.result.token) is not None

        self.clock.advance(hours=1)
        assert self.sessions.validate(self.result.token) is None
        session = self.sessions.get_sessions(self.account.id)[0]
        assert session.state == SessionState.EXPIRED

    def test_expiry_does_not_slide(self):
        for _ in range(5):
            self.clock.advance(hours=5)
            self.sessions.validate(self.result.token)
        assert self.sessions.validate(self.result.token) is None

    def test_revoke_is_idempotent(self):
        assert self.sessions.revoke(self.result.token)
        assert not self.sessions.revoke(self.result.token)
        assert self.sessions.validate(self.result.token) is None

    def test_revoke_unknown_token(self):
        assert not self.sessions.revoke("not-a-token")
        assert not self.sessions.revoke(None)

    def _claims(self):
        return jwt.decode(self.result.token, options={"verify_signature": False})

    def test_forged_token_rejected(self):
        """A token signed with another key never validates"""
        forged = jwt.encode(self._claims(), "some-other-signing-key-of-sufficient-length",
                            algorithm="HS256")
        assert self.sessions.validate(forged) is None

    def test_reissued_token_for_same_session_rejected(self):
        """A correctly signed token whose digest differs from the stored one is refused"""
        claims = self._claims()
        claims["iat"] = claims["iat"] - 60
        reissued = jwt.encode(claims, TEST_SECRET, algorithm="HS256")
        assert self.sessions.validate(reissued) is None

    def test_tampered_payload_rejected(self):
        """Swapping the payload invalidates the signature"""
        header, _, signature = self.result.token.split(".")
        claims = self._claims()
        claims["sub"] = "someone-else"
        payload = jwt.encode(claims, TEST_SECRET, algorithm="HS256").split(".")[1]
        assert self.sessions.validate(".".join([header, payload, signature])) is None
        assert self.sessions.validate("") is None
        assert self.sessions.validate("garbage") is None

    def test_deactivated_owner_fails_validation(self):
        self.system.account_manager.set_active(self.account.id, False)
        assert self.sessions.validate(self.result.token) is None

    def test_revoke_all(self):
        second = self.sessions.authenticate("alice@example.com", STRONG_PASSWORD)
        assert self.sessions.revoke_all(self.account.id) == 2
        assert self.sessions.validate(self.result.token) is None
        assert self.sessions.validate(second.token) is None
        assert self.sessions.revoke_all(self.account.id) == 0

    def test_cleanup_expired(self):
        self.clock.advance(hours=12)
        self.sessions.authenticate("alice@example.com", STRONG_PASSWORD)
        self.clock.advance(hours=13)

        assert self.sessions.cleanup_expired() == 1
        states = sorted(s.state.value for s in self.sessions.get_sessions(self.account.id))
        assert states == ["active", "expired"]
