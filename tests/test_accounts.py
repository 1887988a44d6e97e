"""
Tests for account provisioning and lookup
"""

import pytest
from decimal import Decimal

from securebank.accounts import AccountRole
from securebank.audit import AuditEventType
from securebank.errors import AccountNotFound, ValidationError

from helpers import FakeClock, STRONG_PASSWORD, build_system, create_customer


class TestAccountManager:
    """Test account creation, lookup and status"""

    def setup_method(self):
        self.clock = FakeClock()
        self.system = build_system(self.clock)
        self.accounts = self.system.account_manager

    def test_create_account(self):
        """New accounts get a 10-digit number, credentials and a zero balance"""
        account = self.accounts.create_account("Alice@Example.com", STRONG_PASSWORD,
                                               "Alice", "Smith")
        assert account.email == "alice@example.com"
        assert len(account.account_number) == 10
        assert account.account_number.startswith("62")
        assert account.role == AccountRole.CUSTOMER
        assert account.is_active
        assert self.system.credentials.has_credentials(account.id)
        assert self.system.ledger.get_balance(account.id) == Decimal("0.00")

    def test_creation_is_audited(self):
        account = create_customer(self.system)
        events = self.system.audit_trail.get_events_for_entity("account", account.id)
        assert events[0].event_type == AuditEventType.ACCOUNT_CREATED

    def test_duplicate_email_rejected(self):
        create_customer(self.system, email="alice@example.com")
        with pytest.raises(ValidationError, match="already exists") as exc_info:
            create_customer(self.system, email="ALICE@example.com")
        assert exc_info.value.field == "email"
        assert len(self.accounts.list_accounts()) == 1

    def test_weak_password_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            self.accounts.create_account("bob@example.com", "weak", "Bob", "Jones")
        assert exc_info.value.field == "password"
        assert self.accounts.get_account_by_email("bob@example.com") is None

    def test_invalid_names_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            self.accounts.create_account("bob@example.com", STRONG_PASSWORD, "B0b", "Jones")
        assert exc_info.value.field == "first_name"

    def test_find_by_identifier(self):
        account = create_customer(self.system)
        assert self.accounts.find_by_identifier("alice@example.com").id == account.id
        assert self.accounts.find_by_identifier(account.account_number).id == account.id
        assert self.accounts.find_by_identifier("0000000000") is None
        assert self.accounts.find_by_identifier("") is None

    def test_require_account(self):
        with pytest.raises(AccountNotFound):
            self.accounts.require_account("missing")

    def test_list_accounts_newest_first(self):
        first = create_customer(self.system, email="a@example.com")
        self.clock.advance(minutes=1)
        second = create_customer(self.system, email="b@example.com")
        assert [a.id for a in self.accounts.list_accounts()] == [second.id, first.id]

    def test_set_active(self):
        account = create_customer(self.system)
        updated = self.accounts.set_active(account.id, False, changed_by="admin-1")
        assert not updated.is_active
        assert not self.accounts.get_account(account.id).is_active

        events = self.system.audit_trail.get_events_by_type(AuditEventType.ACCOUNT_DEACTIVATED)
        assert events[-1].actor_id == "admin-1"

    def test_view_has_no_secrets(self):
        """The caller-facing view carries the balance but no credential fields"""
        account = create_customer(self.system, balance="150.00")
        data = self.accounts.view(account).to_dict()
        assert data["balance"] == "150.00"
        assert data["currency"] == "ZAR"
        assert "password_hash" not in data
        assert "failed_login_attempts" not in data
        assert "locked_until" not in data

    def test_login_history_is_capped(self):
        account = create_customer(self.system)
        for i in range(12):
            self.clock.advance(seconds=1)
            self.accounts.record_login_attempt(account.id, i % 2 == 0, "10.0.0.1")

        history = self.accounts.get_login_history(account.id)
        assert len(history) == 10
        assert history[0].created_at > history[-1].created_at
