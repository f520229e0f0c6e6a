"""
Test suite for the user directory

Tests registration with account provisioning, case-insensitive uniqueness,
profile edits and password changes.
"""

import pytest
from decimal import Decimal
from unittest.mock import patch

from retail_ledger.currency import Money, Currency
from retail_ledger.storage import InMemoryStorage
from retail_ledger.audit import AuditTrail, AuditEventType
from retail_ledger.accounts import AccountStore, AccountType
from retail_ledger.users import UserDirectory, normalize_key
from retail_ledger.errors import (
    ValidationError, DuplicateUsernameError, DuplicateEmailError,
    AuthenticationError, UserNotFoundError
)


def registration(**overrides):
    fields = dict(
        first_name="Thandi",
        last_name="Nkosi",
        email="thandi@example.com",
        username="thandi",
        password="Password123",
        phone_number="072 000 1111"
    )
    fields.update(overrides)
    return fields


class TestRegistration:
    """Test registration and account provisioning"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.accounts = AccountStore(self.storage, self.audit)
        self.users = UserDirectory(self.storage, self.accounts, self.audit)

    def test_register_opens_two_accounts(self):
        user = self.users.register(**registration())

        accounts = self.accounts.list_user_accounts(user.id)
        assert [a.account_type for a in accounts] == [AccountType.CURRENT, AccountType.SAVINGS]
        assert [a.name for a in accounts] == ["Global One Account", "Savings Account"]
        assert accounts[0].balance == Money(Decimal('5000.00'), Currency.ZAR)
        assert accounts[1].balance == Money(Decimal('2500.00'), Currency.ZAR)

        events = self.audit.get_events_for_entity("user", user.id)
        assert events[0].event_type == AuditEventType.USER_REGISTERED

    def test_password_is_hashed(self):
        user = self.users.register(**registration())

        assert user.password_hash != "Password123"
        assert "Password123" not in str(self.storage.load("users", user.id))
        assert "password_hash" not in user.to_public_dict()
        assert self.users.verify_password(user, "Password123")
        assert not self.users.verify_password(user, "password123")
        assert not self.users.verify_password(user, "")

    def test_username_unique_ignoring_case(self):
        self.users.register(**registration())

        with pytest.raises(DuplicateUsernameError):
            self.users.register(**registration(username="THANDI", email="other@example.com"))

    def test_email_unique_ignoring_case(self):
        self.users.register(**registration())

        with pytest.raises(DuplicateEmailError):
            self.users.register(**registration(username="other", email="Thandi@Example.COM"))

    def test_rejected_registration_creates_nothing(self):
        self.users.register(**registration())
        accounts_before = len(self.accounts.list_all_accounts())

        with pytest.raises(DuplicateUsernameError):
            self.users.register(**registration(email="second@example.com"))

        assert self.users.count_users() == 1
        assert len(self.accounts.list_all_accounts()) == accounts_before

    def test_account_failure_rolls_back_user(self):
        with patch.object(self.accounts, "create_account", side_effect=RuntimeError("boom")):
            with pytest.raises(RuntimeError):
                self.users.register(**registration())

        assert self.users.count_users() == 0
        assert self.users.get_user_by_username("thandi") is None

    @pytest.mark.parametrize("field,value", [
        ("first_name", ""),
        ("last_name", "   "),
        ("email", "not-an-email"),
        ("username", "ab"),
        ("username", "has space"),
        ("password", "short"),
    ])
    def test_invalid_fields(self, field, value):
        with pytest.raises(ValidationError):
            self.users.register(**registration(**{field: value}))
        assert self.users.count_users() == 0

    def test_lookups_ignore_case(self):
        user = self.users.register(**registration())

        assert self.users.get_user_by_username(" Thandi ").id == user.id
        assert self.users.get_user_by_email("THANDI@example.com").id == user.id
        assert self.users.get_user("missing") is None
        with pytest.raises(UserNotFoundError):
            self.users.require_user("missing")

    def test_configured_opening_balances(self):
        users = UserDirectory(
            self.storage, self.accounts, self.audit,
            current_opening_balance=Decimal("0.00"),
            savings_opening_balance=Decimal("10.00")
        )
        user = users.register(**registration())
        balances = [a.balance.amount for a in self.accounts.list_user_accounts(user.id)]
        assert balances == [Decimal('0.00'), Decimal('10.00')]


class TestProfile:
    """Test profile edits and password changes"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.accounts = AccountStore(self.storage, self.audit)
        self.users = UserDirectory(self.storage, self.accounts, self.audit)
        self.user = self.users.register(**registration())

    def test_update_profile(self):
        updated = self.users.update_profile(
            self.user.id, first_name="Thandiwe", phone_number=" 073 111 2222 ",
            profile_image="https://example.com/me.png"
        )

        assert updated.first_name == "Thandiwe"
        assert updated.last_name == "Nkosi"
        assert updated.phone_number == "073 111 2222"
        assert self.users.get_user(self.user.id).profile_image == "https://example.com/me.png"

        events = self.audit.get_events_for_entity("user", self.user.id)
        assert events[-1].event_type == AuditEventType.USER_UPDATED

    def test_remove_profile_image(self):
        self.users.update_profile(self.user.id, profile_image="data:image/png;base64,AAAA")
        updated = self.users.update_profile(self.user.id, profile_image="")
        assert updated.profile_image is None

    def test_update_email_must_stay_unique(self):
        self.users.register(**registration(username="other", email="other@example.com"))

        with pytest.raises(DuplicateEmailError):
            self.users.update_profile(self.user.id, email="OTHER@example.com")

        # Changing case of one's own address is allowed
        updated = self.users.update_profile(self.user.id, email="Thandi@Example.com")
        assert updated.email == "Thandi@Example.com"

    def test_blank_required_field_rejected(self):
        with pytest.raises(ValidationError):
            self.users.update_profile(self.user.id, last_name="")
        assert self.users.get_user(self.user.id).last_name == "Nkosi"

    def test_change_password(self):
        self.users.change_password(self.user.id, "Password123", "NewPassword456")

        user = self.users.get_user(self.user.id)
        assert self.users.verify_password(user, "NewPassword456")
        assert not self.users.verify_password(user, "Password123")

    def test_change_password_wrong_current(self):
        with pytest.raises(AuthenticationError):
            self.users.change_password(self.user.id, "wrong-password", "NewPassword456")

    def test_change_password_too_short(self):
        with pytest.raises(ValidationError):
            self.users.change_password(self.user.id, "Password123", "short")


def test_normalize_key():
    assert normalize_key("  Sarah@Example.COM ") == "sarah@example.com"
