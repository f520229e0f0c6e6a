"""
User Directory Module

Identity records for registration, login and profile editing. Usernames and
e-mail addresses are unique without regard to case; registration provisions
the new user's current and savings accounts in the same unit of work.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
import hashlib
import hmac
import re
import secrets
import uuid

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .accounts import AccountStore, AccountType
from .errors import (
    ValidationError, UserNotFoundError, AuthenticationError,
    DuplicateUsernameError, DuplicateEmailError
)
from .logging_config import get_logger, log_action

logger = get_logger("retail_ledger.users")

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')
USERNAME_PATTERN = re.compile(r'^[A-Za-z0-9_.-]{3,32}$')

CURRENT_ACCOUNT_NAME = "Global One Account"
SAVINGS_ACCOUNT_NAME = "Savings Account"


def normalize_key(value: str) -> str:
    """Case-insensitive lookup key for usernames and e-mail addresses"""
    return value.strip().casefold()


@dataclass
class User(StorageRecord):
    """Registered user"""
    first_name: str
    last_name: str
    email: str
    username: str
    password_hash: str
    password_salt: str
    phone_number: str = ""
    id_number: str = ""
    profile_image: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def username_key(self) -> str:
        return normalize_key(self.username)

    @property
    def email_key(self) -> str:
        return normalize_key(self.email)

    def to_public_dict(self) -> Dict[str, Any]:
        """Profile fields safe to return to callers (no credential)"""
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "username": self.username,
            "phone_number": self.phone_number,
            "id_number": self.id_number,
            "profile_image": self.profile_image,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat()
        }


def hash_secret(password: str, salt: str) -> str:
    """Hash a password or device credential with salt using scrypt"""
    return hashlib.scrypt(
        password.encode(),
        salt=salt.encode(),
        n=16384, r=8, p=1
    ).hex()


class UserDirectory:
    """
    Registration, lookup and profile maintenance
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountStore,
        audit_trail: AuditTrail,
        current_opening_balance: Decimal = Decimal("5000.00"),
        savings_opening_balance: Decimal = Decimal("2500.00"),
        password_min_length: int = 8
    ):
        self.storage = storage
        self.accounts = accounts
        self.audit_trail = audit_trail
        self.currency: Currency = accounts.currency
        self.current_opening_balance = Money(Decimal(current_opening_balance), self.currency)
        self.savings_opening_balance = Money(Decimal(savings_opening_balance), self.currency)
        self.password_min_length = password_min_length
        self.table_name = "users"
        self.storage.ensure_index(self.table_name, "username_key")
        self.storage.ensure_index(self.table_name, "email_key")

    def register(
        self,
        first_name: str,
        last_name: str,
        email: str,
        username: str,
        password: str,
        phone_number: str = "",
        id_number: str = "",
        profile_image: Optional[str] = None
    ) -> User:
        """
        Register a user and open their current and savings accounts

        Either the user and both accounts exist afterwards, or nothing does.

        Raises:
            ValidationError: Missing or malformed field
            DuplicateUsernameError: Username taken (any case)
            DuplicateEmailError: E-mail registered (any case)
        """
        self._validate_password(password)

        with self.storage.atomic():
            user = self.create_user(
                first_name=first_name,
                last_name=last_name,
                email=email,
                username=username,
                password=password,
                phone_number=phone_number,
                id_number=id_number,
                profile_image=profile_image
            )
            self.accounts.create_account(
                user_id=user.id,
                name=CURRENT_ACCOUNT_NAME,
                account_type=AccountType.CURRENT,
                opening_balance=self.current_opening_balance
            )
            self.accounts.create_account(
                user_id=user.id,
                name=SAVINGS_ACCOUNT_NAME,
                account_type=AccountType.SAVINGS,
                opening_balance=self.savings_opening_balance
            )

        log_action(
            logger, "info", f"User {user.username} registered",
            user_id=user.id, action="register", resource=user.id
        )
        return user

    def create_user(
        self,
        first_name: str,
        last_name: str,
        email: str,
        username: str,
        password: str,
        phone_number: str = "",
        id_number: str = "",
        profile_image: Optional[str] = None,
        user_id: Optional[str] = None
    ) -> User:
        """
        Create the identity record only, without provisioning accounts

        Used by registration (inside its unit of work) and by administrative
        loading such as the demo seed.
        """
        first_name = self._require("first_name", first_name)
        last_name = self._require("last_name", last_name)
        email = self._validate_email(email)
        username = self._require("username", username)
        if not USERNAME_PATTERN.match(username):
            raise ValidationError(
                "Username must be 3-32 letters, digits, '.', '_' or '-'",
                {"field": "username"}
            )
        if not password:
            raise ValidationError("Password is required", {"field": "password"})

        with self.storage.atomic():
            if self.get_user_by_username(username):
                raise DuplicateUsernameError(
                    f"Username '{username}' is already taken",
                    {"username": username}
                )
            if self.get_user_by_email(email):
                raise DuplicateEmailError(
                    f"Email '{email}' is already registered",
                    {"email": email}
                )

            now = datetime.now(timezone.utc)
            salt = secrets.token_hex(16)
            user = User(
                id=user_id or str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                first_name=first_name,
                last_name=last_name,
                email=email,
                username=username,
                password_hash=hash_secret(password, salt),
                password_salt=salt,
                phone_number=(phone_number or "").strip(),
                id_number=(id_number or "").strip(),
                profile_image=profile_image
            )
            self._save_user(user)

            self.audit_trail.log_event(
                event_type=AuditEventType.USER_REGISTERED,
                entity_type="user",
                entity_id=user.id,
                metadata={"username": username, "email": email},
                user_id=user.id
            )

        return user

    def get_user(self, user_id: str) -> Optional[User]:
        """Get user by ID"""
        user_dict = self.storage.load(self.table_name, user_id)
        if user_dict:
            return self._user_from_dict(user_dict)
        return None

    def require_user(self, user_id: str) -> User:
        """Get user by ID or raise UserNotFoundError"""
        user = self.get_user(user_id)
        if user is None:
            raise UserNotFoundError(f"User {user_id} not found", {"user_id": user_id})
        return user

    def get_user_by_username(self, username: str) -> Optional[User]:
        """Get user by username, ignoring case"""
        users = self.storage.find(self.table_name, {"username_key": normalize_key(username)})
        if users:
            return self._user_from_dict(users[0])
        return None

    def get_user_by_email(self, email: str) -> Optional[User]:
        """Get user by e-mail address, ignoring case"""
        users = self.storage.find(self.table_name, {"email_key": normalize_key(email)})
        if users:
            return self._user_from_dict(users[0])
        return None

    def list_users(self) -> List[User]:
        return [self._user_from_dict(data) for data in self.storage.load_all(self.table_name)]

    def count_users(self) -> int:
        return self.storage.count(self.table_name)

    def update_profile(
        self,
        user_id: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
        phone_number: Optional[str] = None,
        profile_image: Optional[str] = None
    ) -> User:
        """
        Update profile fields; username and password are not editable here

        Fields left as None are unchanged. Required fields may not be blanked.
        """
        with self.storage.atomic():
            user = self.require_user(user_id)
            changes = {}

            if first_name is not None:
                user.first_name = self._require("first_name", first_name)
                changes["first_name"] = user.first_name
            if last_name is not None:
                user.last_name = self._require("last_name", last_name)
                changes["last_name"] = user.last_name
            if email is not None:
                email = self._validate_email(email)
                existing = self.get_user_by_email(email)
                if existing and existing.id != user.id:
                    raise DuplicateEmailError(
                        f"Email '{email}' is already registered",
                        {"email": email}
                    )
                user.email = email
                changes["email"] = email
            if phone_number is not None:
                user.phone_number = phone_number.strip()
                changes["phone_number"] = user.phone_number
            if profile_image is not None:
                user.profile_image = profile_image or None
                changes["profile_image"] = "updated" if user.profile_image else "removed"

            if changes:
                user.updated_at = datetime.now(timezone.utc)
                self._save_user(user)
                self.audit_trail.log_event(
                    event_type=AuditEventType.USER_UPDATED,
                    entity_type="user",
                    entity_id=user.id,
                    metadata={"changes": changes},
                    user_id=user.id
                )

        if changes:
            log_action(
                logger, "info", "Profile updated",
                user_id=user.id, action="update_profile", resource=user.id,
                extra={"fields": sorted(changes)}
            )
        return user

    def change_password(self, user_id: str, current_password: str, new_password: str) -> User:
        """
        Replace a user's password after checking the current one

        Raises:
            AuthenticationError: Current password is wrong
            ValidationError: New password too short
        """
        user = self.require_user(user_id)
        if not self.verify_password(user, current_password):
            log_action(
                logger, "warning", "Password change rejected",
                user_id=user.id, action="change_password", resource=user.id
            )
            raise AuthenticationError("Current password is incorrect")
        self._validate_password(new_password)

        with self.storage.atomic():
            user.password_salt = secrets.token_hex(16)
            user.password_hash = hash_secret(new_password, user.password_salt)
            user.updated_at = datetime.now(timezone.utc)
            self._save_user(user)
            self.audit_trail.log_event(
                event_type=AuditEventType.PASSWORD_CHANGED,
                entity_type="user",
                entity_id=user.id,
                metadata={},
                user_id=user.id
            )

        log_action(
            logger, "info", "Password changed",
            user_id=user.id, action="change_password", resource=user.id
        )
        return user

    def verify_password(self, user: User, password: str) -> bool:
        """Check a password against the stored scrypt hash"""
        if not password:
            return False
        expected = hash_secret(password, user.password_salt)
        return hmac.compare_digest(expected, user.password_hash)

    @staticmethod
    def _require(field_name: str, value: Optional[str]) -> str:
        if value is None or not str(value).strip():
            raise ValidationError(f"{field_name} is required", {"field": field_name})
        return str(value).strip()

    def _validate_email(self, email: Optional[str]) -> str:
        email = self._require("email", email)
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email format", {"field": "email"})
        return email

    def _validate_password(self, password: Optional[str]) -> None:
        if not password or len(password) < self.password_min_length:
            raise ValidationError(
                f"Password must be at least {self.password_min_length} characters",
                {"field": "password"}
            )

    def _save_user(self, user: User) -> None:
        """Save user to storage"""
        self.storage.save(self.table_name, user.id, self._user_to_dict(user))

    def _user_to_dict(self, user: User) -> Dict:
        """Convert User to dictionary for storage"""
        result = user.to_dict()
        result['username_key'] = user.username_key
        result['email_key'] = user.email_key
        return result

    def _user_from_dict(self, data: Dict) -> User:
        """Convert dictionary to User"""
        return User(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            first_name=data['first_name'],
            last_name=data['last_name'],
            email=data['email'],
            username=data['username'],
            password_hash=data['password_hash'],
            password_salt=data['password_salt'],
            phone_number=data.get('phone_number', ""),
            id_number=data.get('id_number', ""),
            profile_image=data.get('profile_image')
        )
