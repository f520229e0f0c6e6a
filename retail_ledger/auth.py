"""
Authentication Module

Password and biometric login, biometric enrollment and bearer tokens.
Biometric checks go through the BiometricCapability interface so a platform
adapter can be swapped for a fake in tests and the demo.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional
import hmac
import secrets
import threading

import jwt

from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .users import UserDirectory, User, hash_secret
from .errors import AuthenticationError
from .logging_config import get_logger, log_action

logger = get_logger("retail_ledger.auth")


class BiometricCapability(ABC):
    """
    Device biometric capability: availability, enrollment and presence check

    Enrollment binds a device credential to the user. The device releases it
    only after its local biometric prompt passes, and every login must
    present it again.
    """

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the device can perform biometric checks at all"""
        pass

    @abstractmethod
    def is_enrolled(self, user_id: str) -> bool:
        pass

    @abstractmethod
    def enroll(self, user_id: str, device_credential: str) -> None:
        pass

    @abstractmethod
    def authenticate(self, user_id: str, device_credential: str) -> bool:
        """Check the device credential and run the presence check for an enrolled user"""
        pass


class StoredEnrollmentBiometric(BiometricCapability):
    """
    Enrollment records kept in storage with the device credential scrypt-hashed;
    an optional ``presence_check`` (the platform prompt) runs after it matches
    """

    def __init__(
        self,
        storage: StorageInterface,
        presence_check: Optional[Callable[[str], bool]] = None,
        available: bool = True
    ):
        self.storage = storage
        self.presence_check = presence_check
        self.available = available
        self.table_name = "biometric_enrollments"

    def is_available(self) -> bool:
        return self.available

    def is_enrolled(self, user_id: str) -> bool:
        return self.storage.exists(self.table_name, user_id)

    def enroll(self, user_id: str, device_credential: str) -> None:
        salt = secrets.token_hex(16)
        self.storage.save(self.table_name, user_id, {
            "id": user_id,
            "user_id": user_id,
            "credential_hash": hash_secret(device_credential, salt),
            "credential_salt": salt,
            "enrolled_at": datetime.now(timezone.utc).isoformat()
        })

    def authenticate(self, user_id: str, device_credential: str) -> bool:
        if not self.is_available():
            return False
        record = self.storage.load(self.table_name, user_id)
        if record is None:
            return False
        return self._verify_presence(record, device_credential)

    def _verify_presence(self, record: dict, device_credential: str) -> bool:
        if not device_credential or not record.get("credential_hash"):
            return False
        expected = hash_secret(device_credential, record["credential_salt"])
        if not hmac.compare_digest(expected, record["credential_hash"]):
            return False
        if self.presence_check is None:
            return True
        return bool(self.presence_check(record["user_id"]))


class FakeBiometricCapability(BiometricCapability):
    """Biometric stand-in with a fixed answer once the device credential matches"""

    def __init__(self, approve: bool = True, available: bool = True):
        self.approve = approve
        self.available = available
        self.credentials: Dict[str, str] = {}
        self.attempts = 0
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        return self.available

    def is_enrolled(self, user_id: str) -> bool:
        return user_id in self.credentials

    def enroll(self, user_id: str, device_credential: str) -> None:
        with self._lock:
            self.credentials[user_id] = device_credential

    def authenticate(self, user_id: str, device_credential: str) -> bool:
        with self._lock:
            self.attempts += 1
            expected = self.credentials.get(user_id)
        if not self.available or not expected or not device_credential:
            return False
        return hmac.compare_digest(expected, device_credential) and self.approve


@dataclass
class AuthToken:
    """Bearer token issued after a successful login"""
    access_token: str
    expires_at: datetime
    user: User
    method: str = "password"
    token_type: str = "bearer"


class AuthService:
    """
    Login flows and JWT bearer tokens
    """

    def __init__(
        self,
        users: UserDirectory,
        biometric: BiometricCapability,
        audit_trail: AuditTrail,
        jwt_secret: str,
        jwt_algorithm: str = "HS256",
        jwt_expiry_hours: int = 24
    ):
        self.users = users
        self.biometric = biometric
        self.audit_trail = audit_trail
        self.jwt_secret = jwt_secret
        self.jwt_algorithm = jwt_algorithm
        self.jwt_expiry_hours = jwt_expiry_hours

    def login(self, username: str, password: str) -> AuthToken:
        """
        Authenticate with username and password

        Raises:
            AuthenticationError: Unknown user or wrong password (indistinguishable)
        """
        user = self.users.get_user_by_username(username or "")
        if user is None or not self.users.verify_password(user, password):
            self._login_failed(username, user, "password")
            raise AuthenticationError("Invalid username or password")

        return self._login_succeeded(user, "password")

    def login_with_biometric(self, username: str, device_credential: str) -> AuthToken:
        """
        Authenticate an enrolled user with the device biometric check

        Args:
            username: Username of the enrolled user
            device_credential: Credential issued to the device at enrollment

        Raises:
            AuthenticationError: Biometrics unavailable, user not enrolled,
                wrong or missing device credential, or the presence check failed
        """
        if not self.biometric.is_available():
            raise AuthenticationError("Biometric authentication is not available")

        user = self.users.get_user_by_username(username or "")
        if user is None or not self.biometric.is_enrolled(user.id):
            self._login_failed(username, user, "biometric")
            raise AuthenticationError("Biometric login is not set up for this user")

        if not self.biometric.authenticate(user.id, device_credential or ""):
            self._login_failed(username, user, "biometric")
            raise AuthenticationError("Biometric verification failed")

        return self._login_succeeded(user, "biometric")

    def enroll_biometric(self, user_id: str, device_credential: Optional[str] = None) -> str:
        """
        Enable biometric login for a user on this device

        Enrolling again replaces the previous device credential.

        Returns:
            The device credential; it is not stored in clear and cannot be read back
        """
        user = self.users.require_user(user_id)
        if not self.biometric.is_available():
            raise AuthenticationError("Biometric authentication is not available")

        device_credential = device_credential or secrets.token_urlsafe(32)
        self.biometric.enroll(user.id, device_credential)
        self.audit_trail.log_event(
            event_type=AuditEventType.BIOMETRIC_ENROLLED,
            entity_type="user",
            entity_id=user.id,
            metadata={"username": user.username},
            user_id=user.id
        )
        log_action(
            logger, "info", "Biometric login enabled",
            user_id=user.id, action="enroll_biometric", resource=user.id
        )
        return device_credential

    def biometric_status(self, user_id: str) -> dict:
        return {
            "available": self.biometric.is_available(),
            "enrolled": self.biometric.is_enrolled(user_id)
        }

    def issue_token(self, user: User, method: str = "password") -> AuthToken:
        """Sign a bearer token whose subject is the user id"""
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(hours=self.jwt_expiry_hours)
        payload = {
            "sub": user.id,
            "username": user.username,
            "amr": method,
            "exp": expires_at,
            "iat": now
        }
        token = jwt.encode(payload, self.jwt_secret, algorithm=self.jwt_algorithm)
        return AuthToken(access_token=token, expires_at=expires_at, user=user, method=method)

    def decode_token(self, token: str) -> str:
        """
        Validate a bearer token

        Returns:
            The authenticated user id

        Raises:
            AuthenticationError: Expired, malformed or unsigned token
        """
        try:
            payload = jwt.decode(token, self.jwt_secret, algorithms=[self.jwt_algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token expired")
        except jwt.InvalidTokenError:
            raise AuthenticationError("Invalid token")

        user_id = payload.get("sub")
        if not user_id:
            raise AuthenticationError("Invalid token")
        return user_id

    def _login_succeeded(self, user: User, method: str) -> AuthToken:
        self.audit_trail.log_event(
            event_type=AuditEventType.LOGIN_SUCCESS,
            entity_type="user",
            entity_id=user.id,
            metadata={"method": method},
            user_id=user.id
        )
        log_action(
            logger, "info", "User authenticated successfully",
            user_id=user.id, action="login", resource="auth",
            extra={"method": method}
        )
        return self.issue_token(user, method)

    def _login_failed(self, username: str, user: Optional[User], method: str) -> None:
        self.audit_trail.log_event(
            event_type=AuditEventType.LOGIN_FAILED,
            entity_type="user",
            entity_id=user.id if user else (username or ""),
            metadata={"method": method, "username": username},
            user_id=user.id if user else None
        )
        log_action(
            logger, "warning", "Authentication failed",
            action="login_failed", resource="auth",
            extra={"username": username, "method": method}
        )
