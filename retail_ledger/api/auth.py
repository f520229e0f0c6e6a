"""
Ledger system wiring and authentication dependencies
"""

from decimal import Decimal
from typing import Optional
import threading

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..storage import StorageInterface, create_storage
from ..audit import AuditTrail
from ..currency import Currency
from ..accounts import AccountStore
from ..transactions import TransactionLog
from ..ledger import Ledger
from ..users import UserDirectory
from ..beneficiaries import BeneficiaryDirectory
from ..payment_network import PaymentNetworkClient, MockPaymentNetworkClient
from ..transfers import TransferEngine
from ..auth import AuthService, BiometricCapability, StoredEnrollmentBiometric
from ..errors import AuthenticationError
from ..config import LedgerConfig, get_config
from ..seed import seed_demo_data
from ..logging_config import get_logger

logger = get_logger("retail_ledger.api")

security = HTTPBearer(auto_error=False)


class LedgerSystem:
    """Retail ledger with all components initialized"""

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        storage: Optional[StorageInterface] = None,
        payment_network: Optional[PaymentNetworkClient] = None,
        biometric: Optional[BiometricCapability] = None
    ):
        self.config = config or get_config()
        currency = Currency[self.config.currency]

        # Initialize storage
        self.storage = storage or create_storage(self.config.database_url)

        # Initialize core components
        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.accounts = AccountStore(self.storage, self.audit_trail, currency)
        self.transactions = TransactionLog(self.storage, currency)
        self.ledger = Ledger(self.storage, self.accounts, self.transactions, self.audit_trail)
        self.users = UserDirectory(
            self.storage, self.accounts, self.audit_trail,
            current_opening_balance=Decimal(self.config.registration_current_balance),
            savings_opening_balance=Decimal(self.config.registration_savings_balance),
            password_min_length=self.config.password_min_length
        )
        self.beneficiaries = BeneficiaryDirectory(self.storage, self.users, self.audit_trail)

        self.payment_network = payment_network or self._create_payment_network()
        self.transfers = TransferEngine(
            self.storage, self.accounts, self.beneficiaries, self.ledger, self.audit_trail,
            payment_network=self.payment_network,
            settlement_timeout_seconds=self.config.settlement_timeout_seconds
        )

        self.biometric = biometric or StoredEnrollmentBiometric(self.storage)
        self.auth = AuthService(
            self.users, self.biometric, self.audit_trail,
            jwt_secret=self.config.jwt_secret,
            jwt_algorithm=self.config.jwt_algorithm,
            jwt_expiry_hours=self.config.jwt_expiry_hours
        )

    def _create_payment_network(self) -> PaymentNetworkClient:
        """Create payment network client based on configuration"""
        # Without a configured URL, settle everything in-process
        if not self.config.payment_network_url:
            logger.info("No payment network URL configured; using the in-process mock network")
            return MockPaymentNetworkClient(outcome="settled")

        return PaymentNetworkClient(
            base_url=self.config.payment_network_url,
            timeout=self.config.payment_network_timeout,
            api_key=self.config.payment_network_api_key or None
        )

    def close(self) -> None:
        self.payment_network.close()
        self.storage.close()


# Global ledger system instance, built on first use
ledger_system: Optional[LedgerSystem] = None
_system_lock = threading.Lock()


def get_ledger_system() -> LedgerSystem:
    """Dependency returning the process-wide ledger system"""
    global ledger_system
    with _system_lock:
        if ledger_system is None:
            ledger_system = LedgerSystem()
            if ledger_system.config.seed_demo_data:
                seed_demo_data(ledger_system)
        return ledger_system


def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: LedgerSystem = Depends(get_ledger_system)
) -> str:
    """Dependency that validates the bearer token and returns the caller's user id"""
    if not credentials:
        raise AuthenticationError("Not authenticated")
    user_id = system.auth.decode_token(credentials.credentials)
    if system.users.get_user(user_id) is None:
        raise AuthenticationError("Invalid token")
    return user_id
