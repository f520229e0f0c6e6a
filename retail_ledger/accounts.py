"""
Account Store Module

Holds account records keyed by identifier; the single source of truth for
balances. Balances change only through the ledger writer, which calls
``_apply_balance_delta`` inside the same unit of work that appends the
matching transaction.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import secrets
import uuid

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .errors import AccountNotFoundError, ConcurrentUpdateError, ValidationError
from .logging_config import get_logger, log_action

logger = get_logger("retail_ledger.accounts")


class AccountType(Enum):
    """Retail account products"""
    CURRENT = "current"
    SAVINGS = "savings"
    INVESTMENT = "investment"
    CREDIT = "credit"


def mask_account_number(account_number: str) -> str:
    """Display form showing only the last four digits"""
    return f"**** **** **** {account_number[-4:]}"


@dataclass
class Account(StorageRecord):
    """
    Customer account with its current balance

    ``opening_balance`` is the initial funding; every later change to
    ``balance`` is backed by exactly one transaction on this account.
    """
    user_id: str
    name: str
    account_number: str
    masked_number: str
    account_type: AccountType
    currency: Currency
    balance: Money
    opening_balance: Money
    version: int = 0

    def __post_init__(self):
        if self.balance.currency != self.currency:
            raise ValueError("Balance currency must match account currency")
        if self.opening_balance.currency != self.currency:
            raise ValueError("Opening balance currency must match account currency")


class AccountStore:
    """
    Account records indexed by id, user and account number
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 currency: Currency = Currency.ZAR):
        self.storage = storage
        self.audit_trail = audit_trail
        self.currency = currency
        self.accounts_table = "accounts"
        self.storage.ensure_index(self.accounts_table, "user_id")
        self.storage.ensure_index(self.accounts_table, "account_number")

    def create_account(
        self,
        user_id: str,
        name: str,
        account_type: AccountType,
        opening_balance: Optional[Money] = None,
        account_number: Optional[str] = None
    ) -> Account:
        """
        Provision a new account for a user

        Args:
            user_id: ID of the owning user
            name: Display name
            account_type: Product type
            opening_balance: Initial funding (zero when omitted)
            account_number: Specific 10-digit number (generated if not provided)

        Returns:
            Created Account object
        """
        if not name or not name.strip():
            raise ValidationError("Account name is required")

        if opening_balance is None:
            opening_balance = Money.zero(self.currency)
        if opening_balance.currency != self.currency:
            raise ValidationError(
                f"Opening balance must be in {self.currency.code}",
                {"currency": opening_balance.currency.code}
            )
        if opening_balance.is_negative():
            raise ValidationError("Opening balance cannot be negative")

        if account_number is None:
            account_number = self._generate_account_number()
        else:
            if len(account_number) != 10 or not account_number.isdigit():
                raise ValidationError(
                    "Account number must be 10 digits",
                    {"account_number": account_number}
                )
            if self.get_account_by_number(account_number):
                raise ValidationError(
                    f"Account number {account_number} already in use",
                    {"account_number": account_number}
                )

        now = datetime.now(timezone.utc)
        account = Account(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            name=name.strip(),
            account_number=account_number,
            masked_number=mask_account_number(account_number),
            account_type=account_type,
            currency=self.currency,
            balance=opening_balance,
            opening_balance=opening_balance
        )

        self._save_account(account)

        self.audit_trail.log_event(
            event_type=AuditEventType.ACCOUNT_CREATED,
            entity_type="account",
            entity_id=account.id,
            metadata={
                "user_id": user_id,
                "account_number": account_number,
                "account_type": account_type.value,
                "opening_balance": str(opening_balance.amount),
                "currency": self.currency.code
            },
            user_id=user_id
        )

        log_action(
            logger, "info", f"Account {account.masked_number} created",
            user_id=user_id, action="create_account", resource=account.id,
            extra={"account_type": account_type.value}
        )

        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        account_dict = self.storage.load(self.accounts_table, account_id)
        if account_dict:
            return self._account_from_dict(account_dict)
        return None

    def require_account(self, account_id: str) -> Account:
        """Get account by ID or raise AccountNotFoundError"""
        account = self.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(
                f"Account {account_id} not found",
                {"account_id": account_id}
            )
        return account

    def get_account_by_number(self, account_number: str) -> Optional[Account]:
        """Get account by account number"""
        accounts = self.storage.find(self.accounts_table, {"account_number": account_number})
        if accounts:
            return self._account_from_dict(accounts[0])
        return None

    def list_user_accounts(self, user_id: str) -> List[Account]:
        """Get all accounts for a user, in creation order"""
        accounts_data = self.storage.find(self.accounts_table, {"user_id": user_id})
        return [self._account_from_dict(data) for data in accounts_data]

    def list_all_accounts(self) -> List[Account]:
        """Every account in the store"""
        return [self._account_from_dict(data) for data in self.storage.load_all(self.accounts_table)]

    def total_balance(self, user_id: str) -> Money:
        """Sum of balances across a user's accounts"""
        total = Money.zero(self.currency)
        for account in self.list_user_accounts(user_id):
            total = total + account.balance
        return total

    def _apply_balance_delta(self, account_id: str, delta: Money,
                             expected_version: int) -> Account:
        """
        Write a new balance for an account

        Must run inside the caller's storage unit of work, paired with the
        transaction that explains the change.

        Raises:
            ConcurrentUpdateError: If the row moved on since it was read
        """
        account = self.require_account(account_id)
        if account.version != expected_version:
            raise ConcurrentUpdateError(
                f"Account {account_id} changed concurrently",
                {"expected_version": expected_version, "actual_version": account.version}
            )

        account.balance = account.balance + delta
        account.version += 1
        account.updated_at = datetime.now(timezone.utc)
        self._save_account(account)
        return account

    def _generate_account_number(self) -> str:
        """Generate a unique 10-digit account number"""
        while True:
            candidate = str(secrets.randbelow(9 * 10 ** 9) + 10 ** 9)
            if not self.storage.find(self.accounts_table, {"account_number": candidate}):
                return candidate

    def _save_account(self, account: Account) -> None:
        """Save account to storage"""
        self.storage.save(self.accounts_table, account.id, self._account_to_dict(account))

    def _account_to_dict(self, account: Account) -> Dict:
        """Convert Account to dictionary for storage"""
        return {
            'id': account.id,
            'created_at': account.created_at.isoformat(),
            'updated_at': account.updated_at.isoformat(),
            'user_id': account.user_id,
            'name': account.name,
            'account_number': account.account_number,
            'masked_number': account.masked_number,
            'account_type': account.account_type.value,
            'currency': account.currency.code,
            'balance': str(account.balance.amount),
            'opening_balance': str(account.opening_balance.amount),
            'version': account.version
        }

    def _account_from_dict(self, data: Dict) -> Account:
        """Convert dictionary to Account"""
        currency = Currency[data['currency']]
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            name=data['name'],
            account_number=data['account_number'],
            masked_number=data['masked_number'],
            account_type=AccountType(data['account_type']),
            currency=currency,
            balance=Money(Decimal(data['balance']), currency),
            opening_balance=Money(Decimal(data['opening_balance']), currency),
            version=data.get('version', 0)
        )
