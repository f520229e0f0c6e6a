"""
Transaction Log Module

Append-only record of monetary movements, each tied to one account. Entries
carry a per-account sequence number so the running balance can be rebuilt
in order; the log has no update or delete path.
"""

from decimal import Decimal
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum

from .currency import Money, Currency
from .storage import StorageInterface, StorageRecord
from .errors import ValidationError


class Direction(Enum):
    """Whether money entered or left the account"""
    CREDIT = "credit"
    DEBIT = "debit"


class Category(Enum):
    """Closed set of spending categories"""
    SHOPPING = "shopping"
    INCOME = "income"
    ENTERTAINMENT = "entertainment"
    TRANSPORT = "transport"
    TRANSFER = "transfer"
    OTHER = "other"


class DateRange(Enum):
    """History date filters"""
    TODAY = "today"
    WEEK = "week"    # Last 7 days
    MONTH = "month"  # Last 30 days
    ALL = "all"


def direction_for(amount: Money) -> Direction:
    """Direction implied by the sign of a signed amount"""
    return Direction.CREDIT if amount.is_positive() else Direction.DEBIT


@dataclass
class Transaction(StorageRecord):
    """
    Immutable ledger entry on one account
    """
    account_id: str
    timestamp: datetime
    description: str
    amount: Money  # Signed: negative for debits
    direction: Direction
    category: Category
    sequence: int
    balance_after: Money
    transfer_id: Optional[str] = None

    def __post_init__(self):
        if self.amount.is_zero():
            raise ValidationError("Transaction amount cannot be zero")
        if direction_for(self.amount) != self.direction:
            raise ValidationError(
                "Transaction direction must agree with the sign of its amount",
                {"amount": str(self.amount.amount), "direction": self.direction.value}
            )

    @property
    def is_debit(self) -> bool:
        return self.direction == Direction.DEBIT

    @property
    def is_credit(self) -> bool:
        return self.direction == Direction.CREDIT


@dataclass
class TransactionFilter:
    """History filters, combined with logical AND"""
    search: str = ""
    direction: Optional[Direction] = None
    date_range: DateRange = DateRange.ALL

    def matches(self, transaction: Transaction, now: datetime) -> bool:
        if self.search and self.search.casefold() not in transaction.description.casefold():
            return False
        if self.direction is not None and transaction.direction != self.direction:
            return False
        return _in_date_range(transaction.timestamp, self.date_range, now)


def _in_date_range(timestamp: datetime, date_range: DateRange, now: datetime) -> bool:
    if date_range == DateRange.ALL:
        return True
    if now.tzinfo is not None:
        timestamp = timestamp.astimezone(now.tzinfo)
    if date_range == DateRange.TODAY:
        return timestamp.date() == now.date()
    if date_range == DateRange.WEEK:
        return timestamp >= now - timedelta(days=7)
    return timestamp >= now - timedelta(days=30)


class TransactionLog:
    """
    Read side of the transaction log plus the append used by the ledger writer
    """

    def __init__(self, storage: StorageInterface, currency: Currency = Currency.ZAR):
        self.storage = storage
        self.currency = currency
        self.table_name = "transactions"
        self.storage.ensure_index(self.table_name, "account_id")
        self.storage.ensure_index(self.table_name, "transfer_id")

    def _append(self, transaction: Transaction) -> None:
        """Write a new entry; only the ledger calls this, inside its unit of work"""
        if self.storage.exists(self.table_name, transaction.id):
            raise ValueError(f"Transaction {transaction.id} already recorded")
        self.storage.save(self.table_name, transaction.id, self._transaction_to_dict(transaction))

    def next_sequence(self, account_id: str) -> int:
        """Next per-account sequence number"""
        entries = self.storage.find(self.table_name, {"account_id": account_id})
        if not entries:
            return 1
        return max(entry['sequence'] for entry in entries) + 1

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        """Get transaction by ID"""
        transaction_dict = self.storage.load(self.table_name, transaction_id)
        if transaction_dict:
            return self._transaction_from_dict(transaction_dict)
        return None

    def entries_for_account(self, account_id: str) -> List[Transaction]:
        """All entries for an account in posting (sequence) order"""
        transactions = [
            self._transaction_from_dict(data)
            for data in self.storage.find(self.table_name, {"account_id": account_id})
        ]
        transactions.sort(key=lambda t: t.sequence)
        return transactions

    def list_for_account(self, account_id: str, limit: Optional[int] = None) -> List[Transaction]:
        """
        Transactions for an account, most recent first

        Entries sharing a timestamp keep their posting order reversed.
        """
        transactions = self.entries_for_account(account_id)
        transactions.sort(key=lambda t: (t.timestamp, t.sequence), reverse=True)
        if limit:
            transactions = transactions[:limit]
        return transactions

    def list_for_transfer(self, transfer_id: str) -> List[Transaction]:
        """Entries written by one transfer, in posting order"""
        return [
            self._transaction_from_dict(data)
            for data in self.storage.find(self.table_name, {"transfer_id": transfer_id})
        ]

    def search(
        self,
        account_id: str,
        transaction_filter: Optional[TransactionFilter] = None,
        now: Optional[datetime] = None
    ) -> List[Transaction]:
        """
        Filter an account's history

        Args:
            account_id: Account ID
            transaction_filter: Description text, direction and date range
            now: Reference time for the date range (defaults to current UTC time)

        Returns:
            Matching transactions, most recent first
        """
        transaction_filter = transaction_filter or TransactionFilter()
        now = now or datetime.now(timezone.utc)
        return [
            txn for txn in self.list_for_account(account_id)
            if transaction_filter.matches(txn, now)
        ]

    def _transaction_to_dict(self, transaction: Transaction) -> Dict:
        """Convert Transaction to dictionary for storage"""
        return {
            'id': transaction.id,
            'created_at': transaction.created_at.isoformat(),
            'updated_at': transaction.updated_at.isoformat(),
            'account_id': transaction.account_id,
            'timestamp': transaction.timestamp.isoformat(),
            'description': transaction.description,
            'amount': str(transaction.amount.amount),
            'currency': transaction.amount.currency.code,
            'direction': transaction.direction.value,
            'category': transaction.category.value,
            'sequence': transaction.sequence,
            'balance_after': str(transaction.balance_after.amount),
            'transfer_id': transaction.transfer_id
        }

    def _transaction_from_dict(self, data: Dict) -> Transaction:
        """Convert dictionary to Transaction"""
        currency = Currency[data['currency']]
        return Transaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_id=data['account_id'],
            timestamp=datetime.fromisoformat(data['timestamp']),
            description=data['description'],
            amount=Money(Decimal(data['amount']), currency),
            direction=Direction(data['direction']),
            category=Category(data['category']),
            sequence=data['sequence'],
            balance_after=Money(Decimal(data['balance_after']), currency),
            transfer_id=data.get('transfer_id')
        )
