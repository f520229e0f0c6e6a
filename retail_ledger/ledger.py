"""
Ledger Writer Module

The only code path that changes a balance. Each posting appends one
transaction and applies the same signed amount to its account inside a
single storage unit of work, so the account store and the transaction log
can never disagree.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import uuid

from .currency import Money
from .storage import StorageInterface
from .audit import AuditTrail, AuditEventType
from .accounts import AccountStore
from .transactions import TransactionLog, Transaction, Category, direction_for
from .errors import InvalidAmountError
from .logging_config import get_logger, log_action

logger = get_logger("retail_ledger.ledger")


@dataclass
class ReconciliationResult:
    """Outcome of rebuilding an account balance from its transactions"""
    account_id: str
    opening_balance: Money
    transaction_total: Money
    expected_balance: Money
    actual_balance: Money
    transaction_count: int
    running_balance_errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def is_balanced(self) -> bool:
        return self.expected_balance == self.actual_balance and not self.running_balance_errors

    @property
    def discrepancy(self) -> Money:
        return self.actual_balance - self.expected_balance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "opening_balance": str(self.opening_balance.amount),
            "transaction_total": str(self.transaction_total.amount),
            "expected_balance": str(self.expected_balance.amount),
            "actual_balance": str(self.actual_balance.amount),
            "transaction_count": self.transaction_count,
            "is_balanced": self.is_balanced,
            "running_balance_errors": self.running_balance_errors
        }


class Ledger:
    """
    Paired balance/transaction writes and reconciliation
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountStore,
        transactions: TransactionLog,
        audit_trail: AuditTrail
    ):
        self.storage = storage
        self.accounts = accounts
        self.transactions = transactions
        self.audit_trail = audit_trail

    def post(
        self,
        account_id: str,
        amount: Money,
        category: Category,
        description: str,
        transfer_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
        user_id: Optional[str] = None
    ) -> Transaction:
        """
        Append a transaction and adjust the account balance as one unit

        Args:
            account_id: Account to post to
            amount: Signed amount (negative for debits)
            category: Spending category
            description: Text shown in the history
            transfer_id: Transfer that produced this entry, if any
            timestamp: Business time of the entry (defaults to now)
            user_id: User on whose behalf the posting happens, for the audit trail

        Returns:
            The recorded Transaction
        """
        if amount.is_zero():
            raise InvalidAmountError("Cannot post a zero amount")

        with self.storage.atomic():
            account = self.accounts.require_account(account_id)
            if amount.currency != account.currency:
                raise InvalidAmountError(
                    f"Amount currency {amount.currency.code} does not match account currency "
                    f"{account.currency.code}"
                )

            now = datetime.now(timezone.utc)
            transaction = Transaction(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                account_id=account_id,
                timestamp=timestamp or now,
                description=description,
                amount=amount,
                direction=direction_for(amount),
                category=category,
                sequence=self.transactions.next_sequence(account_id),
                balance_after=account.balance + amount,
                transfer_id=transfer_id
            )

            self.transactions._append(transaction)
            self.accounts._apply_balance_delta(account_id, amount, account.version)

            self.audit_trail.log_event(
                event_type=AuditEventType.TRANSACTION_POSTED,
                entity_type="account",
                entity_id=account_id,
                metadata={
                    "transaction_id": transaction.id,
                    "amount": amount.amount,
                    "direction": transaction.direction,
                    "category": category,
                    "sequence": transaction.sequence,
                    "balance_after": transaction.balance_after.amount,
                    "transfer_id": transfer_id
                },
                user_id=user_id
            )

        log_action(
            logger, "info", f"Posted {amount.to_string()} to account {account_id}",
            user_id=user_id, action="post_transaction", resource=account_id,
            extra={"transaction_id": transaction.id, "transfer_id": transfer_id}
        )
        return transaction

    def reconcile(self, account_id: str) -> ReconciliationResult:
        """
        Rebuild an account's balance from its opening balance and transactions

        Also walks the entries in sequence order and flags any whose recorded
        ``balance_after`` disagrees with the running total.
        """
        account = self.accounts.require_account(account_id)
        entries = self.transactions.entries_for_account(account_id)

        total = Money.zero(account.currency)
        running = account.opening_balance
        errors = []
        for entry in entries:
            total = total + entry.amount
            running = running + entry.amount
            if entry.balance_after != running:
                errors.append({
                    "transaction_id": entry.id,
                    "sequence": entry.sequence,
                    "expected_balance_after": str(running.amount),
                    "recorded_balance_after": str(entry.balance_after.amount)
                })

        result = ReconciliationResult(
            account_id=account_id,
            opening_balance=account.opening_balance,
            transaction_total=total,
            expected_balance=account.opening_balance + total,
            actual_balance=account.balance,
            transaction_count=len(entries),
            running_balance_errors=errors
        )

        if not result.is_balanced:
            log_action(
                logger, "error", f"Account {account_id} does not reconcile",
                action="reconcile", resource=account_id, extra=result.to_dict()
            )
        return result

    def reconcile_all(self) -> List[ReconciliationResult]:
        """Reconcile every account in the store"""
        return [self.reconcile(account.id) for account in self.accounts.list_all_accounts()]
