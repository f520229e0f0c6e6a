"""
Transfer Engine Module

Validates and executes money movements between a user's own accounts and to
saved beneficiaries. Own-account transfers complete in one unit of work.
Beneficiary transfers debit locally, then wait on the external payment
network: pending until it settles, reversed by a compensating credit if it
fails.
"""

from contextlib import ExitStack, contextmanager
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional
import hashlib
import json
import threading
import uuid

from .currency import Money, Currency, parse_amount
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .accounts import AccountStore, Account
from .beneficiaries import BeneficiaryDirectory, Beneficiary
from .ledger import Ledger
from .transactions import Category
from .payment_network import (
    PaymentNetworkClient, PaymentInstruction, SettlementResult, SettlementStatus
)
from .errors import (
    InvalidDestinationError, AccountAccessDeniedError, InsufficientFundsError,
    IdempotencyConflictError, InvalidTransferStateError, TransferNotFoundError,
    PaymentNetworkError
)
from .logging_config import get_logger, log_action

logger = get_logger("retail_ledger.transfers")


class TransferKind(Enum):
    OWN_ACCOUNT = "own_account"
    BENEFICIARY = "beneficiary"


class TransferStatus(Enum):
    """Transfer lifecycle states"""
    COMPLETED = "completed"                              # Own-account, final
    PENDING = "pending"                                  # Debited, awaiting the network
    SETTLED = "settled"                                  # Network confirmed
    FAILED_PENDING_REVERSAL = "failed_pending_reversal"  # Network failed or timed out
    REVERSED = "reversed"                                # Debit given back


@dataclass
class Transfer(StorageRecord):
    """
    Persistent record of one transfer and its settlement progress
    """
    user_id: str
    kind: TransferKind
    source_account_id: str
    amount: Money
    reference: str
    status: TransferStatus
    source_balance_after: Money
    request_fingerprint: str
    destination_account_id: Optional[str] = None
    beneficiary_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    debit_transaction_id: Optional[str] = None
    credit_transaction_id: Optional[str] = None
    reversal_transaction_id: Optional[str] = None
    network_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    last_error: Optional[str] = None
    network_attempts: int = 0
    settled_at: Optional[datetime] = None

    @property
    def is_final(self) -> bool:
        return self.status in (TransferStatus.COMPLETED, TransferStatus.SETTLED,
                               TransferStatus.REVERSED)


@dataclass
class TransferResult:
    """What the caller of transfer() gets back"""
    success: bool
    transfer_id: str
    status: TransferStatus
    source_balance: Money
    replayed: bool = False
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "transfer_id": self.transfer_id,
            "status": self.status.value,
            "source_balance": str(self.source_balance.amount),
            "currency": self.source_balance.currency.code,
            "replayed": self.replayed,
            "message": self.message
        }


def request_fingerprint(
    user_id: str,
    source_account_id: str,
    amount: Money,
    reference: str,
    destination_account_id: Optional[str],
    beneficiary_id: Optional[str]
) -> str:
    """Stable digest of a transfer request, for idempotency comparisons"""
    payload = {
        "user_id": user_id,
        "source_account_id": source_account_id,
        "destination_account_id": destination_account_id,
        "beneficiary_id": beneficiary_id,
        "amount": str(amount.amount),
        "currency": amount.currency.code,
        "reference": reference
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(',', ':'))
    return hashlib.sha256(encoded.encode('utf-8')).hexdigest()


class TransferEngine:
    """
    Executes transfers with per-account locking and idempotency keys
    """

    def __init__(
        self,
        storage: StorageInterface,
        accounts: AccountStore,
        beneficiaries: BeneficiaryDirectory,
        ledger: Ledger,
        audit_trail: AuditTrail,
        payment_network: Optional[PaymentNetworkClient] = None,
        settlement_timeout_seconds: int = 900
    ):
        self.storage = storage
        self.accounts = accounts
        self.beneficiaries = beneficiaries
        self.ledger = ledger
        self.audit_trail = audit_trail
        self.payment_network = payment_network
        self.settlement_timeout = timedelta(seconds=settlement_timeout_seconds)
        self.currency: Currency = accounts.currency
        self.table_name = "transfers"
        self.storage.ensure_index(self.table_name, "user_id")
        self.storage.ensure_index(self.table_name, "idempotency_scope")
        self.storage.ensure_index(self.table_name, "status")

        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # Locking

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(account_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[account_id] = lock
            return lock

    @contextmanager
    def _account_locks(self, account_ids: Iterable[str]):
        """Hold the locks of every given account, taken in ascending id order"""
        with ExitStack() as stack:
            for account_id in sorted(set(account_ids)):
                stack.enter_context(self._lock_for(account_id))
            yield

    # Transfers

    def transfer(
        self,
        user_id: str,
        source_account_id: str,
        amount: Any,
        reference: str = "",
        destination_account_id: Optional[str] = None,
        beneficiary_id: Optional[str] = None,
        idempotency_key: Optional[str] = None
    ) -> TransferResult:
        """
        Move money out of one of the user's accounts

        Exactly one of ``destination_account_id`` (another account of the same
        user) or ``beneficiary_id`` (a saved external payee) must be given.

        Args:
            user_id: Authenticated caller
            source_account_id: Account to debit (must belong to the caller)
            amount: Positive amount (Decimal, int or decimal string)
            reference: Text shown on the transaction(s)
            destination_account_id: Own-account destination
            beneficiary_id: External payee
            idempotency_key: Caller token; a retry with the same key returns
                the first result instead of moving money again

        Returns:
            TransferResult with the source balance after the transfer

        Raises:
            InvalidAmountError, InvalidDestinationError, AccountNotFoundError,
            AccountAccessDeniedError, BeneficiaryNotFoundError,
            InsufficientFundsError, IdempotencyConflictError
        """
        money = parse_amount(amount, self.currency)
        reference = (reference or "").strip()

        if (destination_account_id is None) == (beneficiary_id is None):
            raise InvalidDestinationError(
                "Specify exactly one of a destination account or a beneficiary"
            )

        fingerprint = request_fingerprint(
            user_id, source_account_id, money, reference,
            destination_account_id, beneficiary_id
        )

        if idempotency_key:
            replay = self._replay(user_id, idempotency_key, fingerprint)
            if replay:
                return replay

        source = self._owned_account(user_id, source_account_id)

        destination: Optional[Account] = None
        beneficiary: Optional[Beneficiary] = None
        if destination_account_id is not None:
            destination = self.accounts.require_account(destination_account_id)
            if destination.id == source.id:
                raise InvalidDestinationError(
                    "Destination account must differ from the source account",
                    {"account_id": source.id}
                )
            if destination.user_id != user_id:
                raise AccountAccessDeniedError(
                    "Destination account does not belong to the user",
                    {"account_id": destination.id}
                )
        else:
            beneficiary = self.beneficiaries.get_user_beneficiary(user_id, beneficiary_id)

        self._check_funds(source, money)

        lock_ids = [source.id] + ([destination.id] if destination else [])
        with self._account_locks(lock_ids):
            with self.storage.atomic():
                if idempotency_key:
                    replay = self._replay(user_id, idempotency_key, fingerprint)
                    if replay:
                        return replay

                # Re-read under the lock; the balance may have moved since validation
                source = self.accounts.require_account(source.id)
                self._check_funds(source, money)

                transfer = self._execute(
                    user_id, source, money, reference, destination, beneficiary,
                    idempotency_key, fingerprint
                )

        if beneficiary is not None:
            transfer = self._submit_to_network(transfer, beneficiary)

        return self._result_for(transfer, replayed=False)

    def _owned_account(self, user_id: str, account_id: str) -> Account:
        account = self.accounts.require_account(account_id)
        if account.user_id != user_id:
            log_action(
                logger, "warning", "Transfer from an account the user does not own",
                user_id=user_id, action="transfer", resource=account_id
            )
            raise AccountAccessDeniedError(
                "Source account does not belong to the user",
                {"account_id": account_id}
            )
        return account

    def _check_funds(self, source: Account, amount: Money) -> None:
        if source.balance < amount:
            raise InsufficientFundsError(
                "Insufficient funds",
                {
                    "account_id": source.id,
                    "available": str(source.balance.amount),
                    "requested": str(amount.amount)
                }
            )

    def _execute(
        self,
        user_id: str,
        source: Account,
        amount: Money,
        reference: str,
        destination: Optional[Account],
        beneficiary: Optional[Beneficiary],
        idempotency_key: Optional[str],
        fingerprint: str
    ) -> Transfer:
        """Write the ledger entries and the transfer record; caller holds the locks"""
        transfer_id = str(uuid.uuid4())

        debit = self.ledger.post(
            account_id=source.id,
            amount=-amount,
            category=Category.TRANSFER,
            description=reference or "Transfer",
            transfer_id=transfer_id,
            user_id=user_id
        )

        credit = None
        if destination is not None:
            credit = self.ledger.post(
                account_id=destination.id,
                amount=amount,
                category=Category.TRANSFER,
                description=reference or "Transfer received",
                transfer_id=transfer_id,
                user_id=user_id
            )

        now = datetime.now(timezone.utc)
        transfer = Transfer(
            id=transfer_id,
            created_at=now,
            updated_at=now,
            user_id=user_id,
            kind=TransferKind.OWN_ACCOUNT if destination else TransferKind.BENEFICIARY,
            source_account_id=source.id,
            destination_account_id=destination.id if destination else None,
            beneficiary_id=beneficiary.id if beneficiary else None,
            amount=amount,
            reference=reference,
            status=TransferStatus.COMPLETED if destination else TransferStatus.PENDING,
            source_balance_after=debit.balance_after,
            request_fingerprint=fingerprint,
            idempotency_key=idempotency_key,
            debit_transaction_id=debit.id,
            credit_transaction_id=credit.id if credit else None
        )
        self._save_transfer(transfer)

        self.audit_trail.log_event(
            event_type=(AuditEventType.TRANSFER_COMPLETED if destination
                        else AuditEventType.TRANSFER_PENDING),
            entity_type="transfer",
            entity_id=transfer.id,
            metadata={
                "source_account_id": source.id,
                "destination_account_id": transfer.destination_account_id,
                "beneficiary_id": transfer.beneficiary_id,
                "amount": amount.amount,
                "currency": amount.currency.code,
                "reference": reference,
                "idempotency_key": idempotency_key
            },
            user_id=user_id
        )

        log_action(
            logger, "info", f"Transfer {transfer.id} {transfer.status.value}",
            user_id=user_id, action="transfer", resource=transfer.id,
            extra={"amount": str(amount.amount), "kind": transfer.kind.value}
        )
        return transfer

    def _replay(self, user_id: str, idempotency_key: str,
                fingerprint: str) -> Optional[TransferResult]:
        """Stored result for a repeated key, or None for a new key"""
        existing = self._find_by_idempotency_key(user_id, idempotency_key)
        if existing is None:
            return None
        if existing.request_fingerprint != fingerprint:
            raise IdempotencyConflictError(
                "Idempotency key was already used for a different transfer",
                {"idempotency_key": idempotency_key, "transfer_id": existing.id}
            )
        log_action(
            logger, "info", f"Replaying transfer {existing.id}",
            user_id=user_id, action="transfer_replay", resource=existing.id
        )
        return self._result_for(existing, replayed=True)

    def _result_for(self, transfer: Transfer, replayed: bool) -> TransferResult:
        messages = {
            TransferStatus.COMPLETED: "Transfer completed",
            TransferStatus.PENDING: "Payment submitted and awaiting settlement",
            TransferStatus.SETTLED: "Payment settled",
            TransferStatus.FAILED_PENDING_REVERSAL: "Payment failed and is awaiting reversal",
            TransferStatus.REVERSED: "Payment failed and the amount was returned to your account"
        }
        failed = transfer.status in (TransferStatus.FAILED_PENDING_REVERSAL,
                                     TransferStatus.REVERSED)
        source = self.accounts.get_account(transfer.source_account_id)
        if replayed or source is None:
            balance = transfer.source_balance_after
        else:
            balance = source.balance
        return TransferResult(
            success=not failed,
            transfer_id=transfer.id,
            status=transfer.status,
            source_balance=balance,
            replayed=replayed,
            message=messages[transfer.status]
        )

    # Settlement

    def _submit_to_network(self, transfer: Transfer, beneficiary: Beneficiary) -> Transfer:
        """
        Hand the external leg to the payment network

        Runs outside the account locks. Network errors leave the transfer
        pending with the error recorded; the local debit stands.
        """
        if self.payment_network is None:
            logger.warning(f"No payment network configured; transfer {transfer.id} stays pending")
            return transfer

        instruction = PaymentInstruction(
            transfer_id=transfer.id,
            account_number=beneficiary.account_number,
            bank_name=beneficiary.bank_name,
            branch_code=beneficiary.branch_code,
            amount=transfer.amount.amount,
            currency=transfer.amount.currency.code,
            reference=transfer.reference or beneficiary.reference
        )

        try:
            result = self.payment_network.submit(instruction)
        except PaymentNetworkError as e:
            log_action(
                logger, "warning", f"Payment network error for transfer {transfer.id}: {e.message}",
                user_id=transfer.user_id, action="submit_payment", resource=transfer.id,
                extra={"code": e.code}
            )
            return self._record_network_error(transfer.id, e)

        return self._apply_settlement(transfer.id, result)

    def _record_network_error(self, transfer_id: str, error: PaymentNetworkError) -> Transfer:
        def apply(transfer: Transfer) -> None:
            transfer.network_attempts += 1
            transfer.last_error = f"{error.code}: {error.message}"

        return self._transition(transfer_id, [TransferStatus.PENDING], None, apply)

    def _apply_settlement(self, transfer_id: str, result: SettlementResult) -> Transfer:
        if result.status == SettlementStatus.SETTLED:
            return self.confirm_settlement(transfer_id, True, result.network_reference)
        if result.status == SettlementStatus.FAILED:
            return self.confirm_settlement(
                transfer_id, False, result.network_reference,
                result.reason or "Rejected by payment network"
            )

        def apply(transfer: Transfer) -> None:
            transfer.network_attempts += 1
            transfer.network_reference = result.network_reference

        return self._transition(transfer_id, [TransferStatus.PENDING], None, apply)

    def confirm_settlement(
        self,
        transfer_id: str,
        settled: bool,
        network_reference: Optional[str] = None,
        reason: Optional[str] = None
    ) -> Transfer:
        """
        Record the payment network's final answer for an unresolved transfer

        Accepted while the transfer is pending, and also after it expired to
        failed_pending_reversal, since the network may answer late. A failure
        is reversed straight away with a compensating credit.

        Raises:
            TransferNotFoundError: Unknown transfer
            InvalidTransferStateError: Transfer is already settled or reversed
        """
        unresolved = [TransferStatus.PENDING, TransferStatus.FAILED_PENDING_REVERSAL]
        if settled:
            def apply(transfer: Transfer) -> None:
                transfer.network_attempts += 1
                transfer.network_reference = network_reference or transfer.network_reference
                transfer.settled_at = datetime.now(timezone.utc)
                transfer.failure_reason = None
                transfer.last_error = None

            return self._transition(
                transfer_id, unresolved, TransferStatus.SETTLED, apply,
                AuditEventType.TRANSFER_SETTLED
            )

        def apply_failure(transfer: Transfer) -> None:
            transfer.network_attempts += 1
            transfer.network_reference = network_reference or transfer.network_reference
            transfer.failure_reason = reason or "Rejected by payment network"

        self._transition(
            transfer_id, unresolved, TransferStatus.FAILED_PENDING_REVERSAL,
            apply_failure, AuditEventType.TRANSFER_FAILED
        )
        return self.reverse_transfer(transfer_id)

    def expire_pending_transfers(self, now: Optional[datetime] = None) -> List[Transfer]:
        """
        Mark pending transfers older than the settlement timeout as failed

        Expired transfers wait in failed_pending_reversal for reverse_transfer,
        since the network may still have paid them.

        Returns:
            Transfers that were expired by this call
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - self.settlement_timeout
        expired = []

        for transfer in self.list_transfers_by_status(TransferStatus.PENDING):
            if transfer.created_at > cutoff:
                continue

            def apply(record: Transfer) -> None:
                record.failure_reason = "Settlement timed out"

            try:
                expired.append(self._transition(
                    transfer.id, [TransferStatus.PENDING],
                    TransferStatus.FAILED_PENDING_REVERSAL, apply,
                    AuditEventType.TRANSFER_FAILED
                ))
            except InvalidTransferStateError:
                # Settled or failed while we were scanning
                continue

        if expired:
            log_action(
                logger, "warning", f"Expired {len(expired)} pending transfer(s)",
                action="expire_pending_transfers",
                extra={"transfer_ids": [t.id for t in expired]}
            )
        return expired

    def reverse_transfer(self, transfer_id: str) -> Transfer:
        """
        Return a failed transfer's amount to its source account

        Raises:
            TransferNotFoundError: Unknown transfer
            InvalidTransferStateError: Transfer is not failed_pending_reversal
        """
        transfer = self.require_transfer(transfer_id)

        with self._account_locks([transfer.source_account_id]):
            with self.storage.atomic():
                transfer = self.require_transfer(transfer_id)
                self._check_status(transfer, [TransferStatus.FAILED_PENDING_REVERSAL])

                credit = self.ledger.post(
                    account_id=transfer.source_account_id,
                    amount=transfer.amount,
                    category=Category.TRANSFER,
                    description=f"Reversal: {transfer.reference or 'Transfer'}",
                    transfer_id=transfer.id,
                    user_id=transfer.user_id
                )

                transfer.reversal_transaction_id = credit.id
                transfer.status = TransferStatus.REVERSED
                transfer.updated_at = datetime.now(timezone.utc)
                self._save_transfer(transfer)

                self.audit_trail.log_event(
                    event_type=AuditEventType.TRANSFER_REVERSED,
                    entity_type="transfer",
                    entity_id=transfer.id,
                    metadata={
                        "amount": transfer.amount.amount,
                        "reversal_transaction_id": credit.id,
                        "failure_reason": transfer.failure_reason
                    },
                    user_id=transfer.user_id
                )

        log_action(
            logger, "info", f"Transfer {transfer.id} reversed",
            user_id=transfer.user_id, action="reverse_transfer", resource=transfer.id,
            extra={"amount": str(transfer.amount.amount)}
        )
        return transfer

    def _transition(
        self,
        transfer_id: str,
        allowed_from: List[TransferStatus],
        new_status: Optional[TransferStatus],
        apply,
        event_type: Optional[AuditEventType] = None
    ) -> Transfer:
        """Re-read, check and update a transfer record under its source account lock"""
        transfer = self.require_transfer(transfer_id)

        with self._account_locks([transfer.source_account_id]):
            with self.storage.atomic():
                transfer = self.require_transfer(transfer_id)
                self._check_status(transfer, allowed_from)
                old_status = transfer.status
                apply(transfer)
                if new_status is not None:
                    transfer.status = new_status
                transfer.updated_at = datetime.now(timezone.utc)
                self._save_transfer(transfer)

                if event_type is not None:
                    self.audit_trail.log_event(
                        event_type=event_type,
                        entity_type="transfer",
                        entity_id=transfer.id,
                        metadata={
                            "old_status": old_status,
                            "new_status": transfer.status,
                            "network_reference": transfer.network_reference,
                            "failure_reason": transfer.failure_reason
                        },
                        user_id=transfer.user_id
                    )

        if new_status is not None and new_status != old_status:
            log_action(
                logger, "info", f"Transfer {transfer.id} {old_status.value} -> {new_status.value}",
                user_id=transfer.user_id, action="transfer_status", resource=transfer.id
            )
        return transfer

    @staticmethod
    def _check_status(transfer: Transfer, allowed: List[TransferStatus]) -> None:
        if transfer.status not in allowed:
            raise InvalidTransferStateError(
                f"Transfer {transfer.id} is {transfer.status.value}",
                {
                    "transfer_id": transfer.id,
                    "status": transfer.status.value,
                    "allowed": [s.value for s in allowed]
                }
            )

    # Queries

    def get_transfer(self, transfer_id: str) -> Optional[Transfer]:
        """Get transfer by ID"""
        data = self.storage.load(self.table_name, transfer_id)
        if data:
            return self._transfer_from_dict(data)
        return None

    def require_transfer(self, transfer_id: str) -> Transfer:
        transfer = self.get_transfer(transfer_id)
        if transfer is None:
            raise TransferNotFoundError(
                f"Transfer {transfer_id} not found",
                {"transfer_id": transfer_id}
            )
        return transfer

    def list_user_transfers(self, user_id: str) -> List[Transfer]:
        """Transfers initiated by a user, most recent first"""
        transfers = [
            self._transfer_from_dict(data)
            for data in self.storage.find(self.table_name, {"user_id": user_id})
        ]
        # Stable ascending sort, then reverse, so equal timestamps stay newest first
        transfers.sort(key=lambda t: t.created_at)
        transfers.reverse()
        return transfers

    def list_transfers_by_status(self, status: TransferStatus) -> List[Transfer]:
        return [
            self._transfer_from_dict(data)
            for data in self.storage.find(self.table_name, {"status": status.value})
        ]

    def _find_by_idempotency_key(self, user_id: str, idempotency_key: str) -> Optional[Transfer]:
        """Find transfer by idempotency key (keys are scoped per user)"""
        matches = self.storage.find(
            self.table_name,
            {"idempotency_scope": self._idempotency_scope(user_id, idempotency_key)}
        )
        if matches:
            return self._transfer_from_dict(matches[0])
        return None

    @staticmethod
    def _idempotency_scope(user_id: str, idempotency_key: str) -> str:
        return f"{user_id}:{idempotency_key}"

    # Persistence

    def _save_transfer(self, transfer: Transfer) -> None:
        self.storage.save(self.table_name, transfer.id, self._transfer_to_dict(transfer))

    def _transfer_to_dict(self, transfer: Transfer) -> Dict:
        """Convert Transfer to dictionary for storage"""
        return {
            'id': transfer.id,
            'created_at': transfer.created_at.isoformat(),
            'updated_at': transfer.updated_at.isoformat(),
            'user_id': transfer.user_id,
            'kind': transfer.kind.value,
            'source_account_id': transfer.source_account_id,
            'destination_account_id': transfer.destination_account_id,
            'beneficiary_id': transfer.beneficiary_id,
            'amount': str(transfer.amount.amount),
            'currency': transfer.amount.currency.code,
            'reference': transfer.reference,
            'status': transfer.status.value,
            'source_balance_after': str(transfer.source_balance_after.amount),
            'request_fingerprint': transfer.request_fingerprint,
            'idempotency_key': transfer.idempotency_key,
            'idempotency_scope': (
                self._idempotency_scope(transfer.user_id, transfer.idempotency_key)
                if transfer.idempotency_key else None
            ),
            'debit_transaction_id': transfer.debit_transaction_id,
            'credit_transaction_id': transfer.credit_transaction_id,
            'reversal_transaction_id': transfer.reversal_transaction_id,
            'network_reference': transfer.network_reference,
            'failure_reason': transfer.failure_reason,
            'last_error': transfer.last_error,
            'network_attempts': transfer.network_attempts,
            'settled_at': transfer.settled_at.isoformat() if transfer.settled_at else None
        }

    def _transfer_from_dict(self, data: Dict) -> Transfer:
        """Convert dictionary to Transfer"""
        currency = Currency[data['currency']]
        return Transfer(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            user_id=data['user_id'],
            kind=TransferKind(data['kind']),
            source_account_id=data['source_account_id'],
            destination_account_id=data.get('destination_account_id'),
            beneficiary_id=data.get('beneficiary_id'),
            amount=Money(Decimal(data['amount']), currency),
            reference=data['reference'],
            status=TransferStatus(data['status']),
            source_balance_after=Money(Decimal(data['source_balance_after']), currency),
            request_fingerprint=data['request_fingerprint'],
            idempotency_key=data.get('idempotency_key'),
            debit_transaction_id=data.get('debit_transaction_id'),
            credit_transaction_id=data.get('credit_transaction_id'),
            reversal_transaction_id=data.get('reversal_transaction_id'),
            network_reference=data.get('network_reference'),
            failure_reason=data.get('failure_reason'),
            last_error=data.get('last_error'),
            network_attempts=data.get('network_attempts', 0),
            settled_at=datetime.fromisoformat(data['settled_at']) if data.get('settled_at') else None
        )
