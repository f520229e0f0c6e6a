"""
Test suite for the transfer engine

CRITICAL: Money is never created or lost. A rejected transfer leaves every
balance untouched, an accepted one moves exactly the requested amount, and
a retried request with the same idempotency key moves nothing further.
"""

import threading
import pytest
from decimal import Decimal
from datetime import datetime, timedelta, timezone

from retail_ledger.currency import Money, Currency
from retail_ledger.storage import InMemoryStorage
from retail_ledger.audit import AuditTrail, AuditEventType
from retail_ledger.accounts import AccountStore, AccountType
from retail_ledger.transactions import TransactionLog, Direction, Category
from retail_ledger.ledger import Ledger
from retail_ledger.users import UserDirectory
from retail_ledger.beneficiaries import BeneficiaryDirectory
from retail_ledger.payment_network import MockPaymentNetworkClient
from retail_ledger.transfers import TransferEngine, TransferStatus, TransferKind
from retail_ledger.errors import (
    InvalidAmountError, InvalidDestinationError, AccountNotFoundError,
    AccountAccessDeniedError, BeneficiaryNotFoundError, InsufficientFundsError,
    IdempotencyConflictError, InvalidTransferStateError, TransferNotFoundError
)


def zar(value: str) -> Money:
    return Money(Decimal(value), Currency.ZAR)


class TransferTestBase:
    """Two users; Sarah owns a current (1000.00) and savings (200.00) account"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit = AuditTrail(self.storage)
        self.accounts = AccountStore(self.storage, self.audit)
        self.transactions = TransactionLog(self.storage)
        self.ledger = Ledger(self.storage, self.accounts, self.transactions, self.audit)
        self.users = UserDirectory(self.storage, self.accounts, self.audit)
        self.beneficiaries = BeneficiaryDirectory(self.storage, self.users, self.audit)
        self.network = MockPaymentNetworkClient()
        self.engine = TransferEngine(
            self.storage, self.accounts, self.beneficiaries, self.ledger, self.audit,
            payment_network=self.network, settlement_timeout_seconds=900
        )

        self.sarah = self.users.create_user(
            first_name="Sarah", last_name="Johnson", email="sarah@example.com",
            username="sarah", password="Password123"
        )
        self.john = self.users.create_user(
            first_name="John", last_name="Smith", email="john@example.com",
            username="john", password="Password123"
        )
        self.current = self.accounts.create_account(
            self.sarah.id, "Global One Account", AccountType.CURRENT, opening_balance=zar("1000.00")
        )
        self.savings = self.accounts.create_account(
            self.sarah.id, "Savings Account", AccountType.SAVINGS, opening_balance=zar("200.00")
        )
        self.johns_account = self.accounts.create_account(
            self.john.id, "Global One Account", AccountType.CURRENT, opening_balance=zar("300.00")
        )
        self.payee = self.beneficiaries.add_beneficiary(
            self.sarah.id, "John Smith", "5678901234", "FNB", "250655", reference="John"
        )

    def balance(self, account) -> Money:
        return self.accounts.get_account(account.id).balance

    def assert_untouched(self):
        assert self.balance(self.current) == zar("1000.00")
        assert self.balance(self.savings) == zar("200.00")
        assert self.balance(self.johns_account) == zar("300.00")
        assert self.transactions.entries_for_account(self.current.id) == []
        assert self.engine.list_user_transfers(self.sarah.id) == []

    def assert_reconciled(self):
        assert all(r.is_balanced for r in self.ledger.reconcile_all())


class TestOwnAccountTransfer(TransferTestBase):
    """Transfers between a user's own accounts"""

    def test_transfer_moves_exact_amount(self):
        result = self.engine.transfer(
            self.sarah.id, self.current.id, "250.50", reference="rent",
            destination_account_id=self.savings.id
        )

        assert result.success
        assert result.status == TransferStatus.COMPLETED
        assert result.source_balance == zar("749.50")
        assert self.balance(self.current) == zar("749.50")
        assert self.balance(self.savings) == zar("450.50")

        debit = self.transactions.list_for_account(self.current.id)[0]
        credit = self.transactions.list_for_account(self.savings.id)[0]
        assert (debit.description, debit.amount, debit.direction) == ("rent", zar("-250.50"), Direction.DEBIT)
        assert (credit.description, credit.amount, credit.direction) == ("rent", zar("250.50"), Direction.CREDIT)
        assert debit.category == Category.TRANSFER
        assert debit.transfer_id == credit.transfer_id == result.transfer_id
        self.assert_reconciled()

    def test_default_descriptions(self):
        self.engine.transfer(self.sarah.id, self.current.id, "10", destination_account_id=self.savings.id)

        assert self.transactions.list_for_account(self.current.id)[0].description == "Transfer"
        assert self.transactions.list_for_account(self.savings.id)[0].description == "Transfer received"

    def test_transfer_record(self):
        result = self.engine.transfer(
            self.sarah.id, self.current.id, Decimal('5.00'), destination_account_id=self.savings.id
        )
        transfer = self.engine.get_transfer(result.transfer_id)

        assert transfer.kind == TransferKind.OWN_ACCOUNT
        assert transfer.is_final
        assert transfer.source_balance_after == zar("995.00")
        assert [t.id for t in self.transactions.list_for_transfer(transfer.id)] == [
            transfer.debit_transaction_id, transfer.credit_transaction_id
        ]
        events = self.audit.get_events_for_entity("transfer", transfer.id)
        assert events[0].event_type == AuditEventType.TRANSFER_COMPLETED

    def test_whole_balance_can_be_moved(self):
        result = self.engine.transfer(
            self.sarah.id, self.current.id, "1000.00", destination_account_id=self.savings.id
        )
        assert result.source_balance == zar("0.00")

    def test_insufficient_funds_changes_nothing(self):
        with pytest.raises(InsufficientFundsError) as exc_info:
            self.engine.transfer(
                self.sarah.id, self.current.id, "1000.01", destination_account_id=self.savings.id
            )
        assert exc_info.value.details["available"] == "1000.00"
        self.assert_untouched()

    @pytest.mark.parametrize("amount", ["0", "0.00", "-250.50", "abc", "NaN", "Infinity", None, "1.001"])
    def test_invalid_amount_rejected(self, amount):
        with pytest.raises(InvalidAmountError):
            self.engine.transfer(
                self.sarah.id, self.current.id, amount, destination_account_id=self.savings.id
            )
        self.assert_untouched()

    def test_same_account_rejected(self):
        with pytest.raises(InvalidDestinationError):
            self.engine.transfer(
                self.sarah.id, self.current.id, "10", destination_account_id=self.current.id
            )
        self.assert_untouched()

    def test_destination_and_beneficiary_are_exclusive(self):
        with pytest.raises(InvalidDestinationError):
            self.engine.transfer(
                self.sarah.id, self.current.id, "10",
                destination_account_id=self.savings.id, beneficiary_id=self.payee.id
            )
        with pytest.raises(InvalidDestinationError):
            self.engine.transfer(self.sarah.id, self.current.id, "10")
        self.assert_untouched()

    def test_unknown_accounts(self):
        with pytest.raises(AccountNotFoundError):
            self.engine.transfer(self.sarah.id, "missing", "10", destination_account_id=self.savings.id)
        with pytest.raises(AccountNotFoundError):
            self.engine.transfer(self.sarah.id, self.current.id, "10", destination_account_id="missing")
        self.assert_untouched()

    def test_foreign_source_denied(self):
        with pytest.raises(AccountAccessDeniedError):
            self.engine.transfer(
                self.sarah.id, self.johns_account.id, "10", destination_account_id=self.savings.id
            )
        self.assert_untouched()

    def test_foreign_destination_denied(self):
        with pytest.raises(AccountAccessDeniedError):
            self.engine.transfer(
                self.sarah.id, self.current.id, "10", destination_account_id=self.johns_account.id
            )
        self.assert_untouched()

    def test_amount_checked_before_anything_else(self):
        """An invalid amount wins over an unknown or foreign account"""
        with pytest.raises(InvalidAmountError):
            self.engine.transfer(self.sarah.id, "missing", "-5", destination_account_id="missing")
        with pytest.raises(InvalidAmountError):
            self.engine.transfer(self.sarah.id, self.johns_account.id, "0", beneficiary_id=self.payee.id)

    def test_ownership_checked_before_funds(self):
        with pytest.raises(AccountAccessDeniedError):
            self.engine.transfer(
                self.sarah.id, self.johns_account.id, "5000.00", destination_account_id=self.savings.id
            )

    def test_failure_mid_transfer_rolls_back(self, monkeypatch):
        original_post = self.ledger.post
        calls = []

        def failing_post(*args, **kwargs):
            calls.append(kwargs["account_id"])
            if len(calls) == 2:
                raise RuntimeError("storage failure")
            return original_post(*args, **kwargs)

        monkeypatch.setattr(self.ledger, "post", failing_post)
        with pytest.raises(RuntimeError):
            self.engine.transfer(
                self.sarah.id, self.current.id, "100", destination_account_id=self.savings.id
            )
        self.assert_untouched()
        self.assert_reconciled()

    def test_concurrent_transfers_never_overdraw(self):
        """Ten threads each try to move 150.00 out of 1000.00"""
        results = []
        errors = []

        def worker():
            try:
                results.append(self.engine.transfer(
                    self.sarah.id, self.current.id, "150.00", destination_account_id=self.savings.id
                ))
            except InsufficientFundsError as e:
                errors.append(e)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(results) == 6
        assert len(errors) == 4
        assert self.balance(self.current) == zar("100.00")
        assert self.balance(self.savings) == zar("1100.00")
        self.assert_reconciled()

    def test_opposite_direction_transfers_do_not_deadlock(self):
        def forward():
            for _ in range(20):
                self.engine.transfer(self.sarah.id, self.current.id, "1", destination_account_id=self.savings.id)

        def backward():
            for _ in range(20):
                self.engine.transfer(self.sarah.id, self.savings.id, "1", destination_account_id=self.current.id)

        threads = [threading.Thread(target=forward), threading.Thread(target=backward)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
            assert not thread.is_alive()

        assert self.balance(self.current) == zar("1000.00")
        assert self.balance(self.savings) == zar("200.00")
        self.assert_reconciled()


class TestIdempotency(TransferTestBase):
    """Retries with the same idempotency key"""

    def test_replay_returns_original_result(self):
        first = self.engine.transfer(
            self.sarah.id, self.current.id, "250.50", reference="rent",
            destination_account_id=self.savings.id, idempotency_key="key-1"
        )
        second = self.engine.transfer(
            self.sarah.id, self.current.id, "250.50", reference="rent",
            destination_account_id=self.savings.id, idempotency_key="key-1"
        )

        assert second.replayed
        assert second.transfer_id == first.transfer_id
        assert second.source_balance == zar("749.50")
        assert self.balance(self.current) == zar("749.50")
        assert len(self.transactions.entries_for_account(self.current.id)) == 1

    def test_replay_survives_later_balance_changes(self):
        first = self.engine.transfer(
            self.sarah.id, self.current.id, "900.00",
            destination_account_id=self.savings.id, idempotency_key="key-1"
        )
        self.engine.transfer(self.sarah.id, self.current.id, "100.00", destination_account_id=self.savings.id)

        # Balance is now 0.00; the replay must not fail the funds check
        replay = self.engine.transfer(
            self.sarah.id, self.current.id, "900.00",
            destination_account_id=self.savings.id, idempotency_key="key-1"
        )
        assert replay.transfer_id == first.transfer_id
        assert replay.source_balance == zar("100.00")

    def test_key_reuse_for_different_request_conflicts(self):
        self.engine.transfer(
            self.sarah.id, self.current.id, "10.00",
            destination_account_id=self.savings.id, idempotency_key="key-1"
        )
        with pytest.raises(IdempotencyConflictError):
            self.engine.transfer(
                self.sarah.id, self.current.id, "20.00",
                destination_account_id=self.savings.id, idempotency_key="key-1"
            )
        assert self.balance(self.current) == zar("990.00")

    def test_keys_are_scoped_per_user(self):
        self.engine.transfer(
            self.sarah.id, self.current.id, "10.00",
            destination_account_id=self.savings.id, idempotency_key="shared"
        )
        johns_savings = self.accounts.create_account(self.john.id, "Savings", AccountType.SAVINGS)
        result = self.engine.transfer(
            self.john.id, self.johns_account.id, "10.00",
            destination_account_id=johns_savings.id, idempotency_key="shared"
        )
        assert not result.replayed
        assert self.balance(self.johns_account) == zar("290.00")

    def test_concurrent_retries_move_money_once(self):
        results = []

        def worker():
            results.append(self.engine.transfer(
                self.sarah.id, self.current.id, "100.00",
                destination_account_id=self.savings.id, idempotency_key="retry"
            ))

        threads = [threading.Thread(target=worker) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len({r.transfer_id for r in results}) == 1
        assert sum(1 for r in results if not r.replayed) == 1
        assert self.balance(self.current) == zar("900.00")


class TestBeneficiaryTransfer(TransferTestBase):
    """External payments through the payment network"""

    def test_settled_payment(self):
        result = self.engine.transfer(
            self.sarah.id, self.current.id, "250.50", reference="rent", beneficiary_id=self.payee.id
        )

        assert result.success
        assert result.status == TransferStatus.SETTLED
        assert result.source_balance == zar("749.50")

        transfer = self.engine.get_transfer(result.transfer_id)
        assert transfer.kind == TransferKind.BENEFICIARY
        assert transfer.network_reference == "MOCK00000001"
        assert transfer.settled_at is not None
        assert transfer.credit_transaction_id is None

        instruction = self.network.submitted[0]
        assert instruction.transfer_id == transfer.id
        assert instruction.account_number == "5678901234"
        assert instruction.amount == Decimal('250.50')
        assert instruction.reference == "rent"
        self.assert_reconciled()

    def test_instruction_falls_back_to_beneficiary_reference(self):
        self.engine.transfer(self.sarah.id, self.current.id, "10", beneficiary_id=self.payee.id)
        assert self.network.submitted[0].reference == "John"

    def test_failed_payment_is_reversed(self):
        self.network.set_outcome("failed")
        result = self.engine.transfer(self.sarah.id, self.current.id, "250.50", beneficiary_id=self.payee.id)

        assert not result.success
        assert result.status == TransferStatus.REVERSED
        assert result.source_balance == zar("1000.00")

        history = self.transactions.list_for_account(self.current.id)
        assert [t.amount for t in history] == [zar("250.50"), zar("-250.50")]
        assert history[0].description.startswith("Reversal")

        transfer = self.engine.get_transfer(result.transfer_id)
        assert transfer.failure_reason == "Payee account rejected the payment"
        assert transfer.reversal_transaction_id == history[0].id
        event_types = [e.event_type for e in self.audit.get_events_for_entity("transfer", transfer.id)]
        assert event_types == [
            AuditEventType.TRANSFER_PENDING,
            AuditEventType.TRANSFER_FAILED,
            AuditEventType.TRANSFER_REVERSED
        ]
        self.assert_reconciled()

    @pytest.mark.parametrize("outcome", ["error", "timeout"])
    def test_network_errors_leave_transfer_pending(self, outcome):
        self.network.set_outcome(outcome)
        result = self.engine.transfer(self.sarah.id, self.current.id, "100", beneficiary_id=self.payee.id)

        assert result.success
        assert result.status == TransferStatus.PENDING
        assert self.balance(self.current) == zar("900.00")

        transfer = self.engine.get_transfer(result.transfer_id)
        assert transfer.network_attempts == 1
        assert transfer.last_error.startswith("payment_network")

    def test_pending_answer_then_confirmation(self):
        self.network.set_outcome("pending")
        result = self.engine.transfer(self.sarah.id, self.current.id, "100", beneficiary_id=self.payee.id)
        assert result.status == TransferStatus.PENDING

        settled = self.engine.confirm_settlement(result.transfer_id, True, network_reference="NET42")
        assert settled.status == TransferStatus.SETTLED
        assert settled.network_reference == "NET42"

        with pytest.raises(InvalidTransferStateError):
            self.engine.confirm_settlement(result.transfer_id, False, reason="late")
        assert self.balance(self.current) == zar("900.00")

    def test_pending_then_failed_confirmation_reverses(self):
        self.network.set_outcome("pending")
        result = self.engine.transfer(self.sarah.id, self.current.id, "100", beneficiary_id=self.payee.id)

        reversed_transfer = self.engine.confirm_settlement(result.transfer_id, False, reason="Account closed")
        assert reversed_transfer.status == TransferStatus.REVERSED
        assert reversed_transfer.failure_reason == "Account closed"
        assert self.balance(self.current) == zar("1000.00")

    def test_expire_pending_transfers(self):
        self.network.set_outcome("timeout")
        result = self.engine.transfer(self.sarah.id, self.current.id, "100", beneficiary_id=self.payee.id)

        assert self.engine.expire_pending_transfers() == []

        later = datetime.now(timezone.utc) + timedelta(seconds=901)
        expired = self.engine.expire_pending_transfers(now=later)
        assert [t.id for t in expired] == [result.transfer_id]
        assert expired[0].status == TransferStatus.FAILED_PENDING_REVERSAL
        assert expired[0].failure_reason == "Settlement timed out"

        # Money stays debited until an explicit reversal
        assert self.balance(self.current) == zar("900.00")
        reversed_transfer = self.engine.reverse_transfer(result.transfer_id)
        assert reversed_transfer.status == TransferStatus.REVERSED
        assert self.balance(self.current) == zar("1000.00")

        with pytest.raises(InvalidTransferStateError):
            self.engine.reverse_transfer(result.transfer_id)
        self.assert_reconciled()

    def expired_transfer(self):
        self.network.set_outcome("pending")
        result = self.engine.transfer(self.sarah.id, self.current.id, "100", beneficiary_id=self.payee.id)
        later = datetime.now(timezone.utc) + timedelta(hours=1)
        assert [t.id for t in self.engine.expire_pending_transfers(now=later)] == [result.transfer_id]
        return result.transfer_id

    def test_late_settlement_after_expiry(self):
        transfer_id = self.expired_transfer()

        settled = self.engine.confirm_settlement(transfer_id, True, network_reference="NETREF")
        assert settled.status == TransferStatus.SETTLED
        assert settled.network_reference == "NETREF"
        assert settled.failure_reason is None
        assert self.balance(self.current) == zar("900.00")

        with pytest.raises(InvalidTransferStateError):
            self.engine.reverse_transfer(transfer_id)
        self.assert_reconciled()

    def test_late_failure_after_expiry_reverses(self):
        transfer_id = self.expired_transfer()

        reversed_transfer = self.engine.confirm_settlement(transfer_id, False, reason="Account closed")
        assert reversed_transfer.status == TransferStatus.REVERSED
        assert reversed_transfer.failure_reason == "Account closed"
        assert self.balance(self.current) == zar("1000.00")

        event_types = [e.event_type for e in self.audit.get_events_for_entity("transfer", transfer_id)]
        assert event_types == [
            AuditEventType.TRANSFER_PENDING,
            AuditEventType.TRANSFER_FAILED,
            AuditEventType.TRANSFER_FAILED,
            AuditEventType.TRANSFER_REVERSED
        ]
        with pytest.raises(InvalidTransferStateError):
            self.engine.confirm_settlement(transfer_id, True)
        self.assert_reconciled()

    def test_cannot_reverse_settled_transfer(self):
        result = self.engine.transfer(self.sarah.id, self.current.id, "100", beneficiary_id=self.payee.id)
        with pytest.raises(InvalidTransferStateError):
            self.engine.reverse_transfer(result.transfer_id)

    def test_unknown_transfer(self):
        with pytest.raises(TransferNotFoundError):
            self.engine.confirm_settlement("missing", True)

    def test_other_users_beneficiary_not_found(self):
        johns_payee = self.beneficiaries.add_beneficiary(
            self.john.id, "Landlord", "9998887776", "ABSA", "632005"
        )
        with pytest.raises(BeneficiaryNotFoundError):
            self.engine.transfer(self.sarah.id, self.current.id, "10", beneficiary_id=johns_payee.id)
        self.assert_untouched()

    def test_insufficient_funds_never_reaches_network(self):
        with pytest.raises(InsufficientFundsError):
            self.engine.transfer(self.sarah.id, self.current.id, "5000", beneficiary_id=self.payee.id)
        assert self.network.submitted == []

    def test_without_network_transfer_stays_pending(self):
        engine = TransferEngine(
            self.storage, self.accounts, self.beneficiaries, self.ledger, self.audit
        )
        result = engine.transfer(self.sarah.id, self.current.id, "10", beneficiary_id=self.payee.id)
        assert result.status == TransferStatus.PENDING


class TestTransferQueries(TransferTestBase):

    def test_list_user_transfers_newest_first(self):
        first = self.engine.transfer(self.sarah.id, self.current.id, "1", destination_account_id=self.savings.id)
        second = self.engine.transfer(self.sarah.id, self.current.id, "2", beneficiary_id=self.payee.id)

        listed = self.engine.list_user_transfers(self.sarah.id)
        assert [t.id for t in listed] == [second.transfer_id, first.transfer_id]
        assert self.engine.list_user_transfers(self.john.id) == []

    def test_list_by_status(self):
        self.network.set_outcome("pending")
        pending = self.engine.transfer(self.sarah.id, self.current.id, "1", beneficiary_id=self.payee.id)
        self.engine.transfer(self.sarah.id, self.current.id, "1", destination_account_id=self.savings.id)

        assert [t.id for t in self.engine.list_transfers_by_status(TransferStatus.PENDING)] == [
            pending.transfer_id
        ]

    def test_result_to_dict(self):
        result = self.engine.transfer(self.sarah.id, self.current.id, "250.50", destination_account_id=self.savings.id)
        data = result.to_dict()
        assert data["status"] == "completed"
        assert data["source_balance"] == "749.50"
        assert data["currency"] == "ZAR"
        assert data["replayed"] is False
