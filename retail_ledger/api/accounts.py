"""
Account and transaction history endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from .auth import LedgerSystem, get_ledger_system, get_current_user_id
from .schemas import account_to_dict, transaction_to_dict
from ..accounts import Account
from ..transactions import Direction, DateRange, TransactionFilter
from ..errors import AccountAccessDeniedError


router = APIRouter()


def owned_account(system: LedgerSystem, user_id: str, account_id: str) -> Account:
    """Fetch an account the caller owns"""
    account = system.accounts.require_account(account_id)
    if account.user_id != user_id:
        raise AccountAccessDeniedError(
            "Account does not belong to the user",
            {"account_id": account_id}
        )
    return account


@router.get("")
def list_accounts(
    user_id: str = Depends(get_current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List the current user's accounts"""
    accounts = system.accounts.list_user_accounts(user_id)
    total = system.accounts.total_balance(user_id)
    return {
        "accounts": [account_to_dict(a) for a in accounts],
        "total_balance": str(total.amount),
        "currency": total.currency.code
    }


@router.get("/{account_id}")
def get_account(
    account_id: str,
    user_id: str = Depends(get_current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get one of the current user's accounts"""
    return account_to_dict(owned_account(system, user_id, account_id))


@router.get("/{account_id}/transactions")
def list_transactions(
    account_id: str,
    search: str = "",
    direction: Optional[Direction] = None,
    date_range: DateRange = DateRange.ALL,
    limit: Optional[int] = Query(None, ge=1, le=1000),
    user_id: str = Depends(get_current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Transaction history, most recent first, with optional filters"""
    owned_account(system, user_id, account_id)
    transactions = system.transactions.search(
        account_id,
        TransactionFilter(search=search, direction=direction, date_range=date_range)
    )
    if limit:
        transactions = transactions[:limit]
    return {
        "account_id": account_id,
        "transactions": [transaction_to_dict(t) for t in transactions],
        "count": len(transactions)
    }
