"""
Spending insight endpoints
"""

from fastapi import APIRouter, Depends

from .auth import LedgerSystem, get_ledger_system, get_current_user_id
from .accounts import owned_account
from ..insights import InsightWindow, build_insights


router = APIRouter()


@router.get("/{account_id}")
def get_insights(
    account_id: str,
    window: InsightWindow = InsightWindow.MONTH,
    user_id: str = Depends(get_current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Spending by category, trend and income vs expense for one account"""
    account = owned_account(system, user_id, account_id)
    report = build_insights(system.transactions.list_for_account(account.id), window)
    return {"account_id": account.id, "currency": account.currency.code, **report.to_dict()}
