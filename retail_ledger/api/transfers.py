"""
Transfer endpoints
"""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header

from .auth import LedgerSystem, get_ledger_system, get_current_user_id
from .schemas import TransferRequest, SettlementCallback, transfer_to_dict
from ..errors import AuthenticationError, TransferNotFoundError, ValidationError


router = APIRouter()


@router.post("")
def create_transfer(
    request: TransferRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
    user_id: str = Depends(get_current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Transfer to one of the user's own accounts or to a saved beneficiary

    The idempotency key may be sent in the body or the Idempotency-Key header.
    """
    result = system.transfers.transfer(
        user_id=user_id,
        source_account_id=request.source_account_id,
        amount=request.amount,
        reference=request.reference,
        destination_account_id=request.destination_account_id,
        beneficiary_id=request.beneficiary_id,
        idempotency_key=request.idempotency_key or idempotency_key
    )
    return result.to_dict()


@router.get("")
def list_transfers(
    user_id: str = Depends(get_current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List the current user's transfers, most recent first"""
    return {
        "transfers": [transfer_to_dict(t) for t in system.transfers.list_user_transfers(user_id)]
    }


@router.get("/{transfer_id}")
def get_transfer(
    transfer_id: str,
    user_id: str = Depends(get_current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get one of the current user's transfers"""
    transfer = system.transfers.get_transfer(transfer_id)
    if transfer is None or transfer.user_id != user_id:
        raise TransferNotFoundError(f"Transfer {transfer_id} not found", {"transfer_id": transfer_id})
    return transfer_to_dict(transfer)


def require_network_key(
    network_key: Optional[str] = Header(None, alias="X-Network-Key"),
    system: LedgerSystem = Depends(get_ledger_system)
) -> None:
    """Callers acting for the payment network must present its shared key"""
    expected = system.config.payment_network_api_key
    if not expected or not network_key or not hmac.compare_digest(network_key, expected):
        raise AuthenticationError("Invalid payment network key")


@router.post("/{transfer_id}/settlement", dependencies=[Depends(require_network_key)])
def settlement_callback(
    transfer_id: str,
    callback: SettlementCallback,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Asynchronous settlement answer from the payment network

    Also accepted for transfers that already expired to failed_pending_reversal.
    """
    status = callback.status.lower()
    if status not in ("settled", "failed"):
        raise ValidationError("Settlement status must be 'settled' or 'failed'", {"status": status})

    transfer = system.transfers.confirm_settlement(
        transfer_id,
        settled=status == "settled",
        network_reference=callback.network_reference,
        reason=callback.reason
    )
    return transfer_to_dict(transfer)


@router.post("/{transfer_id}/reversal", dependencies=[Depends(require_network_key)])
def reverse_transfer(
    transfer_id: str,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Return an expired transfer's amount once the network confirms it was not paid"""
    return transfer_to_dict(system.transfers.reverse_transfer(transfer_id))
