"""
Beneficiary endpoints
"""

from fastapi import APIRouter, Depends

from .auth import LedgerSystem, get_ledger_system, get_current_user_id
from .schemas import CreateBeneficiaryRequest, beneficiary_to_dict


router = APIRouter()


@router.get("")
def list_beneficiaries(
    user_id: str = Depends(get_current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """List the current user's beneficiaries"""
    return {
        "beneficiaries": [
            beneficiary_to_dict(b) for b in system.beneficiaries.list_user_beneficiaries(user_id)
        ]
    }


@router.post("", status_code=201)
def add_beneficiary(
    request: CreateBeneficiaryRequest,
    user_id: str = Depends(get_current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Save a new beneficiary"""
    beneficiary = system.beneficiaries.add_beneficiary(
        user_id=user_id,
        name=request.name,
        account_number=request.account_number,
        bank_name=request.bank_name,
        branch_code=request.branch_code,
        reference=request.reference
    )
    return beneficiary_to_dict(beneficiary)


@router.get("/{beneficiary_id}")
def get_beneficiary(
    beneficiary_id: str,
    user_id: str = Depends(get_current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get one of the current user's beneficiaries"""
    return beneficiary_to_dict(system.beneficiaries.get_user_beneficiary(user_id, beneficiary_id))
