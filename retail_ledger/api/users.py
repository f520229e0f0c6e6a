"""
Registration and profile endpoints
"""

from fastapi import APIRouter, Depends

from .auth import LedgerSystem, get_ledger_system, get_current_user_id
from .schemas import (
    RegisterRequest, UpdateProfileRequest, ChangePasswordRequest, account_to_dict
)


router = APIRouter()


@router.post("/register", status_code=201)
def register(
    request: RegisterRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Register a user; a current and a savings account are opened with it"""
    user = system.users.register(
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        username=request.username,
        password=request.password,
        phone_number=request.phone_number,
        id_number=request.id_number
    )
    return {
        "user": user.to_public_dict(),
        "accounts": [account_to_dict(a) for a in system.accounts.list_user_accounts(user.id)],
        "message": "Registration successful"
    }


@router.get("/me")
def get_profile(
    user_id: str = Depends(get_current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Get the current user's profile"""
    return system.users.require_user(user_id).to_public_dict()


@router.patch("/me")
def update_profile(
    request: UpdateProfileRequest,
    user_id: str = Depends(get_current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Update the current user's profile"""
    user = system.users.update_profile(
        user_id,
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        phone_number=request.phone_number,
        profile_image=request.profile_image
    )
    return user.to_public_dict()


@router.post("/me/password")
def change_password(
    request: ChangePasswordRequest,
    user_id: str = Depends(get_current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Change the current user's password"""
    system.users.change_password(user_id, request.current_password, request.new_password)
    return {"message": "Password updated"}
