"""
Login and biometric endpoints
"""

from fastapi import APIRouter, Depends

from .auth import LedgerSystem, get_ledger_system, get_current_user_id
from .schemas import LoginRequest, BiometricLoginRequest, token_to_dict


router = APIRouter()


@router.post("/login")
def login(
    request: LoginRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Authenticate with username and password and return a bearer token"""
    token = system.auth.login(request.username, request.password)
    return token_to_dict(token)


@router.post("/biometric/login")
def biometric_login(
    request: BiometricLoginRequest,
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Authenticate an enrolled user with the device biometric check"""
    token = system.auth.login_with_biometric(request.username, request.device_credential)
    return token_to_dict(token)


@router.post("/biometric/enroll")
def enroll_biometric(
    user_id: str = Depends(get_current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Enable biometric login for the current user

    The device credential is returned only here; the device keeps it behind
    its biometric prompt and sends it with every biometric login.
    """
    device_credential = system.auth.enroll_biometric(user_id)
    return {
        **system.auth.biometric_status(user_id),
        "device_credential": device_credential,
        "message": "Biometric login enabled"
    }


@router.get("/biometric/status")
def biometric_status(
    user_id: str = Depends(get_current_user_id),
    system: LedgerSystem = Depends(get_ledger_system)
):
    """Whether biometrics are available and enrolled for the current user"""
    return system.auth.biometric_status(user_id)
