"""
Pydantic schemas for API requests and response serialization helpers
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from ..accounts import Account
from ..transactions import Transaction
from ..beneficiaries import Beneficiary
from ..transfers import Transfer
from ..auth import AuthToken


# Auth schemas
class LoginRequest(BaseModel):
    username: str
    password: str


class BiometricLoginRequest(BaseModel):
    username: str
    device_credential: str = Field("", description="Credential returned when the device was enrolled")


# User schemas
class RegisterRequest(BaseModel):
    first_name: str
    last_name: str
    email: str
    username: str
    password: str
    phone_number: str = ""
    id_number: str = ""


class UpdateProfileRequest(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    profile_image: Optional[str] = Field(None, description="Image URL or data URI; empty string removes it")


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


# Beneficiary schemas
class CreateBeneficiaryRequest(BaseModel):
    name: str
    account_number: str
    bank_name: str
    branch_code: str
    reference: str = ""


# Transfer schemas
class TransferRequest(BaseModel):
    source_account_id: str
    amount: str = Field(..., description="Decimal amount as string")
    reference: str = ""
    destination_account_id: Optional[str] = None
    beneficiary_id: Optional[str] = None
    idempotency_key: Optional[str] = Field(None, max_length=128)


class SettlementCallback(BaseModel):
    status: str = Field(..., description="settled or failed")
    network_reference: Optional[str] = None
    reason: Optional[str] = None


# Response helpers

def token_to_dict(token: AuthToken) -> Dict[str, Any]:
    return {
        "access_token": token.access_token,
        "token_type": token.token_type,
        "expires_at": token.expires_at.isoformat(),
        "method": token.method,
        "user": token.user.to_public_dict()
    }


def account_to_dict(account: Account) -> Dict[str, Any]:
    return {
        "id": account.id,
        "user_id": account.user_id,
        "name": account.name,
        "account_number": account.account_number,
        "masked_number": account.masked_number,
        "account_type": account.account_type.value,
        "balance": str(account.balance.amount),
        "currency": account.currency.code,
        "created_at": account.created_at.isoformat()
    }


def transaction_to_dict(txn: Transaction) -> Dict[str, Any]:
    return {
        "id": txn.id,
        "account_id": txn.account_id,
        "timestamp": txn.timestamp.isoformat(),
        "description": txn.description,
        "amount": str(txn.amount.amount),
        "currency": txn.amount.currency.code,
        "direction": txn.direction.value,
        "category": txn.category.value,
        "sequence": txn.sequence,
        "balance_after": str(txn.balance_after.amount),
        "transfer_id": txn.transfer_id
    }


def beneficiary_to_dict(beneficiary: Beneficiary) -> Dict[str, Any]:
    return {
        "id": beneficiary.id,
        "name": beneficiary.name,
        "account_number": beneficiary.account_number,
        "bank_name": beneficiary.bank_name,
        "branch_code": beneficiary.branch_code,
        "reference": beneficiary.reference
    }


def transfer_to_dict(transfer: Transfer) -> Dict[str, Any]:
    return {
        "id": transfer.id,
        "kind": transfer.kind.value,
        "status": transfer.status.value,
        "source_account_id": transfer.source_account_id,
        "destination_account_id": transfer.destination_account_id,
        "beneficiary_id": transfer.beneficiary_id,
        "amount": str(transfer.amount.amount),
        "currency": transfer.amount.currency.code,
        "reference": transfer.reference,
        "idempotency_key": transfer.idempotency_key,
        "network_reference": transfer.network_reference,
        "failure_reason": transfer.failure_reason,
        "last_error": transfer.last_error,
        "created_at": transfer.created_at.isoformat(),
        "updated_at": transfer.updated_at.isoformat()
    }
