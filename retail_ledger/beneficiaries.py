"""
Beneficiary Directory Module

Per-user address book of external payees. Transfers look beneficiaries up
but never change them.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
import uuid

from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .users import UserDirectory
from .errors import ValidationError, BeneficiaryNotFoundError
from .logging_config import get_logger, log_action

logger = get_logger("retail_ledger.beneficiaries")


@dataclass
class Beneficiary(StorageRecord):
    """External payee saved by a user"""
    user_id: str
    name: str
    account_number: str
    bank_name: str
    branch_code: str
    reference: str = ""


class BeneficiaryDirectory:
    """
    Beneficiary records indexed by owning user
    """

    def __init__(self, storage: StorageInterface, users: UserDirectory, audit_trail: AuditTrail):
        self.storage = storage
        self.users = users
        self.audit_trail = audit_trail
        self.table_name = "beneficiaries"
        self.storage.ensure_index(self.table_name, "user_id")

    def add_beneficiary(
        self,
        user_id: str,
        name: str,
        account_number: str,
        bank_name: str,
        branch_code: str,
        reference: str = "",
        beneficiary_id: Optional[str] = None
    ) -> Beneficiary:
        """
        Save a payee to a user's address book

        Args:
            user_id: Owning user (must exist)
            name: Payee display name
            account_number: External account number, digits only
            bank_name: Payee bank
            branch_code: Bank branch code, digits only
            reference: Default reference text for payments

        Returns:
            Created Beneficiary object
        """
        self.users.require_user(user_id)

        fields = {
            "name": name,
            "account_number": account_number,
            "bank_name": bank_name,
            "branch_code": branch_code
        }
        for field_name, value in fields.items():
            if value is None or not str(value).strip():
                raise ValidationError(f"{field_name} is required", {"field": field_name})
            fields[field_name] = str(value).strip()

        for field_name in ("account_number", "branch_code"):
            if not fields[field_name].isdigit():
                raise ValidationError(
                    f"{field_name} must contain digits only",
                    {"field": field_name}
                )

        now = datetime.now(timezone.utc)
        beneficiary = Beneficiary(
            id=beneficiary_id or str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            user_id=user_id,
            reference=(reference or "").strip(),
            **fields
        )

        with self.storage.atomic():
            self.storage.save(self.table_name, beneficiary.id, beneficiary.to_dict())
            self.audit_trail.log_event(
                event_type=AuditEventType.BENEFICIARY_ADDED,
                entity_type="beneficiary",
                entity_id=beneficiary.id,
                metadata={
                    "name": beneficiary.name,
                    "bank_name": beneficiary.bank_name,
                    "account_number": beneficiary.account_number
                },
                user_id=user_id
            )

        log_action(
            logger, "info", f"Beneficiary {beneficiary.name} added",
            user_id=user_id, action="add_beneficiary", resource=beneficiary.id
        )
        return beneficiary

    def get_beneficiary(self, beneficiary_id: str) -> Optional[Beneficiary]:
        """Get beneficiary by ID"""
        data = self.storage.load(self.table_name, beneficiary_id)
        if data:
            return self._beneficiary_from_dict(data)
        return None

    def get_user_beneficiary(self, user_id: str, beneficiary_id: str) -> Beneficiary:
        """
        Get a beneficiary owned by a user

        Someone else's beneficiary is reported as not found.
        """
        beneficiary = self.get_beneficiary(beneficiary_id)
        if beneficiary is None or beneficiary.user_id != user_id:
            raise BeneficiaryNotFoundError(
                f"Beneficiary {beneficiary_id} not found",
                {"beneficiary_id": beneficiary_id}
            )
        return beneficiary

    def list_user_beneficiaries(self, user_id: str) -> List[Beneficiary]:
        """Get all beneficiaries for a user, in creation order"""
        return [
            self._beneficiary_from_dict(data)
            for data in self.storage.find(self.table_name, {"user_id": user_id})
        ]

    def _beneficiary_from_dict(self, data: Dict) -> Beneficiary:
        """Convert dictionary to Beneficiary"""
        data = dict(data)
        data['created_at'] = datetime.fromisoformat(data['created_at'])
        data['updated_at'] = datetime.fromisoformat(data['updated_at'])
        return Beneficiary(**data)
