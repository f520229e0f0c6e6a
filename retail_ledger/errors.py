"""
Ledger Error Taxonomy

Every failure a caller can act on is a LedgerError subclass with a stable
``code`` and a ``category`` (validation, not_found, authorization,
business_rule, external) so the presentation layer can render a precise
message without parsing text.
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base exception for all ledger errors"""
    category = "internal"
    code = "ledger_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code,
            "category": self.category,
            "message": self.message
        }
        if self.details:
            result["details"] = self.details
        return result


# Input validation

class ValidationError(LedgerError):
    """Raised when request input is malformed"""
    category = "validation"
    code = "invalid_input"


class InvalidAmountError(ValidationError):
    """Amount is zero, negative, NaN, infinite or not a number"""
    code = "invalid_amount"


class InvalidDestinationError(ValidationError):
    """Transfer destination is missing, ambiguous or the source itself"""
    code = "invalid_destination"


# Not found

class NotFoundError(LedgerError):
    category = "not_found"
    code = "not_found"


class AccountNotFoundError(NotFoundError):
    code = "account_not_found"


class BeneficiaryNotFoundError(NotFoundError):
    code = "beneficiary_not_found"


class UserNotFoundError(NotFoundError):
    code = "user_not_found"


class TransferNotFoundError(NotFoundError):
    code = "transfer_not_found"


# Authorization / authentication

class AccountAccessDeniedError(LedgerError):
    """Caller does not own the account it tried to use"""
    category = "authorization"
    code = "account_access_denied"


class AuthenticationError(LedgerError):
    category = "authorization"
    code = "authentication_failed"


# Business rules

class BusinessRuleError(LedgerError):
    category = "business_rule"
    code = "business_rule_violation"


class InsufficientFundsError(BusinessRuleError):
    code = "insufficient_funds"


class DuplicateUsernameError(BusinessRuleError):
    code = "duplicate_username"


class DuplicateEmailError(BusinessRuleError):
    code = "duplicate_email"


class IdempotencyConflictError(BusinessRuleError):
    """Idempotency key reused for a different transfer request"""
    code = "idempotency_conflict"


class InvalidTransferStateError(BusinessRuleError):
    code = "invalid_transfer_state"


# Internal consistency

class ConcurrentUpdateError(LedgerError):
    """Account row changed between read and write (stale version)"""
    code = "concurrent_update"


# External dependencies

class ExternalDependencyError(LedgerError):
    category = "external"
    code = "external_dependency_failed"


class PaymentNetworkError(ExternalDependencyError):
    code = "payment_network_unavailable"


class PaymentNetworkTimeoutError(PaymentNetworkError):
    code = "payment_network_timeout"
