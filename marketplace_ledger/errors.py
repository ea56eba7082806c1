"""
Error Taxonomy

Typed errors raised by the ledger core. All of them derive from LedgerError,
which is a ValueError, so callers that only care about "bad request" can keep
catching ValueError.
"""

from typing import Any, Dict, Optional


class LedgerError(ValueError):
    """Base class for every error raised by the ledger core"""

    kind = "ledger_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "details": self.details}


class ValidationError(LedgerError):
    """Input rejected before any write happened"""
    kind = "validation_error"


class UnbalancedVoucherError(ValidationError):
    kind = "unbalanced_voucher"


class ZeroAmountError(ValidationError):
    kind = "zero_amount"


class MalformedEntryError(ValidationError):
    kind = "malformed_entry"


class AccessDeniedError(ValidationError):
    """The access-control collaborator refused the actor"""
    kind = "permission_denied"


class NotFoundError(LedgerError):
    kind = "not_found"


class InvalidStateError(LedgerError):
    """Requested transition is not allowed from the current status"""
    kind = "invalid_state"


class PeriodClosedError(InvalidStateError):
    kind = "period_closed"


class ImmutableAccountError(LedgerError):
    """System or protected account cannot be edited or deleted"""
    kind = "immutable"


ImmutableError = ImmutableAccountError


class LockedError(LedgerError):
    kind = "locked"


class ConflictError(LedgerError):
    kind = "conflict"
