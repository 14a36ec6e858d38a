"""
Ledger error taxonomy.

Every failure of a ledger operation is raised as a LedgerError subclass,
before any mutation or inside a unit of work that is rolled back.
"""

from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base class for ledger failures"""
    code = "ledger_error"

    def __init__(self, message: str, parameter: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.parameter = parameter
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "error": self.code,
            "parameter": self.parameter,
            "message": self.message,
        }
        if self.details:
            body["details"] = self.details
        return body


class LedgerValidationError(LedgerError):
    """Request rejected before any mutation (bad amounts, missing dates, wrong sign)"""
    code = "validation_error"


class LedgerNotFoundError(LedgerError):
    """Referenced record does not exist for this user"""
    code = "not_found"


class AlreadyResolvedError(LedgerError):
    """Payable or receivable is no longer open"""
    code = "already_resolved"


class AlreadyReconciledError(LedgerError):
    """Bank transaction has already left the active set"""
    code = "already_reconciled"


class PartialPaymentChoiceRequired(LedgerError):
    """Remaining-balance rows need an explicit delete-remaining or reverse choice"""
    code = "choice_required"
