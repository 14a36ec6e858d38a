"""
Utils Package

Provides utility modules for:
- errors: Ledger error taxonomy
- validation_errors: HTTP mapping for ledger errors
"""

from .errors import (
    LedgerError,
    LedgerValidationError,
    LedgerNotFoundError,
    AlreadyResolvedError,
    AlreadyReconciledError,
    PartialPaymentChoiceRequired,
)

__all__ = [
    'LedgerError',
    'LedgerValidationError',
    'LedgerNotFoundError',
    'AlreadyResolvedError',
    'AlreadyReconciledError',
    'PartialPaymentChoiceRequired',
]
