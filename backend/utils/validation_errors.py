"""
Structured Validation Error Utilities

Provides standardized error responses for ledger failures.
Helps UI distinguish between validation errors, missing records and conflicts.

Error Response Format:
{
    "error": "validation_error" | "not_found" | "already_resolved" | ...,
    "parameter": "amount_paid",
    "message": "amount_paid must be less than the transaction amount"
}
"""

from fastapi import HTTPException, status
from typing import Optional

from utils.errors import (
    LedgerError,
    LedgerValidationError,
    LedgerNotFoundError,
    AlreadyResolvedError,
    AlreadyReconciledError,
    PartialPaymentChoiceRequired,
)


class ValidationErrorResponse:
    """Structured validation error response builder."""

    @staticmethod
    def missing_parameter(parameter: str, message: Optional[str] = None) -> dict:
        return {
            "error": "missing_parameter",
            "parameter": parameter,
            "message": message or f"{parameter} is required"
        }



_STATUS_BY_ERROR = {
    LedgerValidationError: status.HTTP_400_BAD_REQUEST,
    LedgerNotFoundError: status.HTTP_404_NOT_FOUND,
    AlreadyResolvedError: status.HTTP_409_CONFLICT,
    AlreadyReconciledError: status.HTTP_409_CONFLICT,
    PartialPaymentChoiceRequired: status.HTTP_409_CONFLICT,
}


def ledger_error_to_http(exc: LedgerError) -> HTTPException:
    """
    Convert a ledger failure into an HTTPException with a structured body.

    Args:
        exc: The ledger error raised by a service

    Returns:
        HTTPException with the mapped status code
    """
    status_code = _STATUS_BY_ERROR.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=status_code, detail=exc.to_dict())


def raise_missing_parameter(parameter: str, message: Optional[str] = None):
    """
    Raise HTTPException with structured missing parameter error.

    Raises:
        HTTPException with 422 status and structured error body
    """
    raise HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=ValidationErrorResponse.missing_parameter(parameter, message)
    )

