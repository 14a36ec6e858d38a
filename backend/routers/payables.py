from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List
import logging

from database import get_db
from middleware.user_context import require_user_id
from models.schemas import (
    VendorTransaction,
    VendorTransactionCreate,
    VendorTransactionUpdate,
    PartialPaymentRequest,
    PartialPaymentResult,
    ChangeCreditCardRequest,
    DeletedTransaction,
)
from services.partial_payments import PartialPaymentService
from utils.errors import LedgerError
from utils.validation_errors import ledger_error_to_http

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payables", tags=["Payables"])


# ==================== PAYABLES ====================

@router.post("", response_model=VendorTransaction)
async def create_payable(
    data: VendorTransactionCreate,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Create a vendor transaction (purchase order).
    """
    try:
        return await PartialPaymentService(db).create_vendor_transaction(user_id, data)
    except LedgerError as e:
        raise ledger_error_to_http(e)


@router.get("", response_model=List[VendorTransaction])
async def list_payables(
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    List active payables.
    Partially paid originals are hidden; their two portions are listed instead.
    """
    return await PartialPaymentService(db).list_active_vendor_transactions(user_id)


@router.get("/{transaction_id}", response_model=VendorTransaction)
async def get_payable(
    transaction_id: str,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    try:
        return await PartialPaymentService(db).get_vendor_transaction(user_id, transaction_id)
    except LedgerError as e:
        raise ledger_error_to_http(e)


@router.patch("/{transaction_id}", response_model=VendorTransaction)
async def edit_payable(
    transaction_id: str,
    update: VendorTransactionUpdate,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Edit amount, due date, description or remarks.
    A paid card-linked payable moves its card balance by the amount change.
    """
    try:
        return await PartialPaymentService(db).edit_transaction(user_id, transaction_id, update)
    except LedgerError as e:
        raise ledger_error_to_http(e)


@router.post("/{transaction_id}/pay", response_model=VendorTransaction)
async def pay_payable(
    transaction_id: str,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    try:
        return await PartialPaymentService(db).mark_as_paid(user_id, transaction_id)
    except LedgerError as e:
        raise ledger_error_to_http(e)


# ==================== PARTIAL PAYMENTS ====================

@router.post("/{transaction_id}/partial-payment", response_model=PartialPaymentResult)
async def partially_pay_payable(
    transaction_id: str,
    request: PartialPaymentRequest,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Split a pending payable into a paid portion and a remaining balance.
    """
    try:
        return await PartialPaymentService(db).mark_as_partially_paid(
            user_id,
            transaction_id,
            amount_paid=request.amount_paid,
            remaining_balance=request.remaining_balance,
            new_due_date=request.new_due_date
        )
    except LedgerError as e:
        raise ledger_error_to_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error recording partial payment for {transaction_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to record partial payment")


@router.post("/{transaction_id}/delete-remaining")
async def delete_remaining_balance(
    transaction_id: str,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete only the remaining balance; the paid portion stays as paid.
    """
    try:
        paid_portion = await PartialPaymentService(db).delete_remaining_balance(user_id, transaction_id)
        return {
            "success": True,
            "paid_portion": paid_portion.model_dump(mode="json") if paid_portion else None
        }
    except LedgerError as e:
        raise ledger_error_to_http(e)


@router.post("/{transaction_id}/reverse", response_model=VendorTransaction)
async def reverse_partial_payment(
    transaction_id: str,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Reverse the entire partial payment, restoring the original pending payable.
    """
    try:
        return await PartialPaymentService(db).reverse_partial_payment(user_id, transaction_id)
    except LedgerError as e:
        raise ledger_error_to_http(e)


@router.delete("/{transaction_id}", response_model=DeletedTransaction)
async def delete_payable(
    transaction_id: str,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Delete a payable. Remaining balances return 409 with the two available choices.
    """
    try:
        return await PartialPaymentService(db).delete_transaction(user_id, transaction_id)
    except LedgerError as e:
        raise ledger_error_to_http(e)


@router.put("/{transaction_id}/credit-card", response_model=VendorTransaction)
async def change_payable_credit_card(
    transaction_id: str,
    request: ChangeCreditCardRequest,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    try:
        return await PartialPaymentService(db).change_credit_card(user_id, transaction_id, request.credit_card_id)
    except LedgerError as e:
        raise ledger_error_to_http(e)
