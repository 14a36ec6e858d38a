from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List, Any, Dict
from datetime import datetime, date as DateType
from decimal import Decimal, ROUND_HALF_UP

from models.enums import (
    VendorTransactionStatus,
    PartialPaymentRole,
    IncomeStatus,
    EffectiveIncomeStatus,
    ArchivedRecordType,
    ArchiveReason,
)


CENT = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Quantize any numeric input to the cent without float drift"""
    if isinstance(value, Decimal):
        amount = value
    else:
        amount = Decimal(str(value))
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def _normalise_vendor_status(value: Any) -> Any:
    if isinstance(value, str) and value.lower() == "paid":
        return VendorTransactionStatus.COMPLETED
    return value


# ==================== VENDOR TRANSACTIONS (payables) ====================
class VendorTransaction(BaseModel):
    id: str
    user_id: Optional[str] = None
    vendor_id: Optional[str] = None
    vendor_name: str
    description: str = ""
    amount: Decimal
    due_date: Optional[DateType] = None
    status: VendorTransactionStatus = VendorTransactionStatus.PENDING
    credit_card_id: Optional[str] = None
    card_charged_amount: Decimal = Decimal("0.00")
    remarks: Optional[str] = None
    parent_transaction_id: Optional[str] = None
    partial_payment_role: Optional[PartialPaymentRole] = None
    resolved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("status", mode="before")
    @classmethod
    def normalise_status(cls, value: Any) -> Any:
        return _normalise_vendor_status(value)


class VendorTransactionCreate(BaseModel):
    """Request to create a payable"""
    vendor_id: Optional[str] = None
    vendor_name: str
    description: str = ""
    amount: Decimal = Field(..., gt=0)
    due_date: Optional[DateType] = None
    status: VendorTransactionStatus = VendorTransactionStatus.PENDING
    credit_card_id: Optional[str] = None
    remarks: Optional[str] = None

    @field_validator("status", mode="before")
    @classmethod
    def normalise_status(cls, value: Any) -> Any:
        return _normalise_vendor_status(value)

    @field_validator("status")
    @classmethod
    def reject_partially_paid(cls, value: VendorTransactionStatus) -> VendorTransactionStatus:
        if value == VendorTransactionStatus.PARTIALLY_PAID:
            raise ValueError("partially_paid is only reachable through a partial payment")
        return value


class VendorTransactionUpdate(BaseModel):
    """Request to edit an active payable"""
    amount: Optional[Decimal] = Field(default=None, gt=0)
    due_date: Optional[DateType] = None
    description: Optional[str] = None
    remarks: Optional[str] = None


class PartialPaymentRequest(BaseModel):
    """Request to split a payable into paid and remaining portions"""
    amount_paid: Decimal
    remaining_balance: Decimal
    new_due_date: Optional[DateType] = None


class ChangeCreditCardRequest(BaseModel):
    credit_card_id: str


class PartialPaymentResult(BaseModel):
    parent: VendorTransaction
    paid_portion: VendorTransaction
    remaining_portion: VendorTransaction


# ==================== INCOME ITEMS (receivables) ====================
class IncomeItem(BaseModel):
    id: str
    user_id: Optional[str] = None
    description: str = ""
    amount: Decimal
    payment_date: Optional[DateType] = None
    source: Optional[str] = None
    customer_id: Optional[str] = None
    status: IncomeStatus = IncomeStatus.PENDING
    received_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    def effective_status(self, today: DateType) -> EffectiveIncomeStatus:
        """Pending items past their payment date display as overdue"""
        if self.status == IncomeStatus.RECEIVED:
            return EffectiveIncomeStatus.RECEIVED
        if self.payment_date is not None and self.payment_date < today:
            return EffectiveIncomeStatus.OVERDUE
        return EffectiveIncomeStatus.PENDING


class IncomeItemCreate(BaseModel):
    description: str = ""
    amount: Decimal = Field(..., gt=0)
    payment_date: Optional[DateType] = None
    source: Optional[str] = None
    customer_id: Optional[str] = None


# ==================== BANK TRANSACTIONS ====================
class BankTransaction(BaseModel):
    id: str
    user_id: Optional[str] = None
    account_id: Optional[str] = None
    amount: Decimal
    description: str = ""
    merchant_name: Optional[str] = None
    date: DateType
    pending: bool = False

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_debit(self) -> bool:
        return self.amount < 0

    @property
    def is_credit(self) -> bool:
        return self.amount > 0

    @property
    def counterparty(self) -> str:
        return self.merchant_name or self.description or ""


class BankTransactionCreate(BaseModel):
    """A movement observed by bank sync"""
    account_id: Optional[str] = None
    amount: Decimal
    description: str = ""
    merchant_name: Optional[str] = None
    date: DateType
    pending: bool = False


# ==================== CREDIT CARDS ====================
class CreditCard(BaseModel):
    id: str
    user_id: Optional[str] = None
    account_name: str = ""
    balance: Decimal
    credit_limit: Decimal
    available_credit: Decimal

    model_config = ConfigDict(from_attributes=True)


class CreditCardCreate(BaseModel):
    account_name: str = ""
    balance: Decimal = Decimal("0.00")
    credit_limit: Decimal = Field(..., ge=0)


# ==================== ARCHIVE ====================
class DeletedTransaction(BaseModel):
    id: str
    user_id: str
    original_id: str
    transaction_type: ArchivedRecordType
    reason: ArchiveReason
    name: str
    amount: Decimal
    description: Optional[str] = None
    payment_date: Optional[DateType] = None
    status: Optional[str] = None
    snapshot: Dict[str, Any] = Field(default_factory=dict)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    deleted_at: Optional[datetime] = None


# ==================== RECONCILIATION ====================
class AcceptMatchRequest(BaseModel):
    bank_transaction_id: str
    matched_type: str
    matched_id: str
    idempotency_key: Optional[str] = None


class AcceptAllRequest(BaseModel):
    """Accept the best one-to-one assignment of current matches, or an explicit subset"""
    bank_transaction_ids: Optional[List[str]] = None
