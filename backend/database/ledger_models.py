"""
Cash-Flow Ledger - Database Models

The four mutable record sets and the append-only archive.

Tables:
- vendor_transactions: Payables (purchase orders), including partial-payment splits
- income_items: Receivables
- bank_transactions: Synced bank / card movements awaiting reconciliation
- credit_cards: Card balances and limits
- deleted_transactions: Immutable archive of reconciled or deleted records
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Column, String, Text, Boolean, Date, DateTime,
    ForeignKey, Index, Enum as SQLEnum, JSON, Numeric, UniqueConstraint
)

from database.connection import Base
from models.enums import (
    VendorTransactionStatus,
    PartialPaymentRole,
    IncomeStatus,
    ArchivedRecordType,
    ArchiveReason,
)


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _enum_column(enum_cls, name: str):
    # Store enum values, not member names
    return SQLEnum(
        enum_cls,
        name=name,
        native_enum=False,
        length=32,
        values_callable=lambda members: [m.value for m in members],
    )


ZERO = Decimal("0.00")


# Suffixes kept on child descriptions for display only
PAID_PORTION_SUFFIX = ".1"
REMAINING_PORTION_SUFFIX = ".2"


# ==================== DATABASE MODELS ====================

class VendorTransactionDB(Base):
    """
    Payable owed to a vendor.

    A split parent keeps status PARTIALLY_PAID and its original amount and due
    date; its two children reference it through parent_transaction_id.
    card_charged_amount is the part of amount currently on the linked card.
    """
    __tablename__ = "vendor_transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)

    vendor_id = Column(String(36), nullable=True, index=True)
    vendor_name = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    amount = Column(Numeric(12, 2), nullable=False)
    due_date = Column(Date, nullable=True, index=True)
    remarks = Column(Text, nullable=True)

    status = Column(
        _enum_column(VendorTransactionStatus, "vendor_transaction_status_enum"),
        nullable=False,
        default=VendorTransactionStatus.PENDING,
        index=True
    )

    # Card linkage
    credit_card_id = Column(String(36), ForeignKey("credit_cards.id", ondelete="SET NULL"), nullable=True, index=True)
    card_charged_amount = Column(Numeric(12, 2), nullable=False, default=ZERO)

    # Partial payment linkage
    parent_transaction_id = Column(
        String(36),
        ForeignKey("vendor_transactions.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )
    partial_payment_role = Column(
        _enum_column(PartialPaymentRole, "partial_payment_role_enum"),
        nullable=True
    )
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    paid_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        UniqueConstraint('parent_transaction_id', 'partial_payment_role', name='uq_vendor_tx_split_role'),
        Index('ix_vendor_tx_user_status', 'user_id', 'status'),
    )


class IncomeItemDB(Base):
    """Receivable owed to the business"""
    __tablename__ = "income_items"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)

    description = Column(Text, nullable=False, default="")
    source = Column(Text, nullable=True)
    customer_id = Column(String(36), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(Date, nullable=True, index=True)

    status = Column(
        _enum_column(IncomeStatus, "income_status_enum"),
        nullable=False,
        default=IncomeStatus.PENDING,
        index=True
    )
    received_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    __table_args__ = (
        Index('ix_income_user_status', 'user_id', 'status'),
    )


class BankTransactionDB(Base):
    """
    Externally observed money movement. Negative amount = debit.

    Rows are inserted by sync and only ever deleted (after archival).
    """
    __tablename__ = "bank_transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    account_id = Column(String(36), nullable=True, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(Text, nullable=False, default="")
    merchant_name = Column(Text, nullable=True)
    date = Column(Date, nullable=False, index=True)
    pending = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        Index('ix_bank_tx_user_date', 'user_id', 'date'),
    )


class CreditCardDB(Base):
    """
    Card balance. available_credit is always written together with balance.
    """
    __tablename__ = "credit_cards"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)

    account_name = Column(Text, nullable=False, default="")
    balance = Column(Numeric(12, 2), nullable=False, default=ZERO)
    credit_limit = Column(Numeric(12, 2), nullable=False, default=ZERO)
    available_credit = Column(Numeric(12, 2), nullable=False, default=ZERO)

    created_at = Column(DateTime(timezone=True), default=utc_now)
    updated_at = Column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)


class DeletedTransactionDB(Base):
    """
    Append-only archive of records leaving the active ledger.

    One row per archived record: (user_id, transaction_type, original_id) is
    unique, so a bank transaction can be archived at most once.
    """
    __tablename__ = "deleted_transactions"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String(36), nullable=False, index=True)

    original_id = Column(String(36), nullable=False)
    transaction_type = Column(
        _enum_column(ArchivedRecordType, "archived_record_type_enum"),
        nullable=False
    )
    reason = Column(
        _enum_column(ArchiveReason, "archive_reason_enum"),
        nullable=False
    )

    name = Column(Text, nullable=False, default="")
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(Text, nullable=True)
    payment_date = Column(Date, nullable=True)
    status = Column(String(32), nullable=True)

    snapshot = Column(JSON, nullable=False, default=dict)
    # "metadata" is reserved on declarative classes
    archive_metadata = Column("metadata", JSON, nullable=True, default=dict)

    deleted_at = Column(DateTime(timezone=True), default=utc_now, index=True)

    __table_args__ = (
        UniqueConstraint('user_id', 'transaction_type', 'original_id', name='uq_deleted_tx_original'),
    )
