"""
Payables Lifecycle Service

Creation, payment, partial payment and removal of vendor transactions.

Partial payment splits a pending payable into two children linked by
parent_transaction_id:
- paid_portion: completed, original due date, carried on the card
- remaining_portion: pending, new due date, nothing on the card

The parent keeps its original amount and due date with status
partially_paid and drops out of active views. A remaining portion is only
ever removed through one of two explicit choices:
- delete_remaining_balance: drop the remainder, the paid portion stands
- reverse_partial_payment: drop both children, the parent is pending again

Card accounting: card_charged_amount on each payable is the part of its
amount currently on the linked card. Every operation moves the card by the
change in that figure, inside the same unit of work as the payable update.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from database.ledger_models import (
    VendorTransactionDB,
    PAID_PORTION_SUFFIX,
    REMAINING_PORTION_SUFFIX,
    ZERO,
)
from logging_config import log_ledger_event
from models.enums import VendorTransactionStatus, PartialPaymentRole, ArchiveReason
from models.schemas import (
    VendorTransaction,
    VendorTransactionCreate,
    VendorTransactionUpdate,
    PartialPaymentResult,
    DeletedTransaction,
    to_money,
)
from services.archive_feed import ArchiveFeed
from services.credit_cards import apply_card_delta
from services.ledger_store import (
    LedgerStore,
    _db_to_vendor_transaction,
    _db_to_deleted_transaction,
)
from utils.errors import (
    LedgerValidationError,
    LedgerNotFoundError,
    AlreadyResolvedError,
    PartialPaymentChoiceRequired,
)

logger = logging.getLogger(__name__)


class PayableAuditEvent:
    """Audit event types for payable operations."""
    CREATED = "payables.created"
    PAID = "payables.paid"
    EDITED = "payables.edited"
    PARTIALLY_PAID = "payables.partially_paid"
    REMAINING_DELETED = "payables.remaining_deleted"
    PARTIAL_PAYMENT_REVERSED = "payables.partial_payment_reversed"
    DELETED = "payables.deleted"
    CARD_CHANGED = "payables.card_changed"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ==================== SHARED STEPS ====================

async def require_vendor_transaction(
    store: LedgerStore,
    user_id: str,
    transaction_id: str
) -> VendorTransactionDB:
    """Load a payable for update or fail closed"""
    db_txn = await store.get_vendor_transaction(user_id, transaction_id, for_update=True)
    if db_txn is None:
        raise LedgerNotFoundError(
            f"Vendor transaction {transaction_id} not found",
            parameter="transaction_id"
        )
    return db_txn


async def move_card_charge(
    store: LedgerStore,
    db_txn: VendorTransactionDB,
    new_charged: Decimal,
    card_id: Optional[str] = None
) -> Decimal:
    """
    Set the part of a payable carried on its card, adjusting the card by the difference.

    Returns:
        Delta applied to the card balance
    """
    card_id = card_id or db_txn.credit_card_id
    new_charged = to_money(new_charged)
    if not card_id:
        db_txn.card_charged_amount = ZERO
        return ZERO

    delta = new_charged - to_money(db_txn.card_charged_amount or ZERO)
    applied = ZERO
    if delta:
        card = await store.get_credit_card(db_txn.user_id, card_id, for_update=True)
        if card is None:
            raise LedgerNotFoundError(f"Credit card {card_id} not found", parameter="credit_card_id")
        applied = apply_card_delta(card, delta)

    db_txn.card_charged_amount = new_charged
    return applied


async def settle_vendor_transaction(store: LedgerStore, db_txn: VendorTransactionDB) -> VendorTransactionDB:
    """
    Mark an open payable completed and charge its card for the full amount.

    Runs inside the caller's unit of work.
    """
    if db_txn.status == VendorTransactionStatus.PARTIALLY_PAID:
        raise AlreadyResolvedError(
            "Transaction has been partially paid; settle its remaining balance instead",
            parameter="transaction_id"
        )
    if db_txn.status != VendorTransactionStatus.PENDING:
        raise AlreadyResolvedError(
            f"Vendor transaction {db_txn.id} is already {db_txn.status.value}",
            parameter="transaction_id"
        )

    db_txn.status = VendorTransactionStatus.COMPLETED
    db_txn.paid_at = _utc_now()
    await move_card_charge(store, db_txn, db_txn.amount)

    if db_txn.partial_payment_role == PartialPaymentRole.REMAINING_PORTION:
        await _resolve_parent_if_settled(store, db_txn)

    return db_txn


async def _resolve_parent_if_settled(store: LedgerStore, child: VendorTransactionDB):
    """A split whose children are all completed is fully settled"""
    parent = await store.get_vendor_transaction(child.user_id, child.parent_transaction_id, for_update=True)
    if parent is None:
        return
    children = await store.get_children(child.user_id, parent.id)
    if all(c.status == VendorTransactionStatus.COMPLETED for c in children):
        parent.resolved_at = _utc_now()


# ==================== SERVICE ====================

class PartialPaymentService:
    """
    Service for the payable lifecycle.

    Every public operation is a single unit of work: all of its reads and
    writes commit together or not at all.
    """

    def __init__(
        self,
        db: AsyncSession,
        feed: Optional[ArchiveFeed] = None,
        clock: Optional[Callable[[], date]] = None
    ):
        self.db = db
        self.store = LedgerStore(db, feed)
        self.clock = clock or date.today

    # ==================== CREATE / READ ====================

    async def create_vendor_transaction(self, user_id: str, data: VendorTransactionCreate) -> VendorTransaction:
        """Create a payable; one created as completed is charged to its card immediately"""
        async with self.store.unit_of_work():
            if data.credit_card_id:
                card = await self.store.get_credit_card(user_id, data.credit_card_id)
                if card is None:
                    raise LedgerNotFoundError(
                        f"Credit card {data.credit_card_id} not found",
                        parameter="credit_card_id"
                    )

            db_txn = await self.store.create_vendor_transaction(user_id, data)
            if db_txn.status == VendorTransactionStatus.COMPLETED:
                db_txn.paid_at = _utc_now()
                await move_card_charge(self.store, db_txn, db_txn.amount)
            await self.db.flush()

        log_ledger_event(PayableAuditEvent.CREATED, user_id, {
            "transaction_id": db_txn.id,
            "amount": str(db_txn.amount),
            "status": db_txn.status.value,
        })
        return _db_to_vendor_transaction(db_txn)

    async def get_vendor_transaction(self, user_id: str, transaction_id: str) -> VendorTransaction:
        db_txn = await self.store.get_vendor_transaction(user_id, transaction_id)
        if db_txn is None:
            raise LedgerNotFoundError(
                f"Vendor transaction {transaction_id} not found",
                parameter="transaction_id"
            )
        return _db_to_vendor_transaction(db_txn)

    async def list_active_vendor_transactions(self, user_id: str) -> List[VendorTransaction]:
        return await self.store.list_active_vendor_transactions(user_id)

    # ==================== PAYMENT ====================

    async def mark_as_paid(self, user_id: str, transaction_id: str) -> VendorTransaction:
        """Settle a pending payable in full"""
        async with self.store.unit_of_work():
            db_txn = await require_vendor_transaction(self.store, user_id, transaction_id)
            await settle_vendor_transaction(self.store, db_txn)
            await self.db.flush()

        log_ledger_event(PayableAuditEvent.PAID, user_id, {
            "transaction_id": db_txn.id,
            "amount": str(db_txn.amount),
            "credit_card_id": db_txn.credit_card_id,
        })
        return _db_to_vendor_transaction(db_txn)

    async def mark_as_partially_paid(
        self,
        user_id: str,
        transaction_id: str,
        amount_paid: Decimal,
        remaining_balance: Decimal,
        new_due_date: Optional[date]
    ) -> PartialPaymentResult:
        """
        Split a pending payable into a paid portion and a remaining portion.

        Args:
            user_id: Owner of the payable
            transaction_id: Payable to split
            amount_paid: Amount settled now, 0 < amount_paid < amount
            remaining_balance: Must equal amount - amount_paid to the cent
            new_due_date: Due date of the remaining portion, not in the past

        Returns:
            PartialPaymentResult with the parent and both children

        Raises:
            LedgerValidationError: Amounts or due date rejected
            LedgerNotFoundError: No such payable for this user
            AlreadyResolvedError: Payable is not pending
        """
        async with self.store.unit_of_work():
            parent = await require_vendor_transaction(self.store, user_id, transaction_id)
            if parent.status != VendorTransactionStatus.PENDING:
                raise AlreadyResolvedError(
                    f"Only pending transactions can be partially paid (status is {parent.status.value})",
                    parameter="transaction_id"
                )

            amount = to_money(parent.amount)
            paid, remaining = self._validate_split(amount, amount_paid, remaining_balance, new_due_date)

            parent.status = VendorTransactionStatus.PARTIALLY_PAID
            now = _utc_now()

            paid_child = VendorTransactionDB(
                user_id=user_id,
                vendor_id=parent.vendor_id,
                vendor_name=parent.vendor_name,
                description=f"{parent.description}{PAID_PORTION_SUFFIX}",
                amount=paid,
                due_date=parent.due_date,
                remarks=parent.remarks,
                status=VendorTransactionStatus.COMPLETED,
                credit_card_id=parent.credit_card_id,
                card_charged_amount=ZERO,
                parent_transaction_id=parent.id,
                partial_payment_role=PartialPaymentRole.PAID_PORTION,
                paid_at=now,
            )
            remaining_child = VendorTransactionDB(
                user_id=user_id,
                vendor_id=parent.vendor_id,
                vendor_name=parent.vendor_name,
                description=f"{parent.description}{REMAINING_PORTION_SUFFIX}",
                amount=remaining,
                due_date=new_due_date,
                remarks=parent.remarks,
                status=VendorTransactionStatus.PENDING,
                credit_card_id=parent.credit_card_id,
                card_charged_amount=ZERO,
                parent_transaction_id=parent.id,
                partial_payment_role=PartialPaymentRole.REMAINING_PORTION,
            )

            # Only the paid portion is on the card; the parent's own charge is
            # superseded by it until a reversal restores the parent.
            if parent.credit_card_id:
                card_delta = paid - to_money(parent.card_charged_amount or ZERO)
                if card_delta:
                    card = await self.store.get_credit_card(user_id, parent.credit_card_id, for_update=True)
                    if card is None:
                        raise LedgerNotFoundError(
                            f"Credit card {parent.credit_card_id} not found",
                            parameter="credit_card_id"
                        )
                    apply_card_delta(card, card_delta)
                paid_child.card_charged_amount = paid

            await self.store.add_vendor_transaction(paid_child)
            await self.store.add_vendor_transaction(remaining_child)

        log_ledger_event(PayableAuditEvent.PARTIALLY_PAID, user_id, {
            "transaction_id": parent.id,
            "amount": str(amount),
            "amount_paid": str(paid),
            "remaining_balance": str(remaining),
            "paid_portion_id": paid_child.id,
            "remaining_portion_id": remaining_child.id,
        })

        return PartialPaymentResult(
            parent=_db_to_vendor_transaction(parent),
            paid_portion=_db_to_vendor_transaction(paid_child),
            remaining_portion=_db_to_vendor_transaction(remaining_child),
        )

    def _validate_split(
        self,
        amount: Decimal,
        amount_paid: Decimal,
        remaining_balance: Decimal,
        new_due_date: Optional[date]
    ):
        if amount_paid is None:
            raise LedgerValidationError("amount_paid is required", parameter="amount_paid")
        if remaining_balance is None:
            raise LedgerValidationError("remaining_balance is required", parameter="remaining_balance")

        paid = to_money(amount_paid)
        remaining = to_money(remaining_balance)

        if paid <= ZERO:
            raise LedgerValidationError("amount_paid must be greater than 0", parameter="amount_paid")
        if paid >= amount:
            raise LedgerValidationError(
                f"amount_paid must be less than the transaction amount ({amount})",
                parameter="amount_paid"
            )
        if remaining != amount - paid:
            raise LedgerValidationError(
                f"remaining_balance must equal {amount - paid}",
                parameter="remaining_balance"
            )
        if new_due_date is None:
            raise LedgerValidationError(
                "new_due_date is required for the remaining balance",
                parameter="new_due_date"
            )
        if new_due_date < self.clock():
            raise LedgerValidationError("new_due_date cannot be in the past", parameter="new_due_date")

        return paid, remaining

    # ==================== EDIT ====================

    async def edit_transaction(
        self,
        user_id: str,
        transaction_id: str,
        update: VendorTransactionUpdate
    ) -> VendorTransaction:
        """
        Edit an active payable.

        A completed card-linked payable moves its card by the amount change
        in the same unit of work as the edit.
        """
        async with self.store.unit_of_work():
            db_txn = await require_vendor_transaction(self.store, user_id, transaction_id)

            if db_txn.status == VendorTransactionStatus.PARTIALLY_PAID:
                raise LedgerValidationError(
                    "Partially paid transactions cannot be edited; edit the remaining balance instead",
                    parameter="transaction_id"
                )

            old_amount = to_money(db_txn.amount)
            card_delta = ZERO

            if update.amount is not None:
                new_amount = to_money(update.amount)
                if new_amount != old_amount:
                    if db_txn.partial_payment_role is not None:
                        raise LedgerValidationError(
                            "The amount of a partial payment portion cannot be changed; reverse the partial payment instead",
                            parameter="amount"
                        )
                    db_txn.amount = new_amount
                    if db_txn.status == VendorTransactionStatus.COMPLETED:
                        card_delta = await move_card_charge(
                            self.store,
                            db_txn,
                            to_money(db_txn.card_charged_amount or ZERO) + (new_amount - old_amount)
                        )

            if update.due_date is not None:
                db_txn.due_date = update.due_date
            if update.description is not None:
                db_txn.description = update.description
            if update.remarks is not None:
                db_txn.remarks = update.remarks

            await self.db.flush()

        log_ledger_event(PayableAuditEvent.EDITED, user_id, {
            "transaction_id": db_txn.id,
            "old_amount": str(old_amount),
            "new_amount": str(db_txn.amount),
            "card_delta": str(card_delta),
        })
        return _db_to_vendor_transaction(db_txn)

    # ==================== REMAINING BALANCE CHOICES ====================

    async def _require_open_remainder(self, user_id: str, transaction_id: str) -> VendorTransactionDB:
        remainder = await require_vendor_transaction(self.store, user_id, transaction_id)
        if remainder.partial_payment_role != PartialPaymentRole.REMAINING_PORTION:
            raise LedgerValidationError(
                f"Vendor transaction {transaction_id} is not the remaining balance of a partial payment",
                parameter="transaction_id"
            )
        if remainder.status != VendorTransactionStatus.PENDING:
            raise AlreadyResolvedError(
                f"Remaining balance {transaction_id} is already {remainder.status.value}",
                parameter="transaction_id"
            )
        return remainder

    async def delete_remaining_balance(self, user_id: str, transaction_id: str) -> Optional[VendorTransaction]:
        """
        Drop the remaining portion; the paid portion stands as the record of what was paid.

        Returns:
            The surviving paid portion
        """
        async with self.store.unit_of_work():
            remainder = await self._require_open_remainder(user_id, transaction_id)
            parent = await require_vendor_transaction(self.store, user_id, remainder.parent_transaction_id)

            reverted = await move_card_charge(self.store, remainder, ZERO)
            await self.store.archive_vendor_transaction(
                remainder,
                ArchiveReason.MANUAL_DELETE,
                {"action": "delete_remaining_balance", "parent_transaction_id": parent.id}
            )
            await self.store.delete_vendor_transaction(remainder)
            parent.resolved_at = _utc_now()

            children = await self.store.get_children(user_id, parent.id)
            paid_portion = next(
                (c for c in children if c.partial_payment_role == PartialPaymentRole.PAID_PORTION),
                None
            )
            await self.db.flush()

        log_ledger_event(PayableAuditEvent.REMAINING_DELETED, user_id, {
            "transaction_id": transaction_id,
            "parent_transaction_id": parent.id,
            "card_delta": str(reverted),
        })
        return _db_to_vendor_transaction(paid_portion) if paid_portion else None

    async def reverse_partial_payment(self, user_id: str, transaction_id: str) -> VendorTransaction:
        """
        Undo a partial payment entirely.

        Both children are removed and the parent is pending again with its
        original amount and due date. Card impact of the split nets to zero.

        Returns:
            The restored payable
        """
        async with self.store.unit_of_work():
            remainder = await self._require_open_remainder(user_id, transaction_id)
            parent = await require_vendor_transaction(self.store, user_id, remainder.parent_transaction_id)
            children = await self.store.get_children(user_id, parent.id, for_update=True)

            reverted = ZERO
            for child in children:
                reverted += await move_card_charge(self.store, child, ZERO)

            # The parent's own charge was superseded by the paid portion at split time
            parent_charge = to_money(parent.card_charged_amount or ZERO)
            if parent.credit_card_id and parent_charge:
                card = await self.store.get_credit_card(user_id, parent.credit_card_id, for_update=True)
                if card is None:
                    raise LedgerNotFoundError(
                        f"Credit card {parent.credit_card_id} not found",
                        parameter="credit_card_id"
                    )
                reverted += apply_card_delta(card, parent_charge)

            for child in children:
                await self.store.delete_vendor_transaction(child)

            parent.status = VendorTransactionStatus.PENDING
            parent.resolved_at = None
            await self.db.flush()

        log_ledger_event(PayableAuditEvent.PARTIAL_PAYMENT_REVERSED, user_id, {
            "transaction_id": parent.id,
            "removed_children": [c.id for c in children],
            "card_delta": str(reverted),
        })
        return _db_to_vendor_transaction(parent)

    # ==================== DELETE ====================

    async def delete_transaction(self, user_id: str, transaction_id: str) -> DeletedTransaction:
        """
        Delete an active payable, archiving it and reverting its card charge.

        Raises:
            PartialPaymentChoiceRequired: The payable is a remaining balance, or a
                paid portion whose remaining balance still exists
        """
        async with self.store.unit_of_work():
            db_txn = await require_vendor_transaction(self.store, user_id, transaction_id)

            if db_txn.status == VendorTransactionStatus.PARTIALLY_PAID:
                raise LedgerValidationError(
                    "Partially paid transactions are removed through their remaining balance",
                    parameter="transaction_id"
                )

            if db_txn.partial_payment_role == PartialPaymentRole.REMAINING_PORTION:
                raise PartialPaymentChoiceRequired(
                    "Choose whether to delete only the remaining balance or reverse the entire partial payment",
                    parameter="transaction_id",
                    details={"choices": ["delete_remaining_balance", "reverse_partial_payment"]}
                )

            if db_txn.partial_payment_role == PartialPaymentRole.PAID_PORTION:
                siblings = [
                    c for c in await self.store.get_children(user_id, db_txn.parent_transaction_id)
                    if c.id != db_txn.id and c.status == VendorTransactionStatus.PENDING
                ]
                if siblings:
                    raise PartialPaymentChoiceRequired(
                        "Resolve the remaining balance of this partial payment before deleting the paid portion",
                        parameter="transaction_id",
                        details={"remaining_portion_id": siblings[0].id}
                    )

            record = await self.store.archive_vendor_transaction(
                db_txn,
                ArchiveReason.MANUAL_DELETE,
                {"action": "delete_transaction", "card_charged_amount": str(db_txn.card_charged_amount)}
            )
            reverted = await move_card_charge(self.store, db_txn, ZERO)
            parent_id = db_txn.parent_transaction_id
            await self.store.delete_vendor_transaction(db_txn)

            # A split with no children left has nothing to show
            if parent_id and not await self.store.get_children(user_id, parent_id):
                parent = await self.store.get_vendor_transaction(user_id, parent_id, for_update=True)
                if parent is not None:
                    await self.store.delete_vendor_transaction(parent)

        log_ledger_event(PayableAuditEvent.DELETED, user_id, {
            "transaction_id": transaction_id,
            "card_delta": str(reverted),
        })
        return _db_to_deleted_transaction(record)

    # ==================== CARD LINKAGE ====================

    async def change_credit_card(self, user_id: str, transaction_id: str, credit_card_id: str) -> VendorTransaction:
        """
        Move a payable to another card.

        The charged amount leaves the old card (never below a zero balance)
        and lands on the new one.
        """
        async with self.store.unit_of_work():
            db_txn = await require_vendor_transaction(self.store, user_id, transaction_id)
            if db_txn.status == VendorTransactionStatus.PARTIALLY_PAID:
                raise LedgerValidationError(
                    "Partially paid transactions cannot change card",
                    parameter="transaction_id"
                )

            new_card = await self.store.get_credit_card(user_id, credit_card_id, for_update=True)
            if new_card is None:
                raise LedgerNotFoundError(f"Credit card {credit_card_id} not found", parameter="credit_card_id")

            old_card_id = db_txn.credit_card_id
            if old_card_id == credit_card_id:
                return _db_to_vendor_transaction(db_txn)

            charged = to_money(db_txn.card_charged_amount or ZERO)
            if old_card_id and charged:
                old_card = await self.store.get_credit_card(user_id, old_card_id, for_update=True)
                if old_card is None:
                    raise LedgerNotFoundError(f"Credit card {old_card_id} not found", parameter="credit_card_id")
                apply_card_delta(old_card, -charged, floor_at_zero=True)

            new_charge = to_money(db_txn.amount) if db_txn.status == VendorTransactionStatus.COMPLETED else ZERO
            if new_charge:
                apply_card_delta(new_card, new_charge)

            db_txn.credit_card_id = credit_card_id
            db_txn.card_charged_amount = new_charge
            await self.db.flush()

        log_ledger_event(PayableAuditEvent.CARD_CHANGED, user_id, {
            "transaction_id": db_txn.id,
            "old_credit_card_id": old_card_id,
            "new_credit_card_id": credit_card_id,
            "charged": str(new_charge),
        })
        return _db_to_vendor_transaction(db_txn)
