"""
Ledger Store

Repository over the ledger tables. Every read is scoped by user. Multi-step
operations run inside unit_of_work(), which commits all of their writes
together or none of them, and publishes archive records to the change feed
only after the commit succeeds.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.ledger_models import (
    VendorTransactionDB,
    IncomeItemDB,
    BankTransactionDB,
    CreditCardDB,
    DeletedTransactionDB,
    ZERO,
)
from models.enums import (
    VendorTransactionStatus,
    IncomeStatus,
    ArchivedRecordType,
    ArchiveReason,
)
from models.schemas import (
    VendorTransaction,
    VendorTransactionCreate,
    IncomeItem,
    IncomeItemCreate,
    BankTransaction,
    BankTransactionCreate,
    CreditCard,
    CreditCardCreate,
    DeletedTransaction,
    to_money,
)
from reconciliation.matching_rules.ledger_rules import LedgerSnapshot
from services.archive_feed import ArchiveFeed, archive_feed

logger = logging.getLogger(__name__)


# ==================== HELPER FUNCTIONS ====================

def _db_to_vendor_transaction(db_obj: VendorTransactionDB) -> VendorTransaction:
    """Convert database model to Pydantic model"""
    return VendorTransaction.model_validate(db_obj)


def _db_to_income_item(db_obj: IncomeItemDB) -> IncomeItem:
    return IncomeItem.model_validate(db_obj)


def _db_to_bank_transaction(db_obj: BankTransactionDB) -> BankTransaction:
    return BankTransaction.model_validate(db_obj)


def _db_to_credit_card(db_obj: CreditCardDB) -> CreditCard:
    return CreditCard.model_validate(db_obj)


def _db_to_deleted_transaction(db_obj: DeletedTransactionDB) -> DeletedTransaction:
    return DeletedTransaction(
        id=db_obj.id,
        user_id=db_obj.user_id,
        original_id=db_obj.original_id,
        transaction_type=db_obj.transaction_type,
        reason=db_obj.reason,
        name=db_obj.name or "",
        amount=db_obj.amount,
        description=db_obj.description,
        payment_date=db_obj.payment_date,
        status=db_obj.status,
        snapshot=db_obj.snapshot or {},
        metadata=db_obj.archive_metadata or {},
        deleted_at=db_obj.deleted_at,
    )


def _snapshot(model) -> Dict[str, Any]:
    """JSON-safe copy of a record for the archive"""
    return model.model_dump(mode="json")


# ==================== REPOSITORY CLASS ====================

class LedgerStore:
    """Repository for ledger database operations"""

    def __init__(self, session: AsyncSession, feed: Optional[ArchiveFeed] = None):
        self.session = session
        self.feed = feed or archive_feed
        self._unpublished: List[DeletedTransaction] = []

    @asynccontextmanager
    async def unit_of_work(self):
        """
        Run a block as one database transaction.

        Commits on success. On any exception rolls back, drops queued feed
        events and re-raises.
        """
        self._unpublished = []
        try:
            yield self
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            self._unpublished = []
            raise

        events, self._unpublished = self._unpublished, []
        for record in events:
            delivered = self.feed.publish(record)
            logger.debug(f"Archive record {record.id} pushed to {delivered} subscriber(s)")

    # ==================== VENDOR TRANSACTIONS ====================

    async def get_vendor_transaction(
        self,
        user_id: str,
        transaction_id: str,
        for_update: bool = False
    ) -> Optional[VendorTransactionDB]:
        query = select(VendorTransactionDB).where(
            VendorTransactionDB.id == transaction_id,
            VendorTransactionDB.user_id == user_id,
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_children(self, user_id: str, parent_id: str, for_update: bool = False) -> List[VendorTransactionDB]:
        """Split children of a parent, paid portion first"""
        query = (
            select(VendorTransactionDB)
            .where(
                VendorTransactionDB.parent_transaction_id == parent_id,
                VendorTransactionDB.user_id == user_id,
            )
            .order_by(VendorTransactionDB.partial_payment_role, VendorTransactionDB.id)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_active_vendor_transactions(self, user_id: str) -> List[VendorTransaction]:
        """Payables shown to the user: everything except split parents"""
        result = await self.session.execute(
            select(VendorTransactionDB)
            .where(
                VendorTransactionDB.user_id == user_id,
                VendorTransactionDB.status != VendorTransactionStatus.PARTIALLY_PAID,
            )
            .order_by(VendorTransactionDB.created_at, VendorTransactionDB.id)
        )
        return [_db_to_vendor_transaction(row) for row in result.scalars().all()]

    async def add_vendor_transaction(self, db_txn: VendorTransactionDB) -> VendorTransactionDB:
        self.session.add(db_txn)
        await self.session.flush()
        return db_txn

    async def create_vendor_transaction(self, user_id: str, data: VendorTransactionCreate) -> VendorTransactionDB:
        db_txn = VendorTransactionDB(
            user_id=user_id,
            vendor_id=data.vendor_id,
            vendor_name=data.vendor_name,
            description=data.description,
            amount=to_money(data.amount),
            due_date=data.due_date,
            status=data.status,
            credit_card_id=data.credit_card_id,
            card_charged_amount=ZERO,
            remarks=data.remarks,
        )
        return await self.add_vendor_transaction(db_txn)

    async def delete_vendor_transaction(self, db_txn: VendorTransactionDB):
        await self.session.delete(db_txn)
        await self.session.flush()

    # ==================== INCOME ====================

    async def get_income_item(
        self,
        user_id: str,
        income_id: str,
        for_update: bool = False
    ) -> Optional[IncomeItemDB]:
        query = select(IncomeItemDB).where(
            IncomeItemDB.id == income_id,
            IncomeItemDB.user_id == user_id,
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_income_items(self, user_id: str, status: Optional[IncomeStatus] = None) -> List[IncomeItem]:
        query = select(IncomeItemDB).where(IncomeItemDB.user_id == user_id)
        if status is not None:
            query = query.where(IncomeItemDB.status == status)
        result = await self.session.execute(
            query.order_by(IncomeItemDB.created_at, IncomeItemDB.id)
        )
        return [_db_to_income_item(row) for row in result.scalars().all()]

    async def create_income_item(self, user_id: str, data: IncomeItemCreate) -> IncomeItemDB:
        db_item = IncomeItemDB(
            user_id=user_id,
            description=data.description,
            source=data.source,
            customer_id=data.customer_id,
            amount=to_money(data.amount),
            payment_date=data.payment_date,
            status=IncomeStatus.PENDING,
        )
        self.session.add(db_item)
        await self.session.flush()
        return db_item

    # ==================== BANK TRANSACTIONS ====================

    async def get_bank_transaction(
        self,
        user_id: str,
        bank_transaction_id: str,
        for_update: bool = False
    ) -> Optional[BankTransactionDB]:
        query = select(BankTransactionDB).where(
            BankTransactionDB.id == bank_transaction_id,
            BankTransactionDB.user_id == user_id,
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def list_bank_transactions(self, user_id: str) -> List[BankTransaction]:
        result = await self.session.execute(
            select(BankTransactionDB)
            .where(BankTransactionDB.user_id == user_id)
            .order_by(BankTransactionDB.date, BankTransactionDB.created_at, BankTransactionDB.id)
        )
        return [_db_to_bank_transaction(row) for row in result.scalars().all()]

    async def create_bank_transaction(self, user_id: str, data: BankTransactionCreate) -> BankTransactionDB:
        db_bank = BankTransactionDB(
            user_id=user_id,
            account_id=data.account_id,
            amount=to_money(data.amount),
            description=data.description,
            merchant_name=data.merchant_name,
            date=data.date,
            pending=data.pending,
        )
        self.session.add(db_bank)
        await self.session.flush()
        return db_bank

    async def delete_bank_transaction(self, db_bank: BankTransactionDB):
        await self.session.delete(db_bank)
        await self.session.flush()

    # ==================== CREDIT CARDS ====================

    async def get_credit_card(
        self,
        user_id: str,
        card_id: str,
        for_update: bool = False
    ) -> Optional[CreditCardDB]:
        query = select(CreditCardDB).where(
            CreditCardDB.id == card_id,
            CreditCardDB.user_id == user_id,
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def create_credit_card(self, user_id: str, data: CreditCardCreate) -> CreditCardDB:
        balance = to_money(data.balance)
        limit = to_money(data.credit_limit)
        db_card = CreditCardDB(
            user_id=user_id,
            account_name=data.account_name,
            balance=balance,
            credit_limit=limit,
            available_credit=limit - balance,
        )
        self.session.add(db_card)
        await self.session.flush()
        return db_card

    # ==================== ARCHIVE ====================

    async def get_archive_record(
        self,
        user_id: str,
        transaction_type: ArchivedRecordType,
        original_id: str
    ) -> Optional[DeletedTransactionDB]:
        result = await self.session.execute(
            select(DeletedTransactionDB).where(
                DeletedTransactionDB.user_id == user_id,
                DeletedTransactionDB.transaction_type == transaction_type,
                DeletedTransactionDB.original_id == original_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_archive(self, user_id: str) -> List[DeletedTransaction]:
        result = await self.session.execute(
            select(DeletedTransactionDB)
            .where(DeletedTransactionDB.user_id == user_id)
            .order_by(DeletedTransactionDB.deleted_at.desc(), DeletedTransactionDB.id)
        )
        return [_db_to_deleted_transaction(row) for row in result.scalars().all()]

    async def archive_bank_transaction(
        self,
        db_bank: BankTransactionDB,
        reason: ArchiveReason,
        metadata: Dict[str, Any]
    ) -> DeletedTransactionDB:
        """Insert the archive row for a bank transaction leaving the active set"""
        bank = _db_to_bank_transaction(db_bank)
        record = DeletedTransactionDB(
            user_id=db_bank.user_id,
            original_id=db_bank.id,
            transaction_type=ArchivedRecordType.BANK,
            reason=reason,
            name=bank.counterparty,
            amount=to_money(db_bank.amount),
            description=db_bank.description,
            payment_date=db_bank.date,
            status="pending" if db_bank.pending else "posted",
            snapshot=_snapshot(bank),
            archive_metadata=metadata,
            deleted_at=datetime.now(timezone.utc),
        )
        return await self._insert_archive(record)

    async def archive_vendor_transaction(
        self,
        db_txn: VendorTransactionDB,
        reason: ArchiveReason,
        metadata: Dict[str, Any]
    ) -> DeletedTransactionDB:
        """Insert the archive row for a payable removed by the user"""
        txn = _db_to_vendor_transaction(db_txn)
        record = DeletedTransactionDB(
            user_id=db_txn.user_id,
            original_id=db_txn.id,
            transaction_type=ArchivedRecordType.VENDOR,
            reason=reason,
            name=txn.vendor_name,
            amount=to_money(db_txn.amount),
            description=db_txn.description,
            payment_date=db_txn.due_date,
            status=txn.status.value,
            snapshot=_snapshot(txn),
            archive_metadata=metadata,
            deleted_at=datetime.now(timezone.utc),
        )
        return await self._insert_archive(record)

    async def _insert_archive(self, record: DeletedTransactionDB) -> DeletedTransactionDB:
        self.session.add(record)
        await self.session.flush()
        self._unpublished.append(_db_to_deleted_transaction(record))
        return record

    # ==================== SNAPSHOTS ====================

    async def load_snapshot(self, user_id: str) -> LedgerSnapshot:
        """Current bank, payable and receivable sets for the matching engine"""
        return LedgerSnapshot(
            bank_transactions=await self.list_bank_transactions(user_id),
            vendor_transactions=await self.list_active_vendor_transactions(user_id),
            income_items=await self.list_income_items(user_id),
        )
