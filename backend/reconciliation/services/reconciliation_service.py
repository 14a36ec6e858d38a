"""
Reconciliation Service

Core business logic for bank reconciliation:
- Computing match candidates from the current ledger snapshot
- Accepting a match (settle record, archive bank transaction, remove it)
- Accepting many matches with per-match success/failure reporting
- Sequential review with a client-side cursor
- Manual archival of bank transactions
- Audit logging

Accepting a match is one unit of work. A bank transaction is archived at
most once: a repeated accept fails closed, or replays the earlier outcome
when it carries the same idempotency key.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from logging_config import log_ledger_event
from models.enums import (
    MatchType,
    VendorTransactionStatus,
    IncomeStatus,
    ArchivedRecordType,
    ArchiveReason,
)
from models.schemas import DeletedTransaction, to_money
from reconciliation.matching_rules.ledger_rules import (
    LedgerMatchingEngine,
    Match,
    matching_engine,
)
from sentry_integration import capture_exception
from services.archive_feed import ArchiveFeed
from services.ledger_store import (
    LedgerStore,
    _db_to_bank_transaction,
    _db_to_vendor_transaction,
    _db_to_income_item,
    _db_to_deleted_transaction,
)
from services.partial_payments import require_vendor_transaction, settle_vendor_transaction
from utils.errors import (
    LedgerError,
    LedgerValidationError,
    LedgerNotFoundError,
    AlreadyResolvedError,
    AlreadyReconciledError,
)

logger = logging.getLogger(__name__)


@dataclass
class AcceptMatchResult:
    """Outcome of one accepted match."""
    bank_transaction_id: str
    matched_type: MatchType
    matched_id: str
    match_score: Optional[float]
    archive_record: DeletedTransaction
    replayed: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bank_transaction_id": self.bank_transaction_id,
            "matched_type": self.matched_type.value,
            "matched_id": self.matched_id,
            "match_score": self.match_score,
            "archive_record": self.archive_record.model_dump(mode="json"),
            "replayed": self.replayed,
        }


@dataclass
class MatchFailure:
    """A match that could not be accepted, with the reason."""
    bank_transaction_id: str
    matched_type: MatchType
    matched_id: str
    error: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bank_transaction_id": self.bank_transaction_id,
            "matched_type": self.matched_type.value,
            "matched_id": self.matched_id,
            "error": self.error,
            "message": self.message,
        }


@dataclass
class MatchAllResult:
    """Result of accepting a batch of matches."""
    succeeded: List[AcceptMatchResult] = field(default_factory=list)
    failed: List[MatchFailure] = field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": [r.to_dict() for r in self.succeeded],
            "failed": [f.to_dict() for f in self.failed],
            "succeeded_count": len(self.succeeded),
            "failed_count": len(self.failed),
        }


class MatchReviewQueue:
    """
    Cursor over matches presented one at a time for review.

    Rejecting a match only moves the cursor; nothing is persisted.
    """

    def __init__(self, matches: List[Match]):
        self.matches = list(matches)
        self.position = 0

    @property
    def current(self) -> Optional[Match]:
        if self.position < len(self.matches):
            return self.matches[self.position]
        return None

    @property
    def remaining(self) -> int:
        return max(len(self.matches) - self.position, 0)

    @property
    def is_finished(self) -> bool:
        return self.position >= len(self.matches)

    def advance(self) -> Optional[Match]:
        if not self.is_finished:
            self.position += 1
        return self.current

    def skip_past(self, match: Match) -> Optional[Match]:
        """Move the cursor past the given match and return the next one"""
        for index in range(self.position, len(self.matches)):
            if self.matches[index] is match:
                self.position = index + 1
                return self.current
        return self.advance()


class ReconciliationAuditEvent:
    """Audit event types for reconciliation operations."""
    CANDIDATES_FOUND = "reconciliation.candidates_found"
    MATCH_ACCEPTED = "reconciliation.match_accepted"
    MATCH_REPLAYED = "reconciliation.match_replayed"
    MATCH_REJECTED = "reconciliation.match_rejected"
    MATCH_ALL_COMPLETED = "reconciliation.match_all_completed"
    BANK_TRANSACTION_DELETED = "reconciliation.bank_transaction_deleted"


class ReconciliationService:
    """
    Service for reconciling bank transactions against payables and receivables.
    """

    def __init__(
        self,
        db: AsyncSession,
        engine: Optional[LedgerMatchingEngine] = None,
        feed: Optional[ArchiveFeed] = None
    ):
        self.db = db
        self.store = LedgerStore(db, feed)
        self.engine = engine or matching_engine

    # ==================== MATCHING ====================

    async def find_matches(self, user_id: str) -> List[Match]:
        """
        Compute candidate matches for the user's current ledger.

        Returns:
            Matches in engine order
        """
        snapshot = await self.store.load_snapshot(user_id)
        matches = self.engine.compute_matches(snapshot)

        log_ledger_event(ReconciliationAuditEvent.CANDIDATES_FOUND, user_id, {
            "bank_transactions": len(snapshot.bank_transactions),
            "matches": len(matches),
        })
        return matches

    async def build_manual_match(
        self,
        user_id: str,
        bank_transaction_id: str,
        matched_type: MatchType,
        matched_id: str
    ) -> Match:
        """
        Score an explicit pairing chosen by the user, regardless of threshold.

        Raises:
            LedgerNotFoundError: Either side does not exist for this user
            LedgerValidationError: The pairing has the wrong sign
        """
        try:
            matched_type = MatchType(matched_type)
        except ValueError:
            raise LedgerValidationError(
                f"matched_type must be one of {[t.value for t in MatchType]}",
                parameter="matched_type"
            )

        db_bank = await self.store.get_bank_transaction(user_id, bank_transaction_id)
        if db_bank is None:
            raise LedgerNotFoundError(
                f"Bank transaction {bank_transaction_id} not found",
                parameter="bank_transaction_id"
            )
        bank_tx = _db_to_bank_transaction(db_bank)
        self._check_sign(bank_tx.amount, matched_type)

        if matched_type == MatchType.VENDOR:
            db_txn = await self.store.get_vendor_transaction(user_id, matched_id)
            if db_txn is None:
                raise LedgerNotFoundError(f"Vendor transaction {matched_id} not found", parameter="matched_id")
            candidate = _db_to_vendor_transaction(db_txn)
        else:
            db_item = await self.store.get_income_item(user_id, matched_id)
            if db_item is None:
                raise LedgerNotFoundError(f"Income item {matched_id} not found", parameter="matched_id")
            candidate = _db_to_income_item(db_item)

        return self.engine.score_candidate(bank_tx, candidate)

    # ==================== ACCEPT ====================

    async def accept_match(
        self,
        user_id: str,
        match: Match,
        idempotency_key: Optional[str] = None
    ) -> AcceptMatchResult:
        """
        Accept a match as one unit of work.

        1. Settle the matched payable (card charged when linked) or receive the income
        2. Archive the bank transaction with the match metadata
        3. Remove the bank transaction from the active set

        Args:
            user_id: Owner of the ledger
            match: Match to accept
            idempotency_key: Retries with the same key replay the earlier outcome

        Raises:
            AlreadyReconciledError: Bank transaction already archived
            AlreadyResolvedError: Matched record is no longer open
            LedgerValidationError: Sign mismatch
            LedgerNotFoundError: Either side does not exist
        """
        bank_transaction_id = match.bank_transaction.id
        matched_id = match.matched_id
        replay = None

        try:
            async with self.store.unit_of_work():
                db_bank = await self.store.get_bank_transaction(user_id, bank_transaction_id, for_update=True)
                if db_bank is None:
                    replay = await self._replay_or_fail(user_id, bank_transaction_id, idempotency_key)
                else:
                    self._check_sign(db_bank.amount, match.type)

                    metadata = {
                        "matched_type": match.type.value,
                        "matched_id": matched_id,
                        "match_score": match.match_score,
                        "idempotency_key": idempotency_key,
                        "accepted_by": user_id,
                    }
                    if match.type == MatchType.VENDOR:
                        db_txn = await require_vendor_transaction(self.store, user_id, matched_id)
                        await settle_vendor_transaction(self.store, db_txn)
                    else:
                        metadata["customer_payment"] = await self._receive_income(user_id, matched_id)

                    record = await self.store.archive_bank_transaction(db_bank, ArchiveReason.MATCHED, metadata)
                    await self.store.delete_bank_transaction(db_bank)
        except IntegrityError as e:
            logger.warning(f"Archive conflict accepting bank transaction {bank_transaction_id}: {e}")
            raise AlreadyReconciledError(
                f"Bank transaction {bank_transaction_id} has already been reconciled",
                parameter="bank_transaction_id"
            ) from e

        if replay is not None:
            return replay

        log_ledger_event(ReconciliationAuditEvent.MATCH_ACCEPTED, user_id, {
            "bank_transaction_id": bank_transaction_id,
            "matched_type": match.type.value,
            "matched_id": matched_id,
            "match_score": match.match_score,
        })

        return AcceptMatchResult(
            bank_transaction_id=bank_transaction_id,
            matched_type=match.type,
            matched_id=matched_id,
            match_score=match.match_score,
            archive_record=_db_to_deleted_transaction(record),
        )

    async def accept_match_by_reference(
        self,
        user_id: str,
        bank_transaction_id: str,
        matched_type: MatchType,
        matched_id: str,
        idempotency_key: Optional[str] = None
    ) -> AcceptMatchResult:
        """Accept a pairing identified by ids, as submitted by a client"""
        db_bank = await self.store.get_bank_transaction(user_id, bank_transaction_id)
        if db_bank is None:
            return await self._replay_or_fail(user_id, bank_transaction_id, idempotency_key)

        match = await self.build_manual_match(user_id, bank_transaction_id, matched_type, matched_id)
        return await self.accept_match(user_id, match, idempotency_key)

    async def _replay_or_fail(
        self,
        user_id: str,
        bank_transaction_id: str,
        idempotency_key: Optional[str]
    ) -> AcceptMatchResult:
        record = await self.store.get_archive_record(user_id, ArchivedRecordType.BANK, bank_transaction_id)
        if record is None:
            raise LedgerNotFoundError(
                f"Bank transaction {bank_transaction_id} not found",
                parameter="bank_transaction_id"
            )

        metadata = record.archive_metadata or {}
        if (
            idempotency_key
            and record.reason == ArchiveReason.MATCHED
            and metadata.get("idempotency_key") == idempotency_key
        ):
            log_ledger_event(ReconciliationAuditEvent.MATCH_REPLAYED, user_id, {
                "bank_transaction_id": bank_transaction_id,
                "idempotency_key": idempotency_key,
            })
            return AcceptMatchResult(
                bank_transaction_id=bank_transaction_id,
                matched_type=MatchType(metadata["matched_type"]),
                matched_id=metadata["matched_id"],
                match_score=metadata.get("match_score"),
                archive_record=_db_to_deleted_transaction(record),
                replayed=True,
            )

        raise AlreadyReconciledError(
            f"Bank transaction {bank_transaction_id} has already been reconciled",
            parameter="bank_transaction_id",
            details={"archive_id": record.id, "reason": record.reason.value}
        )

    async def _receive_income(self, user_id: str, income_id: str) -> Dict[str, Any]:
        db_item = await self.store.get_income_item(user_id, income_id, for_update=True)
        if db_item is None:
            raise LedgerNotFoundError(f"Income item {income_id} not found", parameter="matched_id")
        if db_item.status != IncomeStatus.PENDING:
            raise AlreadyResolvedError(
                f"Income item {income_id} is already {db_item.status.value}",
                parameter="matched_id"
            )
        db_item.status = IncomeStatus.RECEIVED
        db_item.received_at = datetime.now(timezone.utc)

        # Completed customer payment recorded alongside the match
        return {
            "type": "customer_payment",
            "amount": str(to_money(db_item.amount)),
            "description": f"Matched: {db_item.source or ''} - {db_item.description or ''}",
            "customer_id": db_item.customer_id,
            "transaction_date": db_item.received_at.isoformat(),
            "status": "completed",
        }

    @staticmethod
    def _check_sign(amount, matched_type: MatchType):
        if matched_type == MatchType.VENDOR and not amount < 0:
            raise LedgerValidationError(
                "Only debit bank transactions can settle a vendor transaction",
                parameter="matched_type"
            )
        if matched_type == MatchType.INCOME and not amount > 0:
            raise LedgerValidationError(
                "Only credit bank transactions can settle an income item",
                parameter="matched_type"
            )

    # ==================== REVIEW ====================

    def reject_match(self, user_id: str, review: MatchReviewQueue, match: Match) -> Optional[Match]:
        """
        Reject a match during sequential review.

        No ledger state changes; the review cursor moves to the next match.
        """
        next_match = review.skip_past(match)
        log_ledger_event(ReconciliationAuditEvent.MATCH_REJECTED, user_id, {
            "bank_transaction_id": match.bank_transaction.id,
            "matched_type": match.type.value,
            "matched_id": match.matched_id,
        }, level=logging.DEBUG)
        return next_match

    # ==================== BATCH ====================

    async def match_all(self, user_id: str, matches: List[Match]) -> MatchAllResult:
        """
        Accept every match in order, each in its own unit of work.

        A failing match does not stop the batch; every outcome is reported.
        """
        result = MatchAllResult()

        for match in matches:
            try:
                result.succeeded.append(await self.accept_match(user_id, match))
            except LedgerError as e:
                logger.warning(f"Match for bank transaction {match.bank_transaction.id} not accepted: {e.message}")
                result.failed.append(self._failure(match, e.code, e.message))
            except Exception as e:
                logger.error(f"Unexpected error accepting bank transaction {match.bank_transaction.id}: {e}")
                capture_exception(e, user_id=user_id, bank_transaction_id=match.bank_transaction.id)
                result.failed.append(self._failure(match, "internal_error", str(e)))

        log_ledger_event(ReconciliationAuditEvent.MATCH_ALL_COMPLETED, user_id, {
            "requested": len(matches),
            "succeeded": len(result.succeeded),
            "failed": len(result.failed),
        })
        return result

    async def accept_all(self, user_id: str, bank_transaction_ids: Optional[List[str]] = None) -> MatchAllResult:
        """Accept the best one-to-one assignment of the current matches"""
        matches = self.engine.select_best_matches(await self.find_matches(user_id))
        if bank_transaction_ids is not None:
            wanted = set(bank_transaction_ids)
            matches = [m for m in matches if m.bank_transaction.id in wanted]
        return await self.match_all(user_id, matches)

    @staticmethod
    def _failure(match: Match, error: str, message: str) -> MatchFailure:
        return MatchFailure(
            bank_transaction_id=match.bank_transaction.id,
            matched_type=match.type,
            matched_id=match.matched_id,
            error=error,
            message=message,
        )

    # ==================== MANUAL ARCHIVAL ====================

    async def delete_bank_transaction(
        self,
        user_id: str,
        bank_transaction_id: str,
        reason: Optional[str] = None
    ) -> DeletedTransaction:
        """Archive and remove a bank transaction without matching it"""
        async with self.store.unit_of_work():
            db_bank = await self.store.get_bank_transaction(user_id, bank_transaction_id, for_update=True)
            if db_bank is None:
                archived = await self.store.get_archive_record(user_id, ArchivedRecordType.BANK, bank_transaction_id)
                if archived is not None:
                    raise AlreadyReconciledError(
                        f"Bank transaction {bank_transaction_id} has already been archived",
                        parameter="bank_transaction_id"
                    )
                raise LedgerNotFoundError(
                    f"Bank transaction {bank_transaction_id} not found",
                    parameter="bank_transaction_id"
                )

            record = await self.store.archive_bank_transaction(
                db_bank,
                ArchiveReason.MANUAL_DELETE,
                {"reason": reason, "deleted_by": user_id}
            )
            await self.store.delete_bank_transaction(db_bank)

        log_ledger_event(ReconciliationAuditEvent.BANK_TRANSACTION_DELETED, user_id, {
            "bank_transaction_id": bank_transaction_id,
            "reason": reason,
        })
        return _db_to_deleted_transaction(record)

    async def list_archive(self, user_id: str) -> List[DeletedTransaction]:
        return await self.store.list_archive(user_id)

    async def get_status(self, user_id: str) -> Dict[str, Any]:
        """Counts of open items and current matches"""
        snapshot = await self.store.load_snapshot(user_id)
        matches = self.engine.compute_matches(snapshot)
        return {
            "bank_transactions": len(snapshot.bank_transactions),
            "pending_vendor_transactions": len([
                v for v in snapshot.vendor_transactions if v.status == VendorTransactionStatus.PENDING
            ]),
            "pending_income_items": len([
                i for i in snapshot.income_items if i.status == IncomeStatus.PENDING
            ]),
            "matches": len(matches),
            "matched_bank_transactions": len({m.bank_transaction.id for m in matches}),
            "config": self.engine.config.to_dict(),
        }
