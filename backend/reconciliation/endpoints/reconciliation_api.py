"""
Reconciliation API Endpoints

REST API for the reconciliation engine:
- GET /api/reconciliation/status - Module status and open item counts
- POST /api/reconciliation/bank-transactions - Record a synced bank transaction
- GET /api/reconciliation/bank-transactions - List active bank transactions
- DELETE /api/reconciliation/bank-transactions/{id} - Archive without matching
- GET /api/reconciliation/matches - Current match candidates
- POST /api/reconciliation/matches/score - Score a manual pairing
- POST /api/reconciliation/accept - Accept one match
- POST /api/reconciliation/accept-all - Accept the best one-to-one assignment
- GET /api/reconciliation/archive - Archived bank transactions and payables
- GET /api/reconciliation/archive/stream - Server-sent events for new archive records
"""

import asyncio
import json
import logging
from typing import Optional
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Header, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from config import get_settings
from database.connection import get_db
from middleware.user_context import require_user_id
from models.schemas import (
    AcceptMatchRequest,
    AcceptAllRequest,
    BankTransactionCreate,
)
from reconciliation.matching_rules.ledger_rules import LedgerMatchingEngine
from reconciliation.services.reconciliation_service import ReconciliationService
from services.archive_feed import archive_feed
from services.ledger_store import LedgerStore, _db_to_bank_transaction
from utils.errors import LedgerError
from utils.validation_errors import ledger_error_to_http

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reconciliation", tags=["Reconciliation"])


# ==================== Endpoints ====================

@router.get("/status", summary="Module status")
async def get_module_status(
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Get reconciliation module status for the caller's ledger.
    """
    service = ReconciliationService(db)
    counts = await service.get_status(user_id)
    return {
        "module": "reconciliation",
        "status": "operational",
        **counts,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.post("/bank-transactions", summary="Record bank transaction")
async def create_bank_transaction(
    request: BankTransactionCreate,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """Insert a bank or card movement observed by sync."""
    store = LedgerStore(db)
    async with store.unit_of_work():
        db_bank = await store.create_bank_transaction(user_id, request)
    return _db_to_bank_transaction(db_bank).model_dump(mode="json")


@router.get("/bank-transactions", summary="List bank transactions")
async def list_bank_transactions(
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    store = LedgerStore(db)
    transactions = await store.list_bank_transactions(user_id)
    return {
        "transactions": [t.model_dump(mode="json") for t in transactions],
        "total": len(transactions)
    }


@router.delete("/bank-transactions/{bank_transaction_id}", summary="Archive bank transaction")
async def delete_bank_transaction(
    bank_transaction_id: str,
    reason: Optional[str] = Query(default=None, description="Why the transaction is being removed"),
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Remove a bank transaction without matching it.

    The transaction is archived with reason manual_delete.
    """
    try:
        service = ReconciliationService(db)
        record = await service.delete_bank_transaction(user_id, bank_transaction_id, reason)
        return {
            "success": True,
            "archive_record": record.model_dump(mode="json")
        }
    except LedgerError as e:
        raise ledger_error_to_http(e)


@router.get("/matches", summary="List match candidates")
async def get_matches(
    bank_transaction_id: Optional[str] = Query(default=None),
    vendor_transaction_id: Optional[str] = Query(default=None),
    income_id: Optional[str] = Query(default=None),
    best_only: bool = Query(default=False, description="Collapse to a one-to-one assignment"),
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Compute match candidates from the current ledger.

    Matches are not stored; every call reflects the latest records.
    """
    service = ReconciliationService(db)
    matches = await service.find_matches(user_id)

    if best_only:
        matches = service.engine.select_best_matches(matches)
    if bank_transaction_id:
        matches = LedgerMatchingEngine.matches_for_bank_transaction(matches, bank_transaction_id)
    if vendor_transaction_id:
        matches = LedgerMatchingEngine.matches_for_vendor_transaction(matches, vendor_transaction_id)
    if income_id:
        matches = LedgerMatchingEngine.matches_for_income(matches, income_id)

    return {
        "matches": [m.to_dict() for m in matches],
        "total": len(matches)
    }


@router.post("/matches/score", summary="Score a manual pairing")
async def score_manual_match(
    request: AcceptMatchRequest,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """Score a pairing chosen by the user, whether or not it clears the threshold."""
    try:
        service = ReconciliationService(db)
        match = await service.build_manual_match(
            user_id,
            request.bank_transaction_id,
            request.matched_type,
            request.matched_id
        )
        return match.to_dict()
    except LedgerError as e:
        raise ledger_error_to_http(e)


@router.post("/accept", summary="Accept match")
async def accept_match(
    request: AcceptMatchRequest,
    user_id: str = Depends(require_user_id),
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    db: AsyncSession = Depends(get_db)
):
    """
    Accept a match.

    Settles the matched payable or receivable, archives the bank transaction
    and removes it, all in one transaction. Retrying with the same
    idempotency key returns the original outcome.
    """
    try:
        service = ReconciliationService(db)
        result = await service.accept_match_by_reference(
            user_id,
            request.bank_transaction_id,
            request.matched_type,
            request.matched_id,
            idempotency_key=request.idempotency_key or idempotency_key
        )
        return {
            "success": True,
            "message": "Match replayed" if result.replayed else "Match accepted",
            "result": result.to_dict()
        }
    except LedgerError as e:
        raise ledger_error_to_http(e)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to accept match: {e}")
        raise HTTPException(status_code=500, detail="Failed to accept match")


@router.post("/accept-all", summary="Accept all matches")
async def accept_all_matches(
    request: AcceptAllRequest,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Accept the best one-to-one assignment of current matches.

    Each match is accepted independently; the response lists which
    succeeded and which failed with the reason.
    """
    service = ReconciliationService(db)
    result = await service.accept_all(user_id, request.bank_transaction_ids)
    return result.to_dict()


@router.get("/archive", summary="List archive")
async def list_archive(
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    service = ReconciliationService(db)
    records = await service.list_archive(user_id)
    return {
        "records": [r.model_dump(mode="json") for r in records],
        "total": len(records)
    }


def _sse(event: str, data: str, event_id: Optional[str] = None) -> str:
    lines = [f"event: {event}"]
    if event_id:
        lines.append(f"id: {event_id}")
    lines.append(f"data: {data}")
    return "\n".join(lines) + "\n\n"


@router.get("/archive/stream", summary="Stream archive inserts")
async def stream_archive(
    limit: Optional[int] = Query(None, ge=1, description="Close the stream after this many records"),
    user_id: str = Depends(require_user_id),
):
    """
    Server-sent events for every archive record committed for the caller,
    whichever surface performed the reconciliation or delete.

    Events:
    - `archive`: one archived record as JSON
    - `resync`: the stream fell behind and was closed; reload the archive

    Idle connections receive a keep-alive comment at the configured interval.
    """
    settings = get_settings()

    async def event_stream():
        delivered = 0
        async with archive_feed.subscribe(user_id, max_pending=settings.ARCHIVE_FEED_MAX_PENDING) as subscription:
            yield ": connected\n\n"
            while limit is None or delivered < limit:
                try:
                    record = await asyncio.wait_for(
                        subscription.next(),
                        timeout=settings.ARCHIVE_STREAM_HEARTBEAT_SECONDS
                    )
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                if record is None:
                    break
                yield _sse("archive", record.model_dump_json(), event_id=record.id)
                delivered += 1

            if subscription.lagged:
                yield _sse("resync", json.dumps({"reason": "subscriber_lagged"}))
        logger.debug(f"Archive stream closed for user {user_id} after {delivered} records")

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}
    )
