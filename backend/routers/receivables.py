from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import date
import logging

from database import get_db
from logging_config import log_ledger_event
from middleware.user_context import require_user_id
from models.schemas import IncomeItemCreate
from services.ledger_store import LedgerStore, _db_to_income_item

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/receivables", tags=["Receivables"])


def _with_effective_status(item, today: date) -> dict:
    body = item.model_dump(mode="json")
    body["effective_status"] = item.effective_status(today).value
    return body


@router.post("")
async def create_receivable(
    data: IncomeItemCreate,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Record income owed to the business.
    """
    store = LedgerStore(db)
    async with store.unit_of_work():
        db_item = await store.create_income_item(user_id, data)

    log_ledger_event("receivables.created", user_id, {
        "income_id": db_item.id,
        "amount": str(db_item.amount),
    })
    return _with_effective_status(_db_to_income_item(db_item), date.today())


@router.get("")
async def list_receivables(
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    List receivables. Pending items past their payment date show as overdue.
    """
    items = await LedgerStore(db).list_income_items(user_id)
    today = date.today()
    return {
        "items": [_with_effective_status(item, today) for item in items],
        "total": len(items)
    }
