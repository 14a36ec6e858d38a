from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
import logging

from database import get_db
from middleware.user_context import require_user_id
from models.schemas import CreditCard, CreditCardCreate
from services.ledger_store import LedgerStore, _db_to_credit_card
from utils.errors import LedgerNotFoundError
from utils.validation_errors import ledger_error_to_http

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/credit-cards", tags=["Credit Cards"])


@router.post("", response_model=CreditCard)
async def create_credit_card(
    data: CreditCardCreate,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    store = LedgerStore(db)
    async with store.unit_of_work():
        db_card = await store.create_credit_card(user_id, data)
    return _db_to_credit_card(db_card)


@router.get("/{card_id}", response_model=CreditCard)
async def get_credit_card(
    card_id: str,
    user_id: str = Depends(require_user_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Current balance and available credit.
    """
    db_card = await LedgerStore(db).get_credit_card(user_id, card_id)
    if db_card is None:
        raise ledger_error_to_http(
            LedgerNotFoundError(f"Credit card {card_id} not found", parameter="card_id")
        )
    return _db_to_credit_card(db_card)
