"""
Credit card balance adjustments.

balance and available_credit are only ever written here, and always together.
"""

import logging
from decimal import Decimal

from database.ledger_models import CreditCardDB, ZERO
from models.schemas import to_money

logger = logging.getLogger(__name__)


def apply_card_delta(card: CreditCardDB, delta: Decimal, floor_at_zero: bool = False) -> Decimal:
    """
    Move a card balance by delta and recompute available credit.

    Args:
        card: Card row loaded in the current unit of work
        delta: Positive to charge, negative to refund
        floor_at_zero: Clamp the resulting balance at 0

    Returns:
        The delta actually applied
    """
    delta = to_money(delta)
    old_balance = to_money(card.balance)
    new_balance = old_balance + delta
    if floor_at_zero and new_balance < ZERO:
        new_balance = ZERO

    card.balance = new_balance
    card.available_credit = to_money(card.credit_limit) - new_balance

    applied = new_balance - old_balance
    if applied:
        logger.info(f"Card {card.id} balance {old_balance} -> {new_balance}")
    return applied
