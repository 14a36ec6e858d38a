from .payables import router as payables_router
from .receivables import router as receivables_router
from .credit_cards import router as credit_cards_router

__all__ = [
    'payables_router',
    'receivables_router',
    'credit_cards_router',
]
