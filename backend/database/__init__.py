from .connection import get_db, get_engine, get_session_factory, make_session_factory, init_db, Base

# Import ledger models to ensure they are registered with Base
from .ledger_models import (
    VendorTransactionDB, IncomeItemDB, BankTransactionDB, CreditCardDB, DeletedTransactionDB,
    VendorTransactionStatus, PartialPaymentRole, IncomeStatus, ArchivedRecordType, ArchiveReason,
)

__all__ = [
    'get_db', 'get_engine', 'get_session_factory', 'make_session_factory', 'init_db', 'Base',
    # Ledger models
    'VendorTransactionDB', 'IncomeItemDB', 'BankTransactionDB', 'CreditCardDB', 'DeletedTransactionDB',
    'VendorTransactionStatus', 'PartialPaymentRole', 'IncomeStatus', 'ArchivedRecordType', 'ArchiveReason',
]
