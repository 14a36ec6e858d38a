from .schemas import (
    VendorTransaction, VendorTransactionCreate, VendorTransactionUpdate,
    PartialPaymentRequest, PartialPaymentResult, ChangeCreditCardRequest,
    IncomeItem, IncomeItemCreate,
    BankTransaction, BankTransactionCreate,
    CreditCard, CreditCardCreate,
    DeletedTransaction,
    AcceptMatchRequest, AcceptAllRequest,
    to_money,
)
from .enums import (
    VendorTransactionStatus, PartialPaymentRole, IncomeStatus, EffectiveIncomeStatus,
    MatchType, ArchivedRecordType, ArchiveReason,
)

__all__ = [
    'VendorTransaction', 'VendorTransactionCreate', 'VendorTransactionUpdate',
    'PartialPaymentRequest', 'PartialPaymentResult', 'ChangeCreditCardRequest',
    'IncomeItem', 'IncomeItemCreate',
    'BankTransaction', 'BankTransactionCreate',
    'CreditCard', 'CreditCardCreate',
    'DeletedTransaction',
    'AcceptMatchRequest', 'AcceptAllRequest',
    'to_money',
    'VendorTransactionStatus', 'PartialPaymentRole', 'IncomeStatus', 'EffectiveIncomeStatus',
    'MatchType', 'ArchivedRecordType', 'ArchiveReason',
]
