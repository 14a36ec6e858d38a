from enum import Enum


class VendorTransactionStatus(str, Enum):
    """Payable status. `paid` from callers is normalised to COMPLETED."""
    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    COMPLETED = "completed"


class PartialPaymentRole(str, Enum):
    """Which side of a split a child payable represents"""
    PAID_PORTION = "paid_portion"
    REMAINING_PORTION = "remaining_portion"


class IncomeStatus(str, Enum):
    """Persisted receivable status"""
    PENDING = "pending"
    RECEIVED = "received"


class EffectiveIncomeStatus(str, Enum):
    """Receivable status as displayed; OVERDUE is derived from the payment date"""
    PENDING = "pending"
    RECEIVED = "received"
    OVERDUE = "overdue"


class MatchType(str, Enum):
    """What a bank transaction was paired with"""
    VENDOR = "vendor"
    INCOME = "income"


class ArchivedRecordType(str, Enum):
    BANK = "bank"
    VENDOR = "vendor"


class ArchiveReason(str, Enum):
    MATCHED = "matched"
    MANUAL_DELETE = "manual_delete"
