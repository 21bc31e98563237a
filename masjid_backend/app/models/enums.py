"""
Ledger enumerations.

Defines member, debt, payment and sync status types.
"""

import enum


class MemberStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class DebtType(str, enum.Enum):
    MONTHLY_DUES = "monthly_dues"
    CUSTOM = "custom"
    LATE_FEE = "late_fee"


class DebtStatus(str, enum.Enum):
    """
    Debt status enumeration.

    Transitions:
        PENDING -> OVERDUE: due date has passed
        PENDING / OVERDUE -> PAID: settled by a payment (never reopened)
    """
    PENDING = "pending"
    OVERDUE = "overdue"
    PAID = "paid"


OUTSTANDING_STATUSES = (DebtStatus.PENDING, DebtStatus.OVERDUE)


class AllocationStatus(str, enum.Enum):
    """Whether a recorded payment has been applied against the member's debts."""
    PENDING = "pending"
    ALLOCATED = "allocated"
    FAILED = "failed"


class SyncOperationType(str, enum.Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SyncTable(str, enum.Enum):
    MEMBERS = "members"
    PAYMENTS = "payments"
    DEBTS = "debts"


class SyncOperationStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    APPLIED = "APPLIED"
    FAILED = "FAILED"
