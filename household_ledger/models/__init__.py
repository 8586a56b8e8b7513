"""
Data Models Package

This package contains all Pydantic models used in the Household Ledger.
All data crossing the storage boundary must conform to these schemas.
"""

from household_ledger.models.ledger import (
    BalanceDirection,
    ExpenseSplitRecord,
    Household,
    Member,
    MemberBalance,
    NetBalance,
    SettlementPlan,
    SettlementRecord,
    SplitUpdate,
    utc_now,
)
from household_ledger.models.chores import (
    BatchReport,
    Chore,
    ChoreCreationResult,
    ChoreStatus,
    ChoreTemplate,
    RecurrenceUnit,
    RotationCursor,
)
from household_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "BalanceDirection",
    "ExpenseSplitRecord",
    "Household",
    "Member",
    "MemberBalance",
    "NetBalance",
    "SettlementPlan",
    "SettlementRecord",
    "SplitUpdate",
    "utc_now",
    # Chore models
    "BatchReport",
    "Chore",
    "ChoreCreationResult",
    "ChoreStatus",
    "ChoreTemplate",
    "RecurrenceUnit",
    "RotationCursor",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
