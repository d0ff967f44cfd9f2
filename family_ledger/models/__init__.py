"""
Data Models Package

This package contains all Pydantic models used in Family Ledger.
All data flowing through the system must conform to these schemas.
"""

from family_ledger.models.ledger import (
    Budget,
    BudgetItem,
    BudgetItemDraft,
    Category,
    DriftReport,
    EntityRef,
    LedgerDocument,
    SharedMember,
    ShareResult,
    SpendAdjustment,
    Transaction,
    TransactionDraft,
    TransactionOutcome,
    UserProfile,
    has_access,
)
from family_ledger.models.checklist import (
    DEFAULT_CHECKLIST_GROUP,
    ChecklistCapability,
    ChecklistItem,
    ChecklistShare,
)
from family_ledger.models.summary import (
    BudgetItemProgress,
    CategorySpend,
    MonthlySummary,
)
from family_ledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Budget",
    "BudgetItem",
    "BudgetItemDraft",
    "Category",
    "DriftReport",
    "EntityRef",
    "LedgerDocument",
    "SharedMember",
    "ShareResult",
    "SpendAdjustment",
    "Transaction",
    "TransactionDraft",
    "TransactionOutcome",
    "UserProfile",
    "has_access",
    # Checklist models
    "DEFAULT_CHECKLIST_GROUP",
    "ChecklistCapability",
    "ChecklistItem",
    "ChecklistShare",
    # Summary models
    "BudgetItemProgress",
    "CategorySpend",
    "MonthlySummary",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
