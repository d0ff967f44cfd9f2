"""
Services Package

Domain services built on the document store: identity resolution, the
ledger store, spend reconciliation, budget sharing and checklist sync.
"""

from family_ledger.services.checklist import ChecklistService, SharedChecklistSession
from family_ledger.services.identity import IdentityResolver
from family_ledger.services.ledger import LedgerStore
from family_ledger.services.reconciliation import SpendReconciler
from family_ledger.services.sharing import BudgetSharingCoordinator

__all__ = [
    "BudgetSharingCoordinator",
    "ChecklistService",
    "IdentityResolver",
    "LedgerStore",
    "SharedChecklistSession",
    "SpendReconciler",
]
