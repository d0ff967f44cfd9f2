"""Checklist services package."""

from family_ledger.services.checklist.service import ChecklistService, SharedChecklistSession
from family_ledger.services.checklist.subscription import (
    ChecklistSubscription,
    SubscriptionState,
    group_checklist_items,
    sort_checklist_items,
)

__all__ = [
    "ChecklistService",
    "ChecklistSubscription",
    "SharedChecklistSession",
    "SubscriptionState",
    "group_checklist_items",
    "sort_checklist_items",
]
