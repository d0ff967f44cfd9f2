"""
Ledger Error Taxonomy

Authorization and not-found errors abort an operation before any side
effect. Reconciliation problems are not errors: they are collected as
ReconciliationWarning objects on the operation result and logged.
"""

from typing import Optional


class LedgerError(Exception):
    """Base exception for ledger operations."""
    pass


class NotFoundError(LedgerError):
    """Referenced entity does not exist."""
    
    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class ShareNotFoundError(NotFoundError):
    """Checklist share link does not resolve to a share record."""
    
    def __init__(self, share_id: str):
        super().__init__("checklist_share", share_id)


class UnauthorizedError(LedgerError):
    """Caller lacks ownership of, or shared access to, the entity."""
    
    def __init__(self, user_id: str, action: str, entity_id: Optional[str] = None):
        self.user_id = user_id
        self.action = action
        self.entity_id = entity_id
        target = f" on {entity_id}" if entity_id else ""
        super().__init__(f"User {user_id} may not {action}{target}")


class AlreadySharedError(LedgerError):
    """Recipient is already a member of the budget."""
    pass


class SelfShareRejectedError(LedgerError):
    """Owner tried to share a budget with themselves."""
    pass


class RecipientNotFoundError(LedgerError):
    """No registered user matches the recipient email."""
    pass


class SourceNotFoundError(LedgerError):
    """Previous month has no budget items to copy."""
    pass


class ImmutableCategoryError(LedgerError):
    """The synthetic 'Uncategorized' category cannot be changed."""
    pass


class ConcurrentEditError(LedgerError):
    """The record changed between read and write; nothing was applied."""
    
    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} was modified concurrently")


class ReconciliationWarning(UserWarning):
    """
    A spend adjustment failed after its primary write succeeded.
    
    Non-fatal: the transaction stays written and the item's spent total
    is left for the repair pass to fix.
    """
    
    def __init__(self, budget_item_id: str, delta, cause: str):
        self.budget_item_id = budget_item_id
        self.delta = delta
        self.cause = cause
        super().__init__(
            f"Reconciliation pending for budget item {budget_item_id} "
            f"(delta {delta}): {cause}"
        )
