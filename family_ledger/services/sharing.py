"""
Budget Sharing Coordinator

Grants another user collaborative access to a budget and folds any budget
that user already keeps for the same month into the shared one.

CRITICAL INVARIANT: transaction-to-item links are never rewritten. Merging
only changes each item's parent budget; item ids survive, so every
transaction that references an item still resolves to it.

The share sequence touches several documents without a transaction. Each
step is safe to repeat: after a partial failure, calling share_budget
again finds no stale budget left to merge and only completes the
membership update.
"""

from typing import Optional
from uuid import UUID

import structlog

from family_ledger.audit import AuditLogger, create_correlation_id
from family_ledger.config import LedgerSettings, get_settings
from family_ledger.errors import (
    AlreadySharedError,
    RecipientNotFoundError,
    SelfShareRejectedError,
)
from family_ledger.models.ledger import Budget, SharedMember, ShareResult
from family_ledger.services.identity import IdentityResolver
from family_ledger.services.ledger import LedgerStore
from family_ledger.services.storage import COLLECTION_BUDGETS, StorageError


logger = structlog.get_logger(__name__)


class BudgetSharingCoordinator:
    """Share, unshare and list the members of a budget."""
    
    def __init__(
        self,
        ledger: LedgerStore,
        identity: IdentityResolver,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._ledger = ledger
        self._identity = identity
        self._settings = settings or get_settings().ledger
        self._audit_logger = audit_logger
    
    async def _require_owner(self, user_id: str, budget_id: str, action: str) -> Budget:
        budget = await self._ledger.load_budget(budget_id)
        if not budget.is_owner(user_id):
            raise await self._ledger.deny_access(user_id, action, "budget", budget_id)
        return budget
    
    async def share_budget(
        self,
        owner_user_id: str,
        budget_id: str,
        recipient_email: str,
        correlation_id: Optional[UUID] = None,
    ) -> ShareResult:
        """
        Share a budget with the user registered under recipient_email.
        
        Flow:
        1. Resolve the recipient (not found / self-share rejected)
        2. Load the budget (not found / not owner / already shared)
        3. Merge every budget the recipient owns for the same period
        4. Add the recipient to shared_with (idempotent)
        
        Raises:
            RecipientNotFoundError, SelfShareRejectedError, NotFoundError,
            UnauthorizedError, AlreadySharedError - all before any write
        """
        correlation_id = correlation_id or create_correlation_id()
        
        recipient = await self._identity.resolve_by_email(recipient_email)
        if recipient is None:
            raise RecipientNotFoundError(f"No user registered with email {recipient_email}")
        if recipient.uid == owner_user_id:
            raise SelfShareRejectedError("You cannot share a budget with yourself")
        
        budget = await self._require_owner(owner_user_id, budget_id, "share budget")
        if recipient.uid in budget.shared_with:
            raise AlreadySharedError(f"Budget is already shared with {recipient.email}")
        
        try:
            merged_budget_ids, merged_item_count = await self._merge_stale_budgets(
                budget, recipient.uid, correlation_id
            )
            await self._ledger.store.add_to_set(
                COLLECTION_BUDGETS, budget_id, "sharedWith", recipient.uid
            )
        except StorageError as e:
            # Completed steps stay; a retry finishes the share
            logger.error("budget_share_incomplete", budget_id=budget_id, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_error(
                    error_type="budget_share_incomplete",
                    error_message=str(e),
                    details={"budget_id": budget_id, "recipient_user_id": recipient.uid},
                    correlation_id=correlation_id,
                )
            raise
        
        logger.info(
            "budget_shared",
            budget_id=budget_id,
            owner_user_id=owner_user_id,
            recipient_user_id=recipient.uid,
            merged_item_count=merged_item_count,
        )
        if self._audit_logger:
            await self._audit_logger.log_budget_shared(
                budget_id=budget_id,
                owner_user_id=owner_user_id,
                recipient_user_id=recipient.uid,
                merged_item_count=merged_item_count,
                correlation_id=correlation_id,
            )
        
        return ShareResult(
            success=True,
            budget_id=budget_id,
            merged_item_count=merged_item_count,
            merged_budget_ids=merged_budget_ids,
            recipient=recipient,
        )
    
    async def _merge_stale_budgets(
        self,
        target: Budget,
        recipient_user_id: str,
        correlation_id: UUID,
    ) -> tuple[list[str], int]:
        """
        Fold the recipient's own budgets for the target's period into it.
        
        At most one is expected, but every match is merged. Items are
        repointed before the stale budget is deleted, so a crash never
        leaves an item without a parent.
        """
        stale_budgets = [
            budget
            for budget in await self._ledger.find_budgets(
                recipient_user_id, target.month, target.year, include_shared=False
            )
            if budget.id != target.id
        ]
        if len(stale_budgets) > 1:
            logger.warning(
                "multiple_stale_budgets",
                recipient_user_id=recipient_user_id,
                month=target.month,
                year=target.year,
                count=len(stale_budgets),
            )
        
        merged_budget_ids = []
        merged_item_count = 0
        for stale in stale_budgets:
            items = await self._ledger.list_budget_items(stale.id)
            for item in items:
                await self._ledger.repoint_budget_item(item.id, target.id)
            await self._ledger.delete_budget_record(stale.id)
            
            merged_budget_ids.append(stale.id)
            merged_item_count += len(items)
            
            if self._audit_logger:
                await self._audit_logger.log_budget_merged(
                    target_budget_id=target.id,
                    stale_budget_id=stale.id,
                    item_ids=[item.id for item in items],
                    correlation_id=correlation_id,
                )
        
        return merged_budget_ids, merged_item_count
    
    async def unshare_budget(
        self,
        owner_user_id: str,
        budget_id: str,
        target_user_id: str,
    ) -> Budget:
        """
        Remove a member from a budget.
        
        Items the member created stay in the budget; nothing is re-homed.
        """
        await self._require_owner(owner_user_id, budget_id, "unshare budget")
        await self._ledger.store.remove_from_set(
            COLLECTION_BUDGETS, budget_id, "sharedWith", target_user_id
        )
        
        if self._audit_logger:
            await self._audit_logger.log_budget_unshared(
                budget_id=budget_id,
                owner_user_id=owner_user_id,
                removed_user_id=target_user_id,
            )
        
        return await self._ledger.load_budget(budget_id)
    
    async def get_shared_members(
        self,
        budget_id: str,
        requesting_user_id: Optional[str] = None,
    ) -> list[SharedMember]:
        """
        The owner (flagged) followed by every member.
        
        When strict_member_listing is enabled the requester must be the
        owner or a member.
        """
        if self._settings.strict_member_listing:
            budget = await self._ledger.require_budget_access(
                requesting_user_id or "", budget_id, "list budget members"
            )
        else:
            budget = await self._ledger.load_budget(budget_id)
        
        members = [await self._member(budget.owner_user_id, is_owner=True)]
        for uid in budget.shared_with:
            members.append(await self._member(uid, is_owner=False))
        return members
    
    async def _member(self, uid: str, is_owner: bool) -> SharedMember:
        profile = await self._identity.get_profile(uid)
        if profile is None:
            return SharedMember(uid=uid, is_owner=is_owner)
        return SharedMember(
            uid=uid,
            email=profile.email,
            display_name=profile.display_name,
            is_owner=is_owner,
        )
