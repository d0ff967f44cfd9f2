"""
Spend Reconciliation Engine

Keeps BudgetItem.spent equal to the sum of the amounts of the transactions
linked to the item.

DESIGN DECISION: spent moves by additive, atomic, server-side deltas.
- Reading every linked transaction on each write would be too slow.
- A read-modify-write would lose updates when two collaborators on a
  shared budget record spending at the same time.

FAILURE POLICY: the transaction record is the source of truth. A delta that
fails after the transaction write succeeded is logged, audited and reported
on the outcome as a ReconciliationWarning. It is never rolled back and never
raised. reconcile_item() re-sums the transactions to repair any drift.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from family_ledger.audit import AuditLogger, create_correlation_id
from family_ledger.models.ledger import (
    DriftReport,
    EntityRef,
    SpendAdjustment,
    Transaction,
    TransactionDraft,
    TransactionOutcome,
)
from family_ledger.services.ledger import LedgerStore
from family_ledger.services.storage import StorageError


logger = structlog.get_logger(__name__)


class SpendReconciler:
    """
    Wraps every transaction mutation with the matching spent adjustments.
    
    Ownership and link checks happen before any write, so a rejected call
    has no reconciliation side effects.
    """
    
    def __init__(
        self,
        ledger: LedgerStore,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._ledger = ledger
        self._audit_logger = audit_logger
    
    async def _apply_delta(
        self,
        budget_item_id: str,
        delta: Decimal,
        correlation_id: UUID,
    ) -> SpendAdjustment:
        """
        Attempt one delta; report instead of raising on failure.
        
        Each adjustment is independent: a failure here never stops the
        caller from attempting the next one.
        """
        try:
            await self._ledger.adjust_spent(budget_item_id, delta)
        except StorageError as e:
            logger.error(
                "spend_adjustment_failed",
                budget_item_id=budget_item_id,
                delta=str(delta),
                error=str(e),
                correlation_id=str(correlation_id),
            )
            if self._audit_logger:
                await self._audit_logger.log_spend_adjustment_failed(
                    budget_item_id=budget_item_id,
                    delta=delta,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
            return SpendAdjustment(
                budget_item_id=budget_item_id,
                delta=delta,
                applied=False,
                error=str(e),
            )
        
        if self._audit_logger:
            await self._audit_logger.log_spend_adjusted(
                budget_item_id=budget_item_id,
                delta=delta,
                correlation_id=correlation_id,
            )
        return SpendAdjustment(budget_item_id=budget_item_id, delta=delta, applied=True)
    
    async def _resolve_budget_item(
        self,
        user_id: str,
        budget_item_id: Optional[str],
    ) -> tuple[Optional[EntityRef], str]:
        if not budget_item_id:
            return None, ""
        item, _ = await self._ledger.require_item_access(
            user_id, budget_item_id, "link transaction to budget item"
        )
        return EntityRef(id=item.id), item.name
    
    async def _resolve_category(
        self,
        user_id: str,
        category_id: Optional[str],
    ) -> tuple[Optional[EntityRef], str]:
        if not category_id:
            return None, ""
        category = await self._ledger.get_category(user_id, category_id)
        return EntityRef(id=category.id), category.name
    
    async def add_transaction(
        self,
        user_id: str,
        draft: TransactionDraft,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionOutcome:
        """
        Record a transaction and add its amount to the linked item.
        
        Raises:
            NotFoundError: If a linked item or category doesn't exist
            UnauthorizedError: If the user may not use the linked item/category
        """
        correlation_id = correlation_id or create_correlation_id()
        
        budget_item, budget_item_name = await self._resolve_budget_item(user_id, draft.budget_item_id)
        category, category_name = await self._resolve_category(user_id, draft.category_id)
        
        transaction = await self._ledger.insert_transaction(Transaction(
            user_id=user_id,
            description=draft.description,
            amount=draft.amount,
            date=draft.date,
            budget_item=budget_item,
            category=category,
            budget_item_name=budget_item_name,
            category_name=category_name,
        ))
        
        adjustments = []
        if transaction.budget_item_id:
            adjustments.append(
                await self._apply_delta(transaction.budget_item_id, transaction.amount, correlation_id)
            )
        
        if self._audit_logger:
            await self._audit_logger.log_transaction_recorded(
                transaction_id=transaction.id,
                user_id=user_id,
                amount=transaction.amount,
                budget_item_id=transaction.budget_item_id,
                correlation_id=correlation_id,
            )
        
        return TransactionOutcome(transaction=transaction, adjustments=adjustments)
    
    async def update_transaction(
        self,
        user_id: str,
        transaction_id: str,
        draft: TransactionDraft,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionOutcome:
        """
        Edit a transaction and move spent accordingly.
        
        - Same item, new amount: one delta of (new - old).
        - Different item (or to/from unassigned): -old on the old item and
          +new on the new item, attempted independently.
        
        Only the recording user may edit. Links left unchanged are kept
        as-is even if the item has since become inaccessible.
        
        The record is replaced only if it is unchanged since it was read;
        an overlapping edit raises ConcurrentEditError and applies nothing.
        """
        correlation_id = correlation_id or create_correlation_id()
        
        previous = await self._ledger.require_transaction_owner(
            user_id, transaction_id, "update transaction"
        )
        
        if draft.budget_item_id == previous.budget_item_id:
            budget_item, budget_item_name = previous.budget_item, previous.budget_item_name
        else:
            budget_item, budget_item_name = await self._resolve_budget_item(user_id, draft.budget_item_id)
        
        previous_category_id = previous.category.id if previous.category else None
        if draft.category_id == previous_category_id:
            category, category_name = previous.category, previous.category_name
        else:
            category, category_name = await self._resolve_category(user_id, draft.category_id)
        
        transaction = await self._ledger.replace_transaction(
            transaction_id,
            Transaction(
                user_id=user_id,
                description=draft.description,
                amount=draft.amount,
                date=draft.date,
                budget_item=budget_item,
                category=category,
                budget_item_name=budget_item_name,
                category_name=category_name,
            ),
            expected_updated_at=previous.updated_at,
        )
        
        old_item_id, new_item_id = previous.budget_item_id, transaction.budget_item_id
        old_amount, new_amount = previous.amount, transaction.amount
        
        adjustments = []
        if old_item_id != new_item_id:
            if old_item_id:
                adjustments.append(await self._apply_delta(old_item_id, -old_amount, correlation_id))
            if new_item_id:
                adjustments.append(await self._apply_delta(new_item_id, new_amount, correlation_id))
        elif new_item_id and old_amount != new_amount:
            adjustments.append(
                await self._apply_delta(new_item_id, new_amount - old_amount, correlation_id)
            )
        
        if self._audit_logger:
            await self._audit_logger.log_transaction_updated(
                transaction_id=transaction_id,
                user_id=user_id,
                old_amount=old_amount,
                new_amount=new_amount,
                old_budget_item_id=old_item_id,
                new_budget_item_id=new_item_id,
                correlation_id=correlation_id,
            )
        
        return TransactionOutcome(transaction=transaction, adjustments=adjustments)
    
    async def delete_transaction(
        self,
        user_id: str,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionOutcome:
        """
        Take the amount off the linked item, then delete the record.
        
        Raises:
            NotFoundError: If the transaction doesn't exist
            UnauthorizedError: If the caller didn't record it (nothing is
                decremented in that case)
        """
        correlation_id = correlation_id or create_correlation_id()
        
        transaction = await self._ledger.require_transaction_owner(
            user_id, transaction_id, "delete transaction"
        )
        
        adjustments = []
        if transaction.budget_item_id:
            adjustments.append(
                await self._apply_delta(transaction.budget_item_id, -transaction.amount, correlation_id)
            )
        
        await self._ledger.delete_transaction_record(transaction_id)
        
        if self._audit_logger:
            await self._audit_logger.log_transaction_deleted(
                transaction_id=transaction_id,
                user_id=user_id,
                amount=transaction.amount,
                correlation_id=correlation_id,
            )
        
        return TransactionOutcome(transaction=transaction, adjustments=adjustments)
    
    async def reconcile_item(
        self,
        budget_item_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> DriftReport:
        """
        Recompute an item's spent total from its linked transactions.
        
        Idempotent. Meant for quiescent periods: a delta landing between
        the re-sum and the overwrite would be lost, so do not run this
        concurrently with live edits to the same item.
        """
        item = await self._ledger.get_budget_item(budget_item_id)
        transactions = await self._ledger.list_transactions_for_item(budget_item_id)
        recomputed = sum((t.amount for t in transactions), Decimal("0"))
        
        report = DriftReport(
            budget_item_id=budget_item_id,
            previous_spent=item.spent,
            recomputed_spent=recomputed,
            transaction_count=len(transactions),
        )
        
        if report.has_drift:
            await self._ledger.overwrite_spent(budget_item_id, recomputed)
            logger.warning(
                "spend_drift_repaired",
                budget_item_id=budget_item_id,
                previous_spent=str(item.spent),
                recomputed_spent=str(recomputed),
            )
            if self._audit_logger:
                await self._audit_logger.log_spend_drift_repaired(
                    budget_item_id=budget_item_id,
                    previous_spent=item.spent,
                    recomputed_spent=recomputed,
                    correlation_id=correlation_id,
                )
        
        return report
    
    async def reconcile_budget(self, user_id: str, budget_id: str) -> list[DriftReport]:
        """Repair every item of a budget the user can access."""
        correlation_id = create_correlation_id()
        await self._ledger.require_budget_access(user_id, budget_id, "reconcile budget")
        items = await self._ledger.list_budget_items(budget_id)
        return [await self.reconcile_item(item.id, correlation_id) for item in items]
