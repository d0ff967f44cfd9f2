"""
Tests for the spend reconciliation engine.

The invariant under test: an item's spent total equals the sum of the
amounts of the transactions currently linked to it, once all deltas have
been applied (or repaired).
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from conftest import ALICE, BOB
from family_ledger.errors import (
    ConcurrentEditError,
    NotFoundError,
    ReconciliationWarning,
    UnauthorizedError,
)
from family_ledger.models import AuditEventType, BudgetItemDraft, TransactionDraft


def spend(amount, item_id=None, category_id=None, on=date(2024, 12, 5), description="Expense"):
    return TransactionDraft(
        description=description,
        amount=Decimal(str(amount)),
        date=on,
        budget_item_id=item_id,
        category_id=category_id,
    )


@pytest.fixture
async def december(ledger):
    budget = await ledger.create_budget(ALICE, 12, 2024)
    rent = await ledger.add_budget_item(ALICE, budget.id, BudgetItemDraft(name="Rent", amount=Decimal("1000")))
    food = await ledger.add_budget_item(ALICE, budget.id, BudgetItemDraft(name="Food", amount=Decimal("400")))
    return budget, rent, food


async def spent_of(ledger, item_id) -> Decimal:
    return (await ledger.get_budget_item(item_id)).spent


class TestSpendTracking:
    """Tests for spent moving with transaction edits."""
    
    async def test_rent_add_edit_delete(self, reconciler, ledger, december):
        """Test spent follows 250 -> 300 -> 0 for one transaction."""
        _, rent, _ = december
        
        outcome = await reconciler.add_transaction(ALICE, spend(250, rent.id, description="December rent"))
        assert await spent_of(ledger, rent.id) == Decimal("250")
        assert not outcome.reconciliation_pending
        assert outcome.transaction.budget_item_name == "Rent"
        
        transaction_id = outcome.transaction.id
        await reconciler.update_transaction(ALICE, transaction_id, spend(300, rent.id))
        assert await spent_of(ledger, rent.id) == Decimal("300")
        
        await reconciler.delete_transaction(ALICE, transaction_id)
        assert await spent_of(ledger, rent.id) == Decimal("0")
        with pytest.raises(NotFoundError):
            await ledger.get_transaction(transaction_id)
    
    async def test_reassign_moves_amount_between_items(self, reconciler, ledger, december):
        """Test moving a transaction decrements A and increments B."""
        _, rent, food = december
        outcome = await reconciler.add_transaction(ALICE, spend(80, rent.id))
        
        await reconciler.update_transaction(ALICE, outcome.transaction.id, spend(90, food.id))
        
        assert await spent_of(ledger, rent.id) == Decimal("0")
        assert await spent_of(ledger, food.id) == Decimal("90")
    
    async def test_unassigning_and_reassigning(self, reconciler, ledger, december):
        """Test moving to and from 'no item' only touches the linked side."""
        _, rent, _ = december
        outcome = await reconciler.add_transaction(ALICE, spend(40))
        assert outcome.adjustments == []
        
        await reconciler.update_transaction(ALICE, outcome.transaction.id, spend(40, rent.id))
        assert await spent_of(ledger, rent.id) == Decimal("40")
        
        updated = await reconciler.update_transaction(ALICE, outcome.transaction.id, spend(40))
        assert await spent_of(ledger, rent.id) == Decimal("0")
        assert updated.transaction.budget_item is None
    
    async def test_editing_date_moves_reporting_period(self, reconciler, december):
        """Test month/year follow an edited date."""
        _, rent, _ = december
        outcome = await reconciler.add_transaction(ALICE, spend(10, rent.id))
        
        updated = await reconciler.update_transaction(
            ALICE, outcome.transaction.id, spend(10, rent.id, on=date(2025, 1, 3))
        )
        assert (updated.transaction.month, updated.transaction.year) == (1, 2025)
    
    async def test_concurrent_additions_are_not_lost(self, reconciler, ledger, december):
        """Test simultaneous recordings on one item all land."""
        _, _, food = december
        await asyncio.gather(*(
            reconciler.add_transaction(ALICE, spend(10, food.id)) for _ in range(20)
        ))
        assert await spent_of(ledger, food.id) == Decimal("200")
    
    async def test_overlapping_edit_is_rejected(self, reconciler, ledger, store, december):
        """Test an edit that lost a race applies neither record nor delta."""
        _, rent, _ = december
        outcome = await reconciler.add_transaction(ALICE, spend(100, rent.id))
        transaction_id = outcome.transaction.id
        
        async def edit_in_between():
            await reconciler.update_transaction(ALICE, transaction_id, spend(200, rent.id))
        
        store.before_update = edit_in_between
        with pytest.raises(ConcurrentEditError):
            await reconciler.update_transaction(ALICE, transaction_id, spend(300, rent.id))
        
        assert await spent_of(ledger, rent.id) == Decimal("200")
        assert (await ledger.get_transaction(transaction_id)).amount == Decimal("200")
    
    async def test_category_name_is_resolved(self, reconciler, ledger, december):
        """Test category display names are filled in on write."""
        category = await ledger.save_category(ALICE, "Housing")
        outcome = await reconciler.add_transaction(ALICE, spend(5, category_id=category.id))
        assert outcome.transaction.category_name == "Housing"
        
        system = await reconciler.add_transaction(ALICE, spend(5, category_id="system-uncategorized"))
        assert system.transaction.category_name == "Uncategorized"


class TestPartialFailure:
    """Tests for delta failures after the primary write."""
    
    async def test_failed_increment_keeps_other_adjustment(self, reconciler, ledger, store, december):
        """Test A is still decremented when B's increment fails."""
        _, rent, food = december
        outcome = await reconciler.add_transaction(ALICE, spend(250, rent.id))
        store.failing_increments.add(food.id)
        
        moved = await reconciler.update_transaction(ALICE, outcome.transaction.id, spend(250, food.id))
        
        assert await spent_of(ledger, rent.id) == Decimal("0")
        assert await spent_of(ledger, food.id) == Decimal("0")
        assert moved.transaction.budget_item_id == food.id
        assert moved.reconciliation_pending
        assert [adj.applied for adj in moved.adjustments] == [True, False]
        
        warning, = moved.warnings
        assert isinstance(warning, ReconciliationWarning)
        assert warning.budget_item_id == food.id
        assert warning.delta == Decimal("250")
    
    async def test_failed_increment_on_add_keeps_transaction(self, reconciler, ledger, store, december):
        """Test the transaction record survives a failed delta."""
        _, rent, _ = december
        store.failing_increments.add(rent.id)
        
        outcome = await reconciler.add_transaction(ALICE, spend(70, rent.id))
        
        assert outcome.reconciliation_pending
        stored = await ledger.get_transaction(outcome.transaction.id)
        assert stored.amount == Decimal("70")
        assert await spent_of(ledger, rent.id) == Decimal("0")
    
    async def test_failed_decrement_on_delete_still_deletes(self, reconciler, ledger, store, december):
        """Test delete removes the record even if the decrement fails."""
        _, rent, _ = december
        outcome = await reconciler.add_transaction(ALICE, spend(30, rent.id))
        store.failing_increments.add(rent.id)
        
        deleted = await reconciler.delete_transaction(ALICE, outcome.transaction.id)
        
        assert deleted.reconciliation_pending
        assert await ledger.list_transactions(ALICE) == []
        assert await spent_of(ledger, rent.id) == Decimal("30")
    
    async def test_failure_is_audited(self, reconciler, store, audit_storage, december):
        """Test each failed delta leaves an audit record."""
        _, rent, _ = december
        store.failing_increments.add(rent.id)
        await reconciler.add_transaction(ALICE, spend(12, rent.id))
        
        events = await audit_storage.get_events_by_entity("budget_item", rent.id)
        assert [e.event_type for e in events] == [AuditEventType.SPEND_ADJUSTMENT_FAILED]


class TestRepair:
    """Tests for re-summing spent from linked transactions."""
    
    async def test_reconcile_repairs_drift(self, reconciler, ledger, store, december):
        """Test a missed delta is repaired and repair is idempotent."""
        _, rent, food = december
        outcome = await reconciler.add_transaction(ALICE, spend(250, rent.id))
        store.failing_increments.add(food.id)
        await reconciler.update_transaction(ALICE, outcome.transaction.id, spend(250, food.id))
        store.failing_increments.clear()
        
        report = await reconciler.reconcile_item(food.id)
        assert report.previous_spent == Decimal("0")
        assert report.recomputed_spent == Decimal("250")
        assert report.transaction_count == 1
        assert await spent_of(ledger, food.id) == Decimal("250")
        
        again = await reconciler.reconcile_item(food.id)
        assert not again.has_drift
    
    async def test_reconcile_budget_requires_access(self, reconciler, users, december):
        """Test outsiders cannot run the repair pass on a budget."""
        budget, _, _ = december
        with pytest.raises(UnauthorizedError):
            await reconciler.reconcile_budget(BOB, budget.id)
    
    async def test_reconcile_budget_reports_every_item(self, reconciler, december):
        """Test one report per item."""
        budget, rent, food = december
        reports = await reconciler.reconcile_budget(ALICE, budget.id)
        assert {r.budget_item_id for r in reports} == {rent.id, food.id}
        assert not any(r.has_drift for r in reports)


class TestAuthorization:
    """Tests that rejected calls have no side effects."""
    
    async def test_other_user_cannot_update(self, reconciler, ledger, december):
        """Test only the recorder may edit a transaction."""
        _, rent, _ = december
        outcome = await reconciler.add_transaction(ALICE, spend(100, rent.id))
        
        with pytest.raises(UnauthorizedError):
            await reconciler.update_transaction(BOB, outcome.transaction.id, spend(1, rent.id))
        
        assert await spent_of(ledger, rent.id) == Decimal("100")
        assert (await ledger.get_transaction(outcome.transaction.id)).amount == Decimal("100")
    
    async def test_other_user_cannot_delete(self, reconciler, ledger, audit_storage, december):
        """Test a rejected delete decrements nothing and is audited."""
        _, rent, _ = december
        outcome = await reconciler.add_transaction(ALICE, spend(100, rent.id))
        
        with pytest.raises(UnauthorizedError):
            await reconciler.delete_transaction(BOB, outcome.transaction.id)
        
        assert await spent_of(ledger, rent.id) == Decimal("100")
        events = await audit_storage.get_events_by_entity("transaction", outcome.transaction.id)
        assert AuditEventType.AUTHORIZATION_DENIED in [e.event_type for e in events]
    
    async def test_linking_inaccessible_item_is_rejected(self, reconciler, ledger, december):
        """Test linking someone else's budget item writes nothing."""
        _, rent, _ = december
        with pytest.raises(UnauthorizedError):
            await reconciler.add_transaction(BOB, spend(5, rent.id))
        assert await ledger.list_transactions(BOB) == []
        assert await spent_of(ledger, rent.id) == Decimal("0")
    
    async def test_linking_missing_item_is_rejected(self, reconciler, ledger):
        """Test linking a non-existent item raises NotFoundError."""
        with pytest.raises(NotFoundError):
            await reconciler.add_transaction(ALICE, spend(5, "no-such-item"))
        assert await ledger.list_transactions(ALICE) == []
    
    async def test_linking_foreign_category_is_rejected(self, reconciler, ledger):
        """Test categories are private to their owner."""
        category = await ledger.save_category(BOB, "Bob stuff")
        with pytest.raises(UnauthorizedError):
            await reconciler.add_transaction(ALICE, spend(5, category_id=category.id))
