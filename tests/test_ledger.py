"""
Tests for the ledger store: budgets, items, categories and listings.
"""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from conftest import ALICE, BOB
from family_ledger.errors import (
    ImmutableCategoryError,
    NotFoundError,
    SourceNotFoundError,
    UnauthorizedError,
)
from family_ledger.models import BudgetItemDraft, TransactionDraft
from family_ledger.services.ledger import previous_period


def draft(name, amount):
    return BudgetItemDraft(name=name, amount=Decimal(str(amount)))


class TestBudgets:
    """Tests for creating and resolving budgets."""
    
    async def test_no_budget_yet(self, ledger):
        """Test a fresh period resolves to nothing."""
        assert await ledger.get_budget(ALICE, 12, 2024) is None
    
    async def test_create_budget_is_idempotent(self, ledger):
        """Test creating twice returns the same budget."""
        first = await ledger.create_budget(ALICE, 12, 2024)
        second = await ledger.create_budget(ALICE, 12, 2024)
        assert first.id == second.id
        assert len(await ledger.find_budgets(ALICE, 12, 2024)) == 1
    
    async def test_get_budget_includes_items(self, ledger):
        """Test the resolved budget carries its items in creation order."""
        budget = await ledger.create_budget(ALICE, 12, 2024)
        await ledger.add_budget_item(ALICE, budget.id, draft("Rent", 1000))
        await ledger.add_budget_item(ALICE, budget.id, draft("Food", 300))
        
        resolved = await ledger.get_budget(ALICE, 12, 2024)
        assert [item.name for item in resolved.items] == ["Rent", "Food"]
        assert resolved.total_amount == Decimal("1300")
    
    @pytest.mark.parametrize("month, year, expected", [
        (12, 2024, (11, 2024)),
        (1, 2025, (12, 2024)),
    ])
    def test_previous_period(self, month, year, expected):
        """Test January rolls back to December of the prior year."""
        assert previous_period(month, year) == expected


class TestCopyPreviousMonth:
    """Tests for starting a month from last month's items."""
    
    async def test_no_source_creates_nothing(self, ledger):
        """Test a missing source fails without creating a budget."""
        with pytest.raises(SourceNotFoundError):
            await ledger.copy_previous_month_budget(ALICE, 12, 2024)
        assert await ledger.get_budget(ALICE, 12, 2024) is None
    
    async def test_empty_source_creates_nothing(self, ledger):
        """Test a source budget without items also fails."""
        await ledger.create_budget(ALICE, 11, 2024)
        with pytest.raises(SourceNotFoundError):
            await ledger.copy_previous_month_budget(ALICE, 12, 2024)
        assert await ledger.get_budget(ALICE, 12, 2024) is None
    
    async def test_copies_limits_and_resets_spent(self, ledger, reconciler):
        """Test items are copied by name and limit with spent zeroed."""
        november = await ledger.create_budget(ALICE, 11, 2024)
        rent = await ledger.add_budget_item(ALICE, november.id, draft("Rent", 1000))
        await reconciler.add_transaction(ALICE, TransactionDraft(
            description="Rent", amount=Decimal("1000"), date=date(2024, 11, 1), budget_item_id=rent.id,
        ))
        
        december = await ledger.copy_previous_month_budget(ALICE, 12, 2024)
        
        assert december.month == 12
        copied, = december.items
        assert copied.name == "Rent"
        assert copied.amount == Decimal("1000")
        assert copied.spent == Decimal("0")
        assert copied.id != rent.id
    
    async def test_existing_names_are_skipped(self, ledger):
        """Test items already present in the target are not duplicated."""
        january = await ledger.create_budget(ALICE, 1, 2025)
        await ledger.add_budget_item(ALICE, january.id, draft("rent", 900))
        december = await ledger.create_budget(ALICE, 12, 2024)
        await ledger.add_budget_item(ALICE, december.id, draft("Rent", 1000))
        await ledger.add_budget_item(ALICE, december.id, draft("Food", 300))
        
        result = await ledger.copy_previous_month_budget(ALICE, 1, 2025)
        
        assert result.id == january.id
        assert [(i.name, i.amount) for i in result.items] == [("rent", Decimal("900")), ("Food", Decimal("300"))]


class TestBudgetItems:
    """Tests for item access and edits."""
    
    async def test_outsider_cannot_add(self, ledger):
        """Test only owner and members may add items."""
        budget = await ledger.create_budget(ALICE, 12, 2024)
        with pytest.raises(UnauthorizedError):
            await ledger.add_budget_item(BOB, budget.id, draft("Nope", 1))
        assert await ledger.list_budget_items(budget.id) == []
    
    async def test_update_changes_name_and_limit_only(self, ledger, reconciler):
        """Test spent survives an item edit."""
        budget = await ledger.create_budget(ALICE, 12, 2024)
        item = await ledger.add_budget_item(ALICE, budget.id, draft("Food", 300))
        await reconciler.add_transaction(ALICE, TransactionDraft(
            description="Lunch", amount=Decimal("12"), date=date(2024, 12, 2), budget_item_id=item.id,
        ))
        
        updated = await ledger.update_budget_item(ALICE, item.id, draft("Groceries", 350))
        
        assert updated.name == "Groceries"
        assert updated.amount == Decimal("350")
        assert updated.spent == Decimal("12")
        assert updated.budget_id == budget.id
    
    async def test_outsider_cannot_update_or_delete(self, ledger):
        """Test item edits are access-checked through the parent budget."""
        budget = await ledger.create_budget(ALICE, 12, 2024)
        item = await ledger.add_budget_item(ALICE, budget.id, draft("Food", 300))
        with pytest.raises(UnauthorizedError):
            await ledger.update_budget_item(BOB, item.id, draft("Mine", 1))
        with pytest.raises(UnauthorizedError):
            await ledger.delete_budget_item(BOB, item.id)
        assert (await ledger.get_budget_item(item.id)).name == "Food"
    
    async def test_delete_keeps_transactions(self, ledger, reconciler):
        """Test deleting an item leaves linked transactions in place."""
        budget = await ledger.create_budget(ALICE, 12, 2024)
        item = await ledger.add_budget_item(ALICE, budget.id, draft("Food", 300))
        outcome = await reconciler.add_transaction(ALICE, TransactionDraft(
            description="Lunch", amount=Decimal("12"), date=date(2024, 12, 2), budget_item_id=item.id,
        ))
        
        await ledger.delete_budget_item(ALICE, item.id)
        
        with pytest.raises(NotFoundError):
            await ledger.get_budget_item(item.id)
        kept = await ledger.get_transaction(outcome.transaction.id)
        assert kept.budget_item_name == "Food"
    
    def test_draft_validation(self):
        """Test blank names and negative limits are rejected up front."""
        with pytest.raises(ValidationError):
            BudgetItemDraft(name="   ", amount=Decimal("1"))
        with pytest.raises(ValidationError):
            BudgetItemDraft(name="Rent", amount=Decimal("-1"))


class TestCategories:
    """Tests for user categories and the synthetic 'Uncategorized'."""
    
    async def test_uncategorized_listed_first(self, ledger):
        """Test the synthetic category leads the list."""
        await ledger.save_category(ALICE, "Housing")
        await ledger.save_category(BOB, "Bob's")
        
        categories = await ledger.list_categories(ALICE)
        
        assert [c.name for c in categories] == ["Uncategorized", "Housing"]
        assert categories[0].is_system
    
    async def test_rename(self, ledger):
        """Test owners can rename their categories."""
        category = await ledger.save_category(ALICE, "Housing")
        renamed = await ledger.save_category(ALICE, "Home", category_id=category.id)
        assert renamed.id == category.id
        assert renamed.name == "Home"
    
    async def test_other_user_cannot_rename_or_delete(self, ledger):
        """Test categories are private."""
        category = await ledger.save_category(ALICE, "Housing")
        with pytest.raises(UnauthorizedError):
            await ledger.save_category(BOB, "Mine", category_id=category.id)
        with pytest.raises(UnauthorizedError):
            await ledger.delete_category(BOB, category.id)
    
    async def test_system_category_is_immutable(self, ledger):
        """Test 'Uncategorized' cannot be renamed or deleted."""
        with pytest.raises(ImmutableCategoryError):
            await ledger.save_category(ALICE, "Other", category_id="system-uncategorized")
        with pytest.raises(ImmutableCategoryError):
            await ledger.delete_category(ALICE, "system-uncategorized")
    
    async def test_delete(self, ledger):
        """Test owners can delete their categories."""
        category = await ledger.save_category(ALICE, "Housing")
        await ledger.delete_category(ALICE, category.id)
        with pytest.raises(NotFoundError):
            await ledger.get_category(ALICE, category.id)


class TestTransactionListing:
    """Tests for listing a user's transactions."""
    
    async def test_newest_date_first_then_newest_recorded(self, ledger, reconciler):
        """Test ordering by date desc, then creation desc."""
        for description, day in (("early", 1), ("late-a", 20), ("late-b", 20), ("mid", 10)):
            await reconciler.add_transaction(ALICE, TransactionDraft(
                description=description, amount=Decimal("1"), date=date(2024, 12, day),
            ))
        
        listed = await ledger.list_transactions(ALICE, 12, 2024)
        assert [t.description for t in listed] == ["late-b", "late-a", "mid", "early"]
    
    async def test_period_filter(self, ledger, reconciler):
        """Test only the requested month is returned."""
        await reconciler.add_transaction(ALICE, TransactionDraft(
            description="december", amount=Decimal("1"), date=date(2024, 12, 1),
        ))
        await reconciler.add_transaction(ALICE, TransactionDraft(
            description="january", amount=Decimal("1"), date=date(2025, 1, 1),
        ))
        
        listed = await ledger.list_transactions(ALICE, 1, 2025)
        assert [t.description for t in listed] == ["january"]
        assert len(await ledger.list_transactions(ALICE)) == 2
