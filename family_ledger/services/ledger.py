"""
Ledger Store

Persistence rules for budgets, budget items, transactions and categories.

DESIGN DECISION: Every mutation is checked BEFORE it touches the store.
- Transactions and categories: only the owning user may change them.
- Budgets and budget items: the owner and every shared member may change
  them (has_access); only the owner may change who is a member.

Spend totals are not maintained here. The reconciliation engine wraps the
raw transaction persistence below and moves spent by atomic deltas.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

import structlog

from family_ledger.audit import AuditLogger
from family_ledger.config import LedgerSettings, get_settings
from family_ledger.errors import (
    ConcurrentEditError,
    ImmutableCategoryError,
    NotFoundError,
    SourceNotFoundError,
    UnauthorizedError,
)
from family_ledger.models.ledger import (
    Budget,
    BudgetItem,
    BudgetItemDraft,
    Category,
    Transaction,
)
from family_ledger.services.storage import (
    COLLECTION_BUDGET_ITEMS,
    COLLECTION_BUDGETS,
    COLLECTION_CATEGORIES,
    COLLECTION_TRANSACTIONS,
    DocumentStore,
    WriteConflictError,
)


logger = structlog.get_logger(__name__)


def previous_period(month: int, year: int) -> tuple[int, int]:
    """The (month, year) immediately before the given one."""
    if month == 1:
        return 12, year - 1
    return month - 1, year


def _by_creation(document) -> datetime:
    return document.created_at or datetime.min


class LedgerStore:
    """
    Access-checked CRUD over the four ledger collections.
    
    Raises NotFoundError for unknown ids and UnauthorizedError when the
    caller is neither owner nor member. Neither error leaves side effects.
    """
    
    def __init__(
        self,
        store: DocumentStore,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().ledger
        self._audit_logger = audit_logger
    
    @property
    def store(self) -> DocumentStore:
        return self._store
    
    async def deny_access(
        self,
        user_id: str,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
    ) -> UnauthorizedError:
        """Audit a rejected action and build the error to raise."""
        if self._audit_logger:
            await self._audit_logger.log_authorization_denied(
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
            )
        return UnauthorizedError(user_id, action, entity_id)
    
    # =========================================================================
    # BUDGETS
    # =========================================================================
    
    async def load_budget(self, budget_id: str) -> Budget:
        """
        Load a budget by id (without items).
        
        Raises:
            NotFoundError: If the budget doesn't exist
        """
        document = await self._store.get(COLLECTION_BUDGETS, budget_id)
        if document is None:
            raise NotFoundError("budget", budget_id)
        return Budget.from_document(document)
    
    async def require_budget_access(self, user_id: str, budget_id: str, action: str) -> Budget:
        budget = await self.load_budget(budget_id)
        if not budget.has_access(user_id):
            raise await self.deny_access(user_id, action, "budget", budget_id)
        return budget
    
    async def with_items(self, budget: Budget) -> Budget:
        """Attach every item of the budget, whoever created it."""
        budget.items = await self.list_budget_items(budget.id)
        return budget
    
    async def find_budgets(
        self,
        user_id: str,
        month: Optional[int] = None,
        year: Optional[int] = None,
        include_shared: bool = True,
    ) -> list[Budget]:
        """
        Budgets the user owns (and, optionally, is a member of).
        
        Owned budgets come first.
        """
        period = {}
        if month and year:
            period = {"month": int(month), "year": int(year)}
        
        documents = await self._store.find(COLLECTION_BUDGETS, {"userId": user_id, **period})
        if include_shared:
            seen = {document["id"] for document in documents}
            shared = await self._store.find(COLLECTION_BUDGETS, {"sharedWith": user_id, **period})
            documents.extend(document for document in shared if document["id"] not in seen)
        
        return [Budget.from_document(document) for document in documents]
    
    async def get_budget(self, user_id: str, month: int, year: int) -> Optional[Budget]:
        """
        The budget the user sees for a period, with its items.
        
        A budget the user owns wins over one shared with them.
        """
        budgets = await self.find_budgets(user_id, month, year)
        if not budgets:
            return None
        return await self.with_items(budgets[0])
    
    async def create_budget(self, user_id: str, month: int, year: int) -> Budget:
        """
        Create the user's budget for a period.
        
        If the user already resolves to a budget for that period (owned or
        shared), that budget is returned instead of creating a second one.
        """
        budget = Budget(owner_user_id=user_id, month=month, year=year)
        
        existing = await self.get_budget(user_id, month, year)
        if existing is not None:
            return existing
        
        document = await self._store.insert(COLLECTION_BUDGETS, budget.to_document())
        logger.info("budget_created", budget_id=document["id"], user_id=user_id, month=month, year=year)
        return Budget.from_document(document)
    
    async def copy_previous_month_budget(self, user_id: str, month: int, year: int) -> Budget:
        """
        Start a period's budget from the previous month's items.
        
        Items are copied by name and limit with spent reset to zero. Names
        already present in the target budget are skipped.
        
        Raises:
            SourceNotFoundError: If the previous month has no items; no
                budget is created in that case
        """
        source_month, source_year = previous_period(month, year)
        source = await self.get_budget(user_id, source_month, source_year)
        if source is None or not source.items:
            raise SourceNotFoundError(
                f"No budget items found for {source_month}/{source_year} to copy"
            )
        
        target = await self.create_budget(user_id, month, year)
        target = await self.with_items(target)
        present = {item.name.lower() for item in target.items}
        
        for item in source.items:
            if item.name.lower() in present:
                continue
            await self._insert_budget_item(
                user_id,
                target.id,
                BudgetItemDraft(name=item.name, amount=item.amount),
            )
            present.add(item.name.lower())
        
        logger.info(
            "budget_copied",
            source_budget_id=source.id,
            target_budget_id=target.id,
            user_id=user_id,
        )
        return await self.with_items(target)
    
    async def delete_budget_record(self, budget_id: str) -> bool:
        """Remove a budget document (merge only; items are not touched)."""
        return await self._store.delete(COLLECTION_BUDGETS, budget_id)
    
    # =========================================================================
    # BUDGET ITEMS
    # =========================================================================
    
    async def list_budget_items(self, budget_id: str) -> list[BudgetItem]:
        documents = await self._store.find(COLLECTION_BUDGET_ITEMS, {"budgetId": budget_id})
        items = [BudgetItem.from_document(document) for document in documents]
        return sorted(items, key=_by_creation)
    
    async def get_budget_item(self, item_id: str) -> BudgetItem:
        document = await self._store.get(COLLECTION_BUDGET_ITEMS, item_id)
        if document is None:
            raise NotFoundError("budget_item", item_id)
        return BudgetItem.from_document(document)
    
    async def require_item_access(
        self,
        user_id: str,
        item_id: str,
        action: str,
    ) -> tuple[BudgetItem, Budget]:
        """
        Access to an item is access to its parent budget.
        
        Raises:
            NotFoundError: If the item (or its parent budget) doesn't exist
            UnauthorizedError: If the user has no access to the parent
        """
        item = await self.get_budget_item(item_id)
        budget = await self.load_budget(item.budget_id)
        if not budget.has_access(user_id):
            raise await self.deny_access(user_id, action, "budget_item", item_id)
        return item, budget
    
    async def _insert_budget_item(
        self,
        user_id: str,
        budget_id: str,
        draft: BudgetItemDraft,
    ) -> BudgetItem:
        item = BudgetItem(
            budget_id=budget_id,
            user_id=user_id,
            name=draft.name,
            amount=draft.amount,
            spent=Decimal("0"),
        )
        document = await self._store.insert(COLLECTION_BUDGET_ITEMS, item.to_document())
        return BudgetItem.from_document(document)
    
    async def add_budget_item(
        self,
        user_id: str,
        budget_id: str,
        draft: BudgetItemDraft,
    ) -> BudgetItem:
        await self.require_budget_access(user_id, budget_id, "add budget item")
        return await self._insert_budget_item(user_id, budget_id, draft)
    
    async def update_budget_item(
        self,
        user_id: str,
        item_id: str,
        draft: BudgetItemDraft,
    ) -> BudgetItem:
        """
        Rename an item or change its limit.
        
        The parent budget and spent total cannot be changed here.
        """
        await self.require_item_access(user_id, item_id, "update budget item")
        document = await self._store.update(
            COLLECTION_BUDGET_ITEMS,
            item_id,
            {"name": draft.name, "amount": draft.amount},
        )
        return BudgetItem.from_document(document)
    
    async def delete_budget_item(self, user_id: str, item_id: str) -> None:
        """
        Delete an item.
        
        Transactions linked to it keep their reference and display name.
        """
        await self.require_item_access(user_id, item_id, "delete budget item")
        await self._store.delete(COLLECTION_BUDGET_ITEMS, item_id)
    
    async def repoint_budget_item(self, item_id: str, budget_id: str) -> None:
        """Move an item under another budget, keeping its id (merge only)."""
        await self._store.update(COLLECTION_BUDGET_ITEMS, item_id, {"budgetId": budget_id})
    
    async def adjust_spent(self, item_id: str, delta: Decimal) -> None:
        """Atomic server-side delta on an item's spent total."""
        await self._store.increment(COLLECTION_BUDGET_ITEMS, item_id, "spent", delta)
    
    async def overwrite_spent(self, item_id: str, spent: Decimal) -> None:
        """Replace spent outright. Reserved for the repair pass."""
        await self._store.update(COLLECTION_BUDGET_ITEMS, item_id, {"spent": spent})
    
    # =========================================================================
    # CATEGORIES
    # =========================================================================
    
    def uncategorized(self) -> Category:
        return Category(
            id=self._settings.uncategorized_category_id,
            name=self._settings.uncategorized_category_name,
            is_system=True,
        )
    
    def is_system_category(self, category_id: Optional[str]) -> bool:
        return category_id == self._settings.uncategorized_category_id
    
    async def list_categories(self, user_id: str) -> list[Category]:
        """The synthetic 'Uncategorized' category followed by the user's own."""
        documents = await self._store.find(COLLECTION_CATEGORIES, {"userId": user_id})
        categories = sorted((Category.from_document(d) for d in documents), key=_by_creation)
        return [self.uncategorized(), *categories]
    
    async def get_category(self, user_id: str, category_id: str) -> Category:
        """
        Resolve a category the user may link transactions to.
        
        Raises:
            NotFoundError: If the category doesn't exist
            UnauthorizedError: If it belongs to someone else
        """
        if self.is_system_category(category_id):
            return self.uncategorized()
        document = await self._store.get(COLLECTION_CATEGORIES, category_id)
        if document is None:
            raise NotFoundError("category", category_id)
        category = Category.from_document(document)
        if category.user_id != user_id:
            raise await self.deny_access(user_id, "use category", "category", category_id)
        return category
    
    async def save_category(
        self,
        user_id: str,
        name: str,
        category_id: Optional[str] = None,
    ) -> Category:
        """Create a category, or rename one the user owns."""
        if self.is_system_category(category_id):
            raise ImmutableCategoryError("Cannot modify system category")
        
        category = Category(user_id=user_id, name=name)
        if category_id is None:
            document = await self._store.insert(COLLECTION_CATEGORIES, category.to_document())
            return Category.from_document(document)
        
        await self.get_category(user_id, category_id)
        document = await self._store.update(
            COLLECTION_CATEGORIES,
            category_id,
            {"name": category.name},
        )
        return Category.from_document(document)
    
    async def delete_category(self, user_id: str, category_id: str) -> None:
        if self.is_system_category(category_id):
            raise ImmutableCategoryError("Cannot delete system category")
        await self.get_category(user_id, category_id)
        await self._store.delete(COLLECTION_CATEGORIES, category_id)
    
    # =========================================================================
    # TRANSACTIONS (raw persistence)
    # =========================================================================
    
    async def get_transaction(self, transaction_id: str) -> Transaction:
        document = await self._store.get(COLLECTION_TRANSACTIONS, transaction_id)
        if document is None:
            raise NotFoundError("transaction", transaction_id)
        return Transaction.from_document(document)
    
    async def require_transaction_owner(
        self,
        user_id: str,
        transaction_id: str,
        action: str,
    ) -> Transaction:
        transaction = await self.get_transaction(transaction_id)
        if transaction.user_id != user_id:
            raise await self.deny_access(user_id, action, "transaction", transaction_id)
        return transaction
    
    async def list_transactions(
        self,
        user_id: str,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> list[Transaction]:
        """
        A user's transactions, newest date first.
        
        Same-day transactions are ordered newest-recorded first.
        """
        filters = {"userId": user_id}
        if month and year:
            filters.update({"month": int(month), "year": int(year)})
        documents = await self._store.find(COLLECTION_TRANSACTIONS, filters)
        transactions = [Transaction.from_document(document) for document in documents]
        return sorted(
            transactions,
            key=lambda t: (t.date, t.created_at or datetime.min),
            reverse=True,
        )
    
    async def list_transactions_for_item(self, item_id: str) -> list[Transaction]:
        documents = await self._store.find(COLLECTION_TRANSACTIONS, {"budgetItem.id": item_id})
        return [Transaction.from_document(document) for document in documents]
    
    async def insert_transaction(self, transaction: Transaction) -> Transaction:
        document = await self._store.insert(COLLECTION_TRANSACTIONS, transaction.to_document())
        return Transaction.from_document(document)
    
    async def replace_transaction(
        self,
        transaction_id: str,
        transaction: Transaction,
        expected_updated_at: Optional[datetime] = None,
    ) -> Transaction:
        """Overwrite a transaction, optionally only if updatedAt is unchanged."""
        expected = {"updatedAt": expected_updated_at} if expected_updated_at else None
        try:
            document = await self._store.update(
                COLLECTION_TRANSACTIONS,
                transaction_id,
                transaction.to_document(),
                expected=expected,
            )
        except WriteConflictError:
            logger.warning("transaction_edit_conflict", transaction_id=transaction_id)
            raise ConcurrentEditError("transaction", transaction_id)
        return Transaction.from_document(document)
    
    async def delete_transaction_record(self, transaction_id: str) -> bool:
        return await self._store.delete(COLLECTION_TRANSACTIONS, transaction_id)
