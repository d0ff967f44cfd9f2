"""
Main Orchestrator for Family Ledger

This module ties the services together behind one facade, FinanceTracker,
which is what a UI or API layer talks to.

DESIGN DECISION: the orchestrator owns no business rules. It enforces the
boundaries by delegating every call to the service that guards it:
- Access checks happen in the ledger store before any write
- Spend totals move only through the reconciliation engine
- Membership changes only through the sharing coordinator
- Every multi-step action is audited under one correlation id
"""

from typing import Optional
from uuid import UUID

import structlog

from family_ledger.audit import AuditLogger, configure_logging
from family_ledger.config import Settings, get_settings
from family_ledger.models.checklist import ChecklistItem, ChecklistShare
from family_ledger.models.ledger import (
    Budget,
    BudgetItem,
    BudgetItemDraft,
    Category,
    DriftReport,
    SharedMember,
    ShareResult,
    Transaction,
    TransactionDraft,
    TransactionOutcome,
    UserProfile,
)
from family_ledger.models.summary import MonthlySummary
from family_ledger.queries import MonthlySummaryBuilder
from family_ledger.services.checklist import (
    ChecklistService,
    ChecklistSubscription,
    SharedChecklistSession,
)
from family_ledger.services.checklist.subscription import ErrorCallback, UpdateCallback
from family_ledger.services.identity import IdentityResolver
from family_ledger.services.ledger import LedgerStore
from family_ledger.services.reconciliation import SpendReconciler
from family_ledger.services.sharing import BudgetSharingCoordinator
from family_ledger.services.storage import (
    DocumentAuditStorage,
    DocumentStore,
    InMemoryDocumentStore,
)


logger = structlog.get_logger(__name__)


class FinanceTracker:
    """
    Operation surface of the finance tracker.
    
    All store-touching operations are coroutines. Subscriptions must be
    opened from inside a running event loop and return a callable handle
    that cancels them.
    """
    
    def __init__(
        self,
        store: DocumentStore,
        settings: Optional[Settings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        settings = settings or get_settings()
        self.store = store
        self.audit_logger = audit_logger or AuditLogger()
        
        self.identity = IdentityResolver(store)
        self.ledger = LedgerStore(store, settings.ledger, self.audit_logger)
        self.reconciler = SpendReconciler(self.ledger, self.audit_logger)
        self.sharing = BudgetSharingCoordinator(
            self.ledger, self.identity, settings.ledger, self.audit_logger
        )
        self.checklists = ChecklistService(store, settings.ledger, self.audit_logger)
        self.summaries = MonthlySummaryBuilder(self.ledger)
    
    async def start(self) -> None:
        """Connect the store (no-op for the in-memory backend)."""
        await self.store.connect()
        logger.info("tracker_started", store=type(self.store).__name__)
    
    async def close(self) -> None:
        await self.store.close()
        logger.info("tracker_closed")
    
    async def __aenter__(self) -> "FinanceTracker":
        await self.start()
        return self
    
    async def __aexit__(self, *exc_info) -> None:
        await self.close()
    
    # =========================================================================
    # USERS
    # =========================================================================
    
    async def save_user_profile(self, uid: str, email: str, display_name: Optional[str] = None) -> UserProfile:
        return await self.identity.save_user_profile(uid, email, display_name)
    
    # =========================================================================
    # BUDGETS
    # =========================================================================
    
    async def get_budget(self, user_id: str, month: int, year: int) -> Optional[Budget]:
        return await self.ledger.get_budget(user_id, month, year)
    
    async def create_budget(self, user_id: str, month: int, year: int) -> Budget:
        return await self.ledger.create_budget(user_id, month, year)
    
    async def copy_previous_month_budget(self, user_id: str, month: int, year: int) -> Budget:
        return await self.ledger.copy_previous_month_budget(user_id, month, year)
    
    async def add_budget_item(self, user_id: str, budget_id: str, draft: BudgetItemDraft) -> BudgetItem:
        return await self.ledger.add_budget_item(user_id, budget_id, draft)
    
    async def update_budget_item(self, user_id: str, item_id: str, draft: BudgetItemDraft) -> BudgetItem:
        return await self.ledger.update_budget_item(user_id, item_id, draft)
    
    async def delete_budget_item(self, user_id: str, item_id: str) -> None:
        await self.ledger.delete_budget_item(user_id, item_id)
    
    # =========================================================================
    # TRANSACTIONS
    # =========================================================================
    
    async def add_transaction(
        self,
        user_id: str,
        draft: TransactionDraft,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionOutcome:
        return await self.reconciler.add_transaction(user_id, draft, correlation_id)
    
    async def update_transaction(
        self,
        user_id: str,
        transaction_id: str,
        draft: TransactionDraft,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionOutcome:
        return await self.reconciler.update_transaction(user_id, transaction_id, draft, correlation_id)
    
    async def delete_transaction(
        self,
        user_id: str,
        transaction_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> TransactionOutcome:
        return await self.reconciler.delete_transaction(user_id, transaction_id, correlation_id)
    
    async def list_transactions(
        self,
        user_id: str,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> list[Transaction]:
        return await self.ledger.list_transactions(user_id, month, year)
    
    async def reconcile_budget(self, user_id: str, budget_id: str) -> list[DriftReport]:
        return await self.reconciler.reconcile_budget(user_id, budget_id)
    
    # =========================================================================
    # CATEGORIES
    # =========================================================================
    
    async def list_categories(self, user_id: str) -> list[Category]:
        return await self.ledger.list_categories(user_id)
    
    async def save_category(self, user_id: str, name: str, category_id: Optional[str] = None) -> Category:
        return await self.ledger.save_category(user_id, name, category_id)
    
    async def delete_category(self, user_id: str, category_id: str) -> None:
        await self.ledger.delete_category(user_id, category_id)
    
    # =========================================================================
    # SHARING
    # =========================================================================
    
    async def share_budget(self, owner_user_id: str, budget_id: str, recipient_email: str) -> ShareResult:
        return await self.sharing.share_budget(owner_user_id, budget_id, recipient_email)
    
    async def unshare_budget(self, owner_user_id: str, budget_id: str, target_user_id: str) -> Budget:
        return await self.sharing.unshare_budget(owner_user_id, budget_id, target_user_id)
    
    async def get_shared_members(
        self,
        budget_id: str,
        requesting_user_id: Optional[str] = None,
    ) -> list[SharedMember]:
        return await self.sharing.get_shared_members(budget_id, requesting_user_id)
    
    # =========================================================================
    # CHECKLISTS
    # =========================================================================
    
    async def list_checklist_items(
        self,
        user_id: str,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> list[ChecklistItem]:
        return await self.checklists.list_checklist_items(user_id, month, year)
    
    async def add_checklist_item(
        self,
        user_id: str,
        name: str,
        month: int,
        year: int,
        group: Optional[str] = None,
    ) -> ChecklistItem:
        return await self.checklists.add_checklist_item(user_id, name, month, year, group)
    
    async def update_checklist_item(
        self,
        user_id: str,
        item_id: str,
        name: Optional[str] = None,
        group: Optional[str] = None,
        completed: Optional[bool] = None,
    ) -> ChecklistItem:
        return await self.checklists.update_checklist_item(user_id, item_id, name, group, completed)
    
    async def toggle_checklist_item(self, user_id: str, item_id: str) -> ChecklistItem:
        return await self.checklists.toggle_checklist_item(user_id, item_id)
    
    async def delete_checklist_item(self, user_id: str, item_id: str) -> None:
        await self.checklists.delete_checklist_item(user_id, item_id)
    
    def subscribe_checklist(
        self,
        user_id: str,
        month: Optional[int],
        year: Optional[int],
        on_update: UpdateCallback,
        group: Optional[str] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> ChecklistSubscription:
        return self.checklists.subscribe_checklist(user_id, month, year, on_update, group, on_error)
    
    async def create_checklist_share(self, user_id: str, group: Optional[str], month: int, year: int) -> str:
        return await self.checklists.create_checklist_share(user_id, group, month, year)
    
    async def resolve_checklist_share(self, share_id: str) -> ChecklistShare:
        return await self.checklists.get_checklist_share(share_id)
    
    async def delete_checklist_share(self, user_id: str, share_id: str) -> None:
        await self.checklists.delete_checklist_share(user_id, share_id)
    
    def subscribe_shared_checklist(
        self,
        share: ChecklistShare,
        on_update: UpdateCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> ChecklistSubscription:
        return self.checklists.subscribe_shared_checklist(share, on_update, on_error)
    
    async def open_checklist_share(self, share_id: str, viewer_id: Optional[str]) -> SharedChecklistSession:
        return await self.checklists.open_checklist_share(share_id, viewer_id)
    
    # =========================================================================
    # DASHBOARD
    # =========================================================================
    
    async def get_monthly_summary(self, user_id: str, month: int, year: int) -> MonthlySummary:
        return await self.summaries.build(user_id, month, year)


def create_store(settings: Settings) -> DocumentStore:
    """Pick the document store backend named in settings."""
    if settings.store.backend == "mongo":
        # Imported lazily so the memory backend works without a driver setup
        from family_ledger.services.storage.mongo import MongoDocumentStore
        return MongoDocumentStore(settings.store)
    return InMemoryDocumentStore()


def create_tracker(
    settings: Optional[Settings] = None,
    store: Optional[DocumentStore] = None,
) -> FinanceTracker:
    """
    Factory function to create a fully wired FinanceTracker.
    
    Args:
        settings: Settings to use. Defaults to get_settings().
        store: Document store to use. Defaults to the backend in settings.
    
    Returns:
        A tracker; call `await tracker.start()` (or use it as an async
        context manager) before the first operation.
    """
    settings = settings or get_settings()
    app_settings = settings.app
    configure_logging(app_settings)
    logger.info(
        "tracker_configured",
        environment=app_settings.app_environment,
        store_backend=settings.store.backend,
        debug_mode=app_settings.debug_mode,
    )
    
    store = store or create_store(settings)
    
    if settings.ledger.persist_audit_events:
        audit_logger = AuditLogger(DocumentAuditStorage(store))
    else:
        audit_logger = AuditLogger()  # Local-only logging
    
    return FinanceTracker(store, settings, audit_logger)
