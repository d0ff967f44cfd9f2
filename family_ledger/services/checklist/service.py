"""
Checklist Service

Monthly checklist CRUD, link-based shares, and capability-scoped sessions
for people who open a share link.

DESIGN DECISION: capability is enforced where the mutation happens, not in
the UI. A viewer session exposes toggle() as its only working mutation;
everything else raises UnauthorizedError.
"""

from typing import Optional

from family_ledger.audit import AuditLogger
from family_ledger.config import LedgerSettings, get_settings
from family_ledger.errors import NotFoundError, ShareNotFoundError, UnauthorizedError
from family_ledger.models.checklist import (
    ChecklistCapability,
    ChecklistItem,
    ChecklistShare,
)
from family_ledger.services.checklist.subscription import (
    ChecklistSubscription,
    ErrorCallback,
    UpdateCallback,
    sort_checklist_items,
)
from family_ledger.services.storage import (
    COLLECTION_CHECKLIST_ITEMS,
    COLLECTION_CHECKLIST_SHARES,
    DocumentStore,
)


class ChecklistService:
    """Owner-side checklist operations and share management."""
    
    def __init__(
        self,
        store: DocumentStore,
        settings: Optional[LedgerSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._settings = settings or get_settings().ledger
        self._audit_logger = audit_logger
    
    async def deny_access(self, user_id: str, action: str, entity_type: str, entity_id: str) -> UnauthorizedError:
        if self._audit_logger:
            await self._audit_logger.log_authorization_denied(
                user_id=user_id,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
            )
        return UnauthorizedError(user_id, action, entity_id)
    
    def _group_or_default(self, group: Optional[str]) -> str:
        if group is None or not group.strip():
            return self._settings.default_checklist_group
        return group.strip()
    
    # =========================================================================
    # ITEMS
    # =========================================================================
    
    async def get_checklist_item(self, item_id: str) -> ChecklistItem:
        document = await self._store.get(COLLECTION_CHECKLIST_ITEMS, item_id)
        if document is None:
            raise NotFoundError("checklist_item", item_id)
        return ChecklistItem.from_document(document)
    
    async def _require_item_owner(self, user_id: str, item_id: str, action: str) -> ChecklistItem:
        item = await self.get_checklist_item(item_id)
        if item.user_id != user_id:
            raise await self.deny_access(user_id, action, "checklist_item", item_id)
        return item
    
    async def list_checklist_items(
        self,
        user_id: str,
        month: Optional[int] = None,
        year: Optional[int] = None,
    ) -> list[ChecklistItem]:
        filters = {"userId": user_id}
        if month and year:
            filters.update({"month": int(month), "year": int(year)})
        documents = await self._store.find(COLLECTION_CHECKLIST_ITEMS, filters)
        return sort_checklist_items([ChecklistItem.from_document(d) for d in documents])
    
    async def add_checklist_item(
        self,
        user_id: str,
        name: str,
        month: int,
        year: int,
        group: Optional[str] = None,
    ) -> ChecklistItem:
        item = ChecklistItem(
            user_id=user_id,
            name=name,
            group=self._group_or_default(group),
            completed=False,
            month=month,
            year=year,
        )
        document = await self._store.insert(COLLECTION_CHECKLIST_ITEMS, item.to_document())
        return ChecklistItem.from_document(document)
    
    async def update_checklist_item(
        self,
        user_id: str,
        item_id: str,
        name: Optional[str] = None,
        group: Optional[str] = None,
        completed: Optional[bool] = None,
    ) -> ChecklistItem:
        """Rename, regroup or set completion. Owner only."""
        current = await self._require_item_owner(user_id, item_id, "edit checklist item")
        
        changes = {}
        if name is not None:
            changes["name"] = name
        if group is not None:
            changes["group"] = self._group_or_default(group)
        if completed is not None:
            changes["completed"] = completed
        if not changes:
            return current
        
        # Validate the merged result before writing
        ChecklistItem.model_validate({**current.model_dump(), **changes})
        document = await self._store.update(COLLECTION_CHECKLIST_ITEMS, item_id, changes)
        return ChecklistItem.from_document(document)
    
    async def _flip(self, item: ChecklistItem) -> ChecklistItem:
        document = await self._store.update(
            COLLECTION_CHECKLIST_ITEMS,
            item.id,
            {"completed": not item.completed},
        )
        return ChecklistItem.from_document(document)
    
    async def toggle_checklist_item(self, user_id: str, item_id: str) -> ChecklistItem:
        """Flip completion on one of the user's own items."""
        item = await self._require_item_owner(user_id, item_id, "toggle checklist item")
        return await self._flip(item)
    
    async def delete_checklist_item(self, user_id: str, item_id: str) -> None:
        await self._require_item_owner(user_id, item_id, "delete checklist item")
        await self._store.delete(COLLECTION_CHECKLIST_ITEMS, item_id)
    
    def subscribe_checklist(
        self,
        user_id: str,
        month: Optional[int],
        year: Optional[int],
        on_update: UpdateCallback,
        group: Optional[str] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> ChecklistSubscription:
        """
        Live view of a user's checklist, optionally narrowed to a period
        and a group. Must be called from inside a running event loop.
        """
        filters = {"userId": user_id}
        if month and year:
            filters.update({"month": int(month), "year": int(year)})
        if group:
            filters["group"] = group
        return ChecklistSubscription(self._store, filters, on_update, on_error)
    
    # =========================================================================
    # SHARES
    # =========================================================================
    
    async def create_checklist_share(
        self,
        user_id: str,
        group: Optional[str],
        month: int,
        year: int,
    ) -> str:
        """
        Create an immutable share of one group (or, with group=None, the
        whole month). Returns the share id the share URL is built from.
        """
        share = ChecklistShare(
            created_by=user_id,
            group=group.strip() if group and group.strip() else None,
            month=month,
            year=year,
        )
        document = await self._store.insert(COLLECTION_CHECKLIST_SHARES, share.to_document())
        
        if self._audit_logger:
            await self._audit_logger.log_checklist_share_created(
                share_id=document["id"],
                user_id=user_id,
                group=share.group,
                month=month,
                year=year,
            )
        
        return document["id"]
    
    async def get_checklist_share(self, share_id: str) -> ChecklistShare:
        """
        Raises:
            ShareNotFoundError: If the share doesn't exist
        """
        document = await self._store.get(COLLECTION_CHECKLIST_SHARES, share_id)
        if document is None:
            raise ShareNotFoundError(share_id)
        return ChecklistShare.from_document(document)
    
    async def delete_checklist_share(self, user_id: str, share_id: str) -> None:
        """Only the creator may revoke a share link."""
        share = await self.get_checklist_share(share_id)
        if share.created_by != user_id:
            raise await self.deny_access(user_id, "delete checklist share", "checklist_share", share_id)
        await self._store.delete(COLLECTION_CHECKLIST_SHARES, share_id)
        
        if self._audit_logger:
            await self._audit_logger.log_checklist_share_deleted(share_id=share_id, user_id=user_id)
    
    @staticmethod
    def capability_for(share: ChecklistShare, user_id: Optional[str]) -> ChecklistCapability:
        if user_id is not None and user_id == share.created_by:
            return ChecklistCapability.OWNER
        return ChecklistCapability.VIEWER
    
    def subscribe_shared_checklist(
        self,
        share: ChecklistShare,
        on_update: UpdateCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> ChecklistSubscription:
        """Live view of exactly the items a share covers."""
        filters = {"userId": share.created_by, "month": share.month, "year": share.year}
        if share.group:
            filters["group"] = share.group
        return ChecklistSubscription(self._store, filters, on_update, on_error)
    
    async def open_checklist_share(
        self,
        share_id: str,
        viewer_id: Optional[str],
    ) -> "SharedChecklistSession":
        share = await self.get_checklist_share(share_id)
        return SharedChecklistSession(self, share, viewer_id)


class SharedChecklistSession:
    """
    What one viewer can do through one share link.
    
    OWNER sessions can add, rename, delete and toggle. VIEWER sessions can
    only toggle. Every operation is confined to the items the share covers.
    """
    
    def __init__(
        self,
        service: ChecklistService,
        share: ChecklistShare,
        viewer_id: Optional[str],
    ):
        self._service = service
        self.share = share
        self.viewer_id = viewer_id
        self.capability = ChecklistService.capability_for(share, viewer_id)
    
    @property
    def is_owner(self) -> bool:
        return self.capability is ChecklistCapability.OWNER
    
    async def _require(self, action: str, entity_id: Optional[str] = None) -> None:
        if not self.is_owner:
            raise await self._service.deny_access(
                self.viewer_id or "anonymous", action, "checklist_share", entity_id or self.share.id
            )
    
    async def _covered_item(self, item_id: str, action: str) -> ChecklistItem:
        item = await self._service.get_checklist_item(item_id)
        if not self.share.covers(item):
            raise await self._service.deny_access(
                self.viewer_id or "anonymous", action, "checklist_item", item_id
            )
        return item
    
    def subscribe(
        self,
        on_update: UpdateCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> ChecklistSubscription:
        return self._service.subscribe_shared_checklist(self.share, on_update, on_error)
    
    async def toggle(self, item_id: str) -> ChecklistItem:
        """Flip completion. Allowed for every viewer of the share."""
        item = await self._covered_item(item_id, "toggle shared checklist item")
        return await self._service._flip(item)
    
    async def add(self, name: str, group: Optional[str] = None) -> ChecklistItem:
        await self._require("add shared checklist item")
        return await self._service.add_checklist_item(
            self.share.created_by,
            name,
            self.share.month,
            self.share.year,
            group=self.share.group or group,
        )
    
    async def rename(self, item_id: str, name: str) -> ChecklistItem:
        await self._require("rename shared checklist item", item_id)
        await self._covered_item(item_id, "rename shared checklist item")
        return await self._service.update_checklist_item(self.share.created_by, item_id, name=name)
    
    async def delete(self, item_id: str) -> None:
        await self._require("delete shared checklist item", item_id)
        await self._covered_item(item_id, "delete shared checklist item")
        await self._service.delete_checklist_item(self.share.created_by, item_id)
