"""
Document-store backed audit log.

Audit events live in their own collection next to the ledger data.
"""

from typing import Optional

import structlog

from family_ledger.models.audit import AuditEvent
from family_ledger.services.storage.interface import (
    COLLECTION_AUDIT_EVENTS,
    AuditStorageInterface,
    DocumentStore,
    StorageError,
)


logger = structlog.get_logger(__name__)


class DocumentAuditStorage(AuditStorageInterface):
    """
    Audit storage on top of any DocumentStore.
    
    Append failures are reported, never raised - audit logging must not
    break the main flow.
    """
    
    def __init__(self, store: DocumentStore, collection: Optional[str] = None):
        self._store = store
        self._collection = collection or COLLECTION_AUDIT_EVENTS
    
    async def append_event(self, event: AuditEvent) -> bool:
        try:
            await self._store.insert(
                self._collection,
                event.to_document(),
                doc_id=str(event.event_id),
            )
            return True
        except StorageError as e:
            logger.warning("audit_append_failed", error=str(e), event_id=str(event.event_id))
            return False
    
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        documents = await self._store.find(
            self._collection,
            {"entityType": entity_type, "entityId": entity_id},
        )
        events = [AuditEvent.model_validate(document) for document in documents]
        events.sort(key=lambda e: e.timestamp)
        return events
    
    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        documents = await self._store.find(self._collection)
        events = [AuditEvent.model_validate(document) for document in documents]
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
