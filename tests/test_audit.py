"""
Tests for the audit logger.
"""

from decimal import Decimal

from family_ledger.audit import AuditLogger, create_correlation_id
from family_ledger.models import AuditEventBuilder, AuditEventType
from family_ledger.services.storage import AuditStorageInterface, DocumentAuditStorage


class BrokenAuditStorage(AuditStorageInterface):
    """Storage that always fails."""
    
    async def append_event(self, event):
        raise RuntimeError("audit backend down")
    
    async def get_events_by_entity(self, entity_type, entity_id):
        return []
    
    async def get_recent_events(self, limit=100):
        return []


class TestAuditLogger:
    """Tests for audit persistence."""
    
    async def test_local_only(self):
        """Test logging without storage succeeds."""
        logger = AuditLogger()
        event = AuditEventBuilder.spend_adjusted("item-1", Decimal("5"))
        assert await logger.log(event) is True
    
    async def test_storage_failure_does_not_raise(self):
        """Test a failing backend is reported, not raised."""
        logger = AuditLogger(BrokenAuditStorage())
        event = AuditEventBuilder.spend_adjusted("item-1", Decimal("5"))
        assert await logger.log(event) is False
    
    async def test_events_are_persisted(self, store):
        """Test events land in the audit collection and read back."""
        storage = DocumentAuditStorage(store)
        logger = AuditLogger(storage)
        correlation_id = create_correlation_id()
        
        await logger.log_budget_unshared("budget-1", "u1", "u2", correlation_id=correlation_id)
        
        events = await storage.get_events_by_entity("budget", "budget-1")
        assert len(events) == 1
        assert events[0].event_type == AuditEventType.BUDGET_UNSHARED
        assert events[0].correlation_id == correlation_id
        
        recent = await storage.get_recent_events(limit=10)
        assert recent[0].event_id == events[0].event_id
    
    async def test_stored_documents_use_camel_case_keys(self, store):
        """Test the audit collection shares the store's camelCase keys."""
        logger = AuditLogger(DocumentAuditStorage(store))
        await logger.log_budget_unshared("budget-1", "u1", "u2")
        
        document, = await store.find("auditEvents")
        assert document["entityType"] == "budget"
        assert document["eventType"] == "budget_unshared"
        assert document["actorUserId"] == "u1"
        assert "entity_type" not in document
        assert document["timestamp"].tzinfo is None
