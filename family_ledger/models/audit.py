"""
Audit Models for Family Ledger

Every significant mutation of shared financial state is logged for audit
purposes. This provides:
1. Traceability of who changed a shared budget and when
2. A record of every spend adjustment that failed and awaits repair
3. The ability to reconstruct a multi-step share/merge after a crash

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from family_ledger.clock import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Transactions
    TRANSACTION_RECORDED = "transaction_recorded"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    
    # Spend reconciliation
    SPEND_ADJUSTED = "spend_adjusted"
    SPEND_ADJUSTMENT_FAILED = "spend_adjustment_failed"
    SPEND_DRIFT_REPAIRED = "spend_drift_repaired"
    
    # Budget sharing
    BUDGET_SHARED = "budget_shared"
    BUDGET_MERGED = "budget_merged"
    BUDGET_UNSHARED = "budget_unshared"
    
    # Checklist
    CHECKLIST_SHARE_CREATED = "checklist_share_created"
    CHECKLIST_SHARE_DELETED = "checklist_share_deleted"
    
    # Access control
    AUTHORIZATION_DENIED = "authorization_denied"
    
    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.
    
    This is the core unit of our audit trail. Stored documents use
    camelCase keys like every other collection; logs use snake_case.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )
    
    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )
    
    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )
    
    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'budget', 'budget_item', 'transaction')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="Store id of the entity this event relates to"
    )
    actor_user_id: Optional[str] = Field(
        default=None,
        description="User who triggered the action"
    )
    
    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all steps of one share)"
    )
    
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )
    
    error_message: Optional[str] = None
    
    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_user_id": self.actor_user_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
        }
    
    def to_document(self) -> dict:
        """Convert to a store document (audit collection, camelCase keys)."""
        document = self.model_dump(mode="json", by_alias=True)
        document["timestamp"] = self.timestamp
        return document


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.
    
    Usage:
        event = AuditEventBuilder.budget_shared(budget_id, owner_id, recipient_id, 2)
    """
    
    @staticmethod
    def transaction_recorded(
        transaction_id: str,
        user_id: str,
        amount: Decimal,
        budget_item_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_RECORDED,
            entity_type="transaction",
            entity_id=transaction_id,
            actor_user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transaction recorded: {amount}",
            details={
                "amount": str(amount),
                "budget_item_id": budget_item_id,
            },
        )
    
    @staticmethod
    def transaction_updated(
        transaction_id: str,
        user_id: str,
        old_amount: Decimal,
        new_amount: Decimal,
        old_budget_item_id: Optional[str],
        new_budget_item_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_UPDATED,
            entity_type="transaction",
            entity_id=transaction_id,
            actor_user_id=user_id,
            correlation_id=correlation_id,
            description="Transaction updated",
            details={
                "old_amount": str(old_amount),
                "new_amount": str(new_amount),
                "old_budget_item_id": old_budget_item_id,
                "new_budget_item_id": new_budget_item_id,
            },
        )
    
    @staticmethod
    def transaction_deleted(
        transaction_id: str,
        user_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=transaction_id,
            actor_user_id=user_id,
            correlation_id=correlation_id,
            description=f"Transaction deleted: {amount}",
            details={"amount": str(amount)},
        )
    
    @staticmethod
    def spend_adjusted(
        budget_item_id: str,
        delta: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPEND_ADJUSTED,
            severity=AuditSeverity.DEBUG,
            entity_type="budget_item",
            entity_id=budget_item_id,
            correlation_id=correlation_id,
            description=f"Spent adjusted by {delta}",
            details={"delta": str(delta)},
        )
    
    @staticmethod
    def spend_adjustment_failed(
        budget_item_id: str,
        delta: Decimal,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPEND_ADJUSTMENT_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="budget_item",
            entity_id=budget_item_id,
            correlation_id=correlation_id,
            description=f"Spent adjustment of {delta} failed; reconciliation pending",
            details={"delta": str(delta)},
            error_message=error_message,
        )
    
    @staticmethod
    def spend_drift_repaired(
        budget_item_id: str,
        previous_spent: Decimal,
        recomputed_spent: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SPEND_DRIFT_REPAIRED,
            severity=AuditSeverity.WARNING,
            entity_type="budget_item",
            entity_id=budget_item_id,
            correlation_id=correlation_id,
            description=f"Spent repaired from {previous_spent} to {recomputed_spent}",
            details={
                "previous_spent": str(previous_spent),
                "recomputed_spent": str(recomputed_spent),
            },
        )
    
    @staticmethod
    def budget_shared(
        budget_id: str,
        owner_user_id: str,
        recipient_user_id: str,
        merged_item_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_SHARED,
            entity_type="budget",
            entity_id=budget_id,
            actor_user_id=owner_user_id,
            correlation_id=correlation_id,
            description=f"Budget shared with {recipient_user_id}",
            details={
                "recipient_user_id": recipient_user_id,
                "merged_item_count": merged_item_count,
            },
        )
    
    @staticmethod
    def budget_merged(
        target_budget_id: str,
        stale_budget_id: str,
        item_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_MERGED,
            entity_type="budget",
            entity_id=target_budget_id,
            correlation_id=correlation_id,
            description=f"Merged {len(item_ids)} items from budget {stale_budget_id}",
            details={
                "stale_budget_id": stale_budget_id,
                "item_ids": item_ids,
            },
        )
    
    @staticmethod
    def budget_unshared(
        budget_id: str,
        owner_user_id: str,
        removed_user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BUDGET_UNSHARED,
            entity_type="budget",
            entity_id=budget_id,
            actor_user_id=owner_user_id,
            correlation_id=correlation_id,
            description=f"Removed {removed_user_id} from budget",
            details={"removed_user_id": removed_user_id},
        )
    
    @staticmethod
    def checklist_share_created(
        share_id: str,
        user_id: str,
        group: Optional[str],
        month: int,
        year: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHECKLIST_SHARE_CREATED,
            entity_type="checklist_share",
            entity_id=share_id,
            actor_user_id=user_id,
            description=f"Checklist share created for {month}/{year}",
            details={"group": group, "month": month, "year": year},
        )
    
    @staticmethod
    def checklist_share_deleted(
        share_id: str,
        user_id: str,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHECKLIST_SHARE_DELETED,
            entity_type="checklist_share",
            entity_id=share_id,
            actor_user_id=user_id,
            description="Checklist share deleted",
        )
    
    @staticmethod
    def authorization_denied(
        user_id: str,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.AUTHORIZATION_DENIED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_user_id=user_id,
            correlation_id=correlation_id,
            description=f"Denied: {action}",
            details={"action": action},
        )
    
    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
