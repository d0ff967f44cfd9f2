"""
Audit Logger

DESIGN DECISION: Every mutation of shared financial state is logged.
This provides:
1. Traceability when collaborators edit the same budget
2. A record of spend adjustments awaiting repair
3. Debugging capability for multi-step share/merge sequences

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
import sys
from decimal import Decimal
from typing import TYPE_CHECKING, Optional
from uuid import UUID, uuid4

import structlog

from family_ledger.config import AppSettings
from family_ledger.models.audit import AuditEvent, AuditEventBuilder

if TYPE_CHECKING:
    from family_ledger.services.storage import AuditStorageInterface


def configure_logging(settings: Optional[AppSettings] = None) -> None:
    """
    Configure structlog on top of the standard library logger.
    
    JSON lines by default; a console renderer when log_format is 'console'.
    """
    level = settings.effective_log_level if settings else "INFO"
    log_format = settings.log_format if settings else "json"
    
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    logging.getLogger().setLevel(level)
    
    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )
    
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.
    
    Logs events both to:
    1. Structured local log (for debugging)
    2. The audit collection of the document store (for persistence)
    """
    
    def __init__(
        self,
        storage: Optional["AuditStorageInterface"] = None,
    ):
        """
        Initialize audit logger.
        
        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("family_ledger.audit")
    
    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.
        
        Always logs locally. Persists to storage if available.
        
        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()
        
        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)
        
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False
        
        return True
    
    async def log_transaction_recorded(
        self,
        transaction_id: str,
        user_id: str,
        amount: Decimal,
        budget_item_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a newly recorded transaction."""
        await self.log(AuditEventBuilder.transaction_recorded(
            transaction_id=transaction_id,
            user_id=user_id,
            amount=amount,
            budget_item_id=budget_item_id,
            correlation_id=correlation_id,
        ))
    
    async def log_transaction_updated(
        self,
        transaction_id: str,
        user_id: str,
        old_amount: Decimal,
        new_amount: Decimal,
        old_budget_item_id: Optional[str],
        new_budget_item_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transaction edit."""
        await self.log(AuditEventBuilder.transaction_updated(
            transaction_id=transaction_id,
            user_id=user_id,
            old_amount=old_amount,
            new_amount=new_amount,
            old_budget_item_id=old_budget_item_id,
            new_budget_item_id=new_budget_item_id,
            correlation_id=correlation_id,
        ))
    
    async def log_transaction_deleted(
        self,
        transaction_id: str,
        user_id: str,
        amount: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transaction deletion."""
        await self.log(AuditEventBuilder.transaction_deleted(
            transaction_id=transaction_id,
            user_id=user_id,
            amount=amount,
            correlation_id=correlation_id,
        ))
    
    async def log_spend_adjusted(
        self,
        budget_item_id: str,
        delta: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.spend_adjusted(
            budget_item_id=budget_item_id,
            delta=delta,
            correlation_id=correlation_id,
        ))
    
    async def log_spend_adjustment_failed(
        self,
        budget_item_id: str,
        delta: Decimal,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a delta that could not be applied (reconciliation pending)."""
        await self.log(AuditEventBuilder.spend_adjustment_failed(
            budget_item_id=budget_item_id,
            delta=delta,
            error_message=error_message,
            correlation_id=correlation_id,
        ))
    
    async def log_spend_drift_repaired(
        self,
        budget_item_id: str,
        previous_spent: Decimal,
        recomputed_spent: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.spend_drift_repaired(
            budget_item_id=budget_item_id,
            previous_spent=previous_spent,
            recomputed_spent=recomputed_spent,
            correlation_id=correlation_id,
        ))
    
    async def log_budget_shared(
        self,
        budget_id: str,
        owner_user_id: str,
        recipient_user_id: str,
        merged_item_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a completed share."""
        await self.log(AuditEventBuilder.budget_shared(
            budget_id=budget_id,
            owner_user_id=owner_user_id,
            recipient_user_id=recipient_user_id,
            merged_item_count=merged_item_count,
            correlation_id=correlation_id,
        ))
    
    async def log_budget_merged(
        self,
        target_budget_id: str,
        stale_budget_id: str,
        item_ids: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log one stale budget folded into a shared budget."""
        await self.log(AuditEventBuilder.budget_merged(
            target_budget_id=target_budget_id,
            stale_budget_id=stale_budget_id,
            item_ids=item_ids,
            correlation_id=correlation_id,
        ))
    
    async def log_budget_unshared(
        self,
        budget_id: str,
        owner_user_id: str,
        removed_user_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.budget_unshared(
            budget_id=budget_id,
            owner_user_id=owner_user_id,
            removed_user_id=removed_user_id,
            correlation_id=correlation_id,
        ))
    
    async def log_checklist_share_created(
        self,
        share_id: str,
        user_id: str,
        group: Optional[str],
        month: int,
        year: int,
    ) -> None:
        await self.log(AuditEventBuilder.checklist_share_created(
            share_id=share_id,
            user_id=user_id,
            group=group,
            month=month,
            year=year,
        ))
    
    async def log_checklist_share_deleted(self, share_id: str, user_id: str) -> None:
        await self.log(AuditEventBuilder.checklist_share_deleted(
            share_id=share_id,
            user_id=user_id,
        ))
    
    async def log_authorization_denied(
        self,
        user_id: str,
        action: str,
        entity_type: str,
        entity_id: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a rejected mutation attempt."""
        await self.log(AuditEventBuilder.authorization_denied(
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
        ))
    
    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.
    
    Use this at the start of a multi-step action (e.g., sharing a budget).
    Pass it through all subsequent operations.
    """
    return uuid4()
