"""
Live Checklist Subscription

State machine per subscription:

    CONNECTING -> STREAMING -> (ERROR | CLOSED)

Every change to a matching checklist item re-delivers the complete,
creation-ordered matching set. The returned handle is the cancel function:
once it has been called, no further update reaches the callback, even if
a snapshot was already in flight.
"""

import inspect
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from family_ledger.models.checklist import DEFAULT_CHECKLIST_GROUP, ChecklistItem
from family_ledger.services.storage import COLLECTION_CHECKLIST_ITEMS, DocumentStore


logger = structlog.get_logger(__name__)


UpdateCallback = Callable[[list[ChecklistItem]], Any]
ErrorCallback = Callable[[Exception], Any]


class SubscriptionState(str, Enum):
    """Lifecycle of a live checklist view."""
    CONNECTING = "connecting"
    STREAMING = "streaming"
    ERROR = "error"
    CLOSED = "closed"


def sort_checklist_items(items: list[ChecklistItem]) -> list[ChecklistItem]:
    """Creation order; items without a timestamp sort first."""
    return sorted(items, key=lambda item: item.created_at or datetime.min)


def group_checklist_items(
    items: list[ChecklistItem],
    group_order: Optional[list[str]] = None,
    default_group: str = DEFAULT_CHECKLIST_GROUP,
) -> dict[str, list[ChecklistItem]]:
    """
    Group items by label, keeping creation order inside each group.
    
    Groups appear in order of first appearance unless group_order (a
    client-side drag-reorder preference) lists them; listed groups come
    first, in the listed order.
    """
    grouped: dict[str, list[ChecklistItem]] = {}
    for item in sort_checklist_items(items):
        grouped.setdefault(item.group or default_group, []).append(item)
    
    if not group_order:
        return grouped
    
    ordered = {group: grouped[group] for group in group_order if group in grouped}
    for group, members in grouped.items():
        ordered.setdefault(group, members)
    return ordered


class ChecklistSubscription:
    """
    Handle to a live checklist view.
    
    Call the handle (or cancel()) to stop delivery and release the watch.
    Callbacks may be plain functions or coroutines.
    """
    
    def __init__(
        self,
        store: DocumentStore,
        filters: dict,
        on_update: UpdateCallback,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.filters = dict(filters)
        self._on_update = on_update
        self._on_error = on_error
        self._state = SubscriptionState.CONNECTING
        self._watch = store.watch(
            COLLECTION_CHECKLIST_ITEMS,
            self.filters,
            self._handle_snapshot,
            self._handle_error,
        )
    
    @property
    def state(self) -> SubscriptionState:
        return self._state
    
    @property
    def active(self) -> bool:
        return self._state in (SubscriptionState.CONNECTING, SubscriptionState.STREAMING)
    
    async def _handle_snapshot(self, documents: list[dict]) -> None:
        if not self.active:
            return
        items = sort_checklist_items([ChecklistItem.from_document(d) for d in documents])
        self._state = SubscriptionState.STREAMING
        result = self._on_update(items)
        if inspect.isawaitable(result):
            await result
    
    def _handle_error(self, error: Exception) -> None:
        if self._state is SubscriptionState.CLOSED:
            return
        self._state = SubscriptionState.ERROR
        logger.error("checklist_subscription_failed", filters=self.filters, error=str(error))
        if self._on_error is not None:
            self._on_error(error)
    
    def cancel(self) -> None:
        """Stop delivery. Safe to call more than once."""
        if self._state is SubscriptionState.CLOSED:
            return
        self._state = SubscriptionState.CLOSED
        self._watch.close()
    
    def __call__(self) -> None:
        self.cancel()
