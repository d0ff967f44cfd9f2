"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract document-store interface.
This allows us to:
1. Run against MongoDB in production
2. Use in-memory storage for testing
3. Keep the ledger logic decoupled from the storage engine

The interface is intentionally small: equality queries, atomic deltas,
atomic set membership and live queries. Cross-document transactions are
NOT part of the contract; callers must tolerate partial failure.
"""

import asyncio
import copy
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

import structlog

from family_ledger.models.audit import AuditEvent


logger = structlog.get_logger(__name__)


# Collection names
COLLECTION_USERS = "users"
COLLECTION_BUDGETS = "budgets"
COLLECTION_BUDGET_ITEMS = "budgetItems"
COLLECTION_TRANSACTIONS = "transactions"
COLLECTION_CATEGORIES = "categories"
COLLECTION_CHECKLIST_ITEMS = "checklistItems"
COLLECTION_CHECKLIST_SHARES = "checklistShares"
COLLECTION_AUDIT_EVENTS = "auditEvents"


SnapshotListener = Callable[[list[dict]], Awaitable[None]]
ErrorListener = Callable[[Exception], None]


def get_path(document: dict, path: str) -> Any:
    """Resolve a dotted path such as 'budgetItem.id' inside a document."""
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def matches_filters(document: Optional[dict], filters: Optional[dict]) -> bool:
    """Equality match of every filter against the document."""
    if document is None:
        return False
    return all(_field_matches(get_path(document, path), value) for path, value in (filters or {}).items())


def _field_matches(actual: Any, expected: Any) -> bool:
    # Scalar filters match array members, as in MongoDB
    if isinstance(actual, list) and not isinstance(expected, list):
        return expected in actual
    return actual == expected


class ChangeWatch(ABC):
    """
    Handle to a live query.
    
    The watch delivers the full matching set once on start and again after
    every change that touches it. After close() returns, the snapshot
    listener is never invoked again.
    """
    
    def __init__(
        self,
        collection: str,
        filters: Optional[dict],
        on_snapshot: SnapshotListener,
        on_error: Optional[ErrorListener] = None,
    ):
        self.collection = collection
        self.filters = dict(filters or {})
        self._on_snapshot = on_snapshot
        self._on_error = on_error
        self._closed = False
        self._task: Optional[asyncio.Task] = None
        self._last_snapshot: Optional[list[dict]] = None
    
    @property
    def closed(self) -> bool:
        return self._closed
    
    def start(self) -> "ChangeWatch":
        """Start pumping snapshots. Must be called inside a running loop."""
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self
    
    def close(self) -> None:
        """Stop delivery and release the underlying watch."""
        if self._closed:
            return
        self._closed = True
        self._release()
        if self._task is not None and not self._task.done():
            self._task.cancel()
    
    def _release(self) -> None:
        """Free backend resources held by the watch."""
        return None
    
    async def _run(self) -> None:
        try:
            await self._pump()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._closed:
                return
            logger.error(
                "watch_failed",
                collection=self.collection,
                filters=self.filters,
                error=str(e),
            )
            self._closed = True
            self._release()
            if self._on_error is not None:
                self._on_error(e)
    
    async def _deliver(self, documents: list[dict]) -> None:
        if self._closed:
            return
        # Writes outside the filter can wake a watch; skip unchanged sets
        if documents == self._last_snapshot:
            return
        self._last_snapshot = copy.deepcopy(documents)
        await self._on_snapshot(documents)
    
    @abstractmethod
    async def _pump(self) -> None:
        """Produce snapshots until cancelled."""
        pass


class DocumentStore(ABC):
    """
    Abstract interface for document storage.
    
    Any storage implementation (in-memory, MongoDB, ...) must implement
    these methods. Every document returned carries its id under "id".
    Every mutation stamps a server-side "updatedAt"; inserts also stamp
    "createdAt".
    """
    
    async def connect(self) -> None:
        """Open connections eagerly (optional)."""
        return None
    
    async def close(self) -> None:
        """Release connections (optional)."""
        return None
    
    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """
        Retrieve a document by id.
        
        Returns:
            The document if found, None otherwise
        """
        pass
    
    @abstractmethod
    async def find(
        self,
        collection: str,
        filters: Optional[dict] = None,
    ) -> list[dict]:
        """
        List documents matching every equality filter.
        
        Args:
            collection: Collection name
            filters: {field_path: value}; dotted paths reach into sub-documents
            
        Returns:
            Matching documents in insertion order
        """
        pass
    
    @abstractmethod
    async def insert(
        self,
        collection: str,
        data: dict,
        doc_id: Optional[str] = None,
    ) -> dict:
        """
        Insert a new document.
        
        Returns:
            The stored document including its id and timestamps
        """
        pass
    
    @abstractmethod
    async def upsert(self, collection: str, doc_id: str, data: dict) -> dict:
        """Create or merge-update the document with the given id."""
        pass
    
    @abstractmethod
    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict,
        expected: Optional[dict] = None,
    ) -> dict:
        """
        Overwrite the given fields of an existing document.
        
        With expected, the write happens only while the stored document
        still matches those equality filters.
        
        Raises:
            DocumentNotFoundError: If the document doesn't exist
            WriteConflictError: If the document no longer matches expected
        """
        pass
    
    @abstractmethod
    async def increment(
        self,
        collection: str,
        doc_id: str,
        field: str,
        delta: Decimal,
    ) -> None:
        """
        Atomically add delta to a numeric field (server-side, no read).
        
        Raises:
            DocumentNotFoundError: If the document doesn't exist
        """
        pass
    
    @abstractmethod
    async def add_to_set(self, collection: str, doc_id: str, field: str, value: Any) -> None:
        """Atomically add value to an array field unless already present."""
        pass
    
    @abstractmethod
    async def remove_from_set(self, collection: str, doc_id: str, field: str, value: Any) -> None:
        """Atomically remove every occurrence of value from an array field."""
        pass
    
    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        """
        Delete a document by id.
        
        Returns:
            True if a document was deleted
        """
        pass
    
    @abstractmethod
    def watch(
        self,
        collection: str,
        filters: Optional[dict],
        on_snapshot: SnapshotListener,
        on_error: Optional[ErrorListener] = None,
    ) -> ChangeWatch:
        """
        Start a live query.
        
        Must be called from inside a running event loop.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.
    
    Audit logs are append-only - we never delete or modify them.
    """
    
    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event to the log."""
        pass
    
    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get all events for an entity in chronological order."""
        pass
    
    @abstractmethod
    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        """Get the most recent events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class DocumentNotFoundError(StorageError):
    """Document not found in storage."""
    
    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} not found")


class StoreConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class WriteConflictError(StorageError):
    """Conditional write lost to a concurrent change."""
    
    def __init__(self, collection: str, doc_id: str):
        self.collection = collection
        self.doc_id = doc_id
        super().__init__(f"{collection}/{doc_id} changed since it was read")
