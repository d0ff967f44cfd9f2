"""
In-Memory Document Store

Single-process store used by the test suite and for local development.

Atomicity comes from the event loop: no mutation awaits between reading
and writing a document, so concurrent coroutines cannot interleave inside
one increment. That mirrors the server-side delta semantics of a real
document database.
"""

import asyncio
import copy
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Optional
from uuid import uuid4

from family_ledger.clock import utc_now
from family_ledger.services.storage.interface import (
    ChangeWatch,
    DocumentNotFoundError,
    DocumentStore,
    ErrorListener,
    SnapshotListener,
    WriteConflictError,
    matches_filters,
)


class InMemoryDocumentStore(DocumentStore):
    """
    Dict-backed implementation of the document store.
    
    Documents are copied on the way in and on the way out so callers can
    never mutate stored state by accident.
    """
    
    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._collections: dict[str, dict[str, dict]] = defaultdict(dict)
        self._watches: list["_MemoryWatch"] = []
        self._clock = clock or utc_now
    
    def _export(self, doc_id: str, document: dict) -> dict:
        exported = copy.deepcopy(document)
        exported["id"] = doc_id
        return exported
    
    def _require(self, collection: str, doc_id: str) -> dict:
        document = self._collections[collection].get(doc_id)
        if document is None:
            raise DocumentNotFoundError(collection, doc_id)
        return document
    
    def _notify(self, collection: str, before: Optional[dict], after: Optional[dict]) -> None:
        for watch in list(self._watches):
            if watch.collection != collection:
                continue
            if matches_filters(before, watch.filters) or matches_filters(after, watch.filters):
                watch.mark_dirty()
    
    async def get(self, collection: str, doc_id: str) -> Optional[dict]:
        document = self._collections[collection].get(doc_id)
        if document is None:
            return None
        return self._export(doc_id, document)
    
    async def find(
        self,
        collection: str,
        filters: Optional[dict] = None,
    ) -> list[dict]:
        return [
            self._export(doc_id, document)
            for doc_id, document in self._collections[collection].items()
            if matches_filters(document, filters)
        ]
    
    async def insert(
        self,
        collection: str,
        data: dict,
        doc_id: Optional[str] = None,
    ) -> dict:
        doc_id = doc_id or uuid4().hex
        now = self._clock()
        document = copy.deepcopy(data)
        document.pop("id", None)
        document["createdAt"] = now
        document["updatedAt"] = now
        self._collections[collection][doc_id] = document
        self._notify(collection, None, document)
        return self._export(doc_id, document)
    
    async def upsert(self, collection: str, doc_id: str, data: dict) -> dict:
        existing = self._collections[collection].get(doc_id)
        if existing is None:
            return await self.insert(collection, data, doc_id=doc_id)
        return await self.update(collection, doc_id, data)
    
    async def update(
        self,
        collection: str,
        doc_id: str,
        fields: dict,
        expected: Optional[dict] = None,
    ) -> dict:
        document = self._require(collection, doc_id)
        if expected and not matches_filters(document, expected):
            raise WriteConflictError(collection, doc_id)
        before = copy.deepcopy(document)
        changes = copy.deepcopy(fields)
        changes.pop("id", None)
        changes.pop("createdAt", None)
        document.update(changes)
        document["updatedAt"] = self._clock()
        self._notify(collection, before, document)
        return self._export(doc_id, document)
    
    async def increment(
        self,
        collection: str,
        doc_id: str,
        field: str,
        delta: Decimal,
    ) -> None:
        document = self._require(collection, doc_id)
        before = copy.deepcopy(document)
        document[field] = document.get(field, Decimal("0")) + delta
        document["updatedAt"] = self._clock()
        self._notify(collection, before, document)
    
    async def add_to_set(self, collection: str, doc_id: str, field: str, value: Any) -> None:
        document = self._require(collection, doc_id)
        before = copy.deepcopy(document)
        members = document.setdefault(field, [])
        if value not in members:
            members.append(value)
        document["updatedAt"] = self._clock()
        self._notify(collection, before, document)
    
    async def remove_from_set(self, collection: str, doc_id: str, field: str, value: Any) -> None:
        document = self._require(collection, doc_id)
        before = copy.deepcopy(document)
        document[field] = [member for member in document.get(field, []) if member != value]
        document["updatedAt"] = self._clock()
        self._notify(collection, before, document)
    
    async def delete(self, collection: str, doc_id: str) -> bool:
        document = self._collections[collection].pop(doc_id, None)
        if document is None:
            return False
        self._notify(collection, document, None)
        return True
    
    def watch(
        self,
        collection: str,
        filters: Optional[dict],
        on_snapshot: SnapshotListener,
        on_error: Optional[ErrorListener] = None,
    ) -> ChangeWatch:
        watch = _MemoryWatch(self, collection, filters, on_snapshot, on_error)
        self._watches.append(watch)
        return watch.start()
    
    def _detach(self, watch: "_MemoryWatch") -> None:
        if watch in self._watches:
            self._watches.remove(watch)
    
    @property
    def active_watch_count(self) -> int:
        return len(self._watches)


class _MemoryWatch(ChangeWatch):
    """
    Live query over the in-memory store.
    
    Changes only mark the watch dirty; the pump coalesces bursts of writes
    into a single re-delivery of the current matching set.
    """
    
    def __init__(
        self,
        store: InMemoryDocumentStore,
        collection: str,
        filters: Optional[dict],
        on_snapshot: SnapshotListener,
        on_error: Optional[ErrorListener] = None,
    ):
        super().__init__(collection, filters, on_snapshot, on_error)
        self._store = store
        self._dirty = asyncio.Event()
        self._dirty.set()
    
    def mark_dirty(self) -> None:
        if not self.closed:
            self._dirty.set()
    
    def _release(self) -> None:
        self._store._detach(self)
    
    async def _pump(self) -> None:
        while not self.closed:
            await self._dirty.wait()
            self._dirty.clear()
            documents = await self._store.find(self.collection, self.filters)
            await self._deliver(documents)
