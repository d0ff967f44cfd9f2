"""
Storage Services Package

Provides the abstract document-store interface and its implementations.
The in-memory store backs tests and local runs; MongoDB backs deployments.
"""

from family_ledger.services.storage.interface import (
    COLLECTION_AUDIT_EVENTS,
    COLLECTION_BUDGET_ITEMS,
    COLLECTION_BUDGETS,
    COLLECTION_CATEGORIES,
    COLLECTION_CHECKLIST_ITEMS,
    COLLECTION_CHECKLIST_SHARES,
    COLLECTION_TRANSACTIONS,
    COLLECTION_USERS,
    AuditStorageInterface,
    ChangeWatch,
    DocumentNotFoundError,
    DocumentStore,
    StorageError,
    StoreConnectionError,
    WriteConflictError,
)
from family_ledger.services.storage.memory import InMemoryDocumentStore
from family_ledger.services.storage.audit import DocumentAuditStorage

__all__ = [
    # Collections
    "COLLECTION_AUDIT_EVENTS",
    "COLLECTION_BUDGET_ITEMS",
    "COLLECTION_BUDGETS",
    "COLLECTION_CATEGORIES",
    "COLLECTION_CHECKLIST_ITEMS",
    "COLLECTION_CHECKLIST_SHARES",
    "COLLECTION_TRANSACTIONS",
    "COLLECTION_USERS",
    # Interfaces
    "AuditStorageInterface",
    "ChangeWatch",
    "DocumentStore",
    # Exceptions
    "DocumentNotFoundError",
    "StorageError",
    "StoreConnectionError",
    "WriteConflictError",
    # Implementations
    "DocumentAuditStorage",
    "InMemoryDocumentStore",
]
