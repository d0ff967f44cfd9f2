"""
Shared fixtures for the Family Ledger test suite.

Everything runs against the in-memory document store; no database is
needed. FlakyDocumentStore injects storage failures at chosen points.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable

import pytest

from family_ledger.audit import AuditLogger
from family_ledger.config import LedgerSettings
from family_ledger.orchestrator import FinanceTracker
from family_ledger.services import (
    BudgetSharingCoordinator,
    ChecklistService,
    IdentityResolver,
    LedgerStore,
    SpendReconciler,
)
from family_ledger.services.storage import (
    DocumentAuditStorage,
    InMemoryDocumentStore,
    StorageError,
)


ALICE = "uid-alice"
BOB = "uid-bob"
CAROL = "uid-carol"


class TickingClock:
    """Deterministic clock: every reading is one second after the last."""
    
    def __init__(self, start: datetime = datetime(2024, 12, 1, 9, 0, 0)):
        self._now = start
    
    def __call__(self) -> datetime:
        self._now += timedelta(seconds=1)
        return self._now


class FlakyDocumentStore(InMemoryDocumentStore):
    """
    In-memory store with switchable faults.
    
    - failing_increments: ids whose increment() raises StorageError
    - fail_next_add_to_set: the next add_to_set() raises, then heals
    - fail_finds: every find() raises (breaks live watches)
    - before_update: coroutine run once just before the next update()
    """
    
    def __init__(self, clock=None):
        super().__init__(clock=clock)
        self.failing_increments: set[str] = set()
        self.fail_next_add_to_set = False
        self.fail_finds = False
        self.before_update = None
    
    async def update(self, collection, doc_id, fields, expected=None):
        hook, self.before_update = self.before_update, None
        if hook is not None:
            await hook()
        return await super().update(collection, doc_id, fields, expected=expected)
    
    async def increment(self, collection, doc_id, field, delta):
        if doc_id in self.failing_increments:
            raise StorageError(f"injected increment failure for {doc_id}")
        await super().increment(collection, doc_id, field, delta)
    
    async def add_to_set(self, collection, doc_id, field, value):
        if self.fail_next_add_to_set:
            self.fail_next_add_to_set = False
            raise StorageError("injected add_to_set failure")
        await super().add_to_set(collection, doc_id, field, value)
    
    async def find(self, collection, filters=None):
        if self.fail_finds:
            raise StorageError("injected find failure")
        return await super().find(collection, filters)


async def wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Yield to the event loop until predicate() holds."""
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.001)
    await asyncio.wait_for(_poll(), timeout)


async def settle(ticks: int = 20) -> None:
    """Give background watch tasks a chance to run."""
    for _ in range(ticks):
        await asyncio.sleep(0)


@pytest.fixture
def clock():
    return TickingClock()


@pytest.fixture
def store(clock):
    return FlakyDocumentStore(clock=clock)


@pytest.fixture
def ledger_settings():
    return LedgerSettings()


@pytest.fixture
def audit_storage(store):
    return DocumentAuditStorage(store)


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def identity(store):
    return IdentityResolver(store)


@pytest.fixture
def ledger(store, ledger_settings, audit_logger):
    return LedgerStore(store, ledger_settings, audit_logger)


@pytest.fixture
def reconciler(ledger, audit_logger):
    return SpendReconciler(ledger, audit_logger)


@pytest.fixture
def sharing(ledger, identity, ledger_settings, audit_logger):
    return BudgetSharingCoordinator(ledger, identity, ledger_settings, audit_logger)


@pytest.fixture
def checklists(store, ledger_settings, audit_logger):
    return ChecklistService(store, ledger_settings, audit_logger)


@pytest.fixture
def tracker(store, audit_logger):
    return FinanceTracker(store, audit_logger=audit_logger)


@pytest.fixture
async def users(identity):
    """Register Alice, Bob and Carol as logged-in users."""
    await identity.save_user_profile(ALICE, "alice@example.com", "Alice")
    await identity.save_user_profile(BOB, "Bob@Example.com", "Bob")
    await identity.save_user_profile(CAROL, "carol@example.com", None)
    return {"alice": ALICE, "bob": BOB, "carol": CAROL}
