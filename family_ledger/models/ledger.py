"""
Core Data Models for Family Ledger

These models define the schemas for everything persisted in the ledger
collections. They are designed to:
1. Enforce type safety at runtime
2. Reject bad input before anything is written
3. Round-trip cleanly to store documents (camelCase field names)

DESIGN DECISION: Budget and BudgetItem are the only multi-owner entities.
Access to both is decided by one predicate, has_access(), which accepts the
budget owner and every member of the budget's shared_with list.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from family_ledger.errors import ReconciliationWarning


# =============================================================================
# BASE DOCUMENT
# =============================================================================

class LedgerDocument(BaseModel):
    """
    Base for every entity stored in a ledger collection.
    
    Field names are snake_case in Python and camelCase in the store.
    The id and timestamps are assigned by the store, never by callers.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )
    
    id: Optional[str] = Field(
        default=None,
        description="Store-assigned opaque id"
    )
    created_at: Optional[datetime] = Field(
        default=None,
        description="Server timestamp of creation"
    )
    updated_at: Optional[datetime] = Field(
        default=None,
        description="Server timestamp of last mutation"
    )
    
    def to_document(self) -> dict[str, Any]:
        """
        Convert to a store document.
        
        Dates are stored as ISO strings; store-managed fields are left out.
        """
        data = self.model_dump(
            by_alias=True,
            exclude={"id", "created_at", "updated_at"},
        )
        return {key: _encode_value(value) for key, value in data.items()}
    
    @classmethod
    def from_document(cls, document: dict[str, Any]):
        """Build a model from a store document."""
        return cls.model_validate(document)


def _encode_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _encode_value(v) for k, v in value.items()}
    return value


class EntityRef(BaseModel):
    """Reference to another document by id (never embedded)."""
    
    id: str = Field(
        ...,
        min_length=1,
        description="Id of the referenced document"
    )


# =============================================================================
# USERS
# =============================================================================

class UserProfile(BaseModel):
    """
    Public profile of an authenticated principal.
    
    Created on first login, refreshed on every login.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )
    
    uid: str = Field(
        ...,
        min_length=1,
        description="Stable user id from the identity provider"
    )
    email: str = Field(
        ...,
        min_length=3,
        max_length=320,
        description="Login email, stored lowercased"
    )
    display_name: Optional[str] = Field(
        default=None,
        max_length=200,
        description="Display name (may change between logins)"
    )
    
    @field_validator('email')
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        """Emails are matched case-insensitively."""
        if "@" not in v:
            raise ValueError(f"Invalid email address: {v}")
        return v.lower()


# =============================================================================
# BUDGETS
# =============================================================================

class Budget(LedgerDocument):
    """
    A monthly budget.
    
    CRITICAL: (month, year) never changes after creation.
    After sharing, several users resolve to the same budget for a period.
    """
    
    owner_user_id: str = Field(
        ...,
        alias="userId",
        description="User who created the budget"
    )
    month: int = Field(
        ...,
        ge=1,
        le=12,
        description="Calendar month (1-12)"
    )
    year: int = Field(
        ...,
        ge=1970,
        le=9999,
        description="Calendar year"
    )
    shared_with: list[str] = Field(
        default_factory=list,
        description="Ids of members with collaborative access"
    )
    
    # Resolved on read, never persisted
    items: list["BudgetItem"] = Field(
        default_factory=list,
        exclude=True,
        description="Budget items resolved for this budget"
    )
    
    def has_access(self, user_id: str) -> bool:
        return has_access(self, user_id)
    
    def is_owner(self, user_id: str) -> bool:
        return self.owner_user_id == user_id
    
    @property
    def total_amount(self) -> Decimal:
        return sum((item.amount for item in self.items), Decimal("0"))
    
    @property
    def total_spent(self) -> Decimal:
        return sum((item.spent for item in self.items), Decimal("0"))


class BudgetItem(LedgerDocument):
    """
    A spending limit line inside a budget.
    
    spent is a denormalized running total of the linked transactions.
    It is moved by atomic deltas only; a repair pass may recompute it.
    """
    
    budget_id: str = Field(
        ...,
        min_length=1,
        description="Parent budget (repointed only by a budget merge)"
    )
    user_id: str = Field(
        ...,
        description="Original creator"
    )
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Line item name"
    )
    amount: Decimal = Field(
        ...,
        ge=0,
        description="Spending limit"
    )
    spent: Decimal = Field(
        default=Decimal("0"),
        description="Running total of linked transaction amounts"
    )
    
    @property
    def remaining(self) -> Decimal:
        return self.amount - self.spent
    
    @property
    def is_overspent(self) -> bool:
        return self.remaining < 0


def has_access(budget: Budget, user_id: str) -> bool:
    """
    Single access predicate for budgets and (via the parent) budget items.
    
    Owner and shared members have access; nobody else does.
    """
    return budget.owner_user_id == user_id or user_id in budget.shared_with


class BudgetItemDraft(BaseModel):
    """Caller input for creating or editing a budget item."""
    model_config = ConfigDict(str_strip_whitespace=True)
    
    name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., ge=0)


# =============================================================================
# TRANSACTIONS & CATEGORIES
# =============================================================================

class Transaction(LedgerDocument):
    """
    A recorded expense.
    
    month/year are ALWAYS derived from date so an edited date moves the
    transaction between reporting periods.
    """
    
    user_id: str = Field(
        ...,
        description="User who recorded the transaction"
    )
    description: str = Field(
        ...,
        min_length=1,
        max_length=500,
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        description="Expense magnitude"
    )
    date: date
    month: Optional[int] = Field(default=None, ge=1, le=12)
    year: Optional[int] = None
    budget_item: Optional[EntityRef] = None
    category: Optional[EntityRef] = None
    
    # Display copies
    budget_item_name: str = ""
    category_name: str = ""
    
    @model_validator(mode='after')
    def derive_period(self) -> 'Transaction':
        """Reporting period follows the transaction date."""
        self.month = self.date.month
        self.year = self.date.year
        return self
    
    @property
    def budget_item_id(self) -> Optional[str]:
        return self.budget_item.id if self.budget_item else None


class TransactionDraft(BaseModel):
    """
    Caller input for recording or editing a transaction.
    
    Links are given by id; display names are resolved by the ledger.
    """
    model_config = ConfigDict(str_strip_whitespace=True)
    
    description: str = Field(..., min_length=1, max_length=500)
    amount: Decimal = Field(..., gt=0)
    date: date
    budget_item_id: Optional[str] = None
    category_id: Optional[str] = None
    
    @field_validator('budget_item_id', 'category_id', mode='before')
    @classmethod
    def blank_to_none(cls, v):
        """Empty selections mean 'unassigned'."""
        if isinstance(v, str) and not v.strip():
            return None
        return v


class Category(LedgerDocument):
    """
    A user's transaction category.
    
    The synthetic 'Uncategorized' category has no owner and is never stored.
    """
    
    user_id: Optional[str] = None
    name: str = Field(
        ...,
        min_length=1,
        max_length=100,
    )
    is_system: bool = False


# =============================================================================
# RESULT MODELS
# =============================================================================

class SpendAdjustment(BaseModel):
    """One attempted delta against a budget item's spent total."""
    
    budget_item_id: str
    delta: Decimal
    applied: bool
    error: Optional[str] = None


class TransactionOutcome(BaseModel):
    """
    Result of a transaction mutation.
    
    The primary write succeeded if this object exists. Failed adjustments
    are reported as warnings, never raised.
    """
    
    transaction: Optional[Transaction] = None
    adjustments: list[SpendAdjustment] = Field(default_factory=list)
    
    @property
    def reconciliation_pending(self) -> bool:
        return any(not adj.applied for adj in self.adjustments)
    
    @property
    def warnings(self) -> list[ReconciliationWarning]:
        return [
            ReconciliationWarning(adj.budget_item_id, adj.delta, adj.error or "unknown")
            for adj in self.adjustments
            if not adj.applied
        ]


class ShareResult(BaseModel):
    """Result of sharing a budget with another user."""
    
    success: bool
    budget_id: str
    merged_item_count: int = Field(default=0, ge=0)
    merged_budget_ids: list[str] = Field(default_factory=list)
    recipient: UserProfile


class SharedMember(BaseModel):
    """A user with access to a budget, as shown in the member list."""
    
    uid: str
    email: Optional[str] = None
    display_name: Optional[str] = None
    is_owner: bool = False


class DriftReport(BaseModel):
    """Outcome of recomputing one item's spent total from its transactions."""
    
    budget_item_id: str
    previous_spent: Decimal
    recomputed_spent: Decimal
    transaction_count: int = Field(ge=0)
    
    @property
    def drift(self) -> Decimal:
        return self.previous_spent - self.recomputed_spent
    
    @property
    def has_drift(self) -> bool:
        return self.drift != 0


Budget.model_rebuild()
