"""
Summary Models

Read-only aggregates for the monthly dashboard. They are computed
deterministically from stored budgets and transactions.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from family_ledger.clock import utc_now
from family_ledger.models.ledger import Transaction


class BudgetItemProgress(BaseModel):
    """How far one budget item has been consumed."""
    
    budget_item_id: str
    name: str
    amount: Decimal
    spent: Decimal
    remaining: Decimal
    percent_left: float = Field(
        ge=0.0,
        description="Share of the limit still available (0 when overspent)"
    )
    is_overspent: bool


class CategorySpend(BaseModel):
    """Total spent under one category name."""
    
    name: str
    total: Decimal


class MonthlySummary(BaseModel):
    """
    Dashboard summary for one user and one month.
    
    Items are ordered overspent first, then by least percent left.
    """
    
    user_id: str
    month: int = Field(ge=1, le=12)
    year: int
    generated_at: datetime = Field(default_factory=utc_now)
    
    budget_id: Optional[str] = None
    total_budget: Decimal = Decimal("0")
    total_spent: Decimal = Decimal("0")
    
    items: list[BudgetItemProgress] = Field(default_factory=list)
    categories: list[CategorySpend] = Field(default_factory=list)
    recent_transactions: list[Transaction] = Field(default_factory=list)
    
    @property
    def total_remaining(self) -> Decimal:
        return self.total_budget - self.total_spent
    
    @property
    def has_budget(self) -> bool:
        return self.budget_id is not None
