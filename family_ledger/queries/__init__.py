"""Deterministic read-side queries."""

from family_ledger.queries.summary import (
    MonthlySummaryBuilder,
    get_monthly_summary,
    item_progress,
    spending_by_category,
)

__all__ = [
    "MonthlySummaryBuilder",
    "get_monthly_summary",
    "item_progress",
    "spending_by_category",
]
