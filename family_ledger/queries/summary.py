"""
Monthly Summary Builder

DESIGN DECISION: The dashboard summary is DETERMINISTIC.
Every figure is computed from what is stored for the period: budget items
and the transactions recorded against them. Nothing is estimated or cached.

Totals use each item's running `spent` counter, which is what collaborators
see live. Category totals are summed from the transactions themselves.
"""

from collections import OrderedDict
from decimal import Decimal
from typing import Optional

from family_ledger.models.ledger import BudgetItem, Transaction
from family_ledger.models.summary import BudgetItemProgress, CategorySpend, MonthlySummary
from family_ledger.services.ledger import LedgerStore


RECENT_TRANSACTION_LIMIT = 5


def item_progress(item: BudgetItem) -> BudgetItemProgress:
    """Consumption of one budget item; percent_left is 0 for a zero limit."""
    remaining = item.amount - item.spent
    if item.amount > 0:
        percent_left = max(0.0, float(remaining / item.amount * 100))
    else:
        percent_left = 0.0
    return BudgetItemProgress(
        budget_item_id=item.id,
        name=item.name,
        amount=item.amount,
        spent=item.spent,
        remaining=remaining,
        percent_left=percent_left,
        is_overspent=item.spent > item.amount,
    )


def spending_by_category(
    transactions: list[Transaction],
    fallback_name: str = "Uncategorized",
) -> list[CategorySpend]:
    """Sum amounts per category name, largest first."""
    totals: "OrderedDict[str, Decimal]" = OrderedDict()
    for transaction in transactions:
        name = transaction.category_name or fallback_name
        totals[name] = totals.get(name, Decimal("0")) + transaction.amount
    return sorted(
        (CategorySpend(name=name, total=total) for name, total in totals.items()),
        key=lambda spend: spend.total,
        reverse=True,
    )


class MonthlySummaryBuilder:
    """Builds the dashboard summary for one user and period."""
    
    def __init__(self, ledger: LedgerStore, fallback_category_name: Optional[str] = None):
        self._ledger = ledger
        self._fallback_category_name = (
            fallback_category_name or ledger.uncategorized().name
        )
    
    async def build(self, user_id: str, month: int, year: int) -> MonthlySummary:
        budget = await self._ledger.get_budget(user_id, month, year)
        transactions = await self._ledger.list_transactions(user_id, month, year)
        
        summary = MonthlySummary(
            user_id=user_id,
            month=month,
            year=year,
            categories=spending_by_category(transactions, self._fallback_category_name),
            recent_transactions=transactions[:RECENT_TRANSACTION_LIMIT],
        )
        if budget is None:
            return summary
        
        progress = [item_progress(item) for item in budget.items]
        progress.sort(key=lambda p: (not p.is_overspent, p.percent_left))
        
        summary.budget_id = budget.id
        summary.total_budget = budget.total_amount
        summary.total_spent = budget.total_spent
        summary.items = progress
        return summary


async def get_monthly_summary(
    ledger: LedgerStore,
    user_id: str,
    month: int,
    year: int,
) -> MonthlySummary:
    """Convenience wrapper around MonthlySummaryBuilder."""
    return await MonthlySummaryBuilder(ledger).build(user_id, month, year)
