"""Spend aggregation, period trends and budget evaluation.

Everything here works on already-loaded expenses and plain numbers so the
service layer can feed it from whatever query it ran.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Mapping, Optional, Sequence

from models import Expense
from periods import Period

DEFAULT_CATEGORY = "other"

CATEGORY_COLORS = (
    "#8B5CF6",
    "#10B981",
    "#F59E0B",
    "#EF4444",
    "#3B82F6",
    "#EC4899",
    "#84CC16",
    "#F97316",
    "#6366F1",
    "#14B8A6",
)


class BudgetStatus(str, Enum):
    good = "good"
    warning = "warning"
    danger = "danger"
    no_budget = "no-budget"


@dataclass
class CategoryShare:
    name: str
    amount_cents: int
    percentage: float
    color: str


@dataclass
class SpendSummary:
    total_cents: int = 0
    count: int = 0
    by_category: dict[str, int] = field(default_factory=dict)

    @property
    def average_cents(self) -> float:
        return self.total_cents / self.count if self.count else 0.0


@dataclass
class BudgetLine:
    category: str
    budget_cents: int
    spent_cents: int
    percentage: float
    remaining_cents: int
    status: BudgetStatus


def category_of(expense: Expense) -> str:
    return expense.category or DEFAULT_CATEGORY


def user_share_cents(expense: Expense, user_id: int) -> int:
    split = expense.split_for(user_id)
    return split.amount_cents if split else 0


def expenses_for_user(expenses: Iterable[Expense], user_id: int) -> list[Expense]:
    return [e for e in expenses if e.involves(user_id)]


def summarize(expenses: Iterable[Expense], user_id: int) -> SpendSummary:
    """Sum the user's own split amounts over the expenses that involve them.

    An expense paid by the user without a split for them still counts toward
    ``count`` but adds nothing to the totals.
    """
    summary = SpendSummary()
    for expense in expenses:
        if not expense.involves(user_id):
            continue
        summary.count += 1
        split = expense.split_for(user_id)
        if split is None:
            continue
        summary.total_cents += split.amount_cents
        category = category_of(expense)
        summary.by_category[category] = (
            summary.by_category.get(category, 0) + split.amount_cents
        )
    return summary


def category_breakdown(
    by_category: Mapping[str, int], total_cents: int
) -> list[CategoryShare]:
    ranked = sorted(by_category.items(), key=lambda item: item[1], reverse=True)
    return [
        CategoryShare(
            name=name,
            amount_cents=amount,
            percentage=(amount / total_cents * 100) if total_cents > 0 else 0.0,
            color=CATEGORY_COLORS[index % len(CATEGORY_COLORS)],
        )
        for index, (name, amount) in enumerate(ranked)
    ]


def percent_change(current: float, previous: float) -> float:
    # No baseline means no trend, even when spending appears from nothing.
    if previous <= 0:
        return 0.0
    return (current - previous) / previous * 100


def bucket_totals(
    expenses: Sequence[Expense], user_id: int, buckets: Sequence[Period]
) -> list[dict[str, object]]:
    involved = expenses_for_user(expenses, user_id)
    rows: list[dict[str, object]] = []
    for bucket in buckets:
        in_bucket = [e for e in involved if bucket.contains(e.occurred_at)]
        rows.append(
            {
                "period_start": bucket.start.isoformat(),
                "period_end": bucket.end.isoformat(),
                "total_spent_cents": sum(user_share_cents(e, user_id) for e in in_bucket),
                "expense_count": len(in_bucket),
            }
        )
    return rows


def budget_status(percentage: float) -> BudgetStatus:
    if percentage >= 90:
        return BudgetStatus.danger
    if percentage >= 70:
        return BudgetStatus.warning
    return BudgetStatus.good


def evaluate_budgets(
    limits: Mapping[str, int], spent_by_category: Mapping[str, int]
) -> dict[str, BudgetLine]:
    overview: dict[str, BudgetLine] = {}
    for category, limit in limits.items():
        spent = spent_by_category.get(category, 0)
        percentage = (spent / limit * 100) if limit > 0 else 0.0
        overview[category] = BudgetLine(
            category=category,
            budget_cents=limit,
            spent_cents=spent,
            percentage=percentage,
            remaining_cents=max(0, limit - spent),
            status=budget_status(percentage),
        )

    for category, spent in spent_by_category.items():
        if category in overview or spent <= 0:
            continue
        overview[category] = BudgetLine(
            category=category,
            budget_cents=0,
            spent_cents=spent,
            percentage=0.0,
            remaining_cents=0,
            status=BudgetStatus.no_budget,
        )
    return overview


def compose_analytics(
    current: SpendSummary,
    previous: SpendSummary,
    *,
    budget_total_cents: Optional[int] = None,
) -> dict[str, object]:
    breakdown = category_breakdown(current.by_category, current.total_cents)
    top = breakdown[0] if breakdown else None

    status: Optional[str] = None
    diff: Optional[int] = None
    if budget_total_cents is not None:
        diff = budget_total_cents - current.total_cents
        status = "over" if diff < 0 else "under"

    return {
        "total_spent_cents": current.total_cents,
        "expense_count": current.count,
        "avg_expense_cents": current.average_cents,
        "top_category": (
            {"name": top.name, "amount_cents": top.amount_cents} if top else None
        ),
        "category_breakdown": [
            {
                "name": share.name,
                "amount_cents": share.amount_cents,
                "percentage": share.percentage,
                "color": share.color,
            }
            for share in breakdown
        ],
        "spent_trend": percent_change(current.total_cents, previous.total_cents),
        "avg_trend": percent_change(current.average_cents, previous.average_cents),
        "budget_status": status,
        "budget_diff_cents": diff,
    }
