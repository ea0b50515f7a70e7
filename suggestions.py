from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable

from analytics import DEFAULT_CATEGORY
from models import Expense, SuggestionFrequency

MIN_OCCURRENCES = 2


@dataclass
class ExpensePattern:
    description: str
    category: str
    amounts: list[int] = field(default_factory=list)
    dates: list[datetime] = field(default_factory=list)
    expense_ids: list[int] = field(default_factory=list)


@dataclass
class MinedSuggestion:
    description: str
    category: str
    avg_amount_cents: int
    frequency: SuggestionFrequency
    confidence: float
    expense_ids: list[int]


def normalize_description(description: str) -> str:
    return description.strip().lower()


def pattern_key(expense: Expense) -> tuple[str, str]:
    return (expense.category or DEFAULT_CATEGORY, normalize_description(expense.description))


def group_patterns(expenses: Iterable[Expense]) -> dict[tuple[str, str], ExpensePattern]:
    patterns: dict[tuple[str, str], ExpensePattern] = {}
    for expense in expenses:
        key = pattern_key(expense)
        pattern = patterns.get(key)
        if pattern is None:
            pattern = ExpensePattern(description=expense.description, category=key[0])
            patterns[key] = pattern
        pattern.amounts.append(expense.amount_cents)
        pattern.dates.append(expense.occurred_at)
        pattern.expense_ids.append(expense.id)
    return patterns


def mean_gap_days(dates: Iterable[datetime]) -> float:
    ordered = sorted(dates)
    if len(ordered) < 2:
        return 0.0
    gaps = [
        (later - earlier).total_seconds() / 86400
        for earlier, later in zip(ordered, ordered[1:])
    ]
    return sum(gaps) / len(gaps)


def classify_frequency(gap_days: float) -> SuggestionFrequency:
    if gap_days <= 2:
        return SuggestionFrequency.daily
    if gap_days <= 8:
        return SuggestionFrequency.weekly
    if gap_days <= 35:
        return SuggestionFrequency.monthly
    return SuggestionFrequency.irregular


def confidence_score(amounts: list[int]) -> float:
    """1 minus the coefficient of variation, clamped to [0, 1]."""
    if not amounts:
        return 0.0
    mean = sum(amounts) / len(amounts)
    if mean <= 0:
        return 0.0
    variance = sum((amount - mean) ** 2 for amount in amounts) / len(amounts)
    cv = math.sqrt(variance) / mean
    return max(0.0, min(1.0, 1 - cv))


def mine_suggestions(expenses: Iterable[Expense], limit: int = 10) -> list[MinedSuggestion]:
    ordered = sorted(expenses, key=lambda e: e.occurred_at)
    mined: list[MinedSuggestion] = []
    for pattern in group_patterns(ordered).values():
        if len(pattern.amounts) < MIN_OCCURRENCES:
            continue
        mean = sum(pattern.amounts) / len(pattern.amounts)
        mined.append(
            MinedSuggestion(
                description=pattern.description,
                category=pattern.category,
                avg_amount_cents=int(round(mean)),
                frequency=classify_frequency(mean_gap_days(pattern.dates)),
                confidence=confidence_score(pattern.amounts),
                expense_ids=list(pattern.expense_ids),
            )
        )
    mined.sort(key=lambda s: s.confidence, reverse=True)
    return mined[:limit]
