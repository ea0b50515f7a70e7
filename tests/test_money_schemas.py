from datetime import datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError

from models import RecurrenceFrequency
from money import parse_amount, split_equally
from schemas import BudgetIn, ExpenseIn, RecurringExpenseIn, SplitIn, SuggestionUseIn


@pytest.mark.parametrize(
    ("raw", "cents"),
    [
        ("12.50", 1250),
        ("12,50", 1250),
        ("$7", 700),
        ("1.234,56", 123456),
        (" 3.999 ", 400),
        (12.5, 1250),
        (3, 300),
        (Decimal("0.01"), 1),
    ],
)
def test_parse_amount(raw, cents):
    assert parse_amount(raw) == cents


@pytest.mark.parametrize("raw", ["abc", "", "NaN", "inf", True])
def test_parse_amount_rejects_garbage(raw):
    with pytest.raises(ValueError):
        parse_amount(raw)


def test_parse_amount_sign():
    with pytest.raises(ValueError):
        parse_amount("-5")
    assert parse_amount("-5", allow_negative=True) == -500


def test_split_equally_gives_leftover_cents_to_first_participants():
    assert split_equally(1000, [1, 2, 3]) == [(1, 334), (2, 333), (3, 333)]
    assert split_equally(1001, [4, 5]) == [(4, 501), (5, 500)]
    assert split_equally(0, [1]) == [(1, 0)]
    with pytest.raises(ValueError):
        split_equally(100, [])


def test_expense_splits_must_add_up():
    ExpenseIn(
        description="Pizza",
        amount="30.00",
        splits=[{"user_id": 1, "amount": "15"}, {"user_id": 2, "amount_cents": 1500}],
    )
    with pytest.raises(ValidationError):
        ExpenseIn(
            description="Pizza",
            amount_cents=3000,
            splits=[SplitIn(user_id=1, amount_cents=1000)],
        )


def test_expense_rejects_duplicate_split_users():
    with pytest.raises(ValidationError):
        ExpenseIn(
            description="Pizza",
            amount_cents=2000,
            splits=[
                SplitIn(user_id=1, amount_cents=1000),
                SplitIn(user_id=1, amount_cents=1000),
            ],
        )


def test_expense_rejects_non_numeric_amount():
    with pytest.raises(ValidationError):
        ExpenseIn(
            description="Pizza",
            amount="a lot",
            splits=[SplitIn(user_id=1, amount_cents=0)],
        )


def test_expense_requires_description_and_splits():
    with pytest.raises(ValidationError):
        ExpenseIn(description="", amount_cents=0, splits=[SplitIn(user_id=1, amount_cents=0)])
    with pytest.raises(ValidationError):
        ExpenseIn(description="Pizza", amount_cents=0, splits=[])


def test_budget_limit_cannot_be_negative():
    with pytest.raises(ValidationError):
        BudgetIn(category="food", monthly_limit_cents=-1)
    assert BudgetIn(category="food", monthly_limit="45,00").monthly_limit_cents == 4500


def test_recurring_input_validation():
    data = RecurringExpenseIn(
        description="Rent",
        amount="900",
        category="housing",
        frequency="monthly",
        participants=[1, 2],
        splits=[
            {"user_id": 1, "amount": "450", "percentage": 50},
            {"user_id": 2, "amount": "450", "percentage": 50},
        ],
    )
    assert data.frequency == RecurrenceFrequency.monthly
    assert data.amount_cents == 90000

    with pytest.raises(ValidationError):
        RecurringExpenseIn(
            description="Rent",
            amount_cents=90000,
            category="housing",
            frequency="daily",
            splits=[{"user_id": 1, "amount_cents": 90000}],
        )


def test_suggestion_use_needs_participants():
    with pytest.raises(ValidationError):
        SuggestionUseIn(participants=[])
    with pytest.raises(ValidationError):
        SuggestionUseIn(participants=[1], amount_cents=0)
    assert SuggestionUseIn(participants=[1]).amount_cents is None


def test_expense_time_with_offset_becomes_local_wall_clock():
    data = ExpenseIn(
        description="Late snack",
        amount_cents=500,
        occurred_at="2025-01-31T23:30:00+00:00",
        splits=[SplitIn(user_id=1, amount_cents=500)],
    )
    # Default zone is Europe/Berlin (UTC+1 in winter).
    assert data.occurred_at == datetime(2025, 2, 1, 0, 30)
    assert data.occurred_at.tzinfo is None

    naive = ExpenseIn(
        description="Late snack",
        amount_cents=500,
        occurred_at="2025-01-31T23:30:00",
        splits=[SplitIn(user_id=1, amount_cents=500)],
    )
    assert naive.occurred_at == datetime(2025, 1, 31, 23, 30)
