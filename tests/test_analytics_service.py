from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import SplitType, User
from periods import Period, TimeRange, TrendGrouping, resolve_time_range, trend_buckets
from schemas import BudgetIn, ExpenseIn, SplitIn
from services import AnalyticsService, BudgetService, ExpenseService

NOW = datetime(2025, 1, 20, 12, 0)


def _engine():
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        session.add_all(
            [
                User(id=1, name="Ada", email="ada@example.com"),
                User(id=2, name="Bo", email="bo@example.com"),
            ]
        )
        session.commit()
    return engine


def _spend(session, cents: int, when: datetime, category="food"):
    return ExpenseService(session, 1).create(
        ExpenseIn(
            description="Lunch",
            amount_cents=cents,
            category=category,
            occurred_at=when,
            split_type=SplitType.exact,
            splits=[SplitIn(user_id=1, amount_cents=cents)],
        )
    )


def test_resolve_time_range_windows():
    current, previous = resolve_time_range(TimeRange.month, NOW)
    assert current == Period(datetime(2025, 1, 1), datetime(2025, 2, 1))
    assert previous == Period(datetime(2024, 12, 1), datetime(2025, 1, 1))

    current, previous = resolve_time_range(TimeRange.year, NOW)
    assert current == Period(datetime(2025, 1, 1), datetime(2026, 1, 1))
    assert previous == Period(datetime(2024, 1, 1), datetime(2025, 1, 1))

    current, previous = resolve_time_range(TimeRange.week, NOW)
    assert current.start == NOW - timedelta(days=7)
    assert current.end == datetime(2025, 1, 21)
    assert previous == Period(NOW - timedelta(days=14), NOW - timedelta(days=7))


def test_trend_buckets_shapes():
    days = trend_buckets(TimeRange.week, TrendGrouping.day, NOW)
    assert len(days) == 7
    assert days[0].start == datetime(2025, 1, 14)
    assert days[-1].end == datetime(2025, 1, 21)

    months = trend_buckets(TimeRange.year, TrendGrouping.month, NOW)
    assert len(months) == 12
    assert months[-1] == Period(datetime(2025, 12, 1), datetime(2026, 1, 1))

    weeks = trend_buckets(TimeRange.month, TrendGrouping.week, NOW)
    assert weeks[0].start == datetime(2025, 1, 1)
    assert weeks[-1].end == datetime(2025, 2, 1)
    assert len(weeks) == 5


def test_month_analytics_with_previous_period_trend():
    engine = _engine()
    with Session(engine) as session:
        _spend(session, 1000, datetime(2024, 12, 15, 12))
        _spend(session, 1000, datetime(2025, 1, 5, 12))
        _spend(session, 500, datetime(2025, 1, 10, 12), category="transport")

        data = AnalyticsService(session, 1).compute(TimeRange.month, NOW)

        assert data["total_spent_cents"] == 1500
        assert data["expense_count"] == 2
        assert data["avg_expense_cents"] == pytest.approx(750.0)
        assert data["top_category"] == {"name": "food", "amount_cents": 1000}
        assert data["spent_trend"] == pytest.approx(50.0)
        assert data["avg_trend"] == pytest.approx(-25.0)
        assert data["budget_status"] is None
        assert data["budget_diff_cents"] is None


def test_month_analytics_compares_against_budgets():
    engine = _engine()
    with Session(engine) as session:
        budgets = BudgetService(session, 1)
        budgets.set_budget(BudgetIn(category="food", monthly_limit_cents=1000), now=NOW)
        budgets.set_budget(BudgetIn(category="fun", monthly_limit_cents=200), now=NOW)
        _spend(session, 1500, datetime(2025, 1, 5, 12))

        service = AnalyticsService(session, 1)
        month = service.compute(TimeRange.month, NOW)
        assert month["budget_status"] == "over"
        assert month["budget_diff_cents"] == -300

        week = service.compute(TimeRange.week, NOW)
        assert week["budget_status"] is None


def test_week_window_excludes_older_spend():
    engine = _engine()
    with Session(engine) as session:
        _spend(session, 700, NOW - timedelta(days=8))
        _spend(session, 300, NOW - timedelta(hours=2))

        data = AnalyticsService(session, 1).compute(TimeRange.week, NOW)
        assert data["total_spent_cents"] == 300
        assert data["spent_trend"] == pytest.approx(-400 / 7)


def test_cached_analytics_expire_after_ttl():
    engine = _engine()
    with Session(engine) as session:
        service = AnalyticsService(session, 1)
        _spend(session, 1000, datetime(2025, 1, 10, 12))

        first = service.expense_analytics(TimeRange.month, NOW)
        assert first["total_spent_cents"] == 1000

        _spend(session, 500, datetime(2025, 1, 11, 12))

        cached = service.expense_analytics(TimeRange.month, NOW + timedelta(minutes=5))
        assert cached["total_spent_cents"] == 1000

        fresh = service.expense_analytics(TimeRange.month, NOW + timedelta(minutes=16))
        assert fresh["total_spent_cents"] == 1500


def test_clear_cache_forces_recompute():
    engine = _engine()
    with Session(engine) as session:
        service = AnalyticsService(session, 1)
        service.expense_analytics(TimeRange.month, NOW)
        service.expense_analytics(TimeRange.year, NOW)
        _spend(session, 800, datetime(2025, 1, 12, 12))

        assert service.clear_cache() == 2
        assert service.clear_cache() == 0
        data = service.expense_analytics(TimeRange.month, NOW + timedelta(minutes=1))
        assert data["total_spent_cents"] == 800


def test_spending_trends_by_day():
    engine = _engine()
    with Session(engine) as session:
        _spend(session, 400, datetime(2025, 1, 13, 23))
        _spend(session, 250, datetime(2025, 1, 14, 9))
        _spend(session, 600, datetime(2025, 1, 20, 10))
        _spend(session, 100, datetime(2025, 1, 20, 11))

        rows = AnalyticsService(session, 1).spending_trends(
            TimeRange.week, TrendGrouping.day, NOW
        )

        assert len(rows) == 7
        assert rows[0]["period_start"] == "2025-01-14T00:00:00"
        assert rows[0]["total_spent_cents"] == 250
        assert rows[-1]["total_spent_cents"] == 700
        assert rows[-1]["expense_count"] == 2
        assert sum(r["total_spent_cents"] for r in rows) == 950


def test_spending_trends_by_month_for_year():
    engine = _engine()
    with Session(engine) as session:
        _spend(session, 1200, datetime(2025, 1, 2, 12))
        _spend(session, 900, datetime(2024, 11, 2, 12))

        rows = AnalyticsService(session, 1).spending_trends(
            TimeRange.year, TrendGrouping.month, NOW
        )
        assert len(rows) == 12
        assert rows[0]["total_spent_cents"] == 1200
        assert all(r["total_spent_cents"] == 0 for r in rows[1:])


def test_week_grouped_by_month_stays_inside_the_week():
    now = datetime(2025, 3, 3, 12, 0)
    current, _ = resolve_time_range(TimeRange.week, now)

    buckets = trend_buckets(TimeRange.week, TrendGrouping.month, now)
    assert buckets == [
        Period(current.start, datetime(2025, 3, 1)),
        Period(datetime(2025, 3, 1), current.end),
    ]

    engine = _engine()
    with Session(engine) as session:
        _spend(session, 999, datetime(2025, 2, 2, 12))
        _spend(session, 300, datetime(2025, 2, 26, 9))
        _spend(session, 200, datetime(2025, 3, 2, 9))

        rows = AnalyticsService(session, 1).spending_trends(
            TimeRange.week, TrendGrouping.month, now
        )
        assert [r["total_spent_cents"] for r in rows] == [300, 200]


def test_open_ended_groupings_stop_at_now():
    now = datetime(2025, 1, 5, 12, 0)
    days = trend_buckets(TimeRange.month, TrendGrouping.day, now)
    assert len(days) == 5
    assert days[0].start == datetime(2025, 1, 1)
    assert days[-1].start <= now

    weeks = trend_buckets(TimeRange.year, TrendGrouping.week, datetime(2025, 1, 20, 12))
    assert [w.start for w in weeks] == [
        datetime(2025, 1, 1),
        datetime(2025, 1, 8),
        datetime(2025, 1, 15),
    ]

    months = trend_buckets(TimeRange.month, TrendGrouping.month, now)
    assert months == [Period(datetime(2025, 1, 1), datetime(2025, 2, 1))]
