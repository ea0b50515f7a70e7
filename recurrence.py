import logging
from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from config import get_settings
from models import (
    Expense,
    ExpenseSplit,
    RecurrenceFrequency,
    RecurringExpense,
)
from periods import local_now

logger = logging.getLogger(__name__)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: datetime, months: int) -> datetime:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    # Jan 31 + 1 month lands on the last day of February.
    day = min(base.day, days_in_month(year, month))
    return base.replace(year=year, month=month, day=day)


def calculate_next_due(frequency: RecurrenceFrequency, from_moment: datetime) -> datetime:
    if frequency == RecurrenceFrequency.weekly:
        return from_moment + timedelta(days=7)
    if frequency == RecurrenceFrequency.biweekly:
        return from_moment + timedelta(days=14)
    if frequency == RecurrenceFrequency.monthly:
        return _add_months(from_moment, 1)
    return _add_months(from_moment, 12)


def advance_next_due(
    template: RecurringExpense, now: datetime, cadence: Optional[str] = None
) -> datetime:
    cadence = cadence or get_settings().recurring_cadence
    if cadence == "from_now":
        return calculate_next_due(template.frequency, now)

    next_due = template.next_due
    max_iterations = 520  # ten years of weekly steps
    iterations = 0
    while next_due <= now and iterations < max_iterations:
        next_due = calculate_next_due(template.frequency, next_due)
        iterations += 1
    if next_due <= now:
        next_due = calculate_next_due(template.frequency, now)
    return next_due


class RecurringEngine:
    def __init__(self, session: Session) -> None:
        self.session = session

    def materialize(
        self,
        template: RecurringExpense,
        acting_user_id: int,
        now: Optional[datetime] = None,
    ) -> Expense:
        from services import record_budget_spend

        now = now or local_now()
        expense = Expense(
            description=template.description,
            amount_cents=template.amount_cents,
            category=template.category,
            occurred_at=now,
            paid_by_id=acting_user_id,
            created_by_id=acting_user_id,
            split_type=template.split_type,
            group_id=template.group_id,
            recurring_expense_id=template.id,
            splits=[
                ExpenseSplit(
                    user_id=split.user_id,
                    amount_cents=split.amount_cents,
                    paid=split.user_id == acting_user_id,
                    position=index,
                )
                for index, split in enumerate(template.splits)
            ],
        )
        self.session.add(expense)
        self.session.flush()
        for split in expense.splits:
            record_budget_spend(
                self.session,
                split.user_id,
                template.category,
                split.amount_cents,
                on=now,
            )

        previous_due = template.next_due
        template.next_due = advance_next_due(template, now)
        template.last_created = now
        logger.info(
            f"recurring_materialized: template={template.id} expense={expense.id} "
            f"due={previous_due.isoformat()} next_due={template.next_due.isoformat()}"
        )
        return expense

    def due_templates(self, now: Optional[datetime] = None) -> list[RecurringExpense]:
        now = now or local_now()
        stmt = (
            select(RecurringExpense)
            .options(selectinload(RecurringExpense.splits))
            .where(
                RecurringExpense.is_active.is_(True),
                RecurringExpense.next_due <= now,
            )
            .order_by(RecurringExpense.next_due)
        )
        return list(self.session.scalars(stmt).all())

    def post_due(self, now: Optional[datetime] = None) -> int:
        now = now or local_now()
        count = 0
        for template in self.due_templates(now):
            self.materialize(template, template.user_id, now)
            count += 1
        return count
