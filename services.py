from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import delete, or_, select, update
from sqlalchemy.orm import Session, selectinload

from analytics import (
    BudgetLine,
    DEFAULT_CATEGORY,
    bucket_totals,
    category_of,
    compose_analytics,
    evaluate_budgets,
    summarize,
)
from config import get_settings
from models import (
    AnalyticsCache,
    Budget,
    Expense,
    ExpenseSplit,
    ExpenseSuggestion,
    Group,
    RecurringExpense,
    RecurringSplit,
    SplitType,
    User,
)
from money import split_equally
from periods import (
    Period,
    TimeRange,
    TrendGrouping,
    local_now,
    month_window,
    resolve_time_range,
    trend_buckets,
)
from receipts import ReceiptParser, StubReceiptParser, category_from_merchant, parse_receipt
from recurrence import RecurringEngine, calculate_next_due
from schemas import (
    BudgetIn,
    ExpenseIn,
    ReceiptAttachIn,
    RecurringExpenseIn,
    SplitIn,
    SuggestionUseIn,
)
from suggestions import mine_suggestions

logger = logging.getLogger(__name__)


class RecordNotFound(ValueError):
    pass


class NotAuthorized(ValueError):
    pass


class RecurringExpenseInactive(ValueError):
    pass


def get_current_user_id() -> int:
    return get_settings().default_user_id


def _get_owned(session: Session, model, record_id: int, user_id: int, label: str):
    record = session.get(model, record_id)
    if record is None:
        raise RecordNotFound(f"{label} not found")
    if record.user_id != user_id:
        raise NotAuthorized(f"{label} belongs to another user")
    return record


def _require_users(session: Session, user_ids: Sequence[int]) -> None:
    wanted = set(user_ids)
    if not wanted:
        return
    found = set(session.scalars(select(User.id).where(User.id.in_(wanted))).all())
    missing = sorted(wanted - found)
    if missing:
        raise RecordNotFound(f"User {missing[0]} not found")


def _require_group_member(session: Session, group_id: int, user_id: int) -> Group:
    group = session.get(Group, group_id)
    if group is None:
        raise RecordNotFound("Group not found")
    if user_id not in {member.user_id for member in group.members}:
        raise NotAuthorized("Not a member of this group")
    return group


def expenses_in_window(
    session: Session, user_id: int, period: Period
) -> list[Expense]:
    stmt = (
        select(Expense)
        .options(selectinload(Expense.splits))
        .where(
            Expense.occurred_at >= period.start,
            Expense.occurred_at < period.end,
            or_(
                Expense.paid_by_id == user_id,
                Expense.splits.any(ExpenseSplit.user_id == user_id),
            ),
        )
        .order_by(Expense.occurred_at, Expense.id)
    )
    return list(session.scalars(stmt).all())


def record_budget_spend(
    session: Session,
    user_id: int,
    category: Optional[str],
    amount_cents: int,
    *,
    on: datetime,
) -> bool:
    """Add to the running spent total of the matching monthly budget.

    Issued as a single UPDATE so concurrent expenses cannot lose increments.
    Returns False when the user has no budget for that category and month.
    """
    result = session.execute(
        update(Budget)
        .where(
            Budget.user_id == user_id,
            Budget.category == (category or DEFAULT_CATEGORY),
            Budget.year == on.year,
            Budget.month == on.month,
        )
        .values(
            spent_cents=Budget.spent_cents + amount_cents,
            last_updated=local_now(),
        )
        .execution_options(synchronize_session=False)
    )
    return bool(result.rowcount)


class ExpenseService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def create(self, data: ExpenseIn, now: Optional[datetime] = None) -> Expense:
        occurred_at = data.occurred_at or now or local_now()
        paid_by_id = data.paid_by_id or self.user_id
        _require_users(
            self.session, [paid_by_id, *(split.user_id for split in data.splits)]
        )
        if data.group_id is not None:
            _require_group_member(self.session, data.group_id, self.user_id)

        expense = Expense(
            description=data.description.strip(),
            amount_cents=data.amount_cents,
            category=(data.category or "").strip() or None,
            occurred_at=occurred_at,
            paid_by_id=paid_by_id,
            created_by_id=self.user_id,
            split_type=data.split_type,
            group_id=data.group_id,
            splits=[
                ExpenseSplit(
                    user_id=split.user_id,
                    amount_cents=split.amount_cents,
                    paid=split.paid or split.user_id == paid_by_id,
                    position=index,
                )
                for index, split in enumerate(data.splits)
            ],
        )
        self.session.add(expense)
        self.session.flush()
        for split in expense.splits:
            record_budget_spend(
                self.session,
                split.user_id,
                expense.category,
                split.amount_cents,
                on=occurred_at,
            )
        self.session.commit()
        self.session.refresh(expense)
        logger.info(
            f"expense_created: id={expense.id} user={self.user_id} "
            f"amount_cents={expense.amount_cents} splits={len(expense.splits)}"
        )
        return expense

    def get(self, expense_id: int) -> Expense:
        expense = self.session.get(Expense, expense_id)
        if expense is None:
            raise RecordNotFound("Expense not found")
        if not expense.involves(self.user_id) and expense.created_by_id != self.user_id:
            raise NotAuthorized("Expense belongs to other users")
        return expense


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_for_month(self, year: int, month: int) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(
                Budget.user_id == self.user_id,
                Budget.year == year,
                Budget.month == month,
            )
            .order_by(Budget.category)
        )
        return list(self.session.scalars(stmt).all())

    def set_budget(self, data: BudgetIn, now: Optional[datetime] = None) -> Budget:
        now = now or local_now()
        category = data.category.strip()
        budget = self.session.scalar(
            select(Budget).where(
                Budget.user_id == self.user_id,
                Budget.category == category,
                Budget.year == now.year,
                Budget.month == now.month,
            )
        )
        if budget:
            budget.monthly_limit_cents = data.monthly_limit_cents
            budget.last_updated = now
        else:
            budget = Budget(
                user_id=self.user_id,
                category=category,
                year=now.year,
                month=now.month,
                monthly_limit_cents=data.monthly_limit_cents,
                spent_cents=0,
                last_updated=now,
            )
            self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def record_spend(
        self, category: str, amount_cents: int, on: Optional[datetime] = None
    ) -> bool:
        updated = record_budget_spend(
            self.session, self.user_id, category, amount_cents, on=on or local_now()
        )
        self.session.commit()
        return updated

    def spent_by_category_for_month(self, year: int, month: int) -> dict[str, int]:
        expenses = expenses_in_window(
            self.session, self.user_id, month_window(year, month)
        )
        return summarize(expenses, self.user_id).by_category

    def overview(self, now: Optional[datetime] = None) -> dict[str, BudgetLine]:
        now = now or local_now()
        limits = {
            budget.category: budget.monthly_limit_cents
            for budget in self.list_for_month(now.year, now.month)
        }
        spent = self.spent_by_category_for_month(now.year, now.month)
        return evaluate_budgets(limits, spent)

    def total_limit_for_month(self, year: int, month: int) -> Optional[int]:
        budgets = self.list_for_month(year, month)
        if not budgets:
            return None
        return sum(budget.monthly_limit_cents for budget in budgets)


class RecurringExpenseService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, recurring_id: int) -> RecurringExpense:
        return _get_owned(
            self.session, RecurringExpense, recurring_id, self.user_id, "Recurring expense"
        )

    def list(self) -> list[RecurringExpense]:
        stmt = (
            select(RecurringExpense)
            .options(
                selectinload(RecurringExpense.splits),
                selectinload(RecurringExpense.participants),
            )
            .where(RecurringExpense.user_id == self.user_id)
            .order_by(RecurringExpense.next_due, RecurringExpense.id)
        )
        return list(self.session.scalars(stmt).all())

    def create(
        self, data: RecurringExpenseIn, now: Optional[datetime] = None
    ) -> RecurringExpense:
        now = now or local_now()
        participant_ids = list(dict.fromkeys(data.participants))
        _require_users(
            self.session,
            [*participant_ids, *(split.user_id for split in data.splits)],
        )
        if data.group_id is not None:
            _require_group_member(self.session, data.group_id, self.user_id)
        participants = (
            list(
                self.session.scalars(select(User).where(User.id.in_(participant_ids)))
            )
            if participant_ids
            else []
        )

        template = RecurringExpense(
            user_id=self.user_id,
            description=data.description.strip(),
            amount_cents=data.amount_cents,
            category=data.category.strip(),
            frequency=data.frequency,
            group_id=data.group_id,
            split_type=data.split_type,
            next_due=calculate_next_due(data.frequency, now),
            last_created=None,
            is_active=True,
            participants=participants,
            splits=[
                RecurringSplit(
                    user_id=split.user_id,
                    amount_cents=split.amount_cents,
                    percentage=split.percentage,
                    position=index,
                )
                for index, split in enumerate(data.splits)
            ],
        )
        self.session.add(template)
        self.session.commit()
        self.session.refresh(template)
        return template

    def toggle(self, recurring_id: int, is_active: bool) -> RecurringExpense:
        template = self.get(recurring_id)
        template.is_active = is_active
        self.session.commit()
        return template

    def delete(self, recurring_id: int) -> None:
        template = self.get(recurring_id)
        self.session.execute(
            update(Expense)
            .where(Expense.recurring_expense_id == template.id)
            .values(recurring_expense_id=None)
            .execution_options(synchronize_session=False)
        )
        self.session.delete(template)
        self.session.commit()

    def materialize(self, recurring_id: int, now: Optional[datetime] = None) -> Expense:
        template = self.get(recurring_id)
        if not template.is_active:
            raise RecurringExpenseInactive("Recurring expense is not active")
        expense = RecurringEngine(self.session).materialize(template, self.user_id, now)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def due(self, now: Optional[datetime] = None) -> list[RecurringExpense]:
        return RecurringEngine(self.session).due_templates(now)

    def catch_up_all(self, now: Optional[datetime] = None) -> int:
        count = RecurringEngine(self.session).post_due(now)
        self.session.commit()
        return count


class SuggestionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, suggestion_id: int) -> ExpenseSuggestion:
        return _get_owned(
            self.session, ExpenseSuggestion, suggestion_id, self.user_id, "Suggestion"
        )

    def generate(self, now: Optional[datetime] = None) -> int:
        settings = get_settings()
        now = now or local_now()
        since = now - timedelta(days=settings.suggestion_window_days)
        recent = self.session.scalars(
            select(Expense)
            .where(Expense.paid_by_id == self.user_id, Expense.occurred_at >= since)
            .order_by(Expense.occurred_at, Expense.id)
        ).all()
        mined = mine_suggestions(recent, limit=settings.suggestion_limit)

        # Regeneration replaces the whole set, dismissed entries included.
        removed = self.session.execute(
            delete(ExpenseSuggestion).where(ExpenseSuggestion.user_id == self.user_id)
        ).rowcount
        for item in mined:
            self.session.add(
                ExpenseSuggestion(
                    user_id=self.user_id,
                    description=item.description,
                    category=item.category,
                    avg_amount_cents=item.avg_amount_cents,
                    frequency=item.frequency,
                    confidence=item.confidence,
                    based_on_json=json.dumps(item.expense_ids),
                    last_suggested=now,
                    is_active=True,
                )
            )
        self.session.commit()
        logger.info(
            f"suggestions_generated: user={self.user_id} scanned={len(recent)} "
            f"removed={removed} stored={len(mined)}"
        )
        return len(mined)

    def list_active(self, limit: int = 5) -> list[ExpenseSuggestion]:
        stmt = (
            select(ExpenseSuggestion)
            .where(
                ExpenseSuggestion.user_id == self.user_id,
                ExpenseSuggestion.is_active.is_(True),
            )
            .order_by(ExpenseSuggestion.confidence.desc(), ExpenseSuggestion.id)
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())

    def use(
        self,
        suggestion_id: int,
        data: SuggestionUseIn,
        now: Optional[datetime] = None,
    ) -> Expense:
        now = now or local_now()
        suggestion = self.get(suggestion_id)
        amount_cents = data.amount_cents or suggestion.avg_amount_cents
        expense = ExpenseService(self.session, self.user_id).create(
            ExpenseIn(
                description=suggestion.description,
                amount_cents=amount_cents,
                category=suggestion.category,
                occurred_at=now,
                paid_by_id=self.user_id,
                split_type=SplitType.equal,
                splits=[
                    SplitIn(user_id=user_id, amount_cents=share)
                    for user_id, share in split_equally(amount_cents, data.participants)
                ],
                group_id=data.group_id,
            ),
            now=now,
        )
        suggestion.last_suggested = now
        suggestion.is_active = False
        self.session.commit()
        return expense

    def dismiss(self, suggestion_id: int) -> None:
        suggestion = self.get(suggestion_id)
        suggestion.is_active = False
        self.session.commit()


class AnalyticsService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def compute(
        self, time_range: TimeRange, now: Optional[datetime] = None
    ) -> dict[str, object]:
        now = now or local_now()
        current, previous = resolve_time_range(time_range, now)
        current_summary = summarize(
            expenses_in_window(self.session, self.user_id, current), self.user_id
        )
        previous_summary = summarize(
            expenses_in_window(self.session, self.user_id, previous), self.user_id
        )
        budget_total = None
        if time_range == TimeRange.month:
            budget_total = BudgetService(self.session, self.user_id).total_limit_for_month(
                now.year, now.month
            )
        return compose_analytics(
            current_summary, previous_summary, budget_total_cents=budget_total
        )

    def expense_analytics(
        self, time_range: TimeRange, now: Optional[datetime] = None
    ) -> dict[str, object]:
        now = now or local_now()
        ttl = timedelta(seconds=get_settings().analytics_cache_ttl_secs)
        cached = self.session.scalar(
            select(AnalyticsCache).where(
                AnalyticsCache.user_id == self.user_id,
                AnalyticsCache.time_range == time_range.value,
            )
        )
        if cached and now - cached.last_updated < ttl:
            logger.debug(f"analytics_cache: hit user={self.user_id} range={time_range.value}")
            return json.loads(cached.payload_json)

        logger.debug(f"analytics_cache: miss user={self.user_id} range={time_range.value}")
        data = self.compute(time_range, now)
        payload = json.dumps(data)
        if cached:
            cached.payload_json = payload
            cached.last_updated = now
        else:
            self.session.add(
                AnalyticsCache(
                    user_id=self.user_id,
                    time_range=time_range.value,
                    payload_json=payload,
                    last_updated=now,
                )
            )
        self.session.commit()
        return data

    def spending_trends(
        self,
        time_range: TimeRange,
        group_by: TrendGrouping,
        now: Optional[datetime] = None,
    ) -> list[dict[str, object]]:
        now = now or local_now()
        buckets = trend_buckets(time_range, group_by, now)
        if not buckets:
            return []
        window = Period(buckets[0].start, buckets[-1].end)
        expenses = expenses_in_window(self.session, self.user_id, window)
        return bucket_totals(expenses, self.user_id, buckets)

    def clear_cache(self) -> int:
        removed = self.session.execute(
            delete(AnalyticsCache).where(AnalyticsCache.user_id == self.user_id)
        ).rowcount
        self.session.commit()
        return int(removed or 0)


class ReceiptService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        parser: Optional[ReceiptParser] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.parser = parser or StubReceiptParser()

    def parse(self, image: bytes, filename: str) -> dict[str, object]:
        return parse_receipt(
            self.parser, image, filename, base_url=get_settings().receipt_base_url
        )

    def attach(self, expense_id: int, data: ReceiptAttachIn) -> Expense:
        expense = self.session.get(Expense, expense_id)
        if expense is None:
            raise RecordNotFound("Expense not found")
        if expense.created_by_id != self.user_id:
            raise NotAuthorized("Only the creator can attach a receipt")
        receipt = data.receipt_data
        expense.receipt_image_url = data.receipt_image_url
        expense.receipt_text = receipt.extracted_text
        expense.receipt_confidence = receipt.confidence
        expense.receipt_merchant = receipt.merchant_name
        expense.receipt_amount_cents = receipt.extracted_amount_cents
        self.session.commit()
        return expense

    def list_with_receipts(self) -> list[Expense]:
        stmt = (
            select(Expense)
            .where(
                Expense.receipt_image_url.is_not(None),
                or_(
                    Expense.paid_by_id == self.user_id,
                    Expense.created_by_id == self.user_id,
                ),
            )
            .order_by(Expense.occurred_at.desc(), Expense.id.desc())
        )
        return list(self.session.scalars(stmt).all())

    def analyze(self) -> dict[str, object]:
        expenses = self.session.scalars(
            select(Expense).where(
                Expense.receipt_image_url.is_not(None),
                Expense.paid_by_id == self.user_id,
            )
        ).all()
        analysis: dict[str, object] = {
            "total_receipts_scanned": len(expenses),
            "average_confidence": 0.0,
            "top_merchants": {},
            "category_suggestion_accuracy": 0.0,
        }
        if not expenses:
            return analysis

        analysis["average_confidence"] = sum(
            e.receipt_confidence or 0 for e in expenses
        ) / len(expenses)

        merchants: dict[str, int] = {}
        for expense in expenses:
            if expense.receipt_merchant:
                merchants[expense.receipt_merchant] = (
                    merchants.get(expense.receipt_merchant, 0) + 1
                )
        analysis["top_merchants"] = dict(
            sorted(merchants.items(), key=lambda item: item[1], reverse=True)
        )

        with_merchant = [e for e in expenses if e.receipt_merchant]
        if with_merchant:
            matches = sum(
                1
                for e in with_merchant
                if category_from_merchant(e.receipt_merchant) == category_of(e)
            )
            analysis["category_suggestion_accuracy"] = matches / len(with_merchant)
        return analysis
