import json
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class SplitType(str, Enum):
    equal = "equal"
    percentage = "percentage"
    exact = "exact"


class RecurrenceFrequency(str, Enum):
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    yearly = "yearly"


class SuggestionFrequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    irregular = "irregular"


class GroupRole(str, Enum):
    admin = "admin"
    member = "member"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False, unique=True)
    image_url: Mapped[Optional[str]] = mapped_column(String(500))


class Group(Base, TimestampMixin):
    __tablename__ = "groups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    created_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)

    members: Mapped[list["GroupMember"]] = relationship(
        "GroupMember", back_populates="group", cascade="all, delete-orphan"
    )


class GroupMember(Base):
    __tablename__ = "group_members"

    group_id: Mapped[int] = mapped_column(ForeignKey("groups.id"), primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), primary_key=True)
    role: Mapped[GroupRole] = mapped_column(
        SAEnum(GroupRole), nullable=False, default=GroupRole.member
    )
    joined_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    group: Mapped["Group"] = relationship("Group", back_populates="members")


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    paid_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    created_by_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    split_type: Mapped[SplitType] = mapped_column(SAEnum(SplitType), nullable=False)
    group_id: Mapped[Optional[int]] = mapped_column(ForeignKey("groups.id"))
    recurring_expense_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_expenses.id", ondelete="SET NULL")
    )

    receipt_image_url: Mapped[Optional[str]] = mapped_column(String(500))
    receipt_text: Mapped[Optional[str]] = mapped_column(Text)
    receipt_confidence: Mapped[Optional[float]] = mapped_column(Float)
    receipt_merchant: Mapped[Optional[str]] = mapped_column(String(200))
    receipt_amount_cents: Mapped[Optional[int]] = mapped_column(Integer)

    splits: Mapped[list["ExpenseSplit"]] = relationship(
        "ExpenseSplit",
        back_populates="expense",
        cascade="all, delete-orphan",
        order_by="ExpenseSplit.position",
    )
    recurring_expense: Mapped[Optional["RecurringExpense"]] = relationship(
        "RecurringExpense", back_populates="expenses"
    )

    __table_args__ = (
        Index("ix_expenses_occurred_at", "occurred_at"),
        Index("ix_expenses_paid_by_occurred_at", "paid_by_id", "occurred_at"),
        Index("ix_expenses_category", "category"),
        Index("ix_expenses_recurring", "recurring_expense_id"),
        CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
    )

    def split_for(self, user_id: int) -> Optional["ExpenseSplit"]:
        for split in self.splits:
            if split.user_id == user_id:
                return split
        return None

    def involves(self, user_id: int) -> bool:
        return self.paid_by_id == user_id or self.split_for(user_id) is not None


class ExpenseSplit(Base):
    __tablename__ = "expense_splits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    expense_id: Mapped[int] = mapped_column(
        ForeignKey("expenses.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    expense: Mapped["Expense"] = relationship("Expense", back_populates="splits")

    __table_args__ = (
        Index("ix_expense_splits_user", "user_id"),
        CheckConstraint("amount_cents >= 0", name="ck_split_amount_positive"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    monthly_limit_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    spent_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "category", "year", "month", name="uq_budget_user_category_month"
        ),
        Index("ix_budget_user_month", "user_id", "year", "month"),
        CheckConstraint("monthly_limit_cents >= 0", name="ck_budget_limit_positive"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_month_range"),
    )


recurring_participants = Table(
    "recurring_participants",
    Base.metadata,
    Column(
        "recurring_expense_id",
        Integer,
        ForeignKey("recurring_expenses.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
)


class RecurringExpense(Base, TimestampMixin):
    __tablename__ = "recurring_expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    frequency: Mapped[RecurrenceFrequency] = mapped_column(
        SAEnum(RecurrenceFrequency), nullable=False
    )
    group_id: Mapped[Optional[int]] = mapped_column(ForeignKey("groups.id"))
    split_type: Mapped[SplitType] = mapped_column(SAEnum(SplitType), nullable=False)
    next_due: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_created: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    participants: Mapped[list["User"]] = relationship(
        "User", secondary=recurring_participants
    )
    splits: Mapped[list["RecurringSplit"]] = relationship(
        "RecurringSplit",
        back_populates="recurring_expense",
        cascade="all, delete-orphan",
        order_by="RecurringSplit.position",
    )
    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="recurring_expense", passive_deletes=True
    )

    __table_args__ = (
        Index("ix_recurring_user", "user_id"),
        Index("ix_recurring_active_next_due", "is_active", "next_due"),
        CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
    )


class RecurringSplit(Base):
    __tablename__ = "recurring_splits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recurring_expense_id: Mapped[int] = mapped_column(
        ForeignKey("recurring_expenses.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    percentage: Mapped[Optional[float]] = mapped_column(Float)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    recurring_expense: Mapped["RecurringExpense"] = relationship(
        "RecurringExpense", back_populates="splits"
    )


class ExpenseSuggestion(Base, TimestampMixin):
    __tablename__ = "expense_suggestions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    avg_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    frequency: Mapped[SuggestionFrequency] = mapped_column(
        SAEnum(SuggestionFrequency), nullable=False
    )
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    based_on_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    last_suggested: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        Index("ix_suggestions_user_active", "user_id", "is_active"),
        CheckConstraint(
            "confidence >= 0 AND confidence <= 1", name="ck_suggestion_confidence_range"
        ),
    )

    @property
    def based_on_expense_ids(self) -> list[int]:
        return [int(v) for v in json.loads(self.based_on_json or "[]")]


class AnalyticsCache(Base):
    __tablename__ = "analytics_cache"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    time_range: Mapped[str] = mapped_column(String(10), nullable=False)
    payload_json: Mapped[str] = mapped_column(Text, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "time_range", name="uq_analytics_user_range"),
    )
