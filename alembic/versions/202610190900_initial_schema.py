"""initial splitr schema

Revision ID: 202610190900
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202610190900"
down_revision = None
branch_labels = None
depends_on = None


SPLIT_TYPE = sa.Enum("equal", "percentage", "exact", name="splittype")
FREQUENCY = sa.Enum("weekly", "biweekly", "monthly", "yearly", name="recurrencefrequency")
SUGGESTION_FREQUENCY = sa.Enum(
    "daily", "weekly", "monthly", "irregular", name="suggestionfrequency"
)
GROUP_ROLE = sa.Enum("admin", "member", name="grouprole")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(254), nullable=False, unique=True),
        sa.Column("image_url", sa.String(500)),
        *_timestamps(),
    )

    op.create_table(
        "groups",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column(
            "created_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False
        ),
        *_timestamps(),
    )
    op.create_table(
        "group_members",
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("groups.id"), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), primary_key=True),
        sa.Column("role", GROUP_ROLE, nullable=False),
        sa.Column("joined_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "recurring_expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("description", sa.String(200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("frequency", FREQUENCY, nullable=False),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("groups.id")),
        sa.Column("split_type", SPLIT_TYPE, nullable=False),
        sa.Column("next_due", sa.DateTime(), nullable=False),
        sa.Column("last_created", sa.DateTime()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_recurring_amount_positive"),
    )
    op.create_index("ix_recurring_user", "recurring_expenses", ["user_id"])
    op.create_index(
        "ix_recurring_active_next_due", "recurring_expenses", ["is_active", "next_due"]
    )
    op.create_table(
        "recurring_splits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "recurring_expense_id",
            sa.Integer(),
            sa.ForeignKey("recurring_expenses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("percentage", sa.Float()),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_table(
        "recurring_participants",
        sa.Column(
            "recurring_expense_id",
            sa.Integer(),
            sa.ForeignKey("recurring_expenses.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), primary_key=True),
    )

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("description", sa.String(200), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(100)),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("paid_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column(
            "created_by_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("split_type", SPLIT_TYPE, nullable=False),
        sa.Column("group_id", sa.Integer(), sa.ForeignKey("groups.id")),
        sa.Column(
            "recurring_expense_id",
            sa.Integer(),
            sa.ForeignKey("recurring_expenses.id", ondelete="SET NULL"),
        ),
        sa.Column("receipt_image_url", sa.String(500)),
        sa.Column("receipt_text", sa.Text()),
        sa.Column("receipt_confidence", sa.Float()),
        sa.Column("receipt_merchant", sa.String(200)),
        sa.Column("receipt_amount_cents", sa.Integer()),
        *_timestamps(),
        sa.CheckConstraint("amount_cents >= 0", name="ck_expenses_amount_positive"),
    )
    op.create_index("ix_expenses_occurred_at", "expenses", ["occurred_at"])
    op.create_index(
        "ix_expenses_paid_by_occurred_at", "expenses", ["paid_by_id", "occurred_at"]
    )
    op.create_index("ix_expenses_category", "expenses", ["category"])
    op.create_index("ix_expenses_recurring", "expenses", ["recurring_expense_id"])
    op.create_table(
        "expense_splits",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "expense_id",
            sa.Integer(),
            sa.ForeignKey("expenses.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("paid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.CheckConstraint("amount_cents >= 0", name="ck_split_amount_positive"),
    )
    op.create_index("ix_expense_splits_user", "expense_splits", ["user_id"])

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("monthly_limit_cents", sa.Integer(), nullable=False),
        sa.Column("spent_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_updated", sa.DateTime(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "category", "year", "month", name="uq_budget_user_category_month"
        ),
        sa.CheckConstraint("monthly_limit_cents >= 0", name="ck_budget_limit_positive"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_month_range"),
    )
    op.create_index("ix_budget_user_month", "budgets", ["user_id", "year", "month"])

    op.create_table(
        "expense_suggestions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("description", sa.String(200), nullable=False),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("avg_amount_cents", sa.Integer(), nullable=False),
        sa.Column("frequency", SUGGESTION_FREQUENCY, nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("based_on_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("last_suggested", sa.DateTime(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint(
            "confidence >= 0 AND confidence <= 1", name="ck_suggestion_confidence_range"
        ),
    )
    op.create_index(
        "ix_suggestions_user_active", "expense_suggestions", ["user_id", "is_active"]
    )

    op.create_table(
        "analytics_cache",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("time_range", sa.String(10), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("last_updated", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("user_id", "time_range", name="uq_analytics_user_range"),
    )


def downgrade() -> None:
    op.drop_table("analytics_cache")
    op.drop_index("ix_suggestions_user_active", table_name="expense_suggestions")
    op.drop_table("expense_suggestions")
    op.drop_index("ix_budget_user_month", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_expense_splits_user", table_name="expense_splits")
    op.drop_table("expense_splits")
    for name in (
        "ix_expenses_recurring",
        "ix_expenses_category",
        "ix_expenses_paid_by_occurred_at",
        "ix_expenses_occurred_at",
    ):
        op.drop_index(name, table_name="expenses")
    op.drop_table("expenses")
    op.drop_table("recurring_participants")
    op.drop_table("recurring_splits")
    op.drop_index("ix_recurring_active_next_due", table_name="recurring_expenses")
    op.drop_index("ix_recurring_user", table_name="recurring_expenses")
    op.drop_table("recurring_expenses")
    op.drop_table("group_members")
    op.drop_table("groups")
    op.drop_table("users")
