"""initial expenses and budgets

Revision ID: 202606010900
Revises:
Create Date: 2026-06-01 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202606010900"
down_revision = None
branch_labels = None
depends_on = None


CATEGORIES = (
    "Food",
    "Transportation",
    "Entertainment",
    "Utilities",
    "Shopping",
    "Healthcare",
    "Education",
    "Travel",
    "Bike Repairing",
    "Petrol",
    "Rent",
    "Insurance",
    "Other",
)


def upgrade() -> None:
    category = sa.Enum(*CATEGORIES, name="expensecategory")

    op.create_table(
        "expenses",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("category", category, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=True),
        sa.Column("date", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_expenses_amount_positive"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_expenses_user_date", "expenses", ["user_id", "date"])
    op.create_index(
        "ix_expenses_user_category_date",
        "expenses",
        ["user_id", "category", "date"],
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("category", category, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column(
            "alert_threshold", sa.Integer(), nullable=False, server_default="80"
        ),
        sa.Column(
            "is_active", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount >= 0", name="ck_budget_amount_positive"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_month_range"),
        sa.CheckConstraint("year >= 2020", name="ck_budget_year_min"),
        sa.CheckConstraint(
            "alert_threshold BETWEEN 0 AND 100", name="ck_budget_threshold_range"
        ),
        sqlite_autoincrement=True,
    )
    # Not unique: set_budget and cleanup_duplicates keep one row per key.
    op.create_index(
        "ix_budget_user_category_month",
        "budgets",
        ["user_id", "category", "year", "month"],
    )


def downgrade() -> None:
    op.drop_index("ix_budget_user_category_month", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_expenses_user_category_date", table_name="expenses")
    op.drop_index("ix_expenses_user_date", table_name="expenses")
    op.drop_table("expenses")
