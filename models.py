from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import Mapped, mapped_column

from database import Base


class ExpenseCategory(str, Enum):
    food = "Food"
    transportation = "Transportation"
    entertainment = "Entertainment"
    utilities = "Utilities"
    shopping = "Shopping"
    healthcare = "Healthcare"
    education = "Education"
    travel = "Travel"
    bike_repairing = "Bike Repairing"
    petrol = "Petrol"
    rent = "Rent"
    insurance = "Insurance"
    other = "Other"


CATEGORY_ENUM = SAEnum(
    ExpenseCategory,
    name="expensecategory",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
    validate_strings=True,
)

MIN_BUDGET_YEAR = 2020
DEFAULT_ALERT_THRESHOLD = 80


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[ExpenseCategory] = mapped_column(CATEGORY_ENUM, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(200))
    date: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        Index("ix_expenses_user_date", "user_id", "date"),
        Index("ix_expenses_user_category_date", "user_id", "category", "date"),
        CheckConstraint("amount >= 0", name="ck_expenses_amount_positive"),
        {"sqlite_autoincrement": True},
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category: Mapped[ExpenseCategory] = mapped_column(CATEGORY_ENUM, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    alert_threshold: Mapped[int] = mapped_column(
        Integer, default=DEFAULT_ALERT_THRESHOLD, nullable=False
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_budget_amount_positive"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_budget_month_range"),
        CheckConstraint(f"year >= {MIN_BUDGET_YEAR}", name="ck_budget_year_min"),
        CheckConstraint(
            "alert_threshold BETWEEN 0 AND 100", name="ck_budget_threshold_range"
        ),
        # Not unique: set_budget and cleanup_duplicates keep one row per key.
        Index("ix_budget_user_category_month", "user_id", "category", "year", "month"),
        {"sqlite_autoincrement": True},
    )
