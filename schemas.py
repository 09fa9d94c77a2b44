from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel

from budgeting import BudgetAlert, BudgetStatus
from models import (
    DEFAULT_ALERT_THRESHOLD,
    MIN_BUDGET_YEAR,
    Budget,
    Expense,
    ExpenseCategory,
)


Money = Annotated[
    Decimal, PlainSerializer(lambda v: float(v), return_type=float, when_used="json")
]

ExpenseSortField = Literal["date", "amount", "title", "category", "createdAt"]
SortOrder = Literal["asc", "desc"]


class ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExpenseIn(ApiModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=100)
    category: ExpenseCategory
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    description: Optional[str] = Field(default=None, max_length=200)
    date: Optional[datetime] = None


class ExpenseUpdate(ApiModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=100)
    category: Optional[ExpenseCategory] = None
    amount: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=12, decimal_places=2
    )
    description: Optional[str] = Field(default=None, max_length=200)
    date: Optional[datetime] = None


class BudgetIn(ApiModel):
    category: ExpenseCategory
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    month: int = Field(..., ge=1, le=12)
    year: int = Field(..., ge=MIN_BUDGET_YEAR)
    alert_threshold: int = Field(default=DEFAULT_ALERT_THRESHOLD, ge=0, le=100)


class BudgetUpdate(ApiModel):
    amount: Optional[Decimal] = Field(
        default=None, ge=0, max_digits=12, decimal_places=2
    )
    alert_threshold: Optional[int] = Field(default=None, ge=0, le=100)
    is_active: Optional[bool] = None


class ExpenseOut(ApiModel):
    id: int
    user: int
    title: str
    category: ExpenseCategory
    amount: Money
    description: Optional[str] = None
    date: datetime
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, expense: Expense) -> "ExpenseOut":
        return cls(
            id=expense.id,
            user=expense.user_id,
            title=expense.title,
            category=expense.category,
            amount=expense.amount,
            description=expense.description,
            date=expense.date,
            created_at=expense.created_at,
            updated_at=expense.updated_at,
        )


class ExpensePageOut(ApiModel):
    expenses: list[ExpenseOut]
    total_pages: int
    current_page: int
    total: int


class BudgetOut(ApiModel):
    id: int
    user: int
    category: ExpenseCategory
    amount: Money
    month: int
    year: int
    alert_threshold: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, budget: Budget) -> "BudgetOut":
        return cls(**_budget_fields(budget))


class EvaluatedBudgetOut(BudgetOut):
    spent_amount: Money
    remaining_amount: Money
    percentage: int
    is_over_budget: bool
    is_near_limit: bool

    @classmethod
    def from_status(cls, status: BudgetStatus) -> "EvaluatedBudgetOut":
        return cls(
            **_budget_fields(status.budget),
            spent_amount=status.spent_amount,
            remaining_amount=status.remaining_amount,
            percentage=status.percentage,
            is_over_budget=status.is_over_budget,
            is_near_limit=status.is_near_limit,
        )


def _budget_fields(budget: Budget) -> dict[str, object]:
    return {
        "id": budget.id,
        "user": budget.user_id,
        "category": budget.category,
        "amount": budget.amount,
        "month": budget.month,
        "year": budget.year,
        "alert_threshold": budget.alert_threshold,
        "is_active": budget.is_active,
        "created_at": budget.created_at,
        "updated_at": budget.updated_at,
    }


class BudgetListOut(ApiModel):
    budgets: list[EvaluatedBudgetOut]
    month: int
    year: int


class BudgetWriteOut(ApiModel):
    message: str
    budget: BudgetOut


class AlertOut(ApiModel):
    category: ExpenseCategory
    budget_amount: Money
    spent_amount: Money
    percentage: int
    is_over_budget: bool
    is_near_limit: bool
    alert_threshold: int

    @classmethod
    def from_alert(cls, alert: BudgetAlert) -> "AlertOut":
        return cls(
            category=alert.category,
            budget_amount=alert.budget_amount,
            spent_amount=alert.spent_amount,
            percentage=alert.percentage,
            is_over_budget=alert.is_over_budget,
            is_near_limit=alert.is_near_limit,
            alert_threshold=alert.alert_threshold,
        )


class AlertsOut(ApiModel):
    alerts: list[AlertOut]


class ResetOut(ApiModel):
    message: str
    deleted_count: int


class CleanupOut(ApiModel):
    message: str
    duplicates_removed: int
    total_budgets: int


class CategoryStatOut(ApiModel):
    total: Money
    count: int


class ExpenseStatsOut(ApiModel):
    month: int
    year: int
    total_expenses: Money
    category_stats: dict[str, CategoryStatOut]
    budget_alerts: list[AlertOut]
