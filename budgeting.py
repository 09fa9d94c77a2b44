from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Mapping, Optional, Protocol, Union

from models import ExpenseCategory
from periods import BudgetPeriod


Number = Union[Decimal, int, float, str]

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class SpendRecord(Protocol):
    category: ExpenseCategory
    amount: Number
    date: datetime


class BudgetRecord(Protocol):
    category: ExpenseCategory
    amount: Number
    alert_threshold: int


def to_decimal(value: Optional[Number]) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    # str() first so 0.1 stays 0.1 instead of its binary expansion
    return Decimal(str(value))


def aggregate_spend(
    expenses: Iterable[SpendRecord], period: Optional[BudgetPeriod] = None
) -> dict[ExpenseCategory, Decimal]:
    """Sum expense amounts per category.

    When ``period`` is given, records dated outside it are skipped. Categories
    without any expense are left out of the result.
    """
    totals: dict[ExpenseCategory, Decimal] = {}
    for expense in expenses:
        if period is not None and not period.contains(expense.date):
            continue
        category = ExpenseCategory(expense.category)
        totals[category] = totals.get(category, ZERO) + to_decimal(expense.amount)
    return totals


def spend_percentage(spent: Number, amount: Number) -> int:
    budget_amount = to_decimal(amount)
    if budget_amount <= ZERO:
        return 0
    ratio = to_decimal(spent) / budget_amount * HUNDRED
    return int(ratio.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class BudgetStatus:
    budget: BudgetRecord
    spent_amount: Decimal
    remaining_amount: Decimal
    percentage: int
    is_over_budget: bool
    is_near_limit: bool

    @property
    def category(self) -> ExpenseCategory:
        return ExpenseCategory(self.budget.category)


def evaluate_budget(
    budget: BudgetRecord, spent_by_category: Mapping[ExpenseCategory, Decimal]
) -> BudgetStatus:
    amount = to_decimal(budget.amount)
    spent = to_decimal(spent_by_category.get(ExpenseCategory(budget.category)))
    percentage = spend_percentage(spent, amount)
    disabled = amount <= ZERO
    return BudgetStatus(
        budget=budget,
        spent_amount=spent,
        remaining_amount=max(ZERO, amount - spent),
        percentage=percentage,
        is_over_budget=not disabled and percentage > 100,
        is_near_limit=not disabled and percentage >= budget.alert_threshold,
    )


def evaluate_budgets(
    budgets: Iterable[BudgetRecord],
    spent_by_category: Mapping[ExpenseCategory, Decimal],
) -> list[BudgetStatus]:
    return [evaluate_budget(budget, spent_by_category) for budget in budgets]


@dataclass(frozen=True)
class BudgetAlert:
    category: ExpenseCategory
    budget_amount: Decimal
    spent_amount: Decimal
    percentage: int
    is_over_budget: bool
    is_near_limit: bool
    alert_threshold: int


def alert_for(status: BudgetStatus) -> BudgetAlert:
    return BudgetAlert(
        category=status.category,
        budget_amount=to_decimal(status.budget.amount),
        spent_amount=status.spent_amount,
        percentage=status.percentage,
        is_over_budget=status.is_over_budget,
        is_near_limit=status.is_near_limit,
        alert_threshold=status.budget.alert_threshold,
    )


def select_alerts(statuses: Iterable[BudgetStatus]) -> list[BudgetAlert]:
    alerts = [
        alert_for(status)
        for status in statuses
        if status.is_over_budget or status.is_near_limit
    ]
    alerts.sort(
        key=lambda a: (not a.is_over_budget, -a.percentage, a.category.value)
    )
    return alerts
