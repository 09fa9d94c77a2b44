from __future__ import annotations

import logging
import math
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterator, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from budgeting import (
    ZERO,
    BudgetAlert,
    BudgetStatus,
    aggregate_spend,
    alert_for,
    evaluate_budgets,
    select_alerts,
)
from models import MIN_BUDGET_YEAR, Budget, Expense, ExpenseCategory
from periods import BudgetPeriod, resolve_budget_period
from schemas import BudgetIn, BudgetUpdate, ExpenseIn, ExpenseUpdate


logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    pass


class NotFoundError(ValueError):
    pass


class StoreError(RuntimeError):
    pass


def get_current_user_id() -> int:
    return 1


def _naive_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


@contextmanager
def _store_guard(session: Session, event: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        session.rollback()
        logger.exception(f"store_error: event={event}")
        raise StoreError(f"Could not complete {event}") from exc


def _commit(session: Session, event: str) -> None:
    with _store_guard(session, event):
        session.commit()


def resolve_checked_period(
    month: Optional[object] = None, year: Optional[object] = None
) -> BudgetPeriod:
    try:
        month = int(month) if month not in (None, "") else None
        year = int(year) if year not in (None, "") else None
    except (TypeError, ValueError) as exc:
        raise ValidationError("Month and year must be whole numbers") from exc
    if month is not None and not 1 <= month <= 12:
        raise ValidationError("Month must be between 1 and 12")
    if year is not None and year < MIN_BUDGET_YEAR:
        raise ValidationError(f"Year must be {MIN_BUDGET_YEAR} or later")
    return resolve_budget_period(month, year)


def budget_owner_ids(session: Session) -> list[int]:
    stmt = select(Budget.user_id).distinct().order_by(Budget.user_id)
    return list(session.scalars(stmt).all())


@dataclass
class ExpenseFilters:
    category: Optional[ExpenseCategory] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass(frozen=True)
class ExpensePage:
    items: list[Expense]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


@dataclass(frozen=True)
class CategoryStat:
    total: Decimal
    count: int


@dataclass(frozen=True)
class ExpenseStats:
    period: BudgetPeriod
    total_expenses: Decimal
    category_stats: dict[ExpenseCategory, CategoryStat]
    budget_statuses: list[BudgetStatus]
    budget_alerts: list[BudgetAlert]


@dataclass(frozen=True)
class CleanupResult:
    duplicates_removed: int
    total_budgets: int


class ExpenseService:
    SORT_COLUMNS = {
        "date": Expense.date,
        "amount": Expense.amount,
        "title": Expense.title,
        "category": Expense.category,
        "createdAt": Expense.created_at,
    }

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def create(self, data: ExpenseIn) -> Expense:
        expense = Expense(
            user_id=self.user_id,
            title=data.title,
            category=data.category,
            amount=data.amount,
            description=data.description or None,
            date=_naive_utc(data.date) if data.date else datetime.utcnow(),
        )
        self.session.add(expense)
        _commit(self.session, "expense_create")
        self.session.refresh(expense)
        logger.info(
            f"expense_created: user={self.user_id} id={expense.id} "
            f"category={expense.category.value}"
        )
        return expense

    def get(self, expense_id: int) -> Expense:
        with _store_guard(self.session, "expense_get"):
            expense = self.session.scalar(
                select(Expense).where(
                    Expense.user_id == self.user_id, Expense.id == expense_id
                )
            )
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def list(
        self,
        filters: Optional[ExpenseFilters] = None,
        *,
        sort_by: str = "date",
        sort_order: str = "desc",
        page: int = 1,
        limit: int = 10,
    ) -> ExpensePage:
        filters = filters or ExpenseFilters()
        column = self.SORT_COLUMNS.get(sort_by)
        if column is None:
            raise ValidationError(f"Cannot sort expenses by {sort_by!r}")
        if sort_order not in ("asc", "desc"):
            raise ValidationError("Sort order must be 'asc' or 'desc'")
        if page < 1:
            raise ValidationError("Page must be 1 or greater")
        if not 1 <= limit <= 100:
            raise ValidationError("Limit must be between 1 and 100")

        conditions = [Expense.user_id == self.user_id]
        if filters.category:
            conditions.append(Expense.category == filters.category)
        if filters.start:
            conditions.append(Expense.date >= _naive_utc(filters.start))
        if filters.end:
            conditions.append(Expense.date <= _naive_utc(filters.end))

        ordering = column.asc() if sort_order == "asc" else column.desc()
        stmt = (
            select(Expense)
            .where(*conditions)
            .order_by(ordering, Expense.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        with _store_guard(self.session, "expense_list"):
            total = int(
                self.session.execute(
                    select(func.count(Expense.id)).where(*conditions)
                ).scalar_one()
                or 0
            )
            items = list(self.session.scalars(stmt).all())
        return ExpensePage(items=items, total=total, page=page, limit=limit)

    def update(self, expense_id: int, data: ExpenseUpdate) -> Expense:
        expense = self.get(expense_id)
        changes = data.model_dump(exclude_unset=True)
        for field in ("title", "category", "amount", "date"):
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field.capitalize()} cannot be empty")
        for field, value in changes.items():
            if field == "description" and not value:
                value = None
            elif field == "date":
                value = _naive_utc(value)
            setattr(expense, field, value)
        _commit(self.session, "expense_update")
        self.session.refresh(expense)
        logger.info(f"expense_updated: user={self.user_id} id={expense.id}")
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        _commit(self.session, "expense_delete")
        logger.info(f"expense_deleted: user={self.user_id} id={expense_id}")

    def for_period(self, period: BudgetPeriod) -> list[Expense]:
        stmt = select(Expense).where(
            Expense.user_id == self.user_id,
            Expense.date.between(period.start, period.end),
        )
        with _store_guard(self.session, "expense_period"):
            return list(self.session.scalars(stmt).all())

    def spent_by_category(self, period: BudgetPeriod) -> dict[ExpenseCategory, Decimal]:
        return aggregate_spend(self.for_period(period), period)

    def stats(
        self, month: Optional[object] = None, year: Optional[object] = None
    ) -> ExpenseStats:
        period = resolve_checked_period(month, year)
        expenses = self.for_period(period)
        spent = aggregate_spend(expenses, period)
        counts: dict[ExpenseCategory, int] = defaultdict(int)
        for expense in expenses:
            counts[expense.category] += 1
        category_stats = {
            category: CategoryStat(total=total, count=counts[category])
            for category, total in spent.items()
        }
        budgets = BudgetService(self.session, self.user_id).budgets_for_period(
            period, active_only=True
        )
        statuses = evaluate_budgets(budgets, spent)
        return ExpenseStats(
            period=period,
            total_expenses=sum(spent.values(), ZERO),
            category_stats=category_stats,
            budget_statuses=statuses,
            budget_alerts=[alert_for(status) for status in statuses],
        )


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _key_conditions(self, category: ExpenseCategory, month: int, year: int):
        return (
            Budget.user_id == self.user_id,
            Budget.category == category,
            Budget.month == month,
            Budget.year == year,
        )

    def get(self, budget_id: int) -> Budget:
        with _store_guard(self.session, "budget_get"):
            budget = self.session.scalar(
                select(Budget).where(
                    Budget.user_id == self.user_id, Budget.id == budget_id
                )
            )
        if not budget:
            raise NotFoundError("Budget not found")
        return budget

    def budgets_for_period(
        self, period: BudgetPeriod, *, active_only: bool = False
    ) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(
                Budget.user_id == self.user_id,
                Budget.month == period.month,
                Budget.year == period.year,
            )
            .order_by(Budget.category.asc(), Budget.id.asc())
        )
        if active_only:
            stmt = stmt.where(Budget.is_active.is_(True))
        with _store_guard(self.session, "budget_period"):
            return list(self.session.scalars(stmt).all())

    def list_all(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.year.desc(), Budget.month.desc(), Budget.category.asc())
        )
        with _store_guard(self.session, "budget_list"):
            return list(self.session.scalars(stmt).all())

    def evaluated_for_period(
        self, month: Optional[object] = None, year: Optional[object] = None
    ) -> tuple[BudgetPeriod, list[BudgetStatus]]:
        period = resolve_checked_period(month, year)
        budgets = self.budgets_for_period(period)
        spent = ExpenseService(self.session, self.user_id).spent_by_category(period)
        return period, evaluate_budgets(budgets, spent)

    def alerts(self) -> list[BudgetAlert]:
        """Alerts for the current calendar month, from active budgets only."""
        period = resolve_budget_period()
        budgets = self.budgets_for_period(period, active_only=True)
        spent = ExpenseService(self.session, self.user_id).spent_by_category(period)
        return select_alerts(evaluate_budgets(budgets, spent))

    def set_budget(self, data: BudgetIn) -> Budget:
        """Replace whatever is stored for the key with a single fresh record.

        The delete and the insert share one transaction; if either fails the
        previous record is kept and ``StoreError`` is raised.
        """
        try:
            result = self.session.execute(
                delete(Budget).where(
                    *self._key_conditions(data.category, data.month, data.year)
                )
            )
            replaced = result.rowcount or 0
            budget = Budget(
                user_id=self.user_id,
                category=data.category,
                amount=data.amount,
                month=data.month,
                year=data.year,
                alert_threshold=data.alert_threshold,
                is_active=True,
            )
            self.session.add(budget)
            self.session.flush()
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(
                f"budget_set_failed: user={self.user_id} "
                f"category={data.category.value} month={data.month} year={data.year}"
            )
            raise StoreError("Budget could not be saved") from exc
        self.session.refresh(budget)
        logger.info(
            f"budget_set: user={self.user_id} category={data.category.value} "
            f"month={data.month} year={data.year} replaced={replaced}"
        )
        return budget

    def upsert_in_place(self, data: BudgetIn) -> Budget:
        """Update the newest record for the key, keeping its id and created_at."""
        stmt = (
            select(Budget)
            .where(*self._key_conditions(data.category, data.month, data.year))
            .order_by(Budget.updated_at.desc(), Budget.id.desc())
        )
        with _store_guard(self.session, "budget_upsert"):
            existing = self.session.scalars(stmt).all()
        if not existing:
            return self.set_budget(data)

        budget, stale = existing[0], existing[1:]
        for extra in stale:
            self.session.delete(extra)
        budget.amount = data.amount
        budget.alert_threshold = data.alert_threshold
        budget.is_active = True
        budget.updated_at = datetime.utcnow()
        _commit(self.session, "budget_upsert")
        self.session.refresh(budget)
        logger.info(
            f"budget_upserted: user={self.user_id} id={budget.id} "
            f"duplicates_removed={len(stale)}"
        )
        return budget

    def update(self, budget_id: int, data: BudgetUpdate) -> Budget:
        budget = self.get(budget_id)
        changes = data.model_dump(exclude_unset=True)
        for field, value in changes.items():
            if value is None:
                raise ValidationError(f"{field} cannot be null")
            setattr(budget, field, value)
        _commit(self.session, "budget_update")
        self.session.refresh(budget)
        logger.info(f"budget_updated: user={self.user_id} id={budget.id}")
        return budget

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        _commit(self.session, "budget_delete")
        logger.info(f"budget_deleted: user={self.user_id} id={budget_id}")

    def reset(self) -> int:
        with _store_guard(self.session, "budget_reset"):
            result = self.session.execute(
                delete(Budget).where(Budget.user_id == self.user_id)
            )
            deleted = result.rowcount or 0
            self.session.commit()
        logger.info(f"budget_reset: user={self.user_id} deleted={deleted}")
        return deleted

    def cleanup_duplicates(self) -> CleanupResult:
        budgets = self.list_all()
        groups: dict[tuple[ExpenseCategory, int, int], list[Budget]] = defaultdict(
            list
        )
        for budget in budgets:
            groups[(budget.category, budget.month, budget.year)].append(budget)

        removed = 0
        for (category, month, year), members in groups.items():
            if len(members) < 2:
                continue
            members.sort(key=lambda b: (b.updated_at, b.id), reverse=True)
            keep = members[0]
            for duplicate in members[1:]:
                self.session.delete(duplicate)
                removed += 1
            logger.info(
                f"budget_duplicates: user={self.user_id} category={category.value} "
                f"month={month} year={year} kept={keep.id} "
                f"removed={len(members) - 1}"
            )
        if removed:
            _commit(self.session, "budget_cleanup")
        logger.info(
            f"budget_cleanup: user={self.user_id} duplicates_removed={removed}"
        )
        return CleanupResult(
            duplicates_removed=removed, total_budgets=len(budgets) - removed
        )
