from datetime import datetime, time
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import Base
from models import Budget, ExpenseCategory
from periods import local_today
from schemas import BudgetIn, BudgetUpdate, ExpenseIn
from services import (
    BudgetService,
    ExpenseService,
    NotFoundError,
    StoreError,
    ValidationError,
)


def _session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _rows_for_key(session: Session, user_id: int, category, month: int, year: int):
    return session.scalars(
        select(Budget).where(
            Budget.user_id == user_id,
            Budget.category == category,
            Budget.month == month,
            Budget.year == year,
        )
    ).all()


def test_setting_same_budget_twice_keeps_one_record_with_latest_values() -> None:
    with _session() as session:
        budgets = BudgetService(session, user_id=1)
        first = budgets.set_budget(
            BudgetIn(category="Food", amount=Decimal("500"), month=5, year=2024)
        )
        first_id = first.id
        second = budgets.set_budget(
            BudgetIn(
                category="Food",
                amount=Decimal("800"),
                month=5,
                year=2024,
                alert_threshold=90,
            )
        )

        rows = _rows_for_key(session, 1, ExpenseCategory.food, 5, 2024)
        assert len(rows) == 1
        assert rows[0].id == second.id
        assert rows[0].id != first_id
        assert rows[0].amount == Decimal("800")
        assert rows[0].alert_threshold == 90
        assert rows[0].is_active is True


def test_set_budget_replaces_existing_duplicates() -> None:
    with _session() as session:
        session.add_all(
            [
                Budget(
                    user_id=1,
                    category=ExpenseCategory.rent,
                    amount=Decimal("100"),
                    month=5,
                    year=2024,
                )
                for _ in range(3)
            ]
        )
        session.commit()

        BudgetService(session, user_id=1).set_budget(
            BudgetIn(category="Rent", amount=Decimal("1200"), month=5, year=2024)
        )

        rows = _rows_for_key(session, 1, ExpenseCategory.rent, 5, 2024)
        assert [r.amount for r in rows] == [Decimal("1200")]


def test_set_budget_does_not_touch_other_users_or_periods() -> None:
    with _session() as session:
        BudgetService(session, user_id=2).set_budget(
            BudgetIn(category="Food", amount=Decimal("50"), month=5, year=2024)
        )
        BudgetService(session, user_id=1).set_budget(
            BudgetIn(category="Food", amount=Decimal("60"), month=6, year=2024)
        )
        BudgetService(session, user_id=1).set_budget(
            BudgetIn(category="Food", amount=Decimal("70"), month=5, year=2024)
        )

        assert len(session.scalars(select(Budget)).all()) == 3


def test_failed_insert_keeps_previous_budget(monkeypatch) -> None:
    with _session() as session:
        budgets = BudgetService(session, user_id=1)
        original = budgets.set_budget(
            BudgetIn(category="Utilities", amount=Decimal("90"), month=5, year=2024)
        )
        original_id = original.id

        real_flush = session.flush

        def failing_flush(*args, **kwargs):
            if any(isinstance(obj, Budget) for obj in session.new):
                raise SQLAlchemyError("disk full")
            return real_flush(*args, **kwargs)

        with monkeypatch.context() as patch:
            patch.setattr(session, "flush", failing_flush)
            with pytest.raises(StoreError):
                budgets.set_budget(
                    BudgetIn(
                        category="Utilities", amount=Decimal("10"), month=5, year=2024
                    )
                )

        rows = _rows_for_key(session, 1, ExpenseCategory.utilities, 5, 2024)
        assert [r.id for r in rows] == [original_id]
        assert rows[0].amount == Decimal("90")


def test_upsert_in_place_preserves_identity() -> None:
    with _session() as session:
        budgets = BudgetService(session, user_id=1)
        created = budgets.upsert_in_place(
            BudgetIn(category="Travel", amount=Decimal("300"), month=7, year=2025)
        )
        created_at = created.created_at

        updated = budgets.upsert_in_place(
            BudgetIn(
                category="Travel",
                amount=Decimal("450"),
                month=7,
                year=2025,
                alert_threshold=60,
            )
        )

        assert updated.id == created.id
        assert updated.created_at == created_at
        assert updated.amount == Decimal("450")
        assert updated.alert_threshold == 60
        assert len(_rows_for_key(session, 1, ExpenseCategory.travel, 7, 2025)) == 1


def test_cleanup_keeps_most_recently_updated_record() -> None:
    with _session() as session:
        t1 = datetime(2024, 5, 1, 9, 0)
        t2 = datetime(2024, 5, 2, 9, 0)
        t3 = datetime(2024, 5, 3, 9, 0)
        rows = [
            Budget(
                user_id=7,
                category=ExpenseCategory.rent,
                amount=Decimal(amount),
                month=5,
                year=2024,
                created_at=stamp,
                updated_at=stamp,
            )
            for amount, stamp in (("1000", t2), ("1200", t3), ("900", t1))
        ]
        session.add_all(rows)
        session.commit()
        newest_id = rows[1].id

        result = BudgetService(session, user_id=7).cleanup_duplicates()

        assert result.duplicates_removed == 2
        assert result.total_budgets == 1
        remaining = _rows_for_key(session, 7, ExpenseCategory.rent, 5, 2024)
        assert [r.id for r in remaining] == [newest_id]
        assert remaining[0].amount == Decimal("1200")


def test_cleanup_is_idempotent_and_scoped_to_user() -> None:
    with _session() as session:
        for user_id in (1, 1, 2, 2):
            session.add(
                Budget(
                    user_id=user_id,
                    category=ExpenseCategory.food,
                    amount=Decimal("100"),
                    month=1,
                    year=2025,
                )
            )
        session.commit()

        budgets = BudgetService(session, user_id=1)
        assert budgets.cleanup_duplicates().duplicates_removed == 1
        assert budgets.cleanup_duplicates().duplicates_removed == 0
        assert len(_rows_for_key(session, 2, ExpenseCategory.food, 1, 2025)) == 2


def test_cleanup_breaks_timestamp_ties_by_latest_insert() -> None:
    with _session() as session:
        stamp = datetime(2025, 1, 5, 8, 0)
        rows = [
            Budget(
                user_id=1,
                category=ExpenseCategory.other,
                amount=Decimal(amount),
                month=1,
                year=2025,
                created_at=stamp,
                updated_at=stamp,
            )
            for amount in ("10", "20")
        ]
        session.add_all(rows)
        session.commit()

        BudgetService(session, user_id=1).cleanup_duplicates()

        remaining = _rows_for_key(session, 1, ExpenseCategory.other, 1, 2025)
        assert [r.amount for r in remaining] == [Decimal("20")]


def test_reset_removes_every_budget_for_user() -> None:
    with _session() as session:
        budgets = BudgetService(session, user_id=3)
        for category in ("Food", "Rent", "Petrol", "Travel", "Other"):
            budgets.set_budget(
                BudgetIn(category=category, amount=Decimal("10"), month=2, year=2025)
            )
        BudgetService(session, user_id=4).set_budget(
            BudgetIn(category="Food", amount=Decimal("10"), month=2, year=2025)
        )

        assert budgets.reset() == 5
        assert budgets.list_all() == []
        _, statuses = budgets.evaluated_for_period(2, 2025)
        assert statuses == []
        assert len(BudgetService(session, user_id=4).list_all()) == 1


def test_failed_reset_keeps_budgets_and_raises_store_error(monkeypatch) -> None:
    with _session() as session:
        budgets = BudgetService(session, user_id=1)
        for category in ("Food", "Rent"):
            budgets.set_budget(
                BudgetIn(category=category, amount=Decimal("10"), month=2, year=2025)
            )

        def failing_execute(*args, **kwargs):
            raise SQLAlchemyError("disk gone")

        with monkeypatch.context() as patch:
            patch.setattr(session, "execute", failing_execute)
            with pytest.raises(StoreError):
                budgets.reset()

        assert len(budgets.list_all()) == 2


def test_failed_read_surfaces_as_store_error(monkeypatch) -> None:
    with _session() as session:
        budgets = BudgetService(session, user_id=1)

        def failing_scalars(*args, **kwargs):
            raise SQLAlchemyError("connection lost")

        monkeypatch.setattr(session, "scalars", failing_scalars)
        with pytest.raises(StoreError):
            budgets.list_all()
        with pytest.raises(StoreError):
            budgets.evaluated_for_period(5, 2024)


def test_ids_are_not_reused_after_rows_are_deleted() -> None:
    with _session() as session:
        budgets = BudgetService(session, user_id=1)
        first = budgets.set_budget(
            BudgetIn(category="Travel", amount=Decimal("300"), month=7, year=2024)
        )
        first_id = first.id
        budgets.reset()

        again = budgets.set_budget(
            BudgetIn(category="Travel", amount=Decimal("300"), month=7, year=2024)
        )
        assert again.id > first_id


def test_update_and_delete_require_ownership() -> None:
    with _session() as session:
        budget = BudgetService(session, user_id=1).set_budget(
            BudgetIn(category="Food", amount=Decimal("10"), month=2, year=2025)
        )
        stranger = BudgetService(session, user_id=2)

        with pytest.raises(NotFoundError):
            stranger.update(budget.id, BudgetUpdate(amount=Decimal("1")))
        with pytest.raises(NotFoundError):
            stranger.delete(budget.id)
        with pytest.raises(NotFoundError):
            BudgetService(session, user_id=1).delete(budget.id + 100)


def test_update_changes_only_given_fields() -> None:
    with _session() as session:
        budgets = BudgetService(session, user_id=1)
        budget = budgets.set_budget(
            BudgetIn(
                category="Food",
                amount=Decimal("10"),
                month=2,
                year=2025,
                alert_threshold=70,
            )
        )

        updated = budgets.update(budget.id, BudgetUpdate(is_active=False))

        assert updated.is_active is False
        assert updated.amount == Decimal("10")
        assert updated.alert_threshold == 70

        budgets.delete(budget.id)
        assert budgets.list_all() == []


def test_evaluated_period_joins_spend_by_category() -> None:
    with _session() as session:
        expenses = ExpenseService(session, user_id=1)
        for amount, day in (("600", 3), ("250", 20)):
            expenses.create(
                ExpenseIn(
                    title="Groceries",
                    category="Food",
                    amount=Decimal(amount),
                    date=datetime(2024, 5, day, 12, 0),
                )
            )
        expenses.create(
            ExpenseIn(
                title="Groceries",
                category="Food",
                amount=Decimal("999"),
                date=datetime(2024, 6, 1, 0, 0),
            )
        )
        BudgetService(session, user_id=1).set_budget(
            BudgetIn(category="Food", amount=Decimal("800"), month=5, year=2024)
        )

        period, statuses = BudgetService(session, user_id=1).evaluated_for_period(
            "5", "2024"
        )

        assert (period.month, period.year) == (5, 2024)
        assert len(statuses) == 1
        food = statuses[0]
        assert food.spent_amount == Decimal("850")
        assert food.percentage == 106
        assert food.is_over_budget and food.is_near_limit
        assert food.remaining_amount == Decimal("0")


@pytest.mark.parametrize(
    ("month", "year"), [("13", "2024"), ("0", "2024"), ("5", "2019"), ("x", "2024")]
)
def test_evaluated_period_rejects_out_of_range_selector(month, year) -> None:
    with _session() as session:
        with pytest.raises(ValidationError):
            BudgetService(session, user_id=1).evaluated_for_period(month, year)


def test_alerts_cover_active_budgets_of_current_month_only() -> None:
    with _session() as session:
        today = local_today()
        noon = datetime.combine(today, time(12, 0))
        expenses = ExpenseService(session, user_id=1)
        for category, amount in (("Food", "90"), ("Rent", "10"), ("Petrol", "95")):
            expenses.create(
                ExpenseIn(
                    title=category,
                    category=category,
                    amount=Decimal(amount),
                    date=noon,
                )
            )

        budgets = BudgetService(session, user_id=1)
        budgets.set_budget(
            BudgetIn(
                category="Food", amount=Decimal("100"), month=today.month, year=today.year
            )
        )
        budgets.set_budget(
            BudgetIn(
                category="Rent", amount=Decimal("100"), month=today.month, year=today.year
            )
        )
        petrol = budgets.set_budget(
            BudgetIn(
                category="Petrol",
                amount=Decimal("100"),
                month=today.month,
                year=today.year,
            )
        )
        budgets.update(petrol.id, BudgetUpdate(is_active=False))
        last_year = max(today.year - 1, 2020)
        if last_year != today.year:
            budgets.set_budget(
                BudgetIn(
                    category="Food",
                    amount=Decimal("1"),
                    month=today.month,
                    year=last_year,
                )
            )

        alerts = budgets.alerts()

        assert [a.category for a in alerts] == [ExpenseCategory.food]
        assert alerts[0].percentage == 90
        assert alerts[0].is_near_limit is True
        assert alerts[0].is_over_budget is False
