from datetime import date

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import Budget, BudgetSettings, CategoryKind, RolloverMode
from schemas import (
    AllocationIn,
    BudgetAllocationIn,
    BudgetIn,
    BudgetSettingsIn,
    CategoryIn,
    TransactionIn,
)
from services import (
    BudgetService,
    BudgetSettingsService,
    CategoryScopeError,
    CategoryService,
    CycleValidationError,
    HistoryService,
    TransactionService,
)

TODAY = date(2025, 4, 10)


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def test_settings_default_until_first_write() -> None:
    with make_session() as session:
        service = BudgetSettingsService(session, today=TODAY)
        settings = service.get()
        assert settings.anchor_date == date(2025, 4, 1)
        assert settings.cycle_length_days == 30

        updated = service.update(
            BudgetSettingsIn(cycle_length_days=13.6, anchor_date="2025-03-03")
        )
        assert updated.cycle_length_days == 14
        assert service.get() == updated


def test_settings_update_validation() -> None:
    with make_session() as session:
        service = BudgetSettingsService(session, today=TODAY)
        with pytest.raises(ValueError, match="at least 1 day"):
            service.update(BudgetSettingsIn(cycle_length_days=0, anchor_date="2025-01-01"))
        with pytest.raises(ValueError, match="Anchor date must be valid"):
            service.update(BudgetSettingsIn(cycle_length_days=7, anchor_date="soon"))


def test_settings_are_scoped_per_user() -> None:
    with make_session() as session:
        BudgetSettingsService(session, user_id=2, today=TODAY).update(
            BudgetSettingsIn(cycle_length_days=7, anchor_date="2025-01-06")
        )
        assert BudgetSettingsService(session, user_id=1, today=TODAY).get().cycle_length_days == 30
        assert BudgetSettingsService(session, user_id=2, today=TODAY).get().cycle_length_days == 7


def test_category_hierarchy_is_one_level() -> None:
    with make_session() as session:
        categories = CategoryService(session)
        home = categories.create(CategoryIn(name="Home"))
        rent = categories.create(CategoryIn(name="Rent", parent_id=home.id))
        assert rent.parent_id == home.id
        with pytest.raises(ValueError, match="own sub-categories"):
            categories.create(CategoryIn(name="Deposit", parent_id=rent.id))
        with pytest.raises(ValueError, match="already exists"):
            categories.create(CategoryIn(name="home"))
        with pytest.raises(ValueError, match="kind must match"):
            categories.create(
                CategoryIn(name="Bonus", kind=CategoryKind.income, parent_id=home.id)
            )


def test_category_of_other_user_is_rejected() -> None:
    with make_session() as session:
        foreign = CategoryService(session, user_id=2).create(CategoryIn(name="Theirs"))
        with pytest.raises(CategoryScopeError, match="Category not found"):
            BudgetService(session, user_id=1, today=TODAY).upsert(
                BudgetIn(category_id=foreign.id, amount=10)
            )
        with pytest.raises(CategoryScopeError):
            TransactionService(session, user_id=1, today=TODAY).create(
                TransactionIn(date=TODAY, amount=5, category_id=foreign.id)
            )


def test_budget_upsert_defaults_to_current_cycle_and_updates_in_place() -> None:
    with make_session() as session:
        BudgetSettingsService(session, today=TODAY).update(
            BudgetSettingsIn(cycle_length_days=30, anchor_date="2025-01-01")
        )
        food = CategoryService(session).create(CategoryIn(name="Food"))
        budgets = BudgetService(session, today=TODAY)

        first = budgets.upsert(BudgetIn(category_id=food.id, amount=300))
        second = budgets.upsert(BudgetIn(category_id=food.id, amount=350))

        assert first.id == second.id
        assert second.period_start == date(2025, 4, 1)
        assert second.period_length_days == 30
        assert second.amount == 350
        with pytest.raises(CycleValidationError, match="cycle boundary"):
            budgets.upsert(
                BudgetIn(category_id=food.id, amount=1, period_start=date(2025, 4, 2))
            )


def test_budget_requires_expense_category() -> None:
    with make_session() as session:
        salary = CategoryService(session).create(
            CategoryIn(name="Salary", kind=CategoryKind.income)
        )
        with pytest.raises(ValueError, match="expense categories"):
            BudgetService(session, today=TODAY).upsert(
                BudgetIn(category_id=salary.id, amount=100)
            )


def make_household(session: Session) -> tuple[int, int, int]:
    categories = CategoryService(session)
    home = categories.create(CategoryIn(name="Home"))
    rent = categories.create(CategoryIn(name="Rent", parent_id=home.id))
    power = categories.create(CategoryIn(name="Power", parent_id=home.id))
    return home.id, rent.id, power.id


def test_allocations_upsert_parent_and_children() -> None:
    with make_session() as session:
        home, rent, power = make_household(session)
        budgets = BudgetService(session, today=TODAY)

        budgets.update_allocations(
            BudgetAllocationIn(
                parent_category_id=home,
                parent_amount=1500,
                allocations=[
                    AllocationIn(category_id=rent, amount=1200),
                    AllocationIn(category_id=power, amount=300.005),
                ],
            )
        )

        rows = session.scalars(select(Budget).order_by(Budget.category_id)).all()
        assert [(row.category_id, row.amount) for row in rows] == [
            (home, 1500),
            (rent, 1200),
            (power, 300.005),
        ]


def test_allocations_validation() -> None:
    with make_session() as session:
        home, rent, power = make_household(session)
        other = CategoryService(session).create(CategoryIn(name="Food"))
        budgets = BudgetService(session, today=TODAY)

        with pytest.raises(ValueError, match="All subcategories must be allocated"):
            budgets.update_allocations(
                BudgetAllocationIn(
                    parent_category_id=home,
                    parent_amount=1200,
                    allocations=[AllocationIn(category_id=rent, amount=1200)],
                )
            )
        with pytest.raises(CategoryScopeError, match="invalid subcategory"):
            budgets.update_allocations(
                BudgetAllocationIn(
                    parent_category_id=home,
                    parent_amount=1500,
                    allocations=[
                        AllocationIn(category_id=rent, amount=1200),
                        AllocationIn(category_id=other.id, amount=300),
                    ],
                )
            )
        with pytest.raises(ValueError, match="must match the parent budget"):
            budgets.update_allocations(
                BudgetAllocationIn(
                    parent_category_id=home,
                    parent_amount=1500,
                    allocations=[
                        AllocationIn(category_id=rent, amount=1200),
                        AllocationIn(category_id=power, amount=250),
                    ],
                )
            )
        assert session.scalars(select(Budget)).all() == []


def test_deleting_transaction_refreshes_existing_snapshot() -> None:
    with make_session() as session:
        BudgetSettingsService(session, today=TODAY).update(
            BudgetSettingsIn(cycle_length_days=30, anchor_date="2025-01-01")
        )
        food = CategoryService(session).create(
            CategoryIn(name="Food", rollover_mode=RolloverMode.both)
        )
        budgets = BudgetService(session, today=TODAY)
        budgets.upsert(
            BudgetIn(category_id=food.id, amount=100, period_start=date(2025, 1, 1))
        )
        txns = TransactionService(session, today=TODAY)
        keep = txns.create(TransactionIn(date=date(2025, 1, 5), amount=40, category_id=food.id))
        drop = txns.create(TransactionIn(date=date(2025, 1, 6), amount=30, category_id=food.id))
        history = HistoryService.for_session(session, today=TODAY)
        history.ensure_snapshots()
        assert history.get_cycle_detail(date(2025, 1, 1)).cycle.total_spent == 70

        txns.delete(drop.id)

        detail = history.get_cycle_detail(date(2025, 1, 1))
        assert detail.cycle.total_spent == 40
        assert detail.categories[0].carryover_out == 60
        later = history.get_cycle_detail(date(2025, 3, 2))
        assert later.categories[0].carryover_running_total == 60
        with pytest.raises(ValueError, match="Transaction not found"):
            txns.delete(drop.id)
        assert txns.get(keep.id).amount == 40


def test_first_ledger_write_saves_default_settings() -> None:
    with make_session() as session:
        food = CategoryService(session).create(CategoryIn(name="Food"))
        assert session.scalar(select(BudgetSettings)) is None

        budget = BudgetService(session, today=date(2026, 8, 15)).upsert(
            BudgetIn(category_id=food.id, amount=500)
        )
        stored = session.scalar(select(BudgetSettings))
        assert stored is not None
        assert stored.anchor_date == date(2026, 8, 1)
        assert stored.cycle_length_days == 30
        assert budget.period_start == date(2026, 8, 1)

        TransactionService(session, today=date(2026, 9, 2)).create(
            TransactionIn(date=date(2026, 8, 20), amount=300, category_id=food.id)
        )
        assert len(session.scalars(select(BudgetSettings)).all()) == 1

        history = HistoryService.for_session(session, today=date(2026, 10, 19))
        result = history.ensure_snapshots()
        assert result.first_period_start == date(2026, 8, 1)
        assert result.last_period_start == date(2026, 8, 31)
        assert result.cycles_written == 2
        first = history.get_cycle_detail(date(2026, 8, 1)).cycle
        assert first.total_spent == 300
        assert first.total_budget_base == 500


def test_transaction_alone_saves_default_settings() -> None:
    with make_session() as session:
        TransactionService(session, today=date(2026, 8, 15)).create(
            TransactionIn(date=date(2026, 8, 3), amount=12)
        )
        stored = session.scalar(select(BudgetSettings))
        assert stored is not None
        assert stored.anchor_date == date(2026, 8, 1)


def test_rejected_budget_write_saves_no_settings() -> None:
    with make_session() as session:
        food = CategoryService(session).create(CategoryIn(name="Food"))
        with pytest.raises(CycleValidationError, match="cycle boundary"):
            BudgetService(session, today=date(2026, 8, 15)).upsert(
                BudgetIn(category_id=food.id, amount=500, period_start=date(2026, 8, 5))
            )
        assert session.scalar(select(BudgetSettings)) is None
