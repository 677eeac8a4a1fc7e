"""Storage seam for cycle history.

``HistoryStore`` is everything the reconciliation driver reads and writes.
``SqlAlchemyHistoryStore`` backs it with the server database; ``local_db``
provides the offline implementation.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from typing import Iterator, Optional, Protocol

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from cycles import (
    CategoryCycleRow,
    CycleResult,
    CycleRow,
    LedgerBudget,
    LedgerCategory,
    LedgerTransaction,
)
from models import (
    Budget,
    BudgetCategoryCycleSnapshot,
    BudgetCycleSnapshot,
    BudgetSettings,
    Category,
    CategoryKind,
    Transaction,
)
from periods import CycleSettings


class HistoryStore(Protocol):
    def get_cycle_settings(self) -> Optional[CycleSettings]:
        ...

    def list_expense_categories(self) -> list[LedgerCategory]:
        ...

    def list_budgets(self, period_start: Optional[date] = None) -> list[LedgerBudget]:
        ...

    def list_transactions(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[LedgerTransaction]:
        ...

    def earliest_activity_date(self) -> Optional[date]:
        ...

    def get_cycle(self, period_start: date) -> Optional[CycleRow]:
        ...

    def get_category_rows(self, period_start: date) -> list[CategoryCycleRow]:
        ...

    def list_cycles_after(self, period_start: date) -> list[CycleRow]:
        ...

    def list_cycles_desc(self, cursor: Optional[date], limit: int) -> list[CycleRow]:
        ...

    def replace_cycle(self, result: CycleResult) -> None:
        ...

    def patch_carryover(self, result: CycleResult) -> None:
        ...

    def atomic(self):
        ...


def cycle_row_from_model(model: BudgetCycleSnapshot) -> CycleRow:
    return CycleRow(
        period_start=model.period_start,
        period_end=model.period_end,
        period_length_days=model.period_length_days,
        total_budget_base=model.total_budget_base,
        total_spent=model.total_spent,
        over_under_base=model.over_under_base,
        carryover_positive_total=model.carryover_positive_total,
        carryover_negative_total=model.carryover_negative_total,
        carryover_net_total=model.carryover_net_total,
    )


def category_row_from_model(model: BudgetCategoryCycleSnapshot) -> CategoryCycleRow:
    return CategoryCycleRow(
        category_id=model.category_id,
        category_name=model.category_name,
        rollover_mode=model.rollover_mode,
        budget_base=model.budget_base,
        spent=model.spent,
        remaining_base=model.remaining_base,
        carryover_applied_in=model.carryover_applied_in,
        carryover_out=model.carryover_out,
        carryover_running_total=model.carryover_running_total,
    )


class SqlAlchemyHistoryStore:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    @contextmanager
    def atomic(self) -> Iterator[None]:
        try:
            yield
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def get_cycle_settings(self) -> Optional[CycleSettings]:
        row = self.session.scalar(
            select(BudgetSettings).where(BudgetSettings.user_id == self.user_id)
        )
        if not row:
            return None
        return CycleSettings(
            cycle_length_days=row.cycle_length_days, anchor_date=row.anchor_date
        )

    def list_expense_categories(self) -> list[LedgerCategory]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id, Category.kind == CategoryKind.expense)
            .order_by(Category.id)
        )
        return [
            LedgerCategory(
                id=category.id,
                name=category.name,
                rollover_mode=category.rollover_mode,
                parent_id=category.parent_id,
                carryover_adjustment=category.carryover_adjustment or 0.0,
            )
            for category in self.session.scalars(stmt)
        ]

    def list_budgets(self, period_start: Optional[date] = None) -> list[LedgerBudget]:
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id)
            .order_by(Budget.period_start, Budget.category_id)
        )
        if period_start is not None:
            stmt = stmt.where(Budget.period_start == period_start)
        return [
            LedgerBudget(
                category_id=budget.category_id,
                period_start=budget.period_start,
                amount=budget.amount,
            )
            for budget in self.session.scalars(stmt)
        ]

    def list_transactions(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[LedgerTransaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == self.user_id, Transaction.deleted_at.is_(None))
            .order_by(Transaction.date, Transaction.id)
        )
        if start is not None:
            stmt = stmt.where(Transaction.date >= start)
        if end is not None:
            stmt = stmt.where(Transaction.date < end)
        return [
            LedgerTransaction(date=txn.date, amount=txn.amount, category_id=txn.category_id)
            for txn in self.session.scalars(stmt)
        ]

    def earliest_activity_date(self) -> Optional[date]:
        earliest_budget = self.session.scalar(
            select(func.min(Budget.period_start)).where(Budget.user_id == self.user_id)
        )
        earliest_txn = self.session.scalar(
            select(func.min(Transaction.date)).where(
                Transaction.user_id == self.user_id, Transaction.deleted_at.is_(None)
            )
        )
        candidates = [d for d in (earliest_budget, earliest_txn) if d is not None]
        return min(candidates) if candidates else None

    def get_cycle(self, period_start: date) -> Optional[CycleRow]:
        model = self._cycle_model(period_start)
        return cycle_row_from_model(model) if model else None

    def get_category_rows(self, period_start: date) -> list[CategoryCycleRow]:
        return [category_row_from_model(m) for m in self._category_models(period_start)]

    def list_cycles_after(self, period_start: date) -> list[CycleRow]:
        stmt = (
            select(BudgetCycleSnapshot)
            .where(
                BudgetCycleSnapshot.user_id == self.user_id,
                BudgetCycleSnapshot.period_start > period_start,
            )
            .order_by(BudgetCycleSnapshot.period_start.asc())
        )
        return [cycle_row_from_model(m) for m in self.session.scalars(stmt)]

    def list_cycles_desc(self, cursor: Optional[date], limit: int) -> list[CycleRow]:
        stmt = (
            select(BudgetCycleSnapshot)
            .where(BudgetCycleSnapshot.user_id == self.user_id)
            .order_by(BudgetCycleSnapshot.period_start.desc())
            .limit(limit)
        )
        if cursor is not None:
            stmt = stmt.where(BudgetCycleSnapshot.period_start <= cursor)
        return [cycle_row_from_model(m) for m in self.session.scalars(stmt)]

    def replace_cycle(self, result: CycleResult) -> None:
        period_start = result.cycle.period_start
        self.session.execute(
            delete(BudgetCycleSnapshot).where(
                BudgetCycleSnapshot.user_id == self.user_id,
                BudgetCycleSnapshot.period_start == period_start,
            )
        )
        self.session.execute(
            delete(BudgetCategoryCycleSnapshot).where(
                BudgetCategoryCycleSnapshot.user_id == self.user_id,
                BudgetCategoryCycleSnapshot.period_start == period_start,
            )
        )
        cycle = result.cycle
        self.session.add(
            BudgetCycleSnapshot(
                user_id=self.user_id,
                period_start=cycle.period_start,
                period_end=cycle.period_end,
                period_length_days=cycle.period_length_days,
                total_budget_base=cycle.total_budget_base,
                total_spent=cycle.total_spent,
                over_under_base=cycle.over_under_base,
                carryover_positive_total=cycle.carryover_positive_total,
                carryover_negative_total=cycle.carryover_negative_total,
                carryover_net_total=cycle.carryover_net_total,
            )
        )
        self.session.add_all(
            [
                BudgetCategoryCycleSnapshot(
                    user_id=self.user_id,
                    period_start=period_start,
                    category_id=row.category_id,
                    category_name=row.category_name,
                    rollover_mode=row.rollover_mode,
                    budget_base=row.budget_base,
                    spent=row.spent,
                    remaining_base=row.remaining_base,
                    carryover_applied_in=row.carryover_applied_in,
                    carryover_out=row.carryover_out,
                    carryover_running_total=row.carryover_running_total,
                )
                for row in result.categories
            ]
        )
        self.session.flush()

    def patch_carryover(self, result: CycleResult) -> None:
        model = self._cycle_model(result.cycle.period_start)
        if not model:
            raise ValueError(f"Cycle {result.cycle.period_start} has no snapshot")
        model.carryover_positive_total = result.cycle.carryover_positive_total
        model.carryover_negative_total = result.cycle.carryover_negative_total
        model.carryover_net_total = result.cycle.carryover_net_total

        by_category = {row.category_id: row for row in result.categories}
        for stored in self._category_models(result.cycle.period_start):
            row = by_category.get(stored.category_id)
            if row is None:
                continue
            stored.carryover_applied_in = row.carryover_applied_in
            stored.carryover_running_total = row.carryover_running_total
        self.session.flush()

    def _cycle_model(self, period_start: date) -> Optional[BudgetCycleSnapshot]:
        return self.session.scalar(
            select(BudgetCycleSnapshot).where(
                BudgetCycleSnapshot.user_id == self.user_id,
                BudgetCycleSnapshot.period_start == period_start,
            )
        )

    def _category_models(self, period_start: date) -> list[BudgetCategoryCycleSnapshot]:
        stmt = (
            select(BudgetCategoryCycleSnapshot)
            .where(
                BudgetCategoryCycleSnapshot.user_id == self.user_id,
                BudgetCategoryCycleSnapshot.period_start == period_start,
            )
            .order_by(BudgetCategoryCycleSnapshot.category_id)
        )
        return list(self.session.scalars(stmt))
