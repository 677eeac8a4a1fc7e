from __future__ import annotations

import logging
import math
from datetime import date, datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from config import get_settings
from cycles import (
    LedgerBudget,
    LedgerCategory,
    aggregate_cycle,
    manual_cycle,
    rechain_cycle,
)
from models import (
    Budget,
    BudgetSettings,
    Category,
    CategoryKind,
    Transaction,
)
from periods import (
    CycleSettings,
    Period,
    default_cycle_settings,
    local_today,
    parse_anchor_date,
)
from schemas import (
    BudgetAllocationIn,
    BudgetIn,
    BudgetSettingsIn,
    CategoryIn,
    CategoryRolloverIn,
    CategorySnapshotOut,
    CycleDetailOut,
    CyclePageOut,
    CycleSummaryOut,
    ManualCycleEntryIn,
    ManualCycleOut,
    SnapshotRebuildOut,
    TransactionIn,
)
from snapshots import HistoryStore, SqlAlchemyHistoryStore

logger = logging.getLogger(__name__)

MAX_CYCLE_PAGE_SIZE = 60
ALLOCATION_TOLERANCE = 0.01


def get_current_user_id() -> int:
    return 1


class CycleValidationError(ValueError):
    pass


class CategoryScopeError(ValueError):
    pass


class HistoryService:
    """Builds and repairs the per-cycle snapshot history for one owner.

    Works against any ``HistoryStore``; every entry point validates first and
    then performs all of its writes inside a single ``store.atomic()`` block.
    """

    def __init__(self, store: HistoryStore, *, today: Optional[date] = None) -> None:
        self.store = store
        self.today = today

    @classmethod
    def for_session(
        cls,
        session: Session,
        user_id: Optional[int] = None,
        *,
        today: Optional[date] = None,
    ) -> "HistoryService":
        store = SqlAlchemyHistoryStore(session, user_id or get_current_user_id())
        return cls(store, today=today)

    def _today(self) -> date:
        return self.today or local_today()

    def cycle_settings(self) -> CycleSettings:
        return self.store.get_cycle_settings() or default_cycle_settings(self._today())

    def ensure_snapshots(
        self, through_period_start: Optional[date] = None
    ) -> SnapshotRebuildOut:
        """Rebuild every cycle from the first one with data through the target.

        The target defaults to the last closed cycle. Snapshots after the
        target only get their carryover chain re-threaded.
        """
        settings = self.cycle_settings()
        target = through_period_start or settings.resolve(self._today(), -1).start
        earliest = self.store.earliest_activity_date()
        if earliest is None:
            logger.info(f"snapshot_rebuild: no ledger data through={target}")
            return SnapshotRebuildOut(
                first_period_start=None, last_period_start=target, cycles_written=0
            )
        first = settings.resolve(earliest).start
        if first > target:
            return SnapshotRebuildOut(
                first_period_start=first, last_period_start=target, cycles_written=0
            )

        categories = self.store.list_expense_categories()
        written = 0
        with self.store.atomic():
            carryover = self._carryover_entering(settings.previous(first).start)
            cycle_start = first
            last_start = first
            while cycle_start <= target:
                result = self._aggregate(settings.window(cycle_start), categories, carryover)
                self.store.replace_cycle(result)
                carryover = result.carryover_by_category
                written += 1
                last_start = cycle_start
                cycle_start = result.cycle.period_end
            patched = self._propagate_forward(last_start, carryover)

        logger.info(
            f"snapshot_rebuild: first={first} through={target} "
            f"cycles={written} patched={patched}"
        )
        return SnapshotRebuildOut(
            first_period_start=first,
            last_period_start=target,
            cycles_written=written,
            cycles_patched=patched,
        )

    def snapshot_single_cycle(self, period_start: date) -> SnapshotRebuildOut:
        settings = self.cycle_settings()
        if not settings.is_boundary(period_start):
            raise CycleValidationError("Period start must fall on a cycle boundary")
        period = settings.window(period_start)
        previous_start = settings.previous(period_start).start
        if self.store.get_cycle(previous_start) is None:
            logger.warning(
                f"snapshot_single: no snapshot for previous cycle {previous_start}; "
                "carryover enters as 0"
            )
        categories = self.store.list_expense_categories()
        with self.store.atomic():
            carryover = self._carryover_entering(previous_start)
            result = self._aggregate(period, categories, carryover)
            self.store.replace_cycle(result)
            patched = self._propagate_forward(period.start, result.carryover_by_category)

        logger.info(f"snapshot_single: period={period.start} patched={patched}")
        return SnapshotRebuildOut(
            first_period_start=period.start,
            last_period_start=period.start,
            cycles_written=1,
            cycles_patched=patched,
        )

    def add_manual_cycle(
        self, period_start: date, entries: Iterable[ManualCycleEntryIn]
    ) -> ManualCycleOut:
        """Backfill a past cycle from per-category spend totals.

        Every current expense category needs exactly one entry. Later
        snapshots keep their own budget and spend figures; only their
        carryover chain is re-threaded from the corrected cycle onwards.
        """
        settings = self.cycle_settings()
        current = settings.current(self._today())
        if period_start >= current.start:
            raise CycleValidationError("Manual history must be in a prior period")
        if not settings.is_boundary(period_start):
            raise CycleValidationError("Period start must fall on a cycle boundary")

        categories = self.store.list_expense_categories()
        if not categories:
            raise CycleValidationError(
                "Create budget categories before adding manual history"
            )
        spent_by_category = self._validate_manual_entries(categories, entries)

        period = settings.window(period_start)
        budgets = self._manual_budgets(period, current)
        with self.store.atomic():
            carryover = self._carryover_entering(settings.previous(period_start).start)
            result = manual_cycle(
                period, categories, budgets, spent_by_category, carryover
            )
            self.store.replace_cycle(result)
            patched = self._propagate_forward(period.start, result.carryover_by_category)

        logger.info(
            f"manual_cycle: period={period.start} categories={len(categories)} "
            f"patched={patched}"
        )
        return ManualCycleOut(
            period_start=period.start,
            period_end=period.end,
            category_count=len(result.categories),
            cycles_patched=patched,
        )

    def list_cycles(
        self, limit: Optional[int] = None, cursor: Optional[date] = None
    ) -> CyclePageOut:
        requested = limit if limit is not None else get_settings().history_page_size
        limit = min(max(int(requested), 1), MAX_CYCLE_PAGE_SIZE)
        rows = self.store.list_cycles_desc(cursor, limit + 1)
        has_more = len(rows) > limit
        items = [CycleSummaryOut.model_validate(row) for row in rows[:limit]]
        next_cursor = rows[limit].period_start if has_more else None
        return CyclePageOut(items=items, next_cursor=next_cursor)

    def get_cycle_detail(self, period_start: date) -> CycleDetailOut:
        cycle = self.store.get_cycle(period_start)
        if cycle is None:
            return CycleDetailOut(cycle=None, categories=[])

        adjustments = {
            category.id: category.carryover_adjustment
            for category in self.store.list_expense_categories()
        }
        rows = sorted(
            self.store.get_category_rows(period_start),
            key=lambda row: (row.category_name.casefold(), row.category_id),
        )
        categories = []
        for row in rows:
            adjustment = adjustments.get(row.category_id, 0.0)
            out = CategorySnapshotOut.model_validate(row)
            out.carryover_adjustment = adjustment
            out.carryover_available = row.carryover_running_total + adjustment
            categories.append(out)
        return CycleDetailOut(
            cycle=CycleSummaryOut.model_validate(cycle), categories=categories
        )

    def _aggregate(self, period: Period, categories, carryover):
        return aggregate_cycle(
            period,
            categories,
            self.store.list_budgets(period.start),
            self.store.list_transactions(period.start, period.end),
            carryover,
        )

    def _carryover_entering(self, previous_period_start: date) -> dict[int, float]:
        return {
            row.category_id: row.carryover_running_total
            for row in self.store.get_category_rows(previous_period_start)
        }

    def _propagate_forward(self, after: date, carryover: dict[int, float]) -> int:
        patched = 0
        for cycle in self.store.list_cycles_after(after):
            rows = self.store.get_category_rows(cycle.period_start)
            result = rechain_cycle(cycle, rows, carryover)
            self.store.patch_carryover(result)
            carryover = result.carryover_by_category
            patched += 1
        return patched

    def _manual_budgets(self, period: Period, current: Period) -> list[LedgerBudget]:
        budgets = {b.category_id: b for b in self.store.list_budgets(period.start)}
        for fallback in self.store.list_budgets(current.start):
            if fallback.category_id in budgets:
                continue
            budgets[fallback.category_id] = LedgerBudget(
                category_id=fallback.category_id,
                period_start=period.start,
                amount=fallback.amount,
            )
        return list(budgets.values())

    @staticmethod
    def _validate_manual_entries(
        categories: Sequence[LedgerCategory], entries: Iterable[ManualCycleEntryIn]
    ) -> dict[int, float]:
        known_ids = {category.id for category in categories}
        spent: dict[int, float] = {}
        for entry in entries:
            if entry.category_id not in known_ids:
                raise CategoryScopeError(
                    f"Category {entry.category_id} is not an expense category of this budget"
                )
            if entry.category_id in spent:
                raise CycleValidationError(
                    f"Category {entry.category_id} appears more than once"
                )
            value = float(entry.spent)
            if not math.isfinite(value) or value < 0:
                raise CycleValidationError(
                    "Each category spent amount must be a non-negative number"
                )
            spent[entry.category_id] = value

        missing = [category.name for category in categories if category.id not in spent]
        if missing:
            raise CycleValidationError(
                "All expense categories must be included (missing: "
                + ", ".join(missing)
                + ")"
            )
        return {category.id: spent[category.id] for category in categories}


def refresh_snapshot_for_date(
    session: Session, user_id: int, day: date, *, today: Optional[date] = None
) -> None:
    """Re-snapshot the cycle containing ``day`` if it was already snapshotted."""
    history = HistoryService.for_session(session, user_id, today=today)
    period_start = history.cycle_settings().resolve(day).start
    if history.store.get_cycle(period_start) is None:
        return
    history.snapshot_single_cycle(period_start)


class BudgetSettingsService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        *,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.today = today

    def _row(self) -> Optional[BudgetSettings]:
        return self.session.scalar(
            select(BudgetSettings).where(BudgetSettings.user_id == self.user_id)
        )

    def get(self) -> CycleSettings:
        row = self._row()
        if row:
            return CycleSettings(
                cycle_length_days=row.cycle_length_days, anchor_date=row.anchor_date
            )
        return default_cycle_settings(self.today or local_today())

    def ensure_for_write(self) -> CycleSettings:
        """Persist the default settings the first time the owner writes ledger data."""
        row = self._row()
        if row:
            return CycleSettings(
                cycle_length_days=row.cycle_length_days, anchor_date=row.anchor_date
            )
        settings = default_cycle_settings(self.today or local_today())
        self.session.add(
            BudgetSettings(
                user_id=self.user_id,
                cycle_length_days=settings.cycle_length_days,
                anchor_date=settings.anchor_date,
            )
        )
        self.session.flush()
        logger.info(
            f"budget_settings: user_id={self.user_id} default saved "
            f"cycle_length_days={settings.cycle_length_days} anchor={settings.anchor_date}"
        )
        return settings

    def update(self, data: BudgetSettingsIn) -> CycleSettings:
        if not math.isfinite(data.cycle_length_days) or data.cycle_length_days < 1:
            raise ValueError("Cycle length must be at least 1 day")
        anchor_date = parse_anchor_date(data.anchor_date)
        cycle_length_days = int(math.floor(data.cycle_length_days + 0.5))

        row = self._row()
        if row:
            row.cycle_length_days = cycle_length_days
            row.anchor_date = anchor_date
        else:
            row = BudgetSettings(
                user_id=self.user_id,
                cycle_length_days=cycle_length_days,
                anchor_date=anchor_date,
            )
            self.session.add(row)
        self.session.commit()
        logger.info(
            f"budget_settings: user_id={self.user_id} "
            f"cycle_length_days={cycle_length_days} anchor={anchor_date}"
        )
        return CycleSettings(cycle_length_days=cycle_length_days, anchor_date=anchor_date)


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.kind, Category.order, Category.name)
        )
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        category = self.session.get(Category, category_id)
        if not category or category.user_id != self.user_id:
            raise CategoryScopeError("Category not found")
        return category

    def create(self, data: CategoryIn) -> Category:
        existing = self.session.scalar(
            select(Category).where(
                Category.user_id == self.user_id,
                Category.kind == data.kind,
                func.lower(Category.name) == data.name.strip().lower(),
            )
        )
        if existing:
            raise ValueError("Category with this name already exists")
        if data.parent_id is not None:
            parent = self.get(data.parent_id)
            if parent.parent_id is not None:
                raise ValueError("Sub-categories cannot have their own sub-categories")
            if parent.kind != data.kind:
                raise ValueError("Sub-category kind must match its parent")
        category = Category(
            user_id=self.user_id,
            name=data.name.strip(),
            kind=data.kind,
            parent_id=data.parent_id,
            rollover_mode=data.rollover_mode,
            order=data.order,
        )
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    def update_rollover(self, category_id: int, data: CategoryRolloverIn) -> Category:
        category = self.get(category_id)
        if data.rollover_mode is not None:
            category.rollover_mode = data.rollover_mode
        if data.carryover_adjustment is not None:
            category.carryover_adjustment = data.carryover_adjustment
        self.session.commit()
        self.session.refresh(category)
        return category


class BudgetService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        *,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.today = today

    def _settings_service(self) -> BudgetSettingsService:
        return BudgetSettingsService(self.session, self.user_id, today=self.today)

    def _expense_category(self, category_id: int) -> Category:
        category = CategoryService(self.session, self.user_id).get(category_id)
        if category.kind != CategoryKind.expense:
            raise ValueError("Budgets can only be set for expense categories")
        return category

    def _target_period(
        self, period_start: Optional[date], *, for_write: bool = False
    ) -> Period:
        settings = self._settings_service().get()
        if period_start is not None and not settings.is_boundary(period_start):
            raise CycleValidationError("Period start must fall on a cycle boundary")
        if for_write:
            settings = self._settings_service().ensure_for_write()
        if period_start is None:
            return settings.current(self.today)
        return settings.window(period_start)

    def list_for_period(self, period_start: Optional[date] = None) -> list[Budget]:
        period = self._target_period(period_start)
        stmt = (
            select(Budget)
            .where(Budget.user_id == self.user_id, Budget.period_start == period.start)
            .order_by(Budget.category_id)
        )
        return self.session.scalars(stmt).all()

    def _upsert(self, category_id: int, period: Period, amount: float) -> Budget:
        existing = self.session.scalar(
            select(Budget).where(
                Budget.user_id == self.user_id,
                Budget.period_start == period.start,
                Budget.category_id == category_id,
            )
        )
        if existing:
            existing.amount = amount
            return existing
        budget = Budget(
            user_id=self.user_id,
            category_id=category_id,
            period_start=period.start,
            period_length_days=period.length_days,
            amount=amount,
        )
        self.session.add(budget)
        return budget

    def upsert(self, data: BudgetIn) -> Budget:
        self._expense_category(data.category_id)
        period = self._target_period(data.period_start, for_write=True)
        budget = self._upsert(data.category_id, period, data.amount)
        self.session.commit()
        self.session.refresh(budget)
        refresh_snapshot_for_date(self.session, self.user_id, period.start, today=self.today)
        return budget

    def update_allocations(self, data: BudgetAllocationIn) -> list[Budget]:
        parent = self._expense_category(data.parent_category_id)
        if not math.isfinite(data.parent_amount):
            raise ValueError("Parent amount must be a number")
        children = self.session.scalars(
            select(Category).where(
                Category.user_id == self.user_id, Category.parent_id == parent.id
            )
        ).all()
        child_ids = {child.id for child in children}
        if len(data.allocations) != len(children):
            raise ValueError("All subcategories must be allocated")
        seen: set[int] = set()
        for alloc in data.allocations:
            if alloc.category_id not in child_ids or alloc.category_id in seen:
                raise CategoryScopeError("Allocation contains invalid subcategory")
            if not math.isfinite(alloc.amount):
                raise ValueError("Allocation amount must be a number")
            seen.add(alloc.category_id)
        total = sum(alloc.amount for alloc in data.allocations)
        if abs(total - data.parent_amount) > ALLOCATION_TOLERANCE:
            raise ValueError("Subcategory totals must match the parent budget")

        period = self._target_period(None, for_write=True)
        budgets = [self._upsert(parent.id, period, data.parent_amount)]
        for alloc in data.allocations:
            budgets.append(self._upsert(alloc.category_id, period, alloc.amount))
        self.session.commit()
        refresh_snapshot_for_date(self.session, self.user_id, period.start, today=self.today)
        return budgets


class TransactionService:
    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        *,
        today: Optional[date] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.today = today

    def create(self, data: TransactionIn) -> Transaction:
        if data.category_id is not None:
            CategoryService(self.session, self.user_id).get(data.category_id)
        BudgetSettingsService(self.session, self.user_id, today=self.today).ensure_for_write()
        txn = Transaction(
            user_id=self.user_id,
            date=data.date,
            amount=data.amount,
            category_id=data.category_id,
            note=data.note,
        )
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        refresh_snapshot_for_date(self.session, self.user_id, data.date, today=self.today)
        return txn

    def get(self, transaction_id: int) -> Transaction:
        txn = self.session.scalar(
            select(Transaction).where(
                Transaction.user_id == self.user_id,
                Transaction.id == transaction_id,
                Transaction.deleted_at.is_(None),
            )
        )
        if not txn:
            raise ValueError("Transaction not found")
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.get(transaction_id)
        txn.deleted_at = datetime.utcnow()
        self.session.commit()
        refresh_snapshot_for_date(self.session, self.user_id, txn.date, today=self.today)
