"""Carryover arithmetic and per-cycle aggregation.

Everything here is a pure function of its inputs so that the server store and
the offline store produce identical snapshot rows for identical ledgers.
Floating point values are never rounded along the way.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Iterable, Mapping, Optional, Sequence

from models import RolloverMode
from periods import Period


@dataclass(frozen=True)
class LedgerCategory:
    id: int
    name: str
    rollover_mode: RolloverMode = RolloverMode.none
    parent_id: Optional[int] = None
    carryover_adjustment: float = 0.0


@dataclass(frozen=True)
class LedgerBudget:
    category_id: int
    period_start: date
    amount: float


@dataclass(frozen=True)
class LedgerTransaction:
    date: date
    amount: float
    category_id: Optional[int] = None


@dataclass(frozen=True)
class CategoryCycleRow:
    category_id: int
    category_name: str
    rollover_mode: RolloverMode
    budget_base: float
    spent: float
    remaining_base: float
    carryover_applied_in: float
    carryover_out: float
    carryover_running_total: float


@dataclass(frozen=True)
class CycleRow:
    period_start: date
    period_end: date
    period_length_days: int
    total_budget_base: float
    total_spent: float
    over_under_base: float
    carryover_positive_total: float
    carryover_negative_total: float
    carryover_net_total: float


@dataclass(frozen=True)
class CarryoverChain:
    applied_in: dict[int, float]
    running_total: dict[int, float]
    carryover_positive_total: float
    carryover_negative_total: float
    carryover_net_total: float


@dataclass(frozen=True)
class CycleResult:
    cycle: CycleRow
    categories: list[CategoryCycleRow] = field(default_factory=list)

    @property
    def carryover_by_category(self) -> dict[int, float]:
        return {row.category_id: row.carryover_running_total for row in self.categories}


def compute_carryover_out(mode: RolloverMode, remaining_base: float) -> float:
    if mode == RolloverMode.positive:
        return max(remaining_base, 0.0)
    if mode == RolloverMode.negative:
        return min(remaining_base, 0.0)
    if mode == RolloverMode.both:
        return remaining_base
    return 0.0


def compute_over_under_base(total_budget_base: float, total_spent: float) -> float:
    return total_budget_base - total_spent


def build_category_scopes(
    categories: Sequence[LedgerCategory],
) -> dict[int, tuple[int, ...]]:
    """Map each category id to itself plus its direct sub-categories."""
    children_by_parent: dict[int, list[int]] = {}
    for category in categories:
        if category.parent_id is None:
            continue
        children_by_parent.setdefault(category.parent_id, []).append(category.id)
    return {
        category.id: (category.id, *children_by_parent.get(category.id, ()))
        for category in categories
    }


def apply_carryover(
    carryover_out_by_category: Iterable[tuple[int, float]],
    carryover_in: Mapping[int, float],
) -> CarryoverChain:
    """Thread the entering carryover through one cycle's category rows.

    Categories missing from ``carryover_in`` enter with 0. Only categories
    present in this cycle appear in the returned running totals.
    """
    applied_in: dict[int, float] = {}
    running_total: dict[int, float] = {}
    positive = 0.0
    negative = 0.0
    for category_id, carryover_out in carryover_out_by_category:
        entering = carryover_in.get(category_id, 0.0)
        total = entering + carryover_out
        applied_in[category_id] = entering
        running_total[category_id] = total
        if total > 0:
            positive += total
        elif total < 0:
            negative += total
    return CarryoverChain(
        applied_in=applied_in,
        running_total=running_total,
        carryover_positive_total=positive,
        carryover_negative_total=negative,
        carryover_net_total=positive + negative,
    )


def aggregate_cycle(
    period: Period,
    categories: Sequence[LedgerCategory],
    budgets: Iterable[LedgerBudget],
    transactions: Iterable[LedgerTransaction],
    carryover_in: Mapping[int, float],
) -> CycleResult:
    """Compute one cycle's snapshot rows.

    ``categories`` are the owner's expense categories. Budgets for other
    periods and transactions outside ``period`` are ignored, as are
    transactions that do not resolve to an expense category.
    """
    known_ids = {category.id for category in categories}
    scopes = build_category_scopes(categories)

    direct_spent: dict[int, float] = {}
    total_spent = 0.0
    for txn in transactions:
        if not period.contains(txn.date):
            continue
        if txn.category_id is None or txn.category_id not in known_ids:
            continue
        direct_spent[txn.category_id] = direct_spent.get(txn.category_id, 0.0) + txn.amount
        total_spent += txn.amount

    spent_by_category: dict[int, float] = {}
    for category in categories:
        spent = 0.0
        for scoped_id in scopes[category.id]:
            spent += direct_spent.get(scoped_id, 0.0)
        spent_by_category[category.id] = spent

    return _build_cycle(
        period, categories, budgets, spent_by_category, total_spent, carryover_in
    )


def manual_cycle(
    period: Period,
    categories: Sequence[LedgerCategory],
    budgets: Iterable[LedgerBudget],
    spent_by_category: Mapping[int, float],
    carryover_in: Mapping[int, float],
) -> CycleResult:
    """Compute a backfilled cycle from per-category spend as entered.

    Each category keeps exactly the spend given for it; sub-category entries
    are not folded into their parent. The cycle total is the sum of entries.
    """
    spent = {category.id: spent_by_category.get(category.id, 0.0) for category in categories}
    total_spent = 0.0
    for category in categories:
        total_spent += spent[category.id]
    return _build_cycle(period, categories, budgets, spent, total_spent, carryover_in)


def _build_cycle(
    period: Period,
    categories: Sequence[LedgerCategory],
    budgets: Iterable[LedgerBudget],
    spent_by_category: Mapping[int, float],
    total_spent: float,
    carryover_in: Mapping[int, float],
) -> CycleResult:
    known_ids = {category.id for category in categories}
    budget_by_category: dict[int, float] = {}
    for budget in budgets:
        if budget.period_start == period.start and budget.category_id in known_ids:
            budget_by_category[budget.category_id] = budget.amount

    partial_rows = []
    total_budget_base = 0.0
    for category in categories:
        budget_base = budget_by_category.get(category.id, 0.0)
        if category.parent_id is None or category.parent_id not in known_ids:
            total_budget_base += budget_base
        spent = spent_by_category[category.id]
        remaining_base = budget_base - spent
        carryover_out = compute_carryover_out(category.rollover_mode, remaining_base)
        partial_rows.append((category, budget_base, spent, remaining_base, carryover_out))

    chain = apply_carryover(
        ((category.id, carryover_out) for category, _, _, _, carryover_out in partial_rows),
        carryover_in,
    )
    rows = [
        CategoryCycleRow(
            category_id=category.id,
            category_name=category.name,
            rollover_mode=category.rollover_mode,
            budget_base=budget_base,
            spent=spent,
            remaining_base=remaining_base,
            carryover_applied_in=chain.applied_in[category.id],
            carryover_out=carryover_out,
            carryover_running_total=chain.running_total[category.id],
        )
        for category, budget_base, spent, remaining_base, carryover_out in partial_rows
    ]
    cycle = CycleRow(
        period_start=period.start,
        period_end=period.end,
        period_length_days=period.length_days,
        total_budget_base=total_budget_base,
        total_spent=total_spent,
        over_under_base=compute_over_under_base(total_budget_base, total_spent),
        carryover_positive_total=chain.carryover_positive_total,
        carryover_negative_total=chain.carryover_negative_total,
        carryover_net_total=chain.carryover_net_total,
    )
    return CycleResult(cycle=cycle, categories=rows)


def rechain_cycle(
    cycle: CycleRow,
    rows: Sequence[CategoryCycleRow],
    carryover_in: Mapping[int, float],
) -> CycleResult:
    """Patch only the carryover-chain fields of an already persisted cycle."""
    chain = apply_carryover(
        ((row.category_id, row.carryover_out) for row in rows), carryover_in
    )
    patched_rows = [
        CategoryCycleRow(
            category_id=row.category_id,
            category_name=row.category_name,
            rollover_mode=row.rollover_mode,
            budget_base=row.budget_base,
            spent=row.spent,
            remaining_base=row.remaining_base,
            carryover_applied_in=chain.applied_in[row.category_id],
            carryover_out=row.carryover_out,
            carryover_running_total=chain.running_total[row.category_id],
        )
        for row in rows
    ]
    patched_cycle = CycleRow(
        period_start=cycle.period_start,
        period_end=cycle.period_end,
        period_length_days=cycle.period_length_days,
        total_budget_base=cycle.total_budget_base,
        total_spent=cycle.total_spent,
        over_under_base=cycle.over_under_base,
        carryover_positive_total=chain.carryover_positive_total,
        carryover_negative_total=chain.carryover_negative_total,
        carryover_net_total=chain.carryover_net_total,
    )
    return CycleResult(cycle=patched_cycle, categories=patched_rows)

