from datetime import date

from cycles import (
    CategoryCycleRow,
    LedgerBudget,
    LedgerCategory,
    LedgerTransaction,
    aggregate_cycle,
    apply_carryover,
    build_category_scopes,
    compute_carryover_out,
    manual_cycle,
    rechain_cycle,
)
from models import RolloverMode
from periods import Period


JAN = Period(date(2025, 1, 1), date(2025, 1, 31))
FEB = Period(date(2025, 1, 31), date(2025, 3, 2))


def test_carryover_out_per_mode() -> None:
    assert compute_carryover_out(RolloverMode.none, 120.0) == 0.0
    assert compute_carryover_out(RolloverMode.none, -120.0) == 0.0
    assert compute_carryover_out(RolloverMode.positive, 120.0) == 120.0
    assert compute_carryover_out(RolloverMode.positive, -80.0) == 0.0
    assert compute_carryover_out(RolloverMode.negative, 120.0) == 0.0
    assert compute_carryover_out(RolloverMode.negative, -80.0) == -80.0
    assert compute_carryover_out(RolloverMode.both, -80.5) == -80.5


def test_build_category_scopes_includes_direct_children() -> None:
    categories = [
        LedgerCategory(id=1, name="Home"),
        LedgerCategory(id=2, name="Rent", parent_id=1),
        LedgerCategory(id=3, name="Repairs", parent_id=1),
        LedgerCategory(id=4, name="Food"),
    ]
    scopes = build_category_scopes(categories)
    assert scopes[1] == (1, 2, 3)
    assert scopes[2] == (2,)
    assert scopes[4] == (4,)


def test_two_cycle_chain_with_both_mode() -> None:
    groceries = LedgerCategory(id=1, name="Groceries", rollover_mode=RolloverMode.both)
    first = aggregate_cycle(
        JAN,
        [groceries],
        [LedgerBudget(1, JAN.start, 1000.0)],
        [LedgerTransaction(date(2025, 1, 10), 900.0, 1)],
        {},
    )
    row = first.categories[0]
    assert row.remaining_base == 100.0
    assert row.carryover_out == 100.0
    assert row.carryover_running_total == 100.0

    second = aggregate_cycle(
        FEB,
        [groceries],
        [LedgerBudget(1, FEB.start, 1000.0)],
        [LedgerTransaction(date(2025, 2, 10), 1200.0, 1)],
        first.carryover_by_category,
    )
    row = second.categories[0]
    assert row.remaining_base == -200.0
    assert row.carryover_out == -200.0
    assert row.carryover_applied_in == 100.0
    assert row.carryover_running_total == -100.0
    assert second.cycle.carryover_negative_total == -100.0
    assert second.cycle.carryover_positive_total == 0.0
    assert second.cycle.carryover_net_total == -100.0


def test_positive_mode_never_carries_deficit() -> None:
    fun = LedgerCategory(id=7, name="Fun", rollover_mode=RolloverMode.positive)
    result = aggregate_cycle(
        JAN,
        [fun],
        [LedgerBudget(7, JAN.start, 20.0)],
        [LedgerTransaction(date(2025, 1, 3), 100.0, 7)],
        {},
    )
    assert result.categories[0].remaining_base == -80.0
    assert result.categories[0].carryover_out == 0.0


def test_chain_running_total_is_sum_of_outs() -> None:
    outs = [25.0, -40.0, 15.5, 0.0, 7.25]
    carryover: dict[int, float] = {}
    for out in outs:
        chain = apply_carryover([(1, out)], carryover)
        carryover = chain.running_total
    assert carryover[1] == sum(outs)


def test_parent_scope_spend_and_top_level_budget_total() -> None:
    categories = [
        LedgerCategory(id=1, name="Home"),
        LedgerCategory(id=2, name="Rent", parent_id=1),
        LedgerCategory(id=3, name="Food"),
    ]
    budgets = [
        LedgerBudget(1, JAN.start, 1500.0),
        LedgerBudget(2, JAN.start, 1200.0),
        LedgerBudget(3, JAN.start, 400.0),
        LedgerBudget(3, FEB.start, 999.0),
    ]
    transactions = [
        LedgerTransaction(date(2025, 1, 2), 1200.0, 2),
        LedgerTransaction(date(2025, 1, 5), 50.0, 1),
        LedgerTransaction(date(2025, 1, 6), 30.0, 3),
        LedgerTransaction(date(2025, 1, 31), 500.0, 3),
        LedgerTransaction(date(2025, 1, 7), 75.0, None),
        LedgerTransaction(date(2025, 1, 8), 60.0, 99),
    ]
    result = aggregate_cycle(JAN, categories, budgets, transactions, {})
    by_id = {row.category_id: row for row in result.categories}

    assert by_id[1].spent == 1250.0
    assert by_id[2].spent == 1200.0
    assert by_id[3].spent == 30.0
    assert by_id[3].budget_base == 400.0
    assert result.cycle.total_budget_base == 1900.0
    assert result.cycle.total_spent == 1280.0
    assert result.cycle.over_under_base == 620.0
    assert result.cycle.period_length_days == 30


def test_category_without_data_gets_zero_row() -> None:
    categories = [LedgerCategory(id=1, name="Travel", rollover_mode=RolloverMode.both)]
    result = aggregate_cycle(JAN, categories, [], [], {1: 35.0})
    row = result.categories[0]
    assert (row.budget_base, row.spent, row.remaining_base, row.carryover_out) == (
        0.0,
        0.0,
        0.0,
        0.0,
    )
    assert row.carryover_applied_in == 35.0
    assert row.carryover_running_total == 35.0


def test_rechain_keeps_base_figures() -> None:
    rows = [
        CategoryCycleRow(
            category_id=1,
            category_name="Groceries",
            rollover_mode=RolloverMode.both,
            budget_base=1000.0,
            spent=1200.0,
            remaining_base=-200.0,
            carryover_applied_in=0.0,
            carryover_out=-200.0,
            carryover_running_total=-200.0,
        )
    ]
    cycle = aggregate_cycle(
        FEB,
        [LedgerCategory(id=1, name="Groceries", rollover_mode=RolloverMode.both)],
        [LedgerBudget(1, FEB.start, 1000.0)],
        [LedgerTransaction(date(2025, 2, 1), 1200.0, 1)],
        {},
    ).cycle

    patched = rechain_cycle(cycle, rows, {1: 300.0})
    row = patched.categories[0]
    assert row.budget_base == 1000.0
    assert row.spent == 1200.0
    assert row.carryover_out == -200.0
    assert row.carryover_applied_in == 300.0
    assert row.carryover_running_total == 100.0
    assert patched.cycle.total_spent == 1200.0
    assert patched.cycle.carryover_positive_total == 100.0
    assert patched.cycle.carryover_net_total == 100.0


def test_manual_cycle_takes_entered_spend_per_category() -> None:
    categories = [
        LedgerCategory(id=1, name="Home"),
        LedgerCategory(id=2, name="Rent", parent_id=1),
    ]
    budgets = [LedgerBudget(1, JAN.start, 150.0), LedgerBudget(2, JAN.start, 50.0)]
    result = manual_cycle(JAN, categories, budgets, {1: 100.0, 2: 40.0}, {})
    by_id = {row.category_id: row for row in result.categories}

    assert by_id[1].spent == 100.0
    assert by_id[2].spent == 40.0
    assert result.cycle.total_spent == 140.0
    assert result.cycle.total_budget_base == 150.0
    assert result.cycle.over_under_base == 10.0
