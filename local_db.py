"""Offline, single-owner history store on an embedded SQLite file.

Mirrors the server tables closely enough that the shared aggregator sees the
same ledger rows in the same order, which keeps snapshots identical between
the two stores.
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Iterator, Optional, Union

from config import get_settings
from cycles import (
    CategoryCycleRow,
    CycleResult,
    CycleRow,
    LedgerBudget,
    LedgerCategory,
    LedgerTransaction,
)
from database import enable_sqlite_pragmas
from models import CategoryKind, RolloverMode
from periods import CycleSettings, default_cycle_settings

SCHEMA = (
    "CREATE TABLE IF NOT EXISTS budget_settings ("
    " id INTEGER PRIMARY KEY NOT NULL,"
    " cycle_length_days INTEGER NOT NULL CHECK (cycle_length_days >= 1),"
    " anchor_date TEXT NOT NULL,"
    " updated_at TEXT NOT NULL)",
    "CREATE TABLE IF NOT EXISTS categories ("
    " id INTEGER PRIMARY KEY NOT NULL,"
    " name TEXT NOT NULL,"
    " kind TEXT NOT NULL DEFAULT 'expense',"
    " parent_id INTEGER REFERENCES categories(id) ON DELETE CASCADE,"
    " rollover_mode TEXT NOT NULL DEFAULT 'none',"
    " carryover_adjustment REAL NOT NULL DEFAULT 0)",
    "CREATE TABLE IF NOT EXISTS budgets ("
    " id INTEGER PRIMARY KEY NOT NULL,"
    " category_id INTEGER NOT NULL REFERENCES categories(id) ON DELETE CASCADE,"
    " period_start TEXT NOT NULL,"
    " period_length_days INTEGER NOT NULL,"
    " amount REAL NOT NULL,"
    " UNIQUE (period_start, category_id))",
    "CREATE TABLE IF NOT EXISTS transactions ("
    " id INTEGER PRIMARY KEY NOT NULL,"
    " date TEXT NOT NULL,"
    " amount REAL NOT NULL,"
    " category_id INTEGER REFERENCES categories(id) ON DELETE SET NULL,"
    " note TEXT)",
    "CREATE INDEX IF NOT EXISTS ix_local_transactions_date ON transactions(date)",
    "CREATE TABLE IF NOT EXISTS budget_cycle_snapshots ("
    " period_start TEXT PRIMARY KEY NOT NULL,"
    " period_end TEXT NOT NULL,"
    " period_length_days INTEGER NOT NULL,"
    " total_budget_base REAL NOT NULL,"
    " total_spent REAL NOT NULL,"
    " over_under_base REAL NOT NULL,"
    " carryover_positive_total REAL NOT NULL,"
    " carryover_negative_total REAL NOT NULL,"
    " carryover_net_total REAL NOT NULL,"
    " updated_at TEXT NOT NULL)",
    "CREATE TABLE IF NOT EXISTS budget_category_cycle_snapshots ("
    " period_start TEXT NOT NULL,"
    " category_id INTEGER NOT NULL REFERENCES categories(id) ON DELETE CASCADE,"
    " category_name TEXT NOT NULL,"
    " rollover_mode TEXT NOT NULL,"
    " budget_base REAL NOT NULL,"
    " spent REAL NOT NULL,"
    " remaining_base REAL NOT NULL,"
    " carryover_applied_in REAL NOT NULL,"
    " carryover_out REAL NOT NULL,"
    " carryover_running_total REAL NOT NULL,"
    " updated_at TEXT NOT NULL,"
    " PRIMARY KEY (period_start, category_id))",
)

CYCLE_COLUMNS = (
    "period_start, period_end, period_length_days, total_budget_base, total_spent,"
    " over_under_base, carryover_positive_total, carryover_negative_total,"
    " carryover_net_total"
)

CATEGORY_COLUMNS = (
    "category_id, category_name, rollover_mode, budget_base, spent, remaining_base,"
    " carryover_applied_in, carryover_out, carryover_running_total"
)


def connect_local(path: Optional[Union[str, Path]] = None) -> sqlite3.Connection:
    target = str(path) if path is not None else str(get_settings().local_db_path)
    con = sqlite3.connect(target)
    con.row_factory = sqlite3.Row
    enable_sqlite_pragmas(con)
    init_local_schema(con)
    return con


def init_local_schema(con: sqlite3.Connection) -> None:
    with con:
        for statement in SCHEMA:
            con.execute(statement)


def _now() -> str:
    return datetime.utcnow().isoformat(timespec="seconds")


def _cycle_row(row: sqlite3.Row) -> CycleRow:
    return CycleRow(
        period_start=date.fromisoformat(row["period_start"]),
        period_end=date.fromisoformat(row["period_end"]),
        period_length_days=row["period_length_days"],
        total_budget_base=row["total_budget_base"],
        total_spent=row["total_spent"],
        over_under_base=row["over_under_base"],
        carryover_positive_total=row["carryover_positive_total"],
        carryover_negative_total=row["carryover_negative_total"],
        carryover_net_total=row["carryover_net_total"],
    )


def _category_row(row: sqlite3.Row) -> CategoryCycleRow:
    return CategoryCycleRow(
        category_id=row["category_id"],
        category_name=row["category_name"],
        rollover_mode=RolloverMode(row["rollover_mode"]),
        budget_base=row["budget_base"],
        spent=row["spent"],
        remaining_base=row["remaining_base"],
        carryover_applied_in=row["carryover_applied_in"],
        carryover_out=row["carryover_out"],
        carryover_running_total=row["carryover_running_total"],
    )


class LocalHistoryStore:
    def __init__(self, con: sqlite3.Connection) -> None:
        self.con = con
        self._depth = 0

    @contextmanager
    def atomic(self) -> Iterator[None]:
        if self._depth:
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
            return
        self._depth = 1
        try:
            with self.con:
                yield
        finally:
            self._depth = 0

    # Ledger writes for the offline app; the server side owns its own services.

    def save_settings(self, settings: CycleSettings) -> None:
        with self.con:
            self.con.execute(
                "INSERT INTO budget_settings (id, cycle_length_days, anchor_date, updated_at)"
                " VALUES (1, ?, ?, ?)"
                " ON CONFLICT(id) DO UPDATE SET cycle_length_days = excluded.cycle_length_days,"
                " anchor_date = excluded.anchor_date, updated_at = excluded.updated_at",
                (settings.cycle_length_days, settings.anchor_date.isoformat(), _now()),
            )

    def ensure_settings(self, today: Optional[date] = None) -> CycleSettings:
        existing = self.get_cycle_settings()
        if existing is not None:
            return existing
        settings = default_cycle_settings(today)
        self.save_settings(settings)
        return settings

    def add_category(
        self,
        name: str,
        *,
        kind: CategoryKind = CategoryKind.expense,
        parent_id: Optional[int] = None,
        rollover_mode: RolloverMode = RolloverMode.none,
        category_id: Optional[int] = None,
    ) -> int:
        if parent_id is not None:
            parent = self.con.execute(
                "SELECT parent_id FROM categories WHERE id = ?", (parent_id,)
            ).fetchone()
            if parent is None:
                raise ValueError("Parent category not found")
            if parent["parent_id"] is not None:
                raise ValueError("Sub-categories cannot have their own sub-categories")
        with self.con:
            cur = self.con.execute(
                "INSERT INTO categories (id, name, kind, parent_id, rollover_mode)"
                " VALUES (?, ?, ?, ?, ?)",
                (category_id, name.strip(), kind.value, parent_id, rollover_mode.value),
            )
        return int(cur.lastrowid)

    def upsert_budget(
        self, category_id: int, period_start: date, amount: float, period_length_days: int
    ) -> None:
        self.ensure_settings()
        with self.con:
            self.con.execute(
                "INSERT INTO budgets (category_id, period_start, period_length_days, amount)"
                " VALUES (?, ?, ?, ?)"
                " ON CONFLICT(period_start, category_id) DO UPDATE SET amount = excluded.amount",
                (category_id, period_start.isoformat(), period_length_days, amount),
            )

    def add_transaction(
        self,
        txn_date: date,
        amount: float,
        category_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> int:
        self.ensure_settings()
        with self.con:
            cur = self.con.execute(
                "INSERT INTO transactions (date, amount, category_id, note) VALUES (?, ?, ?, ?)",
                (txn_date.isoformat(), amount, category_id, note),
            )
        return int(cur.lastrowid)

    # HistoryStore

    def get_cycle_settings(self) -> Optional[CycleSettings]:
        row = self.con.execute(
            "SELECT cycle_length_days, anchor_date FROM budget_settings WHERE id = 1"
        ).fetchone()
        if row is None:
            return None
        return CycleSettings(
            cycle_length_days=row["cycle_length_days"],
            anchor_date=date.fromisoformat(row["anchor_date"]),
        )

    def list_expense_categories(self) -> list[LedgerCategory]:
        rows = self.con.execute(
            "SELECT id, name, parent_id, rollover_mode, carryover_adjustment"
            " FROM categories WHERE kind = ? ORDER BY id",
            (CategoryKind.expense.value,),
        ).fetchall()
        return [
            LedgerCategory(
                id=row["id"],
                name=row["name"],
                rollover_mode=RolloverMode(row["rollover_mode"] or RolloverMode.none.value),
                parent_id=row["parent_id"],
                carryover_adjustment=row["carryover_adjustment"] or 0.0,
            )
            for row in rows
        ]

    def list_budgets(self, period_start: Optional[date] = None) -> list[LedgerBudget]:
        sql = "SELECT category_id, period_start, amount FROM budgets"
        params: tuple = ()
        if period_start is not None:
            sql += " WHERE period_start = ?"
            params = (period_start.isoformat(),)
        sql += " ORDER BY period_start, category_id"
        return [
            LedgerBudget(
                category_id=row["category_id"],
                period_start=date.fromisoformat(row["period_start"]),
                amount=row["amount"],
            )
            for row in self.con.execute(sql, params).fetchall()
        ]

    def list_transactions(
        self, start: Optional[date] = None, end: Optional[date] = None
    ) -> list[LedgerTransaction]:
        clauses = []
        params: list[str] = []
        if start is not None:
            clauses.append("date >= ?")
            params.append(start.isoformat())
        if end is not None:
            clauses.append("date < ?")
            params.append(end.isoformat())
        sql = "SELECT date, amount, category_id FROM transactions"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        sql += " ORDER BY date, id"
        return [
            LedgerTransaction(
                date=date.fromisoformat(row["date"]),
                amount=row["amount"],
                category_id=row["category_id"],
            )
            for row in self.con.execute(sql, params).fetchall()
        ]

    def earliest_activity_date(self) -> Optional[date]:
        row = self.con.execute(
            "SELECT (SELECT MIN(period_start) FROM budgets) AS budget_min,"
            " (SELECT MIN(date) FROM transactions) AS txn_min"
        ).fetchone()
        candidates = [value for value in (row["budget_min"], row["txn_min"]) if value]
        if not candidates:
            return None
        return date.fromisoformat(min(candidates))

    def get_cycle(self, period_start: date) -> Optional[CycleRow]:
        row = self.con.execute(
            f"SELECT {CYCLE_COLUMNS} FROM budget_cycle_snapshots WHERE period_start = ?",
            (period_start.isoformat(),),
        ).fetchone()
        return _cycle_row(row) if row else None

    def get_category_rows(self, period_start: date) -> list[CategoryCycleRow]:
        rows = self.con.execute(
            f"SELECT {CATEGORY_COLUMNS} FROM budget_category_cycle_snapshots"
            " WHERE period_start = ? ORDER BY category_id",
            (period_start.isoformat(),),
        ).fetchall()
        return [_category_row(row) for row in rows]

    def list_cycles_after(self, period_start: date) -> list[CycleRow]:
        rows = self.con.execute(
            f"SELECT {CYCLE_COLUMNS} FROM budget_cycle_snapshots"
            " WHERE period_start > ? ORDER BY period_start ASC",
            (period_start.isoformat(),),
        ).fetchall()
        return [_cycle_row(row) for row in rows]

    def list_cycles_desc(self, cursor: Optional[date], limit: int) -> list[CycleRow]:
        if cursor is None:
            rows = self.con.execute(
                f"SELECT {CYCLE_COLUMNS} FROM budget_cycle_snapshots"
                " ORDER BY period_start DESC LIMIT ?",
                (limit,),
            ).fetchall()
        else:
            rows = self.con.execute(
                f"SELECT {CYCLE_COLUMNS} FROM budget_cycle_snapshots"
                " WHERE period_start <= ? ORDER BY period_start DESC LIMIT ?",
                (cursor.isoformat(), limit),
            ).fetchall()
        return [_cycle_row(row) for row in rows]

    def replace_cycle(self, result: CycleResult) -> None:
        cycle = result.cycle
        key = cycle.period_start.isoformat()
        now = _now()
        with self.atomic():
            self.con.execute("DELETE FROM budget_cycle_snapshots WHERE period_start = ?", (key,))
            self.con.execute(
                "DELETE FROM budget_category_cycle_snapshots WHERE period_start = ?", (key,)
            )
            self.con.execute(
                f"INSERT INTO budget_cycle_snapshots ({CYCLE_COLUMNS}, updated_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    key,
                    cycle.period_end.isoformat(),
                    cycle.period_length_days,
                    cycle.total_budget_base,
                    cycle.total_spent,
                    cycle.over_under_base,
                    cycle.carryover_positive_total,
                    cycle.carryover_negative_total,
                    cycle.carryover_net_total,
                    now,
                ),
            )
            self.con.executemany(
                f"INSERT INTO budget_category_cycle_snapshots (period_start, {CATEGORY_COLUMNS}, updated_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        key,
                        row.category_id,
                        row.category_name,
                        row.rollover_mode.value,
                        row.budget_base,
                        row.spent,
                        row.remaining_base,
                        row.carryover_applied_in,
                        row.carryover_out,
                        row.carryover_running_total,
                        now,
                    )
                    for row in result.categories
                ],
            )

    def patch_carryover(self, result: CycleResult) -> None:
        cycle = result.cycle
        key = cycle.period_start.isoformat()
        now = _now()
        with self.atomic():
            cur = self.con.execute(
                "UPDATE budget_cycle_snapshots SET carryover_positive_total = ?,"
                " carryover_negative_total = ?, carryover_net_total = ?, updated_at = ?"
                " WHERE period_start = ?",
                (
                    cycle.carryover_positive_total,
                    cycle.carryover_negative_total,
                    cycle.carryover_net_total,
                    now,
                    key,
                ),
            )
            if cur.rowcount == 0:
                raise ValueError(f"Cycle {cycle.period_start} has no snapshot")
            self.con.executemany(
                "UPDATE budget_category_cycle_snapshots SET carryover_applied_in = ?,"
                " carryover_running_total = ?, updated_at = ?"
                " WHERE period_start = ? AND category_id = ?",
                [
                    (
                        row.carryover_applied_in,
                        row.carryover_running_total,
                        now,
                        key,
                        row.category_id,
                    )
                    for row in result.categories
                ],
            )
