from datetime import date
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from models import CategoryKind, RolloverMode


class BudgetSettingsIn(BaseModel):
    cycle_length_days: float = Field(..., allow_inf_nan=False)
    anchor_date: str = Field(..., min_length=1, max_length=40)


class BudgetSettingsOut(BaseModel):
    cycle_length_days: int
    anchor_date: date
    current_period_start: date
    current_period_end: date


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    kind: CategoryKind = CategoryKind.expense
    parent_id: Optional[int] = None
    rollover_mode: RolloverMode = RolloverMode.none
    order: int = 0


class CategoryRolloverIn(BaseModel):
    rollover_mode: Optional[RolloverMode] = None
    carryover_adjustment: Optional[float] = Field(default=None, allow_inf_nan=False)


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    kind: CategoryKind
    parent_id: Optional[int]
    rollover_mode: RolloverMode
    carryover_adjustment: float


class BudgetIn(BaseModel):
    category_id: int
    amount: float = Field(..., allow_inf_nan=False)
    period_start: Optional[date] = None


class AllocationIn(BaseModel):
    category_id: int
    amount: float = Field(..., allow_inf_nan=False)


class BudgetAllocationIn(BaseModel):
    parent_category_id: int
    parent_amount: float = Field(..., allow_inf_nan=False)
    allocations: list[AllocationIn] = Field(default_factory=list)


class TransactionIn(BaseModel):
    date: date
    amount: float = Field(..., allow_inf_nan=False)
    category_id: Optional[int] = None
    note: Optional[str] = Field(default=None, max_length=200)


class ManualCycleEntryIn(BaseModel):
    category_id: int
    spent: float


class ManualCycleIn(BaseModel):
    period_start: date
    entries: list[ManualCycleEntryIn]


class CycleSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period_start: date
    period_end: date
    period_length_days: int
    total_budget_base: float
    total_spent: float
    over_under_base: float
    carryover_positive_total: float
    carryover_negative_total: float
    carryover_net_total: float


class CategorySnapshotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    category_id: int
    category_name: str
    rollover_mode: RolloverMode
    budget_base: float
    spent: float
    remaining_base: float
    carryover_applied_in: float
    carryover_out: float
    carryover_running_total: float
    carryover_adjustment: float = 0.0
    carryover_available: float = 0.0


class CyclePageOut(BaseModel):
    items: list[CycleSummaryOut]
    next_cursor: Optional[date] = None


class CycleDetailOut(BaseModel):
    cycle: Optional[CycleSummaryOut]
    categories: list[CategorySnapshotOut] = Field(default_factory=list)


class SnapshotRebuildOut(BaseModel):
    first_period_start: Optional[date]
    last_period_start: date
    cycles_written: int
    cycles_patched: int = 0


class ManualCycleOut(BaseModel):
    period_start: date
    period_end: date
    category_count: int
    cycles_patched: int
