from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class CategoryKind(str, Enum):
    expense = "expense"
    income = "income"
    transfer = "transfer"


class RolloverMode(str, Enum):
    none = "none"
    positive = "positive"
    negative = "negative"
    both = "both"


ROLLOVER_MODE_ENUM = SAEnum(
    RolloverMode,
    name="rollovermode",
    values_callable=lambda enum_cls: [member.value for member in enum_cls],
)


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class BudgetSettings(Base, TimestampMixin):
    __tablename__ = "budget_settings"
    __table_args__ = (
        UniqueConstraint("user_id", name="uq_budget_settings_user"),
        CheckConstraint("cycle_length_days >= 1", name="ck_settings_cycle_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    cycle_length_days: Mapped[int] = mapped_column(Integer, nullable=False)
    anchor_date: Mapped[date] = mapped_column(Date, nullable=False)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    kind: Mapped[CategoryKind] = mapped_column(
        SAEnum(CategoryKind), nullable=False, default=CategoryKind.expense
    )
    parent_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE")
    )
    rollover_mode: Mapped[RolloverMode] = mapped_column(
        ROLLOVER_MODE_ENUM, nullable=False, default=RolloverMode.none
    )
    carryover_adjustment: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0
    )
    order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    parent: Mapped[Optional["Category"]] = relationship(
        "Category", remote_side="Category.id", back_populates="children"
    )
    children: Mapped[list["Category"]] = relationship(
        "Category", back_populates="parent"
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint("user_id", "kind", "name", name="uq_category_user_kind_name"),
        Index("ix_categories_user_parent", "user_id", "parent_id"),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_length_days: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "period_start",
            "category_id",
            name="uq_budget_user_period_category",
        ),
        Index("ix_budget_user_period", "user_id", "period_start"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL")
    )
    note: Mapped[Optional[str]] = mapped_column(Text)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    date: Mapped[date] = mapped_column(Date, nullable=False)

    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_category_date", "user_id", "category_id", "date"),
    )


class BudgetCycleSnapshot(Base, TimestampMixin):
    __tablename__ = "budget_cycle_snapshots"
    __table_args__ = (
        UniqueConstraint("user_id", "period_start", name="uq_cycle_snapshot_user_period"),
        CheckConstraint("period_length_days >= 1", name="ck_cycle_snapshot_length"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    period_length_days: Mapped[int] = mapped_column(Integer, nullable=False)
    total_budget_base: Mapped[float] = mapped_column(Float, nullable=False)
    total_spent: Mapped[float] = mapped_column(Float, nullable=False)
    over_under_base: Mapped[float] = mapped_column(Float, nullable=False)
    carryover_positive_total: Mapped[float] = mapped_column(Float, nullable=False)
    carryover_negative_total: Mapped[float] = mapped_column(Float, nullable=False)
    carryover_net_total: Mapped[float] = mapped_column(Float, nullable=False)


class BudgetCategoryCycleSnapshot(Base, TimestampMixin):
    __tablename__ = "budget_category_cycle_snapshots"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "period_start",
            "category_id",
            name="uq_category_snapshot_user_period_category",
        ),
        Index("ix_category_snapshot_user_period", "user_id", "period_start"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    category_name: Mapped[str] = mapped_column(String(100), nullable=False)
    rollover_mode: Mapped[RolloverMode] = mapped_column(
        ROLLOVER_MODE_ENUM, nullable=False
    )
    budget_base: Mapped[float] = mapped_column(Float, nullable=False)
    spent: Mapped[float] = mapped_column(Float, nullable=False)
    remaining_base: Mapped[float] = mapped_column(Float, nullable=False)
    carryover_applied_in: Mapped[float] = mapped_column(Float, nullable=False)
    carryover_out: Mapped[float] = mapped_column(Float, nullable=False)
    carryover_running_total: Mapped[float] = mapped_column(Float, nullable=False)
