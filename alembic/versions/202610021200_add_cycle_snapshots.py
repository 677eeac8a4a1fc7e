"""add cycle snapshot tables

Revision ID: 202610021200
Revises: 202610011200
Create Date: 2026-10-02 12:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610021200"
down_revision = "202610011200"
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "budget_cycle_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("period_length_days", sa.Integer(), nullable=False),
        sa.Column("total_budget_base", sa.Float(), nullable=False),
        sa.Column("total_spent", sa.Float(), nullable=False),
        sa.Column("over_under_base", sa.Float(), nullable=False),
        sa.Column("carryover_positive_total", sa.Float(), nullable=False),
        sa.Column("carryover_negative_total", sa.Float(), nullable=False),
        sa.Column("carryover_net_total", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "user_id", "period_start", name="uq_cycle_snapshot_user_period"
        ),
        sa.CheckConstraint("period_length_days >= 1", name="ck_cycle_snapshot_length"),
    )

    op.create_table(
        "budget_category_cycle_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, default=1),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("category_name", sa.String(length=100), nullable=False),
        sa.Column(
            "rollover_mode",
            sa.Enum("none", "positive", "negative", "both", name="rollovermode"),
            nullable=False,
        ),
        sa.Column("budget_base", sa.Float(), nullable=False),
        sa.Column("spent", sa.Float(), nullable=False),
        sa.Column("remaining_base", sa.Float(), nullable=False),
        sa.Column("carryover_applied_in", sa.Float(), nullable=False),
        sa.Column("carryover_out", sa.Float(), nullable=False),
        sa.Column("carryover_running_total", sa.Float(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "user_id",
            "period_start",
            "category_id",
            name="uq_category_snapshot_user_period_category",
        ),
    )
    op.create_index(
        "ix_category_snapshot_user_period",
        "budget_category_cycle_snapshots",
        ["user_id", "period_start"],
    )


def downgrade():
    op.drop_index(
        "ix_category_snapshot_user_period",
        table_name="budget_category_cycle_snapshots",
    )
    op.drop_table("budget_category_cycle_snapshots")
    op.drop_table("budget_cycle_snapshots")
