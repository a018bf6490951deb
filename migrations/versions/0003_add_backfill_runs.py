"""add backfill_runs table

Revision ID: 0003
Revises: 0002
Create Date: 2026-10-08

One row per backfill request. The aggregate store treats buckets computed
before a finished run that overlaps them as stale.
"""
from alembic import op
import sqlalchemy as sa

revision = "0003"
down_revision = "0002"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "backfill_runs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("range_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("range_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="initiated"),
        sa.Column("buckets_written", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("buckets_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_backfill_runs_id", "backfill_runs", ["id"])
    op.create_index("ix_backfill_runs_org_status", "backfill_runs", ["organization_id", "status"])


def downgrade() -> None:
    op.drop_index("ix_backfill_runs_org_status", table_name="backfill_runs")
    op.drop_index("ix_backfill_runs_id", table_name="backfill_runs")
    op.drop_table("backfill_runs")
