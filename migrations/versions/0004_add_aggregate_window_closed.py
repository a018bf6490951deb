"""add window_closed to aggregate_buckets

Revision ID: 0004
Revises: 0003
Create Date: 2026-10-19

A bucket computed for a closed window [start, end] counts events at `end`;
the half-open [start, end) bucket with the same bounds does not. The flag
is part of the hit check so one is never served for the other.
"""
from alembic import op
import sqlalchemy as sa

revision = "0004"
down_revision = "0003"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "aggregate_buckets",
        sa.Column("window_closed", sa.Boolean(), nullable=False, server_default=sa.false()),
    )


def downgrade() -> None:
    op.drop_column("aggregate_buckets", "window_closed")
