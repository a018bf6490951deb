"""add aggregate_buckets table

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-05

Precomputed per-window metric values. Unique constraint over the bucket
identity makes every write an upsert; entity_id is "" (not NULL) for
organization scope so the constraint holds there too.
"""
from alembic import op
import sqlalchemy as sa

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "aggregate_buckets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("scope", sa.String(16), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False, server_default=""),
        sa.Column("metric_type", sa.String(32), nullable=False),
        sa.Column("period", sa.String(16), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("window_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_aggregate_buckets_id", "aggregate_buckets", ["id"])
    op.create_index(
        "ix_aggregate_buckets_organization_id", "aggregate_buckets", ["organization_id"]
    )
    op.create_unique_constraint(
        "uq_aggregate_bucket_identity",
        "aggregate_buckets",
        ["organization_id", "scope", "entity_id", "metric_type", "period", "window_start"],
    )


def downgrade() -> None:
    op.drop_constraint("uq_aggregate_bucket_identity", "aggregate_buckets", type_="unique")
    op.drop_index("ix_aggregate_buckets_organization_id", table_name="aggregate_buckets")
    op.drop_index("ix_aggregate_buckets_id", table_name="aggregate_buckets")
    op.drop_table("aggregate_buckets")
