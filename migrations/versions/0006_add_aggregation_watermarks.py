"""add aggregation_watermarks table

Revision ID: 0006
Revises: 0005
Create Date: 2026-10-19

Per-organization progress marker for the incremental aggregate sweep.
"""
from alembic import op
import sqlalchemy as sa

revision = "0006"
down_revision = "0005"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "aggregation_watermarks",
        sa.Column("organization_id", sa.String(64), primary_key=True),
        sa.Column("last_processed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )


def downgrade() -> None:
    op.drop_table("aggregation_watermarks")
