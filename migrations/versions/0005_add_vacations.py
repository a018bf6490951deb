"""add vacations table

Revision ID: 0005
Revises: 0004
Create Date: 2026-10-19

One row per user per vacation week. Compliance excludes these weeks from the
due counts.
"""
from alembic import op
import sqlalchemy as sa

revision = "0005"
down_revision = "0004"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "vacations",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("week_of", sa.Date(), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "organization_id", "user_id", "week_of", name="uq_vacations_user_week"
        ),
    )
    op.create_index("ix_vacations_organization_id", "vacations", ["organization_id"])


def downgrade() -> None:
    op.drop_index("ix_vacations_organization_id", table_name="vacations")
    op.drop_table("vacations")
