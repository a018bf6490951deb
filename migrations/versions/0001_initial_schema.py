"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-01 00:00:00.000000

Event tables the analytics engine reads: organizations (with check-in
cadence), teams, users, checkins, shoutouts, wins.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- organizations ---
    op.create_table(
        "organizations",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("checkin_due_weekday", sa.Integer(), nullable=False, server_default="4"),
        sa.Column("checkin_due_time", sa.String(5), nullable=False, server_default="17:00"),
        sa.Column("timezone", sa.String(64), nullable=False, server_default="UTC"),
        sa.Column("review_due_offset_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    # --- teams ---
    op.create_table(
        "teams",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("leader_id", sa.String(64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_teams_organization_id", "teams", ["organization_id"])

    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("team_id", sa.String(64), nullable=True),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_organization_id", "users", ["organization_id"])
    op.create_index("ix_users_org_team", "users", ["organization_id", "team_id"])

    # --- checkins ---
    op.create_table(
        "checkins",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("week_of", sa.Date(), nullable=False),
        sa.Column("overall_mood", sa.Integer(), nullable=False),
        sa.Column("is_complete", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.String(64), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("overall_mood BETWEEN 1 AND 5", name="ck_checkins_mood_range"),
    )
    op.create_index("ix_checkins_org_week_of", "checkins", ["organization_id", "week_of"])
    op.create_index(
        "ix_checkins_org_user_week_of", "checkins", ["organization_id", "user_id", "week_of"]
    )
    op.create_index("ix_checkins_reviewed_by", "checkins", ["organization_id", "reviewed_by"])

    # --- shoutouts ---
    op.create_table(
        "shoutouts",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("from_user_id", sa.String(64), nullable=False),
        sa.Column("to_user_id", sa.String(64), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_shoutouts_org_from_created", "shoutouts", ["organization_id", "from_user_id", "created_at"]
    )
    op.create_index(
        "ix_shoutouts_org_to_created", "shoutouts", ["organization_id", "to_user_id", "created_at"]
    )

    # --- wins ---
    op.create_table(
        "wins",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("organization_id", sa.String(64), nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_wins_org_created", "wins", ["organization_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_wins_org_created", table_name="wins")
    op.drop_table("wins")
    op.drop_index("ix_shoutouts_org_to_created", table_name="shoutouts")
    op.drop_index("ix_shoutouts_org_from_created", table_name="shoutouts")
    op.drop_table("shoutouts")
    op.drop_index("ix_checkins_reviewed_by", table_name="checkins")
    op.drop_index("ix_checkins_org_user_week_of", table_name="checkins")
    op.drop_index("ix_checkins_org_week_of", table_name="checkins")
    op.drop_table("checkins")
    op.drop_index("ix_users_org_team", table_name="users")
    op.drop_index("ix_users_organization_id", table_name="users")
    op.drop_table("users")
    op.drop_index("ix_teams_organization_id", table_name="teams")
    op.drop_table("teams")
    op.drop_table("organizations")
