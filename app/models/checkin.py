"""
Checkin — one weekly check-in per user, optionally reviewed by a leader.

`week_of` is the nominal week the check-in belongs to; pulse and compliance
bucket by it. `submitted_at` and `reviewed_at` are the instants compliance is
measured against: once set they are never rewritten, even if the check-in
itself is amended later.
"""
from datetime import datetime, date
from sqlalchemy import Integer, String, Boolean, DateTime, Date, Index, CheckConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, validates

from app.db.base import Base
from app.models.organization import _uuid


class Checkin(Base):
    __tablename__ = "checkins"
    __table_args__ = (
        Index("ix_checkins_org_week_of", "organization_id", "week_of"),
        Index("ix_checkins_org_user_week_of", "organization_id", "user_id", "week_of"),
        Index("ix_checkins_reviewed_by", "organization_id", "reviewed_by"),
        CheckConstraint("overall_mood BETWEEN 1 AND 5", name="ck_checkins_mood_range"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    week_of: Mapped[date] = mapped_column(Date, nullable=False)
    overall_mood: Mapped[int] = mapped_column(Integer, nullable=False, comment="1-5")
    is_complete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    @validates("submitted_at", "reviewed_at")
    def _write_once(self, key: str, value: datetime | None) -> datetime | None:
        current = getattr(self, key)
        if current is not None and value != current:
            raise ValueError(f"{key} is already set and cannot be rewritten")
        return value

    @validates("overall_mood")
    def _mood_in_range(self, key: str, value: int) -> int:
        if not 1 <= value <= 5:
            raise ValueError("overall_mood must be between 1 and 5")
        return value
