"""
Organization — tenant root plus the weekly check-in cadence the compliance
calculator derives due instants from.

checkin_due_weekday follows `date.weekday()` (Monday=0 … Sunday=6).
"""
import uuid
from datetime import datetime
from sqlalchemy import Integer, String, Boolean, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    checkin_due_weekday: Mapped[int] = mapped_column(
        Integer, nullable=False, default=4,
        comment="0=Monday … 6=Sunday; default Friday",
    )
    checkin_due_time: Mapped[str] = mapped_column(
        String(5), nullable=False, default="17:00",
        comment='Local due time "HH:MM"',
    )
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    review_due_offset_days: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0,
        comment="Days after the check-in due instant that reviews are due",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
