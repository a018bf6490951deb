"""
Vacation — a user marked away for one week.

Vacation weeks are not due weeks: compliance leaves them out of the due and
on-time counts (the submission timing still feeds the averages). `week_of` is
matched to check-ins by week start, so any day of the week identifies it.
"""
from datetime import datetime, date
from sqlalchemy import String, DateTime, Date, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.organization import _uuid


class Vacation(Base):
    __tablename__ = "vacations"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", "week_of", name="uq_vacations_user_week"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    week_of: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
