"""
BackfillRun — bookkeeping for one backfill request.

Append-only from the API's point of view: the request inserts the row with
status "initiated", the background job moves it through "running" to a final
status and records bucket counts. Failed buckets are logged individually;
this row only carries totals.

The aggregate store consults completed runs: a bucket whose computed_at
predates a completed run covering its window was not rewritten by that run
and is treated as stale.
"""
import enum
from datetime import datetime
from sqlalchemy import Integer, String, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class BackfillStatus(str, enum.Enum):
    initiated = "initiated"
    running = "running"
    completed = "completed"
    completed_with_errors = "completed_with_errors"
    failed = "failed"


class BackfillRun(Base):
    __tablename__ = "backfill_runs"
    __table_args__ = (
        Index("ix_backfill_runs_org_status", "organization_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    range_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    range_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=BackfillStatus.initiated.value
    )
    buckets_written: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    buckets_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
