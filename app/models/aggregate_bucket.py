"""
AggregateBucket — precomputed metric value for one (scope, metric, period window).

The event tables remain the source of truth; this table is a derived cache so
reads don't recompute on every request. Rows are written only by the
aggregate read path (lazy write-through), by backfill and by the incremental
sweep, and are overwritten
in place on recompute: the unique constraint over the bucket identity makes
every write an upsert.

window_closed records whether events at window_end were counted; a closed and a
half-open window with the same bounds are different buckets to a reader.

entity_id is "" for organization scope so the unique constraint also holds
there (NULLs never collide).

value: JSON-encoded dict, schema depends on metric_type
(see app/services/metrics.py).
"""
from datetime import datetime
from sqlalchemy import Integer, String, Text, DateTime, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class AggregateBucket(Base):
    __tablename__ = "aggregate_buckets"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "scope", "entity_id", "metric_type", "period", "window_start",
            name="uq_aggregate_bucket_identity",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    scope: Mapped[str] = mapped_column(
        String(16), nullable=False,
        comment='"organization", "team" or "user"',
    )
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    metric_type: Mapped[str] = mapped_column(String(32), nullable=False)
    period: Mapped[str] = mapped_column(String(16), nullable=False)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    window_closed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
        comment="True when window_end itself is inside the window",
    )
    value: Mapped[str] = mapped_column(Text, nullable=False)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False,
        comment="Advisory staleness marker; last write wins on this column",
    )
