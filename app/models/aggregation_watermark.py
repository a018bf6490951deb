"""
AggregationWatermark — how far the incremental sweep has processed an
organization's events.

One row per organization. `last_processed_at` is the newest event timestamp
the last clean sweep saw; the next sweep picks up everything at or after it.
"""
from datetime import datetime
from sqlalchemy import String, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class AggregationWatermark(Base):
    __tablename__ = "aggregation_watermarks"

    organization_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_processed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
