from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, Index, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.models.organization import _uuid


class Shoutout(Base):
    __tablename__ = "shoutouts"
    __table_args__ = (
        Index("ix_shoutouts_org_from_created", "organization_id", "from_user_id", "created_at"),
        Index("ix_shoutouts_org_to_created", "organization_id", "to_user_id", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    organization_id: Mapped[str] = mapped_column(String(64), nullable=False)
    from_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    to_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
