from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from myrad.db.models.base import Base


class PointsEntry(Base):
    """Append-only points ledger row; only opt-out deletes these, in bulk."""

    __tablename__ = "points_history"
    __table_args__ = (
        Index("idx_points_history_user_created", "user_id", "created_at"),
        Index("idx_points_history_user_reason", "user_id", "reason"),
        Index("idx_points_history_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id"), nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("now()"),
    )
