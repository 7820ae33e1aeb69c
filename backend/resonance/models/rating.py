"""Per-user track rating model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from resonance.database import Base


class UserTrackRating(Base):
    """Explicit user feedback on a track.

    Banned tracks are never recommended to that user again.
    """

    __tablename__ = "user_track_ratings"
    __table_args__ = (UniqueConstraint("user_id", "track_id", name="uq_user_track_rating"),)

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    track_id: Mapped[int] = mapped_column(ForeignKey("tracks.id"), index=True)

    rating: Mapped[Optional[int]] = mapped_column(Integer)  # 1-5
    is_loved: Mapped[bool] = mapped_column(Boolean, default=False)
    is_banned: Mapped[bool] = mapped_column(Boolean, default=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self) -> str:
        return f"<UserTrackRating(user_id={self.user_id}, track_id={self.track_id}, rating={self.rating})>"
