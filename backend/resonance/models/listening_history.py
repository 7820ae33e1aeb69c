"""Listening history model for tracking plays."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, Float, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from resonance.database import Base


class ListeningHistory(Base):
    """Append-only play log; the sole source of what a user has heard."""

    __tablename__ = "listening_history"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    track_id: Mapped[int] = mapped_column(ForeignKey("tracks.id"), index=True)

    # Play info
    played_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    completion_percentage: Mapped[Optional[float]] = mapped_column(Float)  # 0-100

    # Time context (for temporal patterns)
    hour_of_day: Mapped[Optional[int]] = mapped_column(Integer)  # 0-23
    day_of_week: Mapped[Optional[int]] = mapped_column(Integer)  # 0=Monday

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    @classmethod
    def from_play(
        cls,
        user_id: int,
        track_id: int,
        played_at: datetime,
        completion_percentage: Optional[float] = None,
    ) -> "ListeningHistory":
        """Build an entry with the time context derived from ``played_at``."""
        return cls(
            user_id=user_id,
            track_id=track_id,
            played_at=played_at,
            completion_percentage=completion_percentage,
            hour_of_day=played_at.hour,
            day_of_week=played_at.weekday(),
        )

    def __repr__(self) -> str:
        return f"<ListeningHistory(id={self.id}, track_id={self.track_id}, played_at={self.played_at})>"
