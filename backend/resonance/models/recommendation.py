"""Recommendation model for storing generated recommendations."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Float, DateTime, Boolean, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column

from resonance.database import Base


class Recommendation(Base):
    """Generated track recommendation for a user."""

    __tablename__ = "recommendations"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    track_id: Mapped[int] = mapped_column(ForeignKey("tracks.id"), index=True)

    # collaborative, content_based, popularity, temporal, discovery
    recommendation_type: Mapped[str] = mapped_column(String(50), index=True)
    score: Mapped[float] = mapped_column(Float, default=0.0, index=True)
    reason: Mapped[Optional[str]] = mapped_column(Text)

    # ``metadata`` is reserved on declarative classes
    extra_data: Mapped[Optional[dict]] = mapped_column("metadata", JSON, default=dict)

    # User interaction
    is_consumed: Mapped[bool] = mapped_column(Boolean, default=False)
    consumed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime, index=True)

    def __repr__(self) -> str:
        return f"<Recommendation(id={self.id}, type={self.recommendation_type}, score={self.score})>"
