"""Track model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import String, Integer, Float, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from resonance.database import Base


class Track(Base):
    """Track entity. Immutable apart from the aggregate counters."""

    __tablename__ = "tracks"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)

    # Basic info
    title: Mapped[str] = mapped_column(String(500), default="")
    artist_id: Mapped[int] = mapped_column(Integer, index=True)
    album_id: Mapped[Optional[int]] = mapped_column(Integer, index=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer)
    genre: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    release_year: Mapped[Optional[int]] = mapped_column(Integer)

    # Audio attributes
    tempo: Mapped[Optional[float]] = mapped_column(Float)  # BPM
    energy: Mapped[Optional[float]] = mapped_column(Float)
    valence: Mapped[Optional[float]] = mapped_column(Float)
    danceability: Mapped[Optional[float]] = mapped_column(Float)
    acousticness: Mapped[Optional[float]] = mapped_column(Float)
    instrumentalness: Mapped[Optional[float]] = mapped_column(Float)

    # Aggregate counters
    play_count: Mapped[int] = mapped_column(Integer, default=0)
    love_count: Mapped[int] = mapped_column(Integer, default=0)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    def __repr__(self) -> str:
        return f"<Track(id={self.id}, title='{self.title}')>"
