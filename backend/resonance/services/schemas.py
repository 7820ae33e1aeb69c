"""Value objects shared by the recommendation engine components."""

import enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Fixed genre taxonomy; every genre vector has one slot per entry.
GENRE_TAXONOMY = [
    "rock", "pop", "hip-hop", "electronic", "jazz",
    "classical", "country", "r&b", "metal", "folk",
    "blues", "reggae", "punk", "soul", "latin",
    "indie", "ambient", "funk", "world", "soundtrack",
]
GENRE_DIMENSIONS = len(GENRE_TAXONOMY)


class RecommendationType(str, enum.Enum):
    """Strategy that produced a recommendation."""
    COLLABORATIVE = "collaborative"
    CONTENT_BASED = "content_based"
    POPULARITY = "popularity"
    TEMPORAL = "temporal"
    DISCOVERY = "discovery"


class TrackFeatures(BaseModel):
    """Feature vector for content-based filtering.

    Also used for a user's taste profile, in which case ``track_id`` is None.
    Missing scalar attributes are ``None`` and drop out of similarity math.
    """

    model_config = ConfigDict(frozen=True)

    track_id: Optional[int] = None
    artist_id: Optional[int] = None
    genre_vector: List[float] = Field(default_factory=lambda: [0.0] * GENRE_DIMENSIONS)
    tempo: Optional[float] = None
    energy: Optional[float] = None
    valence: Optional[float] = None
    danceability: Optional[float] = None
    acousticness: Optional[float] = None
    instrumentalness: Optional[float] = None
    year: Optional[float] = None
    popularity: float = 0.0
    duration_ms: Optional[int] = None


class UserSimilarity(BaseModel):
    """Jaccard similarity of one user to another user."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    other_user_id: int
    similarity_score: float
    common_tracks: int
    computed_at: datetime


class TemporalPattern(BaseModel):
    """Learned association between a track and a time window."""

    model_config = ConfigDict(frozen=True)

    track_id: int
    hour_of_day: int  # 0-23
    day_of_week: int  # 0=Monday
    confidence: float

    def matches(self, hour: int, weekday: int) -> bool:
        """A pattern matches when either the hour or the weekday agrees."""
        return self.hour_of_day == hour or self.day_of_week == weekday


class RecommendationResult(BaseModel):
    """Scored candidate produced by a strategy."""

    track_id: int
    score: float
    reason: str
    recommendation_type: RecommendationType
    metadata: Dict[str, Any] = Field(default_factory=dict)


class RecommendationStats(BaseModel):
    """Engine statistics."""

    total_recommendations: int = 0
    recommendations_consumed: int = 0
    average_score: float = 0.0
    last_generation: Optional[datetime] = None
    active_users: int = 0
    cache_hits: int = 0
    cache_misses: int = 0
