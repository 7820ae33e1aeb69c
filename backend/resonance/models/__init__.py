"""Database models."""

from resonance.models.user import User
from resonance.models.track import Track
from resonance.models.listening_history import ListeningHistory
from resonance.models.rating import UserTrackRating
from resonance.models.recommendation import Recommendation

__all__ = [
    "User",
    "Track",
    "ListeningHistory",
    "UserTrackRating",
    "Recommendation",
]
