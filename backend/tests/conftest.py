from datetime import datetime
from typing import Dict, List, Optional, Sequence, Set

import pytest

from resonance.models.recommendation import Recommendation
from resonance.models.track import Track
from resonance.models.user import User
from resonance.services import persistence
from resonance.services.storage import (
    RecommendationTotals,
    StorageError,
    TrackPopularity,
    TrackTimeAggregate,
    UserListeningStats,
)

FIXED_NOW = datetime(2026, 10, 19, 8, 30)  # a Monday


class FakeStorage:
    """In-memory stand-in for the SQL storage adapter."""

    def __init__(
        self,
        users: Sequence[User] = (),
        history: Optional[Dict[int, List[int]]] = None,
        tracks: Sequence[Track] = (),
        popularity: Sequence[TrackPopularity] = (),
        time_aggregates: Sequence[TrackTimeAggregate] = (),
        banned: Optional[Dict[int, Set[int]]] = None,
        trending: Sequence[Track] = (),
        preferred_artists: Optional[Dict[int, Set[int]]] = None,
    ):
        self.users = list(users)
        self.history = history or {}
        self.tracks = list(tracks)
        self.popularity = list(popularity)
        self.time_aggregates = list(time_aggregates)
        self.banned = banned or {}
        self.trending = list(trending)
        self.preferred_artists = preferred_artists or {}

        self.saved: List[tuple] = []
        self.history_calls: List[tuple] = []
        self.trending_calls: List[tuple] = []
        self.failing_users: Set[int] = set()
        self.fail_tracks = False
        self.ping_ok = True
        self.before_save = None

    async def list_active_users(self):
        return [user for user in self.users if user.is_active]

    async def get_user_listening_stats(self, user_id):
        if user_id in self.failing_users:
            raise StorageError("connection reset")
        tracks = self.history.get(user_id, [])
        return UserListeningStats(
            user_id=user_id, total_plays=len(tracks), unique_tracks=len(set(tracks))
        )

    async def get_user_track_history(self, user_id, limit):
        self.history_calls.append((user_id, limit))
        return list(dict.fromkeys(self.history.get(user_id, [])))[:limit]

    async def get_user_heard_tracks(self, user_id):
        return set(self.history.get(user_id, []))

    async def get_user_ratings(self, user_id):
        return []

    async def get_banned_tracks(self, user_id):
        return set(self.banned.get(user_id, set()))

    async def get_all_tracks(self):
        if self.fail_tracks:
            raise StorageError("tracks unavailable")
        return list(self.tracks)

    async def get_track_popularity_aggregates(self):
        return list(self.popularity)

    async def get_track_time_aggregates(self):
        return list(self.time_aggregates)

    async def get_trending_tracks(self, days, now):
        self.trending_calls.append((days, now))
        return list(self.trending)

    async def get_user_preferred_artists(self, user_id):
        return set(self.preferred_artists.get(user_id, set()))

    async def save_recommendations(self, user_id, results, now):
        if self.before_save is not None:
            await self.before_save(user_id)
        rows = persistence.build_recommendation_rows(user_id, results, now)
        self.saved.append((user_id, rows, now))
        return len(rows)

    async def get_user_recommendations(self, user_id, limit, now):
        rows = [row for uid, batch, _ in self.saved if uid == user_id for row in batch]
        return rows[:limit]

    async def mark_recommendation_consumed(self, recommendation_id, now):
        return False

    async def get_recommendation_totals(self):
        rows: List[Recommendation] = [row for _, batch, _ in self.saved for row in batch]
        if not rows:
            return RecommendationTotals()
        return RecommendationTotals(
            total=len(rows),
            consumed=sum(1 for row in rows if row.is_consumed),
            average_score=sum(row.score for row in rows) / len(rows),
        )

    async def prune_expired_recommendations(self, now):
        return 0

    async def ping(self):
        if not self.ping_ok:
            raise StorageError("database unavailable")
        return True


def make_user(user_id: int, active: bool = True) -> User:
    return User(id=user_id, username=f"user{user_id}", is_active=active)


def make_track(track_id: int, artist_id: int = 1, genre: Optional[str] = "rock", **features) -> Track:
    return Track(id=track_id, title=f"Track {track_id}", artist_id=artist_id, genre=genre, **features)


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW
