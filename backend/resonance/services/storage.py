"""Storage boundary of the recommendation engine.

The engine only talks to the persistence layer through
:class:`RecommendationStorage`. :class:`SqlRecommendationStorage` implements
it on top of the async SQLAlchemy session factory.
"""

import logging
import math
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Dict, List, Optional, Protocol, Sequence, Set

from pydantic import BaseModel
from sqlalchemy import case, delete, distinct, func, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from resonance.models.listening_history import ListeningHistory
from resonance.models.rating import UserTrackRating
from resonance.models.recommendation import Recommendation
from resonance.models.track import Track
from resonance.models.user import User
from resonance.services import persistence
from resonance.services.schemas import RecommendationResult

logger = logging.getLogger(__name__)

TRENDING_LIMIT = 100
PREFERRED_ARTIST_MIN_PLAYS = 3
PREFERRED_ARTIST_LIMIT = 20


class StorageError(Exception):
    """Read or write failure against the persistence layer."""


class UserListeningStats(BaseModel):
    """Aggregate listening figures for one user."""
    user_id: int
    total_plays: int = 0
    unique_tracks: int = 0
    avg_completion_rate: Optional[float] = None  # 0-1
    last_played_at: Optional[datetime] = None


class TrackPopularity(BaseModel):
    """Per-track popularity aggregates."""
    track_id: int
    play_count: int = 0
    unique_listeners: int = 0
    avg_completion_rate: Optional[float] = None  # 0-1
    rating_count: int = 0
    avg_rating: Optional[float] = None  # 1-5
    love_count: int = 0

    def popularity_score(self) -> float:
        """Blend of five equally weighted signals, clamped to 1.0."""
        play_weight = _log_or_zero(self.play_count) / 10.0
        listener_weight = _log_or_zero(self.unique_listeners) / 5.0
        completion_weight = (
            self.avg_completion_rate if self.avg_completion_rate is not None else 0.5
        )
        rating_weight = (self.avg_rating if self.avg_rating is not None else 2.5) / 5.0
        love_weight = _log_or_zero(self.love_count) / 3.0

        score = (
            play_weight + listener_weight + completion_weight + rating_weight + love_weight
        ) / 5.0
        return max(0.0, min(1.0, score))


class TrackTimeAggregate(BaseModel):
    """Number of plays of a track within one (hour, weekday) cell."""
    track_id: int
    hour_of_day: int
    day_of_week: int
    play_count: int


class RecommendationTotals(BaseModel):
    """Totals over persisted recommendations."""
    total: int = 0
    consumed: int = 0
    average_score: float = 0.0


def _log_or_zero(count: int) -> float:
    return max(0.0, math.log(count)) if count > 0 else 0.0


class RecommendationStorage(Protocol):
    """Operations the engine needs from the persistence layer."""

    async def list_active_users(self) -> List[User]: ...

    async def get_user_listening_stats(self, user_id: int) -> UserListeningStats: ...

    async def get_user_track_history(self, user_id: int, limit: int) -> List[int]: ...

    async def get_user_heard_tracks(self, user_id: int) -> Set[int]: ...

    async def get_user_ratings(self, user_id: int) -> List[UserTrackRating]: ...

    async def get_banned_tracks(self, user_id: int) -> Set[int]: ...

    async def get_all_tracks(self) -> List[Track]: ...

    async def get_track_popularity_aggregates(self) -> List[TrackPopularity]: ...

    async def get_track_time_aggregates(self) -> List[TrackTimeAggregate]: ...

    async def get_trending_tracks(self, days: int, now: datetime) -> List[Track]: ...

    async def get_user_preferred_artists(self, user_id: int) -> Set[int]: ...

    async def save_recommendations(
        self, user_id: int, results: Sequence[RecommendationResult], now: datetime
    ) -> int: ...

    async def get_user_recommendations(
        self, user_id: int, limit: int, now: datetime
    ) -> List[Recommendation]: ...

    async def mark_recommendation_consumed(self, recommendation_id: int, now: datetime) -> bool: ...

    async def get_recommendation_totals(self) -> RecommendationTotals: ...

    async def prune_expired_recommendations(self, now: datetime) -> int: ...

    async def ping(self) -> bool: ...


class SqlRecommendationStorage:
    """:class:`RecommendationStorage` backed by SQLAlchemy async sessions.

    Every operation opens its own session, so concurrent per-user work does
    not share a connection.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as db:
                yield db
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError(f"{exc.__class__.__name__}: {exc}") from exc

    async def list_active_users(self) -> List[User]:
        async with self._session() as db:
            result = await db.execute(
                select(User).where(User.is_active == True).order_by(User.id)
            )
            return list(result.scalars().all())

    async def get_user_listening_stats(self, user_id: int) -> UserListeningStats:
        async with self._session() as db:
            result = await db.execute(
                select(
                    func.count(ListeningHistory.id),
                    func.count(distinct(ListeningHistory.track_id)),
                    func.avg(ListeningHistory.completion_percentage),
                    func.max(ListeningHistory.played_at),
                ).where(ListeningHistory.user_id == user_id)
            )
            total_plays, unique_tracks, avg_completion, last_played_at = result.one()

        return UserListeningStats(
            user_id=user_id,
            total_plays=total_plays or 0,
            unique_tracks=unique_tracks or 0,
            avg_completion_rate=(float(avg_completion) / 100.0) if avg_completion is not None else None,
            last_played_at=last_played_at,
        )

    async def get_user_track_history(self, user_id: int, limit: int) -> List[int]:
        """Distinct track ids, most recently played first."""
        last_played = func.max(ListeningHistory.played_at)
        async with self._session() as db:
            result = await db.execute(
                select(ListeningHistory.track_id)
                .where(ListeningHistory.user_id == user_id)
                .group_by(ListeningHistory.track_id)
                .order_by(last_played.desc(), ListeningHistory.track_id)
                .limit(limit)
            )
            return [row[0] for row in result.all()]

    async def get_user_heard_tracks(self, user_id: int) -> Set[int]:
        """Every track the user has ever played."""
        async with self._session() as db:
            result = await db.execute(
                select(distinct(ListeningHistory.track_id))
                .where(ListeningHistory.user_id == user_id)
            )
            return {row[0] for row in result.all()}

    async def get_user_ratings(self, user_id: int) -> List[UserTrackRating]:
        async with self._session() as db:
            result = await db.execute(
                select(UserTrackRating)
                .where(UserTrackRating.user_id == user_id)
                .order_by(UserTrackRating.track_id)
            )
            return list(result.scalars().all())

    async def get_banned_tracks(self, user_id: int) -> Set[int]:
        ratings = await self.get_user_ratings(user_id)
        return {rating.track_id for rating in ratings if rating.is_banned}

    async def get_all_tracks(self) -> List[Track]:
        async with self._session() as db:
            result = await db.execute(select(Track).order_by(Track.id))
            return list(result.scalars().all())

    async def get_track_popularity_aggregates(self) -> List[TrackPopularity]:
        """Aggregates for every track that appears in the listening history."""
        async with self._session() as db:
            play_result = await db.execute(
                select(
                    Track.id,
                    Track.love_count,
                    func.count(ListeningHistory.id),
                    func.count(distinct(ListeningHistory.user_id)),
                    func.avg(ListeningHistory.completion_percentage),
                )
                .join(ListeningHistory, ListeningHistory.track_id == Track.id)
                .group_by(Track.id, Track.love_count)
                .order_by(Track.id)
            )
            play_rows = play_result.all()

            rating_result = await db.execute(
                select(
                    UserTrackRating.track_id,
                    func.count(UserTrackRating.rating),
                    func.avg(UserTrackRating.rating),
                    func.sum(case((UserTrackRating.is_loved == True, 1), else_=0)),
                ).group_by(UserTrackRating.track_id)
            )
            ratings: Dict[int, tuple] = {row[0]: tuple(row[1:]) for row in rating_result.all()}

        aggregates = []
        for track_id, track_loves, plays, listeners, avg_completion in play_rows:
            rating_count, avg_rating, rated_loves = ratings.get(track_id, (0, None, 0))
            aggregates.append(
                TrackPopularity(
                    track_id=track_id,
                    play_count=plays or 0,
                    unique_listeners=listeners or 0,
                    avg_completion_rate=(float(avg_completion) / 100.0) if avg_completion is not None else None,
                    rating_count=rating_count or 0,
                    avg_rating=float(avg_rating) if avg_rating is not None else None,
                    love_count=max(track_loves or 0, rated_loves or 0),
                )
            )
        return aggregates

    async def get_track_time_aggregates(self) -> List[TrackTimeAggregate]:
        async with self._session() as db:
            result = await db.execute(
                select(
                    ListeningHistory.track_id,
                    ListeningHistory.hour_of_day,
                    ListeningHistory.day_of_week,
                    func.count(ListeningHistory.id),
                )
                .where(ListeningHistory.hour_of_day.isnot(None))
                .where(ListeningHistory.day_of_week.isnot(None))
                .group_by(
                    ListeningHistory.track_id,
                    ListeningHistory.hour_of_day,
                    ListeningHistory.day_of_week,
                )
                .order_by(
                    ListeningHistory.track_id,
                    ListeningHistory.hour_of_day,
                    ListeningHistory.day_of_week,
                )
            )
            return [
                TrackTimeAggregate(
                    track_id=track_id,
                    hour_of_day=hour,
                    day_of_week=day,
                    play_count=plays,
                )
                for track_id, hour, day, plays in result.all()
            ]

    async def get_trending_tracks(self, days: int, now: datetime) -> List[Track]:
        """Tracks added within ``days`` before ``now``, most played first."""
        since = now - timedelta(days=days)
        async with self._session() as db:
            result = await db.execute(
                select(Track)
                .where(Track.created_at >= since)
                .order_by(Track.play_count.desc(), Track.created_at.desc(), Track.id)
                .limit(TRENDING_LIMIT)
            )
            return list(result.scalars().all())

    async def get_user_preferred_artists(self, user_id: int) -> Set[int]:
        """Artists the user plays repeatedly or has loved/rated highly."""
        plays = func.count(ListeningHistory.id)
        async with self._session() as db:
            played_result = await db.execute(
                select(Track.artist_id)
                .join(ListeningHistory, ListeningHistory.track_id == Track.id)
                .where(ListeningHistory.user_id == user_id)
                .group_by(Track.artist_id)
                .having(plays >= PREFERRED_ARTIST_MIN_PLAYS)
                .order_by(plays.desc(), Track.artist_id)
                .limit(PREFERRED_ARTIST_LIMIT)
            )
            artists = {row[0] for row in played_result.all()}

            rated_result = await db.execute(
                select(distinct(Track.artist_id))
                .join(UserTrackRating, UserTrackRating.track_id == Track.id)
                .where(UserTrackRating.user_id == user_id)
                .where(UserTrackRating.is_banned == False)
                .where((UserTrackRating.is_loved == True) | (UserTrackRating.rating >= 4))
            )
            artists.update(row[0] for row in rated_result.all())

        return artists

    async def save_recommendations(
        self, user_id: int, results: Sequence[RecommendationResult], now: datetime
    ) -> int:
        async with self._session() as db:
            return await persistence.save_recommendations(db, user_id, results, now)

    async def get_user_recommendations(
        self, user_id: int, limit: int, now: datetime
    ) -> List[Recommendation]:
        async with self._session() as db:
            result = await db.execute(
                select(Recommendation)
                .where(Recommendation.user_id == user_id)
                .where(Recommendation.expires_at > now)
                .where(Recommendation.is_consumed == False)
                .order_by(Recommendation.score.desc(), Recommendation.id)
                .limit(limit)
            )
            return list(result.scalars().all())

    async def mark_recommendation_consumed(self, recommendation_id: int, now: datetime) -> bool:
        async with self._session() as db:
            result = await db.execute(
                update(Recommendation)
                .where(Recommendation.id == recommendation_id)
                .values(is_consumed=True, consumed_at=now)
            )
            await db.commit()
            return result.rowcount > 0

    async def get_recommendation_totals(self) -> RecommendationTotals:
        async with self._session() as db:
            result = await db.execute(
                select(
                    func.count(Recommendation.id),
                    func.sum(case((Recommendation.is_consumed == True, 1), else_=0)),
                    func.avg(Recommendation.score),
                )
            )
            total, consumed, average_score = result.one()

        return RecommendationTotals(
            total=total or 0,
            consumed=consumed or 0,
            average_score=float(average_score) if average_score is not None else 0.0,
        )

    async def prune_expired_recommendations(self, now: datetime) -> int:
        async with self._session() as db:
            result = await db.execute(
                delete(Recommendation).where(Recommendation.expires_at < now)
            )
            await db.commit()
            return result.rowcount

    async def ping(self) -> bool:
        async with self._session() as db:
            await db.execute(text("SELECT 1"))
        return True
