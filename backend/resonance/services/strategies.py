"""Scoring strategies of the hybrid recommender.

Each strategy produces scored candidates already multiplied by its weight
from :class:`RecommendationConfig`. Scores are not normalised across
strategies; the weights are the only common scale.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set

from resonance.config import RecommendationConfig
from resonance.models.track import Track
from resonance.services.feature_store import FeatureSnapshot
from resonance.services.schemas import RecommendationResult, RecommendationType
from resonance.services.similarity import build_user_profile, content_similarity
from resonance.services.storage import RecommendationStorage

logger = logging.getLogger(__name__)

MAX_SIMILAR_USERS_CONSULTED = 20
SIMILAR_USER_HISTORY_LIMIT = 200
MIN_COLLABORATIVE_SCORE = 0.1
MAX_COLLABORATIVE = 20
MAX_CONTENT_BASED = 20
MAX_POPULARITY = 30

PREFERRED_ARTIST_DISCOVERY_SCORE = 0.7
OPEN_DISCOVERY_SCORE = 0.3


def _ranked(results: List[RecommendationResult]) -> List[RecommendationResult]:
    # sort() is stable, so equal scores keep emission order
    results.sort(key=lambda r: r.score, reverse=True)
    return results


async def collaborative_recommendations(
    user_id: int,
    heard_tracks: Iterable[int],
    snapshot: FeatureSnapshot,
    storage: RecommendationStorage,
    config: RecommendationConfig,
) -> List[RecommendationResult]:
    """Tracks played by similar users that this user has not heard."""
    heard = set(heard_tracks)
    track_scores: Dict[int, float] = {}
    contributors: Dict[int, int] = {}

    for similar in snapshot.similar_users_for(user_id)[:MAX_SIMILAR_USERS_CONSULTED]:
        if similar.similarity_score < config.similarity_threshold:
            continue

        similar_tracks = await storage.get_user_track_history(
            similar.other_user_id, SIMILAR_USER_HISTORY_LIMIT
        )
        contribution = similar.similarity_score * config.collaborative_weight
        for track_id in similar_tracks:
            if track_id in heard:
                continue
            track_scores[track_id] = track_scores.get(track_id, 0.0) + contribution
            contributors[track_id] = contributors.get(track_id, 0) + 1

    recommendations = [
        RecommendationResult(
            track_id=track_id,
            score=score,
            reason="Based on users with similar taste",
            recommendation_type=RecommendationType.COLLABORATIVE,
            metadata={"similar_users": contributors[track_id]},
        )
        for track_id, score in track_scores.items()
        if score > MIN_COLLABORATIVE_SCORE
    ]
    return _ranked(recommendations)[:MAX_COLLABORATIVE]


def content_based_recommendations(
    user_tracks: Sequence[int],
    snapshot: FeatureSnapshot,
    config: RecommendationConfig,
    heard_tracks: Optional[Iterable[int]] = None,
) -> List[RecommendationResult]:
    """Cached tracks whose features resemble the user's taste profile.

    The profile is built from ``user_tracks``; candidates are filtered
    against ``heard_tracks``, which defaults to ``user_tracks``.
    """
    heard = set(user_tracks if heard_tracks is None else heard_tracks)
    profile = build_user_profile(user_tracks, snapshot.track_features)

    recommendations = []
    for track_id, features in snapshot.track_features.items():
        if track_id in heard:
            continue
        similarity = content_similarity(profile, features)
        if similarity > config.similarity_threshold:
            recommendations.append(
                RecommendationResult(
                    track_id=track_id,
                    score=similarity * config.content_weight,
                    reason="Based on your music taste",
                    recommendation_type=RecommendationType.CONTENT_BASED,
                    metadata={"similarity": similarity},
                )
            )
    return _ranked(recommendations)[:MAX_CONTENT_BASED]


def popularity_recommendations(
    heard_tracks: Iterable[int],
    snapshot: FeatureSnapshot,
    config: RecommendationConfig,
) -> List[RecommendationResult]:
    """Most popular tracks the user has not heard."""
    heard = set(heard_tracks)
    popular = sorted(
        ((track_id, popularity) for track_id, popularity in snapshot.popularity.items()
         if track_id not in heard),
        key=lambda item: item[1],
        reverse=True,
    )
    return [
        RecommendationResult(
            track_id=track_id,
            score=popularity * config.popularity_weight,
            reason="Popular track",
            recommendation_type=RecommendationType.POPULARITY,
            metadata={"popularity": popularity},
        )
        for track_id, popularity in popular[:MAX_POPULARITY]
    ]


def temporal_recommendations(
    snapshot: FeatureSnapshot,
    config: RecommendationConfig,
    now: datetime,
) -> List[RecommendationResult]:
    """Tracks whose learned time window matches the current hour or weekday."""
    hour, weekday = now.hour, now.weekday()
    recommendations = [
        RecommendationResult(
            track_id=pattern.track_id,
            score=pattern.confidence * config.temporal_weight,
            reason="Often played at this time",
            recommendation_type=RecommendationType.TEMPORAL,
            metadata={
                "confidence": pattern.confidence,
                "hour_of_day": pattern.hour_of_day,
                "day_of_week": pattern.day_of_week,
            },
        )
        for pattern in snapshot.temporal_patterns
        if pattern.matches(hour, weekday)
    ]
    return _ranked(recommendations)


def discovery_recommendations(
    trending: Iterable[Track],
    preferred_artists: Set[int],
) -> List[RecommendationResult]:
    """New and trending tracks, favouring artists the user already likes."""
    recommendations = []
    for track in trending:
        if track.artist_id in preferred_artists:
            score = PREFERRED_ARTIST_DISCOVERY_SCORE
            reason = "New release from an artist you like"
        else:
            score = OPEN_DISCOVERY_SCORE
            reason = "New music to discover"
        recommendations.append(
            RecommendationResult(
                track_id=track.id,
                score=score,
                reason=reason,
                recommendation_type=RecommendationType.DISCOVERY,
                metadata={"artist_id": track.artist_id},
            )
        )
    return recommendations
