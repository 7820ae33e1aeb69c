from datetime import datetime

import pytest

from conftest import FakeStorage, make_track
from resonance.config import RecommendationConfig
from resonance.services.feature_store import FeatureSnapshot, encode_genre
from resonance.services.schemas import (
    RecommendationType,
    TemporalPattern,
    TrackFeatures,
    UserSimilarity,
)
from resonance.services.strategies import (
    collaborative_recommendations,
    content_based_recommendations,
    discovery_recommendations,
    popularity_recommendations,
    temporal_recommendations,
)

NOW = datetime(2026, 10, 19, 8, 15)  # Monday


def _similar(user_id, other_user_id, score):
    return UserSimilarity(
        user_id=user_id,
        other_user_id=other_user_id,
        similarity_score=score,
        common_tracks=1,
        computed_at=NOW,
    )


@pytest.mark.asyncio
async def test_collaborative_sums_weighted_similarity():
    storage = FakeStorage(history={2: [10, 11, 1], 3: [11, 12], 4: [13]})
    snapshot = FeatureSnapshot(
        similar_users={1: [_similar(1, 2, 0.5), _similar(1, 3, 0.4), _similar(1, 4, 0.05)]}
    )

    results = await collaborative_recommendations(
        1, [1], snapshot, storage, RecommendationConfig()
    )

    assert [r.track_id for r in results] == [11, 10, 12]
    assert [r.score for r in results] == pytest.approx([0.36, 0.2, 0.16])
    assert results[0].metadata == {"similar_users": 2}
    assert all(r.recommendation_type == RecommendationType.COLLABORATIVE for r in results)
    # users below the threshold are never consulted
    assert [user_id for user_id, _ in storage.history_calls] == [2, 3]


@pytest.mark.asyncio
async def test_collaborative_drops_weak_scores():
    storage = FakeStorage(history={2: [10]})
    snapshot = FeatureSnapshot(similar_users={1: [_similar(1, 2, 0.2)]})

    results = await collaborative_recommendations(
        1, [1], snapshot, storage, RecommendationConfig()
    )

    assert results == []


@pytest.mark.asyncio
async def test_collaborative_without_cached_neighbours():
    storage = FakeStorage(history={2: [10]})

    results = await collaborative_recommendations(
        1, [1], FeatureSnapshot(), storage, RecommendationConfig()
    )

    assert results == []
    assert storage.history_calls == []


def test_content_based_prefers_tracks_like_the_profile():
    snapshot = FeatureSnapshot(
        track_features={
            1: TrackFeatures(track_id=1, genre_vector=encode_genre("rock"), energy=0.7),
            2: TrackFeatures(track_id=2, genre_vector=encode_genre("rock"), energy=0.7),
            3: TrackFeatures(track_id=3, genre_vector=encode_genre("jazz"), energy=0.1),
        }
    )

    results = content_based_recommendations([1], snapshot, RecommendationConfig())

    assert [r.track_id for r in results] == [2]
    assert results[0].metadata["similarity"] == pytest.approx(0.55)
    assert results[0].score == pytest.approx(0.55 * 0.3)
    assert results[0].recommendation_type == RecommendationType.CONTENT_BASED


def test_popularity_excludes_heard_and_caps_at_thirty():
    snapshot = FeatureSnapshot(popularity={track_id: track_id / 100 for track_id in range(1, 41)})

    results = popularity_recommendations([40, 39], snapshot, RecommendationConfig())

    assert len(results) == 30
    assert results[0].track_id == 38
    assert results[0].score == pytest.approx(0.38 * 0.2)
    assert results[0].reason == "Popular track"
    assert {40, 39}.isdisjoint(r.track_id for r in results)


def test_popularity_keeps_catalog_order_for_ties():
    snapshot = FeatureSnapshot(popularity={5: 0.5, 3: 0.5, 9: 0.5})

    results = popularity_recommendations([], snapshot, RecommendationConfig())

    assert [r.track_id for r in results] == [5, 3, 9]


def test_temporal_matches_hour_or_weekday():
    snapshot = FeatureSnapshot(
        temporal_patterns=[
            TemporalPattern(track_id=1, hour_of_day=8, day_of_week=3, confidence=0.5),
            TemporalPattern(track_id=2, hour_of_day=20, day_of_week=0, confidence=0.4),
            TemporalPattern(track_id=3, hour_of_day=20, day_of_week=3, confidence=0.9),
        ]
    )

    results = temporal_recommendations(snapshot, RecommendationConfig(), NOW)

    assert [r.track_id for r in results] == [1, 2]
    assert [r.score for r in results] == pytest.approx([0.05, 0.04])
    assert results[0].recommendation_type == RecommendationType.TEMPORAL


def test_discovery_favours_preferred_artists():
    trending = [make_track(1, artist_id=7), make_track(2, artist_id=8)]

    results = discovery_recommendations(trending, {7})

    assert [(r.track_id, r.score) for r in results] == [(1, 0.7), (2, 0.3)]
    assert results[0].reason == "New release from an artist you like"
    assert results[1].reason == "New music to discover"
    assert all(r.recommendation_type == RecommendationType.DISCOVERY for r in results)


def test_content_based_filters_full_heard_set():
    snapshot = FeatureSnapshot(
        track_features={
            1: TrackFeatures(track_id=1, genre_vector=encode_genre("rock"), energy=0.7),
            2: TrackFeatures(track_id=2, genre_vector=encode_genre("rock"), energy=0.7),
            3: TrackFeatures(track_id=3, genre_vector=encode_genre("rock"), energy=0.6),
        }
    )

    results = content_based_recommendations(
        [1], snapshot, RecommendationConfig(), heard_tracks={1, 2}
    )

    assert [r.track_id for r in results] == [3]
