import asyncio
import math
from datetime import datetime

import pytest

from conftest import make_track
from resonance.services.feature_store import (
    FeatureSnapshot,
    FeatureStore,
    ReadWriteLock,
    build_popularity,
    build_temporal_patterns,
    build_track_features,
    build_user_similarities,
    encode_genre,
)
from resonance.services.storage import TrackPopularity, TrackTimeAggregate

NOW = datetime(2026, 10, 19, 12, 0)


def test_user_similarities_are_symmetric_without_self_pairs():
    similarities = build_user_similarities(
        {
            1: [1, 2, 3, 4, 5, 6],
            2: [4, 5, 6, 7, 8, 9],
            3: [1, 2, 3],  # too few tracks
            4: [100, 101, 102, 103, 104],
        },
        similarity_threshold=0.1,
        now=NOW,
    )

    assert set(similarities) == {1, 2, 4}
    assert [s.other_user_id for s in similarities[1]] == [2]
    assert [s.other_user_id for s in similarities[2]] == [1]
    assert similarities[4] == []

    forward = similarities[1][0]
    backward = similarities[2][0]
    assert forward.similarity_score == pytest.approx(3 / 9)
    assert forward.similarity_score == backward.similarity_score
    assert forward.common_tracks == backward.common_tracks == 3
    assert forward.computed_at == NOW

    for user_id, sims in similarities.items():
        assert all(s.user_id == user_id and s.other_user_id != user_id for s in sims)


def test_user_similarities_drop_pairs_at_or_below_threshold():
    user_tracks = {
        1: [1, 2, 3, 4, 5, 6],
        2: [4, 5, 6, 7, 8, 9],
    }

    assert build_user_similarities(user_tracks, similarity_threshold=3 / 9, now=NOW)[1] == []
    assert len(build_user_similarities(user_tracks, similarity_threshold=0.3, now=NOW)[1]) == 1


def test_user_similarities_keep_top_fifty_ordered():
    user_tracks = {user_id: [1, 2, 3, 4, 5] for user_id in range(60)}
    user_tracks[59] = [1, 2, 3, 4, 5, 6]

    similarities = build_user_similarities(user_tracks, similarity_threshold=0.1, now=NOW)

    assert len(similarities[0]) == 50
    assert [s.other_user_id for s in similarities[0]] == list(range(1, 51))
    assert similarities[59][0].similarity_score == pytest.approx(5 / 6)


def test_popularity_score_defaults():
    assert TrackPopularity(track_id=1).popularity_score() == pytest.approx(0.2)


def test_popularity_score_blends_signals():
    aggregate = TrackPopularity(
        track_id=1,
        play_count=100,
        unique_listeners=10,
        avg_completion_rate=0.9,
        rating_count=4,
        avg_rating=4.0,
        love_count=5,
    )

    expected = (
        math.log(100) / 10 + math.log(10) / 5 + 0.9 + 4.0 / 5 + math.log(5) / 3
    ) / 5
    assert aggregate.popularity_score() == pytest.approx(expected)


def test_popularity_score_is_clamped():
    aggregate = TrackPopularity(
        track_id=1,
        play_count=10 ** 9,
        unique_listeners=10 ** 6,
        avg_completion_rate=1.0,
        avg_rating=5.0,
        love_count=10 ** 6,
    )

    assert aggregate.popularity_score() == 1.0
    assert build_popularity([aggregate]) == {1: 1.0}


def test_encode_genre():
    assert encode_genre("Rock")[0] == 1.0
    assert sum(encode_genre("rock")) == 1.0
    assert sum(encode_genre("polka")) == 0.0
    assert sum(encode_genre(None)) == 0.0


def test_track_features_from_catalog():
    tracks = [
        make_track(1, artist_id=7, genre="Jazz", release_year=1999, energy=0.4, tempo=96.0),
        make_track(2, genre=None),
    ]

    features = build_track_features(tracks, {1: 0.75})

    assert features[1].artist_id == 7
    assert features[1].genre_vector[4] == 1.0
    assert features[1].year == 1999.0
    assert features[1].energy == 0.4
    assert features[1].popularity == 0.75
    assert features[2].popularity == 0.0
    assert features[2].year is None


def test_temporal_patterns_need_enough_plays_and_share():
    patterns = build_temporal_patterns(
        [
            TrackTimeAggregate(track_id=1, hour_of_day=8, day_of_week=0, play_count=4),
            TrackTimeAggregate(track_id=1, hour_of_day=8, day_of_week=0, play_count=2),
            TrackTimeAggregate(track_id=1, hour_of_day=20, day_of_week=5, play_count=3),
            TrackTimeAggregate(track_id=1, hour_of_day=3, day_of_week=3, play_count=1),
            TrackTimeAggregate(track_id=2, hour_of_day=8, day_of_week=0, play_count=3),
        ]
    )

    assert [(p.track_id, p.hour_of_day, p.day_of_week) for p in patterns] == [
        (1, 8, 0),
        (1, 20, 5),
    ]
    assert patterns[0].confidence == pytest.approx(0.6)
    assert patterns[1].confidence == pytest.approx(0.3)


@pytest.mark.asyncio
async def test_readers_share_the_lock():
    lock = ReadWriteLock()
    release = asyncio.Event()

    async def reader():
        async with lock.read():
            await release.wait()

    tasks = [asyncio.create_task(reader()) for _ in range(3)]
    await asyncio.sleep(0)

    assert lock.readers == 3
    assert lock.writer_active is False

    release.set()
    await asyncio.gather(*tasks)
    assert lock.readers == 0


@pytest.mark.asyncio
async def test_waiting_writer_goes_before_new_readers():
    lock = ReadWriteLock()
    events = []
    release_first = asyncio.Event()

    async def first_reader():
        async with lock.read():
            events.append("first-read")
            await release_first.wait()

    async def writer():
        async with lock.write():
            events.append("write")

    async def second_reader():
        async with lock.read():
            events.append("second-read")

    first = asyncio.create_task(first_reader())
    await asyncio.sleep(0)
    writing = asyncio.create_task(writer())
    await asyncio.sleep(0)
    second = asyncio.create_task(second_reader())
    await asyncio.sleep(0)

    assert events == ["first-read"]

    release_first.set()
    await asyncio.gather(first, writing, second)

    assert events == ["first-read", "write", "second-read"]


@pytest.mark.asyncio
async def test_install_requires_rebuild_lock():
    store = FeatureStore()

    with pytest.raises(RuntimeError):
        store.install(FeatureSnapshot(popularity={1: 0.5}))

    async with store.rebuild():
        store.install(FeatureSnapshot(popularity={1: 0.5}))

    assert dict(store.current.popularity) == {1: 0.5}


@pytest.mark.asyncio
async def test_failed_rebuild_keeps_previous_snapshot():
    store = FeatureStore()
    async with store.rebuild():
        store.install(FeatureSnapshot(popularity={1: 0.5}, refreshed_at=NOW))

    with pytest.raises(ValueError):
        async with store.rebuild():
            raise ValueError("aggregation failed")

    assert dict(store.current.popularity) == {1: 0.5}
    assert store.refreshed_at == NOW
    assert store.lock.writer_active is False


@pytest.mark.asyncio
async def test_reader_keeps_its_snapshot_during_refresh():
    store = FeatureStore()
    async with store.rebuild():
        store.install(FeatureSnapshot(popularity={1: 0.1}))

    async def refresh():
        async with store.rebuild():
            store.install(FeatureSnapshot(popularity={1: 0.9}))

    async with store.read() as snapshot:
        task = asyncio.create_task(refresh())
        await asyncio.sleep(0)
        assert snapshot is store.current
        assert snapshot.popularity[1] == 0.1

    await task
    assert store.current.popularity[1] == 0.9


def test_snapshot_is_read_only():
    snapshot = FeatureSnapshot(popularity={1: 0.5})

    with pytest.raises(TypeError):
        snapshot.popularity[2] = 0.1

    assert snapshot.sizes() == {
        "similar_users": 0,
        "track_features": 0,
        "popularity": 1,
        "temporal_patterns": 0,
    }
