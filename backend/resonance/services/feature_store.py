"""In-memory caches backing the recommendation engine.

The store keeps four caches: similar users per user, features per track,
popularity per track and the learned temporal patterns. They are rebuilt
wholesale by a single writer and swapped in together, so a reader sees
either the previous generation or the new one, never a mix.
"""

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from types import MappingProxyType
from typing import AsyncIterator, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from resonance.models.track import Track
from resonance.services.schemas import (
    GENRE_DIMENSIONS,
    GENRE_TAXONOMY,
    TemporalPattern,
    TrackFeatures,
    UserSimilarity,
)
from resonance.services.similarity import count_common_tracks, jaccard_similarity
from resonance.services.storage import TrackPopularity, TrackTimeAggregate

logger = logging.getLogger(__name__)

MIN_TRACKS_FOR_SIMILARITY = 5
MAX_SIMILAR_USERS = 50
TEMPORAL_MIN_PLAYS = 5
TEMPORAL_MIN_CONFIDENCE = 0.2

_GENRE_INDEX = {genre: i for i, genre in enumerate(GENRE_TAXONOMY)}


class ReadWriteLock:
    """Asyncio reader-writer lock.

    Any number of readers may hold the lock together; a writer holds it
    alone. Waiting writers block new readers so a refresh is not starved.
    """

    def __init__(self) -> None:
        self._condition = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def writer_active(self) -> bool:
        return self._writer

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._condition:
            await self._condition.wait_for(
                lambda: not self._writer and self._writers_waiting == 0
            )
            self._readers += 1
        try:
            yield
        finally:
            async with self._condition:
                self._readers -= 1
                if self._readers == 0:
                    self._condition.notify_all()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._condition:
            self._writers_waiting += 1
            try:
                await self._condition.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            async with self._condition:
                self._writer = False
                self._condition.notify_all()


class FeatureSnapshot:
    """Read-only view over one generation of the caches."""

    def __init__(
        self,
        similar_users: Optional[Mapping[int, Sequence[UserSimilarity]]] = None,
        track_features: Optional[Mapping[int, TrackFeatures]] = None,
        popularity: Optional[Mapping[int, float]] = None,
        temporal_patterns: Sequence[TemporalPattern] = (),
        refreshed_at: Optional[datetime] = None,
    ):
        self.similar_users: Mapping[int, Tuple[UserSimilarity, ...]] = MappingProxyType(
            {user_id: tuple(sims) for user_id, sims in (similar_users or {}).items()}
        )
        self.track_features: Mapping[int, TrackFeatures] = MappingProxyType(dict(track_features or {}))
        self.popularity: Mapping[int, float] = MappingProxyType(dict(popularity or {}))
        self.temporal_patterns: Tuple[TemporalPattern, ...] = tuple(temporal_patterns)
        self.refreshed_at = refreshed_at

    def similar_users_for(self, user_id: int) -> Tuple[UserSimilarity, ...]:
        return self.similar_users.get(user_id, ())

    def sizes(self) -> Dict[str, int]:
        return {
            "similar_users": len(self.similar_users),
            "track_features": len(self.track_features),
            "popularity": len(self.popularity),
            "temporal_patterns": len(self.temporal_patterns),
        }


class FeatureStore:
    """Owner of the engine caches, guarded by a reader-writer lock."""

    def __init__(self) -> None:
        self._lock = ReadWriteLock()
        self._snapshot = FeatureSnapshot()
        self.cache_hits = 0
        self.cache_misses = 0

    @property
    def lock(self) -> ReadWriteLock:
        return self._lock

    @property
    def current(self) -> FeatureSnapshot:
        """Latest installed snapshot, without taking the lock."""
        return self._snapshot

    @property
    def refreshed_at(self) -> Optional[datetime]:
        return self._snapshot.refreshed_at

    @asynccontextmanager
    async def read(self) -> AsyncIterator[FeatureSnapshot]:
        """Hold a shared lock and yield the installed snapshot."""
        async with self._lock.read():
            yield self._snapshot

    @asynccontextmanager
    async def rebuild(self) -> AsyncIterator["FeatureStore"]:
        """Hold the exclusive lock for the duration of a rebuild.

        The caller installs the new snapshot with :meth:`install` before
        leaving the block; if the block raises, the old snapshot stays.
        """
        async with self._lock.write():
            yield self

    def install(self, snapshot: FeatureSnapshot) -> None:
        if not self._lock.writer_active:
            raise RuntimeError("install() requires the rebuild lock")
        self._snapshot = snapshot

    def record_lookup(self, hit: bool) -> None:
        if hit:
            self.cache_hits += 1
        else:
            self.cache_misses += 1


def build_user_similarities(
    user_tracks: Mapping[int, Sequence[int]],
    similarity_threshold: float,
    now: Optional[datetime] = None,
) -> Dict[int, List[UserSimilarity]]:
    """Rank other users by Jaccard similarity of their played tracks.

    Users with fewer than five distinct tracks are skipped, only pairs above
    the threshold are kept, and each user keeps the top fifty.
    """
    now = now or datetime.utcnow()
    track_sets = {
        user_id: frozenset(tracks)
        for user_id, tracks in user_tracks.items()
        if len(set(tracks)) >= MIN_TRACKS_FOR_SIMILARITY
    }
    user_ids = sorted(track_sets)
    similarities: Dict[int, List[UserSimilarity]] = {user_id: [] for user_id in user_ids}

    for i, user_id in enumerate(user_ids):
        for other_id in user_ids[i + 1:]:
            score = jaccard_similarity(track_sets[user_id], track_sets[other_id])
            if score <= similarity_threshold:
                continue
            common = count_common_tracks(track_sets[user_id], track_sets[other_id])
            for a, b in ((user_id, other_id), (other_id, user_id)):
                similarities[a].append(
                    UserSimilarity(
                        user_id=a,
                        other_user_id=b,
                        similarity_score=score,
                        common_tracks=common,
                        computed_at=now,
                    )
                )

    for user_id, sims in similarities.items():
        sims.sort(key=lambda s: (-s.similarity_score, s.other_user_id))
        del sims[MAX_SIMILAR_USERS:]

    return similarities


def build_popularity(aggregates: Iterable[TrackPopularity]) -> Dict[int, float]:
    return {aggregate.track_id: aggregate.popularity_score() for aggregate in aggregates}


def encode_genre(genre: Optional[str]) -> List[float]:
    """One-hot encode a genre over the fixed taxonomy."""
    vector = [0.0] * GENRE_DIMENSIONS
    if genre:
        index = _GENRE_INDEX.get(genre.strip().lower())
        if index is not None:
            vector[index] = 1.0
    return vector


def extract_track_features(track: Track, popularity: Mapping[int, float]) -> TrackFeatures:
    return TrackFeatures(
        track_id=track.id,
        artist_id=track.artist_id,
        genre_vector=encode_genre(track.genre),
        tempo=track.tempo,
        energy=track.energy,
        valence=track.valence,
        danceability=track.danceability,
        acousticness=track.acousticness,
        instrumentalness=track.instrumentalness,
        year=float(track.release_year) if track.release_year is not None else None,
        popularity=popularity.get(track.id, 0.0),
        duration_ms=track.duration_ms,
    )


def build_track_features(
    tracks: Iterable[Track], popularity: Mapping[int, float]
) -> Dict[int, TrackFeatures]:
    return {track.id: extract_track_features(track, popularity) for track in tracks}


def build_temporal_patterns(aggregates: Iterable[TrackTimeAggregate]) -> List[TemporalPattern]:
    """Learn (hour, weekday) cells that hold a large share of a track's plays."""
    cells: Dict[int, Dict[Tuple[int, int], int]] = defaultdict(lambda: defaultdict(int))
    for aggregate in aggregates:
        cells[aggregate.track_id][(aggregate.hour_of_day, aggregate.day_of_week)] += aggregate.play_count

    patterns = []
    for track_id in sorted(cells):
        track_cells = cells[track_id]
        total = sum(track_cells.values())
        if total < TEMPORAL_MIN_PLAYS:
            continue
        for (hour, day), plays in sorted(track_cells.items()):
            confidence = plays / total
            if confidence >= TEMPORAL_MIN_CONFIDENCE:
                patterns.append(
                    TemporalPattern(
                        track_id=track_id,
                        hour_of_day=hour,
                        day_of_week=day,
                        confidence=confidence,
                    )
                )
    return patterns
