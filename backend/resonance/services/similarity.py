"""User-user and track-content similarity metrics."""

import math
from typing import Dict, Iterable, List, Mapping, Optional

from resonance.services.schemas import GENRE_DIMENSIONS, TrackFeatures

# Content similarity weights
GENRE_WEIGHT = 0.40
ENERGY_WEIGHT = 0.15
VALENCE_WEIGHT = 0.15
TEMPO_WEIGHT = 0.10
YEAR_WEIGHT = 0.10
YEAR_SPAN = 50.0
MAX_POPULARITY_BONUS = 0.1

PROFILE_SCALARS = (
    "energy", "valence", "tempo", "danceability",
    "acousticness", "instrumentalness", "year",
)


def jaccard_similarity(tracks_a: Iterable[int], tracks_b: Iterable[int]) -> float:
    """|A ∩ B| / |A ∪ B| over the distinct track ids of two users."""
    set_a = set(tracks_a)
    set_b = set(tracks_b)
    union = len(set_a | set_b)
    if union == 0:
        return 0.0
    return len(set_a & set_b) / union


def count_common_tracks(tracks_a: Iterable[int], tracks_b: Iterable[int]) -> int:
    return len(set(tracks_a) & set(tracks_b))


def cosine_similarity(vec_a: List[float], vec_b: List[float]) -> float:
    """Cosine of two equal-length vectors; 0.0 for mismatched or zero vectors."""
    if len(vec_a) != len(vec_b):
        return 0.0

    dot_product = sum(a * b for a, b in zip(vec_a, vec_b))
    norm_a = math.sqrt(sum(a * a for a in vec_a))
    norm_b = math.sqrt(sum(b * b for b in vec_b))

    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot_product / (norm_a * norm_b)


def content_similarity(profile: TrackFeatures, track: TrackFeatures) -> float:
    """Similarity of a candidate track to a user's taste profile, in [0, 1].

    Genre cosine plus closeness of the scalar attributes present on both
    sides, with a small additive popularity bonus.
    """
    total = cosine_similarity(profile.genre_vector, track.genre_vector) * GENRE_WEIGHT

    if profile.energy is not None and track.energy is not None:
        total += (1.0 - abs(profile.energy - track.energy)) * ENERGY_WEIGHT

    if profile.valence is not None and track.valence is not None:
        total += (1.0 - abs(profile.valence - track.valence)) * VALENCE_WEIGHT

    if profile.tempo is not None and track.tempo is not None:
        fastest = max(profile.tempo, track.tempo)
        if fastest > 0:
            tempo_diff = abs(profile.tempo - track.tempo) / fastest
            total += (1.0 - min(1.0, tempo_diff)) * TEMPO_WEIGHT

    if profile.year is not None and track.year is not None:
        year_diff = abs(profile.year - track.year) / YEAR_SPAN
        total += (1.0 - min(1.0, year_diff)) * YEAR_WEIGHT

    total += min(MAX_POPULARITY_BONUS, track.popularity * 0.1)

    return max(0.0, min(1.0, total))


def build_user_profile(
    user_tracks: Iterable[int],
    track_features: Mapping[int, TrackFeatures],
    dimensions: int = GENRE_DIMENSIONS,
) -> TrackFeatures:
    """Average the features of every heard track that has cached features.

    Genre vectors are averaged elementwise over all such tracks. Each scalar
    attribute is averaged over the tracks where it is present; an attribute
    absent everywhere stays ``None``.
    """
    genre_sums = [0.0] * dimensions
    scalar_sums: Dict[str, float] = {name: 0.0 for name in PROFILE_SCALARS}
    scalar_counts: Dict[str, int] = {name: 0 for name in PROFILE_SCALARS}
    count = 0

    for track_id in dict.fromkeys(user_tracks):
        features = track_features.get(track_id)
        if features is None:
            continue
        count += 1
        for i, value in enumerate(features.genre_vector[:dimensions]):
            genre_sums[i] += value
        for name in PROFILE_SCALARS:
            value = getattr(features, name)
            if value is not None:
                scalar_sums[name] += value
                scalar_counts[name] += 1

    if count == 0:
        return TrackFeatures(genre_vector=[0.0] * dimensions)

    scalars: Dict[str, Optional[float]] = {
        name: (scalar_sums[name] / scalar_counts[name]) if scalar_counts[name] else None
        for name in PROFILE_SCALARS
    }
    return TrackFeatures(
        genre_vector=[value / count for value in genre_sums],
        **scalars,
    )
