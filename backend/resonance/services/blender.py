"""Blending of strategy outputs into a final recommendation list."""

import math
from typing import Iterable, List, Set

from resonance.services.schemas import RecommendationResult


def rank_candidates(
    candidates: Iterable[RecommendationResult],
    excluded: Set[int],
) -> List[RecommendationResult]:
    """Drop excluded tracks, sort by score and keep each track's best entry.

    The sort is stable, so candidates with equal scores stay in the order
    the strategies emitted them.
    """
    surviving = [rec for rec in candidates if rec.track_id not in excluded]
    surviving.sort(key=lambda rec: rec.score, reverse=True)

    seen: Set[int] = set()
    ranked = []
    for rec in surviving:
        if rec.track_id in seen:
            continue
        seen.add(rec.track_id)
        ranked.append(rec)
    return ranked


def discovery_slots(candidate_count: int, discovery_ratio: float) -> int:
    return math.floor(candidate_count * discovery_ratio)


def assemble(
    ranked: List[RecommendationResult],
    discovery: Iterable[RecommendationResult],
    discovery_count: int,
    excluded: Set[int],
    max_recommendations: int,
) -> List[RecommendationResult]:
    """Top core candidates followed by up to ``discovery_count`` discovery picks."""
    core = ranked[:max(0, max_recommendations - discovery_count)]

    chosen = {rec.track_id for rec in core}
    picks: List[RecommendationResult] = []
    for rec in discovery:
        if len(picks) >= discovery_count:
            break
        if rec.track_id in excluded or rec.track_id in chosen:
            continue
        chosen.add(rec.track_id)
        picks.append(rec)

    return (core + picks)[:max_recommendations]

