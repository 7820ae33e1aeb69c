"""Persistence of generated recommendation batches.

A new batch is appended and rows older than the retention window are aged
out. This is not a transactional replace: a fresh batch can sit next to
unexpired rows from a previous cycle until they age out.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from resonance.models.recommendation import Recommendation
from resonance.services.schemas import RecommendationResult

logger = logging.getLogger(__name__)

RECOMMENDATION_TTL = timedelta(days=7)


def build_recommendation_rows(
    user_id: int,
    results: Sequence[RecommendationResult],
    now: datetime,
) -> List[Recommendation]:
    """Turn engine results into unconsumed rows expiring after the TTL."""
    expires_at = now + RECOMMENDATION_TTL
    return [
        Recommendation(
            user_id=user_id,
            track_id=result.track_id,
            recommendation_type=result.recommendation_type.value,
            score=result.score,
            reason=result.reason,
            extra_data=dict(result.metadata),
            is_consumed=False,
            created_at=now,
            expires_at=expires_at,
        )
        for result in results
    ]


async def save_recommendations(
    db: AsyncSession,
    user_id: int,
    results: Sequence[RecommendationResult],
    now: Optional[datetime] = None,
) -> int:
    """Age out the user's stale rows and insert the new batch in one commit."""
    now = now or datetime.utcnow()

    deleted = await db.execute(
        delete(Recommendation).where(
            Recommendation.user_id == user_id,
            Recommendation.created_at < now - RECOMMENDATION_TTL,
        )
    )

    rows = build_recommendation_rows(user_id, results, now)
    db.add_all(rows)
    await db.commit()

    logger.debug(
        "Saved %d recommendations for user %s (aged out %s)",
        len(rows),
        user_id,
        deleted.rowcount,
    )
    return len(rows)
