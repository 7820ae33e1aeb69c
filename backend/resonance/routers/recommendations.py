"""Recommendation endpoints."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from resonance.services.recommendation_engine import (
    RecommendationService,
    get_recommendation_service,
)
from resonance.services.schemas import RecommendationResult, RecommendationStats
from resonance.services.storage import StorageError

logger = logging.getLogger(__name__)

router = APIRouter()


class RecommendationResponse(BaseModel):
    """Persisted recommendation."""
    id: int
    track_id: int
    type: str
    score: float
    reason: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    expires_at: Optional[datetime] = None


def _storage_unavailable(exc: StorageError) -> HTTPException:
    logger.error(f"Recommendation storage error: {exc}")
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Recommendation storage unavailable",
    )


@router.get("/stats", response_model=RecommendationStats)
async def get_recommendation_stats(
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Engine statistics."""
    try:
        return await service.get_stats()
    except StorageError as exc:
        raise _storage_unavailable(exc)


@router.get("/users/{user_id}", response_model=List[RecommendationResponse])
async def get_user_recommendations(
    user_id: int,
    limit: int = Query(50, ge=1, le=200),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Live (unexpired, unconsumed) recommendations for a user."""
    try:
        rows = await service.storage.get_user_recommendations(
            user_id, limit, datetime.utcnow()
        )
    except StorageError as exc:
        raise _storage_unavailable(exc)

    return [
        RecommendationResponse(
            id=row.id,
            track_id=row.track_id,
            type=row.recommendation_type,
            score=row.score,
            reason=row.reason,
            metadata=row.extra_data or {},
            created_at=row.created_at,
            expires_at=row.expires_at,
        )
        for row in rows
    ]


@router.post("/users/{user_id}/generate", response_model=List[RecommendationResult])
async def generate_user_recommendations(
    user_id: int,
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Generate and persist recommendations now, from the current caches."""
    try:
        return await service.generate_and_save_user_recommendations(user_id)
    except StorageError as exc:
        raise _storage_unavailable(exc)


@router.post("/{recommendation_id}/consume")
async def consume_recommendation(
    recommendation_id: int,
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Mark a recommendation as consumed."""
    try:
        updated = await service.storage.mark_recommendation_consumed(
            recommendation_id, datetime.utcnow()
        )
    except StorageError as exc:
        raise _storage_unavailable(exc)

    if not updated:
        raise HTTPException(status_code=404, detail="Recommendation not found")
    return {"status": "consumed", "id": recommendation_id}


@router.post("/refresh", status_code=status.HTTP_202_ACCEPTED)
async def refresh_all_recommendations():
    """Queue the full batch (cache refresh + generation for every user)."""
    from resonance.tasks.recommendations import generate_all_recommendations

    task = generate_all_recommendations.delay()
    return {"status": "queued", "task_id": task.id}
