"""Recommendation generation tasks."""

import asyncio
import logging
from datetime import datetime

from resonance.celery_app import celery_app
from resonance.database import AsyncSessionLocal, engine
from resonance.services.recommendation_engine import build_recommendation_service
from resonance.services.storage import SqlRecommendationStorage

logger = logging.getLogger(__name__)


def _run(coro):
    """Run a coroutine on a fresh event loop owned by this task."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _release_connections() -> None:
    # Pooled connections are bound to the loop that opened them
    await engine.dispose()


@celery_app.task(name="resonance.tasks.recommendations.generate_all_recommendations")
def generate_all_recommendations():
    """Refresh the caches and regenerate recommendations for every active user."""
    return _run(_generate_all_recommendations_async())


async def _generate_all_recommendations_async():
    """Async implementation of the full batch.

    Each run builds its own engine, so the caches live for this batch only.
    """
    service = build_recommendation_service()
    try:
        return await service.generate_all_recommendations()
    finally:
        await service.shutdown()
        await _release_connections()


@celery_app.task(name="resonance.tasks.recommendations.generate_user_recommendations")
def generate_user_recommendations(user_id: int):
    """Generate and persist recommendations for one user."""
    return _run(_generate_user_recommendations_async(user_id))


async def _generate_user_recommendations_async(user_id: int):
    logger.info(f"Generating recommendations for user {user_id}")

    service = build_recommendation_service()
    try:
        await service.refresh_caches()
        results = await service.generate_and_save_user_recommendations(user_id)
    finally:
        await _release_connections()

    return {
        "status": "completed",
        "user_id": user_id,
        "recommendations_created": len(results),
    }


@celery_app.task(name="resonance.tasks.recommendations.prune_expired_recommendations")
def prune_expired_recommendations():
    """Delete recommendation rows whose expiry has passed."""
    return _run(_prune_expired_recommendations_async())


async def _prune_expired_recommendations_async():
    storage = SqlRecommendationStorage(AsyncSessionLocal)
    try:
        deleted = await storage.prune_expired_recommendations(datetime.utcnow())
    finally:
        await _release_connections()

    logger.info(f"Pruned {deleted} expired recommendations")
    return {"status": "completed", "deleted": deleted}
