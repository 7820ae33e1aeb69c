"""Health check endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from resonance.config import get_settings
from resonance.database import get_db
from resonance.services.recommendation_engine import (
    RecommendationService,
    get_recommendation_service,
)

router = APIRouter()
settings = get_settings()


@router.get("/health")
async def health_check():
    """Basic health check."""
    return {"status": "healthy", "version": settings.app_version}


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
    service: RecommendationService = Depends(get_recommendation_service),
):
    """Readiness check including database, broker and engine caches."""
    checks = {
        "database": False,
        "redis": False,
    }

    # Check database
    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception:
        pass

    # Check Redis (Celery broker)
    try:
        import redis
        r = redis.from_url(settings.redis_url)
        r.ping()
        checks["redis"] = True
    except Exception:
        pass

    engine_health = await service.health_check()

    all_healthy = all(checks.values())
    return {
        "status": "ready" if all_healthy else "degraded",
        "checks": checks,
        "recommendations": engine_health,
    }
