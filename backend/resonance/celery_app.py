"""Celery application configuration."""

from datetime import timedelta

from celery import Celery
from celery.schedules import crontab

from resonance.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "resonance",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "resonance.tasks.recommendations",
    ],
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution
    task_track_started=True,
    task_time_limit=3600,  # 1 hour max per task
    task_soft_time_limit=3300,  # Soft limit at 55 minutes

    # Result backend
    result_expires=86400,  # Results expire after 1 day

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=1,

    # Scheduled tasks
    beat_schedule={
        # Full batch: refresh caches, then regenerate for every active user
        "generate-all-recommendations": {
            "task": "resonance.tasks.recommendations.generate_all_recommendations",
            "schedule": timedelta(hours=settings.recommendation_cache_duration_hours),
        },
        # Drop expired recommendation rows daily at 4 AM
        "prune-expired-recommendations": {
            "task": "resonance.tasks.recommendations.prune_expired_recommendations",
            "schedule": crontab(minute=0, hour=4),
        },
    },
)
