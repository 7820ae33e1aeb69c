"""Resonance - Main FastAPI Application."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from resonance.config import get_settings
from resonance.database import init_db
from resonance.routers import health, recommendations
from resonance.services.recommendation_engine import get_recommendation_service

logger = logging.getLogger(__name__)

config = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager.

    Keeps the engine caches of this process warm so on-demand generation
    does not wait for a batch run.
    """
    await init_db()
    service = get_recommendation_service()
    service.start_refresh_loop()
    yield
    await service.shutdown()


app = FastAPI(
    title=config.app_name,
    description="Hybrid Music Recommendation Engine",
    version=config.app_version,
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(recommendations.router, prefix="/api/recommendations", tags=["Recommendations"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": config.app_name,
        "version": config.app_version,
        "description": "Hybrid Music Recommendation Engine",
    }
