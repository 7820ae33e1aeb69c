import sys

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from resonance.database import get_db
from resonance.routers import health
from resonance.services.recommendation_engine import get_recommendation_service


class _DbSession:
    def __init__(self, healthy: bool):
        self.healthy = healthy

    async def execute(self, _query):
        if not self.healthy:
            raise RuntimeError("db unavailable")
        return 1


class _RedisClient:
    def __init__(self, healthy: bool):
        self.healthy = healthy

    def ping(self):
        if not self.healthy:
            raise RuntimeError("redis unavailable")
        return True


class _RedisModule:
    def __init__(self, healthy: bool):
        self.healthy = healthy

    def from_url(self, _url):
        return _RedisClient(self.healthy)


class _RecommendationService:
    def __init__(self, healthy: bool):
        self.healthy = healthy

    async def health_check(self):
        return {
            "status": "healthy" if self.healthy else "degraded",
            "storage": self.healthy,
            "caches_warm": False,
            "refreshed_at": None,
            "cache_sizes": {},
        }


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("db_ok", "redis_ok", "expected_status"),
    [
        (True, True, "ready"),
        (True, False, "degraded"),
        (False, True, "degraded"),
        (False, False, "degraded"),
    ],
)
async def test_health_ready_reports_each_dependency(
    monkeypatch, db_ok, redis_ok, expected_status
):
    app = FastAPI()
    app.include_router(health.router)

    async def override_get_db():
        yield _DbSession(db_ok)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_recommendation_service] = lambda: _RecommendationService(db_ok)
    monkeypatch.setitem(sys.modules, "redis", _RedisModule(redis_ok))

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        response = await client.get("/health/ready")

    payload = response.json()

    assert response.status_code == 200
    assert payload["status"] == expected_status
    assert payload["checks"] == {"database": db_ok, "redis": redis_ok}
    assert payload["recommendations"]["storage"] is db_ok
    assert payload["recommendations"]["caches_warm"] is False


@pytest.mark.asyncio
async def test_health_reports_version():
    app = FastAPI()
    app.include_router(health.router)

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
