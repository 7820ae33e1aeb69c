"""API routers."""

from resonance.routers import health, recommendations

__all__ = ["health", "recommendations"]
