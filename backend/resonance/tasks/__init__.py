"""Background tasks."""

from resonance.tasks import recommendations

__all__ = ["recommendations"]
