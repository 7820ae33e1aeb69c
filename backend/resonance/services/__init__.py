"""Recommendation engine services."""

from resonance.services.feature_store import FeatureStore
from resonance.services.recommendation_engine import RecommendationService
from resonance.services.storage import SqlRecommendationStorage, StorageError

__all__ = [
    "FeatureStore",
    "RecommendationService",
    "SqlRecommendationStorage",
    "StorageError",
]
