"""Hybrid recommendation engine.

Blends collaborative filtering, content-based filtering, popularity ranking
and temporal patterns into a ranked, deduplicated list per user, reserving
part of the list for discovery picks.
"""

import asyncio
import logging
from datetime import datetime
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

from resonance.config import RecommendationConfig, get_settings
from resonance.models.user import User
from resonance.services.blender import assemble, discovery_slots, rank_candidates
from resonance.services.feature_store import (
    FeatureSnapshot,
    FeatureStore,
    build_popularity,
    build_temporal_patterns,
    build_track_features,
    build_user_similarities,
)
from resonance.services.schemas import RecommendationResult, RecommendationStats
from resonance.services.storage import RecommendationStorage
from resonance.services.strategies import (
    collaborative_recommendations,
    content_based_recommendations,
    discovery_recommendations,
    popularity_recommendations,
    temporal_recommendations,
)

logger = logging.getLogger(__name__)

USER_HISTORY_LIMIT = 1000
SIMILARITY_HISTORY_LIMIT = 500
TRENDING_DAYS = 30


class RecommendationService:
    """Drives cache refreshes and per-user generation.

    Two concurrent generations for the same user may both persist; the
    later batch simply lands next to the earlier one. Recommendations are
    eventually consistent, not a guarded resource.
    """

    def __init__(
        self,
        storage: RecommendationStorage,
        config: Optional[RecommendationConfig] = None,
        store: Optional[FeatureStore] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.storage = storage
        self.config = config or RecommendationConfig()
        self.store = store or FeatureStore()
        self._clock = clock
        self._last_generation: Optional[datetime] = None
        self._active_users = 0
        self._refresh_task: Optional[asyncio.Task] = None

    async def refresh_caches(self) -> FeatureSnapshot:
        """Rebuild every cache under the exclusive lock and swap them in.

        If anything fails the previously installed caches are left untouched.
        """
        logger.info("Refreshing recommendation caches")

        async with self.store.rebuild() as store:
            users = await self.storage.list_active_users()
            user_tracks = {}
            for user in users:
                user_tracks[user.id] = await self.storage.get_user_track_history(
                    user.id, SIMILARITY_HISTORY_LIMIT
                )
            now = self._clock()
            similar_users = build_user_similarities(
                user_tracks, self.config.similarity_threshold, now
            )

            popularity = build_popularity(await self.storage.get_track_popularity_aggregates())
            track_features = build_track_features(await self.storage.get_all_tracks(), popularity)
            temporal_patterns = build_temporal_patterns(
                await self.storage.get_track_time_aggregates()
            )

            snapshot = FeatureSnapshot(
                similar_users=similar_users,
                track_features=track_features,
                popularity=popularity,
                temporal_patterns=temporal_patterns,
                refreshed_at=now,
            )
            store.install(snapshot)

        logger.info("Recommendation caches refreshed", extra=snapshot.sizes())
        return snapshot

    async def generate_all_recommendations(self) -> Dict[str, Any]:
        """Refresh caches, then generate and persist for every active user.

        A failure for one user is logged and never aborts the batch.
        """
        logger.info("Starting recommendation generation for all users")

        try:
            await self.refresh_caches()
            cache_status = "refreshed"
        except Exception as e:
            logger.warning(f"Cache refresh failed, reusing previous caches: {e}")
            cache_status = "stale"

        users = await self.storage.list_active_users()
        logger.info(f"Generating recommendations for {len(users)} users")

        semaphore = asyncio.Semaphore(self.config.batch_concurrency)

        async def process(user: User) -> bool:
            async with semaphore:
                try:
                    results = await self.generate_user_recommendations(user.id)
                    await self.storage.save_recommendations(user.id, results, self._clock())
                except Exception as e:
                    logger.error(
                        f"Failed to generate recommendations for user {user.username}: {e}"
                    )
                    return False
                logger.info(
                    f"Generated {len(results)} recommendations for user {user.username}"
                )
                return True

        outcomes = await asyncio.gather(*(process(user) for user in users))
        processed = sum(1 for ok in outcomes if ok)

        self._last_generation = self._clock()
        self._active_users = len(users)

        logger.info("Recommendation generation completed")
        return {
            "status": "completed",
            "caches": cache_status,
            "users_processed": processed,
            "users_failed": len(users) - processed,
        }

    async def generate_user_recommendations(self, user_id: int) -> List[RecommendationResult]:
        """Generate (without persisting) recommendations from the current caches."""
        async with self.store.read() as snapshot:
            return await self._generate(user_id, snapshot)

    async def generate_and_save_user_recommendations(
        self, user_id: int
    ) -> List[RecommendationResult]:
        """On-demand generation for one user; storage errors reach the caller."""
        results = await self.generate_user_recommendations(user_id)
        await self.storage.save_recommendations(user_id, results, self._clock())
        return results

    async def _generate(
        self, user_id: int, snapshot: FeatureSnapshot
    ) -> List[RecommendationResult]:
        logger.debug(f"Generating recommendations for user: {user_id}")
        config = self.config

        listening_stats = await self.storage.get_user_listening_stats(user_id)
        # Recent history shapes the taste profile; the full set drives exclusion
        user_tracks = await self.storage.get_user_track_history(user_id, USER_HISTORY_LIMIT)
        heard_tracks = await self.storage.get_user_heard_tracks(user_id)
        banned_tracks = await self.storage.get_banned_tracks(user_id)
        excluded = banned_tracks | heard_tracks

        if listening_stats.total_plays < config.min_listening_history:
            # New user: popularity only
            popular = popularity_recommendations(heard_tracks, snapshot, config)
            return [rec for rec in popular if rec.track_id not in excluded][
                :config.max_recommendations
            ]

        self.store.record_lookup(user_id in snapshot.similar_users)

        candidates: List[RecommendationResult] = []
        if config.collaborative_weight > 0:
            candidates.extend(
                await collaborative_recommendations(
                    user_id, heard_tracks, snapshot, self.storage, config
                )
            )
        if config.content_weight > 0:
            candidates.extend(
                content_based_recommendations(
                    user_tracks, snapshot, config, heard_tracks=heard_tracks
                )
            )
        if config.popularity_weight > 0:
            candidates.extend(popularity_recommendations(heard_tracks, snapshot, config))
        if config.temporal_weight > 0:
            candidates.extend(temporal_recommendations(snapshot, config, self._clock()))

        ranked = rank_candidates(candidates, excluded)
        discovery_count = discovery_slots(len(ranked), config.discovery_ratio)

        discovery: List[RecommendationResult] = []
        if discovery_count > 0:
            trending = await self.storage.get_trending_tracks(TRENDING_DAYS, self._clock())
            preferred_artists = await self.storage.get_user_preferred_artists(user_id)
            discovery = discovery_recommendations(trending, preferred_artists)

        final = assemble(
            ranked, discovery, discovery_count, excluded, config.max_recommendations
        )
        logger.debug(f"Generated {len(final)} recommendations for user {user_id}")
        return final

    async def get_stats(self) -> RecommendationStats:
        totals = await self.storage.get_recommendation_totals()
        return RecommendationStats(
            total_recommendations=totals.total,
            recommendations_consumed=totals.consumed,
            average_score=totals.average_score,
            last_generation=self._last_generation,
            active_users=self._active_users,
            cache_hits=self.store.cache_hits,
            cache_misses=self.store.cache_misses,
        )

    async def health_check(self) -> Dict[str, Any]:
        storage_ok = False
        try:
            storage_ok = await self.storage.ping()
        except Exception as e:
            logger.warning(f"Recommendation storage unreachable: {e}")

        snapshot = self.store.current
        return {
            "status": "healthy" if storage_ok else "degraded",
            "storage": storage_ok,
            "caches_warm": snapshot.refreshed_at is not None,
            "refreshed_at": snapshot.refreshed_at.isoformat() if snapshot.refreshed_at else None,
            "cache_sizes": snapshot.sizes(),
        }

    async def run_refresh_loop(self) -> None:
        """Refresh the caches now and then every ``cache_duration_hours``."""
        interval = self.config.cache_duration_hours * 3600
        while True:
            try:
                await self.refresh_caches()
            except Exception as e:
                logger.warning(f"Scheduled cache refresh failed: {e}")
            await asyncio.sleep(interval)

    def start_refresh_loop(self) -> asyncio.Task:
        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.create_task(
                self.run_refresh_loop(), name="recommendation_cache_refresh"
            )
        return self._refresh_task

    async def shutdown(self) -> None:
        logger.info("Shutting down recommendation service")
        task, self._refresh_task = self._refresh_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass


def build_recommendation_service() -> RecommendationService:
    """Create an engine over the SQL storage with settings from the environment."""
    from resonance.database import AsyncSessionLocal
    from resonance.services.storage import SqlRecommendationStorage

    return RecommendationService(
        storage=SqlRecommendationStorage(AsyncSessionLocal),
        config=get_settings().recommendation,
    )


@lru_cache
def get_recommendation_service() -> RecommendationService:
    """Process-wide engine shared by the API layer."""
    return build_recommendation_service()
