"""Ranking service: batch loading, degradation and outcome recording."""

import asyncio
from datetime import UTC, datetime

from src.curation.storage_service import KnowledgeStore
from src.utils.logging import get_logger

from .demographics import DemographicKey
from .pattern_tracker import PatternTracker
from .ranker import RankingEngine
from .schemas import RankingContext, RankingLookups, RankingResult

logger = get_logger(__name__)


class RankingService:
    """Entry point for rank and record_outcome.

    Loads every per-candidate fact in a constant number of round trips before
    scoring, and never fails the caller: any error degrades to the unranked
    candidate order.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        engine: RankingEngine | None = None,
        tracker: PatternTracker | None = None,
    ):
        self.store = store
        self.engine = engine or RankingEngine()
        self.tracker = tracker or PatternTracker(store)

    async def load_lookups(
        self, context: RankingContext, video_ids: list[int], instructors: list[str]
    ) -> RankingLookups:
        """Load success rates, interactions and instructor priorities in three queries."""
        patterns, interactions, priorities = await asyncio.gather(
            self.store.fetch_success_patterns(video_ids, context.demographic_key),
            self.store.fetch_interactions(context.user_id, video_ids),
            self.store.fetch_instructor_priorities(instructors),
        )
        return RankingLookups(
            success_rates={
                video_id: pattern.success_rate
                for video_id, pattern in patterns.items()
                if pattern.total_views > 0
            },
            interactions=interactions,
            instructor_priorities=priorities,
        )

    async def rank(
        self, user_id: str, video_ids: list[int], now: datetime | None = None
    ) -> RankingResult:
        """Rank candidate videos for a user.

        Args:
            user_id: Requesting user.
            video_ids: Candidate Knowledge Store ids in caller order.
            now: Reference time for recency scoring.

        Returns:
            RankingResult whose video_ids is a permutation of the input.
        """
        unranked = RankingResult(user_id=user_id, ranked=False, video_ids=list(video_ids))
        if not video_ids:
            return unranked

        try:
            profile = await self.store.get_user_profile(user_id)
            if profile is None:
                logger.info("ranking_skipped", user_id=user_id, reason="profile_not_found")
                return unranked

            context = RankingContext(user_id=user_id, profile=profile)
            videos = await self.store.get_videos(video_ids)
            lookups = await self.load_lookups(
                context,
                [video.id for video in videos],
                [video.instructor_name for video in videos if video.instructor_name],
            )

            results = self.engine.rank(videos, context, lookups, now or datetime.now(UTC))

        except Exception as e:
            logger.exception(
                "ranking_failed",
                user_id=user_id,
                candidates=len(video_ids),
                error_type=type(e).__name__,
            )
            return unranked

        ordered = [ranked.video.id for ranked in results]
        found = set(ordered)
        ordered += [video_id for video_id in video_ids if video_id not in found]

        logger.info(
            "ranking_completed",
            user_id=user_id,
            candidates=len(video_ids),
            scored=len(results),
            top_score=results[0].score if results else None,
        )
        return RankingResult(user_id=user_id, ranked=True, video_ids=ordered, results=results)

    async def record_outcome(self, user_id: str, video_id: int, was_helpful: bool) -> None:
        """Record user feedback. Fire-and-forget: failures are logged, never raised."""
        try:
            profile = await self.store.get_user_profile(user_id)
            key = DemographicKey.from_profile(profile)
            await self.store.record_interaction(user_id, video_id, was_helpful)
            await self.tracker.record_outcome(video_id, key, was_helpful)
        except Exception as e:
            logger.exception(
                "outcome_recording_failed",
                user_id=user_id,
                video_id=video_id,
                error_type=type(e).__name__,
            )
