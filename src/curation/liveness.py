"""Liveness sweep: soft-retires curated videos that no longer resolve on YouTube."""

import asyncio

from src.utils.logging import get_logger

from .config import CurationConfig
from .schemas import SweepResult
from .storage_service import KnowledgeStore
from .youtube_service import YouTubeService

logger = get_logger(__name__)


class LivenessSweep:
    """Checks every active video through oEmbed and flips dead ones to unavailable.

    Records are never deleted. Checks cost no quota and run in batches of
    config.batch_size with config.batch_delay_seconds between batches.
    """

    def __init__(self, config: CurationConfig, store: KnowledgeStore, youtube: YouTubeService):
        self.config = config
        self.store = store
        self.youtube = youtube

    async def run(self) -> SweepResult:
        videos = await self.store.active_videos()
        result = SweepResult()
        logger.info("liveness_sweep_started", active_videos=len(videos))

        for start in range(0, len(videos), self.config.batch_size):
            if start > 0:
                await asyncio.sleep(self.config.batch_delay_seconds)

            batch = [row["youtube_id"] for row in videos[start : start + self.config.batch_size]]
            statuses = await asyncio.gather(
                *(self.youtube.check_available(youtube_id) for youtube_id in batch)
            )

            dead = [youtube_id for youtube_id, alive in zip(batch, statuses, strict=True) if not alive]
            result.checked += len(batch)
            result.alive += len(batch) - len(dead)

            if dead:
                try:
                    await self.store.mark_unavailable(dead)
                    result.marked_unavailable += len(dead)
                except Exception as e:
                    logger.exception(
                        "mark_unavailable_failed",
                        count=len(dead),
                        error_type=type(e).__name__,
                    )
                    result.errors.append(f"mark_unavailable: {type(e).__name__}: {e}")

        logger.info(
            "liveness_sweep_completed",
            checked=result.checked,
            marked_unavailable=result.marked_unavailable,
        )
        return result
