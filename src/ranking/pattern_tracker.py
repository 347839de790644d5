"""Per-demographic success pattern tracking."""

import asyncio
import weakref

from src.curation.storage_service import KnowledgeStore
from src.utils.logging import get_logger

from .demographics import DemographicKey
from .schemas import SuccessPattern

logger = get_logger(__name__)


class PatternTracker:
    """Records helpful/unhelpful outcomes per (video, demographic bucket).

    Writes to the same tuple are serialized in-process by a per-tuple lock and
    the datastore increment is a single atomic upsert, so concurrent feedback
    from different users never loses an update. Different tuples proceed
    independently.
    """

    def __init__(self, store: KnowledgeStore):
        self.store = store
        self._locks: weakref.WeakValueDictionary[tuple[int, DemographicKey], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, video_id: int, key: DemographicKey) -> asyncio.Lock:
        lock = self._locks.get((video_id, key))
        if lock is None:
            lock = asyncio.Lock()
            self._locks[(video_id, key)] = lock
        return lock

    async def record_outcome(
        self, video_id: int, key: DemographicKey, was_helpful: bool
    ) -> SuccessPattern:
        """Find-or-create the tuple row, bump views, and bump helpful when applicable.

        Args:
            video_id: Knowledge Store video id.
            key: Demographic bucket. Unspecified dimensions are stored as such.
            was_helpful: Whether the user found the video helpful.

        Returns:
            The updated pattern with its new counts.
        """
        lock = self._lock_for(video_id, key)
        async with lock:
            pattern = await self.store.increment_success_pattern(video_id, key, was_helpful)

        logger.info(
            "success_pattern_updated",
            video_id=video_id,
            bucket=key.as_row(),
            helpful_count=pattern.helpful_count,
            total_views=pattern.total_views,
            success_rate=round(pattern.success_rate, 3),
        )
        return pattern
