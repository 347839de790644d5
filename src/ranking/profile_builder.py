"""Derives preferred instructors and video length from a user's feedback history."""

from collections import Counter
from statistics import median

from pydantic import BaseModel, Field

from src.curation.storage_service import KnowledgeStore
from src.utils.logging import get_logger

logger = get_logger(__name__)

MIN_FEEDBACK = 5
TOP_INSTRUCTORS = 3
LENGTH_WINDOW_MINUTES = 5
LENGTH_FLOOR_MINUTES = 5
LENGTH_CEILING_MINUTES = 30


class PreferenceUpdate(BaseModel):
    preferred_instructors: list[str] = Field(default_factory=list)
    preferred_length_min: int | None = None
    preferred_length_max: int | None = None


def derive_preferences(rows: list[dict]) -> PreferenceUpdate | None:
    """Compute preferences from feedback rows, or None with too little history.

    Each row carries was_helpful and a nested videos object with
    instructor_name and duration_seconds.
    """
    if len(rows) < MIN_FEEDBACK:
        return None

    helpful_videos = [row.get("videos") or {} for row in rows if row.get("was_helpful")]

    instructors = Counter(
        video["instructor_name"] for video in helpful_videos if video.get("instructor_name")
    )
    top = [name for name, _ in instructors.most_common(TOP_INSTRUCTORS)]

    minutes = [
        video["duration_seconds"] / 60
        for video in helpful_videos
        if video.get("duration_seconds")
    ]
    if not minutes:
        return PreferenceUpdate(preferred_instructors=top)

    middle = median(minutes)
    return PreferenceUpdate(
        preferred_instructors=top,
        preferred_length_min=max(LENGTH_FLOOR_MINUTES, round(middle - LENGTH_WINDOW_MINUTES)),
        preferred_length_max=min(LENGTH_CEILING_MINUTES, round(middle + LENGTH_WINDOW_MINUTES)),
    )


class ProfileBuilder:
    def __init__(self, store: KnowledgeStore):
        self.store = store

    async def build(self, user_id: str) -> PreferenceUpdate | None:
        rows = await self.store.user_feedback(user_id)
        update = derive_preferences(rows)
        if update is None:
            logger.info("profile_build_skipped", user_id=user_id, feedback_count=len(rows))
            return None

        await self.store.update_user_preferences(
            user_id,
            update.preferred_instructors,
            update.preferred_length_min,
            update.preferred_length_max,
        )
        logger.info(
            "profile_built",
            user_id=user_id,
            instructors=update.preferred_instructors,
            length_min=update.preferred_length_min,
            length_max=update.preferred_length_max,
        )
        return update
