"""Instructor credibility scoring (0-100) that feeds the ranking priority bonus."""

from pydantic import BaseModel, Field

from src.curation.storage_service import KnowledgeStore
from src.curation.youtube_service import YouTubeService
from src.utils.logging import get_logger

logger = get_logger(__name__)

ELITE_ACHIEVEMENTS = [
    "ibjjf world champion",
    "ibjjf pan champion",
    "adcc champion",
    "world champion",
    "pan champion",
    "adcc gold",
]
NOTABLE_ACHIEVEMENTS = [
    "ibjjf",
    "adcc",
    "world",
    "pan",
    "european",
    "asian",
    "brazilian nationals",
    "medalist",
    "silver",
    "bronze",
]
COMPETITIVE_ACHIEVEMENTS = ["competitor", "champion", "tournament", "competition", "medal"]
MAJOR_PLATFORMS = ["bjj fanatics", "grapplers guide", "digitsu", "jiu jitsu x"]


class InstructorProfile(BaseModel):
    """Facts the credibility score is computed from."""

    name: str
    channel_id: str | None = None
    subscribers: int = 0
    achievements: list[str] = Field(default_factory=list)
    has_instructional_series: bool = False
    platforms: list[str] = Field(default_factory=list)
    helpful_ratio: float = 0.0  # percent, 0-100


class PriorityBreakdown(BaseModel):
    youtube: int
    achievements: int
    instructionals: int
    feedback: int

    @property
    def total(self) -> int:
        return self.youtube + self.achievements + self.instructionals + self.feedback


def youtube_score(subscribers: int) -> int:
    if subscribers >= 1_000_000:
        return 30
    if subscribers >= 500_000:
        return 20
    if subscribers >= 100_000:
        return 10
    if subscribers >= 10_000:
        return 5
    return 0


def achievements_score(achievements: list[str]) -> int:
    text = " ".join(achievements).lower()
    if not text:
        return 0
    if any(keyword in text for keyword in ELITE_ACHIEVEMENTS):
        return 25
    if any(keyword in text for keyword in NOTABLE_ACHIEVEMENTS):
        return 15
    if any(keyword in text for keyword in COMPETITIVE_ACHIEVEMENTS):
        return 5
    return 0


def instructional_score(has_series: bool, platforms: list[str]) -> int:
    if not has_series or not platforms:
        return 0
    text = " ".join(platforms).lower()
    return 20 if any(platform in text for platform in MAJOR_PLATFORMS) else 10


def feedback_score(helpful_ratio: float) -> int:
    if helpful_ratio >= 80:
        return 25
    if helpful_ratio >= 60:
        return 15
    if helpful_ratio >= 40:
        return 5
    return 0


def calculate_priority(instructor: InstructorProfile) -> PriorityBreakdown:
    """Score an instructor out of 100: audience 30, titles 25, instructionals 20, feedback 25."""
    return PriorityBreakdown(
        youtube=youtube_score(instructor.subscribers),
        achievements=achievements_score(instructor.achievements),
        instructionals=instructional_score(
            instructor.has_instructional_series, instructor.platforms
        ),
        feedback=feedback_score(instructor.helpful_ratio),
    )


class InstructorPriorityService:
    """Recomputes and stores instructor credibility scores."""

    def __init__(self, store: KnowledgeStore, youtube: YouTubeService | None = None):
        self.store = store
        self.youtube = youtube

    async def refresh(self, instructor: InstructorProfile) -> PriorityBreakdown:
        """Refresh subscriber count when possible, then score and persist.

        The channel lookup spends one channel-stat quota unit; quota exhaustion
        propagates to the caller.
        """
        if self.youtube is not None and instructor.channel_id:
            stats = await self.youtube.fetch_channel_stats(instructor.channel_id)
            if stats and stats.get("subscribers") is not None:
                instructor = instructor.model_copy(update={"subscribers": stats["subscribers"]})

        breakdown = calculate_priority(instructor)
        await self.store.upsert_instructor_priority(
            instructor.name, breakdown.total, breakdown.model_dump()
        )
        logger.info(
            "instructor_priority_refreshed",
            instructor=instructor.name,
            score=breakdown.total,
        )
        return breakdown
