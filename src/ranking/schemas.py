"""Pydantic schemas for ranking and pattern tracking."""

from pydantic import BaseModel, Field

from src.curation.schemas import UserProfile, VideoRecord

from .demographics import DemographicKey


class SuccessPattern(BaseModel):
    """Aggregated outcome statistics for one (video, demographic bucket) pair."""

    video_id: int
    key: DemographicKey
    helpful_count: int = 0
    total_views: int = 0

    @property
    def success_rate(self) -> float:
        if self.total_views == 0:
            return 0.0
        return self.helpful_count / self.total_views


class RankingContext(BaseModel):
    """Request-scoped ranking input: who is asking."""

    user_id: str
    profile: UserProfile

    @property
    def demographic_key(self) -> DemographicKey:
        return DemographicKey.from_profile(self.profile)


class RankingLookups(BaseModel):
    """Batch-loaded lookup maps, read-only for the duration of one rank call.

    interactions maps a video id to the caller's feedback on it: True for
    helpful, False for unhelpful and None for seen without feedback. Videos
    the caller never saw are absent.
    """

    success_rates: dict[int, float] = Field(default_factory=dict)
    interactions: dict[int, bool | None] = Field(default_factory=dict)
    instructor_priorities: dict[str, int] = Field(default_factory=dict)


class RankingFactors(BaseModel):
    """Per-factor score breakdown for one ranked video."""

    community_feedback: float
    similar_users: float
    preference_match: float
    belt_fit: float
    recency: float
    instructor_priority: float
    seen_penalty: float = 1.0


class RankedVideo(BaseModel):
    """A candidate annotated with its score and factor breakdown."""

    video: VideoRecord
    score: float
    unpenalized_score: float
    factors: RankingFactors


class RankingResult(BaseModel):
    """Ordered answer to one rank call.

    video_ids is always a permutation of the requested ids. When ranking
    degrades, ranked is False, the ids keep caller order and results is empty.
    """

    user_id: str
    ranked: bool
    video_ids: list[int]
    results: list[RankedVideo] = Field(default_factory=list)
