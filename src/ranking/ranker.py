"""Multi-factor personalized video scoring.

Scoring is pure: all datastore facts arrive through a RankingLookups object
that is loaded once per rank call, so identical inputs always produce the
identical ordering.
"""

from datetime import UTC, datetime

from src.curation.schemas import UserProfile, VideoRecord

from .demographics import BeltLevel
from .schemas import RankedVideo, RankingContext, RankingFactors, RankingLookups

DEFAULT_QUALITY_SCORE = 7.0
NEUTRAL_SUCCESS_SCORE = 12.5
DEFAULT_LANGUAGE = "en"
DEFAULT_DURATION_SECONDS = 600
DEFAULT_LENGTH_MIN = 5
DEFAULT_LENGTH_MAX = 20

UNHELPFUL_PENALTY = 0.3
SEEN_PENALTY = 0.6
HELPFUL_PENALTY = 0.8

PRIORITY_STEPS = [(80, 10), (60, 7), (40, 5), (20, 3)]


def community_feedback_score(video: VideoRecord) -> float:
    """Confidence-banded feedback score: 40 / 30 by vote count, else quality-based 25."""
    if video.helpful_ratio is not None:
        if video.total_votes >= 50:
            return video.helpful_ratio * 40
        if video.total_votes >= 20:
            return video.helpful_ratio * 30
    quality = video.quality_score if video.quality_score is not None else DEFAULT_QUALITY_SCORE
    return quality / 10 * 25


def similar_user_score(video: VideoRecord, lookups: RankingLookups) -> float:
    rate = lookups.success_rates.get(video.id) if video.id is not None else None
    if rate is None:
        return NEUTRAL_SUCCESS_SCORE
    return rate * 25


def preference_score(video: VideoRecord, profile: UserProfile) -> float:
    """Up to 20 points; each sub-factor keeps a smaller non-zero value on mismatch."""
    score = 0.0

    preferred = {name.strip().lower() for name in profile.preferred_instructors}
    if preferred:
        instructor = (video.instructor_name or "").strip().lower()
        score += 7 if instructor and instructor in preferred else 2

    language = (profile.preferred_language or DEFAULT_LANGUAGE).lower()
    video_languages = [lang.lower() for lang in video.languages] or [DEFAULT_LANGUAGE]
    score += 8 if language in video_languages else 3

    minutes = (video.duration_seconds or DEFAULT_DURATION_SECONDS) / 60
    low = profile.preferred_length_min
    high = profile.preferred_length_max
    if low is None:
        low = DEFAULT_LENGTH_MIN
    if high is None:
        high = DEFAULT_LENGTH_MAX
    score += 5 if low <= minutes <= high else 2

    return score


def belt_fit_score(video: VideoRecord, profile: UserProfile) -> float:
    if not video.belt_levels:
        return 8
    belt = BeltLevel.parse(profile.belt_level)
    if belt == BeltLevel.UNSPECIFIED:
        return 8
    tags = {BeltLevel.parse(tag) for tag in video.belt_levels}
    return 10 if belt in tags else 3


def recency_score(video: VideoRecord, now: datetime) -> float:
    published = video.upload_date or video.created_at
    if published is None:
        return 3
    if published.tzinfo is None:
        published = published.replace(tzinfo=UTC)
    age_days = (now - published).days
    if age_days < 30:
        return 5
    if age_days < 180:
        return 4
    return 3


def priority_bonus(priority_score: int | None) -> float:
    """Step function of the 0-100 instructor credibility score."""
    if priority_score is None:
        return 0
    for floor, bonus in PRIORITY_STEPS:
        if priority_score >= floor:
            return bonus
    return 1


def instructor_priority_score(video: VideoRecord, lookups: RankingLookups) -> float:
    if not video.instructor_name:
        return 0
    return priority_bonus(lookups.instructor_priorities.get(video.instructor_name.strip().lower()))


def seen_penalty(video: VideoRecord, lookups: RankingLookups) -> float:
    if video.id is None or video.id not in lookups.interactions:
        return 1.0
    feedback = lookups.interactions[video.id]
    if feedback is False:
        return UNHELPFUL_PENALTY
    if feedback is True:
        return HELPFUL_PENALTY
    return SEEN_PENALTY


class RankingEngine:
    """Scores and orders candidate videos for one user."""

    def score(
        self,
        video: VideoRecord,
        context: RankingContext,
        lookups: RankingLookups,
        now: datetime,
    ) -> RankedVideo:
        factors = RankingFactors(
            community_feedback=community_feedback_score(video),
            similar_users=similar_user_score(video, lookups),
            preference_match=preference_score(video, context.profile),
            belt_fit=belt_fit_score(video, context.profile),
            recency=recency_score(video, now),
            instructor_priority=instructor_priority_score(video, lookups),
            seen_penalty=seen_penalty(video, lookups),
        )
        unpenalized = round(
            factors.community_feedback
            + factors.similar_users
            + factors.preference_match
            + factors.belt_fit
            + factors.recency
            + factors.instructor_priority,
            2,
        )
        return RankedVideo(
            video=video,
            score=unpenalized * factors.seen_penalty,
            unpenalized_score=unpenalized,
            factors=factors,
        )

    def rank(
        self,
        videos: list[VideoRecord],
        context: RankingContext,
        lookups: RankingLookups,
        now: datetime | None = None,
    ) -> list[RankedVideo]:
        """Score every video and sort by descending score.

        Args:
            videos: Candidates in caller order.
            context: The requesting user.
            lookups: Batch-loaded facts for these candidates.
            now: Reference time for recency. Defaults to UTC now.

        Returns:
            A permutation of the input. Ties keep input order.
        """
        now = now or datetime.now(UTC)
        scored = [self.score(video, context, lookups, now) for video in videos]
        return sorted(scored, key=lambda ranked: -ranked.score)
