"""Knowledge Store: curated videos, success patterns and technique snapshots in Supabase."""

from datetime import UTC, datetime
from typing import Any

from supabase import Client, create_client

from src.ranking.demographics import DemographicKey
from src.ranking.schemas import SuccessPattern
from src.utils.logging import get_logger

from .config import CurationConfig
from .errors import DuplicateVideoError
from .schemas import TechniqueMetaStatus, UserProfile, VideoRecord, VideoStatus

logger = get_logger(__name__)

UNIQUE_VIOLATION = "23505"


def is_unique_violation(error: Exception) -> bool:
    """True when a datastore error is a unique-constraint violation."""
    code = getattr(error, "code", None)
    if code == UNIQUE_VIOLATION:
        return True
    message = str(error).lower()
    return UNIQUE_VIOLATION in message or "duplicate key" in message


def contains_pattern(value: str) -> str:
    """ILIKE pattern matching value as a literal substring."""
    escaped = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _first(data: Any) -> dict[str, Any] | None:
    if isinstance(data, list):
        return data[0] if data else None
    return data or None


class KnowledgeStore:
    """Durable record of accepted videos and their per-demographic statistics.

    Owns VideoRecord and SuccessPattern rows. The quality gate inserts videos,
    the pattern tracker increments success patterns and the ranking engine only
    reads. Every batch read used by ranking is a single round trip regardless of
    how many videos are involved.
    """

    def __init__(self, config: CurationConfig, client: Client | None = None):
        """Initialize the store.

        Args:
            config: Configuration object with Supabase credentials.
            client: Optional pre-built Supabase client.
        """
        self.config = config
        self.client: Client = client or create_client(
            config.supabase_url,
            config.supabase_key,
        )
        logger.info("knowledge_store_initialized", supabase_url=config.supabase_url)

    # ------------------------------------------------------------------
    # Videos
    # ------------------------------------------------------------------

    async def video_exists(self, youtube_id: str) -> bool:
        """Check whether any record, in any status, holds this external id."""
        response = (
            self.client.table("videos")
            .select("id")
            .eq("youtube_id", youtube_id)
            .limit(1)
            .execute()
        )
        return bool(response.data)

    async def existing_ids(self, youtube_ids: list[str]) -> set[str]:
        """Return the subset of external ids already in the store."""
        if not youtube_ids:
            return set()
        response = (
            self.client.table("videos")
            .select("youtube_id")
            .in_("youtube_id", youtube_ids)
            .execute()
        )
        return {row["youtube_id"] for row in response.data or []}

    async def insert_video(self, record: VideoRecord) -> VideoRecord:
        """Insert an accepted video.

        Args:
            record: Video to insert. Its youtube_id is the dedup key.

        Returns:
            The stored record with its database id.

        Raises:
            DuplicateVideoError: If a record with the same youtube_id exists.
            Exception: If the datastore is unavailable.
        """
        data = record.model_dump(mode="json", exclude={"id", "created_at"})
        data["created_at"] = datetime.now(UTC).isoformat()

        try:
            response = self.client.table("videos").insert(data).execute()
        except Exception as e:
            if is_unique_violation(e):
                logger.info("video_already_exists", youtube_id=record.youtube_id)
                raise DuplicateVideoError(record.youtube_id) from e
            logger.exception(
                "video_insert_failed",
                youtube_id=record.youtube_id,
                error_type=type(e).__name__,
            )
            raise

        row = _first(response.data)
        logger.info(
            "video_inserted",
            youtube_id=record.youtube_id,
            technique=record.technique_name,
            quality_score=record.quality_score,
        )
        return VideoRecord.model_validate(row) if row else record

    async def queue_for_processing(self, video: VideoRecord) -> None:
        """Queue an accepted video for transcript and knowledge extraction."""
        try:
            self.client.table("transcript_queue").upsert(
                {
                    "video_id": video.id,
                    "youtube_id": video.youtube_id,
                    "status": "pending",
                    "queued_at": datetime.now(UTC).isoformat(),
                },
                on_conflict="youtube_id",
                ignore_duplicates=True,
            ).execute()
        except Exception as e:
            logger.warning(
                "video_queue_failed",
                youtube_id=video.youtube_id,
                error_type=type(e).__name__,
            )

    async def get_videos(self, video_ids: list[int]) -> list[VideoRecord]:
        """Load videos by database id, returned in the order requested."""
        if not video_ids:
            return []
        response = self.client.table("videos").select("*").in_("id", video_ids).execute()
        by_id = {row["id"]: VideoRecord.model_validate(row) for row in response.data or []}
        return [by_id[video_id] for video_id in video_ids if video_id in by_id]

    async def technique_coverage(self, technique_name: str) -> tuple[int, float | None]:
        """Count active videos for a technique and return the highest quality score."""
        response = (
            self.client.table("videos")
            .select("quality_score")
            .eq("status", VideoStatus.ACTIVE.value)
            .ilike("technique_name", contains_pattern(technique_name))
            .execute()
        )
        scores = [
            float(row["quality_score"])
            for row in response.data or []
            if row.get("quality_score") is not None
        ]
        return len(response.data or []), (max(scores) if scores else None)

    async def active_videos(self) -> list[dict[str, Any]]:
        """Return id and youtube_id of every active video."""
        response = (
            self.client.table("videos")
            .select("id, youtube_id")
            .eq("status", VideoStatus.ACTIVE.value)
            .execute()
        )
        return response.data or []

    async def mark_unavailable(self, youtube_ids: list[str]) -> None:
        """Soft-retire videos whose external id no longer resolves."""
        if not youtube_ids:
            return
        self.client.table("videos").update(
            {"status": VideoStatus.UNAVAILABLE.value}
        ).in_("youtube_id", youtube_ids).execute()
        logger.info("videos_marked_unavailable", count=len(youtube_ids))

    # ------------------------------------------------------------------
    # Success patterns and interactions
    # ------------------------------------------------------------------

    async def fetch_success_patterns(
        self, video_ids: list[int], key: DemographicKey
    ) -> dict[int, SuccessPattern]:
        """Load the success patterns of one demographic bucket for many videos."""
        if not video_ids:
            return {}
        query = self.client.table("video_success_patterns").select("*").in_("video_id", video_ids)
        for column, value in key.as_row().items():
            query = query.eq(column, value)
        response = query.execute()

        return {
            row["video_id"]: SuccessPattern(
                video_id=row["video_id"],
                key=key,
                helpful_count=row.get("helpful_count", 0),
                total_views=row.get("total_views", 0),
            )
            for row in response.data or []
        }

    async def increment_success_pattern(
        self, video_id: int, key: DemographicKey, was_helpful: bool
    ) -> SuccessPattern:
        """Atomically find-or-create and increment one (video, bucket) row.

        Runs as a single INSERT ... ON CONFLICT DO UPDATE inside the
        increment_success_pattern database function, so concurrent feedback
        from different workers never loses an update.
        """
        params = {f"p_{column}": value for column, value in key.as_row().items()}
        params["p_video_id"] = video_id
        params["p_was_helpful"] = was_helpful

        try:
            response = self.client.rpc("increment_success_pattern", params).execute()
        except Exception as e:
            logger.exception(
                "success_pattern_update_failed",
                video_id=video_id,
                error_type=type(e).__name__,
            )
            raise

        row = _first(response.data) or {}
        return SuccessPattern(
            video_id=video_id,
            key=key,
            helpful_count=row.get("helpful_count", 0),
            total_views=row.get("total_views", 0),
        )

    async def fetch_interactions(
        self, user_id: str, video_ids: list[int]
    ) -> dict[int, bool | None]:
        """Map each video the user has seen to their feedback (None if none given)."""
        if not video_ids:
            return {}
        response = (
            self.client.table("user_video_interactions")
            .select("video_id, was_helpful")
            .eq("user_id", user_id)
            .in_("video_id", video_ids)
            .execute()
        )
        return {row["video_id"]: row.get("was_helpful") for row in response.data or []}

    async def record_interaction(self, user_id: str, video_id: int, was_helpful: bool) -> None:
        """Upsert the caller's latest feedback on a video."""
        self.client.table("user_video_interactions").upsert(
            {
                "user_id": user_id,
                "video_id": video_id,
                "was_helpful": was_helpful,
                "updated_at": datetime.now(UTC).isoformat(),
            },
            on_conflict="user_id,video_id",
        ).execute()

    async def user_feedback(self, user_id: str) -> list[dict[str, Any]]:
        """Return the user's feedback rows joined with video instructor and duration."""
        response = (
            self.client.table("user_video_interactions")
            .select("was_helpful, videos(instructor_name, duration_seconds)")
            .eq("user_id", user_id)
            .not_.is_("was_helpful", "null")
            .execute()
        )
        return response.data or []

    # ------------------------------------------------------------------
    # Instructors and profiles
    # ------------------------------------------------------------------

    async def fetch_instructor_priorities(self, names: list[str]) -> dict[str, int]:
        """Map lowercased instructor names to their 0-100 credibility score."""
        keys = sorted({name.strip().lower() for name in names if name})
        if not keys:
            return {}
        response = (
            self.client.table("instructor_credibility")
            .select("name_key, priority_score")
            .in_("name_key", keys)
            .execute()
        )
        return {
            row["name_key"]: int(row.get("priority_score") or 0)
            for row in response.data or []
        }

    async def upsert_instructor_priority(
        self, name: str, score: int, breakdown: dict[str, int]
    ) -> None:
        self.client.table("instructor_credibility").upsert(
            {
                "name": name,
                "name_key": name.strip().lower(),
                "priority_score": score,
                "score_breakdown": breakdown,
                "updated_at": datetime.now(UTC).isoformat(),
            },
            on_conflict="name_key",
        ).execute()
        logger.info("instructor_priority_saved", instructor=name, score=score)

    async def get_user_profile(self, user_id: str) -> UserProfile | None:
        response = (
            self.client.table("user_profiles")
            .select("*")
            .eq("user_id", user_id)
            .limit(1)
            .execute()
        )
        row = _first(response.data)
        return UserProfile.model_validate(row) if row else None

    async def update_user_preferences(
        self,
        user_id: str,
        preferred_instructors: list[str],
        length_min: int | None,
        length_max: int | None,
    ) -> None:
        self.client.table("user_profiles").update(
            {
                "preferred_instructors": preferred_instructors,
                "preferred_length_min": length_min,
                "preferred_length_max": length_max,
            }
        ).eq("user_id", user_id).execute()

    # ------------------------------------------------------------------
    # Demand, trends and technique meta status
    # ------------------------------------------------------------------

    async def requested_techniques(self) -> set[str]:
        response = self.client.table("technique_requests").select("technique_name").execute()
        return {
            row["technique_name"].strip().lower()
            for row in response.data or []
            if row.get("technique_name")
        }

    async def count_requests(self, technique_name: str, since: datetime) -> int:
        response = (
            self.client.table("technique_requests")
            .select("id", count="exact")
            .ilike("technique_name", contains_pattern(technique_name))
            .gte("requested_at", since.isoformat())
            .execute()
        )
        return response.count or 0

    async def recent_trend_snapshots(self, limit: int) -> list[list[str]]:
        """Hot-technique lists of the most recent external trend snapshots."""
        response = (
            self.client.table("trend_snapshots")
            .select("hot_techniques")
            .order("analysis_date", desc=True)
            .limit(limit)
            .execute()
        )
        return [list(row.get("hot_techniques") or []) for row in response.data or []]

    async def get_meta_status(self, technique_name: str) -> TechniqueMetaStatus | None:
        response = (
            self.client.table("technique_meta_status")
            .select("*")
            .eq("technique_name", technique_name)
            .limit(1)
            .execute()
        )
        row = _first(response.data)
        return TechniqueMetaStatus.model_validate(row) if row else None

    async def upsert_meta_status(self, status: TechniqueMetaStatus) -> None:
        self.client.table("technique_meta_status").upsert(
            status.model_dump(mode="json"),
            on_conflict="technique_name",
        ).execute()

    async def top_curation_priorities(self, limit: int) -> list[TechniqueMetaStatus]:
        response = (
            self.client.table("technique_meta_status")
            .select("*")
            .eq("needs_curation", True)
            .order("curation_priority", desc=True)
            .limit(limit)
            .execute()
        )
        return [TechniqueMetaStatus.model_validate(row) for row in response.data or []]

    async def trending_techniques(self, limit: int) -> list[TechniqueMetaStatus]:
        response = (
            self.client.table("technique_meta_status")
            .select("*")
            .in_("meta_status", ["hot", "rising"])
            .order("overall_meta_score", desc=True)
            .limit(limit)
            .execute()
        )
        return [TechniqueMetaStatus.model_validate(row) for row in response.data or []]
