"""Pydantic schemas for video curation, gap analysis and ranking."""

import math
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class StyleTag(str, Enum):
    """Whether a technique is taught in the gi, without it, or both."""

    GI = "gi"
    NO_GI = "no-gi"
    BOTH = "both"


class VideoStatus(str, Enum):
    """Soft lifecycle status of a curated video. Records are never deleted."""

    ACTIVE = "active"
    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"


class MetaStatus(str, Enum):
    """Trend direction of a technique between two gap-analysis runs."""

    HOT = "hot"
    RISING = "rising"
    COOLING = "cooling"
    STABLE = "stable"


class RejectCategory(str, Enum):
    """Which quality-gate stage rejected a candidate."""

    DUPLICATE = "duplicate"
    GENRE = "genre"
    LEXICAL = "lexical"
    CLASSIFIER = "classifier"
    MALFORMED = "malformed"
    QUALITY = "quality"
    ERROR = "error"


class Candidate(BaseModel):
    """An externally-sourced video not yet admitted to the Knowledge Store."""

    external_id: str
    title: str
    description: str = ""
    channel_name: str = ""
    channel_id: str | None = None
    duration_seconds: int | None = None
    published_at: datetime | None = None

    @property
    def url(self) -> str:
        return f"https://www.youtube.com/watch?v={self.external_id}"


class CurationTarget(BaseModel):
    """A single instructor or technique a curation run searches for.

    Queries are tried in order; the run moves on to the next target once
    enough candidates have been accepted for this one.
    """

    name: str
    kind: str = "technique"  # technique | instructor
    queries: list[str] = Field(default_factory=list)
    priority: int = 0


class ClassifierOutput(BaseModel):
    """Validated JSON object returned by the LLM content classifier."""

    model_config = ConfigDict(populate_by_name=True)

    is_instructional: bool = Field(alias="isInstructional")
    instructor_name: str | None = Field(default=None, alias="instructorName")
    technique_name: str | None = Field(default=None, alias="techniqueName")
    quality_score: float = Field(alias="qualityScore")
    technique_type: str | None = Field(default=None, alias="techniqueType")
    style_tag: StyleTag = Field(default=StyleTag.BOTH, alias="styleTag")
    reject: bool = False
    reject_reason: str | None = Field(default=None, alias="rejectReason")

    @field_validator("quality_score", mode="before")
    @classmethod
    def clamp_quality(cls, value: Any) -> float:
        """Coerce numeric strings and clamp the score to 0-10."""
        if isinstance(value, bool):
            raise ValueError("qualityScore must be a number")
        try:
            score = float(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"qualityScore is not a number: {value!r}") from e
        if not math.isfinite(score):
            raise ValueError("qualityScore must be finite")
        return min(10.0, max(0.0, score))


class Verdict(BaseModel):
    """Outcome of evaluating one candidate through the quality gate."""

    accept: bool
    instructor_name: str | None = None
    technique_name: str | None = None
    quality_score: float | None = None
    technique_type: str | None = None
    style_tag: StyleTag | None = None
    reject_reason: str | None = None
    reject_category: RejectCategory | None = None
    threshold: float | None = None

    @classmethod
    def rejected(
        cls, category: RejectCategory, reason: str, **fields: object
    ) -> "Verdict":
        return cls(accept=False, reject_category=category, reject_reason=reason, **fields)


class VideoRecord(BaseModel):
    """A single curated instructional video held by the Knowledge Store."""

    id: int | None = None
    youtube_id: str
    title: str
    instructor_name: str | None = None
    channel_name: str | None = None
    technique_name: str | None = None
    technique_type: str | None = None
    style_tag: StyleTag = StyleTag.BOTH
    duration_seconds: int | None = None
    quality_score: float | None = None
    status: VideoStatus = VideoStatus.ACTIVE
    created_at: datetime | None = None
    upload_date: datetime | None = None
    tags: list[str] = Field(default_factory=list)
    belt_levels: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    total_votes: int = 0
    helpful_ratio: float | None = None

    @model_validator(mode="after")
    def _active_requires_quality(self) -> "VideoRecord":
        if self.status == VideoStatus.ACTIVE and self.quality_score is None:
            raise ValueError("active videos must carry a quality score")
        return self


class UserProfile(BaseModel):
    """Read-only view of the fields ranking and pattern tracking need."""

    user_id: str
    belt_level: str | None = None
    body_type: str | None = None
    age_range: str | None = None
    training_style: str | None = None
    preferred_instructors: list[str] = Field(default_factory=list)
    preferred_language: str | None = None
    preferred_length_min: int | None = None  # minutes
    preferred_length_max: int | None = None  # minutes


class TechniqueMetaStatus(BaseModel):
    """Per-technique demand/supply snapshot, upserted by technique name."""

    technique_name: str
    user_request_score: float
    trend_score: float
    overall_meta_score: float
    meta_status: MetaStatus
    videos_in_library: int
    highest_quality_score: float | None = None
    coverage_adequate: bool
    needs_curation: bool
    curation_priority: int = Field(ge=0, le=10)
    suggested_searches: list[str] = Field(default_factory=list)
    analyzed_at: datetime | None = None


class CurationResult(BaseModel):
    """Structured summary of a curation run.

    Produced however the run terminated, so a partial run is always
    inspectable.
    """

    videos_analyzed: int = 0
    videos_added: int = 0
    videos_rejected: int = 0
    duplicates: int = 0
    searches_performed: int = 0
    targets_processed: int = 0
    quota_used: int = 0
    quota_exhausted: bool = False
    aborted_reason: str | None = None
    errors: list[str] = Field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None


class SweepResult(BaseModel):
    """Summary of a liveness sweep over active videos."""

    checked: int = 0
    alive: int = 0
    marked_unavailable: int = 0
    errors: list[str] = Field(default_factory=list)
