"""Configuration module for the video curation and ranking pipeline."""

import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

# Load environment variables from .env file
load_dotenv()

DEFAULT_TRUSTED_INSTRUCTORS = [
    "John Danaher",
    "Gordon Ryan",
    "Lachlan Giles",
    "Craig Jones",
    "Mikey Musumeci",
    "Bernardo Faria",
    "Andre Galvao",
    "Marcelo Garcia",
    "Roger Gracie",
    "Keenan Cornelius",
    "Gui Mendes",
    "Rafa Mendes",
    "Ffion Davies",
    "Giancarlo Bodoni",
    "Dante Leon",
    "Nicholas Meregali",
    "Demian Maia",
    "Garry Tonon",
    "Lucas Lepri",
    "Priit Mihkelson",
    "Chris Paines",
    "Jon Thomas",
    "Ryan Hall",
    "Tom DeBlass",
    "Stephan Kesting",
    "Eddie Bravo",
    "Firas Zahabi",
    "Jean Jacques Machado",
    "Nicky Ryan",
    "Robert Drysdale",
]


def _csv_env(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if not raw:
        return list(default)
    return [item.strip() for item in raw.split(",") if item.strip()]


class CurationConfig(BaseModel):
    """Configuration for curation, gap analysis and ranking.

    Covers the external video-search provider and its quota, the quality gate
    thresholds, the LLM content classifier, the gap analyzer blend and the
    Knowledge Store connection. All settings can be overridden via environment
    variables or explicit keyword arguments.
    """

    # YouTube Data API settings
    youtube_api_key: str = Field(
        default_factory=lambda: os.getenv("YOUTUBE_API_KEY", "")
    )
    youtube_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "YOUTUBE_BASE_URL", "https://www.googleapis.com/youtube/v3"
        )
    )
    results_per_search: int = Field(
        default_factory=lambda: int(os.getenv("YOUTUBE_RESULTS_PER_SEARCH", "10"))
    )

    # Quota settings (units per provider day)
    daily_quota_budget: int = Field(
        default_factory=lambda: int(os.getenv("YOUTUBE_DAILY_QUOTA", "10000"))
    )
    search_cost: int = Field(
        default_factory=lambda: int(os.getenv("YOUTUBE_SEARCH_COST", "100"))
    )
    detail_cost: int = Field(
        default_factory=lambda: int(os.getenv("YOUTUBE_DETAIL_COST", "1"))
    )
    channel_cost: int = Field(
        default_factory=lambda: int(os.getenv("YOUTUBE_CHANNEL_COST", "1"))
    )
    quota_reset_timezone: str = Field(
        default_factory=lambda: os.getenv("YOUTUBE_QUOTA_RESET_TZ", "America/Los_Angeles")
    )
    quota_reset_hour: int = Field(
        default_factory=lambda: int(os.getenv("YOUTUBE_QUOTA_RESET_HOUR", "0"))
    )

    # Candidate filtering
    min_duration_seconds: int = Field(
        default_factory=lambda: int(os.getenv("CURATION_MIN_DURATION", "120"))
    )
    max_duration_seconds: int = Field(
        default_factory=lambda: int(os.getenv("CURATION_MAX_DURATION", "3600"))
    )

    # Quality gate settings
    trusted_quality_floor: float = Field(
        default_factory=lambda: float(os.getenv("TRUSTED_QUALITY_FLOOR", "7.0"))
    )
    default_quality_floor: float = Field(
        default_factory=lambda: float(os.getenv("DEFAULT_QUALITY_FLOOR", "7.5"))
    )
    trusted_instructors: list[str] = Field(
        default_factory=lambda: _csv_env("TRUSTED_INSTRUCTORS", DEFAULT_TRUSTED_INSTRUCTORS)
    )
    min_token_length: int = Field(
        default_factory=lambda: int(os.getenv("LEXICAL_MIN_TOKEN_LENGTH", "3"))
    )

    # Run shape
    accepts_per_target: int = Field(
        default_factory=lambda: int(os.getenv("CURATION_ACCEPTS_PER_TARGET", "2"))
    )
    batch_size: int = Field(
        default_factory=lambda: int(os.getenv("CURATION_BATCH_SIZE", "20"))
    )
    batch_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("CURATION_BATCH_DELAY", "1.0"))
    )
    max_targets_per_run: int = Field(
        default_factory=lambda: int(os.getenv("CURATION_MAX_TARGETS", "20"))
    )
    max_errors_in_summary: int = Field(
        default_factory=lambda: int(os.getenv("CURATION_MAX_ERRORS", "20"))
    )

    # Network behaviour
    http_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("HTTP_TIMEOUT_SECONDS", "15.0"))
    )
    liveness_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("LIVENESS_TIMEOUT_SECONDS", "8.0"))
    )
    max_retries: int = Field(
        default_factory=lambda: int(os.getenv("EXTERNAL_MAX_RETRIES", "2"))
    )
    retry_backoff_seconds: float = Field(
        default_factory=lambda: float(os.getenv("EXTERNAL_RETRY_BACKOFF", "1.0"))
    )

    # Content classifier (OpenAI-compatible)
    classifier_base_url: str = Field(
        default_factory=lambda: os.getenv(
            "CLASSIFIER_BASE_URL", "https://api.openai.com/v1"
        )
    )
    classifier_api_key: str = Field(
        default_factory=lambda: os.getenv("CLASSIFIER_API_KEY", "")
    )
    classifier_model: str = Field(
        default_factory=lambda: os.getenv("CLASSIFIER_MODEL", "gpt-4o-mini")
    )
    classifier_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("CLASSIFIER_TIMEOUT_SECONDS", "30.0"))
    )

    # Transcript lookup (optional, feeds the classifier)
    fetch_transcripts: bool = Field(
        default_factory=lambda: os.getenv("CURATION_FETCH_TRANSCRIPTS", "false").lower()
        in ("1", "true", "yes")
    )
    supadata_api_key: str = Field(
        default_factory=lambda: os.getenv("SUPADATA_API_KEY", "")
    )
    transcript_max_chars: int = Field(
        default_factory=lambda: int(os.getenv("TRANSCRIPT_MAX_CHARS", "4000"))
    )

    # Gap analysis
    demand_weight: float = Field(
        default_factory=lambda: float(os.getenv("GAP_DEMAND_WEIGHT", "0.6"))
    )
    trend_weight: float = Field(
        default_factory=lambda: float(os.getenv("GAP_TREND_WEIGHT", "0.4"))
    )
    target_videos_per_technique: int = Field(
        default_factory=lambda: int(os.getenv("GAP_TARGET_VIDEOS", "100"))
    )
    coverage_quality_floor: float = Field(
        default_factory=lambda: float(os.getenv("GAP_COVERAGE_QUALITY_FLOOR", "7.5"))
    )
    trend_snapshot_window: int = Field(
        default_factory=lambda: int(os.getenv("GAP_TREND_WINDOW", "5"))
    )

    # Scheduled jobs (cron expressions in scheduler_timezone; use day names,
    # APScheduler counts day_of_week from Monday)
    scheduler_enabled: bool = Field(
        default_factory=lambda: os.getenv("SCHEDULER_ENABLED", "true").lower()
        in ("1", "true", "yes")
    )
    scheduler_timezone: str = Field(
        default_factory=lambda: os.getenv("SCHEDULER_TIMEZONE", "America/New_York")
    )
    curation_cron: str = Field(
        default_factory=lambda: os.getenv("CURATION_CRON", "0 3 * * *")
    )
    gap_analysis_cron: str = Field(
        default_factory=lambda: os.getenv("GAP_ANALYSIS_CRON", "0 10 * * *")
    )
    liveness_cron: str = Field(
        default_factory=lambda: os.getenv("LIVENESS_CRON", "0 4 * * sun")
    )
    scheduled_budget_units: int | None = Field(
        default_factory=lambda: int(os.environ["CURATION_SCHEDULED_BUDGET"])
        if os.getenv("CURATION_SCHEDULED_BUDGET")
        else None
    )

    # Database settings
    supabase_url: str = Field(default_factory=lambda: os.getenv("SUPABASE_URL", ""))
    supabase_key: str = Field(
        default_factory=lambda: os.getenv("SUPABASE_SERVICE_KEY", "")
    )


def get_config() -> CurationConfig:
    """Get validated configuration instance.

    Returns:
        CurationConfig: Validated configuration object with all settings.

    Raises:
        ValidationError: If environment variables hold invalid values.
    """
    return CurationConfig()
