"""Unit tests for curation configuration."""

import pytest

from src.curation.config import DEFAULT_TRUSTED_INSTRUCTORS, CurationConfig, get_config


@pytest.mark.unit
class TestCurationConfig:
    """Test suite for CurationConfig class."""

    def test_config_with_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test config creation with default values."""
        for name in [
            "YOUTUBE_DAILY_QUOTA",
            "YOUTUBE_SEARCH_COST",
            "CURATION_MIN_DURATION",
            "CURATION_ACCEPTS_PER_TARGET",
            "GAP_DEMAND_WEIGHT",
            "GAP_TREND_WEIGHT",
            "TRUSTED_INSTRUCTORS",
            "CURATION_FETCH_TRANSCRIPTS",
            "YOUTUBE_DETAIL_COST",
            "YOUTUBE_CHANNEL_COST",
            "TRUSTED_QUALITY_FLOOR",
            "DEFAULT_QUALITY_FLOOR",
            "GAP_TARGET_VIDEOS",
        ]:
            monkeypatch.delenv(name, raising=False)

        config = CurationConfig()

        assert config.daily_quota_budget == 10000
        assert config.search_cost == 100
        assert config.detail_cost == 1
        assert config.channel_cost == 1
        assert config.min_duration_seconds == 120
        assert config.trusted_quality_floor == 7.0
        assert config.default_quality_floor == 7.5
        assert config.accepts_per_target == 2
        assert config.demand_weight == 0.6
        assert config.trend_weight == 0.4
        assert config.target_videos_per_technique == 100
        assert config.trusted_instructors == DEFAULT_TRUSTED_INSTRUCTORS
        assert config.fetch_transcripts is False

    def test_config_with_explicit_values(self) -> None:
        """Test config creation with explicit parameter values."""
        config = CurationConfig(
            youtube_api_key="yt_key",
            daily_quota_budget=500,
            accepts_per_target=5,
            demand_weight=0.5,
            trend_weight=0.5,
            trusted_instructors=["Lachlan Giles"],
        )

        assert config.youtube_api_key == "yt_key"
        assert config.daily_quota_budget == 500
        assert config.accepts_per_target == 5
        assert config.demand_weight == 0.5
        assert config.trusted_instructors == ["Lachlan Giles"]

    def test_config_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test environment variables override defaults."""
        monkeypatch.setenv("YOUTUBE_DAILY_QUOTA", "2500")
        monkeypatch.setenv("TRUSTED_INSTRUCTORS", "John Danaher, Craig Jones ,")
        monkeypatch.setenv("CURATION_FETCH_TRANSCRIPTS", "true")

        config = CurationConfig()

        assert config.daily_quota_budget == 2500
        assert config.trusted_instructors == ["John Danaher", "Craig Jones"]
        assert config.fetch_transcripts is True

    def test_get_config_returns_fresh_instance(self) -> None:
        """Test get_config returns a validated config."""
        first = get_config()
        second = get_config()

        assert isinstance(first, CurationConfig)
        assert first is not second
