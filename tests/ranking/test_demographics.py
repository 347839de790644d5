"""Unit tests for demographic buckets."""

import pytest

from src.curation.schemas import UserProfile
from src.ranking.demographics import (
    AgeRange,
    BeltLevel,
    BodyType,
    DemographicKey,
    TrainingStyle,
)


@pytest.mark.unit
class TestDimensions:
    """Test parsing of raw profile values."""

    def test_parse_known_values(self) -> None:
        """Test values are normalized before lookup."""
        assert BeltLevel.parse("Blue") == BeltLevel.BLUE
        assert AgeRange.parse("26-35") == AgeRange.FROM_26
        assert TrainingStyle.parse("No Gi") == TrainingStyle.NO_GI
        assert TrainingStyle.parse("no_gi") == TrainingStyle.NO_GI

    def test_parse_aliases(self) -> None:
        """Test legacy spellings map onto the closed set."""
        assert TrainingStyle.parse("nogi") == TrainingStyle.NO_GI
        assert BodyType.parse("short_stocky") == BodyType.STOCKY
        assert BodyType.parse("thin") == BodyType.LEAN

    def test_missing_or_unknown_is_unspecified(self) -> None:
        """Test absent and unrecognized values become UNSPECIFIED."""
        assert BeltLevel.parse(None) == BeltLevel.UNSPECIFIED
        assert BeltLevel.parse("coral") == BeltLevel.UNSPECIFIED
        assert BodyType.parse("") == BodyType.UNSPECIFIED


@pytest.mark.unit
class TestDemographicKey:
    """Test suite for DemographicKey class."""

    def test_from_profile(self) -> None:
        """Test a profile maps onto a bucket with unspecified gaps."""
        profile = UserProfile(user_id="u1", belt_level="blue", training_style="gi")

        key = DemographicKey.from_profile(profile)

        assert key.belt_level == BeltLevel.BLUE
        assert key.body_type == BodyType.UNSPECIFIED
        assert key.training_style == TrainingStyle.GI
        assert not key.is_universal

    def test_missing_profile_is_universal(self) -> None:
        """Test no profile yields the all-unspecified bucket."""
        assert DemographicKey.from_profile(None).is_universal

    def test_unspecified_is_a_distinct_bucket(self) -> None:
        """Test unspecified body type never equals a concrete body type."""
        blue = DemographicKey(belt_level=BeltLevel.BLUE)
        blue_lean = DemographicKey(belt_level=BeltLevel.BLUE, body_type=BodyType.LEAN)

        assert blue != blue_lean
        assert len({blue, blue_lean, DemographicKey(belt_level=BeltLevel.BLUE)}) == 2

    def test_as_row(self) -> None:
        """Test the row form stores every column explicitly."""
        key = DemographicKey(belt_level=BeltLevel.PURPLE, age_range=AgeRange.OVER_55)

        assert key.as_row() == {
            "belt_level": "purple",
            "body_type": "unspecified",
            "age_range": "56+",
            "training_style": "unspecified",
        }
