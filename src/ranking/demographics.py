"""Demographic bucket types.

Every dimension is a closed enum with an explicit UNSPECIFIED member, so a
bucket for "unspecified body type" is a concrete stored value and never
collides with a query for "any body type".
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict

from src.curation.schemas import UserProfile


class _Dimension(str, Enum):
    @classmethod
    def parse(cls, value: str | None):
        """Map a raw profile value onto the enum, UNSPECIFIED when absent or unknown."""
        if value is None:
            return cls("unspecified")
        normalized = value.strip().lower().replace("_", "-").replace(" ", "-")
        aliases = getattr(cls, "_aliases", lambda: {})()
        normalized = aliases.get(normalized, normalized)
        try:
            return cls(normalized)
        except ValueError:
            return cls("unspecified")


class BeltLevel(_Dimension):
    WHITE = "white"
    BLUE = "blue"
    PURPLE = "purple"
    BROWN = "brown"
    BLACK = "black"
    UNSPECIFIED = "unspecified"


class BodyType(_Dimension):
    LEAN = "lean"
    AVERAGE = "average"
    ATHLETIC = "athletic"
    STOCKY = "stocky"
    HEAVY = "heavy"
    TALL = "tall"
    UNSPECIFIED = "unspecified"

    @staticmethod
    def _aliases() -> dict[str, str]:
        return {"short-stocky": "stocky", "short-and-stocky": "stocky", "thin": "lean"}


class AgeRange(_Dimension):
    UNDER_26 = "18-25"
    FROM_26 = "26-35"
    FROM_36 = "36-45"
    FROM_46 = "46-55"
    OVER_55 = "56+"
    UNSPECIFIED = "unspecified"


class TrainingStyle(_Dimension):
    GI = "gi"
    NO_GI = "no-gi"
    BOTH = "both"
    UNSPECIFIED = "unspecified"

    @staticmethod
    def _aliases() -> dict[str, str]:
        return {"nogi": "no-gi"}


class DemographicKey(BaseModel):
    """Hashable (belt, body type, age range, style) bucket identity."""

    model_config = ConfigDict(frozen=True)

    belt_level: BeltLevel = BeltLevel.UNSPECIFIED
    body_type: BodyType = BodyType.UNSPECIFIED
    age_range: AgeRange = AgeRange.UNSPECIFIED
    training_style: TrainingStyle = TrainingStyle.UNSPECIFIED

    @classmethod
    def from_profile(cls, profile: UserProfile | None) -> "DemographicKey":
        if profile is None:
            return cls.universal()
        return cls(
            belt_level=BeltLevel.parse(profile.belt_level),
            body_type=BodyType.parse(profile.body_type),
            age_range=AgeRange.parse(profile.age_range),
            training_style=TrainingStyle.parse(profile.training_style),
        )

    @classmethod
    def universal(cls) -> "DemographicKey":
        return cls()

    @property
    def is_universal(self) -> bool:
        return self == DemographicKey.universal()

    def as_row(self) -> dict[str, str]:
        """Column values used for storage and equality filters."""
        return {
            "belt_level": self.belt_level.value,
            "body_type": self.body_type.value,
            "age_range": self.age_range.value,
            "training_style": self.training_style.value,
        }
