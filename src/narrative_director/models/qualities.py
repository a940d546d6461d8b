"""Quality (narrative state variable) models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from .entities import utcnow

QualityValue = bool | int | str


class QualityType(str, Enum):
    BOOL = "bool"
    INT = "int"
    STRING = "string"

    @classmethod
    def of(cls, value: QualityValue) -> "QualityType":
        # bool before int: True is an int in Python
        if isinstance(value, bool):
            return cls.BOOL
        if isinstance(value, int):
            return cls.INT
        return cls.STRING


class Quality(BaseModel):
    """One named state variable for one character."""

    character_id: str
    name: str
    value: QualityValue
    type: QualityType = QualityType.STRING
    locked: bool = False
    updated_at: datetime = Field(default_factory=utcnow)

    def model_post_init(self, __context) -> None:
        self.type = QualityType.of(self.value)


# Story milestones, grouped by act
PROGRESSION_QUALITIES: dict[int, tuple[str, ...]] = {
    1: ("journey_begun", "first_challenge_overcome", "mentor_discovered"),
    2: ("inner_doubt_faced", "community_formed", "hidden_strength_revealed", "setback_endured"),
    3: ("breakthrough_achieved", "wisdom_integrated", "new_chapter_begun"),
}

MILESTONES: frozenset[str] = frozenset(q for act in PROGRESSION_QUALITIES.values() for q in act)

CORE_THEMES: tuple[str, ...] = (
    "self_discovery",
    "overcoming_adversity",
    "community_building",
    "personal_growth",
    "inner_strength",
)

QUESTS_COMPLETED = "quests_completed"
CURRENT_ACT = "current_act"
