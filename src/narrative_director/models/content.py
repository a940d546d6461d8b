"""Generated content: candidates and the typed shapes they must satisfy."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field, field_validator

from .entities import utcnow

if TYPE_CHECKING:
    from .validation import ValidationResult


class Stat(str, Enum):
    STR = "STR"
    DEX = "DEX"
    CON = "CON"
    INT = "INT"
    WIS = "WIS"
    CHA = "CHA"


STATS: tuple[str, ...] = tuple(s.value for s in Stat)


def word_count(text: str) -> int:
    return len(text.split())


class Objective(BaseModel):
    description: str = Field(min_length=1)
    goal_mapping: str = Field(min_length=1)
    stat_reward: Stat
    xp_reward: int = Field(ge=1)
    location: str | None = None


class Quest(BaseModel):
    """An accepted quest."""

    title: str = Field(min_length=1, max_length=100)
    description: str
    objectives: list[Objective] = Field(min_length=1, max_length=5)
    npc_involved: str | None = None
    theme: str = ""
    quest_type: Literal["main", "side", "corrective"] = "side"
    difficulty: Literal["easy", "medium", "hard"] = "medium"
    estimated_duration: str = Field(min_length=1)
    storylet_id: str | None = None
    effects: list[dict] = Field(default_factory=list)

    @field_validator("description")
    @classmethod
    def description_length(cls, v: str) -> str:
        words = word_count(v)
        if words < 10 or words > 150:
            raise ValueError(f"description must be 10-150 words (got {words})")
        return v

    def total_xp(self) -> dict[str, int]:
        """XP per stat across all objectives."""
        rewards: dict[str, int] = {}
        for objective in self.objectives:
            stat = objective.stat_reward.value
            rewards[stat] = rewards.get(stat, 0) + objective.xp_reward
        return rewards


class NpcInteraction(BaseModel):
    npc_name: str = Field(min_length=1)
    sentiment: Literal["positive", "negative", "neutral"] = "neutral"
    context: str = ""


class WorldStateChange(BaseModel):
    key: str = Field(min_length=1)
    description: str = ""


class Outcome(BaseModel):
    """An accepted quest outcome."""

    narrative_text: str
    npc_interactions: list[NpcInteraction] = Field(default_factory=list)
    world_state_changes: list[WorldStateChange] = Field(default_factory=list)
    future_plot_hooks: list[str] = Field(default_factory=list)
    effects: list[dict] = Field(default_factory=list)

    @field_validator("narrative_text")
    @classmethod
    def narrative_length(cls, v: str) -> str:
        words = word_count(v)
        if words < 30 or words > 300:
            raise ValueError(f"narrative_text must be 30-300 words (got {words})")
        return v


class ContentKind(str, Enum):
    QUEST = "quest"
    OUTCOME = "outcome"

    @property
    def model(self) -> type[BaseModel]:
        return Quest if self is ContentKind.QUEST else Outcome


@dataclass
class Candidate:
    """A piece of generated content that has not yet been accepted."""

    kind: ContentKind
    content: dict
    revision: int = 0
    fallback: bool = False
    feedback: "ValidationResult | None" = None
    temperature: float = 0.8
    generated_at: datetime = field(default_factory=utcnow)

    @property
    def effects(self) -> list[dict]:
        return [e for e in self.list_field("effects") if isinstance(e, dict)]

    def list_field(self, key: str) -> list:
        """The list stored under ``key``, or an empty list for any other value."""
        value = self.content.get(key)
        return value if isinstance(value, list) else []

    def text(self) -> str:
        """All prose in the candidate, for judges and similarity checks.

        Fields of the wrong shape are skipped; the generation gate reports them.
        """
        if self.kind is ContentKind.OUTCOME:
            parts = [str(self.content.get("narrative_text", ""))]
            parts += [str(h) for h in self.list_field("future_plot_hooks")]
            for interaction in self.list_field("npc_interactions"):
                if isinstance(interaction, dict):
                    parts.append(str(interaction.get("context", "")))
        else:
            parts = [str(self.content.get("title", "")), str(self.content.get("description", ""))]
            for objective in self.list_field("objectives"):
                if isinstance(objective, dict):
                    parts.append(str(objective.get("description", "")))
        return "\n".join(p for p in parts if p)

    def as_quest(self) -> Quest:
        return Quest.model_validate(self.content)

    def as_outcome(self) -> Outcome:
        return Outcome.model_validate(self.content)
