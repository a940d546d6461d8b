"""Values passed into and out of an orchestration session."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .content import STATS, Quest, Outcome
from .validation import ValidationResult


@dataclass
class CharacterState:
    """The simulated character as the director sees it."""

    id: str
    name: str = ""
    character_class: str = ""
    level: int = 1
    stats: dict[str, int] = field(default_factory=dict)

    def weakest_stat(self) -> tuple[str, float] | None:
        """Lowest stat and its gap below the mean, or None without full stats."""
        if not all(s in self.stats for s in STATS):
            return None
        values = {s: self.stats[s] for s in STATS}
        mean = sum(values.values()) / len(values)
        lowest = min(values, key=values.get)
        return lowest, mean - values[lowest]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "character_class": self.character_class,
            "level": self.level,
            "stats": dict(self.stats),
        }


@dataclass
class ActivityCounters:
    """How busy the character's story currently is."""

    active_quests: int = 0
    unresolved_threads: int = 0
    hours_since_last_content: float | None = None


class Urgency(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


@dataclass
class NarrativeNeed:
    """Whether to generate, and what."""

    needs_content: bool
    reasoning: str
    theme: str | None = None
    urgency: Urgency = Urgency.NORMAL
    quest_type: str = "side"
    target_focus: str | None = None
    progression_stage: int = 1
    storylet_id: str | None = None


class OrchestrationAction(str, Enum):
    NONE = "none"
    QUEST_GENERATED = "quest_generated"
    OUTCOME_GENERATED = "outcome_generated"
    VALIDATION_FAILED = "validation_failed"
    ERROR = "error"


class DirectorState(str, Enum):
    IDLE = "idle"
    CONTEXT_GATHERING = "context_gathering"
    NEED_EVALUATION = "need_evaluation"
    GENERATING = "generating"
    VALIDATING = "validating"
    REVISING = "revising"
    APPLYING = "applying"


@dataclass
class OrchestrationResult:
    """Terminal outcome of one orchestration session."""

    action: OrchestrationAction
    reason: str = ""
    quest: Quest | None = None
    outcome: Outcome | None = None
    need: NarrativeNeed | None = None
    attempts: int = 0
    fallback: bool = False
    compliance_score: float | None = None
    issues: list[str] = field(default_factory=list)
    validations: list[ValidationResult] = field(default_factory=list)
    rejected_effects: list[str] = field(default_factory=list)
    latency_ms: float = 0.0
    rewards: dict[str, int] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.action in (
            OrchestrationAction.QUEST_GENERATED,
            OrchestrationAction.OUTCOME_GENERATED,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "reason": self.reason,
            "quest": self.quest.model_dump(mode="json") if self.quest else None,
            "outcome": self.outcome.model_dump(mode="json") if self.outcome else None,
            "attempts": self.attempts,
            "fallback": self.fallback,
            "compliance_score": self.compliance_score,
            "issues": self.issues,
            "rejected_effects": self.rejected_effects,
            "latency_ms": round(self.latency_ms, 1),
            "rewards": self.rewards,
        }
