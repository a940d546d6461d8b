"""Data models for qualities, entities, memory, content and validation."""

from narrative_director.models.content import Candidate, ContentKind, Objective, Outcome, Quest, Stat
from narrative_director.models.entities import (
    Entity,
    EntityGraph,
    EntityType,
    Relationship,
    RelationshipQuery,
    RelationshipType,
)
from narrative_director.models.memory import EpisodeSummary, EventType, NarrativeEvent, RetrievedItem
from narrative_director.models.orchestration import (
    ActivityCounters,
    CharacterState,
    DirectorState,
    NarrativeNeed,
    OrchestrationAction,
    OrchestrationResult,
    Urgency,
)
from narrative_director.models.qualities import Quality, QualityType
from narrative_director.models.validation import Gate, Severity, ValidationResult, Violation

__all__ = [
    "ActivityCounters",
    "Candidate",
    "CharacterState",
    "ContentKind",
    "DirectorState",
    "Entity",
    "EntityGraph",
    "EntityType",
    "EpisodeSummary",
    "EventType",
    "Gate",
    "NarrativeEvent",
    "NarrativeNeed",
    "Objective",
    "OrchestrationAction",
    "OrchestrationResult",
    "Outcome",
    "Quality",
    "QualityType",
    "Quest",
    "Relationship",
    "RelationshipQuery",
    "RelationshipType",
    "RetrievedItem",
    "Severity",
    "Stat",
    "Urgency",
    "ValidationResult",
    "Violation",
]
