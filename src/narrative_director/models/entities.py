"""Entity and relationship models for the per-character knowledge graph."""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntityType(str, Enum):
    """Kinds of things a character's story can mention."""

    PLAYER = "player"
    NPC = "npc"
    LOCATION = "location"
    QUEST = "quest"
    ITEM = "item"
    CONCEPT = "concept"
    WORLD_STATE = "world_state"


class RelationshipType(str, Enum):
    """Types of directed relationships between entities."""

    KNOWS = "knows"
    INVOLVES = "involves"
    LOCATED_AT = "located_at"
    TAKES_PLACE_AT = "takes_place_at"
    OWNS = "owns"
    ALLIED_WITH = "allied_with"
    RELATED_TO = "related_to"


def normalize_name(name: str) -> str:
    """Canonical form used for entity identity."""
    return re.sub(r"\s+", " ", name).strip().lower()


def entity_id(entity_type: EntityType | str, name: str) -> str:
    """Deterministic id for an entity, so re-mentions resolve to one record."""
    type_value = entity_type.value if isinstance(entity_type, EntityType) else entity_type
    return f"{type_value}:{normalize_name(name).replace(' ', '_')}"


class Entity(BaseModel):
    """A named thing in one character's story."""

    id: str = ""
    character_id: str
    type: EntityType
    name: str
    attributes: dict = Field(default_factory=dict)
    first_mentioned: datetime = Field(default_factory=utcnow)
    last_updated: datetime = Field(default_factory=utcnow)
    importance: float = Field(default=0.5, ge=0.0, le=1.0)

    def model_post_init(self, __context) -> None:
        if not self.id:
            self.id = entity_id(self.type, self.name)


class Relationship(BaseModel):
    """A directed, typed edge between two entities of the same character."""

    character_id: str
    source_id: str
    target_id: str
    type: RelationshipType
    strength: float = Field(default=0.5, ge=0.0, le=1.0)
    context: str = ""
    established_at: datetime = Field(default_factory=utcnow)
    last_interaction: datetime = Field(default_factory=utcnow)

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.source_id, self.target_id, self.type.value)


@dataclass
class EntityUpsert:
    """A pending entity write produced from accepted content."""

    type: EntityType
    name: str
    attributes: dict = field(default_factory=dict)
    importance: float = 0.5


@dataclass
class RelationshipUpsert:
    """A pending relationship write.

    New relationships start at ``initial_strength``; ``delta`` is then added
    and the result clamped to [0, 1].
    """

    source: tuple[EntityType, str]
    target: tuple[EntityType, str]
    type: RelationshipType
    delta: float = 0.0
    initial_strength: float = 0.5
    context: str = ""


@dataclass
class RelationshipQuery:
    """Filters for a temporal relationship query. Unset filters match everything."""

    entity_name: str | None = None
    relationship_type: RelationshipType | None = None
    before: datetime | None = None


@dataclass
class EntityGraph:
    """Read-only snapshot of a character's entities and relationships."""

    entities: tuple[Entity, ...] = ()
    relationships: tuple[Relationship, ...] = ()

    def by_type(self) -> dict[str, list[Entity]]:
        grouped: dict[str, list[Entity]] = {}
        for entity in self.entities:
            grouped.setdefault(entity.type.value, []).append(entity)
        return grouped

    def names(self, entity_type: EntityType | None = None) -> set[str]:
        return {
            e.name for e in self.entities if entity_type is None or e.type == entity_type
        }

    def find(self, name: str, entity_type: EntityType | None = None) -> Entity | None:
        target = normalize_name(name)
        for entity in self.entities:
            if normalize_name(entity.name) == target and (entity_type is None or entity.type == entity_type):
                return entity
        return None

    def summary(self) -> str:
        """One-line-per-type digest for prompts."""
        if not self.entities:
            return "No known entities yet."
        lines = []
        for type_name, entities in sorted(self.by_type().items()):
            ranked = sorted(entities, key=lambda e: e.importance, reverse=True)
            lines.append(f"{type_name}: " + ", ".join(e.name for e in ranked[:8]))
        lines.append(f"{len(self.relationships)} known relationships")
        return "\n".join(lines)
