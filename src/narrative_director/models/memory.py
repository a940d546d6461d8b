"""Memory hierarchy records: raw events, episode summaries, retrieval hits."""

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .entities import utcnow


class EventType(str, Enum):
    QUEST_GENERATED = "quest_generated"
    QUEST_COMPLETED = "quest_completed"
    NPC_INTERACTION = "npc_interaction"
    MILESTONE = "milestone"
    WORLD_CHANGE = "world_change"
    NOTE = "note"


# Base importance used by retrieval scoring
EVENT_IMPORTANCE: dict[EventType, float] = {
    EventType.QUEST_COMPLETED: 0.8,
    EventType.MILESTONE: 1.0,
    EventType.NPC_INTERACTION: 0.6,
    EventType.WORLD_CHANGE: 0.7,
    EventType.QUEST_GENERATED: 0.5,
    EventType.NOTE: 0.3,
}


def new_id() -> str:
    return uuid.uuid4().hex


class NarrativeEvent(BaseModel):
    """One thing that happened. Never edited after append, only archived."""

    id: str = Field(default_factory=new_id)
    character_id: str
    type: EventType
    description: str
    participants: list[str] = Field(default_factory=list)
    payload: dict = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)
    archived: bool = False

    @property
    def importance(self) -> float:
        return EVENT_IMPORTANCE.get(self.type, 0.3)


class EpisodeSummary(BaseModel):
    """A compressed batch of archived events."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    character_id: str
    period_start: datetime
    period_end: datetime
    event_count: int
    key_events: list[str] = Field(default_factory=list)
    participants: list[str] = Field(default_factory=list)
    summary_text: str
    event_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


@dataclass(frozen=True)
class RetrievedItem:
    """A ranked memory hit."""

    source: str  # "event" or "episode"
    text: str
    timestamp: datetime
    score: float
    relevance: float
    recency: float
    importance: float
