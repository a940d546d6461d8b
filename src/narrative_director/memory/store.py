"""Memory hierarchy store: raw events, episode summaries, and a rolling narrative summary."""

import logging
from collections.abc import Iterable
from typing import Protocol

from ..models.memory import EpisodeSummary, EventType, NarrativeEvent

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "The adventure is just beginning..."


class MemoryStore(Protocol):
    async def append_event(self, event: NarrativeEvent) -> NarrativeEvent: ...

    async def get_working_memory(self, character_id: str, limit: int = 10) -> list[NarrativeEvent]: ...

    async def get_episode_summaries(self, character_id: str, limit: int = 5) -> list[EpisodeSummary]: ...

    async def get_narrative_summary(self, character_id: str) -> str: ...

    async def update_narrative_summary(self, character_id: str, new_content: str, word_limit: int = 500) -> str: ...


def trim_to_words(text: str, limit: int) -> str:
    """Keep the last ``limit`` words of text."""
    words = text.split()
    if len(words) <= limit:
        return " ".join(words)
    return " ".join(words[-limit:])


class InMemoryMemoryStore:
    """Events are append-only; archiving only flips the ``archived`` flag."""

    def __init__(self):
        self._events: dict[str, list[NarrativeEvent]] = {}
        self._episodes: dict[str, list[EpisodeSummary]] = {}
        self._summaries: dict[str, str] = {}

    async def append_event(self, event: NarrativeEvent) -> NarrativeEvent:
        self._events.setdefault(event.character_id, []).append(event)
        return event

    async def get_working_memory(self, character_id: str, limit: int = 10) -> list[NarrativeEvent]:
        """Most recent active events, oldest first."""
        active = [e for e in self._events.get(character_id, []) if not e.archived]
        active.sort(key=lambda e: e.timestamp)
        return active[-limit:] if limit > 0 else []

    async def get_episode_summaries(self, character_id: str, limit: int = 5) -> list[EpisodeSummary]:
        episodes = sorted(self._episodes.get(character_id, []), key=lambda s: s.period_end)
        return episodes[-limit:] if limit > 0 else []

    async def get_narrative_summary(self, character_id: str) -> str:
        return self._summaries.get(character_id, DEFAULT_SUMMARY)

    async def update_narrative_summary(self, character_id: str, new_content: str, word_limit: int = 500) -> str:
        current = self._summaries.get(character_id, "")
        combined = f"{current} {new_content}".strip()
        self._summaries[character_id] = trim_to_words(combined, word_limit)
        return self._summaries[character_id]

    async def all_events(self, character_id: str, include_archived: bool = True) -> list[NarrativeEvent]:
        events = self._events.get(character_id, [])
        if not include_archived:
            events = [e for e in events if not e.archived]
        return sorted(events, key=lambda e: e.timestamp)

    async def find_events(
        self,
        character_id: str,
        event_type: EventType | None = None,
        text: str | None = None,
    ) -> list[NarrativeEvent]:
        """Events matching a type and/or a case-insensitive substring, oldest first."""
        needle = text.lower() if text else None
        return [
            e for e in await self.all_events(character_id)
            if (event_type is None or e.type == event_type)
            and (needle is None or needle in e.description.lower())
        ]

    async def active_event_count(self, character_id: str) -> int:
        return sum(1 for e in self._events.get(character_id, []) if not e.archived)

    async def oldest_active_events(self, character_id: str, count: int) -> list[NarrativeEvent]:
        active = await self.all_events(character_id, include_archived=False)
        return active[:count]

    async def store_episode(self, summary: EpisodeSummary) -> EpisodeSummary:
        self._episodes.setdefault(summary.character_id, []).append(summary)
        return summary

    async def archive(self, character_id: str, event_ids: Iterable[str]) -> int:
        ids = set(event_ids)
        archived = 0
        for i, event in enumerate(self._events.get(character_id, [])):
            if event.id in ids and not event.archived:
                self._events[character_id][i] = event.model_copy(update={"archived": True})
                archived += 1
        return archived

    def export_state(self) -> dict:
        return {
            "events": {
                cid: [e.model_dump(mode="json") for e in events] for cid, events in self._events.items()
            },
            "episodes": {
                cid: [s.model_dump(mode="json") for s in eps] for cid, eps in self._episodes.items()
            },
            "summaries": dict(self._summaries),
        }

    def import_state(self, state: dict) -> None:
        for cid, events in state.get("events", {}).items():
            self._events.setdefault(cid, []).extend(NarrativeEvent.model_validate(e) for e in events)
        for cid, episodes in state.get("episodes", {}).items():
            self._episodes.setdefault(cid, []).extend(EpisodeSummary.model_validate(s) for s in episodes)
        self._summaries.update(state.get("summaries", {}))
