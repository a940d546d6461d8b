"""Episode compression: folds old raw events into an episode summary."""

import asyncio
import logging

from ..exceptions import GenerationServiceError
from ..llm import GenerationRequest, GenerationService
from ..models.memory import EpisodeSummary, NarrativeEvent
from .store import InMemoryMemoryStore

logger = logging.getLogger(__name__)


class EpisodeCompressor:
    """Summarizes a batch of events, with the model if one is available."""

    SUMMARY_PROMPT = '''Summarize these story events as one short paragraph (under 80 words),
written in second person, past tense. Keep names of people and places.

EVENTS:
{events}

Summary:'''

    def __init__(
        self,
        service: GenerationService | None = None,
        temperature: float = 0.3,
        timeout: float = 30.0,
        max_key_events: int = 5,
    ):
        self.service = service
        self.temperature = temperature
        self.timeout = timeout
        self.max_key_events = max_key_events

    async def compress(self, character_id: str, events: list[NarrativeEvent]) -> EpisodeSummary:
        """Build an episode summary for a non-empty batch of events."""
        if not events:
            raise ValueError("Cannot compress an empty batch of events")

        ordered = sorted(events, key=lambda e: e.timestamp)
        participants: list[str] = []
        for event in ordered:
            for name in event.participants:
                if name not in participants:
                    participants.append(name)

        ranked = sorted(ordered, key=lambda e: e.importance, reverse=True)[: self.max_key_events]
        key_events = [e.description for e in sorted(ranked, key=lambda e: e.timestamp)]

        summary_text = await self._summarize(ordered) or self._digest(ordered, participants)

        return EpisodeSummary(
            character_id=character_id,
            period_start=ordered[0].timestamp,
            period_end=ordered[-1].timestamp,
            event_count=len(ordered),
            key_events=key_events,
            participants=participants,
            summary_text=summary_text,
            event_ids=[e.id for e in ordered],
        )

    async def _summarize(self, events: list[NarrativeEvent]) -> str:
        if self.service is None:
            return ""
        lines = "\n".join(f"- [{e.type.value}] {e.description}" for e in events)
        request = GenerationRequest(
            system="You condense a character's story history into brief episode summaries.",
            prompt=self.SUMMARY_PROMPT.format(events=lines),
            temperature=self.temperature,
            max_tokens=300,
            purpose="summarize",
        )
        try:
            text = await asyncio.wait_for(self.service.complete(request), timeout=self.timeout)
        except (GenerationServiceError, asyncio.TimeoutError) as e:
            logger.warning("Episode summary generation failed, using digest: %s", e)
            return ""
        return text.strip()

    def _digest(self, events: list[NarrativeEvent], participants: list[str]) -> str:
        """Deterministic summary used when no model is available."""
        xp: dict[str, int] = {}
        for event in events:
            for stat, amount in event.payload.get("rewards", {}).items():
                xp[stat] = xp.get(stat, 0) + amount

        counts: dict[str, int] = {}
        for event in events:
            counts[event.type.value] = counts.get(event.type.value, 0) + 1

        parts = [
            f"{len(events)} events: "
            + ", ".join(f"{n} {t.replace('_', ' ')}" for t, n in sorted(counts.items())) + "."
        ]
        if participants:
            parts.append("Met " + ", ".join(participants[:6]) + ".")
        if xp:
            parts.append("Growth: " + ", ".join(f"{s} +{n}" for s, n in sorted(xp.items())) + ".")
        parts.append("Highlights: " + "; ".join(e.description for e in events[-3:]))
        return " ".join(parts)

    async def maybe_compress(
        self,
        store: InMemoryMemoryStore,
        character_id: str,
        trigger: int = 20,
        batch: int = 10,
    ) -> EpisodeSummary | None:
        """Compress the oldest active events once more than ``trigger`` are active."""
        if await store.active_event_count(character_id) <= trigger:
            return None
        events = await store.oldest_active_events(character_id, batch)
        if not events:
            return None
        summary = await self.compress(character_id, events)
        await store.store_episode(summary)
        archived = await store.archive(character_id, summary.event_ids)
        logger.info("Compressed %d events into episode %s for %s", archived, summary.id, character_id)
        return summary
