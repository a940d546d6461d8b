"""Context assembly: gathers everything generation needs, in parallel."""

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, TypeVar

from .graph.store import KnowledgeGraphStore
from .memory.store import DEFAULT_SUMMARY, MemoryStore
from .models.entities import EntityGraph
from .models.memory import EpisodeSummary, NarrativeEvent, RetrievedItem
from .models.qualities import QualityValue
from .storylets.progression import progression_stage
from .storylets.qualities import QualityStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class GenerationContext:
    """Immutable snapshot of a character's story at one moment."""

    character_id: str
    working_memory: tuple[NarrativeEvent, ...] = ()
    episodes: tuple[EpisodeSummary, ...] = ()
    narrative_summary: str = DEFAULT_SUMMARY
    entity_graph: EntityGraph = field(default_factory=EntityGraph)
    qualities: Mapping[str, QualityValue] = field(default_factory=lambda: MappingProxyType({}))
    extra: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    retrieved: tuple[RetrievedItem, ...] = ()
    degraded: tuple[str, ...] = ()

    @property
    def progression_stage(self) -> int:
        return progression_stage(self.qualities)

    def with_retrieval(self, items: list[RetrievedItem]) -> "GenerationContext":
        return dataclasses.replace(self, retrieved=tuple(items))

    def recent_events_text(self, limit: int = 5) -> str:
        events = self.working_memory[-limit:]
        if not events:
            return "No recent events."
        return "\n".join(f"- {e.description}" for e in events)

    def to_prompt_dict(self) -> dict[str, Any]:
        """Compact view handed to the generation service."""
        return {
            "narrative_summary": self.narrative_summary,
            "recent_events": [e.description for e in self.working_memory],
            "episodes": [s.summary_text for s in self.episodes],
            "known_world": self.entity_graph.summary(),
            "qualities": dict(self.qualities),
            "progression_stage": self.progression_stage,
            "relevant_memories": [r.text for r in self.retrieved],
            **dict(self.extra),
        }


class ContextAssembler:
    """Runs the five context reads concurrently; a failed read degrades to empty."""

    def __init__(
        self,
        memory: MemoryStore,
        graph: KnowledgeGraphStore,
        qualities: QualityStore,
        working_memory_limit: int = 10,
        episode_limit: int = 5,
    ):
        self.memory = memory
        self.graph = graph
        self.qualities = qualities
        self.working_memory_limit = working_memory_limit
        self.episode_limit = episode_limit

    async def assemble(self, character_id: str, extra: Mapping[str, Any] | None = None) -> GenerationContext:
        degraded: list[str] = []

        async def read(label: str, call: Awaitable[T], empty: T) -> T:
            try:
                return await call
            except Exception as e:
                # Any backend failure here degrades the context rather than the session
                logger.warning("Context read %s failed for %s: %s", label, character_id, e)
                degraded.append(label)
                return empty

        working, episodes, summary, graph, qualities = await asyncio.gather(
            read("working_memory", self.memory.get_working_memory(character_id, self.working_memory_limit), []),
            read("episodes", self.memory.get_episode_summaries(character_id, self.episode_limit), []),
            read("narrative_summary", self.memory.get_narrative_summary(character_id), DEFAULT_SUMMARY),
            read("entity_graph", self.graph.get_entity_graph(character_id), EntityGraph()),
            read("qualities", self.qualities.get_qualities(character_id), {}),
        )

        return GenerationContext(
            character_id=character_id,
            working_memory=tuple(working),
            episodes=tuple(episodes),
            narrative_summary=summary or DEFAULT_SUMMARY,
            entity_graph=graph,
            qualities=MappingProxyType(dict(qualities)),
            extra=MappingProxyType(dict(extra or {})),
            degraded=tuple(sorted(degraded)),
        )
