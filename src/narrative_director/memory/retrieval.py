"""Top-K retrieval over a character's event history and episode summaries."""

import math
import re
from collections.abc import Callable
from datetime import datetime

from rapidfuzz import fuzz, process

from ..models.entities import utcnow
from ..models.memory import RetrievedItem
from .store import InMemoryMemoryStore

WEIGHT_RELEVANCE = 0.5
WEIGHT_RECENCY = 0.3
WEIGHT_IMPORTANCE = 0.2

RECENCY_HALF_SCALE_DAYS = 30.0
EPISODE_IMPORTANCE = 0.7
PARTICIPANT_BONUS = 0.25
FUZZY_CUTOFF = 85

QUERY_STOPWORDS = frozenset({
    "with", "that", "this", "from", "into", "your", "their", "they", "them",
    "have", "will", "would", "about", "quest", "theme", "character",
})


def keywords(text: str) -> list[str]:
    words = re.findall(r"[a-z][a-z']+", text.lower())
    seen: list[str] = []
    for word in words:
        if len(word) > 3 and word not in QUERY_STOPWORDS and word not in seen:
            seen.append(word)
    return seen


class MemoryRetriever:
    """Scores memories by relevance to a query, recency, and importance."""

    def __init__(self, store: InMemoryMemoryStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self._clock = clock

    async def retrieve(
        self,
        character_id: str,
        query: str,
        k: int = 5,
        include_episodes: bool = True,
    ) -> list[RetrievedItem]:
        """Return up to ``k`` memories, best first.

        Args:
            character_id: Whose memories to search
            query: Free text; words of four or more letters are matched fuzzily
            k: Maximum number of items
            include_episodes: Also search compressed episode summaries
        """
        if k <= 0:
            return []
        terms = keywords(query)
        query_lower = query.lower()
        now = self._clock()
        items = []

        for event in await self.store.all_events(character_id):
            relevance = self._relevance(terms, event.description)
            if any(p.lower() in query_lower for p in event.participants):
                relevance = min(1.0, relevance + PARTICIPANT_BONUS)
            items.append(self._score("event", event.description, event.timestamp, relevance, event.importance, now))

        if include_episodes:
            for episode in await self.store.get_episode_summaries(character_id, limit=1000):
                text = episode.summary_text
                relevance = self._relevance(terms, text + " " + " ".join(episode.key_events))
                if any(p.lower() in query_lower for p in episode.participants):
                    relevance = min(1.0, relevance + PARTICIPANT_BONUS)
                items.append(self._score("episode", text, episode.period_end, relevance, EPISODE_IMPORTANCE, now))

        items.sort(key=lambda i: i.score, reverse=True)
        return items[:k]

    @staticmethod
    def _relevance(terms: list[str], text: str) -> float:
        if not terms:
            return 0.0
        words = list(set(re.findall(r"[a-z][a-z']+", text.lower())))
        if not words:
            return 0.0
        hits = sum(
            1 for term in terms
            if process.extractOne(term, words, scorer=fuzz.ratio, score_cutoff=FUZZY_CUTOFF)
        )
        return hits / len(terms)

    @staticmethod
    def _score(source, text, timestamp, relevance, importance, now) -> RetrievedItem:
        age_days = max(0.0, (now - timestamp).total_seconds() / 86400)
        recency = math.exp(-age_days / RECENCY_HALF_SCALE_DAYS)
        score = WEIGHT_RELEVANCE * relevance + WEIGHT_RECENCY * recency + WEIGHT_IMPORTANCE * importance
        return RetrievedItem(
            source=source,
            text=text,
            timestamp=timestamp,
            score=score,
            relevance=relevance,
            recency=recency,
            importance=importance,
        )
