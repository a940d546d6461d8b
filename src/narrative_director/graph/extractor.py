"""Entity extraction from generated prose.

The default extractor is a capitalization + stoplist heuristic. It is
cheap and deterministic, with known limits:

- False positives: capitalized sentence openers missing from the stoplist,
  words of a capitalized title ("Pillar", "Might").
- False negatives: lowercase names, names of one or two letters, names
  with apostrophes or hyphens beyond the first part.

Anything smarter plugs in through the ``EntityExtractor`` protocol.
"""

import re
from dataclasses import dataclass
from typing import Literal, Protocol

from ..models.entities import normalize_name


@dataclass
class ExtractedEntity:
    """A raw name found in text, before it is written to the graph."""

    text: str
    label: Literal["NPC", "LOCATION"]
    start_char: int
    end_char: int
    confidence: float = 0.5
    source: Literal["pattern", "explicit"] = "pattern"


class EntityExtractor(Protocol):
    def extract(self, text: str) -> list[ExtractedEntity]: ...


class CapitalizedNameExtractor:
    """Finds capitalized names and guesses NPC or location from context."""

    NAME_PATTERN = r"\b([A-Z][a-z]+(?:\s[A-Z][a-z]+)?)\b"

    # Place names usually follow a spatial preposition
    LOCATION_CUE = r"\b(?:in|at|to|from|near|inside|across|toward|towards|beyond)\s+(?:the\s+)?$"

    STOPWORDS = frozenset({
        "The", "This", "That", "These", "Those", "When", "Where", "What", "Which",
        "Who", "Why", "How", "Your", "Their", "There", "They", "Then", "Here",
        "You", "Yours", "She", "Her", "His", "Him", "Its", "Our", "And", "But",
        "For", "With", "From", "Into", "After", "Before", "While", "Once", "Each",
        "Every", "Some", "Now", "Today", "Tomorrow", "Yesterday", "Finally", "First",
        "Next", "Meanwhile", "Perhaps", "Together", "Complete", "Find", "Visit",
        "Speak", "Talk", "Help", "Bring", "Return", "Discover", "Learn", "Rediscover",
    })

    MIN_LENGTH = 3
    MAX_LENGTH = 29

    def __init__(self, extra_stopwords: set[str] | None = None):
        self._pattern = re.compile(self.NAME_PATTERN)
        self._location_cue = re.compile(self.LOCATION_CUE, re.IGNORECASE)
        self._stopwords = self.STOPWORDS | frozenset(extra_stopwords or ())

    def extract(self, text: str) -> list[ExtractedEntity]:
        """Extract likely names from text.

        Args:
            text: Prose to scan. Empty or non-string input yields no names.

        Returns:
            Distinct names in order of first appearance
        """
        if not isinstance(text, str) or not text:
            return []

        entities = []
        for match in self._pattern.finditer(text):
            name = self._strip_stopwords(match.group(1))
            if not self._is_likely_name(name):
                continue
            start = match.start() + match.group(1).find(name)
            preceding = text[max(0, start - 20):start]
            is_location = bool(self._location_cue.search(preceding))
            entities.append(
                ExtractedEntity(
                    text=name,
                    label="LOCATION" if is_location else "NPC",
                    start_char=start,
                    end_char=start + len(name),
                    confidence=0.6 if is_location else 0.5,
                )
            )

        return self._deduplicate(entities)

    def _strip_stopwords(self, candidate: str) -> str:
        # "The Elder" should not become a name, "Elder Mira" should
        words = [w for w in candidate.split() if w not in self._stopwords]
        return " ".join(words)

    def _is_likely_name(self, name: str) -> bool:
        return self.MIN_LENGTH <= len(name) <= self.MAX_LENGTH and name not in self._stopwords

    def _deduplicate(self, entities: list[ExtractedEntity]) -> list[ExtractedEntity]:
        """Keep the first mention of each name; a location reading wins over an NPC one."""
        seen: dict[str, ExtractedEntity] = {}
        for entity in entities:
            key = normalize_name(entity.text)
            accepted = seen.get(key)
            if accepted is None:
                seen[key] = entity
            elif entity.confidence > accepted.confidence:
                accepted.label = entity.label
                accepted.confidence = entity.confidence
        return sorted(seen.values(), key=lambda e: e.start_char)
