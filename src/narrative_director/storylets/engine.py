"""Storylet availability and ordering."""

import logging
from collections.abc import Iterable, Mapping

from ..models.qualities import CORE_THEMES, QUESTS_COMPLETED, QualityValue
from .catalog import Storylet, default_storylets
from .prerequisites import check_prerequisites

logger = logging.getLogger(__name__)


class StoryletEngine:
    """Answers which storylets a character can take next.

    Availability is recomputed from qualities on every call; nothing is
    cached between calls.
    """

    def __init__(self, storylets: Iterable[Storylet] | None = None, anchor_interval: int = 5):
        self.anchor_interval = anchor_interval
        self._catalog: dict[str, Storylet] = {}
        for storylet in storylets if storylets is not None else default_storylets():
            self.add(storylet)

    def add(self, storylet: Storylet) -> None:
        if storylet.storylet_id in self._catalog:
            logger.info("Replacing storylet %s", storylet.storylet_id)
        self._catalog[storylet.storylet_id] = storylet

    def get(self, storylet_id: str) -> Storylet | None:
        return self._catalog.get(storylet_id)

    def __contains__(self, storylet_id: str) -> bool:
        return storylet_id in self._catalog

    def __len__(self) -> int:
        return len(self._catalog)

    @property
    def storylets(self) -> list[Storylet]:
        return list(self._catalog.values())

    def available(self, qualities: Mapping[str, QualityValue]) -> list[Storylet]:
        """Storylets whose prerequisites hold, most relevant first."""
        matching = [s for s in self._catalog.values() if check_prerequisites(s.prerequisites, qualities)]
        return self.sort_by_relevance(matching, qualities)

    def needs_anchor(self, qualities: Mapping[str, QualityValue]) -> bool:
        completed = qualities.get(QUESTS_COMPLETED, 0)
        if isinstance(completed, bool) or not isinstance(completed, int):
            return False
        return completed > 0 and completed % self.anchor_interval == 0

    def narrative_anchor(self, qualities: Mapping[str, QualityValue]) -> str | None:
        """Core theme to return to, every ``anchor_interval`` completed quests."""
        if not self.needs_anchor(qualities):
            return None
        completed = qualities[QUESTS_COMPLETED]
        return CORE_THEMES[(completed // self.anchor_interval) % len(CORE_THEMES)]

    def sort_by_relevance(
        self,
        storylets: list[Storylet],
        qualities: Mapping[str, QualityValue],
    ) -> list[Storylet]:
        """Progression first, then theme anchors when one is due, then urgency."""
        anchoring = self.needs_anchor(qualities)

        def rank(storylet: Storylet) -> tuple[int, int, int, str]:
            return (
                0 if storylet.type == "progression" else 1,
                0 if anchoring and storylet.anchors_theme else 1,
                -storylet.urgency,
                storylet.storylet_id,
            )

        return sorted(storylets, key=rank)

    def for_theme(self, theme: str, qualities: Mapping[str, QualityValue]) -> Storylet | None:
        """Best available storylet carrying a theme."""
        for storylet in self.available(qualities):
            if theme in (storylet.theme, storylet.anchors_theme):
                return storylet
        return None
