"""Self-consistency: agreement between a candidate and independent regenerations."""

import logging
import statistics
from dataclasses import dataclass, field

from rapidfuzz import fuzz

from ..models.content import Candidate, ContentKind

logger = logging.getLogger(__name__)


def _jaccard(a: set, b: set) -> float:
    if not a and not b:
        return 1.0
    return len(a & b) / len(a | b)


def _objectives(candidate: Candidate) -> list[dict]:
    return [o for o in candidate.list_field("objectives") if isinstance(o, dict)]


def _npc_names(candidate: Candidate) -> set[str]:
    names = set()
    for interaction in candidate.list_field("npc_interactions"):
        if isinstance(interaction, dict) and interaction.get("npc_name"):
            names.add(str(interaction["npc_name"]).lower())
    return names


def similarity(a: Candidate, b: Candidate) -> float:
    """Symmetric agreement between two candidates, in [0, 1]."""
    text = fuzz.token_sort_ratio(a.text(), b.text()) / 100

    if a.kind is ContentKind.OUTCOME or b.kind is ContentKind.OUTCOME:
        return 0.6 * text + 0.4 * _jaccard(_npc_names(a), _npc_names(b))

    theme = 1.0 if a.content.get("theme") == b.content.get("theme") else 0.0
    objectives_a, objectives_b = _objectives(a), _objectives(b)
    longest = max(len(objectives_a), len(objectives_b), 1)
    count = 1.0 - abs(len(objectives_a) - len(objectives_b)) / longest
    stats = _jaccard(
        {str(o.get("stat_reward")) for o in objectives_a},
        {str(o.get("stat_reward")) for o in objectives_b},
    )
    return 0.4 * text + 0.2 * theme + 0.2 * count + 0.2 * stats


@dataclass
class ConsistencyReport:
    consistent: bool
    agreement: float
    variance: float
    chosen: Candidate
    substituted: bool = False
    centrality: list[float] = field(default_factory=list)


class SelfConsistencyChecker:
    """Keeps the original when the pool agrees, else picks the most central member."""

    def __init__(self, agreement_threshold: float = 0.7):
        self.agreement_threshold = agreement_threshold

    def evaluate(self, original: Candidate, variations: list[Candidate]) -> ConsistencyReport:
        pool = [original] + list(variations)
        if len(pool) < 2:
            return ConsistencyReport(consistent=True, agreement=1.0, variance=0.0, chosen=original)

        n = len(pool)
        matrix = [[1.0] * n for _ in range(n)]
        pairs = []
        for i in range(n):
            for j in range(i + 1, n):
                matrix[i][j] = matrix[j][i] = similarity(pool[i], pool[j])
                pairs.append(matrix[i][j])

        agreement = statistics.fmean(pairs)
        variance = statistics.pvariance(pairs)
        centrality = [statistics.fmean(matrix[i][j] for j in range(n) if j != i) for i in range(n)]

        consistent = agreement >= self.agreement_threshold and variance < 1 - self.agreement_threshold
        if consistent:
            chosen_index = 0
        else:
            # Ties keep the earliest member, so the original wins a tie
            chosen_index = max(range(n), key=lambda i: (centrality[i], -i))

        logger.info(
            "Self-consistency over %d candidates: agreement %.2f, variance %.3f, chose #%d",
            n, agreement, variance, chosen_index,
        )
        return ConsistencyReport(
            consistent=consistent,
            agreement=agreement,
            variance=variance,
            chosen=pool[chosen_index],
            substituted=chosen_index != 0,
            centrality=centrality,
        )
