"""Shared fixtures: scripted generation service, scripted judge, sample content."""

import asyncio
import json
from datetime import datetime, timezone

import pytest

from narrative_director.config import DirectorConfig
from narrative_director.exceptions import GenerationServiceError
from narrative_director.models import CharacterState, Gate, ValidationResult


class Slow:
    """Scripted response that sleeps past any test timeout."""

    def __init__(self, seconds: float = 5.0):
        self.seconds = seconds


class FakeGenerationService:
    """Returns scripted responses per request purpose, in order.

    An item may be a dict (sent as JSON), a str, an exception to raise, or a
    ``Slow`` to simulate a timeout. When a purpose runs out, ``default`` is
    used; with no default the call fails with GenerationServiceError.
    """

    def __init__(self, responses=None, default=None):
        self.responses = {purpose: list(items) for purpose, items in (responses or {}).items()}
        self.default = default
        self.requests = []

    async def complete(self, request):
        self.requests.append(request)
        queue = self.responses.get(request.purpose)
        item = queue.pop(0) if queue else self.default
        if item is None:
            raise GenerationServiceError(f"no scripted response for {request.purpose}")
        if isinstance(item, Slow):
            await asyncio.sleep(item.seconds)
            return "{}"
        if isinstance(item, BaseException):
            raise item
        return item if isinstance(item, str) else json.dumps(item)

    def calls(self, purpose: str) -> list:
        return [r for r in self.requests if r.purpose == purpose]


class ScriptedJudge:
    """Rule-compliance judge returning scores in order; the last score repeats."""

    def __init__(self, scores):
        self.scores = list(scores)
        self.judged = []

    async def judge(self, candidate, context):
        self.judged.append(candidate)
        index = min(len(self.judged), len(self.scores)) - 1
        score = float(self.scores[index])
        return ValidationResult(
            gate=Gate.RULE_COMPLIANCE,
            passed=True,
            score=score,
            issues=[] if score >= 85 else [f"Scripted score {score:.0f}"],
            suggestions=[] if score >= 85 else ["Be more consistent"],
        )


def make_quest(title: str = "The Lantern of Brightwater", **overrides) -> dict:
    quest = {
        "title": title,
        "description": (
            "A flickering lantern hangs above the old mill at Brightwater. Mira the miller "
            "asks for help keeping it lit through the long autumn nights ahead."
        ),
        "objectives": [
            {
                "description": "Walk to the mill each evening",
                "goal_mapping": "evening_walk",
                "stat_reward": "CON",
                "xp_reward": 20,
            },
            {
                "description": "Read about lantern craft",
                "goal_mapping": "reading",
                "stat_reward": "INT",
                "xp_reward": 15,
                "location": "Brightwater",
            },
        ],
        "npc_involved": "Mira",
        "difficulty": "medium",
        "estimated_duration": "1 week",
    }
    quest.update(overrides)
    return quest


def make_outcome(**overrides) -> dict:
    outcome = {
        "narrative_text": (
            "Night after night you carried oil up the hill, and the lantern above the mill "
            "never once went dark. Mira watched from her doorway and finally smiled, telling "
            "you the valley sleeps easier now. The walk has become part of you, steady and quiet."
        ),
        "npc_interactions": [{"npc_name": "Mira", "sentiment": "positive", "context": "Kept the lantern lit"}],
        "world_state_changes": [{"key": "brightwater_lantern_lit", "description": "The mill lantern burns again"}],
        "future_plot_hooks": ["A traveler asks where the light comes from."],
    }
    outcome.update(overrides)
    return outcome


@pytest.fixture
def character() -> CharacterState:
    return CharacterState(
        id="char-1",
        name="Ayla",
        character_class="Ranger",
        level=3,
        stats={"STR": 11, "DEX": 12, "CON": 10, "INT": 13, "WIS": 12, "CHA": 10},
    )


@pytest.fixture
def config() -> DirectorConfig:
    return DirectorConfig(generation_timeout=0.05)


@pytest.fixture
def fixed_now() -> datetime:
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
