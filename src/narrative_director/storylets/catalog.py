"""Storylet definitions and the built-in catalog."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from ..exceptions import EffectError, PrerequisiteError
from ..models.qualities import CORE_THEMES
from .effects import Effect, effect_to_dict, parse_effect
from .prerequisites import PrereqExpr, parse_prerequisites, to_dict

logger = logging.getLogger(__name__)

STORYLET_TYPES = ("progression", "exploration", "side")


@dataclass(frozen=True)
class Storylet:
    """A narrative unit gated by prerequisites, with effects on completion."""

    storylet_id: str
    title: str
    description: str = ""
    prerequisites: PrereqExpr | None = None
    effects: tuple[Effect, ...] = ()
    type: str = "side"
    theme: str | None = None
    anchors_theme: str | None = None
    urgency: int = 5

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Storylet":
        """Build a storylet from its JSON form.

        Raises:
            PrerequisiteError: Invalid prerequisites or type.
            EffectError: A known effect type with bad fields.
        """
        storylet_type = data.get("type", "side")
        if storylet_type not in STORYLET_TYPES:
            raise PrerequisiteError(f"Unknown storylet type {storylet_type!r}")
        effects = [parse_effect(e) for e in data.get("effects", [])]
        return cls(
            storylet_id=str(data["storylet_id"]),
            title=str(data.get("title", data["storylet_id"])),
            description=str(data.get("description", "")),
            prerequisites=parse_prerequisites(data.get("prerequisites")),
            effects=tuple(e for e in effects if e is not None),
            type=storylet_type,
            theme=data.get("theme"),
            anchors_theme=data.get("anchors_theme"),
            urgency=int(data.get("urgency", 5)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "storylet_id": self.storylet_id,
            "title": self.title,
            "description": self.description,
            "prerequisites": to_dict(self.prerequisites),
            "effects": [effect_to_dict(e) for e in self.effects],
            "type": self.type,
            "theme": self.theme,
            "anchors_theme": self.anchors_theme,
            "urgency": self.urgency,
        }


def _milestone(storylet_id, title, description, theme, milestone, requires, urgency):
    prereqs = [{"quality": q, "operator": "has"} for q in requires]
    prereqs.append({"quality": milestone, "operator": "not_has"})
    return {
        "storylet_id": storylet_id,
        "title": title,
        "description": description,
        "prerequisites": {"all": prereqs},
        "effects": [{"type": "progress_narrative", "milestone": milestone}],
        "type": "progression",
        "theme": theme,
        "urgency": urgency,
    }


DEFAULT_STORYLETS: list[dict[str, Any]] = [
    _milestone("inciting_incident", "The Call to Adventure", "Something disrupts the ordinary",
               "call_to_adventure", "journey_begun", [], 10),
    _milestone("first_test", "Trial by Fire", "An early challenge tests resolve",
               "first_trial", "first_challenge_overcome", ["journey_begun"], 9),
    _milestone("mentor_appears", "A Guiding Hand", "Someone offers wisdom for the road",
               "finding_a_mentor", "mentor_discovered", ["journey_begun"], 7),
    _milestone("dark_night", "The Long Night", "Doubt creeps in after early victories",
               "facing_doubt", "inner_doubt_faced", ["first_challenge_overcome"], 8),
    _milestone("hidden_reserves", "Hidden Reserves", "A strength surfaces under pressure",
               "hidden_strength", "hidden_strength_revealed", ["first_challenge_overcome"], 7),
    _milestone("fellowship", "Kindred Spirits", "Companions gather around a shared cause",
               "building_community", "community_formed", ["first_challenge_overcome"], 6),
    _milestone("breakthrough", "The Turning Point", "Everything learned comes together",
               "breakthrough", "breakthrough_achieved", ["inner_doubt_faced", "hidden_strength_revealed"], 9),
    _milestone("new_horizon", "A New Chapter", "The journey opens onto something larger",
               "new_chapter", "new_chapter_begun", ["breakthrough_achieved"], 8),
    {
        "storylet_id": "exploration",
        "title": "Uncharted Territory",
        "description": "Discover new aspects of the journey",
        "prerequisites": {"quality": "journey_begun", "operator": "has"},
        "effects": [{"type": "increment_quality", "quality": "areas_explored", "amount": 1}],
        "type": "exploration",
        "urgency": 5,
    },
] + [
    {
        "storylet_id": f"anchor_{theme}",
        "title": theme.replace("_", " ").title(),
        "description": f"A moment that returns the story to {theme.replace('_', ' ')}",
        "prerequisites": {"quality": "journey_begun", "operator": "has"},
        "effects": [{"type": "increment_quality", "quality": f"theme_{theme}", "amount": 1}],
        "type": "side",
        "theme": theme,
        "anchors_theme": theme,
        "urgency": 4,
    }
    for theme in CORE_THEMES
]


def default_storylets() -> list[Storylet]:
    return [Storylet.from_dict(d) for d in DEFAULT_STORYLETS]


def load_storylets(path: Path) -> list[Storylet]:
    """Load a JSON list of storylets, skipping invalid entries with a warning."""
    with open(path, encoding="utf-8") as f:
        raw = json.load(f)

    storylets = []
    for entry in raw:
        try:
            storylets.append(Storylet.from_dict(entry))
        except (KeyError, PrerequisiteError, EffectError) as e:
            logger.warning("Skipping storylet %r from %s: %s", entry.get("storylet_id"), path, e)
    return storylets
