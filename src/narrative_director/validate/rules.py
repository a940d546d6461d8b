"""World rule set checked by rule-compliance judges.

The built-in default is small and generic. A deployment
supplies its own world through a JSON file with the same shape as
``RuleSet.to_dict()``.
"""

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path

from ..models.entities import normalize_name
from ..models.validation import Severity

DEPARTED_STATES = frozenset({"departed", "dead", "gone", "absent", "missing"})


@dataclass
class ForbiddenPhrase:
    """Text that must never appear in generated content."""

    phrase: str
    penalty: float
    type: str = "tone"
    severity: Severity = Severity.MAJOR
    suggestion: str = ""


@dataclass
class NpcProfile:
    """What the world asserts about a recurring character."""

    name: str
    status: str = "present"
    personality: str = ""
    never: list[str] = field(default_factory=list)

    @property
    def departed(self) -> bool:
        return self.status.lower() in DEPARTED_STATES


@dataclass
class RuleSet:
    """Never-violate invariants for generated content."""

    core_rules: list[str] = field(default_factory=list)
    forbidden: list[ForbiddenPhrase] = field(default_factory=list)
    npcs: dict[str, NpcProfile] = field(default_factory=dict)
    locations: list[str] = field(default_factory=list)
    strict_npcs: bool = False

    def npc(self, name: str) -> NpcProfile | None:
        target = normalize_name(name)
        for key, profile in self.npcs.items():
            if normalize_name(key) == target:
                return profile
        return None

    def to_dict(self) -> dict:
        return {
            "core_rules": list(self.core_rules),
            "forbidden": [{**asdict(f), "severity": f.severity.value} for f in self.forbidden],
            "npcs": {k: asdict(v) for k, v in self.npcs.items()},
            "locations": list(self.locations),
            "strict_npcs": self.strict_npcs,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RuleSet":
        return cls(
            core_rules=list(data.get("core_rules", [])),
            forbidden=[
                ForbiddenPhrase(
                    phrase=f["phrase"],
                    penalty=float(f.get("penalty", 10)),
                    type=f.get("type", "tone"),
                    severity=Severity(f.get("severity", "major")),
                    suggestion=f.get("suggestion", ""),
                )
                for f in data.get("forbidden", [])
            ],
            npcs={
                name: NpcProfile(
                    name=name,
                    status=raw.get("status", "present"),
                    personality=raw.get("personality", ""),
                    never=list(raw.get("never", [])),
                )
                for name, raw in data.get("npcs", {}).items()
            },
            locations=list(data.get("locations", [])),
            strict_npcs=bool(data.get("strict_npcs", False)),
        )

    def save(self, path: Path) -> None:
        """Save rule set to a JSON file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: Path) -> "RuleSet":
        """Load rule set from a JSON file."""
        with open(path, encoding="utf-8") as f:
            return cls.from_dict(json.load(f))


def default_rule_set() -> RuleSet:
    return RuleSet(
        core_rules=[
            "Progress comes from the character's own effort, never from luck or outside rescue.",
            "Setbacks are framed as part of growth; the character is never shamed.",
            "Established people and places keep their history; departed characters stay departed.",
            "Magic is quiet and personal, never flashy combat spells.",
        ],
        forbidden=[
            ForbiddenPhrase("you should", 10, "tone", Severity.MINOR, "Invite rather than instruct"),
            ForbiddenPhrase("pathetic", 20, "tone", Severity.MAJOR, "Remove belittling language"),
            ForbiddenPhrase("you failed", 15, "tone", Severity.MAJOR, "Frame setbacks as learning"),
            ForbiddenPhrase("death", 20, "tone", Severity.MAJOR, "Keep stakes non-lethal"),
            ForbiddenPhrase("die", 20, "tone", Severity.MAJOR, "Keep stakes non-lethal"),
            ForbiddenPhrase("kill", 15, "tone", Severity.MAJOR, "Replace violence with a challenge"),
            ForbiddenPhrase("fireball", 10, "magic_system", Severity.MINOR, "Use subtle magic"),
            ForbiddenPhrase("lightning bolt", 10, "magic_system", Severity.MINOR, "Use subtle magic"),
        ],
    )
