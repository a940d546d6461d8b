"""Validation results shared by all gates."""

from dataclasses import dataclass, field
from enum import Enum


class Gate(str, Enum):
    PRE_GENERATION = "pre_generation"
    GENERATION = "generation"
    RULE_COMPLIANCE = "rule_compliance"
    POST_GENERATION = "post_generation"


class Severity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


@dataclass
class Violation:
    """One broken rule found by a rule-compliance judge."""

    type: str  # tone, contradiction, npc_behavior, unknown_reference, plot_logic, forbidden
    severity: Severity
    description: str
    penalty: float = 0.0
    suggestion: str = ""

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "severity": self.severity.value,
            "description": self.description,
            "penalty": self.penalty,
            "suggestion": self.suggestion,
        }


@dataclass
class ValidationResult:
    """Result of one validation gate.

    Gates 1, 2 and 4 score in [0, 1]; rule compliance scores in [0, 100].
    """

    gate: Gate
    passed: bool
    score: float
    issues: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)
    can_revise: bool = True
    violations: list[Violation] = field(default_factory=list)
    details: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "gate": self.gate.value,
            "passed": self.passed,
            "score": self.score,
            "issues": self.issues,
            "suggestions": self.suggestions,
            "can_revise": self.can_revise,
            "violations": [v.to_dict() for v in self.violations],
            "details": self.details,
        }

    def summary(self) -> str:
        """Human-readable summary."""
        status = "passed" if self.passed else "failed"
        lines = [f"{self.gate.value}: {status} (score {self.score:.2f})"]
        for issue in self.issues:
            lines.append(f"  - {issue}")
        return "\n".join(lines)
