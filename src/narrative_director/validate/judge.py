"""Rule-compliance judges.

``RuleBasedJudge`` is deterministic and always available. ``LLMJudge``
asks the generation service for a judgment, keeps the lower of its score
and the rule-based score, and falls back to rules when the model fails.
"""

import asyncio
import json
import logging
import re
from typing import Protocol

from rapidfuzz import fuzz, process

from ..context import GenerationContext
from ..exceptions import GenerationServiceError
from ..llm import GenerationRequest, GenerationService, extract_json
from ..models.content import Candidate, ContentKind
from ..models.entities import EntityType, normalize_name
from ..models.validation import Gate, Severity, ValidationResult, Violation
from .rules import DEPARTED_STATES, RuleSet, default_rule_set

logger = logging.getLogger(__name__)

NEAR_MISS_CUTOFF = 85
PENALTIES = {
    "departed": 25.0,
    "unknown": 15.0,
    "near_miss": 5.0,
    "npc_behavior": 15.0,
    "duplicate_quest": 15.0,
}


class RuleJudge(Protocol):
    async def judge(self, candidate: Candidate, context: GenerationContext) -> ValidationResult: ...


def referenced_npcs(candidate: Candidate) -> list[str]:
    """NPC names a candidate names explicitly."""
    if candidate.kind is ContentKind.QUEST:
        name = candidate.content.get("npc_involved")
        return [name] if isinstance(name, str) and name.strip() else []
    names = []
    for interaction in candidate.list_field("npc_interactions"):
        if isinstance(interaction, dict) and isinstance(interaction.get("npc_name"), str):
            names.append(interaction["npc_name"])
    return names


def score_from(violations: list[Violation]) -> float:
    return max(0.0, 100.0 - sum(v.penalty for v in violations))


def build_result(violations: list[Violation], **details) -> ValidationResult:
    score = score_from(violations)
    return ValidationResult(
        gate=Gate.RULE_COMPLIANCE,
        passed=not any(v.severity is Severity.CRITICAL for v in violations),
        score=score,
        issues=[v.description for v in violations],
        suggestions=[v.suggestion for v in violations if v.suggestion],
        violations=violations,
        details=details,
    )


class RuleBasedJudge:
    """Scores a candidate 0-100 against the rule set and the story so far."""

    def __init__(self, rules: RuleSet | None = None):
        self.rules = rules or default_rule_set()
        self._patterns = [
            (f, re.compile(rf"\b{re.escape(f.phrase)}\b", re.IGNORECASE)) for f in self.rules.forbidden
        ]

    async def judge(self, candidate: Candidate, context: GenerationContext) -> ValidationResult:
        return self.check(candidate, context)

    def check(self, candidate: Candidate, context: GenerationContext) -> ValidationResult:
        text = candidate.text()
        violations = self._forbidden(text)
        violations += self._npc_references(candidate, context)
        violations += self._npc_behavior(text)
        violations += self._repeated_quest(candidate, context)
        return build_result(violations, judge="rules")

    def _forbidden(self, text: str) -> list[Violation]:
        violations = []
        for phrase, pattern in self._patterns:
            if pattern.search(text):
                violations.append(
                    Violation(
                        type=phrase.type,
                        severity=phrase.severity,
                        description=f"Uses forbidden phrase '{phrase.phrase}'",
                        penalty=phrase.penalty,
                        suggestion=phrase.suggestion,
                    )
                )
        return violations

    def _npc_references(self, candidate: Candidate, context: GenerationContext) -> list[Violation]:
        graph = context.entity_graph
        known = {e.name for e in graph.entities if e.type == EntityType.NPC} | set(self.rules.npcs)
        violations = []

        for name in referenced_npcs(candidate):
            profile = self.rules.npc(name)
            entity = graph.find(name, EntityType.NPC)
            status = (entity.attributes.get("status", "") if entity else "") or ""
            if (profile and profile.departed) or status.lower() in DEPARTED_STATES:
                violations.append(
                    Violation(
                        type="contradiction",
                        severity=Severity.CRITICAL,
                        description=f"{name} has departed the story but appears again",
                        penalty=PENALTIES["departed"],
                        suggestion=f"Replace {name} with a present character",
                    )
                )
                continue
            if profile or entity:
                continue

            match = process.extractOne(
                normalize_name(name),
                {k: normalize_name(k) for k in known},
                scorer=fuzz.ratio,
                score_cutoff=NEAR_MISS_CUTOFF,
            )
            if match:
                violations.append(
                    Violation(
                        type="contradiction",
                        severity=Severity.MINOR,
                        description=f"'{name}' looks like a misspelling of '{match[2]}'",
                        penalty=PENALTIES["near_miss"],
                        suggestion=f"Use the established name '{match[2]}'",
                    )
                )
            elif self.rules.strict_npcs:
                violations.append(
                    Violation(
                        type="unknown_reference",
                        severity=Severity.MAJOR,
                        description=f"Unknown character '{name}'",
                        penalty=PENALTIES["unknown"],
                        suggestion="Use a character the story already knows",
                    )
                )
        return violations

    def _npc_behavior(self, text: str) -> list[Violation]:
        lowered = text.lower()
        violations = []
        for profile in self.rules.npcs.values():
            if profile.name.lower() not in lowered:
                continue
            for never in profile.never:
                if never.lower() in lowered:
                    violations.append(
                        Violation(
                            type="npc_behavior",
                            severity=Severity.MAJOR,
                            description=f"{profile.name} would never {never}",
                            penalty=PENALTIES["npc_behavior"],
                            suggestion=f"Keep {profile.name} true to character ({profile.personality or 'as established'})",
                        )
                    )
        return violations

    def _repeated_quest(self, candidate: Candidate, context: GenerationContext) -> list[Violation]:
        if candidate.kind is not ContentKind.QUEST:
            return []
        title = candidate.content.get("title")
        if not isinstance(title, str) or not title:
            return []
        existing = context.entity_graph.find(title, EntityType.QUEST)
        if existing is None:
            return []
        return [
            Violation(
                type="plot_logic",
                severity=Severity.MAJOR,
                description=f"Quest '{title}' already exists in this story",
                penalty=PENALTIES["duplicate_quest"],
                suggestion="Give the quest a new title and a new angle",
            )
        ]


class LLMJudge:
    """Model-backed judge that never scores above the rule-based judge."""

    JUDGE_PROMPT = '''You are the keeper of this world's lore. Judge the {kind} below.

WORLD RULES (never to be broken):
{rules}

STORY SO FAR:
{summary}

RECENT EVENTS:
{recent}

KNOWN WORLD:
{world}

CONTENT:
"""
{content}
"""

Score consistency from 0 to 100. Deduct for contradictions with past events, characters
acting against their nature, broken world rules, unknown references, and plot holes.

Respond in JSON format:
{{
    "score": <0-100>,
    "violations": [
        {{"type": "tone|contradiction|npc_behavior|magic_system|unknown_reference|plot_logic",
          "severity": "critical|major|minor", "description": "...", "suggestion": "..."}}
    ],
    "suggestions": ["...", "..."]
}}'''

    def __init__(
        self,
        service: GenerationService,
        rules: RuleSet | None = None,
        temperature: float = 0.2,
        timeout: float = 30.0,
    ):
        self.service = service
        self.rules_judge = RuleBasedJudge(rules)
        self.temperature = temperature
        self.timeout = timeout

    async def judge(self, candidate: Candidate, context: GenerationContext) -> ValidationResult:
        baseline = self.rules_judge.check(candidate, context)
        request = GenerationRequest(
            system="You judge generated story content for consistency. Respond with JSON only.",
            prompt=self.JUDGE_PROMPT.format(
                kind=candidate.kind.value,
                rules="\n".join(f"- {r}" for r in self.rules_judge.rules.core_rules) or "- None",
                summary=context.narrative_summary,
                recent=context.recent_events_text(),
                world=context.entity_graph.summary(),
                content=json.dumps(candidate.content, indent=2, default=str),
            ),
            temperature=self.temperature,
            max_tokens=800,
            purpose="judge",
        )
        try:
            raw = await asyncio.wait_for(self.service.complete(request), timeout=self.timeout)
        except (GenerationServiceError, asyncio.TimeoutError) as e:
            logger.warning("LLM judge unavailable, using rule-based score: %s", e)
            baseline.details["fallback"] = True
            return baseline

        judgment = extract_json(raw)
        if not isinstance(judgment, dict) or "score" not in judgment:
            logger.warning("LLM judge returned no usable score, using rule-based score")
            baseline.details["fallback"] = True
            return baseline

        try:
            llm_score = max(0.0, min(100.0, float(judgment["score"])))
        except (TypeError, ValueError):
            logger.warning("LLM judge score %r is not a number", judgment["score"])
            baseline.details["fallback"] = True
            return baseline

        violations = list(baseline.violations) + self._parse_violations(judgment.get("violations", []))
        result = build_result(violations, judge="llm", llm_score=llm_score, rule_score=baseline.score)
        result.score = min(llm_score, baseline.score)
        result.suggestions += [s for s in judgment.get("suggestions", []) if isinstance(s, str)]
        return result

    @staticmethod
    def _parse_violations(raw: list) -> list[Violation]:
        violations = []
        for item in raw if isinstance(raw, list) else []:
            if not isinstance(item, dict) or not item.get("description"):
                continue
            try:
                severity = Severity(str(item.get("severity", "minor")).lower())
            except ValueError:
                severity = Severity.MINOR
            # The model's own score already reflects these; no extra penalty
            violations.append(
                Violation(
                    type=str(item.get("type", "plot_logic")),
                    severity=severity,
                    description=str(item["description"]),
                    suggestion=str(item.get("suggestion", "")),
                )
            )
        return violations
