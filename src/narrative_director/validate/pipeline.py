"""The four validation gates.

1. Pre-generation: is the request (a need or a completed quest) sound?
2. Generation: does the candidate have the right shape?
3. Rule compliance: does it respect the world and the story so far?
4. Post-generation: which of its side effects are safe to apply?

Each gate is independent and returns a ValidationResult.
"""

import json
import logging
import re
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field

from pydantic import ValidationError

from ..config import DirectorConfig
from ..context import GenerationContext
from ..exceptions import EffectError, EffectRejectedError
from ..models.content import STATS, Candidate, ContentKind, Quest
from ..models.entities import normalize_name
from ..models.orchestration import CharacterState, NarrativeNeed
from ..models.qualities import Quality, QualityType, QualityValue
from ..models.validation import Gate, Severity, ValidationResult
from ..storylets.effects import (
    Effect,
    IncrementQuality,
    ProgressNarrative,
    SetQuality,
    StagedQualities,
    UnlockStorylet,
    apply_effects,
    parse_effect,
)
from ..storylets.engine import StoryletEngine
from ..storylets.progression import theme_stage
from .judge import RuleJudge

logger = logging.getLogger(__name__)


@dataclass
class EffectPlan:
    """Effects split into those safe to apply and those refused."""

    accepted: list[Effect] = field(default_factory=list)
    rejected: list[EffectRejectedError] = field(default_factory=list)
    staged: StagedQualities = field(default_factory=StagedQualities)
    result: ValidationResult | None = None


class ValidationPipeline:
    """Runs the four gates. Thresholds come from DirectorConfig."""

    SANITIZE_PATTERNS = [
        re.compile(r"<\s*script", re.IGNORECASE),
        re.compile(r"\bdrop\s+table\b", re.IGNORECASE),
        re.compile(r"\bdelete\s+from\b", re.IGNORECASE),
        re.compile(r"\bignore (?:all )?previous instructions\b", re.IGNORECASE),
    ]

    GENERIC_PHRASES = [
        "embark on a journey",
        "in a world where",
        "little did you know",
        "epic adventure awaits",
        "once upon a time",
        "the fate of the world",
    ]

    MAX_CONTEXT_CHARS = 50000
    REPETITION_LIMIT = 0.3
    PRE_GENERATION_PASS = 0.5
    GENERATION_PASS = 0.6

    def __init__(self, judge: RuleJudge, storylets: StoryletEngine, config: DirectorConfig | None = None):
        self.judge = judge
        self.storylets = storylets
        self.config = config or DirectorConfig()

    # Gate 1

    def validate_pre_generation(
        self,
        character: CharacterState,
        need: NarrativeNeed,
        context: GenerationContext,
    ) -> ValidationResult:
        errors: list[str] = []
        warnings: list[str] = []
        score = 1.0 - self._check_character(character, errors, warnings)

        if not need.needs_content or not need.theme:
            errors.append("No theme requested")
            score -= 0.1
        else:
            stage = theme_stage(need.theme)
            if stage is not None and stage > context.progression_stage:
                errors.append(
                    f"Theme '{need.theme}' belongs to stage {stage}, "
                    f"character is at stage {context.progression_stage}"
                )
                score -= 0.2
        if need.storylet_id and need.storylet_id not in self.storylets:
            errors.append(f"Unknown storylet '{need.storylet_id}'")
            score -= 0.1

        score -= self._check_context(context, warnings)
        score -= self._sanitize(self._request_texts(character, [("theme", need.theme or "")], context), errors)
        return self._pre_result(score, errors, warnings)

    def validate_pre_outcome(
        self,
        character: CharacterState,
        quest: Quest,
        context: GenerationContext,
    ) -> ValidationResult:
        """Gate 1 for a completed quest: the quest replaces the need as the request."""
        errors: list[str] = []
        warnings: list[str] = []
        score = 1.0 - self._check_character(character, errors, warnings)

        if quest.storylet_id and quest.storylet_id not in self.storylets:
            warnings.append(f"Quest comes from unknown storylet '{quest.storylet_id}'")
            score -= 0.05

        score -= self._check_context(context, warnings)
        quest_texts = [
            ("quest title", quest.title),
            ("quest description", quest.description),
            ("quest NPC", quest.npc_involved or ""),
        ]
        score -= self._sanitize(self._request_texts(character, quest_texts, context), errors)
        return self._pre_result(score, errors, warnings)

    @staticmethod
    def _check_character(character: CharacterState, errors: list[str], warnings: list[str]) -> float:
        penalty = 0.0
        if not character.id:
            errors.append("Character has no id")
            penalty += 0.3
        if not character.name:
            warnings.append("Character has no name")
            penalty += 0.05
        if not character.character_class:
            warnings.append("Character has no class")
            penalty += 0.05
        if not all(isinstance(character.stats.get(s), int) and character.stats[s] >= 1 for s in STATS):
            warnings.append("Character stats are incomplete")
            penalty += 0.1
        return penalty

    def _check_context(self, context: GenerationContext, warnings: list[str]) -> float:
        penalty = 0.0
        for conflict in self._context_conflicts(context):
            warnings.append(conflict)
            penalty += 0.1
        if context.degraded:
            warnings.append("Context assembled without: " + ", ".join(context.degraded))

        prompt_view = json.dumps(context.to_prompt_dict(), default=str)
        if len(prompt_view) > self.MAX_CONTEXT_CHARS:
            warnings.append(f"Context is {len(prompt_view)} characters, over {self.MAX_CONTEXT_CHARS}")
            penalty += 0.1
        return penalty

    def _sanitize(self, texts, errors: list[str]) -> float:
        penalty = 0.0
        for field_name, text in texts:
            for pattern in self.SANITIZE_PATTERNS:
                if pattern.search(text):
                    errors.append(f"Suspicious input in {field_name}")
                    penalty += 0.2
                    break
        return penalty

    def _pre_result(self, score: float, errors: list[str], warnings: list[str]) -> ValidationResult:
        score = max(0.0, score)
        return ValidationResult(
            gate=Gate.PRE_GENERATION,
            passed=not errors and score > self.PRE_GENERATION_PASS,
            score=score,
            issues=errors + warnings,
            can_revise=False,
            details={"errors": errors, "warnings": warnings},
        )

    def _context_conflicts(self, context: GenerationContext) -> list[str]:
        conflicts = []
        stamps = [e.timestamp for e in context.working_memory]
        if any(later < earlier for earlier, later in zip(stamps, stamps[1:])):
            conflicts.append("Working memory is out of chronological order")

        names = Counter((e.type, normalize_name(e.name)) for e in context.entity_graph.entities)
        duplicates = sorted(name for (_, name), count in names.items() if count > 1)
        if duplicates:
            conflicts.append("Duplicate entities: " + ", ".join(duplicates))
        return conflicts

    @staticmethod
    def _request_texts(character, request_texts, context):
        yield "character name", character.name or ""
        yield "character class", character.character_class or ""
        yield from request_texts
        for key, value in context.extra.items():
            yield f"extra context '{key}'", str(value)

    # Gate 2

    def validate_generation(self, candidate: Candidate) -> ValidationResult:
        content = candidate.content
        if not isinstance(content, dict) or not content:
            return ValidationResult(
                gate=Gate.GENERATION,
                passed=False,
                score=0.0,
                issues=["Candidate has no content"],
                can_revise=False,
            )

        errors: list[str] = []
        warnings: list[str] = []
        try:
            candidate.kind.model.model_validate(content)
        except ValidationError as e:
            for error in e.errors():
                location = ".".join(str(part) for part in error["loc"]) or candidate.kind.value
                errors.append(f"{location}: {error['msg']}")

        text = candidate.text()
        repetition = self._repetition_ratio(text)
        if repetition > self.REPETITION_LIMIT:
            warnings.append(f"Repetitive wording ({repetition:.0%} of words repeat)")
        lowered = text.lower()
        generic = [p for p in self.GENERIC_PHRASES if p in lowered]
        if generic:
            warnings.append("Generic phrasing: " + ", ".join(generic))

        score = max(0.0, 1.0 - 0.2 * len(errors) - 0.1 * len(warnings))
        suggestions = []
        if errors:
            suggestions.append(f"Return a complete {candidate.kind.value} with every required field")
        if repetition > self.REPETITION_LIMIT:
            suggestions.append("Vary the wording")
        if generic:
            suggestions.append("Replace stock phrases with details from this character's story")

        return ValidationResult(
            gate=Gate.GENERATION,
            passed=not errors and score > self.GENERATION_PASS,
            score=score,
            issues=errors + warnings,
            suggestions=suggestions,
            can_revise=True,
            details={"repetition": repetition},
        )

    @staticmethod
    def _repetition_ratio(text: str) -> float:
        words = [w for w in re.findall(r"[a-z']+", text.lower()) if len(w) > 3]
        if not words:
            return 0.0
        counts = Counter(words)
        repeated = sum(1 for count in counts.values() if count > 2)
        return repeated / len(counts)

    # Gate 3

    async def validate_rule_compliance(self, candidate: Candidate, context: GenerationContext) -> ValidationResult:
        result = await self.judge.judge(candidate, context)
        critical = any(v.severity is Severity.CRITICAL for v in result.violations)
        result.passed = result.score >= self.config.consistency_threshold and not critical
        if not result.passed and not result.suggestions:
            result.suggestions.append("Stay consistent with the world rules and past events")
        return result

    # Gate 4

    def validate_post_generation(
        self,
        candidate: Candidate,
        qualities: Mapping[str, QualityValue],
        records: Mapping[str, Quality] | None = None,
    ) -> EffectPlan:
        """Decide which effects may be applied; each refusal is logged."""
        records = records or {}
        plan = EffectPlan()
        view = dict(qualities)

        for raw in candidate.effects:
            try:
                effect = parse_effect(raw)
                if effect is None:
                    raise EffectRejectedError(raw, f"unknown effect type {raw.get('type')!r}")
                self._check_effect(effect, view, records)
                staged = apply_effects([effect], view)
            except EffectRejectedError as e:
                plan.rejected.append(e)
                logger.warning("Rejected effect %s: %s", raw, e.reason)
                continue
            except EffectError as e:
                plan.rejected.append(EffectRejectedError(raw, str(e)))
                logger.warning("Rejected effect %s: %s", raw, e)
                continue
            view.update(staged.writes)
            plan.accepted.append(effect)
            plan.staged.writes.update(staged.writes)
            plan.staged.locks |= staged.locks

        total = len(plan.accepted) + len(plan.rejected)
        plan.result = ValidationResult(
            gate=Gate.POST_GENERATION,
            passed=not plan.rejected,
            score=len(plan.accepted) / total if total else 1.0,
            issues=[f"Effect dropped: {e.reason}" for e in plan.rejected],
            can_revise=False,
            details={"accepted": len(plan.accepted), "rejected": len(plan.rejected)},
        )
        return plan

    def _check_effect(self, effect: Effect, view: Mapping[str, QualityValue], records: Mapping[str, Quality]) -> None:
        if isinstance(effect, UnlockStorylet):
            if effect.storylet_id not in self.storylets:
                raise EffectRejectedError(effect, f"unknown storylet {effect.storylet_id!r}")
            return

        target = effect.milestone if isinstance(effect, ProgressNarrative) else effect.quality
        new_value = True if isinstance(effect, ProgressNarrative) else None
        if isinstance(effect, SetQuality):
            new_value = effect.value
        record = records.get(target)

        if record and record.locked:
            if isinstance(effect, IncrementQuality) or new_value != record.value:
                raise EffectRejectedError(effect, f"quality {target!r} is locked")
        if isinstance(effect, SetQuality) and target in view:
            if QualityType.of(view[target]) != QualityType.of(effect.value):
                raise EffectRejectedError(
                    effect,
                    f"would change {target!r} from {QualityType.of(view[target]).value} "
                    f"to {QualityType.of(effect.value).value}",
                )
