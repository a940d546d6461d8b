"""Narrative director: runs one orchestration session end to end.

    IDLE -> CONTEXT_GATHERING -> NEED_EVALUATION -> GENERATING
         -> VALIDATING <-> REVISING -> APPLYING -> IDLE

Every session ends in exactly one OrchestrationResult. Nothing is written
to any store unless the candidate passed rule compliance and the session
reached APPLYING.
"""

import asyncio
import dataclasses
import logging
import time
import weakref
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .config import DirectorConfig
from .context import ContextAssembler, GenerationContext
from .generate.generator import Brief, ContentGenerator
from .graph.extractor import CapitalizedNameExtractor, EntityExtractor
from .graph.store import KnowledgeGraph
from .graph.updates import plan_outcome_updates, plan_quest_updates
from .llm import GenerationService
from .memory.compressor import EpisodeCompressor
from .memory.retrieval import MemoryRetriever
from .memory.store import InMemoryMemoryStore
from .models.content import Candidate, ContentKind, Quest
from .models.entities import EntityType, utcnow
from .models.memory import EventType, NarrativeEvent
from .models.orchestration import (
    ActivityCounters,
    CharacterState,
    DirectorState,
    NarrativeNeed,
    OrchestrationAction,
    OrchestrationResult,
)
from .models.qualities import QUESTS_COMPLETED
from .models.validation import Gate, ValidationResult
from .need import NeedEvaluator
from .storylets.engine import StoryletEngine
from .storylets.qualities import InMemoryQualityStore
from .validate.consistency import SelfConsistencyChecker
from .validate.judge import LLMJudge, RuleJudge
from .validate.pipeline import EffectPlan, ValidationPipeline
from .validate.rules import RuleSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrchestrationMetrics:
    """Read-only snapshot of the director's counters."""

    total_sessions: int = 0
    successful_orchestrations: int = 0
    validation_failures: int = 0
    errors: int = 0
    average_latency_ms: float = 0.0

    @property
    def success_rate(self) -> float:
        return self.successful_orchestrations / self.total_sessions if self.total_sessions else 0.0

    @property
    def validation_failure_rate(self) -> float:
        return self.validation_failures / self.total_sessions if self.total_sessions else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_sessions": self.total_sessions,
            "successful_orchestrations": self.successful_orchestrations,
            "validation_failures": self.validation_failures,
            "errors": self.errors,
            "average_latency_ms": round(self.average_latency_ms, 1),
            "success_rate": round(self.success_rate, 3),
            "validation_failure_rate": round(self.validation_failure_rate, 3),
        }


class Session:
    """State and timing for one orchestration."""

    def __init__(self, character_id: str):
        self.character_id = character_id
        self.state = DirectorState.IDLE
        self.history: list[DirectorState] = [DirectorState.IDLE]
        self._started = time.perf_counter()
        self._phase_started = self._started

    def enter(self, state: DirectorState) -> None:
        now = time.perf_counter()
        logger.info(
            "[%s] %s -> %s (%.1f ms)",
            self.character_id, self.state.value, state.value, (now - self._phase_started) * 1000,
        )
        self.state = state
        self.history.append(state)
        self._phase_started = now

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self._started) * 1000


@dataclass
class LoopOutcome:
    """What the generate/validate/revise loop ended with."""

    accepted: bool
    candidate: Candidate
    attempts: int
    last: ValidationResult
    validations: list[ValidationResult] = field(default_factory=list)
    reason: str = ""


def build_rag_query(character: CharacterState, need: NarrativeNeed) -> str:
    parts = [
        (need.theme or "").replace("_", " "),
        need.quest_type,
        character.character_class,
        need.target_focus or "",
        need.reasoning,
    ]
    return " ".join(p for p in parts if p)


class NarrativeDirector:
    """Coordinates context, need, generation, validation, revision and apply."""

    def __init__(
        self,
        service: GenerationService,
        *,
        graph: KnowledgeGraph | None = None,
        qualities: InMemoryQualityStore | None = None,
        memory: InMemoryMemoryStore | None = None,
        storylets: StoryletEngine | None = None,
        judge: RuleJudge | None = None,
        rules: RuleSet | None = None,
        extractor: EntityExtractor | None = None,
        config: DirectorConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or DirectorConfig()
        cfg = self.config
        self.service = service
        self.graph = graph or KnowledgeGraph(clock=clock)
        self.qualities = qualities or InMemoryQualityStore(clock=clock)
        self.memory = memory or InMemoryMemoryStore()
        self.storylets = storylets if storylets is not None else StoryletEngine(anchor_interval=cfg.anchor_interval)
        self.extractor = extractor or CapitalizedNameExtractor()
        self._clock = clock

        self.assembler = ContextAssembler(
            self.memory, self.graph, self.qualities,
            working_memory_limit=cfg.working_memory_limit,
            episode_limit=cfg.episode_summary_limit,
        )
        self.need_evaluator = NeedEvaluator(self.storylets, cfg)
        self.generator = ContentGenerator(service, cfg)
        judge = judge or LLMJudge(service, rules, temperature=cfg.judge_temperature, timeout=cfg.generation_timeout)
        self.pipeline = ValidationPipeline(judge, self.storylets, cfg)
        self.consistency = SelfConsistencyChecker(cfg.self_consistency_agreement)
        self.retriever = MemoryRetriever(self.memory, clock=clock)
        self.compressor = EpisodeCompressor(
            service, temperature=cfg.revision_temperature, timeout=cfg.generation_timeout
        )

        # Entries vanish once no session holds or waits on the lock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()
        self._total = 0
        self._successes = 0
        self._validation_failures = 0
        self._errors = 0
        self._average_latency = 0.0

    @property
    def metrics(self) -> OrchestrationMetrics:
        return OrchestrationMetrics(
            total_sessions=self._total,
            successful_orchestrations=self._successes,
            validation_failures=self._validation_failures,
            errors=self._errors,
            average_latency_ms=self._average_latency,
        )

    # Entry points

    async def orchestrate(
        self,
        character: CharacterState,
        counters: ActivityCounters | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> OrchestrationResult:
        """Decide whether the character needs a quest and, if so, produce and apply one."""
        self._total += 1
        session = Session(character.id)
        try:
            result = await self._orchestrate_quest(session, character, counters or ActivityCounters(), extra)
        except Exception as e:
            logger.exception("Quest orchestration failed for %s", character.id)
            result = OrchestrationResult(action=OrchestrationAction.ERROR, reason=str(e))
        return self._finish(session, result)

    async def orchestrate_outcome(
        self,
        character: CharacterState,
        quest: Quest,
        extra: Mapping[str, Any] | None = None,
    ) -> OrchestrationResult:
        """Produce and apply the outcome of a completed quest."""
        self._total += 1
        session = Session(character.id)
        try:
            result = await self._orchestrate_outcome(session, character, quest, extra)
        except Exception as e:
            logger.exception("Outcome orchestration failed for %s", character.id)
            result = OrchestrationResult(action=OrchestrationAction.ERROR, reason=str(e))
        return self._finish(session, result)

    def _finish(self, session: Session, result: OrchestrationResult) -> OrchestrationResult:
        result.latency_ms = session.elapsed_ms
        if result.succeeded:
            self._successes += 1
            # Running mean over successful sessions only
            self._average_latency += (result.latency_ms - self._average_latency) / self._successes
        elif result.action is OrchestrationAction.VALIDATION_FAILED:
            self._validation_failures += 1
        elif result.action is OrchestrationAction.ERROR:
            self._errors += 1
        session.enter(DirectorState.IDLE)
        logger.info(
            "[%s] session ended: %s (%s) in %.1f ms",
            session.character_id, result.action.value, result.reason or "ok", result.latency_ms,
        )
        return result

    # Quest flow

    async def _orchestrate_quest(
        self,
        session: Session,
        character: CharacterState,
        counters: ActivityCounters,
        extra: Mapping[str, Any] | None,
    ) -> OrchestrationResult:
        session.enter(DirectorState.CONTEXT_GATHERING)
        context = await self.assembler.assemble(character.id, extra)

        session.enter(DirectorState.NEED_EVALUATION)
        need = self.need_evaluator.evaluate(character, counters, context)
        if not need.needs_content:
            return OrchestrationResult(action=OrchestrationAction.NONE, reason=need.reasoning, need=need)

        context = await self._with_memories(context, build_rag_query(character, need))

        pre = self.pipeline.validate_pre_generation(character, need, context)
        if not pre.passed:
            return OrchestrationResult(
                action=OrchestrationAction.ERROR,
                reason="Pre-generation validation failed",
                need=need,
                issues=pre.issues,
                validations=[pre],
            )

        storylet = self.storylets.get(need.storylet_id) if need.storylet_id else None
        brief = Brief(ContentKind.QUEST, character, context, need=need, storylet=storylet)
        loop = await self._generate_validated(session, brief)
        validations = [pre] + loop.validations
        if not loop.accepted:
            return self._validation_failed(loop, need, validations)

        quest = loop.candidate.as_quest()
        session.enter(DirectorState.APPLYING)
        plan = await self._apply_quest(character, quest, loop.candidate)

        return OrchestrationResult(
            action=OrchestrationAction.QUEST_GENERATED,
            quest=quest,
            need=need,
            attempts=loop.attempts,
            fallback=loop.candidate.fallback,
            compliance_score=loop.last.score,
            validations=validations + [plan.result],
            rejected_effects=[e.reason for e in plan.rejected],
            rewards=quest.total_xp(),
        )

    # Outcome flow

    async def _orchestrate_outcome(
        self,
        session: Session,
        character: CharacterState,
        quest: Quest,
        extra: Mapping[str, Any] | None,
    ) -> OrchestrationResult:
        session.enter(DirectorState.CONTEXT_GATHERING)
        context = await self.assembler.assemble(character.id, extra)
        context = await self._with_memories(context, f"{quest.title} {quest.theme} {quest.npc_involved or ''}")

        pre = self.pipeline.validate_pre_outcome(character, quest, context)
        if not pre.passed:
            return OrchestrationResult(
                action=OrchestrationAction.ERROR,
                reason="Pre-generation validation failed",
                quest=quest,
                issues=pre.issues,
                validations=[pre],
            )

        brief = Brief(ContentKind.OUTCOME, character, context, quest=quest)
        loop = await self._generate_validated(session, brief)
        validations = [pre] + loop.validations
        if not loop.accepted:
            return self._validation_failed(loop, None, validations)

        outcome = loop.candidate.as_outcome()
        session.enter(DirectorState.APPLYING)
        plan = await self._apply_outcome(character, quest, loop.candidate)

        return OrchestrationResult(
            action=OrchestrationAction.OUTCOME_GENERATED,
            quest=quest,
            outcome=outcome,
            attempts=loop.attempts,
            fallback=loop.candidate.fallback,
            compliance_score=loop.last.score,
            validations=validations + [plan.result],
            rejected_effects=[e.reason for e in plan.rejected],
            rewards=quest.total_xp(),
        )

    # Generate / validate / revise

    async def _generate_validated(self, session: Session, brief: Brief) -> LoopOutcome:
        """Bounded revision loop: at most ``max_revision_attempts`` revisions."""
        max_attempts = self.config.max_revision_attempts
        validations: list[ValidationResult] = []

        session.enter(DirectorState.GENERATING)
        candidate = await self.generator.generate(brief)
        attempt = 1

        while True:
            session.enter(DirectorState.VALIDATING)
            verdict, candidate = await self._validate_candidate(brief, candidate, validations)
            if verdict.passed:
                return LoopOutcome(True, candidate, attempt, verdict, validations)
            if not verdict.can_revise:
                return LoopOutcome(False, candidate, attempt, verdict, validations, reason="Candidate cannot be revised")
            if attempt > max_attempts:
                return LoopOutcome(
                    False, candidate, attempt, verdict, validations,
                    reason=f"Still failing after {max_attempts} revision(s)",
                )

            session.enter(DirectorState.REVISING)
            logger.info(
                "[%s] revision %d/%d: %s",
                brief.character.id, attempt, max_attempts, "; ".join(verdict.issues[:3]) or "below threshold",
            )
            candidate = await self.generator.revise(brief, candidate, verdict)
            attempt += 1

    async def _validate_candidate(
        self,
        brief: Brief,
        candidate: Candidate,
        validations: list[ValidationResult],
    ) -> tuple[ValidationResult, Candidate]:
        structural = self.pipeline.validate_generation(candidate)
        validations.append(structural)
        if not structural.passed:
            return structural, candidate

        compliance = await self.pipeline.validate_rule_compliance(candidate, brief.context)
        validations.append(compliance)
        if compliance.passed or not self._borderline(compliance, candidate):
            return compliance, candidate

        variations = await self.generator.variations(brief, self.config.self_consistency_variations)
        report = self.consistency.evaluate(candidate, variations)
        compliance.details["self_consistency"] = {
            "agreement": report.agreement,
            "variance": report.variance,
            "substituted": report.substituted,
        }
        if not report.substituted:
            return compliance, candidate

        alternative = dataclasses.replace(report.chosen, revision=candidate.revision)
        alt_structural = self.pipeline.validate_generation(alternative)
        if not alt_structural.passed:
            logger.info("Central variation failed shape validation; keeping the original")
            return compliance, candidate
        alt_compliance = await self.pipeline.validate_rule_compliance(alternative, brief.context)
        validations.append(alt_compliance)
        return alt_compliance, alternative

    def _borderline(self, compliance: ValidationResult, candidate: Candidate) -> bool:
        cfg = self.config
        return (
            cfg.self_consistency_enabled
            and not candidate.fallback
            and cfg.self_consistency_low <= compliance.score < cfg.consistency_threshold
        )

    @staticmethod
    def _validation_failed(
        loop: LoopOutcome,
        need: NarrativeNeed | None,
        validations: list[ValidationResult],
    ) -> OrchestrationResult:
        return OrchestrationResult(
            action=OrchestrationAction.VALIDATION_FAILED,
            reason=loop.reason,
            need=need,
            attempts=loop.attempts,
            fallback=loop.candidate.fallback,
            compliance_score=loop.last.score if loop.last.gate is Gate.RULE_COMPLIANCE else None,
            issues=loop.last.issues,
            validations=validations,
        )

    # Apply

    def _lock_for(self, character_id: str) -> asyncio.Lock:
        lock = self._locks.get(character_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[character_id] = lock
        return lock

    async def _apply_quest(self, character: CharacterState, quest: Quest, candidate: Candidate) -> EffectPlan:
        async with self._lock_for(character.id):
            records = await self.qualities.get_records(character.id)
            plan = self.pipeline.validate_post_generation(
                candidate, {k: q.value for k, q in records.items()}, records
            )
            entities, relationships = plan_quest_updates(quest, self.extractor, player_name=character.name)

            await self.graph.apply_batch(character.id, entities, relationships)
            if plan.staged.touched():
                await self.qualities.set_many(character.id, plan.staged.writes, lock=plan.staged.locks)

            event = NarrativeEvent(
                character_id=character.id,
                type=EventType.QUEST_GENERATED,
                description=f"New quest: {quest.title}. {quest.description}",
                participants=[e.name for e in entities if e.type is EntityType.NPC],
                payload={
                    "quest": quest.model_dump(mode="json"),
                    "storylet_id": quest.storylet_id,
                    "theme": quest.theme,
                },
                timestamp=self._clock(),
            )

        await self._record_memory(character.id, event, summary=f"A new quest began: {quest.title}.")
        return plan

    async def _apply_outcome(self, character: CharacterState, quest: Quest, candidate: Candidate) -> EffectPlan:
        outcome = candidate.as_outcome()
        effects = list(candidate.effects) + [
            {"type": "increment_quality", "quality": QUESTS_COMPLETED, "amount": 1}
        ]
        with_completion = dataclasses.replace(candidate, content={**candidate.content, "effects": effects})

        async with self._lock_for(character.id):
            records = await self.qualities.get_records(character.id)
            plan = self.pipeline.validate_post_generation(
                with_completion, {k: q.value for k, q in records.items()}, records
            )
            player = character.name or character.id
            entities, relationships = plan_outcome_updates(outcome, player, quest.title)

            await self.graph.apply_batch(character.id, entities, relationships)
            if plan.staged.touched():
                await self.qualities.set_many(character.id, plan.staged.writes, lock=plan.staged.locks)

            event = NarrativeEvent(
                character_id=character.id,
                type=EventType.QUEST_COMPLETED,
                description=f"Completed {quest.title}. {outcome.narrative_text}",
                participants=[i.npc_name for i in outcome.npc_interactions],
                payload={
                    "quest_title": quest.title,
                    "rewards": quest.total_xp(),
                    "plot_hooks": outcome.future_plot_hooks,
                    "world_changes": [c.key for c in outcome.world_state_changes],
                },
                timestamp=self._clock(),
            )

        # Memory calls can reach the model; they run after the commit, outside the lock
        await self._record_memory(character.id, event, summary=outcome.narrative_text)
        return plan

    async def _record_memory(self, character_id: str, event: NarrativeEvent, summary: str) -> None:
        """Append the event, roll the summary, compress if due. Failures never undo the apply."""
        cfg = self.config
        try:
            await self.memory.append_event(event)
            await self.memory.update_narrative_summary(character_id, summary, cfg.summary_word_limit)
            await self.compressor.maybe_compress(
                self.memory, character_id, trigger=cfg.compression_trigger, batch=cfg.compression_batch
            )
        except Exception as e:
            # The apply already committed; memory is best effort
            logger.warning("Memory update for %s failed: %s", character_id, e)

    async def _with_memories(self, context: GenerationContext, query: str) -> GenerationContext:
        try:
            items = await self.retriever.retrieve(context.character_id, query, k=self.config.retrieval_top_k)
        except Exception as e:
            logger.warning("Memory retrieval failed for %s: %s", context.character_id, e)
            return context
        return context.with_retrieval(items)
