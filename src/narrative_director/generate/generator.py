"""Content generator: quests and quest outcomes via the generation service."""

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from ..config import DirectorConfig
from ..context import GenerationContext
from ..exceptions import GenerationServiceError, GenerationTimeoutError, MalformedContentError
from ..llm import GenerationRequest, GenerationService, extract_json
from ..models.content import Candidate, ContentKind, Quest
from ..models.orchestration import CharacterState, NarrativeNeed
from ..models.validation import ValidationResult
from ..storylets.catalog import Storylet
from ..storylets.effects import effect_to_dict
from .templates import fallback_outcome, fallback_quest

logger = logging.getLogger(__name__)


@dataclass
class Brief:
    """Everything one piece of content is generated from."""

    kind: ContentKind
    character: CharacterState
    context: GenerationContext
    need: Optional[NarrativeNeed] = None
    quest: Optional[Quest] = None
    storylet: Optional[Storylet] = None

    @property
    def storylet_effects(self) -> list[dict]:
        if not self.storylet:
            return []
        return [effect_to_dict(e) for e in self.storylet.effects]


def _snake(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def normalize_keys(value: Any) -> Any:
    """Convert camelCase keys to snake_case, recursively."""
    if isinstance(value, dict):
        return {_snake(k) if isinstance(k, str) else k: normalize_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [normalize_keys(v) for v in value]
    return value


class ContentGenerator:
    """Turns a Brief into a Candidate, falling back to templates on failure."""

    SYSTEM_PROMPT = '''You are the narrative designer for a long-running personal adventure.
You write quests and quest outcomes for one character whose real-world habits drive the story.
Stay consistent with everything the character has already lived through.
Respond with JSON only.'''

    QUEST_PROMPT = '''Write the next quest for this character.

CHARACTER: {name}, level {level} {character_class}
STATS: {stats}

STORY SO FAR:
{summary}

RECENT EVENTS:
{recent}

RELEVANT MEMORIES:
{memories}

KNOWN WORLD:
{world}

WHAT THE STORY NEEDS:
- Theme: {theme}
- Quest type: {quest_type}
- Urgency: {urgency}
- Focus stat: {focus}
- Storylet: {storylet}
- Why: {reasoning}

Requirements:
- title: at most 100 characters
- description: 10-150 words, second person
- objectives: 1-5, each with description, goal_mapping, stat_reward (STR, DEX, CON, INT, WIS or CHA) and xp_reward (>= 1)
- estimated_duration, difficulty (easy, medium, hard), npc_involved (a name or null)
- Only reference people and places from the known world unless introducing someone new on purpose'''

    OUTCOME_PROMPT = '''Write what happened when the character completed this quest.

CHARACTER: {name}, level {level} {character_class}

QUEST: {title}
{description}

STORY SO FAR:
{summary}

RECENT EVENTS:
{recent}

Requirements:
- narrative_text: 30-300 words, second person, past tense
- npc_interactions: list of {{"npc_name", "sentiment" (positive, negative, neutral), "context"}}
- world_state_changes: list of {{"key", "description"}}
- future_plot_hooks: list of short strings'''

    REVISION_PROMPT = '''Revise this {kind} to fix the problems listed below.

PREVIOUS VERSION:
{previous}

PROBLEMS:
{issues}

SUGGESTIONS:
{suggestions}

Keep what works, fix every problem, and return the complete revised {kind} as JSON.'''

    def __init__(self, service: GenerationService, config: DirectorConfig | None = None):
        self.service = service
        self.config = config or DirectorConfig()

    async def generate(self, brief: Brief) -> Candidate:
        """First-pass generation; on failure, the flagged template.

        ``generation_retries`` adds extra tries before the template, each logged.
        """
        request = self._request(brief, self.config.generation_temperature, purpose="generate")
        for attempt in range(1 + self.config.generation_retries):
            try:
                content = await self._complete_json(request)
            except (GenerationServiceError, MalformedContentError) as e:
                logger.warning("Generation attempt %d for %s failed: %s", attempt + 1, brief.character.id, e)
                continue
            return self._candidate(brief, content, revision=0, temperature=request.temperature)
        return self.fallback(brief, revision=0)

    async def revise(self, brief: Brief, previous: Candidate, feedback: ValidationResult) -> Candidate:
        """Regenerate with the previous candidate and its validation feedback."""
        prompt = self.REVISION_PROMPT.format(
            kind=brief.kind.value,
            previous=json.dumps(previous.content, indent=2, default=str),
            issues="\n".join(f"- {i}" for i in feedback.issues) or "- Score below the acceptance threshold",
            suggestions="\n".join(f"- {s}" for s in feedback.suggestions) or "- None",
        )
        request = GenerationRequest(
            system=self.SYSTEM_PROMPT,
            prompt=self._prompt(brief) + "\n\n" + prompt,
            output_schema=brief.kind.model.model_json_schema(),
            temperature=self.config.revision_temperature,
            max_tokens=self.config.max_tokens,
            purpose="revise",
        )
        revision = previous.revision + 1
        try:
            content = await self._complete_json(request)
        except (GenerationServiceError, MalformedContentError) as e:
            logger.warning("Revision %d for %s failed: %s", revision, brief.character.id, e)
            candidate = self.fallback(brief, revision=revision)
        else:
            candidate = self._candidate(brief, content, revision=revision, temperature=request.temperature)
        candidate.feedback = feedback
        return candidate

    async def variations(self, brief: Brief, k: int) -> list[Candidate]:
        """K concurrent regenerations at spread temperatures; failures are dropped."""
        requests = [
            self._request(brief, min(1.0, 0.5 + 0.1 * (i + 1)), purpose="variation")
            for i in range(k)
        ]
        results = await asyncio.gather(
            *(self._complete_json(r) for r in requests),
            return_exceptions=True,
        )
        candidates = []
        for request, result in zip(requests, results):
            if isinstance(result, (GenerationServiceError, MalformedContentError)):
                logger.info("Variation at temperature %.1f dropped: %s", request.temperature, result)
                continue
            if isinstance(result, BaseException):
                raise result
            candidates.append(self._candidate(brief, result, revision=0, temperature=request.temperature))
        return candidates

    def fallback(self, brief: Brief, revision: int = 0) -> Candidate:
        logger.warning("Using templated %s for %s", brief.kind.value, brief.character.id)
        if brief.kind is ContentKind.QUEST:
            content = fallback_quest(brief.character, brief.need, brief.storylet_effects)
        else:
            content = fallback_outcome(brief.character, brief.quest)
        return Candidate(kind=brief.kind, content=content, revision=revision, fallback=True, temperature=0.0)

    async def _complete_json(self, request: GenerationRequest) -> dict:
        try:
            raw = await asyncio.wait_for(self.service.complete(request), timeout=self.config.generation_timeout)
        except asyncio.TimeoutError as e:
            raise GenerationTimeoutError(
                f"{request.purpose} timed out after {self.config.generation_timeout}s"
            ) from e
        parsed = extract_json(raw)
        if not isinstance(parsed, dict) or not parsed:
            raise MalformedContentError("Response did not contain a JSON object", raw=raw)
        return normalize_keys(parsed)

    def _candidate(self, brief: Brief, content: dict, revision: int, temperature: float) -> Candidate:
        if brief.kind is ContentKind.QUEST:
            if brief.need:
                content.setdefault("theme", brief.need.theme or "")
                content.setdefault("quest_type", brief.need.quest_type)
                content.setdefault("storylet_id", brief.need.storylet_id)
            # Storylet effects are authoritative; proposed extras go to the post-generation gate.
            # A non-list value is left in place for the generation gate to reject.
            effects = content.get("effects") or []
            if isinstance(effects, list):
                proposed = [e for e in effects if e not in brief.storylet_effects]
                content["effects"] = brief.storylet_effects + proposed
        return Candidate(kind=brief.kind, content=content, revision=revision, temperature=temperature)

    def _request(self, brief: Brief, temperature: float, purpose: str) -> GenerationRequest:
        return GenerationRequest(
            system=self.SYSTEM_PROMPT,
            prompt=self._prompt(brief),
            output_schema=brief.kind.model.model_json_schema(),
            temperature=temperature,
            max_tokens=self.config.max_tokens,
            purpose=purpose,
        )

    def _prompt(self, brief: Brief) -> str:
        character = brief.character
        context = brief.context
        if brief.kind is ContentKind.OUTCOME:
            return self.OUTCOME_PROMPT.format(
                name=character.name or character.id,
                level=character.level,
                character_class=character.character_class or "adventurer",
                title=brief.quest.title,
                description=brief.quest.description,
                summary=context.narrative_summary,
                recent=context.recent_events_text(),
            )

        need = brief.need
        return self.QUEST_PROMPT.format(
            name=character.name or character.id,
            level=character.level,
            character_class=character.character_class or "adventurer",
            stats=", ".join(f"{k} {v}" for k, v in character.stats.items()) or "unknown",
            summary=context.narrative_summary,
            recent=context.recent_events_text(),
            memories="\n".join(f"- {r.text}" for r in context.retrieved) or "None",
            world=context.entity_graph.summary(),
            theme=need.theme,
            quest_type=need.quest_type,
            urgency=need.urgency.value,
            focus=need.target_focus or "any",
            storylet=f"{brief.storylet.title}: {brief.storylet.description}" if brief.storylet else "none",
            reasoning=need.reasoning,
        )
