"""Tests for the content generator."""

import asyncio
import dataclasses

import pytest

from narrative_director.context import GenerationContext
from narrative_director.generate import Brief, ContentGenerator
from narrative_director.generate.generator import normalize_keys
from narrative_director.models import ContentKind, Gate, NarrativeNeed, Quest, ValidationResult
from narrative_director.storylets import StoryletEngine, default_storylets

from conftest import FakeGenerationService, Slow, make_outcome, make_quest


@pytest.fixture
def quest_brief(character) -> Brief:
    need = NarrativeNeed(
        needs_content=True,
        reasoning="no active quests",
        theme="call_to_adventure",
        quest_type="main",
        storylet_id="inciting_incident",
    )
    storylet = StoryletEngine(default_storylets()).get("inciting_incident")
    return Brief(ContentKind.QUEST, character, GenerationContext(character_id=character.id), need=need, storylet=storylet)


class TestGenerate:
    """Tests for first-pass generation."""

    def test_camel_case_keys_are_normalized(self):
        assert normalize_keys({"npcInvolved": "Mira", "objectives": [{"statReward": "CON"}]}) == {
            "npc_involved": "Mira",
            "objectives": [{"stat_reward": "CON"}],
        }

    def test_successful_generation(self, quest_brief, config):
        raw = make_quest()
        raw["estimatedDuration"] = raw.pop("estimated_duration")
        service = FakeGenerationService({"generate": [raw]})

        candidate = asyncio.run(ContentGenerator(service, config).generate(quest_brief))

        assert not candidate.fallback
        assert candidate.revision == 0
        assert candidate.temperature == config.generation_temperature
        quest = candidate.as_quest()
        assert quest.estimated_duration == "1 week"
        assert quest.theme == "call_to_adventure"
        assert quest.storylet_id == "inciting_incident"
        assert quest.effects[0] == {"type": "progress_narrative", "milestone": "journey_begun"}

    def test_request_carries_schema(self, quest_brief, config):
        service = FakeGenerationService({"generate": [make_quest()]})

        asyncio.run(ContentGenerator(service, config).generate(quest_brief))

        request = service.requests[0]
        assert request.output_schema == Quest.model_json_schema()
        assert "call_to_adventure" in request.prompt

    def test_malformed_reply_goes_straight_to_fallback(self, quest_brief, config):
        service = FakeGenerationService({"generate": ["I am not JSON at all", make_quest()]})

        candidate = asyncio.run(ContentGenerator(service, config).generate(quest_brief))

        assert candidate.fallback
        assert len(service.calls("generate")) == 1

    def test_configured_retries_are_used(self, quest_brief, config):
        service = FakeGenerationService({"generate": ["I am not JSON at all", make_quest()]})
        retrying = dataclasses.replace(config, generation_retries=1)

        candidate = asyncio.run(ContentGenerator(service, retrying).generate(quest_brief))

        assert not candidate.fallback
        assert len(service.calls("generate")) == 2

    def test_timeout_gives_fallback(self, quest_brief, config):
        service = FakeGenerationService({"generate": [Slow()]})

        candidate = asyncio.run(ContentGenerator(service, config).generate(quest_brief))

        assert candidate.fallback
        assert len(service.calls("generate")) == 1
        quest = candidate.as_quest()
        assert quest.theme == "call_to_adventure"
        assert {"type": "progress_narrative", "milestone": "journey_begun"} in quest.effects

    def test_non_list_effects_are_left_for_the_shape_gate(self, quest_brief, config):
        service = FakeGenerationService({"generate": [make_quest(effects=5)]})

        candidate = asyncio.run(ContentGenerator(service, config).generate(quest_brief))

        assert not candidate.fallback
        assert candidate.content["effects"] == 5
        assert candidate.effects == []

    def test_outcome_fallback_is_valid(self, character, config):
        quest = Quest.model_validate(make_quest())
        brief = Brief(ContentKind.OUTCOME, character, GenerationContext(character_id=character.id), quest=quest)

        candidate = asyncio.run(ContentGenerator(FakeGenerationService(), config).generate(brief))

        assert candidate.fallback
        outcome = candidate.as_outcome()
        assert outcome.npc_interactions[0].npc_name == "Mira"


class TestRevise:
    """Tests for revision with feedback."""

    def test_revision_uses_feedback_and_lower_temperature(self, quest_brief, config):
        service = FakeGenerationService({"revise": [make_quest(title="The Lantern Relit")]})
        generator = ContentGenerator(service, config)
        previous = generator.fallback(quest_brief)
        feedback = ValidationResult(
            gate=Gate.RULE_COMPLIANCE, passed=False, score=60,
            issues=["Mira acts out of character"], suggestions=["Keep Mira gentle"],
        )

        revised = asyncio.run(generator.revise(quest_brief, previous, feedback))

        assert revised.revision == 1
        assert revised.feedback is feedback
        assert revised.temperature == config.revision_temperature
        assert revised.content["title"] == "The Lantern Relit"
        request = service.calls("revise")[0]
        assert request.temperature < config.generation_temperature
        assert "Mira acts out of character" in request.prompt
        assert "Keep Mira gentle" in request.prompt

    def test_failed_revision_falls_back(self, quest_brief, config):
        generator = ContentGenerator(FakeGenerationService(), config)
        feedback = ValidationResult(gate=Gate.RULE_COMPLIANCE, passed=False, score=60)

        revised = asyncio.run(generator.revise(quest_brief, generator.fallback(quest_brief), feedback))

        assert revised.fallback
        assert revised.revision == 1


class TestVariations:
    """Tests for self-consistency regenerations."""

    def test_failed_variations_are_dropped(self, quest_brief, config):
        service = FakeGenerationService({"variation": [make_quest(), "garbage", make_quest(title="Another Lantern")]})

        variations = asyncio.run(ContentGenerator(service, config).variations(quest_brief, 3))

        assert len(variations) == 2
        assert sorted(r.temperature for r in service.calls("variation")) == pytest.approx([0.6, 0.7, 0.8])

    def test_outcome_variations(self, character, config):
        quest = Quest.model_validate(make_quest())
        brief = Brief(ContentKind.OUTCOME, character, GenerationContext(character_id=character.id), quest=quest)
        service = FakeGenerationService(default=make_outcome())

        variations = asyncio.run(ContentGenerator(service, config).variations(brief, 3))

        assert len(variations) == 3
        assert all(v.kind is ContentKind.OUTCOME for v in variations)
