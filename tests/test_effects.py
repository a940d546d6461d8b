"""Tests for effects and the quality store."""

import asyncio

import pytest

from narrative_director.exceptions import EffectError
from narrative_director.models.qualities import CURRENT_ACT, QualityType
from narrative_director.storylets.effects import (
    IncrementQuality,
    ProgressNarrative,
    SetQuality,
    UnlockStorylet,
    apply_effects,
    effect_to_dict,
    parse_effect,
)
from narrative_director.storylets.qualities import InMemoryQualityStore


class TestParseEffect:
    """Tests for effect parsing."""

    def test_known_types(self):
        assert parse_effect({"type": "set_quality", "quality": "home", "value": "north"}) == SetQuality("home", "north")
        assert parse_effect({"type": "increment_quality", "quality": "courage"}) == IncrementQuality("courage", 1)
        assert parse_effect({"type": "unlock_storylet", "storylet_id": "fellowship"}) == UnlockStorylet("fellowship")
        assert parse_effect({"type": "progress_narrative", "milestone": "journey_begun"}) == ProgressNarrative(
            "journey_begun"
        )

    def test_unknown_type_is_skipped(self):
        assert parse_effect({"type": "summon_dragon", "quality": "x"}) is None

    def test_bad_fields_raise(self):
        with pytest.raises(EffectError):
            parse_effect({"type": "set_quality", "quality": "home"})
        with pytest.raises(EffectError):
            parse_effect({"type": "increment_quality", "quality": "courage", "amount": "lots"})
        with pytest.raises(EffectError):
            parse_effect({"type": "set_quality", "quality": "home", "value": [1, 2]})

    def test_dict_form_round_trips(self):
        effects = [
            SetQuality("home", "north"),
            IncrementQuality("courage", 2),
            UnlockStorylet("fellowship"),
            ProgressNarrative("journey_begun"),
        ]
        assert [parse_effect(effect_to_dict(e)) for e in effects] == effects


class TestApplyEffects:
    """Tests for computing quality writes."""

    def test_effects_apply_in_order(self):
        staged = apply_effects(
            [IncrementQuality("courage", 2), IncrementQuality("courage", 3), SetQuality("home", "north")],
            {"courage": 1},
        )
        assert staged.writes == {"courage": 6, "home": "north"}
        assert staged.locks == set()

    def test_input_is_not_modified(self):
        qualities = {"courage": 1}
        apply_effects([IncrementQuality("courage")], qualities)
        assert qualities == {"courage": 1}

    def test_unlock_sets_flag(self):
        staged = apply_effects([UnlockStorylet("fellowship")], {})
        assert staged.writes == {"storylet_fellowship_unlocked": True}

    def test_progress_narrative_locks_milestone_and_sets_act(self):
        staged = apply_effects(
            [ProgressNarrative("first_challenge_overcome")],
            {"journey_begun": True},
        )
        assert staged.writes["first_challenge_overcome"] is True
        assert staged.writes[CURRENT_ACT] == 2
        assert staged.locks == {"first_challenge_overcome"}

    def test_increment_non_integer_raises(self):
        with pytest.raises(EffectError):
            apply_effects([IncrementQuality("home")], {"home": "north"})
        with pytest.raises(EffectError):
            apply_effects([IncrementQuality("flag")], {"flag": True})


class TestInMemoryQualityStore:
    """Tests for the quality store."""

    @pytest.fixture
    def store(self):
        return InMemoryQualityStore()

    def test_set_and_read_back(self, store):
        async def run():
            await store.set_many("c1", {"courage": 3, "home": "north", "journey_begun": True})
            return await store.get_qualities("c1"), await store.get_records("c1")

        values, records = asyncio.run(run())
        assert values == {"courage": 3, "home": "north", "journey_begun": True}
        assert records["courage"].type is QualityType.INT
        assert records["journey_begun"].type is QualityType.BOOL
        assert records["home"].type is QualityType.STRING

    def test_characters_are_isolated(self, store):
        async def run():
            await store.set_quality("c1", "courage", 3)
            return await store.get_qualities("c2")

        assert asyncio.run(run()) == {}

    def test_locked_quality_keeps_value(self, store):
        async def run():
            await store.set_many("c1", {"journey_begun": True}, lock=["journey_begun"])
            kept = await store.set_quality("c1", "journey_begun", False)
            return kept, await store.get_quality("c1", "journey_begun")

        kept, record = asyncio.run(run())
        assert kept.value is True
        assert record.value is True
        assert record.locked

    def test_applied_effects_read_back_exactly(self, store):
        effects = [SetQuality("home", "north"), IncrementQuality("courage", 2), ProgressNarrative("journey_begun")]

        async def run():
            await store.set_quality("c1", "courage", 1)
            staged = apply_effects(effects, await store.get_qualities("c1"))
            await store.set_many("c1", staged.writes, lock=staged.locks)
            return await store.get_records("c1")

        records = asyncio.run(run())
        assert records["home"].value == "north"
        assert records["courage"].value == 3
        assert records["journey_begun"].value is True
        assert records["journey_begun"].locked
        assert records[CURRENT_ACT].value == 1

    def test_export_import(self, store):
        asyncio.run(store.set_many("c1", {"courage": 3}, lock=["courage"]))

        restored = InMemoryQualityStore()
        restored.import_state(store.export_state())

        record = asyncio.run(restored.get_quality("c1", "courage"))
        assert record.value == 3
        assert record.locked
