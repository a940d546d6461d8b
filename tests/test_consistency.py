"""Tests for self-consistency checking."""

import pytest
from hypothesis import given, strategies as st

from narrative_director.models import Candidate, ContentKind
from narrative_director.validate import SelfConsistencyChecker, similarity

from conftest import make_outcome, make_quest


def quest(**overrides) -> Candidate:
    return Candidate(kind=ContentKind.QUEST, content=make_quest(**overrides))


def orchard() -> Candidate:
    return quest(
        title="The Quiet Orchard",
        description=(
            "Old Hollis tends an orchard east of the river and needs someone patient "
            "to prune the trees before the first frost arrives."
        ),
        objectives=[{
            "description": "Prune a row of trees each morning",
            "goal_mapping": "morning_stretch",
            "stat_reward": "WIS",
            "xp_reward": 20,
        }],
        theme="finding_a_mentor",
    )


words = st.lists(st.sampled_from(["lantern", "mill", "river", "orchard", "Mira", "frost", "road"]), max_size=12)


class TestSimilarity:
    """Tests for pairwise agreement."""

    def test_identical_quests_agree_fully(self):
        assert similarity(quest(), quest()) == pytest.approx(1.0)

    def test_different_quests_agree_less(self):
        assert similarity(quest(), orchard()) < 0.7

    def test_outcomes_compare_npcs(self):
        a = Candidate(kind=ContentKind.OUTCOME, content=make_outcome())
        b = Candidate(kind=ContentKind.OUTCOME, content=make_outcome(npc_interactions=[{"npc_name": "Hollis"}]))
        assert similarity(a, a) == pytest.approx(1.0)
        assert similarity(a, b) < similarity(a, a)

    @given(words, words)
    def test_symmetric_and_bounded(self, left, right):
        a = quest(description=" ".join(left))
        b = quest(description=" ".join(right))
        score = similarity(a, b)
        assert 0.0 <= score <= 1.0
        assert score == pytest.approx(similarity(b, a))

    def test_wrong_field_shapes_are_ignored(self):
        broken = quest(objectives=3, effects=5)
        score = similarity(broken, quest())
        assert 0.0 <= score < 1.0
        assert similarity(broken, broken) == pytest.approx(1.0)


class TestSelfConsistencyChecker:
    """Tests for keeping or replacing the original candidate."""

    def test_agreeing_pool_keeps_original(self):
        original = quest()

        report = SelfConsistencyChecker(0.7).evaluate(original, [quest(), quest()])

        assert report.consistent
        assert report.chosen is original
        assert not report.substituted
        assert report.agreement == pytest.approx(1.0)

    def test_outlier_original_is_replaced_by_central_variation(self):
        original = quest()
        variations = [orchard(), orchard(), orchard()]

        report = SelfConsistencyChecker(0.9).evaluate(original, variations)

        assert not report.consistent
        assert report.substituted
        assert report.chosen is variations[0]
        assert report.centrality[0] < report.centrality[1]

    def test_pool_of_one_is_consistent(self):
        original = quest()

        report = SelfConsistencyChecker().evaluate(original, [])

        assert report.consistent
        assert report.chosen is original
        assert report.variance == 0.0
