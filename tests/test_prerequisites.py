"""Tests for storylet prerequisite parsing and evaluation."""

import pytest
from hypothesis import given, strategies as st
from hypothesis.strategies import composite

from narrative_director.exceptions import PrerequisiteError
from narrative_director.storylets.prerequisites import (
    AllOf,
    AnyOf,
    Condition,
    NoneOf,
    Operator,
    check_prerequisites,
    parse_prerequisites,
    referenced_qualities,
    to_dict,
)

NAMES = ["courage", "journey_begun", "areas_explored", "mentor_discovered"]


@composite
def quality_maps(draw):
    """Quality maps mixing bools, ints and strings."""
    values = st.one_of(st.booleans(), st.integers(min_value=-3, max_value=10), st.sampled_from(["north", "south"]))
    return draw(st.dictionaries(st.sampled_from(NAMES), values, max_size=len(NAMES)))


@composite
def expressions(draw, depth=2):
    """Arbitrary prerequisite expressions."""
    if depth == 0 or draw(st.booleans()):
        operator = draw(st.sampled_from(list(Operator)))
        value = None
        if operator not in (Operator.HAS, Operator.NOT_HAS):
            value = draw(st.one_of(st.booleans(), st.integers(min_value=-3, max_value=10)))
        return Condition(draw(st.sampled_from(NAMES)), operator, value)
    cls = draw(st.sampled_from([AllOf, AnyOf, NoneOf]))
    terms = draw(st.lists(expressions(depth=depth - 1), min_size=1, max_size=3))
    return cls(tuple(terms))


@composite
def growing_expressions(draw, depth=2):
    """Expressions built only from has / >= / > under all / any."""
    if depth == 0 or draw(st.booleans()):
        name = draw(st.sampled_from(NAMES))
        kind = draw(st.sampled_from(["has", ">=", ">"]))
        if kind == "has":
            return Condition(name, Operator.HAS)
        return Condition(name, Operator(kind), draw(st.integers(min_value=0, max_value=6)))
    cls = draw(st.sampled_from([AllOf, AnyOf]))
    return cls(tuple(draw(st.lists(growing_expressions(depth=depth - 1), min_size=1, max_size=3))))


@composite
def growth(draw):
    """A quality map and a "more true" version of it."""
    before, after = {}, {}
    for name in NAMES:
        kind = draw(st.sampled_from(["missing", "bool", "int"]))
        if kind == "bool":
            before[name] = draw(st.booleans())
            after[name] = before[name] or draw(st.booleans())
        elif kind == "int":
            before[name] = draw(st.integers(min_value=0, max_value=6))
            after[name] = before[name] + draw(st.integers(min_value=0, max_value=4))
        elif draw(st.booleans()):
            after[name] = draw(st.one_of(st.just(True), st.integers(min_value=1, max_value=6)))
    return before, after


class TestParsePrerequisites:
    """Tests for the JSON form of prerequisites."""

    def test_empty_means_no_prerequisites(self):
        assert parse_prerequisites(None) is None
        assert parse_prerequisites({}) is None
        assert check_prerequisites(None, {}) is True

    def test_nested_expression(self):
        expr = parse_prerequisites({
            "all": [
                {"quality": "journey_begun", "operator": "==", "value": True},
                {"any": [
                    {"quality": "courage", "operator": "gte", "value": 3},
                    {"quality": "mentor_discovered"},
                ]},
            ]
        })

        assert expr == AllOf((
            Condition("journey_begun", Operator.EQ, True),
            AnyOf((Condition("courage", Operator.GE, 3), Condition("mentor_discovered", Operator.HAS))),
        ))
        assert referenced_qualities(expr) == {"journey_begun", "courage", "mentor_discovered"}

    def test_list_reads_as_all(self):
        expr = parse_prerequisites([{"quality": "a"}, {"quality": "b", "value": 2}])
        assert expr == AllOf((Condition("a", Operator.HAS), Condition("b", Operator.EQ, 2)))

    def test_unknown_operator_raises(self):
        with pytest.raises(PrerequisiteError):
            parse_prerequisites({"quality": "courage", "operator": "approximately", "value": 3})

    def test_unrecognized_shape_raises(self):
        with pytest.raises(PrerequisiteError):
            parse_prerequisites({"something": "else"})
        with pytest.raises(PrerequisiteError):
            parse_prerequisites({"all": "journey_begun"})

    @given(expressions())
    def test_json_form_round_trips(self, expr):
        assert parse_prerequisites(to_dict(expr)) == expr


class TestCheckPrerequisites:
    """Tests for prerequisite evaluation."""

    def test_has_and_not_has(self):
        assert check_prerequisites(Condition("journey_begun"), {"journey_begun": True})
        assert not check_prerequisites(Condition("journey_begun"), {})
        assert check_prerequisites(Condition("journey_begun", Operator.NOT_HAS), {})

    @pytest.mark.parametrize("value", [0, False, ""])
    def test_has_means_the_quality_exists(self, value):
        assert check_prerequisites(Condition("courage"), {"courage": value})
        assert not check_prerequisites(Condition("courage", Operator.NOT_HAS), {"courage": value})

    def test_zero_count_needs_a_comparison(self):
        expr = Condition("areas_explored", Operator.GT, 0)
        assert not check_prerequisites(expr, {"areas_explored": 0})
        assert check_prerequisites(expr, {"areas_explored": 1})

    def test_ordered_comparison_needs_integers(self):
        expr = Condition("courage", Operator.GE, 3)
        assert check_prerequisites(expr, {"courage": 3})
        assert not check_prerequisites(expr, {"courage": 2})
        # bool is not an int here, and missing is never >= anything
        assert not check_prerequisites(expr, {"courage": True})
        assert not check_prerequisites(expr, {})

    def test_equality_is_type_strict(self):
        assert not check_prerequisites(Condition("flag", Operator.EQ, 1), {"flag": True})
        assert check_prerequisites(Condition("flag", Operator.NE, 1), {"flag": True})
        assert check_prerequisites(Condition("home", Operator.EQ, "north"), {"home": "north"})

    def test_none_of(self):
        expr = NoneOf((Condition("a"), Condition("b")))
        assert check_prerequisites(expr, {})
        assert not check_prerequisites(expr, {"b": 1})

    @given(expressions(), quality_maps())
    def test_evaluation_is_referentially_transparent(self, expr, qualities):
        snapshot = dict(qualities)
        first = check_prerequisites(expr, qualities)
        second = check_prerequisites(expr, qualities)
        assert first == second
        assert qualities == snapshot

    @given(growing_expressions(), growth())
    def test_availability_is_monotonic(self, expr, maps):
        before, after = maps
        if check_prerequisites(expr, before):
            assert check_prerequisites(expr, after)
