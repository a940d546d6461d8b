"""Storylet prerequisite expressions.

Expressions are a small tagged union: three composites (``AllOf``,
``AnyOf``, ``NoneOf``) over leaf ``Condition`` comparisons against a
quality map. Evaluation is pure; the same expression and qualities always
give the same answer.

JSON form::

    {"all": [
        {"quality": "journey_begun", "operator": "==", "value": true},
        {"any": [{"quality": "courage", "operator": ">=", "value": 3},
                 {"quality": "mentor_discovered", "operator": "has"}]}
    ]}
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Union

from ..exceptions import PrerequisiteError
from ..models.qualities import QualityType, QualityValue


class Operator(str, Enum):
    EQ = "=="
    NE = "!="
    GT = ">"
    GE = ">="
    LT = "<"
    LE = "<="
    HAS = "has"  # the quality is set, whatever its value
    NOT_HAS = "not_has"


OPERATOR_ALIASES: dict[str, Operator] = {
    "=": Operator.EQ,
    "eq": Operator.EQ,
    "equals": Operator.EQ,
    "ne": Operator.NE,
    "not_equals": Operator.NE,
    "gt": Operator.GT,
    "greater_than": Operator.GT,
    "gte": Operator.GE,
    "ge": Operator.GE,
    "greater_equal": Operator.GE,
    "lt": Operator.LT,
    "less_than": Operator.LT,
    "lte": Operator.LE,
    "le": Operator.LE,
    "less_equal": Operator.LE,
    "exists": Operator.HAS,
    "not_exists": Operator.NOT_HAS,
}


@dataclass(frozen=True)
class Condition:
    quality: str
    operator: Operator = Operator.HAS
    value: QualityValue | None = None


@dataclass(frozen=True)
class AllOf:
    terms: tuple["PrereqExpr", ...] = ()


@dataclass(frozen=True)
class AnyOf:
    terms: tuple["PrereqExpr", ...] = ()


@dataclass(frozen=True)
class NoneOf:
    terms: tuple["PrereqExpr", ...] = ()


PrereqExpr = Union[Condition, AllOf, AnyOf, NoneOf]

_COMPOSITES = {"all": AllOf, "any": AnyOf, "none": NoneOf}


def parse_operator(raw: str) -> Operator:
    key = str(raw).strip().lower()
    try:
        return Operator(key)
    except ValueError:
        pass
    if key in OPERATOR_ALIASES:
        return OPERATOR_ALIASES[key]
    raise PrerequisiteError(f"Unknown prerequisite operator: {raw!r}")


def parse_prerequisites(data: Any) -> PrereqExpr | None:
    """Build an expression from its JSON form.

    ``None`` and empty dicts mean "no prerequisites". A bare list is read as
    ``all``. A leaf without an operator means ``has``, or ``==`` when a value
    is given.

    Raises:
        PrerequisiteError: Unknown operator or unrecognized shape.
    """
    if data is None or data == {}:
        return None
    if isinstance(data, list):
        return AllOf(tuple(_parse_required(term) for term in data))
    if not isinstance(data, Mapping):
        raise PrerequisiteError(f"Prerequisite must be an object or list, got {type(data).__name__}")

    for key, cls in _COMPOSITES.items():
        if key in data:
            terms = data[key]
            if not isinstance(terms, list):
                raise PrerequisiteError(f"'{key}' expects a list of expressions")
            return cls(tuple(_parse_required(term) for term in terms))

    if "quality" in data:
        if "operator" in data:
            operator = parse_operator(data["operator"])
        else:
            operator = Operator.EQ if "value" in data else Operator.HAS
        return Condition(quality=str(data["quality"]), operator=operator, value=data.get("value"))

    raise PrerequisiteError(f"Unrecognized prerequisite expression: {data!r}")


def _parse_required(data: Any) -> PrereqExpr:
    expr = parse_prerequisites(data)
    if expr is None:
        raise PrerequisiteError("Empty expression inside a composite")
    return expr


def check_prerequisites(expr: PrereqExpr | None, qualities: Mapping[str, QualityValue]) -> bool:
    """Evaluate an expression against a quality map."""
    if expr is None:
        return True
    if isinstance(expr, Condition):
        return _check_condition(expr, qualities)
    if isinstance(expr, AllOf):
        return all(check_prerequisites(t, qualities) for t in expr.terms)
    if isinstance(expr, AnyOf):
        return any(check_prerequisites(t, qualities) for t in expr.terms)
    if isinstance(expr, NoneOf):
        return not any(check_prerequisites(t, qualities) for t in expr.terms)
    raise TypeError(f"Not a prerequisite expression: {expr!r}")


def _check_condition(cond: Condition, qualities: Mapping[str, QualityValue]) -> bool:
    current = qualities.get(cond.quality)

    if cond.operator is Operator.HAS:
        return current is not None
    if cond.operator is Operator.NOT_HAS:
        return current is None
    if cond.operator is Operator.EQ:
        return _same_type(current, cond.value) and current == cond.value
    if cond.operator is Operator.NE:
        return not (_same_type(current, cond.value) and current == cond.value)

    # Ordered comparisons only between integers; anything else is false
    if not (_is_int(current) and _is_int(cond.value)):
        return False
    if cond.operator is Operator.GT:
        return current > cond.value
    if cond.operator is Operator.GE:
        return current >= cond.value
    if cond.operator is Operator.LT:
        return current < cond.value
    if cond.operator is Operator.LE:
        return current <= cond.value
    raise TypeError(f"Unhandled operator: {cond.operator!r}")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _same_type(a: Any, b: Any) -> bool:
    if a is None or b is None:
        return False
    return QualityType.of(a) == QualityType.of(b)


def to_dict(expr: PrereqExpr | None) -> dict | None:
    """JSON form of an expression (inverse of parse_prerequisites)."""
    if expr is None:
        return None
    if isinstance(expr, Condition):
        data: dict = {"quality": expr.quality, "operator": expr.operator.value}
        if expr.value is not None:
            data["value"] = expr.value
        return data
    for key, cls in _COMPOSITES.items():
        if isinstance(expr, cls):
            return {key: [to_dict(t) for t in expr.terms]}
    raise TypeError(f"Not a prerequisite expression: {expr!r}")


def referenced_qualities(expr: PrereqExpr | None) -> set[str]:
    """Every quality name an expression reads."""
    if expr is None:
        return set()
    if isinstance(expr, Condition):
        return {expr.quality}
    names: set[str] = set()
    for term in expr.terms:
        names |= referenced_qualities(term)
    return names
