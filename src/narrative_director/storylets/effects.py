"""Storylet and content effects on qualities."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Union

from ..exceptions import EffectError
from ..models.qualities import CURRENT_ACT, MILESTONES, QualityValue
from .progression import progression_stage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SetQuality:
    quality: str
    value: QualityValue


@dataclass(frozen=True)
class IncrementQuality:
    quality: str
    amount: int = 1


@dataclass(frozen=True)
class UnlockStorylet:
    storylet_id: str

    @property
    def quality(self) -> str:
        return unlock_quality(self.storylet_id)


@dataclass(frozen=True)
class ProgressNarrative:
    milestone: str


Effect = Union[SetQuality, IncrementQuality, UnlockStorylet, ProgressNarrative]


def unlock_quality(storylet_id: str) -> str:
    return f"storylet_{storylet_id}_unlocked"


def parse_effect(data: Mapping[str, Any]) -> Effect | None:
    """Build an effect from its JSON form.

    Unknown effect types are logged and skipped (returns None).

    Raises:
        EffectError: Known type with missing or mistyped fields.
    """
    if not isinstance(data, Mapping):
        raise EffectError(f"Effect must be an object, got {type(data).__name__}")

    effect_type = data.get("type")
    try:
        if effect_type == "set_quality":
            value = data["value"]
            if not isinstance(value, (bool, int, str)):
                raise EffectError(f"set_quality value must be bool, int or string: {value!r}")
            return SetQuality(quality=str(data["quality"]), value=value)
        if effect_type == "increment_quality":
            amount = data.get("amount", 1)
            if isinstance(amount, bool) or not isinstance(amount, int):
                raise EffectError(f"increment_quality amount must be an integer: {amount!r}")
            return IncrementQuality(quality=str(data["quality"]), amount=amount)
        if effect_type == "unlock_storylet":
            return UnlockStorylet(storylet_id=str(data["storylet_id"]))
        if effect_type == "progress_narrative":
            return ProgressNarrative(milestone=str(data["milestone"]))
    except KeyError as e:
        raise EffectError(f"{effect_type} effect missing field {e}") from e

    logger.warning("Unknown effect type %r, skipping", effect_type)
    return None


def effect_to_dict(effect: Effect) -> dict:
    if isinstance(effect, SetQuality):
        return {"type": "set_quality", "quality": effect.quality, "value": effect.value}
    if isinstance(effect, IncrementQuality):
        return {"type": "increment_quality", "quality": effect.quality, "amount": effect.amount}
    if isinstance(effect, UnlockStorylet):
        return {"type": "unlock_storylet", "storylet_id": effect.storylet_id}
    if isinstance(effect, ProgressNarrative):
        return {"type": "progress_narrative", "milestone": effect.milestone}
    raise TypeError(f"Not an effect: {effect!r}")


@dataclass
class StagedQualities:
    """Quality writes computed from effects, not yet committed."""

    writes: dict[str, QualityValue] = field(default_factory=dict)
    locks: set[str] = field(default_factory=set)

    def touched(self) -> set[str]:
        return set(self.writes) | self.locks


def apply_effects(effects: list[Effect], qualities: Mapping[str, QualityValue]) -> StagedQualities:
    """Compute the quality writes for a list of effects, in order.

    Pure: ``qualities`` is not modified. Later effects see the results of
    earlier ones.

    Raises:
        EffectError: An increment targets a non-integer quality.
    """
    view = dict(qualities)
    staged = StagedQualities()

    def write(name: str, value: QualityValue) -> None:
        view[name] = value
        staged.writes[name] = value

    for effect in effects:
        if isinstance(effect, SetQuality):
            write(effect.quality, effect.value)
        elif isinstance(effect, IncrementQuality):
            current = view.get(effect.quality, 0)
            if isinstance(current, bool) or not isinstance(current, int):
                raise EffectError(f"Cannot increment non-integer quality {effect.quality!r}")
            write(effect.quality, current + effect.amount)
        elif isinstance(effect, UnlockStorylet):
            write(effect.quality, True)
        elif isinstance(effect, ProgressNarrative):
            write(effect.milestone, True)
            if effect.milestone in MILESTONES:
                staged.locks.add(effect.milestone)
            write(CURRENT_ACT, progression_stage(view))
        else:
            raise TypeError(f"Not an effect: {effect!r}")

    return staged
