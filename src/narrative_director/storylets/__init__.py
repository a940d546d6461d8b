"""Storylets and qualities: prerequisite evaluation, effects, and availability."""

from narrative_director.storylets.catalog import Storylet, default_storylets, load_storylets
from narrative_director.storylets.effects import (
    Effect,
    IncrementQuality,
    ProgressNarrative,
    SetQuality,
    StagedQualities,
    UnlockStorylet,
    apply_effects,
    parse_effect,
)
from narrative_director.storylets.engine import StoryletEngine
from narrative_director.storylets.prerequisites import (
    AllOf,
    AnyOf,
    Condition,
    NoneOf,
    Operator,
    check_prerequisites,
    parse_prerequisites,
    referenced_qualities,
)
from narrative_director.storylets.progression import progression_stage
from narrative_director.storylets.qualities import InMemoryQualityStore, QualityStore

__all__ = [
    "AllOf",
    "AnyOf",
    "Condition",
    "Effect",
    "IncrementQuality",
    "InMemoryQualityStore",
    "NoneOf",
    "Operator",
    "ProgressNarrative",
    "QualityStore",
    "SetQuality",
    "StagedQualities",
    "Storylet",
    "StoryletEngine",
    "UnlockStorylet",
    "apply_effects",
    "check_prerequisites",
    "default_storylets",
    "load_storylets",
    "parse_effect",
    "parse_prerequisites",
    "progression_stage",
    "referenced_qualities",
]
