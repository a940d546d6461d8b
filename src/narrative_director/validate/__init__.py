"""Validation: the four gates, rule-compliance judges, and self-consistency."""

from narrative_director.validate.consistency import ConsistencyReport, SelfConsistencyChecker, similarity
from narrative_director.validate.judge import LLMJudge, RuleBasedJudge, RuleJudge
from narrative_director.validate.pipeline import EffectPlan, ValidationPipeline
from narrative_director.validate.rules import ForbiddenPhrase, NpcProfile, RuleSet, default_rule_set

__all__ = [
    "ConsistencyReport",
    "EffectPlan",
    "ForbiddenPhrase",
    "LLMJudge",
    "NpcProfile",
    "RuleBasedJudge",
    "RuleJudge",
    "RuleSet",
    "SelfConsistencyChecker",
    "ValidationPipeline",
    "default_rule_set",
    "similarity",
]
