"""Content generation: quests, outcomes, revisions, and templated fallbacks."""

from narrative_director.generate.generator import Brief, ContentGenerator
from narrative_director.generate.templates import fallback_outcome, fallback_quest

__all__ = ["Brief", "ContentGenerator", "fallback_outcome", "fallback_quest"]
