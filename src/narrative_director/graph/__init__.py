"""Per-character knowledge graph: entities, relationships, and extraction."""

from narrative_director.graph.extractor import CapitalizedNameExtractor, EntityExtractor, ExtractedEntity
from narrative_director.graph.merge import SENTIMENT_DELTAS, apply_strength_delta, merge_entity
from narrative_director.graph.store import KnowledgeGraph, KnowledgeGraphStore
from narrative_director.graph.updates import plan_outcome_updates, plan_quest_updates

__all__ = [
    "CapitalizedNameExtractor",
    "EntityExtractor",
    "ExtractedEntity",
    "KnowledgeGraph",
    "KnowledgeGraphStore",
    "SENTIMENT_DELTAS",
    "apply_strength_delta",
    "merge_entity",
    "plan_outcome_updates",
    "plan_quest_updates",
]
