"""Pure merge rules for knowledge graph writes."""

from ..models.entities import Entity, Relationship, RelationshipUpsert

# Relationship strength change per interaction sentiment
SENTIMENT_DELTAS: dict[str, float] = {
    "positive": 0.1,
    "negative": -0.1,
    "neutral": 0.02,
}


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))


def merge_entity(existing: Entity, incoming: Entity) -> Entity:
    """Merge a re-mention into an existing entity.

    Attributes merge key by key with the incoming value winning, timestamps
    widen, and importance never decreases. Merging the same fact twice gives
    the same result as merging it once.
    """
    return existing.model_copy(
        update={
            "attributes": {**existing.attributes, **incoming.attributes},
            "first_mentioned": min(existing.first_mentioned, incoming.first_mentioned),
            "last_updated": max(existing.last_updated, incoming.last_updated),
            "importance": max(existing.importance, incoming.importance),
        }
    )


def apply_strength_delta(current: float, delta: float) -> float:
    """Additive strength update, clamped to [0, 1]."""
    return clamp(current + delta)


def merge_relationship(existing: Relationship | None, update: RelationshipUpsert, new: Relationship) -> Relationship:
    """Apply a relationship upsert on top of the existing edge, if any.

    ``new`` is the edge as it would be created from scratch; it supplies the
    ids and timestamp for this write.
    """
    if existing is None:
        return new.model_copy(
            update={"strength": apply_strength_delta(clamp(update.initial_strength), update.delta)}
        )
    return existing.model_copy(
        update={
            "strength": apply_strength_delta(existing.strength, update.delta),
            "context": update.context or existing.context,
            "last_interaction": max(existing.last_interaction, new.last_interaction),
        }
    )
