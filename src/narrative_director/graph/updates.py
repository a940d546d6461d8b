"""Turn accepted content into knowledge graph writes."""

from ..models.content import Outcome, Quest
from ..models.entities import EntityType, EntityUpsert, RelationshipType, RelationshipUpsert, normalize_name
from .extractor import CapitalizedNameExtractor, EntityExtractor
from .merge import SENTIMENT_DELTAS

NPC_IMPORTANCE = 0.5
LOCATION_IMPORTANCE = 0.6
QUEST_IMPORTANCE = 0.8
WORLD_STATE_IMPORTANCE = 0.7
INVOLVES_STRENGTH = 0.7


def plan_quest_updates(
    quest: Quest,
    extractor: EntityExtractor | None = None,
    player_name: str | None = None,
) -> tuple[list[EntityUpsert], list[RelationshipUpsert]]:
    """Entities and relationships implied by an accepted quest."""
    extractor = extractor or CapitalizedNameExtractor()
    excluded = {normalize_name(player_name)} if player_name else set()
    quest_ref = (EntityType.QUEST, quest.title)

    locations = {o.location for o in quest.objectives if o.location}
    npcs = []
    if quest.npc_involved:
        npcs.append(quest.npc_involved)
    # The title is excluded so its own words are not read as names
    for found in extractor.extract(quest.description):
        if normalize_name(found.text) in excluded:
            continue
        if found.label == "LOCATION":
            locations.add(found.text)
        elif found.text not in npcs and found.text not in quest.title:
            npcs.append(found.text)

    entities = [
        EntityUpsert(
            type=EntityType.QUEST,
            name=quest.title,
            attributes={
                "theme": quest.theme,
                "difficulty": quest.difficulty,
                "quest_type": quest.quest_type,
                "status": "active",
            },
            importance=QUEST_IMPORTANCE,
        )
    ]
    entities += [
        EntityUpsert(type=EntityType.NPC, name=name, attributes={"first_quest": quest.title}, importance=NPC_IMPORTANCE)
        for name in npcs
    ]
    entities += [
        EntityUpsert(type=EntityType.LOCATION, name=name, importance=LOCATION_IMPORTANCE)
        for name in sorted(locations)
    ]

    relationships = [
        RelationshipUpsert(
            source=quest_ref,
            target=(EntityType.NPC, name),
            type=RelationshipType.INVOLVES,
            initial_strength=INVOLVES_STRENGTH,
            context=f"Involved in quest: {quest.title}",
        )
        for name in npcs
    ]
    relationships += [
        RelationshipUpsert(
            source=quest_ref,
            target=(EntityType.LOCATION, name),
            type=RelationshipType.TAKES_PLACE_AT,
            initial_strength=INVOLVES_STRENGTH,
        )
        for name in sorted(locations)
    ]
    return entities, relationships


def plan_outcome_updates(
    outcome: Outcome,
    player_name: str,
    quest_title: str | None = None,
) -> tuple[list[EntityUpsert], list[RelationshipUpsert]]:
    """Entities and relationships implied by an accepted quest outcome."""
    player_ref = (EntityType.PLAYER, player_name)
    entities = [EntityUpsert(type=EntityType.PLAYER, name=player_name, importance=1.0)]
    relationships = []

    if quest_title:
        entities.append(
            EntityUpsert(
                type=EntityType.QUEST,
                name=quest_title,
                attributes={"status": "completed"},
                importance=QUEST_IMPORTANCE,
            )
        )

    for interaction in outcome.npc_interactions:
        entities.append(
            EntityUpsert(
                type=EntityType.NPC,
                name=interaction.npc_name,
                attributes={"last_sentiment": interaction.sentiment},
                importance=NPC_IMPORTANCE,
            )
        )
        relationships.append(
            RelationshipUpsert(
                source=player_ref,
                target=(EntityType.NPC, interaction.npc_name),
                type=RelationshipType.KNOWS,
                delta=SENTIMENT_DELTAS[interaction.sentiment],
                initial_strength=0.0,
                context=interaction.context,
            )
        )

    for change in outcome.world_state_changes:
        entities.append(
            EntityUpsert(
                type=EntityType.WORLD_STATE,
                name=change.key,
                attributes={"description": change.description},
                importance=WORLD_STATE_IMPORTANCE,
            )
        )

    return entities, relationships
