"""Per-character knowledge graph.

Each character owns one ``networkx.MultiDiGraph``: nodes are entity ids
carrying an ``Entity``, edges are keyed by relationship type and carry a
``Relationship``. Nothing crosses character boundaries.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Protocol

import networkx as nx

from ..models.entities import (
    Entity,
    EntityGraph,
    EntityType,
    EntityUpsert,
    Relationship,
    RelationshipQuery,
    RelationshipUpsert,
    entity_id,
    normalize_name,
    utcnow,
)
from .merge import merge_entity, merge_relationship

logger = logging.getLogger(__name__)


class KnowledgeGraphStore(Protocol):
    """What the director needs from a knowledge graph backend."""

    async def get_entity_graph(self, character_id: str) -> EntityGraph: ...

    async def apply_batch(
        self,
        character_id: str,
        entities: Iterable[EntityUpsert],
        relationships: Iterable[RelationshipUpsert],
    ) -> tuple[list[Entity], list[Relationship]]: ...


class KnowledgeGraph:
    """In-memory knowledge graph store."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._graphs: dict[str, nx.MultiDiGraph] = {}
        self._clock = clock

    def _graph(self, character_id: str) -> nx.MultiDiGraph:
        if character_id not in self._graphs:
            self._graphs[character_id] = nx.MultiDiGraph()
        return self._graphs[character_id]

    async def upsert_entity(self, character_id: str, upsert: EntityUpsert) -> Entity:
        entities, _ = self._commit(character_id, [upsert], [])
        return entities[0]

    async def upsert_relationship(self, character_id: str, upsert: RelationshipUpsert) -> Relationship:
        _, relationships = self._commit(character_id, [], [upsert])
        return relationships[0]

    async def apply_batch(
        self,
        character_id: str,
        entities: Iterable[EntityUpsert],
        relationships: Iterable[RelationshipUpsert],
    ) -> tuple[list[Entity], list[Relationship]]:
        """Stage every upsert, then commit them together."""
        return self._commit(character_id, list(entities), list(relationships))

    async def get_entity(self, character_id: str, entity_type: EntityType, name: str) -> Entity | None:
        graph = self._graphs.get(character_id)
        node = entity_id(entity_type, name)
        if graph is None or node not in graph:
            return None
        return graph.nodes[node]["entity"]

    async def get_entity_graph(self, character_id: str) -> EntityGraph:
        graph = self._graphs.get(character_id)
        if graph is None:
            return EntityGraph()
        entities = tuple(data["entity"] for _, data in graph.nodes(data=True))
        relationships = tuple(data["relationship"] for _, _, data in graph.edges(data=True))
        return EntityGraph(entities=entities, relationships=relationships)

    async def query_relationships(self, character_id: str, query: RelationshipQuery) -> list[Relationship]:
        """Filtered scan over a character's relationships, oldest first."""
        graph = self._graphs.get(character_id)
        if graph is None:
            return []

        wanted = normalize_name(query.entity_name) if query.entity_name else None
        results = []
        for source, target, data in graph.edges(data=True):
            rel: Relationship = data["relationship"]
            if query.relationship_type and rel.type != query.relationship_type:
                continue
            if query.before and rel.established_at >= query.before:
                continue
            if wanted:
                names = {
                    normalize_name(graph.nodes[source]["entity"].name),
                    normalize_name(graph.nodes[target]["entity"].name),
                }
                if wanted not in names:
                    continue
            results.append(rel)
        return sorted(results, key=lambda r: r.established_at)

    def _commit(
        self,
        character_id: str,
        entity_upserts: list[EntityUpsert],
        relationship_upserts: list[RelationshipUpsert],
    ) -> tuple[list[Entity], list[Relationship]]:
        graph = self._graph(character_id)
        now = self._clock()
        staged_entities: dict[str, Entity] = {}

        def stage_entity(upsert: EntityUpsert) -> Entity:
            incoming = Entity(
                character_id=character_id,
                type=upsert.type,
                name=upsert.name,
                attributes=dict(upsert.attributes),
                importance=upsert.importance,
                first_mentioned=now,
                last_updated=now,
            )
            existing = staged_entities.get(incoming.id)
            if existing is None and incoming.id in graph:
                existing = graph.nodes[incoming.id]["entity"]
            merged = merge_entity(existing, incoming) if existing else incoming
            staged_entities[merged.id] = merged
            return merged

        def ensure_endpoint(ref: tuple[EntityType, str]) -> str:
            node = entity_id(*ref)
            if node not in staged_entities and node not in graph:
                stage_entity(EntityUpsert(type=ref[0], name=ref[1]))
            return node

        touched_entities = [stage_entity(u) for u in entity_upserts]

        staged_edges: dict[tuple[str, str, str], Relationship] = {}
        touched_edges = []
        for upsert in relationship_upserts:
            source = ensure_endpoint(upsert.source)
            target = ensure_endpoint(upsert.target)
            key = (source, target, upsert.type.value)
            existing = staged_edges.get(key)
            if existing is None and graph.has_edge(source, target, key=upsert.type.value):
                existing = graph.edges[source, target, upsert.type.value]["relationship"]
            fresh = Relationship(
                character_id=character_id,
                source_id=source,
                target_id=target,
                type=upsert.type,
                context=upsert.context,
                established_at=now,
                last_interaction=now,
            )
            merged = merge_relationship(existing, upsert, fresh)
            staged_edges[key] = merged
            touched_edges.append(merged)

        # Everything validated; commit
        for node, entity in staged_entities.items():
            graph.add_node(node, entity=entity)
        for (source, target, key), rel in staged_edges.items():
            graph.add_edge(source, target, key=key, relationship=rel)

        logger.debug(
            "Graph commit for %s: %d entities, %d relationships",
            character_id, len(staged_entities), len(staged_edges),
        )
        return touched_entities, touched_edges

    def export_state(self) -> dict[str, dict]:
        """Serializable dump of every character graph."""
        state = {}
        for character_id, graph in self._graphs.items():
            state[character_id] = {
                "entities": [d["entity"].model_dump(mode="json") for _, d in graph.nodes(data=True)],
                "relationships": [
                    d["relationship"].model_dump(mode="json") for _, _, d in graph.edges(data=True)
                ],
            }
        return state

    def import_state(self, state: dict[str, dict]) -> None:
        for character_id, data in state.items():
            graph = self._graph(character_id)
            for raw in data.get("entities", []):
                entity = Entity.model_validate(raw)
                graph.add_node(entity.id, entity=entity)
            for raw in data.get("relationships", []):
                rel = Relationship.model_validate(raw)
                graph.add_edge(rel.source_id, rel.target_id, key=rel.type.value, relationship=rel)
