"""JSON snapshot of the in-memory stores, so the CLI can keep a story between runs."""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path

from .exceptions import StoreError
from .graph.store import KnowledgeGraph
from .memory.store import InMemoryMemoryStore
from .storylets.qualities import InMemoryQualityStore

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


class WorldState:
    """Owns the three stores and their on-disk snapshot."""

    def __init__(
        self,
        path: str | Path,
        graph: KnowledgeGraph | None = None,
        qualities: InMemoryQualityStore | None = None,
        memory: InMemoryMemoryStore | None = None,
    ):
        self.path = Path(path)
        self.graph = graph or KnowledgeGraph()
        self.qualities = qualities or InMemoryQualityStore()
        self.memory = memory or InMemoryMemoryStore()
        self.characters: dict[str, dict] = {}

    @classmethod
    def open(cls, path: str | Path) -> "WorldState":
        """Load the snapshot at ``path`` if it exists, else start empty."""
        state = cls(path)
        if state.path.exists():
            state.load()
        return state

    def load(self) -> None:
        """Fill the stores from the snapshot file.

        Raises:
            StoreError: The file is not a readable snapshot.
        """
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreError(f"Cannot read snapshot {self.path}: {e}") from e

        version = data.get("version")
        if version != SNAPSHOT_VERSION:
            raise StoreError(f"Unsupported snapshot version {version!r} in {self.path}")

        self.graph.import_state(data.get("graph", {}))
        self.qualities.import_state(data.get("qualities", {}))
        self.memory.import_state(data.get("memory", {}))
        self.characters.update(data.get("characters", {}))
        logger.info("Loaded snapshot %s (%d characters)", self.path, len(self.characters))

    def save(self) -> None:
        """Write all stores to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": SNAPSHOT_VERSION,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "characters": self.characters,
            "graph": self.graph.export_state(),
            "qualities": self.qualities.export_state(),
            "memory": self.memory.export_state(),
        }
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        tmp.replace(self.path)
        logger.debug("Saved snapshot %s", self.path)
