"""Quality store: per-character narrative state variables."""

import logging
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import Protocol

from ..models.entities import utcnow
from ..models.qualities import Quality, QualityValue

logger = logging.getLogger(__name__)


class QualityStore(Protocol):
    async def get_qualities(self, character_id: str) -> dict[str, QualityValue]: ...

    async def get_records(self, character_id: str) -> dict[str, Quality]: ...

    async def set_many(
        self,
        character_id: str,
        writes: Mapping[str, QualityValue],
        lock: Iterable[str] = (),
    ) -> list[Quality]: ...


class InMemoryQualityStore:
    """Qualities are created on first write and never deleted."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._qualities: dict[str, dict[str, Quality]] = {}
        self._clock = clock

    async def get_qualities(self, character_id: str) -> dict[str, QualityValue]:
        return {name: q.value for name, q in self._qualities.get(character_id, {}).items()}

    async def get_records(self, character_id: str) -> dict[str, Quality]:
        return dict(self._qualities.get(character_id, {}))

    async def get_quality(self, character_id: str, name: str) -> Quality | None:
        return self._qualities.get(character_id, {}).get(name)

    async def set_quality(self, character_id: str, name: str, value: QualityValue) -> Quality:
        written = await self.set_many(character_id, {name: value})
        # A locked quality keeps its value
        return written[0] if written else self._qualities[character_id][name]

    async def set_many(
        self,
        character_id: str,
        writes: Mapping[str, QualityValue],
        lock: Iterable[str] = (),
    ) -> list[Quality]:
        """Write a batch of qualities together.

        Locked qualities keep their value; callers are expected to have
        filtered such writes out already, so one reaching here is logged.
        """
        now = self._clock()
        current = self._qualities.get(character_id, {})
        locks = set(lock)
        staged: dict[str, Quality] = {}
        for name, value in writes.items():
            existing = current.get(name)
            if existing and existing.locked and existing.value != value:
                logger.warning("Ignoring write to locked quality %s for %s", name, character_id)
                continue
            staged[name] = Quality(
                character_id=character_id,
                name=name,
                value=value,
                locked=name in locks or bool(existing and existing.locked),
                updated_at=now,
            )
        for name in locks - set(staged):
            if name in current and not current[name].locked:
                staged[name] = current[name].model_copy(update={"locked": True, "updated_at": now})

        self._qualities.setdefault(character_id, {}).update(staged)
        return list(staged.values())

    async def lock(self, character_id: str, name: str) -> None:
        await self.set_many(character_id, {}, lock=[name])

    def export_state(self) -> dict[str, list[dict]]:
        return {
            cid: [q.model_dump(mode="json") for q in qualities.values()]
            for cid, qualities in self._qualities.items()
        }

    def import_state(self, state: dict[str, list[dict]]) -> None:
        for cid, records in state.items():
            bucket = self._qualities.setdefault(cid, {})
            for raw in records:
                quality = Quality.model_validate(raw)
                bucket[quality.name] = quality
