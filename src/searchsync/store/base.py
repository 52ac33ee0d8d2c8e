"""Configuration store contract and the in-memory implementation.

Records mirror the persisted layout: one record per Index, one record per
FieldMapping carrying an ``index_id`` foreign key, and one override record
per environment. Indexes come back out of the store with their mappings
ordered by ``sort_order``.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol, runtime_checkable

from searchsync.exceptions import ValidationError
from searchsync.models.index import Index
from searchsync.models.override import EngineOverride

logger = logging.getLogger(__name__)


@runtime_checkable
class ConfigurationStore(Protocol):
    """Persistence for index configurations and engine overrides."""

    async def get_index(self, handle: str) -> Index | None: ...

    async def all_indexes(self) -> list[Index]: ...

    async def save_index(self, index: Index) -> Index:
        """Insert or replace an index and all of its mappings."""
        ...

    async def delete_index(self, handle: str) -> bool:
        """Delete an index and its mappings. Returns False when nothing was stored."""
        ...

    async def get_override(self, environment: str = "default") -> EngineOverride: ...

    async def save_override(self, override: EngineOverride) -> EngineOverride: ...


class InMemoryConfigurationStore:
    """``ConfigurationStore`` holding ``model_dump`` records in dictionaries."""

    def __init__(self, indexes: list[Index] | None = None) -> None:
        self._indexes: dict[str, dict[str, Any]] = {}
        self._mappings: dict[str, dict[str, Any]] = {}
        self._overrides: dict[str, dict[str, Any]] = {}
        for index in indexes or []:
            self._put(index)

    async def get_index(self, handle: str) -> Index | None:
        for record in self._indexes.values():
            if record["handle"] == handle:
                return self._load(record)
        return None

    async def all_indexes(self) -> list[Index]:
        return [self._load(record) for record in sorted(self._indexes.values(), key=lambda r: r["handle"])]

    async def save_index(self, index: Index) -> Index:
        self._put(index)
        logger.info("Saved index configuration '%s' (%d mappings)", index.handle, len(index.field_mappings))
        return self._load(self._indexes[index.id])

    async def delete_index(self, handle: str) -> bool:
        record = next((r for r in self._indexes.values() if r["handle"] == handle), None)
        if record is None:
            return False
        del self._indexes[record["id"]]
        self._drop_mappings(record["id"])
        logger.info("Deleted index configuration '%s'", handle)
        return True

    async def get_override(self, environment: str = "default") -> EngineOverride:
        record = self._overrides.get(environment)
        if record is None:
            return EngineOverride(environment=environment)
        return EngineOverride.model_validate(record)

    async def save_override(self, override: EngineOverride) -> EngineOverride:
        # Revalidate so empty values are dropped even for mutated instances
        override = EngineOverride.model_validate(override.model_dump())
        self._overrides[override.environment] = override.model_dump(mode="json")
        return override

    # ── Records ──────────────────────────────────────────────────────────

    def _put(self, index: Index) -> None:
        for record in self._indexes.values():
            if record["handle"] == index.handle and record["id"] != index.id:
                raise ValidationError(f"An index with handle '{index.handle}' already exists", option="handle")

        self._indexes[index.id] = index.model_dump(mode="json", exclude={"field_mappings"})
        self._drop_mappings(index.id)
        for mapping in index.field_mappings:
            self._mappings[mapping.uid] = {**mapping.model_dump(mode="json"), "index_id": index.id}

    def _drop_mappings(self, index_id: str) -> None:
        for uid in [uid for uid, m in self._mappings.items() if m["index_id"] == index_id]:
            del self._mappings[uid]

    def _load(self, record: dict[str, Any]) -> Index:
        mappings = sorted(
            (
                {k: v for k, v in m.items() if k != "index_id"}
                for m in self._mappings.values()
                if m["index_id"] == record["id"]
            ),
            key=lambda m: m["sort_order"],
        )
        return Index.model_validate({**record, "field_mappings": mappings})
