"""YAML-file configuration store.

Same record layout as the in-memory store, written to one YAML file::

    indexes: [...]
    field_mappings: [...]   # each with an index_id
    overrides: [...]

The file is rewritten after every change.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml  # type: ignore[import-untyped]

from searchsync.models.index import Index
from searchsync.models.override import EngineOverride
from searchsync.store.base import InMemoryConfigurationStore

logger = logging.getLogger(__name__)


class YamlConfigurationStore(InMemoryConfigurationStore):
    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self.path = Path(path)
        if self.path.exists():
            self._read()

    async def save_index(self, index: Index) -> Index:
        saved = await super().save_index(index)
        self._write()
        return saved

    async def delete_index(self, handle: str) -> bool:
        deleted = await super().delete_index(handle)
        if deleted:
            self._write()
        return deleted

    async def save_override(self, override: EngineOverride) -> EngineOverride:
        saved = await super().save_override(override)
        self._write()
        return saved

    def _read(self) -> None:
        with open(self.path) as f:
            data = yaml.safe_load(f) or {}

        self._indexes = {record["id"]: record for record in data.get("indexes") or []}
        self._mappings = {record["uid"]: record for record in data.get("field_mappings") or []}
        self._overrides = {record["environment"]: record for record in data.get("overrides") or []}
        logger.info("Loaded %d index configurations from %s", len(self._indexes), self.path)

    def _write(self) -> None:
        data = {
            "indexes": list(self._indexes.values()),
            "field_mappings": list(self._mappings.values()),
            "overrides": list(self._overrides.values()),
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w") as f:
            yaml.safe_dump(data, f, sort_keys=False, allow_unicode=True)
