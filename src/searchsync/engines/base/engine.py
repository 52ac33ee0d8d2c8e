"""Base search engine — Abstract interface for all search backend connectors.

Every backend implements this interface once. An engine is responsible for:
  1. Connection lifecycle and a cheap liveness probe
  2. Remote index lifecycle (create, delete, apply schema/settings)
  3. Document writes keyed by ``objectID``
  4. Translating ``SearchOptions`` to the native query and the native
     response back to ``CanonicalSearchResult``

Engines hold no per-query state and are safe to share across concurrent
callers.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from datetime import UTC, datetime
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from searchsync.engines.base.normalize import infer_field_type, normalise_date_fields
from searchsync.exceptions import ConfigurationError
from searchsync.models.index import Index
from searchsync.models.mapping import FieldMapping, FieldType
from searchsync.models.options import SearchOptions
from searchsync.models.result import CanonicalSearchResult

logger = logging.getLogger(__name__)


class EngineHealth(BaseModel):
    """Health status of a search engine connection."""

    status: str = Field(description="Health status: healthy, degraded, unhealthy")
    latency_ms: int = Field(default=0, description="Latency of the probe in ms")
    last_check: str | None = Field(default=None, description="ISO timestamp of the probe")
    message: str | None = Field(default=None, description="Additional health message")


class SearchEngine(ABC):
    """Abstract base class for search engine adapters.

    Args:
        index_prefix: Prefix prepended to every remote index name, used to
            namespace environments sharing one backend.
        **kwargs: Engine-specific connection settings.
    """

    supports_atomic_swap: ClassVar[bool] = False
    date_format: ClassVar[str] = "iso"

    def __init__(self, index_prefix: str = "", **kwargs: Any) -> None:
        self._index_prefix = index_prefix or ""
        self._extra_kwargs = kwargs

    @property
    @abstractmethod
    def name(self) -> str:
        """Engine type tag (e.g. 'opensearch', 'meilisearch')."""

    # ── Lifecycle ────────────────────────────────────────────────────────

    @abstractmethod
    async def initialize(self) -> None:
        """Create clients and connection pools. Does not probe the backend."""

    @abstractmethod
    async def shutdown(self) -> None:
        """Close connections and release resources."""

    @abstractmethod
    async def test_connection(self) -> bool:
        """Cheap liveness probe. Returns False on auth/network failure, never raises."""

    async def health_check(self) -> EngineHealth:
        start = time.monotonic()
        ok = await self.test_connection()
        latency_ms = int((time.monotonic() - start) * 1000)
        return EngineHealth(
            status="healthy" if ok else "unhealthy",
            latency_ms=latency_ms,
            last_check=datetime.now(UTC).isoformat(),
            message=None if ok else f"{self.name} did not answer the liveness probe",
        )

    # ── Index lifecycle ──────────────────────────────────────────────────

    @abstractmethod
    async def index_exists(self, index: Index) -> bool: ...

    @abstractmethod
    async def create_index(self, index: Index) -> None: ...

    @abstractmethod
    async def delete_index(self, index: Index) -> None: ...

    @abstractmethod
    async def update_index_settings(self, index: Index) -> None:
        """Apply the index's field mappings as native schema/settings. Idempotent."""

    @abstractmethod
    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        """Native schema or settings of the remote index, for diagnostics."""

    @abstractmethod
    async def list_indexes(self) -> list[str]:
        """Names of the remote indexes under this engine's ``index_prefix``."""

    async def ensure_index(self, index: Index) -> None:
        """Create the index when missing, then apply settings."""
        if not await self.index_exists(index):
            await self.create_index(index)
        await self.update_index_settings(index)

    # ── Document writes ──────────────────────────────────────────────────

    @abstractmethod
    async def index_documents(self, index: Index, documents: list[dict[str, Any]]) -> None:
        """Batch upsert keyed by ``objectID``. Replaying the same batch converges."""

    @abstractmethod
    async def delete_document(self, index: Index, document_id: str) -> None:
        """Delete one document. Deleting a missing id is not an error."""

    async def delete_documents(self, index: Index, document_ids: list[str]) -> None:
        for document_id in document_ids:
            await self.delete_document(index, document_id)

    @abstractmethod
    async def flush_index(self, index: Index) -> None:
        """Remove every document with one engine-level clear operation."""

    async def refresh(self, index: Index) -> None:
        """Make recent writes visible to reads. A no-op for engines that wait on writes."""

    # ── Reads ────────────────────────────────────────────────────────────

    @abstractmethod
    async def get_document(self, index: Index, document_id: str) -> dict[str, Any] | None: ...

    @abstractmethod
    async def get_document_count(self, index: Index) -> int: ...

    @abstractmethod
    async def get_all_document_ids(self, index: Index) -> list[str]: ...

    @abstractmethod
    async def search(self, index: Index, query: str, options: SearchOptions) -> CanonicalSearchResult: ...

    async def multi_search(self, queries: list[tuple[Index, str, SearchOptions]]) -> list[CanonicalSearchResult]:
        """Run several searches. Engines with a native multi-search override this."""
        return [await self.search(index, query, options) for index, query, options in queries]

    async def sample_documents(self, index: Index, size: int = 5) -> list[dict[str, Any]]:
        result = await self.search(index, "", SearchOptions(per_page=size))
        return [{k: v for k, v in hit.items() if not k.startswith("_")} for hit in result.hits]

    async def infer_schema_fields(self, index: Index) -> list[tuple[str, FieldType]]:
        """Infer ``(field, type)`` pairs from sampled documents of the remote index.

        Nulls in one document are typed from non-null values in another.
        """
        samples: dict[str, Any] = {}
        for document in await self.sample_documents(index):
            for name, value in document.items():
                if samples.get(name) is None:
                    samples[name] = value
        return [(name, infer_field_type(name, value)) for name, value in samples.items()]

    # ── Atomic swap ──────────────────────────────────────────────────────

    async def build_swap_handle(self, index: Index) -> str:
        return f"{index.handle}_swap"

    async def swap_index(self, index: Index, swap_index: Index) -> None:
        """Repoint ``index`` at the freshly built ``swap_index`` in one step."""
        raise ConfigurationError(f"The {self.name} engine does not support atomic swaps")

    # ── Helpers ──────────────────────────────────────────────────────────

    def index_name(self, index: Index) -> str:
        return f"{self._index_prefix}{index.handle}"

    def prepare_documents(self, index: Index, documents: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Drop documents without an id and normalise date fields to the engine's format."""
        date_fields = index.fields_of_type(FieldType.DATE)
        prepared = []
        for document in documents:
            if not document.get("objectID"):
                logger.warning("Skipping document without objectID for index %s", index.handle)
                continue
            prepared.append(normalise_date_fields(document, date_fields, self.date_format))
        return prepared

    @staticmethod
    def searchable_mappings(index: Index) -> list[FieldMapping]:
        """Enabled text-like mappings, highest weight first."""
        text_types = {FieldType.TEXT, FieldType.KEYWORD, FieldType.FACET}
        mappings = [m for m in index.enabled_mappings() if m.index_field_type in text_types]
        return sorted(mappings, key=lambda m: m.weight, reverse=True)

    @staticmethod
    def timing(options: SearchOptions, started: float, engine_ms: float | None = None) -> dict[str, float] | None:
        if not options.include_timing:
            return None
        timing = {"total_ms": round((time.monotonic() - started) * 1000, 3)}
        if engine_ms is not None:
            timing["engine_ms"] = float(engine_ms)
        return timing
