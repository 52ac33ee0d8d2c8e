"""SearchSync service — wires settings, engines, content and sync together.

This is the single entrypoint the HTTP API and the CLI talk to:

  - Query: ``search``, ``multi_search``, ``get_document``,
    ``resolve_document``.
  - Management: ``create_remote_index``, ``delete_remote_index``,
    ``apply_settings``, ``import_index``, ``flush``, ``refresh``,
    ``redetect_mappings``, ``validate``, ``status``; ``perform`` dispatches
    by operation name and ``run_for_all`` runs one operation over every
    enabled index.
  - Content events: ``handle_event``.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field

from searchsync.cache.manager import CacheManager
from searchsync.config.settings import Settings
from searchsync.content.repository import ContentRepository, InMemoryContentRepository
from searchsync.embeddings.voyage import EmbeddingProvider, VoyageEmbeddingProvider, resolve_embedding_options
from searchsync.engines.base.engine import SearchEngine
from searchsync.engines.base.registry import EngineRegistry
from searchsync.exceptions import SearchSyncError, ValidationError
from searchsync.mapping.mapper import FieldMapper
from searchsync.mapping.roles import RoleMapCache
from searchsync.mapping.validator import FieldMappingValidator, ValidationReport
from searchsync.models.document import ResolvedDocument, UnresolvedDocument
from searchsync.models.index import Index
from searchsync.models.mapping import FieldRole
from searchsync.models.options import SearchOptions
from searchsync.models.result import CanonicalSearchResult
from searchsync.observability.logging import bind_context, clear_context
from searchsync.store.base import ConfigurationStore, InMemoryConfigurationStore
from searchsync.store.yaml_store import YamlConfigurationStore
from searchsync.sync.events import ContentEvent, PlannedOperation
from searchsync.sync.orchestrator import ImportReport, SyncOrchestrator, load_index
from searchsync.sync.queue import InlineWorkQueue, WorkQueue

logger = logging.getLogger(__name__)


class IndexStatus(BaseModel):
    """Connection and document status of one index."""

    handle: str
    name: str = ""
    engine_type: str
    mode: str
    enabled: bool
    connected: bool = Field(description="Whether the engine answered a liveness probe")
    exists: bool | None = Field(default=None, description="Whether the remote index exists; None when disconnected")
    document_count: int | None = None
    supports_atomic_swap: bool = False
    sync: dict[str, Any] | None = Field(default=None, description="Import and swap state of the index")


class SearchSyncService:
    """Query and management facade over the configured indexes.

    Args:
        settings: Application settings.
        store: Configuration store. Defaults to a YAML store when
            ``settings.config_store`` is set, otherwise in-memory.
        repository: Content repository. Defaults to an empty in-memory one.
        registry: Engine registry. Defaults to the built-in engines.
        queue: Work queue. Defaults to an inline queue.
        embedding_provider: Query embedding provider. Defaults to Voyage
            when an embedding API key is configured.
        cache: Cache used by the embedding provider.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        store: ConfigurationStore | None = None,
        repository: ContentRepository | None = None,
        registry: EngineRegistry | None = None,
        queue: WorkQueue | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        cache: CacheManager | None = None,
    ) -> None:
        self.settings = settings
        if store is None:
            store = (
                YamlConfigurationStore(settings.config_store)
                if settings.config_store
                else InMemoryConfigurationStore()
            )
        self.store = store
        self.repository = repository if repository is not None else InMemoryContentRepository()
        self.registry = registry or EngineRegistry.with_builtins()
        self.queue = queue or InlineWorkQueue(max_attempts=settings.sync.max_attempts)
        self.cache = cache or CacheManager(settings.cache)
        if embedding_provider is None and settings.embeddings.api_key:
            embedding_provider = VoyageEmbeddingProvider(settings.embeddings, self.cache)
        self.embedding_provider = embedding_provider

        self.role_maps = RoleMapCache()
        self.mapper = FieldMapper(self.repository)
        self.validator = FieldMappingValidator(self.repository, self.mapper)
        self.orchestrator = SyncOrchestrator(
            store=self.store,
            repository=self.repository,
            mapper=self.mapper,
            engine_for=self.engine_for,
            queue=self.queue,
            settings=settings.sync,
        )

        self._operations: dict[str, Callable[..., Awaitable[Any]]] = {
            "create": self._op_create,
            "delete": self._op_delete,
            "settings": self._op_settings,
            "import": self._op_import,
            "flush": self._op_flush,
            "refresh": self._op_refresh,
            "redetect": self._op_redetect,
            "validate": self._op_validate,
            "status": self._op_status,
        }

    async def initialize(self) -> None:
        await self.cache.initialize()
        logger.info("searchsync service initialized (environment: %s)", self.settings.environment)

    async def shutdown(self) -> None:
        await self.registry.shutdown_all()
        close = getattr(self.embedding_provider, "close", None)
        if callable(close):
            await close()
        await self.cache.shutdown()
        logger.info("searchsync service shut down")

    # ── Configuration ────────────────────────────────────────────────────

    async def get_index(self, handle: str) -> Index:
        """Raises ``IndexNotFoundError`` for unknown handles."""
        return await load_index(self.store, handle)

    async def list_indexes(self) -> list[Index]:
        return await self.store.all_indexes()

    async def save_index(self, index: Index) -> Index:
        saved = await self.store.save_index(index)
        self.role_maps.invalidate(saved.id)
        return saved

    async def delete_index(self, handle: str, *, delete_remote: bool = False) -> bool:
        """Delete an index configuration and its mappings, optionally the remote index too."""
        index = await self.get_index(handle)
        if delete_remote:
            await self.delete_remote_index(handle)
        self.role_maps.invalidate(index.id)
        return await self.store.delete_index(handle)

    async def engine_for(self, index: Index) -> SearchEngine:
        """Initialized engine for an index.

        Connection settings layer as: the index's ``engine_config``, then
        ``settings.engines[<type>]``, then the environment's engine override.
        """
        config: dict[str, Any] = dict(index.engine_config)
        engine_settings = self.settings.engines.get(index.engine_type)
        if engine_settings is not None:
            config.update(engine_settings.engine_kwargs(index.engine_type))
        override = await self.store.get_override(self.settings.environment)
        config.update(override.for_engine(index.engine_type))
        return await self.registry.engine_for(index.engine_type, **config)

    # ── Queries ──────────────────────────────────────────────────────────

    async def _searchable(self, handle: str) -> Index:
        index = await self.get_index(handle)
        if not index.enabled:
            raise ValidationError(f"Index '{handle}' is disabled", option="index")
        return index

    async def search(
        self,
        handle: str,
        query: str = "",
        options: SearchOptions | dict[str, Any] | None = None,
    ) -> CanonicalSearchResult:
        """Search one index.

        Raises:
            ValidationError: Unknown or disabled index, or malformed options.
            EngineError: The backend call failed.
        """
        index = await self._searchable(handle)
        search_options = await resolve_embedding_options(
            index, query, SearchOptions.parse(options), self.embedding_provider
        )
        engine = await self.engine_for(index)
        logger.debug("Searching %s for %r", handle, query)
        return await engine.search(index, query, search_options)

    async def multi_search(
        self,
        queries: list[tuple[str, str, SearchOptions | dict[str, Any] | None]],
    ) -> list[CanonicalSearchResult]:
        """Run several searches, batched per engine. Results keep the input order."""
        groups: dict[int, tuple[SearchEngine, list[int], list[tuple[Index, str, SearchOptions]]]] = {}
        for position, (handle, query, options) in enumerate(queries):
            index = await self._searchable(handle)
            search_options = await resolve_embedding_options(
                index, query, SearchOptions.parse(options), self.embedding_provider
            )
            engine = await self.engine_for(index)
            _, positions, batch = groups.setdefault(id(engine), (engine, [], []))
            positions.append(position)
            batch.append((index, query, search_options))

        results: list[CanonicalSearchResult | None] = [None] * len(queries)
        for engine, positions, batch in groups.values():
            for position, result in zip(positions, await engine.multi_search(batch), strict=True):
                results[position] = result
        return [r for r in results if r is not None]

    async def get_document(self, handle: str, document_id: str) -> dict[str, Any] | None:
        index = await self.get_index(handle)
        engine = await self.engine_for(index)
        return await engine.get_document(index, str(document_id))

    async def role_map(self, handle: str) -> dict[FieldRole, str]:
        return self.role_maps.get(await self.get_index(handle))

    async def resolve_document(self, handle: str, document_id: str) -> ResolvedDocument:
        return await UnresolvedDocument(handle=handle, id=str(document_id)).resolve(self)

    # ── Management ───────────────────────────────────────────────────────

    @staticmethod
    def _require_synced(index: Index, operation: str) -> None:
        if index.is_readonly:
            raise ValidationError(
                f"Index '{index.handle}' is read-only; '{operation}' is not available", option="index"
            )

    async def create_remote_index(self, handle: str) -> None:
        index = await self.get_index(handle)
        engine = await self.engine_for(index)
        await engine.ensure_index(index)
        logger.info("Created remote index for %s", handle)

    async def delete_remote_index(self, handle: str) -> None:
        index = await self.get_index(handle)
        engine = await self.engine_for(index)
        await engine.delete_index(index)
        logger.info("Deleted remote index for %s", handle)

    async def apply_settings(self, handle: str) -> None:
        index = await self.get_index(handle)
        engine = await self.engine_for(index)
        await engine.update_index_settings(index)
        logger.info("Applied settings to remote index %s", handle)

    async def import_index(self, handle: str) -> ImportReport:
        index = await self.get_index(handle)
        self._require_synced(index, "import")
        return await self.orchestrator.import_index(index)

    async def flush(self, handle: str) -> None:
        index = await self.get_index(handle)
        self._require_synced(index, "flush")
        await self.orchestrator.flush_index(index)

    async def refresh(self, handle: str) -> ImportReport:
        """Rebuild an index, by atomic swap when its engine supports it."""
        index = await self.get_index(handle)
        self._require_synced(index, "refresh")
        return await self.orchestrator.refresh_index(index)

    async def redetect_mappings(self, handle: str, *, fresh: bool = False) -> Index:
        """Re-detect and save an index's field mappings, invalidating its role map."""
        index = await self.get_index(handle)
        engine = await self.engine_for(index) if index.is_readonly else None
        mappings = await self.mapper.redetect_field_mappings(index, fresh=fresh, engine=engine)
        updated = Index.model_validate(
            {**index.model_dump(exclude={"field_mappings"}), "field_mappings": [m.model_dump() for m in mappings]}
        )
        saved = await self.save_index(updated)
        logger.info("Re-detected %d field mappings for %s (fresh=%s)", len(mappings), handle, fresh)
        return saved

    async def validate(
        self,
        handle: str,
        item_id: str | int | None = None,
        site: str | None = None,
    ) -> ValidationReport:
        index = await self.get_index(handle)
        if index.is_readonly:
            return await self.validator.validate_readonly_index(index, await self.engine_for(index))
        return await self.validator.validate_index(index, forced_item_id=item_id, site=site)

    async def status(self, handle: str) -> IndexStatus:
        index = await self.get_index(handle)
        engine = await self.engine_for(index)
        status = IndexStatus(
            handle=index.handle,
            name=index.name,
            engine_type=index.engine_type,
            mode=index.mode.value,
            enabled=index.enabled,
            connected=await engine.test_connection(),
            supports_atomic_swap=engine.supports_atomic_swap,
            sync=self.orchestrator.state(index.handle).model_dump(mode="json"),
        )
        if status.connected:
            status.exists = await engine.index_exists(index)
            if status.exists:
                status.document_count = await engine.get_document_count(index)
        return status

    @property
    def operations(self) -> list[str]:
        return list(self._operations)

    async def perform(self, handle: str, operation: str, **kwargs: Any) -> dict[str, Any]:
        """Run one management operation by name and return a JSON-ready result.

        Raises:
            ValidationError: Unknown operation or index.
        """
        runner = self._operations.get(operation)
        if runner is None:
            raise ValidationError(
                f"Unknown operation '{operation}'. Available: {', '.join(self._operations)}", option="operation"
            )
        bind_context(index=handle, operation=operation)
        try:
            result = await runner(handle, **kwargs)
        finally:
            clear_context()
        return {"index": handle, "operation": operation, **result}

    async def run_for_all(self, operation: str, **kwargs: Any) -> dict[str, dict[str, Any]]:
        """Run one operation over every enabled index.

        A failing index is reported in its own entry and logged; the others
        still run.
        """
        results: dict[str, dict[str, Any]] = {}
        for index in await self.store.all_indexes():
            if not index.enabled:
                continue
            try:
                results[index.handle] = await self.perform(index.handle, operation, **kwargs)
            except SearchSyncError as e:
                logger.error("%s failed for index %s: %s", operation, index.handle, e)
                results[index.handle] = {
                    "index": index.handle,
                    "operation": operation,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }
        return results

    async def _op_create(self, handle: str) -> dict[str, Any]:
        await self.create_remote_index(handle)
        return {"created": True}

    async def _op_delete(self, handle: str) -> dict[str, Any]:
        await self.delete_remote_index(handle)
        return {"deleted": True}

    async def _op_settings(self, handle: str) -> dict[str, Any]:
        await self.apply_settings(handle)
        return {"applied": True}

    async def _op_import(self, handle: str) -> dict[str, Any]:
        return {"report": (await self.import_index(handle)).to_dict()}

    async def _op_flush(self, handle: str) -> dict[str, Any]:
        await self.flush(handle)
        return {"flushed": True}

    async def _op_refresh(self, handle: str) -> dict[str, Any]:
        return {"report": (await self.refresh(handle)).to_dict()}

    async def _op_redetect(self, handle: str, fresh: bool = False) -> dict[str, Any]:
        index = await self.redetect_mappings(handle, fresh=fresh)
        return {"field_mappings": [m.model_dump(mode="json") for m in index.field_mappings]}

    async def _op_validate(self, handle: str, item_id: str | None = None, site: str | None = None) -> dict[str, Any]:
        report = await self.validate(handle, item_id=item_id, site=site)
        return {"report": report.model_dump(mode="json"), "counts": report.counts}

    async def _op_status(self, handle: str) -> dict[str, Any]:
        status = await self.status(handle)
        return {"status": status.model_dump(mode="json")}

    # ── Content events ───────────────────────────────────────────────────

    async def handle_event(self, event: ContentEvent) -> list[PlannedOperation]:
        return await self.orchestrator.handle_event(event)
