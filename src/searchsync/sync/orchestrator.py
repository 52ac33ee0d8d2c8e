"""Sync Orchestrator — keeps remote indexes consistent with content changes.

Content events become queued jobs (see ``searchsync.sync.events`` and
``searchsync.sync.jobs``). Every job reloads the index configuration and
the current item state when it runs, so jobs are safe to run more than
once and in any order.

Per index there are two independent state machines:

  - import: idle → importing → success | partial_failure | failed
  - swap:   idle → swapping → idle

An atomic rebuild builds a temporary index, imports everything into it,
verifies the document count and repoints the live index in one engine
call. Queries against the live index see the old or the new content,
never a partial index.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from searchsync.config.settings import SyncSettings
from searchsync.content.repository import ContentRepository
from searchsync.engines.base.engine import SearchEngine
from searchsync.exceptions import EngineError, IndexNotFoundError, PartialBatchFailure, ValidationError
from searchsync.mapping.mapper import FieldMapper
from searchsync.models.content import ContentItem
from searchsync.models.index import Index
from searchsync.store.base import ConfigurationStore
from searchsync.sync.events import (
    ContentEvent,
    ContentEventType,
    IndexOperation,
    PlannedOperation,
    plan_operations,
    target_indexes,
)
from searchsync.sync.jobs import BulkIndexJob, CleanupOrphansJob, DeleteItemJob, IndexItemJob, Job
from searchsync.sync.queue import WorkQueue

logger = logging.getLogger(__name__)

EngineFactory = Callable[[Index], Awaitable[SearchEngine]]


class ImportState(StrEnum):
    IDLE = "idle"
    IMPORTING = "importing"
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FAILED = "failed"


class SwapState(StrEnum):
    IDLE = "idle"
    SWAPPING = "swapping"


class ImportReport(BaseModel):
    """Outcome of one full import."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    index: str
    total: int = Field(default=0, description="Items in scope when the import started")
    batches: int = Field(default=0, description="Batches queued")
    indexed: int = Field(default=0, description="Documents upserted so far")
    failures: list[PartialBatchFailure] = Field(default_factory=list)
    orphans_removed: int = 0
    swapped: bool = False

    @field_serializer("failures")
    def _serialize_failures(self, failures: list[PartialBatchFailure]) -> list[dict[str, object]]:
        return [f.to_dict() for f in failures]

    @property
    def failed_batches(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict[str, object]:
        return {**self.model_dump(mode="json"), "failed_batches": self.failed_batches}


class IndexSyncState(BaseModel):
    handle: str
    import_state: ImportState = ImportState.IDLE
    swap_state: SwapState = SwapState.IDLE
    last_report: ImportReport | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SyncOrchestrator:
    """Drives incremental and bulk indexing through the engine adapters.

    Args:
        store: Configuration store; jobs reload their index from it.
        repository: Content repository.
        mapper: Field mapper used to resolve items into documents.
        engine_for: Async factory returning the engine for an index.
        queue: Work queue. An ``InlineWorkQueue`` gets this orchestrator attached.
        settings: Sync settings.
    """

    def __init__(
        self,
        store: ConfigurationStore,
        repository: ContentRepository,
        mapper: FieldMapper,
        engine_for: EngineFactory,
        queue: WorkQueue,
        settings: SyncSettings | None = None,
    ) -> None:
        self._store = store
        self._repository = repository
        self._mapper = mapper
        self._engine_for = engine_for
        self._queue = queue
        self.settings = settings or SyncSettings()
        self._states: dict[str, IndexSyncState] = {}
        self._reports: dict[str, ImportReport] = {}

        attach = getattr(queue, "attach", None)
        if callable(attach):
            attach(self.execute)

    # ── State ────────────────────────────────────────────────────────────

    def state(self, handle: str) -> IndexSyncState:
        if handle not in self._states:
            self._states[handle] = IndexSyncState(handle=handle)
        return self._states[handle]

    def _set_state(
        self,
        handle: str,
        *,
        import_state: ImportState | None = None,
        swap_state: SwapState | None = None,
    ) -> None:
        state = self.state(handle)
        if import_state is not None:
            state.import_state = import_state
        if swap_state is not None:
            state.swap_state = swap_state
        state.updated_at = datetime.now(UTC)

    def _guard_rebuild(self, index: Index) -> None:
        state = self.state(index.handle)
        if state.swap_state == SwapState.SWAPPING:
            raise ValidationError(f"Index '{index.handle}' is being swapped; try again when it finishes", option="index")

    # ── Content events ───────────────────────────────────────────────────

    async def handle_event(self, event: ContentEvent) -> list[PlannedOperation]:
        """Queue the index operations caused by one content event.

        With ``index_relations`` on, saves, restores and deletes also queue
        re-index jobs for live items that reference the changed item. Jobs
        are deduplicated by ``index:item:site`` within one event.

        Returns:
            The operations that were queued.
        """
        if event.type != ContentEventType.DELETED and not self.settings.sync_on_save:
            return []

        indexes = await self._store.all_indexes()
        operations = plan_operations(event, indexes)

        if (
            self.settings.index_relations
            and event.type != ContentEventType.SLUG_CHANGED
            and not (event.item.is_draft or event.item.is_revision)
        ):
            for related in await self._repository.referencing(event.item.id):
                if not related.is_live or str(related.id) == str(event.item.id):
                    continue
                operations += [
                    PlannedOperation(
                        index_handle=index.handle,
                        operation=IndexOperation.UPSERT,
                        item_id=str(related.id),
                        site=related.site,
                    )
                    for index in target_indexes(related, indexes)
                ]

        queued: list[PlannedOperation] = []
        seen: set[str] = set()
        for operation in operations:
            if operation.key in seen:
                continue
            seen.add(operation.key)
            queued.append(operation)
            if operation.operation == IndexOperation.UPSERT:
                await self._queue.push(
                    IndexItemJob(index_handle=operation.index_handle, item_id=operation.item_id, site=operation.site)
                )
            else:
                await self._queue.push(
                    DeleteItemJob(index_handle=operation.index_handle, item_id=operation.item_id, site=operation.site)
                )

        if queued:
            logger.info("Queued %d index operations for %s of item %s", len(queued), event.type, event.item.id)
        return queued

    async def handle_element_save(self, item: ContentItem) -> list[PlannedOperation]:
        return await self.handle_event(ContentEvent(type=ContentEventType.SAVED, item=item))

    async def handle_element_delete(self, item: ContentItem) -> list[PlannedOperation]:
        return await self.handle_event(ContentEvent(type=ContentEventType.DELETED, item=item))

    async def handle_element_restore(self, item: ContentItem) -> list[PlannedOperation]:
        return await self.handle_event(ContentEvent(type=ContentEventType.RESTORED, item=item))

    async def handle_slug_change(self, item: ContentItem) -> list[PlannedOperation]:
        return await self.handle_event(ContentEvent(type=ContentEventType.SLUG_CHANGED, item=item))

    # ── Job execution ────────────────────────────────────────────────────

    async def execute(self, job: Job) -> None:
        """Run one queued job. Raises on failure so the queue can retry."""
        index = await self._store.get_index(job.index_handle)
        if index is None or not index.enabled:
            logger.debug("Skipping %s: index missing or disabled", job.describe())
            return

        if isinstance(job, IndexItemJob):
            await self.index_item(index, job.item_id, job.site)
        elif isinstance(job, DeleteItemJob):
            # Re-checked at execution time: a restored item is upserted instead
            await self.index_item(index, job.item_id, job.site)
        elif isinstance(job, BulkIndexJob):
            await self._execute_batch(index, job)
        elif isinstance(job, CleanupOrphansJob):
            await self._execute_cleanup(index)
        else:
            raise TypeError(f"Unsupported job type: {type(job).__name__}")

    async def index_item(self, index: Index, item_id: str | int, site: str | None = None) -> bool:
        """Upsert the item's current state, or delete it when it is gone or no longer live.

        Returns:
            True when a document was upserted.
        """
        item = await self._repository.get(item_id, site)
        if item is None or not item.is_live or not index.covers(item):
            await self.delete_item(index, item_id)
            return False

        engine = await self._engine_for(index)
        document = self._mapper.resolve_element(item, index)
        await engine.index_documents(index, [document])
        logger.debug("Indexed item %s into %s", item_id, index.handle)
        return True

    async def delete_item(self, index: Index, item_id: str | int) -> None:
        engine = await self._engine_for(index)
        await engine.delete_document(index, str(item_id))
        logger.debug("Removed item %s from %s", item_id, index.handle)

    # ── Bulk import ──────────────────────────────────────────────────────

    async def import_index(self, index: Index) -> ImportReport:
        """Queue a full import of the index's scoped content.

        The remote index is created and configured first. One batch job per
        ``batch_size`` items is queued, followed by an orphan cleanup job.
        A failing batch is recorded and the other batches still run.

        Returns:
            The import report. With an inline queue it is final on return.
        """
        self._guard_rebuild(index)
        engine = await self._engine_for(index)
        await engine.ensure_index(index)

        total = await self._repository.count(index.scope)
        batch_size = self.settings.batch_size
        report = ImportReport(index=index.handle, total=total, batches=-(-total // batch_size))
        self._reports[index.handle] = report
        self._set_state(index.handle, import_state=ImportState.IMPORTING)
        self.state(index.handle).last_report = report
        logger.info("Importing %d items into %s in %d batches", total, index.handle, report.batches)

        for offset in range(0, total, batch_size):
            await self._queue.push(BulkIndexJob(index_handle=index.handle, offset=offset, limit=batch_size))
        await self._queue.push(CleanupOrphansJob(index_handle=index.handle))

        if self.state(index.handle).import_state == ImportState.IMPORTING and report.total == 0:
            self._finish_import(index.handle)
        return report

    async def run_import_batch(self, index: Index, offset: int, limit: int) -> int:
        """Resolve one page of items and upsert it as one engine call.

        Returns:
            Number of documents sent.
        """
        items = await self._repository.fetch(index.scope, offset, limit)
        if not items:
            return 0
        documents = [self._mapper.resolve_element(item, index) for item in items]
        engine = await self._engine_for(index)
        await engine.index_documents(index, documents)
        logger.info("Indexed batch of %d documents into %s (offset %d)", len(documents), index.handle, offset)
        return len(documents)

    async def run_cleanup(self, index: Index) -> int:
        """Delete remote documents whose items are no longer in scope.

        Returns:
            Number of orphan documents removed.
        """
        engine = await self._engine_for(index)
        if not await engine.index_exists(index):
            return 0

        remote_ids = await engine.get_all_document_ids(index)
        if not remote_ids:
            return 0
        live_ids = set(await self._repository.all_ids(index.scope))
        orphans = [doc_id for doc_id in remote_ids if doc_id not in live_ids]
        if not orphans:
            logger.info("No orphan documents found in index %s", index.handle)
            return 0

        logger.info("Removing %d orphan documents from index %s", len(orphans), index.handle)
        size = self.settings.cleanup_batch_size
        for start in range(0, len(orphans), size):
            await engine.delete_documents(index, orphans[start : start + size])
        return len(orphans)

    async def _execute_batch(self, index: Index, job: BulkIndexJob) -> None:
        report = self._reports.get(index.handle)
        try:
            indexed = await self.run_import_batch(index, job.offset, job.limit)
        except Exception as e:
            logger.error("Batch at offset %d failed for index %s: %s", job.offset, index.handle, e)
            if report is not None:
                report.failures = [f for f in report.failures if f.offset != job.offset]
                report.failures.append(
                    PartialBatchFailure(str(e), index=index.handle, offset=job.offset, limit=job.limit, cause=e)
                )
            raise
        if report is not None:
            report.failures = [f for f in report.failures if f.offset != job.offset]
            report.indexed += indexed

    async def _execute_cleanup(self, index: Index) -> None:
        report = self._reports.get(index.handle)
        try:
            removed = await self.run_cleanup(index)
            if report is not None:
                report.orphans_removed += removed
        finally:
            self._finish_import(index.handle)

    def _finish_import(self, handle: str) -> None:
        report = self._reports.get(handle)
        if report is None:
            return
        if not report.failures:
            final = ImportState.SUCCESS
        elif report.failed_batches >= report.batches:
            final = ImportState.FAILED
        else:
            final = ImportState.PARTIAL_FAILURE
        self._set_state(handle, import_state=final)
        logger.info(
            "Import of %s finished: %s (%d indexed, %d failed batches)",
            handle,
            final,
            report.indexed,
            report.failed_batches,
        )

    # ── Flush, refresh and atomic swap ───────────────────────────────────

    async def flush_index(self, index: Index) -> None:
        """Clear every document with one engine-level operation."""
        engine = await self._engine_for(index)
        await engine.flush_index(index)
        logger.info("Flushed index %s", index.handle)

    async def supports_atomic_swap(self, index: Index) -> bool:
        engine = await self._engine_for(index)
        return engine.supports_atomic_swap

    async def refresh_index(self, index: Index) -> ImportReport:
        """Rebuild the index, atomically when the engine supports swaps.

        Without swap support this falls back to flush followed by a full
        import, which leaves the index briefly incomplete.
        """
        if await self.supports_atomic_swap(index):
            return await self.import_index_for_swap(index)

        logger.warning(
            "Engine for index %s has no atomic swap; refreshing by flush and re-import (index briefly incomplete)",
            index.handle,
        )
        self._guard_rebuild(index)
        await self.flush_index(index)
        return await self.import_index(index)

    async def import_index_for_swap(self, index: Index) -> ImportReport:
        """Build a temporary index, import into it, verify it and swap it live.

        Batches run inline rather than through the queue so the swap only
        happens after every batch succeeded.

        Raises:
            ValidationError: If a swap or import of this index is already running.
            EngineError: If the temporary index could not be fully built. The
                live index is left untouched and the temporary index is deleted.
        """
        state = self.state(index.handle)
        if state.swap_state == SwapState.SWAPPING or state.import_state == ImportState.IMPORTING:
            raise ValidationError(f"Index '{index.handle}' is already being rebuilt", option="index")

        self._set_state(index.handle, swap_state=SwapState.SWAPPING, import_state=ImportState.IMPORTING)
        engine = await self._engine_for(index)
        report = ImportReport(index=index.handle)
        state.last_report = report
        swap_index: Index | None = None
        try:
            swap_handle = await engine.build_swap_handle(index)
            swap_index = index.model_copy(update={"handle": swap_handle})
            logger.info("Building temporary index %s for %s", swap_handle, index.handle)

            if await engine.index_exists(swap_index):
                await engine.delete_index(swap_index)
            await engine.ensure_index(swap_index)

            report.total = await self._repository.count(index.scope)
            batch_size = self.settings.batch_size
            for offset in range(0, report.total, batch_size):
                report.batches += 1
                try:
                    report.indexed += await self._import_into(index, swap_index, engine, offset, batch_size)
                except Exception as e:
                    logger.error("Swap batch at offset %d failed for index %s: %s", offset, index.handle, e)
                    report.failures.append(
                        PartialBatchFailure(str(e), index=index.handle, offset=offset, limit=batch_size, cause=e)
                    )

            await engine.refresh(swap_index)
            count = await engine.get_document_count(swap_index)
            if report.failures or count < report.indexed:
                raise EngineError(
                    f"Temporary index for '{index.handle}' is incomplete "
                    f"({count} of {report.indexed} documents, {report.failed_batches} failed batches)"
                )

            await engine.swap_index(index, swap_index)
            report.swapped = True
            self._set_state(index.handle, import_state=ImportState.SUCCESS)
            logger.info("Atomic swap completed for index %s (%d documents)", index.handle, report.indexed)
            return report
        except Exception:
            self._set_state(index.handle, import_state=ImportState.FAILED)
            if swap_index is not None and not report.swapped:
                await self._discard(engine, swap_index)
            raise
        finally:
            self._set_state(index.handle, swap_state=SwapState.IDLE)

    async def _import_into(
        self,
        index: Index,
        target: Index,
        engine: SearchEngine,
        offset: int,
        limit: int,
    ) -> int:
        items = await self._repository.fetch(index.scope, offset, limit)
        if not items:
            return 0
        documents = [self._mapper.resolve_element(item, index) for item in items]
        await engine.index_documents(target, documents)
        return len(documents)

    @staticmethod
    async def _discard(engine: SearchEngine, swap_index: Index) -> None:
        try:
            await engine.delete_index(swap_index)
        except EngineError as e:
            logger.warning("Could not delete temporary index %s: %s", swap_index.handle, e)


async def load_index(store: ConfigurationStore, handle: str) -> Index:
    """Load an index configuration or raise ``IndexNotFoundError``."""
    index = await store.get_index(handle)
    if index is None:
        raise IndexNotFoundError(handle)
    return index
