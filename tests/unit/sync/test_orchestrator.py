"""Tests for the sync orchestrator: events, jobs, bulk imports and atomic swaps."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from searchsync.config.settings import SyncSettings
from searchsync.content.repository import InMemoryContentRepository
from searchsync.engines.base.engine import SearchEngine
from searchsync.engines.memory.engine import MemoryEngine
from searchsync.exceptions import EngineError, IndexNotFoundError, QueryError, ValidationError
from searchsync.mapping.mapper import FieldMapper
from searchsync.models.content import ContentItem
from searchsync.models.index import Index, IndexScope
from searchsync.models.options import SearchOptions
from searchsync.store.base import InMemoryConfigurationStore
from searchsync.sync.events import IndexOperation
from searchsync.sync.jobs import BulkIndexJob, CleanupOrphansJob, DeleteItemJob, IndexItemJob, Job
from searchsync.sync.orchestrator import ImportState, SwapState, SyncOrchestrator, load_index
from searchsync.sync.queue import InlineWorkQueue


class RecordingQueue:
    """Collects jobs without running them."""

    def __init__(self) -> None:
        self.jobs: list[Job] = []

    async def push(self, job: Job) -> None:
        self.jobs.append(job)


def build(
    store: InMemoryConfigurationStore,
    repository: InMemoryContentRepository,
    mapper: FieldMapper,
    engine: SearchEngine,
    queue: Any,
    **settings: Any,
) -> SyncOrchestrator:
    async def engine_for(index: Index) -> SearchEngine:
        return engine

    return SyncOrchestrator(
        store, repository, mapper, engine_for, queue, settings=SyncSettings(batch_size=2, **settings)
    )


@pytest.fixture
def queue() -> InlineWorkQueue:
    return InlineWorkQueue(max_attempts=1)


@pytest.fixture
def orchestrator(
    store: InMemoryConfigurationStore,
    repository: InMemoryContentRepository,
    mapper: FieldMapper,
    memory_engine: MemoryEngine,
    queue: InlineWorkQueue,
) -> SyncOrchestrator:
    return build(store, repository, mapper, memory_engine, queue)


async def stale_document(engine: MemoryEngine, index: Index) -> None:
    await engine.index_documents(index, [{"objectID": "77", "title": "Gone"}])


# ── Content events ───────────────────────────────────────────────────────────


class TestHandleEvent:
    async def test_save_indexes_item(
        self, orchestrator: SyncOrchestrator, memory_engine: MemoryEngine, index: Index, articles: list[ContentItem]
    ) -> None:
        operations = await orchestrator.handle_element_save(articles[0])

        assert [op.key for op in operations] == ["articles:1:default"]
        document = await memory_engine.get_document(index, "1")
        assert document is not None
        assert document["title"] == "London Bridge"
        assert document["url"] == "articles/london-bridge"

    async def test_save_of_disabled_item_removes_it(
        self,
        orchestrator: SyncOrchestrator,
        repository: InMemoryContentRepository,
        memory_engine: MemoryEngine,
        index: Index,
        articles: list[ContentItem],
    ) -> None:
        await memory_engine.index_documents(index, [{"objectID": "1", "title": "London Bridge"}])
        disabled = articles[0].model_copy(update={"status": "disabled"})
        repository.put(disabled)

        operations = await orchestrator.handle_element_save(disabled)

        assert [op.operation for op in operations] == [IndexOperation.DELETE]
        assert await memory_engine.get_document(index, "1") is None

    async def test_jobs_use_current_item_state(
        self,
        orchestrator: SyncOrchestrator,
        repository: InMemoryContentRepository,
        memory_engine: MemoryEngine,
        index: Index,
        articles: list[ContentItem],
    ) -> None:
        await memory_engine.index_documents(index, [{"objectID": "1", "title": "London Bridge"}])
        repository.remove(1)

        await orchestrator.handle_element_save(articles[0])

        assert await memory_engine.get_document(index, "1") is None

    async def test_delete(
        self,
        orchestrator: SyncOrchestrator,
        repository: InMemoryContentRepository,
        memory_engine: MemoryEngine,
        index: Index,
        articles: list[ContentItem],
    ) -> None:
        await memory_engine.index_documents(index, [{"objectID": "2", "title": "Tower Bridge"}])
        repository.remove(2)

        await orchestrator.handle_element_delete(articles[1])

        assert await memory_engine.get_document_count(index) == 0

    async def test_delete_of_trashed_item(
        self,
        orchestrator: SyncOrchestrator,
        repository: InMemoryContentRepository,
        memory_engine: MemoryEngine,
        index: Index,
        articles: list[ContentItem],
    ) -> None:
        await memory_engine.index_documents(index, [{"objectID": "2", "title": "Tower Bridge"}])
        trashed = articles[1].model_copy(update={"status": "disabled"})
        repository.put(trashed)

        await orchestrator.handle_element_delete(trashed)

        assert await memory_engine.get_document(index, "2") is None

    async def test_stale_delete_after_restore_keeps_item(
        self, orchestrator: SyncOrchestrator, memory_engine: MemoryEngine, index: Index
    ) -> None:
        # The item was deleted, then restored; the restore's upsert ran first
        await orchestrator.execute(IndexItemJob(index_handle="articles", item_id="1", site="default"))
        await orchestrator.execute(DeleteItemJob(index_handle="articles", item_id="1", site="default"))

        document = await memory_engine.get_document(index, "1")
        assert document is not None
        assert document["title"] == "London Bridge"

    async def test_jobs_converge_in_any_order(
        self,
        orchestrator: SyncOrchestrator,
        repository: InMemoryContentRepository,
        memory_engine: MemoryEngine,
        index: Index,
    ) -> None:
        upsert = IndexItemJob(index_handle="articles", item_id="1", site="default")
        delete = DeleteItemJob(index_handle="articles", item_id="1", site="default")
        repository.remove(1)

        await orchestrator.execute(delete)
        await orchestrator.execute(upsert)
        await orchestrator.execute(delete)

        assert await memory_engine.get_document(index, "1") is None

    async def test_drafts_are_ignored(self, orchestrator: SyncOrchestrator, articles: list[ContentItem]) -> None:
        draft = articles[0].model_copy(update={"is_draft": True})
        assert await orchestrator.handle_element_save(draft) == []

    async def test_sync_on_save_disabled(
        self,
        store: InMemoryConfigurationStore,
        repository: InMemoryContentRepository,
        mapper: FieldMapper,
        articles: list[ContentItem],
    ) -> None:
        queue = RecordingQueue()
        orchestrator = build(store, repository, mapper, MemoryEngine(), queue, sync_on_save=False)

        assert await orchestrator.handle_element_save(articles[0]) == []
        assert await orchestrator.handle_element_restore(articles[0]) == []
        await orchestrator.handle_element_delete(articles[0])

        assert queue.jobs == [DeleteItemJob(index_handle="articles", item_id="1", site="default")]

    async def test_jobs_are_descriptors(
        self,
        store: InMemoryConfigurationStore,
        repository: InMemoryContentRepository,
        mapper: FieldMapper,
        articles: list[ContentItem],
    ) -> None:
        queue = RecordingQueue()
        orchestrator = build(store, repository, mapper, MemoryEngine(), queue)

        await orchestrator.handle_slug_change(articles[2])

        assert queue.jobs == [IndexItemJob(index_handle="articles", item_id="3", site="default")]


class TestRelations:
    async def test_referencing_items_are_reindexed(
        self, orchestrator: SyncOrchestrator, memory_engine: MemoryEngine, index: Index, author: ContentItem
    ) -> None:
        operations = await orchestrator.handle_element_save(author)

        assert sorted(op.item_id for op in operations) == ["1", "2", "3"]
        assert {op.operation for op in operations} == {IndexOperation.UPSERT}
        assert await memory_engine.get_document_count(index) == 3

    async def test_non_live_references_are_skipped(
        self,
        orchestrator: SyncOrchestrator,
        repository: InMemoryContentRepository,
        author: ContentItem,
        articles: list[ContentItem],
    ) -> None:
        repository.put(articles[1].model_copy(update={"status": "pending"}))

        operations = await orchestrator.handle_element_save(author)

        assert sorted(op.item_id for op in operations) == ["1", "3"]

    async def test_delete_reindexes_references(self, orchestrator: SyncOrchestrator, author: ContentItem) -> None:
        operations = await orchestrator.handle_element_delete(author)
        assert len(operations) == 3

    async def test_slug_change_does_not_cascade(self, orchestrator: SyncOrchestrator, author: ContentItem) -> None:
        assert await orchestrator.handle_slug_change(author) == []

    async def test_relations_disabled(
        self,
        store: InMemoryConfigurationStore,
        repository: InMemoryContentRepository,
        mapper: FieldMapper,
        author: ContentItem,
    ) -> None:
        queue = RecordingQueue()
        orchestrator = build(store, repository, mapper, MemoryEngine(), queue, index_relations=False)

        assert await orchestrator.handle_element_save(author) == []
        assert queue.jobs == []


# ── Job execution ────────────────────────────────────────────────────────────


class TestExecute:
    async def test_missing_index_is_skipped(self, orchestrator: SyncOrchestrator, memory_engine: MemoryEngine) -> None:
        await orchestrator.execute(IndexItemJob(index_handle="missing", item_id="1"))
        assert await memory_engine.list_indexes() == []

    async def test_disabled_index_is_skipped(
        self,
        orchestrator: SyncOrchestrator,
        store: InMemoryConfigurationStore,
        memory_engine: MemoryEngine,
        index: Index,
    ) -> None:
        index.enabled = False
        await store.save_index(index)

        await orchestrator.execute(IndexItemJob(index_handle="articles", item_id="1"))

        assert await memory_engine.get_document_count(index) == 0

    async def test_unsupported_job(self, orchestrator: SyncOrchestrator) -> None:
        with pytest.raises(TypeError, match="Unsupported job type"):
            await orchestrator.execute(Job(index_handle="articles"))

    async def test_index_item_returns_whether_upserted(self, orchestrator: SyncOrchestrator, index: Index) -> None:
        assert await orchestrator.index_item(index, 1) is True
        assert await orchestrator.index_item(index, 900) is False
        assert await orchestrator.index_item(index, 12345) is False


# ── Bulk import ──────────────────────────────────────────────────────────────


class TestImportIndex:
    async def test_full_import(
        self, orchestrator: SyncOrchestrator, queue: InlineWorkQueue, memory_engine: MemoryEngine, index: Index
    ) -> None:
        report = await orchestrator.import_index(index)

        assert (report.total, report.batches, report.indexed, report.failed_batches) == (3, 2, 3, 0)
        assert sorted(await memory_engine.get_all_document_ids(index)) == ["1", "2", "3"]
        assert queue.completed == 3
        state = orchestrator.state("articles")
        assert state.import_state == ImportState.SUCCESS
        assert state.last_report is report
        assert report.to_dict()["failed_batches"] == 0

    async def test_queues_batches_then_cleanup(
        self,
        store: InMemoryConfigurationStore,
        repository: InMemoryContentRepository,
        mapper: FieldMapper,
        memory_engine: MemoryEngine,
        index: Index,
    ) -> None:
        queue = RecordingQueue()
        orchestrator = build(store, repository, mapper, memory_engine, queue)

        await orchestrator.import_index(index)

        assert queue.jobs == [
            BulkIndexJob(index_handle="articles", offset=0, limit=2),
            BulkIndexJob(index_handle="articles", offset=2, limit=2),
            CleanupOrphansJob(index_handle="articles"),
        ]
        assert orchestrator.state("articles").import_state == ImportState.IMPORTING
        assert await memory_engine.index_exists(index) is True

    async def test_orphans_are_removed(
        self, orchestrator: SyncOrchestrator, memory_engine: MemoryEngine, index: Index
    ) -> None:
        await stale_document(memory_engine, index)

        report = await orchestrator.import_index(index)

        assert report.orphans_removed == 1
        assert await memory_engine.get_document(index, "77") is None

    async def test_partial_failure(
        self,
        orchestrator: SyncOrchestrator,
        queue: InlineWorkQueue,
        memory_engine: MemoryEngine,
        index: Index,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        original = memory_engine.index_documents

        async def reject_first_batch(target: Index, documents: list[dict[str, Any]]) -> None:
            if any(d["objectID"] == "1" for d in documents):
                raise QueryError("mapping rejected")
            await original(target, documents)

        monkeypatch.setattr(memory_engine, "index_documents", reject_first_batch)

        report = await orchestrator.import_index(index)

        assert report.indexed == 1
        assert report.to_dict()["failures"] == [{"index": "articles", "offset": 0, "limit": 2, "error": "mapping rejected"}]
        assert orchestrator.state("articles").import_state == ImportState.PARTIAL_FAILURE
        assert len(queue.failures) == 1
        assert await memory_engine.get_all_document_ids(index) == ["3"]

    async def test_every_batch_failing(
        self,
        orchestrator: SyncOrchestrator,
        memory_engine: MemoryEngine,
        index: Index,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def reject(target: Index, documents: list[dict[str, Any]]) -> None:
            raise QueryError("read only")

        monkeypatch.setattr(memory_engine, "index_documents", reject)

        report = await orchestrator.import_index(index)

        assert report.failed_batches == 2
        assert orchestrator.state("articles").import_state == ImportState.FAILED

    async def test_retried_batch_clears_failure(
        self,
        store: InMemoryConfigurationStore,
        repository: InMemoryContentRepository,
        mapper: FieldMapper,
        memory_engine: MemoryEngine,
        index: Index,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        orchestrator = build(store, repository, mapper, memory_engine, InlineWorkQueue(max_attempts=2))
        original = memory_engine.index_documents
        calls = 0

        async def flaky(target: Index, documents: list[dict[str, Any]]) -> None:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise QueryError("timeout")
            await original(target, documents)

        monkeypatch.setattr(memory_engine, "index_documents", flaky)

        report = await orchestrator.import_index(index)

        assert report.failures == []
        assert report.indexed == 3
        assert orchestrator.state("articles").import_state == ImportState.SUCCESS

    async def test_empty_scope(
        self, orchestrator: SyncOrchestrator, store: InMemoryConfigurationStore, memory_engine: MemoryEngine
    ) -> None:
        products = Index(handle="products", engine_type="memory", scope=IndexScope(content_types=["product"]))
        await store.save_index(products)

        report = await orchestrator.import_index(products)

        assert (report.total, report.batches) == (0, 0)
        assert orchestrator.state("products").import_state == ImportState.SUCCESS
        assert await memory_engine.index_exists(products) is True

    async def test_rejected_while_swapping(self, orchestrator: SyncOrchestrator, index: Index) -> None:
        orchestrator.state("articles").swap_state = SwapState.SWAPPING
        with pytest.raises(ValidationError, match="being swapped"):
            await orchestrator.import_index(index)


# ── Refresh and atomic swap ──────────────────────────────────────────────────


class NoSwapEngine(MemoryEngine):
    supports_atomic_swap = False


class TestRefresh:
    async def test_atomic_swap(self, orchestrator: SyncOrchestrator, memory_engine: MemoryEngine, index: Index) -> None:
        await stale_document(memory_engine, index)

        report = await orchestrator.refresh_index(index)

        assert report.swapped is True
        assert (report.total, report.batches, report.indexed) == (3, 2, 3)
        assert sorted(await memory_engine.get_all_document_ids(index)) == ["1", "2", "3"]
        assert await memory_engine.list_indexes() == ["articles"]
        state = orchestrator.state("articles")
        assert state.import_state == ImportState.SUCCESS
        assert state.swap_state == SwapState.IDLE

    async def test_concurrent_search_sees_old_or_new_index(
        self,
        orchestrator: SyncOrchestrator,
        repository: InMemoryContentRepository,
        memory_engine: MemoryEngine,
        index: Index,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await stale_document(memory_engine, index)
        fetch = repository.fetch

        async def slow_fetch(scope: IndexScope, offset: int, limit: int) -> list[ContentItem]:
            await asyncio.sleep(0.01)
            return await fetch(scope, offset, limit)

        monkeypatch.setattr(repository, "fetch", slow_fetch)
        rebuild = asyncio.create_task(orchestrator.refresh_index(index))

        seen: list[int] = []
        while not rebuild.done():
            seen.append((await memory_engine.search(index, "", SearchOptions())).total_hits)
            await asyncio.sleep(0.001)
        seen.append((await memory_engine.search(index, "", SearchOptions())).total_hits)

        assert (await rebuild).swapped is True
        assert set(seen) <= {1, 3}
        assert seen[0] == 1
        assert seen[-1] == 3

    async def test_failed_swap_keeps_live_index(
        self,
        orchestrator: SyncOrchestrator,
        memory_engine: MemoryEngine,
        index: Index,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await stale_document(memory_engine, index)
        original = memory_engine.index_documents

        async def reject_swap(target: Index, documents: list[dict[str, Any]]) -> None:
            if target.handle.endswith("_swap"):
                raise QueryError("disk full")
            await original(target, documents)

        monkeypatch.setattr(memory_engine, "index_documents", reject_swap)

        with pytest.raises(EngineError, match="incomplete"):
            await orchestrator.refresh_index(index)

        assert await memory_engine.get_all_document_ids(index) == ["77"]
        assert await memory_engine.list_indexes() == ["articles"]
        state = orchestrator.state("articles")
        assert state.import_state == ImportState.FAILED
        assert state.swap_state == SwapState.IDLE
        assert state.last_report is not None
        assert state.last_report.swapped is False
        assert state.last_report.failed_batches == 2

    async def test_rebuild_already_running(self, orchestrator: SyncOrchestrator, index: Index) -> None:
        orchestrator.state("articles").import_state = ImportState.IMPORTING
        with pytest.raises(ValidationError, match="already being rebuilt"):
            await orchestrator.import_index_for_swap(index)

    async def test_fallback_without_swap_support(
        self,
        store: InMemoryConfigurationStore,
        repository: InMemoryContentRepository,
        mapper: FieldMapper,
        index: Index,
        caplog: pytest.LogCaptureFixture,
    ) -> None:
        engine = NoSwapEngine()
        await engine.initialize()
        await stale_document(engine, index)
        orchestrator = build(store, repository, mapper, engine, InlineWorkQueue())

        assert await orchestrator.supports_atomic_swap(index) is False
        with caplog.at_level(logging.WARNING, logger="searchsync.sync.orchestrator"):
            report = await orchestrator.refresh_index(index)

        assert report.swapped is False
        assert sorted(await engine.get_all_document_ids(index)) == ["1", "2", "3"]
        assert "has no atomic swap" in caplog.text

    async def test_flush(self, orchestrator: SyncOrchestrator, memory_engine: MemoryEngine, index: Index) -> None:
        await stale_document(memory_engine, index)
        await orchestrator.flush_index(index)
        assert await memory_engine.get_document_count(index) == 0
        assert await memory_engine.index_exists(index) is True


class TestLoadIndex:
    async def test_load(self, store: InMemoryConfigurationStore) -> None:
        assert (await load_index(store, "articles")).name == "Articles"

    async def test_missing(self, store: InMemoryConfigurationStore) -> None:
        with pytest.raises(IndexNotFoundError):
            await load_index(store, "missing")
