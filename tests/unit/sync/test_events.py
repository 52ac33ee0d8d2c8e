"""Tests for content-event planning and job descriptors."""

from __future__ import annotations

import pytest

from searchsync.models.content import ContentItem
from searchsync.models.index import Index, IndexMode, IndexScope
from searchsync.sync.events import (
    ContentEvent,
    ContentEventType,
    IndexOperation,
    PlannedOperation,
    plan_operations,
    target_indexes,
)
from searchsync.sync.jobs import BulkIndexJob, CleanupOrphansJob, DeleteItemJob, IndexItemJob


@pytest.fixture
def indexes(index: Index) -> list[Index]:
    return [
        index,
        Index(handle="everything", engine_type="memory"),
        Index(handle="french", engine_type="memory", scope=IndexScope(sites=["fr"])),
        Index(handle="paused", engine_type="memory", enabled=False),
        Index(handle="remote", engine_type="memory", mode=IndexMode.READONLY),
    ]


def event(type_: ContentEventType, **item: object) -> ContentEvent:
    data: dict[str, object] = {"id": 5, "title": "Kew", "content_type": "article"}
    data.update(item)
    return ContentEvent(type=type_, item=ContentItem.model_validate(data))


class TestTargetIndexes:
    def test_skips_disabled_readonly_and_out_of_scope(self, indexes: list[Index]) -> None:
        item = ContentItem(id=1, title="Kew", content_type="article")
        assert [i.handle for i in target_indexes(item, indexes)] == ["articles", "everything"]

    def test_site_scope(self, indexes: list[Index]) -> None:
        item = ContentItem(id=1, title="Kew", content_type="person", site="fr")
        assert [i.handle for i in target_indexes(item, indexes)] == ["everything", "french"]


class TestPlanOperations:
    def test_save_of_live_item_upserts(self, indexes: list[Index]) -> None:
        operations = plan_operations(event(ContentEventType.SAVED), indexes)
        assert operations == [
            PlannedOperation(index_handle="articles", operation=IndexOperation.UPSERT, item_id="5", site="default"),
            PlannedOperation(index_handle="everything", operation=IndexOperation.UPSERT, item_id="5", site="default"),
        ]

    @pytest.mark.parametrize("status", ["disabled", "pending", "expired"])
    def test_save_of_non_live_item_deletes(self, indexes: list[Index], status: str) -> None:
        operations = plan_operations(event(ContentEventType.SAVED, status=status), indexes)
        assert {op.operation for op in operations} == {IndexOperation.DELETE}
        assert len(operations) == 2

    def test_delete(self, indexes: list[Index]) -> None:
        operations = plan_operations(event(ContentEventType.DELETED), indexes)
        assert [op.operation for op in operations] == [IndexOperation.DELETE, IndexOperation.DELETE]

    @pytest.mark.parametrize("type_", [ContentEventType.RESTORED, ContentEventType.SLUG_CHANGED])
    def test_restore_and_slug_change_upsert(self, indexes: list[Index], type_: ContentEventType) -> None:
        operations = plan_operations(event(type_), indexes)
        assert {op.operation for op in operations} == {IndexOperation.UPSERT}

    @pytest.mark.parametrize("flag", ["is_draft", "is_revision"])
    def test_drafts_and_revisions_are_ignored(self, indexes: list[Index], flag: str) -> None:
        assert plan_operations(event(ContentEventType.SAVED, **{flag: True}), indexes) == []
        assert plan_operations(event(ContentEventType.DELETED, **{flag: True}), indexes) == []

    def test_no_matching_index(self, indexes: list[Index]) -> None:
        assert plan_operations(event(ContentEventType.SAVED, content_type="person"), indexes[:1]) == []

    def test_operation_key(self) -> None:
        operation = PlannedOperation(index_handle="articles", operation=IndexOperation.DELETE, item_id="5", site="en")
        assert operation.key == "articles:5:en"


# ── Jobs ─────────────────────────────────────────────────────────────────────


class TestJobs:
    def test_keys(self) -> None:
        assert IndexItemJob(index_handle="articles", item_id="5").key == "articles:5:None"
        assert DeleteItemJob(index_handle="articles", item_id="5", site="en").key == "articles:5:en"
        assert BulkIndexJob(index_handle="articles", offset=500, limit=500).key == "articles:bulk:500"
        assert CleanupOrphansJob(index_handle="articles").key == "articles:cleanup"

    def test_descriptions(self) -> None:
        job = BulkIndexJob(index_handle="articles", offset=0, limit=100)
        assert job.describe() == "Bulk indexing 'articles' (offset: 0, limit: 100)"
        assert CleanupOrphansJob(index_handle="articles").describe() == "Cleaning up orphan documents from 'articles'"

    def test_bulk_job_bounds(self) -> None:
        with pytest.raises(ValueError):
            BulkIndexJob(index_handle="articles", offset=-1, limit=10)
        with pytest.raises(ValueError):
            BulkIndexJob(index_handle="articles", offset=0, limit=0)
