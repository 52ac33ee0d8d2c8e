"""End-to-end sync and search against real OpenSearch and MeiliSearch instances."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from searchsync.config.settings import Settings
from searchsync.content.repository import InMemoryContentRepository
from searchsync.core.service import SearchSyncService
from searchsync.models.content import ContentItem
from searchsync.models.index import Index
from searchsync.store.base import InMemoryConfigurationStore
from searchsync.sync.events import ContentEvent, ContentEventType

pytestmark = [pytest.mark.integration]


async def _service(
    engine_type: str,
    engine_settings: dict,
    index: Index,
    repository: InMemoryContentRepository,
) -> SearchSyncService:
    settings = Settings(_env_file=None, engines={engine_type: engine_settings}, sync={"batch_size": 2})  # type: ignore[call-arg]
    index.engine_type = engine_type
    index.handle = "searchsync_it_articles"
    service = SearchSyncService(settings, store=InMemoryConfigurationStore([index]), repository=repository)
    await service.initialize()
    return service


@pytest.fixture
async def opensearch_service(
    opensearch_ready: str, index: Index, repository: InMemoryContentRepository
) -> AsyncIterator[SearchSyncService]:
    service = await _service("opensearch", {"hosts": [opensearch_ready], "verify_certs": False}, index, repository)
    yield service
    await service.delete_remote_index(index.handle)
    await service.shutdown()


@pytest.fixture
async def meilisearch_service(
    meilisearch_ready: str, index: Index, repository: InMemoryContentRepository
) -> AsyncIterator[SearchSyncService]:
    service = await _service(
        "meilisearch", {"hosts": [meilisearch_ready], "api_key": "test-master-key"}, index, repository
    )
    yield service
    await service.delete_remote_index(index.handle)
    await service.shutdown()


async def _check_sync_and_search(
    service: SearchSyncService, repository: InMemoryContentRepository, articles: list[ContentItem]
) -> None:
    handle = "searchsync_it_articles"

    report = await service.refresh(handle)
    assert report.swapped is True
    assert (await service.status(handle)).document_count == 3

    result = await service.search(handle, "bridge", {"facets": ["tags"]})
    assert {hit["objectID"] for hit in result.hits} == {"1", "2"}
    assert result.total_hits == 2

    document = await service.resolve_document(handle, "3")
    assert document.title == "Camden Market"

    repository.remove(3)
    await service.handle_event(ContentEvent(type=ContentEventType.DELETED, item=articles[2]))
    assert await service.get_document(handle, "3") is None

    # A second rebuild swaps back onto the other temporary index
    assert (await service.refresh(handle)).swapped is True


@pytest.mark.opensearch
class TestOpenSearchSync:
    async def test_sync_and_search(
        self, opensearch_service: SearchSyncService, repository: InMemoryContentRepository, articles: list[ContentItem]
    ) -> None:
        await _check_sync_and_search(opensearch_service, repository, articles)

    async def test_health(self, opensearch_service: SearchSyncService, index: Index) -> None:
        engine = await opensearch_service.engine_for(index)
        assert (await engine.health_check()).status == "healthy"


@pytest.mark.meilisearch
class TestMeiliSearchSync:
    async def test_sync_and_search(
        self, meilisearch_service: SearchSyncService, repository: InMemoryContentRepository, articles: list[ContentItem]
    ) -> None:
        await _check_sync_and_search(meilisearch_service, repository, articles)

    async def test_health(self, meilisearch_service: SearchSyncService, index: Index) -> None:
        engine = await meilisearch_service.engine_for(index)
        assert (await engine.health_check()).status == "healthy"
