"""Tests for the Algolia engine."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest

from searchsync.engines.algolia.engine import AlgoliaEngine
from searchsync.exceptions import EngineConnectionError, QueryError
from searchsync.models.index import Index
from searchsync.models.mapping import FieldMapping, FieldType
from searchsync.models.options import SearchOptions

# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def engine() -> AlgoliaEngine:
    return AlgoliaEngine(app_id="APP123", api_key="admin-key", base_url="https://algolia.test")


@pytest.fixture
def events() -> Index:
    return Index(
        handle="events",
        engine_type="algolia",
        field_mappings=[
            FieldMapping(attribute="title", index_field_name="title", weight=10),
            FieldMapping(field_uid="f-venue", index_field_name="venue", index_field_type=FieldType.KEYWORD),
            FieldMapping(field_uid="f-free", index_field_name="free", index_field_type=FieldType.BOOLEAN),
            FieldMapping(field_uid="f-price", index_field_name="price", index_field_type=FieldType.FLOAT),
            FieldMapping(attribute="postDate", index_field_name="postDate", index_field_type=FieldType.DATE),
        ],
    )


@pytest.fixture
def sample_response() -> dict[str, Any]:
    return {
        "hits": [
            {
                "objectID": "301",
                "title": "Jazz at the Barbican",
                "venue": "Barbican",
                "_rankingInfo": {"userScore": 87},
                "_highlightResult": {
                    "title": {"value": "<em>Jazz</em> at the Barbican", "matchLevel": "full"},
                    "venue": {"value": "Barbican", "matchLevel": "none"},
                },
            }
        ],
        "nbHits": 5,
        "page": 0,
        "hitsPerPage": 2,
        "processingTimeMS": 1,
        "facets": {"venue": {"Barbican": 3, "Roundhouse": 2}},
        "facets_stats": {"price": {"min": 0, "max": 45}},
    }


def attach(engine: AlgoliaEngine, handler: Any) -> list[httpx.Request]:
    seen: list[httpx.Request] = []

    def record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    engine._client = httpx.AsyncClient(base_url="https://algolia.test", transport=httpx.MockTransport(record))
    return seen


def published(request: httpx.Request) -> httpx.Response:
    if request.method == "GET" and "/task/" in request.url.path:
        return httpx.Response(200, json={"status": "published"})
    return httpx.Response(200, json={"taskID": 11})


# ── Query building ───────────────────────────────────────────────────────────


class TestAlgoliaQueryBuilding:
    def test_build_schema(self, engine: AlgoliaEngine, events: Index) -> None:
        schema = engine.build_schema(events.field_mappings)
        assert schema == {
            "searchableAttributes": ["title"],
            "attributesForFaceting": ["searchable(venue)", "filterOnly(free)"],
            "numericAttributesForFiltering": ["price", "postDate"],
        }

    def test_build_filter(self) -> None:
        expression = AlgoliaEngine.build_filter({"venue": ["Barbican", "Roundhouse"], "free": [False], "price": [10]})
        assert expression == '(venue:"Barbican" OR venue:"Roundhouse") AND free:false AND price=10'

    def test_params_paging_is_zero_based(self, engine: AlgoliaEngine) -> None:
        params = engine.build_search_params("jazz", SearchOptions(page=2, per_page=5, facets=["venue"], stats=["price"]))
        assert params["page"] == 1
        assert params["hitsPerPage"] == 5
        assert params["facets"] == ["venue", "price"]
        assert params["attributesToHighlight"] == []

    def test_params_highlight(self, engine: AlgoliaEngine) -> None:
        params = engine.build_search_params("jazz", SearchOptions(highlight=True))
        assert params["attributesToHighlight"] == ["*"]
        assert params["highlightPreTag"] == "<em>"


# ── Search ───────────────────────────────────────────────────────────────────


class TestAlgoliaSearch:
    async def test_search_returns_canonical_result(
        self, engine: AlgoliaEngine, events: Index, sample_response: dict
    ) -> None:
        seen = attach(engine, lambda request: httpx.Response(200, json=sample_response))
        options = SearchOptions(per_page=2, facets=["venue"], stats=["price"])

        result = await engine.search(events, "jazz", options)

        assert seen[0].url.path == "/1/indexes/events/query"
        assert result.total_hits == 5
        assert result.total_pages == 3
        hit = result.hits[0]
        assert hit["objectID"] == "301"
        assert hit["_score"] == 87.0
        assert hit["_highlights"] == {"title": ["<em>Jazz</em> at the Barbican"]}
        assert "_rankingInfo" not in hit
        assert [(v.value, v.count) for v in result.facets["venue"]] == [("Barbican", 3), ("Roundhouse", 2)]
        assert result.stats["price"].min == 0

    async def test_not_initialized(self, engine: AlgoliaEngine, events: Index) -> None:
        with pytest.raises(EngineConnectionError):
            await engine.search(events, "jazz", SearchOptions())

    async def test_rejected_credentials(self, engine: AlgoliaEngine, events: Index) -> None:
        attach(engine, lambda request: httpx.Response(403, json={"message": "Invalid Application-ID or API key"}))
        with pytest.raises(EngineConnectionError):
            await engine.search(events, "jazz", SearchOptions())

    async def test_bad_request(self, engine: AlgoliaEngine, events: Index) -> None:
        attach(engine, lambda request: httpx.Response(400, json={"message": "bad filter"}))
        with pytest.raises(QueryError):
            await engine.search(events, "jazz", SearchOptions())


# ── Writes and swap ──────────────────────────────────────────────────────────


class TestAlgoliaWrites:
    async def test_index_documents(self, engine: AlgoliaEngine, events: Index) -> None:
        seen = attach(engine, published)
        await engine.index_documents(events, [{"objectID": 1, "title": "Proms", "postDate": "2024-01-01T00:00:00Z"}])

        batch = seen[0]
        assert batch.url.path == "/1/indexes/events/batch"
        assert json.loads(batch.content) == {
            "requests": [
                {"action": "updateObject", "body": {"objectID": "1", "title": "Proms", "postDate": 1_704_067_200}}
            ]
        }
        assert seen[1].url.path == "/1/indexes/events/task/11"

    async def test_delete_documents(self, engine: AlgoliaEngine, events: Index) -> None:
        seen = attach(engine, published)
        await engine.delete_documents(events, ["1", "2"])
        body = json.loads(seen[0].content)
        assert [r["action"] for r in body["requests"]] == ["deleteObject", "deleteObject"]

    async def test_flush(self, engine: AlgoliaEngine, events: Index) -> None:
        seen = attach(engine, published)
        await engine.flush_index(events)
        assert (seen[0].method, seen[0].url.path) == ("POST", "/1/indexes/events/clear")

    async def test_swap_moves_swap_index_over_live(self, engine: AlgoliaEngine, events: Index) -> None:
        swap = events.model_copy(update={"handle": await engine.build_swap_handle(events)})
        seen = attach(engine, published)

        await engine.swap_index(events, swap)

        move = seen[0]
        assert move.url.path == "/1/indexes/events_swap/operation"
        assert json.loads(move.content) == {"operation": "move", "destination": "events"}

    async def test_get_all_document_ids_follows_cursor(self, engine: AlgoliaEngine, events: Index) -> None:
        pages = iter(
            [
                {"hits": [{"objectID": "1"}, {"objectID": "2"}], "cursor": "next"},
                {"hits": [{"objectID": "3"}]},
            ]
        )
        seen = attach(engine, lambda request: httpx.Response(200, json=next(pages)))
        assert await engine.get_all_document_ids(events) == ["1", "2", "3"]
        assert json.loads(seen[1].content) == {"cursor": "next"}

    async def test_document_not_found(self, engine: AlgoliaEngine, events: Index) -> None:
        attach(engine, lambda request: httpx.Response(404))
        assert await engine.get_document(events, "404") is None
