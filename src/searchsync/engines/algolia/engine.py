"""Algolia engine — REST connector for the hosted Algolia search API.

Uses the v1 REST API directly through ``httpx``. Algolia creates an index
on first write. Rebuilds go into a swap index which is then moved over
the live one; a ``move`` replaces the destination atomically.

Usage::

    engine = AlgoliaEngine(app_id="ABC123", api_key="admin-key")
    await engine.initialize()
    result = await engine.search(index, "bridge", SearchOptions(facets=["section"]))
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from searchsync.engines.base.engine import SearchEngine
from searchsync.engines.base.normalize import (
    compute_total_pages,
    normalise_facet_counts,
    normalise_highlights,
    normalise_hit,
)
from searchsync.exceptions import EngineConnectionError, EngineError, QueryError
from searchsync.models.index import Index
from searchsync.models.mapping import FieldMapping, FieldType
from searchsync.models.options import SearchOptions
from searchsync.models.result import CanonicalSearchResult, NumericStats

logger = logging.getLogger(__name__)

_PRE_TAG = "<em>"
_POST_TAG = "</em>"
_BATCH_LIMIT = 1000


class AlgoliaEngine(SearchEngine):
    """Search engine adapter for Algolia.

    Args:
        app_id: Algolia application id.
        api_key: Admin API key (writes need it).
        base_url: Override of the API host, mostly for tests.
        timeout: HTTP request timeout in seconds.
        index_prefix: Prefix prepended to every index name.
        task_timeout: Seconds to wait for a write task to be published.
        **kwargs: Extra keyword arguments stored for future use.
    """

    supports_atomic_swap = True
    date_format = "epoch"

    def __init__(
        self,
        app_id: str = "",
        api_key: str = "",
        base_url: str | None = None,
        timeout: float = 30.0,
        index_prefix: str = "",
        task_timeout: float = 60.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(index_prefix=index_prefix, **kwargs)
        self._app_id = app_id
        self._api_key = api_key
        self._base_url = (base_url or f"https://{app_id}.algolia.net").rstrip("/")
        self._timeout = timeout
        self._task_timeout = task_timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return "algolia"

    async def initialize(self) -> None:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout),
            headers={
                "X-Algolia-Application-Id": self._app_id,
                "X-Algolia-API-Key": self._api_key,
                "Content-Type": "application/json",
            },
        )
        logger.info("Algolia client created for application %s", self._app_id)

    async def shutdown(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def test_connection(self) -> bool:
        if not self._client:
            return False
        try:
            resp = await self._client.get("/1/indexes", params={"page": 0})
            return resp.status_code == 200
        except httpx.HTTPError:
            logger.debug("Algolia connection probe failed", exc_info=True)
            return False

    # ── Index lifecycle ──────────────────────────────────────────────────

    async def index_exists(self, index: Index) -> bool:
        resp = await self._request("GET", self._path(index, "settings"), allow_404=True)
        return resp is not None

    async def create_index(self, index: Index) -> None:
        await self._task(index, "PUT", self._path(index, "settings"), json=self.build_schema(index.field_mappings))
        logger.info("Created Algolia index %s", self.index_name(index))

    async def delete_index(self, index: Index) -> None:
        await self._task(index, "DELETE", self._path(index), allow_404=True)

    async def update_index_settings(self, index: Index) -> None:
        await self._task(index, "PUT", self._path(index, "settings"), json=self.build_schema(index.field_mappings))

    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        resp = await self._request("GET", self._path(index, "settings"))
        return resp.json()

    async def list_indexes(self) -> list[str]:
        names: list[str] = []
        page = 0
        while True:
            data = (await self._request("GET", "/1/indexes", params={"page": page})).json()
            names.extend(item["name"] for item in data.get("items", []))
            if page + 1 >= int(data.get("nbPages", 1)):
                return [n for n in names if n.startswith(self._index_prefix)]
            page += 1

    # ── Document writes ──────────────────────────────────────────────────

    async def index_documents(self, index: Index, documents: list[dict[str, Any]]) -> None:
        prepared = self.prepare_documents(index, documents)
        for start in range(0, len(prepared), _BATCH_LIMIT):
            chunk = prepared[start : start + _BATCH_LIMIT]
            requests = [{"action": "updateObject", "body": {**doc, "objectID": str(doc["objectID"])}} for doc in chunk]
            await self._task(index, "POST", self._path(index, "batch"), json={"requests": requests})

    async def delete_document(self, index: Index, document_id: str) -> None:
        await self._task(index, "DELETE", self._path(index, str(document_id)), allow_404=True)

    async def delete_documents(self, index: Index, document_ids: list[str]) -> None:
        for start in range(0, len(document_ids), _BATCH_LIMIT):
            requests = [
                {"action": "deleteObject", "body": {"objectID": str(document_id)}}
                for document_id in document_ids[start : start + _BATCH_LIMIT]
            ]
            await self._task(index, "POST", self._path(index, "batch"), json={"requests": requests})

    async def flush_index(self, index: Index) -> None:
        await self._task(index, "POST", self._path(index, "clear"))

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_document(self, index: Index, document_id: str) -> dict[str, Any] | None:
        resp = await self._request("GET", self._path(index, str(document_id)), allow_404=True)
        return resp.json() if resp is not None else None

    async def get_document_count(self, index: Index) -> int:
        resp = await self._request("POST", self._path(index, "query"), json={"query": "", "hitsPerPage": 0})
        return int(resp.json().get("nbHits", 0))

    async def get_all_document_ids(self, index: Index) -> list[str]:
        ids: list[str] = []
        body: dict[str, Any] = {"attributesToRetrieve": ["objectID"], "hitsPerPage": _BATCH_LIMIT}
        while True:
            data = (await self._request("POST", self._path(index, "browse"), json=body)).json()
            ids.extend(str(hit["objectID"]) for hit in data.get("hits", []))
            cursor = data.get("cursor")
            if not cursor:
                return ids
            body = {"cursor": cursor}

    async def search(self, index: Index, query: str, options: SearchOptions) -> CanonicalSearchResult:
        started = time.monotonic()
        resp = await self._request("POST", self._path(index, "query"), json=self.build_search_params(query, options))
        return self._to_result(options, resp.json(), started)

    async def multi_search(self, queries: list[tuple[Index, str, SearchOptions]]) -> list[CanonicalSearchResult]:
        if not queries:
            return []
        started = time.monotonic()
        requests = [
            {"indexName": self.index_name(index), **self.build_search_params(query, options)}
            for index, query, options in queries
        ]
        resp = await self._request("POST", "/1/indexes/*/queries", json={"requests": requests})
        return [
            self._to_result(options, native, started)
            for (_, _, options), native in zip(queries, resp.json().get("results", []), strict=False)
        ]

    # ── Atomic swap ──────────────────────────────────────────────────────

    async def swap_index(self, index: Index, swap_index: Index) -> None:
        """Move the swap index over the live one. The swap index is gone afterwards."""
        body = {"operation": "move", "destination": self.index_name(index)}
        await self._task(swap_index, "POST", self._path(swap_index, "operation"), json=body)
        logger.info("Moved Algolia index %s over %s", self.index_name(swap_index), self.index_name(index))

    # ── Query building ───────────────────────────────────────────────────

    def build_schema(self, mappings: list[FieldMapping]) -> dict[str, Any]:
        searchable: list[FieldMapping] = []
        faceting: list[str] = []
        numeric: list[str] = []
        for mapping in mappings:
            if not mapping.enabled:
                continue
            field_type = mapping.index_field_type
            if field_type in (FieldType.TEXT, FieldType.OBJECT):
                searchable.append(mapping)
            elif field_type in (FieldType.KEYWORD, FieldType.FACET):
                faceting.append(f"searchable({mapping.index_field_name})")
            elif field_type == FieldType.BOOLEAN:
                faceting.append(f"filterOnly({mapping.index_field_name})")
            elif field_type in (FieldType.INTEGER, FieldType.FLOAT, FieldType.DATE):
                numeric.append(mapping.index_field_name)

        settings: dict[str, Any] = {}
        if searchable:
            ordered = sorted(searchable, key=lambda m: m.weight, reverse=True)
            settings["searchableAttributes"] = [m.index_field_name for m in ordered]
        if faceting:
            settings["attributesForFaceting"] = faceting
        if numeric:
            settings["numericAttributesForFiltering"] = numeric
        return settings

    def build_search_params(self, query: str, options: SearchOptions) -> dict[str, Any]:
        params: dict[str, Any] = {
            "query": query,
            "page": options.page - 1,
            "hitsPerPage": options.per_page,
            "getRankingInfo": True,
        }
        if options.fields:
            params["restrictSearchableAttributes"] = options.fields
        if options.attributes_to_retrieve is not None:
            params["attributesToRetrieve"] = options.attributes_to_retrieve

        facet_fields = list(dict.fromkeys([*options.facets, *options.stats]))
        if facet_fields:
            params["facets"] = facet_fields
        if options.filters:
            params["filters"] = self.build_filter(options.filters)

        highlight_fields = options.highlight_fields()
        if highlight_fields is None:
            params["attributesToHighlight"] = []
        else:
            params["attributesToHighlight"] = highlight_fields or ["*"]
            params["highlightPreTag"] = _PRE_TAG
            params["highlightPostTag"] = _POST_TAG

        if options.sort:
            logger.debug("Algolia sorts through replica indexes; ignoring sort %s", options.sort)
        if options.vector_search:
            logger.debug("Algolia engine has no raw vector search; running keyword search")
        return params

    @staticmethod
    def build_filter(filters: dict[str, list[Any]]) -> str:
        """``field:"v"`` expressions, OR within a field and AND across fields."""
        clauses = []
        for field, values in filters.items():
            parts = [AlgoliaEngine._expression(field, value) for value in values]
            clauses.append(parts[0] if len(parts) == 1 else "(" + " OR ".join(parts) + ")")
        return " AND ".join(clauses)

    @staticmethod
    def _expression(field: str, value: Any) -> str:
        if isinstance(value, bool):
            return f"{field}:{'true' if value else 'false'}"
        if isinstance(value, int | float):
            return f"{field}={value}"
        escaped = str(value).replace('"', '\\"')
        return f'{field}:"{escaped}"'

    # ── Response normalisation ───────────────────────────────────────────

    def _to_result(self, options: SearchOptions, data: dict[str, Any], started: float) -> CanonicalSearchResult:
        hits = []
        for raw_hit in data.get("hits", []):
            ranking = raw_hit.get("_rankingInfo") or {}
            document = {k: v for k, v in raw_hit.items() if not k.startswith("_")}
            hits.append(
                normalise_hit(
                    document,
                    object_id=raw_hit.get("objectID"),
                    score=ranking.get("userScore"),
                    highlights=normalise_highlights(raw_hit.get("_highlightResult")),
                )
            )

        total_hits = int(data.get("nbHits", len(hits)))
        native_facets = data.get("facets") or {}
        facets = {
            field: tuple(normalise_facet_counts(native_facets[field])) for field in options.facets if field in native_facets
        }
        native_stats = data.get("facets_stats") or {}
        stats = {
            field: NumericStats(min=native_stats[field]["min"], max=native_stats[field]["max"])
            for field in options.stats
            if field in native_stats
        }

        return CanonicalSearchResult(
            hits=tuple(hits),
            total_hits=total_hits,
            page=options.page,
            per_page=options.per_page,
            total_pages=compute_total_pages(total_hits, options.per_page),
            facets=facets,
            stats=stats,
            raw=data,
            timing=self.timing(options, started, data.get("processingTimeMS")),
        )

    # ── HTTP helpers ─────────────────────────────────────────────────────

    def _path(self, index: Index, *parts: str) -> str:
        return "/".join(["/1/indexes", self.index_name(index), *parts])

    async def _request(self, method: str, path: str, *, allow_404: bool = False, **kwargs: Any) -> httpx.Response | None:
        if not self._client:
            raise EngineConnectionError("Algolia client not initialized.")
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise EngineConnectionError(f"Algolia request {method} {path} failed: {e}") from e
        except httpx.HTTPError as e:
            raise QueryError(f"Algolia request {method} {path} failed: {e}") from e

        if resp.status_code == 404 and allow_404:
            return None
        if resp.status_code in (401, 403):
            raise EngineConnectionError(f"Algolia rejected credentials ({resp.status_code}) for {path}")
        if resp.status_code >= 400:
            raise QueryError(f"Algolia {method} {path} returned {resp.status_code}: {resp.text}")
        return resp

    async def _task(self, index: Index, method: str, path: str, *, allow_404: bool = False, **kwargs: Any) -> None:
        resp = await self._request(method, path, allow_404=allow_404, **kwargs)
        if resp is None:
            return
        task_id = resp.json().get("taskID")
        if task_id is not None:
            await self._wait_for_task(index, task_id)

    async def _wait_for_task(self, index: Index, task_id: int) -> None:
        deadline = time.monotonic() + self._task_timeout
        delay = 0.05
        while True:
            resp = await self._request("GET", self._path(index, "task", str(task_id)))
            if resp.json().get("status") == "published":
                return
            if time.monotonic() > deadline:
                raise EngineError(f"Timed out waiting for Algolia task {task_id}")
            await asyncio.sleep(delay)
            delay = min(delay * 2, 1.0)
