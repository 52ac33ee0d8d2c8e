"""MeiliSearch engine — REST connector for MeiliSearch (v1.x).

Talks to the `REST API`_ with ``httpx``; no extra client library is
needed. Write operations are asynchronous tasks on the MeiliSearch side;
this engine waits for each task to finish so a write is visible once the
call returns.

.. _REST API: https://www.meilisearch.com/docs/reference/api/overview

Usage::

    engine = MeiliSearchEngine(base_url="http://localhost:7700", api_key="master-key")
    await engine.initialize()
    result = await engine.search(index, "london bridge", SearchOptions())
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

_SEARCHABLE = {FieldType.TEXT, FieldType.OBJECT}
_FILTERABLE = {FieldType.KEYWORD, FieldType.FACET, FieldType.BOOLEAN}
_FILTERABLE_AND_SORTABLE = {FieldType.INTEGER, FieldType.FLOAT, FieldType.DATE, FieldType.GEO_POINT}


class MeiliSearchEngine(SearchEngine):
    """Search engine adapter for MeiliSearch.

    Supports:
      - Typo-tolerant full-text search with weighted searchable attributes
      - Filters, facets and facet stats
      - Highlighting through ``_formatted``
      - Hybrid / vector search through a configured embedder
      - Atomic rebuilds through ``swap-indexes``

    Args:
        base_url: MeiliSearch instance URL, e.g. ``"http://localhost:7700"``.
        api_key: Master key or API key for authentication.
        timeout: HTTP request timeout in seconds.
        index_prefix: Prefix prepended to every index uid.
        embedder: Name of the MeiliSearch embedder used for vector search.
        task_timeout: Seconds to wait for a write task before giving up.
        **kwargs: Extra keyword arguments stored for future use.
    """

    supports_atomic_swap = True
    date_format = "epoch"

    def __init__(
        self,
        base_url: str = "http://localhost:7700",
        api_key: str | None = None,
        timeout: float = 30.0,
        index_prefix: str = "",
        embedder: str = "default",
        task_timeout: float = 60.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(index_prefix=index_prefix, **kwargs)
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._embedder = embedder
        self._task_timeout = task_timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return "meilisearch"

    async def initialize(self) -> None:
        """Create the ``httpx.AsyncClient``."""
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout),
            headers=headers,
        )
        logger.info("MeiliSearch client created for %s", self._base_url)

    async def shutdown(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def test_connection(self) -> bool:
        if not self._client:
            return False
        try:
            resp = await self._client.get("/health")
            return resp.status_code == 200 and resp.json().get("status") == "available"
        except httpx.HTTPError:
            logger.debug("MeiliSearch health probe failed", exc_info=True)
            return False

    # ── Index lifecycle ──────────────────────────────────────────────────

    async def index_exists(self, index: Index) -> bool:
        resp = await self._request("GET", f"/indexes/{self.index_name(index)}", allow_404=True)
        return resp is not None

    async def create_index(self, index: Index) -> None:
        await self._task("POST", "/indexes", json={"uid": self.index_name(index), "primaryKey": "objectID"})
        logger.info("Created MeiliSearch index %s", self.index_name(index))

    async def delete_index(self, index: Index) -> None:
        await self._task("DELETE", f"/indexes/{self.index_name(index)}", allow_404=True)

    async def update_index_settings(self, index: Index) -> None:
        schema = self.build_schema(index.field_mappings)
        if schema:
            await self._task("PATCH", f"/indexes/{self.index_name(index)}/settings", json=schema)

    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        resp = await self._request("GET", f"/indexes/{self.index_name(index)}/settings")
        return resp.json()

    async def list_indexes(self) -> list[str]:
        names: list[str] = []
        offset, limit = 0, 100
        while True:
            resp = await self._request("GET", "/indexes", params={"offset": offset, "limit": limit})
            results = resp.json().get("results", [])
            names.extend(item["uid"] for item in results)
            if len(results) < limit:
                return [n for n in names if n.startswith(self._index_prefix)]
            offset += limit

    # ── Document writes ──────────────────────────────────────────────────

    async def index_documents(self, index: Index, documents: list[dict[str, Any]]) -> None:
        prepared = self.prepare_documents(index, documents)
        if not prepared:
            return
        for document in prepared:
            document["objectID"] = str(document["objectID"])
        await self._task(
            "POST",
            f"/indexes/{self.index_name(index)}/documents",
            json=prepared,
            params={"primaryKey": "objectID"},
        )

    async def delete_document(self, index: Index, document_id: str) -> None:
        await self._task("DELETE", f"/indexes/{self.index_name(index)}/documents/{document_id}", allow_404=True)

    async def delete_documents(self, index: Index, document_ids: list[str]) -> None:
        if not document_ids:
            return
        await self._task(
            "POST",
            f"/indexes/{self.index_name(index)}/documents/delete-batch",
            json=[str(document_id) for document_id in document_ids],
        )

    async def flush_index(self, index: Index) -> None:
        await self._task("DELETE", f"/indexes/{self.index_name(index)}/documents")

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_document(self, index: Index, document_id: str) -> dict[str, Any] | None:
        resp = await self._request("GET", f"/indexes/{self.index_name(index)}/documents/{document_id}", allow_404=True)
        return resp.json() if resp is not None else None

    async def get_document_count(self, index: Index) -> int:
        resp = await self._request("GET", f"/indexes/{self.index_name(index)}/stats")
        return int(resp.json().get("numberOfDocuments", 0))

    async def get_all_document_ids(self, index: Index) -> list[str]:
        ids: list[str] = []
        offset, limit = 0, 1000
        while True:
            resp = await self._request(
                "GET",
                f"/indexes/{self.index_name(index)}/documents",
                params={"fields": "objectID", "offset": offset, "limit": limit},
            )
            results = resp.json().get("results", [])
            ids.extend(str(document["objectID"]) for document in results)
            if len(results) < limit:
                return ids
            offset += limit

    async def search(self, index: Index, query: str, options: SearchOptions) -> CanonicalSearchResult:
        """Execute a search query against the ``/indexes/{uid}/search`` endpoint."""
        started = time.monotonic()
        payload = self.build_search_payload(index, query, options)
        resp = await self._request("POST", f"/indexes/{self.index_name(index)}/search", json=payload)
        return self._to_result(options, resp.json(), started)

    async def multi_search(self, queries: list[tuple[Index, str, SearchOptions]]) -> list[CanonicalSearchResult]:
        if not queries:
            return []
        started = time.monotonic()
        payload = {
            "queries": [
                {"indexUid": self.index_name(index), **self.build_search_payload(index, query, options)}
                for index, query, options in queries
            ]
        }
        resp = await self._request("POST", "/multi-search", json=payload)
        return [
            self._to_result(options, native, started)
            for (_, _, options), native in zip(queries, resp.json().get("results", []), strict=False)
        ]

    # ── Atomic swap ──────────────────────────────────────────────────────

    async def swap_index(self, index: Index, swap_index: Index) -> None:
        """Swap the live index with the freshly built one, then drop the old data."""
        live, temporary = self.index_name(index), self.index_name(swap_index)
        if not await self.index_exists(index):
            await self.create_index(index)
        await self._task("POST", "/swap-indexes", json=[{"indexes": [live, temporary]}])
        await self._task("DELETE", f"/indexes/{temporary}", allow_404=True)
        logger.info("Swapped MeiliSearch index %s with %s", live, temporary)

    # ── Query building ───────────────────────────────────────────────────

    def build_schema(self, mappings: list[FieldMapping]) -> dict[str, Any]:
        searchable: list[FieldMapping] = []
        filterable: list[str] = []
        sortable: list[str] = []
        for mapping in mappings:
            if not mapping.enabled:
                continue
            field_type = mapping.index_field_type
            if field_type in _SEARCHABLE:
                searchable.append(mapping)
            elif field_type in _FILTERABLE:
                filterable.append(mapping.index_field_name)
            elif field_type in _FILTERABLE_AND_SORTABLE:
                filterable.append(mapping.index_field_name)
                sortable.append(mapping.index_field_name)

        schema: dict[str, Any] = {}
        if searchable:
            ordered = sorted(searchable, key=lambda m: m.weight, reverse=True)
            schema["searchableAttributes"] = [m.index_field_name for m in ordered]
        if filterable:
            schema["filterableAttributes"] = list(dict.fromkeys(filterable))
        if sortable:
            schema["sortableAttributes"] = list(dict.fromkeys(sortable))
        return schema

    def build_search_payload(self, index: Index, query: str, options: SearchOptions) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "q": query,
            "offset": options.offset,
            "limit": options.per_page,
            "showRankingScore": True,
        }
        if options.fields:
            payload["attributesToSearchOn"] = options.fields
        if options.attributes_to_retrieve is not None:
            payload["attributesToRetrieve"] = options.attributes_to_retrieve
        if options.sort:
            payload["sort"] = [f"{field}:{direction}" for field, direction in options.sort.items()]

        facet_fields = list(dict.fromkeys([*options.facets, *options.stats]))
        if facet_fields:
            payload["facets"] = facet_fields
        if options.filters:
            payload["filter"] = self.build_filter(options.filters)

        highlight_fields = options.highlight_fields()
        if highlight_fields is not None:
            payload["attributesToHighlight"] = highlight_fields or ["*"]
            payload["highlightPreTag"] = _PRE_TAG
            payload["highlightPostTag"] = _POST_TAG

        if options.vector_search and options.embedding:
            payload["vector"] = options.embedding
            payload["hybrid"] = {"embedder": self._embedder, "semanticRatio": 0.5 if query else 1.0}
        return payload

    @staticmethod
    def build_filter(filters: dict[str, list[Any]]) -> str:
        """``field = "v"`` expressions, OR within a field and AND across fields."""
        clauses = []
        for field, values in filters.items():
            parts = [f"{field} = {MeiliSearchEngine._literal(value)}" for value in values]
            clauses.append(parts[0] if len(parts) == 1 else "(" + " OR ".join(parts) + ")")
        return " AND ".join(clauses)

    @staticmethod
    def _literal(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, int | float):
            return str(value)
        escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'

    # ── Response normalisation ───────────────────────────────────────────

    def _to_result(self, options: SearchOptions, data: dict[str, Any], started: float) -> CanonicalSearchResult:
        highlighting = options.highlight_fields() is not None
        hits = []
        for raw_hit in data.get("hits", []):
            formatted = raw_hit.get("_formatted") or {}
            document = {k: v for k, v in raw_hit.items() if k not in ("_formatted", "_rankingScore", "_matchesPosition")}
            highlights = normalise_highlights(self._formatted_to_match_levels(formatted)) if highlighting else {}
            hits.append(
                normalise_hit(
                    document,
                    object_id=raw_hit.get("objectID"),
                    score=raw_hit.get("_rankingScore"),
                    highlights=highlights,
                )
            )

        total_hits = int(data.get("totalHits", data.get("estimatedTotalHits", len(hits))))
        distribution = data.get("facetDistribution") or {}
        facets = {
            field: tuple(normalise_facet_counts(distribution[field])) for field in options.facets if field in distribution
        }
        facet_stats = data.get("facetStats") or {}
        stats = {
            field: NumericStats(min=facet_stats[field]["min"], max=facet_stats[field]["max"])
            for field in options.stats
            if field in facet_stats
        }
        if options.histogram:
            logger.debug("MeiliSearch has no histogram support; ignoring %s", list(options.histogram))

        return CanonicalSearchResult(
            hits=tuple(hits),
            total_hits=total_hits,
            page=options.page,
            per_page=options.per_page,
            total_pages=compute_total_pages(total_hits, options.per_page),
            facets=facets,
            stats=stats,
            raw=data,
            timing=self.timing(options, started, data.get("processingTimeMs")),
        )

    @staticmethod
    def _formatted_to_match_levels(formatted: dict[str, Any]) -> dict[str, Any]:
        """Mark ``_formatted`` values as matched when they carry the highlight tag."""

        def entry(value: Any) -> dict[str, Any] | None:
            if not isinstance(value, str):
                return None
            return {"value": value, "matchLevel": "full" if _PRE_TAG in value else "none"}

        converted: dict[str, Any] = {}
        for field, value in formatted.items():
            if field == "objectID":
                continue
            if isinstance(value, list):
                converted[field] = [e for item in value if (e := entry(item)) is not None]
            elif (e := entry(value)) is not None:
                converted[field] = e
        return converted

    # ── HTTP helpers ─────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, *, allow_404: bool = False, **kwargs: Any) -> httpx.Response | None:
        if not self._client:
            raise EngineConnectionError("MeiliSearch client not initialized.")
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise EngineConnectionError(f"MeiliSearch request {method} {path} failed: {e}") from e
        except httpx.HTTPError as e:
            raise QueryError(f"MeiliSearch request {method} {path} failed: {e}") from e

        if resp.status_code == 404 and allow_404:
            return None
        if resp.status_code in (401, 403):
            raise EngineConnectionError(f"MeiliSearch rejected credentials ({resp.status_code}) for {path}")
        if resp.status_code >= 400:
            raise QueryError(f"MeiliSearch {method} {path} returned {resp.status_code}: {resp.text}")
        return resp

    async def _task(self, method: str, path: str, *, allow_404: bool = False, **kwargs: Any) -> None:
        resp = await self._request(method, path, allow_404=allow_404, **kwargs)
        if resp is None:
            return
        task_uid = resp.json().get("taskUid")
        if task_uid is not None:
            await self._wait_for_task(task_uid)

    async def _wait_for_task(self, task_uid: int) -> None:
        deadline = time.monotonic() + self._task_timeout
        delay = 0.05
        while True:
            resp = await self._request("GET", f"/tasks/{task_uid}")
            task = resp.json()
            status = task.get("status")
            if status == "succeeded":
                return
            if status in ("failed", "canceled"):
                error = task.get("error") or {}
                if error.get("code") == "index_not_found" and task.get("type") in ("indexDeletion", "documentDeletion"):
                    return
                raise QueryError(f"MeiliSearch task {task_uid} {status}: {error.get('message', 'unknown error')}")
            if time.monotonic() > deadline:
                raise EngineError(f"Timed out waiting for MeiliSearch task {task_uid}")
            await asyncio.sleep(delay)
            delay = min(delay * 2, 1.0)
