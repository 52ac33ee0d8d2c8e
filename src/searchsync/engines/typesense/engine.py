"""Typesense engine — REST connector for Typesense (v0.25+).

Talks to the `REST API`_ with ``httpx``. Every live index is a Typesense
collection alias; the collection behind it alternates between
``<name>_swap_a`` and ``<name>_swap_b`` on every rebuild, so repointing
the alias is the atomic swap.

.. _REST API: https://typesense.org/docs/latest/api/

Usage::

    engine = TypesenseEngine(base_url="http://localhost:8108", api_key="xyz")
    await engine.initialize()
    result = await engine.search(index, "london bridge", SearchOptions())
"""

from __future__ import annotations

import json
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
from searchsync.exceptions import EngineConnectionError, QueryError
from searchsync.models.index import Index
from searchsync.models.mapping import FieldMapping, FieldType
from searchsync.models.options import SearchOptions
from searchsync.models.result import CanonicalSearchResult, NumericStats

logger = logging.getLogger(__name__)

_PRE_TAG = "<mark>"
_POST_TAG = "</mark>"

_BACKING_SUFFIXES = ("_swap_a", "_swap_b")

# ``string*`` accepts a single string or an array of strings.
_TYPE_MAP: dict[FieldType, tuple[str, bool]] = {
    FieldType.TEXT: ("string*", False),
    FieldType.KEYWORD: ("string*", True),
    FieldType.INTEGER: ("int32", False),
    FieldType.FLOAT: ("float", False),
    FieldType.BOOLEAN: ("bool", False),
    FieldType.DATE: ("int64", False),
    FieldType.GEO_POINT: ("geopoint", False),
    FieldType.FACET: ("string*", True),
    FieldType.OBJECT: ("object", False),
    FieldType.EMBEDDING: ("float[]", False),
}
_SORTABLE_TYPES = {"int32", "int64", "float"}


class TypesenseEngine(SearchEngine):
    """Search engine adapter for Typesense.

    Supports:
      - Weighted full-text search over the string fields of the index
      - Filters, facets and facet stats
      - Highlighting through ``highlights[].snippet(s)``
      - Vector search through ``vector_query``
      - Atomic rebuilds through collection aliases

    Args:
        base_url: Typesense node URL, e.g. ``"http://localhost:8108"``.
        api_key: Admin API key.
        timeout: HTTP request timeout in seconds.
        index_prefix: Prefix prepended to every collection name.
        **kwargs: Extra keyword arguments stored for future use.
    """

    supports_atomic_swap = True
    date_format = "epoch"

    def __init__(
        self,
        base_url: str = "http://localhost:8108",
        api_key: str | None = None,
        timeout: float = 30.0,
        index_prefix: str = "",
        **kwargs: Any,
    ) -> None:
        super().__init__(index_prefix=index_prefix, **kwargs)
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @property
    def name(self) -> str:
        return "typesense"

    async def initialize(self) -> None:
        """Create the ``httpx.AsyncClient``."""
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["X-TYPESENSE-API-KEY"] = self._api_key

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout),
            headers=headers,
        )
        logger.info("Typesense client created for %s", self._base_url)

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
            return resp.status_code == 200 and resp.json().get("ok") is True
        except httpx.HTTPError:
            logger.debug("Typesense health probe failed", exc_info=True)
            return False

    # ── Index lifecycle ──────────────────────────────────────────────────

    async def index_exists(self, index: Index) -> bool:
        resp = await self._request("GET", f"/collections/{self.index_name(index)}", allow_404=True)
        return resp is not None

    async def create_index(self, index: Index) -> None:
        """Create the collection. A live index is created as ``<name>_swap_a`` behind a ``<name>`` alias."""
        name = self.index_name(index)
        target = name if name.endswith(_BACKING_SUFFIXES) else f"{name}_swap_a"
        await self._request("POST", "/collections", json=self.build_schema(target, index.field_mappings))
        if target != name:
            await self._request("PUT", f"/aliases/{name}", json={"collection_name": target})
        logger.info("Created Typesense collection %s", target)

    async def delete_index(self, index: Index) -> None:
        name = self.index_name(index)
        target = await self._alias_target(name)
        if target is not None:
            await self._request("DELETE", f"/aliases/{name}", allow_404=True)
            await self._request("DELETE", f"/collections/{target}", allow_404=True)
        else:
            await self._request("DELETE", f"/collections/{name}", allow_404=True)

    async def update_index_settings(self, index: Index) -> None:
        """Add new fields and re-create changed ones. Typesense cannot alter a field in place."""
        collection = await self._collection(index)
        info = await self._get_json(f"/collections/{collection}")
        current = {field["name"]: field for field in info.get("fields", [])}

        changes: list[dict[str, Any]] = []
        for field in self.build_schema(collection, index.field_mappings)["fields"]:
            existing = current.get(field["name"])
            if existing is not None:
                if (existing.get("type"), existing.get("facet")) == (field["type"], field["facet"]):
                    continue
                changes.append({"name": field["name"], "drop": True})
            changes.append(field)
        if changes:
            await self._request("PATCH", f"/collections/{collection}", json={"fields": changes})
            logger.info("Updated %d field(s) of Typesense collection %s", len(changes), collection)

    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        return await self._get_json(f"/collections/{self.index_name(index)}")

    async def list_indexes(self) -> list[str]:
        collections = [c["name"] for c in await self._get_json("/collections")]
        aliases = (await self._get_json("/aliases")).get("aliases", [])
        backing = {a["collection_name"] for a in aliases}
        names = [a["name"] for a in aliases] + [c for c in collections if c not in backing]
        return [n for n in names if n.startswith(self._index_prefix)]

    # ── Document writes ──────────────────────────────────────────────────

    async def index_documents(self, index: Index, documents: list[dict[str, Any]]) -> None:
        prepared = self.prepare_documents(index, documents)
        if not prepared:
            return
        lines = []
        for document in prepared:
            document["objectID"] = str(document["objectID"])
            document["id"] = document["objectID"]
            lines.append(json.dumps(document))

        resp = await self._request(
            "POST",
            f"/collections/{self.index_name(index)}/documents/import",
            params={"action": "upsert"},
            content="\n".join(lines),
            headers={"Content-Type": "text/plain"},
        )
        failures = [r for r in self._json_lines(resp.text) if r.get("success") is False]
        if failures:
            raise QueryError(
                f"Typesense rejected {len(failures)} of {len(prepared)} documents: "
                f"{failures[0].get('error', 'unknown error')}"
            )

    async def delete_document(self, index: Index, document_id: str) -> None:
        await self._request(
            "DELETE", f"/collections/{self.index_name(index)}/documents/{document_id}", allow_404=True
        )

    async def delete_documents(self, index: Index, document_ids: list[str]) -> None:
        if not document_ids:
            return
        await self._request(
            "DELETE",
            f"/collections/{self.index_name(index)}/documents",
            params={"filter_by": "id:[" + ",".join(self._literal(str(i)) for i in document_ids) + "]"},
        )

    async def flush_index(self, index: Index) -> None:
        """Drop and re-create the backing collection with its current schema."""
        collection = await self._collection(index)
        info = await self._get_json(f"/collections/{collection}")
        await self._request("DELETE", f"/collections/{collection}")
        schema: dict[str, Any] = {"name": collection, "fields": info.get("fields", [])}
        if info.get("enable_nested_fields"):
            schema["enable_nested_fields"] = True
        await self._request("POST", "/collections", json=schema)
        logger.info("Flushed Typesense collection %s", collection)

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_document(self, index: Index, document_id: str) -> dict[str, Any] | None:
        resp = await self._request(
            "GET", f"/collections/{self.index_name(index)}/documents/{document_id}", allow_404=True
        )
        if resp is None:
            return None
        document = resp.json()
        document.pop("id", None)
        return document

    async def get_document_count(self, index: Index) -> int:
        return int((await self._get_json(f"/collections/{self.index_name(index)}")).get("num_documents", 0))

    async def get_all_document_ids(self, index: Index) -> list[str]:
        resp = await self._request(
            "GET",
            f"/collections/{self.index_name(index)}/documents/export",
            params={"include_fields": "id"},
        )
        return [str(document["id"]) for document in self._json_lines(resp.text) if "id" in document]

    async def search(self, index: Index, query: str, options: SearchOptions) -> CanonicalSearchResult:
        """Execute a search through ``/multi_search``, which accepts long vector queries in the body."""
        results = await self.multi_search([(index, query, options)])
        return results[0]

    async def multi_search(self, queries: list[tuple[Index, str, SearchOptions]]) -> list[CanonicalSearchResult]:
        if not queries:
            return []
        started = time.monotonic()
        payload = {
            "searches": [
                {"collection": self.index_name(index), **self.build_search_params(index, query, options)}
                for index, query, options in queries
            ]
        }
        resp = await self._request("POST", "/multi_search", json=payload)
        results = []
        for (_, _, options), native in zip(queries, resp.json().get("results", []), strict=False):
            if "error" in native:
                raise QueryError(f"Typesense search failed ({native.get('code')}): {native['error']}")
            results.append(self._to_result(options, native, started))
        return results

    # ── Atomic swap ──────────────────────────────────────────────────────

    async def build_swap_handle(self, index: Index) -> str:
        """Alternate between ``_swap_a`` and ``_swap_b`` based on the alias's current collection."""
        target = await self._alias_target(self.index_name(index))
        if target is not None and target.endswith("_swap_a"):
            return f"{index.handle}_swap_b"
        return f"{index.handle}_swap_a"

    async def swap_index(self, index: Index, swap_index: Index) -> None:
        """Repoint the live alias at ``swap_index`` and drop the previous collection."""
        alias = self.index_name(index)
        new_target = self.index_name(swap_index)
        current = await self._alias_target(alias)

        if current is None and await self._request("GET", f"/collections/{alias}", allow_404=True) is not None:
            logger.warning("Replacing concrete Typesense collection %s with an alias", alias)
            await self._request("DELETE", f"/collections/{alias}")
        await self._request("PUT", f"/aliases/{alias}", json={"collection_name": new_target})

        if current is not None and current != new_target:
            await self._request("DELETE", f"/collections/{current}", allow_404=True)
        logger.info("Pointed alias %s at %s (previously %s)", alias, new_target, current)

    async def _alias_target(self, alias: str) -> str | None:
        resp = await self._request("GET", f"/aliases/{alias}", allow_404=True)
        return resp.json().get("collection_name") if resp is not None else None

    async def _collection(self, index: Index) -> str:
        """Concrete collection name behind the index's alias, or the name itself."""
        name = self.index_name(index)
        return await self._alias_target(name) or name

    # ── Query building ───────────────────────────────────────────────────

    def build_schema(self, collection: str, mappings: list[FieldMapping]) -> dict[str, Any]:
        fields: list[dict[str, Any]] = []
        for mapping in mappings:
            if not mapping.enabled:
                continue
            native, facet = _TYPE_MAP.get(mapping.index_field_type, ("string*", False))
            field: dict[str, Any] = {"name": mapping.index_field_name, "type": native, "facet": facet, "optional": True}
            if native in _SORTABLE_TYPES:
                field["sort"] = True
            elif native == "float[]":
                field["num_dim"] = int(mapping.resolver_config.get("dimension", 1024))
            fields.append(field)

        schema: dict[str, Any] = {"name": collection, "fields": fields or [{"name": ".*", "type": "auto"}]}
        if any(f["type"] == "object" for f in fields):
            schema["enable_nested_fields"] = True
        return schema

    def build_search_params(self, index: Index, query: str, options: SearchOptions) -> dict[str, Any]:
        params: dict[str, Any] = {
            "q": query or "*",
            "page": options.page,
            "per_page": options.per_page,
        }
        if options.fields:
            params["query_by"] = ",".join(options.fields)
        else:
            mappings = self.searchable_mappings(index)
            params["query_by"] = ",".join(m.index_field_name for m in mappings) or "*"
            if mappings:
                params["query_by_weights"] = ",".join(str(m.weight) for m in mappings)

        if options.attributes_to_retrieve is not None:
            params["include_fields"] = ",".join(options.attributes_to_retrieve)
        if options.sort:
            params["sort_by"] = ",".join(f"{field}:{direction}" for field, direction in options.sort.items())

        facet_fields = list(dict.fromkeys([*options.facets, *options.stats]))
        if facet_fields:
            params["facet_by"] = ",".join(facet_fields)
        if options.filters:
            params["filter_by"] = self.build_filter(options.filters)

        highlight_fields = options.highlight_fields()
        if highlight_fields is not None:
            if highlight_fields:
                params["highlight_fields"] = ",".join(highlight_fields)
            params["highlight_start_tag"] = _PRE_TAG
            params["highlight_end_tag"] = _POST_TAG

        if options.vector_search and options.embedding and options.embedding_field:
            vector = ",".join(str(v) for v in options.embedding)
            params["vector_query"] = f"{options.embedding_field}:([{vector}], k: {options.offset + options.per_page})"
        return params

    @staticmethod
    def build_filter(filters: dict[str, list[Any]]) -> str:
        """``field:=[v, ...]`` expressions, OR within a field and AND across fields."""
        return " && ".join(
            f"{field}:=[{','.join(TypesenseEngine._literal(value) for value in values)}]"
            for field, values in filters.items()
        )

    @staticmethod
    def _literal(value: Any) -> str:
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, int | float):
            return str(value)
        return "`" + str(value).replace("`", "") + "`"

    # ── Response normalisation ───────────────────────────────────────────

    def _to_result(self, options: SearchOptions, data: dict[str, Any], started: float) -> CanonicalSearchResult:
        highlighting = options.highlight_fields() is not None
        hits = []
        for raw_hit in data.get("hits", []):
            document = dict(raw_hit.get("document") or {})
            object_id = document.pop("id", None)
            score = raw_hit.get("text_match")
            if "vector_distance" in raw_hit:
                score = 1.0 - float(raw_hit["vector_distance"])
            highlights = normalise_highlights(self._snippets_to_match_levels(raw_hit)) if highlighting else {}
            hits.append(
                normalise_hit(
                    document,
                    object_id=document.get("objectID", object_id),
                    score=score,
                    highlights=highlights,
                )
            )

        total_hits = int(data.get("found", len(hits)))
        facets = {}
        stats = {}
        for facet in data.get("facet_counts") or []:
            field = facet.get("field_name")
            if field in options.facets:
                facets[field] = tuple(normalise_facet_counts({c["value"]: c["count"] for c in facet.get("counts", [])}))
            facet_stats = facet.get("stats") or {}
            if field in options.stats and "min" in facet_stats and "max" in facet_stats:
                stats[field] = NumericStats(min=facet_stats["min"], max=facet_stats["max"])
        if options.histogram:
            logger.debug("Typesense has no histogram support; ignoring %s", list(options.histogram))

        return CanonicalSearchResult(
            hits=tuple(hits),
            total_hits=total_hits,
            page=options.page,
            per_page=options.per_page,
            total_pages=compute_total_pages(total_hits, options.per_page),
            facets=facets,
            stats=stats,
            raw=data,
            timing=self.timing(options, started, data.get("search_time_ms")),
        )

    @staticmethod
    def _snippets_to_match_levels(raw_hit: dict[str, Any]) -> dict[str, Any]:
        """Mark ``highlights[]`` snippets as matched when they carry the highlight tag."""

        def entry(snippet: Any) -> dict[str, Any] | None:
            if not isinstance(snippet, str):
                return None
            return {"value": snippet, "matchLevel": "full" if _PRE_TAG in snippet else "none"}

        converted: dict[str, Any] = {}
        for highlight in raw_hit.get("highlights") or []:
            field = highlight.get("field")
            if not field:
                continue
            if "snippets" in highlight:
                converted[field] = [e for s in highlight["snippets"] if (e := entry(s)) is not None]
            elif (e := entry(highlight.get("snippet"))) is not None:
                converted[field] = e
        return converted

    # ── HTTP helpers ─────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, *, allow_404: bool = False, **kwargs: Any) -> httpx.Response | None:
        if not self._client:
            raise EngineConnectionError("Typesense client not initialized.")
        try:
            resp = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise EngineConnectionError(f"Typesense request {method} {path} failed: {e}") from e
        except httpx.HTTPError as e:
            raise QueryError(f"Typesense request {method} {path} failed: {e}") from e

        if resp.status_code == 404 and allow_404:
            return None
        if resp.status_code in (401, 403):
            raise EngineConnectionError(f"Typesense rejected credentials ({resp.status_code}) for {path}")
        if resp.status_code >= 400:
            raise QueryError(f"Typesense {method} {path} returned {resp.status_code}: {resp.text}")
        return resp

    async def _get_json(self, path: str) -> Any:
        resp = await self._request("GET", path)
        return resp.json()

    @staticmethod
    def _json_lines(text: str) -> list[dict[str, Any]]:
        return [json.loads(line) for line in text.splitlines() if line.strip()]
