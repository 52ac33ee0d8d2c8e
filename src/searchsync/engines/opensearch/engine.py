"""OpenSearch engine — Reference adapter for OpenSearch v2+ and Elasticsearch-compatible clusters.

Uses ``opensearch-py`` (async). Supports weighted full-text search,
filters, facets, numeric stats, histograms, phrase suggestions, kNN and
hybrid vector search, and zero-downtime rebuilds through alias swaps.

Install the optional dependency::

    pip install searchsync[opensearch]
    # or: pip install opensearch-py
"""

from __future__ import annotations

import logging
import time
from typing import Any

from searchsync.engines.base.engine import SearchEngine
from searchsync.engines.base.normalize import (
    compute_total_pages,
    normalise_facet_counts,
    normalise_highlights,
    normalise_histogram,
    normalise_hit,
)
from searchsync.exceptions import ConfigurationError, EngineConnectionError, EngineError, QueryError
from searchsync.models.index import Index
from searchsync.models.mapping import FieldMapping, FieldType
from searchsync.models.options import SearchOptions
from searchsync.models.result import CanonicalSearchResult, NumericStats

logger = logging.getLogger(__name__)

_NATIVE_TYPES: dict[FieldType, str] = {
    FieldType.TEXT: "text",
    FieldType.KEYWORD: "keyword",
    FieldType.INTEGER: "integer",
    FieldType.FLOAT: "float",
    FieldType.BOOLEAN: "boolean",
    FieldType.DATE: "date",
    FieldType.GEO_POINT: "geo_point",
    FieldType.FACET: "keyword",
    FieldType.OBJECT: "object",
    FieldType.EMBEDDING: "knn_vector",
}

_BACKING_SUFFIXES = ("_swap_a", "_swap_b")
_STATS_SUFFIX = "__stats"
_HISTOGRAM_SUFFIX = "__histogram"


def _status(error: Exception) -> Any:
    return getattr(error, "status_code", None)


class OpenSearchEngine(SearchEngine):
    """Search engine adapter for OpenSearch (v2+).

    The live index name is an alias. Its backing index alternates between
    ``<handle>_swap_a`` and ``<handle>_swap_b`` on every rebuild.

    Args:
        hosts: List of node URLs.
        username: Optional HTTP basic-auth username.
        password: Optional HTTP basic-auth password.
        verify_certs: Whether to verify TLS certificates.
        timeout: Request timeout in seconds.
        index_prefix: Prefix prepended to every index name.
        **kwargs: Additional keyword arguments forwarded to ``AsyncOpenSearch``.
    """

    supports_atomic_swap = True

    def __init__(
        self,
        hosts: list[str] | None = None,
        username: str | None = None,
        password: str | None = None,
        verify_certs: bool = True,
        timeout: float = 30.0,
        index_prefix: str = "",
        **kwargs: Any,
    ) -> None:
        super().__init__(index_prefix=index_prefix, **kwargs)
        self._hosts = hosts or ["https://localhost:9200"]
        self._username = username
        self._password = password
        self._verify_certs = verify_certs
        self._timeout = timeout
        self._client: Any = None

    @property
    def name(self) -> str:
        return "opensearch"

    async def initialize(self) -> None:
        """Create the ``AsyncOpenSearch`` client."""
        try:
            from opensearchpy import AsyncOpenSearch
        except ImportError as e:
            raise ConfigurationError(
                "opensearch-py package is required.  Install with: pip install searchsync[opensearch]"
            ) from e

        client_kwargs: dict[str, Any] = {
            "hosts": self._hosts,
            "verify_certs": self._verify_certs,
            "ssl_show_warn": False,
            "timeout": self._timeout,
        }
        if self._username and self._password:
            client_kwargs["http_auth"] = (self._username, self._password)

        client_kwargs.update(self._extra_kwargs)
        self._client = AsyncOpenSearch(**client_kwargs)
        logger.info("OpenSearch client created for %s", self._hosts)

    async def shutdown(self) -> None:
        """Close the OpenSearch client."""
        if self._client:
            await self._client.close()
            self._client = None

    async def test_connection(self) -> bool:
        if not self._client:
            return False
        try:
            return bool(await self._client.ping())
        except Exception:
            logger.debug("OpenSearch ping failed", exc_info=True)
            return False

    # ── Index lifecycle ──────────────────────────────────────────────────

    async def index_exists(self, index: Index) -> bool:
        client = self._require_client()
        return bool(await self._call("index exists", client.indices.exists(index=self.index_name(index))))

    async def create_index(self, index: Index) -> None:
        """Create the index. A live index is created as ``<name>_swap_a`` behind a ``<name>`` alias."""
        client = self._require_client()
        name = self.index_name(index)
        body: dict[str, Any] = {"mappings": self.build_schema(index.field_mappings)}
        if index.embedding_field():
            body["settings"] = {"index": {"knn": True}}

        target = name
        if not name.endswith(_BACKING_SUFFIXES):
            target = f"{name}_swap_a"
            body["aliases"] = {name: {}}
        await self._call("create index", client.indices.create(index=target, body=body))
        logger.info("Created OpenSearch index %s", target)

    async def delete_index(self, index: Index) -> None:
        client = self._require_client()
        name = self.index_name(index)
        target = await self._alias_target(name)
        try:
            if target is not None:
                await client.indices.delete_alias(index=target, name=name)
                await client.indices.delete(index=target)
            else:
                await client.indices.delete(index=name)
        except Exception as e:
            if _status(e) == 404:
                return
            raise self._translate("delete index", e) from e
        logger.info("Deleted OpenSearch index %s", name)

    async def update_index_settings(self, index: Index) -> None:
        client = self._require_client()
        await self._call(
            "put mapping",
            client.indices.put_mapping(index=self.index_name(index), body=self.build_schema(index.field_mappings)),
        )

    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        client = self._require_client()
        name = self.index_name(index)
        response = await self._call("get mapping", client.indices.get_mapping(index=name))
        if name in response:
            return response[name]
        # Aliases answer with the backing index name as the key
        return next(iter(response.values()), {})

    async def list_indexes(self) -> list[str]:
        client = self._require_client()
        response = await self._call("list indexes", client.indices.get_alias(index=f"{self._index_prefix}*"))
        names: set[str] = set()
        for concrete, info in response.items():
            aliases = list((info or {}).get("aliases", {}))
            names.update(aliases or [concrete])
        return sorted(n for n in names if not n.startswith("."))

    async def refresh(self, index: Index) -> None:
        client = self._require_client()
        await self._call("refresh", client.indices.refresh(index=self.index_name(index)))

    # ── Document writes ──────────────────────────────────────────────────

    async def index_documents(self, index: Index, documents: list[dict[str, Any]]) -> None:
        prepared = self.prepare_documents(index, documents)
        if not prepared:
            return

        name = self.index_name(index)
        body: list[dict[str, Any]] = []
        for document in prepared:
            body.append({"index": {"_index": name, "_id": str(document["objectID"])}})
            body.append(document)

        response = await self._call("bulk index", self._require_client().bulk(body=body))
        if response.get("errors"):
            reasons = [
                action.get("error", {}).get("reason", "Unknown error")
                for item in response.get("items", [])
                for action in item.values()
                if "error" in action
            ]
            raise QueryError(f"OpenSearch bulk indexing failed for {len(reasons)} document(s): {'; '.join(reasons[:5])}")

    async def delete_document(self, index: Index, document_id: str) -> None:
        client = self._require_client()
        try:
            await client.delete(index=self.index_name(index), id=str(document_id))
        except Exception as e:
            if _status(e) == 404:
                return
            raise self._translate("delete document", e) from e

    async def delete_documents(self, index: Index, document_ids: list[str]) -> None:
        if not document_ids:
            return
        name = self.index_name(index)
        body = [{"delete": {"_index": name, "_id": str(document_id)}} for document_id in document_ids]
        # Missing ids come back as per-item 404s, which are not errors here
        await self._call("bulk delete", self._require_client().bulk(body=body))

    async def flush_index(self, index: Index) -> None:
        client = self._require_client()
        await self._call(
            "flush",
            client.delete_by_query(
                index=self.index_name(index),
                body={"query": {"match_all": {}}},
                refresh=True,
                conflicts="proceed",
            ),
        )

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_document(self, index: Index, document_id: str) -> dict[str, Any] | None:
        client = self._require_client()
        try:
            response = await client.get(index=self.index_name(index), id=str(document_id))
        except Exception as e:
            if _status(e) == 404:
                return None
            raise self._translate("get document", e) from e
        return response.get("_source")

    async def get_document_count(self, index: Index) -> int:
        response = await self._call("count", self._require_client().count(index=self.index_name(index)))
        return int(response.get("count", 0))

    async def get_all_document_ids(self, index: Index) -> list[str]:
        client = self._require_client()
        body: dict[str, Any] = {"size": 1000, "query": {"match_all": {}}, "sort": ["_doc"], "_source": False}
        ids: list[str] = []
        while True:
            response = await self._call("scan ids", client.search(index=self.index_name(index), body=body))
            hits = response.get("hits", {}).get("hits", [])
            if not hits:
                return ids
            ids.extend(str(hit["_id"]) for hit in hits)
            body["search_after"] = hits[-1]["sort"]

    async def search(self, index: Index, query: str, options: SearchOptions) -> CanonicalSearchResult:
        """Execute a search against OpenSearch and normalise the response."""
        client = self._require_client()
        started = time.monotonic()
        body = self.build_search_body(index, query, options)
        response = await self._call("search", client.search(index=self.index_name(index), body=body))
        return self._to_result(query, options, response, started)

    async def multi_search(self, queries: list[tuple[Index, str, SearchOptions]]) -> list[CanonicalSearchResult]:
        if not queries:
            return []
        client = self._require_client()
        started = time.monotonic()
        body: list[dict[str, Any]] = []
        for index, query, options in queries:
            body.append({"index": self.index_name(index)})
            body.append(self.build_search_body(index, query, options))

        response = await self._call("multi search", client.msearch(body=body))
        results = []
        for (_, query, options), native in zip(queries, response.get("responses", []), strict=False):
            if "error" in native:
                raise QueryError(f"OpenSearch multi search failed: {native['error']}")
            results.append(self._to_result(query, options, native, started))
        return results

    async def sample_documents(self, index: Index, size: int = 5) -> list[dict[str, Any]]:
        body = {"size": size, "query": {"match_all": {}}}
        response = await self._call("sample", self._require_client().search(index=self.index_name(index), body=body))
        return [hit["_source"] for hit in response.get("hits", {}).get("hits", []) if isinstance(hit.get("_source"), dict)]

    # ── Atomic swap ──────────────────────────────────────────────────────

    async def build_swap_handle(self, index: Index) -> str:
        """Alternate between ``_swap_a`` and ``_swap_b`` based on the alias's current target."""
        target = await self._alias_target(self.index_name(index))
        if target is not None and target.endswith("_swap_a"):
            return f"{index.handle}_swap_b"
        return f"{index.handle}_swap_a"

    async def swap_index(self, index: Index, swap_index: Index) -> None:
        """Repoint the live alias at ``swap_index`` and drop the old backing index.

        Every swap is one ``update_aliases`` call. A concrete index still
        holding the live name (created before it was served by an alias) is
        removed inside that same call.
        """
        client = self._require_client()
        alias = self.index_name(index)
        new_target = self.index_name(swap_index)
        current = await self._alias_target(alias)

        actions: list[dict[str, Any]] = [{"add": {"index": new_target, "alias": alias}}]
        if current is not None:
            actions.insert(0, {"remove": {"index": current, "alias": alias}})
        elif await self._call("index exists", client.indices.exists(index=alias)):
            actions.append({"remove_index": {"index": alias}})
        await self._call("update aliases", client.indices.update_aliases(body={"actions": actions}))

        if current is not None:
            await self._call("delete old index", client.indices.delete(index=current))
        logger.info("Pointed alias %s at %s (previously %s)", alias, new_target, current)

    async def _alias_target(self, alias: str) -> str | None:
        client = self._require_client()
        try:
            response = await client.indices.get_alias(name=alias)
        except Exception as e:
            if _status(e) == 404:
                return None
            raise self._translate("get alias", e) from e
        for backing_index, data in response.items():
            if alias in data.get("aliases", {}):
                return backing_index
        return None

    # ── Query building ───────────────────────────────────────────────────

    def build_schema(self, mappings: list[FieldMapping]) -> dict[str, Any]:
        """Native ``mappings`` body for the enabled field mappings."""
        properties: dict[str, Any] = {"objectID": {"type": "keyword"}}
        for mapping in mappings:
            if not mapping.enabled:
                continue
            native = _NATIVE_TYPES.get(mapping.index_field_type, "text")
            definition: dict[str, Any] = {"type": native}
            if native == "text":
                definition["fields"] = {"keyword": {"type": "keyword", "ignore_above": 256}}
            elif native == "date":
                definition["format"] = "epoch_second||epoch_millis||strict_date_optional_time"
            elif native == "knn_vector":
                definition["dimension"] = int(mapping.resolver_config.get("dimension", 1024))
            properties[mapping.index_field_name] = definition
        return {"properties": properties}

    def build_search_body(self, index: Index, query: str, options: SearchOptions) -> dict[str, Any]:
        text_fields = set(index.fields_of_type(FieldType.TEXT))
        fields = options.fields or [
            f"{m.index_field_name}^{m.weight}" for m in self.searchable_mappings(index)
            if m.index_field_type == FieldType.TEXT
        ] or ["*"]

        text_query = None
        if query:
            text_query = {"multi_match": {"query": query, "fields": fields, "type": "bool_prefix"}}

        knn_query = None
        if options.vector_search and options.embedding and options.embedding_field:
            knn_query = {"knn": {options.embedding_field: {"vector": options.embedding, "k": options.per_page}}}

        if text_query and knn_query:
            match: dict[str, Any] = {"bool": {"should": [text_query, knn_query]}}
        else:
            match = knn_query or text_query or {"match_all": {}}

        if options.filters:
            clauses = []
            for field, values in options.filters.items():
                target = f"{field}.keyword" if field in text_fields else field
                clauses.append({"term": {target: values[0]}} if len(values) == 1 else {"terms": {target: values}})
            match = {"bool": {"must": [match], "filter": clauses}}

        body: dict[str, Any] = {"query": match, "from": options.offset, "size": options.per_page}

        if options.sort:
            body["sort"] = [
                {(f"{field}.keyword" if field in text_fields else field): {"order": direction}}
                for field, direction in options.sort.items()
            ]
        if options.attributes_to_retrieve is not None:
            body["_source"] = options.attributes_to_retrieve

        highlight_fields = options.highlight_fields()
        if highlight_fields is not None:
            names = highlight_fields or ["*"]
            body["highlight"] = {"fields": {name: {} for name in names}, "pre_tags": ["<em>"], "post_tags": ["</em>"]}

        suggest_field = (options.fields or sorted(text_fields) or [None])[0]
        if options.suggest and query and suggest_field:
            suggest_field = suggest_field.split("^")[0]
            body["suggest"] = {
                "text": query,
                "phrase_suggestion": {
                    "phrase": {
                        "field": suggest_field,
                        "size": 3,
                        "gram_size": 3,
                        "direct_generator": [{"field": suggest_field, "suggest_mode": "missing"}],
                    }
                },
            }

        aggs = self._build_aggregations(text_fields, options)
        if aggs:
            body["aggs"] = aggs
        return body

    @staticmethod
    def _build_aggregations(text_fields: set[str], options: SearchOptions) -> dict[str, Any]:
        aggs: dict[str, Any] = {}
        for field in options.facets:
            target = f"{field}.keyword" if field in text_fields else field
            aggs[field] = {"terms": {"field": target, "size": 100}}
        for field in options.stats:
            aggs[f"{field}{_STATS_SUFFIX}"] = {"stats": {"field": field}}
        for field, spec in options.histogram.items():
            if spec.interval is not None:
                histogram: dict[str, Any] = {"field": field, "interval": spec.interval, "min_doc_count": 1}
                if spec.min is not None or spec.max is not None:
                    histogram["hard_bounds"] = {k: v for k, v in (("min", spec.min), ("max", spec.max)) if v is not None}
                aggs[f"{field}{_HISTOGRAM_SUFFIX}"] = {"histogram": histogram}
            else:
                aggs[f"{field}{_HISTOGRAM_SUFFIX}"] = {
                    "variable_width_histogram": {"field": field, "buckets": spec.buckets}
                }
        return aggs

    # ── Response normalisation ───────────────────────────────────────────

    def _to_result(
        self, query: str, options: SearchOptions, response: dict[str, Any], started: float
    ) -> CanonicalSearchResult:
        hits_block = response.get("hits", {})
        hits = [
            normalise_hit(
                hit.get("_source") or {},
                object_id=hit["_id"],
                score=hit.get("_score"),
                highlights=normalise_highlights(hit.get("highlight")),
            )
            for hit in hits_block.get("hits", [])
        ]

        total = hits_block.get("total", 0)
        total_hits = int(total.get("value", 0) if isinstance(total, dict) else total)

        facets: dict[str, Any] = {}
        stats: dict[str, NumericStats] = {}
        histograms: dict[str, Any] = {}
        for name, agg in (response.get("aggregations") or {}).items():
            if name.endswith(_STATS_SUFFIX):
                if agg.get("count"):
                    stats[name.removesuffix(_STATS_SUFFIX)] = NumericStats(min=agg["min"], max=agg["max"])
            elif name.endswith(_HISTOGRAM_SUFFIX):
                histograms[name.removesuffix(_HISTOGRAM_SUFFIX)] = normalise_histogram(
                    (bucket.get("min", bucket.get("key")), bucket.get("doc_count", 0)) for bucket in agg.get("buckets", [])
                )
            elif "buckets" in agg:
                facets[name] = normalise_facet_counts(
                    {bucket.get("key_as_string", bucket["key"]): bucket["doc_count"] for bucket in agg["buckets"]}
                )

        suggestions = [
            option["text"]
            for entry in (response.get("suggest") or {}).get("phrase_suggestion", [])
            for option in entry.get("options", [])
            if option.get("text") and option["text"] != query
        ]

        return CanonicalSearchResult(
            hits=tuple(hits),
            total_hits=total_hits,
            page=options.page,
            per_page=options.per_page,
            total_pages=compute_total_pages(total_hits, options.per_page),
            facets={field: tuple(values) for field, values in facets.items()},
            stats=stats,
            histograms={field: tuple(buckets) for field, buckets in histograms.items()},
            suggestions=tuple(suggestions),
            raw=dict(response),
            timing=self.timing(options, started, response.get("took")),
        )

    # ── Helpers ──────────────────────────────────────────────────────────

    def _require_client(self) -> Any:
        if not self._client:
            raise EngineConnectionError("OpenSearch client not initialized.")
        return self._client

    async def _call(self, action: str, awaitable: Any) -> Any:
        try:
            return await awaitable
        except EngineError:
            raise
        except Exception as e:
            raise self._translate(action, e) from e

    @staticmethod
    def _translate(action: str, error: Exception) -> EngineError:
        status = _status(error)
        if status in (401, 403) or status == "N/A" or isinstance(error, ConnectionError | TimeoutError):
            return EngineConnectionError(f"OpenSearch {action} failed: {error}")
        return QueryError(f"OpenSearch {action} failed: {error}")
