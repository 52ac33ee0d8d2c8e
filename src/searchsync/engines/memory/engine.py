"""In-process engine that keeps documents in dictionaries.

Useful for tests, demos and local development where no search backend is
running. Matching is naive term matching over the searchable mappings,
but every canonical feature is covered: filters, sort, facets, stats,
histograms, highlights, vector similarity and atomic swaps.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import math
import re
import time
from typing import Any

from searchsync.engines.base.engine import SearchEngine
from searchsync.engines.base.normalize import (
    bucket_values,
    compute_total_pages,
    normalise_facet_counts,
    normalise_hit,
)
from searchsync.exceptions import EngineConnectionError, QueryError
from searchsync.models.index import Index
from searchsync.models.options import SearchOptions
from searchsync.models.result import CanonicalSearchResult, NumericStats

logger = logging.getLogger(__name__)

_TOKEN = re.compile(r"\w+", re.UNICODE)


class MemoryEngine(SearchEngine):
    """Dictionary-backed engine. Instances sharing nothing start empty."""

    supports_atomic_swap = True

    def __init__(self, index_prefix: str = "", **kwargs: Any) -> None:
        super().__init__(index_prefix=index_prefix, **kwargs)
        self._indexes: dict[str, dict[str, dict[str, Any]]] = {}
        self._settings: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()
        self._ready = False

    @property
    def name(self) -> str:
        return "memory"

    async def initialize(self) -> None:
        self._ready = True

    async def shutdown(self) -> None:
        self._ready = False

    async def test_connection(self) -> bool:
        return self._ready

    # ── Index lifecycle ──────────────────────────────────────────────────

    async def index_exists(self, index: Index) -> bool:
        return self.index_name(index) in self._indexes

    async def create_index(self, index: Index) -> None:
        async with self._lock:
            self._indexes.setdefault(self.index_name(index), {})
            self._settings[self.index_name(index)] = self.build_schema(index)

    async def delete_index(self, index: Index) -> None:
        async with self._lock:
            self._indexes.pop(self.index_name(index), None)
            self._settings.pop(self.index_name(index), None)

    async def update_index_settings(self, index: Index) -> None:
        async with self._lock:
            self._settings[self.index_name(index)] = self.build_schema(index)

    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        return copy.deepcopy(self._settings.get(self.index_name(index), {}))

    async def list_indexes(self) -> list[str]:
        return sorted(n for n in self._indexes if n.startswith(self._index_prefix))

    @staticmethod
    def build_schema(index: Index) -> dict[str, Any]:
        return {
            "fields": {m.index_field_name: m.index_field_type.value for m in index.enabled_mappings()},
            "searchable": [m.index_field_name for m in SearchEngine.searchable_mappings(index)],
        }

    # ── Document writes ──────────────────────────────────────────────────

    async def index_documents(self, index: Index, documents: list[dict[str, Any]]) -> None:
        self._require_ready()
        prepared = self.prepare_documents(index, documents)
        async with self._lock:
            store = self._indexes.setdefault(self.index_name(index), {})
            for document in prepared:
                document_id = str(document["objectID"])
                store[document_id] = {**copy.deepcopy(document), "objectID": document_id}

    async def delete_document(self, index: Index, document_id: str) -> None:
        async with self._lock:
            self._indexes.get(self.index_name(index), {}).pop(str(document_id), None)

    async def delete_documents(self, index: Index, document_ids: list[str]) -> None:
        async with self._lock:
            store = self._indexes.get(self.index_name(index), {})
            for document_id in document_ids:
                store.pop(str(document_id), None)

    async def flush_index(self, index: Index) -> None:
        async with self._lock:
            if self.index_name(index) in self._indexes:
                self._indexes[self.index_name(index)] = {}

    # ── Reads ────────────────────────────────────────────────────────────

    async def get_document(self, index: Index, document_id: str) -> dict[str, Any] | None:
        document = self._indexes.get(self.index_name(index), {}).get(str(document_id))
        return copy.deepcopy(document) if document is not None else None

    async def get_document_count(self, index: Index) -> int:
        return len(self._indexes.get(self.index_name(index), {}))

    async def get_all_document_ids(self, index: Index) -> list[str]:
        return list(self._indexes.get(self.index_name(index), {}))

    async def search(self, index: Index, query: str, options: SearchOptions) -> CanonicalSearchResult:
        self._require_ready()
        started = time.monotonic()
        store = self._indexes.get(self.index_name(index))
        if store is None:
            raise QueryError(f"Index {self.index_name(index)} does not exist")

        fields = options.fields or [m.index_field_name for m in self.searchable_mappings(index)]
        weights = {m.index_field_name: m.weight for m in index.enabled_mappings()}
        terms = [t.lower() for t in _TOKEN.findall(query)]

        scored: list[tuple[float, dict[str, Any]]] = []
        for document in store.values():
            if not self._matches_filters(document, options.filters):
                continue
            if options.vector_search and options.embedding is not None:
                score = self._similarity(document.get(options.embedding_field or ""), options.embedding)
                if score is None:
                    continue
            elif terms:
                score = self._term_score(document, fields or list(document), terms, weights)
                if score == 0:
                    continue
            else:
                score = 1.0
            scored.append((score, document))

        scored.sort(key=lambda pair: (-pair[0], pair[1]["objectID"]))
        for field, direction in reversed(list(options.sort.items())):
            scored.sort(key=lambda pair, f=field: _sort_key(pair[1].get(f)), reverse=direction == "desc")
            scored.sort(key=lambda pair, f=field: pair[1].get(f) is None)

        matched = [document for _, document in scored]
        page = scored[options.offset : options.offset + options.per_page]
        highlight_fields = options.highlight_fields()
        hits = []
        for score, document in page:
            highlights = {}
            if highlight_fields is not None and terms:
                highlights = self._highlight(document, highlight_fields or fields or list(document), terms)
            source = document
            if options.attributes_to_retrieve is not None:
                source = {k: v for k, v in document.items() if k in options.attributes_to_retrieve}
            hits.append(normalise_hit(copy.deepcopy(source), object_id=document["objectID"], score=score, highlights=highlights))

        return CanonicalSearchResult(
            hits=tuple(hits),
            total_hits=len(matched),
            page=options.page,
            per_page=options.per_page,
            total_pages=compute_total_pages(len(matched), options.per_page),
            facets={field: tuple(self._facet(matched, field)) for field in options.facets},
            stats={field: s for field in options.stats if (s := self._stats(matched, field)) is not None},
            histograms={
                field: tuple(
                    bucket_values(
                        _numbers(matched, field),
                        buckets=spec.buckets,
                        interval=spec.interval,
                        lower=spec.min,
                        upper=spec.max,
                    )
                )
                for field, spec in options.histogram.items()
            },
            raw={"engine": "memory", "index": self.index_name(index)},
            timing=self.timing(options, started),
        )

    # ── Atomic swap ──────────────────────────────────────────────────────

    async def swap_index(self, index: Index, swap_index: Index) -> None:
        """Replace the live documents with the swap index's in one step and drop the swap index."""
        live, temporary = self.index_name(index), self.index_name(swap_index)
        async with self._lock:
            if temporary not in self._indexes:
                raise QueryError(f"Swap index {temporary} does not exist")
            self._indexes[live] = self._indexes.pop(temporary)
            self._settings[live] = self._settings.pop(temporary, self._settings.get(live, {}))
        logger.info("Swapped memory index %s with %s", live, temporary)

    # ── Matching helpers ─────────────────────────────────────────────────

    def _require_ready(self) -> None:
        if not self._ready:
            raise EngineConnectionError("Memory engine not initialized.")

    @staticmethod
    def _matches_filters(document: dict[str, Any], filters: dict[str, list[Any]]) -> bool:
        for field, wanted in filters.items():
            values = {str(v) for v in _as_list(document.get(field))}
            if not values & {str(w) for w in wanted}:
                return False
        return True

    @staticmethod
    def _term_score(document: dict[str, Any], fields: list[str], terms: list[str], weights: dict[str, int]) -> float:
        score = 0.0
        for field in fields:
            tokens = {t.lower() for v in _as_list(document.get(field)) for t in _TOKEN.findall(str(v))}
            hits = sum(1 for term in terms if any(token.startswith(term) for token in tokens))
            score += hits * weights.get(field, 1)
        return score

    @staticmethod
    def _similarity(vector: Any, embedding: list[float]) -> float | None:
        if not isinstance(vector, list) or len(vector) != len(embedding):
            return None
        dot = sum(a * b for a, b in zip(vector, embedding, strict=True))
        norm = math.sqrt(sum(a * a for a in vector)) * math.sqrt(sum(b * b for b in embedding))
        return dot / norm if norm else 0.0

    @staticmethod
    def _highlight(document: dict[str, Any], fields: list[str], terms: list[str]) -> dict[str, list[str]]:
        pattern = re.compile(r"\b(" + "|".join(re.escape(t) for t in terms) + r")\w*", re.IGNORECASE)
        highlights: dict[str, list[str]] = {}
        for field in fields:
            fragments = [
                pattern.sub(lambda m: f"<em>{m.group(0)}</em>", str(v))
                for v in _as_list(document.get(field))
                if isinstance(v, str) and pattern.search(v)
            ]
            if fragments:
                highlights[field] = fragments
        return highlights

    @staticmethod
    def _facet(documents: list[dict[str, Any]], field: str) -> list:
        counts: dict[str, int] = {}
        for document in documents:
            for value in _as_list(document.get(field)):
                key = str(value).lower() if isinstance(value, bool) else str(value)
                counts[key] = counts.get(key, 0) + 1
        return normalise_facet_counts(counts)

    @staticmethod
    def _stats(documents: list[dict[str, Any]], field: str) -> NumericStats | None:
        numbers = _numbers(documents, field)
        if not numbers:
            return None
        return NumericStats(min=min(numbers), max=max(numbers))


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _numbers(documents: list[dict[str, Any]], field: str) -> list[float]:
    return [
        float(v)
        for document in documents
        for v in _as_list(document.get(field))
        if isinstance(v, int | float) and not isinstance(v, bool)
    ]


def _sort_key(value: Any) -> tuple[int, float, str]:
    if value is None:
        return (2, 0.0, "")
    if isinstance(value, int | float) and not isinstance(value, bool):
        return (0, float(value), "")
    return (1, 0.0, str(value))
