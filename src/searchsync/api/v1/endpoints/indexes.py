"""Index endpoints — search, document lookup, status and management operations.

Search options arrive as query parameters and are parsed into
``SearchOptions``; a bad value answers 422 naming the option. Unknown
index handles answer 404 and backend failures 502 (see the error
handlers in ``searchsync.api.app``).
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from searchsync.api.deps import get_service
from searchsync.core.service import IndexStatus, SearchSyncService
from searchsync.exceptions import ValidationError
from searchsync.models.result import ActiveFacetValue, HistogramBucket, NumericStats

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/indexes")


# ── Response models ──────────────────────────────────────────────────────


class SearchResponse(BaseModel):
    """Canonical search result as returned over HTTP."""

    index: str
    query: str
    hits: list[dict[str, Any]] = Field(description="Hits with objectID, _score and _highlights")
    total_hits: int
    page: int
    per_page: int
    total_pages: int
    facets: dict[str, list[ActiveFacetValue]] = Field(description="Facet counts, active when filtered on")
    stats: dict[str, NumericStats]
    histograms: dict[str, list[HistogramBucket]]
    suggestions: list[str]
    timing: dict[str, float] | None = None
    raw: dict[str, Any] | None = Field(default=None, description="Native response, only with include_raw")


class DocumentResponse(BaseModel):
    index: str
    id: str
    document: dict[str, Any]
    roles: dict[str, str] = Field(description="Role to field name map of the index")


class OperationRequest(BaseModel):
    """Optional arguments for management operations."""

    fresh: bool | None = Field(default=None, description="redetect: discard current mappings")
    item_id: str | None = Field(default=None, description="validate: validate against this item only")
    site: str | None = Field(default=None, description="validate: site of the item")


# ── Query parameter parsing ──────────────────────────────────────────────


def _csv(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return [v.strip() for v in value.split(",") if v.strip()]


def _parse_sort(value: str | None) -> dict[str, str]:
    sort: dict[str, str] = {}
    for part in _csv(value) or []:
        field, _, direction = part.partition(":")
        sort[field] = direction or "asc"
    return sort


def _parse_filters(values: list[str]) -> dict[str, list[str]]:
    filters: dict[str, list[str]] = {}
    for value in values:
        field, sep, term = value.partition(":")
        if not sep or not field:
            raise ValidationError(f"Filter '{value}' must look like field:value", option="filters")
        filters.setdefault(field, []).append(term)
    return filters


def _parse_json(value: str | None, option: str) -> Any:
    if value is None:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise ValidationError(f"'{option}' must be valid JSON", option=option) from e


# ── Endpoints ────────────────────────────────────────────────────────────


@router.get(
    "/{handle}/search",
    response_model=SearchResponse,
    summary="Search an index",
    description=(
        "Run a backend-agnostic query. List parameters are comma separated; "
        "filters repeat as `filter=field:value`; `histogram` is JSON, e.g. "
        '`{"price": 5}` or `{"price": {"interval": 10}}`.'
    ),
    responses={
        404: {"description": "Unknown index handle"},
        422: {"description": "Invalid search option or disabled index"},
        502: {"description": "Search backend failure"},
    },
)
async def search_index(
    handle: str,
    q: str = Query(default="", description="Query text"),
    page: int = Query(default=1, description="Page number (1-based)"),
    per_page: int = Query(default=20, description="Hits per page"),
    fields: str | None = Query(default=None, description="Restrict the query to these fields"),
    sort: str | None = Query(default=None, description="Sort spec, e.g. postDate:desc,title:asc"),
    facets: str | None = Query(default=None, description="Facet fields"),
    filter_values: list[str] = Query(default=[], alias="filter", description="Filters as field:value, repeatable"),
    highlight: bool = Query(default=False, description="Highlight matches"),
    suggest: bool = Query(default=False, description="Return spelling suggestions"),
    vector_search: bool = Query(default=False, description="Run a vector or hybrid query"),
    embedding_field: str | None = Query(default=None, description="Embedding field for vector search"),
    stats: str | None = Query(default=None, description="Numeric fields for min/max stats"),
    histogram: str | None = Query(default=None, description="Histogram spec as JSON"),
    attributes: str | None = Query(default=None, description="Attributes to retrieve"),
    include_timing: bool = Query(default=False, description="Attach timing metadata"),
    include_raw: bool = Query(default=False, description="Include the native engine response"),
    service: SearchSyncService = Depends(get_service),
) -> SearchResponse:
    options: dict[str, Any] = {
        "page": page,
        "per_page": per_page,
        "fields": _csv(fields),
        "sort": _parse_sort(sort),
        "facets": _csv(facets) or [],
        "filters": _parse_filters(filter_values),
        "highlight": highlight,
        "suggest": suggest,
        "vector_search": vector_search,
        "embedding_field": embedding_field,
        "stats": _csv(stats) or [],
        "histogram": _parse_json(histogram, "histogram") or {},
        "attributes_to_retrieve": _csv(attributes),
        "include_timing": include_timing,
    }
    result = await service.search(handle, q, options)
    return SearchResponse(
        index=handle,
        query=q,
        hits=list(result.hits),
        total_hits=result.total_hits,
        page=result.page,
        per_page=result.per_page,
        total_pages=result.total_pages,
        facets=result.facets_with_active(options["filters"]),
        stats=result.stats,
        histograms={field: list(buckets) for field, buckets in result.histograms.items()},
        suggestions=list(result.suggestions),
        timing=result.timing,
        raw=result.raw if include_raw else None,
    )


@router.get(
    "/{handle}/documents/{document_id}",
    response_model=DocumentResponse,
    summary="Fetch one document",
    responses={404: {"description": "Unknown index handle or document"}},
)
async def get_document(
    handle: str,
    document_id: str,
    service: SearchSyncService = Depends(get_service),
) -> DocumentResponse:
    resolved = await service.resolve_document(handle, document_id)
    if resolved.document is None:
        raise HTTPException(status_code=404, detail=f"Document '{document_id}' not found in index '{handle}'")
    return DocumentResponse(
        index=handle,
        id=resolved.id,
        document=resolved.document,
        roles={role.value: field for role, field in resolved.roles.items()},
    )


@router.get(
    "/{handle}/status",
    response_model=IndexStatus,
    summary="Index status",
    description="Connection state, remote document count and sync state of one index.",
)
async def index_status(
    handle: str,
    service: SearchSyncService = Depends(get_service),
) -> IndexStatus:
    return await service.status(handle)


@router.post(
    "/{handle}/{operation}",
    summary="Run a management operation",
    description=(
        "Operations: `create`, `delete`, `settings`, `import`, `flush`, `refresh`, "
        "`redetect`, `validate`, `status`."
    ),
    responses={
        404: {"description": "Unknown index handle"},
        422: {"description": "Unknown operation or operation not allowed for this index"},
        502: {"description": "Search backend failure"},
    },
)
async def perform_operation(
    handle: str,
    operation: str,
    request: OperationRequest | None = Body(default=None),
    service: SearchSyncService = Depends(get_service),
) -> dict[str, Any]:
    kwargs: dict[str, Any] = {}
    if request is not None:
        if operation == "redetect" and request.fresh is not None:
            kwargs["fresh"] = request.fresh
        if operation == "validate":
            kwargs.update(item_id=request.item_id, site=request.site)
    logger.info("Running %s on index %s", operation, handle)
    return await service.perform(handle, operation, **kwargs)
