"""Canonical search result — the one result shape every engine produces.

Engines translate their native responses into ``CanonicalSearchResult``.
The model is frozen: it is built once per query and never mutated.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

if TYPE_CHECKING:
    from searchsync.models.document import UnresolvedDocument


class FacetValue(BaseModel):
    """One facet value and its document count."""

    model_config = ConfigDict(frozen=True)

    value: str = Field(description="Facet value")
    count: int = Field(ge=0, description="Number of matching documents")


class ActiveFacetValue(FacetValue):
    """A facet value marked with whether it is part of the active filters."""

    active: bool = Field(default=False, description="Whether the value is currently filtered on")


class NumericStats(BaseModel):
    """Numeric range of a field across the matching documents."""

    model_config = ConfigDict(frozen=True)

    min: float
    max: float


class HistogramBucket(BaseModel):
    """One histogram bucket."""

    model_config = ConfigDict(frozen=True)

    key: float = Field(description="Lower bound of the bucket")
    count: int = Field(ge=0, description="Number of documents in the bucket")


class CanonicalSearchResult(BaseModel):
    """Backend-agnostic search result.

    Every hit carries an ``objectID`` string, a float ``_score`` and a
    ``_highlights`` map of field to matched fragments.
    """

    model_config = ConfigDict(frozen=True)

    hits: tuple[dict[str, Any], ...] = Field(default=(), description="Ordered, flat hit documents")
    total_hits: int = Field(default=0, ge=0, description="Total number of matching documents")
    page: int = Field(default=1, ge=1, description="Current page (1-based)")
    per_page: int = Field(default=20, gt=0, description="Hits per page")
    total_pages: int = Field(default=0, ge=0, description="Total number of pages")
    facets: dict[str, tuple[FacetValue, ...]] = Field(default_factory=dict, description="Facet counts per field")
    stats: dict[str, NumericStats] = Field(default_factory=dict, description="Numeric min/max per field")
    histograms: dict[str, tuple[HistogramBucket, ...]] = Field(
        default_factory=dict, description="Histogram buckets per field, ordered by key"
    )
    suggestions: tuple[str, ...] = Field(default=(), description="Spelling suggestions")
    raw: dict[str, Any] = Field(default_factory=dict, description="Unmodified native response")
    timing: dict[str, float] | None = Field(default=None, description="Optional timing metadata in ms")

    @field_validator("hits")
    @classmethod
    def _check_hits(cls, hits: tuple[dict[str, Any], ...]) -> tuple[dict[str, Any], ...]:
        checked = []
        for hit in hits:
            object_id = hit.get("objectID")
            if object_id is None or str(object_id) == "":
                raise ValueError("Every hit must carry a non-empty objectID")
            if not isinstance(object_id, str) or not isinstance(hit.get("_score"), float):
                hit = {**hit, "objectID": str(object_id), "_score": float(hit.get("_score") or 0.0)}
            if "_highlights" not in hit:
                hit = {**hit, "_highlights": {}}
            checked.append(hit)
        return tuple(checked)

    @field_validator("histograms")
    @classmethod
    def _order_buckets(
        cls, histograms: dict[str, tuple[HistogramBucket, ...]]
    ) -> dict[str, tuple[HistogramBucket, ...]]:
        return {field: tuple(sorted(buckets, key=lambda b: b.key)) for field, buckets in histograms.items()}

    def __len__(self) -> int:
        return len(self.hits)

    @classmethod
    def empty(cls, page: int = 1, per_page: int = 20, raw: dict[str, Any] | None = None) -> CanonicalSearchResult:
        return cls(page=page, per_page=per_page, raw=raw or {})

    def facets_with_active(self, filters: dict[str, Any] | None) -> dict[str, list[ActiveFacetValue]]:
        """Return facets with each value marked ``active`` when it is filtered on.

        Filter values may be scalars or lists; comparison is by string value.
        Counts and values are passed through unchanged.
        """
        filters = filters or {}
        enriched: dict[str, list[ActiveFacetValue]] = {}
        for field, values in self.facets.items():
            selected = filters.get(field)
            if selected is None:
                active_values: set[str] = set()
            elif isinstance(selected, list | tuple | set):
                active_values = {str(v) for v in selected}
            else:
                active_values = {str(selected)}
            enriched[field] = [
                ActiveFacetValue(value=v.value, count=v.count, active=v.value in active_values) for v in values
            ]
        return enriched

    def hit_documents(self, handle: str) -> list[UnresolvedDocument]:
        """Unresolved references for each hit, for later full-document lookup."""
        from searchsync.models.document import UnresolvedDocument

        return [UnresolvedDocument(handle=handle, id=hit["objectID"]) for hit in self.hits]
