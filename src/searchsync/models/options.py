"""Backend-agnostic query options.

Engines read what they support and ignore the rest. Malformed values and
invalid combinations raise ``searchsync.exceptions.ValidationError`` with
the offending option named.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from searchsync.exceptions import ValidationError


class HistogramSpec(BaseModel):
    """Histogram request for one numeric field.

    Either a fixed bucket count (``buckets``) or a fixed ``interval``,
    optionally bounded by ``min``/``max``.
    """

    model_config = ConfigDict(extra="forbid")

    buckets: int | None = Field(default=None, ge=1, le=1000, description="Fixed number of buckets")
    interval: float | None = Field(default=None, gt=0, description="Fixed bucket width")
    min: float | None = Field(default=None, description="Lower bound")
    max: float | None = Field(default=None, description="Upper bound")

    @model_validator(mode="after")
    def _check(self) -> HistogramSpec:
        if (self.buckets is None) == (self.interval is None):
            raise ValueError("Specify exactly one of 'buckets' or 'interval'")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError("'min' must not exceed 'max'")
        return self


class SearchOptions(BaseModel):
    """Options controlling a single search call."""

    model_config = ConfigDict(extra="forbid")

    per_page: int = Field(default=20, ge=1, le=1000, description="Hits per page")
    page: int = Field(default=1, ge=1, description="Page number (1-based)")
    fields: list[str] | None = Field(default=None, description="Restrict the text query to these fields")
    sort: dict[str, Literal["asc", "desc"]] = Field(default_factory=dict, description="Sort spec {field: asc|desc}")
    facets: list[str] = Field(default_factory=list, description="Fields to compute facet counts for")
    filters: dict[str, list[Any]] = Field(default_factory=dict, description="Filters {field: value | [values]}")
    highlight: bool | list[str] = Field(default=False, description="Highlight all fields or the listed ones")
    suggest: bool = Field(default=False, description="Return spelling suggestions")
    vector_search: bool = Field(default=False, description="Run a vector (or hybrid) query")
    embedding_field: str | None = Field(default=None, description="Embedding field to search")
    embedding: list[float] | None = Field(default=None, description="Precomputed query embedding")
    stats: list[str] = Field(default_factory=list, description="Numeric fields to compute min/max for")
    histogram: dict[str, HistogramSpec] = Field(default_factory=dict, description="Histogram spec per field")
    include_timing: bool = Field(default=False, description="Attach timing metadata to the result")
    attributes_to_retrieve: list[str] | None = Field(default=None, description="Limit returned attributes")

    @field_validator("sort", mode="before")
    @classmethod
    def _lower_sort(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {field: str(direction).lower() for field, direction in v.items()}
        return v

    @field_validator("filters", mode="before")
    @classmethod
    def _wrap_filters(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {field: list(value) if isinstance(value, list | tuple | set) else [value] for field, value in v.items()}
        return v

    @field_validator("histogram", mode="before")
    @classmethod
    def _expand_histogram(cls, v: Any) -> Any:
        if not isinstance(v, dict):
            return v
        expanded: dict[str, Any] = {}
        for field, spec in v.items():
            if isinstance(spec, int) and not isinstance(spec, bool):
                expanded[field] = {"buckets": spec}
            else:
                expanded[field] = spec
        return expanded

    @field_validator("embedding")
    @classmethod
    def _check_embedding(cls, v: list[float] | None) -> list[float] | None:
        if v is not None and not v:
            raise ValueError("embedding must not be empty")
        return v

    @model_validator(mode="after")
    def _check_combinations(self) -> SearchOptions:
        if not self.vector_search:
            if self.embedding is not None:
                raise ValidationError("'embedding' requires vector_search=True", option="embedding")
            if self.embedding_field is not None:
                raise ValidationError("'embedding_field' requires vector_search=True", option="embedding_field")
        return self

    @classmethod
    def parse(cls, data: dict[str, Any] | SearchOptions | None) -> SearchOptions:
        """Build options from a plain dict, naming the offending option on failure."""
        if data is None:
            return cls()
        if isinstance(data, SearchOptions):
            return data
        try:
            return cls.model_validate(data)
        except PydanticValidationError as e:
            error = e.errors()[0]
            loc = error.get("loc") or ()
            option = str(loc[0]) if loc else None
            raise ValidationError(f"Invalid search option '{option}': {error.get('msg')}", option=option) from e

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    def highlight_fields(self) -> list[str] | None:
        """Explicit highlight fields, ``[]`` for "all", or None when disabled."""
        if self.highlight is False:
            return None
        if self.highlight is True:
            return []
        return list(self.highlight)

    def with_embedding(self, field: str | None, embedding: list[float] | None) -> SearchOptions:
        """Copy with the resolved vector settings applied."""
        if field is None or embedding is None:
            return self.model_copy(update={"vector_search": False, "embedding": None, "embedding_field": None})
        return self.model_copy(update={"embedding_field": field, "embedding": embedding})
