"""Field mapping model — one source field to one document field."""

from __future__ import annotations

import uuid
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, model_validator


class FieldType(StrEnum):
    """Target field types understood by every engine."""

    TEXT = "text"
    KEYWORD = "keyword"
    INTEGER = "integer"
    FLOAT = "float"
    BOOLEAN = "boolean"
    DATE = "date"
    GEO_POINT = "geo_point"
    FACET = "facet"
    OBJECT = "object"
    EMBEDDING = "embedding"


class FieldRole(StrEnum):
    """Semantic roles that let generic consumers find canonical fields."""

    TITLE = "title"
    IMAGE = "image"
    SUMMARY = "summary"
    URL = "url"
    DATE = "date"
    IIIF = "iiif"


class FieldMapping(BaseModel):
    """How one piece of source data becomes one document field.

    A mapping points either at a structured content field (``field_uid``,
    plus ``parent_field_uid`` when the field lives inside a repeatable
    nested block) or at a built-in attribute (``attribute``).
    """

    uid: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Stable mapping identifier")
    field_uid: str | None = Field(default=None, description="Source field identifier")
    parent_field_uid: str | None = Field(default=None, description="Nested-block field identifier for sub-fields")
    attribute: str | None = Field(default=None, description="Built-in attribute name (title, slug, postDate ...)")
    field_handle: str | None = Field(default=None, description="Source field handle, informational")
    field_kind: str | None = Field(default=None, description="Source field kind tag, used for resolver dispatch")
    index_field_name: str = Field(min_length=1, max_length=255, description="Target document field name")
    index_field_type: FieldType = Field(default=FieldType.TEXT, description="Target field type")
    role: FieldRole | None = Field(default=None, description="Semantic role, unique per index")
    enabled: bool = Field(default=True, description="Whether the field is resolved and indexed")
    weight: int = Field(default=5, ge=1, le=10, description="Relevance weight for searchable fields")
    resolver_config: dict[str, Any] = Field(default_factory=dict, description="Free-form resolver options")
    sort_order: int = Field(default=0, description="Position within the index's mapping list")

    @model_validator(mode="after")
    def _check_source(self) -> FieldMapping:
        if self.attribute is None and self.field_uid is None:
            raise ValueError("A field mapping needs either a field_uid or an attribute")
        if self.attribute is not None and self.field_uid is not None:
            raise ValueError("A field mapping cannot reference both a field and an attribute")
        if self.parent_field_uid is not None and self.field_uid is None:
            raise ValueError("parent_field_uid requires field_uid")
        return self

    @property
    def is_attribute(self) -> bool:
        return self.attribute is not None

    @property
    def is_sub_field(self) -> bool:
        return self.parent_field_uid is not None

    @property
    def identity(self) -> str:
        """Merge key used by re-detection: attribute name or (parent, field) uids."""
        if self.attribute is not None:
            return f"attr:{self.attribute}"
        if self.parent_field_uid is not None:
            return f"field:{self.parent_field_uid}/{self.field_uid}"
        return f"field:{self.field_uid}"
