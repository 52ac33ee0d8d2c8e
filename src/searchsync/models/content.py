"""Content repository value types.

These describe what the content repository hands to the mapper: content
types with their field layouts, content items with their field values,
and the structured values some field kinds carry (assets, relations,
addresses, option selections, nested blocks).
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class FieldKind(StrEnum):
    """Built-in field kind tags. Repositories may use other tags too."""

    PLAIN_TEXT = "plain_text"
    RICH_TEXT = "rich_text"
    EMAIL = "email"
    URL = "url"
    COLOR = "color"
    COUNTRY = "country"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    TIME = "time"
    OPTIONS = "options"
    MULTI_OPTIONS = "multi_options"
    RELATION = "relation"
    ASSET = "asset"
    ADDRESS = "address"
    MATRIX = "matrix"
    TABLE = "table"
    EMBEDDING = "embedding"


class FieldDescriptor(BaseModel):
    """Layout description of one content field."""

    uid: str = Field(description="Stable field identifier")
    handle: str = Field(description="Field handle, the key into ContentItem.field_values")
    name: str = Field(default="", description="Human-readable name")
    kind: str = Field(default=FieldKind.PLAIN_TEXT, description="Field kind tag")
    searchable: bool = Field(default=True, description="Whether the field is searchable by default")
    decimals: int | None = Field(default=None, description="Number fields: decimal places (0 means integer)")
    block_types: list[BlockType] = Field(default_factory=list, description="Matrix fields: block type layouts")


class BlockType(BaseModel):
    """One variant of a repeatable nested block."""

    handle: str
    name: str = ""
    fields: list[FieldDescriptor] = Field(default_factory=list)


class BlockInstance(BaseModel):
    """One instance of a nested block, with its own layout and values."""

    id: str | int
    type: str = Field(description="Block type handle")
    fields: list[FieldDescriptor] = Field(default_factory=list, description="This instance's own layout")
    values: dict[str, Any] = Field(default_factory=dict, description="Sub-field values keyed by handle")

    def field_by_handle(self, handle: str) -> FieldDescriptor | None:
        for descriptor in self.fields:
            if descriptor.handle == handle:
                return descriptor
        return None

    def value(self, handle: str) -> Any:
        return self.values.get(handle)


class ContentType(BaseModel):
    """A content type (entry type) and its field layout."""

    handle: str
    name: str = ""
    section: str | None = None
    fields: list[FieldDescriptor] = Field(default_factory=list)


class AssetValue(BaseModel):
    id: str | int
    url: str | None = None
    title: str | None = None
    filename: str | None = None
    kind: str = "image"
    width: int | None = None
    height: int | None = None
    alt: str | None = None


class RelatedItem(BaseModel):
    id: str | int
    title: str | None = None
    slug: str | None = None
    uri: str | None = None
    content_type: str | None = None


class AddressValue(BaseModel):
    address_line1: str | None = None
    address_line2: str | None = None
    locality: str | None = None
    administrative_area: str | None = None
    postal_code: str | None = None
    country_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None

    def text(self) -> str | None:
        parts = [
            self.address_line1,
            self.address_line2,
            self.locality,
            self.administrative_area,
            self.postal_code,
            self.country_code,
        ]
        joined = ", ".join(p for p in parts if p)
        return joined or None


class TableValue(BaseModel):
    """Rows of a table field. Each row maps column handle to cell value."""

    columns: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)

    def cells(self) -> list[str]:
        order = self.columns or list(dict.fromkeys(k for row in self.rows for k in row))
        return [str(row[c]) for row in self.rows for c in order if row.get(c) not in (None, "")]


class OptionValue(BaseModel):
    label: str
    value: str
    selected: bool = True


class ContentItem(BaseModel):
    """A content item (entry) as supplied by the content repository."""

    id: str | int = Field(description="Stable item identifier")
    title: str | None = None
    slug: str | None = None
    uri: str | None = None
    status: str = Field(default="live", description="live, pending, expired, disabled")
    is_draft: bool = False
    is_revision: bool = False
    content_type: str = Field(description="Content type handle")
    section: str | None = None
    site: str = Field(default="default", description="Site / locale handle")
    post_date: datetime | None = None
    date_created: datetime | None = None
    date_updated: datetime | None = None
    fields: list[FieldDescriptor] = Field(default_factory=list, description="Field layout")
    field_values: dict[str, Any] = Field(default_factory=dict, description="Values keyed by field handle")

    @property
    def is_live(self) -> bool:
        return self.status == "live" and not self.is_draft and not self.is_revision

    def field_by_uid(self, uid: str) -> FieldDescriptor | None:
        for descriptor in self.fields:
            if descriptor.uid == uid:
                return descriptor
        return None

    def value(self, handle: str) -> Any:
        return self.field_values.get(handle)


FieldDescriptor.model_rebuild()
