"""Index configuration model."""

from __future__ import annotations

import uuid
from collections import Counter
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from searchsync.models.mapping import FieldMapping, FieldRole, FieldType

if TYPE_CHECKING:
    from searchsync.models.content import ContentItem


class IndexMode(StrEnum):
    """How an index is populated."""

    SYNCED = "synced"
    READONLY = "readonly"


class IndexScope(BaseModel):
    """Which content an index covers. Empty lists mean "everything"."""

    content_types: list[str] = Field(default_factory=list, description="Content type handles")
    sites: list[str] = Field(default_factory=list, description="Site / locale handles")

    def includes(self, content_type: str, site: str) -> bool:
        if self.content_types and content_type not in self.content_types:
            return False
        return not (self.sites and site not in self.sites)


class Index(BaseModel):
    """A named mapping from content scope to one remote search index."""

    model_config = ConfigDict(validate_assignment=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex, description="Stable record identifier")
    name: str = Field(default="", description="Human-readable name")
    handle: str = Field(pattern=r"^[a-zA-Z][a-zA-Z0-9_]*$", max_length=255, description="Unique handle")
    engine_type: str = Field(description="Engine type tag, e.g. 'opensearch'")
    engine_config: dict[str, Any] = Field(default_factory=dict, description="Engine-specific connection/config")
    scope: IndexScope = Field(default_factory=IndexScope, description="Content scope")
    mode: IndexMode = Field(default=IndexMode.SYNCED, description="synced or readonly")
    enabled: bool = Field(default=True, description="Whether the index takes part in sync and queries")
    field_mappings: list[FieldMapping] = Field(default_factory=list, description="Ordered field mappings")

    @model_validator(mode="after")
    def _check_mappings(self) -> Index:
        names = Counter(m.index_field_name for m in self.field_mappings)
        duplicates = sorted(name for name, count in names.items() if count > 1)
        if duplicates:
            raise ValueError(f"Duplicate index field names: {duplicates}")

        roles = Counter(m.role for m in self.field_mappings if m.role is not None)
        duplicate_roles = sorted(str(role) for role, count in roles.items() if count > 1)
        if duplicate_roles:
            raise ValueError(f"Roles must be unique within an index: {duplicate_roles}")
        return self

    @property
    def is_readonly(self) -> bool:
        return self.mode == IndexMode.READONLY

    def enabled_mappings(self) -> list[FieldMapping]:
        return [m for m in self.field_mappings if m.enabled]

    def mapping_for(self, field_name: str) -> FieldMapping | None:
        for mapping in self.field_mappings:
            if mapping.index_field_name == field_name:
                return mapping
        return None

    def fields_of_type(self, *types: FieldType) -> list[str]:
        return [m.index_field_name for m in self.enabled_mappings() if m.index_field_type in types]

    def embedding_field(self) -> str | None:
        """First enabled mapping of type embedding, or None."""
        fields = self.fields_of_type(FieldType.EMBEDDING)
        return fields[0] if fields else None

    def role_field(self, role: FieldRole) -> str | None:
        for mapping in self.enabled_mappings():
            if mapping.role == role:
                return mapping.index_field_name
        return None

    def covers(self, item: ContentItem) -> bool:
        """Whether a content item falls inside this index's scope."""
        return self.scope.includes(item.content_type, item.site)
