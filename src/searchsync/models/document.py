"""Document references — a pointer to one document in one index.

A reference starts ``UnresolvedDocument(handle, id)``. Calling
``resolve()`` fetches the document and the index's role map and returns a
``ResolvedDocument``. Nothing is fetched implicitly.
"""

from __future__ import annotations

from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, Field

from searchsync.models.mapping import FieldRole


class DocumentSource(Protocol):
    """Anything that can fetch documents and role maps by index handle."""

    async def get_document(self, handle: str, document_id: str) -> dict[str, Any] | None: ...

    async def role_map(self, handle: str) -> dict[FieldRole, str]: ...


class UnresolvedDocument(BaseModel):
    """A reference that has not been fetched yet."""

    model_config = ConfigDict(frozen=True)

    handle: str = Field(description="Index handle")
    id: str = Field(description="Document objectID")

    async def resolve(self, source: DocumentSource) -> ResolvedDocument:
        document = await source.get_document(self.handle, self.id)
        roles = await source.role_map(self.handle) if document is not None else {}
        return ResolvedDocument(handle=self.handle, id=self.id, document=document, roles=roles)


class ResolvedDocument(BaseModel):
    """A fetched document plus the role map captured at resolution time."""

    model_config = ConfigDict(frozen=True)

    handle: str
    id: str
    document: dict[str, Any] | None = Field(default=None, description="None when the document was not found")
    roles: dict[FieldRole, str] = Field(default_factory=dict)

    @property
    def found(self) -> bool:
        return self.document is not None

    @property
    def item_id(self) -> int | None:
        return int(self.id) if self.id.isdigit() else None

    def get(self, field: str, default: Any = None) -> Any:
        if self.document is None:
            return default
        return self.document.get(field, default)

    def role_value(self, role: FieldRole) -> Any:
        field = self.roles.get(role)
        return self.get(field) if field else None

    @property
    def title(self) -> Any:
        return self.role_value(FieldRole.TITLE)

    @property
    def url(self) -> Any:
        return self.role_value(FieldRole.URL)

    @property
    def image(self) -> Any:
        return self.role_value(FieldRole.IMAGE)

    @property
    def summary(self) -> Any:
        return self.role_value(FieldRole.SUMMARY)

    @property
    def date(self) -> Any:
        return self.role_value(FieldRole.DATE)

    @property
    def iiif(self) -> Any:
        return self.role_value(FieldRole.IIIF)


DocumentReference = UnresolvedDocument | ResolvedDocument
