"""Content-change events and the pure planning step that turns them into index operations.

``plan_operations`` has no side effects: given one event and the configured
indexes it returns the upserts and deletes to queue. The orchestrator
decides what to do with them.
"""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from searchsync.models.content import ContentItem
from searchsync.models.index import Index


class ContentEventType(StrEnum):
    SAVED = "saved"
    DELETED = "deleted"
    RESTORED = "restored"
    SLUG_CHANGED = "slug_changed"


class ContentEvent(BaseModel):
    """A change notification from the content repository."""

    model_config = ConfigDict(frozen=True)

    type: ContentEventType
    item: ContentItem


class IndexOperation(StrEnum):
    UPSERT = "upsert"
    DELETE = "delete"


class PlannedOperation(BaseModel):
    """One upsert or delete of one item in one index."""

    model_config = ConfigDict(frozen=True)

    index_handle: str
    operation: IndexOperation
    item_id: str
    site: str | None = Field(default=None, description="Site of the item, None for every site")

    @property
    def key(self) -> str:
        """Deduplication key, ``index:item:site``."""
        return f"{self.index_handle}:{self.item_id}:{self.site}"


def target_indexes(item: ContentItem, indexes: list[Index]) -> list[Index]:
    """Enabled synced indexes whose scope includes the item."""
    return [i for i in indexes if i.enabled and not i.is_readonly and i.covers(item)]


def plan_operations(event: ContentEvent, indexes: list[Index]) -> list[PlannedOperation]:
    """Index operations caused by one content event.

    Drafts and revisions never touch an index. Saving an item that is not
    live (disabled, pending, expired) removes it; deleting removes it;
    restoring and slug changes upsert it.
    """
    item = event.item
    if item.is_draft or item.is_revision:
        return []

    if event.type == ContentEventType.DELETED:
        operation = IndexOperation.DELETE
    elif event.type == ContentEventType.SAVED and not item.is_live:
        operation = IndexOperation.DELETE
    else:
        operation = IndexOperation.UPSERT

    return [
        PlannedOperation(index_handle=index.handle, operation=operation, item_id=str(item.id), site=item.site)
        for index in target_indexes(item, indexes)
    ]
