"""Units of work handed to the work queue.

Jobs are plain descriptors: an index handle plus what to do. They carry no
content snapshot. The executor loads the index configuration and the
current state of the item when the job runs, so replaying a job or
running jobs out of order converges on the latest content.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class Job(BaseModel):
    model_config = ConfigDict(frozen=True)

    index_handle: str = Field(description="Handle of the index the job targets")

    @property
    def key(self) -> str:
        return f"{self.index_handle}:{type(self).__name__}"

    def describe(self) -> str:
        return f"{type(self).__name__} for '{self.index_handle}'"


class IndexItemJob(Job):
    """Re-resolve one item and upsert it, or delete it when it is no longer live."""

    item_id: str
    site: str | None = None

    @property
    def key(self) -> str:
        return f"{self.index_handle}:{self.item_id}:{self.site}"

    def describe(self) -> str:
        return f"Index item {self.item_id} into '{self.index_handle}'"


class DeleteItemJob(Job):
    item_id: str
    site: str | None = None

    @property
    def key(self) -> str:
        return f"{self.index_handle}:{self.item_id}:{self.site}"

    def describe(self) -> str:
        return f"Remove item {self.item_id} from '{self.index_handle}'"


class BulkIndexJob(Job):
    """Resolve and upsert one page of the index's scoped content."""

    offset: int = Field(ge=0)
    limit: int = Field(ge=1)

    @property
    def key(self) -> str:
        return f"{self.index_handle}:bulk:{self.offset}"

    def describe(self) -> str:
        return f"Bulk indexing '{self.index_handle}' (offset: {self.offset}, limit: {self.limit})"


class CleanupOrphansJob(Job):
    """Delete remote documents whose items are no longer in scope."""

    @property
    def key(self) -> str:
        return f"{self.index_handle}:cleanup"

    def describe(self) -> str:
        return f"Cleaning up orphan documents from '{self.index_handle}'"
