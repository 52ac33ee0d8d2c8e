"""Exception taxonomy shared by engines, the field mapper and the sync layer.

  - ``EngineError``: connectivity, auth or backend-side failure. Reported
    per call and never retried internally.
  - ``ValidationError``: malformed options, unknown engine type, schema
    mismatch. Fatal for the call.
  - ``ResolverError``: one field resolver failed on one content item.
  - ``PartialBatchFailure``: one bulk-import batch failed; the remaining
    batches still run.
"""

from __future__ import annotations

from typing import Any


class SearchSyncError(Exception):
    """Base exception for searchsync."""


# ── Engine errors ────────────────────────────────────────────────────────────


class EngineError(SearchSyncError):
    """Raised when a search backend call fails."""


class EngineConnectionError(EngineError):
    """Raised when the engine cannot reach or authenticate with the backend."""


class QueryError(EngineError):
    """Raised when a search or write request is rejected by the backend."""


class DocumentNotFoundError(EngineError):
    """Raised when a requested document does not exist."""


class ConfigurationError(EngineError):
    """Raised when engine configuration is invalid or a client library is missing."""


# ── Validation errors ────────────────────────────────────────────────────────


class ValidationError(SearchSyncError):
    """Raised for malformed input. ``option`` names the offending option or field."""

    def __init__(self, message: str, option: str | None = None) -> None:
        super().__init__(message)
        self.option = option


class UnknownEngineError(ValidationError):
    """Raised when an index references an engine type nobody registered."""

    def __init__(self, engine_type: str, available: list[str] | None = None) -> None:
        hint = f" Available engines: {sorted(available)}" if available is not None else ""
        super().__init__(f"Unknown engine type '{engine_type}'.{hint}", option="engine_type")
        self.engine_type = engine_type


class SchemaMismatchError(ValidationError):
    """Raised when documents or mappings disagree with the remote index schema."""


class IndexNotFoundError(ValidationError):
    """Raised when no index configuration exists for a handle."""

    def __init__(self, handle: str) -> None:
        super().__init__(f"No index with handle '{handle}'", option="index")
        self.handle = handle


# ── Resolution and sync errors ───────────────────────────────────────────────


class ResolverError(SearchSyncError):
    """Raised when a field resolver fails on a specific content item and field."""

    def __init__(self, message: str, *, field: str | None = None, item_id: str | None = None) -> None:
        super().__init__(message)
        self.field = field
        self.item_id = item_id


class PartialBatchFailure(SearchSyncError):
    """One failed bulk-import batch. Collected, never raised across batches."""

    def __init__(
        self,
        message: str,
        *,
        index: str,
        offset: int,
        limit: int,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.index = index
        self.offset = offset
        self.limit = limit
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "offset": self.offset,
            "limit": self.limit,
            "error": str(self),
        }
