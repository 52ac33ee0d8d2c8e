"""API dependencies — Dependency injection for FastAPI endpoints."""

from __future__ import annotations

from searchsync.core.service import SearchSyncService

# Global service instance (set during application lifespan)
_service: SearchSyncService | None = None


def set_service(service: SearchSyncService | None) -> None:
    """Set the global service instance (called during app lifespan)."""
    global _service
    _service = service


def get_service() -> SearchSyncService:
    """Get the global searchsync service instance.

    Raises:
        RuntimeError: If the service is not initialized.
    """
    if _service is None:
        raise RuntimeError("searchsync service not initialized. Is the server running?")
    return _service
