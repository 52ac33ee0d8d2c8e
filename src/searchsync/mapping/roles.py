"""Role map cache — ``role -> target field name`` per index.

Built from an index's enabled mappings that carry a role. Cached by index
id; whoever changes an index's mappings calls ``invalidate``.
"""

from __future__ import annotations

import logging

from searchsync.models.index import Index
from searchsync.models.mapping import FieldRole

logger = logging.getLogger(__name__)


class RoleMapCache:
    def __init__(self) -> None:
        self._maps: dict[str, dict[FieldRole, str]] = {}

    def get(self, index: Index) -> dict[FieldRole, str]:
        cached = self._maps.get(index.id)
        if cached is None:
            cached = {m.role: m.index_field_name for m in index.enabled_mappings() if m.role is not None}
            self._maps[index.id] = cached
        return dict(cached)

    def invalidate(self, index_id: str | None = None) -> None:
        """Drop the cached map for one index, or for every index when ``index_id`` is None."""
        if index_id is None:
            self._maps.clear()
        else:
            self._maps.pop(index_id, None)
        logger.debug("Invalidated role map cache for %s", index_id or "all indexes")
