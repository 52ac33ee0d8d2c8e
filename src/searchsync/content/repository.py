"""Content repository — where content items come from.

The sync layer never talks to a CMS directly. It asks a
``ContentRepository`` for content types, items in scope and reverse
relations. Host applications implement the protocol; the in-memory
repository serves tests, demos and small embedded setups.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Protocol, runtime_checkable

from searchsync.models.content import BlockInstance, ContentItem, ContentType, RelatedItem
from searchsync.models.index import IndexScope

logger = logging.getLogger(__name__)


@runtime_checkable
class ContentRepository(Protocol):
    """Read access to content, scoped by ``IndexScope``."""

    async def content_types(self, scope: IndexScope) -> list[ContentType]:
        """Content types covered by the scope, with their field layouts."""
        ...

    async def count(self, scope: IndexScope) -> int:
        """Number of live items in scope."""
        ...

    async def fetch(self, scope: IndexScope, offset: int, limit: int) -> list[ContentItem]:
        """A stable page of live items in scope, ordered by id."""
        ...

    async def get(self, item_id: str | int, site: str | None = None) -> ContentItem | None: ...

    async def all_ids(self, scope: IndexScope) -> list[str]:
        """Ids of every live item in scope."""
        ...

    async def referencing(self, item_id: str | int) -> list[ContentItem]:
        """Items whose relation fields point at ``item_id``."""
        ...


class InMemoryContentRepository:
    """Dictionary-backed ``ContentRepository``.

    Items are keyed by ``(id, site)``. Only live items (not drafts, not
    revisions, status ``live``) are returned by scoped reads; ``get``
    returns any stored item so event handling can see non-live states.
    """

    def __init__(self, content_types: Iterable[ContentType] = (), items: Iterable[ContentItem] = ()) -> None:
        self._types: dict[str, ContentType] = {t.handle: t for t in content_types}
        self._items: dict[tuple[str, str], ContentItem] = {}
        for item in items:
            self.put(item)

    def add_content_type(self, content_type: ContentType) -> None:
        self._types[content_type.handle] = content_type

    def put(self, item: ContentItem) -> None:
        if not item.fields and item.content_type in self._types:
            item = item.model_copy(update={"fields": list(self._types[item.content_type].fields)})
        self._items[(str(item.id), item.site)] = item

    def remove(self, item_id: str | int, site: str | None = None) -> None:
        for key in [k for k in self._items if k[0] == str(item_id) and (site is None or k[1] == site)]:
            del self._items[key]

    async def content_types(self, scope: IndexScope) -> list[ContentType]:
        if not scope.content_types:
            return list(self._types.values())
        return [self._types[h] for h in scope.content_types if h in self._types]

    async def count(self, scope: IndexScope) -> int:
        return len(self._in_scope(scope))

    async def fetch(self, scope: IndexScope, offset: int, limit: int) -> list[ContentItem]:
        return self._in_scope(scope)[offset : offset + limit]

    async def get(self, item_id: str | int, site: str | None = None) -> ContentItem | None:
        if site is not None:
            return self._items.get((str(item_id), site))
        for (stored_id, _), item in self._items.items():
            if stored_id == str(item_id):
                return item
        return None

    async def all_ids(self, scope: IndexScope) -> list[str]:
        return [str(item.id) for item in self._in_scope(scope)]

    async def referencing(self, item_id: str | int) -> list[ContentItem]:
        target = str(item_id)
        return [item for item in self._items.values() if target in _related_ids(item.field_values.values())]

    def _in_scope(self, scope: IndexScope) -> list[ContentItem]:
        items = [i for i in self._items.values() if i.is_live and scope.includes(i.content_type, i.site)]
        return sorted(items, key=lambda i: (_sort_id(i.id), i.site))


def _sort_id(value: str | int) -> tuple[int, int | str]:
    text = str(value)
    return (0, int(text)) if text.isdigit() else (1, text)


def _related_ids(values: Iterable[object]) -> set[str]:
    ids: set[str] = set()
    for value in values:
        if isinstance(value, RelatedItem):
            ids.add(str(value.id))
        elif isinstance(value, list):
            ids |= _related_ids(value)
        elif isinstance(value, BlockInstance):
            ids |= _related_ids(value.values.values())
    return ids
