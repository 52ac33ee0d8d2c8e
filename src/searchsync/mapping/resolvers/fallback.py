"""Attribute resolver and the fallback for unknown field kinds."""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel

from searchsync.mapping.resolvers.base import FieldResolver, ValueSource, raw_value, to_timestamp
from searchsync.models.content import ContentItem, FieldDescriptor
from searchsync.models.mapping import FieldMapping

# Attribute name -> ContentItem attribute
ATTRIBUTES: dict[str, str] = {
    "id": "id",
    "title": "title",
    "slug": "slug",
    "uri": "uri",
    "status": "status",
    "postDate": "post_date",
    "dateCreated": "date_created",
    "dateUpdated": "date_updated",
    "contentType": "content_type",
    "section": "section",
    "site": "site",
}


class AttributeResolver(FieldResolver):
    """Built-in item attributes. Dates resolve to epoch seconds."""

    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        if not isinstance(source, ContentItem) or mapping.attribute not in ATTRIBUTES:
            return None
        value = getattr(source, ATTRIBUTES[mapping.attribute])
        if isinstance(value, date):
            return to_timestamp(value)
        return value


class FallbackResolver(FieldResolver):
    """Best effort for field kinds nobody registered.

    Strings, numbers and booleans pass through; lists keep their scalar
    members; objects with a ``title`` resolve to it.
    """

    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        return self._simplify(raw_value(source, descriptor))

    def _simplify(self, value: Any) -> Any:
        if value is None or isinstance(value, bool | int | float):
            return value
        if isinstance(value, str):
            return value.strip() or None
        if isinstance(value, date):
            return to_timestamp(value)
        if isinstance(value, list | tuple):
            items = [v for v in (self._simplify(v) for v in value) if v is not None and not isinstance(v, dict | list)]
            return items or None
        title = value.get("title") if isinstance(value, dict) else getattr(value, "title", None)
        if isinstance(title, str) and title:
            return title
        if isinstance(value, BaseModel | dict):
            return None
        return str(value)
