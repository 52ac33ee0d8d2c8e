"""Field resolver interface and registry.

A resolver turns the raw value of one content field into the value stored
in the search document. Resolvers are stateless strategy objects keyed by
field-kind tag; they return a scalar, a list or ``None`` and do not raise
for ordinary absence of data.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from datetime import UTC, date, datetime
from html import unescape
from typing import Any, ClassVar

from searchsync.models.content import BlockInstance, ContentItem, FieldDescriptor
from searchsync.models.mapping import FieldMapping

logger = logging.getLogger(__name__)

# The item or nested block instance a value is read from.
ValueSource = ContentItem | BlockInstance

_TAG = re.compile(r"<[^>]+>")
_SPACE = re.compile(r"\s+")


class FieldResolver(ABC):
    """Strategy that extracts one document value from one field."""

    kinds: ClassVar[tuple[str, ...]] = ()

    @abstractmethod
    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        """Return the document value, or None when the field holds no data."""


class ResolverRegistry:
    """Resolvers keyed by field-kind tag, with a fallback for unknown kinds.

    Example:
        >>> registry = ResolverRegistry.with_builtins()
        >>> registry.register("color_picker", PlainTextResolver())
    """

    def __init__(self, fallback: FieldResolver) -> None:
        self._resolvers: dict[str, FieldResolver] = {}
        self._fallback = fallback

    @classmethod
    def with_builtins(cls) -> ResolverRegistry:
        from searchsync.mapping.resolvers.elements import AddressResolver, AssetResolver, RelationResolver
        from searchsync.mapping.resolvers.fallback import FallbackResolver
        from searchsync.mapping.resolvers.matrix import MatrixResolver
        from searchsync.mapping.resolvers.scalar import (
            BooleanResolver,
            DateResolver,
            EmbeddingResolver,
            GeoPointResolver,
            NumberResolver,
            OptionsResolver,
        )
        from searchsync.mapping.resolvers.text import PlainTextResolver, RichTextResolver, TableResolver

        registry = cls(fallback=FallbackResolver())
        for resolver in (
            PlainTextResolver(),
            RichTextResolver(),
            TableResolver(),
            NumberResolver(),
            BooleanResolver(),
            DateResolver(),
            OptionsResolver(),
            GeoPointResolver(),
            EmbeddingResolver(),
            RelationResolver(),
            AssetResolver(),
            AddressResolver(),
            MatrixResolver(),
        ):
            for kind in resolver.kinds:
                registry.register(kind, resolver)
        return registry

    def register(self, kind: str, resolver: FieldResolver) -> None:
        if kind in self._resolvers:
            logger.debug("Overwriting resolver for field kind %s", kind)
        self._resolvers[kind] = resolver

    def for_kind(self, kind: str | None) -> FieldResolver:
        if kind is None:
            return self._fallback
        return self._resolvers.get(kind, self._fallback)

    @property
    def kinds(self) -> list[str]:
        return sorted(self._resolvers)


# ── Shared helpers ───────────────────────────────────────────────────────────


def raw_value(source: ValueSource, descriptor: FieldDescriptor | None) -> Any:
    if descriptor is None:
        return None
    return source.value(descriptor.handle)


def strip_html(value: str) -> str:
    return _SPACE.sub(" ", unescape(_TAG.sub(" ", value))).strip()


def truncate(text: str, max_length: Any) -> str:
    if max_length is None:
        return text
    return text[: int(max_length)]


def as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list | tuple):
        return list(value)
    return [value]


def to_datetime(value: Any) -> datetime | None:
    """Datetimes, dates and ISO strings as aware datetimes; naive values are UTC."""
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    return None


def to_timestamp(value: Any) -> int | None:
    parsed = to_datetime(value)
    return int(parsed.timestamp()) if parsed is not None else None
