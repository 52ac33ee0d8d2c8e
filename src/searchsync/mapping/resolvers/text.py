"""Text-like resolvers: plain text, rich text and tables."""

from __future__ import annotations

from typing import Any

from searchsync.mapping.resolvers.base import FieldResolver, ValueSource, raw_value, strip_html, truncate
from searchsync.models.content import FieldDescriptor, TableValue
from searchsync.models.mapping import FieldMapping


class PlainTextResolver(FieldResolver):
    kinds = ("plain_text", "email", "url", "color", "country")

    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        value = raw_value(source, descriptor)
        if value is None:
            return None
        text = str(value).strip()
        return text or None


class RichTextResolver(FieldResolver):
    """HTML markup stripped to text, optionally cut at ``max_length`` characters."""

    kinds = ("rich_text",)

    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        value = raw_value(source, descriptor)
        if value is None or value == "":
            return None
        text = truncate(strip_html(str(value)), mapping.resolver_config.get("max_length"))
        return text or None


class TableResolver(FieldResolver):
    """Every non-empty cell, joined with spaces."""

    kinds = ("table",)

    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        value = raw_value(source, descriptor)
        if isinstance(value, TableValue):
            cells = value.cells()
        elif isinstance(value, list):
            cells = []
            for row in value:
                if isinstance(row, dict):
                    row = list(row.values())
                if isinstance(row, list | tuple):
                    cells.extend(str(cell) for cell in row if cell not in (None, ""))
        else:
            return None

        parts = [text for cell in cells if (text := strip_html(cell))]
        return " ".join(parts) if parts else None
