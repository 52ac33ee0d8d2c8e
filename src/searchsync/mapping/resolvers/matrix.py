"""Resolver for whole nested-block fields.

Sub-field mappings are resolved by the field mapper, one block instance at
a time. This resolver handles a mapping that targets the block field
itself: every instance concatenated to text, or kept as structured maps.
"""

from __future__ import annotations

from typing import Any

from searchsync.mapping.resolvers.base import FieldResolver, ValueSource, as_list, raw_value, strip_html, truncate
from searchsync.models.content import AssetValue, BlockInstance, FieldDescriptor, OptionValue, RelatedItem
from searchsync.models.mapping import FieldMapping


class MatrixResolver(FieldResolver):
    kinds = ("matrix",)

    def resolve(self, source: ValueSource, descriptor: FieldDescriptor | None, mapping: FieldMapping) -> Any:
        blocks = [
            BlockInstance.model_validate(b) if isinstance(b, dict) else b
            for b in as_list(raw_value(source, descriptor))
            if isinstance(b, dict | BlockInstance)
        ]
        if not blocks:
            return None

        if mapping.resolver_config.get("mode", "concatenate") == "structured":
            return [self._structured(block) for block in blocks]

        parts = [
            text
            for block in blocks
            for handle in self._handles(block)
            if (text := block_text(block.value(handle)))
        ]
        if not parts:
            return None
        return truncate(" ".join(parts), mapping.resolver_config.get("max_length"))

    def _structured(self, block: BlockInstance) -> dict[str, Any]:
        data: dict[str, Any] = {"type": block.type}
        for handle in self._handles(block):
            data[handle] = block_text(block.value(handle))
        return data

    @staticmethod
    def _handles(block: BlockInstance) -> list[str]:
        return [f.handle for f in block.fields] if block.fields else list(block.values)


def block_text(value: Any) -> str | None:
    """Plain-text rendering of one block sub-field value."""
    if value is None or value == "":
        return None
    if isinstance(value, list):
        parts = [text for v in value if (text := block_text(v))]
        return ", ".join(parts) or None
    if isinstance(value, AssetValue):
        return value.title or value.filename
    if isinstance(value, RelatedItem):
        return value.title
    if isinstance(value, OptionValue):
        return value.label if value.selected else None
    if isinstance(value, str | int | float | bool):
        return strip_html(str(value)) or None
    return None
