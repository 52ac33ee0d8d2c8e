"""Field Mapper — Detects field mappings and resolves content items into documents.

Detection walks the field layouts of the content types an index covers
and proposes one mapping per field, using a fixed type table. Resolution
runs each enabled mapping's resolver against a content item and merges
the results into one flat document keyed by target field name.

Nested blocks (``matrix`` fields) are flattened: the block field gets a
disabled header mapping and every distinct sub-field across all block
types gets its own ``<parent>_<sub>`` mapping. Sub-field values are
collected per block instance, skipping instances whose layout lacks the
sub-field.
"""

from __future__ import annotations

import logging
from typing import Any

from searchsync.content.repository import ContentRepository
from searchsync.engines.base.engine import SearchEngine
from searchsync.exceptions import ResolverError
from searchsync.mapping.resolvers.base import ResolverRegistry, as_list
from searchsync.mapping.resolvers.fallback import AttributeResolver
from searchsync.models.content import BlockInstance, ContentItem, FieldDescriptor, FieldKind
from searchsync.models.index import Index
from searchsync.models.mapping import FieldMapping, FieldRole, FieldType

logger = logging.getLogger(__name__)

# Built-in attributes emitted ahead of content fields: (type, enabled by default)
ATTRIBUTE_DEFAULTS: dict[str, tuple[FieldType, bool]] = {
    "title": (FieldType.TEXT, True),
    "slug": (FieldType.KEYWORD, True),
    "uri": (FieldType.KEYWORD, True),
    "status": (FieldType.KEYWORD, True),
    "postDate": (FieldType.DATE, False),
    "dateCreated": (FieldType.DATE, False),
    "dateUpdated": (FieldType.DATE, False),
    "contentType": (FieldType.KEYWORD, False),
}

DEFAULT_FIELD_TYPES: dict[str, FieldType] = {
    FieldKind.PLAIN_TEXT: FieldType.TEXT,
    FieldKind.RICH_TEXT: FieldType.TEXT,
    FieldKind.EMAIL: FieldType.KEYWORD,
    FieldKind.URL: FieldType.KEYWORD,
    FieldKind.COLOR: FieldType.KEYWORD,
    FieldKind.COUNTRY: FieldType.KEYWORD,
    FieldKind.BOOLEAN: FieldType.BOOLEAN,
    FieldKind.DATE: FieldType.DATE,
    FieldKind.TIME: FieldType.DATE,
    FieldKind.OPTIONS: FieldType.KEYWORD,
    FieldKind.MULTI_OPTIONS: FieldType.FACET,
    FieldKind.RELATION: FieldType.OBJECT,
    FieldKind.ASSET: FieldType.KEYWORD,
    FieldKind.ADDRESS: FieldType.GEO_POINT,
    FieldKind.TABLE: FieldType.TEXT,
    FieldKind.EMBEDDING: FieldType.EMBEDDING,
}

_EXACT_ROLES: dict[str, FieldRole] = {
    "title": FieldRole.TITLE,
    "uri": FieldRole.URL,
    "url": FieldRole.URL,
    "postDate": FieldRole.DATE,
    "dateCreated": FieldRole.DATE,
    "dateUpdated": FieldRole.DATE,
}

_FUZZY_ROLES: list[tuple[frozenset[str], FieldRole]] = [
    (frozenset({"description", "summary", "excerpt", "body", "content"}), FieldRole.SUMMARY),
    (frozenset({"thumbnail", "thumb", "thumb_url", "thumbnail_url", "image_thumbnail"}), FieldRole.IMAGE),
    (frozenset({"image", "image_url", "hero_image"}), FieldRole.IMAGE),
    (frozenset({"iiif_info_url", "iiif_url", "iiif_info", "info_url"}), FieldRole.IIIF),
]


def default_role_for_name(name: str) -> FieldRole | None:
    """Role implied by a field or attribute name, exact matches first."""
    if name in _EXACT_ROLES:
        return _EXACT_ROLES[name]
    lower = name.lower()
    for names, role in _FUZZY_ROLES:
        if lower in names:
            return role
    return None


def default_field_type(descriptor: FieldDescriptor) -> FieldType:
    if descriptor.kind == FieldKind.NUMBER:
        return FieldType.INTEGER if descriptor.decimals == 0 else FieldType.FLOAT
    return DEFAULT_FIELD_TYPES.get(descriptor.kind, FieldType.TEXT)


def _unique_name(name: str, taken: set[str]) -> str:
    candidate, suffix = name, 2
    while candidate in taken:
        candidate = f"{name}_{suffix}"
        suffix += 1
    taken.add(candidate)
    return candidate


def enforce_unique_roles(mappings: list[FieldMapping]) -> list[FieldMapping]:
    """Keep each role on its first holder; ``postDate`` wins the date role.

    Mappings that end up holding a role are forced enabled.
    """
    chosen: dict[FieldRole, int] = {}
    result = [m.model_copy() for m in mappings]
    for i, mapping in enumerate(result):
        if mapping.role is None:
            continue
        if mapping.role not in chosen:
            chosen[mapping.role] = i
            continue
        holder = result[chosen[mapping.role]]
        if mapping.role == FieldRole.DATE and mapping.attribute == "postDate" and holder.attribute != "postDate":
            holder.role = None
            chosen[mapping.role] = i
            continue
        mapping.role = None

    for mapping in result:
        if mapping.role is not None:
            mapping.enabled = True
    return result


class FieldMapper:
    """Detects mappings for an index and resolves content items into documents.

    Args:
        repository: Source of content types and their field layouts.
        resolvers: Resolver registry; defaults to the built-in resolvers.
    """

    def __init__(self, repository: ContentRepository, resolvers: ResolverRegistry | None = None) -> None:
        self._repository = repository
        self._resolvers = resolvers or ResolverRegistry.with_builtins()
        self._attribute_resolver = AttributeResolver()

    @property
    def resolvers(self) -> ResolverRegistry:
        return self._resolvers

    # ── Detection ────────────────────────────────────────────────────────

    async def detect_field_mappings(self, index: Index) -> list[FieldMapping]:
        """Default mappings for every field reachable from the index's scope.

        Emission order is attributes, then top-level fields in schema
        order, then nested sub-fields grouped by parent.
        """
        mappings: list[FieldMapping] = []
        for attribute, (field_type, enabled) in ATTRIBUTE_DEFAULTS.items():
            mappings.append(
                FieldMapping(
                    attribute=attribute,
                    index_field_name=attribute,
                    index_field_type=field_type,
                    enabled=enabled,
                    weight=10 if attribute == "title" else 5,
                    role=default_role_for_name(attribute),
                )
            )

        assigned: set[FieldRole] = set()
        sub_field_groups: list[FieldMapping] = []
        for descriptor in await self._fields_for_index(index):
            if descriptor.kind == FieldKind.MATRIX:
                mappings.append(
                    FieldMapping(
                        field_uid=descriptor.uid,
                        field_handle=descriptor.handle,
                        field_kind=descriptor.kind,
                        index_field_name=descriptor.handle,
                        index_field_type=FieldType.TEXT,
                        enabled=False,
                    )
                )
                sub_field_groups.extend(self._detect_sub_fields(descriptor, assigned))
                continue

            mapping = FieldMapping(
                field_uid=descriptor.uid,
                field_handle=descriptor.handle,
                field_kind=descriptor.kind,
                index_field_name=descriptor.handle,
                index_field_type=default_field_type(descriptor),
                enabled=descriptor.searchable,
                role=default_role_for_name(descriptor.handle),
            )
            if FieldRole.IMAGE not in assigned and descriptor.kind == FieldKind.ASSET:
                mapping.role = FieldRole.IMAGE
                assigned.add(FieldRole.IMAGE)
            elif FieldRole.SUMMARY not in assigned and descriptor.kind in (FieldKind.PLAIN_TEXT, FieldKind.RICH_TEXT):
                mapping.role = mapping.role or FieldRole.SUMMARY
                assigned.add(FieldRole.SUMMARY)
            mappings.append(mapping)

        mappings.extend(sub_field_groups)
        taken: set[str] = set()
        for order, mapping in enumerate(mappings):
            mapping.index_field_name = _unique_name(mapping.index_field_name, taken)
            mapping.sort_order = order
        return enforce_unique_roles(mappings)

    def _detect_sub_fields(self, parent: FieldDescriptor, assigned: set[FieldRole]) -> list[FieldMapping]:
        seen: set[str] = set()
        mappings = []
        for block_type in parent.block_types:
            for sub in block_type.fields:
                if sub.handle in seen:
                    continue
                seen.add(sub.handle)

                field_type = default_field_type(sub) if sub.kind != FieldKind.MATRIX else FieldType.TEXT
                mapping = FieldMapping(
                    field_uid=sub.uid,
                    parent_field_uid=parent.uid,
                    field_handle=sub.handle,
                    field_kind=sub.kind,
                    index_field_name=f"{parent.handle}_{sub.handle}",
                    index_field_type=field_type,
                    enabled=sub.searchable,
                )
                if FieldRole.IMAGE not in assigned and sub.kind == FieldKind.ASSET:
                    mapping.role = FieldRole.IMAGE
                    mapping.enabled = True
                    assigned.add(FieldRole.IMAGE)
                # Sub-fields aggregate across blocks, so single keywords become facets
                if mapping.index_field_type == FieldType.KEYWORD and mapping.role is None:
                    mapping.index_field_type = FieldType.FACET
                mappings.append(mapping)
        return mappings

    async def redetect_field_mappings(
        self,
        index: Index,
        *,
        fresh: bool = False,
        engine: SearchEngine | None = None,
    ) -> list[FieldMapping]:
        """Re-run detection and merge with the index's current mappings.

        Surviving mappings keep role, weight, enabled flag, type, target name,
        resolver config and sort order. New mappings are appended with
        defaults; mappings that are no longer discoverable are dropped.
        ``fresh=True`` skips the merge.

        Read-only indexes are detected from the remote index; pass its engine.
        """
        if index.is_readonly:
            if engine is None:
                raise ValueError("Read-only indexes are detected from the remote index; an engine is required")
            detected = await self.detect_schema_from_index(index, engine)
        else:
            detected = await self.detect_field_mappings(index)
        if fresh:
            return detected
        return self.merge_mappings(index.field_mappings, detected)

    @staticmethod
    def merge_mappings(existing: list[FieldMapping], detected: list[FieldMapping]) -> list[FieldMapping]:
        current = {m.identity: m for m in existing}
        detected_ids = {m.identity for m in detected}

        merged: list[FieldMapping] = []
        for old in sorted(existing, key=lambda m: m.sort_order):
            if old.identity not in detected_ids:
                continue
            fresh = next(m for m in detected if m.identity == old.identity)
            merged.append(
                old.model_copy(update={"field_handle": fresh.field_handle, "field_kind": fresh.field_kind})
            )

        taken = {m.index_field_name for m in merged}
        next_order = max((m.sort_order for m in merged), default=-1) + 1
        for new in detected:
            if new.identity in current:
                continue
            name = _unique_name(new.index_field_name, taken)
            merged.append(new.model_copy(update={"index_field_name": name, "sort_order": next_order}))
            next_order += 1
        return enforce_unique_roles(merged)

    async def detect_schema_from_index(self, index: Index, engine: SearchEngine) -> list[FieldMapping]:
        """Mappings for a read-only index, inferred from sampled remote documents."""
        mappings = [
            FieldMapping(
                attribute=name,
                index_field_name=name,
                index_field_type=field_type,
                enabled=True,
                role=default_role_for_name(name),
                sort_order=order,
            )
            for order, (name, field_type) in enumerate(await engine.infer_schema_fields(index))
            if name != "objectID"
        ]
        return enforce_unique_roles(mappings)

    async def _fields_for_index(self, index: Index) -> list[FieldDescriptor]:
        fields: list[FieldDescriptor] = []
        seen: set[str] = set()
        for content_type in await self._repository.content_types(index.scope):
            for descriptor in content_type.fields:
                if descriptor.handle not in seen:
                    seen.add(descriptor.handle)
                    fields.append(descriptor)
        return fields

    # ── Resolution ───────────────────────────────────────────────────────

    def resolve_element(self, item: ContentItem, index: Index) -> dict[str, Any]:
        """Resolve an item into a flat document for ``index``.

        A failing field is logged and left out; the rest of the document
        still resolves. ``None`` values are omitted.
        """
        document: dict[str, Any] = {
            "objectID": str(item.id),
            "contentTypeHandle": item.content_type,
            "siteHandle": item.site,
        }
        if item.section:
            document["sectionHandle"] = item.section
        if item.uri:
            document["uri"] = item.uri

        headers = self.headers_with_children(index)
        for mapping in index.field_mappings:
            if not mapping.enabled or self._is_header(mapping, headers):
                continue
            try:
                value = self.resolve_field(item, mapping)
            except ResolverError as e:
                logger.warning("Failed to resolve field %s for item %s: %s", mapping.index_field_name, item.id, e)
                continue
            if value is not None:
                document[mapping.index_field_name] = value
        return document

    def resolve_field(self, item: ContentItem, mapping: FieldMapping) -> Any:
        """Resolve one mapping against one item.

        Raises:
            ResolverError: If the resolver fails.
        """
        try:
            if mapping.is_attribute:
                return self._attribute_resolver.resolve(item, None, mapping)
            if mapping.is_sub_field:
                return self._resolve_sub_field(item, mapping)
            descriptor = item.field_by_uid(mapping.field_uid or "")
            if descriptor is None:
                return None
            return self._resolvers.for_kind(descriptor.kind).resolve(item, descriptor, mapping)
        except ResolverError as e:
            e.field = e.field or mapping.index_field_name
            e.item_id = e.item_id or str(item.id)
            raise
        except Exception as e:
            raise ResolverError(str(e), field=mapping.index_field_name, item_id=str(item.id)) from e

    @staticmethod
    def headers_with_children(index: Index) -> set[str]:
        """Uids of block fields whose sub-fields are mapped individually."""
        return {m.parent_field_uid for m in index.field_mappings if m.parent_field_uid is not None}

    @staticmethod
    def _is_header(mapping: FieldMapping, headers: set[str]) -> bool:
        return not mapping.is_attribute and not mapping.is_sub_field and mapping.field_uid in headers

    def _resolve_sub_field(self, item: ContentItem, mapping: FieldMapping) -> Any:
        parent = item.field_by_uid(mapping.parent_field_uid or "")
        if parent is None:
            return None
        handle = self._sub_field_handle(parent, mapping)
        if handle is None:
            return None

        parts: list[Any] = []
        for raw in as_list(item.value(parent.handle)):
            block = BlockInstance.model_validate(raw) if isinstance(raw, dict) else raw
            if not isinstance(block, BlockInstance):
                continue
            descriptor = block.field_by_handle(handle)
            if descriptor is None:
                continue
            value = self._resolvers.for_kind(descriptor.kind).resolve(block, descriptor, mapping)
            if value is None or value == "":
                continue
            if isinstance(value, list):
                parts.extend(value)
            else:
                parts.append(value)

        if not parts:
            return None
        if mapping.index_field_type == FieldType.FACET:
            return parts
        if mapping.resolver_config.get("first_only"):
            return parts[0]
        return parts[0] if len(parts) == 1 else parts

    @staticmethod
    def _sub_field_handle(parent: FieldDescriptor, mapping: FieldMapping) -> str | None:
        for block_type in parent.block_types:
            for sub in block_type.fields:
                if sub.uid == mapping.field_uid:
                    return sub.handle
        # Stale uid: fall back to the handle encoded in the target name
        prefix = f"{parent.handle}_"
        if mapping.index_field_name.startswith(prefix):
            return mapping.index_field_name[len(prefix):] or None
        return mapping.field_handle
