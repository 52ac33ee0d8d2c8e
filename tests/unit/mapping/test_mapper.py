"""Tests for field mapping detection, re-detection and document resolution."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import pytest

from searchsync.content.repository import InMemoryContentRepository
from searchsync.engines.memory.engine import MemoryEngine
from searchsync.exceptions import ResolverError
from searchsync.mapping.mapper import FieldMapper, default_role_for_name, enforce_unique_roles
from searchsync.mapping.resolvers.base import FieldResolver, ResolverRegistry
from searchsync.mapping.roles import RoleMapCache
from searchsync.models.content import BlockInstance, BlockType, ContentItem, ContentType, FieldDescriptor
from searchsync.models.index import Index, IndexMode, IndexScope
from searchsync.models.mapping import FieldMapping, FieldRole, FieldType


def by_name(mappings: list[FieldMapping]) -> dict[str, FieldMapping]:
    return {m.index_field_name: m for m in mappings}


# ── Detection ────────────────────────────────────────────────────────────────


class TestDetectFieldMappings:
    async def test_emission_order(self, mapper: FieldMapper, index: Index) -> None:
        detected = await mapper.detect_field_mappings(index)
        names = [m.index_field_name for m in detected]
        assert names == [
            "title",
            "slug",
            "uri",
            "status",
            "postDate",
            "dateCreated",
            "dateUpdated",
            "contentType",
            "summary",
            "body",
            "heroImage",
            "tags",
            "author",
            "blocks",
            "blocks_caption",
            "blocks_photo",
            "blocks_quote",
            "blocks_source",
        ]
        assert [m.sort_order for m in detected] == list(range(len(detected)))

    async def test_default_types(self, mapper: FieldMapper, index: Index) -> None:
        mappings = by_name(await mapper.detect_field_mappings(index))
        assert mappings["title"].index_field_type == FieldType.TEXT
        assert mappings["slug"].index_field_type == FieldType.KEYWORD
        assert mappings["postDate"].index_field_type == FieldType.DATE
        assert mappings["body"].index_field_type == FieldType.TEXT
        assert mappings["heroImage"].index_field_type == FieldType.KEYWORD
        assert mappings["tags"].index_field_type == FieldType.FACET
        assert mappings["author"].index_field_type == FieldType.OBJECT

    async def test_default_roles(self, mapper: FieldMapper, index: Index) -> None:
        mappings = await mapper.detect_field_mappings(index)
        roles = {m.role: m.index_field_name for m in mappings if m.role is not None}
        assert roles == {
            FieldRole.TITLE: "title",
            FieldRole.URL: "uri",
            FieldRole.DATE: "postDate",
            FieldRole.SUMMARY: "summary",
            FieldRole.IMAGE: "heroImage",
        }
        named = by_name(mappings)
        assert named["title"].weight == 10
        # Role holders are always enabled
        assert named["postDate"].enabled is True
        assert named["dateCreated"].enabled is False
        assert named["contentType"].enabled is False

    async def test_nested_blocks(self, mapper: FieldMapper, index: Index) -> None:
        mappings = by_name(await mapper.detect_field_mappings(index))
        header = mappings["blocks"]
        assert header.enabled is False
        assert header.index_field_type == FieldType.TEXT

        caption = mappings["blocks_caption"]
        assert caption.parent_field_uid == "f-blocks"
        assert caption.field_uid == "f-caption"
        assert caption.index_field_type == FieldType.TEXT
        # The top-level hero image already holds the image role
        assert mappings["blocks_photo"].role is None
        assert mappings["blocks_photo"].index_field_type == FieldType.FACET

    async def test_first_nested_asset_takes_free_image_role(self) -> None:
        photo = FieldDescriptor(uid="f-photo", handle="photo", kind="asset")
        gallery = FieldDescriptor(
            uid="f-gallery", handle="gallery", kind="matrix", block_types=[BlockType(handle="slide", fields=[photo])]
        )
        repository = InMemoryContentRepository(content_types=[ContentType(handle="album", fields=[gallery])])
        index = Index(handle="albums", engine_type="memory")

        mappings = by_name(await FieldMapper(repository).detect_field_mappings(index))

        assert mappings["gallery_photo"].role == FieldRole.IMAGE
        assert mappings["gallery_photo"].index_field_type == FieldType.KEYWORD
        assert mappings["gallery_photo"].enabled is True

    async def test_duplicate_handles_across_types_are_merged(self, mapper: FieldMapper) -> None:
        index = Index(handle="everything", engine_type="memory", scope=IndexScope(content_types=["article", "product"]))
        names = [m.index_field_name for m in await mapper.detect_field_mappings(index)]
        assert names.count("summary") == 1
        assert "price" in names

    async def test_number_decimals(self, mapper: FieldMapper) -> None:
        index = Index(handle="products", engine_type="memory", scope=IndexScope(content_types=["product"]))
        mappings = by_name(await mapper.detect_field_mappings(index))
        assert mappings["price"].index_field_type == FieldType.FLOAT


class TestRoles:
    @pytest.mark.parametrize(
        ("name", "role"),
        [
            ("title", FieldRole.TITLE),
            ("url", FieldRole.URL),
            ("Excerpt", FieldRole.SUMMARY),
            ("thumbnail_url", FieldRole.IMAGE),
            ("iiif_info_url", FieldRole.IIIF),
            ("colour", None),
        ],
    )
    def test_default_role_for_name(self, name: str, role: FieldRole | None) -> None:
        assert default_role_for_name(name) == role

    def test_post_date_wins_date_role(self) -> None:
        mappings = enforce_unique_roles(
            [
                FieldMapping(attribute="dateCreated", index_field_name="dateCreated", role=FieldRole.DATE),
                FieldMapping(attribute="postDate", index_field_name="postDate", role=FieldRole.DATE, enabled=False),
            ]
        )
        assert mappings[0].role is None
        assert mappings[1].role == FieldRole.DATE
        assert mappings[1].enabled is True

    def test_first_holder_keeps_role(self) -> None:
        mappings = enforce_unique_roles(
            [
                FieldMapping(field_uid="f-a", index_field_name="a", role=FieldRole.SUMMARY),
                FieldMapping(field_uid="f-b", index_field_name="b", role=FieldRole.SUMMARY),
            ]
        )
        assert [m.role for m in mappings] == [FieldRole.SUMMARY, None]

    def test_role_map_cache(self, index: Index) -> None:
        cache = RoleMapCache()
        roles = cache.get(index)
        assert roles[FieldRole.TITLE] == "title"

        roles[FieldRole.TITLE] = "mutated"
        index.field_mappings[0].index_field_name = "headline"
        assert cache.get(index)[FieldRole.TITLE] == "title"

        cache.invalidate(index.id)
        assert cache.get(index)[FieldRole.TITLE] == "headline"


# ── Re-detection ─────────────────────────────────────────────────────────────


class TestRedetect:
    async def test_merge_keeps_customisations(self, mapper: FieldMapper, index: Index) -> None:
        index.field_mappings[3].weight = 9
        index.field_mappings = [*index.field_mappings, FieldMapping(field_uid="f-gone", index_field_name="gone")]

        merged = await mapper.redetect_field_mappings(index)

        names = [m.index_field_name for m in merged]
        assert names[:6] == ["title", "url", "postDate", "summary", "tags", "heroImage"]
        assert "gone" not in names
        assert by_name(merged)["summary"].weight == 9
        assert by_name(merged)["summary"].uid == index.field_mappings[3].uid
        # The uri attribute keeps its custom target name rather than gaining a duplicate
        assert "uri" not in names
        assert [m.sort_order for m in merged[6:]] == list(range(6, len(merged)))
        assert "blocks_caption" in names

    def test_merge_renames_colliding_new_fields(self) -> None:
        existing = [FieldMapping(field_uid="f-summary", index_field_name="body", sort_order=0)]
        detected = [
            FieldMapping(field_uid="f-summary", index_field_name="summary"),
            FieldMapping(field_uid="f-body", index_field_name="body"),
        ]
        merged = FieldMapper.merge_mappings(existing, detected)
        assert [(m.field_uid, m.index_field_name, m.sort_order) for m in merged] == [
            ("f-summary", "body", 0),
            ("f-body", "body_2", 1),
        ]

    async def test_fresh_skips_merge(self, mapper: FieldMapper, index: Index) -> None:
        fresh = await mapper.redetect_field_mappings(index, fresh=True)
        assert "uri" in [m.index_field_name for m in fresh]
        assert "url" not in [m.index_field_name for m in fresh]

    async def test_readonly_needs_engine(self, mapper: FieldMapper) -> None:
        index = Index(handle="remote", engine_type="memory", mode=IndexMode.READONLY)
        with pytest.raises(ValueError, match="engine is required"):
            await mapper.redetect_field_mappings(index)

    async def test_readonly_detects_from_remote_documents(self, mapper: FieldMapper, memory_engine: MemoryEngine) -> None:
        index = Index(handle="remote", engine_type="memory", mode=IndexMode.READONLY)
        await memory_engine.ensure_index(index)
        await memory_engine.index_documents(
            index, [{"objectID": "1", "title": "Kew", "uri": "https://example.com/kew", "visitors": 12}]
        )

        mappings = by_name(await mapper.redetect_field_mappings(index, engine=memory_engine))

        assert "objectID" not in mappings
        assert mappings["title"].attribute == "title"
        assert mappings["title"].role == FieldRole.TITLE
        assert mappings["uri"].role == FieldRole.URL
        assert mappings["visitors"].index_field_type == FieldType.INTEGER


# ── Resolution ───────────────────────────────────────────────────────────────


class TestResolveElement:
    async def test_document(self, mapper: FieldMapper, index: Index, repository: InMemoryContentRepository) -> None:
        item = await repository.get(1)
        assert item is not None

        document = mapper.resolve_element(item, index)

        assert document == {
            "objectID": "1",
            "contentTypeHandle": "article",
            "siteHandle": "default",
            "sectionHandle": "news",
            "uri": "articles/london-bridge",
            "title": "London Bridge",
            "url": "articles/london-bridge",
            "postDate": int(datetime(2024, 5, 2, tzinfo=UTC).timestamp()),
            "summary": "Summary of London Bridge",
            "tags": ["news", "london"],
            "heroImage": "https://cdn.example.com/1.jpg",
        }

    async def test_detected_mappings(self, mapper: FieldMapper, index: Index, repository: InMemoryContentRepository) -> None:
        index.field_mappings = await mapper.detect_field_mappings(index)
        item = await repository.get(2)
        assert item is not None

        document = mapper.resolve_element(item, index)

        assert document["body"] == "Tower Bridge in depth"
        assert document["author"] == [{"id": 900, "title": "Ada Lovelace", "slug": "ada"}]
        assert document["blocks_caption"] == "Tower Bridge"
        assert document["blocks_quote"] == "Mind the gap"
        # Disabled mappings, the block header and empty values are left out
        assert "dateCreated" not in document
        assert "blocks" not in document
        assert "blocks_photo" not in document

    def test_sub_field_collects_across_blocks(self, mapper: FieldMapper) -> None:
        caption = FieldDescriptor(uid="f-caption", handle="caption")
        blocks = FieldDescriptor(uid="f-blocks", handle="blocks", kind="matrix")
        item = ContentItem(
            id=5,
            content_type="article",
            fields=[blocks],
            field_values={
                "blocks": [
                    BlockInstance(id=1, type="image", fields=[caption], values={"caption": "First"}),
                    {"id": 2, "type": "image", "fields": [{"uid": "f-caption", "handle": "caption"}], "values": {"caption": "Second"}},
                    BlockInstance(id=3, type="quote", values={"caption": "not in this layout"}),
                ]
            },
        )
        mapping = FieldMapping(field_uid="f-caption", parent_field_uid="f-blocks", index_field_name="blocks_caption")

        assert mapper.resolve_field(item, mapping) == ["First", "Second"]
        first_only = mapping.model_copy(update={"resolver_config": {"first_only": True}})
        assert mapper.resolve_field(item, first_only) == "First"
        facet = mapping.model_copy(update={"index_field_type": FieldType.FACET})
        item.field_values["blocks"] = item.field_values["blocks"][:1]
        assert mapper.resolve_field(item, facet) == ["First"]

    def test_failing_field_is_skipped(self, mapper: FieldMapper) -> None:
        price = FieldDescriptor(uid="f-price", handle="price", kind="number")
        item = ContentItem(id=50, title="Lamp", content_type="product", fields=[price], field_values={"price": "cheap"})
        index = Index(
            handle="products",
            engine_type="memory",
            field_mappings=[
                FieldMapping(attribute="title", index_field_name="title"),
                FieldMapping(field_uid="f-price", index_field_name="price", index_field_type=FieldType.FLOAT),
            ],
        )

        document = mapper.resolve_element(item, index)

        assert document["title"] == "Lamp"
        assert "price" not in document
        with pytest.raises(ResolverError) as excinfo:
            mapper.resolve_field(item, index.field_mappings[1])
        assert excinfo.value.field == "price"
        assert excinfo.value.item_id == "50"

    def test_unexpected_resolver_failure_is_wrapped(self, repository: InMemoryContentRepository) -> None:
        class Exploding(FieldResolver):
            def resolve(self, source: Any, descriptor: Any, mapping: FieldMapping) -> Any:
                raise RuntimeError("kaboom")

        resolvers = ResolverRegistry.with_builtins()
        resolvers.register("plain_text", Exploding())
        mapper = FieldMapper(repository, resolvers)
        summary = FieldDescriptor(uid="f-summary", handle="summary")
        item = ContentItem(id=8, content_type="article", fields=[summary], field_values={"summary": "x"})

        with pytest.raises(ResolverError, match="kaboom") as excinfo:
            mapper.resolve_field(item, FieldMapping(field_uid="f-summary", index_field_name="summary"))
        assert isinstance(excinfo.value.__cause__, RuntimeError)
