"""Shared test fixtures and configuration."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from searchsync.config.settings import Settings
from searchsync.content.repository import InMemoryContentRepository
from searchsync.engines.base.registry import EngineRegistry
from searchsync.engines.memory.engine import MemoryEngine
from searchsync.mapping.mapper import FieldMapper
from searchsync.models.content import (
    AssetValue,
    BlockInstance,
    BlockType,
    ContentItem,
    ContentType,
    FieldDescriptor,
    RelatedItem,
)
from searchsync.models.index import Index, IndexScope
from searchsync.models.mapping import FieldMapping, FieldRole, FieldType
from searchsync.store.base import InMemoryConfigurationStore

# ── Content ──────────────────────────────────────────────────────────────────

SUMMARY = FieldDescriptor(uid="f-summary", handle="summary", kind="plain_text")
BODY = FieldDescriptor(uid="f-body", handle="body", kind="rich_text")
HERO = FieldDescriptor(uid="f-hero", handle="heroImage", kind="asset")
PRICE = FieldDescriptor(uid="f-price", handle="price", kind="number", decimals=2)
TAGS = FieldDescriptor(uid="f-tags", handle="tags", kind="multi_options")
AUTHOR = FieldDescriptor(uid="f-author", handle="author", kind="relation")

CAPTION = FieldDescriptor(uid="f-caption", handle="caption", kind="plain_text")
PHOTO = FieldDescriptor(uid="f-photo", handle="photo", kind="asset")
QUOTE = FieldDescriptor(uid="f-quote", handle="quote", kind="plain_text")
SOURCE = FieldDescriptor(uid="f-source", handle="source", kind="plain_text")

BLOCKS = FieldDescriptor(
    uid="f-blocks",
    handle="blocks",
    kind="matrix",
    block_types=[
        BlockType(handle="image", fields=[CAPTION, PHOTO]),
        BlockType(handle="quote", fields=[QUOTE, SOURCE]),
    ],
)

ARTICLE = ContentType(handle="article", name="Article", fields=[SUMMARY, BODY, HERO, TAGS, AUTHOR, BLOCKS])
PRODUCT = ContentType(handle="product", name="Product", fields=[SUMMARY, PRICE])
PERSON = ContentType(handle="person", name="Person", fields=[SUMMARY])


def make_article(item_id: int, title: str, **overrides: object) -> ContentItem:
    values: dict[str, object] = {
        "summary": f"Summary of {title}",
        "body": f"<p>{title} in <strong>depth</strong></p>",
        "heroImage": [AssetValue(id=100 + item_id, url=f"https://cdn.example.com/{item_id}.jpg", title=title)],
        "tags": ["news", "london"],
        "author": [RelatedItem(id=900, title="Ada Lovelace", slug="ada")],
        "blocks": [
            BlockInstance(id=1, type="image", fields=[CAPTION, PHOTO], values={"caption": "Tower Bridge"}),
            BlockInstance(id=2, type="quote", fields=[QUOTE, SOURCE], values={"quote": "Mind the gap"}),
        ],
    }
    data: dict[str, object] = {
        "id": item_id,
        "title": title,
        "slug": title.lower().replace(" ", "-"),
        "uri": f"articles/{title.lower().replace(' ', '-')}",
        "content_type": "article",
        "section": "news",
        "post_date": datetime(2024, 5, item_id % 28 + 1, tzinfo=UTC),
        "field_values": values,
    }
    data.update(overrides)
    return ContentItem.model_validate(data)


@pytest.fixture
def articles() -> list[ContentItem]:
    return [
        make_article(1, "London Bridge"),
        make_article(2, "Tower Bridge"),
        make_article(3, "Camden Market"),
    ]


@pytest.fixture
def author() -> ContentItem:
    return ContentItem(id=900, title="Ada Lovelace", content_type="person", field_values={"summary": "Analyst"})


@pytest.fixture
def repository(articles: list[ContentItem], author: ContentItem) -> InMemoryContentRepository:
    return InMemoryContentRepository(content_types=[ARTICLE, PRODUCT, PERSON], items=[*articles, author])


@pytest.fixture
def mapper(repository: InMemoryContentRepository) -> FieldMapper:
    return FieldMapper(repository)


# ── Indexes ──────────────────────────────────────────────────────────────────


def article_mappings() -> list[FieldMapping]:
    return [
        FieldMapping(attribute="title", index_field_name="title", role=FieldRole.TITLE, weight=10, sort_order=0),
        FieldMapping(
            attribute="uri", index_field_name="url", index_field_type=FieldType.KEYWORD, role=FieldRole.URL, sort_order=1
        ),
        FieldMapping(
            attribute="postDate",
            index_field_name="postDate",
            index_field_type=FieldType.DATE,
            role=FieldRole.DATE,
            sort_order=2,
        ),
        FieldMapping(
            field_uid="f-summary",
            field_handle="summary",
            field_kind="plain_text",
            index_field_name="summary",
            role=FieldRole.SUMMARY,
            sort_order=3,
        ),
        FieldMapping(
            field_uid="f-tags",
            field_handle="tags",
            field_kind="multi_options",
            index_field_name="tags",
            index_field_type=FieldType.FACET,
            sort_order=4,
        ),
        FieldMapping(
            field_uid="f-hero",
            field_handle="heroImage",
            field_kind="asset",
            index_field_name="heroImage",
            index_field_type=FieldType.KEYWORD,
            role=FieldRole.IMAGE,
            sort_order=5,
        ),
    ]


@pytest.fixture
def index() -> Index:
    return Index(
        name="Articles",
        handle="articles",
        engine_type="memory",
        scope=IndexScope(content_types=["article"]),
        field_mappings=article_mappings(),
    )


@pytest.fixture
def store(index: Index) -> InMemoryConfigurationStore:
    return InMemoryConfigurationStore([index])


@pytest.fixture
async def memory_engine() -> MemoryEngine:
    engine = MemoryEngine()
    await engine.initialize()
    return engine


@pytest.fixture
def registry() -> EngineRegistry:
    return EngineRegistry.with_builtins()


@pytest.fixture
def settings() -> Settings:
    """Create a test Settings instance with defaults."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        debug=True,
        sync={"batch_size": 2},
    )
