"""Query embeddings for vector search.

Vector searches carry a query text; the embedding provider turns it into
a vector before the engine sees the options. Embedding failures never
fail the search: the options degrade to plain text search instead.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Protocol, runtime_checkable

import httpx

from searchsync.cache.manager import CacheManager
from searchsync.config.settings import EmbeddingSettings
from searchsync.models.index import Index
from searchsync.models.options import SearchOptions

logger = logging.getLogger(__name__)


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Anything that can turn a text into a vector."""

    async def embed(self, text: str, input_type: str = "query") -> list[float] | None: ...


class VoyageEmbeddingProvider:
    """Embedding provider backed by the Voyage AI ``/v1/embeddings`` API.

    Args:
        settings: Embedding settings (key, model, endpoint, cache TTL).
        cache: Cache for computed vectors. Defaults to an in-memory cache.
        client: Optional preconfigured ``httpx.AsyncClient``.
    """

    def __init__(
        self,
        settings: EmbeddingSettings,
        cache: CacheManager | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.settings = settings
        self._cache = cache or CacheManager()
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.base_url.rstrip("/"),
                timeout=httpx.Timeout(self.settings.timeout),
                headers={"Authorization": f"Bearer {self.settings.api_key}"},
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def cache_key(self, text: str, input_type: str) -> str:
        digest = hashlib.sha256(f"{self.settings.model}|{input_type}|{text}".encode()).hexdigest()
        return f"embedding:{digest}"

    async def embed(self, text: str, input_type: str = "query") -> list[float] | None:
        """Embed one text. Returns None (and logs a warning) on any failure."""
        if not self.settings.api_key:
            logger.warning("Embedding requested but no embedding API key is configured")
            return None
        if not text.strip():
            return None

        key = self.cache_key(text, input_type)
        cached = await self._cache.get(key)
        if cached is not None:
            return cached

        try:
            resp = await self._get_client().post(
                "/v1/embeddings",
                json={"input": [text], "model": self.settings.model, "input_type": input_type},
            )
            resp.raise_for_status()
            embedding = resp.json()["data"][0]["embedding"]
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning("Voyage embedding request failed: %s", e)
            return None

        vector = [float(v) for v in embedding]
        await self._cache.set(key, vector, ttl=self.settings.cache_ttl)
        return vector


async def resolve_embedding_options(
    index: Index,
    query: str,
    options: SearchOptions,
    provider: EmbeddingProvider | None,
) -> SearchOptions:
    """Fill in the query vector for a vector search, or fall back to text search.

    Options that do not ask for vector search are returned unchanged. A
    precomputed embedding is kept, but still needs a target field.
    """
    if not options.vector_search:
        return options

    field = options.embedding_field or index.embedding_field()
    if field is None:
        logger.warning("Index %s has no embedding field; running text search", index.handle)
        return options.with_embedding(None, None)
    if options.embedding is not None:
        return options.with_embedding(field, options.embedding)
    if provider is None:
        logger.warning("No embedding provider configured; running text search on %s", index.handle)
        return options.with_embedding(None, None)

    embedding = await provider.embed(query, "query")
    if embedding is None:
        logger.warning("Could not embed query for %s; running text search", index.handle)
    return options.with_embedding(field, embedding)
