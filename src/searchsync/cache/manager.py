"""Cache Manager — Redis-backed caching for query embeddings.

Provides a small async key/value interface with per-call TTL. The memory
backend is the default; the redis backend needs the ``redis`` extra.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any

from searchsync.config.settings import CacheSettings
from searchsync.exceptions import ConfigurationError

logger = logging.getLogger(__name__)


class CacheManager:
    """Manages caching for searchsync components.

    Supports Redis and in-memory backends. Cache failures never fail the
    caller: a failed read is a miss and a failed write is dropped.

    Attributes:
        settings: Cache configuration.
    """

    def __init__(self, settings: CacheSettings | None = None) -> None:
        self.settings = settings or CacheSettings()
        self._client: Any = None
        self._memory_cache: dict[str, tuple[Any, float | None]] = {}

    async def initialize(self) -> None:
        """Initialize the cache backend."""
        if self.settings.backend != "redis":
            logger.info("Using in-memory cache backend")
            return

        try:
            import redis.asyncio as aioredis
        except ImportError as e:
            raise ConfigurationError("The redis cache backend needs the 'redis' package (pip install searchsync[redis])") from e

        self._client = aioredis.from_url(self.settings.redis_url, decode_responses=True)
        try:
            await self._client.ping()
            logger.info("Connected to Redis cache at %s", self.settings.redis_url)
        except Exception:
            logger.warning("Failed to connect to Redis, falling back to memory cache", exc_info=True)
            await self._client.aclose()
            self._client = None
            self.settings = self.settings.model_copy(update={"backend": "memory"})

    async def shutdown(self) -> None:
        """Close cache connections."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _key(self, key: str) -> str:
        return f"{self.settings.key_prefix}{key}"

    async def get(self, key: str) -> Any | None:
        """Retrieve a value from cache.

        Args:
            key: Cache key.

        Returns:
            Cached value or None if not found or expired.
        """
        try:
            if self._client:
                value = await self._client.get(self._key(key))
                return json.loads(value) if value else None
            entry = self._memory_cache.get(self._key(key))
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and expires_at <= time.monotonic():
                self._memory_cache.pop(self._key(key), None)
                return None
            return value
        except Exception:
            logger.debug("Cache get failed for key: %s", key, exc_info=True)
            return None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Store a value in cache.

        Args:
            key: Cache key.
            value: Value to cache (must be JSON-serializable for Redis).
            ttl: Time-to-live in seconds (None = no expiry).
        """
        try:
            if self._client:
                serialized = json.dumps(value, default=str)
                if ttl:
                    await self._client.setex(self._key(key), ttl, serialized)
                else:
                    await self._client.set(self._key(key), serialized)
            else:
                expires_at = time.monotonic() + ttl if ttl else None
                self._memory_cache[self._key(key)] = (value, expires_at)
        except Exception:
            logger.debug("Cache set failed for key: %s", key, exc_info=True)

    async def delete(self, key: str) -> None:
        try:
            if self._client:
                await self._client.delete(self._key(key))
            else:
                self._memory_cache.pop(self._key(key), None)
        except Exception:
            logger.debug("Cache delete failed for key: %s", key, exc_info=True)
