"""Engine Registry — Maps engine type tags to engine classes and live instances.

Engine classes are registered once at startup. Instances are created on
demand per distinct connection config and shared by every index that
uses the same config.
"""

from __future__ import annotations

import hashlib
import importlib
import json
import logging
from typing import Any

from searchsync.engines.base.engine import EngineHealth, SearchEngine
from searchsync.exceptions import UnknownEngineError

logger = logging.getLogger(__name__)

# Maps built-in engine tags to (module_path, class_name) for lazy import
BUILTIN_ENGINES: dict[str, tuple[str, str]] = {
    "opensearch": ("searchsync.engines.opensearch.engine", "OpenSearchEngine"),
    "elasticsearch": ("searchsync.engines.opensearch.engine", "OpenSearchEngine"),
    "meilisearch": ("searchsync.engines.meilisearch.engine", "MeiliSearchEngine"),
    "typesense": ("searchsync.engines.typesense.engine", "TypesenseEngine"),
    "algolia": ("searchsync.engines.algolia.engine", "AlgoliaEngine"),
    "memory": ("searchsync.engines.memory.engine", "MemoryEngine"),
}


class EngineRegistry:
    """Registry of engine classes and initialized engine instances.

    Example:
        >>> registry = EngineRegistry.with_builtins()
        >>> engine = await registry.engine_for("meilisearch", base_url="http://localhost:7700")
    """

    def __init__(self) -> None:
        self._classes: dict[str, type[SearchEngine]] = {}
        self._instances: dict[str, SearchEngine] = {}

    @classmethod
    def with_builtins(cls) -> EngineRegistry:
        registry = cls()
        for engine_type, (module_path, class_name) in BUILTIN_ENGINES.items():
            module = importlib.import_module(module_path)
            registry.register(engine_type, getattr(module, class_name))
        return registry

    def register(self, engine_type: str, engine_class: type[SearchEngine]) -> None:
        """Register an engine class under a type tag.

        Args:
            engine_type: Unique engine type tag.
            engine_class: The engine class to register.
        """
        if engine_type in self._classes:
            logger.warning("Overwriting existing engine registration: %s", engine_type)
        self._classes[engine_type] = engine_class
        logger.debug("Registered engine: %s", engine_type)

    def engine_class(self, engine_type: str) -> type[SearchEngine]:
        """Look up a registered engine class.

        Raises:
            UnknownEngineError: If no engine is registered under this tag.
        """
        try:
            return self._classes[engine_type]
        except KeyError:
            raise UnknownEngineError(engine_type, list(self._classes)) from None

    async def engine_for(self, engine_type: str, **config: Any) -> SearchEngine:
        """Return the shared, initialized engine for a type tag and connection config.

        Args:
            engine_type: The registered engine type tag.
            **config: Constructor keyword arguments for the engine.

        Returns:
            An initialized engine instance.

        Raises:
            UnknownEngineError: If no engine is registered under this tag.
        """
        key = self._instance_key(engine_type, config)
        if key in self._instances:
            return self._instances[key]

        engine = self.engine_class(engine_type)(**config)
        await engine.initialize()
        self._instances[key] = engine
        logger.info("Initialized engine: %s", engine_type)
        return engine

    async def health_check_all(self) -> dict[str, EngineHealth]:
        """Run health checks on all initialized engines, keyed by instance key."""
        results: dict[str, EngineHealth] = {}
        for key, engine in self._instances.items():
            try:
                results[key] = await engine.health_check()
            except Exception as e:
                results[key] = EngineHealth(status="unhealthy", message=str(e))
        return results

    async def shutdown_all(self) -> None:
        """Gracefully shut down all initialized engines."""
        for key, engine in self._instances.items():
            try:
                await engine.shutdown()
                logger.info("Shut down engine: %s", key)
            except Exception:
                logger.warning("Error shutting down engine: %s", key, exc_info=True)
        self._instances.clear()

    @property
    def registered_engines(self) -> list[str]:
        return list(self._classes.keys())

    @property
    def active_engines(self) -> list[str]:
        return list(self._instances.keys())

    @staticmethod
    def _instance_key(engine_type: str, config: dict[str, Any]) -> str:
        # Keys are exposed by health checks; never embed raw credentials
        digest = hashlib.sha256(json.dumps(config, sort_keys=True, default=str).encode()).hexdigest()
        return f"{engine_type}:{digest[:12]}"
