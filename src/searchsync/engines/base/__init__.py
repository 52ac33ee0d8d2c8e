"""Base engine interface — Abstract classes for search backend connectors."""

from searchsync.engines.base.engine import EngineHealth, SearchEngine
from searchsync.engines.base.registry import EngineRegistry

__all__ = ["EngineHealth", "EngineRegistry", "SearchEngine"]
