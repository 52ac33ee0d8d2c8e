"""Environment-scoped engine credential override."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator


class EngineOverride(BaseModel):
    """Credential overrides for one deployment environment.

    There is a single logical record per deployment. Keys follow the
    ``<engine_type>.<setting>`` convention (``opensearch.hosts``,
    ``algolia.api_key``). Empty values are dropped so they fall back to the
    stored configuration.
    """

    environment: str = Field(default="default", description="Deployment environment name")
    settings: dict[str, Any] = Field(default_factory=dict, description="Override key/value pairs")

    @field_validator("settings")
    @classmethod
    def _drop_empty(cls, v: dict[str, Any]) -> dict[str, Any]:
        return {key: value for key, value in v.items() if value is not None and value != "" and value != []}

    def for_engine(self, engine_type: str) -> dict[str, Any]:
        """Override values for one engine type, with the prefix stripped."""
        prefix = f"{engine_type}."
        return {key[len(prefix):]: value for key, value in self.settings.items() if key.startswith(prefix)}
