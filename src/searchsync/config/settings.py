"""Application settings — Pydantic-based configuration with YAML and env var support.

Configuration is loaded from (in order of precedence):
  1. Environment variables (SEARCHSYNC_ prefix)
  2. YAML config file (if specified)
  3. Default values

Engine credentials resolve in a second layer on top of this: an
environment-scoped ``EngineOverride`` from the configuration store beats
``Settings.engines``, which beats the per-index ``engine_config``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource


class ServerSettings(BaseModel):
    """HTTP server configuration."""

    host: str = Field(default="0.0.0.0", description="Server bind address")
    port: int = Field(default=8080, description="Server port")
    workers: int = Field(default=1, description="Number of worker processes")
    cors_origins: list[str] = Field(default=["*"], description="Allowed CORS origins")


class EngineSettings(BaseModel):
    """Connection settings for one engine type."""

    hosts: list[str] = Field(default_factory=list, description="Backend host URLs")
    app_id: str | None = Field(default=None, description="Application id (Algolia)")
    api_key: str | None = Field(default=None, description="Admin / master API key")
    search_api_key: str | None = Field(default=None, description="Search-only API key")
    username: str | None = Field(default=None, description="Authentication username")
    password: str | None = Field(default=None, description="Authentication password")
    index_prefix: str | None = Field(default=None, description="Prefix for remote index names")
    verify_certs: bool | None = Field(default=None, description="Verify TLS certificates")
    timeout: float | None = Field(default=None, description="Request timeout in seconds")
    extra: dict[str, Any] = Field(default_factory=dict, description="Engine-specific constructor options")

    @field_validator("hosts", mode="before")
    @classmethod
    def _parse_hosts(cls, v: Any) -> list[str]:
        """Parse hosts from JSON string (env var) or list."""
        if isinstance(v, str):
            try:
                parsed = json.loads(v)
                if isinstance(parsed, list):
                    return [str(h) for h in parsed]
            except (json.JSONDecodeError, TypeError):
                pass
            return [h.strip() for h in v.split(",") if h.strip()]
        return list(v)

    def engine_kwargs(self, engine_type: str) -> dict[str, Any]:
        """Constructor keyword arguments for ``engine_type``, empty values dropped."""
        kwargs: dict[str, Any] = {}
        if self.hosts:
            if engine_type in ("meilisearch", "typesense", "algolia"):
                kwargs["base_url"] = self.hosts[0]
            else:
                kwargs["hosts"] = self.hosts
        for key in ("app_id", "api_key", "username", "password", "index_prefix", "verify_certs", "timeout"):
            value = getattr(self, key)
            if value not in (None, ""):
                kwargs[key] = value
        kwargs.update(self.extra)
        return kwargs


class SyncSettings(BaseModel):
    """Sync orchestration behavior."""

    batch_size: int = Field(default=500, ge=1, description="Items per bulk import batch")
    sync_on_save: bool = Field(default=True, description="Sync items when content events arrive")
    index_relations: bool = Field(default=True, description="Re-index items that reference a changed item")
    cleanup_batch_size: int = Field(default=500, ge=1, description="Ids per orphan-cleanup delete call")
    max_attempts: int = Field(default=3, ge=1, description="Attempts per queued job")


class EmbeddingSettings(BaseModel):
    """Query embedding provider configuration."""

    provider: str = Field(default="voyage", description="Embedding provider name")
    api_key: str = Field(default="", description="Provider API key; empty disables query embeddings")
    model: str = Field(default="voyage-3", description="Embedding model")
    base_url: str = Field(default="https://api.voyageai.com", description="Provider API endpoint")
    timeout: float = Field(default=15.0, description="Request timeout in seconds")
    cache_ttl: int = Field(default=7 * 24 * 3600, description="Cache TTL for embeddings in seconds")


class CacheSettings(BaseModel):
    """Cache backend configuration."""

    backend: str = Field(default="memory", description="Cache backend: memory, redis")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    key_prefix: str = Field(default="searchsync:", description="Prefix for every cache key")


class ObservabilitySettings(BaseModel):
    """Observability configuration."""

    log_level: str = Field(default="info", description="Log level: debug, info, warning, error")
    log_format: str = Field(default="json", description="Log format: json, console")


class Settings(BaseSettings):
    """Root application settings.

    Configuration is loaded from environment variables with the SEARCHSYNC_ prefix.
    Nested settings use double underscores: SEARCHSYNC_SERVER__PORT=9090

    Example:
        SEARCHSYNC_SERVER__PORT=9090
        SEARCHSYNC_ENGINES='{"meilisearch": {"hosts": ["http://localhost:7700"]}}'
        SEARCHSYNC_SYNC__BATCH_SIZE=200
    """

    model_config = {
        "env_prefix": "SEARCHSYNC_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    app_name: str = Field(default="searchsync", description="Application name")
    version: str = Field(default="0.1.0", description="Application version")
    debug: bool = Field(default=False, description="Debug mode")
    environment: str = Field(default="default", description="Environment name used to scope engine overrides")
    config_store: str | None = Field(default=None, description="Path of the YAML configuration store")

    server: ServerSettings = Field(default_factory=ServerSettings)
    engines: dict[str, EngineSettings] = Field(default_factory=dict, description="Engine settings by type tag")
    sync: SyncSettings = Field(default_factory=SyncSettings)
    embeddings: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment beats YAML values passed in as init kwargs
        return env_settings, dotenv_settings, init_settings, file_secret_settings

    @classmethod
    def from_yaml(cls, path: str | Path) -> Settings:
        """Load settings from a YAML configuration file.

        Values from the YAML file are used as defaults; environment variables
        still take precedence.

        Args:
            path: Path to the YAML config file.

        Returns:
            Populated Settings instance.
        """
        import yaml  # type: ignore[import-untyped]

        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)
