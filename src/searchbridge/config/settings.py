"""Application settings — Pydantic-based configuration with YAML and env var support.

Configuration is loaded from (in order of precedence):
  1. YAML config file (if specified via ``Settings.from_yaml``)
  2. Environment variables (SEARCHBRIDGE_ prefix)
  3. Default values

Any string value may also point at an environment variable with ``$VAR``
or ``${VAR}``; such references are resolved when an adapter is built, so
secrets never need to live in the config file itself.
"""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings

from searchbridge.models.index import Index

_ENV_REFERENCE = re.compile(r"^\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))$")


def resolve_env(value: Any) -> Any:
    """Resolve a ``$VAR`` / ``${VAR}`` reference against the environment.

    Only whole-string references are resolved; other values, including
    strings that merely contain a ``$``, are returned unchanged. An unset
    variable resolves to an empty string.
    """
    if isinstance(value, str):
        match = _ENV_REFERENCE.match(value.strip())
        if match:
            return os.environ.get(match.group("braced") or match.group("bare"), "")
    elif isinstance(value, list):
        return [resolve_env(v) for v in value]
    return value


def parse_hosts(v: Any) -> list[str]:
    """Parse hosts from JSON string (env var) or list."""
    if isinstance(v, str):
        import json

        try:
            parsed = json.loads(v)
            if isinstance(parsed, list):
                return [str(h) for h in parsed]
        except (json.JSONDecodeError, TypeError):
            pass
        # Single host or comma-separated hosts as a plain string
        return [h.strip() for h in v.split(",") if h.strip()]
    return list(v)


class EngineSettings(BaseModel):
    """Connection settings shared by every engine family."""

    timeout: float = Field(default=10.0, description="Read timeout in seconds")
    connect_timeout: float = Field(default=5.0, description="Connect timeout in seconds")

    def merged(self, overrides: Mapping[str, Any] | None = None) -> Self:
        """Apply per-index overrides and resolve env references.

        Keys of ``overrides`` that are not fields of this model (such as
        ``index_prefix``) are ignored.

        Args:
            overrides: An index's ``engine_config``.

        Returns:
            A new settings object with every string value resolved.
        """
        data = self.model_dump()
        for key, value in (overrides or {}).items():
            if key in type(self).model_fields:
                data[key] = value
        return type(self).model_validate({k: resolve_env(v) for k, v in data.items()})


class AlgoliaSettings(EngineSettings):
    app_id: str = Field(default="", description="Algolia application ID")
    api_key: str = Field(default="", description="Admin API key (indexing and settings)")
    search_api_key: str = Field(default="", description="Search-only API key; falls back to api_key")
    hosts: list[str] = Field(default_factory=list, description="Override hosts; derived from app_id when empty")

    @field_validator("hosts", mode="before")
    @classmethod
    def _parse_hosts(cls, v: Any) -> list[str]:
        return parse_hosts(v)


class ElasticSettings(EngineSettings):
    """Settings for an Elasticsearch or OpenSearch cluster."""

    hosts: list[str] = Field(default_factory=list, description="Cluster node URLs")
    api_key: str | None = Field(default=None, description="API key (takes precedence over basic auth)")
    username: str | None = Field(default=None, description="Basic-auth username")
    password: str | None = Field(default=None, description="Basic-auth password")
    verify_certs: bool = Field(default=True, description="Verify TLS certificates")

    @field_validator("hosts", mode="before")
    @classmethod
    def _parse_hosts(cls, v: Any) -> list[str]:
        return parse_hosts(v)


class MeilisearchSettings(EngineSettings):
    host: str = Field(default="", description="Meilisearch URL, e.g. http://localhost:7700")
    api_key: str | None = Field(default=None, description="Master or admin API key")


class TypesenseSettings(EngineSettings):
    host: str = Field(default="", description="Typesense host name")
    port: int = Field(default=8108, description="Typesense port")
    protocol: str = Field(default="http", description="http or https")
    api_key: str = Field(default="", description="Admin API key")


class EnginesSettings(BaseModel):
    """Global connection settings, one section per engine family."""

    algolia: AlgoliaSettings = Field(default_factory=AlgoliaSettings)
    elasticsearch: ElasticSettings = Field(default_factory=ElasticSettings)
    opensearch: ElasticSettings = Field(default_factory=ElasticSettings)
    meilisearch: MeilisearchSettings = Field(default_factory=MeilisearchSettings)
    typesense: TypesenseSettings = Field(default_factory=TypesenseSettings)

    def for_engine(self, engine_type: str) -> EngineSettings:
        settings = getattr(self, engine_type, None)
        if not isinstance(settings, EngineSettings):
            from searchbridge.adapters.base.exceptions import ConfigurationError

            raise ConfigurationError(f"Unknown engine type '{engine_type}'")
        return settings


class IndexingSettings(BaseModel):
    """Index naming and write behaviour."""

    index_prefix: str = Field(default="", description="Prefix prepended to every index handle")
    batch_size: int = Field(default=500, ge=1, description="Documents per bulk request")
    facet_distribution_cap: int = Field(
        default=1000,
        ge=1,
        description="Maximum distinct values fetched when facet search falls back to a full distribution",
    )
    task_poll_interval: float = Field(default=0.1, gt=0, description="Seconds between async task polls")
    task_timeout: float = Field(default=60.0, gt=0, description="Seconds to wait for an async task")


class ObservabilitySettings(BaseModel):
    """Observability configuration."""

    log_level: str = Field(default="info", description="Log level: debug, info, warning, error")
    log_format: str = Field(default="json", description="Log format: json, console")


class Settings(BaseSettings):
    """Root application settings.

    Configuration is loaded from environment variables with the SEARCHBRIDGE_ prefix.
    Nested settings use double underscores: SEARCHBRIDGE_ENGINES__TYPESENSE__PORT=8108

    Example:
        SEARCHBRIDGE_ENGINES__ELASTICSEARCH__HOSTS=http://localhost:9200
        SEARCHBRIDGE_ENGINES__MEILISEARCH__API_KEY=masterKey
        SEARCHBRIDGE_INDEXING__INDEX_PREFIX=staging_
    """

    model_config = {
        "env_prefix": "SEARCHBRIDGE_",
        "env_nested_delimiter": "__",
        "case_sensitive": False,
        "env_file": ".env",
        "env_file_encoding": "utf-8",
    }

    engines: EnginesSettings = Field(default_factory=EnginesSettings)
    indexing: IndexingSettings = Field(default_factory=IndexingSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
    indexes: list[Index] = Field(default_factory=list, description="Index definitions")

    def get_index(self, handle: str) -> Index:
        """Look up a configured index by handle.

        Raises:
            KeyError: If no index with this handle is configured.
        """
        for index in self.indexes:
            if index.handle == handle:
                return index
        raise KeyError(f"No index configured with handle '{handle}'")

    @classmethod
    def from_yaml(cls, path: str | Path) -> Settings:
        """Load settings from a YAML configuration file.

        Values from the YAML file are passed as init arguments, so they win
        over environment variables for the keys they set.

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
