"""Adapter Registry — Builds and caches search adapters from configuration.

Engine types map to adapter classes that are imported on first use, so a
deployment only needs the client libraries of the engines it talks to.
Adapters are cached per engine type and effective connection settings:
indexes that share a cluster share one adapter (and one client).
"""

from __future__ import annotations

import importlib
import json
import logging
from typing import TYPE_CHECKING, Any

from searchbridge.adapters.base.adapter import AdapterHealth, SearchAdapter
from searchbridge.adapters.base.exceptions import AdapterError

if TYPE_CHECKING:
    from searchbridge.config.settings import Settings
    from searchbridge.models.index import Index

logger = logging.getLogger(__name__)

#: engine type -> ("module:Class", constructor kwargs added by the registry)
_ADAPTER_MAP: dict[str, tuple[str, dict[str, Any]]] = {
    "algolia": ("searchbridge.adapters.algolia.adapter:AlgoliaAdapter", {}),
    "elasticsearch": ("searchbridge.adapters.elastic.adapter:ElasticCompatAdapter", {"flavor": "elasticsearch"}),
    "opensearch": ("searchbridge.adapters.elastic.adapter:ElasticCompatAdapter", {"flavor": "opensearch"}),
    "meilisearch": ("searchbridge.adapters.meilisearch.adapter:MeilisearchAdapter", {}),
    "typesense": ("searchbridge.adapters.typesense.adapter:TypesenseAdapter", {}),
}

#: Indexing settings understood by engines that wait on async tasks.
_TASK_ENGINES = ("algolia", "meilisearch")


class AdapterNotFoundError(AdapterError):
    """Raised when a requested engine type has no registered adapter."""


def _load(path: str) -> type[SearchAdapter]:
    module_name, _, class_name = path.partition(":")
    return getattr(importlib.import_module(module_name), class_name)


class AdapterRegistry:
    """Registry for building and reusing search adapter instances.

    Example:
        >>> registry = AdapterRegistry(Settings.from_yaml("searchbridge.yaml"))
        >>> adapter = registry.for_index(settings.get_index("products"))
        >>> result = await adapter.search(index, "shoes")
        >>> await registry.shutdown_all()
    """

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._classes: dict[str, type[SearchAdapter]] = {}
        self._defaults: dict[str, dict[str, Any]] = {}
        self._instances: dict[tuple[str, str], SearchAdapter] = {}

    def register(self, engine_type: str, adapter_class: type[SearchAdapter], **defaults: Any) -> None:
        """Register an adapter class for an engine type.

        Args:
            engine_type: Engine family name used in ``Index.engine_type``.
            adapter_class: The adapter class to register.
            **defaults: Extra constructor arguments for this engine type.
        """
        if engine_type in self._classes or engine_type in _ADAPTER_MAP:
            logger.warning("Overwriting existing adapter registration: %s", engine_type)
        self._classes[engine_type] = adapter_class
        self._defaults[engine_type] = defaults
        logger.info("Registered adapter: %s", engine_type)

    def adapter_class(self, engine_type: str) -> tuple[type[SearchAdapter], dict[str, Any]]:
        """Resolve the adapter class and extra constructor arguments for an engine type.

        Raises:
            AdapterNotFoundError: If the engine type is unknown.
        """
        if engine_type in self._classes:
            return self._classes[engine_type], self._defaults[engine_type]
        if engine_type not in _ADAPTER_MAP:
            raise AdapterNotFoundError(
                f"No adapter registered for engine type '{engine_type}'. "
                f"Available engines: {self.registered_adapters}"
            )
        path, defaults = _ADAPTER_MAP[engine_type]
        return _load(path), defaults

    def adapter_kwargs(self, engine_type: str, overrides: dict[str, Any] | None = None) -> dict[str, Any]:
        """Constructor arguments for an engine, with per-index overrides applied."""
        engine = self._settings.engines.for_engine(engine_type).merged(overrides)
        indexing = self._settings.indexing
        kwargs = engine.model_dump()
        kwargs["index_prefix"] = indexing.index_prefix
        kwargs["batch_size"] = indexing.batch_size
        kwargs["facet_distribution_cap"] = indexing.facet_distribution_cap
        if engine_type in _TASK_ENGINES:
            kwargs["task_poll_interval"] = indexing.task_poll_interval
            kwargs["task_timeout"] = indexing.task_timeout
        return kwargs

    def for_engine(self, engine_type: str, overrides: dict[str, Any] | None = None) -> SearchAdapter:
        """Get (or build) the adapter for an engine type and connection overrides.

        Args:
            engine_type: Engine family name.
            overrides: Per-index ``engine_config``.

        Returns:
            A cached adapter instance.

        Raises:
            AdapterNotFoundError: If the engine type is unknown.
            ConfigurationError: If the engine settings are unknown or invalid.
        """
        adapter_class, defaults = self.adapter_class(engine_type)
        kwargs = {**self.adapter_kwargs(engine_type, overrides), **defaults}
        key = (engine_type, json.dumps(kwargs, sort_keys=True, default=str))
        if key not in self._instances:
            self._instances[key] = adapter_class(**kwargs)
            logger.info("Initialized %s adapter", engine_type)
        return self._instances[key]

    def for_index(self, index: Index) -> SearchAdapter:
        """Get the adapter serving ``index``."""
        return self.for_engine(index.engine_type, index.engine_config)

    async def health_check_all(self) -> dict[str, AdapterHealth]:
        """Run health checks on all initialized adapters.

        Returns:
            Dictionary mapping engine types to their health status.
        """
        results: dict[str, AdapterHealth] = {}
        for (engine_type, _), adapter in self._instances.items():
            results[engine_type] = await adapter.health_check()
        return results

    async def shutdown_all(self) -> None:
        """Gracefully shut down all initialized adapters."""
        for (engine_type, _), adapter in self._instances.items():
            try:
                await adapter.shutdown()
                logger.info("Shut down adapter: %s", engine_type)
            except Exception:
                logger.warning("Error shutting down adapter: %s", engine_type, exc_info=True)
        self._instances.clear()

    @property
    def registered_adapters(self) -> list[str]:
        """List all known engine types."""
        return sorted({*_ADAPTER_MAP, *self._classes})

    @property
    def active_adapters(self) -> list[str]:
        """List the engine types of all initialized adapters."""
        return [engine_type for engine_type, _ in self._instances]
