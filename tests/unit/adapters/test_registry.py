"""Tests for the adapter registry."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from searchbridge.adapters.algolia.adapter import AlgoliaAdapter
from searchbridge.adapters.base.adapter import AdapterHealth
from searchbridge.adapters.base.registry import AdapterNotFoundError, AdapterRegistry
from searchbridge.adapters.elastic.adapter import ElasticCompatAdapter
from searchbridge.adapters.meilisearch.adapter import MeilisearchAdapter
from searchbridge.adapters.typesense.adapter import TypesenseAdapter
from searchbridge.config.settings import Settings
from tests.helpers import make_index


@pytest.fixture
def registry(settings: Settings) -> AdapterRegistry:
    return AdapterRegistry(settings)


class TestAdapterResolution:
    @pytest.mark.parametrize(
        ("engine_type", "adapter_class"),
        [
            ("algolia", AlgoliaAdapter),
            ("elasticsearch", ElasticCompatAdapter),
            ("opensearch", ElasticCompatAdapter),
            ("meilisearch", MeilisearchAdapter),
            ("typesense", TypesenseAdapter),
        ],
    )
    def test_builds_each_engine(self, registry: AdapterRegistry, engine_type: str, adapter_class: type) -> None:
        adapter = registry.for_engine(engine_type)
        assert isinstance(adapter, adapter_class)
        assert adapter.name == engine_type

    def test_unknown_engine(self, registry: AdapterRegistry) -> None:
        with pytest.raises(AdapterNotFoundError, match="Available engines"):
            registry.for_engine("vespa")

    def test_registered_adapters(self, registry: AdapterRegistry) -> None:
        assert registry.registered_adapters == ["algolia", "elasticsearch", "meilisearch", "opensearch", "typesense"]


class TestAdapterCaching:
    def test_same_settings_share_an_adapter(self, registry: AdapterRegistry) -> None:
        first = registry.for_index(make_index("meilisearch", handle="products"))
        second = registry.for_index(make_index("meilisearch", handle="articles"))
        assert first is second
        assert registry.active_adapters == ["meilisearch"]

    def test_connection_overrides_get_their_own_adapter(self, registry: AdapterRegistry) -> None:
        default = registry.for_index(make_index("meilisearch"))
        other = registry.for_index(make_index("meilisearch", handle="eu", host="http://meili-eu:7700"))
        assert default is not other
        assert other._host == "http://meili-eu:7700"

    def test_physical_name_override_does_not_split_cache(self, registry: AdapterRegistry) -> None:
        default = registry.for_index(make_index("typesense"))
        pinned = registry.for_index(make_index("typesense", index_name="products_v2"))
        assert default is pinned


class TestAdapterKwargs:
    def test_task_engines_get_indexing_settings(self, settings: Settings) -> None:
        settings.indexing.task_timeout = 5.0
        kwargs = AdapterRegistry(settings).adapter_kwargs("meilisearch")
        assert kwargs["task_timeout"] == 5.0
        assert kwargs["facet_distribution_cap"] == 1000
        assert kwargs["host"] == "http://localhost:7700"

    def test_elastic_engines_skip_task_settings(self, registry: AdapterRegistry) -> None:
        kwargs = registry.adapter_kwargs("elasticsearch")
        assert "task_timeout" not in kwargs
        assert kwargs["hosts"] == ["http://localhost:9200"]
        assert kwargs["facet_distribution_cap"] == 1000

    def test_global_prefix_and_batch_size(self, settings: Settings) -> None:
        settings.indexing.index_prefix = "staging_"
        settings.indexing.batch_size = 50
        settings.indexing.facet_distribution_cap = 250
        adapter = AdapterRegistry(settings).for_engine("typesense")
        assert adapter.index_name(make_index("typesense")) == "staging_products"
        assert adapter._batch_size == 50
        assert adapter.facet_distribution_options() == {"max_facet_values": 250}

    def test_env_references_resolved(self, registry: AdapterRegistry, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MEILI_EU_KEY", "from-env")
        kwargs = registry.adapter_kwargs("meilisearch", {"api_key": "${MEILI_EU_KEY}"})
        assert kwargs["api_key"] == "from-env"

    def test_non_connection_overrides_ignored(self, registry: AdapterRegistry) -> None:
        kwargs = registry.adapter_kwargs("typesense", {"index_name": "products_v2", "port": 9108})
        assert kwargs["port"] == 9108
        assert "index_name" not in kwargs


class TestRegistration:
    def test_register_overrides_builtin(self, registry: AdapterRegistry) -> None:
        fake_class = MagicMock()
        registry.register("typesense", fake_class, extra="yes")

        adapter = registry.for_engine("typesense")

        assert adapter is fake_class.return_value
        assert fake_class.call_args.kwargs["extra"] == "yes"
        assert fake_class.call_args.kwargs["host"] == "localhost"

    async def test_health_and_shutdown(self, registry: AdapterRegistry) -> None:
        healthy = MagicMock()
        healthy.return_value.health_check = AsyncMock(return_value=AdapterHealth(status="healthy"))
        healthy.return_value.shutdown = AsyncMock(side_effect=RuntimeError("socket already closed"))
        registry.register("meilisearch", healthy)
        registry.for_engine("meilisearch")

        health = await registry.health_check_all()
        assert health["meilisearch"].status == "healthy"

        await registry.shutdown_all()
        healthy.return_value.shutdown.assert_awaited_once()
        assert registry.active_adapters == []
