"""Tests for application settings."""

from __future__ import annotations

from pathlib import Path

import pytest

from searchbridge.adapters.base.exceptions import ConfigurationError
from searchbridge.config.settings import (
    ElasticSettings,
    MeilisearchSettings,
    Settings,
    parse_hosts,
    resolve_env,
)


class TestResolveEnv:
    def test_references(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MEILI_KEY", "secret")
        assert resolve_env("$MEILI_KEY") == "secret"
        assert resolve_env("${MEILI_KEY}") == "secret"
        assert resolve_env(["${MEILI_KEY}", "plain"]) == ["secret", "plain"]

    def test_unset_variable_is_empty(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SEARCHBRIDGE_TEST_UNSET", raising=False)
        assert resolve_env("$SEARCHBRIDGE_TEST_UNSET") == ""

    @pytest.mark.parametrize("value", ["pa$$word", "cost: $5", "", 42, None])
    def test_other_values_unchanged(self, value: object) -> None:
        assert resolve_env(value) == value


class TestHosts:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ('["http://a:9200", "http://b:9200"]', ["http://a:9200", "http://b:9200"]),
            ("http://a:9200, http://b:9200", ["http://a:9200", "http://b:9200"]),
            ("http://a:9200", ["http://a:9200"]),
            (["http://a:9200"], ["http://a:9200"]),
        ],
    )
    def test_parse_hosts(self, value: object, expected: list[str]) -> None:
        assert parse_hosts(value) == expected

    def test_hosts_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SEARCHBRIDGE_ENGINES__ELASTICSEARCH__HOSTS", '["http://es:9200"]')
        settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.engines.elasticsearch.hosts == ["http://es:9200"]


class TestEngineSettings:
    def test_merged_applies_known_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("ES_EU_KEY", "eu-key")
        base = ElasticSettings(hosts=["http://localhost:9200"], timeout=3.0)

        merged = base.merged({"hosts": ["http://eu:9200"], "api_key": "$ES_EU_KEY", "index_prefix": "eu_"})

        assert merged.hosts == ["http://eu:9200"]
        assert merged.api_key == "eu-key"
        assert merged.timeout == 3.0
        assert base.hosts == ["http://localhost:9200"]

    def test_merged_without_overrides(self) -> None:
        settings = MeilisearchSettings(host="http://localhost:7700")
        assert settings.merged() == settings

    def test_for_engine(self) -> None:
        engines = Settings(_env_file=None).engines  # type: ignore[call-arg]
        assert isinstance(engines.for_engine("opensearch"), ElasticSettings)
        with pytest.raises(ConfigurationError):
            engines.for_engine("vespa")


class TestSettings:
    def test_defaults(self) -> None:
        settings = Settings(_env_file=None)  # type: ignore[call-arg]
        assert settings.indexing.batch_size == 500
        assert settings.indexing.facet_distribution_cap == 1000
        assert settings.observability.log_format == "json"
        assert settings.indexes == []

    def test_from_yaml(self, tmp_path: Path) -> None:
        config = tmp_path / "searchbridge.yaml"
        config.write_text(
            """
engines:
  typesense:
    host: localhost
    api_key: test-key
indexing:
  index_prefix: staging_
indexes:
  - handle: products
    engine_type: typesense
    field_mappings:
      - index_field_name: title
        index_field_type: text
        weight: 10
""",
            encoding="utf-8",
        )

        settings = Settings.from_yaml(config)

        assert settings.engines.typesense.host == "localhost"
        assert settings.indexing.index_prefix == "staging_"
        index = settings.get_index("products")
        assert index.engine_type == "typesense"
        assert index.field_mappings[0].weight == 10

    def test_missing_yaml(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            Settings.from_yaml(tmp_path / "missing.yaml")

    def test_unknown_index(self, settings: Settings) -> None:
        with pytest.raises(KeyError, match="articles"):
            settings.get_index("articles")
