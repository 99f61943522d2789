"""Tests for the Meilisearch schema mapping."""

from __future__ import annotations

from searchbridge.models.index import FieldMapping, FieldType, Index
from searchbridge.schema import meilisearch
from tests.helpers import make_index


class TestBuildSettings:
    def test_settings(self) -> None:
        settings = meilisearch.build_settings(make_index("meilisearch"))

        assert settings["searchableAttributes"] == ["title", "description"]
        assert settings["filterableAttributes"] == [
            "brand",
            "tags",
            "price",
            "stock",
            "in_stock",
            "published_at",
            "_geo",
        ]
        assert settings["sortableAttributes"] == ["price", "stock", "published_at", "_geo"]
        assert settings["embedders"] == {"embedding": {"source": "userProvided", "dimensions": 3}}

    def test_searchable_ordered_by_weight(self) -> None:
        index = Index(
            handle="articles",
            engine_type="meilisearch",
            field_mappings=[
                FieldMapping(index_field_name="body", weight=2),
                FieldMapping(index_field_name="headline", weight=9),
                FieldMapping(index_field_name="author", weight=5),
            ],
        )
        assert meilisearch.build_settings(index) == {"searchableAttributes": ["headline", "author", "body"]}

    def test_no_fields(self) -> None:
        assert meilisearch.build_settings(Index(handle="empty")) == {}

    def test_two_geo_fields_share_one_attribute(self) -> None:
        index = Index(
            handle="places",
            field_mappings=[
                FieldMapping(index_field_name="pickup", index_field_type=FieldType.GEO_POINT),
                FieldMapping(index_field_name="dropoff", index_field_type=FieldType.GEO_POINT),
            ],
        )
        settings = meilisearch.build_settings(index)
        assert settings["filterableAttributes"] == ["_geo"]
        assert settings["sortableAttributes"] == ["_geo"]


class TestParseSchema:
    def test_settings_lists(self) -> None:
        settings = {
            "searchableAttributes": ["*"],
            "filterableAttributes": ["brand", "_geo", {"attributePatterns": ["tags.*"]}],
            "sortableAttributes": ["price", "brand"],
            "embedders": {"embedding": {"source": "userProvided"}},
        }
        assert meilisearch.parse_schema_fields(settings) == [
            {"name": "brand", "type": "keyword"},
            {"name": "_geo", "type": "geo_point"},
            {"name": "tags.*", "type": "keyword"},
            {"name": "price", "type": "keyword"},
            {"name": "embedding", "type": "embedding"},
        ]
