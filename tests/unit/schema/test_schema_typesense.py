"""Tests for the Typesense schema mapping."""

from __future__ import annotations

from typing import Any

import pytest

from searchbridge.models.index import FieldMapping, FieldType, Index
from searchbridge.schema import typesense
from tests.helpers import make_index


class TestBuildCollectionSchema:
    def test_fields(self) -> None:
        schema = typesense.build_collection_schema(make_index("typesense"), "products_swap")

        assert schema["name"] == "products_swap"
        assert "enable_nested_fields" not in schema
        fields = {f["name"]: f for f in schema["fields"]}
        assert set(fields) == {
            "title",
            "description",
            "brand",
            "tags",
            "price",
            "stock",
            "in_stock",
            "published_at",
            "location",
            "embedding",
        }
        assert fields["title"] == {"name": "title", "type": "string", "facet": False, "optional": True}
        assert fields["brand"]["facet"] is True
        assert fields["tags"]["type"] == "string*"
        assert fields["price"] == {"name": "price", "type": "float", "facet": True, "optional": True, "sort": True}
        assert fields["published_at"]["type"] == "int64"
        assert fields["published_at"]["sort"] is True
        assert fields["location"]["type"] == "geopoint"
        assert fields["embedding"]["num_dim"] == 3
        assert "sort" not in fields["embedding"]

    def test_object_fields_enable_nesting(self) -> None:
        index = Index(
            handle="books",
            field_mappings=[FieldMapping(index_field_name="author", index_field_type=FieldType.OBJECT)],
        )
        assert typesense.build_collection_schema(index, "books")["enable_nested_fields"] is True


class TestReverseMapping:
    @pytest.mark.parametrize(
        ("field", "expected"),
        [
            ({"type": "string"}, FieldType.TEXT),
            ({"type": "string", "facet": True}, FieldType.KEYWORD),
            ({"type": "string[]"}, FieldType.FACET),
            ({"type": "auto"}, FieldType.FACET),
            ({"type": "int64"}, FieldType.INTEGER),
            ({"type": "float"}, FieldType.FLOAT),
            ({"type": "float[]"}, FieldType.FLOAT),
            ({"type": "float[]", "num_dim": 384}, FieldType.EMBEDDING),
            ({"type": "bool"}, FieldType.BOOLEAN),
            ({"type": "geopoint"}, FieldType.GEO_POINT),
            ({"type": "object[]"}, FieldType.OBJECT),
            ({"type": "image"}, FieldType.TEXT),
        ],
    )
    def test_reverse_map(self, field: dict[str, Any], expected: FieldType) -> None:
        assert typesense.reverse_map_field_type(field) == expected

    def test_parse_skips_wildcards_and_id(self) -> None:
        collection = {
            "fields": [
                {"name": "id", "type": "string"},
                {"name": ".*", "type": "auto"},
                {"name": "title", "type": "string"},
                {"name": "stock", "type": "int32"},
            ]
        }
        assert typesense.parse_schema_fields(collection) == [
            {"name": "title", "type": "text"},
            {"name": "stock", "type": "integer"},
        ]


class TestStripForRecreate:
    def test_drops_server_only_keys(self) -> None:
        collection = {
            "name": "products",
            "created_at": 1718409600,
            "num_documents": 12,
            "default_sorting_field": "",
            "fields": [{"name": "title", "type": "string", "indexed": True, "optional": True}],
        }
        assert typesense.strip_for_recreate(collection) == {
            "name": "products",
            "default_sorting_field": "",
            "fields": [{"name": "title", "type": "string", "optional": True}],
        }
