"""Tests for schema inference from sampled documents."""

from __future__ import annotations

from typing import Any

import pytest

from searchbridge.models.index import FieldType
from searchbridge.schema.inference import infer_field_type, infer_schema_fields


class TestInferFieldType:
    @pytest.mark.parametrize(
        ("name", "value", "expected"),
        [
            ("in_stock", True, FieldType.BOOLEAN),
            ("created_at", 1718409600, FieldType.DATE),
            ("published_date", "2024-06-15", FieldType.DATE),
            ("is_featured", 1, FieldType.BOOLEAN),
            ("search_enabled", 0, FieldType.BOOLEAN),
            ("stock", 12, FieldType.INTEGER),
            ("price", 99.5, FieldType.FLOAT),
            ("tags", ["running", "outdoor"], FieldType.FACET),
            ("embedding", [0.1] * 8, FieldType.EMBEDDING),
            ("scores", [1, 2, 3], FieldType.OBJECT),
            ("empty", [], FieldType.OBJECT),
            ("location", {"lat": 48.85, "lng": 2.35}, FieldType.GEO_POINT),
            ("author", {"name": "Ada"}, FieldType.OBJECT),
            ("released", "2024-06-15T10:00:00Z", FieldType.DATE),
            ("url", "https://example.com/products/1", FieldType.KEYWORD),
            ("brand", "Ridge", FieldType.KEYWORD),
            ("description", "x" * 65, FieldType.TEXT),
            ("anything", None, FieldType.TEXT),
        ],
    )
    def test_infer(self, name: str, value: Any, expected: FieldType) -> None:
        assert infer_field_type(name, value) == expected

    def test_custom_embedding_length(self) -> None:
        assert infer_field_type("embedding", [0.1, 0.2, 0.3], min_embedding_length=3) == FieldType.EMBEDDING


class TestInferSchemaFields:
    def test_first_non_null_sample_wins(self) -> None:
        documents = [
            {"objectID": "1", "price": None, "brand": "Ridge"},
            {"objectID": "2", "price": 99.5, "brand": 7},
            "not a document",
        ]
        fields = infer_schema_fields(documents, skip=["objectID"])
        assert fields == [{"name": "price", "type": "float"}, {"name": "brand", "type": "keyword"}]

    def test_no_documents(self) -> None:
        assert infer_schema_fields([]) == []
