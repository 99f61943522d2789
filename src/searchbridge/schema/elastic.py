"""Elasticsearch / OpenSearch schema mapping.

Both engines share the mapping DSL; they differ only in the native vector
type (``dense_vector`` with ``dims`` on Elasticsearch, ``knn_vector`` with
``dimension`` on OpenSearch).
"""

from __future__ import annotations

from typing import Any

from searchbridge.models.index import FieldType, Index

DEFAULT_VECTOR_DIMENSION = 1024
DATE_FORMAT = "epoch_second||epoch_millis||strict_date_optional_time"
KEYWORD_SUBFIELD = "keyword"

DENSE_VECTOR = "dense_vector"
KNN_VECTOR = "knn_vector"

_NATIVE_TYPES: dict[FieldType, str] = {
    FieldType.TEXT: "text",
    FieldType.KEYWORD: "keyword",
    FieldType.FACET: "keyword",
    FieldType.INTEGER: "integer",
    FieldType.FLOAT: "float",
    FieldType.BOOLEAN: "boolean",
    FieldType.DATE: "date",
    FieldType.GEO_POINT: "geo_point",
    FieldType.OBJECT: "object",
}

_CANONICAL_TYPES: dict[str, FieldType] = {
    "text": FieldType.TEXT,
    "match_only_text": FieldType.TEXT,
    "keyword": FieldType.KEYWORD,
    "constant_keyword": FieldType.KEYWORD,
    "wildcard": FieldType.KEYWORD,
    "integer": FieldType.INTEGER,
    "long": FieldType.INTEGER,
    "short": FieldType.INTEGER,
    "byte": FieldType.INTEGER,
    "unsigned_long": FieldType.INTEGER,
    "float": FieldType.FLOAT,
    "double": FieldType.FLOAT,
    "half_float": FieldType.FLOAT,
    "scaled_float": FieldType.FLOAT,
    "boolean": FieldType.BOOLEAN,
    "date": FieldType.DATE,
    "date_nanos": FieldType.DATE,
    "geo_point": FieldType.GEO_POINT,
    "object": FieldType.OBJECT,
    "nested": FieldType.OBJECT,
    "flattened": FieldType.OBJECT,
    KNN_VECTOR: FieldType.EMBEDDING,
    DENSE_VECTOR: FieldType.EMBEDDING,
}


def map_field_type(field_type: FieldType, vector_type: str = DENSE_VECTOR) -> str:
    if field_type == FieldType.EMBEDDING:
        return vector_type
    return _NATIVE_TYPES[field_type]


def reverse_map_field_type(native_type: str) -> FieldType:
    """Map a native mapping type to a canonical type; unknown types read as text."""
    return _CANONICAL_TYPES.get(native_type, FieldType.TEXT)


def build_mappings(index: Index, vector_type: str = DENSE_VECTOR) -> dict[str, Any]:
    """Build the ``mappings`` body for an index.

    Text fields get a ``keyword`` sub-field for exact matching, sorting
    and aggregations; date fields accept epoch seconds, epoch millis and
    ISO-8601; vector fields carry their dimension.
    """
    properties: dict[str, Any] = {}
    for mapping in index.enabled_mappings():
        native = map_field_type(mapping.index_field_type, vector_type)
        definition: dict[str, Any] = {"type": native}

        if native == "text":
            definition["fields"] = {KEYWORD_SUBFIELD: {"type": "keyword", "ignore_above": 256}}
        elif native == "date":
            definition["format"] = DATE_FORMAT
        elif mapping.index_field_type == FieldType.EMBEDDING:
            dimension = int(mapping.resolver_config.get("dimension", DEFAULT_VECTOR_DIMENSION))
            definition["dimension" if native == KNN_VECTOR else "dims"] = dimension

        properties[mapping.index_field_name] = definition
    return {"properties": properties}


def parse_schema_fields(schema: dict[str, Any]) -> list[dict[str, str]]:
    """Parse ``{name, type}`` entries from a ``get_mapping`` response for one index.

    Accepts the per-index body (``{"mappings": {...}}``) or a bare
    ``{"properties": {...}}`` block.
    """
    properties = schema.get("mappings", {}).get("properties") or schema.get("properties") or {}
    fields = []
    for name, definition in properties.items():
        native = definition.get("type", "object" if "properties" in definition else "text")
        fields.append({"name": name, "type": reverse_map_field_type(native).value})
    return fields


def exact_field(field: str, field_types: dict[str, FieldType]) -> str:
    """Field name to use for term filters, sorting and aggregations.

    Only text-typed fields are redirected to their ``keyword`` sub-field;
    every other field, including unmapped ones, is used as-is.
    """
    if field_types.get(field) == FieldType.TEXT:
        return f"{field}.{KEYWORD_SUBFIELD}"
    return field
