"""Typesense schema mapping.

Typesense collections have a strict field list. Every mapped field is
declared ``optional`` so documents missing a value are still accepted,
and numeric fields are declared sortable and faceted (facet stats and
range facets need both).
"""

from __future__ import annotations

from typing import Any

from searchbridge.models.index import FieldType, Index
from searchbridge.schema.elastic import DEFAULT_VECTOR_DIMENSION

SORTABLE_TYPES = frozenset({"int32", "int64", "float"})

_NATIVE_TYPES: dict[FieldType, tuple[str, bool]] = {
    FieldType.TEXT: ("string", False),
    FieldType.KEYWORD: ("string", True),
    # string* accepts both a single string and a list of strings
    FieldType.FACET: ("string*", True),
    FieldType.INTEGER: ("int32", True),
    FieldType.FLOAT: ("float", True),
    FieldType.BOOLEAN: ("bool", False),
    FieldType.DATE: ("int64", True),
    FieldType.GEO_POINT: ("geopoint", False),
    FieldType.OBJECT: ("object", False),
    FieldType.EMBEDDING: ("float[]", False),
}


def map_field_type(field_type: FieldType) -> dict[str, Any]:
    """Native ``{type, facet}`` pair for a canonical type."""
    native, facet = _NATIVE_TYPES[field_type]
    return {"type": native, "facet": facet}


def reverse_map_field_type(field: dict[str, Any]) -> FieldType:
    native = field.get("type", "string")
    if native in ("string", "string[]", "string*", "auto"):
        if native != "string":
            return FieldType.FACET
        return FieldType.KEYWORD if field.get("facet") else FieldType.TEXT
    if native in ("int32", "int64", "int32[]", "int64[]"):
        return FieldType.INTEGER
    if native == "float[]" and field.get("num_dim"):
        return FieldType.EMBEDDING
    if native in ("float", "float[]"):
        return FieldType.FLOAT
    if native in ("bool", "bool[]"):
        return FieldType.BOOLEAN
    if native in ("geopoint", "geopoint[]"):
        return FieldType.GEO_POINT
    if native in ("object", "object[]"):
        return FieldType.OBJECT
    return FieldType.TEXT


def build_fields(index: Index) -> list[dict[str, Any]]:
    fields: list[dict[str, Any]] = []
    for mapping in index.enabled_mappings():
        native = map_field_type(mapping.index_field_type)
        field: dict[str, Any] = {"name": mapping.index_field_name, **native, "optional": True}
        if native["type"] in SORTABLE_TYPES:
            field["sort"] = True
        if mapping.index_field_type == FieldType.EMBEDDING:
            field["num_dim"] = int(mapping.resolver_config.get("dimension", DEFAULT_VECTOR_DIMENSION))
        fields.append(field)
    return fields


def build_collection_schema(index: Index, name: str) -> dict[str, Any]:
    """Build the ``POST /collections`` body for a physical collection name."""
    schema: dict[str, Any] = {"name": name, "fields": build_fields(index)}
    if index.fields_of_type(FieldType.OBJECT):
        schema["enable_nested_fields"] = True
    return schema


def parse_schema_fields(collection: dict[str, Any]) -> list[dict[str, str]]:
    """Parse ``{name, type}`` entries from a ``GET /collections/{name}`` response.

    Wildcard and regex field declarations (e.g. ``.*``) are skipped, as is
    the implicit ``id`` field.
    """
    fields = []
    for field in collection.get("fields") or []:
        name = field.get("name", "")
        if not name or name == "id" or "*" in name:
            continue
        fields.append({"name": name, "type": reverse_map_field_type(field).value})
    return fields


def strip_for_recreate(collection: dict[str, Any]) -> dict[str, Any]:
    """Turn a retrieved collection into a create body, dropping server-only keys."""
    keep = {"name", "fields", "default_sorting_field", "enable_nested_fields", "token_separators", "symbols_to_index"}
    schema = {k: v for k, v in collection.items() if k in keep}
    schema["fields"] = [{k: v for k, v in f.items() if k != "indexed"} for f in collection.get("fields") or []]
    return schema
