"""Meilisearch schema mapping.

Meilisearch indexes are schemaless; the "schema" is the set of
searchable, filterable and sortable attribute lists plus the embedder
configuration for vector fields.
"""

from __future__ import annotations

from typing import Any

from searchbridge.models.index import FieldType, Index
from searchbridge.query.normalize import sort_by_weight
from searchbridge.schema.elastic import DEFAULT_VECTOR_DIMENSION

GEO_ATTRIBUTE = "_geo"
VECTORS_ATTRIBUTE = "_vectors"

SEARCHABLE = "searchableAttributes"
FILTERABLE = "filterableAttributes"
FILTERABLE_AND_SORTABLE = "filterableAndSortable"
EMBEDDERS = "embedders"

_ATTRIBUTE_KINDS: dict[FieldType, str] = {
    FieldType.TEXT: SEARCHABLE,
    FieldType.KEYWORD: FILTERABLE,
    FieldType.FACET: FILTERABLE,
    FieldType.BOOLEAN: FILTERABLE,
    FieldType.INTEGER: FILTERABLE_AND_SORTABLE,
    FieldType.FLOAT: FILTERABLE_AND_SORTABLE,
    FieldType.DATE: FILTERABLE_AND_SORTABLE,
    FieldType.GEO_POINT: FILTERABLE_AND_SORTABLE,
    FieldType.OBJECT: SEARCHABLE,
    FieldType.EMBEDDING: EMBEDDERS,
}


def map_field_type(field_type: FieldType) -> str:
    return _ATTRIBUTE_KINDS[field_type]


def _dedupe(names: list[str]) -> list[str]:
    return list(dict.fromkeys(names))


def build_settings(index: Index, max_values_per_facet: int | None = None) -> dict[str, Any]:
    """Build the settings payload (``PATCH /indexes/{uid}/settings``).

    Geo points are exposed through Meilisearch's reserved ``_geo``
    attribute and embeddings through a ``userProvided`` embedder named
    after the field. ``max_values_per_facet`` raises the index-level cap
    on returned facet distributions (``faceting.maxValuesPerFacet``).
    """
    searchable = []
    filterable: list[str] = []
    sortable: list[str] = []
    embedders: dict[str, Any] = {}

    for mapping in index.enabled_mappings():
        name = mapping.index_field_name
        kind = map_field_type(mapping.index_field_type)
        if mapping.index_field_type == FieldType.GEO_POINT:
            name = GEO_ATTRIBUTE

        if kind == SEARCHABLE:
            searchable.append(mapping)
        elif kind == FILTERABLE:
            filterable.append(name)
        elif kind == FILTERABLE_AND_SORTABLE:
            filterable.append(name)
            sortable.append(name)
        elif kind == EMBEDDERS:
            embedders[name] = {
                "source": "userProvided",
                "dimensions": int(mapping.resolver_config.get("dimension", DEFAULT_VECTOR_DIMENSION)),
            }

    settings: dict[str, Any] = {}
    if searchable:
        settings[SEARCHABLE] = sort_by_weight(searchable)
    if filterable:
        settings[FILTERABLE] = _dedupe(filterable)
    if sortable:
        settings["sortableAttributes"] = _dedupe(sortable)
    if embedders:
        settings[EMBEDDERS] = embedders
    if max_values_per_facet is not None and filterable:
        settings["faceting"] = {"maxValuesPerFacet": max_values_per_facet}
    return settings


def parse_schema_fields(settings: dict[str, Any]) -> list[dict[str, str]]:
    """Recover ``{name, type}`` entries from index settings.

    The wildcard ``*`` (Meilisearch's default "every attribute") is not a
    field and is skipped. Attribute lists carry no type information, so
    these entries are coarse; callers needing real types should prefer
    document sampling.
    """
    fields: list[dict[str, str]] = []
    seen: set[str] = {"*"}

    def _add(name: str, field_type: FieldType) -> None:
        if name not in seen:
            seen.add(name)
            fields.append({"name": name, "type": field_type.value})

    for name in settings.get(SEARCHABLE) or []:
        _add(name, FieldType.TEXT)
    for name in settings.get(FILTERABLE) or []:
        # Meilisearch >= 1.14 also accepts {"attributePatterns": [...]} entries
        if isinstance(name, dict):
            for pattern in name.get("attributePatterns", []):
                _add(pattern, FieldType.KEYWORD)
            continue
        _add(name, FieldType.GEO_POINT if name == GEO_ATTRIBUTE else FieldType.KEYWORD)
    for name in settings.get("sortableAttributes") or []:
        _add(name, FieldType.KEYWORD)
    for name in (settings.get(EMBEDDERS) or {}).keys():
        _add(name, FieldType.EMBEDDING)
    return fields
