"""Algolia schema mapping.

Algolia has no typed schema; an index is described by its settings. Each
canonical type maps to the settings list the attribute must appear in.
"""

from __future__ import annotations

import re
from typing import Any

from searchbridge.models.index import FieldType, Index
from searchbridge.query.normalize import sort_by_weight

GEOLOC_ATTRIBUTE = "_geoloc"

SEARCHABLE = "searchableAttributes"
FACETING = "attributesForFaceting"
NUMERIC = "numericAttributesForFiltering"

_SETTINGS_KEYS: dict[FieldType, str | None] = {
    FieldType.TEXT: SEARCHABLE,
    FieldType.KEYWORD: FACETING,
    FieldType.FACET: FACETING,
    FieldType.INTEGER: NUMERIC,
    FieldType.FLOAT: NUMERIC,
    FieldType.BOOLEAN: FACETING,
    FieldType.DATE: NUMERIC,
    FieldType.GEO_POINT: GEOLOC_ATTRIBUTE,
    FieldType.OBJECT: SEARCHABLE,
    FieldType.EMBEDDING: None,
}

_ORDER_WRAPPER = re.compile(r"^(?:ordered|unordered)\((.+)\)$")
_ATTRIBUTE_WRAPPER = re.compile(r"^(?:searchable|filterOnly|afterDistinct|equalOnly)\((.+)\)$")


def map_field_type(field_type: FieldType) -> str | None:
    """Settings list an attribute of this type belongs to, or None if unsupported."""
    return _SETTINGS_KEYS[field_type]


def build_settings(index: Index) -> dict[str, Any]:
    """Build index settings from the enabled field mappings.

    Searchable attributes are ordered by weight; boolean facets are
    ``filterOnly``. Geo points need no setting because Algolia reads
    ``_geoloc`` automatically, and embeddings are not supported.
    """
    searchable = []
    faceting: list[str] = []
    numeric: list[str] = []

    for mapping in index.enabled_mappings():
        name = mapping.index_field_name
        key = map_field_type(mapping.index_field_type)
        if key == SEARCHABLE:
            searchable.append(mapping)
        elif key == FACETING:
            wrapper = "filterOnly" if mapping.index_field_type == FieldType.BOOLEAN else "searchable"
            faceting.append(f"{wrapper}({name})")
        elif key == NUMERIC:
            numeric.append(name)
            # facets_stats only covers faceted attributes
            faceting.append(name)

    settings: dict[str, Any] = {}
    if searchable:
        settings[SEARCHABLE] = sort_by_weight(searchable)
    if faceting:
        settings[FACETING] = faceting
    if numeric:
        settings[NUMERIC] = numeric
    return settings


def parse_schema_fields(settings: dict[str, Any]) -> list[dict[str, str]]:
    """Recover ``{name, type}`` entries from index settings.

    Wrappers such as ``ordered()`` or ``filterOnly()`` are stripped and
    each attribute is reported once, the first list it appears in winning.
    """
    fields: list[dict[str, str]] = []
    seen: set[str] = set()

    def _add(name: str, field_type: FieldType) -> None:
        if name not in seen:
            seen.add(name)
            fields.append({"name": name, "type": field_type.value})

    for attribute in settings.get(SEARCHABLE) or []:
        # "title,alternate_title" lists equal-priority attributes
        for name in _ORDER_WRAPPER.sub(r"\1", attribute).split(","):
            _add(name.strip(), FieldType.TEXT)
    for attribute in settings.get(NUMERIC) or []:
        _add(_ATTRIBUTE_WRAPPER.sub(r"\1", attribute), FieldType.INTEGER)
    for attribute in settings.get(FACETING) or []:
        _add(_ATTRIBUTE_WRAPPER.sub(r"\1", attribute), FieldType.FACET)
    return fields
