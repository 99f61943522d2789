"""Schema inference — Guess canonical field types from sampled documents.

Used when a backend has no schema-introspection API, or when the schema
it exposes is too coarse (e.g. Meilisearch only lists attribute names).
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import urlparse

from searchbridge.models.index import FieldType

DEFAULT_MIN_EMBEDDING_LENGTH = 8
LONG_TEXT_THRESHOLD = 64

_DATE_NAME = re.compile(r"(_at|_date|_time|timestamp)$|^(created|updated|deleted|modified|date)_")
_BOOLEAN_NAME = re.compile(r"^(is_|has_)|_(enabled|active|visible|archived)$")
_DATE_VALUE = re.compile(r"^\d{4}-\d{2}-\d{2}(?:[T\s].*)?$")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_url(value: str) -> bool:
    parsed = urlparse(value)
    return bool(parsed.scheme and parsed.netloc) and " " not in value


def infer_field_type(name: str, value: Any, min_embedding_length: int = DEFAULT_MIN_EMBEDDING_LENGTH) -> FieldType:
    """Infer the canonical type of one field from its name and a sample value.

    Value types win over name heuristics for booleans; names win for
    dates and boolean-like flags stored as integers.

    Args:
        name: Field name.
        value: A sample value from a live document.
        min_embedding_length: Minimum numeric-list length treated as an embedding.
    """
    if isinstance(value, bool):
        return FieldType.BOOLEAN

    lower = name.lower()
    if _DATE_NAME.search(lower):
        return FieldType.DATE
    if _BOOLEAN_NAME.search(lower):
        return FieldType.BOOLEAN

    if isinstance(value, int):
        return FieldType.INTEGER
    if isinstance(value, float):
        return FieldType.FLOAT

    if isinstance(value, list):
        if value:
            first = value[0]
            if isinstance(first, str):
                return FieldType.FACET
            if _is_number(first) and len(value) >= min_embedding_length:
                return FieldType.EMBEDDING
        return FieldType.OBJECT

    if isinstance(value, Mapping):
        if _is_number(value.get("lat")) and _is_number(value.get("lng")):
            return FieldType.GEO_POINT
        return FieldType.OBJECT

    if isinstance(value, str):
        if _DATE_VALUE.match(value):
            return FieldType.DATE
        if _is_url(value):
            return FieldType.KEYWORD
        return FieldType.TEXT if len(value) > LONG_TEXT_THRESHOLD else FieldType.KEYWORD

    return FieldType.TEXT


def infer_schema_fields(
    documents: Iterable[Mapping[str, Any]],
    min_embedding_length: int = DEFAULT_MIN_EMBEDDING_LENGTH,
    skip: Iterable[str] = (),
) -> list[dict[str, str]]:
    """Infer ``{name, type}`` entries from sampled documents.

    The first non-null value seen for a field decides its type; a field
    that is null in early samples is resolved by later ones.
    """
    skipped = set(skip)
    samples: dict[str, Any] = {}
    for document in documents:
        if not isinstance(document, Mapping):
            continue
        for name, value in document.items():
            if not isinstance(name, str) or name in skipped:
                continue
            if samples.get(name) is None:
                samples[name] = value

    return [
        {"name": name, "type": infer_field_type(name, value, min_embedding_length).value}
        for name, value in samples.items()
    ]
