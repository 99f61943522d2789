"""Result normalizer — Shared helpers that build the canonical result shape.

Every adapter flattens its backend response through these functions so
hits, facets, highlights, histograms and geo clusters look the same no
matter which engine produced them. The module also holds the document-side
normalizations applied before indexing (date fields, weight ordering).
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from searchbridge.models.index import FieldType
from searchbridge.models.result import FacetValue, GeoCluster, HistogramBucket, SearchResult

if TYPE_CHECKING:
    from searchbridge.models.index import FieldMapping, Index

DATE_FORMAT_EPOCH_SECONDS = "epoch_seconds"
DATE_FORMAT_ISO8601 = "iso8601"

# 10^10 seconds is in the year 2286; larger magnitudes are milliseconds.
EPOCH_MILLISECONDS_THRESHOLD = 10_000_000_000

MAX_HISTOGRAM_BUCKETS = 200


# ── Facets ───────────────────────────────────────────────────────────────


def normalize_facet_counts(value_counts: Mapping[Any, Any]) -> list[FacetValue]:
    """Turn ``{"News": 12, "Blog": 5}`` into facet values sorted by count descending.

    Ties keep the backend's order.
    """
    values = [FacetValue(value=str(value), count=int(count)) for value, count in value_counts.items()]
    return sorted(values, key=lambda v: v.count, reverse=True)


def normalize_facet_map(facets: Mapping[str, Any]) -> dict[str, list[FacetValue]]:
    """Normalize a ``{field: {value: count}}`` response section."""
    return {
        field: normalize_facet_counts(counts)
        for field, counts in facets.items()
        if isinstance(counts, Mapping)
    }


def filter_facet_values(values: Iterable[FacetValue], query: str, limit: int) -> list[FacetValue]:
    """Keep values containing ``query`` (case-insensitive), best counts first."""
    needle = query.lower()
    matched = [v for v in values if needle in str(v.value).lower()]
    return sorted(matched, key=lambda v: v.count, reverse=True)[:limit]


# ── Hits & highlights ────────────────────────────────────────────────────


def normalize_hits(
    hits: Iterable[Mapping[str, Any]],
    id_key: str,
    score_key: str,
    highlight_key: str | None,
) -> list[dict[str, Any]]:
    """Give every hit ``objectID``, ``_score`` and ``_highlights``.

    Keys already present on a hit are left alone; all engine-specific keys
    are preserved.

    Args:
        hits: Raw hits from the backend response.
        id_key: Key holding the document id in this backend.
        score_key: Key holding the relevance score.
        highlight_key: Key holding highlight data, or None.
    """
    normalized: list[dict[str, Any]] = []
    for raw in hits:
        hit = dict(raw)
        if hit.get("objectID") is None and hit.get(id_key) is not None:
            hit["objectID"] = str(hit[id_key])
        elif hit.get("objectID") is not None:
            hit["objectID"] = str(hit["objectID"])
        if hit.get("_score") is None:
            hit["_score"] = hit.get(score_key)
        if hit.get("_highlights") is None:
            hit["_highlights"] = hit.get(highlight_key, {}) if highlight_key else {}
        normalized.append(hit)
    return normalized


def normalize_highlight_data(data: Mapping[str, Any]) -> dict[str, list[str]]:
    """Normalize ``{field: [fragments]}`` or ``{field: "fragment"}`` highlight data."""
    normalized: dict[str, list[str]] = {}
    for field, value in data.items():
        if isinstance(value, list) and value:
            normalized[field] = [v for v in value if isinstance(v, str)]
        elif isinstance(value, str) and value:
            normalized[field] = [value]
    return normalized


def normalize_algolia_highlights(data: Mapping[str, Any]) -> dict[str, list[str]]:
    """Normalize Algolia ``_highlightResult`` entries.

    Each entry is ``{"value": ..., "matchLevel": ...}`` or a list of
    them for array attributes. Entries whose ``matchLevel`` is ``none``
    or missing are dropped; nested objects are skipped.
    """
    normalized: dict[str, list[str]] = {}
    for field, entry in data.items():
        candidates = entry if isinstance(entry, list) else [entry]
        fragments = [
            c["value"]
            for c in candidates
            if isinstance(c, Mapping)
            and isinstance(c.get("value"), str)
            and c.get("matchLevel") not in (None, "none")
        ]
        if fragments:
            normalized[field] = fragments
    return normalized


def normalize_typesense_highlights(hit: Mapping[str, Any]) -> dict[str, list[str]]:
    """Normalize Typesense highlight data from a search hit.

    Handles the object format (``highlight: {field: {snippet | snippets}}``)
    and the legacy list format (``highlights: [{field, snippet}]``).
    """
    normalized: dict[str, list[str]] = {}
    for field, value in (hit.get("highlight") or {}).items():
        if isinstance(value, str) and value:
            normalized[field] = [value]
        elif isinstance(value, Mapping):
            snippets = value.get("snippets")
            if isinstance(snippets, list):
                fragments = [s for s in snippets if isinstance(s, str) and s]
            else:
                snippet = value.get("snippet")
                fragments = [snippet] if isinstance(snippet, str) and snippet else []
            if fragments:
                normalized[field] = fragments
    for entry in hit.get("highlights") or []:
        field = entry.get("field")
        if not field or field in normalized:
            continue
        fragments = entry.get("snippets") or ([entry["snippet"]] if entry.get("snippet") else [])
        fragments = [s for s in fragments if isinstance(s, str) and s]
        if fragments:
            normalized[field] = fragments
    return normalized


def normalize_formatted_highlights(
    formatted: Mapping[str, Any], pre_tag: str, fields: list[str] | None = None
) -> dict[str, list[str]]:
    """Normalize Meilisearch ``_formatted`` values that contain highlight markers."""
    normalized: dict[str, list[str]] = {}
    for field, value in formatted.items():
        if fields is not None and field not in fields:
            continue
        values = value if isinstance(value, list) else [value]
        fragments = [v for v in values if isinstance(v, str) and pre_tag in v]
        if fragments:
            normalized[field] = fragments
    return normalized


# ── Pagination ───────────────────────────────────────────────────────────


def compute_total_pages(total_hits: int, per_page: int) -> int:
    if per_page <= 0:
        return 0
    return math.ceil(total_hits / per_page)


def offset_from_page(page: int, per_page: int) -> int:
    return (max(page, 1) - 1) * per_page


def page_from_offset(offset: int, size: int) -> int:
    if size <= 0:
        return 1
    return offset // size + 1


# ── Documents ────────────────────────────────────────────────────────────


def date_value_to_epoch_seconds(value: Any) -> int | None:
    """Convert a datetime, numeric epoch (seconds or ms) or date string to epoch seconds."""
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return int(value.timestamp())
    if isinstance(value, int):
        return _normalize_epoch(value)
    if isinstance(value, float):
        return _normalize_epoch(round(value)) if math.isfinite(value) else None
    if not isinstance(value, str):
        return None

    text = value.strip()
    if not text:
        return None
    try:
        return _normalize_epoch(round(float(text)))
    except (ValueError, OverflowError):
        pass
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return int(parsed.timestamp())


def _normalize_epoch(epoch: int) -> int:
    if abs(epoch) >= EPOCH_MILLISECONDS_THRESHOLD:
        return round(epoch / 1000)
    return epoch


def normalize_date_value(value: Any, target_format: str) -> int | str | None:
    """Normalize a date value to epoch seconds or ISO-8601.

    Returns:
        The normalized value, or None if ``value`` cannot be parsed.
    """
    seconds = date_value_to_epoch_seconds(value)
    if seconds is None:
        return None
    if target_format == DATE_FORMAT_ISO8601:
        return datetime.fromtimestamp(seconds, UTC).isoformat()
    return seconds


def normalize_date_fields(index: Index, document: Mapping[str, Any], target_format: str) -> dict[str, Any]:
    """Normalize every mapped date field of ``document``; unparseable values are kept as-is."""
    normalized = dict(document)
    for mapping in index.fields_of_type(FieldType.DATE):
        name = mapping.index_field_name
        if name not in normalized:
            continue
        value = normalize_date_value(normalized[name], target_format)
        if value is not None:
            normalized[name] = value
    return normalized


def sort_by_weight(mappings: Iterable[FieldMapping]) -> list[str]:
    """Field names ordered by weight descending; ties keep declaration order."""
    ordered = sorted(mappings, key=lambda m: m.weight, reverse=True)
    return [m.index_field_name for m in ordered]


# ── Histograms ───────────────────────────────────────────────────────────


def histogram_edges(low: float, high: float, interval: float) -> list[float]:
    """Lower bounds of fixed-width buckets covering ``[low, high]``.

    Bounds are aligned to multiples of ``interval`` and the number of
    buckets is capped at ``MAX_HISTOGRAM_BUCKETS``.
    """
    if interval <= 0 or high < low:
        return []
    start = math.floor(low / interval) * interval
    edges: list[float] = []
    edge = start
    while edge <= high and len(edges) < MAX_HISTOGRAM_BUCKETS:
        edges.append(float(edge))
        edge = start + interval * len(edges)
    return edges


def histogram_from_pairs(pairs: Iterable[tuple[float, int]]) -> list[HistogramBucket]:
    return [HistogramBucket(key=float(key), count=int(count)) for key, count in pairs]


def format_number(value: float) -> str:
    """Render a number for a filter expression: ``3.0`` as ``"3"``, other floats in full."""
    return str(int(value)) if float(value).is_integer() else repr(float(value))


# ── Geo ──────────────────────────────────────────────────────────────────


def extract_geo_point(value: Any) -> tuple[float, float] | None:
    """Read ``(lat, lng)`` from ``{lat, lng}``, ``{lat, lon}``, ``[lat, lng]`` or ``"lat,lng"``."""
    lat: Any = None
    lng: Any = None
    if isinstance(value, Mapping):
        lat = value.get("lat")
        lng = value.get("lng", value.get("lon"))
    elif isinstance(value, (list, tuple)) and len(value) == 2:
        lat, lng = value
    elif isinstance(value, str) and "," in value:
        lat, _, lng = value.partition(",")
    try:
        return float(lat), float(lng)
    except (TypeError, ValueError):
        return None


def _tile(lat: float, lng: float, zoom: int) -> tuple[int, int]:
    """Web-mercator tile coordinates of a point at ``zoom``."""
    scale = 1 << zoom
    lat = max(min(lat, 85.05112878), -85.05112878)
    x = int((lng + 180.0) / 360.0 * scale)
    rad = math.radians(lat)
    y = int((1.0 - math.asinh(math.tan(rad)) / math.pi) / 2.0 * scale)
    return min(x, scale - 1), min(y, scale - 1)


def cluster_hits_by_grid(hits: Iterable[Mapping[str, Any]], field: str, precision: int) -> list[GeoCluster]:
    """Group hits into web-mercator tiles and return one cluster per tile.

    Used for backends without a native geo-grid aggregation; only the
    hits of the current page are clustered.
    """
    cells: dict[tuple[int, int], list[tuple[float, float, Mapping[str, Any]]]] = {}
    for hit in hits:
        point = extract_geo_point(hit.get(field))
        if point is None:
            continue
        cells.setdefault(_tile(point[0], point[1], precision), []).append((point[0], point[1], hit))

    clusters = []
    for members in cells.values():
        lat = sum(m[0] for m in members) / len(members)
        lng = sum(m[1] for m in members) / len(members)
        clusters.append(GeoCluster(lat=lat, lng=lng, count=len(members), hit=dict(members[0][2])))
    return sorted(clusters, key=lambda c: c.count, reverse=True)


# ── Result ───────────────────────────────────────────────────────────────


def build_search_result(
    *,
    hits: list[dict[str, Any]],
    total_hits: int,
    page: int,
    per_page: int,
    processing_time_ms: int = 0,
    facets: dict[str, list[FacetValue]] | None = None,
    stats: dict[str, dict[str, float | None]] | None = None,
    histograms: dict[str, list[HistogramBucket]] | None = None,
    suggestions: list[str] | None = None,
    geo_clusters: list[GeoCluster] | None = None,
    raw: dict[str, Any] | None = None,
) -> SearchResult:
    """Assemble a ``SearchResult`` with ``total_pages`` derived from the totals."""
    return SearchResult(
        hits=hits,
        total_hits=total_hits,
        page=page,
        per_page=per_page,
        total_pages=compute_total_pages(total_hits, per_page),
        processing_time_ms=processing_time_ms,
        facets=facets or {},
        stats=stats or {},
        histograms={k: v for k, v in (histograms or {}).items() if v},
        suggestions=suggestions or [],
        geo_clusters=geo_clusters,
        raw=raw or {},
    )
