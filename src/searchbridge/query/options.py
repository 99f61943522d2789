"""Option extractors — Pull typed sub-parameters out of an open option bag.

``search()`` accepts an open-ended ``options`` mapping. Each extractor in
this module reads the unified keys it owns, validates them, and returns
``(value, remaining)`` where ``remaining`` is a copy of the bag without
those keys. Whatever is left over is merged verbatim into the
backend-native request, so callers can pass engine-specific tuning next
to the unified keys::

    params, native = extract_all({"page": 2, "perPage": 10, "typoTolerance": False})
    # params.page == 2, native == {"typoTolerance": False}

Extractors never mutate their input and are independent of each other,
so they may be applied in any order.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from searchbridge.adapters.base.exceptions import TranslationError
from searchbridge.query.normalize import date_value_to_epoch_seconds, format_number

DEFAULT_PER_PAGE = 20
DEFAULT_GEO_GRID_PRECISION = 5
MAX_GEO_GRID_PRECISION = 29

SORT_DIRECTIONS = ("asc", "desc")
RANGE_KEYS = frozenset({"min", "max"})


class _Params(BaseModel):
    model_config = ConfigDict(frozen=True)


class EmbeddingParams(_Params):
    """A query vector and the field it should be matched against."""

    vector: list[float] = Field(description="Query embedding")
    field: str | None = Field(default=None, description="Target embedding field; adapters pick one when None")


class GeoFilter(_Params):
    lat: float
    lng: float
    radius: float = Field(gt=0, description="Radius in metres")
    field: str | None = None


class GeoSort(_Params):
    lat: float
    lng: float
    direction: str = "asc"
    field: str | None = None


class GeoGrid(_Params):
    precision: int = Field(default=DEFAULT_GEO_GRID_PRECISION, ge=0, le=MAX_GEO_GRID_PRECISION)
    field: str | None = None


class GeoParams(_Params):
    filter: GeoFilter | None = None
    sort: GeoSort | None = None
    grid: GeoGrid | None = None

    @property
    def empty(self) -> bool:
        return self.filter is None and self.sort is None and self.grid is None


class HistogramSpec(_Params):
    """Fixed-width bucket request for one numeric field."""

    interval: float = Field(gt=0)
    min: float | None = None
    max: float | None = None


class SearchParams(_Params):
    """Every unified sub-parameter of a search call, already validated."""

    page: int = 1
    per_page: int = DEFAULT_PER_PAGE
    sort: Any = Field(default_factory=list, description="Unified map or backend-native sort expression")
    attributes_to_retrieve: list[str] | None = None
    highlight: bool | list[str] | None = None
    suggest: bool = False
    embedding: EmbeddingParams | None = None
    facets: list[str] = Field(default_factory=list)
    filters: dict[str, Any] = Field(default_factory=dict)
    geo: GeoParams = Field(default_factory=GeoParams)
    stats: list[str] = Field(default_factory=list)
    histogram: dict[str, HistogramSpec] = Field(default_factory=dict)

    @property
    def unified_sort(self) -> dict[str, str] | None:
        """The sort as a field→direction map, or None if it is backend-native."""
        return self.sort if is_unified_sort(self.sort) else None


def _without(options: Mapping[str, Any], *keys: str) -> dict[str, Any]:
    return {k: v for k, v in options.items() if k not in keys}


# ── Pagination ───────────────────────────────────────────────────────────


def extract_pagination(
    options: Mapping[str, Any], default_per_page: int = DEFAULT_PER_PAGE
) -> tuple[tuple[int, int], dict[str, Any]]:
    """Extract the 1-based ``page`` and ``perPage``.

    A page below 1 is clamped to 1; a ``perPage`` below 1 (or not an
    integer) falls back to ``default_per_page``.

    Returns:
        ``((page, per_page), remaining)``
    """
    page = _as_int(options.get("page"), 1)
    per_page = _as_int(options.get("perPage"), default_per_page)
    if page < 1:
        page = 1
    if per_page < 1:
        per_page = default_per_page
    return (page, per_page), _without(options, "page", "perPage")


def native_pagination(options: Mapping[str, Any], start_key: str, size_key: str) -> tuple[int, int] | None:
    """Return a backend-native ``(start, size)`` pair if the caller supplied one.

    A native pair always wins over the unified ``page``/``perPage``.

    Args:
        options: The remaining (already extracted) options.
        start_key: Native offset key, e.g. ``"from"``.
        size_key: Native page-size key, e.g. ``"size"``.
    """
    if size_key not in options:
        return None
    return _as_int(options.get(start_key), 0), _as_int(options.get(size_key), DEFAULT_PER_PAGE)


def _as_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


# ── Sort & attribute selection ───────────────────────────────────────────


def extract_sort(options: Mapping[str, Any]) -> tuple[Any, dict[str, Any]]:
    """Extract ``sort``: a unified field→direction map or a native expression.

    Anything other than a list or a mapping is discarded.
    """
    sort = options.get("sort", [])
    if not isinstance(sort, (list, dict)):
        sort = []
    return sort, _without(options, "sort")


def is_unified_sort(sort: Any) -> bool:
    """True iff ``sort`` is a non-empty map whose values are all ``asc``/``desc``.

    ``{"title": "asc"}`` is unified; ``["price:asc", "_score"]`` and
    ``[{"price": "asc"}]`` are backend-native and pass through unchanged.
    """
    if not isinstance(sort, dict) or not sort:
        return False
    return all(isinstance(k, str) and v in SORT_DIRECTIONS for k, v in sort.items())


def extract_attributes_to_retrieve(options: Mapping[str, Any]) -> tuple[list[str] | None, dict[str, Any]]:
    attributes = options.get("attributesToRetrieve")
    if attributes is not None and not isinstance(attributes, list):
        attributes = None
    return attributes, _without(options, "attributesToRetrieve")


# ── Highlight, suggest, embedding ────────────────────────────────────────


def extract_highlight(options: Mapping[str, Any]) -> tuple[bool | list[str] | None, dict[str, Any]]:
    """``True`` highlights every field, a list only those fields, anything else none."""
    highlight = options.get("highlight")
    if highlight is not True and not isinstance(highlight, list):
        highlight = None
    return highlight, _without(options, "highlight")


def extract_suggest(options: Mapping[str, Any]) -> tuple[bool, dict[str, Any]]:
    return bool(options.get("suggest", False)), _without(options, "suggest")


def extract_embedding(options: Mapping[str, Any]) -> tuple[EmbeddingParams | None, dict[str, Any]]:
    """Extract ``embedding`` and ``embeddingField``.

    ``vectorSearch`` and ``voyageModel`` are also stripped so they never
    leak into a backend request.
    """
    remaining = _without(options, "embedding", "embeddingField", "vectorSearch", "voyageModel")
    vector = options.get("embedding")
    field = options.get("embeddingField")
    if not isinstance(vector, list) or not vector:
        return None, remaining
    if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in vector):
        return None, remaining
    if field is not None and not isinstance(field, str):
        field = None
    return EmbeddingParams(vector=[float(v) for v in vector], field=field), remaining


# ── Facets & filters ─────────────────────────────────────────────────────


def extract_facets(options: Mapping[str, Any]) -> tuple[tuple[list[str], dict[str, Any]], dict[str, Any]]:
    """Extract ``facets`` (field names) and ``filters`` (field → constraint).

    Returns:
        ``((facets, filters), remaining)``
    """
    facets = options.get("facets") or []
    if isinstance(facets, str):
        facets = [facets]
    filters = options.get("filters") or {}
    if not isinstance(filters, Mapping):
        raise TranslationError(f"filters must be a mapping of field to value, got {type(filters).__name__}")
    return ([str(f) for f in facets], dict(filters)), _without(options, "facets", "filters")


def is_range_filter(value: Any) -> bool:
    """True for a non-empty mapping whose keys are a subset of ``{min, max}``."""
    return isinstance(value, Mapping) and bool(value) and set(value.keys()) <= RANGE_KEYS


def range_bounds(value: Mapping[str, Any]) -> tuple[Any, Any]:
    """Return ``(min, max)`` with empty strings treated as unbounded."""
    low = value.get("min")
    high = value.get("max")
    return (None if low == "" else low), (None if high == "" else high)


def numeric_bound(field: str, value: Any, is_date: bool = False) -> str:
    """Render a range bound as a number literal; bounds on date fields become epoch seconds.

    Raises:
        TranslationError: If the bound is not a number, or not a date on a date field.
    """
    if is_date:
        seconds = date_value_to_epoch_seconds(value)
        if seconds is None:
            raise TranslationError(f"Range bound {value!r} on date field '{field}' is not a date")
        return str(seconds)
    if isinstance(value, bool):
        raise TranslationError(f"Range bound {value!r} on '{field}' is not a number")
    if not isinstance(value, (int, float)):
        try:
            value = float(value)
        except (TypeError, ValueError) as e:
            raise TranslationError(f"Range bound {value!r} on '{field}' is not a number") from e
    return format_number(value)


# ── Geo ──────────────────────────────────────────────────────────────────


def extract_geo(options: Mapping[str, Any]) -> tuple[GeoParams, dict[str, Any]]:
    """Extract ``geoFilter``, ``geoSort`` and ``geoGrid``.

    Raises:
        TranslationError: If a geo option is present but malformed.
    """
    remaining = _without(options, "geoFilter", "geoSort", "geoGrid")
    try:
        geo_filter = GeoFilter(**options["geoFilter"]) if options.get("geoFilter") else None
        geo_sort = GeoSort(**options["geoSort"]) if options.get("geoSort") else None
        grid_value = options.get("geoGrid")
        if grid_value is True:
            geo_grid: GeoGrid | None = GeoGrid()
        elif grid_value:
            geo_grid = GeoGrid(**grid_value)
        else:
            geo_grid = None
    except (TypeError, ValueError) as e:
        raise TranslationError(f"Invalid geo option: {e}") from e
    if geo_sort is not None and geo_sort.direction not in SORT_DIRECTIONS:
        raise TranslationError(f"geoSort direction must be asc or desc, got '{geo_sort.direction}'")
    return GeoParams(filter=geo_filter, sort=geo_sort, grid=geo_grid), remaining


# ── Stats & histogram ────────────────────────────────────────────────────


def extract_stats(options: Mapping[str, Any]) -> tuple[list[str], dict[str, Any]]:
    stats = options.get("stats", [])
    if not isinstance(stats, list):
        stats = []
    return [str(s) for s in stats], _without(options, "stats")


def extract_histogram(options: Mapping[str, Any]) -> tuple[dict[str, HistogramSpec], dict[str, Any]]:
    """Extract ``histogram`` requests.

    Accepts the shorthand ``{"price": 100}`` or the full form
    ``{"price": {"interval": 100, "min": 0, "max": 1000}}``. Entries with
    a missing or non-positive interval are dropped.
    """
    raw = options.get("histogram", {})
    remaining = _without(options, "histogram")
    if not isinstance(raw, Mapping):
        return {}, remaining

    specs: dict[str, HistogramSpec] = {}
    for field, config in raw.items():
        if isinstance(config, (int, float)) and not isinstance(config, bool):
            config = {"interval": config}
        if not isinstance(config, Mapping):
            continue
        interval = config.get("interval")
        if not isinstance(interval, (int, float)) or isinstance(interval, bool):
            continue
        if interval <= 0 or not math.isfinite(interval):
            continue
        specs[str(field)] = HistogramSpec(
            interval=float(interval),
            min=_as_float(config.get("min")),
            max=_as_float(config.get("max")),
        )
    return specs, remaining


def _as_float(value: Any) -> float | None:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


# ── All together ─────────────────────────────────────────────────────────


def extract_all(
    options: Mapping[str, Any] | None, default_per_page: int = DEFAULT_PER_PAGE
) -> tuple[SearchParams, dict[str, Any]]:
    """Run every extractor and return the combined params plus native leftovers."""
    remaining: dict[str, Any] = dict(options or {})
    (page, per_page), remaining = extract_pagination(remaining, default_per_page)
    sort, remaining = extract_sort(remaining)
    attributes, remaining = extract_attributes_to_retrieve(remaining)
    highlight, remaining = extract_highlight(remaining)
    suggest, remaining = extract_suggest(remaining)
    embedding, remaining = extract_embedding(remaining)
    (facets, filters), remaining = extract_facets(remaining)
    geo, remaining = extract_geo(remaining)
    stats, remaining = extract_stats(remaining)
    histogram, remaining = extract_histogram(remaining)

    params = SearchParams(
        page=page,
        per_page=per_page,
        sort=sort,
        attributes_to_retrieve=attributes,
        highlight=highlight,
        suggest=suggest,
        embedding=embedding,
        facets=facets,
        filters=filters,
        geo=geo,
        stats=stats,
        histogram=histogram,
    )
    return params, remaining
