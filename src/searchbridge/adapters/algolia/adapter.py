"""Algolia adapter — Hosted search reached through the Algolia REST API.

Algolia has no typed schema and no alias primitive: index behaviour is
driven by settings, writes are asynchronous tasks, and a rebuild is
committed by moving the staged index over the production one.

Sorting uses replica indexes: a unified sort on ``price`` descending
queries the replica ``{index}_price_desc``, which must be configured with
the matching ranking.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import urlencode

from searchbridge.adapters.base.exceptions import (
    AdapterError,
    BackendError,
    ConfigurationError,
    NotFoundError,
    TranslationError,
)
from searchbridge.adapters.base.http import HttpSearchAdapter
from searchbridge.models.index import FieldType, Index
from searchbridge.models.result import BulkFailure, BulkResult, HistogramBucket, SearchResult
from searchbridge.query.normalize import (
    DATE_FORMAT_EPOCH_SECONDS,
    build_search_result,
    cluster_hits_by_grid,
    extract_geo_point,
    format_number,
    histogram_edges,
    normalize_algolia_highlights,
    normalize_facet_map,
    normalize_hits,
    page_from_offset,
)
from searchbridge.query.options import (
    HistogramSpec,
    SearchParams,
    extract_all,
    is_range_filter,
    numeric_bound,
    range_bounds,
)
from searchbridge.schema import algolia as schema

logger = logging.getLogger(__name__)

HIGHLIGHT_PRE_TAG = "<em>"
HIGHLIGHT_POST_TAG = "</em>"
BROWSE_PAGE_SIZE = 1000
MAX_VALUES_PER_FACET = 1000


class AlgoliaAdapter(HttpSearchAdapter):
    """Search adapter for Algolia.

    Supports:
      - Full-text search with ``facetFilters`` / ``numericFilters``
      - Facets, facet stats and client-side facet-value search
      - Histograms synthesized from multi-query range counts
      - Geo radius filters (``_geoloc``) and client-side geo clusters
      - Atomic swaps through the ``move`` index operation

    Vector search is not supported; embedding options are ignored.

    Args:
        app_id: Algolia application ID.
        api_key: Admin API key used for every write.
        search_api_key: Search-only key used for queries; falls back to ``api_key``.
        hosts: Override hosts; the first one is used.
        task_poll_interval: Seconds between task status polls.
        task_timeout: Seconds to wait for a task before failing.
        **kwargs: Timeouts, index prefix and batch size (see ``HttpSearchAdapter``).
    """

    date_format = DATE_FORMAT_EPOCH_SECONDS

    def __init__(
        self,
        app_id: str = "",
        api_key: str = "",
        search_api_key: str = "",
        hosts: list[str] | None = None,
        task_poll_interval: float = 0.1,
        task_timeout: float = 60.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._app_id = app_id
        self._api_key = api_key
        self._search_api_key = search_api_key or api_key
        self._hosts = list(hosts or [])
        self._task_poll_interval = task_poll_interval
        self._task_timeout = task_timeout
        self._facet_distribution_cap = min(self._facet_distribution_cap, MAX_VALUES_PER_FACET)

    @property
    def name(self) -> str:
        return "algolia"

    @property
    def display_name(self) -> str:
        return "Algolia"

    def _client_options(self) -> dict[str, Any]:
        if not self._app_id or not self._api_key:
            raise ConfigurationError("Algolia app_id and api_key must both be configured.")
        host = self._hosts[0] if self._hosts else f"{self._app_id}.algolia.net"
        return {
            "base_url": host if "://" in host else f"https://{host}",
            "headers": {
                "X-Algolia-Application-Id": self._app_id,
                "X-Algolia-API-Key": self._api_key,
            },
        }

    def _search_headers(self) -> dict[str, str]:
        return {"X-Algolia-API-Key": self._search_api_key}

    async def test_connection(self) -> bool:
        try:
            await self._request("GET", "/1/indexes", params={"hitsPerPage": 1})
        except AdapterError:
            logger.warning("Algolia connection test failed", exc_info=True)
            return False
        return True

    # ── Tasks ────────────────────────────────────────────────────────────

    async def wait_for_task(self, index_name: str, response: Mapping[str, Any] | None) -> None:
        """Poll a write task until Algolia reports it ``published``.

        Raises:
            BackendError: If the task is not published within ``task_timeout``.
        """
        task_id = (response or {}).get("taskID")
        if task_id is None:
            return
        deadline = time.monotonic() + self._task_timeout
        while True:
            task = await self._request("GET", f"/1/indexes/{index_name}/task/{task_id}")
            if (task or {}).get("status") == "published":
                return
            if time.monotonic() >= deadline:
                raise BackendError(f"Algolia task {task_id} on {index_name} not published within {self._task_timeout}s")
            await asyncio.sleep(self._task_poll_interval)

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def create_index(self, index: Index) -> None:
        """Algolia creates indexes on first write; pushing settings is that write."""
        await self.update_index_settings(index)
        logger.info("Created Algolia index %s", self.index_name(index))

    async def update_index_settings(self, index: Index) -> None:
        name = self.index_name(index)
        response = await self._request("PUT", f"/1/indexes/{name}/settings", json=schema.build_settings(index))
        await self.wait_for_task(name, response)
        self.invalidate(index.handle)

    async def delete_index(self, index: Index) -> None:
        name = self.index_name(index)
        try:
            response = await self._request("DELETE", f"/1/indexes/{name}")
        except NotFoundError:
            return
        await self.wait_for_task(name, response)

    async def index_exists(self, index: Index) -> bool:
        try:
            await self._request("GET", f"/1/indexes/{self.index_name(index)}/settings")
        except NotFoundError:
            return False
        return True

    # ── Documents ────────────────────────────────────────────────────────

    def prepare_document(self, index: Index, document: Mapping[str, Any]) -> dict[str, Any]:
        """Normalize dates and copy the first geo point to ``_geoloc``."""
        prepared = super().prepare_document(index, document)
        for mapping in index.fields_of_type(FieldType.GEO_POINT):
            point = extract_geo_point(prepared.get(mapping.index_field_name))
            if point is not None:
                prepared[schema.GEOLOC_ATTRIBUTE] = {"lat": point[0], "lng": point[1]}
                break
        return prepared

    async def index_document(self, index: Index, document: Mapping[str, Any]) -> None:
        name = self.index_name(index)
        prepared = self.prepare_document(index, document)
        response = await self._request("PUT", f"/1/indexes/{name}/{prepared['objectID']}", json=prepared)
        await self.wait_for_task(name, response)

    async def _batch(self, name: str, requests: list[dict[str, Any]], object_ids: list[str]) -> BulkResult:
        """Send one ``batch`` request; Algolia accepts or rejects a batch as a whole."""
        try:
            response = await self._request("POST", f"/1/indexes/{name}/batch", json={"requests": requests})
        except BackendError as e:
            if e.status_code != 400:
                raise
            return BulkResult(failures=[BulkFailure(object_id=oid, reason=str(e.detail)) for oid in object_ids])
        await self.wait_for_task(name, response)
        return BulkResult(succeeded=len(object_ids))

    async def index_documents(self, index: Index, documents: Sequence[Mapping[str, Any]]) -> BulkResult:
        name = self.index_name(index)
        result = BulkResult()
        for chunk in self._chunks([self.prepare_document(index, d) for d in documents]):
            requests = [{"action": "updateObject", "body": d} for d in chunk]
            result = result.merge(await self._batch(name, requests, [str(d.get("objectID", "")) for d in chunk]))
        if not result.ok:
            logger.warning("Algolia rejected %d document(s) in %s", len(result.failures), name)
        return result

    async def delete_document(self, index: Index, object_id: str) -> None:
        name = self.index_name(index)
        try:
            response = await self._request("DELETE", f"/1/indexes/{name}/{object_id}")
        except NotFoundError:
            return
        await self.wait_for_task(name, response)

    async def delete_documents(self, index: Index, object_ids: Sequence[str]) -> BulkResult:
        name = self.index_name(index)
        result = BulkResult()
        for chunk in self._chunks([str(i) for i in object_ids]):
            requests = [{"action": "deleteObject", "body": {"objectID": oid}} for oid in chunk]
            result = result.merge(await self._batch(name, requests, list(chunk)))
        return result

    async def flush_index(self, index: Index) -> None:
        name = self.index_name(index)
        response = await self._request("POST", f"/1/indexes/{name}/clear")
        await self.wait_for_task(name, response)

    async def get_document(self, index: Index, object_id: str) -> dict[str, Any] | None:
        try:
            return await self._request(
                "GET", f"/1/indexes/{self.index_name(index)}/{object_id}", headers=self._search_headers()
            )
        except NotFoundError:
            return None

    # ── Query building ───────────────────────────────────────────────────

    def build_filters(self, index: Index, filters: Mapping[str, Any]) -> dict[str, list[Any]]:
        """Translate unified filters into ``facetFilters`` and ``numericFilters``.

        Lists become OR groups; ranges become pairs of numeric comparisons.

        Raises:
            TranslationError: For values Algolia filters cannot express.
        """
        field_types = self.field_types(index)
        facet_filters: list[Any] = []
        numeric_filters: list[str] = []
        for field, value in filters.items():
            if is_range_filter(value):
                low, high = range_bounds(value)
                is_date = field_types.get(field) == FieldType.DATE
                if low is not None:
                    numeric_filters.append(f"{field}>={numeric_bound(field, low, is_date)}")
                if high is not None:
                    numeric_filters.append(f"{field}<={numeric_bound(field, high, is_date)}")
            elif isinstance(value, list):
                if not value:
                    raise TranslationError(f"Filter on '{field}' has an empty value list")
                facet_filters.append([_facet_filter(field, v) for v in value])
            elif value is None or isinstance(value, Mapping):
                raise TranslationError(f"Filter on '{field}' cannot be expressed in Algolia")
            else:
                facet_filters.append(_facet_filter(field, value))
        translated: dict[str, list[Any]] = {}
        if facet_filters:
            translated["facetFilters"] = facet_filters
        if numeric_filters:
            translated["numericFilters"] = numeric_filters
        return translated

    def _target_index(self, index: Index, params: SearchParams) -> str:
        """The index to query: production, or the sort replica for a unified sort."""
        name = self.index_name(index)
        if params.unified_sort:
            if len(params.unified_sort) > 1:
                raise TranslationError("Algolia sorts through replicas and supports a single sort field")
            field, direction = next(iter(params.unified_sort.items()))
            return f"{name}_{field}_{direction}"
        if params.sort:
            raise TranslationError("Algolia has no sort parameter; use a unified single-field sort")
        return name

    def _build_search(
        self, index: Index, query: str, params: SearchParams, native: Mapping[str, Any]
    ) -> dict[str, Any]:
        search: dict[str, Any] = {
            "query": query,
            "hitsPerPage": params.per_page,
            "page": params.page - 1,
        }
        search.update(self.build_filters(index, params.filters))

        geo = params.geo
        same_centre = geo.filter is None or geo.sort is None or (
            (geo.filter.lat, geo.filter.lng) == (geo.sort.lat, geo.sort.lng)
        )
        if not same_centre:
            raise TranslationError("Algolia ranks by distance from the filter centre; geoSort must use the same point")
        if geo.filter is not None:
            search["aroundLatLng"] = f"{geo.filter.lat}, {geo.filter.lng}"
            search["aroundRadius"] = max(int(round(geo.filter.radius)), 1)
        elif geo.sort is not None:
            search["aroundLatLng"] = f"{geo.sort.lat}, {geo.sort.lng}"
            search["aroundRadius"] = "all"

        if params.attributes_to_retrieve is not None:
            search["attributesToRetrieve"] = params.attributes_to_retrieve
        if params.highlight:
            search["attributesToHighlight"] = ["*"] if params.highlight is True else params.highlight
            search["highlightPreTag"] = HIGHLIGHT_PRE_TAG
            search["highlightPostTag"] = HIGHLIGHT_POST_TAG
        else:
            search["attributesToHighlight"] = []

        facets = list(dict.fromkeys([*params.facets, *params.stats, *params.histogram]))
        if facets:
            search["facets"] = facets
        if params.embedding is not None:
            logger.debug("Ignoring embedding for %s: Algolia has no vector search", index.handle)

        search.update(native)
        return search

    def _parse_search(self, params: SearchParams, native: Mapping[str, Any], data: Mapping[str, Any]) -> SearchResult:
        def highlights(hit: Mapping[str, Any]) -> dict[str, Any]:
            if not params.highlight:
                return {}
            return normalize_algolia_highlights(hit.get("_highlightResult") or {})

        hits = normalize_hits(
            ({**h, "_highlights": highlights(h)} for h in data.get("hits", [])),
            "objectID",
            "_score",
            None,
        )
        if "offset" in native and "length" in native:
            per_page = int(native["length"])
            page = page_from_offset(int(native["offset"]), per_page)
        else:
            per_page = int(data.get("hitsPerPage", params.per_page))
            page = int(data.get("page", params.page - 1)) + 1

        facets = normalize_facet_map({f: (data.get("facets") or {}).get(f, {}) for f in params.facets})
        facets_stats = data.get("facets_stats") or {}
        stats = {
            field: {"min": facets_stats[field].get("min"), "max": facets_stats[field].get("max")}
            for field in params.stats
            if field in facets_stats
        }

        geo_clusters = None
        if params.geo.grid is not None:
            geo_clusters = cluster_hits_by_grid(hits, schema.GEOLOC_ATTRIBUTE, params.geo.grid.precision)

        return build_search_result(
            hits=hits,
            total_hits=int(data.get("nbHits", len(hits))),
            page=page,
            per_page=per_page,
            processing_time_ms=int(data.get("processingTimeMS", 0)),
            facets=facets,
            stats=stats,
            geo_clusters=geo_clusters,
            raw=dict(data),
        )

    async def _histograms(
        self, target: str, search: Mapping[str, Any], params: SearchParams, data: Mapping[str, Any]
    ) -> dict[str, list[HistogramBucket]]:
        """Count each bucket with one query of a multi-query request.

        Missing bounds come from the ``facets_stats`` of the main response.
        """
        facets_stats = data.get("facets_stats") or {}
        plans: list[tuple[str, float]] = []
        requests: list[dict[str, Any]] = []
        for field, spec in params.histogram.items():
            bounds = _histogram_bounds(spec, facets_stats.get(field))
            if bounds is None:
                continue
            for edge in histogram_edges(bounds[0], bounds[1], spec.interval):
                numeric = [
                    *search.get("numericFilters", []),
                    f"{field}>={format_number(edge)}",
                    f"{field}<{format_number(edge + spec.interval)}",
                ]
                request = {k: v for k, v in search.items() if k not in ("facets", "page", "hitsPerPage")}
                request.update({"numericFilters": numeric, "hitsPerPage": 0, "attributesToHighlight": []})
                requests.append({"indexName": target, "params": _encode_params(request)})
                plans.append((field, edge))
        if not requests:
            return {}

        response = await self._request(
            "POST", "/1/indexes/*/queries", json={"requests": requests}, headers=self._search_headers()
        )
        histograms: dict[str, list[HistogramBucket]] = {}
        for (field, edge), result in zip(plans, (response or {}).get("results", []), strict=True):
            histograms.setdefault(field, []).append(HistogramBucket(key=edge, count=int(result.get("nbHits", 0))))
        return histograms

    # ── Search ───────────────────────────────────────────────────────────

    async def search(self, index: Index, query: str, options: Mapping[str, Any] | None = None) -> SearchResult:
        params, native = extract_all(options)
        target = self._target_index(index, params)
        search = self._build_search(index, query, params, native)
        data = await self._request("POST", f"/1/indexes/{target}/query", json=search, headers=self._search_headers())
        result = self._parse_search(params, native, data or {})
        if params.histogram:
            histograms = await self._histograms(target, search, params, data or {})
            result = result.model_copy(update={"histograms": {k: v for k, v in histograms.items() if v}})
        return result

    async def multi_search(
        self, queries: Sequence[tuple[Index, str, Mapping[str, Any] | None]]
    ) -> list[SearchResult]:
        """Run queries through ``/1/indexes/*/queries``; results keep input order."""
        if not queries:
            return []
        plans = []
        requests = []
        for index, query, options in queries:
            params, native = extract_all(options)
            target = self._target_index(index, params)
            search = self._build_search(index, query, params, native)
            requests.append({"indexName": target, "params": _encode_params(search)})
            plans.append((target, search, params, native))

        data = await self._request(
            "POST", "/1/indexes/*/queries", json={"requests": requests}, headers=self._search_headers()
        )
        results = []
        for (target, search, params, native), response in zip(plans, (data or {}).get("results", []), strict=True):
            result = self._parse_search(params, native, response)
            if params.histogram:
                histograms = await self._histograms(target, search, params, response)
                result = result.model_copy(update={"histograms": {k: v for k, v in histograms.items() if v}})
            results.append(result)
        return results

    def facet_distribution_options(self) -> dict[str, Any]:
        return {"maxValuesPerFacet": self._facet_distribution_cap}

    # ── Counting & enumeration ───────────────────────────────────────────

    async def get_document_count(self, index: Index) -> int:
        data = await self._request(
            "POST",
            f"/1/indexes/{self.index_name(index)}/query",
            json={"query": "", "hitsPerPage": 0, "attributesToHighlight": []},
            headers=self._search_headers(),
        )
        return int((data or {}).get("nbHits", 0))

    async def get_all_document_ids(self, index: Index) -> list[str]:
        """Follow the ``browse`` cursor until Algolia stops returning one."""
        name = self.index_name(index)
        body: dict[str, Any] = {"attributesToRetrieve": ["objectID"], "hitsPerPage": BROWSE_PAGE_SIZE}
        ids: dict[str, None] = {}
        while True:
            page = await self._request("POST", f"/1/indexes/{name}/browse", json=body) or {}
            for hit in page.get("hits", []):
                ids[str(hit["objectID"])] = None
            cursor = page.get("cursor")
            if not cursor:
                break
            body = {"cursor": cursor}
        return list(ids)

    # ── Schema ───────────────────────────────────────────────────────────

    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        try:
            return await self._request("GET", f"/1/indexes/{self.index_name(index)}/settings") or {}
        except AdapterError as e:
            return {"error": str(e)}

    def parse_schema_fields(self, settings: dict[str, Any]) -> list[dict[str, str]]:
        return schema.parse_schema_fields(settings)

    # ── Atomic swap ──────────────────────────────────────────────────────

    @property
    def supports_atomic_swap(self) -> bool:
        return True

    async def swap_index(self, index: Index, swap_index: Index) -> None:
        """Move the staged index over production; the staged name ceases to exist."""
        production = self.index_name(index)
        staged = self.index_name(swap_index)
        response = await self._request(
            "POST",
            f"/1/indexes/{staged}/operation",
            json={"operation": "move", "destination": production},
        )
        await self.wait_for_task(staged, response)
        logger.info("Moved Algolia index %s over %s", staged, production)
        self.invalidate(index.handle)


def _encode_params(search: Mapping[str, Any]) -> str:
    """URL-encode search parameters the way ``/queries`` expects (arrays as JSON)."""
    return urlencode({k: v if isinstance(v, str) else json.dumps(v) for k, v in search.items()})


def _facet_filter(field: str, value: Any) -> str:
    if isinstance(value, bool):
        return f"{field}:{'true' if value else 'false'}"
    if isinstance(value, (int, float, str)):
        text = str(value)
        # a leading "-" would negate the filter
        return f"{field}:\\{text}" if text.startswith("-") else f"{field}:{text}"
    raise TranslationError(f"Filter value {value!r} on '{field}' cannot be expressed in Algolia")


def _histogram_bounds(spec: HistogramSpec, stats: Mapping[str, Any] | None) -> tuple[float, float] | None:
    low = spec.min if spec.min is not None else (stats or {}).get("min")
    high = spec.max if spec.max is not None else (stats or {}).get("max")
    if low is None or high is None:
        return None
    return float(low), float(high)
