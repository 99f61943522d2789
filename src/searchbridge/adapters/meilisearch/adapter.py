"""Meilisearch adapter — Typo-tolerant engine reached through its REST API.

Every write in Meilisearch is asynchronous: the API answers with a task
uid and the change becomes visible once the task succeeds. This adapter
waits for each task so that writes are visible when the call returns,
which the swap protocol relies on.

Usage::

    adapter = MeilisearchAdapter(host="http://localhost:7700", api_key="masterKey")
    await adapter.create_index(index)
    await adapter.index_documents(index, documents)
    result = await adapter.search(index, "wind power", {"facets": ["category"]})
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from typing import Any

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
    normalize_facet_map,
    normalize_formatted_highlights,
    normalize_hits,
    offset_from_page,
    page_from_offset,
)
from searchbridge.query.options import (
    HistogramSpec,
    SearchParams,
    extract_all,
    is_range_filter,
    native_pagination,
    numeric_bound,
    range_bounds,
)
from searchbridge.schema import meilisearch as schema

logger = logging.getLogger(__name__)

PRIMARY_KEY = "objectID"
HIGHLIGHT_PRE_TAG = "<em>"
HIGHLIGHT_POST_TAG = "</em>"
ID_PAGE_SIZE = 1000
HYBRID_SEMANTIC_RATIO = 0.5

_TASK_DONE = ("succeeded", "failed", "canceled")


class MeilisearchAdapter(HttpSearchAdapter):
    """Search adapter for Meilisearch (v1.x).

    Communicates with Meilisearch via its `REST API`_ over HTTP.

    .. _REST API: https://www.meilisearch.com/docs/reference/api/overview

    Supports:
      - Full-text, vector (``userProvided`` embedders) and hybrid search
      - Facets, facet stats and filters (equality, ``IN``, ranges, geo radius)
      - Histograms synthesized from range-count queries
      - Atomic swaps through ``/swap-indexes``

    Args:
        host: Meilisearch instance URL, e.g. ``"http://localhost:7700"``.
        api_key: Master key or admin API key.
        task_poll_interval: Seconds between task status polls.
        task_timeout: Seconds to wait for a task before failing.
        **kwargs: Timeouts, index prefix, batch size and facet distribution cap
            (see ``HttpSearchAdapter``). The cap is also written to every index
            as ``faceting.maxValuesPerFacet``.
    """

    date_format = DATE_FORMAT_EPOCH_SECONDS

    def __init__(
        self,
        host: str = "",
        api_key: str | None = None,
        task_poll_interval: float = 0.1,
        task_timeout: float = 60.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._host = host.rstrip("/")
        self._api_key = api_key
        self._task_poll_interval = task_poll_interval
        self._task_timeout = task_timeout

    @property
    def name(self) -> str:
        return "meilisearch"

    @property
    def display_name(self) -> str:
        return "Meilisearch"

    def _client_options(self) -> dict[str, Any]:
        if not self._host:
            raise ConfigurationError("Meilisearch host is not configured.")
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return {"base_url": self._host, "headers": headers}

    async def test_connection(self) -> bool:
        try:
            data = await self._request("GET", "/health")
        except AdapterError:
            logger.warning("Meilisearch connection test failed", exc_info=True)
            return False
        return (data or {}).get("status") == "available"

    # ── Tasks ────────────────────────────────────────────────────────────

    async def wait_for_task(self, task: Mapping[str, Any] | None) -> dict[str, Any]:
        """Poll a task until it finishes.

        Raises:
            BackendError: If the task failed, was canceled or timed out.
        """
        task_uid = (task or {}).get("taskUid", (task or {}).get("uid"))
        if task_uid is None:
            return dict(task or {})

        deadline = time.monotonic() + self._task_timeout
        while True:
            status = await self._request("GET", f"/tasks/{task_uid}") or {}
            if status.get("status") in _TASK_DONE:
                break
            if time.monotonic() >= deadline:
                raise BackendError(f"Meilisearch task {task_uid} did not finish within {self._task_timeout}s")
            await asyncio.sleep(self._task_poll_interval)

        if status["status"] != "succeeded":
            error = status.get("error") or {}
            raise BackendError(
                f"Meilisearch task {task_uid} {status['status']}: {error.get('message', 'unknown error')}",
                detail=error,
            )
        return status

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def create_index(self, index: Index) -> None:
        task = await self._request("POST", "/indexes", json={"uid": self.index_name(index), "primaryKey": PRIMARY_KEY})
        await self.wait_for_task(task)
        await self.update_index_settings(index)

    async def update_index_settings(self, index: Index) -> None:
        settings = schema.build_settings(index, self._facet_distribution_cap)
        if settings:
            task = await self._request("PATCH", f"/indexes/{self.index_name(index)}/settings", json=settings)
            await self.wait_for_task(task)
        self.invalidate(index.handle)

    async def delete_index(self, index: Index) -> None:
        try:
            task = await self._request("DELETE", f"/indexes/{self.index_name(index)}")
        except NotFoundError:
            return
        await self.wait_for_task(task)

    async def index_exists(self, index: Index) -> bool:
        try:
            await self._request("GET", f"/indexes/{self.index_name(index)}")
        except NotFoundError:
            return False
        return True

    # ── Documents ────────────────────────────────────────────────────────

    def prepare_document(self, index: Index, document: Mapping[str, Any]) -> dict[str, Any]:
        """Normalize dates and move geo points and vectors to the reserved attributes."""
        prepared = super().prepare_document(index, document)
        for mapping in index.fields_of_type(FieldType.GEO_POINT):
            point = extract_geo_point(prepared.get(mapping.index_field_name))
            if point is not None:
                prepared[schema.GEO_ATTRIBUTE] = {"lat": point[0], "lng": point[1]}
        vectors = {}
        for mapping in index.fields_of_type(FieldType.EMBEDDING):
            vector = prepared.pop(mapping.index_field_name, None)
            if vector is not None:
                vectors[mapping.index_field_name] = vector
        if vectors:
            prepared[schema.VECTORS_ATTRIBUTE] = vectors
        return prepared

    async def index_document(self, index: Index, document: Mapping[str, Any]) -> None:
        task = await self._request(
            "POST",
            f"/indexes/{self.index_name(index)}/documents",
            params={"primaryKey": PRIMARY_KEY},
            json=[self.prepare_document(index, document)],
        )
        await self.wait_for_task(task)

    async def index_documents(self, index: Index, documents: Sequence[Mapping[str, Any]]) -> BulkResult:
        """Add or replace documents in batches, one task per batch.

        A batch whose task fails is reported as failed items; the other
        batches are unaffected.
        """
        result = BulkResult()
        for chunk in self._chunks([self.prepare_document(index, d) for d in documents]):
            task = await self._request(
                "POST",
                f"/indexes/{self.index_name(index)}/documents",
                params={"primaryKey": PRIMARY_KEY},
                json=list(chunk),
            )
            result = result.merge(await self._batch_outcome(task, [str(d.get(PRIMARY_KEY, "")) for d in chunk]))
        if not result.ok:
            logger.warning("Meilisearch rejected %d document(s) in %s", len(result.failures), self.index_name(index))
        return result

    async def _batch_outcome(self, task: Mapping[str, Any], object_ids: list[str]) -> BulkResult:
        try:
            await self.wait_for_task(task)
        except BackendError as e:
            if e.detail is None:
                raise
            return BulkResult(failures=[BulkFailure(object_id=oid, reason=str(e)) for oid in object_ids])
        return BulkResult(succeeded=len(object_ids))

    async def delete_document(self, index: Index, object_id: str) -> None:
        try:
            task = await self._request("DELETE", f"/indexes/{self.index_name(index)}/documents/{object_id}")
        except NotFoundError:
            return
        await self.wait_for_task(task)

    async def delete_documents(self, index: Index, object_ids: Sequence[str]) -> BulkResult:
        result = BulkResult()
        for chunk in self._chunks([str(i) for i in object_ids]):
            task = await self._request(
                "POST", f"/indexes/{self.index_name(index)}/documents/delete-batch", json=list(chunk)
            )
            result = result.merge(await self._batch_outcome(task, list(chunk)))
        return result

    async def flush_index(self, index: Index) -> None:
        task = await self._request("DELETE", f"/indexes/{self.index_name(index)}/documents")
        await self.wait_for_task(task)

    async def get_document(self, index: Index, object_id: str) -> dict[str, Any] | None:
        try:
            return await self._request("GET", f"/indexes/{self.index_name(index)}/documents/{object_id}")
        except NotFoundError:
            return None

    # ── Search ───────────────────────────────────────────────────────────

    def build_filter(self, index: Index, filters: Mapping[str, Any]) -> list[str]:
        """Translate unified filters into Meilisearch filter expressions.

        Raises:
            TranslationError: For values the filter syntax cannot express.
        """
        field_types = self.field_types(index)
        expressions: list[str] = []
        for field, value in filters.items():
            if is_range_filter(value):
                low, high = range_bounds(value)
                is_date = field_types.get(field) == FieldType.DATE
                if low is not None:
                    expressions.append(f"{field} >= {numeric_bound(field, low, is_date)}")
                if high is not None:
                    expressions.append(f"{field} <= {numeric_bound(field, high, is_date)}")
            elif isinstance(value, list):
                if not value:
                    raise TranslationError(f"Filter on '{field}' has an empty value list")
                expressions.append(f"{field} IN [{', '.join(_filter_literal(field, v) for v in value)}]")
            elif value is None:
                expressions.append(f"{field} IS NULL")
            else:
                expressions.append(f"{field} = {_filter_literal(field, value)}")
        return expressions

    def _build_search(
        self, index: Index, query: str, params: SearchParams, native: dict[str, Any]
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "q": query,
            "offset": offset_from_page(params.page, params.per_page),
            "limit": params.per_page,
            "showRankingScore": True,
        }

        expressions = self.build_filter(index, params.filters)
        geo = params.geo
        if geo.filter is not None:
            expressions.append(f"_geoRadius({geo.filter.lat}, {geo.filter.lng}, {round(geo.filter.radius)})")
        if expressions:
            payload["filter"] = " AND ".join(expressions)

        sort: list[str] = []
        if geo.sort is not None:
            sort.append(f"_geoPoint({geo.sort.lat}, {geo.sort.lng}):{geo.sort.direction}")
        if params.unified_sort:
            sort.extend(f"{field}:{direction}" for field, direction in params.unified_sort.items())
        elif isinstance(params.sort, list):
            sort.extend(params.sort)
        if sort:
            payload["sort"] = sort

        if params.attributes_to_retrieve is not None:
            payload["attributesToRetrieve"] = params.attributes_to_retrieve
        if params.highlight:
            payload["attributesToHighlight"] = ["*"] if params.highlight is True else params.highlight
            payload["highlightPreTag"] = HIGHLIGHT_PRE_TAG
            payload["highlightPostTag"] = HIGHLIGHT_POST_TAG

        facets = list(dict.fromkeys([*params.facets, *params.stats]))
        if facets:
            payload["facets"] = facets

        if params.embedding is not None:
            embedder = self.embedding_field(index, params.embedding.field)
            if embedder is None:
                logger.debug("Ignoring embedding for %s: no embedding field mapped", index.handle)
            else:
                payload["vector"] = params.embedding.vector
                payload["hybrid"] = {
                    "embedder": embedder,
                    "semanticRatio": HYBRID_SEMANTIC_RATIO if query else 1.0,
                }

        payload.update(native)
        return payload

    async def _parse_search(
        self,
        index: Index,
        query: str,
        params: SearchParams,
        native: dict[str, Any],
        payload: dict[str, Any],
        data: dict[str, Any],
    ) -> SearchResult:
        raw_hits = [dict(hit) for hit in data.get("hits", [])]
        for hit in raw_hits:
            formatted = hit.pop("_formatted", None)
            if params.highlight and formatted:
                fields = None if params.highlight is True else params.highlight
                hit["_highlights"] = normalize_formatted_highlights(formatted, HIGHLIGHT_PRE_TAG, fields)
        hits = normalize_hits(raw_hits, PRIMARY_KEY, "_rankingScore", None)

        total = data.get("totalHits", data.get("estimatedTotalHits", len(hits)))
        native_page = native_pagination(native, "offset", "limit")
        if native_page is not None:
            page, per_page = page_from_offset(*native_page), native_page[1]
        else:
            page, per_page = params.page, params.per_page

        distribution = data.get("facetDistribution") or {}
        facets = normalize_facet_map({f: distribution.get(f, {}) for f in params.facets})
        facet_stats = data.get("facetStats") or {}
        stats = {
            field: {"min": facet_stats[field].get("min"), "max": facet_stats[field].get("max")}
            for field in params.stats
            if field in facet_stats
        }

        histograms = {}
        for field, spec in params.histogram.items():
            histograms[field] = await self._histogram(index, query, payload.get("filter"), field, spec)

        geo_clusters = None
        if params.geo.grid is not None:
            geo_clusters = cluster_hits_by_grid(hits, schema.GEO_ATTRIBUTE, params.geo.grid.precision)

        return build_search_result(
            hits=hits,
            total_hits=int(total),
            page=page,
            per_page=per_page,
            processing_time_ms=int(data.get("processingTimeMs", 0)),
            facets=facets,
            stats=stats,
            histograms=histograms,
            geo_clusters=geo_clusters,
            raw=data,
        )

    async def search(self, index: Index, query: str, options: Mapping[str, Any] | None = None) -> SearchResult:
        params, native = extract_all(options)
        payload = self._build_search(index, query, params, native)
        data = await self._request("POST", f"/indexes/{self.index_name(index)}/search", json=payload)
        return await self._parse_search(index, query, params, native, payload, data or {})

    async def multi_search(
        self, queries: Sequence[tuple[Index, str, Mapping[str, Any] | None]]
    ) -> list[SearchResult]:
        """Run queries through ``/multi-search``; results keep input order."""
        if not queries:
            return []
        plans = []
        for index, query, options in queries:
            params, native = extract_all(options)
            payload = self._build_search(index, query, params, native)
            plans.append((index, query, params, native, payload))

        data = await self._request(
            "POST",
            "/multi-search",
            json={"queries": [{"indexUid": self.index_name(p[0]), **p[4]} for p in plans]},
        )
        responses = (data or {}).get("results", [])
        return [
            await self._parse_search(index, query, params, native, payload, response)
            for (index, query, params, native, payload), response in zip(plans, responses, strict=True)
        ]

    async def _histogram(
        self, index: Index, query: str, base_filter: str | None, field: str, spec: HistogramSpec
    ) -> list[HistogramBucket]:
        """Synthesize fixed-width buckets from range-count queries.

        Bounds that were not supplied are fetched from ``facetStats``.
        """
        uid = self.index_name(index)
        low, high = spec.min, spec.max
        if low is None or high is None:
            bounds_query: dict[str, Any] = {"q": query, "limit": 0, "facets": [field]}
            if base_filter:
                bounds_query["filter"] = base_filter
            data = await self._request("POST", f"/indexes/{uid}/search", json=bounds_query)
            field_stats = ((data or {}).get("facetStats") or {}).get(field)
            if not field_stats:
                return []
            low = field_stats["min"] if low is None else low
            high = field_stats["max"] if high is None else high

        edges = histogram_edges(low, high, spec.interval)
        if not edges:
            return []
        queries = []
        for edge in edges:
            condition = f"{field} >= {format_number(edge)} AND {field} < {format_number(edge + spec.interval)}"
            queries.append(
                {
                    "indexUid": uid,
                    "q": query,
                    "filter": f"({base_filter}) AND {condition}" if base_filter else condition,
                    "hitsPerPage": 0,
                    "page": 1,
                }
            )
        data = await self._request("POST", "/multi-search", json={"queries": queries})
        results = (data or {}).get("results", [])
        return [
            HistogramBucket(key=edge, count=int(r.get("totalHits", r.get("estimatedTotalHits", 0))))
            for edge, r in zip(edges, results, strict=True)
        ]

    # ── Counting & enumeration ───────────────────────────────────────────

    async def get_document_count(self, index: Index) -> int:
        stats = await self._request("GET", f"/indexes/{self.index_name(index)}/stats")
        return int((stats or {}).get("numberOfDocuments", 0))

    async def get_all_document_ids(self, index: Index) -> list[str]:
        ids: dict[str, None] = {}
        offset = 0
        while True:
            page = await self._request(
                "GET",
                f"/indexes/{self.index_name(index)}/documents",
                params={"fields": PRIMARY_KEY, "offset": offset, "limit": ID_PAGE_SIZE},
            )
            results = (page or {}).get("results", [])
            for document in results:
                ids[str(document[PRIMARY_KEY])] = None
            offset += len(results)
            if not results or offset >= int(page.get("total", 0)):
                break
        return list(ids)

    # ── Schema ───────────────────────────────────────────────────────────

    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        try:
            return await self._request("GET", f"/indexes/{self.index_name(index)}/settings") or {}
        except AdapterError as e:
            return {"error": str(e)}

    def parse_schema_fields(self, settings: dict[str, Any]) -> list[dict[str, str]]:
        return schema.parse_schema_fields(settings)

    # ── Atomic swap ──────────────────────────────────────────────────────

    @property
    def supports_atomic_swap(self) -> bool:
        return True

    async def swap_index(self, index: Index, swap_index: Index) -> None:
        """Exchange the production and swap indexes, then drop the stale one.

        ``/swap-indexes`` needs both indexes to exist, so an empty
        production index is created first on the very first rebuild.
        """
        production = self.index_name(index)
        staged = self.index_name(swap_index)
        if not await self.index_exists(index):
            task = await self._request("POST", "/indexes", json={"uid": production, "primaryKey": PRIMARY_KEY})
            await self.wait_for_task(task)

        task = await self._request("POST", "/swap-indexes", json=[{"indexes": [production, staged]}])
        await self.wait_for_task(task)
        logger.info("Swapped Meilisearch index %s with %s", production, staged)

        # After the swap the staged name holds the previous generation.
        await self.delete_index(swap_index)


def _filter_literal(field: str, value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, str):
        escaped = value.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    raise TranslationError(f"Filter value {value!r} on '{field}' cannot be expressed in Meilisearch")
