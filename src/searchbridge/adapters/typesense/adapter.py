"""Typesense adapter — Typed-collection engine reached through its REST API.

Collections have a strict schema, documents are keyed by ``id`` (the
``objectID``), bulk writes use the JSONL import endpoint and id
enumeration uses the JSONL export stream. Production collections become
aliases after their first atomic swap.

Searches are always sent through ``/multi_search`` so that long query
vectors travel in the request body rather than the URL.
"""

from __future__ import annotations

import json
import logging
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
    normalize_facet_counts,
    normalize_hits,
    normalize_typesense_highlights,
    page_from_offset,
)
from searchbridge.query.options import (
    SearchParams,
    extract_all,
    is_range_filter,
    numeric_bound,
    range_bounds,
)
from searchbridge.schema import typesense as schema

logger = logging.getLogger(__name__)

HIGHLIGHT_START_TAG = "<em>"
HIGHLIGHT_END_TAG = "</em>"
MAX_SORT_FIELDS = 3
MAX_FACET_VALUES = 100

_QUERYABLE_TYPES = (FieldType.TEXT, FieldType.KEYWORD, FieldType.FACET)


class TypesenseAdapter(HttpSearchAdapter):
    """Search adapter for Typesense (v0.25+).

    Supports:
      - Full-text, vector and hybrid search (``vector_query``)
      - ``filter_by`` filters, facets, facet stats and client-side facet-value search
      - Histograms synthesized from range facets
      - Geo radius filters and distance sorting
      - Atomic swaps through collection aliases

    Args:
        host: Typesense host name.
        port: Typesense port.
        protocol: ``http`` or ``https``.
        api_key: Admin API key.
        **kwargs: Timeouts, index prefix and batch size (see ``HttpSearchAdapter``).
    """

    date_format = DATE_FORMAT_EPOCH_SECONDS

    def __init__(
        self,
        host: str = "",
        port: int = 8108,
        protocol: str = "http",
        api_key: str = "",
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._host = host
        self._port = port
        self._protocol = protocol
        self._api_key = api_key

    @property
    def name(self) -> str:
        return "typesense"

    @property
    def display_name(self) -> str:
        return "Typesense"

    def _client_options(self) -> dict[str, Any]:
        if not self._host:
            raise ConfigurationError("Typesense host is not configured.")
        if not self._api_key:
            raise ConfigurationError("Typesense api_key is not configured.")
        return {
            "base_url": f"{self._protocol}://{self._host}:{self._port}",
            "headers": {"X-TYPESENSE-API-KEY": self._api_key},
        }

    async def test_connection(self) -> bool:
        try:
            data = await self._request("GET", "/health")
        except AdapterError:
            logger.warning("Typesense connection test failed", exc_info=True)
            return False
        return bool((data or {}).get("ok"))

    # ── Aliases ──────────────────────────────────────────────────────────

    async def _alias_target(self, name: str) -> str | None:
        try:
            alias = await self._request("GET", f"/aliases/{name}")
        except NotFoundError:
            return None
        return (alias or {}).get("collection_name")

    async def _collection_name(self, index: Index) -> str:
        """The concrete collection behind ``index``, resolving an alias."""
        name = self.index_name(index)
        return await self._alias_target(name) or name

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def create_index(self, index: Index) -> None:
        name = self.index_name(index)
        await self._request("POST", "/collections", json=schema.build_collection_schema(index, name))
        logger.info("Created Typesense collection %s", name)

    async def update_index_settings(self, index: Index) -> None:
        """Add new fields and re-declare fields whose type changed."""
        name = await self._collection_name(index)
        collection = await self._request("GET", f"/collections/{name}")
        existing = {f["name"]: f for f in (collection or {}).get("fields", [])}

        changes: list[dict[str, Any]] = []
        for field in schema.build_fields(index):
            current = existing.get(field["name"])
            if current is None:
                changes.append(field)
            elif current.get("type") != field["type"] or bool(current.get("facet")) != field["facet"]:
                changes.append({"name": field["name"], "drop": True})
                changes.append(field)
        if changes:
            await self._request("PATCH", f"/collections/{name}", json={"fields": changes})
        self.invalidate(index.handle)

    async def delete_index(self, index: Index) -> None:
        name = self.index_name(index)
        target = await self._alias_target(name)
        if target:
            await self._request("DELETE", f"/aliases/{name}")
        try:
            await self._request("DELETE", f"/collections/{target or name}")
        except NotFoundError:
            return
        logger.info("Deleted Typesense collection %s", target or name)

    async def index_exists(self, index: Index) -> bool:
        try:
            await self._request("GET", f"/collections/{await self._collection_name(index)}")
        except NotFoundError:
            return False
        return True

    # ── Documents ────────────────────────────────────────────────────────

    def prepare_document(self, index: Index, document: Mapping[str, Any]) -> dict[str, Any]:
        """Normalize dates, set ``id`` and write geo points as ``[lat, lng]``."""
        prepared = super().prepare_document(index, document)
        if prepared.get("objectID") is not None:
            prepared["id"] = prepared["objectID"]
        for mapping in index.fields_of_type(FieldType.GEO_POINT):
            point = extract_geo_point(prepared.get(mapping.index_field_name))
            if point is not None:
                prepared[mapping.index_field_name] = [point[0], point[1]]
        return prepared

    async def index_document(self, index: Index, document: Mapping[str, Any]) -> None:
        await self._request(
            "POST",
            f"/collections/{self.index_name(index)}/documents",
            params={"action": "upsert"},
            json=self.prepare_document(index, document),
        )

    async def index_documents(self, index: Index, documents: Sequence[Mapping[str, Any]]) -> BulkResult:
        """Upsert documents through the JSONL import endpoint.

        The import answers with one JSON line per document, in order, each
        carrying ``success`` and, on rejection, ``error``.
        """
        name = self.index_name(index)
        result = BulkResult()
        for chunk in self._chunks([self.prepare_document(index, d) for d in documents]):
            response = await self._send(
                "POST",
                f"/collections/{name}/documents/import",
                params={"action": "upsert"},
                content="\n".join(json.dumps(d) for d in chunk),
                headers={"Content-Type": "text/plain"},
            )
            lines = [json.loads(line) for line in response.text.splitlines() if line.strip()]
            failures = [
                BulkFailure(object_id=str(document.get("objectID", "")), reason=str(line.get("error", "")))
                for document, line in zip(chunk, lines, strict=False)
                if not line.get("success", False)
            ]
            result = result.merge(BulkResult(succeeded=len(chunk) - len(failures), failures=failures))
        if not result.ok:
            logger.warning("Typesense rejected %d document(s) in %s", len(result.failures), name)
        return result

    async def delete_document(self, index: Index, object_id: str) -> None:
        try:
            await self._request("DELETE", f"/collections/{self.index_name(index)}/documents/{object_id}")
        except NotFoundError:
            logger.debug("Document %s already absent from %s", object_id, self.index_name(index))

    async def delete_documents(self, index: Index, object_ids: Sequence[str]) -> BulkResult:
        """Delete by ``id`` filter, one request per batch; absent ids are not failures."""
        result = BulkResult()
        for chunk in self._chunks([str(i) for i in object_ids]):
            id_filter = f"id:[{', '.join(_quote(i) for i in chunk)}]"
            await self._request(
                "DELETE",
                f"/collections/{self.index_name(index)}/documents",
                params={"filter_by": id_filter},
            )
            result = result.merge(BulkResult(succeeded=len(chunk)))
        return result

    async def flush_index(self, index: Index) -> None:
        """Drop and recreate the collection with its current schema."""
        name = await self._collection_name(index)
        collection = await self._request("GET", f"/collections/{name}")
        await self._request("DELETE", f"/collections/{name}")
        await self._request("POST", "/collections", json=schema.strip_for_recreate(collection))
        logger.info("Flushed Typesense collection %s", name)

    async def get_document(self, index: Index, object_id: str) -> dict[str, Any] | None:
        try:
            document = await self._request("GET", f"/collections/{self.index_name(index)}/documents/{object_id}")
        except NotFoundError:
            return None
        document.setdefault("objectID", str(document.get("id", object_id)))
        return document

    # ── Query building ───────────────────────────────────────────────────

    def build_filter(self, index: Index, filters: Mapping[str, Any]) -> list[str]:
        """Translate unified filters into ``filter_by`` expressions.

        Raises:
            TranslationError: For values ``filter_by`` cannot express.
        """
        field_types = self.field_types(index)
        expressions: list[str] = []
        for field, value in filters.items():
            target = "id" if field == "objectID" else field
            if is_range_filter(value):
                low, high = range_bounds(value)
                is_date = field_types.get(field) == FieldType.DATE
                low = None if low is None else numeric_bound(field, low, is_date)
                high = None if high is None else numeric_bound(field, high, is_date)
                if low is not None and high is not None:
                    expressions.append(f"{target}:[{low}..{high}]")
                elif low is not None:
                    expressions.append(f"{target}:>={low}")
                elif high is not None:
                    expressions.append(f"{target}:<={high}")
            elif isinstance(value, list):
                if not value:
                    raise TranslationError(f"Filter on '{field}' has an empty value list")
                expressions.append(f"{target}:[{', '.join(_literal(field, v) for v in value)}]")
            elif value is None or isinstance(value, Mapping):
                raise TranslationError(f"Filter on '{field}' cannot be expressed in Typesense")
            else:
                expressions.append(f"{target}:={_literal(field, value)}")
        return expressions

    async def _build_search(
        self, index: Index, query: str, params: SearchParams, native: Mapping[str, Any]
    ) -> tuple[dict[str, Any], dict[str, list[float]]]:
        """Build one search request plus the histogram edges it asks for."""
        name = self.index_name(index)
        text_fields = sorted(index.fields_of_type(*_QUERYABLE_TYPES), key=lambda m: m.weight, reverse=True)
        search: dict[str, Any] = {
            "collection": name,
            "q": query or "*",
            "page": params.page,
            "per_page": params.per_page,
        }
        if text_fields:
            search["query_by"] = ",".join(m.index_field_name for m in text_fields)
            search["query_by_weights"] = ",".join(str(m.weight) for m in text_fields)
        elif "query_by" not in native:
            raise TranslationError(f"Index '{index.handle}' has no string fields for query_by")

        expressions = self.build_filter(index, params.filters)
        geo = params.geo
        if geo.filter is not None:
            field = self._geo_field_or_fail(index, geo.filter.field)
            expressions.append(f"{field}:({geo.filter.lat}, {geo.filter.lng}, {geo.filter.radius / 1000} km)")
        if expressions:
            search["filter_by"] = " && ".join(expressions)

        sort: list[str] = []
        if geo.sort is not None:
            field = self._geo_field_or_fail(index, geo.sort.field)
            sort.append(f"{field}({geo.sort.lat}, {geo.sort.lng}):{geo.sort.direction}")
        if params.unified_sort:
            sort.extend(f"{field}:{direction}" for field, direction in params.unified_sort.items())
        elif isinstance(params.sort, list):
            sort.extend(str(s) for s in params.sort)
        if len(sort) > MAX_SORT_FIELDS:
            raise TranslationError(f"Typesense sorts on at most {MAX_SORT_FIELDS} fields, got {len(sort)}")
        if sort:
            search["sort_by"] = ",".join(sort)

        if params.attributes_to_retrieve is not None:
            search["include_fields"] = ",".join(params.attributes_to_retrieve)
        if params.highlight:
            if params.highlight is not True:
                search["highlight_fields"] = ",".join(params.highlight)
            search["highlight_start_tag"] = HIGHLIGHT_START_TAG
            search["highlight_end_tag"] = HIGHLIGHT_END_TAG

        edges: dict[str, list[float]] = {}
        for field, spec in params.histogram.items():
            low, high = spec.min, spec.max
            if low is None or high is None:
                bounds = await self._facet_stats(search, field)
                if bounds is None:
                    continue
                low = bounds[0] if low is None else low
                high = bounds[1] if high is None else high
            field_edges = histogram_edges(low, high, spec.interval)
            if field_edges:
                edges[field] = field_edges

        facet_by: list[str] = []
        for field in dict.fromkeys([*params.facets, *params.stats, *edges]):
            if field in edges:
                ranges = ", ".join(
                    f"b{i}:[{format_number(edge)}, {format_number(edge + params.histogram[field].interval)}]"
                    for i, edge in enumerate(edges[field])
                )
                facet_by.append(f"{field}({ranges})")
            else:
                facet_by.append(field)
        if facet_by:
            search["facet_by"] = ",".join(facet_by)
            search["max_facet_values"] = MAX_FACET_VALUES

        if params.embedding is not None:
            vector_field = self.embedding_field(index, params.embedding.field)
            if vector_field is None:
                logger.debug("Ignoring embedding for %s: no embedding field mapped", index.handle)
            else:
                k = params.page * params.per_page
                vector = ",".join(repr(float(v)) for v in params.embedding.vector)
                search["vector_query"] = f"{vector_field}:([{vector}], k: {k})"

        search.update(native)
        return search, edges

    def _geo_field_or_fail(self, index: Index, requested: str | None) -> str:
        field = self.geo_field(index, requested)
        if field is None:
            raise TranslationError(f"Index '{index.handle}' has no geo_point field for geo options")
        return field

    async def _facet_stats(self, search: Mapping[str, Any], field: str) -> tuple[float, float] | None:
        """Fetch ``(min, max)`` of a numeric field from facet stats, under the same query and filters."""
        bounds_query = {key: search[key] for key in ("q", "query_by", "filter_by") if key in search}
        bounds_query.update({"facet_by": field, "per_page": 0})
        data = await self._request("GET", f"/collections/{search['collection']}/documents/search", params=bounds_query)
        for facet in (data or {}).get("facet_counts", []):
            stats = facet.get("stats") or {}
            if facet.get("field_name") == field and "min" in stats and "max" in stats:
                return float(stats["min"]), float(stats["max"])
        return None

    def _parse_search(
        self,
        index: Index,
        params: SearchParams,
        native: Mapping[str, Any],
        edges: Mapping[str, list[float]],
        data: Mapping[str, Any],
    ) -> SearchResult:
        hits = normalize_hits(
            (
                {
                    **(h.get("document") or {}),
                    "_score": h.get("text_match", _vector_score(h)),
                    "_highlights": normalize_typesense_highlights(h) if params.highlight else {},
                }
                for h in data.get("hits", [])
            ),
            "id",
            "_score",
            None,
        )

        # "page" is a unified key here too, so only a native per_page can override
        native_per_page = native.get("per_page")
        if isinstance(native_per_page, int) and not isinstance(native_per_page, bool) and native_per_page > 0:
            page, per_page = params.page, native_per_page
        elif "offset" in native and "limit" in native:
            page, per_page = page_from_offset(int(native["offset"]), int(native["limit"])), int(native["limit"])
        else:
            page, per_page = params.page, params.per_page

        facet_counts = {f.get("field_name"): f for f in data.get("facet_counts", [])}
        facets = {
            field: normalize_facet_counts(
                {c["value"]: c["count"] for c in facet_counts.get(field, {}).get("counts", [])}
            )
            for field in params.facets
            if field not in edges
        }
        stats = {}
        for field in params.stats:
            field_stats = facet_counts.get(field, {}).get("stats") or {}
            if "min" in field_stats or "max" in field_stats:
                stats[field] = {"min": field_stats.get("min"), "max": field_stats.get("max")}
        histograms = {}
        for field, field_edges in edges.items():
            by_label = {c["value"]: int(c["count"]) for c in facet_counts.get(field, {}).get("counts", [])}
            histograms[field] = [
                HistogramBucket(key=edge, count=by_label.get(f"b{i}", 0)) for i, edge in enumerate(field_edges)
            ]

        geo_clusters = None
        if params.geo.grid is not None:
            field = self._geo_field_or_fail(index, params.geo.grid.field)
            geo_clusters = cluster_hits_by_grid(hits, field, params.geo.grid.precision)

        return build_search_result(
            hits=hits,
            total_hits=int(data.get("found", len(hits))),
            page=page,
            per_page=per_page,
            processing_time_ms=int(data.get("search_time_ms", 0)),
            facets=facets,
            stats=stats,
            histograms=histograms,
            geo_clusters=geo_clusters,
            raw=dict(data),
        )

    # ── Search ───────────────────────────────────────────────────────────

    async def search(self, index: Index, query: str, options: Mapping[str, Any] | None = None) -> SearchResult:
        return (await self.multi_search([(index, query, options)]))[0]

    async def multi_search(
        self, queries: Sequence[tuple[Index, str, Mapping[str, Any] | None]]
    ) -> list[SearchResult]:
        """Run queries through ``/multi_search``; results keep input order."""
        if not queries:
            return []
        plans = []
        searches = []
        for index, query, options in queries:
            params, native = extract_all(options)
            search, edges = await self._build_search(index, query, params, native)
            searches.append(search)
            plans.append((index, params, native, edges))

        data = await self._request("POST", "/multi_search", json={"searches": searches})
        results = []
        for (index, params, native, edges), response in zip(plans, (data or {}).get("results", []), strict=True):
            if "error" in response:
                raise BackendError(
                    f"Typesense search on {self.index_name(index)} failed: {response['error']}",
                    status_code=response.get("code"),
                    detail=response,
                )
            results.append(self._parse_search(index, params, native, edges, response))
        return results

    def facet_distribution_options(self) -> dict[str, Any]:
        return {"max_facet_values": self._facet_distribution_cap}

    # ── Counting & enumeration ───────────────────────────────────────────

    async def get_document_count(self, index: Index) -> int:
        collection = await self._request("GET", f"/collections/{await self._collection_name(index)}")
        return int((collection or {}).get("num_documents", 0))

    async def get_all_document_ids(self, index: Index) -> list[str]:
        """Stream the JSONL export with only the ``id`` field."""
        response = await self._send(
            "GET",
            f"/collections/{self.index_name(index)}/documents/export",
            params={"include_fields": "id"},
        )
        ids: dict[str, None] = {}
        for line in response.text.splitlines():
            if line.strip():
                ids[str(json.loads(line)["id"])] = None
        return list(ids)

    # ── Schema ───────────────────────────────────────────────────────────

    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        try:
            return await self._request("GET", f"/collections/{await self._collection_name(index)}") or {}
        except AdapterError as e:
            return {"error": str(e)}

    def parse_schema_fields(self, collection: dict[str, Any]) -> list[dict[str, str]]:
        return schema.parse_schema_fields(collection)

    # ── Atomic swap ──────────────────────────────────────────────────────

    @property
    def supports_atomic_swap(self) -> bool:
        return True

    async def build_swap_handle(self, index: Index) -> str:
        name = self.index_name(index)
        target = await self._alias_target(name)
        if target is None:
            return f"{name}_swap"
        return f"{name}_swap_b" if target.endswith("_swap_a") else f"{name}_swap_a"

    async def swap_index(self, index: Index, swap_index: Index) -> None:
        """Repoint the production alias, then delete the previous collection.

        A collection and an alias cannot share a name, so the first swap of
        a direct collection deletes it before the alias is created.
        """
        production = self.index_name(index)
        staged = self.index_name(swap_index)
        current = await self._alias_target(production)

        if current is None:
            try:
                await self._request("DELETE", f"/collections/{production}")
            except NotFoundError:
                pass
            else:
                logger.warning(
                    "Deleted direct Typesense collection %s before aliasing it (one-time search gap)", production
                )

        await self._request("PUT", f"/aliases/{production}", json={"collection_name": staged})
        logger.info("Pointed Typesense alias %s at %s", production, staged)

        if current and current != staged:
            try:
                await self._request("DELETE", f"/collections/{current}")
            except NotFoundError:
                logger.debug("Previous collection %s already gone", current)
        self.invalidate(index.handle)


def _vector_score(hit: Mapping[str, Any]) -> float | None:
    distance = hit.get("vector_distance")
    return None if distance is None else 1.0 - float(distance)


def _quote(value: str) -> str:
    if "`" in value:
        raise TranslationError(f"Filter value {value!r} contains a backtick")
    return f"`{value}`"


def _literal(field: str, value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return format_number(value)
    if isinstance(value, str):
        return _quote(value)
    raise TranslationError(f"Filter value {value!r} on '{field}' cannot be expressed in Typesense")
