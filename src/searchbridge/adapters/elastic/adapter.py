"""Elasticsearch-compatible adapter — one implementation for Elasticsearch and OpenSearch.

The two engines share the query DSL, bulk NDJSON and alias API; the
differences (client library, error shape, vector syntax) are supplied by
an ``ElasticFlavor``. Production indexes become aliases after their first
atomic swap, alternating between ``{name}_swap_a`` and ``{name}_swap_b``.

Usage::

    adapter = ElasticCompatAdapter(flavor=OPENSEARCH, hosts=["http://localhost:9200"])
    await adapter.create_index(index)
    result = await adapter.search(index, "solar", {"facets": ["category"], "suggest": True})
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

from searchbridge.adapters.base.adapter import SearchAdapter
from searchbridge.adapters.base.exceptions import (
    AdapterError,
    BackendError,
    ConfigurationError,
    NotFoundError,
    TranslationError,
)
from searchbridge.adapters.elastic.flavors import (
    ELASTICSEARCH,
    FLAVORS,
    KNN_SEARCH_OPTION,
    ClientOptions,
    ElasticFlavor,
)
from searchbridge.models.index import FieldType, Index
from searchbridge.models.result import BulkFailure, BulkResult, FacetValue, GeoCluster, SearchResult
from searchbridge.query.normalize import (
    DATE_FORMAT_ISO8601,
    build_search_result,
    histogram_from_pairs,
    normalize_facet_counts,
    normalize_highlight_data,
    normalize_hits,
    offset_from_page,
    page_from_offset,
)
from searchbridge.query.options import (
    SearchParams,
    extract_all,
    is_range_filter,
    native_pagination,
    range_bounds,
)
from searchbridge.schema import elastic as schema

logger = logging.getLogger(__name__)

FACET_SIZE = 100
ID_PAGE_SIZE = 1000
SUGGESTION_NAME = "phrase_suggestion"
SUGGESTION_SIZE = 3
GEO_CLUSTER_AGG = "geo_clusters"
MAX_NUM_CANDIDATES = 10_000
HIGHLIGHT_PRE_TAG = "<em>"
HIGHLIGHT_POST_TAG = "</em>"

# Lucene regular expression operators
_REGEX_SPECIAL = set('.?+*|{}[]()"\\#@&<>~')


class ElasticCompatAdapter(SearchAdapter):
    """Search adapter for Elasticsearch (v8) and OpenSearch (v2+).

    Supports:
      - Full-text search (``multi_match`` over weighted text fields)
      - Term/range filters, facets, stats and native histograms
      - Phrase-suggester spelling suggestions
      - Geo distance filters and sorting, ``geotile_grid`` clusters
      - Vector and hybrid search (``knn``)
      - Atomic swaps through aliases

    Args:
        flavor: ``ElasticFlavor`` (or its name) selecting the engine.
        hosts: Cluster node URLs.
        api_key: Optional API key (encoded string).
        username: Optional HTTP basic-auth username.
        password: Optional HTTP basic-auth password.
        verify_certs: Whether to verify TLS certificates.
        timeout: Request timeout in seconds.
        connect_timeout: Accepted for settings parity; the clients apply
            ``timeout`` to the whole request.
        refresh: ``refresh`` parameter sent with document writes.
        index_prefix: Global prefix for physical index names.
        batch_size: Maximum documents per bulk request.
        facet_distribution_cap: Unused; facet-value search filters server-side
            with a terms ``include`` pattern.
        **kwargs: Additional keyword arguments forwarded to the client.
    """

    date_format = DATE_FORMAT_ISO8601
    min_embedding_length = 51

    def __init__(
        self,
        flavor: ElasticFlavor | str = ELASTICSEARCH,
        hosts: list[str] | None = None,
        api_key: str | None = None,
        username: str | None = None,
        password: str | None = None,
        verify_certs: bool = True,
        timeout: float = 10.0,
        connect_timeout: float = 5.0,
        refresh: bool | str = False,
        index_prefix: str = "",
        batch_size: int = 500,
        facet_distribution_cap: int = 1000,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            index_prefix=index_prefix,
            batch_size=batch_size,
            facet_distribution_cap=facet_distribution_cap,
        )
        if isinstance(flavor, str):
            if flavor not in FLAVORS:
                raise ConfigurationError(f"Unknown Elasticsearch-compatible flavor '{flavor}'")
            flavor = FLAVORS[flavor]
        self._flavor = flavor
        self._options = ClientOptions(
            hosts=list(hosts or []),
            api_key=api_key or None,
            username=username or None,
            password=password or None,
            verify_certs=verify_certs,
            timeout=timeout,
            extra=kwargs,
        )
        self._refresh = refresh
        self._client: Any = None

    @property
    def name(self) -> str:
        return self._flavor.name

    @property
    def display_name(self) -> str:
        return self._flavor.display_name

    @property
    def flavor(self) -> ElasticFlavor:
        return self._flavor

    def _get_client(self) -> Any:
        if self._client is None:
            if not self._options.hosts:
                raise ConfigurationError(f"{self.display_name} hosts are not configured.")
            self._client = self._flavor.build_client(self._options)
            logger.debug("Created %s client for %s", self.display_name, ", ".join(self._options.hosts))
        return self._client

    async def shutdown(self) -> None:
        """Close the client."""
        if self._client:
            await self._client.close()
            self._client = None

    async def _call(self, description: str, method: Callable[..., Awaitable[Any]], **kwargs: Any) -> Any:
        """Await a client call, mapping client exceptions onto adapter errors.

        Raises:
            NotFoundError: On HTTP 404.
            BackendError: On any other client or transport failure.
        """
        try:
            response = await method(**kwargs)
        except self._flavor.error_types() as e:
            status = self._flavor.status_of(e)
            if status == 404:
                raise NotFoundError(f"{self.display_name}: {description} returned 404") from e
            raise BackendError(
                f"{self.display_name} {description} failed: {e}",
                status_code=status,
                detail=self._flavor.detail_of(e),
            ) from e
        return self._flavor.unwrap(response)

    async def test_connection(self) -> bool:
        try:
            await self._call("info", self._get_client().info)
        except BackendError as e:
            # Authenticated but lacking cluster:monitor is still reachable
            if e.status_code == 403:
                return True
            logger.warning("%s connection test failed", self.display_name, exc_info=True)
            return False
        except AdapterError:
            logger.warning("%s connection test failed", self.display_name, exc_info=True)
            return False
        return True

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def create_index(self, index: Index) -> None:
        body: dict[str, Any] = {"mappings": schema.build_mappings(index, self._flavor.vector_type)}
        settings = self._flavor.index_settings(bool(index.fields_of_type(FieldType.EMBEDDING)))
        if settings:
            body["settings"] = settings
        await self._call("create index", self._get_client().indices.create, index=self.index_name(index), body=body)
        logger.info("Created %s index %s", self.display_name, self.index_name(index))

    async def update_index_settings(self, index: Index) -> None:
        await self._call(
            "put mapping",
            self._get_client().indices.put_mapping,
            index=self.index_name(index),
            body=schema.build_mappings(index, self._flavor.vector_type),
        )
        self.invalidate(index.handle)

    async def delete_index(self, index: Index) -> None:
        """Delete the index, or every index behind it when the name is an alias."""
        name = self.index_name(index)
        for target in await self._alias_targets(name) or [name]:
            try:
                await self._call("delete index", self._get_client().indices.delete, index=target)
            except NotFoundError:
                continue
            logger.info("Deleted %s index %s", self.display_name, target)

    async def index_exists(self, index: Index) -> bool:
        name = self.index_name(index)
        try:
            return bool(await self._call("index exists", self._get_client().indices.exists, index=name))
        except BackendError as e:
            if e.status_code != 403:
                raise
        # Restricted users may lack indices:admin/get; a count still proves existence
        try:
            await self._call("count", self._get_client().count, index=name)
        except NotFoundError:
            return False
        return True

    async def refresh_index(self, index: Index) -> None:
        """Make all writes to ``index`` visible to search."""
        await self._call("refresh", self._get_client().indices.refresh, index=self.index_name(index))

    async def _alias_targets(self, name: str) -> list[str]:
        """Concrete indexes behind alias ``name``; empty when it is not an alias."""
        try:
            aliases = await self._call("get alias", self._get_client().indices.get_alias, name=name)
        except NotFoundError:
            return []
        return sorted(aliases or {})

    # ── Documents ────────────────────────────────────────────────────────

    async def index_document(self, index: Index, document: Mapping[str, Any]) -> None:
        prepared = self.prepare_document(index, document)
        await self._call(
            "index document",
            self._get_client().index,
            index=self.index_name(index),
            id=prepared["objectID"],
            body=prepared,
            refresh=self._refresh,
        )

    async def index_documents(self, index: Index, documents: Sequence[Mapping[str, Any]]) -> BulkResult:
        """Upsert documents through the bulk API, one request per batch."""
        name = self.index_name(index)
        result = BulkResult()
        for chunk in self._chunks([self.prepare_document(index, d) for d in documents]):
            operations: list[dict[str, Any]] = []
            for document in chunk:
                operations.append({"index": {"_index": name, "_id": document["objectID"]}})
                operations.append(document)
            response = await self._call("bulk index", self._get_client().bulk, body=operations, refresh=self._refresh)
            result = result.merge(_bulk_outcome(response, "index"))
        if not result.ok:
            logger.warning("%s rejected %d document(s) in %s", self.display_name, len(result.failures), name)
        return result

    async def delete_document(self, index: Index, object_id: str) -> None:
        try:
            await self._call(
                "delete document",
                self._get_client().delete,
                index=self.index_name(index),
                id=str(object_id),
                refresh=self._refresh,
            )
        except NotFoundError:
            logger.debug("Document %s already absent from %s", object_id, self.index_name(index))

    async def delete_documents(self, index: Index, object_ids: Sequence[str]) -> BulkResult:
        name = self.index_name(index)
        result = BulkResult()
        for chunk in self._chunks([str(i) for i in object_ids]):
            operations = [{"delete": {"_index": name, "_id": object_id}} for object_id in chunk]
            response = await self._call("bulk delete", self._get_client().bulk, body=operations, refresh=self._refresh)
            result = result.merge(_bulk_outcome(response, "delete"))
        return result

    async def flush_index(self, index: Index) -> None:
        await self._call(
            "delete by query",
            self._get_client().delete_by_query,
            index=self.index_name(index),
            body={"query": {"match_all": {}}},
            conflicts="proceed",
            refresh=True,
        )

    async def get_document(self, index: Index, object_id: str) -> dict[str, Any] | None:
        try:
            response = await self._call(
                "get document", self._get_client().get, index=self.index_name(index), id=str(object_id)
            )
        except NotFoundError:
            return None
        if not response.get("found", True):
            return None
        return {**(response.get("_source") or {}), "objectID": str(response["_id"])}

    # ── Query building ───────────────────────────────────────────────────

    def build_filter_clauses(self, index: Index, filters: Mapping[str, Any]) -> list[dict[str, Any]]:
        """Translate unified filters into ``bool.filter`` clauses.

        Text fields are filtered through their ``keyword`` sub-field.

        Raises:
            TranslationError: For values the query DSL cannot express.
        """
        field_types = self.field_types(index)
        clauses: list[dict[str, Any]] = []
        for field, value in filters.items():
            if field == "objectID":
                ids = value if isinstance(value, list) else [value]
                clauses.append({"ids": {"values": [str(v) for v in ids]}})
                continue
            exact = schema.exact_field(field, field_types)
            if is_range_filter(value):
                low, high = range_bounds(value)
                bounds = {k: v for k, v in (("gte", low), ("lte", high)) if v is not None}
                if bounds:
                    clauses.append({"range": {exact: bounds}})
            elif isinstance(value, list):
                if not value:
                    raise TranslationError(f"Filter on '{field}' has an empty value list")
                clauses.append({"terms": {exact: value}})
            elif value is None:
                clauses.append({"bool": {"must_not": {"exists": {"field": field}}}})
            elif isinstance(value, Mapping):
                raise TranslationError(f"Filter on '{field}' must be a value, a list or a {{min, max}} range")
            else:
                clauses.append({"term": {exact: value}})
        return clauses

    def _geo_field_or_fail(self, index: Index, requested: str | None) -> str:
        field = self.geo_field(index, requested)
        if field is None:
            raise TranslationError(f"Index '{index.handle}' has no geo_point field for geo options")
        return field

    def build_search_body(
        self, index: Index, query: str, params: SearchParams, native: Mapping[str, Any]
    ) -> dict[str, Any]:
        """Build the ``_search`` body; native keys in ``native`` win."""
        field_types = self.field_types(index)
        offset = offset_from_page(params.page, params.per_page)
        body: dict[str, Any] = {"from": offset, "size": params.per_page, "track_total_hits": True}

        filters = self.build_filter_clauses(index, params.filters)
        geo = params.geo
        if geo.filter is not None:
            field = self._geo_field_or_fail(index, geo.filter.field)
            point = {"lat": geo.filter.lat, "lon": geo.filter.lng}
            filters.append({"geo_distance": {"distance": f"{geo.filter.radius}m", field: point}})

        text_query: dict[str, Any]
        if query:
            text_fields = sorted(index.fields_of_type(FieldType.TEXT), key=lambda m: m.weight, reverse=True)
            weighted = [f"{m.index_field_name}^{m.weight}" for m in text_fields]
            text_query = {"multi_match": {"query": query, "type": "bool_prefix"}}
            if weighted:
                text_query["multi_match"]["fields"] = weighted
        else:
            text_query = {"match_all": {}}

        vector_field = None
        if params.embedding is not None:
            vector_field = self.embedding_field(index, params.embedding.field)
            if vector_field is None:
                logger.debug("Ignoring embedding for %s: no embedding field mapped", index.handle)

        if vector_field is not None and params.embedding is not None:
            k = offset + params.per_page
            if self._flavor.vector_style == KNN_SEARCH_OPTION:
                knn: dict[str, Any] = {
                    "field": vector_field,
                    "query_vector": params.embedding.vector,
                    "k": k,
                    "num_candidates": min(max(k * 10, 100), MAX_NUM_CANDIDATES),
                }
                if filters:
                    knn["filter"] = filters
                body["knn"] = knn
                if query:
                    body["query"] = {"bool": {"must": [text_query], "filter": filters}}
            else:
                knn_clause = {"knn": {vector_field: {"vector": params.embedding.vector, "k": k}}}
                if query:
                    body["query"] = {
                        "bool": {"should": [text_query, knn_clause], "minimum_should_match": 1, "filter": filters}
                    }
                else:
                    body["query"] = {"bool": {"must": [knn_clause], "filter": filters}}
        elif filters:
            body["query"] = {"bool": {"must": [text_query], "filter": filters}}
        else:
            body["query"] = text_query

        sort: list[Any] = []
        if geo.sort is not None:
            field = self._geo_field_or_fail(index, geo.sort.field)
            sort.append(
                {
                    "_geo_distance": {
                        field: {"lat": geo.sort.lat, "lon": geo.sort.lng},
                        "order": geo.sort.direction,
                        "unit": "m",
                    }
                }
            )
        if params.unified_sort:
            sort.extend(
                {schema.exact_field(field, field_types): {"order": direction}}
                for field, direction in params.unified_sort.items()
            )
        elif isinstance(params.sort, list):
            sort.extend(params.sort)
        elif params.sort:
            sort.append(params.sort)
        if sort:
            body["sort"] = sort

        if params.attributes_to_retrieve is not None:
            body["_source"] = params.attributes_to_retrieve
        if params.highlight:
            fields = ["*"] if params.highlight is True else params.highlight
            body["highlight"] = {
                "fields": {field: {} for field in fields},
                "pre_tags": [HIGHLIGHT_PRE_TAG],
                "post_tags": [HIGHLIGHT_POST_TAG],
            }

        aggs: dict[str, Any] = {}
        for field in params.facets:
            aggs[field] = {"terms": {"field": schema.exact_field(field, field_types), "size": FACET_SIZE}}
        for field in params.stats:
            aggs[f"{field}_stats"] = {"stats": {"field": field}}
        for field, spec in params.histogram.items():
            histogram: dict[str, Any] = {"field": field, "interval": spec.interval, "min_doc_count": 0}
            bounds = {k: v for k, v in (("min", spec.min), ("max", spec.max)) if v is not None}
            if bounds:
                histogram["extended_bounds"] = bounds
            if len(bounds) == 2:
                histogram["hard_bounds"] = bounds
            aggs[f"{field}_histogram"] = {"histogram": histogram}
        if geo.grid is not None:
            field = self._geo_field_or_fail(index, geo.grid.field)
            aggs[GEO_CLUSTER_AGG] = {
                "geotile_grid": {"field": field, "precision": geo.grid.precision},
                "aggs": {"centroid": {"geo_centroid": {"field": field}}, "top": {"top_hits": {"size": 1}}},
            }
        if aggs:
            body["aggs"] = aggs

        suggest_field = self.suggest_field(index) if params.suggest and query else None
        if suggest_field:
            body["suggest"] = {
                "text": query,
                SUGGESTION_NAME: {
                    "phrase": {
                        "field": suggest_field,
                        "size": SUGGESTION_SIZE,
                        "gram_size": 3,
                        "direct_generator": [{"field": suggest_field, "suggest_mode": "missing"}],
                    }
                },
            }

        body.update(native)
        return body

    def parse_search_response(
        self, query: str, params: SearchParams, native: Mapping[str, Any], data: Mapping[str, Any]
    ) -> SearchResult:
        """Flatten a ``_search`` response into a ``SearchResult``."""
        hits_section = data.get("hits") or {}
        hits = normalize_hits(
            (
                {
                    **(h.get("_source") or {}),
                    "_id": h.get("_id"),
                    "_score": h.get("_score"),
                    "_highlights": normalize_highlight_data(h.get("highlight") or {}),
                }
                for h in hits_section.get("hits", [])
            ),
            "_id",
            "_score",
            None,
        )
        total = hits_section.get("total", len(hits))
        if isinstance(total, Mapping):
            total = total.get("value", 0)

        native_page = native_pagination(native, "from", "size")
        if native_page is not None:
            page, per_page = page_from_offset(*native_page), native_page[1]
        else:
            page, per_page = params.page, params.per_page

        aggregations = data.get("aggregations") or {}
        facets = {
            field: normalize_facet_counts(
                {
                    bucket.get("key_as_string", bucket["key"]): bucket["doc_count"]
                    for bucket in aggregations.get(field, {}).get("buckets", [])
                }
            )
            for field in params.facets
        }
        stats = {}
        for field in params.stats:
            agg = aggregations.get(f"{field}_stats")
            if agg:
                stats[field] = {"min": agg.get("min"), "max": agg.get("max")}
        histograms = {
            field: histogram_from_pairs(
                (b["key"], b["doc_count"]) for b in aggregations.get(f"{field}_histogram", {}).get("buckets", [])
            )
            for field in params.histogram
        }

        geo_clusters = None
        if params.geo.grid is not None:
            geo_clusters = [_geo_cluster(b) for b in aggregations.get(GEO_CLUSTER_AGG, {}).get("buckets", [])]

        suggestions: list[str] = []
        for entry in (data.get("suggest") or {}).get(SUGGESTION_NAME, []):
            for option in entry.get("options", []):
                text = option.get("text")
                if text and text.lower() != query.lower() and text not in suggestions:
                    suggestions.append(text)

        return build_search_result(
            hits=hits,
            total_hits=int(total),
            page=page,
            per_page=per_page,
            processing_time_ms=int(data.get("took", 0)),
            facets=facets,
            stats=stats,
            histograms=histograms,
            suggestions=suggestions,
            geo_clusters=geo_clusters,
            raw=dict(data),
        )

    # ── Search ───────────────────────────────────────────────────────────

    async def search(self, index: Index, query: str, options: Mapping[str, Any] | None = None) -> SearchResult:
        params, native = extract_all(options)
        body = self.build_search_body(index, query, params, native)
        data = await self._call("search", self._get_client().search, index=self.index_name(index), body=body)
        return self.parse_search_response(query, params, native, data)

    async def multi_search(
        self, queries: Sequence[tuple[Index, str, Mapping[str, Any] | None]]
    ) -> list[SearchResult]:
        """Run queries through ``_msearch``; results keep input order."""
        if not queries:
            return []
        plans = []
        searches: list[dict[str, Any]] = []
        for index, query, options in queries:
            params, native = extract_all(options)
            searches.append({"index": self.index_name(index)})
            searches.append(self.build_search_body(index, query, params, native))
            plans.append((query, params, native))

        data = await self._call("multi search", self._get_client().msearch, body=searches)
        results = []
        for (query, params, native), response in zip(plans, data.get("responses", []), strict=True):
            if "error" in response:
                raise BackendError(
                    f"{self.display_name} multi search item failed: {response['error']}",
                    status_code=response.get("status"),
                    detail=response["error"],
                )
            results.append(self.parse_search_response(query, params, native, response))
        return results

    async def search_facet_values(
        self,
        index: Index,
        fields: Sequence[str],
        query: str,
        max_per_field: int = 10,
        filters: Mapping[str, Any] | None = None,
    ) -> dict[str, list[FacetValue]]:
        """Substring facet search using a case-insensitive ``include`` regex on terms aggregations."""
        field_types = self.field_types(index)
        aggs: dict[str, Any] = {}
        for field in fields:
            terms: dict[str, Any] = {"field": schema.exact_field(field, field_types), "size": max_per_field}
            if query:
                terms["include"] = f".*{case_insensitive_pattern(query)}.*"
            aggs[field] = {"terms": terms}

        clauses = self.build_filter_clauses(index, filters or {})
        body: dict[str, Any] = {
            "size": 0,
            "query": {"bool": {"filter": clauses}} if clauses else {"match_all": {}},
            "aggs": aggs,
        }
        data = await self._call("facet search", self._get_client().search, index=self.index_name(index), body=body)

        matches: dict[str, list[FacetValue]] = {}
        aggregations = data.get("aggregations") or {}
        for field in fields:
            buckets = aggregations.get(field, {}).get("buckets", [])
            values = normalize_facet_counts({b.get("key_as_string", b["key"]): b["doc_count"] for b in buckets})
            if values:
                matches[field] = values[:max_per_field]
        return matches

    # ── Counting & enumeration ───────────────────────────────────────────

    async def get_document_count(self, index: Index) -> int:
        response = await self._call("count", self._get_client().count, index=self.index_name(index))
        return int(response.get("count", 0))

    async def get_all_document_ids(self, index: Index) -> list[str]:
        """Walk the whole index with ``search_after`` in index order."""
        ids: dict[str, None] = {}
        body: dict[str, Any] = {
            "query": {"match_all": {}},
            "size": ID_PAGE_SIZE,
            "_source": False,
            "sort": ["_doc"],
        }
        while True:
            data = await self._call("scan ids", self._get_client().search, index=self.index_name(index), body=body)
            hits = (data.get("hits") or {}).get("hits", [])
            for hit in hits:
                ids[str(hit["_id"])] = None
            if len(hits) < ID_PAGE_SIZE:
                break
            body = {**body, "search_after": hits[-1]["sort"]}
        return list(ids)

    # ── Schema ───────────────────────────────────────────────────────────

    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        try:
            response = await self._call(
                "get mapping", self._get_client().indices.get_mapping, index=self.index_name(index)
            )
        except AdapterError as e:
            return {"error": str(e)}
        # Keyed by the concrete index name, which differs from an alias
        return next(iter(response.values()), {}) if response else {}

    def parse_schema_fields(self, schema_body: dict[str, Any]) -> list[dict[str, str]]:
        return schema.parse_schema_fields(schema_body)

    # ── Atomic swap ──────────────────────────────────────────────────────

    @property
    def supports_atomic_swap(self) -> bool:
        return True

    async def build_swap_handle(self, index: Index) -> str:
        """``{name}_swap`` for a direct index, else the other of ``_swap_a``/``_swap_b``."""
        name = self.index_name(index)
        targets = await self._alias_targets(name)
        if not targets:
            return f"{name}_swap"
        return f"{name}_swap_b" if targets[0].endswith("_swap_a") else f"{name}_swap_a"

    async def swap_index(self, index: Index, swap_index: Index) -> None:
        """Point the production alias at ``swap_index`` and drop the old generation."""
        production = self.index_name(index)
        staged = self.index_name(swap_index)
        client = self._get_client()
        await self._call("refresh", client.indices.refresh, index=staged)

        current = await self._alias_targets(production)
        if current:
            actions: list[dict[str, Any]] = [{"remove": {"index": old, "alias": production}} for old in current]
            actions.append({"add": {"index": staged, "alias": production}})
            await self._call("update aliases", client.indices.update_aliases, body={"actions": actions})
            logger.info("Repointed %s alias %s from %s to %s", self.display_name, production, current, staged)
            for old in current:
                if old != staged:
                    await self.delete_index(index.with_physical_name(old))
        elif await self.index_exists(index):
            await self._replace_index_with_alias(production, staged)
        else:
            await self._call("put alias", client.indices.put_alias, index=staged, name=production)
            logger.info("Created %s alias %s -> %s", self.display_name, production, staged)
        self.invalidate(index.handle)

    async def _replace_index_with_alias(self, production: str, staged: str) -> None:
        """First swap: turn the direct index ``production`` into an alias of ``staged``.

        ``remove_index`` lets one ``_aliases`` request drop the index and
        add the alias atomically. Clusters that reject it fall back to
        delete-then-alias, which leaves a short window without results.
        """
        client = self._get_client()
        actions = [{"add": {"index": staged, "alias": production}}, {"remove_index": {"index": production}}]
        try:
            await self._call("update aliases", client.indices.update_aliases, body={"actions": actions})
        except BackendError:
            logger.warning(
                "%s rejected remove_index for %s; deleting it before aliasing (one-time search gap)",
                self.display_name,
                production,
                exc_info=True,
            )
            await self._call("delete index", client.indices.delete, index=production)
            await self._call("put alias", client.indices.put_alias, index=staged, name=production)
        logger.info("Converted %s index %s into an alias of %s", self.display_name, production, staged)


def case_insensitive_pattern(text: str) -> str:
    """Lucene regex matching ``text`` literally, ignoring case (``"Ro"`` → ``"[rR][oO]"``)."""
    parts = []
    for char in text:
        if char.lower() != char.upper():
            parts.append(f"[{char.lower()}{char.upper()}]")
        elif char in _REGEX_SPECIAL:
            parts.append("\\" + char)
        else:
            parts.append(char)
    return "".join(parts)


def _bulk_outcome(response: Mapping[str, Any], action: str) -> BulkResult:
    """Split a bulk response into accepted items and per-item rejections."""
    succeeded = 0
    failures: list[BulkFailure] = []
    for item in response.get("items", []):
        outcome = item.get(action, {})
        error = outcome.get("error")
        if error:
            reason = error.get("reason", str(error)) if isinstance(error, Mapping) else str(error)
            failures.append(BulkFailure(object_id=str(outcome.get("_id", "")), reason=reason))
        else:
            succeeded += 1
    return BulkResult(succeeded=succeeded, failures=failures)


def _geo_cluster(bucket: Mapping[str, Any]) -> GeoCluster:
    location = (bucket.get("centroid") or {}).get("location") or {}
    top = ((bucket.get("top") or {}).get("hits") or {}).get("hits") or []
    hit = None
    if top:
        hit = {**(top[0].get("_source") or {}), "objectID": str(top[0].get("_id"))}
    return GeoCluster(
        lat=float(location.get("lat", 0.0)),
        lng=float(location.get("lon", 0.0)),
        count=int(bucket.get("doc_count", 0)),
        hit=hit,
    )
