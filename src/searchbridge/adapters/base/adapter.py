"""Base search adapter — Abstract interface for all search engine connectors.

Every engine family implements this interface so callers can index and
query any backend with one vocabulary. The adapter is responsible for:
  1. Index lifecycle (create, update settings, delete, exists)
  2. Document writes, single and bulk, plus point lookups
  3. Translating unified search options into a backend-native request
  4. Flattening the backend response into a canonical ``SearchResult``
  5. Schema introspection and the atomic swap primitives

Operations that a backend has no native primitive for fall back to the
generic implementations defined here (looping single calls, a size-1
search for lookups, client-side facet filtering).
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field

from searchbridge.adapters.base.exceptions import (
    AdapterError,
    BackendError,
    NotFoundError,
    SwapNotSupportedError,
)
from searchbridge.models.index import FieldType, Index
from searchbridge.models.result import BulkFailure, BulkResult, FacetValue, SearchResult
from searchbridge.query.normalize import (
    DATE_FORMAT_EPOCH_SECONDS,
    filter_facet_values,
    normalize_date_fields,
)
from searchbridge.schema.inference import DEFAULT_MIN_EMBEDDING_LENGTH, infer_schema_fields

logger = logging.getLogger(__name__)

SCHEMA_SAMPLE_SIZE = 5


class AdapterHealth(BaseModel):
    """Health status of a search adapter."""

    status: str = Field(description="Health status: healthy, unhealthy")
    latency_ms: int = Field(default=0, description="Latency of last health check in ms")
    last_check: str | None = Field(default=None, description="ISO timestamp of last health check")
    message: str | None = Field(default=None, description="Additional health message")


class SearchAdapter(ABC):
    """Abstract base class for search engine adapters.

    Subclasses must implement the lifecycle, single-document CRUD, search,
    counting, enumeration and schema operations. Bulk writes, multi-search,
    point lookups and facet-value search have generic fallbacks that
    adapters override with native primitives where the backend offers one.

    Adapter instances are bound to one connection configuration and may
    serve many indexes. Per-index memoized data (field types, suggest
    field) is keyed by index handle and dropped by ``invalidate()``.

    Args:
        index_prefix: Global prefix for physical index names.
        batch_size: Maximum documents per bulk request.
        facet_distribution_cap: Most distinct values facet-value search
            fetches per field before filtering.
    """

    #: Date representation the backend expects for ``date`` fields.
    date_format: str = DATE_FORMAT_EPOCH_SECONDS

    #: Minimum numeric-list length inferred as an embedding when sampling.
    min_embedding_length: int = DEFAULT_MIN_EMBEDDING_LENGTH

    def __init__(self, index_prefix: str = "", batch_size: int = 500, facet_distribution_cap: int = 1000) -> None:
        self._index_prefix = index_prefix
        self._batch_size = batch_size
        self._facet_distribution_cap = facet_distribution_cap
        self._field_type_cache: dict[str, dict[str, FieldType]] = {}
        self._suggest_field_cache: dict[str, str | None] = {}

    # ── Identity ─────────────────────────────────────────────────────────

    @property
    @abstractmethod
    def name(self) -> str:
        """Engine family name (e.g. 'elasticsearch', 'typesense')."""

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable engine name."""

    @property
    def batch_size(self) -> int:
        """Maximum documents per bulk request."""
        return self._batch_size

    @abstractmethod
    async def test_connection(self) -> bool:
        """Lightweight reachability probe.

        Never raises: failures are logged and reported as ``False``.
        """

    @abstractmethod
    async def shutdown(self) -> None:
        """Close the underlying client and release resources."""

    async def health_check(self) -> AdapterHealth:
        """Report adapter health based on ``test_connection``."""
        start = time.monotonic()
        reachable = await self.test_connection()
        return AdapterHealth(
            status="healthy" if reachable else "unhealthy",
            latency_ms=int((time.monotonic() - start) * 1000),
            last_check=datetime.now(UTC).isoformat(),
            message=f"{self.display_name} {'reachable' if reachable else 'unreachable'}",
        )

    # ── Naming & per-index caches ────────────────────────────────────────

    def index_name(self, index: Index) -> str:
        """Physical name of ``index`` in this backend."""
        return index.physical_name(self._index_prefix)

    def field_types(self, index: Index) -> dict[str, FieldType]:
        """Memoized field name → canonical type map for ``index``."""
        cached = self._field_type_cache.get(index.handle)
        if cached is None:
            cached = index.field_types()
            self._field_type_cache[index.handle] = cached
        return cached

    def suggest_field(self, index: Index) -> str | None:
        """Memoized highest-weight text field, used for spelling suggestions."""
        if index.handle not in self._suggest_field_cache:
            text_fields = sorted(index.fields_of_type(FieldType.TEXT), key=lambda m: m.weight, reverse=True)
            self._suggest_field_cache[index.handle] = text_fields[0].index_field_name if text_fields else None
        return self._suggest_field_cache[index.handle]

    def embedding_field(self, index: Index, requested: str | None = None) -> str | None:
        """The embedding field to query: the requested one, else the first mapped."""
        if requested:
            return requested
        fields = index.fields_of_type(FieldType.EMBEDDING)
        return fields[0].index_field_name if fields else None

    def geo_field(self, index: Index, requested: str | None = None) -> str | None:
        if requested:
            return requested
        fields = index.fields_of_type(FieldType.GEO_POINT)
        return fields[0].index_field_name if fields else None

    def invalidate(self, handle: str | None = None) -> None:
        """Drop memoized per-index data for one handle, or for all."""
        if handle is None:
            self._field_type_cache.clear()
            self._suggest_field_cache.clear()
        else:
            self._field_type_cache.pop(handle, None)
            self._suggest_field_cache.pop(handle, None)

    def prepare_document(self, index: Index, document: Mapping[str, Any]) -> dict[str, Any]:
        """Normalize a document before sending it: string ``objectID`` and date fields."""
        prepared = normalize_date_fields(index, document, self.date_format)
        if prepared.get("objectID") is not None:
            prepared["objectID"] = str(prepared["objectID"])
        return prepared

    def _chunks(self, items: Sequence[Any]) -> list[Sequence[Any]]:
        size = max(self._batch_size, 1)
        return [items[i : i + size] for i in range(0, len(items), size)]

    # ── Lifecycle ────────────────────────────────────────────────────────

    @abstractmethod
    async def create_index(self, index: Index) -> None:
        """Create the physical index and push its schema."""

    @abstractmethod
    async def update_index_settings(self, index: Index) -> None:
        """Push the current schema of ``index`` to the backend.

        Implementations must call ``invalidate(index.handle)``.
        """

    @abstractmethod
    async def delete_index(self, index: Index) -> None:
        """Delete the physical index; a missing index is not an error."""

    @abstractmethod
    async def index_exists(self, index: Index) -> bool:
        """Whether the physical index (or an alias of that name) exists."""

    # ── Documents ────────────────────────────────────────────────────────

    @abstractmethod
    async def index_document(self, index: Index, document: Mapping[str, Any]) -> None:
        """Upsert one document. ``document`` must carry ``objectID``."""

    @abstractmethod
    async def delete_document(self, index: Index, object_id: str) -> None:
        """Delete one document; a missing document is treated as success."""

    @abstractmethod
    async def flush_index(self, index: Index) -> None:
        """Remove every document while keeping the index and its settings."""

    async def index_documents(self, index: Index, documents: Sequence[Mapping[str, Any]]) -> BulkResult:
        """Upsert many documents.

        The default loops ``index_document`` and records backend rejections
        per item. Adapters override this with the native bulk API.
        """
        result = BulkResult()
        for document in documents:
            object_id = str(document.get("objectID", ""))
            try:
                await self.index_document(index, document)
            except BackendError as e:
                result = result.merge(BulkResult(failures=[BulkFailure(object_id=object_id, reason=str(e))]))
            else:
                result = result.merge(BulkResult(succeeded=1))
        return result

    async def delete_documents(self, index: Index, object_ids: Sequence[str]) -> BulkResult:
        """Delete many documents, looping ``delete_document`` by default."""
        result = BulkResult()
        for object_id in object_ids:
            try:
                await self.delete_document(index, str(object_id))
            except BackendError as e:
                result = result.merge(BulkResult(failures=[BulkFailure(object_id=str(object_id), reason=str(e))]))
            else:
                result = result.merge(BulkResult(succeeded=1))
        return result

    async def get_document(self, index: Index, object_id: str) -> dict[str, Any] | None:
        """Fetch one document by ``objectID``.

        The default runs a size-1 search filtered on ``objectID``; adapters
        with a native lookup override it.

        Returns:
            The document, or None if it does not exist.
        """
        try:
            result = await self.search(index, "", {"filters": {"objectID": str(object_id)}, "perPage": 1})
        except NotFoundError:
            return None
        for hit in result.hits:
            if str(hit.get("objectID")) == str(object_id):
                return hit
        return None

    # ── Search ───────────────────────────────────────────────────────────

    @abstractmethod
    async def search(self, index: Index, query: str, options: Mapping[str, Any] | None = None) -> SearchResult:
        """Run a query with unified (and backend-native) options.

        Args:
            index: Index to query.
            query: Full-text query; empty matches every document.
            options: Open option bag; see ``searchbridge.query.options``.

        Returns:
            The canonical search result.
        """

    async def multi_search(
        self, queries: Sequence[tuple[Index, str, Mapping[str, Any] | None]]
    ) -> list[SearchResult]:
        """Run several queries; results are returned in input order.

        The default issues the queries sequentially.
        """
        return [await self.search(index, query, options) for index, query, options in queries]

    async def search_facet_values(
        self,
        index: Index,
        fields: Sequence[str],
        query: str,
        max_per_field: int = 10,
        filters: Mapping[str, Any] | None = None,
    ) -> dict[str, list[FacetValue]]:
        """Find facet values containing ``query`` for type-ahead pickers.

        Native facet searches of most engines only match value prefixes, so
        the facet distribution is fetched with one search (at most
        ``facet_distribution_cap`` values per field) and filtered client-side
        by case-insensitive substring. Fields with no matching value are
        omitted.
        """
        options: dict[str, Any] = {"facets": list(fields), "perPage": 1, **self.facet_distribution_options()}
        if filters:
            options["filters"] = dict(filters)
        result = await self.search(index, "", options)
        matches: dict[str, list[FacetValue]] = {}
        for field in fields:
            distribution = result.facets.get(field, [])
            if len(distribution) >= self._facet_distribution_cap:
                logger.warning(
                    "Facet '%s' of %s has at least %d values; facet search only sees the most frequent ones",
                    field,
                    self.index_name(index),
                    self._facet_distribution_cap,
                )
            values = filter_facet_values(distribution, query, max_per_field)
            if values:
                matches[field] = values
        return matches

    def facet_distribution_options(self) -> dict[str, Any]:
        """Native search options raising the per-field facet value limit."""
        return {}

    # ── Counting & enumeration ───────────────────────────────────────────

    @abstractmethod
    async def get_document_count(self, index: Index) -> int:
        """Number of documents in the index."""

    @abstractmethod
    async def get_all_document_ids(self, index: Index) -> list[str]:
        """Every ``objectID`` in the index, each exactly once."""

    # ── Schema ───────────────────────────────────────────────────────────

    @abstractmethod
    async def get_index_schema(self, index: Index) -> dict[str, Any]:
        """Raw backend schema, or ``{"error": message}`` if it cannot be read."""

    def parse_schema_fields(self, schema: dict[str, Any]) -> list[dict[str, str]]:
        """Parse ``{name, type}`` entries out of a raw schema.

        Backends whose schema carries no type information return an empty
        list, which makes ``get_schema_fields`` fall back to sampling.
        """
        return []

    async def sample_documents(self, index: Index, size: int = SCHEMA_SAMPLE_SIZE) -> list[dict[str, Any]]:
        """A few live documents for schema inference, without normalizer keys."""
        result = await self.search(index, "", {"perPage": size})
        return [{k: v for k, v in hit.items() if not k.startswith("_")} for hit in result.hits]

    async def get_schema_fields(self, index: Index) -> list[dict[str, str]]:
        """Canonical ``{name, type}`` list for the live index.

        Parsed from the raw schema when possible; otherwise inferred from
        sampled documents.
        """
        schema = await self.get_index_schema(index)
        if "error" not in schema:
            fields = self.parse_schema_fields(schema)
            if fields:
                return fields
        try:
            samples = await self.sample_documents(index)
        except AdapterError:
            logger.warning("Could not sample documents from %s for schema inference", self.index_name(index))
            return []
        return infer_schema_fields(samples, self.min_embedding_length)

    # ── Atomic swap ──────────────────────────────────────────────────────

    @property
    def supports_atomic_swap(self) -> bool:
        return False

    async def build_swap_handle(self, index: Index) -> str:
        """Physical name the next generation of ``index`` is staged in."""
        return f"{self.index_name(index)}_swap"

    async def swap_index(self, index: Index, swap_index: Index) -> None:
        """Promote the fully populated ``swap_index`` to serve ``index``.

        Raises:
            SwapNotSupportedError: If the backend has no swap primitive.
        """
        raise SwapNotSupportedError(f"{self.display_name} does not support atomic index swaps")
