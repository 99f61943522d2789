"""Result models — Canonical search result shape shared by every adapter.

Whatever the backend, ``search()`` returns a ``SearchResult``: normalized
hits plus optional facet, stats, histogram, suggestion and geo-cluster
sections. Bulk writes return a ``BulkResult`` that separates per-item
rejections from whole-request failures.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CanonicalModel(BaseModel):
    """Frozen model that serializes with camelCase keys."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class FacetValue(_CanonicalModel):
    """One distinct facet value and its document count."""

    value: Any = Field(description="Facet value as returned by the backend")
    count: int = Field(default=0, description="Number of matching documents")


class HistogramBucket(_CanonicalModel):
    """A fixed-width numeric bucket, keyed by its lower bound."""

    key: float = Field(description="Lower bound of the bucket")
    count: int = Field(default=0, description="Number of documents in the bucket")


class GeoCluster(_CanonicalModel):
    """A group of geographically close hits."""

    lat: float = Field(description="Cluster centroid latitude")
    lng: float = Field(description="Cluster centroid longitude")
    count: int = Field(default=0, description="Number of documents in the cluster")
    hit: dict[str, Any] | None = Field(default=None, description="One sample hit from the cluster")


class SearchResult(_CanonicalModel):
    """Canonical search result.

    ``total_pages`` always equals ``ceil(total_hits / per_page)`` when
    ``per_page > 0`` and ``0`` otherwise; build instances through
    ``searchbridge.query.normalize.build_search_result`` to keep it so.
    """

    hits: list[dict[str, Any]] = Field(default_factory=list, description="Normalized hits in rank order")
    total_hits: int = Field(default=0, description="Total number of matching documents")
    page: int = Field(default=1, description="1-based page number")
    per_page: int = Field(default=20, description="Hits per page")
    total_pages: int = Field(default=0, description="Number of pages")
    processing_time_ms: int = Field(default=0, description="Backend or round-trip time in ms")
    facets: dict[str, list[FacetValue]] = Field(default_factory=dict, description="Field → facet values")
    stats: dict[str, dict[str, float | None]] = Field(default_factory=dict, description="Field → {min, max}")
    histograms: dict[str, list[HistogramBucket]] = Field(default_factory=dict, description="Field → buckets")
    suggestions: list[str] = Field(default_factory=list, description="Alternate query strings")
    geo_clusters: list[GeoCluster] | None = Field(default=None, description="Geo grid clusters, when requested")
    raw: dict[str, Any] = Field(default_factory=dict, description="Untouched backend response")


class BulkFailure(_CanonicalModel):
    """A single item rejected by a bulk request."""

    object_id: str = Field(description="objectID of the rejected document")
    reason: str = Field(default="", description="Backend-provided rejection reason")


class BulkResult(_CanonicalModel):
    """Outcome of a bulk index or delete request that reached the backend."""

    succeeded: int = Field(default=0, description="Number of items the backend accepted")
    failures: list[BulkFailure] = Field(default_factory=list, description="Items the backend rejected")

    @property
    def ok(self) -> bool:
        return not self.failures

    def merge(self, other: BulkResult) -> BulkResult:
        return BulkResult(succeeded=self.succeeded + other.succeeded, failures=[*self.failures, *other.failures])

    def raise_for_failures(self) -> None:
        """Raise ``BulkOperationError`` if any item was rejected."""
        from searchbridge.adapters.base.exceptions import BulkOperationError

        if self.failures:
            ids = ", ".join(f.object_id for f in self.failures[:5])
            raise BulkOperationError(
                f"{len(self.failures)} item(s) rejected (first: {ids})",
                result=self,
            )
