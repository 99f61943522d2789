"""Client flavors for the Elasticsearch-compatible adapter.

Elasticsearch and OpenSearch share the query DSL, so one adapter serves
both. What differs is captured here as a small set of hooks: how the
async client is built, how its exceptions report an HTTP status, how
responses are unwrapped, and how vectors are declared and queried.

The client libraries are imported lazily so that installing one of them
is enough to use its engine.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from searchbridge.adapters.base.exceptions import ConfigurationError
from searchbridge.schema.elastic import DENSE_VECTOR, KNN_VECTOR

#: Vector query styles.
KNN_SEARCH_OPTION = "knn_search_option"  # top-level ``knn`` section (Elasticsearch 8)
KNN_QUERY_CLAUSE = "knn_query_clause"  # ``knn`` query inside the bool query (OpenSearch k-NN plugin)


@dataclass(frozen=True)
class ClientOptions:
    """Connection options shared by both flavors."""

    hosts: list[str]
    api_key: str | None = None
    username: str | None = None
    password: str | None = None
    verify_certs: bool = True
    timeout: float = 10.0
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ElasticFlavor:
    """Per-engine hooks for ``ElasticCompatAdapter``.

    Attributes:
        name: Engine family name.
        display_name: Human-readable engine name.
        vector_type: Native mapping type for embedding fields.
        vector_style: ``KNN_SEARCH_OPTION`` or ``KNN_QUERY_CLAUSE``.
        build_client: Build the async client from ``ClientOptions``.
        error_types: Exception classes raised by the client library.
        status_of: HTTP status carried by a client exception, if any.
        detail_of: Backend error body carried by a client exception.
        unwrap: Turn a client response into plain Python data.
    """

    name: str
    display_name: str
    vector_type: str
    vector_style: str
    build_client: Callable[[ClientOptions], Any]
    error_types: Callable[[], tuple[type[BaseException], ...]]
    status_of: Callable[[BaseException], int | None]
    detail_of: Callable[[BaseException], Any]
    unwrap: Callable[[Any], Any]

    def index_settings(self, has_vectors: bool) -> dict[str, Any]:
        """Index-level settings needed by this flavor."""
        if has_vectors and self.vector_type == KNN_VECTOR:
            return {"index": {"knn": True}}
        return {}


# ── Elasticsearch ────────────────────────────────────────────────────────


def _import_elasticsearch() -> Any:
    try:
        import elasticsearch
    except ImportError as e:
        raise ConfigurationError(
            "elasticsearch package is required.  Install with: pip install 'elasticsearch[async]>=8,<9'"
        ) from e
    return elasticsearch


def _build_elasticsearch(options: ClientOptions) -> Any:
    elasticsearch = _import_elasticsearch()
    kwargs: dict[str, Any] = {
        "hosts": options.hosts,
        "verify_certs": options.verify_certs,
        "request_timeout": options.timeout,
    }
    if options.api_key:
        kwargs["api_key"] = options.api_key
    elif options.username and options.password:
        kwargs["basic_auth"] = (options.username, options.password)
    kwargs.update(options.extra)
    return elasticsearch.AsyncElasticsearch(**kwargs)


def _elasticsearch_errors() -> tuple[type[BaseException], ...]:
    elasticsearch = _import_elasticsearch()
    return (elasticsearch.ApiError, elasticsearch.TransportError)


def _elasticsearch_status(error: BaseException) -> int | None:
    meta = getattr(error, "meta", None)
    status = getattr(meta, "status", None)
    return status if isinstance(status, int) else None


def _elasticsearch_detail(error: BaseException) -> Any:
    return getattr(error, "body", None) or str(error)


def _elasticsearch_unwrap(response: Any) -> Any:
    # ObjectApiResponse / ListApiResponse expose the decoded payload as ``.body``
    return getattr(response, "body", response)


ELASTICSEARCH = ElasticFlavor(
    name="elasticsearch",
    display_name="Elasticsearch",
    vector_type=DENSE_VECTOR,
    vector_style=KNN_SEARCH_OPTION,
    build_client=_build_elasticsearch,
    error_types=_elasticsearch_errors,
    status_of=_elasticsearch_status,
    detail_of=_elasticsearch_detail,
    unwrap=_elasticsearch_unwrap,
)


# ── OpenSearch ───────────────────────────────────────────────────────────


def _import_opensearch() -> Any:
    try:
        import opensearchpy
    except ImportError as e:
        raise ConfigurationError(
            "opensearch-py package is required.  Install with: pip install 'opensearch-py[async]'"
        ) from e
    return opensearchpy


def _build_opensearch(options: ClientOptions) -> Any:
    opensearchpy = _import_opensearch()
    kwargs: dict[str, Any] = {
        "hosts": options.hosts,
        "verify_certs": options.verify_certs,
        "ssl_show_warn": False,
        "timeout": options.timeout,
    }
    if options.api_key:
        kwargs["headers"] = {"Authorization": f"ApiKey {options.api_key}"}
    elif options.username and options.password:
        kwargs["http_auth"] = (options.username, options.password)
    kwargs.update(options.extra)
    return opensearchpy.AsyncOpenSearch(**kwargs)


def _opensearch_errors() -> tuple[type[BaseException], ...]:
    return (_import_opensearch().TransportError,)


def _opensearch_status(error: BaseException) -> int | None:
    # ConnectionError reports the string "N/A" instead of a status
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


def _opensearch_detail(error: BaseException) -> Any:
    return getattr(error, "info", None) or str(error)


OPENSEARCH = ElasticFlavor(
    name="opensearch",
    display_name="OpenSearch",
    vector_type=KNN_VECTOR,
    vector_style=KNN_QUERY_CLAUSE,
    build_client=_build_opensearch,
    error_types=_opensearch_errors,
    status_of=_opensearch_status,
    detail_of=_opensearch_detail,
    unwrap=lambda response: response,
)

FLAVORS: dict[str, ElasticFlavor] = {flavor.name: flavor for flavor in (ELASTICSEARCH, OPENSEARCH)}
