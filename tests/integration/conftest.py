"""Integration test fixtures — Docker-based search backends.

Expects backends to be running via:
    docker compose -f deployments/docker/docker-compose.test.yml up -d

A backend that does not answer within ``SEARCHBRIDGE_IT_WAIT`` seconds
(default 5) is skipped, so the suite stays fast when nothing is running.
"""

from __future__ import annotations

import contextlib
import os
import time
from collections.abc import AsyncIterator, Callable

import httpx
import pytest

from searchbridge.adapters.base.adapter import SearchAdapter
from searchbridge.adapters.base.exceptions import NotFoundError
from searchbridge.models.index import Index
from tests.helpers import make_index
from tests.integration.catalogue import CATALOGUE

ELASTICSEARCH_URL = "http://localhost:9200"
OPENSEARCH_URL = "http://localhost:9201"
MEILISEARCH_URL = "http://localhost:7700"
MEILISEARCH_KEY = "test-master-key"
TYPESENSE_URL = "http://localhost:8108"
TYPESENSE_KEY = "test-key"

def _wait_for_service(url: str, headers: dict[str, str] | None = None) -> bool:
    """Block until *url* returns HTTP 200, or the wait budget runs out."""
    deadline = time.monotonic() + float(os.environ.get("SEARCHBRIDGE_IT_WAIT", "5"))
    while True:
        try:
            r = httpx.get(url, headers=headers, timeout=5)
            if r.status_code == 200:
                return True
        except httpx.HTTPError:
            pass
        if time.monotonic() >= deadline:
            return False
        time.sleep(1)


def _require(url: str, name: str, headers: dict[str, str] | None = None) -> str:
    if not _wait_for_service(url, headers):
        pytest.skip(f"{name} not available at {url}")
    return url


@pytest.fixture(scope="session")
def elasticsearch_ready() -> str:
    return _require(ELASTICSEARCH_URL, "Elasticsearch")


@pytest.fixture(scope="session")
def opensearch_ready() -> str:
    return _require(OPENSEARCH_URL, "OpenSearch")


@pytest.fixture(scope="session")
def meilisearch_ready() -> str:
    return _require(f"{MEILISEARCH_URL}/health", "Meilisearch") and MEILISEARCH_URL


@pytest.fixture(scope="session")
def typesense_ready() -> str:
    return _require(f"{TYPESENSE_URL}/health", "Typesense") and TYPESENSE_URL


# ── Adapters ─────────────────────────────────────────────────────────


def _elasticsearch(request: pytest.FixtureRequest) -> SearchAdapter:
    from searchbridge.adapters.elastic.adapter import ElasticCompatAdapter

    return ElasticCompatAdapter(
        flavor="elasticsearch", hosts=[request.getfixturevalue("elasticsearch_ready")], refresh=True
    )


def _opensearch(request: pytest.FixtureRequest) -> SearchAdapter:
    from searchbridge.adapters.elastic.adapter import ElasticCompatAdapter

    return ElasticCompatAdapter(flavor="opensearch", hosts=[request.getfixturevalue("opensearch_ready")], refresh=True)


def _meilisearch(request: pytest.FixtureRequest) -> SearchAdapter:
    from searchbridge.adapters.meilisearch.adapter import MeilisearchAdapter

    return MeilisearchAdapter(host=request.getfixturevalue("meilisearch_ready"), api_key=MEILISEARCH_KEY)


def _typesense(request: pytest.FixtureRequest) -> SearchAdapter:
    from searchbridge.adapters.typesense.adapter import TypesenseAdapter

    request.getfixturevalue("typesense_ready")
    return TypesenseAdapter(host="localhost", port=8108, api_key=TYPESENSE_KEY)


ADAPTER_FACTORIES: dict[str, Callable[[pytest.FixtureRequest], SearchAdapter]] = {
    "elasticsearch": _elasticsearch,
    "opensearch": _opensearch,
    "meilisearch": _meilisearch,
    "typesense": _typesense,
}


@pytest.fixture(
    params=[pytest.param(engine, marks=getattr(pytest.mark, engine)) for engine in ADAPTER_FACTORIES],
)
async def live_adapter(request: pytest.FixtureRequest) -> AsyncIterator[SearchAdapter]:
    """An adapter connected to one running backend."""
    adapter = ADAPTER_FACTORIES[request.param](request)
    yield adapter
    await adapter.shutdown()


async def drop_everything(adapter: SearchAdapter, index: Index) -> None:
    """Delete an index and any staging generation it left behind."""
    with contextlib.suppress(NotFoundError):
        await adapter.delete_index(index)
    staged = index.with_physical_name(await adapter.build_swap_handle(index))
    with contextlib.suppress(NotFoundError):
        await adapter.delete_index(staged)


@pytest.fixture
async def seeded_index(live_adapter: SearchAdapter) -> AsyncIterator[Index]:
    """The product catalogue, freshly created and indexed."""
    index = make_index(live_adapter.name, handle="sb_it_products")
    await drop_everything(live_adapter, index)
    await live_adapter.create_index(index)
    result = await live_adapter.index_documents(index, CATALOGUE)
    result.raise_for_failures()
    yield index
    await drop_everything(live_adapter, index)
