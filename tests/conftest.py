"""Shared test fixtures and configuration."""

from __future__ import annotations

from typing import Any

import pytest

from searchbridge.config.settings import Settings
from searchbridge.models.index import Index
from tests.helpers import make_index


@pytest.fixture
def settings() -> Settings:
    """Create a test Settings instance with every engine configured."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        engines={
            "elasticsearch": {"hosts": ["http://localhost:9200"]},
            "opensearch": {"hosts": ["http://localhost:9201"]},
            "meilisearch": {"host": "http://localhost:7700", "api_key": "test-master-key"},
            "typesense": {"host": "localhost", "api_key": "test-key"},
            "algolia": {"app_id": "APPID", "api_key": "admin-key", "search_api_key": "search-key"},
        },
    )


@pytest.fixture
def products_index() -> Index:
    return make_index()


@pytest.fixture
def sample_documents() -> list[dict[str, Any]]:
    """Sample catalogue documents."""
    return [
        {
            "objectID": "1",
            "title": "Trail Running Shoe",
            "description": "Lightweight shoe for rocky trails.",
            "brand": "Ridge",
            "tags": ["running", "outdoor"],
            "price": 129.0,
            "stock": 12,
            "in_stock": True,
            "published_at": "2024-06-15T00:00:00Z",
            "location": {"lat": 48.85, "lng": 2.35},
        },
        {
            "objectID": "2",
            "title": "Road Running Shoe",
            "description": "Cushioned shoe for long road runs.",
            "brand": "Pace",
            "tags": ["running"],
            "price": 99.5,
            "stock": 0,
            "in_stock": False,
            "published_at": 1718409600,
            "location": {"lat": 51.5, "lng": -0.12},
        },
    ]
