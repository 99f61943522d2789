"""Test helpers shared across the unit and integration suites."""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock

import httpx

from searchbridge.models.index import FieldMapping, FieldRole, FieldType, Index


def make_index(engine_type: str = "elasticsearch", handle: str = "products", **config: Any) -> Index:
    """Build the product catalogue index used across adapter tests."""
    return Index(
        handle=handle,
        name="Products",
        engine_type=engine_type,
        engine_config=config,
        field_mappings=[
            FieldMapping(index_field_name="title", index_field_type=FieldType.TEXT, weight=10, role=FieldRole.TITLE),
            FieldMapping(index_field_name="description", index_field_type=FieldType.TEXT, weight=3),
            FieldMapping(index_field_name="brand", index_field_type=FieldType.KEYWORD),
            FieldMapping(index_field_name="tags", index_field_type=FieldType.FACET),
            FieldMapping(index_field_name="price", index_field_type=FieldType.FLOAT),
            FieldMapping(index_field_name="stock", index_field_type=FieldType.INTEGER),
            FieldMapping(index_field_name="in_stock", index_field_type=FieldType.BOOLEAN),
            FieldMapping(
                index_field_name="published_at", index_field_type=FieldType.DATE, role=FieldRole.DATE
            ),
            FieldMapping(index_field_name="location", index_field_type=FieldType.GEO_POINT),
            FieldMapping(
                index_field_name="embedding",
                index_field_type=FieldType.EMBEDDING,
                resolver_config={"dimension": 3},
            ),
            FieldMapping(index_field_name="legacy", index_field_type=FieldType.TEXT, enabled=False),
        ],
    )


class ScriptedHttp:
    """Answers ``client.request(method, path, ...)`` from scripted routes.

    Each route holds a queue of responses; the last one is repeated once
    the queue is drained. Plain data is returned as a 200 JSON response
    and exceptions are raised. Every request is recorded in ``calls``.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Any]] = {}
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def add(self, method: str, path: str, *responses: Any) -> ScriptedHttp:
        self.routes.setdefault((method, path), []).extend(responses)
        return self

    async def __call__(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        self.calls.append((method, path, kwargs))
        queue = self.routes.get((method, path))
        if not queue:
            raise AssertionError(f"Unexpected request: {method} {path}")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json=response)

    def requests_to(self, method: str, path: str) -> list[dict[str, Any]]:
        """Keyword arguments of every request sent to ``method path``."""
        return [kwargs for m, p, kwargs in self.calls if (m, p) == (method, path)]

    def last_json(self, method: str, path: str) -> Any:
        return self.requests_to(method, path)[-1]["json"]

    def client(self) -> AsyncMock:
        mock_client = AsyncMock(spec=httpx.AsyncClient)
        mock_client.request.side_effect = self.__call__
        return mock_client


def jsonl_response(*lines: dict[str, Any]) -> httpx.Response:
    return httpx.Response(200, text="\n".join(json.dumps(line) for line in lines))
