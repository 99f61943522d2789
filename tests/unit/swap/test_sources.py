"""Tests for rebuild document sources."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from searchbridge.models.index import Index
from searchbridge.swap import JsonlDocumentSource
from tests.helpers import make_index


@pytest.fixture
def index() -> Index:
    return make_index()


def _write(path: Path, *lines: str) -> Path:
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


class TestJsonlDocumentSource:
    async def test_batches_and_ids(self, tmp_path: Path, index: Index) -> None:
        path = _write(
            tmp_path / "products.jsonl",
            json.dumps({"objectID": 1, "title": "Trail"}),
            "",
            json.dumps({"id": "b-2", "title": "Road"}),
            json.dumps({"objectID": "3", "id": "ignored"}),
        )

        batches = [batch async for batch in JsonlDocumentSource(path).iter_batches(index, 2)]

        assert [[d["objectID"] for d in b] for b in batches] == [["1", "b-2"], ["3"]]
        assert batches[0][1]["id"] == "b-2"

    async def test_empty_file(self, tmp_path: Path, index: Index) -> None:
        path = _write(tmp_path / "empty.jsonl", "")
        assert [batch async for batch in JsonlDocumentSource(path).iter_batches(index, 10)] == []

    @pytest.mark.parametrize(
        ("line", "message"),
        [
            ("[1, 2]", "expected a JSON object"),
            ('{"title": "no id"}', "no objectID or id"),
        ],
    )
    async def test_invalid_lines(self, tmp_path: Path, index: Index, line: str, message: str) -> None:
        path = _write(tmp_path / "bad.jsonl", json.dumps({"objectID": "1"}), line)
        with pytest.raises(ValueError, match=message):
            [batch async for batch in JsonlDocumentSource(path).iter_batches(index, 10)]

    async def test_malformed_json(self, tmp_path: Path, index: Index) -> None:
        path = _write(tmp_path / "broken.jsonl", "{not json")
        with pytest.raises(ValueError):
            [batch async for batch in JsonlDocumentSource(path).iter_batches(index, 10)]
