"""Tests for the command-line interface."""

from __future__ import annotations

import json
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from searchbridge.adapters.base.adapter import AdapterHealth
from searchbridge.adapters.base.exceptions import BackendError
from searchbridge.cli import _parse_options, build_parser, main
from searchbridge.models.result import SearchResult
from searchbridge.swap import SwapReport

CONFIG = """
engines:
  meilisearch:
    host: http://localhost:7700
indexes:
  - handle: products
    engine_type: meilisearch
    field_mappings:
      - index_field_name: title
"""


# ── Fixtures ──────────────────────────────────────────────────────────────────


@pytest.fixture
def config(tmp_path: Path) -> Path:
    path = tmp_path / "searchbridge.yaml"
    path.write_text(CONFIG, encoding="utf-8")
    return path


@pytest.fixture
def adapter() -> MagicMock:
    mock = MagicMock()
    mock.search = AsyncMock(
        return_value=SearchResult(hits=[{"objectID": "1"}], total_hits=1, per_page=20, total_pages=1)
    )
    mock.get_document_count = AsyncMock(return_value=42)
    mock.get_schema_fields = AsyncMock(return_value=[{"name": "title", "type": "text"}])
    mock.health_check = AsyncMock(return_value=AdapterHealth(status="healthy", latency_ms=3))
    return mock


@pytest.fixture
def registry(adapter: MagicMock) -> Iterator[MagicMock]:
    with (
        patch("searchbridge.adapters.base.registry.AdapterRegistry") as registry_class,
        patch("searchbridge.observability.logging.setup_logging"),
    ):
        instance = registry_class.return_value
        instance.for_index.return_value = adapter
        instance.for_engine.return_value = adapter
        instance.shutdown_all = AsyncMock()
        yield instance


# ── Parsing ───────────────────────────────────────────────────────────────────


class TestParser:
    def test_search_arguments(self) -> None:
        args = build_parser().parse_args(
            ["-c", "cfg.yaml", "search", "products", "shoe", "--per-page", "5", "--option", "facets=[\"brand\"]"]
        )
        assert args.config == "cfg.yaml"
        assert (args.command, args.handle, args.query, args.per_page) == ("search", "products", "shoe", 5)
        assert args.option == ['facets=["brand"]']

    def test_rebuild_requires_jsonl(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["rebuild", "products"])

    def test_command_required(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_parse_options(self) -> None:
        assert _parse_options(['filters={"brand": "Ridge"}', "typoTolerance=false", "q=plain text"]) == {
            "filters": {"brand": "Ridge"},
            "typoTolerance": False,
            "q": "plain text",
        }

    def test_invalid_option(self) -> None:
        with pytest.raises(SystemExit):
            _parse_options(["no-separator"])


# ── Commands ──────────────────────────────────────────────────────────────────


class TestCommands:
    def test_search(
        self, config: Path, registry: MagicMock, adapter: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        main(["-c", str(config), "search", "products", "shoe", "--page", "2", "--option", "suggest=true"])

        index, query, options = adapter.search.await_args.args
        assert index.handle == "products"
        assert query == "shoe"
        assert options == {"suggest": True, "page": 2}
        output = json.loads(capsys.readouterr().out)
        assert output["totalHits"] == 1
        assert "raw" not in output
        registry.shutdown_all.assert_awaited_once()

    def test_count(self, config: Path, registry: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
        main(["-c", str(config), "count", "products"])
        assert json.loads(capsys.readouterr().out) == {"handle": "products", "count": 42}

    def test_schema(self, config: Path, registry: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
        main(["-c", str(config), "schema", "products"])
        assert json.loads(capsys.readouterr().out) == [{"name": "title", "type": "text"}]

    def test_ping_configured_engines(
        self, config: Path, registry: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        main(["-c", str(config), "ping"])
        registry.for_engine.assert_called_once_with("meilisearch")
        assert json.loads(capsys.readouterr().out)["meilisearch"]["status"] == "healthy"

    def test_rebuild(
        self, config: Path, tmp_path: Path, registry: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        jsonl = tmp_path / "products.jsonl"
        jsonl.write_text('{"objectID": "1"}\n', encoding="utf-8")
        report = SwapReport(handle="products", target="products_swap", documents=1)

        with patch("searchbridge.swap.SwapOrchestrator") as orchestrator_class:
            orchestrator_class.return_value.rebuild = AsyncMock(return_value=report)
            main(["-c", str(config), "rebuild", "products", "--jsonl", str(jsonl), "--allow-gap"])

        assert orchestrator_class.return_value.rebuild.await_args.kwargs == {"batch_size": None, "allow_gap": True}
        assert json.loads(capsys.readouterr().out)["target"] == "products_swap"


class TestErrors:
    def test_missing_config(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit) as exc_info:
            main(["-c", str(tmp_path / "missing.yaml"), "count", "products"])
        assert exc_info.value.code == 1
        assert "Config file not found" in capsys.readouterr().err

    def test_unknown_index(self, config: Path, registry: MagicMock, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit):
            main(["-c", str(config), "count", "articles"])
        assert "No index configured with handle 'articles'" in capsys.readouterr().err
        registry.shutdown_all.assert_awaited_once()

    def test_backend_error(
        self, config: Path, registry: MagicMock, adapter: MagicMock, capsys: pytest.CaptureFixture[str]
    ) -> None:
        adapter.get_document_count.side_effect = BackendError("Meilisearch request failed with HTTP 503")
        with pytest.raises(SystemExit) as exc_info:
            main(["-c", str(config), "count", "products"])
        assert exc_info.value.code == 1
        err = capsys.readouterr().err
        assert "HTTP 503" in err
