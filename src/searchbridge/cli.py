"""CLI entry point for searchbridge."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from searchbridge.adapters.base.registry import AdapterRegistry
    from searchbridge.config.settings import Settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="searchbridge",
        description="searchbridge — One interface over Algolia, Elasticsearch, OpenSearch, Meilisearch and Typesense",
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default=None,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["debug", "info", "warning", "error"],
        default=None,
        help="Log level (overrides config)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"searchbridge {_get_version()}",
    )

    commands = parser.add_subparsers(dest="command", required=True)

    ping = commands.add_parser("ping", help="Check that engines are reachable")
    ping.add_argument("engine", nargs="?", default=None, help="Engine type; all configured engines when omitted")

    search = commands.add_parser("search", help="Run a search against an index")
    search.add_argument("handle", help="Index handle")
    search.add_argument("query", help="Query text (may be empty)")
    search.add_argument("--page", type=int, default=None, help="1-based page number")
    search.add_argument("--per-page", type=int, default=None, help="Results per page")
    search.add_argument(
        "--option",
        action="append",
        default=[],
        metavar="KEY=JSON",
        help="Extra search option; the value is parsed as JSON, else used as a string",
    )

    schema = commands.add_parser("schema", help="Show the canonical schema fields of an index")
    schema.add_argument("handle", help="Index handle")

    count = commands.add_parser("count", help="Count the documents of an index")
    count.add_argument("handle", help="Index handle")

    rebuild = commands.add_parser("rebuild", help="Rebuild an index from a JSONL file")
    rebuild.add_argument("handle", help="Index handle")
    rebuild.add_argument("--jsonl", required=True, type=Path, help="JSON Lines file with one document per line")
    rebuild.add_argument("--batch-size", type=int, default=None, help="Documents per bulk request")
    rebuild.add_argument(
        "--allow-gap",
        action="store_true",
        help="Rebuild in place when the engine cannot swap atomically",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    from searchbridge.adapters.base.exceptions import AdapterError
    from searchbridge.config.settings import Settings
    from searchbridge.observability.logging import setup_logging

    try:
        settings = Settings.from_yaml(args.config) if args.config else Settings()
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.log_level:
        settings.observability.log_level = args.log_level
    setup_logging(settings.observability)

    try:
        output = asyncio.run(_run(args, settings))
    except (AdapterError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyError as e:
        print(f"Error: {e.args[0] if e.args else e}", file=sys.stderr)
        sys.exit(1)

    print(json.dumps(output, indent=2, ensure_ascii=False, default=str))


async def _run(args: argparse.Namespace, settings: Settings) -> Any:
    from searchbridge.adapters.base.registry import AdapterRegistry

    registry = AdapterRegistry(settings)
    try:
        return await _dispatch(args, settings, registry)
    finally:
        await registry.shutdown_all()


async def _dispatch(args: argparse.Namespace, settings: Settings, registry: AdapterRegistry) -> Any:
    if args.command == "ping":
        engines = [args.engine] if args.engine else sorted({i.engine_type for i in settings.indexes})
        if not engines:
            raise KeyError("No engine given and no indexes configured")
        return {engine: (await registry.for_engine(engine).health_check()).model_dump() for engine in engines}

    index = settings.get_index(args.handle)
    adapter = registry.for_index(index)

    if args.command == "search":
        options = _parse_options(args.option)
        if args.page is not None:
            options["page"] = args.page
        if args.per_page is not None:
            options["perPage"] = args.per_page
        result = await adapter.search(index, args.query, options)
        return result.model_dump(by_alias=True, exclude={"raw"})

    if args.command == "schema":
        return await adapter.get_schema_fields(index)

    if args.command == "count":
        return {"handle": index.handle, "count": await adapter.get_document_count(index)}

    if args.command == "rebuild":
        from searchbridge.swap import JsonlDocumentSource, SwapOrchestrator

        report = await SwapOrchestrator(adapter).rebuild(
            index,
            JsonlDocumentSource(args.jsonl),
            batch_size=args.batch_size,
            allow_gap=args.allow_gap,
        )
        return report.model_dump()

    raise ValueError(f"Unknown command: {args.command}")


def _parse_options(pairs: list[str]) -> dict[str, Any]:
    """Parse ``KEY=JSON`` pairs; values that are not valid JSON stay strings."""
    options: dict[str, Any] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise SystemExit(f"Invalid --option '{pair}': expected KEY=JSON")
        try:
            options[key] = json.loads(value)
        except json.JSONDecodeError:
            options[key] = value
    return options


def _get_version() -> str:
    """Get the package version."""
    from searchbridge import __version__

    return __version__


if __name__ == "__main__":
    main()
