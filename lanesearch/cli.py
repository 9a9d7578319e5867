#!/usr/bin/env python3
"""Command-line interface for lanesearch.

Runs a search from the terminal and prints each source lane, optionally
loading more batches per lane afterwards.

Additional commands:
- cache: Sweep, clear, inspect the search cache
- validate: Validate configuration
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from lanesearch.core.cache import CacheStore, create_cache_store, entries_summary
from lanesearch.core.config import Config
from lanesearch.core.logging_setup import configure_logging, level_from_name
from lanesearch.core.normalizer import QueryNormalizer
from lanesearch.core.orchestrator import SearchOrchestrator
from lanesearch.sources import build_registry

logger = logging.getLogger(__name__)


def parse_args(argv: List[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="lanesearch",
        description="Federated incremental search across content sources",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  lanesearch search 카리나
  lanesearch search "#aespa" --sources twitter youtube --more 2
  lanesearch search winter --json
  lanesearch cache sweep
  lanesearch cache show 카리나
  lanesearch validate --strict
        """,
    )
    parser.add_argument("--config", help="Path to YAML or TOML config file")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Logging level (default: from config, INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Use JSON structured logging format",
    )
    parser.add_argument(
        "--memory-cache",
        action="store_true",
        help="Keep the search cache in memory for this run only",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    search_parser = subparsers.add_parser("search", help="Search all enabled sources")
    search_parser.add_argument("query", help="Text to search for")
    search_parser.add_argument(
        "--sources", nargs="+", metavar="SOURCE", help="Only search these sources"
    )
    search_parser.add_argument(
        "--more", type=int, default=0, metavar="N", help="Load N more batches per lane"
    )
    search_parser.add_argument("--json", action="store_true", help="Output as JSON")

    cache_parser = subparsers.add_parser("cache", help="Manage the search cache")
    cache_subparsers = cache_parser.add_subparsers(dest="cache_action", required=True)
    cache_subparsers.add_parser("sweep", help="Remove expired cache entries")
    cache_subparsers.add_parser("clear", help="Clear all cache entries")
    cache_stats_parser = cache_subparsers.add_parser("stats", help="Show cache statistics")
    cache_stats_parser.add_argument("--json", action="store_true", help="Output as JSON")
    cache_show_parser = cache_subparsers.add_parser("show", help="Show cached entries for a query")
    cache_show_parser.add_argument("query", help="Query to look up")

    validate_parser = subparsers.add_parser("validate", help="Validate configuration")
    validate_parser.add_argument(
        "--strict", action="store_true", help="Exit with error if validation fails"
    )

    return parser.parse_args(argv)


def build_cache(config: Config, memory: bool = False) -> CacheStore:
    return create_cache_store(
        backend="memory" if memory else config.get("cache.backend", "sqlite"),
        path=config.get("cache.path", "lanesearch.db"),
        ttl_hours=float(config.get("cache.ttl_hours", 24)),
    )


async def main_async(args: argparse.Namespace) -> int:
    """Main async entry point.

    Returns:
        Exit code (0 for success, non-zero for errors)
    """
    config = Config(args.config)

    level_name = args.log_level or config.get("logging.level", "INFO")
    log_file = config.get("logging.file")
    configure_logging(
        log_file=Path(log_file) if log_file else None,
        level=level_from_name(level_name),
        use_json=args.json_logs or bool(config.get("logging.json", False)),
    )
    logger.info("lanesearch CLI started with command: %s", args.command)

    if args.command == "search":
        return await handle_search(args, config)
    elif args.command == "cache":
        return await handle_cache(args, config)
    elif args.command == "validate":
        return await handle_validate(args, config)
    return 2


async def handle_search(args: argparse.Namespace, config: Config) -> int:
    """Handle the search command."""
    source_ids = args.sources or config.enabled_sources
    registry = build_registry(config, source_ids)
    normalizer = QueryNormalizer(
        {**QueryNormalizer().alias_map, **(config.get_section("aliases") or {})}
    )
    cache = build_cache(config, args.memory_cache)
    orchestrator = SearchOrchestrator(
        registry,
        cache,
        page_size=int(config.get("search.page_size", 6)),
        normalizer=normalizer,
        enabled_sources=source_ids,
        language=config.get("search.language", "ko"),
    )

    async with orchestrator:
        await orchestrator.search(args.query)
        for _ in range(max(0, args.more)):
            await asyncio.gather(*(orchestrator.load_more(s) for s in source_ids))

        if args.json:
            output = {source_id: lane.to_dict() for source_id, lane in orchestrator.lanes.items()}
            print(json.dumps(output, indent=2, ensure_ascii=False))
        else:
            print_lanes(orchestrator)
    await cache.close()

    failed = [lane for lane in orchestrator.lanes.values() if lane.error is not None]
    return 1 if failed and len(failed) == len(orchestrator.lanes) else 0


def print_lanes(orchestrator: SearchOrchestrator) -> None:
    query = orchestrator.query
    print(f"Results for '{query.text if query else ''}':")
    for source_id, lane in orchestrator.lanes.items():
        status = "more available" if lane.has_more else "end of results"
        print(f"\n=== {source_id} ({len(lane.results)} shown, {status}) ===")
        if lane.error is not None:
            print(f"  error [{lane.error.kind.value}]: {lane.error.message}")
        for index, item in enumerate(lane.results, 1):
            author = f" - {item.author}" if item.author else ""
            print(f"  {index:>2}. {item.title or '(untitled)'}{author}")
            print(f"      {item.canonical_url}")
        if lane.history:
            print(f"  ({len(lane.history)} previously shown)")


async def handle_cache(args: argparse.Namespace, config: Config) -> int:
    """Handle the cache command."""
    cache = build_cache(config, args.memory_cache)

    if args.cache_action == "sweep":
        removed = await cache.sweep_expired()
        print(f"Removed {removed} expired cache entries.")
    elif args.cache_action == "clear":
        cleared = await cache.clear()
        print(f"Cleared {cleared} cache entries.")
    elif args.cache_action == "show":
        key = QueryNormalizer.cache_key(args.query)
        entries = await cache.get(key)
        if not entries:
            print(f"No live cache entries for '{key}'.")
        for summary in entries_summary(entries):
            print(
                f"{summary['source_id']:<14} {summary['displayed_count']:>3}/{summary['results']:<3} "
                f"shown  more={summary['has_more_upstream']}  updated={summary['updated_at']}"
            )
    elif args.cache_action == "stats":
        stats = cache.get_stats()
        backend = getattr(cache.backend, "db", None)
        if backend is not None:
            stats.update(backend.get_statistics())
        if args.json:
            print(json.dumps(stats, indent=2))
        else:
            print("Cache Statistics")
            print("=" * 30)
            print(f"Backend:  {stats['backend']}")
            print(f"TTL:      {stats['ttl_hours']:g}h")
            print(f"Entries:  {stats.get('cache_entries', 0):,}")
            print(f"Queries:  {stats.get('cached_queries', 0):,}")
            for source_id, count in stats.get("entries_by_source", {}).items():
                print(f"  {source_id:<14} {count:,}")

    await cache.close()
    return 0


async def handle_validate(args: argparse.Namespace, config: Config) -> int:
    """Handle the validate command."""
    result = config.validate()

    print(result)

    if args.strict and not result.is_valid:
        return 1

    return 0


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        exit_code = asyncio.run(main_async(args))
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nAborted by user")
        sys.exit(130)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
