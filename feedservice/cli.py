"""Command-line interface for the feed service."""

import argparse
import logging
import sys
from typing import Dict, List, Optional

__all__ = ["main", "parse_args", "parse_feed_args"]

from feedservice.cache import ProductCache
from feedservice.config import (
    CACHE_PATH,
    FEED_URLS,
    MAPPINGS_DIR,
    MAX_CONCURRENT_REQUESTS,
    OUTPUT_PATH,
)
from feedservice.diagnostics import Diagnostics
from feedservice.errors import RunError
from feedservice.logging_config import get_logger, setup_logging
from feedservice.normalizer import TermMapping
from feedservice.service import BACKENDS, FeedService, build_feeds
from feedservice.shutdown import get_shutdown_handler

logger = get_logger("cli")


def parse_feed_args(values: Optional[List[str]]) -> Dict[str, str]:
    """Turn repeated NAME=URL arguments into a dict.

    Raises:
        ValueError: If an entry is not NAME=URL
    """
    feeds: Dict[str, str] = {}
    for value in values or []:
        name, sep, url = value.partition("=")
        if not sep or not name.strip() or not url.strip():
            raise ValueError(f"Expected NAME=URL, got {value!r}")
        feeds[name.strip()] = url.strip()
    return feeds


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Aggregate and deduplicate product feeds",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Sample run over the feeds configured in FEED_URLS
  python -m feedservice.cli

  # Full run over two CSV feeds, export to a custom path
  python -m feedservice.cli --production \\
      --feed shop_a=https://example.com/a.csv --feed shop_b=data/b.csv \\
      --output dump/catalog.csv

  # Only report counts, bypass the cache
  python -m feedservice.cli --backend stats --no-cache
        """,
    )

    parser.add_argument(
        "--feed",
        action="append",
        metavar="NAME=URL",
        help="CSV feed as NAME=URL or NAME=PATH (repeatable, added to FEED_URLS)",
    )
    parser.add_argument(
        "--production",
        action="store_true",
        help="Fetch complete feeds instead of samples",
    )
    parser.add_argument(
        "--backend",
        choices=BACKENDS,
        default="csv",
        help="csv: write the flat export (default); stats: only report counts",
    )
    parser.add_argument(
        "--output",
        default=OUTPUT_PATH,
        help=f"Export path for the csv backend (default: {OUTPUT_PATH})",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=MAX_CONCURRENT_REQUESTS,
        help=f"Feeds fetched concurrently (default: {MAX_CONCURRENT_REQUESTS})",
    )
    parser.add_argument(
        "--mappings",
        default=MAPPINGS_DIR,
        help="Directory with the vocabulary CSV tables",
    )
    parser.add_argument(
        "--cache",
        action=argparse.BooleanOptionalAction,
        default=True,
        help=f"Serve feeds from the product cache while fresh (default: on, {CACHE_PATH})",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Console log level (default: INFO)",
    )

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(level=getattr(logging, args.log_level))

    try:
        feed_urls = {**FEED_URLS, **parse_feed_args(args.feed)}
    except ValueError as e:
        logger.error(str(e))
        return 2

    if not feed_urls:
        logger.error("No feeds configured. Use --feed NAME=URL or set FEED_URLS.")
        return 2

    diagnostics = Diagnostics(production=args.production)
    mapping = TermMapping.from_csv_dir(args.mappings)

    with get_shutdown_handler() as handler:
        cache = ProductCache() if args.cache else None
        if cache is not None:
            handler.register_cleanup(cache.close)

        service = FeedService(
            build_feeds(feed_urls, mapping, diagnostics, cache=cache),
            production=args.production,
            backend=args.backend,
            output_path=args.output,
            workers=args.workers,
            diagnostics=diagnostics,
            cancelled=lambda: handler.shutdown_requested,
        )

        try:
            stats = service.run()
        except RunError as e:
            logger.error(f"FeedService failed - {e}")
            return 1

    print(
        f"\nPublished {stats.products} products from {stats.feeds} feeds "
        f"({stats.categories} categories, {stats.brands} brands, {stats.retailers} retailers)"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
