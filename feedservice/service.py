"""Feed service: fetch, merge, publish.

One `run` fetches every feed through the queue, merges the result into a
product map, publishes it through the configured backend and flushes the
map. A failed fetch + merge pass is retried up to `retries` times.
"""

import time
import tracemalloc
from typing import Callable, Dict, Iterable, List, Optional

from feedservice.cache import ProductCache
from feedservice.config import DISCOUNT_BIN_SIZE, MAX_CONCURRENT_REQUESTS, OUTPUT_PATH, RETRIES
from feedservice.diagnostics import Diagnostics
from feedservice.errors import EmptyQueueError, NoProductsError, RunError
from feedservice.feed import CachedFeed, CSVFeed, Feed
from feedservice.fetch_queue import FetchQueue
from feedservice.locales import Locale
from feedservice.logging_config import get_logger, log_pipeline_event, new_run_id
from feedservice.normalizer import TermMapping
from feedservice.product_map import MapStats, ProductMap
from feedservice.shutdown import shutdown_requested

__all__ = ["BACKENDS", "FeedService", "build_feeds"]

logger = get_logger("service")

BACKENDS = ("csv", "stats")


def build_feeds(
    feed_urls: Dict[str, str],
    mapping: TermMapping,
    diagnostics: Diagnostics,
    locale: Optional[Locale] = None,
    cache: Optional[ProductCache] = None,
) -> List[Feed]:
    """One CSV feed per name -> URL/path entry, wrapped in the cache if given."""
    feeds: List[Feed] = []
    for name, source in feed_urls.items():
        feed: Feed = CSVFeed(name, source, mapping, locale=locale, diagnostics=diagnostics)
        if cache is not None:
            feed = CachedFeed(feed, cache)
        feeds.append(feed)
    return feeds


class FeedService:
    """Brings together fetching, merging and publishing.

    Args:
        feeds: Feeds to run
        production: Fetch full feeds instead of samples
        backend: 'csv' writes the flat export, 'stats' only reports
        output_path: Export file for the csv backend
        diagnostics: Shared collector; the feeds should record into the same one
    """

    def __init__(
        self,
        feeds: Iterable[Feed],
        production: bool = False,
        backend: str = "csv",
        output_path: str = OUTPUT_PATH,
        workers: int = MAX_CONCURRENT_REQUESTS,
        bin_size: int = DISCOUNT_BIN_SIZE,
        retries: int = RETRIES,
        diagnostics: Optional[Diagnostics] = None,
        cancelled: Callable[[], bool] = shutdown_requested,
    ):
        if backend not in BACKENDS:
            raise ValueError(f"Incorrect backend specified - {backend!r}, choose from {BACKENDS}")
        self.feeds = list(feeds)
        self.production = production
        self.backend = backend
        self.output_path = output_path
        self.workers = workers
        self.bin_size = bin_size
        self.retries = max(1, retries)
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics(production)
        self.cancelled = cancelled

    def fetch(self) -> ProductMap:
        """One fetch + merge pass."""
        queue = FetchQueue(
            self.feeds,
            production=self.production,
            workers=self.workers,
            diagnostics=self.diagnostics,
            cancelled=self.cancelled,
        )
        return queue.get_product_map(self.bin_size)

    def publish(self, pm: ProductMap) -> int:
        """Hand the evaluated map to the backend. Returns rows written."""
        if self.backend == "csv":
            return pm.dump_to_csv(self.output_path)

        stats = pm.stats()
        logger.info(
            f"Stats backend - {stats.products} products, {stats.brands} brands, "
            f"{stats.retailers} retailers: {', '.join(pm.retailers())}"
        )
        return 0

    def run(self) -> MapStats:
        """Run the service.

        Returns:
            Stats of the published product map

        Raises:
            EmptyQueueError: No feeds configured
            NoProductsError: Every attempt ended without products
        """
        started_tracing = not tracemalloc.is_tracing()
        if started_tracing:
            tracemalloc.start()
        start = time.time()
        run_id = new_run_id()

        log_pipeline_event("run_started", {
            "message": f"FeedService run {run_id} started - {len(self.feeds)} feeds, production={self.production}",
            "run_id": run_id,
            "feeds": len(self.feeds),
            "production": self.production,
            "backend": self.backend,
        }, logger_name="service")

        try:
            last_error: Optional[RunError] = None
            for attempt in range(1, self.retries + 1):
                if self.cancelled():
                    logger.warning("Shutdown requested, not starting another attempt")
                    break
                if attempt > 1:
                    # Counters describe one pass over the feeds
                    self.diagnostics.reset()
                try:
                    pm = self.fetch()
                except EmptyQueueError as e:
                    self.diagnostics.record(e, stage="queue", critical=True)
                    raise
                except NoProductsError as e:
                    last_error = e
                    logger.warning(f"Loading products - attempt {attempt}/{self.retries} - {e.message}")
                    continue

                stats = pm.stats()
                logger.info(
                    f"Fetched {stats.products} products from {stats.feeds} feeds "
                    f"with {stats.categories} categories"
                )
                rows = self.publish(pm)
                pm.flush()

                self.diagnostics.sample_memory("publish")
                log_pipeline_event("run_complete", {
                    "message": f"FeedService finished in {time.time() - start:.1f}s\n{self.diagnostics.report()}",
                    **stats._asdict(),
                    "rows": rows,
                    "peak_memory_mb": round(self.diagnostics.peak_memory_mb, 1),
                }, logger_name="service")
                return stats

            error = last_error or NoProductsError("Run cancelled before any products were loaded", self.diagnostics)
            self.diagnostics.record(error, stage="run", critical=True)
            raise error
        finally:
            if started_tracing:
                tracemalloc.stop()
