"""Fetch queue: runs feeds on a bounded pool of worker threads.

Workers pull feeds from a shared input queue and push results to a shared
output queue. The caller blocks until one result per feed has arrived, so a
failing feed simply contributes an empty batch. Once the cancel flag is up,
workers hand back empty batches for feeds they have not started yet; a fetch
that is already running is allowed to finish.
"""

import logging
import queue
import threading
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from feedservice.config import DISCOUNT_BIN_SIZE, MAX_CONCURRENT_REQUESTS
from feedservice.diagnostics import Diagnostics
from feedservice.errors import EmptyQueueError, NoProductsError, SourceError
from feedservice.feed import Feed
from feedservice.logging_config import get_logger, log_pipeline_event
from feedservice.models import Product
from feedservice.product_map import ProductMap
from feedservice.shutdown import shutdown_requested

__all__ = ["FetchQueue"]

logger = get_logger("queue")

_STOP = object()

# (job index, products, failed)
_Result = Tuple[int, List[Product], bool]


class FetchQueue:
    """Bounded worker pool over a list of feeds.

    Args:
        feeds: Feeds to fetch, in order
        production: Passed to every feed's fetch (False means sample mode)
        workers: Maximum number of concurrent fetches
        diagnostics: Collector for source failures (a new one if omitted)
        cancelled: Cancellation flag, checked before each job starts
    """

    def __init__(
        self,
        feeds: Optional[Iterable[Feed]] = None,
        production: bool = False,
        workers: int = MAX_CONCURRENT_REQUESTS,
        diagnostics: Optional[Diagnostics] = None,
        cancelled: Callable[[], bool] = shutdown_requested,
    ):
        self.feeds: List[Feed] = list(feeds or [])
        self.production = production
        self.workers = max(1, workers)
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics(production)
        self.cancelled = cancelled

    def append_one(self, feed: Feed) -> None:
        self.feeds.append(feed)

    def append_many(self, feeds: Iterable[Feed]) -> None:
        self.feeds.extend(feeds)

    def __len__(self) -> int:
        return len(self.feeds)

    def _worker(self, jobs: "queue.Queue", results: "queue.Queue") -> None:
        while True:
            job = jobs.get()
            if job is _STOP:
                return
            index, feed = job

            if self.cancelled():
                logger.info(f"Request cancelled - {feed.name}")
                results.put((index, [], False))
                continue

            try:
                products = feed.fetch(self.production)
                if not products:
                    raise SourceError(feed.name, "Feed returned no products")
            except Exception as e:
                error = e if isinstance(e, SourceError) else SourceError(feed.name, f"{type(e).__name__}: {e}")
                self.diagnostics.record(error, stage="fetch")
                log_pipeline_event("feed_failed", {
                    "message": f"Failed to download feed from queue - {error}",
                    "feed": feed.name,
                }, level=logging.WARNING, logger_name="queue")
                results.put((index, [], True))
                continue

            results.put((index, products, False))

    def run(self) -> List[Product]:
        """Fetch every feed and return all products in feed order.

        Raises:
            EmptyQueueError: If there are no feeds
            NoProductsError: If every feed failed or nothing was fetched
        """
        nsources = len(self.feeds)
        if nsources < 1:
            raise EmptyQueueError("Empty queue", self.diagnostics)

        jobs: "queue.Queue" = queue.Queue()
        results: "queue.Queue" = queue.Queue()

        nworkers = min(self.workers, nsources)
        threads = [
            threading.Thread(target=self._worker, args=(jobs, results), name=f"feed-worker-{i}", daemon=True)
            for i in range(nworkers)
        ]
        for t in threads:
            t.start()

        for job in enumerate(self.feeds):
            jobs.put(job)
        for _ in threads:
            jobs.put(_STOP)
        logger.info(f"Queue prepared - {nsources} sources, {nworkers} workers")

        # Fan-in barrier: one result per feed
        batches: Dict[int, List[Product]] = {}
        failed = 0
        for _ in range(nsources):
            index, products, was_failure = results.get()
            batches[index] = products
            failed += was_failure
            logger.info(f"Receiving - {self.feeds[index].name}: {len(products)} products")

        for t in threads:
            t.join()
        self.diagnostics.sample_memory("fetch")

        if failed == nsources:
            raise NoProductsError("Every feed in the queue failed", self.diagnostics)

        products = [p for i in range(nsources) for p in batches[i] if p.name]
        if not products:
            raise NoProductsError("No products loaded from the queue", self.diagnostics)

        logger.info(f"Fetched {len(products)} products from {nsources - failed}/{nsources} sources")
        return products

    def get_product_map(self, bin_size: int = DISCOUNT_BIN_SIZE) -> ProductMap:
        """Fetch, merge and evaluate into a deduplicated product map.

        Raises:
            EmptyQueueError, NoProductsError: See `run`; also raised when no
                product survives final evaluation
        """
        pm = ProductMap.from_products(self.run(), diagnostics=self.diagnostics, bin_size=bin_size)
        if not len(pm):
            raise NoProductsError("No products survived evaluation", self.diagnostics)
        return pm
