"""Feed adapters.

A feed is anything with a `name`, a `locale` and a `fetch(production)`
method returning converted products. Adapters built on `RecordFeed` only
need to yield raw records; conversion, per-record error capture and
logging are shared.
"""

import random
import time
from typing import Any, Iterable, List, Mapping, Optional, Protocol, Sequence, runtime_checkable

import requests  # type: ignore[import-untyped]

from feedservice.cache import ProductCache
from feedservice.config import (
    HEADERS,
    MAX_RETRIES,
    MAX_RETRY_BACKOFF,
    REQUEST_TIMEOUT,
    RETRY_BACKOFF_BASE,
    RETRY_STATUS_CODES,
    SAMPLE_SIZE,
)
from feedservice.converter import RecordConverter
from feedservice.csv_utils import load_records, read_records
from feedservice.diagnostics import Diagnostics
from feedservice.errors import RecordError, SourceError
from feedservice.locales import Locale
from feedservice.logging_config import get_logger, log_pipeline_event
from feedservice.models import Product
from feedservice.normalizer import TermMapping

__all__ = [
    "Feed",
    "RecordFeed",
    "StaticFeed",
    "CSVFeed",
    "CachedFeed",
    "create_session",
]

logger = get_logger("feed")


@runtime_checkable
class Feed(Protocol):
    """Source adapter capability."""

    name: str
    locale: Locale

    def fetch(self, production: bool = False) -> List[Product]:
        ...


class RecordFeed:
    """Base for feeds that deliver raw records.

    Subclasses implement `records(production)`. Records that fail conversion
    are recorded in `diagnostics` and dropped.
    """

    def __init__(
        self,
        name: str,
        mapping: TermMapping,
        locale: Optional[Locale] = None,
        diagnostics: Optional[Diagnostics] = None,
        is_crawler: bool = False,
    ):
        self.name = name
        self.mapping = mapping
        self.locale = locale or Locale.sweden()
        self.diagnostics = diagnostics
        self.converter = RecordConverter(name, locale=self.locale, is_crawler=is_crawler)

    def records(self, production: bool) -> Iterable[Mapping[str, Any]]:
        raise NotImplementedError

    def fetch(self, production: bool = False) -> List[Product]:
        products: List[Product] = []
        dropped = 0
        attempted = 0
        for record in self.records(production):
            attempted += 1
            try:
                products.append(self.converter.convert(record, self.mapping))
            except RecordError as e:
                dropped += 1
                if self.diagnostics is not None:
                    self.diagnostics.record(e, stage=f"convert:{self.name}")
                else:
                    logger.debug(f"{self.name}: dropped record - {e}")

        if self.diagnostics is not None:
            self.diagnostics.count_attempted(attempted)

        log_pipeline_event("feed_fetched", {
            "message": f"{self.name}: {len(products)} products ({dropped} dropped)",
            "feed": self.name,
            "products": len(products),
            "dropped": dropped,
        }, logger_name="feed")
        return products

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"


class StaticFeed(RecordFeed):
    """Feed over an in-memory list of raw records."""

    def __init__(self, name: str, records: Sequence[Mapping[str, Any]], mapping: TermMapping, **kwargs):
        super().__init__(name, mapping, **kwargs)
        self._records = list(records)

    def records(self, production: bool) -> Iterable[Mapping[str, Any]]:
        if production:
            return self._records
        return self._records[:SAMPLE_SIZE]


def create_session() -> requests.Session:
    """Create a requests Session with the feed download headers."""
    session = requests.Session()
    session.headers.update(HEADERS)
    session.headers.setdefault("Accept-Encoding", "gzip, deflate")
    return session


def _backoff(attempt: int) -> float:
    return min(RETRY_BACKOFF_BASE ** attempt, MAX_RETRY_BACKOFF) + random.uniform(0, 1)


class CSVFeed(RecordFeed):
    """Feed that downloads (or reads) a CSV product file.

    `source` is an http(s) URL or a local path. Outside production mode only
    the first `SAMPLE_SIZE` rows are read.
    """

    def __init__(
        self,
        name: str,
        source: str,
        mapping: TermMapping,
        session: Optional[requests.Session] = None,
        **kwargs,
    ):
        super().__init__(name, mapping, **kwargs)
        self.source = source
        self.session = session

    def download(self) -> str:
        """GET the feed with exponential backoff on retryable failures.

        Raises:
            SourceError: If the download fails after all retries
        """
        sess = self.session or create_session()

        for attempt in range(MAX_RETRIES + 1):
            try:
                resp = sess.get(self.source, timeout=REQUEST_TIMEOUT)

                if resp.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = _backoff(attempt)
                    logger.warning(
                        f"{self.name}: received {resp.status_code}, backing off {backoff:.1f}s "
                        f"(attempt {attempt + 1}/{MAX_RETRIES})"
                    )
                    time.sleep(backoff)
                    continue

                resp.raise_for_status()
                return str(resp.text)

            except requests.exceptions.HTTPError as e:
                raise SourceError(self.name, f"HTTP error fetching {self.source}: {e}") from e

            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
                if attempt < MAX_RETRIES:
                    backoff = _backoff(attempt)
                    logger.warning(
                        f"{self.name}: {type(e).__name__}, backing off {backoff:.1f}s "
                        f"(attempt {attempt + 1}/{MAX_RETRIES})"
                    )
                    time.sleep(backoff)
                    continue
                raise SourceError(self.name, f"Failed to fetch {self.source}: {e}") from e

            except requests.exceptions.RequestException as e:
                raise SourceError(self.name, f"Request error fetching {self.source}: {e}") from e

        raise SourceError(self.name, f"Failed to fetch {self.source} after {MAX_RETRIES} retries")

    def records(self, production: bool) -> Iterable[Mapping[str, Any]]:
        limit = None if production else SAMPLE_SIZE
        if self.source.startswith(("http://", "https://")):
            return read_records(self.download(), limit)
        try:
            return load_records(self.source, limit)
        except OSError as e:
            raise SourceError(self.name, f"Cannot read {self.source}: {e}") from e


class CachedFeed:
    """Wraps a feed and serves its last batch from the cache while fresh."""

    def __init__(self, feed: Feed, cache: ProductCache):
        self.feed = feed
        self.cache = cache

    @property
    def name(self) -> str:
        return self.feed.name

    @property
    def locale(self) -> Locale:
        return self.feed.locale

    def cache_key(self, production: bool) -> str:
        """Sample and full batches of one feed are cached apart."""
        return f"{self.name}:{'full' if production else 'sample'}"

    def fetch(self, production: bool = False) -> List[Product]:
        key = self.cache_key(production)
        cached = self.cache.load(key)
        if cached is not None:
            logger.info(f"{self.name}: {len(cached)} products from cache ({key})")
            return cached

        products = self.feed.fetch(production)
        if products:
            self.cache.store({key: products})
        return products

    def __repr__(self) -> str:
        return f"CachedFeed({self.feed!r})"
