"""Deduplicating product collection.

Products are keyed by their identity key. Inserting a product whose key is
already present merges it into the existing owner, which keeps the slot.
`eval` is the final pass that drops inactive or invalid members and
recomputes the aggregate counts; every reader goes through it.
"""

import logging
import threading
from typing import Dict, Iterable, Iterator, List, Mapping, NamedTuple, Optional, Tuple

from feedservice.config import DISCOUNT_BIN_SIZE
from feedservice.csv_utils import export_products_to_csv
from feedservice.diagnostics import Diagnostics
from feedservice.errors import IdentityMissingError, MergeError, ValidationError
from feedservice.logging_config import get_logger, log_pipeline_event
from feedservice.models import Product

__all__ = ["MapStats", "ProductMap"]

logger = get_logger("product_map")


class MapStats(NamedTuple):
    products: int
    feeds: int
    categories: int
    retailers: int
    brands: int


class ProductMap:
    """Identity key -> exactly one owned product.

    Insertion is serialized by a lock held for one insert or merge at a time,
    so several producers may call `add` concurrently.
    """

    def __init__(self, diagnostics: Optional[Diagnostics] = None, bin_size: int = DISCOUNT_BIN_SIZE):
        self.diagnostics = diagnostics if diagnostics is not None else Diagnostics()
        self.bin_size = bin_size
        self._products: Dict[int, Product] = {}
        self._lock = threading.RLock()
        self._validated = False
        self._feeds: List[str] = []
        self._retailers: List[str] = []
        self._brands: List[str] = []
        self._n_categories = 0

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_products(
        cls,
        products: Iterable[Product],
        diagnostics: Optional[Diagnostics] = None,
        bin_size: int = DISCOUNT_BIN_SIZE,
    ) -> "ProductMap":
        """Build and evaluate a map from a stream that may repeat keys."""
        pm = cls(diagnostics, bin_size)
        pm.add_many(products)
        pm.eval()
        return pm

    @classmethod
    def from_mapping(
        cls,
        products: Mapping[int, Product],
        diagnostics: Optional[Diagnostics] = None,
        bin_size: int = DISCOUNT_BIN_SIZE,
    ) -> "ProductMap":
        """Build from a key -> product mapping. Keys are recomputed, not trusted."""
        return cls.from_products(products.values(), diagnostics, bin_size)

    def add(self, product: Product) -> bool:
        """Insert or merge one product.

        Returns True when the product took a new slot. A failed merge is
        recorded; the owner stays and `eval` decides whether it survives.
        """
        with self._lock:
            self._validated = False
            try:
                product.refresh(self.bin_size)
            except IdentityMissingError as e:
                self.diagnostics.record(e, stage="insert")
                return False

            owner = self._products.get(product.key)
            if owner is None:
                self._products[product.key] = product
                return True

            try:
                owner.merge_with(product, self.bin_size)
            except MergeError as e:
                self.diagnostics.record(e, stage="merge")
            return False

    def add_many(self, products: Iterable[Product]) -> int:
        """Add every product; returns the number of new slots."""
        added = 0
        for product in products:
            added += self.add(product)
        self.diagnostics.sample_memory("merge")
        return added

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _drop(self, key: int, error: Exception, level: int) -> None:
        product = self._products.pop(key)
        self.diagnostics.record(error, stage="eval")
        log_pipeline_event("product_dropped", {
            "message": f"Dropping Product - {product.name} - {error}",
            "key": key,
            "name": product.name,
        }, level=level, logger_name="product_map")

    def eval(self) -> MapStats:
        """Drop inactive and invalid members and recount. Safe to call again."""
        with self._lock:
            for key in list(self._products):
                product = self._products[key]
                if not product.active:
                    del self._products[key]
                    logger.debug(f"Dropping inactive product - {product.name}")
                    continue
                try:
                    product.refresh(self.bin_size)
                except IdentityMissingError as e:
                    self._drop(key, e, logging.DEBUG)
                    continue
                try:
                    product.validate()
                except ValidationError as e:
                    self._drop(key, e, logging.WARNING)
                    continue

            feeds, retailers, brands, categories = set(), set(), set(), set()
            for product in self._products.values():
                feeds.update(product.from_feeds)
                retailers.update(r.name for r in product.retailers)
                brands.add(product.brand)
                categories.update(c.name for c in product.provider_categories)

            self._feeds = sorted(feeds)
            self._retailers = sorted(retailers)
            self._brands = sorted(brands)
            self._n_categories = len(categories)
            self._validated = True
            self.diagnostics.sample_memory("eval")
            return self._stats()

    def _ensure_evaluated(self) -> None:
        if not self._validated:
            self.eval()

    def _stats(self) -> MapStats:
        return MapStats(
            products=len(self._products),
            feeds=len(self._feeds),
            categories=self._n_categories,
            retailers=len(self._retailers),
            brands=len(self._brands),
        )

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def get(self) -> Tuple[Dict[int, Product], int, int, int]:
        """(products, product count, feed count, category count)"""
        with self._lock:
            self._ensure_evaluated()
            s = self._stats()
            return dict(self._products), s.products, s.feeds, s.categories

    def stats(self) -> MapStats:
        with self._lock:
            self._ensure_evaluated()
            return self._stats()

    def brands(self) -> List[str]:
        with self._lock:
            self._ensure_evaluated()
            return list(self._brands)

    def feeds(self) -> List[str]:
        with self._lock:
            self._ensure_evaluated()
            return list(self._feeds)

    def retailers(self) -> List[str]:
        with self._lock:
            self._ensure_evaluated()
            return list(self._retailers)

    def dump_to_csv(self, path: str) -> int:
        """Write the flat export; returns the number of rows."""
        products, *_ = self.get()
        return export_products_to_csv(products.values(), path, self.bin_size)

    def flush(self) -> None:
        """Release all products once a publisher has consumed them."""
        with self._lock:
            n = len(self._products)
            self._products.clear()
            self._feeds, self._retailers, self._brands = [], [], []
            self._n_categories = 0
            self._validated = False
        logger.info(f"Flushed {n} products")

    def __len__(self) -> int:
        return len(self._products)

    def __contains__(self, key: int) -> bool:
        return key in self._products

    def __iter__(self) -> Iterator[Product]:
        return iter(list(self._products.values()))
