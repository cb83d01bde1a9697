"""Key-value cache for product batches.

Each key (usually a feed name) holds one zlib-compressed JSON batch of
products with an expiry timestamp. Expired entries are never returned.
"""

import json
import sqlite3
import threading
import time
import zlib
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Generator, List, Optional

from feedservice.config import CACHE_PATH, CACHE_TTL
from feedservice.logging_config import get_logger
from feedservice.models import Product

__all__ = ["ProductCache", "get_connection"]

logger = get_logger("cache")


@contextmanager
def get_connection(db_path: str = CACHE_PATH) -> Generator[sqlite3.Connection, None, None]:
    """Context manager for cache database connections."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    conn = sqlite3.connect(db_path)
    try:
        yield conn
    finally:
        conn.close()


def _pack(products: List[Product]) -> bytes:
    payload = json.dumps([p.to_dict() for p in products], ensure_ascii=False)
    return zlib.compress(payload.encode("utf-8"))


def _unpack(blob: bytes) -> List[Product]:
    data = json.loads(zlib.decompress(blob).decode("utf-8"))
    return [Product.from_dict(d) for d in data]


class ProductCache:
    """SQLite-backed cache of product batches with a time-to-live.

    Args:
        path: Database file (created if needed)
        ttl: Lifetime of stored entries in seconds
    """

    def __init__(self, path: str = CACHE_PATH, ttl: int = CACHE_TTL):
        self.path = path
        self.ttl = ttl
        self._lock = threading.Lock()
        with get_connection(self.path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS batches (
                    key TEXT PRIMARY KEY,
                    payload BLOB NOT NULL,
                    expires_at REAL NOT NULL
                )
            """)
            conn.commit()

    def store(self, batches: Dict[str, List[Product]]) -> None:
        """Store batches in one transaction, replacing existing keys."""
        expires_at = time.time() + self.ttl
        rows = [(key, _pack(products), expires_at) for key, products in batches.items()]
        with self._lock, get_connection(self.path) as conn:
            conn.executemany(
                "INSERT OR REPLACE INTO batches (key, payload, expires_at) VALUES (?, ?, ?)",
                rows,
            )
            conn.commit()
        logger.debug(f"Stored {len(rows)} batches in cache")

    def load(self, key: str) -> Optional[List[Product]]:
        """Load one batch, or None when it is missing or expired."""
        with self._lock, get_connection(self.path) as conn:
            row = conn.execute(
                "SELECT payload FROM batches WHERE key = ? AND expires_at > ?",
                (key, time.time()),
            ).fetchone()
        if row is None:
            return None
        return _unpack(row[0])

    def load_all(self) -> Dict[str, List[Product]]:
        """Every live batch by key."""
        with self._lock, get_connection(self.path) as conn:
            rows = conn.execute(
                "SELECT key, payload FROM batches WHERE expires_at > ? ORDER BY key",
                (time.time(),),
            ).fetchall()
        return {key: _unpack(payload) for key, payload in rows}

    def purge_expired(self) -> int:
        """Delete expired entries. Returns the number removed."""
        with self._lock, get_connection(self.path) as conn:
            cursor = conn.execute("DELETE FROM batches WHERE expires_at <= ?", (time.time(),))
            conn.commit()
            removed = cursor.rowcount
        if removed:
            logger.info(f"Purged {removed} expired cache entries")
        return removed

    def close(self) -> None:
        """Drop expired entries; connections are per call, so nothing else stays open."""
        self.purge_expired()
