"""Configuration and constants for the feed service."""

import os
from pathlib import Path
from typing import Dict, List, Tuple

from dotenv import load_dotenv

__all__ = [
    "MAX_CONCURRENT_REQUESTS",
    "DISCOUNT_BIN_SIZE",
    "RETRIES",
    "SUPPORTED_LOCALES",
    "LANGUAGE_TO_COUNTRY",
    "LOCALE_TO_COUNTRY",
    "SHORT_TO_LONG_LANGUAGE",
    "LANGUAGE_TO_LOCALE",
    "GENDERS",
    "GENDER_TAGS",
    "FEMALE_TERMS",
    "MALE_TERMS",
    "UNISEX_TERMS",
    "IN_STOCK",
    "OUT_OF_STOCK",
    "AVAILABILITY_TERMS",
    "LIST_DELIMITERS",
    "SIZE_DELIMITERS",
    "ONE_SIZE",
    "FIELD_MAPPINGS",
    "PRICE_FIELDS",
    "MAPPING_NAMES",
    "MAPPINGS_DIR",
    "CACHE_PATH",
    "CACHE_TTL",
    "OUTPUT_PATH",
    "HEADERS",
    "REQUEST_TIMEOUT",
    "MAX_RETRIES",
    "RETRY_BACKOFF_BASE",
    "MAX_RETRY_BACKOFF",
    "RETRY_STATUS_CODES",
    "SAMPLE_SIZE",
    "FEED_URLS",
    "parse_feed_urls",
]

_THIS_DIR = Path(__file__).parent
_PROJECT_ROOT = _THIS_DIR.parent

# Pick up credentials and overrides from a local .env file
load_dotenv(_PROJECT_ROOT / ".env")

# Number of feeds fetched simultaneously by the queue
MAX_CONCURRENT_REQUESTS = int(os.getenv("MAX_CONCURRENT_REQUESTS", "8"))

# Discount bins are labelled in steps of this many percent
DISCOUNT_BIN_SIZE = int(os.getenv("DISCOUNT_BIN_SIZE", "10"))

# How many times the service retries a whole fetch + merge pass
RETRIES = int(os.getenv("FEEDSERVICE_RETRIES", "2"))


# =============================================================================
# Locales
# =============================================================================

# Whitelist of storefront locales a product language must belong to
SUPPORTED_LOCALES: Tuple[str, ...] = ("sv_se", "en_gb")

LANGUAGE_TO_COUNTRY: Dict[str, List[str]] = {
    "sv": ["SE"],
    "en": ["GB", "UK"],
}

LOCALE_TO_COUNTRY: Dict[str, List[str]] = {
    "sv_se": ["SE"],
    "en_gb": ["GB", "UK"],
}

SHORT_TO_LONG_LANGUAGE: Dict[str, str] = {
    "en": "English",
    "sv": "Swedish",
    "de": "German",
    "pl": "Polish",
}

# Raw language codes seen in feeds -> storefront locale
LANGUAGE_TO_LOCALE: Dict[str, str] = {
    "sv": "sv_se",
    "sv_se": "sv_se",
    "sv-se": "sv_se",
    "en": "en_gb",
    "en_gb": "en_gb",
    "en-gb": "en_gb",
}


# =============================================================================
# Classification vocabulary
# =============================================================================

GENDERS: Tuple[str, ...] = ("women", "men", "unisex")

# One-letter tags stored on provider categories
GENDER_TAGS: Dict[str, str] = {
    "women": "w",
    "men": "m",
    "unisex": "u",
}

# Checked in this order: "women" contains "men", so female terms go first
FEMALE_TERMS: Tuple[str, ...] = ("women", "woman", "female", "ladies", "dam")
MALE_TERMS: Tuple[str, ...] = ("men", "man", "male", "herr")
UNISEX_TERMS: Tuple[str, ...] = ("unisex",)

IN_STOCK = "instock"
OUT_OF_STOCK = "out of stock"

# Raw availability values treated as in stock
AVAILABILITY_TERMS = frozenset({
    "1", "instock", "in_stock", "in stock", "true", "yes", "available",
})

# Separators for multi-value text fields (categories, colors)
LIST_DELIMITERS = ",:;./#>"

# Separators for size lists; a size token must never contain one of these
SIZE_DELIMITERS = ",;/|"

# Size used when an offer does not state any
ONE_SIZE = "one size"


# =============================================================================
# Raw record field mappings
# =============================================================================
# Each canonical field maps to the raw keys that may carry it.
# The first non-empty raw value wins.

FIELD_MAPPINGS: Dict[str, List[str]] = {
    "name": ["product_name", "name", "title"],
    "sku": ["aw_product_id", "merchant_product_id", "sku", "ean", "gtin", "isbn"],
    "color": ["colour", "color"],
    "description": ["description", "product_short_description", "short_description", "promotional_text"],
    "short_description": ["product_short_description", "short_description"],
    "brand": ["brand_name", "brand", "manufacturer"],
    "image_url": ["merchant_image_url", "aw_image_url", "image_url", "image"],
    "language": ["language", "lang"],
    "link": ["merchant_deep_link", "aw_deep_link", "deep_link", "link", "url"],
    "retailer": ["merchant_name", "retailer", "store"],
    "program": ["program", "programme", "merchant_name"],
    "feed_id": ["data_feed_id", "feed_id"],
    "currency": ["currency"],
    "availability": ["in_stock", "stock_status", "availability"],
    "stock_quantity": ["stock_quantity", "quantity"],
    "sizes": ["size", "sizes"],
    "material": ["material"],
    "delivery_time": ["delivery_time"],
    "shipping_cost": ["delivery_cost", "shipping_cost"],
    "categories": ["merchant_category", "category_name", "category", "custom_1", "custom_2"],
    "expected_value": ["expected_value"],
}

# Every raw field that may carry a price; all of them are scanned
PRICE_FIELDS: List[str] = [
    "search_price",
    "store_price",
    "price",
    "sale_price",
    "rrp_price",
    "regular_price",
    "base_price",
    "base_price_amount",
]


# =============================================================================
# Vocabulary tables, cache and output
# =============================================================================

# Vocabulary tables loaded by the term normalizer (one CSV per name)
MAPPING_NAMES: Tuple[str, ...] = ("colors", "patterns", "sizes", "genders", "categories")

MAPPINGS_DIR = os.getenv("FEEDSERVICE_MAPPINGS_DIR", str(_THIS_DIR / "mappings"))

CACHE_PATH = os.getenv("FEEDSERVICE_CACHE_PATH", str(_PROJECT_ROOT / "data" / "feed_cache.db"))
CACHE_TTL = int(os.getenv("FEEDSERVICE_CACHE_TTL", str(12 * 60 * 60)))  # seconds

OUTPUT_PATH = os.getenv("FEEDSERVICE_OUTPUT_PATH", str(_PROJECT_ROOT / "dump" / "feed_dump.csv"))


# =============================================================================
# HTTP settings for CSV feed downloads
# =============================================================================

HEADERS = {
    "User-Agent": "feedservice catalog aggregator",
}

REQUEST_TIMEOUT = 60

MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 2.0  # 2^attempt seconds
MAX_RETRY_BACKOFF = 30.0
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

# Rows read per feed when not running in production mode
SAMPLE_SIZE = int(os.getenv("FEEDSERVICE_SAMPLE_SIZE", "500"))


def parse_feed_urls(raw: str) -> Dict[str, str]:
    """Parse 'name=url,name=url' into a dict, skipping malformed entries."""
    feeds: Dict[str, str] = {}
    for entry in raw.split(","):
        name, sep, url = entry.partition("=")
        if not sep or not name.strip() or not url.strip():
            continue
        feeds[name.strip()] = url.strip()
    return feeds


# Feeds configured through the environment
FEED_URLS: Dict[str, str] = parse_feed_urls(os.getenv("FEED_URLS", ""))
