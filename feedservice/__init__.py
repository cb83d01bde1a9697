"""Product feed aggregation and deduplication service."""

__version__ = "0.1.0"

# Re-export main components for convenient imports
from feedservice.cache import ProductCache
from feedservice.converter import RecordConverter
from feedservice.diagnostics import Diagnostics
from feedservice.errors import (
    EmptyQueueError,
    FeedServiceError,
    MergeError,
    NoProductsError,
    RecordError,
    RunError,
    SourceError,
    StructuralError,
    ValidationError,
)
from feedservice.feed import CachedFeed, CSVFeed, Feed, RecordFeed, StaticFeed
from feedservice.fetch_queue import FetchQueue
from feedservice.locales import Locale
from feedservice.models import Product, ProviderCategory, Retailer
from feedservice.normalizer import TermMapping, map_attributes
from feedservice.product_map import MapStats, ProductMap
from feedservice.service import FeedService

__all__ = [
    # Version
    "__version__",
    # Models
    "Product",
    "ProviderCategory",
    "Retailer",
    "Locale",
    # Normalizer and conversion
    "TermMapping",
    "map_attributes",
    "RecordConverter",
    # Feeds
    "Feed",
    "RecordFeed",
    "StaticFeed",
    "CSVFeed",
    "CachedFeed",
    # Pipeline
    "FetchQueue",
    "ProductMap",
    "MapStats",
    "ProductCache",
    "Diagnostics",
    "FeedService",
    # Errors
    "FeedServiceError",
    "RecordError",
    "ValidationError",
    "StructuralError",
    "MergeError",
    "SourceError",
    "RunError",
    "EmptyQueueError",
    "NoProductsError",
]
