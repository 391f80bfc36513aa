"""Caching layer for conversion results and snapshot markers."""

from tunebridge.application.cache.base_cache import BaseCache, CacheEntry, InMemoryCache
from tunebridge.application.cache.conversion_cache import (
    ConversionCache,
    SnapshotStatus,
    normalize_string,
)

__all__ = [
    "BaseCache",
    "CacheEntry",
    "ConversionCache",
    "InMemoryCache",
    "SnapshotStatus",
    "normalize_string",
]
