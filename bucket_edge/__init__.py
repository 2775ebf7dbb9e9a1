"""Caching edge proxy for object-storage buckets with byte-range support."""

from .app import create_app
from .cache import CachedResponse, MemoryResponseCache, ResponseCache, S3ResponseCache
from .proxy import EdgeProxy
from .settings import CacheSettings, OriginSettings

__all__ = [
    "CacheSettings",
    "CachedResponse",
    "EdgeProxy",
    "MemoryResponseCache",
    "OriginSettings",
    "ResponseCache",
    "S3ResponseCache",
    "create_app",
]
