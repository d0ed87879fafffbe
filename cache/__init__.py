"""
Cache module for the ingestion fast path.

This module provides cache store abstractions (Redis for deployments, an
in-process store for development and tests) and the DeviceCache projection
built on top of them.
"""

from cache.store import CacheStore
from cache.redis_store import RedisCacheStore
from cache.memory_store import InMemoryCacheStore
from cache.device_cache import (
    DEFAULT_DEVICE_TTL,
    CacheLookup,
    DeviceCache,
    LookupStatus,
)

__all__ = [
    "CacheStore",
    "RedisCacheStore",
    "InMemoryCacheStore",
    "DEFAULT_DEVICE_TTL",
    "CacheLookup",
    "DeviceCache",
    "LookupStatus",
]
