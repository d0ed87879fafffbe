"""
In-process cache store.

Used in development when no Redis URL is configured, and by the test suite.
Expiry is evaluated lazily against an injectable monotonic clock.
"""

import time
from datetime import timedelta
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from cache.store import CacheStore


class InMemoryCacheStore(CacheStore):
    """
    Dictionary-backed cache store with Redis-like TTL semantics.

    Attributes:
        clock: Monotonic time source in seconds
    """

    def __init__(
        self,
        prefix: str = "telemetry:",
        clock: Callable[[], float] = time.monotonic
    ):
        super().__init__(prefix)
        self.clock = clock
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}

    def _expires_at(self, ttl: Optional[timedelta]) -> Optional[float]:
        if ttl is None:
            return None
        return self.clock() + ttl.total_seconds()

    def _read(self, key: str) -> Optional[Tuple[Any, Optional[float]]]:
        full_key = self._get_key(key)
        entry = self._data.get(full_key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self.clock() >= expires_at:
            del self._data[full_key]
            return None
        return entry

    async def get(self, key: str) -> Optional[str]:
        entry = self._read(key)
        if entry is None or isinstance(entry[0], dict):
            return None
        return entry[0]

    async def set(self, key: str, value: str, ttl: Optional[timedelta] = None) -> None:
        self._data[self._get_key(key)] = (str(value), self._expires_at(ttl))

    async def delete(self, key: str) -> bool:
        if self._read(key) is None:
            return False
        del self._data[self._get_key(key)]
        return True

    async def increment(self, key: str) -> int:
        entry = self._read(key)
        if entry is None:
            value, expires_at = 0, None
        else:
            value, expires_at = int(entry[0]), entry[1]
        value += 1
        self._data[self._get_key(key)] = (str(value), expires_at)
        return value

    async def get_hash(self, key: str) -> Optional[dict[str, str]]:
        entry = self._read(key)
        if entry is None or not isinstance(entry[0], dict):
            return None
        return dict(entry[0])

    async def set_hash(
        self,
        key: str,
        fields: Mapping[str, str],
        ttl: Optional[timedelta] = None
    ) -> None:
        self._data[self._get_key(key)] = (
            {k: str(v) for k, v in fields.items()},
            self._expires_at(ttl),
        )

    async def update_hash(self, key: str, fields: Mapping[str, str]) -> bool:
        entry = self._read(key)
        if entry is None or not isinstance(entry[0], dict):
            return False
        merged = dict(entry[0])
        merged.update({k: str(v) for k, v in fields.items()})
        self._data[self._get_key(key)] = (merged, entry[1])
        return True

    async def health_check(self) -> bool:
        return True

    def keys(self) -> list[str]:
        """Live keys including the prefix, for diagnostics and tests."""
        return [k for k in list(self._data) if self._read(k[len(self.prefix):]) is not None]
