"""
Cache-aside projection of device state.

Each device is stored as a hash under "device:<identifier>" with a bounded
lifetime. Reads distinguish a miss from a backend failure internally, but
callers of get() only see a snapshot or None: the cache is an accelerator,
never a source of truth.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Mapping, Optional

from cache.store import CacheStore
from errors.exceptions import CacheUnavailableError
from storage.snapshot import DeviceSnapshot

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_TTL = timedelta(hours=24)

DEVICE_KEY_PREFIX = "device:"


class LookupStatus(str, Enum):
    HIT = "hit"
    MISS = "miss"
    BACKEND_ERROR = "backend_error"


@dataclass(frozen=True)
class CacheLookup:
    """
    Outcome of a cache read.

    Attributes:
        status: Whether the entry was found, absent, or unreadable
        snapshot: The cached device, only set on a hit
    """

    status: LookupStatus
    snapshot: Optional[DeviceSnapshot] = None

    @property
    def hit(self) -> bool:
        return self.status == LookupStatus.HIT


class DeviceCache:
    """
    Per-device projection store on top of a CacheStore.

    Backend failures are logged and swallowed by every operation.
    """

    def __init__(self, store: CacheStore, ttl: timedelta = DEFAULT_DEVICE_TTL):
        self.store = store
        self.ttl = ttl

    @staticmethod
    def _key(identifier: str) -> str:
        return f"{DEVICE_KEY_PREFIX}{identifier}"

    async def lookup(self, identifier: str) -> CacheLookup:
        """Read a device entry and report which of the three outcomes occurred."""
        try:
            fields = await self.store.get_hash(self._key(identifier))
        except CacheUnavailableError as e:
            logger.warning("Device cache read failed", extra={
                "extra_data": {"identifier": identifier, "error": e.message}
            })
            return CacheLookup(LookupStatus.BACKEND_ERROR)

        if not fields:
            return CacheLookup(LookupStatus.MISS)

        try:
            snapshot = DeviceSnapshot.from_cache_fields(fields)
        except (KeyError, ValueError) as e:
            # A corrupt entry is treated as absent and rebuilt from the repository
            logger.warning("Discarding unreadable device cache entry", extra={
                "extra_data": {"identifier": identifier, "error": str(e)}
            })
            return CacheLookup(LookupStatus.MISS)

        return CacheLookup(LookupStatus.HIT, snapshot)

    async def get(self, identifier: str) -> Optional[DeviceSnapshot]:
        """
        Get the cached snapshot of a device.

        Returns:
            The snapshot, or None on a miss or backend failure
        """
        return (await self.lookup(identifier)).snapshot

    async def put(
        self,
        identifier: str,
        snapshot: DeviceSnapshot,
        ttl: Optional[timedelta] = None
    ) -> bool:
        """
        Overwrite the entry for a device and refresh its expiry.

        Returns:
            True if the write reached the backend
        """
        try:
            await self.store.set_hash(
                self._key(identifier), snapshot.to_cache_fields(), ttl or self.ttl
            )
            return True
        except CacheUnavailableError as e:
            logger.warning("Device cache write failed", extra={
                "extra_data": {"identifier": identifier, "error": e.message}
            })
            return False

    async def update(self, identifier: str, fields: Mapping[str, str]) -> bool:
        """
        Merge fields into an existing entry.

        Returns:
            False when the entry does not exist or the backend failed; an
            absent entry is never created
        """
        try:
            return await self.store.update_hash(self._key(identifier), fields)
        except CacheUnavailableError as e:
            logger.warning("Device cache update failed", extra={
                "extra_data": {"identifier": identifier, "error": e.message}
            })
            return False

    async def delete(self, identifier: str) -> bool:
        """Remove the entry for a device; True if one was removed."""
        try:
            return await self.store.delete(self._key(identifier))
        except CacheUnavailableError as e:
            logger.warning("Device cache delete failed", extra={
                "extra_data": {"identifier": identifier, "error": e.message}
            })
            return False
