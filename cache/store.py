"""
Cache store abstraction for the ingestion fast path.

This module defines the interface of the key/value store holding device
projections and rate limiting state. Every key is namespaced under a
configurable prefix by the implementation.

Implementations raise CacheUnavailableError when the backend cannot be
reached; deciding whether that is fatal is left to the caller.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Mapping, Optional


class CacheStore(ABC):
    """
    Abstract base class for cache store implementations.

    All methods are async to support non-blocking I/O with external stores.
    """

    def __init__(self, prefix: str = "telemetry:"):
        self.prefix = prefix

    def _get_key(self, key: str) -> str:
        """
        Generate the namespaced key.

        Args:
            key: The caller's key.

        Returns:
            Key with the configured prefix.
        """
        return f"{self.prefix}{key}"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """
        Retrieve a scalar value.

        Returns:
            The stored value, or None when absent or expired.

        Raises:
            CacheUnavailableError: If the backend cannot be reached.
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl: Optional[timedelta] = None) -> None:
        """
        Store a scalar value, replacing any previous value and expiry.

        Args:
            key: Key to write.
            value: Value to store.
            ttl: Optional time-to-live; the key never expires when omitted.

        Raises:
            CacheUnavailableError: If the backend cannot be reached.
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a key of any type.

        Returns:
            True if a key was removed.

        Raises:
            CacheUnavailableError: If the backend cannot be reached.
        """
        pass

    @abstractmethod
    async def increment(self, key: str) -> int:
        """
        Atomically increment an integer value, keeping its expiry.

        A missing key is created with value 1 and no expiry.

        Returns:
            The value after the increment.

        Raises:
            CacheUnavailableError: If the backend cannot be reached.
        """
        pass

    @abstractmethod
    async def get_hash(self, key: str) -> Optional[dict[str, str]]:
        """
        Retrieve all fields of a hash.

        Returns:
            Field mapping, or None when the hash is absent or expired.

        Raises:
            CacheUnavailableError: If the backend cannot be reached.
        """
        pass

    @abstractmethod
    async def set_hash(
        self,
        key: str,
        fields: Mapping[str, str],
        ttl: Optional[timedelta] = None
    ) -> None:
        """
        Replace a hash entirely and refresh its expiry.

        Raises:
            CacheUnavailableError: If the backend cannot be reached.
        """
        pass

    @abstractmethod
    async def update_hash(self, key: str, fields: Mapping[str, str]) -> bool:
        """
        Merge fields into an existing hash without touching its expiry.

        Returns:
            False when the hash does not exist; it is never created.

        Raises:
            CacheUnavailableError: If the backend cannot be reached.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Check connectivity of the store.

        Returns:
            True if the store is reachable, False otherwise.

        Note:
            This method should not raise exceptions.
        """
        pass

    async def connect(self) -> None:
        """Open backend connections; a no-op for in-process stores."""
        return None

    async def disconnect(self) -> None:
        """Release backend connections; a no-op for in-process stores."""
        return None
