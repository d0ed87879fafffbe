"""
Admission control for inbound telemetry.

Two independent gates keyed per device (or any caller-chosen key):
- a spacing gate enforcing a minimum delay between consecutive requests
- a quota gate counting requests in a fixed 60 second window

State lives in the shared cache store so several consumers can enforce the
same limits. When the store is unreachable both gates fail open.
"""

import asyncio
import logging
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, Optional

from cache.store import CacheStore
from errors.exceptions import CacheUnavailableError

logger = logging.getLogger(__name__)

RATE_WINDOW = timedelta(seconds=60)

LAST_REQUEST_PREFIX = "rate_limit:"
COUNTER_PREFIX = "rate_limit_count:"


class RateLimiter:
    """
    Cache-backed rate limiter.

    Attributes:
        store: Cache store holding the per-key state
        enabled: Global switch; when False every gate allows
        delay_ms: Minimum spacing between requests of the same key
        max_per_minute: Requests allowed per key in one window
    """

    def __init__(
        self,
        store: CacheStore,
        enabled: bool = True,
        delay_ms: int = 100,
        max_per_minute: int = 60,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the rate limiter.

        Args:
            store: Cache store for rate state
            enabled: Whether limiting is active
            delay_ms: Minimum delay between requests in milliseconds
            max_per_minute: Maximum requests per key per minute
            clock: Wall clock returning seconds
            sleep: Coroutine used by apply_delay()
        """
        self.store = store
        self.enabled = enabled
        self.delay_ms = delay_ms
        self.max_per_minute = max_per_minute
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(cls, store: CacheStore, settings: Any) -> "RateLimiter":
        return cls(
            store,
            enabled=settings.rate_limit_enabled,
            delay_ms=settings.rate_limit_delay_ms,
            max_per_minute=settings.rate_limit_max_per_minute,
        )

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def _last_request(self, key: str) -> Optional[int]:
        value = await self.store.get(f"{LAST_REQUEST_PREFIX}{key}")
        if value is None:
            return None
        try:
            return int(float(value))
        except ValueError:
            return None

    async def allow(self, key: str) -> bool:
        """
        Spacing gate.

        The first request of a key is always allowed and seeds its timestamp.
        Later requests pass only when at least delay_ms have elapsed since
        the last allowed one.

        Returns:
            True if the request may proceed
        """
        if not self.enabled:
            return True

        try:
            now = self._now_ms()
            last = await self._last_request(key)
            if last is not None and now - last < self.delay_ms:
                return False
            await self.store.set(f"{LAST_REQUEST_PREFIX}{key}", str(now), RATE_WINDOW)
            return True
        except CacheUnavailableError as e:
            logger.warning("Rate limit state unavailable, allowing request", extra={
                "extra_data": {"key": key, "gate": "spacing", "error": e.message}
            })
            return True

    async def check_quota(self, key: str) -> bool:
        """
        Quota gate over a fixed 60 second window.

        The first request of a window sets the counter to 1 with a fresh
        expiry. A request arriving once the counter has reached
        max_per_minute is rejected without incrementing it.

        Returns:
            True if the request is within quota
        """
        if not self.enabled:
            return True

        counter_key = f"{COUNTER_PREFIX}{key}"
        try:
            current = await self.store.get(counter_key)
            if current is None:
                await self.store.set(counter_key, "1", RATE_WINDOW)
                return True
            if int(current) >= self.max_per_minute:
                return False
            await self.store.increment(counter_key)
            return True
        except CacheUnavailableError as e:
            logger.warning("Rate limit state unavailable, allowing request", extra={
                "extra_data": {"key": key, "gate": "quota", "error": e.message}
            })
            return True

    async def apply_delay(self) -> None:
        """Pause for the configured delay after a successfully processed request."""
        if self.enabled and self.delay_ms > 0:
            await self._sleep(self.delay_ms / 1000)

    async def time_until_next(self, key: str) -> int:
        """
        Milliseconds until the spacing gate would allow the key again.

        Returns:
            0 when the key is currently allowed or limiting is disabled
        """
        if not self.enabled:
            return 0
        try:
            last = await self._last_request(key)
        except CacheUnavailableError:
            return 0
        if last is None:
            return 0
        return max(0, self.delay_ms - (self._now_ms() - last))

    async def reset(self, key: str) -> None:
        """Clear both gates for a key."""
        try:
            await self.store.delete(f"{LAST_REQUEST_PREFIX}{key}")
            await self.store.delete(f"{COUNTER_PREFIX}{key}")
        except CacheUnavailableError as e:
            logger.warning("Failed to reset rate limit state", extra={
                "extra_data": {"key": key, "error": e.message}
            })

    async def stats(self, key: str) -> Dict[str, Any]:
        """
        Current rate state of a key.

        Returns:
            Dictionary with last_request_ms, requests_this_minute, the
            configured limits and time_until_next_ms
        """
        last: Optional[int] = None
        count = 0
        try:
            last = await self._last_request(key)
            count = int(await self.store.get(f"{COUNTER_PREFIX}{key}") or 0)
        except CacheUnavailableError as e:
            logger.warning("Rate limit state unavailable", extra={
                "extra_data": {"key": key, "error": e.message}
            })

        return {
            "enabled": self.enabled,
            "last_request_ms": last,
            "requests_this_minute": count,
            "delay_ms": self.delay_ms,
            "max_per_minute": self.max_per_minute,
            "time_until_next_ms": await self.time_until_next(key),
        }
