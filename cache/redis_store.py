"""
Redis-based cache store implementation.

Device projections are stored as Redis hashes and rate limiting state as
plain string keys, all under the configured prefix (default "telemetry:").
"""

from datetime import timedelta
from typing import Mapping, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from cache.store import CacheStore
from errors.exceptions import CacheUnavailableError

# Atomic HSET on an existing key; never creates the hash
_UPDATE_IF_EXISTS = """
if redis.call("EXISTS", KEYS[1]) == 0 then
    return 0
end
redis.call("HSET", KEYS[1], unpack(ARGV))
return 1
"""


class RedisCacheStore(CacheStore):
    """
    Redis-backed cache store implementation.

    Attributes:
        redis_url: Redis connection URL (e.g., "redis://localhost:6379/0")
        timeout: Socket timeout in seconds for every command
        client: Redis async client instance (initialized via connect())
    """

    def __init__(
        self,
        redis_url: str,
        prefix: str = "telemetry:",
        timeout: float = 2.5
    ):
        """
        Initialize the Redis cache store.

        Args:
            redis_url: Redis connection URL
            prefix: Namespace prepended to every key
            timeout: Connect and read timeout in seconds
        """
        super().__init__(prefix)
        self.redis_url = redis_url
        self.timeout = timeout
        self.client = None

    async def connect(self) -> None:
        """
        Establish connection to Redis.

        This method must be called before using any other methods.

        Raises:
            CacheUnavailableError: If Redis does not answer a PING.
        """
        self.client = redis.from_url(
            self.redis_url,
            decode_responses=True,
            socket_timeout=self.timeout,
            socket_connect_timeout=self.timeout,
        )
        try:
            await self.client.ping()
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(
                f"Failed to connect to Redis: {e}",
                details={"redis_url": self.redis_url}
            ) from e

    async def disconnect(self) -> None:
        """
        Close the Redis connection.

        Should be called during shutdown to cleanly release resources.
        """
        if self.client:
            await self.client.aclose()
            self.client = None

    def _require_client(self):
        if not self.client:
            raise CacheUnavailableError("Redis client not connected. Call connect() first.")
        return self.client

    async def get(self, key: str) -> Optional[str]:
        client = self._require_client()
        try:
            return await client.get(self._get_key(key))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis GET failed: {e}", details={"key": key}) from e

    async def set(self, key: str, value: str, ttl: Optional[timedelta] = None) -> None:
        client = self._require_client()
        try:
            if ttl is not None:
                await client.setex(self._get_key(key), int(ttl.total_seconds()), value)
            else:
                await client.set(self._get_key(key), value)
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis SET failed: {e}", details={"key": key}) from e

    async def delete(self, key: str) -> bool:
        client = self._require_client()
        try:
            return await client.delete(self._get_key(key)) > 0
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis DEL failed: {e}", details={"key": key}) from e

    async def increment(self, key: str) -> int:
        client = self._require_client()
        try:
            return int(await client.incr(self._get_key(key)))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis INCR failed: {e}", details={"key": key}) from e

    async def get_hash(self, key: str) -> Optional[dict[str, str]]:
        client = self._require_client()
        try:
            data = await client.hgetall(self._get_key(key))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis HGETALL failed: {e}", details={"key": key}) from e
        # HGETALL answers an empty mapping for missing keys
        return data or None

    async def set_hash(
        self,
        key: str,
        fields: Mapping[str, str],
        ttl: Optional[timedelta] = None
    ) -> None:
        client = self._require_client()
        full_key = self._get_key(key)
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.delete(full_key)
                pipe.hset(full_key, mapping=dict(fields))
                if ttl is not None:
                    pipe.expire(full_key, int(ttl.total_seconds()))
                await pipe.execute()
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis HSET failed: {e}", details={"key": key}) from e

    async def update_hash(self, key: str, fields: Mapping[str, str]) -> bool:
        client = self._require_client()
        full_key = self._get_key(key)
        args = [item for pair in fields.items() for item in pair]
        try:
            if not args:
                return bool(await client.exists(full_key))
            return bool(await client.eval(_UPDATE_IF_EXISTS, 1, full_key, *args))
        except (RedisError, OSError) as e:
            raise CacheUnavailableError(f"Redis HSET failed: {e}", details={"key": key}) from e

    async def health_check(self) -> bool:
        """
        Check connectivity and health of the Redis store.

        Returns:
            True if Redis is healthy and accessible, False otherwise.
        """
        if not self.client:
            return False

        try:
            result = await self.client.ping()
            return result is True
        except Exception:
            return False
