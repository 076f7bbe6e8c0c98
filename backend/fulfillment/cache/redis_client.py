"""
Redis client with connection pooling and async support.

Redis backs two concerns in the fulfillment service: a read-through
cache for rate configuration (pricing tiers and transport rates) and a
pub/sub channel that carries committed order transitions to the
notification workers.
"""

import json
from typing import Any, Optional, Union

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from fulfillment.core.config import get_settings
from fulfillment.core.logging import get_logger

logger = get_logger(__name__)


class RedisClient:
    """
    Async Redis client with connection pooling and retry logic.

    All operations raise ``ConnectionError`` when the client has not been
    connected; callers that treat Redis as optional catch ``RedisError``.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        max_connections: Optional[int] = None,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        health_check_interval: int = 30,
    ):
        settings = get_settings()
        self._url = url or settings.redis_url
        self._max_connections = max_connections or settings.redis_max_connections
        self._socket_timeout = socket_timeout
        self._socket_connect_timeout = socket_connect_timeout
        self._health_check_interval = health_check_interval

        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None
        self._is_connected = False

    @staticmethod
    def _sanitize_url(url: str) -> str:
        """Strip credentials from a Redis URL for logging."""
        if "@" in url:
            protocol, rest = url.split("://", 1)
            _, host_part = rest.split("@", 1)
            return f"{protocol}://***@{host_part}"
        return url

    async def connect(self) -> None:
        """
        Create the connection pool and verify connectivity with PING.

        Raises:
            ConnectionError: If the server cannot be reached
        """
        if self._is_connected:
            logger.warning("Redis client already connected")
            return

        try:
            self._pool = ConnectionPool.from_url(
                self._url,
                max_connections=self._max_connections,
                socket_timeout=self._socket_timeout,
                socket_connect_timeout=self._socket_connect_timeout,
                retry_on_timeout=True,
                health_check_interval=self._health_check_interval,
                retry=Retry(ExponentialBackoff(base=0.1, cap=2.0), retries=3),
                decode_responses=True,
            )
            self._client = Redis(connection_pool=self._pool)
            await self._client.ping()
            self._is_connected = True

            logger.info(
                "Redis connection established",
                url=self._sanitize_url(self._url),
                pool_size=self._max_connections,
            )
        except (ConnectionError, TimeoutError) as e:
            logger.error(
                "Failed to connect to Redis",
                error=str(e),
                url=self._sanitize_url(self._url),
            )
            await self._release()
            raise ConnectionError(f"Redis connection failed: {e}") from e

    async def _release(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None
        self._is_connected = False

    async def disconnect(self) -> None:
        """Close the pool and release all connections."""
        if not self._is_connected:
            return
        await self._release()
        logger.info("Redis connection closed")

    async def health_check(self) -> bool:
        """Return True when the server answers PING."""
        if not self._is_connected or self._client is None:
            return False
        try:
            await self._client.ping()
            return True
        except RedisError as e:
            logger.error(
                "Redis health check failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    def _ensure_connected(self) -> Redis:
        if not self._is_connected or self._client is None:
            raise ConnectionError("Redis client is not connected")
        return self._client

    async def get(self, key: str) -> Optional[str]:
        client = self._ensure_connected()
        try:
            value = await client.get(key)
        except RedisError as e:
            logger.error("Redis GET operation failed", key=key, error=str(e))
            raise
        return value

    async def set(
        self,
        key: str,
        value: Union[str, bytes, int, float],
        ex: Optional[int] = None,
    ) -> bool:
        client = self._ensure_connected()
        try:
            return bool(await client.set(key, value, ex=ex))
        except RedisError as e:
            logger.error("Redis SET operation failed", key=key, error=str(e))
            raise

    async def delete(self, *keys: str) -> int:
        client = self._ensure_connected()
        try:
            return await client.delete(*keys)
        except RedisError as e:
            logger.error("Redis DELETE operation failed", keys=keys, error=str(e))
            raise

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete all keys matching a glob pattern.

        Args:
            pattern: Redis key pattern (e.g. "fulfillment:rates:*")

        Returns:
            Number of keys deleted
        """
        client = self._ensure_connected()
        try:
            keys = [key async for key in client.scan_iter(match=pattern)]
            if not keys:
                return 0
            count = await client.delete(*keys)
            logger.debug("Redis DELETE pattern", pattern=pattern, count=count)
            return count
        except RedisError as e:
            logger.error("Redis DELETE pattern failed", pattern=pattern, error=str(e))
            raise

    async def get_json(self, key: str) -> Optional[Any]:
        value = await self.get(key)
        if value is None:
            return None
        return json.loads(value)

    async def set_json(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        return await self.set(key, json.dumps(value), ex=ex)

    async def publish(self, channel: str, message: dict[str, Any]) -> int:
        """
        Publish a JSON message on a pub/sub channel.

        Returns:
            Number of subscribers that received the message
        """
        client = self._ensure_connected()
        try:
            receivers = await client.publish(channel, json.dumps(message))
            logger.debug("Redis PUBLISH", channel=channel, receivers=receivers)
            return receivers
        except RedisError as e:
            logger.error("Redis PUBLISH failed", channel=channel, error=str(e))
            raise


class CacheKeyManager:
    """Builds namespaced cache keys for rate configuration."""

    def __init__(self, namespace: str = "fulfillment"):
        self.namespace = namespace

    def make_key(self, *parts: Union[str, int]) -> str:
        """
        Join key parts under the namespace.

        Example:
            >>> CacheKeyManager("app").make_key("rates", "tiers", "c-1")
            'app:rates:tiers:c-1'
        """
        key_parts = [str(part) for part in parts if part not in (None, "")]
        return ":".join([self.namespace] + key_parts)

    def pricing_tiers_key(self) -> str:
        return self.make_key("rates", "tiers")

    def transport_rates_key(self) -> str:
        return self.make_key("rates", "transport")

    def rates_pattern(self) -> str:
        return self.make_key("rates", "*")


_redis_client: Optional[RedisClient] = None
_cache_key_manager: Optional[CacheKeyManager] = None


async def get_redis_client() -> RedisClient:
    """
    Get or create the global Redis client.

    Raises:
        ConnectionError: If the connection cannot be established
    """
    global _redis_client

    if _redis_client is None:
        client = RedisClient()
        await client.connect()
        _redis_client = client

    return _redis_client


def get_cache_key_manager() -> CacheKeyManager:
    global _cache_key_manager

    if _cache_key_manager is None:
        _cache_key_manager = CacheKeyManager()

    return _cache_key_manager


async def close_redis_client() -> None:
    """Close the global Redis client."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.disconnect()
        _redis_client = None
