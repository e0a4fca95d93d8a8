"""
Codelab Grader - Cache Infrastructure
Redis client with connection pooling and circuit breaker
"""

import json
from typing import Any, Optional

import structlog
from pybreaker import CircuitBreaker, CircuitBreakerError
from redis.asyncio import ConnectionPool, Redis

from app.core.config import Settings

logger = structlog.get_logger(__name__)


# Circuit breaker for Redis operations
redis_breaker = CircuitBreaker(
    fail_max=5,
    reset_timeout=30,
    exclude=[ConnectionError],
)


class CacheManager:
    """
    Redis cache manager with circuit breaker pattern.

    Cache misses and Redis failures look the same to callers: both return
    None, so the battery cache degrades to its delegate provider.
    """

    def __init__(self, settings: Settings):
        self._settings = settings
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = None

    async def connect(self) -> None:
        """Initialize Redis connection pool."""
        logger.info(
            "Connecting to Redis",
            host=str(self._settings.redis_url).split("@")[-1],
        )

        self._pool = ConnectionPool.from_url(
            str(self._settings.redis_url),
            password=self._settings.redis_password or None,
            max_connections=self._settings.redis_pool_size,
            decode_responses=True,
        )
        self._client = Redis(connection_pool=self._pool)

        await self._client.ping()
        logger.info("Redis connection established")

    async def disconnect(self) -> None:
        """Close Redis connection pool."""
        if self._client:
            await self._client.aclose()
        if self._pool:
            await self._pool.disconnect()
        logger.info("Redis connection closed")

    @property
    def connected(self) -> bool:
        return self._client is not None

    @property
    def client(self) -> Redis:
        if self._client is None:
            raise RuntimeError("Cache not connected")
        return self._client

    @redis_breaker
    async def get(self, key: str) -> Optional[str]:
        """
        Get a value from cache.

        Args:
            key: Cache key

        Returns:
            Cached value or None
        """
        try:
            return await self.client.get(key)
        except CircuitBreakerError:
            logger.warning("Redis circuit breaker open", key=key)
            return None
        except Exception as e:
            logger.error("Redis get error", key=key, error=str(e))
            return None

    @redis_breaker
    async def set(
        self,
        key: str,
        value: str,
        ttl: Optional[int] = None,
    ) -> bool:
        """
        Set a value in cache.

        Args:
            key: Cache key
            value: Value to cache
            ttl: Time to live in seconds

        Returns:
            True if successful
        """
        try:
            await self.client.set(key, value, ex=ttl)
            return True
        except CircuitBreakerError:
            logger.warning("Redis circuit breaker open", key=key)
            return False
        except Exception as e:
            logger.error("Redis set error", key=key, error=str(e))
            return False

    @redis_breaker
    async def delete(self, key: str) -> bool:
        try:
            result = await self.client.delete(key)
            return result > 0
        except CircuitBreakerError:
            logger.warning("Redis circuit breaker open", key=key)
            return False
        except Exception as e:
            logger.error("Redis delete error", key=key, error=str(e))
            return False

    async def get_json(self, key: str) -> Optional[Any]:
        """Get a JSON document; invalid JSON counts as a miss."""
        value = await self.get(key)
        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.error("Invalid JSON in cache", key=key)
            return None

    async def set_json(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
    ) -> bool:
        try:
            serialized = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.error("JSON serialization error", key=key, error=str(e))
            return False
        return await self.set(key, serialized, ttl)

    async def health_check(self) -> dict:
        """
        Check Redis health.

        Returns:
            Health status dictionary
        """
        try:
            await self.client.ping()
            info = await self.client.info("memory")

            return {
                "status": "healthy",
                "used_memory": info.get("used_memory_human", "unknown"),
            }
        except Exception as e:
            logger.error("Redis health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e),
            }
