# app/services/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class RedisClientError(Exception):
    """Raised when a Redis read or write cannot be completed."""

    def __init__(self, message: str, key: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.key = key
        self.recoverable = recoverable


class FastRedisClient:
    """Pooled async Redis client shared by the availability store and health checks"""

    def __init__(self, url: str | None = None, max_connections: int | None = None):
        self.url = url or settings.REDIS_URL
        self.max_connections = max_connections or settings.REDIS_MAX_CONNECTIONS
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            logger.info("Attempting Redis connection", url_preview=self.url[:30] + "...")

            self.pool = ConnectionPool.from_url(
                self.url,
                max_connections=self.max_connections,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,  # Auto-decode strings
            )

            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Redis client initialized", max_connections=self.max_connections)

        except Exception as e:
            logger.error("Failed to initialize Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Redis client closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()

    async def ping(self) -> bool:
        """Test Redis connection"""
        try:
            await self._ensure_initialized()
            result = await self.client.ping()
            return bool(result)
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get(self, key: str) -> str | None:
        """Get value; failures propagate so callers decide whether to retry"""
        try:
            await self._ensure_initialized()
            result = await self.client.get(key)
            return result if result else None
        except Exception as e:
            logger.error("Redis GET failed", key=key[:30], error=str(e))
            raise RedisClientError(f"Redis GET failed: {e}", key=key) from e

    async def set(self, key: str, value: str) -> bool:
        """Set value without expiry"""
        try:
            await self._ensure_initialized()
            result = await self.client.set(key, value)
            return bool(result)
        except Exception as e:
            logger.error("Redis SET failed", key=key[:30], error=str(e))
            raise RedisClientError(f"Redis SET failed: {e}", key=key) from e

    async def delete(self, key: str) -> bool:
        try:
            await self._ensure_initialized()
            result = await self.client.delete(key)
            return result > 0
        except Exception as e:
            logger.error("Redis DELETE failed", key=key[:30], error=str(e))
            raise RedisClientError(f"Redis DELETE failed: {e}", key=key) from e


# Global instance
fast_redis = FastRedisClient()
