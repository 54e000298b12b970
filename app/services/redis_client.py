# app/services/redis_client.py
import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.config import settings
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

# Delete the key only while it still holds our lease token
_RELEASE_IF_OWNER = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class FastRedisClient:
    """Pooled Upstash Redis client used for run leases and token caching."""

    def __init__(self):
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            redis_url = self._build_upstash_redis_url()
            logger.info("Attempting Redis connection", url_preview=redis_url[:30] + "...")

            self.pool = ConnectionPool.from_url(
                redis_url,
                max_connections=10,
                retry_on_timeout=True,
                retry_on_error=[redis.ConnectionError, redis.TimeoutError],
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                ssl_check_hostname=True,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)

            await self.client.ping()
            self._initialized = True
            logger.info("Redis client initialized", max_connections=10)

        except Exception as e:
            logger.error("Failed to initialize Redis client", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    def _build_upstash_redis_url(self) -> str:
        """REST URL host + token -> native TLS URL (rediss://default:<token>@host:6379)."""
        rest_url = settings.UPSTASH_REDIS_REST_URL
        host = rest_url.split("://", 1)[-1].strip("/")
        return f"rediss://default:{settings.UPSTASH_REDIS_REST_TOKEN}@{host}:6379"

    async def close(self):
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
        try:
            await self._ensure_initialized()
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get(self, key: str) -> str | None:
        try:
            await self._ensure_initialized()
            return await self.client.get(key) or None
        except Exception as e:
            logger.error("Redis GET failed", key=key[:30], error=str(e))
            return None

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        try:
            await self._ensure_initialized()
            if ttl_s:
                return bool(await self.client.setex(key, ttl_s, value))
            return bool(await self.client.set(key, value))
        except Exception as e:
            logger.error("Redis SET failed", key=key[:30], error=str(e))
            return False

    async def set_if_absent(self, key: str, value: str, ttl_s: int) -> bool | None:
        """
        SET NX EX.

        Returns:
            True when the key was set, False when it already existed,
            None when Redis could not be reached.
        """
        try:
            await self._ensure_initialized()
            return bool(await self.client.set(key, value, nx=True, ex=ttl_s))
        except Exception as e:
            logger.error("Redis SET NX failed", key=key[:30], error=str(e))
            return None

    async def delete_if_equals(self, key: str, value: str) -> bool:
        try:
            await self._ensure_initialized()
            return bool(await self.client.eval(_RELEASE_IF_OWNER, 1, key, value))
        except Exception as e:
            logger.error("Redis compare-and-delete failed", key=key[:30], error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self._ensure_initialized()
            return await self.client.delete(key) > 0
        except Exception as e:
            logger.error("Redis DELETE failed", key=key[:30], error=str(e))
            return False


# Global instance
fast_redis = FastRedisClient()
