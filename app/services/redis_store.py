# app/services/redis_store.py
"""Module-level Redis helpers over the pooled client."""

import uuid

from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import fast_redis

logger = get_logger(__name__)


async def ping() -> bool:
    return await fast_redis.ping()


async def get(key: str) -> str | None:
    return await fast_redis.get(key)


async def set_with_ttl(key: str, value: str, ttl_s: int | None = None) -> bool:
    return await fast_redis.set_with_ttl(key, value, ttl_s)


async def delete(key: str) -> bool:
    return await fast_redis.delete(key)


async def acquire_lease(key: str, ttl_s: int) -> tuple[bool | None, str]:
    """
    Take an expiring lease on `key`.

    Returns (acquired, token). `acquired` is None when Redis is unavailable;
    the token is needed to release the lease.
    """
    token = uuid.uuid4().hex
    acquired = await fast_redis.set_if_absent(key, token, ttl_s)
    return acquired, token


async def release_lease(key: str, token: str) -> bool:
    return await fast_redis.delete_if_equals(key, token)


async def health_check() -> dict:
    """Ping plus a set/get/delete round trip."""
    try:
        if not await ping():
            return {"healthy": False, "ping": False, "error": "Redis ping failed", "service": "redis_store"}

        test_key = "health_check_test"
        test_value = uuid.uuid4().hex
        set_ok = await set_with_ttl(test_key, test_value, 10)
        get_ok = set_ok and await get(test_key) == test_value
        if set_ok:
            await delete(test_key)

        return {
            "healthy": bool(set_ok and get_ok),
            "ping": True,
            "set_get_operations": bool(set_ok and get_ok),
            "service": "redis_store",
        }

    except Exception as e:
        logger.error("Redis health check failed", error=str(e))
        return {"healthy": False, "error": str(e), "service": "redis_store"}
