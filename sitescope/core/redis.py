"""
Redis client factory with connection pooling, health checks and the
per-domain run creation lock.
"""

from typing import Annotated

import redis.asyncio as aioredis
import structlog
from fastapi import Depends

from sitescope.core.config import get_settings

logger = structlog.get_logger(__name__)
settings = get_settings()

_redis_pool: aioredis.ConnectionPool | None = None


def _get_pool() -> aioredis.ConnectionPool:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.ConnectionPool.from_url(
            str(settings.REDIS_DSN),
            max_connections=settings.REDIS_MAX_CONNECTIONS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=5.0,
            retry_on_timeout=True,
            health_check_interval=30,
            decode_responses=True,
        )
    return _redis_pool


async def get_redis_client() -> aioredis.Redis:
    return aioredis.Redis(connection_pool=_get_pool())


async def get_redis() -> aioredis.Redis:
    return await get_redis_client()


RedisClient = Annotated[aioredis.Redis, Depends(get_redis)]


async def ping_redis() -> None:
    """Raises when Redis is unreachable."""
    client = await get_redis_client()
    await client.ping()


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None


class RunLock:
    """
    Short-lived per-domain lock held while a run is being created.

    Two requests for the same domain racing through the "is there an active
    run?" check would otherwise both create one.
    """

    def __init__(self, redis: aioredis.Redis, namespace: str = "sitescope", ttl: int | None = None):
        self.redis = redis
        self.namespace = namespace
        self.ttl = ttl or settings.RUN_LOCK_TTL

    def _key(self, domain: str) -> str:
        return f"{self.namespace}:run-lock:{domain.lower()}"

    async def acquire(self, domain: str) -> bool:
        acquired = await self.redis.set(self._key(domain), "1", nx=True, ex=self.ttl)
        if not acquired:
            logger.info("Run lock busy", domain=domain)
        return bool(acquired)

    async def release(self, domain: str) -> None:
        await self.redis.delete(self._key(domain))
