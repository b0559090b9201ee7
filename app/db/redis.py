"""Redis async client backing the task queue.

Provides helper methods wrapping raw Redis commands so callers never need
to handle redis.exceptions directly. All connection/command errors are
caught and re-raised as RedisConnectionError.
"""

import structlog
from redis.asyncio import Redis
from redis.asyncio import from_url as redis_from_url
from redis.exceptions import RedisError

from app.core.config import settings
from app.core.exceptions import RedisConnectionError

logger = structlog.get_logger(__name__)

_client: Redis = redis_from_url(
    settings.redis_url,
    decode_responses=True,
    encoding="utf-8",
)


# ---------------------------------------------------------------------------
# FastAPI dependency
# ---------------------------------------------------------------------------

async def get_redis() -> "RedisClient":
    """FastAPI dependency returning the singleton RedisClient wrapper."""
    return RedisClient(_client)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

async def close_redis() -> None:
    """Gracefully close the Redis connection pool."""
    logger.info("redis_shutdown")
    await _client.aclose()


# ---------------------------------------------------------------------------
# Helper wrapper
# ---------------------------------------------------------------------------

class RedisClient:
    """Thin wrapper over redis.asyncio.Redis with typed helpers.

    Every public method catches RedisError and re-raises as
    RedisConnectionError so the API layer gets a structured error.
    """

    def __init__(self, client: Redis) -> None:
        self._r = client

    async def lpush(self, key: str, value: str) -> int:
        """LPUSH a value onto a list."""
        try:
            return await self._r.lpush(key, value)
        except RedisError as e:
            logger.error("redis_lpush_failed", key=key, error=str(e))
            raise RedisConnectionError(f"Redis LPUSH failed: {e}") from e

    async def brpop(self, key: str, timeout_seconds: int) -> str | None:
        """Blocking RPOP. Returns the value, or None when the timeout elapses."""
        try:
            item = await self._r.brpop([key], timeout=timeout_seconds)
        except RedisError as e:
            logger.error("redis_brpop_failed", key=key, error=str(e))
            raise RedisConnectionError(f"Redis BRPOP failed: {e}") from e
        if item is None:
            return None
        # brpop returns (key, value)
        return item[1]

    async def llen(self, key: str) -> int:
        """LLEN — number of items waiting in a list."""
        try:
            return await self._r.llen(key)
        except RedisError as e:
            logger.error("redis_llen_failed", key=key, error=str(e))
            raise RedisConnectionError(f"Redis LLEN failed: {e}") from e
