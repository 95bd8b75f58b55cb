"""Redis client for the deadline-scan overlap lock.

Usage:
    from engagement_lifecycle.infrastructure.redis_client import get_redis, scan_lock

    async with scan_lock(get_redis(), "lock:deadline-scan", ttl_seconds=300):
        ...
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from engagement_lifecycle.config import get_settings
from engagement_lifecycle.domain.exceptions import DuplicateOperationError
from engagement_lifecycle.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

# Deletes the key only if it still holds our token, so an expired lock
# re-acquired by another cycle is never released by us.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


def redis_available() -> bool:
    return _redis_client is not None


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Scan Lock ---


@asynccontextmanager
async def scan_lock(
    redis: aioredis.Redis, key: str, ttl_seconds: int
) -> AsyncIterator[str | None]:
    """Hold `key` for the duration of one scan cycle.

    Raises DuplicateOperationError if another cycle currently holds it. The
    TTL matches the cycle's wall-clock budget, so a crashed cycle frees the
    lock on its own. If Redis cannot be reached the cycle runs unlocked and
    the yielded token is None.
    """
    token = uuid.uuid4().hex
    try:
        acquired = await redis.set(key, token, nx=True, ex=ttl_seconds)
    except RedisError as exc:
        # The idempotency guards keep an unlocked cycle safe.
        logger.warning("scan.lock_unavailable", key=key, error=str(exc))
        yield None
        return

    if not acquired:
        raise DuplicateOperationError(key)
    try:
        yield token
    finally:
        try:
            await redis.eval(_RELEASE_SCRIPT, 1, key, token)
        except RedisError as exc:
            logger.warning("scan.lock_release_failed", key=key, error=str(exc))
