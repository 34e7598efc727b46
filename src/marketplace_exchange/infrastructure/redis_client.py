"""Redis connection for the notification channel.

Redis carries one thing in this engine: the transition events that
RedisNotificationDispatcher publishes on ``notifications_channel``. The
connection is only opened when ``notifications_backend`` is ``redis``.
With the default logging backend the engine runs without Redis.

Usage:
    await init_redis(settings)                 # lifespan startup
    await publish(channel, message)            # dispatcher
    status = await channel_status(settings)    # /health
    await close_redis()                        # lifespan shutdown
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import redis.asyncio as aioredis

from marketplace_exchange.config import get_settings
from marketplace_exchange.logging_config import get_logger

if TYPE_CHECKING:
    from marketplace_exchange.config import Settings

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


def redis_enabled(settings: Settings | None = None) -> bool:
    """True when transition events are published through Redis."""
    settings = settings or get_settings()
    return settings.notifications_backend == "redis"


async def init_redis(settings: Settings | None = None) -> aioredis.Redis:
    """Open the publishing connection and verify it with a PING."""
    global _redis_client
    settings = settings or get_settings()
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    try:
        await client.ping()
    except Exception:
        await client.aclose()
        raise
    _redis_client = client
    logger.info(
        "redis.connected",
        url=settings.redis_url,
        channel=settings.notifications_channel,
    )
    return client


def get_redis() -> aioredis.Redis:
    """Return the publishing connection. init_redis() must have succeeded."""
    if _redis_client is None:
        raise RuntimeError("Redis publisher is not connected. Call init_redis() at startup.")
    return _redis_client


async def publish(channel: str, message: str, client: aioredis.Redis | None = None) -> int:
    """Publish one message and return how many subscribers received it."""
    return await (client or get_redis()).publish(channel, message)


async def channel_status(settings: Settings | None = None) -> str:
    """``disabled``, ``healthy`` or ``unhealthy: <error>`` for the notification channel."""
    if not redis_enabled(settings):
        return "disabled"
    try:
        await get_redis().ping()
    except Exception as exc:
        logger.error("redis.ping_failed", error=str(exc))
        return f"unhealthy: {exc}"
    return "healthy"


async def close_redis() -> None:
    """Close the publishing connection if one is open."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None
