"""
Courtside — Shared Redis client.

Connected once in the application lifespan; services fetch it through
``get_redis()`` and must tolerate ``None`` (e.g. scripts and tests run
without Redis).
"""

from __future__ import annotations

import redis.asyncio as aioredis
import structlog

from app.config import get_settings

logger = structlog.get_logger("courtside.cache")

_redis_client: aioredis.Redis | None = None


async def connect_redis() -> None:
    global _redis_client

    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=5,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis_connected", url=settings.REDIS_URL)


async def close_redis() -> None:
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
        logger.info("redis_closed")


def get_redis() -> aioredis.Redis | None:
    """Return the shared Redis client, or ``None`` before startup."""
    return _redis_client
