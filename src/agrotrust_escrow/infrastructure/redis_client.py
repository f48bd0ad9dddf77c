"""Redis client for init idempotency keys.

Usage:
    from agrotrust_escrow.infrastructure.redis_client import init_redis, recall_init

    await init_redis()
    replay = await recall_init(redis, "client-key-123")
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as aioredis

from agrotrust_escrow.config import get_settings
from agrotrust_escrow.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None

_INIT_PREFIX = "idempotency:escrow-init:"


async def init_redis() -> aioredis.Redis | None:
    """Initialize the Redis client. Called during app startup.

    Redis only backs optional idempotency keys, so an unreachable server is
    logged and the app starts without it.
    """
    global _redis_client
    settings = get_settings()
    client = aioredis.from_url(settings.redis_url, decode_responses=True)
    try:
        await client.ping()
    except (aioredis.ConnectionError, aioredis.TimeoutError, OSError) as exc:
        logger.warning("redis.unavailable", url=settings.redis_url, error=str(exc))
        await client.aclose()
        _redis_client = None
        return None
    _redis_client = client
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis | None:
    """Return the Redis client singleton, or None when Redis is not connected."""
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Idempotency Helpers ---


async def recall_init(redis: aioredis.Redis, key: str) -> dict[str, Any] | None:
    """Return what an earlier init stored under ``key``, if any.

    The record holds ``contract_id`` and, for direct payment flows, the
    ``client_secret`` the buyer confirms the deposit with.
    """
    raw = await redis.get(f"{_INIT_PREFIX}{key}")
    return json.loads(raw) if raw else None


async def remember_init(
    redis: aioredis.Redis,
    key: str,
    contract_id: str,
    client_secret: str | None = None,
) -> None:
    """Map an init idempotency key to the contract it created, with a TTL."""
    settings = get_settings()
    await redis.set(
        f"{_INIT_PREFIX}{key}",
        json.dumps({"contract_id": contract_id, "client_secret": client_secret}),
        ex=settings.redis_idempotency_ttl_seconds,
    )
