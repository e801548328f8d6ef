"""Redis store for batch run history.

Handles:
- Recent price-check batch summaries (capped list, newest first)

Redis is optional at runtime: callers treat failures here as non-fatal.
"""

import json
import logging
from typing import Any

import redis.asyncio as redis

from pricewatch.settings import get_settings

# Key names
KEY_BATCH_RUNS = "pricewatch:batch_runs"

# Redis client (initialized on startup)
_redis: redis.Redis | None = None
logger = logging.getLogger("uvicorn.error")


async def init_redis() -> None:
    """Initialize Redis connection."""
    global _redis
    settings = get_settings()
    _redis = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )
    await _redis.ping()
    logger.info("Redis connected")


async def close_redis() -> None:
    """Close Redis connection."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def _get_redis() -> redis.Redis:
    """Get Redis client instance."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis


# ============================================================
# Batch run history
# ============================================================


async def record_batch_run(summary: dict[str, Any], max_items: int | None = None) -> None:
    """Push a batch summary and trim the list to the newest max_items.

    Args:
        summary: JSON-serializable summary (trigger, timestamps, counts).
        max_items: List cap; defaults to settings.batch_history_size.
    """
    if max_items is None:
        max_items = get_settings().batch_history_size
    client = _get_redis()
    await client.lpush(KEY_BATCH_RUNS, json.dumps(summary, default=str))
    await client.ltrim(KEY_BATCH_RUNS, 0, max_items - 1)


async def get_recent_batch_runs(limit: int = 20) -> list[dict[str, Any]]:
    """Return up to `limit` batch summaries, newest first."""
    raw = await _get_redis().lrange(KEY_BATCH_RUNS, 0, limit - 1)
    runs: list[dict[str, Any]] = []
    for item in raw:
        try:
            runs.append(json.loads(item))
        except json.JSONDecodeError:
            logger.warning(f"[redis] Skipping malformed batch summary: {item[:80]!r}")
    return runs
