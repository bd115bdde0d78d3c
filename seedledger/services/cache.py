"""
Redis Cache Service.

Caches ranking reads to spare full-region scans:
- Region ranking (per region and limit)
- All-regions summary (per limit)

Uses JSON serialization. Graceful degradation: without REDIS_URL, or when
Redis is unreachable, every read is a miss and every write is a no-op.
"""

import json
from typing import Any, Optional

import structlog

from seedledger.config import settings

logger = structlog.get_logger(__name__)

_redis = None


async def get_redis():
    """Lazy-init Redis connection. None when not configured or unavailable."""
    global _redis
    if _redis is None and settings.redis_url:
        try:
            import redis.asyncio as aioredis

            _redis = aioredis.from_url(
                settings.redis_url,
                decode_responses=True,
                socket_connect_timeout=3,
            )
            await _redis.ping()
            logger.info("redis_connected")
        except Exception as e:
            logger.warning("redis_unavailable", error=str(e))
            _redis = None
    return _redis


async def cache_get(key: str) -> Optional[Any]:
    """Get from cache. Returns None if miss or Redis unavailable."""
    try:
        r = await get_redis()
        if r is None:
            return None
        val = await r.get(key)
        return json.loads(val) if val else None
    except Exception as e:
        logger.debug("cache_get_failed", key=key, error=str(e))
        return None


async def cache_set(key: str, value: Any, ttl_seconds: int = 60) -> bool:
    """Set cache with TTL. Returns False if failed."""
    try:
        r = await get_redis()
        if r is None:
            return False
        await r.set(key, json.dumps(value, ensure_ascii=False, default=str), ex=ttl_seconds)
        return True
    except Exception as e:
        logger.debug("cache_set_failed", key=key, error=str(e))
        return False


async def cache_delete(pattern: str) -> int:
    """Delete keys matching pattern. Returns count deleted."""
    try:
        r = await get_redis()
        if r is None:
            return 0
        keys = [key async for key in r.scan_iter(match=pattern)]
        if keys:
            return await r.delete(*keys)
        return 0
    except Exception as e:
        logger.debug("cache_delete_failed", pattern=pattern, error=str(e))
        return 0


async def close_redis():
    """Close Redis connection."""
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


# ── Cache key builders ───────────────────────────────────────────────────


def region_ranking_key(region: str, limit: int) -> str:
    return f"seedledger:ranking:{region}:{limit}"


def all_regions_key(limit_per_region: int) -> str:
    return f"seedledger:ranking_all:{limit_per_region}"


async def invalidate_region(region: str) -> int:
    """Drop cached reads that include `region`."""
    deleted = await cache_delete(f"seedledger:ranking:{region}:*")
    deleted += await cache_delete("seedledger:ranking_all:*")
    return deleted
