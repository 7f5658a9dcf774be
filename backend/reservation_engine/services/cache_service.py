"""
Redis caching service for availability calendars.

CACHING STRATEGY
================

What we cache:
  - Per-day breakdowns of a date-range resource (JSON-serialized)
  - Cache key pattern: "calendar:{resource_id}:g{generation}:{start}:{end}"

Invalidation strategy:
  - On create, cancel or hold reclamation of a reservation on a resource:
    bump the resource generation, then delete every calendar key for it.
    Readers fetch the generation before computing a calendar and write under
    it, so a breakdown computed across an invalidation is never served
  - TTL-based expiry as safety net (CALENDAR_CACHE_TTL seconds)

  All keys for one resource start with "calendar:{resource_id}:" so we can
  SCAN and delete them.

What we never do:
  - Read the cache when admitting a reservation. Creation always counts
    live reservations in the store; a stale calendar is only a display issue.

Redis is optional. Every failure degrades to an uncached read.
"""

import json
from datetime import date
from typing import Optional

import redis.asyncio as redis

from reservation_engine.core.config import Settings, get_settings
from reservation_engine.core.logging import get_logger
from reservation_engine.core.metrics import record_cache_operation

logger = get_logger(__name__)

_redis_client: Optional[redis.Redis] = None


async def get_redis(settings: Settings | None = None) -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled or unreachable."""
    global _redis_client
    settings = settings or get_settings()

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        try:
            _redis_client = redis.from_url(
                settings.REDIS_URL,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
            )
            # Test connection
            await _redis_client.ping()
            logger.info("redis_connected", url=settings.REDIS_URL)
        except Exception as e:
            logger.error("redis_connection_failed", error=str(e))
            _redis_client = None
            return None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def _calendar_prefix(resource_id: int) -> str:
    return f"calendar:{resource_id}:"


def _calendar_key(resource_id: int, generation: int, start: date, end: date) -> str:
    return f"{_calendar_prefix(resource_id)}g{generation}:{start.isoformat()}:{end.isoformat()}"


def _generation_key(resource_id: int) -> str:
    return f"calendar-generation:{resource_id}"


class CalendarCache:
    """Calendar cache over an optional Redis client; a None client disables it."""

    def __init__(self, client: Optional[redis.Redis], ttl: int = 30):
        self.client = client
        self.ttl = ttl

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def generation(self, resource_id: int) -> Optional[int]:
        """Current calendar generation of a resource, or None when uncacheable."""
        if self.client is None:
            return None

        try:
            value = await self.client.get(_generation_key(resource_id))
            return int(value or 0)
        except Exception as e:
            logger.error("cache_generation_error", resource_id=resource_id, error=str(e))
            return None

    async def get(self, resource_id: int, generation: int, start: date, end: date) -> Optional[dict]:
        if self.client is None:
            return None

        key = _calendar_key(resource_id, generation, start, end)
        try:
            data = await self.client.get(key)
            record_cache_operation("calendar_get", hit=data is not None)
            if data:
                logger.debug("cache_hit", key=key)
                return json.loads(data)
            logger.debug("cache_miss", key=key)
        except Exception as e:
            logger.error("cache_get_error", key=key, error=str(e))

        return None

    async def set(self, resource_id: int, generation: int, start: date, end: date, data: dict) -> None:
        if self.client is None:
            return

        key = _calendar_key(resource_id, generation, start, end)
        try:
            await self.client.setex(key, self.ttl, json.dumps(data, default=str))
            logger.debug("cache_set", key=key, ttl=self.ttl)
        except Exception as e:
            logger.error("cache_set_error", key=key, error=str(e))

    async def invalidate_resource(self, resource_id: int) -> None:
        """
        Move the resource to a new generation, then delete the old windows.

        A calendar computed before the bump is written under the old
        generation and never read again, so a slow reader cannot
        resurrect a stale breakdown.
        """
        if self.client is None:
            return

        try:
            generation = await self.client.incr(_generation_key(resource_id))
            deleted = 0
            async for key in self.client.scan_iter(match=f"{_calendar_prefix(resource_id)}*", count=100):
                await self.client.delete(key)
                deleted += 1
            logger.info(
                "cache_invalidated",
                resource_id=resource_id,
                generation=generation,
                keys_deleted=deleted,
            )
        except Exception as e:
            logger.error("cache_invalidation_error", resource_id=resource_id, error=str(e))

    async def stats(self) -> dict:
        """Redis cache statistics for the health endpoint."""
        if self.client is None:
            return {"status": "disabled"}

        try:
            info = await self.client.info("stats")
            hits = info.get("keyspace_hits", 0)
            misses = info.get("keyspace_misses", 0)
            return {
                "status": "connected",
                "hits": hits,
                "misses": misses,
                "hit_rate": round(hits / max(hits + misses, 1) * 100, 2),
            }
        except Exception as e:
            return {"status": "error", "error": str(e)}
