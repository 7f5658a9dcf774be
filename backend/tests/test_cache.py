"""
Tests for the calendar cache.
"""

from datetime import date

import pytest

from reservation_engine.services.cache_service import CalendarCache

JUNE = (date(2030, 6, 1), date(2030, 6, 8))


@pytest.mark.asyncio
async def test_get_after_set(fake_redis):
    cache = CalendarCache(fake_redis, ttl=30)
    generation = await cache.generation(1)

    await cache.set(1, generation, *JUNE, {"feasible": True, "unit_count": 2})

    assert generation == 0
    assert await cache.get(1, generation, *JUNE) == {"feasible": True, "unit_count": 2}
    assert await cache.get(1, generation, date(2030, 6, 1), date(2030, 6, 9)) is None


@pytest.mark.asyncio
async def test_invalidate_only_touches_one_resource(fake_redis):
    cache = CalendarCache(fake_redis)
    await cache.set(1, 0, *JUNE, {"resource_id": 1})
    await cache.set(1, 0, date(2030, 7, 1), date(2030, 7, 8), {"resource_id": 1})
    await cache.set(11, 0, *JUNE, {"resource_id": 11})

    await cache.invalidate_resource(1)

    assert sorted(fake_redis.data) == [
        "calendar-generation:1",
        "calendar:11:g0:2030-06-01:2030-06-08",
    ]
    assert await cache.generation(1) == 1
    assert await cache.generation(11) == 0


@pytest.mark.asyncio
async def test_write_computed_before_invalidation_is_never_served(fake_redis):
    cache = CalendarCache(fake_redis)
    # A reader fetches the generation, then a reservation lands before it writes.
    seen = await cache.generation(1)
    await cache.invalidate_resource(1)
    await cache.set(1, seen, *JUNE, {"days": "stale"})

    current = await cache.generation(1)

    assert current == seen + 1
    assert await cache.get(1, current, *JUNE) is None

    await cache.set(1, current, *JUNE, {"days": "fresh"})
    assert await cache.get(1, current, *JUNE) == {"days": "fresh"}


@pytest.mark.asyncio
async def test_disabled_cache_is_a_noop():
    cache = CalendarCache(None)

    await cache.set(1, 0, *JUNE, {"feasible": True})

    assert cache.enabled is False
    assert await cache.generation(1) is None
    assert await cache.get(1, 0, *JUNE) is None
    assert await cache.stats() == {"status": "disabled"}


@pytest.mark.asyncio
async def test_redis_errors_degrade_to_miss():
    class BrokenRedis:
        async def get(self, key):
            raise ConnectionError("redis down")

    cache = CalendarCache(BrokenRedis())

    assert await cache.generation(1) is None
    assert await cache.get(1, 0, *JUNE) is None
