"""
Pytest fixtures for stores, the engine, and the HTTP client.

Time is pinned with a FrozenClock so hold expiry and deposit grace periods
are driven explicitly. The SQL store runs on a throwaway SQLite file per
test; the in-memory store backs the engine and API tests.
"""

import fnmatch
from datetime import datetime, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from reservation_engine.core.clock import FrozenClock
from reservation_engine.core.config import Settings
from reservation_engine.db.base import Base
from reservation_engine.db.session import build_engine, build_session_factory
from reservation_engine.domain.models import AllocationMode, Reservation, Resource, Slot
from reservation_engine.engine import ReservationEngine
from reservation_engine.infrastructure.memory_store import InMemoryCapacityStore
from reservation_engine.infrastructure.refund_gateway import InMemoryRefundGateway
from reservation_engine.infrastructure.sql_store import SqlCapacityStore
from reservation_engine.main import app
from reservation_engine.services.cache_service import CalendarCache
from reservation_engine.services.interfaces.collaborators import (
    Notifier,
    RefundGateway,
    RefundResult,
)

START = datetime(2030, 6, 1, 9, 0, tzinfo=timezone.utc)


class RecordingNotifier(Notifier):
    def __init__(self):
        self.confirmed: list[int] = []

    async def reservation_confirmed(self, reservation: Reservation) -> None:
        self.confirmed.append(reservation.id)


class FlakyRefundGateway(RefundGateway):
    """Fails the first `failures` calls, then behaves like the in-memory gateway."""

    def __init__(self, failures: int = 0, raise_errors: bool = False):
        self.failures = failures
        self.raise_errors = raise_errors
        self.calls: list[tuple[int, int, str]] = []
        self._inner = InMemoryRefundGateway()

    async def issue_refund(self, reservation, amount_cents, idempotency_key) -> RefundResult:
        self.calls.append((reservation.id, amount_cents, idempotency_key))
        if len(self.calls) <= self.failures:
            if self.raise_errors:
                raise ConnectionError("refund gateway unreachable")
            return RefundResult(success=False, error="processor declined")
        return await self._inner.issue_refund(reservation, amount_cents, idempotency_key)


class FakeRedis:
    """Dict-backed stand-in for the handful of redis.asyncio calls the cache makes."""

    def __init__(self):
        self.data: dict[str, str] = {}

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, ttl, value):
        self.data[key] = value

    async def delete(self, key):
        self.data.pop(key, None)

    async def incr(self, key):
        self.data[key] = str(int(self.data.get(key, 0)) + 1)
        return int(self.data[key])

    async def scan_iter(self, match="*", count=None):
        for key in list(self.data):
            if fnmatch.fnmatch(key, match):
                yield key

    async def info(self, section=None):
        return {"keyspace_hits": 0, "keyspace_misses": 0}


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(START)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        STORE_BACKEND="memory",
        REDIS_ENABLED=False,
        SWEEPS_ENABLED=False,
        HOLD_DURATION_MINUTES=15,
        DEPOSIT_GRACE_PERIOD_DAYS=2,
        DEFAULT_DEPOSIT_CENTS=25000,
    )


@pytest.fixture
def memory_store() -> InMemoryCapacityStore:
    return InMemoryCapacityStore()


@pytest_asyncio.fixture
async def sql_store(tmp_path) -> AsyncGenerator[SqlCapacityStore, None]:
    """SQL store on a fresh SQLite file, tables created from the ORM metadata."""
    db_engine = build_engine(Settings(DEBUG=False), url=f"sqlite+aiosqlite:///{tmp_path}/test.db")
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield SqlCapacityStore(build_session_factory(db_engine), max_attempts=5)

    await db_engine.dispose()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request, memory_store, tmp_path):
    """Each store test runs against both backends."""
    if request.param == "memory":
        yield memory_store
        return

    db_engine = build_engine(Settings(DEBUG=False), url=f"sqlite+aiosqlite:///{tmp_path}/store.db")
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield SqlCapacityStore(build_session_factory(db_engine), max_attempts=5)
    await db_engine.dispose()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def refunds() -> FlakyRefundGateway:
    return FlakyRefundGateway()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def engine(memory_store, clock, settings, notifier, refunds, fake_redis) -> ReservationEngine:
    return ReservationEngine(
        memory_store,
        clock,
        settings=settings,
        refunds=refunds,
        notifier=notifier,
        calendar_cache=CalendarCache(fake_redis, ttl=30),
    )


@pytest_asyncio.fixture
async def seat_resource(memory_store) -> Resource:
    """Seat-based resource with 4 seats at 15.00 each."""
    return await memory_store.add_resource(
        name="Harbour Ferry",
        mode=AllocationMode.SEAT,
        capacity=4,
        base_price_cents=1500,
    )


@pytest_asyncio.fixture
async def slot(memory_store, seat_resource) -> Slot:
    return await memory_store.add_slot(seat_resource.id, START.replace(hour=14))


@pytest_asyncio.fixture
async def rental_resource(memory_store) -> Resource:
    """Two interchangeable units at 80.00 per night, default deposit."""
    return await memory_store.add_resource(
        name="Camper Van",
        mode=AllocationMode.INVENTORY,
        unit_count=2,
        base_price_cents=8000,
    )


@pytest_asyncio.fixture
async def client(engine: ReservationEngine) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the test engine installed."""
    app.state.engine = engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    del app.state.engine
