"""
Concurrency scenarios against the SQL store.

Unlike the in-memory store, every SqlCapacityStore call awaits the
database, so gathered requests interleave and the compare-and-swap
retry loops on slots and inventory guards actually run.
"""

import asyncio
from datetime import date, datetime, timezone

import pytest
import pytest_asyncio

from reservation_engine.domain.errors import CapacityExceeded, InvalidStateTransition
from reservation_engine.domain.models import (
    AllocationMode,
    DateRange,
    RangeRequest,
    Reservation,
    ReservationStatus,
    SeatRequest,
)
from reservation_engine.engine import ReservationEngine


@pytest.fixture
def sql_engine(sql_store, clock, settings, refunds, notifier) -> ReservationEngine:
    return ReservationEngine(sql_store, clock, settings=settings, refunds=refunds, notifier=notifier)


@pytest_asyncio.fixture
async def ferry_slot(sql_store):
    ferry = await sql_store.add_resource(
        name="Harbour Ferry", mode=AllocationMode.SEAT, capacity=4, base_price_cents=1500
    )
    return await sql_store.add_slot(ferry.id, datetime(2030, 6, 1, 14, 0, tzinfo=timezone.utc))


@pytest_asyncio.fixture
async def van(sql_store):
    return await sql_store.add_resource(
        name="Camper Van", mode=AllocationMode.INVENTORY, unit_count=2, base_price_cents=8000
    )


async def held_seats(store, reservations) -> int:
    total = 0
    for reservation in reservations:
        current = await store.get_reservation(reservation.id)
        if current.status is not ReservationStatus.CANCELLED:
            total += current.quantity
    return total


@pytest.mark.asyncio
async def test_five_concurrent_holds_on_four_seats(sql_engine, sql_store, ferry_slot):
    results = await asyncio.gather(*[
        sql_engine.create_reservation(ferry_slot.resource_id, SeatRequest(ferry_slot.id, seats=1))
        for _ in range(5)
    ])

    created = [r for r in results if isinstance(r, Reservation)]
    rejected = [r for r in results if isinstance(r, CapacityExceeded)]
    assert len(created) == 4
    assert len(rejected) == 1
    assert (await sql_store.get_slot(ferry_slot.id)).remaining_seats == 0
    assert await held_seats(sql_store, created) == 4


@pytest.mark.asyncio
async def test_six_concurrent_rentals_on_two_units(sql_engine, sql_store, van):
    window = DateRange(date(2030, 6, 10), date(2030, 6, 12))

    results = await asyncio.gather(*[
        sql_engine.create_reservation(van.id, RangeRequest(van.id, window.start, window.end))
        for _ in range(6)
    ])

    assert sum(isinstance(r, Reservation) for r in results) == 2
    assert sum(isinstance(r, CapacityExceeded) for r in results) == 4
    counts = await sql_store.daily_unit_counts(van.id, window)
    assert max(counts.values()) == 2


@pytest.mark.asyncio
async def test_confirm_and_expire_race_on_sql(sql_engine, sql_store, clock, ferry_slot):
    reservation = await sql_engine.create_reservation(
        ferry_slot.resource_id, SeatRequest(ferry_slot.id, seats=2)
    )
    clock.advance(minutes=16)

    confirmed, expired = await asyncio.gather(
        sql_engine.reservations.confirm(reservation.id, "pi_1"),
        sql_engine.reservations.expire(reservation.id),
    )

    winners = [r for r in (confirmed, expired) if isinstance(r, Reservation)]
    losers = [r for r in (confirmed, expired) if isinstance(r, InvalidStateTransition)]
    assert len(winners) == 1
    assert len(losers) == 1
    final = await sql_store.get_reservation(reservation.id)
    remaining = (await sql_store.get_slot(ferry_slot.id)).remaining_seats
    if final.status is ReservationStatus.CONFIRMED:
        assert remaining == 2
    else:
        assert final.status is ReservationStatus.CANCELLED
        assert remaining == 4


@pytest.mark.asyncio
async def test_mixed_traffic_conserves_seats_on_sql(sql_engine, sql_store, ferry_slot):
    request = SeatRequest(ferry_slot.id, seats=1)
    held = [await sql_engine.create_reservation(ferry_slot.resource_id, request) for _ in range(2)]

    results = await asyncio.gather(
        sql_engine.cancel_reservation(held[0].id),
        sql_engine.reservations.confirm(held[1].id, "pi_1"),
        sql_engine.create_reservation(ferry_slot.resource_id, SeatRequest(ferry_slot.id, seats=2)),
        sql_engine.create_reservation(ferry_slot.resource_id, SeatRequest(ferry_slot.id, seats=2)),
        sql_engine.cancel_reservation(held[0].id),
    )

    created = [r for r in results[2:4] if isinstance(r, Reservation)]
    slot = await sql_store.get_slot(ferry_slot.id)
    assert slot.remaining_seats + await held_seats(sql_store, held + created) == slot.capacity
