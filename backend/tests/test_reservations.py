"""
Tests for the reservation state machine including concurrency scenarios.
"""

import asyncio
from datetime import date, timedelta

import pytest

from reservation_engine.domain.errors import (
    CapacityExceeded,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
)
from reservation_engine.domain.models import (
    AllocationMode,
    DepositState,
    RangeRequest,
    Reservation,
    ReservationStatus,
    SeatRequest,
)


def june(day: int) -> date:
    return date(2030, 6, day)


async def assert_seats_conserved(store, slot_id):
    """remaining_seats + seats held by live reservations == capacity."""
    slot = await store.get_slot(slot_id)
    held = sum(
        r.quantity
        for r in store._reservations.values()
        if r.slot_id == slot_id and r.status is not ReservationStatus.CANCELLED
    )
    assert slot.remaining_seats + held == slot.capacity


@pytest.mark.asyncio
async def test_create_seat_reservation(engine, clock, seat_resource, slot):
    reservation = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id, seats=2))

    assert reservation.status is ReservationStatus.PENDING
    assert reservation.mode is AllocationMode.SEAT
    assert reservation.quantity == 2
    assert reservation.price_cents == 3000
    assert reservation.hold_expires_at == clock.now() + timedelta(minutes=15)
    assert reservation.deposit_cents == 0
    assert (await engine.store.get_slot(slot.id)).remaining_seats == 2


@pytest.mark.asyncio
async def test_four_concurrent_holds_fill_slot_fifth_fails(engine, seat_resource, slot):
    """Scenario: capacity 4, five concurrent single-seat requests."""
    results = await asyncio.gather(*[
        engine.create_reservation(seat_resource.id, SeatRequest(slot.id, seats=1))
        for _ in range(5)
    ])

    created = [r for r in results if isinstance(r, Reservation)]
    rejected = [r for r in results if isinstance(r, CapacityExceeded)]
    assert len(created) == 4
    assert len(rejected) == 1
    assert (await engine.store.get_slot(slot.id)).remaining_seats == 0
    await assert_seats_conserved(engine.store, slot.id)


@pytest.mark.asyncio
async def test_overlapping_rentals_respect_unit_count(engine, rental_resource):
    """Scenario: two units, A [1,5) and B [3,7) fit, C [4,6) does not."""
    rid = rental_resource.id

    a = await engine.create_reservation(rid, RangeRequest(rid, june(1), june(5)))
    b = await engine.create_reservation(rid, RangeRequest(rid, june(3), june(7)))
    c = await engine.create_reservation(rid, RangeRequest(rid, june(4), june(6)))

    assert isinstance(a, Reservation)
    assert isinstance(b, Reservation)
    assert isinstance(c, CapacityExceeded)


@pytest.mark.asyncio
async def test_concurrent_rentals_never_exceed_units(engine, rental_resource):
    rid = rental_resource.id

    results = await asyncio.gather(*[
        engine.create_reservation(rid, RangeRequest(rid, june(10), june(12)))
        for _ in range(6)
    ])

    assert sum(isinstance(r, Reservation) for r in results) == 2
    counts = await engine.store.daily_unit_counts(rid, RangeRequest(rid, june(10), june(12)).date_range)
    assert max(counts.values()) == 2


@pytest.mark.asyncio
async def test_rental_price_and_deposit(engine, memory_store, rental_resource):
    rid = rental_resource.id
    reservation = await engine.create_reservation(rid, RangeRequest(rid, june(1), june(4)))

    assert reservation.price_cents == 3 * 8000
    assert reservation.deposit_cents == 25000
    assert reservation.quantity == 1

    boat = await memory_store.add_resource(
        name="Sailboat", mode=AllocationMode.INVENTORY, unit_count=1, deposit_cents=100000
    )
    own = await engine.create_reservation(boat.id, RangeRequest(boat.id, june(1), june(2)))
    assert own.deposit_cents == 100000


@pytest.mark.asyncio
async def test_group_reservation_takes_slot(engine, seat_resource, slot):
    group = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id, as_group=True))

    assert group.quantity == 4
    assert group.price_cents == 4 * 1500
    current = await engine.store.get_slot(slot.id)
    assert current.remaining_seats == 0
    assert current.exclusive_group_held is True

    single = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id))
    assert isinstance(single, CapacityExceeded)

    await engine.cancel_reservation(group.id)
    freed = await engine.store.get_slot(slot.id)
    assert freed.remaining_seats == 4
    assert freed.exclusive_group_held is False


@pytest.mark.asyncio
async def test_creation_validation(engine, memory_store, seat_resource, slot, rental_resource):
    too_many = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id, seats=5))
    assert isinstance(too_many, ValidationError)
    assert too_many.field == "seats"

    zero = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id, seats=0))
    assert isinstance(zero, ValidationError)

    reversed_range = await engine.create_reservation(
        rental_resource.id, RangeRequest(rental_resource.id, june(5), june(3))
    )
    assert isinstance(reversed_range, ValidationError)

    wrong_mode = await engine.create_reservation(rental_resource.id, SeatRequest(slot.id))
    assert isinstance(wrong_mode, ValidationError)

    unknown = await engine.create_reservation(999, SeatRequest(slot.id))
    assert isinstance(unknown, NotFoundError)

    missing_slot = await engine.create_reservation(seat_resource.id, SeatRequest(999))
    assert isinstance(missing_slot, NotFoundError)

    other = await memory_store.add_resource(name="Other", mode=AllocationMode.SEAT, capacity=4)
    foreign_slot = await engine.create_reservation(other.id, SeatRequest(slot.id))
    assert isinstance(foreign_slot, ValidationError)

    # Nothing was held by any of the rejected requests.
    assert (await engine.store.get_slot(slot.id)).remaining_seats == 4


@pytest.mark.asyncio
async def test_inactive_resource_rejected(engine, memory_store):
    closed = await memory_store.add_resource(
        name="Closed", mode=AllocationMode.INVENTORY, unit_count=1, active=False
    )

    result = await engine.create_reservation(closed.id, RangeRequest(closed.id, june(1), june(2)))

    assert isinstance(result, ValidationError)


@pytest.mark.asyncio
async def test_custom_hold_duration(engine, clock, seat_resource, slot):
    reservation = await engine.create_reservation(
        seat_resource.id, SeatRequest(slot.id), hold_duration=timedelta(minutes=5)
    )
    assert reservation.hold_expires_at == clock.now() + timedelta(minutes=5)


@pytest.mark.asyncio
async def test_cancel_is_idempotent(engine, seat_resource, slot):
    reservation = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id, seats=2))

    first = await engine.cancel_reservation(reservation.id)
    second = await engine.cancel_reservation(reservation.id)

    assert first.status is ReservationStatus.CANCELLED
    assert second == first
    assert (await engine.store.get_slot(slot.id)).remaining_seats == 4
    await assert_seats_conserved(engine.store, slot.id)


@pytest.mark.asyncio
async def test_cancel_confirmed_is_refused(engine, seat_resource, slot):
    reservation = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id))
    await engine.reservations.confirm(reservation.id, "pi_1")

    result = await engine.cancel_reservation(reservation.id)

    assert isinstance(result, InvalidStateTransition)
    assert result.current == "confirmed"
    assert (await engine.store.get_slot(slot.id)).remaining_seats == 3


@pytest.mark.asyncio
async def test_admin_cancel_of_confirmed_releases_seats(engine, seat_resource, slot):
    reservation = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id, seats=3))
    await engine.reservations.confirm(reservation.id, "pi_1")

    cancelled = await engine.reservations.admin_cancel(reservation.id)

    assert cancelled.status is ReservationStatus.CANCELLED
    assert (await engine.store.get_slot(slot.id)).remaining_seats == 4
    await assert_seats_conserved(engine.store, slot.id)
    again = await engine.reservations.admin_cancel(reservation.id)
    assert again.status is ReservationStatus.CANCELLED
    assert (await engine.store.get_slot(slot.id)).remaining_seats == 4


@pytest.mark.asyncio
async def test_admin_cancel_frees_rental_unit_and_keeps_deposit(engine, rental_resource):
    rid = rental_resource.id
    a = await engine.create_reservation(rid, RangeRequest(rid, june(1), june(3)))
    await engine.create_reservation(rid, RangeRequest(rid, june(1), june(3)))
    await engine.reservations.confirm(a.id, "pi_a")

    cancelled = await engine.reservations.admin_cancel(a.id)

    assert cancelled.deposit_state is DepositState.HELD
    again = await engine.create_reservation(rid, RangeRequest(rid, june(2), june(3)))
    assert isinstance(again, Reservation)


@pytest.mark.asyncio
async def test_confirm_sets_deposit_for_rentals_only(engine, seat_resource, slot, rental_resource):
    seat = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id))
    rid = rental_resource.id
    rental = await engine.create_reservation(rid, RangeRequest(rid, june(1), june(2)))

    confirmed_seat = await engine.reservations.confirm(seat.id, "pi_seat")
    confirmed_rental = await engine.reservations.confirm(rental.id, "pi_rental")

    assert confirmed_seat.status is ReservationStatus.CONFIRMED
    assert confirmed_seat.payment_reference == "pi_seat"
    assert confirmed_seat.deposit_state is None
    assert confirmed_rental.deposit_state is DepositState.HELD


@pytest.mark.asyncio
async def test_confirm_only_from_pending(engine, seat_resource, slot):
    reservation = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id))
    await engine.cancel_reservation(reservation.id)

    result = await engine.reservations.confirm(reservation.id, "pi_late")

    assert isinstance(result, InvalidStateTransition)
    assert result.current == "cancelled"
    assert isinstance(await engine.reservations.confirm(999, "pi"), NotFoundError)


@pytest.mark.asyncio
async def test_begin_payment_while_hold_live(engine, clock, seat_resource, slot):
    reservation = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id))

    started = await engine.reservations.begin_payment(reservation.id, "pi_123")
    assert started.payment_reference == "pi_123"
    assert started.status is ReservationStatus.PENDING

    clock.advance(minutes=16)
    late = await engine.reservations.begin_payment(reservation.id, "pi_456")
    assert isinstance(late, InvalidStateTransition)


@pytest.mark.asyncio
async def test_mixed_concurrent_traffic_conserves_seats(engine, seat_resource, slot):
    held = [
        await engine.create_reservation(seat_resource.id, SeatRequest(slot.id, seats=1))
        for _ in range(2)
    ]

    await asyncio.gather(
        engine.cancel_reservation(held[0].id),
        engine.reservations.confirm(held[1].id, "pi_1"),
        engine.create_reservation(seat_resource.id, SeatRequest(slot.id, seats=2)),
        engine.create_reservation(seat_resource.id, SeatRequest(slot.id, seats=2)),
        engine.cancel_reservation(held[0].id),
    )

    await assert_seats_conserved(engine.store, slot.id)
