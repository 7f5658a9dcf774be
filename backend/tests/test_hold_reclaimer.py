"""
Tests for expired hold reclamation and its race with confirmation.
"""

import asyncio
from datetime import date

import pytest

from reservation_engine.domain.models import RangeRequest, Reservation, ReservationStatus, SeatRequest
from reservation_engine.services.hold_reclaimer import HoldReclaimer
from reservation_engine.services.payment_handler import HandlingOutcome, PaymentEvent, PaymentOutcome


@pytest.mark.asyncio
async def test_expired_hold_is_reclaimed(engine, clock, seat_resource, slot):
    """Scenario: 2 seats held for 15 minutes, sweep runs at minute 16."""
    reservation = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id, seats=2))
    assert (await engine.store.get_slot(slot.id)).remaining_seats == 2

    clock.advance(minutes=16)
    report = await engine.reclaimer.run_once()

    assert report.examined == 1
    assert report.applied == 1
    assert report.applied_ids == [reservation.id]
    reclaimed = await engine.store.get_reservation(reservation.id)
    assert reclaimed.status is ReservationStatus.CANCELLED
    assert reclaimed.cancelled_at == clock.now()
    assert (await engine.store.get_slot(slot.id)).remaining_seats == 4


@pytest.mark.asyncio
async def test_live_hold_is_left_alone(engine, clock, seat_resource, slot):
    reservation = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id))

    clock.advance(minutes=15)
    report = await engine.reclaimer.run_once()

    assert report.examined == 0
    assert (await engine.store.get_reservation(reservation.id)).status is ReservationStatus.PENDING


@pytest.mark.asyncio
async def test_second_pass_is_noop(engine, clock, seat_resource, slot):
    await engine.create_reservation(seat_resource.id, SeatRequest(slot.id, seats=2))
    clock.advance(minutes=16)

    await engine.reclaimer.run_once()
    again = await engine.reclaimer.run_once()

    assert again.examined == 0
    assert (await engine.store.get_slot(slot.id)).remaining_seats == 4


@pytest.mark.asyncio
async def test_confirmed_before_sweep_is_not_reclaimed(engine, clock, seat_resource, slot):
    reservation = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id))
    await engine.reservations.confirm(reservation.id, "pi_1")

    clock.advance(minutes=30)
    report = await engine.reclaimer.run_once()

    assert report.examined == 0
    assert (await engine.store.get_reservation(reservation.id)).status is ReservationStatus.CONFIRMED
    assert (await engine.store.get_slot(slot.id)).remaining_seats == 3


@pytest.mark.asyncio
async def test_expire_refuses_live_hold(engine, seat_resource, slot):
    reservation = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id))

    result = await engine.reservations.expire(reservation.id)

    assert not isinstance(result, Reservation)
    assert (await engine.store.get_reservation(reservation.id)).status is ReservationStatus.PENDING


@pytest.mark.asyncio
async def test_payment_after_reclaim_is_ignored(engine, clock, seat_resource, slot):
    reservation = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id))
    clock.advance(minutes=16)
    await engine.reclaimer.run_once()

    result = await engine.payments.handle(
        PaymentEvent(reservation.id, PaymentOutcome.SUCCEEDED, "evt_late", "pi_late")
    )

    assert result.outcome is HandlingOutcome.IGNORED
    assert result.reservation.status is ReservationStatus.CANCELLED
    assert (await engine.store.get_slot(slot.id)).remaining_seats == 4


@pytest.mark.asyncio
async def test_confirm_and_expire_race_has_one_winner(engine, clock, seat_resource, slot):
    reservation = await engine.create_reservation(seat_resource.id, SeatRequest(slot.id, seats=2))
    clock.advance(minutes=16)

    confirmed, expired = await asyncio.gather(
        engine.reservations.confirm(reservation.id, "pi_1"),
        engine.reservations.expire(reservation.id),
    )

    winners = [r for r in (confirmed, expired) if isinstance(r, Reservation)]
    assert len(winners) == 1
    final = await engine.store.get_reservation(reservation.id)
    remaining = (await engine.store.get_slot(slot.id)).remaining_seats
    if final.status is ReservationStatus.CONFIRMED:
        assert remaining == 2
    else:
        assert final.status is ReservationStatus.CANCELLED
        assert remaining == 4


@pytest.mark.asyncio
async def test_reclaim_invalidates_calendar(engine, clock, fake_redis, rental_resource):
    rid = rental_resource.id
    await engine.create_reservation(rid, RangeRequest(rid, date(2030, 6, 1), date(2030, 6, 3)))
    await engine.calendar_cache.set(rid, 0, date(2030, 6, 1), date(2030, 6, 8), {"feasible": True})
    assert fake_redis.data

    clock.advance(minutes=16)
    report = await engine.reclaimer.run_once()

    assert report.applied == 1
    assert [key for key in fake_redis.data if key.startswith("calendar:")] == []
    assert await engine.calendar_cache.generation(rid) >= 1


@pytest.mark.asyncio
async def test_backlog_larger_than_batch_is_drained_in_one_pass(engine, clock, seat_resource, slot):
    holds = [
        await engine.create_reservation(seat_resource.id, SeatRequest(slot.id, seats=1))
        for _ in range(3)
    ]
    reclaimer = HoldReclaimer(engine.store, engine.reservations, clock, batch_size=2)
    clock.advance(minutes=16)

    report = await reclaimer.run_once()

    assert report.examined == 3
    assert report.applied == 3
    assert sorted(report.applied_ids) == sorted(h.id for h in holds)
    for hold in holds:
        assert (await engine.store.get_reservation(hold.id)).status is ReservationStatus.CANCELLED
    assert (await engine.store.get_slot(slot.id)).remaining_seats == 4
    assert (await reclaimer.run_once()).examined == 0
