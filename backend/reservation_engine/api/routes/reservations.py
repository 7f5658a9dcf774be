"""
Reservation endpoints: create a hold, read it, cancel it, attach a payment.
"""

from datetime import timedelta

from fastapi import APIRouter, Depends, status

from reservation_engine.api.dependencies import get_engine, raise_for_error
from reservation_engine.core.logging import get_logger
from reservation_engine.engine import ReservationEngine
from reservation_engine.schemas.reservation import (
    PaymentStart,
    ReservationCreate,
    ReservationResponse,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/reservations", tags=["Reservations"])


@router.post("", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    data: ReservationCreate,
    engine: ReservationEngine = Depends(get_engine),
):
    """
    Hold seats on a slot or one unit for a date range.

    The reservation starts Pending and is reclaimed automatically unless a
    payment confirms it before hold_expires_at. Fails with 409 when no
    capacity is left; the request is never queued.
    """
    hold = timedelta(minutes=data.hold_minutes) if data.hold_minutes else None
    reservation = raise_for_error(
        await engine.create_reservation(
            data.resource_id,
            data.allocation.to_descriptor(data.resource_id),
            hold,
        )
    )
    return ReservationResponse.from_domain(reservation)


@router.get("/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: int,
    engine: ReservationEngine = Depends(get_engine),
):
    reservation = raise_for_error(await engine.reservations.get(reservation_id))
    return ReservationResponse.from_domain(reservation)


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
async def cancel_reservation(
    reservation_id: int,
    engine: ReservationEngine = Depends(get_engine),
):
    """Cancel a Pending reservation. Cancelling twice returns the same result."""
    reservation = raise_for_error(await engine.cancel_reservation(reservation_id))
    return ReservationResponse.from_domain(reservation)


@router.post("/{reservation_id}/payment", response_model=ReservationResponse)
async def start_payment(
    reservation_id: int,
    data: PaymentStart,
    engine: ReservationEngine = Depends(get_engine),
):
    """Record the processor's payment reference while the hold is still live."""
    reservation = raise_for_error(
        await engine.reservations.begin_payment(reservation_id, data.payment_reference)
    )
    return ReservationResponse.from_domain(reservation)
