"""
Payment event intake.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from reservation_engine.api.dependencies import get_engine
from reservation_engine.core.logging import get_logger
from reservation_engine.engine import ReservationEngine
from reservation_engine.schemas.payment import PaymentEventIn, PaymentEventResponse
from reservation_engine.schemas.reservation import ReservationResponse
from reservation_engine.services.payment_handler import HandlingOutcome

logger = get_logger(__name__)
router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/events", response_model=PaymentEventResponse)
async def receive_payment_event(
    data: PaymentEventIn,
    engine: ReservationEngine = Depends(get_engine),
):
    """
    Accept a payment lifecycle event from the processor.

    Answers 200 for a well-formed event, including duplicates and
    events for reservations that already left Pending, so the processor
    stops redelivering. Only the `result` field tells them apart. A lost
    write race answers 503 so the event is delivered again.
    """
    result = await engine.payments.handle(data.to_event())
    if result.outcome is HandlingOutcome.RETRY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "CONCURRENCY_CONFLICT", "message": "Reservation is busy. Please redeliver."},
        )
    return PaymentEventResponse(
        event_reference=result.event_reference,
        result=result.outcome.value,
        reservation=ReservationResponse.from_domain(result.reservation) if result.reservation else None,
    )
