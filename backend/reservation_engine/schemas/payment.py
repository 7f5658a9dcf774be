"""
Pydantic schemas for payment event intake.
"""

from typing import Optional

from pydantic import BaseModel, Field

from reservation_engine.schemas.reservation import ReservationResponse
from reservation_engine.services.payment_handler import PaymentEvent, PaymentOutcome


class PaymentEventIn(BaseModel):
    reservation_id: int
    outcome: PaymentOutcome
    event_reference: str = Field(..., min_length=1, max_length=255)
    payment_reference: Optional[str] = Field(None, max_length=255)

    def to_event(self) -> PaymentEvent:
        return PaymentEvent(
            reservation_id=self.reservation_id,
            outcome=self.outcome,
            event_reference=self.event_reference,
            payment_reference=self.payment_reference,
        )


class PaymentEventResponse(BaseModel):
    event_reference: str
    result: str
    reservation: Optional[ReservationResponse] = None
