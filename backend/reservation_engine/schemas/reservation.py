"""
Pydantic schemas for reservation request/response validation.
"""

from datetime import date, datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

from reservation_engine.domain.models import RangeRequest, Reservation, SeatRequest


class SeatAllocation(BaseModel):
    kind: Literal["seat"] = "seat"
    slot_id: int
    seats: int = Field(default=1, ge=1)
    as_group: bool = False

    def to_descriptor(self, resource_id: int) -> SeatRequest:
        return SeatRequest(slot_id=self.slot_id, seats=self.seats, as_group=self.as_group)


class RangeAllocation(BaseModel):
    kind: Literal["range"] = "range"
    start: date
    end: date

    def to_descriptor(self, resource_id: int) -> RangeRequest:
        return RangeRequest(resource_id=resource_id, start=self.start, end=self.end)


class ReservationCreate(BaseModel):
    resource_id: int
    allocation: Annotated[Union[SeatAllocation, RangeAllocation], Field(discriminator="kind")]
    hold_minutes: Optional[int] = Field(None, gt=0, le=1440)


class PaymentStart(BaseModel):
    payment_reference: str = Field(..., min_length=1, max_length=255)


class ReservationResponse(BaseModel):
    id: int
    resource_id: int
    mode: str
    status: str
    quantity: int
    slot_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    hold_expires_at: datetime
    price_cents: int
    payment_reference: Optional[str] = None
    deposit_cents: int = 0
    deposit_state: Optional[str] = None
    created_at: datetime
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, reservation: Reservation) -> "ReservationResponse":
        return cls(
            id=reservation.id,
            resource_id=reservation.resource_id,
            mode=reservation.mode.value,
            status=reservation.status.value,
            quantity=reservation.quantity,
            slot_id=reservation.slot_id,
            start_date=reservation.date_range.start if reservation.date_range else None,
            end_date=reservation.date_range.end if reservation.date_range else None,
            hold_expires_at=reservation.hold_expires_at,
            price_cents=reservation.price_cents,
            payment_reference=reservation.payment_reference,
            deposit_cents=reservation.deposit_cents,
            deposit_state=reservation.deposit_state.value if reservation.deposit_state else None,
            created_at=reservation.created_at,
            confirmed_at=reservation.confirmed_at,
            cancelled_at=reservation.cancelled_at,
        )
