from reservation_engine.schemas.availability import (
    DayAvailabilityResponse,
    RangeAvailabilityResponse,
    SlotAvailabilityResponse,
)
from reservation_engine.schemas.payment import PaymentEventIn, PaymentEventResponse
from reservation_engine.schemas.reservation import (
    PaymentStart,
    RangeAllocation,
    ReservationCreate,
    ReservationResponse,
    SeatAllocation,
)

__all__ = [
    "DayAvailabilityResponse", "RangeAvailabilityResponse", "SlotAvailabilityResponse",
    "PaymentEventIn", "PaymentEventResponse",
    "PaymentStart", "RangeAllocation", "ReservationCreate", "ReservationResponse", "SeatAllocation",
]
