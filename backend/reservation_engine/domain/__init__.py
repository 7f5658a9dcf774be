from reservation_engine.domain.errors import (
    CapacityExceeded,
    ConcurrencyConflict,
    ExternalServiceError,
    InvalidStateTransition,
    NotFoundError,
    ReservationError,
    ValidationError,
)
from reservation_engine.domain.models import (
    AllocationDescriptor,
    AllocationMode,
    DateRange,
    DayAvailability,
    DepositState,
    RangeAvailability,
    RangeRequest,
    Reservation,
    ReservationDraft,
    ReservationStatus,
    Resource,
    SeatAvailability,
    SeatRequest,
    Slot,
)

__all__ = [
    "AllocationDescriptor", "AllocationMode", "DateRange", "DayAvailability",
    "DepositState", "RangeAvailability", "RangeRequest", "Reservation",
    "ReservationDraft", "ReservationStatus", "Resource", "SeatAvailability",
    "SeatRequest", "Slot",
    "CapacityExceeded", "ConcurrencyConflict", "ExternalServiceError",
    "InvalidStateTransition", "NotFoundError", "ReservationError", "ValidationError",
]
