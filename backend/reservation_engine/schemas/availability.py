"""
Pydantic schemas for availability responses.
"""

from datetime import date

from pydantic import BaseModel

from reservation_engine.domain.models import RangeAvailability


class SlotAvailabilityResponse(BaseModel):
    slot_id: int
    capacity: int
    remaining_seats: int
    exclusive_group_held: bool
    feasible: bool

    model_config = {"from_attributes": True}


class DayAvailabilityResponse(BaseModel):
    day: date
    reserved: int
    available: int

    model_config = {"from_attributes": True}


class RangeAvailabilityResponse(BaseModel):
    resource_id: int
    unit_count: int
    start: date
    end: date
    feasible: bool
    days: list[DayAvailabilityResponse] = []
    cached: bool = False

    @classmethod
    def from_domain(cls, availability: RangeAvailability) -> "RangeAvailabilityResponse":
        return cls(
            resource_id=availability.resource_id,
            unit_count=availability.unit_count,
            start=availability.date_range.start,
            end=availability.date_range.end,
            feasible=availability.feasible,
            days=[DayAvailabilityResponse.model_validate(day) for day in availability.days],
        )
