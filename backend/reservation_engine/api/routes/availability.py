"""
Availability endpoints with Redis caching on date-range calendars.
"""

from datetime import date

from fastapi import APIRouter, Depends, Query

from reservation_engine.api.dependencies import get_engine, raise_for_error
from reservation_engine.core.logging import get_logger
from reservation_engine.domain.models import DateRange
from reservation_engine.engine import ReservationEngine
from reservation_engine.schemas.availability import (
    RangeAvailabilityResponse,
    SlotAvailabilityResponse,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/availability", tags=["Availability"])


@router.get("/slots/{slot_id}", response_model=SlotAvailabilityResponse)
async def slot_availability(
    slot_id: int,
    seats: int = Query(1, ge=1),
    as_group: bool = Query(False),
    engine: ReservationEngine = Depends(get_engine),
):
    """Live seat counts for a slot. Not cached."""
    availability = raise_for_error(await engine.availability.check_slot(slot_id, seats, as_group))
    return SlotAvailabilityResponse.model_validate(availability)


@router.get("/resources/{resource_id}", response_model=RangeAvailabilityResponse)
async def resource_calendar(
    resource_id: int,
    start: date = Query(...),
    end: date = Query(...),
    engine: ReservationEngine = Depends(get_engine),
):
    """
    Day-by-day units reserved and available for a date-range resource.
    Cached in Redis; invalidated whenever a reservation on the resource
    is created, cancelled or reclaimed.
    """
    cache = engine.calendar_cache
    # Read before computing; an invalidation in between bumps it and strands our write.
    generation = await cache.generation(resource_id)
    cached = None if generation is None else await cache.get(resource_id, generation, start, end)
    if cached:
        logger.info("calendar_cache_hit", resource_id=resource_id)
        cached["cached"] = True
        return RangeAvailabilityResponse(**cached)

    availability = raise_for_error(
        await engine.get_availability(resource_id, date_range=DateRange(start, end))
    )
    response = RangeAvailabilityResponse.from_domain(availability)

    if generation is not None:
        await cache.set(resource_id, generation, start, end, response.model_dump(mode="json"))
    return response
