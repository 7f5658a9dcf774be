"""
Availability queries for both allocation modes.

Seat mode reads the slot's counters. Inventory mode counts live Pending and
Confirmed reservations; the per-day calendar and the yes/no answer used at
creation time share that counting path. Neither reads the calendar cache.
"""

from reservation_engine.domain.errors import NotFoundError, ValidationError, not_found
from reservation_engine.domain.models import (
    AllocationMode,
    DateRange,
    DayAvailability,
    RangeAvailability,
    Resource,
    SeatAvailability,
)
from reservation_engine.services.interfaces.capacity_store import CapacityStore, claim_seats


class AvailabilityService:

    def __init__(self, store: CapacityStore):
        self.store = store

    async def check_slot(
        self, slot_id: int, seats: int = 1, as_group: bool = False
    ) -> SeatAvailability | NotFoundError:
        slot = await self.store.get_slot(slot_id)
        if slot is None:
            return not_found("slot", slot_id)
        feasible = isinstance(claim_seats(slot, seats, as_group), tuple)
        return SeatAvailability(
            slot_id=slot.id,
            capacity=slot.capacity,
            remaining_seats=slot.remaining_seats,
            exclusive_group_held=slot.exclusive_group_held,
            feasible=feasible,
        )

    async def range_breakdown(
        self,
        resource_id: int,
        date_range: DateRange,
        excluding_reservation_id: int | None = None,
    ) -> RangeAvailability | NotFoundError | ValidationError:
        """Day-by-day reserved and available units for calendar display."""
        resource = await self._inventory_resource(resource_id, date_range)
        if isinstance(resource, (NotFoundError, ValidationError)):
            return resource

        counts = await self.store.daily_unit_counts(
            resource_id, date_range, excluding_reservation_id
        )
        days = tuple(
            DayAvailability(
                day=day,
                reserved=reserved,
                available=max(resource.unit_count - reserved, 0),
            )
            for day, reserved in sorted(counts.items())
        )
        return RangeAvailability(
            resource_id=resource_id,
            unit_count=resource.unit_count,
            date_range=date_range,
            feasible=all(day.available > 0 for day in days),
            days=days,
        )

    async def range_summary(
        self,
        resource_id: int,
        date_range: DateRange,
        excluding_reservation_id: int | None = None,
    ) -> RangeAvailability | NotFoundError | ValidationError:
        """Single yes/no answer for a date range."""
        resource = await self._inventory_resource(resource_id, date_range)
        if isinstance(resource, (NotFoundError, ValidationError)):
            return resource

        # Fewer overlapping reservations than units means no day can be full.
        overlapping = await self.store.count_overlapping_units(
            resource_id, date_range, excluding_reservation_id
        )
        if overlapping < resource.unit_count:
            return RangeAvailability(
                resource_id=resource_id,
                unit_count=resource.unit_count,
                date_range=date_range,
                feasible=True,
            )

        breakdown = await self.range_breakdown(resource_id, date_range, excluding_reservation_id)
        return RangeAvailability(
            resource_id=resource_id,
            unit_count=resource.unit_count,
            date_range=date_range,
            feasible=breakdown.feasible,
        )

    async def _inventory_resource(
        self, resource_id: int, date_range: DateRange
    ) -> Resource | NotFoundError | ValidationError:
        if date_range.end <= date_range.start:
            return ValidationError(
                message="End date must be after start date",
                field="end",
            )
        resource = await self.store.get_resource(resource_id)
        if resource is None:
            return not_found("resource", resource_id)
        if resource.mode is not AllocationMode.INVENTORY:
            return ValidationError(
                message=f"Resource {resource_id} is not rented by date range",
                field="resource_id",
            )
        return resource
