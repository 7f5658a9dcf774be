"""
Capacity store interface.

The store is the only component allowed to touch slot seat counters or to
count inventory claims, and every mutation it performs is conditional on the
state it last observed. Implementations:
- SqlCapacityStore: conditional UPDATEs against the database (production)
- InMemoryCapacityStore: one critical section per operation (dev, tests)

The seat/day arithmetic below is shared so both backends decide identically.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

from reservation_engine.domain.errors import (
    CapacityExceeded,
    ConcurrencyConflict,
    NotFoundError,
)
from reservation_engine.domain.models import (
    AllocationMode,
    DateRange,
    Reservation,
    ReservationDraft,
    ReservationStatus,
    Resource,
    Slot,
)

# Fields a conditional reservation update may guard on or change.
MUTABLE_RESERVATION_FIELDS = frozenset({
    "status",
    "payment_reference",
    "deposit_state",
    "deposit_refund_reference",
    "deposit_settled_at",
    "deposit_notes",
    "confirmed_at",
    "cancelled_at",
})


def claim_seats(slot: Slot, seats: int, as_group: bool) -> tuple[int, bool] | CapacityExceeded:
    """New (remaining_seats, exclusive_group_held) after a claim, or why it cannot happen."""
    if as_group:
        if slot.exclusive_group_held or slot.remaining_seats != slot.capacity:
            return CapacityExceeded(
                message=(
                    f"Cannot hold slot {slot.id} as a group: "
                    f"{slot.capacity - slot.remaining_seats} seats are already held"
                ),
                requested=slot.capacity,
                available=slot.remaining_seats,
            )
        return 0, True

    if slot.exclusive_group_held:
        return CapacityExceeded(
            message=f"Slot {slot.id} is held by a group",
            requested=seats,
            available=0,
        )
    if slot.remaining_seats < seats:
        return CapacityExceeded(
            message=f"Not enough seats. Requested: {seats}, Available: {slot.remaining_seats}",
            requested=seats,
            available=slot.remaining_seats,
        )
    return slot.remaining_seats - seats, False


def release_seats_values(slot: Slot, seats: int) -> tuple[int, bool]:
    """New (remaining_seats, exclusive_group_held) after seats come back."""
    remaining = min(slot.remaining_seats + seats, slot.capacity)
    group_held = slot.exclusive_group_held and remaining != slot.capacity
    return remaining, group_held


def daily_counts(window: DateRange, claims: Iterable[DateRange]) -> dict[date, int]:
    """Number of claims covering each day of the window."""
    counts = {day: 0 for day in window.days()}
    for claim in claims:
        for day in claim.days():
            if day in counts:
                counts[day] += 1
    return counts


def check_unit_available(
    resource: Resource, window: DateRange, claims: Iterable[DateRange]
) -> CapacityExceeded | None:
    counts = daily_counts(window, claims)
    peak = max(counts.values(), default=0)
    if peak >= resource.unit_count:
        busiest = max(counts, key=counts.get)
        return CapacityExceeded(
            message=(
                f"No units of resource {resource.id} available on {busiest.isoformat()}"
            ),
            requested=1,
            available=resource.unit_count - peak,
        )
    return None


def validate_update_fields(expected: Mapping[str, Any], changes: Mapping[str, Any]) -> None:
    unknown = (set(expected) | set(changes)) - MUTABLE_RESERVATION_FIELDS
    if unknown:
        raise ValueError(f"Unsupported reservation fields: {sorted(unknown)}")


class CapacityStore(ABC):

    # -- catalog ---------------------------------------------------------

    @abstractmethod
    async def add_resource(
        self,
        *,
        name: str,
        mode: AllocationMode,
        capacity: int | None = None,
        unit_count: int | None = None,
        base_price_cents: int = 0,
        deposit_cents: int = 0,
        active: bool = True,
    ) -> Resource:
        """Register a resource. Raises ValueError if its capacity does not fit its mode."""

    @abstractmethod
    async def add_slot(self, resource_id: int, starts_at: datetime) -> Slot:
        """Create a fully free slot for a seat-based resource."""

    @abstractmethod
    async def get_resource(self, resource_id: int) -> Resource | None:
        ...

    @abstractmethod
    async def get_slot(self, slot_id: int) -> Slot | None:
        ...

    @abstractmethod
    async def get_reservation(self, reservation_id: int) -> Reservation | None:
        ...

    # -- seat primitives -------------------------------------------------

    @abstractmethod
    async def reserve_seats(
        self, slot_id: int, seats: int, as_group: bool
    ) -> Slot | CapacityExceeded | NotFoundError | ConcurrencyConflict:
        """
        Claim seats on a slot with compare-and-swap on the observed version.

        A group claim succeeds only on a fully free slot and takes all of it.
        """

    @abstractmethod
    async def release_seats(
        self, slot_id: int, seats: int
    ) -> Slot | NotFoundError | ConcurrencyConflict:
        """Return seats, clamped to capacity; a fully free slot drops its group flag."""

    # -- inventory reads -------------------------------------------------

    @abstractmethod
    async def count_overlapping_units(
        self,
        resource_id: int,
        date_range: DateRange,
        excluding_reservation_id: int | None = None,
    ) -> int:
        """Pending and Confirmed reservations overlapping any day of the range."""

    @abstractmethod
    async def daily_unit_counts(
        self,
        resource_id: int,
        date_range: DateRange,
        excluding_reservation_id: int | None = None,
    ) -> dict[date, int]:
        """Per-day count of Pending and Confirmed reservations covering that day."""

    # -- reservation writes ----------------------------------------------

    @abstractmethod
    async def hold_seats(
        self, draft: ReservationDraft, as_group: bool
    ) -> Reservation | CapacityExceeded | NotFoundError | ConcurrencyConflict:
        """Claim the draft's seats and insert it as Pending, atomically."""

    @abstractmethod
    async def hold_unit(
        self, draft: ReservationDraft
    ) -> Reservation | CapacityExceeded | NotFoundError | ConcurrencyConflict:
        """Re-check every day of the draft's range and insert it as Pending, atomically."""

    @abstractmethod
    async def cancel_reservation(
        self,
        reservation_id: int,
        *,
        expected_status: ReservationStatus,
        cancelled_at: datetime,
    ) -> Reservation | ConcurrencyConflict | None:
        """
        Move a reservation from `expected_status` to Cancelled and return its
        seats in the same atomic step. None when the status no longer matches;
        ConcurrencyConflict when the seat release kept losing and nothing changed.
        """

    @abstractmethod
    async def update_reservation_if(
        self,
        reservation_id: int,
        *,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> Reservation | None:
        """Apply `changes` only if every `expected` field still holds. None otherwise."""

    # -- sweep queries ---------------------------------------------------

    @abstractmethod
    async def find_expired_holds(self, now: datetime, limit: int) -> list[Reservation]:
        """Pending reservations whose hold_expires_at is before `now`."""

    @abstractmethod
    async def find_refundable_deposits(
        self, ended_on_or_before: date, limit: int
    ) -> list[Reservation]:
        """Confirmed reservations with a Held deposit whose range ended on or before the date."""

    # -- payment event log -----------------------------------------------

    @abstractmethod
    async def payment_event_seen(self, event_reference: str) -> bool:
        ...

    @abstractmethod
    async def record_payment_event(
        self,
        *,
        event_reference: str,
        reservation_id: int | None,
        outcome: str,
        result: str,
        processed_at: datetime,
    ) -> bool:
        """Record a processed event. False if the reference was already recorded."""
