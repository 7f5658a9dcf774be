"""
In-memory capacity store.

Every public operation runs as a single critical section under one lock and
never awaits inside it, so check-and-mutate is atomic for asyncio tasks and
threads alike. Intended for local development and tests; state is lost on
restart.
"""

import threading
from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any

from reservation_engine.domain.errors import (
    CapacityExceeded,
    ConcurrencyConflict,
    NotFoundError,
    not_found,
)
from reservation_engine.domain.models import (
    AllocationMode,
    DateRange,
    DepositState,
    Reservation,
    ReservationDraft,
    ReservationStatus,
    Resource,
    Slot,
)
from reservation_engine.services.interfaces.capacity_store import (
    CapacityStore,
    check_unit_available,
    claim_seats,
    daily_counts,
    release_seats_values,
    validate_update_fields,
)

ACTIVE_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)


@dataclass
class _SlotRecord:
    id: int
    resource_id: int
    starts_at: datetime
    remaining_seats: int
    exclusive_group_held: bool = False
    version: int = 1


class InMemoryCapacityStore(CapacityStore):

    def __init__(self):
        self._lock = threading.Lock()
        self._resources: dict[int, Resource] = {}
        self._slots: dict[int, _SlotRecord] = {}
        self._reservations: dict[int, Reservation] = {}
        self._payment_events: dict[str, dict[str, Any]] = {}
        self._next_ids = {"resource": 1, "slot": 1, "reservation": 1}

    def _next_id(self, kind: str) -> int:
        value = self._next_ids[kind]
        self._next_ids[kind] = value + 1
        return value

    def _slot_view(self, record: _SlotRecord) -> Slot:
        resource = self._resources[record.resource_id]
        return Slot(
            id=record.id,
            resource_id=record.resource_id,
            starts_at=record.starts_at,
            remaining_seats=record.remaining_seats,
            exclusive_group_held=record.exclusive_group_held,
            capacity=resource.capacity,
            version=record.version,
        )

    def _active_ranges(
        self, resource_id: int, window: DateRange, excluding: int | None
    ) -> list[DateRange]:
        return [
            r.date_range
            for r in self._reservations.values()
            if r.resource_id == resource_id
            and r.id != excluding
            and r.status in ACTIVE_STATUSES
            and r.date_range is not None
            and r.date_range.overlaps(window)
        ]

    def _insert(self, draft: ReservationDraft) -> Reservation:
        reservation = Reservation(
            id=self._next_id("reservation"),
            resource_id=draft.resource_id,
            mode=draft.mode,
            quantity=draft.quantity,
            status=ReservationStatus.PENDING,
            hold_expires_at=draft.hold_expires_at,
            price_cents=draft.price_cents,
            created_at=draft.created_at,
            slot_id=draft.slot_id,
            date_range=draft.date_range,
            deposit_cents=draft.deposit_cents,
        )
        self._reservations[reservation.id] = reservation
        return reservation

    def _claim(self, slot_id: int, seats: int, as_group: bool) -> Slot | CapacityExceeded | NotFoundError:
        record = self._slots.get(slot_id)
        if record is None:
            return not_found("slot", slot_id)
        outcome = claim_seats(self._slot_view(record), seats, as_group)
        if isinstance(outcome, CapacityExceeded):
            return outcome
        record.remaining_seats, record.exclusive_group_held = outcome
        record.version += 1
        return self._slot_view(record)

    def _release(self, slot_id: int, seats: int) -> Slot | NotFoundError:
        record = self._slots.get(slot_id)
        if record is None:
            return not_found("slot", slot_id)
        record.remaining_seats, record.exclusive_group_held = release_seats_values(
            self._slot_view(record), seats
        )
        record.version += 1
        return self._slot_view(record)

    # -- catalog ---------------------------------------------------------

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
        if mode is AllocationMode.SEAT and not (capacity and capacity > 0):
            raise ValueError("Seat-based resources need a positive capacity")
        if mode is AllocationMode.INVENTORY and not (unit_count and unit_count > 0):
            raise ValueError("Inventory-based resources need a positive unit_count")
        with self._lock:
            resource = Resource(
                id=self._next_id("resource"),
                name=name,
                mode=mode,
                capacity=capacity,
                unit_count=unit_count,
                base_price_cents=base_price_cents,
                deposit_cents=deposit_cents,
                active=active,
            )
            self._resources[resource.id] = resource
            return resource

    async def add_slot(self, resource_id: int, starts_at: datetime) -> Slot:
        with self._lock:
            resource = self._resources.get(resource_id)
            if resource is None or resource.mode is not AllocationMode.SEAT:
                raise ValueError(f"Resource {resource_id} is not a seat-based resource")
            record = _SlotRecord(
                id=self._next_id("slot"),
                resource_id=resource_id,
                starts_at=starts_at,
                remaining_seats=resource.capacity,
            )
            self._slots[record.id] = record
            return self._slot_view(record)

    async def get_resource(self, resource_id: int) -> Resource | None:
        return self._resources.get(resource_id)

    async def get_slot(self, slot_id: int) -> Slot | None:
        with self._lock:
            record = self._slots.get(slot_id)
            return self._slot_view(record) if record else None

    async def get_reservation(self, reservation_id: int) -> Reservation | None:
        return self._reservations.get(reservation_id)

    # -- seat primitives -------------------------------------------------

    async def reserve_seats(
        self, slot_id: int, seats: int, as_group: bool
    ) -> Slot | CapacityExceeded | NotFoundError | ConcurrencyConflict:
        with self._lock:
            return self._claim(slot_id, seats, as_group)

    async def release_seats(self, slot_id: int, seats: int) -> Slot | NotFoundError | ConcurrencyConflict:
        with self._lock:
            return self._release(slot_id, seats)

    # -- inventory reads -------------------------------------------------

    async def count_overlapping_units(
        self,
        resource_id: int,
        date_range: DateRange,
        excluding_reservation_id: int | None = None,
    ) -> int:
        with self._lock:
            return len(self._active_ranges(resource_id, date_range, excluding_reservation_id))

    async def daily_unit_counts(
        self,
        resource_id: int,
        date_range: DateRange,
        excluding_reservation_id: int | None = None,
    ) -> dict[date, int]:
        with self._lock:
            claims = self._active_ranges(resource_id, date_range, excluding_reservation_id)
        return daily_counts(date_range, claims)

    # -- reservation writes ----------------------------------------------

    async def hold_seats(
        self, draft: ReservationDraft, as_group: bool
    ) -> Reservation | CapacityExceeded | NotFoundError | ConcurrencyConflict:
        with self._lock:
            claimed = self._claim(draft.slot_id, draft.quantity, as_group)
            if not isinstance(claimed, Slot):
                return claimed
            return self._insert(draft)

    async def hold_unit(
        self, draft: ReservationDraft
    ) -> Reservation | CapacityExceeded | NotFoundError | ConcurrencyConflict:
        with self._lock:
            resource = self._resources.get(draft.resource_id)
            if resource is None:
                return not_found("resource", draft.resource_id)
            claims = self._active_ranges(resource.id, draft.date_range, None)
            exceeded = check_unit_available(resource, draft.date_range, claims)
            if exceeded:
                return exceeded
            return self._insert(draft)

    async def cancel_reservation(
        self,
        reservation_id: int,
        *,
        expected_status: ReservationStatus,
        cancelled_at: datetime,
    ) -> Reservation | ConcurrencyConflict | None:
        with self._lock:
            current = self._reservations.get(reservation_id)
            if current is None or current.status is not expected_status:
                return None
            cancelled = replace(
                current,
                status=ReservationStatus.CANCELLED,
                cancelled_at=cancelled_at,
                version=current.version + 1,
            )
            self._reservations[reservation_id] = cancelled
            if cancelled.slot_id is not None:
                self._release(cancelled.slot_id, cancelled.quantity)
            return cancelled

    async def update_reservation_if(
        self,
        reservation_id: int,
        *,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> Reservation | None:
        validate_update_fields(expected, changes)
        with self._lock:
            current = self._reservations.get(reservation_id)
            if current is None:
                return None
            if any(getattr(current, name) != value for name, value in expected.items()):
                return None
            updated = replace(current, version=current.version + 1, **changes)
            self._reservations[reservation_id] = updated
            return updated

    # -- sweep queries ---------------------------------------------------

    async def find_expired_holds(self, now: datetime, limit: int) -> list[Reservation]:
        with self._lock:
            expired = [
                r for r in self._reservations.values()
                if r.status is ReservationStatus.PENDING and r.hold_expires_at < now
            ]
        expired.sort(key=lambda r: r.hold_expires_at)
        return expired[:limit]

    async def find_refundable_deposits(
        self, ended_on_or_before: date, limit: int
    ) -> list[Reservation]:
        with self._lock:
            due = [
                r for r in self._reservations.values()
                if r.status is ReservationStatus.CONFIRMED
                and r.deposit_state is DepositState.HELD
                and r.date_range is not None
                and r.date_range.end <= ended_on_or_before
            ]
        due.sort(key=lambda r: r.date_range.end)
        return due[:limit]

    # -- payment event log -----------------------------------------------

    async def payment_event_seen(self, event_reference: str) -> bool:
        return event_reference in self._payment_events

    async def record_payment_event(
        self,
        *,
        event_reference: str,
        reservation_id: int | None,
        outcome: str,
        result: str,
        processed_at: datetime,
    ) -> bool:
        with self._lock:
            if event_reference in self._payment_events:
                return False
            self._payment_events[event_reference] = {
                "reservation_id": reservation_id,
                "outcome": outcome,
                "result": result,
                "processed_at": processed_at,
            }
            return True
