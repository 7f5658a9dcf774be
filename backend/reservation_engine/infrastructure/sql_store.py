"""
SQL capacity store with compare-and-swap updates.

CONCURRENCY STRATEGY: Optimistic Locking with Bounded Retry
===========================================================

Seats:
  1. Read the slot (remaining_seats, exclusive_group_held, version) and the
     resource capacity it reads through to
  2. Decide the new values in Python with the same rules as every backend
  3. UPDATE slots SET ..., version = version + 1
     WHERE id = :slot_id AND version = :seen_version
  4. rowcount == 0 means someone else moved the slot: re-read and retry,
     at most CAS_MAX_ATTEMPTS times, then report ConcurrencyConflict

Inventory units:
  A unit's claim is the reservation row itself, so there is no counter to
  swap. Instead every insert bumps resources.guard_version with the same
  conditional UPDATE inside the transaction that recounts the overlapping
  days and inserts the row. Two concurrent inserts for one resource cannot
  both win the guard, and the loser recounts after the winner commits.

Status changes:
  UPDATE reservations SET status = ... WHERE id = :id AND status = :expected
  so exactly one of confirm / expire / cancel wins for any reservation.

Each operation runs in its own short transaction (default READ COMMITTED),
so a retry re-reads the latest committed row.
"""

from collections.abc import Mapping
from dataclasses import replace
from datetime import date, datetime
from enum import Enum
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reservation_engine.core.logging import get_logger
from reservation_engine.core.metrics import record_cas_retry
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
from reservation_engine.models import PaymentEventRow, ReservationRow, ResourceRow, SlotRow
from reservation_engine.services.interfaces.capacity_store import (
    CapacityStore,
    check_unit_available,
    claim_seats,
    daily_counts,
    release_seats_values,
    validate_update_fields,
)

logger = get_logger(__name__)

ACTIVE_STATUSES = (ReservationStatus.PENDING.value, ReservationStatus.CONFIRMED.value)


def _db_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _resource_from_row(row: ResourceRow) -> Resource:
    return Resource(
        id=row.id,
        name=row.name,
        mode=AllocationMode(row.mode),
        capacity=row.capacity,
        unit_count=row.unit_count,
        base_price_cents=row.base_price_cents,
        deposit_cents=row.deposit_cents,
        active=row.active,
    )


def _reservation_from_row(row: ReservationRow) -> Reservation:
    date_range = None
    if row.start_date is not None and row.end_date is not None:
        date_range = DateRange(row.start_date, row.end_date)
    return Reservation(
        id=row.id,
        resource_id=row.resource_id,
        mode=AllocationMode(row.mode),
        quantity=row.quantity,
        status=ReservationStatus(row.status),
        hold_expires_at=row.hold_expires_at,
        price_cents=row.price_cents,
        created_at=row.created_at,
        slot_id=row.slot_id,
        date_range=date_range,
        payment_reference=row.payment_reference,
        deposit_cents=row.deposit_cents,
        deposit_state=DepositState(row.deposit_state) if row.deposit_state else None,
        deposit_refund_reference=row.deposit_refund_reference,
        deposit_settled_at=row.deposit_settled_at,
        deposit_notes=row.deposit_notes,
        confirmed_at=row.confirmed_at,
        cancelled_at=row.cancelled_at,
        version=row.version,
    )


class SqlCapacityStore(CapacityStore):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], max_attempts: int = 5):
        self._session_factory = session_factory
        self._max_attempts = max_attempts

    # -- row loading -----------------------------------------------------

    async def _load_resource(self, session: AsyncSession, resource_id: int) -> ResourceRow | None:
        result = await session.execute(
            select(ResourceRow)
            .where(ResourceRow.id == resource_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _load_slot(self, session: AsyncSession, slot_id: int) -> Slot | None:
        # Plain columns, not entities, so a retry never sees a cached row.
        result = await session.execute(
            select(
                SlotRow.id,
                SlotRow.resource_id,
                SlotRow.starts_at,
                SlotRow.remaining_seats,
                SlotRow.exclusive_group_held,
                SlotRow.version,
                ResourceRow.capacity,
            )
            .join(ResourceRow, SlotRow.resource_id == ResourceRow.id)
            .where(SlotRow.id == slot_id)
        )
        row = result.one_or_none()
        if row is None:
            return None
        return Slot(
            id=row.id,
            resource_id=row.resource_id,
            starts_at=row.starts_at,
            remaining_seats=row.remaining_seats,
            exclusive_group_held=row.exclusive_group_held,
            capacity=row.capacity,
            version=row.version,
        )

    async def _load_reservation(self, session: AsyncSession, reservation_id: int) -> ReservationRow | None:
        result = await session.execute(
            select(ReservationRow)
            .where(ReservationRow.id == reservation_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _active_ranges(
        self,
        session: AsyncSession,
        resource_id: int,
        window: DateRange,
        excluding: int | None,
    ) -> list[DateRange]:
        query = select(ReservationRow.start_date, ReservationRow.end_date).where(
            ReservationRow.resource_id == resource_id,
            ReservationRow.status.in_(ACTIVE_STATUSES),
            ReservationRow.start_date < window.end,
            ReservationRow.end_date > window.start,
        )
        if excluding is not None:
            query = query.where(ReservationRow.id != excluding)
        result = await session.execute(query)
        return [DateRange(start, end) for start, end in result.all()]

    # -- compare-and-swap on slots -----------------------------------------

    async def _swap_slot(self, session: AsyncSession, slot: Slot, remaining: int, group_held: bool) -> bool:
        result = await session.execute(
            update(SlotRow)
            .where(SlotRow.id == slot.id, SlotRow.version == slot.version)
            .values(
                remaining_seats=remaining,
                exclusive_group_held=group_held,
                version=SlotRow.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def _claim_in(
        self, session: AsyncSession, slot_id: int, seats: int, as_group: bool
    ) -> Slot | CapacityExceeded | NotFoundError | ConcurrencyConflict:
        for attempt in range(1, self._max_attempts + 1):
            slot = await self._load_slot(session, slot_id)
            if slot is None:
                return not_found("slot", slot_id)

            outcome = claim_seats(slot, seats, as_group)
            if isinstance(outcome, CapacityExceeded):
                return outcome

            remaining, group_held = outcome
            if await self._swap_slot(session, slot, remaining, group_held):
                return replace(
                    slot,
                    remaining_seats=remaining,
                    exclusive_group_held=group_held,
                    version=slot.version + 1,
                )

            record_cas_retry("reserve_seats")
            logger.info("slot_cas_retry", slot_id=slot_id, attempt=attempt, reason="version_conflict")

        return ConcurrencyConflict(message=f"Slot {slot_id} is under heavy contention. Please try again.")

    async def _release_in(
        self, session: AsyncSession, slot_id: int, seats: int
    ) -> Slot | NotFoundError | ConcurrencyConflict:
        for attempt in range(1, self._max_attempts + 1):
            slot = await self._load_slot(session, slot_id)
            if slot is None:
                return not_found("slot", slot_id)

            remaining, group_held = release_seats_values(slot, seats)
            if await self._swap_slot(session, slot, remaining, group_held):
                return replace(
                    slot,
                    remaining_seats=remaining,
                    exclusive_group_held=group_held,
                    version=slot.version + 1,
                )

            record_cas_retry("release_seats")
            logger.info("slot_cas_retry", slot_id=slot_id, attempt=attempt, reason="version_conflict")

        return ConcurrencyConflict(message=f"Could not release seats on slot {slot_id}")

    async def _insert(self, session: AsyncSession, draft: ReservationDraft) -> Reservation:
        row = ReservationRow(
            resource_id=draft.resource_id,
            mode=draft.mode.value,
            slot_id=draft.slot_id,
            start_date=draft.date_range.start if draft.date_range else None,
            end_date=draft.date_range.end if draft.date_range else None,
            quantity=draft.quantity,
            status=ReservationStatus.PENDING.value,
            hold_expires_at=draft.hold_expires_at,
            price_cents=draft.price_cents,
            deposit_cents=draft.deposit_cents,
            created_at=draft.created_at,
            version=1,
        )
        session.add(row)
        await session.flush()
        return _reservation_from_row(row)

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

        async with self._session_factory() as session:
            row = ResourceRow(
                name=name,
                mode=mode.value,
                capacity=capacity,
                unit_count=unit_count,
                base_price_cents=base_price_cents,
                deposit_cents=deposit_cents,
                active=active,
                guard_version=1,
            )
            session.add(row)
            await session.commit()
            return _resource_from_row(row)

    async def add_slot(self, resource_id: int, starts_at: datetime) -> Slot:
        async with self._session_factory() as session:
            resource = await self._load_resource(session, resource_id)
            if resource is None or resource.mode != AllocationMode.SEAT.value:
                raise ValueError(f"Resource {resource_id} is not a seat-based resource")
            row = SlotRow(
                resource_id=resource_id,
                starts_at=starts_at,
                remaining_seats=resource.capacity,
                exclusive_group_held=False,
                version=1,
            )
            session.add(row)
            await session.commit()
            return Slot(
                id=row.id,
                resource_id=resource_id,
                starts_at=starts_at,
                remaining_seats=resource.capacity,
                exclusive_group_held=False,
                capacity=resource.capacity,
                version=1,
            )

    async def get_resource(self, resource_id: int) -> Resource | None:
        async with self._session_factory() as session:
            row = await self._load_resource(session, resource_id)
            return _resource_from_row(row) if row else None

    async def get_slot(self, slot_id: int) -> Slot | None:
        async with self._session_factory() as session:
            return await self._load_slot(session, slot_id)

    async def get_reservation(self, reservation_id: int) -> Reservation | None:
        async with self._session_factory() as session:
            row = await self._load_reservation(session, reservation_id)
            return _reservation_from_row(row) if row else None

    # -- seat primitives -------------------------------------------------

    async def reserve_seats(
        self, slot_id: int, seats: int, as_group: bool
    ) -> Slot | CapacityExceeded | NotFoundError | ConcurrencyConflict:
        async with self._session_factory() as session:
            outcome = await self._claim_in(session, slot_id, seats, as_group)
            await session.commit()
            return outcome

    async def release_seats(self, slot_id: int, seats: int) -> Slot | NotFoundError | ConcurrencyConflict:
        async with self._session_factory() as session:
            outcome = await self._release_in(session, slot_id, seats)
            await session.commit()
            return outcome

    # -- inventory reads -------------------------------------------------

    async def count_overlapping_units(
        self,
        resource_id: int,
        date_range: DateRange,
        excluding_reservation_id: int | None = None,
    ) -> int:
        async with self._session_factory() as session:
            claims = await self._active_ranges(session, resource_id, date_range, excluding_reservation_id)
            return len(claims)

    async def daily_unit_counts(
        self,
        resource_id: int,
        date_range: DateRange,
        excluding_reservation_id: int | None = None,
    ) -> dict[date, int]:
        async with self._session_factory() as session:
            claims = await self._active_ranges(session, resource_id, date_range, excluding_reservation_id)
        return daily_counts(date_range, claims)

    # -- reservation writes ----------------------------------------------

    async def hold_seats(
        self, draft: ReservationDraft, as_group: bool
    ) -> Reservation | CapacityExceeded | NotFoundError | ConcurrencyConflict:
        async with self._session_factory() as session:
            claimed = await self._claim_in(session, draft.slot_id, draft.quantity, as_group)
            if not isinstance(claimed, Slot):
                await session.rollback()
                return claimed
            reservation = await self._insert(session, draft)
            await session.commit()
            return reservation

    async def hold_unit(
        self, draft: ReservationDraft
    ) -> Reservation | CapacityExceeded | NotFoundError | ConcurrencyConflict:
        window = draft.date_range
        async with self._session_factory() as session:
            for attempt in range(1, self._max_attempts + 1):
                row = await self._load_resource(session, draft.resource_id)
                if row is None:
                    await session.rollback()
                    return not_found("resource", draft.resource_id)
                seen_guard = row.guard_version

                claims = await self._active_ranges(session, row.id, window, None)
                exceeded = check_unit_available(_resource_from_row(row), window, claims)
                if exceeded:
                    await session.rollback()
                    return exceeded

                bumped = await session.execute(
                    update(ResourceRow)
                    .where(ResourceRow.id == row.id, ResourceRow.guard_version == seen_guard)
                    .values(guard_version=ResourceRow.guard_version + 1)
                    .execution_options(synchronize_session=False)
                )
                if bumped.rowcount == 1:
                    reservation = await self._insert(session, draft)
                    await session.commit()
                    return reservation

                record_cas_retry("hold_unit")
                logger.info(
                    "inventory_guard_retry",
                    resource_id=row.id,
                    attempt=attempt,
                    reason="version_conflict",
                )

            await session.rollback()
            return ConcurrencyConflict(
                message=f"Resource {draft.resource_id} is under heavy contention. Please try again."
            )

    async def cancel_reservation(
        self,
        reservation_id: int,
        *,
        expected_status: ReservationStatus,
        cancelled_at: datetime,
    ) -> Reservation | ConcurrencyConflict | None:
        async with self._session_factory() as session:
            current = await self._load_reservation(session, reservation_id)
            if current is None or current.status != expected_status.value:
                return None

            result = await session.execute(
                update(ReservationRow)
                .where(
                    ReservationRow.id == reservation_id,
                    ReservationRow.status == expected_status.value,
                )
                .values(
                    status=ReservationStatus.CANCELLED.value,
                    cancelled_at=cancelled_at,
                    version=ReservationRow.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                return None

            if current.slot_id is not None:
                released = await self._release_in(session, current.slot_id, current.quantity)
                if isinstance(released, ConcurrencyConflict):
                    await session.rollback()
                    return released

            row = await self._load_reservation(session, reservation_id)
            await session.commit()
            return _reservation_from_row(row)

    async def update_reservation_if(
        self,
        reservation_id: int,
        *,
        expected: Mapping[str, Any],
        changes: Mapping[str, Any],
    ) -> Reservation | None:
        validate_update_fields(expected, changes)
        guards = [getattr(ReservationRow, name) == _db_value(value) for name, value in expected.items()]
        values = {name: _db_value(value) for name, value in changes.items()}

        async with self._session_factory() as session:
            result = await session.execute(
                update(ReservationRow)
                .where(ReservationRow.id == reservation_id, *guards)
                .values(**values, version=ReservationRow.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                await session.rollback()
                return None
            row = await self._load_reservation(session, reservation_id)
            await session.commit()
            return _reservation_from_row(row)

    # -- sweep queries ---------------------------------------------------

    async def find_expired_holds(self, now: datetime, limit: int) -> list[Reservation]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ReservationRow)
                .where(
                    ReservationRow.status == ReservationStatus.PENDING.value,
                    ReservationRow.hold_expires_at < now,
                )
                .order_by(ReservationRow.hold_expires_at.asc())
                .limit(limit)
            )
            return [_reservation_from_row(row) for row in result.scalars().all()]

    async def find_refundable_deposits(
        self, ended_on_or_before: date, limit: int
    ) -> list[Reservation]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ReservationRow)
                .where(
                    ReservationRow.status == ReservationStatus.CONFIRMED.value,
                    ReservationRow.deposit_state == DepositState.HELD.value,
                    ReservationRow.end_date <= ended_on_or_before,
                )
                .order_by(ReservationRow.end_date.asc())
                .limit(limit)
            )
            return [_reservation_from_row(row) for row in result.scalars().all()]

    # -- payment event log -----------------------------------------------

    async def payment_event_seen(self, event_reference: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                select(PaymentEventRow.id).where(PaymentEventRow.event_reference == event_reference)
            )
            return result.scalar_one_or_none() is not None

    async def record_payment_event(
        self,
        *,
        event_reference: str,
        reservation_id: int | None,
        outcome: str,
        result: str,
        processed_at: datetime,
    ) -> bool:
        async with self._session_factory() as session:
            session.add(PaymentEventRow(
                event_reference=event_reference,
                reservation_id=reservation_id,
                outcome=outcome,
                result=result,
                processed_at=processed_at,
            ))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
            return True
