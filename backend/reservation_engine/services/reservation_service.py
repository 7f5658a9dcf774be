"""
Reservation lifecycle with concurrency-safe capacity bookkeeping.

STATE MACHINE
=============

    Pending --confirm--> Confirmed
    Pending --cancel / expire--> Cancelled
    Confirmed --admin_cancel--> Cancelled

Confirmed and Cancelled are terminal for every automated caller. Each
transition is a conditional write on the status the caller last observed,
so when confirmation and the expiry sweep race on one reservation exactly
one of them lands and the other sees a harmless no-op.

Capacity:
  - Seat mode: seats are claimed on the slot in the same atomic step that
    inserts the Pending reservation, and returned in the same atomic step
    that moves it to Cancelled.
  - Inventory mode: a Pending or Confirmed reservation *is* the claim on a
    unit, so nothing is decremented. The store re-counts every day of the
    range at the moment of insert.

Creation fails fast with CapacityExceeded; it never queues. A lost
compare-and-swap race (ConcurrencyConflict) is retried once internally.
"""

import time
from datetime import timedelta

from reservation_engine.core.clock import Clock
from reservation_engine.core.logging import get_logger
from reservation_engine.core.metrics import (
    record_reservation_attempt,
    record_transition,
    reservation_latency,
)
from reservation_engine.domain.errors import (
    CapacityExceeded,
    ConcurrencyConflict,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
    not_found,
)
from reservation_engine.domain.models import (
    AllocationDescriptor,
    AllocationMode,
    DepositState,
    RangeAvailability,
    RangeRequest,
    Reservation,
    ReservationDraft,
    ReservationStatus,
    Resource,
    SeatRequest,
)
from reservation_engine.services.availability_service import AvailabilityService
from reservation_engine.services.cache_service import CalendarCache
from reservation_engine.services.interfaces.capacity_store import CapacityStore
from reservation_engine.services.interfaces.collaborators import BasePricePolicy, PricingPolicy

logger = get_logger(__name__)

CreateResult = Reservation | ValidationError | NotFoundError | CapacityExceeded | ConcurrencyConflict
TransitionResult = Reservation | InvalidStateTransition | NotFoundError | ConcurrencyConflict

_ERROR_RESULTS = {
    ValidationError: "validation",
    NotFoundError: "not_found",
    CapacityExceeded: "capacity_exceeded",
    ConcurrencyConflict: "conflict",
}


def _invalid(reservation: Reservation, attempted: str, verb: str | None = None) -> InvalidStateTransition:
    return InvalidStateTransition(
        message=f"Cannot {verb or attempted} reservation {reservation.id} while it is {reservation.status.value}",
        current=reservation.status.value,
        attempted=attempted,
    )


class ReservationService:

    def __init__(
        self,
        store: CapacityStore,
        clock: Clock,
        *,
        pricing: PricingPolicy | None = None,
        availability: AvailabilityService | None = None,
        calendar_cache: CalendarCache | None = None,
        hold_duration: timedelta = timedelta(minutes=15),
        default_deposit_cents: int = 25000,
    ):
        self.store = store
        self.clock = clock
        self.pricing = pricing or BasePricePolicy()
        self.availability = availability or AvailabilityService(store)
        self.calendar_cache = calendar_cache
        self.hold_duration = hold_duration
        self.default_deposit_cents = default_deposit_cents

    # -- creation --------------------------------------------------------

    async def create(
        self,
        resource_id: int,
        descriptor: AllocationDescriptor,
        hold_duration: timedelta | None = None,
    ) -> CreateResult:
        """
        Hold capacity for a new Pending reservation.

        The availability check up front only gives a fast, specific failure;
        admission itself is decided by the store's atomic claim.
        """
        started = time.perf_counter()
        mode = "inventory" if isinstance(descriptor, RangeRequest) else "seat"

        result = await self._create(resource_id, descriptor, hold_duration or self.hold_duration)

        reservation_latency.observe(time.perf_counter() - started)
        if isinstance(result, Reservation):
            record_reservation_attempt(mode, "created")
            logger.info(
                "reservation_created",
                reservation_id=result.id,
                resource_id=resource_id,
                mode=mode,
                quantity=result.quantity,
                hold_expires_at=result.hold_expires_at.isoformat(),
            )
            await self._invalidate_calendar(result)
        else:
            record_reservation_attempt(mode, _ERROR_RESULTS.get(type(result), "error"))
            logger.warning(
                "reservation_rejected",
                resource_id=resource_id,
                mode=mode,
                code=result.code,
                reason=result.message,
            )
        return result

    async def _create(
        self,
        resource_id: int,
        descriptor: AllocationDescriptor,
        hold_duration: timedelta,
    ) -> CreateResult:
        if hold_duration <= timedelta(0):
            return ValidationError(message="Hold duration must be positive", field="hold_duration")

        resource = await self.store.get_resource(resource_id)
        if resource is None:
            return not_found("resource", resource_id)
        if not resource.active:
            return ValidationError(
                message=f"Resource {resource_id} is not accepting reservations",
                field="resource_id",
            )

        if isinstance(descriptor, SeatRequest):
            return await self._create_seats(resource, descriptor, hold_duration)
        if isinstance(descriptor, RangeRequest):
            return await self._create_range(resource, descriptor, hold_duration)
        return ValidationError(message=f"Unsupported allocation request: {type(descriptor).__name__}")

    async def _create_seats(
        self, resource: Resource, request: SeatRequest, hold_duration: timedelta
    ) -> CreateResult:
        if resource.mode is not AllocationMode.SEAT:
            return ValidationError(
                message=f"Resource {resource.id} is not booked by seat",
                field="resource_id",
            )
        if not request.as_group and request.seats < 1:
            return ValidationError(message="At least one seat must be requested", field="seats")
        if not request.as_group and request.seats > resource.capacity:
            return ValidationError(
                message=f"Cannot request more than {resource.capacity} seats",
                field="seats",
            )

        slot = await self.store.get_slot(request.slot_id)
        if slot is None:
            return not_found("slot", request.slot_id)
        if slot.resource_id != resource.id:
            return ValidationError(
                message=f"Slot {request.slot_id} does not belong to resource {resource.id}",
                field="slot_id",
            )

        availability = await self.availability.check_slot(
            request.slot_id, request.seats, request.as_group
        )
        if isinstance(availability, NotFoundError):
            return availability
        if not availability.feasible:
            return CapacityExceeded(
                message=(
                    f"Not enough seats. Requested: "
                    f"{resource.capacity if request.as_group else request.seats}, "
                    f"Available: {availability.remaining_seats}"
                ),
                requested=resource.capacity if request.as_group else request.seats,
                available=availability.remaining_seats,
            )

        now = self.clock.now()
        draft = ReservationDraft(
            resource_id=resource.id,
            mode=AllocationMode.SEAT,
            quantity=resource.capacity if request.as_group else request.seats,
            hold_expires_at=now + hold_duration,
            price_cents=self.pricing.price(resource, request),
            created_at=now,
            slot_id=request.slot_id,
        )

        outcome = await self.store.hold_seats(draft, request.as_group)
        if isinstance(outcome, ConcurrencyConflict):
            logger.info("reservation_retry", slot_id=request.slot_id, reason="concurrency_conflict")
            outcome = await self.store.hold_seats(draft, request.as_group)
        return outcome

    async def _create_range(
        self, resource: Resource, request: RangeRequest, hold_duration: timedelta
    ) -> CreateResult:
        if request.resource_id != resource.id:
            return ValidationError(
                message="Range request names a different resource",
                field="resource_id",
            )

        availability = await self.availability.range_summary(resource.id, request.date_range)
        if not isinstance(availability, RangeAvailability):
            return availability
        if not availability.feasible:
            return CapacityExceeded(
                message=(
                    f"No units of resource {resource.id} available for "
                    f"{request.start.isoformat()} to {request.end.isoformat()}"
                ),
                requested=1,
                available=0,
            )

        now = self.clock.now()
        draft = ReservationDraft(
            resource_id=resource.id,
            mode=AllocationMode.INVENTORY,
            quantity=1,
            hold_expires_at=now + hold_duration,
            price_cents=self.pricing.price(resource, request),
            created_at=now,
            date_range=request.date_range,
            deposit_cents=resource.deposit_cents or self.default_deposit_cents,
        )

        outcome = await self.store.hold_unit(draft)
        if isinstance(outcome, ConcurrencyConflict):
            logger.info("reservation_retry", resource_id=resource.id, reason="concurrency_conflict")
            outcome = await self.store.hold_unit(draft)
        return outcome

    # -- transitions -----------------------------------------------------

    async def cancel(self, reservation_id: int) -> TransitionResult:
        """
        Cancel a Pending reservation and return its capacity.

        Idempotent: an already Cancelled reservation is returned unchanged.
        A Confirmed reservation is refused; use admin_cancel.
        """
        reservation = await self.store.get_reservation(reservation_id)
        if reservation is None:
            return not_found("reservation", reservation_id)
        if reservation.status is ReservationStatus.CANCELLED:
            record_transition("cancel", "noop")
            return reservation
        if reservation.status is ReservationStatus.CONFIRMED:
            record_transition("cancel", "rejected")
            return _invalid(reservation, "cancel")

        result = await self._cancel_from(reservation, ReservationStatus.PENDING, "cancel")
        if result is None:
            current = await self.store.get_reservation(reservation_id)
            if current.status is ReservationStatus.CANCELLED:
                record_transition("cancel", "noop")
                return current
            record_transition("cancel", "rejected")
            return _invalid(current, "cancel")
        return result

    async def expire(self, reservation_id: int) -> TransitionResult:
        """
        Reclaim a Pending reservation whose hold has run out.

        Guarded on status Pending, so a reservation confirmed a moment
        earlier is left alone.
        """
        reservation = await self.store.get_reservation(reservation_id)
        if reservation is None:
            return not_found("reservation", reservation_id)
        if not reservation.hold_expired(self.clock.now()):
            record_transition("expire", "noop")
            return _invalid(reservation, "expire")

        result = await self._cancel_from(reservation, ReservationStatus.PENDING, "expire")
        if result is None:
            current = await self.store.get_reservation(reservation_id)
            record_transition("expire", "noop")
            return _invalid(current, "expire")
        if isinstance(result, Reservation):
            logger.info(
                "hold_reclaimed",
                reservation_id=result.id,
                resource_id=result.resource_id,
                quantity=result.quantity,
                hold_expired_at=reservation.hold_expires_at.isoformat(),
            )
        return result

    async def admin_cancel(self, reservation_id: int) -> TransitionResult:
        """
        Administrative cancel, the only path out of Confirmed.

        Capacity always goes back to the pool: seats through the same atomic
        release as any cancel, inventory units by no longer being counted.
        Deposit state is left for forfeit_deposit / refund_deposit_now.
        """
        reservation = await self.store.get_reservation(reservation_id)
        if reservation is None:
            return not_found("reservation", reservation_id)
        if reservation.status is ReservationStatus.CANCELLED:
            record_transition("admin_cancel", "noop")
            return reservation

        result = await self._cancel_from(reservation, reservation.status, "admin_cancel")
        if result is None:
            # Status moved underneath us; try once more from whatever it is now.
            current = await self.store.get_reservation(reservation_id)
            if current.status is ReservationStatus.CANCELLED:
                record_transition("admin_cancel", "noop")
                return current
            result = await self._cancel_from(current, current.status, "admin_cancel")
            if result is None:
                return ConcurrencyConflict(
                    message=f"Reservation {reservation_id} changed while cancelling. Please try again."
                )
        return result

    async def confirm(self, reservation_id: int, payment_reference: str) -> TransitionResult:
        """
        Promote a Pending reservation to Confirmed.

        Conditional on status still being Pending. Reservations that carry a
        deposit start with it Held.
        """
        reservation = await self.store.get_reservation(reservation_id)
        if reservation is None:
            return not_found("reservation", reservation_id)
        if reservation.status is not ReservationStatus.PENDING:
            record_transition("confirm", "noop")
            return _invalid(reservation, "confirm")

        changes = {
            "status": ReservationStatus.CONFIRMED,
            "payment_reference": payment_reference,
            "confirmed_at": self.clock.now(),
        }
        if reservation.carries_deposit:
            changes["deposit_state"] = DepositState.HELD

        confirmed = await self.store.update_reservation_if(
            reservation_id,
            expected={"status": ReservationStatus.PENDING},
            changes=changes,
        )
        if confirmed is None:
            current = await self.store.get_reservation(reservation_id)
            record_transition("confirm", "noop")
            logger.info(
                "confirm_lost_race",
                reservation_id=reservation_id,
                current_status=current.status.value,
            )
            return _invalid(current, "confirm")

        record_transition("confirm", "applied")
        logger.info(
            "reservation_confirmed",
            reservation_id=confirmed.id,
            resource_id=confirmed.resource_id,
            payment_reference=payment_reference,
            deposit_state=confirmed.deposit_state.value if confirmed.deposit_state else None,
        )
        return confirmed

    async def begin_payment(self, reservation_id: int, payment_reference: str) -> TransitionResult:
        """Attach the processor's payment reference while the hold is still live."""
        reservation = await self.store.get_reservation(reservation_id)
        if reservation is None:
            return not_found("reservation", reservation_id)
        if reservation.status is not ReservationStatus.PENDING:
            record_transition("begin_payment", "rejected")
            return _invalid(reservation, "begin_payment", "start payment for")
        if reservation.hold_expired(self.clock.now()):
            record_transition("begin_payment", "rejected")
            return InvalidStateTransition(
                message=f"Hold on reservation {reservation_id} has expired",
                current=reservation.status.value,
                attempted="begin_payment",
            )

        updated = await self.store.update_reservation_if(
            reservation_id,
            expected={"status": ReservationStatus.PENDING},
            changes={"payment_reference": payment_reference},
        )
        if updated is None:
            current = await self.store.get_reservation(reservation_id)
            record_transition("begin_payment", "rejected")
            return _invalid(current, "begin_payment", "start payment for")

        record_transition("begin_payment", "applied")
        logger.info(
            "payment_started",
            reservation_id=reservation_id,
            payment_reference=payment_reference,
        )
        return updated

    async def cancel_pending(
        self, reservation: Reservation, transition: str = "cancel"
    ) -> Reservation | ConcurrencyConflict | None:
        """
        Cancel `reservation` only if it is still Pending.

        Unlike cancel(), an already Cancelled reservation yields None, so the
        caller can tell the transition it applied from one someone else did.
        """
        return await self._cancel_from(reservation, ReservationStatus.PENDING, transition)

    async def get(self, reservation_id: int) -> Reservation | NotFoundError:
        reservation = await self.store.get_reservation(reservation_id)
        if reservation is None:
            return not_found("reservation", reservation_id)
        return reservation

    # -- helpers ---------------------------------------------------------

    async def _cancel_from(
        self,
        reservation: Reservation,
        expected_status: ReservationStatus,
        transition: str,
    ) -> Reservation | ConcurrencyConflict | None:
        result = await self.store.cancel_reservation(
            reservation.id,
            expected_status=expected_status,
            cancelled_at=self.clock.now(),
        )
        if isinstance(result, ConcurrencyConflict):
            record_transition(transition, "conflict")
            logger.warning(
                "cancel_conflict",
                reservation_id=reservation.id,
                transition=transition,
                reason=result.message,
            )
            return result
        if result is None:
            return None

        record_transition(transition, "applied")
        logger.info(
            "reservation_cancelled",
            reservation_id=result.id,
            resource_id=result.resource_id,
            transition=transition,
            previous_status=expected_status.value,
            seats_restored=result.quantity if result.slot_id is not None else 0,
        )
        await self._invalidate_calendar(result)
        return result

    async def _invalidate_calendar(self, reservation: Reservation) -> None:
        if self.calendar_cache and reservation.mode is AllocationMode.INVENTORY:
            await self.calendar_cache.invalidate_resource(reservation.resource_id)

