"""
Payment confirmation handler.

Consumes at-least-once payment lifecycle events and drives the reservation
state machine; it never touches capacity itself.

Idempotency comes from two layers:
  1. Processed event references are recorded, so a redelivered event is
     recognised and dropped before it does anything.
  2. Every transition is guarded on status Pending, so even two deliveries
     racing past the first check confirm (and notify) only once.
"""

from dataclasses import dataclass
from enum import Enum

from reservation_engine.core.clock import Clock
from reservation_engine.core.logging import get_logger
from reservation_engine.core.metrics import record_payment_event
from reservation_engine.domain.errors import ConcurrencyConflict, InvalidStateTransition, NotFoundError
from reservation_engine.domain.models import Reservation, ReservationStatus
from reservation_engine.services.interfaces.capacity_store import CapacityStore
from reservation_engine.services.interfaces.collaborators import LogNotifier, Notifier
from reservation_engine.services.reservation_service import ReservationService

logger = get_logger(__name__)


class PaymentOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXPIRED = "expired"


class HandlingOutcome(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"
    NOT_FOUND = "not_found"
    RETRY = "retry"  # seats could not be released; left unrecorded for redelivery


@dataclass(frozen=True)
class PaymentEvent:
    reservation_id: int
    outcome: PaymentOutcome
    event_reference: str
    payment_reference: str | None = None


@dataclass(frozen=True)
class PaymentEventResult:
    event_reference: str
    outcome: HandlingOutcome
    reservation: Reservation | None = None


class PaymentHandler:

    def __init__(
        self,
        store: CapacityStore,
        reservations: ReservationService,
        clock: Clock,
        notifier: Notifier | None = None,
    ):
        self.store = store
        self.reservations = reservations
        self.clock = clock
        self.notifier = notifier or LogNotifier()

    async def handle(self, event: PaymentEvent) -> PaymentEventResult:
        if await self.store.payment_event_seen(event.event_reference):
            record_payment_event(HandlingOutcome.DUPLICATE.value)
            logger.info(
                "payment_event_duplicate",
                event_reference=event.event_reference,
                reservation_id=event.reservation_id,
            )
            return PaymentEventResult(event.event_reference, HandlingOutcome.DUPLICATE)

        reservation = await self.store.get_reservation(event.reservation_id)
        if reservation is None:
            outcome, current = HandlingOutcome.NOT_FOUND, None
            logger.warning(
                "payment_event_unknown_reservation",
                event_reference=event.event_reference,
                reservation_id=event.reservation_id,
            )
        elif event.outcome is PaymentOutcome.SUCCEEDED:
            outcome, current = await self._apply_success(event, reservation)
        else:
            outcome, current = await self._apply_failure(event, reservation)

        if outcome is HandlingOutcome.RETRY:
            # Left unrecorded so the redelivery is processed again.
            record_payment_event(outcome.value)
            return PaymentEventResult(event.event_reference, outcome, current)

        recorded = await self.store.record_payment_event(
            event_reference=event.event_reference,
            reservation_id=event.reservation_id,
            outcome=event.outcome.value,
            result=outcome.value,
            processed_at=self.clock.now(),
        )
        if not recorded:
            logger.info("payment_event_recorded_concurrently", event_reference=event.event_reference)

        record_payment_event(outcome.value)
        if outcome is HandlingOutcome.CONFIRMED:
            await self._notify(current)
        return PaymentEventResult(event.event_reference, outcome, current)

    async def _apply_success(
        self, event: PaymentEvent, reservation: Reservation
    ) -> tuple[HandlingOutcome, Reservation | None]:
        payment_reference = (
            event.payment_reference or reservation.payment_reference or event.event_reference
        )
        result = await self.reservations.confirm(reservation.id, payment_reference)

        if isinstance(result, Reservation):
            return HandlingOutcome.CONFIRMED, result
        if isinstance(result, NotFoundError):
            return HandlingOutcome.NOT_FOUND, None

        if isinstance(result, InvalidStateTransition) and result.current == ReservationStatus.CANCELLED.value:
            # Paid after the hold was reclaimed: capacity is gone, so an
            # operator has to refund or rebook by hand.
            logger.warning(
                "payment_after_reclaim",
                reservation_id=reservation.id,
                event_reference=event.event_reference,
                payment_reference=payment_reference,
            )
        else:
            logger.info(
                "payment_event_noop",
                reservation_id=reservation.id,
                event_reference=event.event_reference,
                current_status=result.current,
            )
        return HandlingOutcome.IGNORED, await self.store.get_reservation(reservation.id)

    async def _apply_failure(
        self, event: PaymentEvent, reservation: Reservation
    ) -> tuple[HandlingOutcome, Reservation | None]:
        if reservation.status is not ReservationStatus.PENDING:
            logger.info(
                "payment_event_noop",
                reservation_id=reservation.id,
                event_reference=event.event_reference,
                current_status=reservation.status.value,
            )
            return HandlingOutcome.IGNORED, reservation

        result = await self.reservations.cancel_pending(reservation, "payment_failed")
        if isinstance(result, ConcurrencyConflict):
            # Seats could not be released; the reservation is still Pending.
            return HandlingOutcome.RETRY, reservation
        if result is not None:
            logger.info(
                "payment_failed_reservation_cancelled",
                reservation_id=reservation.id,
                event_reference=event.event_reference,
                outcome=event.outcome.value,
            )
            return HandlingOutcome.CANCELLED, result
        # Confirmed or cancelled by someone else in the meantime.
        return HandlingOutcome.IGNORED, await self.store.get_reservation(reservation.id)

    async def _notify(self, reservation: Reservation) -> None:
        try:
            await self.notifier.reservation_confirmed(reservation)
        except Exception as e:
            logger.error(
                "confirmation_notification_failed",
                reservation_id=reservation.id,
                error=str(e),
            )
