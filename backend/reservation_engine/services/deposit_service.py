"""
Deposit refund scheduling and administrative deposit actions.

A Confirmed date-range rental keeps its deposit Held until the grace period
after the rental's end date has passed (end date taken as midnight UTC).
The sweep then asks the refund gateway to pay it back and, only once the
gateway reports success, moves the deposit Held -> Refunded with a write
guarded on it still being Held. A failed refund changes nothing and is
simply tried again on the next pass.

The gateway receives a stable idempotency key per reservation, so two
overlapping sweeps (or a retry after a lost response) cannot refund twice.
"""

from datetime import timedelta
from typing import Any

from reservation_engine.core.clock import Clock
from reservation_engine.core.logging import get_logger
from reservation_engine.core.metrics import record_deposit_refund, record_sweep_item, record_transition
from reservation_engine.domain.errors import (
    ExternalServiceError,
    InvalidStateTransition,
    NotFoundError,
    ValidationError,
    not_found,
)
from reservation_engine.domain.models import DepositState, Reservation, ReservationStatus
from reservation_engine.services.interfaces.capacity_store import CapacityStore
from reservation_engine.services.interfaces.collaborators import RefundGateway
from reservation_engine.services.scheduler import SweepReport

logger = get_logger(__name__)

SWEEP_NAME = "deposit_refund"


def refund_idempotency_key(reservation_id: int) -> str:
    return f"deposit-refund-{reservation_id}"


class DepositService:

    def __init__(
        self,
        store: CapacityStore,
        refunds: RefundGateway,
        clock: Clock,
        grace_period: timedelta = timedelta(days=2),
        batch_size: int = 500,
    ):
        self.store = store
        self.refunds = refunds
        self.clock = clock
        self.grace_period = grace_period
        self.batch_size = batch_size

    async def run_once(self) -> SweepReport:
        """
        One refund sweep over every deposit whose grace period has elapsed.

        Batches are fetched until the backlog is drained. A deposit whose
        refund failed stays Held and is not retried within the same pass.
        """
        now = self.clock.now()
        ended_on_or_before = (now - self.grace_period).date()
        report = SweepReport()
        seen: set[int] = set()

        while True:
            batch = await self.store.find_refundable_deposits(ended_on_or_before, self.batch_size)
            fresh = [candidate for candidate in batch if candidate.id not in seen]
            applied_before = report.applied
            for candidate in fresh:
                seen.add(candidate.id)
                await self._sweep_one(candidate, report)
            if len(batch) < self.batch_size or report.applied == applied_before:
                break

        if report.examined:
            logger.info(
                "deposit_sweep_pass",
                ended_on_or_before=ended_on_or_before.isoformat(),
                examined=report.examined,
                refunded=report.applied,
                failed=report.failed,
                skipped=report.skipped,
            )
        return report

    async def _sweep_one(self, candidate: Reservation, report: SweepReport) -> None:
        report.examined += 1
        result = await self._refund(
            candidate,
            expected={"status": ReservationStatus.CONFIRMED, "deposit_state": DepositState.HELD},
        )
        if isinstance(result, Reservation):
            report.applied += 1
            report.applied_ids.append(result.id)
            record_sweep_item(SWEEP_NAME, "refunded")
        elif isinstance(result, ExternalServiceError):
            report.failed += 1
            record_sweep_item(SWEEP_NAME, "failed")
        else:
            report.skipped += 1
            record_sweep_item(SWEEP_NAME, "skipped")

    async def refund_deposit_now(
        self, reservation_id: int
    ) -> Reservation | NotFoundError | InvalidStateTransition | ExternalServiceError:
        """Administrative refund of a Held deposit, ignoring the grace period."""
        reservation = await self.store.get_reservation(reservation_id)
        if reservation is None:
            return not_found("reservation", reservation_id)
        if reservation.deposit_state is not DepositState.HELD:
            record_transition("deposit_refund", "rejected")
            return self._not_held(reservation, "refund")

        result = await self._refund(reservation, expected={"deposit_state": DepositState.HELD})
        if result is None:
            current = await self.store.get_reservation(reservation_id)
            return self._not_held(current, "refund")
        return result

    async def forfeit_deposit(
        self, reservation_id: int, reason: str
    ) -> Reservation | NotFoundError | InvalidStateTransition | ValidationError:
        """Keep a Held deposit (damage, no-show). A reason is required."""
        if not reason or not reason.strip():
            return ValidationError(message="A reason is required to forfeit a deposit", field="reason")

        reservation = await self.store.get_reservation(reservation_id)
        if reservation is None:
            return not_found("reservation", reservation_id)
        if reservation.deposit_state is not DepositState.HELD:
            record_transition("deposit_forfeit", "rejected")
            return self._not_held(reservation, "forfeit")

        forfeited = await self.store.update_reservation_if(
            reservation_id,
            expected={"deposit_state": DepositState.HELD},
            changes={
                "deposit_state": DepositState.FORFEITED,
                "deposit_notes": reason.strip(),
                "deposit_settled_at": self.clock.now(),
            },
        )
        if forfeited is None:
            record_transition("deposit_forfeit", "noop")
            current = await self.store.get_reservation(reservation_id)
            return self._not_held(current, "forfeit")

        record_transition("deposit_forfeit", "applied")
        logger.info(
            "deposit_forfeited",
            reservation_id=reservation_id,
            deposit_cents=forfeited.deposit_cents,
            reason=forfeited.deposit_notes,
        )
        return forfeited

    async def _refund(
        self, reservation: Reservation, expected: dict[str, Any]
    ) -> Reservation | ExternalServiceError | None:
        """
        Issue the refund, then record it. None when the deposit left Held
        while the refund was in flight.
        """
        key = refund_idempotency_key(reservation.id)
        try:
            outcome = await self.refunds.issue_refund(reservation, reservation.deposit_cents, key)
        except Exception as e:
            outcome = None
            error = str(e)
        else:
            error = outcome.error

        if outcome is None or not outcome.success:
            record_deposit_refund("failed")
            logger.warning(
                "deposit_refund_failed",
                reservation_id=reservation.id,
                idempotency_key=key,
                error=error,
            )
            return ExternalServiceError(
                message=f"Refund for reservation {reservation.id} failed: {error or 'unknown error'}",
                service="refund_gateway",
            )

        refunded = await self.store.update_reservation_if(
            reservation.id,
            expected=expected,
            changes={
                "deposit_state": DepositState.REFUNDED,
                "deposit_refund_reference": outcome.refund_reference,
                "deposit_settled_at": self.clock.now(),
            },
        )
        if refunded is None:
            current = await self.store.get_reservation(reservation.id)
            if current is not None and current.deposit_state is DepositState.REFUNDED:
                # A concurrent sweep recorded the same idempotent refund.
                record_deposit_refund("skipped")
                logger.info("deposit_refund_already_recorded", reservation_id=reservation.id)
                return None

            # Money went out but the deposit was settled another way meanwhile.
            record_deposit_refund("unreconciled")
            logger.error(
                "deposit_refund_unreconciled",
                reservation_id=reservation.id,
                deposit_cents=reservation.deposit_cents,
                refund_reference=outcome.refund_reference,
                idempotency_key=key,
                deposit_state=current.deposit_state.value if current and current.deposit_state else None,
            )
            return None

        record_deposit_refund("refunded")
        record_transition("deposit_refund", "applied")
        logger.info(
            "deposit_refunded",
            reservation_id=reservation.id,
            deposit_cents=refunded.deposit_cents,
            refund_reference=outcome.refund_reference,
        )
        return refunded

    @staticmethod
    def _not_held(reservation: Reservation, attempted: str) -> InvalidStateTransition:
        state = reservation.deposit_state.value if reservation.deposit_state else "none"
        return InvalidStateTransition(
            message=f"Cannot {attempted} deposit of reservation {reservation.id}: deposit is {state}",
            current=state,
            attempted=f"deposit_{attempted}",
        )
