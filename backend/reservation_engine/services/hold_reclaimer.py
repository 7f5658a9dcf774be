"""
Hold expiry reclaimer.

The only mechanism that returns abandoned holds to the pool. Each pass picks
up Pending reservations whose hold ran out and expires them through the
reservation service's status-guarded cancel, so one confirmed a moment
earlier is skipped rather than reclaimed. Safe to run concurrently with
itself: the second pass to reach a reservation just observes a no-op.
"""

from reservation_engine.core.clock import Clock
from reservation_engine.core.logging import get_logger
from reservation_engine.core.metrics import record_sweep_item
from reservation_engine.domain.errors import ConcurrencyConflict, InvalidStateTransition, NotFoundError
from reservation_engine.services.interfaces.capacity_store import CapacityStore
from reservation_engine.services.reservation_service import ReservationService
from reservation_engine.services.scheduler import SweepReport

logger = get_logger(__name__)

SWEEP_NAME = "hold_expiry"


class HoldReclaimer:

    def __init__(
        self,
        store: CapacityStore,
        reservations: ReservationService,
        clock: Clock,
        batch_size: int = 500,
    ):
        self.store = store
        self.reservations = reservations
        self.clock = clock
        self.batch_size = batch_size

    async def run_once(self) -> SweepReport:
        """
        Reclaim every hold expired as of now, fetching in batches of
        batch_size until the backlog is drained. Stops early when a whole
        batch makes no progress, so skipped or failing rows cannot spin it.
        """
        now = self.clock.now()
        report = SweepReport()
        seen: set[int] = set()

        while True:
            batch = await self.store.find_expired_holds(now, self.batch_size)
            fresh = [candidate for candidate in batch if candidate.id not in seen]
            applied_before = report.applied
            for candidate in fresh:
                seen.add(candidate.id)
                await self._reclaim(candidate.id, report)
            if len(batch) < self.batch_size or report.applied == applied_before:
                break

        if report.examined:
            logger.info(
                "hold_sweep_pass",
                now=now.isoformat(),
                examined=report.examined,
                reclaimed=report.applied,
                skipped=report.skipped,
            )
        return report

    async def _reclaim(self, reservation_id: int, report: SweepReport) -> None:
        report.examined += 1
        result = await self.reservations.expire(reservation_id)

        if isinstance(result, (InvalidStateTransition, NotFoundError)):
            # Confirmed or cancelled since we looked.
            report.skipped += 1
            record_sweep_item(SWEEP_NAME, "skipped")
            logger.info(
                "hold_reclaim_skipped",
                reservation_id=reservation_id,
                reason=result.message,
            )
        elif isinstance(result, ConcurrencyConflict):
            report.failed += 1
            record_sweep_item(SWEEP_NAME, "conflict")
        else:
            report.applied += 1
            report.applied_ids.append(result.id)
            record_sweep_item(SWEEP_NAME, "reclaimed")
