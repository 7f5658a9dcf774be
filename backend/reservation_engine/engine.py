"""
Reservation engine facade.

Wires one capacity store, one clock and the collaborators into the services
and exposes the three caller-facing operations (create, cancel, availability)
plus the background sweeps. The HTTP layer holds a single instance on
app.state.
"""

from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncEngine

from reservation_engine.core.clock import Clock, SystemClock
from reservation_engine.core.config import Settings, get_settings
from reservation_engine.core.logging import get_logger
from reservation_engine.db.session import build_engine, build_session_factory
from reservation_engine.domain.errors import NotFoundError, ValidationError, not_found
from reservation_engine.domain.models import (
    AllocationDescriptor,
    DateRange,
    RangeAvailability,
    SeatAvailability,
)
from reservation_engine.infrastructure.memory_store import InMemoryCapacityStore
from reservation_engine.infrastructure.refund_gateway import InMemoryRefundGateway
from reservation_engine.infrastructure.sql_store import SqlCapacityStore
from reservation_engine.services.availability_service import AvailabilityService
from reservation_engine.services.cache_service import CalendarCache
from reservation_engine.services.deposit_service import DepositService
from reservation_engine.services.hold_reclaimer import HoldReclaimer
from reservation_engine.services.interfaces.capacity_store import CapacityStore
from reservation_engine.services.interfaces.collaborators import (
    Notifier,
    PricingPolicy,
    RefundGateway,
)
from reservation_engine.services.payment_handler import PaymentHandler
from reservation_engine.services.reservation_service import (
    CreateResult,
    ReservationService,
    TransitionResult,
)
from reservation_engine.services.scheduler import PeriodicSweep

logger = get_logger(__name__)


class ReservationEngine:

    def __init__(
        self,
        store: CapacityStore,
        clock: Clock | None = None,
        *,
        settings: Settings | None = None,
        pricing: PricingPolicy | None = None,
        refunds: RefundGateway | None = None,
        notifier: Notifier | None = None,
        calendar_cache: CalendarCache | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store
        self.clock = clock or SystemClock()
        self.calendar_cache = calendar_cache or CalendarCache(None)

        self.availability = AvailabilityService(store)
        self.reservations = ReservationService(
            store,
            self.clock,
            pricing=pricing,
            availability=self.availability,
            calendar_cache=self.calendar_cache,
            hold_duration=timedelta(minutes=self.settings.HOLD_DURATION_MINUTES),
            default_deposit_cents=self.settings.DEFAULT_DEPOSIT_CENTS,
        )
        self.reclaimer = HoldReclaimer(
            store,
            self.reservations,
            self.clock,
            batch_size=self.settings.SWEEP_BATCH_SIZE,
        )
        self.payments = PaymentHandler(store, self.reservations, self.clock, notifier=notifier)
        self.deposits = DepositService(
            store,
            refunds or InMemoryRefundGateway(),
            self.clock,
            grace_period=timedelta(days=self.settings.DEPOSIT_GRACE_PERIOD_DAYS),
            batch_size=self.settings.SWEEP_BATCH_SIZE,
        )

    async def create_reservation(
        self,
        resource_id: int,
        descriptor: AllocationDescriptor,
        hold_duration: timedelta | None = None,
    ) -> CreateResult:
        return await self.reservations.create(resource_id, descriptor, hold_duration)

    async def cancel_reservation(self, reservation_id: int) -> TransitionResult:
        return await self.reservations.cancel(reservation_id)

    async def get_availability(
        self,
        resource_id: int,
        *,
        slot_id: int | None = None,
        date_range: DateRange | None = None,
        seats: int = 1,
        as_group: bool = False,
        breakdown: bool = True,
    ) -> SeatAvailability | RangeAvailability | NotFoundError | ValidationError:
        """
        Availability of a slot (seat mode) or of a date range (inventory mode).

        Exactly one of slot_id / date_range must be given. With breakdown=False
        a date range is answered yes/no without the per-day counts.
        """
        if (slot_id is None) == (date_range is None):
            return ValidationError(message="Provide either a slot or a date range")

        if slot_id is not None:
            slot = await self.store.get_slot(slot_id)
            if slot is None or slot.resource_id != resource_id:
                return not_found("slot", slot_id)
            return await self.availability.check_slot(slot_id, seats, as_group)

        if breakdown:
            return await self.availability.range_breakdown(resource_id, date_range)
        return await self.availability.range_summary(resource_id, date_range)

    def build_sweeps(self) -> list[PeriodicSweep]:
        return [
            PeriodicSweep(
                "hold_expiry",
                self.reclaimer,
                self.settings.HOLD_SWEEP_INTERVAL_SECONDS,
            ),
            PeriodicSweep(
                "deposit_refund",
                self.deposits,
                self.settings.DEPOSIT_SWEEP_INTERVAL_SECONDS,
            ),
        ]


def build_store(
    settings: Settings | None = None,
    db_engine: AsyncEngine | None = None,
) -> CapacityStore:
    """Store selected by STORE_BACKEND."""
    settings = settings or get_settings()
    if settings.STORE_BACKEND == "memory":
        logger.info("store_selected", backend="memory")
        return InMemoryCapacityStore()

    db_engine = db_engine or build_engine(settings)
    logger.info("store_selected", backend="sql", dialect=db_engine.dialect.name)
    return SqlCapacityStore(build_session_factory(db_engine), max_attempts=settings.CAS_MAX_ATTEMPTS)
