"""
Collaborator interfaces the engine calls out to.
Pricing, refund issuance and downstream notification live outside the core.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from reservation_engine.core.logging import get_logger
from reservation_engine.domain.models import (
    AllocationDescriptor,
    RangeRequest,
    Reservation,
    Resource,
)

logger = get_logger(__name__)


class PricingPolicy(ABC):
    """
    Pure function of the resource and the requested allocation.
    Called once at creation time; the result is stored, never recomputed.
    """

    @abstractmethod
    def price(self, resource: Resource, descriptor: AllocationDescriptor) -> int:
        """Amount owed in minor currency units."""
        pass


class BasePricePolicy(PricingPolicy):
    """
    base_price_cents per seat for seat-based resources (a group pays for
    the whole slot), per night for date-range rentals.
    """

    def price(self, resource: Resource, descriptor: AllocationDescriptor) -> int:
        if isinstance(descriptor, RangeRequest):
            return resource.base_price_cents * len(descriptor.date_range)
        seats = resource.capacity if descriptor.as_group else descriptor.seats
        return resource.base_price_cents * seats


@dataclass(frozen=True)
class RefundResult:
    success: bool
    refund_reference: str | None = None
    error: str | None = None


class RefundGateway(ABC):

    @abstractmethod
    async def issue_refund(
        self,
        reservation: Reservation,
        amount_cents: int,
        idempotency_key: str,
    ) -> RefundResult:
        """
        Refund a held deposit.

        The same idempotency_key must never produce two refunds, so a sweep
        that retries after a lost response is safe.
        """
        pass


class Notifier(ABC):

    @abstractmethod
    async def reservation_confirmed(self, reservation: Reservation) -> None:
        """Downstream side effect of a confirmation (email, ticket, webhook)."""
        pass


class LogNotifier(Notifier):
    """Default notifier: records the confirmation in the log stream."""

    async def reservation_confirmed(self, reservation: Reservation) -> None:
        logger.info(
            "reservation_confirmed_notification",
            reservation_id=reservation.id,
            resource_id=reservation.resource_id,
            payment_reference=reservation.payment_reference,
        )
