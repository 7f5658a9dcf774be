"""
In-process refund gateway.

Stands in for the payment processor's refund API in development and tests.
Refunds are keyed by idempotency key, so replaying a key returns the
original result instead of refunding twice.
"""

import uuid

from reservation_engine.core.logging import get_logger
from reservation_engine.domain.models import Reservation
from reservation_engine.services.interfaces.collaborators import RefundGateway, RefundResult

logger = get_logger(__name__)


class InMemoryRefundGateway(RefundGateway):

    def __init__(self):
        self.refunds: dict[str, RefundResult] = {}
        self.calls = 0

    async def issue_refund(
        self,
        reservation: Reservation,
        amount_cents: int,
        idempotency_key: str,
    ) -> RefundResult:
        self.calls += 1
        existing = self.refunds.get(idempotency_key)
        if existing:
            logger.info("refund_replayed", idempotency_key=idempotency_key)
            return existing

        result = RefundResult(success=True, refund_reference=f"rf_{uuid.uuid4().hex[:12]}")
        self.refunds[idempotency_key] = result
        logger.info(
            "refund_issued",
            reservation_id=reservation.id,
            amount_cents=amount_cents,
            refund_reference=result.refund_reference,
        )
        return result
