"""
Processed payment events, keyed by the processor's event reference.

A unique constraint on `event_reference` makes redelivered events cheap to
recognize; the reservation status guard remains the real protection.
"""

from sqlalchemy import Column, ForeignKey, Integer, String, UniqueConstraint

from reservation_engine.db.base import Base, UTCDateTime


class PaymentEventRow(Base):
    __tablename__ = "payment_events"

    id = Column(Integer, primary_key=True, index=True)
    event_reference = Column(String(255), nullable=False)
    reservation_id = Column(Integer, ForeignKey("reservations.id"), nullable=True)
    outcome = Column(String(20), nullable=False)  # succeeded, failed
    result = Column(String(40), nullable=False)
    processed_at = Column(UTCDateTime(), nullable=False)

    __table_args__ = (
        UniqueConstraint("event_reference", name="uq_payment_event_reference"),
    )

    def __repr__(self) -> str:
        return f"<PaymentEvent(ref={self.event_reference}, result={self.result})>"
