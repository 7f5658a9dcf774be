"""
Reservation model: the unit of allocation.

Key design decisions:
- Reservations are never deleted; cancellation is a terminal status
- Status and deposit changes are conditional on the current value,
  which is how confirm/expire races are resolved
- Composite indexes back the three hot queries: expired holds,
  overlapping inventory ranges and refundable deposits
"""

from sqlalchemy import CheckConstraint, Column, Date, ForeignKey, Index, Integer, String

from reservation_engine.db.base import Base, TimestampMixin, UTCDateTime


class ReservationRow(Base, TimestampMixin):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    resource_id = Column(Integer, ForeignKey("resources.id"), nullable=False)
    mode = Column(String(20), nullable=False)
    slot_id = Column(Integer, ForeignKey("slots.id"), nullable=True, index=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    status = Column(String(20), nullable=False, default="pending")
    hold_expires_at = Column(UTCDateTime(), nullable=False)
    payment_reference = Column(String(255), nullable=True)
    price_cents = Column(Integer, nullable=False)

    deposit_cents = Column(Integer, nullable=False, default=0)
    deposit_state = Column(String(20), nullable=True)
    deposit_refund_reference = Column(String(255), nullable=True)
    deposit_settled_at = Column(UTCDateTime(), nullable=True)
    deposit_notes = Column(String(1000), nullable=True)

    confirmed_at = Column(UTCDateTime(), nullable=True)
    cancelled_at = Column(UTCDateTime(), nullable=True)

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("quantity > 0", name="check_reservation_quantity_positive"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')", name="check_reservation_status"
        ),
        CheckConstraint(
            "deposit_state IS NULL OR deposit_state IN ('held', 'refunded', 'forfeited')",
            name="check_reservation_deposit_state",
        ),
        CheckConstraint(
            "start_date IS NULL OR end_date > start_date", name="check_reservation_range"
        ),
        Index("ix_reservations_status_hold", "status", "hold_expires_at"),
        Index("ix_reservations_resource_range", "resource_id", "status", "start_date", "end_date"),
        Index("ix_reservations_deposit_due", "status", "deposit_state", "end_date"),
    )

    def __repr__(self) -> str:
        return f"<Reservation(id={self.id}, resource={self.resource_id}, status={self.status})>"
