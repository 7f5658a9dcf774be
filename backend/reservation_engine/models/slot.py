"""
Slot model: one scheduled occurrence of a seat-based resource.

Key design decisions:
- No capacity column: capacity is always read from the owning resource
- `version` column enables compare-and-swap updates of the seat counters
- CHECK constraints are the final safety net for the seat invariants
"""

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Index, Integer
from sqlalchemy.orm import relationship

from reservation_engine.db.base import Base, TimestampMixin, UTCDateTime


class SlotRow(Base, TimestampMixin):
    __tablename__ = "slots"

    id = Column(Integer, primary_key=True, index=True)
    resource_id = Column(Integer, ForeignKey("resources.id"), nullable=False, index=True)
    starts_at = Column(UTCDateTime(), nullable=False)
    remaining_seats = Column(Integer, nullable=False)
    exclusive_group_held = Column(Boolean, nullable=False, default=False)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    resource = relationship("ResourceRow", back_populates="slots")

    __table_args__ = (
        CheckConstraint("remaining_seats >= 0", name="check_remaining_seats_non_negative"),
        CheckConstraint(
            "NOT exclusive_group_held OR remaining_seats = 0",
            name="check_group_hold_consumes_slot",
        ),
        Index("ix_slots_resource_starts_at", "resource_id", "starts_at"),
    )

    def __repr__(self) -> str:
        return f"<Slot(id={self.id}, resource={self.resource_id}, remaining={self.remaining_seats})>"
