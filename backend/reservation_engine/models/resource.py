"""
Resource model: a bookable thing allocated either by seats or by units.

Key design decisions:
- `mode` decides which capacity column is meaningful (capacity vs unit_count)
- `guard_version` is bumped by every inventory-mode insert so concurrent
  inserts against the same resource serialize on this one row
"""

from sqlalchemy import Boolean, CheckConstraint, Column, Integer, String
from sqlalchemy.orm import relationship

from reservation_engine.db.base import Base, TimestampMixin


class ResourceRow(Base, TimestampMixin):
    __tablename__ = "resources"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    mode = Column(String(20), nullable=False)  # seat, inventory
    capacity = Column(Integer, nullable=True)
    unit_count = Column(Integer, nullable=True)
    base_price_cents = Column(Integer, nullable=False, default=0)
    deposit_cents = Column(Integer, nullable=False, default=0)
    active = Column(Boolean, nullable=False, default=True)

    # Serialization point for inventory-mode inserts
    guard_version = Column(Integer, nullable=False, default=1)

    slots = relationship("SlotRow", back_populates="resource")

    __table_args__ = (
        CheckConstraint("mode IN ('seat', 'inventory')", name="check_resource_mode"),
        CheckConstraint(
            "mode <> 'seat' OR capacity > 0", name="check_seat_resource_capacity"
        ),
        CheckConstraint(
            "mode <> 'inventory' OR unit_count > 0", name="check_inventory_resource_units"
        ),
    )

    def __repr__(self) -> str:
        return f"<Resource(id={self.id}, name={self.name}, mode={self.mode})>"
