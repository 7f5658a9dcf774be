"""Initial schema: resources, slots, reservations, payment events.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Resources table
    op.create_table(
        "resources",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("mode", sa.String(20), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("unit_count", sa.Integer(), nullable=True),
        sa.Column("base_price_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("deposit_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("guard_version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("mode IN ('seat', 'inventory')", name="check_resource_mode"),
        sa.CheckConstraint("mode <> 'seat' OR capacity > 0", name="check_seat_resource_capacity"),
        sa.CheckConstraint("mode <> 'inventory' OR unit_count > 0", name="check_inventory_resource_units"),
    )
    op.create_index("ix_resources_id", "resources", ["id"])

    # Slots table
    op.create_table(
        "slots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("resource_id", sa.Integer(), sa.ForeignKey("resources.id"), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("remaining_seats", sa.Integer(), nullable=False),
        sa.Column("exclusive_group_held", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("remaining_seats >= 0", name="check_remaining_seats_non_negative"),
        sa.CheckConstraint(
            "NOT exclusive_group_held OR remaining_seats = 0", name="check_group_hold_consumes_slot"
        ),
    )
    op.create_index("ix_slots_id", "slots", ["id"])
    op.create_index("ix_slots_resource_id", "slots", ["resource_id"])
    op.create_index("ix_slots_resource_starts_at", "slots", ["resource_id", "starts_at"])

    # Reservations table
    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("resource_id", sa.Integer(), sa.ForeignKey("resources.id"), nullable=False),
        sa.Column("mode", sa.String(20), nullable=False),
        sa.Column("slot_id", sa.Integer(), sa.ForeignKey("slots.id"), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("hold_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payment_reference", sa.String(255), nullable=True),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("deposit_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("deposit_state", sa.String(20), nullable=True),
        sa.Column("deposit_refund_reference", sa.String(255), nullable=True),
        sa.Column("deposit_settled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deposit_notes", sa.String(1000), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("quantity > 0", name="check_reservation_quantity_positive"),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled')", name="check_reservation_status"
        ),
        sa.CheckConstraint(
            "deposit_state IS NULL OR deposit_state IN ('held', 'refunded', 'forfeited')",
            name="check_reservation_deposit_state",
        ),
        sa.CheckConstraint("start_date IS NULL OR end_date > start_date", name="check_reservation_range"),
    )
    op.create_index("ix_reservations_id", "reservations", ["id"])
    op.create_index("ix_reservations_slot_id", "reservations", ["slot_id"])
    # The hold sweep runs every minute: WHERE status = 'pending' AND hold_expires_at < now
    op.create_index("ix_reservations_status_hold", "reservations", ["status", "hold_expires_at"])
    # Every inventory insert recounts overlapping ranges for one resource
    op.create_index(
        "ix_reservations_resource_range",
        "reservations",
        ["resource_id", "status", "start_date", "end_date"],
    )
    op.create_index("ix_reservations_deposit_due", "reservations", ["status", "deposit_state", "end_date"])

    # Payment events table
    op.create_table(
        "payment_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_reference", sa.String(255), nullable=False),
        sa.Column("reservation_id", sa.Integer(), sa.ForeignKey("reservations.id"), nullable=True),
        sa.Column("outcome", sa.String(20), nullable=False),
        sa.Column("result", sa.String(40), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("event_reference", name="uq_payment_event_reference"),
    )
    op.create_index("ix_payment_events_id", "payment_events", ["id"])


def downgrade() -> None:
    op.drop_table("payment_events")
    op.drop_table("reservations")
    op.drop_table("slots")
    op.drop_table("resources")
