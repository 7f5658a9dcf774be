"""Domain models representing persisted state.

These are plain value objects returned by every CapacityStore
implementation. SQLAlchemy rows live in reservation_engine/models.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum


class AllocationMode(str, Enum):
    SEAT = "seat"
    INVENTORY = "inventory"


class ReservationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class DepositState(str, Enum):
    HELD = "held"
    REFUNDED = "refunded"
    FORFEITED = "forfeited"


@dataclass(frozen=True)
class DateRange:
    """Half-open range of calendar days: start is occupied, end is not."""

    start: date
    end: date

    def __len__(self) -> int:
        return max((self.end - self.start).days, 0)

    def days(self) -> list[date]:
        return [self.start + timedelta(days=offset) for offset in range(len(self))]

    def overlaps(self, other: "DateRange") -> bool:
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True)
class SeatRequest:
    """Seats on one scheduled slot. A group request claims the entire slot."""

    slot_id: int
    seats: int = 1
    as_group: bool = False


@dataclass(frozen=True)
class RangeRequest:
    """One inventory unit of a resource for a range of days."""

    resource_id: int
    start: date
    end: date

    @property
    def date_range(self) -> DateRange:
        return DateRange(self.start, self.end)


AllocationDescriptor = SeatRequest | RangeRequest


@dataclass(frozen=True)
class Resource:
    id: int
    name: str
    mode: AllocationMode
    capacity: int | None = None
    unit_count: int | None = None
    base_price_cents: int = 0
    deposit_cents: int = 0
    active: bool = True


@dataclass(frozen=True)
class Slot:
    """
    One scheduled occurrence of a seat-based resource.

    `capacity` is read through from the owning Resource each time the slot
    is loaded; it is never persisted on the slot itself.
    """

    id: int
    resource_id: int
    starts_at: datetime
    remaining_seats: int
    exclusive_group_held: bool
    capacity: int
    version: int = 1

    @property
    def is_fully_free(self) -> bool:
        return self.remaining_seats == self.capacity


@dataclass(frozen=True)
class ReservationDraft:
    """Everything needed to insert a new Pending reservation."""

    resource_id: int
    mode: AllocationMode
    quantity: int
    hold_expires_at: datetime
    price_cents: int
    created_at: datetime
    slot_id: int | None = None
    date_range: DateRange | None = None
    deposit_cents: int = 0


@dataclass(frozen=True)
class Reservation:
    id: int
    resource_id: int
    mode: AllocationMode
    quantity: int
    status: ReservationStatus
    hold_expires_at: datetime
    price_cents: int
    created_at: datetime
    slot_id: int | None = None
    date_range: DateRange | None = None
    payment_reference: str | None = None
    deposit_cents: int = 0
    deposit_state: DepositState | None = None
    deposit_refund_reference: str | None = None
    deposit_settled_at: datetime | None = None
    deposit_notes: str | None = None
    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    version: int = 1

    @property
    def carries_deposit(self) -> bool:
        return self.mode is AllocationMode.INVENTORY and self.deposit_cents > 0

    def hold_expired(self, now: datetime) -> bool:
        return self.status is ReservationStatus.PENDING and self.hold_expires_at < now


@dataclass(frozen=True)
class DayAvailability:
    day: date
    reserved: int
    available: int


@dataclass(frozen=True)
class SeatAvailability:
    slot_id: int
    capacity: int
    remaining_seats: int
    exclusive_group_held: bool
    feasible: bool


@dataclass(frozen=True)
class RangeAvailability:
    resource_id: int
    unit_count: int
    date_range: DateRange
    feasible: bool
    days: tuple[DayAvailability, ...] = ()
