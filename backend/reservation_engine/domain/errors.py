"""Error values returned by the reservation core.

Operations return `Reservation | <error>` instead of raising, so callers
decide how each failure is surfaced. The HTTP layer maps `code` to a status.
"""

from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class ReservationError:
    message: str
    code: ClassVar[str] = "RESERVATION_ERROR"


@dataclass(frozen=True)
class ValidationError(ReservationError):
    """Malformed allocation request. Not retried."""

    field: str | None = None
    code: ClassVar[str] = "VALIDATION_ERROR"


@dataclass(frozen=True)
class NotFoundError(ReservationError):
    entity: str = ""
    entity_id: int | None = None
    code: ClassVar[str] = "NOT_FOUND"


@dataclass(frozen=True)
class CapacityExceeded(ReservationError):
    """No seats or units available at the time of the check."""

    requested: int | None = None
    available: int | None = None
    code: ClassVar[str] = "CAPACITY_EXCEEDED"


@dataclass(frozen=True)
class InvalidStateTransition(ReservationError):
    current: str | None = None
    attempted: str | None = None
    code: ClassVar[str] = "INVALID_STATE_TRANSITION"


@dataclass(frozen=True)
class ConcurrencyConflict(ReservationError):
    """A conditional write kept losing its race."""

    code: ClassVar[str] = "CONCURRENCY_CONFLICT"


@dataclass(frozen=True)
class ExternalServiceError(ReservationError):
    service: str = ""
    code: ClassVar[str] = "EXTERNAL_SERVICE_ERROR"


def not_found(entity: str, entity_id: int) -> NotFoundError:
    return NotFoundError(
        message=f"{entity.capitalize()} {entity_id} not found",
        entity=entity,
        entity_id=entity_id,
    )
