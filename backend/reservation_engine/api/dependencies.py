"""
FastAPI dependencies shared by the route modules.
"""

from fastapi import HTTPException, Request, status

from reservation_engine.domain.errors import (
    CapacityExceeded,
    ConcurrencyConflict,
    ExternalServiceError,
    InvalidStateTransition,
    NotFoundError,
    ReservationError,
    ValidationError,
)
from reservation_engine.engine import ReservationEngine

ERROR_STATUS = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    CapacityExceeded: status.HTTP_409_CONFLICT,
    InvalidStateTransition: status.HTTP_409_CONFLICT,
    ConcurrencyConflict: status.HTTP_503_SERVICE_UNAVAILABLE,
    ExternalServiceError: status.HTTP_502_BAD_GATEWAY,
}


def get_engine(request: Request) -> ReservationEngine:
    return request.app.state.engine


def raise_for_error(result):
    """Pass successful results through; turn error values into HTTP errors."""
    if isinstance(result, ReservationError):
        raise HTTPException(
            status_code=ERROR_STATUS.get(type(result), status.HTTP_400_BAD_REQUEST),
            detail={"code": result.code, "message": result.message},
        )
    return result
