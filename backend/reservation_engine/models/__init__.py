from reservation_engine.models.payment_event import PaymentEventRow
from reservation_engine.models.reservation import ReservationRow
from reservation_engine.models.resource import ResourceRow
from reservation_engine.models.slot import SlotRow

__all__ = ["PaymentEventRow", "ReservationRow", "ResourceRow", "SlotRow"]
