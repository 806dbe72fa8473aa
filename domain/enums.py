"""Domain Enums"""
from enum import Enum


class ReservationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    CHECKED_OUT = "CHECKED_OUT"
    CANCELLED = "CANCELLED"

    @property
    def is_live(self) -> bool:
        """Live reservations hold their room-nights"""
        return self in LIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self in (ReservationStatus.CHECKED_OUT, ReservationStatus.CANCELLED)


LIVE_STATUSES = frozenset({
    ReservationStatus.PENDING,
    ReservationStatus.CONFIRMED,
    ReservationStatus.CHECKED_IN,
})


class ReservationSource(str, Enum):
    WEB = "WEB"
    WALK_IN = "WALK_IN"


class RoomStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    MAINTENANCE = "MAINTENANCE"
    UNAVAILABLE = "UNAVAILABLE"


class PaymentStatus(str, Enum):
    """Gateway-side state of the money"""
    INITIATED = "INITIATED"
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


class IntentStatus(str, Enum):
    """Booking-side state of a payment intent"""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"
    OVERSOLD = "OVERSOLD"
    EXPIRED = "EXPIRED"

    @property
    def is_resolved(self) -> bool:
        return self != IntentStatus.PENDING


class UserRole(str, Enum):
    STAFF = "STAFF"
    CUSTOMER = "CUSTOMER"
