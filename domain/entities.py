"""Domain Entities - Aggregates"""
from pydantic import BaseModel, Field
from uuid import UUID, uuid4
from datetime import datetime, date, timedelta, timezone
from typing import Optional, Dict, FrozenSet, Tuple
from decimal import Decimal

from domain.enums import (
    ReservationStatus, ReservationSource, RoomStatus, PaymentStatus, IntentStatus
)
from domain.exceptions import StateTransitionError, ValidationError
from domain.value_objects import DateRange, Money, BookingDraft


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# action -> (statuses it may start from, status it lands in)
RESERVATION_TRANSITIONS: Dict[str, Tuple[FrozenSet[ReservationStatus], ReservationStatus]] = {
    "confirm": (frozenset({ReservationStatus.PENDING}), ReservationStatus.CONFIRMED),
    "check_in": (frozenset({ReservationStatus.CONFIRMED}), ReservationStatus.CHECKED_IN),
    "check_out": (frozenset({ReservationStatus.CHECKED_IN}), ReservationStatus.CHECKED_OUT),
    "cancel": (
        frozenset({ReservationStatus.PENDING, ReservationStatus.CONFIRMED}),
        ReservationStatus.CANCELLED,
    ),
}

EDITABLE_STATUSES = frozenset({ReservationStatus.PENDING, ReservationStatus.CONFIRMED})


class Room(BaseModel):
    """Room inventory record. Only the status is mutable."""

    room_id: int
    hotel_id: int
    number: str
    room_type: str
    capacity: int = Field(ge=1)
    price: Decimal = Field(ge=0)
    status: RoomStatus = RoomStatus.AVAILABLE
    description: str = ""

    class Config:
        from_attributes = True

    def is_bookable(self) -> bool:
        return self.status == RoomStatus.AVAILABLE

    def fits(self, guests: int) -> bool:
        return guests <= self.capacity

    def price_for(self, date_range: DateRange) -> Decimal:
        return self.price * date_range.nights()

    def set_status(self, status: RoomStatus) -> None:
        self.status = status


class Reservation(BaseModel):
    """Reservation Aggregate Root Entity"""

    # Identity
    reservation_id: UUID = Field(default_factory=uuid4)
    confirmation_code: str

    # Where and who
    hotel_id: int
    room_id: int
    room_type: str
    guest_ref: str
    guest_name: Optional[str] = None

    # Stay
    date_range: DateRange
    guests: int = Field(ge=1)
    special_requests: Optional[str] = None

    # Money
    amount_total: Decimal = Field(ge=0)
    amount_paid: Decimal = Field(ge=0, default=Decimal("0"))
    currency: str = "ETB"

    # Status
    status: ReservationStatus = ReservationStatus.PENDING
    reservation_source: ReservationSource = ReservationSource.WEB
    cancellation_reason: Optional[str] = None
    checked_in_early: bool = False

    # Metadata
    created_at: datetime = Field(default_factory=_utcnow)
    modified_at: datetime = Field(default_factory=_utcnow)
    created_by: str = "SYSTEM"
    version: int = 1

    class Config:
        from_attributes = True

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        room: Room,
        date_range: DateRange,
        guest_ref: str,
        guests: int,
        reservation_source: ReservationSource,
        today: date,
        max_stay_nights: int = 30,
        status: ReservationStatus = ReservationStatus.PENDING,
        amount_total: Optional[Decimal] = None,
        amount_paid: Decimal = Decimal("0"),
        currency: str = "ETB",
        special_requests: Optional[str] = None,
        guest_name: Optional[str] = None,
        created_by: str = "SYSTEM"
    ) -> "Reservation":
        """Create a reservation on a concrete room with validation"""
        Reservation.validate_stay(date_range, today, max_stay_nights)
        Reservation._validate_guest(guest_ref, guests)
        if status not in EDITABLE_STATUSES:
            raise ValidationError("New reservations start as PENDING or CONFIRMED")

        total = room.price_for(date_range) if amount_total is None else Decimal(amount_total)
        paid = Decimal(amount_paid)
        Reservation._validate_amounts(total, paid)

        return Reservation(
            confirmation_code=Reservation._generate_confirmation_code(),
            hotel_id=room.hotel_id,
            room_id=room.room_id,
            room_type=room.room_type,
            guest_ref=guest_ref,
            guest_name=guest_name,
            date_range=date_range,
            guests=guests,
            special_requests=special_requests,
            amount_total=total,
            amount_paid=paid,
            currency=currency,
            status=status,
            reservation_source=reservation_source,
            created_by=created_by
        )

    # ==================== STATE TRANSITION METHODS ====================
    def can(self, action: str) -> bool:
        allowed_from, _ = RESERVATION_TRANSITIONS[action]
        return self.status in allowed_from

    def _transition(self, action: str) -> None:
        allowed_from, target = RESERVATION_TRANSITIONS[action]
        if self.status not in allowed_from:
            raise StateTransitionError(action.replace("_", " "), self.status)
        self.status = target
        self._touch()

    def confirm(self) -> None:
        """PENDING -> CONFIRMED"""
        self._transition("confirm")

    def check_in(self, today: date, override: bool = False) -> bool:
        """CONFIRMED -> CHECKED_IN. Returns True when this was an early check-in."""
        if not self.can("check_in"):
            raise StateTransitionError("check in", self.status)
        early = today < self.date_range.check_in
        if early and not override:
            raise ValidationError(
                f"Check-in date is {self.date_range.check_in.isoformat()}; "
                "early check-in requires a staff override"
            )
        self.checked_in_early = early
        self._transition("check_in")
        return early

    def check_out(self) -> Money:
        """CHECKED_IN -> CHECKED_OUT. Whatever has been paid so far stands."""
        self._transition("check_out")
        return Money(amount=self.amount_paid, currency=self.currency)

    def cancel(self, reason: Optional[str] = None) -> None:
        """PENDING/CONFIRMED -> CANCELLED"""
        self._transition("cancel")
        self.cancellation_reason = reason

    # ==================== MODIFICATION METHODS ====================
    def is_modifiable(self) -> bool:
        return self.status in EDITABLE_STATUSES

    def reassign(self, room: Room, date_range: DateRange, special_requests: Optional[str] = None) -> None:
        """Move the stay to another room and/or other dates; overlap is checked by the caller"""
        if not self.is_modifiable():
            raise StateTransitionError("edit", self.status)
        new_total = self.amount_total
        if room.room_id != self.room_id or date_range != self.date_range:
            new_total = room.price_for(date_range)
        if new_total < self.amount_paid:
            raise ValidationError(
                f"New total {new_total} would be below the {self.amount_paid} already paid"
            )
        self.room_id = room.room_id
        self.room_type = room.room_type
        self.date_range = date_range
        self.amount_total = new_total
        if special_requests is not None:
            self.special_requests = special_requests
        self._touch()

    def record_payment(self, amount: Decimal) -> None:
        if self.status.is_terminal:
            raise StateTransitionError("record payment on", self.status)
        amount = Decimal(amount)
        if amount <= 0:
            raise ValidationError("Payment amount must be greater than 0")
        Reservation._validate_amounts(self.amount_total, self.amount_paid + amount)
        self.amount_paid += amount
        self._touch()

    # ==================== QUERY METHODS ====================
    def holds_room_on(self, room_id: int, date_range: DateRange) -> bool:
        """Whether this reservation claims any of the given room-nights"""
        return (
            self.room_id == room_id
            and self.status.is_live
            and self.date_range.overlaps(date_range)
        )

    def balance_due(self) -> Money:
        return Money(amount=self.amount_total - self.amount_paid, currency=self.currency)

    def get_nights(self) -> int:
        return self.date_range.nights()

    # ==================== PRIVATE VALIDATION METHODS ====================
    @staticmethod
    def validate_stay(date_range: DateRange, today: date, max_stay_nights: int = 30,
                      previous: Optional[DateRange] = None) -> None:
        """Validate date range business rules for a new or moved stay.

        When moving an existing stay, pass its current range as previous: only
        the dates that actually change have to be today or later.
        """
        if previous is None or date_range.check_in != previous.check_in:
            if date_range.check_in < today:
                raise ValidationError("Check-in date must be today or later")
        if previous is not None and date_range.check_out != previous.check_out:
            if date_range.check_out < today:
                raise ValidationError("Check-out date must be today or later")
        nights = date_range.nights()
        if nights < 1:
            raise ValidationError("Minimum stay is 1 night")
        if nights > max_stay_nights:
            raise ValidationError(f"Maximum stay is {max_stay_nights} nights")

    @staticmethod
    def _validate_guest(guest_ref: str, guests: int) -> None:
        if not guest_ref or not guest_ref.strip():
            raise ValidationError("Guest identity is required")
        if guests < 1:
            raise ValidationError("At least 1 guest is required")

    @staticmethod
    def _validate_amounts(total: Decimal, paid: Decimal) -> None:
        if total < 0 or paid < 0:
            raise ValidationError("Amounts cannot be negative")
        if paid > total:
            raise ValidationError(f"Amount paid {paid} cannot exceed total {total}")

    @staticmethod
    def _generate_confirmation_code() -> str:
        """Generate unique confirmation code"""
        import random
        import string
        return ''.join(random.choices(string.ascii_uppercase + string.digits, k=8))

    def _touch(self) -> None:
        self.modified_at = _utcnow()
        self.version += 1


class PaymentIntent(BaseModel):
    """A prospective web booking waiting on the payment gateway. Holds no room."""

    intent_id: UUID = Field(default_factory=uuid4)
    tx_ref: str
    draft: BookingDraft
    amount: Money
    return_url: str
    checkout_url: Optional[str] = None

    payment_status: PaymentStatus = PaymentStatus.INITIATED
    intent_status: IntentStatus = IntentStatus.PENDING
    reservation_id: Optional[UUID] = None
    failure_reason: Optional[str] = None

    created_at: datetime = Field(default_factory=_utcnow)
    resolved_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    def open_checkout(self, checkout_url: str) -> None:
        """The gateway accepted the checkout; the customer can now pay"""
        self._require_pending("open checkout for")
        self.checkout_url = checkout_url
        self.payment_status = PaymentStatus.PENDING

    def mark_paid(self) -> None:
        self.payment_status = PaymentStatus.PAID

    def confirm(self, reservation_id: UUID) -> None:
        self._require_pending("confirm")
        self.payment_status = PaymentStatus.PAID
        self.intent_status = IntentStatus.CONFIRMED
        self.reservation_id = reservation_id
        self._resolve()

    def fail(self, reason: Optional[str] = None) -> None:
        self._require_pending("fail")
        self.payment_status = PaymentStatus.FAILED
        self.intent_status = IntentStatus.FAILED
        self.failure_reason = reason
        self._resolve()

    def mark_oversold(self, reason: str = "oversold") -> None:
        """Paid, but the stay could not be allocated"""
        self._require_pending("mark oversold")
        self.payment_status = PaymentStatus.PAID
        self.intent_status = IntentStatus.OVERSOLD
        self.failure_reason = reason
        self._resolve()

    def expire(self) -> None:
        self._require_pending("expire")
        self.payment_status = PaymentStatus.EXPIRED
        self.intent_status = IntentStatus.EXPIRED
        self.failure_reason = "expired"
        self._resolve()

    def is_resolved(self) -> bool:
        return self.intent_status.is_resolved

    def is_stale(self, now: datetime, ttl: timedelta) -> bool:
        return not self.is_resolved() and now - self.created_at >= ttl

    def _require_pending(self, action: str) -> None:
        if self.is_resolved():
            raise StateTransitionError(action, self.intent_status, subject="payment intent")

    def _resolve(self) -> None:
        self.resolved_at = _utcnow()
