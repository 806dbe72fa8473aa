"""Domain Events and the sinks that receive them"""
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


RESERVATION_CREATED = "reservation.created"
RESERVATION_CONFIRMED = "reservation.confirmed"
RESERVATION_CHECKED_IN = "reservation.checked_in"
RESERVATION_EARLY_CHECK_IN = "reservation.early_check_in"
RESERVATION_CHECKED_OUT = "reservation.checked_out"
RESERVATION_CANCELLED = "reservation.cancelled"
RESERVATION_EDITED = "reservation.edited"
PAYMENT_INTENT_RESOLVED = "payment.intent_resolved"

EVENT_TYPES = (
    RESERVATION_CREATED, RESERVATION_CONFIRMED, RESERVATION_CHECKED_IN,
    RESERVATION_EARLY_CHECK_IN, RESERVATION_CHECKED_OUT, RESERVATION_CANCELLED,
    RESERVATION_EDITED, PAYMENT_INTENT_RESOLVED,
)


class DomainEvent(BaseModel):
    event_id: UUID = Field(default_factory=uuid4)
    event_type: str
    hotel_id: int
    actor: str = "SYSTEM"
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    payload: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        frozen = True


class ReservationEvent(DomainEvent):
    reservation_id: UUID
    status: str


class PaymentIntentResolved(DomainEvent):
    """outcome: confirmed, failed, oversold, expired or paid_after_expiry"""
    event_type: str = PAYMENT_INTENT_RESOLVED
    tx_ref: str
    intent_id: UUID
    outcome: str
    reservation_id: Optional[UUID] = None


class EventSink(ABC):
    """Receiver of lifecycle events. Never awaited by the operation that emitted it."""

    @abstractmethod
    async def handle(self, event: DomainEvent) -> None:
        pass


class AuditSink(EventSink):
    """Marker for sinks that keep an audit trail"""


class NotificationSink(EventSink):
    """Marker for sinks that notify guests or staff"""
