"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from typing import Dict, List, Literal, Optional

from domain.enums import RoomStatus, PaymentStatus, IntentStatus, UserRole


# ============================================================================
# RESERVATION SCHEMAS
# ============================================================================

class CreateWalkInRequest(BaseModel):
    """Walk-in reservation request DTO. Either room_id or room_type is required."""
    hotel_id: int
    room_id: Optional[int] = None
    room_type: Optional[str] = None
    guest_name: str = Field(min_length=1)
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    check_in: date
    check_out: date
    guests: int = Field(default=1, ge=1)
    special_requests: Optional[str] = None
    defer_payment: bool = Field(default=False, description="Leave the reservation PENDING until paid at the desk")
    amount_paid: Decimal = Field(default=Decimal("0"), ge=0)

    @property
    def guest_ref(self) -> str:
        return self.guest_email or self.guest_phone or self.guest_name


class EditReservationRequest(BaseModel):
    """Edit reservation request DTO"""
    room_id: Optional[int] = None
    check_in: Optional[date] = None
    check_out: Optional[date] = None
    special_requests: Optional[str] = None


class CheckInRequest(BaseModel):
    """Check-in request DTO"""
    override: bool = Field(default=False, description="Allow check-in before the reservation's check-in date")


class CancelReservationRequest(BaseModel):
    """Cancel reservation request DTO"""
    reason: str = "Guest changed plans"


class RecordPaymentRequest(BaseModel):
    amount: Decimal = Field(gt=0)


class ReservationResponse(BaseModel):
    """Reservation response DTO"""
    reservation_id: UUID
    confirmation_code: str
    hotel_id: int
    room_id: int
    room_type: str
    guest_ref: str
    guest_name: Optional[str] = None
    check_in: date
    check_out: date
    nights: int
    guests: int
    special_requests: Optional[str] = None
    amount_total: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    currency: str
    status: str
    reservation_source: str
    cancellation_reason: Optional[str] = None
    checked_in_early: bool = False
    created_at: datetime
    modified_at: datetime
    created_by: str
    version: int


class PageMetaResponse(BaseModel):
    current_page: int
    from_: Optional[int] = Field(None, alias="from")
    last_page: int
    per_page: int
    to: Optional[int] = None
    total: int

    class Config:
        populate_by_name = True


class ReservationPageResponse(BaseModel):
    data: List[ReservationResponse]
    meta: PageMetaResponse


# ============================================================================
# ROOM & AVAILABILITY SCHEMAS
# ============================================================================

class RoomResponse(BaseModel):
    room_id: int
    hotel_id: int
    number: str
    room_type: str
    capacity: int
    price: Decimal
    status: str
    description: str = ""


class UpdateRoomStatusRequest(BaseModel):
    status: RoomStatus


class AvailabilityResponse(BaseModel):
    """Availability snapshot DTO"""
    hotel_id: int
    room_type: str
    check_in: date
    check_out: date
    total_rooms: int
    per_day_reserved_count: Dict[date, int]
    available_rooms: int
    sold_out: bool


class DisabledDatesResponse(BaseModel):
    room_type: str
    data: List[date]


class OccupancyResponse(BaseModel):
    rate: float
    total_rooms: int
    occupied_rooms: int
    available_rooms: int


class DashboardResponse(BaseModel):
    arrivals: int
    departures: int
    in_house: int
    occupancy: OccupancyResponse


# ============================================================================
# PAYMENT SCHEMAS
# ============================================================================

class CreateIntentRequest(BaseModel):
    hotel_id: int
    room_type: str = Field(min_length=1)
    check_in: date
    check_out: date
    guests: int = Field(default=1, ge=1)
    return_url: str = Field(min_length=1)


class CreateIntentResponse(BaseModel):
    intent_id: UUID
    checkout_url: str
    tx_ref: str


class PaymentStatusResponse(BaseModel):
    tx_ref: str
    payment_status: PaymentStatus
    intent_status: IntentStatus
    reservation_id: Optional[UUID] = None


class GatewayCallbackRequest(BaseModel):
    tx_ref: str = Field(min_length=1)
    status: Literal["success", "failed"]
    reason: Optional[str] = None


class PaymentIntentResponse(BaseModel):
    intent_id: UUID
    tx_ref: str
    hotel_id: int
    room_type: str
    check_in: date
    check_out: date
    guests: int
    amount: Decimal
    currency: str
    payment_status: PaymentStatus
    intent_status: IntentStatus
    reservation_id: Optional[UUID] = None
    failure_reason: Optional[str] = None
    checkout_url: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None


# ============================================================================
# AUTH SCHEMAS
# ============================================================================

class Token(BaseModel):
    access_token: str
    token_type: str


class TokenData(BaseModel):
    username: Optional[str] = None


class UserResponse(BaseModel):
    user_id: UUID
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: UserRole
    disabled: bool = False


class EnumValuesResponse(BaseModel):
    values: List[str]
    description: str


class ErrorResponse(BaseModel):
    detail: str
    error: str

