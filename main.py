import logging
from datetime import date, timedelta
from typing import List, Optional
from uuid import UUID

from fastapi import FastAPI, HTTPException, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm

from api.schemas import (
    # Reservation
    CreateWalkInRequest, EditReservationRequest, CheckInRequest, CancelReservationRequest,
    RecordPaymentRequest, ReservationResponse, PageMetaResponse, ReservationPageResponse,
    # Rooms & availability
    RoomResponse, UpdateRoomStatusRequest, AvailabilityResponse, DisabledDatesResponse,
    OccupancyResponse, DashboardResponse,
    # Payments
    CreateIntentRequest, CreateIntentResponse, PaymentStatusResponse, GatewayCallbackRequest,
    PaymentIntentResponse,
    # Auth & misc
    Token, UserResponse, EnumValuesResponse, ErrorResponse
)

from api.dependencies import get_current_active_user, require_staff, fake_users_db, get_user
from infrastructure.security import verify_password, create_access_token, verify_gateway_secret
from infrastructure.config import get_settings
from domain.auth import User

from application.services import (
    AvailabilityService, BookingAllocator, ReservationService, ReservationFilters
)
from application.payments import PaymentReconciler
from infrastructure.repositories.in_memory_repositories import (
    InMemoryRoomRepository, InMemoryReservationRepository, InMemoryPaymentIntentRepository
)
from infrastructure.catalog import load_room_catalog
from infrastructure.events import EventPublisher, LoggingAuditSink, InMemoryNotificationSink
from infrastructure.locks import KeyedLock
from infrastructure.payment_gateway import HostedCheckoutGateway
from domain.enums import (
    ReservationSource, ReservationStatus, RoomStatus, IntentStatus, PaymentStatus
)
from domain.exceptions import (
    ReservationError, ValidationError, NotFoundError, CapacityError, StateTransitionError,
    OversoldError
)

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.app_title,
    description="Room inventory, reservation ledger and payment reconciliation for a hotel",
    version="1.0.0"
)

# Initialize repositories
room_repo = InMemoryRoomRepository(load_room_catalog(settings.room_catalog_path))
reservation_repo = InMemoryReservationRepository()
intent_repo = InMemoryPaymentIntentRepository()

# Shared across requests: the lock table and the event fan-out
locks = KeyedLock()
notifications = InMemoryNotificationSink()
publisher = EventPublisher([LoggingAuditSink(), notifications])
gateway = HostedCheckoutGateway(settings.gateway_checkout_base_url)


# Dependency injection
def get_availability_service() -> AvailabilityService:
    return AvailabilityService(room_repo, reservation_repo, max_probe_days=settings.max_probe_days)

def get_allocator() -> BookingAllocator:
    return BookingAllocator(
        room_repo, reservation_repo, locks, publisher,
        max_stay_nights=settings.max_stay_nights, currency=settings.currency
    )

def get_reservation_service() -> ReservationService:
    return ReservationService(
        reservation_repo, room_repo, locks, publisher, max_stay_nights=settings.max_stay_nights
    )

def get_payment_reconciler(
    availability: AvailabilityService = Depends(get_availability_service),
    allocator: BookingAllocator = Depends(get_allocator)
) -> PaymentReconciler:
    return PaymentReconciler(
        intent_repo, availability, allocator, gateway, locks, publisher,
        max_stay_nights=settings.max_stay_nights,
        currency=settings.currency,
        tx_ref_prefix=settings.tx_ref_prefix,
        intent_ttl=timedelta(minutes=settings.intent_ttl_minutes)
    )


# ============================================================================
# ERROR HANDLING
# ============================================================================

_ERROR_STATUS = {
    ValidationError: 400,
    NotFoundError: 404,
    CapacityError: 409,
    StateTransitionError: 409,
    OversoldError: 409,
}

@app.exception_handler(ReservationError)
async def reservation_error_handler(request: Request, exc: ReservationError):
    status_code = next(
        (code for error_type, code in _ERROR_STATUS.items() if isinstance(exc, error_type)), 400
    )
    if status_code >= 409:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(detail=str(exc), error=exc.kind).model_dump()
    )

# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running"}

@app.get("/api/enums/reservation-status", response_model=EnumValuesResponse, tags=["Enum Reference"])
async def get_reservation_statuses():
    """Get all ReservationStatus enum values"""
    return {
        "values": [item.name for item in ReservationStatus],
        "description": "Reservation status values: PENDING, CONFIRMED, CHECKED_IN, CHECKED_OUT, CANCELLED"
    }

@app.get("/api/enums/reservation-source", response_model=EnumValuesResponse, tags=["Enum Reference"])
async def get_reservation_sources():
    """Get all ReservationSource enum values"""
    return {
        "values": [item.name for item in ReservationSource],
        "description": "Reservation source values: WEB (paid online), WALK_IN (front desk)"
    }

@app.get("/api/enums/room-status", response_model=EnumValuesResponse, tags=["Enum Reference"])
async def get_room_statuses():
    """Get all RoomStatus enum values"""
    return {
        "values": [item.name for item in RoomStatus],
        "description": "Room status values: AVAILABLE, MAINTENANCE, UNAVAILABLE. Only AVAILABLE rooms are sold"
    }

@app.get("/api/enums/intent-status", response_model=EnumValuesResponse, tags=["Enum Reference"])
async def get_intent_statuses():
    """Get all IntentStatus enum values"""
    return {
        "values": [item.name for item in IntentStatus],
        "description": "Payment intent status values: PENDING, CONFIRMED, FAILED, OVERSOLD, EXPIRED"
    }

@app.get("/api/enums/payment-status", response_model=EnumValuesResponse, tags=["Enum Reference"])
async def get_payment_statuses():
    """Get all PaymentStatus enum values"""
    return {
        "values": [item.name for item in PaymentStatus],
        "description": "Payment status values: INITIATED, PENDING, PAID, FAILED, EXPIRED"
    }

# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@app.post("/token", response_model=Token, tags=["Auth"])
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    user = get_user(fake_users_db, form_data.username)
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=401,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token = create_access_token(data={"sub": user.username, "role": user.role.value})
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/users/me", response_model=UserResponse, tags=["Auth"])
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return current_user

# ============================================================================
# AVAILABILITY & ROOM ENDPOINTS
# ============================================================================

@app.get("/api/hotels/{hotel_id}/availability", response_model=List[AvailabilityResponse], tags=["Availability"])
async def get_availability(
    hotel_id: int,
    check_in: date,
    check_out: date,
    room_type: Optional[str] = None,
    service: AvailabilityService = Depends(get_availability_service)
):
    """Advisory availability per room type; nothing is held"""
    snapshots = await service.query(hotel_id, check_in, check_out, room_type)
    return [_snapshot_to_response(s) for s in snapshots]

@app.get("/api/hotels/{hotel_id}/availability/disabled-check-in",
         response_model=DisabledDatesResponse, tags=["Availability"])
async def get_disabled_check_in_dates(
    hotel_id: int,
    room_type: str,
    start: Optional[date] = None,
    days: Optional[int] = Query(default=None, description="Window length, defaults to the configured probe window"),
    service: AvailabilityService = Depends(get_availability_service)
):
    """Dates a date picker should grey out as check-in"""
    start = start or date.today()
    if days is None:
        days = settings.probe_window_days
    disabled = await service.disabled_check_in_dates(hotel_id, room_type, start, days)
    return DisabledDatesResponse(room_type=room_type, data=sorted(disabled))

@app.get("/api/hotels/{hotel_id}/availability/disabled-check-out",
         response_model=DisabledDatesResponse, tags=["Availability"])
async def get_disabled_check_out_dates(
    hotel_id: int,
    room_type: str,
    check_in: date,
    days: Optional[int] = Query(default=None, description="Window length, defaults to the configured probe window"),
    service: AvailabilityService = Depends(get_availability_service)
):
    """Dates a date picker should grey out as check-out for the chosen check-in"""
    if days is None:
        days = settings.probe_window_days
    disabled = await service.disabled_check_out_dates(hotel_id, room_type, check_in, days)
    return DisabledDatesResponse(room_type=room_type, data=sorted(disabled))

@app.get("/api/hotels/{hotel_id}/rooms", response_model=List[RoomResponse], tags=["Rooms"])
async def get_rooms(
    hotel_id: int,
    room_type: Optional[str] = None,
    service: ReservationService = Depends(get_reservation_service)
):
    """Room catalog of a hotel"""
    rooms = await service.list_rooms(hotel_id, room_type)
    return [_room_to_response(r) for r in rooms]

@app.patch("/api/rooms/{room_id}/status", response_model=RoomResponse, tags=["Rooms"])
async def update_room_status(
    room_id: int,
    request: UpdateRoomStatusRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_staff)
):
    """Take a room out of (or back into) inventory"""
    room = await service.set_room_status(room_id, request.status, actor=current_user.username)
    return _room_to_response(room)

@app.get("/api/hotels/{hotel_id}/dashboard", response_model=DashboardResponse, tags=["Rooms"])
async def get_dashboard(
    hotel_id: int,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_staff)
):
    """Today's arrivals, departures, in-house guests and occupancy"""
    metrics = await service.dashboard_metrics(hotel_id)
    return DashboardResponse(
        arrivals=metrics.arrivals,
        departures=metrics.departures,
        in_house=metrics.in_house,
        occupancy=OccupancyResponse(**metrics.occupancy.model_dump())
    )

# ============================================================================
# RESERVATION ENDPOINTS
# ============================================================================

@app.get("/api/reservations", response_model=ReservationPageResponse, tags=["Reservations"])
async def list_reservations(
    hotel_id: Optional[int] = None,
    guest_ref: Optional[str] = None,
    status: Optional[ReservationStatus] = None,
    room_type: Optional[str] = None,
    search: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    page: int = 1,
    per_page: int = 15,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Filtered, paginated reservation list, newest first. Customers get only their own."""
    if not current_user.is_staff():
        guest_ref = current_user.guest_ref
    filters = ReservationFilters(
        hotel_id=hotel_id, guest_ref=guest_ref, status=status, room_type=room_type,
        search=search, date_from=date_from, date_to=date_to
    )
    result = await service.list_reservations(filters, page=page, per_page=per_page)
    return ReservationPageResponse(
        data=[_reservation_to_response(r) for r in result.data],
        meta=PageMetaResponse(**result.meta.model_dump())
    )

@app.post("/api/reservations/walk-in", response_model=ReservationResponse, status_code=201, tags=["Reservations"])
async def create_walk_in_reservation(
    request: CreateWalkInRequest,
    allocator: BookingAllocator = Depends(get_allocator),
    current_user: User = Depends(require_staff)
):
    """Front-desk booking. Confirmed at once unless payment is deferred."""
    reservation = await allocator.allocate(
        hotel_id=request.hotel_id,
        room_type=request.room_type,
        room_id=request.room_id,
        check_in=request.check_in,
        check_out=request.check_out,
        guest_ref=request.guest_ref,
        guest_name=request.guest_name,
        guests=request.guests,
        source=ReservationSource.WALK_IN,
        initial_status=ReservationStatus.PENDING if request.defer_payment else ReservationStatus.CONFIRMED,
        amount_paid=request.amount_paid,
        special_requests=request.special_requests,
        created_by=current_user.username
    )
    return _reservation_to_response(reservation)

@app.get("/api/reservations/code/{confirmation_code}", response_model=ReservationResponse, tags=["Reservations"])
async def get_reservation_by_code(
    confirmation_code: str,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get reservation by confirmation code"""
    reservation = await service.get_reservation_by_confirmation_code(confirmation_code)
    if not reservation or not _visible_to(reservation, current_user):
        raise HTTPException(status_code=404, detail="Reservation not found")
    return _reservation_to_response(reservation)

@app.get("/api/reservations/{reservation_id}", response_model=ReservationResponse, tags=["Reservations"])
async def get_reservation(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get reservation by ID"""
    reservation = await service.get_reservation(reservation_id)
    if not reservation or not _visible_to(reservation, current_user):
        raise HTTPException(status_code=404, detail="Reservation not found")
    return _reservation_to_response(reservation)

@app.put("/api/reservations/{reservation_id}", response_model=ReservationResponse, tags=["Reservations"])
async def edit_reservation(
    reservation_id: UUID,
    request: EditReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_staff)
):
    """Move a reservation to another room and/or other dates"""
    reservation = await service.edit_reservation(
        reservation_id=reservation_id,
        room_id=request.room_id,
        check_in=request.check_in,
        check_out=request.check_out,
        special_requests=request.special_requests,
        actor=current_user.username
    )
    return _reservation_to_response(reservation)

@app.post("/api/reservations/{reservation_id}/confirm", response_model=ReservationResponse, tags=["Reservations"])
async def confirm_reservation(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_staff)
):
    """Confirm a pending reservation"""
    reservation = await service.confirm_reservation(reservation_id, actor=current_user.username)
    return _reservation_to_response(reservation)

@app.post("/api/reservations/{reservation_id}/check-in", response_model=ReservationResponse, tags=["Reservations"])
async def check_in_guest(
    reservation_id: UUID,
    request: Optional[CheckInRequest] = None,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_staff)
):
    """Check in guest"""
    override = request.override if request else False
    reservation = await service.check_in_guest(
        reservation_id, actor=current_user.username, override=override
    )
    return _reservation_to_response(reservation)

@app.post("/api/reservations/{reservation_id}/check-out", response_model=ReservationResponse, tags=["Reservations"])
async def check_out_guest(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_staff)
):
    """Check out guest"""
    reservation = await service.check_out_guest(reservation_id, actor=current_user.username)
    return _reservation_to_response(reservation)

@app.post("/api/reservations/{reservation_id}/cancel", response_model=ReservationResponse, tags=["Reservations"])
async def cancel_reservation(
    reservation_id: UUID,
    request: Optional[CancelReservationRequest] = None,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_staff)
):
    """Cancel reservation"""
    reason = request.reason if request else None
    reservation = await service.cancel_reservation(
        reservation_id, reason=reason, actor=current_user.username
    )
    return _reservation_to_response(reservation)

@app.post("/api/reservations/{reservation_id}/payments", response_model=ReservationResponse, tags=["Reservations"])
async def record_payment(
    reservation_id: UUID,
    request: RecordPaymentRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(require_staff)
):
    """Record a desk payment"""
    reservation = await service.record_payment(reservation_id, request.amount, actor=current_user.username)
    return _reservation_to_response(reservation)

# ============================================================================
# PAYMENT ENDPOINTS
# ============================================================================

@app.post("/api/payments/intents", response_model=CreateIntentResponse, status_code=201, tags=["Payments"])
async def create_payment_intent(
    request: CreateIntentRequest,
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
    current_user: User = Depends(get_current_active_user)
):
    """Price the stay and open a checkout. No room is held while the guest pays."""
    created = await reconciler.create_intent(
        hotel_id=request.hotel_id,
        room_type=request.room_type,
        check_in=request.check_in,
        check_out=request.check_out,
        guests=request.guests,
        return_url=request.return_url,
        guest_ref=current_user.guest_ref
    )
    return CreateIntentResponse(**created.model_dump())

@app.get("/api/payments/status/{tx_ref}", response_model=PaymentStatusResponse, tags=["Payments"])
async def get_payment_status(
    tx_ref: str,
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
    current_user: User = Depends(get_current_active_user)
):
    """Polled by the return page until the intent resolves"""
    intent = await reconciler.get_intent(tx_ref)
    if not current_user.is_staff() and intent.draft.guest_ref != current_user.guest_ref:
        raise HTTPException(status_code=404, detail="Payment intent not found")
    view = await reconciler.poll_status(tx_ref)
    return PaymentStatusResponse(**view.model_dump())

@app.post("/api/payments/callback", response_model=PaymentIntentResponse, tags=["Payments"])
async def payment_gateway_callback(
    request: GatewayCallbackRequest,
    x_gateway_secret: Optional[str] = Header(default=None, alias="X-Gateway-Secret"),
    reconciler: PaymentReconciler = Depends(get_payment_reconciler)
):
    """Asynchronous outcome from the payment gateway"""
    if not verify_gateway_secret(x_gateway_secret):
        logger.warning("Rejected gateway callback for %s: bad secret", request.tx_ref)
        raise HTTPException(status_code=401, detail="Invalid gateway signature")
    intent = await reconciler.handle_gateway_callback(
        request.tx_ref, succeeded=request.status == "success", reason=request.reason
    )
    return _intent_to_response(intent)

@app.post("/api/payments/intents/expire-stale", response_model=List[PaymentIntentResponse], tags=["Payments"])
async def expire_stale_intents(
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
    current_user: User = Depends(require_staff)
):
    """Expire every unresolved intent older than the configured TTL"""
    expired = await reconciler.expire_stale_intents()
    return [_intent_to_response(i) for i in expired]

@app.post("/api/payments/intents/{tx_ref}/expire", response_model=PaymentIntentResponse, tags=["Payments"])
async def expire_intent(
    tx_ref: str,
    reconciler: PaymentReconciler = Depends(get_payment_reconciler),
    current_user: User = Depends(require_staff)
):
    """Expire one unresolved intent"""
    intent = await reconciler.expire_intent(tx_ref)
    return _intent_to_response(intent)

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _visible_to(reservation, user: User) -> bool:
    """Customers only see their own reservations"""
    return user.is_staff() or reservation.guest_ref == user.guest_ref

def _reservation_to_response(reservation) -> ReservationResponse:
    """Convert Reservation entity to ReservationResponse"""
    return ReservationResponse(
        reservation_id=reservation.reservation_id,
        confirmation_code=reservation.confirmation_code,
        hotel_id=reservation.hotel_id,
        room_id=reservation.room_id,
        room_type=reservation.room_type,
        guest_ref=reservation.guest_ref,
        guest_name=reservation.guest_name,
        check_in=reservation.date_range.check_in,
        check_out=reservation.date_range.check_out,
        nights=reservation.get_nights(),
        guests=reservation.guests,
        special_requests=reservation.special_requests,
        amount_total=reservation.amount_total,
        amount_paid=reservation.amount_paid,
        balance_due=reservation.balance_due().amount,
        currency=reservation.currency,
        status=reservation.status.value,
        reservation_source=reservation.reservation_source.value,
        cancellation_reason=reservation.cancellation_reason,
        checked_in_early=reservation.checked_in_early,
        created_at=reservation.created_at,
        modified_at=reservation.modified_at,
        created_by=reservation.created_by,
        version=reservation.version
    )

def _room_to_response(room) -> RoomResponse:
    """Convert Room entity to RoomResponse"""
    return RoomResponse(
        room_id=room.room_id,
        hotel_id=room.hotel_id,
        number=room.number,
        room_type=room.room_type,
        capacity=room.capacity,
        price=room.price,
        status=room.status.value,
        description=room.description
    )

def _snapshot_to_response(snapshot) -> AvailabilityResponse:
    """Convert AvailabilitySnapshot to AvailabilityResponse"""
    return AvailabilityResponse(
        hotel_id=snapshot.hotel_id,
        room_type=snapshot.room_type,
        check_in=snapshot.check_in,
        check_out=snapshot.check_out,
        total_rooms=snapshot.total_rooms,
        per_day_reserved_count=snapshot.per_day_reserved_count,
        available_rooms=snapshot.available_rooms,
        sold_out=snapshot.is_sold_out
    )

def _intent_to_response(intent) -> PaymentIntentResponse:
    """Convert PaymentIntent entity to PaymentIntentResponse"""
    return PaymentIntentResponse(
        intent_id=intent.intent_id,
        tx_ref=intent.tx_ref,
        hotel_id=intent.draft.hotel_id,
        room_type=intent.draft.room_type,
        check_in=intent.draft.date_range.check_in,
        check_out=intent.draft.date_range.check_out,
        guests=intent.draft.guests,
        amount=intent.amount.amount,
        currency=intent.amount.currency,
        payment_status=intent.payment_status,
        intent_status=intent.intent_status,
        reservation_id=intent.reservation_id,
        failure_reason=intent.failure_reason,
        checkout_url=intent.checkout_url,
        created_at=intent.created_at,
        resolved_at=intent.resolved_at
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
