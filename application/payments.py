"""Payment intents and their reconciliation with the gateway's asynchronous outcome.

A customer booking goes: create_intent -> customer pays on the gateway's
checkout page -> the gateway calls back -> the stay is allocated. No room is
held while the customer is paying, so an abandoned checkout costs nothing;
the price of that is that a paid intent can find its room type sold out,
which is recorded as OVERSOLD.
"""
import asyncio
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Awaitable, Callable, List, Optional
from uuid import UUID

from pydantic import BaseModel

from application.services import AvailabilityService, BookingAllocator
from domain.entities import PaymentIntent, Reservation
from domain.enums import IntentStatus, PaymentStatus, ReservationSource, ReservationStatus
from domain.events import PaymentIntentResolved
from domain.exceptions import (
    CapacityError, NotFoundError, OversoldError, TransientProbeError, ValidationError,
)
from domain.repositories import PaymentIntentRepository
from domain.value_objects import BookingDraft, DateRange, Money
from infrastructure.config import get_settings
from infrastructure.events import EventPublisher
from infrastructure.locks import KeyedLock, intent_key
from infrastructure.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)


class CreatedIntent(BaseModel):
    intent_id: UUID
    checkout_url: str
    tx_ref: str


class PaymentStatusView(BaseModel):
    """What a polling caller gets back"""
    tx_ref: str
    payment_status: PaymentStatus
    intent_status: IntentStatus
    reservation_id: Optional[UUID] = None


class PaymentReconciler:
    """Creates payment intents and turns gateway outcomes into reservations"""

    def __init__(self,
                 intent_repo: PaymentIntentRepository,
                 availability: AvailabilityService,
                 allocator: BookingAllocator,
                 gateway: PaymentGateway,
                 locks: KeyedLock,
                 publisher: Optional[EventPublisher] = None,
                 today: Callable[[], date] = date.today,
                 max_stay_nights: int = 30,
                 currency: str = "ETB",
                 tx_ref_prefix: str = "HRC",
                 intent_ttl: timedelta = timedelta(minutes=30)):
        self.intent_repo = intent_repo
        self.availability = availability
        self.allocator = allocator
        self.gateway = gateway
        self.locks = locks
        self.publisher = publisher
        self.today = today
        self.max_stay_nights = max_stay_nights
        self.currency = currency
        self.tx_ref_prefix = tx_ref_prefix
        self.intent_ttl = intent_ttl

    # ==================== INTENT CREATION ====================
    async def create_intent(
        self,
        hotel_id: int,
        room_type: str,
        check_in: date,
        check_out: date,
        guests: int,
        return_url: str,
        guest_ref: str
    ) -> CreatedIntent:
        """Price the stay and open a gateway checkout. Allocates nothing."""
        date_range = DateRange.of(check_in, check_out)
        Reservation.validate_stay(date_range, self.today(), self.max_stay_nights)
        if not guest_ref or not guest_ref.strip():
            raise ValidationError("Guest identity is required")
        if guests < 1:
            raise ValidationError("At least 1 guest is required")
        if not return_url or not return_url.strip():
            raise ValidationError("A return URL is required")

        # only rooms the allocator could actually give this party count
        rooms = await self.availability.free_rooms(hotel_id, room_type, check_in, check_out, guests)
        if not rooms:
            raise CapacityError(
                f"No {room_type} room for {guests} guests is available from {check_in} to {check_out}"
            )
        nightly = min(room.price for room in rooms)

        intent = PaymentIntent(
            tx_ref=self._new_tx_ref(),
            draft=BookingDraft(
                hotel_id=hotel_id,
                room_type=room_type,
                date_range=date_range,
                guests=guests,
                guest_ref=guest_ref,
            ),
            amount=Money(amount=nightly * date_range.nights(), currency=self.currency),
            return_url=return_url,
        )
        await self.intent_repo.save(intent)

        checkout_url = await self.gateway.create_checkout(intent)
        intent.open_checkout(checkout_url)
        await self.intent_repo.update(intent)

        logger.info("Payment intent %s opened for %s %s..%s (%s %s)",
                    intent.tx_ref, room_type, check_in, check_out,
                    intent.amount.amount, intent.amount.currency)
        return CreatedIntent(intent_id=intent.intent_id, checkout_url=checkout_url, tx_ref=intent.tx_ref)

    # ==================== STATUS ====================
    async def poll_status(self, tx_ref: str) -> PaymentStatusView:
        """Read-only and idempotent; safe to call on a timer"""
        intent = await self._load(tx_ref)
        return PaymentStatusView(
            tx_ref=intent.tx_ref,
            payment_status=intent.payment_status,
            intent_status=intent.intent_status,
            reservation_id=intent.reservation_id,
        )

    async def get_intent(self, tx_ref: str) -> PaymentIntent:
        return await self._load(tx_ref)

    # ==================== RECONCILIATION ====================
    async def handle_gateway_callback(self, tx_ref: str, succeeded: bool,
                                      reason: Optional[str] = None) -> PaymentIntent:
        """Apply the gateway's outcome to the intent.

        Repeated callbacks for an already resolved intent change nothing. A
        successful payment that can no longer be allocated is recorded as
        OVERSOLD before OversoldError is raised.
        """
        async with self.locks.hold(intent_key(tx_ref)):
            intent = await self._load(tx_ref)

            if intent.intent_status == IntentStatus.EXPIRED:
                if succeeded and intent.payment_status != PaymentStatus.PAID:
                    intent.mark_paid()
                    await self.intent_repo.update(intent)
                    logger.error("Payment %s arrived after its intent expired; no room allocated", tx_ref)
                    self._emit(intent, "paid_after_expiry")
                return intent

            if intent.is_resolved():
                logger.info("Ignoring repeated callback for %s (%s)", tx_ref, intent.intent_status.value)
                return intent

            if not succeeded:
                intent.fail(reason)
                await self.intent_repo.update(intent)
                logger.info("Payment %s failed: %s", tx_ref, reason or "no reason given")
                self._emit(intent, "failed")
                return intent

            intent.mark_paid()
            draft = intent.draft
            try:
                reservation = await self.allocator.allocate(
                    hotel_id=draft.hotel_id,
                    room_type=draft.room_type,
                    check_in=draft.date_range.check_in,
                    check_out=draft.date_range.check_out,
                    guest_ref=draft.guest_ref,
                    source=ReservationSource.WEB,
                    guests=draft.guests,
                    initial_status=ReservationStatus.CONFIRMED,
                    amount_paid=intent.amount.amount,
                    amount_total=intent.amount.amount,
                    created_by=f"payment:{tx_ref}",
                )
            except CapacityError:
                intent.mark_oversold()
                await self.intent_repo.update(intent)
                logger.error("Payment %s succeeded but %s is sold out for %s..%s",
                             tx_ref, draft.room_type, draft.date_range.check_in, draft.date_range.check_out)
                self._emit(intent, "oversold")
                raise OversoldError(tx_ref)
            except ValidationError as exc:
                # e.g. the check-in date passed while the customer was paying
                intent.mark_oversold(reason=str(exc))
                await self.intent_repo.update(intent)
                logger.error("Payment %s succeeded but the stay can no longer be booked: %s", tx_ref, exc)
                self._emit(intent, "oversold")
                raise OversoldError(tx_ref, f"Payment {tx_ref} succeeded but the stay can no longer be booked: {exc}")

            intent.confirm(reservation.reservation_id)
            await self.intent_repo.update(intent)

        logger.info("Payment %s confirmed as reservation %s", tx_ref, reservation.reservation_id)
        self._emit(intent, "confirmed")
        return intent

    # ==================== EXPIRY ====================
    async def expire_intent(self, tx_ref: str) -> PaymentIntent:
        """Mark an unresolved intent expired; resolved intents are returned unchanged"""
        async with self.locks.hold(intent_key(tx_ref)):
            intent = await self._load(tx_ref)
            if intent.is_resolved():
                return intent
            intent.expire()
            await self.intent_repo.update(intent)
        logger.info("Payment intent %s expired", tx_ref)
        self._emit(intent, "expired")
        return intent

    async def expire_stale_intents(self, now: Optional[datetime] = None) -> List[PaymentIntent]:
        """Expire every unresolved intent older than the TTL"""
        now = now or datetime.now(timezone.utc)
        expired = []
        for intent in await self.intent_repo.find_unresolved():
            if intent.is_stale(now, self.intent_ttl):
                intent = await self.expire_intent(intent.tx_ref)
                if intent.intent_status == IntentStatus.EXPIRED:
                    expired.append(intent)
        return expired

    # ==================== HELPERS ====================
    async def _load(self, tx_ref: str) -> PaymentIntent:
        if not tx_ref:
            raise ValidationError("Missing transaction reference")
        intent = await self.intent_repo.find_by_tx_ref(tx_ref)
        if intent is None:
            raise NotFoundError(f"No payment intent for {tx_ref}")
        return intent

    def _new_tx_ref(self) -> str:
        return f"{self.tx_ref_prefix}-{uuid.uuid4().hex[:16].upper()}"

    def _emit(self, intent: PaymentIntent, outcome: str) -> None:
        if self.publisher is None:
            return
        self.publisher.publish(PaymentIntentResolved(
            hotel_id=intent.draft.hotel_id,
            actor="payment-gateway",
            tx_ref=intent.tx_ref,
            intent_id=intent.intent_id,
            outcome=outcome,
            reservation_id=intent.reservation_id,
            payload={
                "amount": str(intent.amount.amount),
                "currency": intent.amount.currency,
                "payment_status": intent.payment_status.value,
                "intent_status": intent.intent_status.value,
            },
        ))


class PollOutcome(BaseModel):
    """state is the final intent status in lower case, or "processing" """
    state: str
    attempts: int
    transient_errors: int = 0
    last_status: Optional[PaymentStatusView] = None

    @property
    def still_processing(self) -> bool:
        return self.state == "processing"


TRANSIENT_ERRORS = (TransientProbeError, ConnectionError, TimeoutError, asyncio.TimeoutError)


class PaymentStatusPoller:
    """Caller-side polling loop with a bounded number of attempts.

    The server keeps reconciling whether or not anybody polls; running out of
    attempts only means the caller stops waiting.
    """

    def __init__(self,
                 probe: Callable[[str], Awaitable[PaymentStatusView]],
                 interval_seconds: Optional[float] = None,
                 max_attempts: Optional[int] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        settings = get_settings()
        if interval_seconds is None:
            interval_seconds = settings.poll_interval_seconds
        if max_attempts is None:
            max_attempts = settings.poll_max_attempts
        if max_attempts < 1:
            raise ValidationError("max_attempts must be at least 1")
        self.probe = probe
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self.sleep = sleep

    async def poll(self, tx_ref: str) -> PollOutcome:
        transient = 0
        last: Optional[PaymentStatusView] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                last = await self.probe(tx_ref)
            except TRANSIENT_ERRORS as exc:
                # a failed probe says nothing about the payment itself
                transient += 1
                logger.debug("Status probe %s/%s for %s failed: %s",
                             attempt, self.max_attempts, tx_ref, exc)
            else:
                if last.intent_status.is_resolved:
                    return PollOutcome(state=last.intent_status.value.lower(), attempts=attempt,
                                       transient_errors=transient, last_status=last)
                if last.payment_status == PaymentStatus.FAILED:
                    return PollOutcome(state="failed", attempts=attempt,
                                       transient_errors=transient, last_status=last)
            if attempt < self.max_attempts:
                await self.sleep(self.interval_seconds)

        return PollOutcome(state="processing", attempts=self.max_attempts,
                           transient_errors=transient, last_status=last)
