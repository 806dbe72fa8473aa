"""Application Services - Business use cases"""
import logging
import math
from collections import defaultdict
from uuid import UUID
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Set

from pydantic import BaseModel, Field

from domain.availability import (
    AvailabilitySnapshot, build_snapshot, countable_rooms,
    disabled_check_in_dates, disabled_check_out_dates,
)
from domain.entities import Reservation, Room
from domain.enums import ReservationSource, ReservationStatus, RoomStatus
from domain.events import (
    ReservationEvent, RESERVATION_CREATED, RESERVATION_CONFIRMED, RESERVATION_CHECKED_IN,
    RESERVATION_EARLY_CHECK_IN, RESERVATION_CHECKED_OUT, RESERVATION_CANCELLED,
    RESERVATION_EDITED,
)
from domain.exceptions import CapacityError, NotFoundError, StateTransitionError, ValidationError
from domain.repositories import ReservationRepository, RoomRepository
from domain.value_objects import DateRange
from infrastructure.events import EventPublisher
from infrastructure.locks import KeyedLock, reservation_key, room_key

logger = logging.getLogger(__name__)


def _emit(publisher: Optional[EventPublisher], event_type: str, reservation: Reservation,
          actor: str, **payload) -> None:
    if publisher is None:
        return
    publisher.publish(ReservationEvent(
        event_type=event_type,
        hotel_id=reservation.hotel_id,
        actor=actor,
        reservation_id=reservation.reservation_id,
        status=reservation.status.value,
        payload={
            "room_id": reservation.room_id,
            "room_type": reservation.room_type,
            "guest_ref": reservation.guest_ref,
            "check_in": reservation.date_range.check_in.isoformat(),
            "check_out": reservation.date_range.check_out.isoformat(),
            **payload,
        },
    ))


class AvailabilityService:
    """Lock-free availability reads. Results are advisory, never a hold."""

    def __init__(self,
                 room_repo: RoomRepository,
                 reservation_repo: ReservationRepository,
                 max_probe_days: int = 366):
        self.room_repo = room_repo
        self.reservation_repo = reservation_repo
        self.max_probe_days = max_probe_days

    async def query(
        self,
        hotel_id: int,
        check_in: date,
        check_out: date,
        room_type: Optional[str] = None
    ) -> List[AvailabilitySnapshot]:
        """One snapshot per room type of the hotel (or just the requested type)"""
        date_range = DateRange.of(check_in, check_out)
        rooms = await self.room_repo.find_by_hotel(hotel_id, room_type)
        if room_type and not rooms:
            raise NotFoundError(f"Hotel {hotel_id} has no rooms of type {room_type}")

        by_type: Dict[str, List[Room]] = defaultdict(list)
        for room in rooms:
            by_type[room.room_type].append(room)

        reservations = await self.reservation_repo.find_live_by_rooms(
            [room.room_id for room in rooms], date_range
        )
        return [
            build_snapshot(hotel_id, type_name, date_range, type_rooms, reservations)
            for type_name, type_rooms in sorted(by_type.items())
        ]

    async def snapshot(self, hotel_id: int, room_type: str, check_in: date, check_out: date) -> AvailabilitySnapshot:
        """Snapshot of a single room type"""
        self._require_room_type(room_type)
        snapshots = await self.query(hotel_id, check_in, check_out, room_type)
        return snapshots[0]

    async def free_rooms(self, hotel_id: int, room_type: str, check_in: date, check_out: date,
                         guests: int) -> List[Room]:
        """Bookable rooms that sleep the party and have no live stay in the range"""
        self._require_room_type(room_type)
        date_range = DateRange.of(check_in, check_out)
        rooms = await self.room_repo.find_by_hotel(hotel_id, room_type)
        if not rooms:
            raise NotFoundError(f"Hotel {hotel_id} has no rooms of type {room_type}")
        fitting = [room for room in rooms if room.is_bookable() and room.fits(guests)]
        if not fitting:
            raise ValidationError(f"No {room_type} room sleeps {guests} guests")
        booked = {
            reservation.room_id
            for reservation in await self.reservation_repo.find_live_by_rooms(
                [room.room_id for room in fitting], date_range
            )
        }
        return [room for room in fitting if room.room_id not in booked]

    async def disabled_check_in_dates(self, hotel_id: int, room_type: str, start: date, days: int) -> Set[date]:
        """Check-in dates whose first night is already full"""
        self._require_room_type(room_type)
        window = self._window(start, days)
        rooms, reservations = await self._load(hotel_id, room_type, window)
        return disabled_check_in_dates(rooms, reservations, start, days)

    async def disabled_check_out_dates(self, hotel_id: int, room_type: str, check_in: date, days: int) -> Set[date]:
        """Check-out dates unreachable from check_in without crossing a full night"""
        self._require_room_type(room_type)
        window = self._window(check_in, days)
        rooms, reservations = await self._load(hotel_id, room_type, window)
        return disabled_check_out_dates(rooms, reservations, check_in, days)

    async def _load(self, hotel_id: int, room_type: str, window: DateRange):
        rooms = await self.room_repo.find_by_hotel(hotel_id, room_type)
        if not rooms:
            raise NotFoundError(f"Hotel {hotel_id} has no rooms of type {room_type}")
        reservations = await self.reservation_repo.find_live_by_rooms(
            [room.room_id for room in rooms], window
        )
        return rooms, reservations

    def _window(self, start: date, days: int) -> DateRange:
        if start is None:
            raise ValidationError("A start date is required")
        if days < 1 or days > self.max_probe_days:
            raise ValidationError(f"days must be between 1 and {self.max_probe_days}")
        return DateRange.of(start, start + timedelta(days=days))

    @staticmethod
    def _require_room_type(room_type: Optional[str]) -> None:
        if not room_type or not room_type.strip():
            raise ValidationError("A room type is required")


class BookingAllocator:
    """Picks a concrete room and writes the reservation in one critical section"""

    def __init__(self,
                 room_repo: RoomRepository,
                 reservation_repo: ReservationRepository,
                 locks: KeyedLock,
                 publisher: Optional[EventPublisher] = None,
                 today: Callable[[], date] = date.today,
                 max_stay_nights: int = 30,
                 currency: str = "ETB"):
        self.room_repo = room_repo
        self.reservation_repo = reservation_repo
        self.locks = locks
        self.publisher = publisher
        self.today = today
        self.max_stay_nights = max_stay_nights
        self.currency = currency

    async def allocate(
        self,
        hotel_id: int,
        room_type: Optional[str],
        check_in: date,
        check_out: date,
        guest_ref: str,
        source: ReservationSource,
        guests: int = 1,
        room_id: Optional[int] = None,
        initial_status: ReservationStatus = ReservationStatus.CONFIRMED,
        amount_paid: Decimal = Decimal("0"),
        amount_total: Optional[Decimal] = None,
        special_requests: Optional[str] = None,
        guest_name: Optional[str] = None,
        created_by: str = "SYSTEM"
    ) -> Reservation:
        """Allocate a room of room_type (or exactly room_id) for [check_in, check_out).

        Raises CapacityError when no candidate is free once its lock is held.
        """
        date_range = DateRange.of(check_in, check_out)
        Reservation.validate_stay(date_range, self.today(), self.max_stay_nights)
        if not guest_ref or not guest_ref.strip():
            raise ValidationError("Guest identity is required")
        if guests < 1:
            raise ValidationError("At least 1 guest is required")
        if room_id is None and not room_type:
            raise ValidationError("Either a room type or a room is required")

        candidates = await self._candidates(hotel_id, room_type, room_id, guests)
        for candidate in candidates:
            reservation = await self._try_room(
                candidate.room_id, date_range, guests,
                lambda room: Reservation.create(
                    room=room,
                    date_range=date_range,
                    guest_ref=guest_ref,
                    guests=guests,
                    reservation_source=source,
                    today=self.today(),
                    max_stay_nights=self.max_stay_nights,
                    status=initial_status,
                    amount_total=amount_total,
                    amount_paid=amount_paid,
                    currency=self.currency,
                    special_requests=special_requests,
                    guest_name=guest_name,
                    created_by=created_by
                )
            )
            if reservation is None:
                continue

            logger.info(
                "Allocated room %s to reservation %s (%s, %s..%s)",
                reservation.room_id, reservation.reservation_id, reservation.status.value,
                check_in, check_out,
            )
            _emit(self.publisher, RESERVATION_CREATED, reservation, created_by,
                  source=source.value)
            if reservation.status == ReservationStatus.CONFIRMED:
                _emit(self.publisher, RESERVATION_CONFIRMED, reservation, created_by)
            return reservation

        wanted = f"room {room_id}" if room_id is not None else f"{room_type} room"
        logger.info("No %s free in hotel %s for %s..%s", wanted, hotel_id, check_in, check_out)
        raise CapacityError(f"No {wanted} is available from {check_in} to {check_out}")

    async def _try_room(self, room_id: int, date_range: DateRange, guests: int,
                        build: Callable[[Room], Reservation]) -> Optional[Reservation]:
        """Re-read the room and its overlaps under the room lock; insert if still free"""
        async with self.locks.hold(room_key(room_id)):
            room = await self.room_repo.find_by_id(room_id)
            if room is None or not room.is_bookable() or not room.fits(guests):
                return None
            clashes = await self.reservation_repo.find_live_by_rooms([room_id], date_range)
            if clashes:
                return None
            reservation = build(room)
            return await self.reservation_repo.save(reservation)

    async def _candidates(self, hotel_id: int, room_type: Optional[str],
                          room_id: Optional[int], guests: int) -> List[Room]:
        if room_id is not None:
            room = await self.room_repo.find_by_id(room_id)
            if room is None or room.hotel_id != hotel_id:
                raise NotFoundError(f"Room {room_id} not found in hotel {hotel_id}")
            if room_type and room.room_type != room_type:
                raise ValidationError(f"Room {room_id} is a {room.room_type} room, not {room_type}")
            return [room]

        rooms = [
            room for room in await self.room_repo.find_by_hotel(hotel_id, room_type)
            if room.is_bookable() and room.fits(guests)
        ]
        load = await self._future_load(hotel_id)
        # spread allocations: least-booked rooms first, then lowest room id
        return sorted(rooms, key=lambda room: (load.get(room.room_id, 0), room.room_id))

    async def _future_load(self, hotel_id: int) -> Dict[int, int]:
        today = self.today()
        load: Dict[int, int] = defaultdict(int)
        for reservation in await self.reservation_repo.find_by_hotel(hotel_id):
            if reservation.status.is_live and reservation.date_range.check_out > today:
                load[reservation.room_id] += 1
        return load


class ReservationFilters(BaseModel):
    hotel_id: Optional[int] = None
    guest_ref: Optional[str] = None
    status: Optional[ReservationStatus] = None
    room_type: Optional[str] = None
    search: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class PageMeta(BaseModel):
    current_page: int
    from_: Optional[int] = Field(None, alias="from")
    last_page: int
    per_page: int
    to: Optional[int] = None
    total: int

    class Config:
        populate_by_name = True


class ReservationPage(BaseModel):
    data: List[Reservation]
    meta: PageMeta


class OccupancyMetrics(BaseModel):
    rate: float
    total_rooms: int
    occupied_rooms: int
    available_rooms: int


class DashboardMetrics(BaseModel):
    arrivals: int
    departures: int
    in_house: int
    occupancy: OccupancyMetrics


class ReservationService:
    """The reservation ledger: lookups, staff transitions and edits"""

    def __init__(self,
                 repository: ReservationRepository,
                 room_repo: RoomRepository,
                 locks: KeyedLock,
                 publisher: Optional[EventPublisher] = None,
                 today: Callable[[], date] = date.today,
                 max_stay_nights: int = 30):
        self.repository = repository
        self.room_repo = room_repo
        self.locks = locks
        self.publisher = publisher
        self.today = today
        self.max_stay_nights = max_stay_nights

    # ==================== QUERIES ====================
    async def get_reservation(self, reservation_id: UUID) -> Optional[Reservation]:
        """Get reservation by ID"""
        return await self.repository.find_by_id(reservation_id)

    async def get_reservation_by_confirmation_code(self, code: str) -> Optional[Reservation]:
        """Get reservation by confirmation code"""
        return await self.repository.find_by_confirmation_code(code)

    async def list_reservations(
        self,
        filters: Optional[ReservationFilters] = None,
        page: int = 1,
        per_page: int = 15
    ) -> ReservationPage:
        """Filtered listing, newest first"""
        filters = filters or ReservationFilters()
        if page < 1:
            raise ValidationError("page must be 1 or greater")
        if per_page < 1 or per_page > 100:
            raise ValidationError("per_page must be between 1 and 100")
        if filters.date_from and filters.date_to and filters.date_to < filters.date_from:
            raise ValidationError("date_to must not be before date_from")

        matches = [r for r in await self.repository.find_by_hotel(filters.hotel_id)
                   if self._matches(r, filters)]
        matches.sort(key=lambda r: r.created_at, reverse=True)

        total = len(matches)
        offset = (page - 1) * per_page
        items = matches[offset:offset + per_page]
        return ReservationPage(
            data=items,
            meta=PageMeta(
                current_page=page,
                from_=offset + 1 if items else None,
                last_page=max(1, math.ceil(total / per_page)),
                per_page=per_page,
                to=offset + len(items) if items else None,
                total=total,
            ),
        )

    @staticmethod
    def _matches(reservation: Reservation, filters: ReservationFilters) -> bool:
        if filters.guest_ref and reservation.guest_ref != filters.guest_ref:
            return False
        if filters.status and reservation.status != filters.status:
            return False
        if filters.room_type and reservation.room_type != filters.room_type:
            return False
        if filters.date_from and reservation.date_range.check_out <= filters.date_from:
            return False
        if filters.date_to and reservation.date_range.check_in > filters.date_to:
            return False
        if filters.search:
            needle = filters.search.strip().lower()
            haystack = " ".join(filter(None, [
                reservation.guest_ref, reservation.guest_name, reservation.confirmation_code,
            ])).lower()
            if needle not in haystack:
                return False
        return True

    # ==================== STAFF TRANSITIONS ====================
    async def confirm_reservation(self, reservation_id: UUID, actor: str = "SYSTEM") -> Reservation:
        """PENDING -> CONFIRMED"""
        async with self.locks.hold(reservation_key(reservation_id)):
            reservation = await self._load(reservation_id)
            reservation.confirm()
            await self.repository.update(reservation)
        logger.info("Reservation %s confirmed by %s", reservation_id, actor)
        _emit(self.publisher, RESERVATION_CONFIRMED, reservation, actor)
        return reservation

    async def check_in_guest(self, reservation_id: UUID, actor: str = "SYSTEM",
                             override: bool = False) -> Reservation:
        """CONFIRMED -> CHECKED_IN; before the check-in date only with override"""
        async with self.locks.hold(reservation_key(reservation_id)):
            reservation = await self._load(reservation_id)
            early = reservation.check_in(self.today(), override=override)
            await self.repository.update(reservation)
        if early:
            logger.warning("Reservation %s checked in early by %s (override)", reservation_id, actor)
            _emit(self.publisher, RESERVATION_EARLY_CHECK_IN, reservation, actor,
                  checked_in_on=self.today().isoformat())
        else:
            logger.info("Reservation %s checked in by %s", reservation_id, actor)
        _emit(self.publisher, RESERVATION_CHECKED_IN, reservation, actor)
        return reservation

    async def check_out_guest(self, reservation_id: UUID, actor: str = "SYSTEM") -> Reservation:
        """CHECKED_IN -> CHECKED_OUT. Does not require the balance to be settled."""
        async with self.locks.hold(reservation_key(reservation_id)):
            reservation = await self._load(reservation_id)
            paid = reservation.check_out()
            await self.repository.update(reservation)
        balance = reservation.balance_due()
        if balance.amount > 0:
            logger.info("Reservation %s checked out with %s %s outstanding",
                        reservation_id, balance.amount, balance.currency)
        _emit(self.publisher, RESERVATION_CHECKED_OUT, reservation, actor,
              amount_paid=str(paid.amount), balance_due=str(balance.amount))
        return reservation

    async def cancel_reservation(self, reservation_id: UUID, reason: Optional[str] = None,
                                 actor: str = "SYSTEM") -> Reservation:
        """PENDING/CONFIRMED -> CANCELLED; its nights are free again immediately"""
        async with self.locks.hold(reservation_key(reservation_id)):
            reservation = await self._load(reservation_id)
            reservation.cancel(reason)
            await self.repository.update(reservation)
        logger.info("Reservation %s cancelled by %s", reservation_id, actor)
        _emit(self.publisher, RESERVATION_CANCELLED, reservation, actor, reason=reason)
        return reservation

    # ==================== EDITS ====================
    async def edit_reservation(
        self,
        reservation_id: UUID,
        room_id: Optional[int] = None,
        check_in: Optional[date] = None,
        check_out: Optional[date] = None,
        special_requests: Optional[str] = None,
        actor: str = "SYSTEM"
    ) -> Reservation:
        """Move a PENDING/CONFIRMED reservation to another room and/or dates"""
        # lock order: reservation, then room
        async with self.locks.hold(reservation_key(reservation_id)):
            reservation = await self._load(reservation_id)
            if not reservation.is_modifiable():
                raise StateTransitionError("edit", reservation.status)

            date_range = DateRange.of(
                check_in or reservation.date_range.check_in,
                check_out or reservation.date_range.check_out,
            )
            if date_range != reservation.date_range:
                Reservation.validate_stay(date_range, self.today(), self.max_stay_nights,
                                          previous=reservation.date_range)

            target_id = room_id if room_id is not None else reservation.room_id
            room = await self.room_repo.find_by_id(target_id)
            if room is None or room.hotel_id != reservation.hotel_id:
                raise NotFoundError(f"Room {target_id} not found in hotel {reservation.hotel_id}")
            if target_id != reservation.room_id:
                if not room.is_bookable():
                    raise CapacityError(f"Room {target_id} is {room.status.value.lower()}")
                if not room.fits(reservation.guests):
                    raise ValidationError(
                        f"Room {target_id} sleeps {room.capacity}, reservation has {reservation.guests} guests"
                    )

            async with self.locks.hold(room_key(target_id)):
                clashes = [
                    other for other in await self.repository.find_live_by_rooms([target_id], date_range)
                    if other.reservation_id != reservation.reservation_id
                ]
                if clashes:
                    raise CapacityError(
                        f"Room {target_id} is already booked between "
                        f"{date_range.check_in} and {date_range.check_out}"
                    )
                previous_room = reservation.room_id
                reservation.reassign(room, date_range, special_requests)
                await self.repository.update(reservation)

        logger.info("Reservation %s edited by %s (room %s -> %s)",
                    reservation_id, actor, previous_room, reservation.room_id)
        _emit(self.publisher, RESERVATION_EDITED, reservation, actor, previous_room_id=previous_room)
        return reservation

    async def record_payment(self, reservation_id: UUID, amount: Decimal, actor: str = "SYSTEM") -> Reservation:
        """Desk payment towards the total; never beyond it"""
        async with self.locks.hold(reservation_key(reservation_id)):
            reservation = await self._load(reservation_id)
            reservation.record_payment(amount)
            await self.repository.update(reservation)
        logger.info("Recorded payment of %s on reservation %s by %s", amount, reservation_id, actor)
        return reservation

    # ==================== ROOMS & REPORTING ====================
    async def list_rooms(self, hotel_id: int, room_type: Optional[str] = None) -> List[Room]:
        return await self.room_repo.find_by_hotel(hotel_id, room_type)

    async def set_room_status(self, room_id: int, status: RoomStatus, actor: str = "SYSTEM") -> Room:
        """Staff room operation. Existing reservations on the room are left alone."""
        async with self.locks.hold(room_key(room_id)):
            room = await self.room_repo.find_by_id(room_id)
            if room is None:
                raise NotFoundError(f"Room {room_id} not found")
            room.set_status(status)
            await self.room_repo.update(room)
        logger.info("Room %s set to %s by %s", room_id, status.value, actor)
        return room

    async def dashboard_metrics(self, hotel_id: int) -> DashboardMetrics:
        """Arrivals and departures today, guests in house, occupancy"""
        today = self.today()
        reservations = await self.repository.find_by_hotel(hotel_id)
        rooms = countable_rooms(await self.room_repo.find_by_hotel(hotel_id))
        room_ids = {room.room_id for room in rooms}

        arrivals = sum(
            1 for r in reservations
            if r.date_range.check_in == today
            and r.status in (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)
        )
        departures = sum(
            1 for r in reservations
            if r.date_range.check_out == today and r.status == ReservationStatus.CHECKED_IN
        )
        in_house = [r for r in reservations if r.status == ReservationStatus.CHECKED_IN]
        occupied = len({r.room_id for r in in_house if r.room_id in room_ids})
        total = len(rooms)

        return DashboardMetrics(
            arrivals=arrivals,
            departures=departures,
            in_house=len(in_house),
            occupancy=OccupancyMetrics(
                rate=round(occupied / total * 100, 1) if total else 0.0,
                total_rooms=total,
                occupied_rooms=occupied,
                available_rooms=total - occupied,
            ),
        )

    async def _load(self, reservation_id: UUID) -> Reservation:
        reservation = await self.repository.find_by_id(reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation not found")
        return reservation
