"""In-Memory Repository Implementations"""
from typing import Optional, List, Dict, Iterable
from uuid import UUID

from domain.repositories import RoomRepository, ReservationRepository, PaymentIntentRepository
from domain.entities import Reservation, Room, PaymentIntent
from domain.exceptions import NotFoundError
from domain.value_objects import DateRange


class InMemoryRoomRepository(RoomRepository):
    """In-memory implementation of RoomRepository"""

    def __init__(self, rooms: Iterable[Room] = ()):
        self._storage: Dict[int, Room] = {room.room_id: room for room in rooms}

    async def find_by_id(self, room_id: int) -> Optional[Room]:
        """Find room by ID"""
        return self._storage.get(room_id)

    async def find_by_hotel(self, hotel_id: int, room_type: Optional[str] = None) -> List[Room]:
        """Find rooms of a hotel, optionally of one type"""
        rooms = [
            room for room in self._storage.values()
            if room.hotel_id == hotel_id and (room_type is None or room.room_type == room_type)
        ]
        return sorted(rooms, key=lambda room: room.room_id)

    async def update(self, room: Room) -> Room:
        """Update room"""
        if room.room_id in self._storage:
            self._storage[room.room_id] = room
            return room
        raise NotFoundError("Room not found")


class InMemoryReservationRepository(ReservationRepository):
    """In-memory implementation of ReservationRepository"""

    def __init__(self):
        self._storage: Dict[UUID, Reservation] = {}

    async def save(self, reservation: Reservation) -> Reservation:
        """Save reservation to memory"""
        self._storage[reservation.reservation_id] = reservation
        return reservation

    async def find_by_id(self, reservation_id: UUID) -> Optional[Reservation]:
        """Find reservation by ID"""
        return self._storage.get(reservation_id)

    async def find_by_confirmation_code(self, code: str) -> Optional[Reservation]:
        """Find reservation by confirmation code"""
        for reservation in self._storage.values():
            if reservation.confirmation_code == code:
                return reservation
        return None

    async def find_live_by_rooms(self, room_ids: List[int], date_range: DateRange) -> List[Reservation]:
        """Live reservations on the rooms overlapping the range"""
        wanted = set(room_ids)
        return [
            r for r in self._storage.values()
            if r.room_id in wanted and r.status.is_live and r.date_range.overlaps(date_range)
        ]

    async def find_by_hotel(self, hotel_id: Optional[int] = None) -> List[Reservation]:
        """Find reservations of a hotel, oldest first"""
        reservations = [
            r for r in self._storage.values()
            if hotel_id is None or r.hotel_id == hotel_id
        ]
        return sorted(reservations, key=lambda r: r.created_at)

    async def update(self, reservation: Reservation) -> Reservation:
        """Update reservation"""
        if reservation.reservation_id in self._storage:
            self._storage[reservation.reservation_id] = reservation
            return reservation
        raise NotFoundError("Reservation not found")


class InMemoryPaymentIntentRepository(PaymentIntentRepository):
    """In-memory implementation of PaymentIntentRepository, keyed by tx_ref"""

    def __init__(self):
        self._storage: Dict[str, PaymentIntent] = {}

    async def save(self, intent: PaymentIntent) -> PaymentIntent:
        self._storage[intent.tx_ref] = intent
        return intent

    async def find_by_tx_ref(self, tx_ref: str) -> Optional[PaymentIntent]:
        return self._storage.get(tx_ref)

    async def find_unresolved(self) -> List[PaymentIntent]:
        return [intent for intent in self._storage.values() if not intent.is_resolved()]

    async def update(self, intent: PaymentIntent) -> PaymentIntent:
        if intent.tx_ref in self._storage:
            self._storage[intent.tx_ref] = intent
            return intent
        raise NotFoundError("Payment intent not found")
