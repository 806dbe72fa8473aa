"""Domain Repository Interfaces"""
from abc import ABC, abstractmethod
from typing import Optional, List
from uuid import UUID

from domain.entities import Reservation, Room, PaymentIntent
from domain.value_objects import DateRange


class RoomRepository(ABC):
    """Repository interface for the room inventory"""

    @abstractmethod
    async def find_by_id(self, room_id: int) -> Optional[Room]:
        """Find room by ID"""
        pass

    @abstractmethod
    async def find_by_hotel(self, hotel_id: int, room_type: Optional[str] = None) -> List[Room]:
        """Find rooms of a hotel, optionally of one type, ordered by room ID"""
        pass

    @abstractmethod
    async def update(self, room: Room) -> Room:
        """Update room"""
        pass


class ReservationRepository(ABC):
    """Repository interface for Reservation Aggregate"""

    @abstractmethod
    async def save(self, reservation: Reservation) -> Reservation:
        """Save reservation"""
        pass

    @abstractmethod
    async def find_by_id(self, reservation_id: UUID) -> Optional[Reservation]:
        """Find reservation by ID"""
        pass

    @abstractmethod
    async def find_by_confirmation_code(self, code: str) -> Optional[Reservation]:
        """Find reservation by confirmation code"""
        pass

    @abstractmethod
    async def find_live_by_rooms(self, room_ids: List[int], date_range: DateRange) -> List[Reservation]:
        """Live reservations on any of the rooms that overlap the range"""
        pass

    @abstractmethod
    async def find_by_hotel(self, hotel_id: Optional[int] = None) -> List[Reservation]:
        """Find reservations of a hotel, or all of them"""
        pass

    @abstractmethod
    async def update(self, reservation: Reservation) -> Reservation:
        """Update reservation"""
        pass


class PaymentIntentRepository(ABC):
    """Repository interface for PaymentIntent"""

    @abstractmethod
    async def save(self, intent: PaymentIntent) -> PaymentIntent:
        pass

    @abstractmethod
    async def find_by_tx_ref(self, tx_ref: str) -> Optional[PaymentIntent]:
        pass

    @abstractmethod
    async def find_unresolved(self) -> List[PaymentIntent]:
        pass

    @abstractmethod
    async def update(self, intent: PaymentIntent) -> PaymentIntent:
        pass
