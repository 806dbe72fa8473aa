"""Availability computation over the current ledger state.

Everything here is a pure function of the rooms and reservations handed in:
nothing is cached and nothing is held. Callers re-validate at allocation time.
"""
from datetime import date, timedelta
from typing import Dict, Iterable, List, Set

from pydantic import BaseModel

from domain.entities import Reservation, Room
from domain.value_objects import DateRange


class AvailabilitySnapshot(BaseModel):
    """Derived view of one room type over one date range. Never persisted."""
    hotel_id: int
    room_type: str
    check_in: date
    check_out: date
    total_rooms: int
    per_day_reserved_count: Dict[date, int]
    available_rooms: int

    @property
    def is_sold_out(self) -> bool:
        return self.available_rooms <= 0


def countable_rooms(rooms: Iterable[Room]) -> List[Room]:
    """Rooms that count towards capacity: only those with status AVAILABLE"""
    return [room for room in rooms if room.is_bookable()]


def daily_occupancy(reservations: Iterable[Reservation], start: date, days: int) -> List[int]:
    """Live reservations per night for the nights start .. start+days-1.

    Single pass with a difference array, so the cost is linear in the number
    of reservations plus the window length.
    """
    diff = [0] * (days + 1)
    for reservation in reservations:
        if not reservation.status.is_live:
            continue
        first = (reservation.date_range.check_in - start).days
        last = (reservation.date_range.check_out - start).days
        first = max(first, 0)
        last = min(last, days)
        if first >= last:
            continue
        diff[first] += 1
        diff[last] -= 1

    occupancy = []
    running = 0
    for index in range(days):
        running += diff[index]
        occupancy.append(running)
    return occupancy


def build_snapshot(
    hotel_id: int,
    room_type: str,
    date_range: DateRange,
    rooms: Iterable[Room],
    reservations: Iterable[Reservation],
) -> AvailabilitySnapshot:
    """available_rooms = total_rooms - worst single night in the range"""
    counted = countable_rooms(rooms)
    counted_ids = {room.room_id for room in counted}
    relevant = [r for r in reservations if r.room_id in counted_ids]

    nights = date_range.nights()
    occupancy = daily_occupancy(relevant, date_range.check_in, nights)
    per_day = {
        date_range.check_in + timedelta(days=offset): count
        for offset, count in enumerate(occupancy)
    }
    busiest = max(occupancy) if occupancy else 0

    return AvailabilitySnapshot(
        hotel_id=hotel_id,
        room_type=room_type,
        check_in=date_range.check_in,
        check_out=date_range.check_out,
        total_rooms=len(counted),
        per_day_reserved_count=per_day,
        available_rooms=len(counted) - busiest,
    )


def disabled_check_in_dates(
    rooms: Iterable[Room],
    reservations: Iterable[Reservation],
    start: date,
    days: int,
) -> Set[date]:
    """Dates D in [start, start+days) whose one-night stay [D, D+1) is full"""
    counted = countable_rooms(rooms)
    counted_ids = {room.room_id for room in counted}
    relevant = [r for r in reservations if r.room_id in counted_ids]

    occupancy = daily_occupancy(relevant, start, days)
    total = len(counted)
    return {
        start + timedelta(days=offset)
        for offset, count in enumerate(occupancy)
        if total - count <= 0
    }


def disabled_check_out_dates(
    rooms: Iterable[Room],
    reservations: Iterable[Reservation],
    check_in: date,
    days: int,
) -> Set[date]:
    """Dates D2 in [check_in, check_in+days] that cannot end a stay starting at check_in.

    check_in itself is always disabled. Once a full night is hit every later
    check-out is disabled too, which is the prefix pass below.
    """
    counted = countable_rooms(rooms)
    counted_ids = {room.room_id for room in counted}
    relevant = [r for r in reservations if r.room_id in counted_ids]

    occupancy = daily_occupancy(relevant, check_in, days)
    total = len(counted)

    disabled = {check_in}
    blocked = False
    for offset, count in enumerate(occupancy):
        if total - count <= 0:
            blocked = True
        if blocked:
            disabled.add(check_in + timedelta(days=offset + 1))
    return disabled
