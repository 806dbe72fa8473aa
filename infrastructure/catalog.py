"""Static room catalog loading"""
import json
from decimal import Decimal
from pathlib import Path
from typing import List, Optional

from domain.entities import Room
from domain.enums import RoomStatus


# Used when no catalog file is configured
DEFAULT_CATALOG = [
    {"room_id": 101, "hotel_id": 1, "number": "101", "room_type": "Standard", "capacity": 2, "price": "1500.00"},
    {"room_id": 102, "hotel_id": 1, "number": "102", "room_type": "Standard", "capacity": 2, "price": "1500.00"},
    {"room_id": 103, "hotel_id": 1, "number": "103", "room_type": "Standard", "capacity": 2, "price": "1500.00"},
    {"room_id": 201, "hotel_id": 1, "number": "201", "room_type": "Deluxe", "capacity": 3, "price": "2500.00"},
    {"room_id": 202, "hotel_id": 1, "number": "202", "room_type": "Deluxe", "capacity": 3, "price": "2500.00"},
    {"room_id": 301, "hotel_id": 1, "number": "301", "room_type": "Suite", "capacity": 4, "price": "4800.00"},
    {"room_id": 302, "hotel_id": 1, "number": "302", "room_type": "Suite", "capacity": 4, "price": "4800.00",
     "status": "MAINTENANCE"},
]


def load_room_catalog(path: Optional[str] = None) -> List[Room]:
    """Load rooms from a JSON list of room records, or the default catalog"""
    if path:
        with open(Path(path), "r", encoding="utf-8") as f:
            records = json.load(f)
    else:
        records = DEFAULT_CATALOG
    return [_to_room(record) for record in records]


def _to_room(record: dict) -> Room:
    data = dict(record)
    data["price"] = Decimal(str(data["price"]))
    data["status"] = RoomStatus(str(data.get("status", RoomStatus.AVAILABLE.value)).upper())
    return Room(**data)
