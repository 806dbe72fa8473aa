"""Keyed critical sections for the ledger.

One asyncio.Lock per key (``room:12``, ``reservation:<uuid>``,
``intent:<tx_ref>``), created on first use and dropped when nobody holds or
waits for it.
"""
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Hashable


class KeyedLock:

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}
        self._users: Dict[Hashable, int] = {}

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_held(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()


def room_key(room_id: int) -> str:
    return f"room:{room_id}"


def reservation_key(reservation_id) -> str:
    return f"reservation:{reservation_id}"


def intent_key(tx_ref: str) -> str:
    return f"intent:{tx_ref}"
