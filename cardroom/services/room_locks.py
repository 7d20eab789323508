import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class RoomLockRegistry:
    """One asyncio lock per room id, created on demand and dropped when idle."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, room_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(room_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[room_id] = lock
        self._holders[room_id] = self._holders.get(room_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._holders[room_id] - 1
            if remaining <= 0:
                self._holders.pop(room_id, None)
                self._locks.pop(room_id, None)
            else:
                self._holders[room_id] = remaining

    def active_rooms(self) -> list[str]:
        return list(self._locks)
