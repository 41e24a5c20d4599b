# app/utils/locks.py
"""
Per-key asyncio locks.
The overlap check and the insert that follows it must not interleave with
another request for the same vehicle, so every write path holds the vehicle's
lock for the whole check+write sequence. Nothing else is held across I/O.
These locks cover one process. Across workers, SqlBookingRepository locks the
vehicle row (SELECT ... FOR UPDATE) before every overlap lookup.
"""

import asyncio
from contextlib import asynccontextmanager


class KeyedLocks:
    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str):
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        # holders counts the current owner plus every waiter
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    def __len__(self):
        return len(self._locks)


vehicle_locks = KeyedLocks()
