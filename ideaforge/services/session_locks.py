import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager


class SessionLocks:
    """One asyncio.Lock per key: a session id, or "user:<id>" for per-user state.

    Serializes writes within this process; a multi-instance
    deployment needs a distributed lock instead.
    """

    def __init__(self):
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def hold(self, session_id: str):
        async with self._locks[session_id]:
            yield

    def is_locked(self, session_id: str) -> bool:
        lock = self._locks.get(session_id)
        return bool(lock and lock.locked())
