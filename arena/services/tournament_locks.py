"""
Per-tournament critical sections.

Mutations on the same tournament are serialized in-process by an
asyncio.Lock per tournament id; different tournaments never contend. The
registry is weak-valued, so locks nobody is holding or waiting on are
garbage collected instead of accumulating. Cross-process safety comes from
the row lock and compare-and-swap writes inside the section.
"""
import asyncio
import weakref
from contextlib import asynccontextmanager


class TournamentLockRegistry:

    def __init__(self):
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    def lock_for(self, tournament_id: int) -> asyncio.Lock:
        lock = self._locks.get(tournament_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[tournament_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, tournament_id: int):
        lock = self.lock_for(tournament_id)
        async with lock:
            yield

    def is_locked(self, tournament_id: int) -> bool:
        lock = self._locks.get(tournament_id)
        return lock is not None and lock.locked()
