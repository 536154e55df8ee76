from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List

from .errors import IdSpaceExhausted, NotFound

MAX_KEY = 2**32 - 1


@dataclass(frozen=True)
class Record:
    key: int
    value: str


class AsyncRWLock:
    """Read/write lock for coroutines sharing one event loop.

    Any number of readers may hold the lock at once; a writer holds it alone.
    Once a writer is waiting, new readers queue behind it.

    Releasing updates the counters without awaiting, so a task cancelled
    while leaving the lock cannot leave it held.
    """

    def __init__(self) -> None:
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    async def _wake(self) -> None:
        async with self._cond:
            self._cond.notify_all()

    async def _wake_waiters(self) -> None:
        # the wakeup still runs if the releasing task is cancelled
        await asyncio.shield(self._wake())

    @asynccontextmanager
    async def read(self) -> AsyncIterator[None]:
        async with self._cond:
            await self._cond.wait_for(lambda: not self._writer and not self._writers_waiting)
            self._readers += 1
        try:
            yield
        finally:
            self._readers -= 1
            if not self._readers:
                await self._wake_waiters()

    @asynccontextmanager
    async def write(self) -> AsyncIterator[None]:
        async with self._cond:
            self._writers_waiting += 1
            try:
                await self._cond.wait_for(lambda: not self._writer and not self._readers)
            finally:
                self._writers_waiting -= 1
                if not self._writers_waiting:
                    # readers blocked behind a cancelled writer must re-check
                    self._cond.notify_all()
            self._writer = True
        try:
            yield
        finally:
            self._writer = False
            await self._wake_waiters()


class IdGenerator:
    """Monotonic uint32 id source, starting at 1.

    ``next_id`` never awaits, so on a single event loop each call is atomic.
    Ids are never reused; running past the uint32 range is an error rather
    than a wrap-around.
    """

    def __init__(self, start: int = 0) -> None:
        self._last = start

    @property
    def last(self) -> int:
        return self._last

    def next_id(self) -> int:
        if self._last >= MAX_KEY:
            raise IdSpaceExhausted("no record ids left")
        self._last += 1
        return self._last


class RecordStore:
    def __init__(self, ids: IdGenerator | None = None) -> None:
        self._data: Dict[int, str] = {}
        self._lock = AsyncRWLock()
        self._ids = ids or IdGenerator()

    async def list(self) -> List[Record]:
        async with self._lock.read():
            return [Record(key=k, value=v) for k, v in self._data.items()]

    async def create(self, value: str) -> Record:
        # Allocation happens outside the store lock: the counter and the
        # mapping are each consistent, but not jointly atomic. Concurrent
        # creates may therefore commit in a different order than their ids.
        key = self._ids.next_id()
        async with self._lock.write():
            self._data[key] = value
        return Record(key=key, value=value)

    async def update(self, key: int, value: str) -> Record:
        async with self._lock.write():
            if key not in self._data:
                raise NotFound(key)
            self._data[key] = value
        return Record(key=key, value=value)

    async def delete(self, key: int) -> None:
        async with self._lock.write():
            if key not in self._data:
                raise NotFound(key)
            del self._data[key]
