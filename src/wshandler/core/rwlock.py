# src/wshandler/core/rwlock.py
from __future__ import annotations

import asyncio
import threading
from contextlib import asynccontextmanager, contextmanager


class RWLock:
    """
    Reader/writer lock shared between threads and asyncio tasks.
    - Readers never block each other.
    - A writer waits for active readers to leave; new readers wait while a
      writer is active or queued.
    Writers are synchronous (registration); readers may be sync or async.
    Async readers poll instead of parking a thread, so the event loop stays free.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    # -------------------- readers --------------------
    def try_acquire_read(self) -> bool:
        with self._cond:
            if self._writer or self._writers_waiting:
                return False
            self._readers += 1
            return True

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    @contextmanager
    def read(self):
        self.acquire_read()
        try:
            yield self
        finally:
            self.release_read()

    @asynccontextmanager
    async def read_async(self, poll_interval: float = 0.001):
        while not self.try_acquire_read():
            await asyncio.sleep(poll_interval)
        try:
            yield self
        finally:
            self.release_read()

    # -------------------- writers --------------------
    def acquire_write(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def write(self):
        self.acquire_write()
        try:
            yield self
        finally:
            self.release_write()

    @property
    def readers(self) -> int:
        with self._cond:
            return self._readers

    @property
    def writing(self) -> bool:
        with self._cond:
            return self._writer
