from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator


class ReadWriteLock:
    """Brief: Reader-writer lock allowing many readers or one writer.

    Writer preference: once a writer is waiting, new readers block until the
    writer has finished so a steady stream of DNS lookups cannot starve an
    informer callback.

    Inputs:
      - None.

    Outputs:
      - ReadWriteLock instance exposing read_locked()/write_locked() context
        managers.

    Example:
      >>> lock = ReadWriteLock()
      >>> with lock.read_locked():
      ...     pass
      >>> with lock.write_locked():
      ...     pass
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @property
    def reader_count(self) -> int:
        with self._cond:
            return self._readers

    @property
    def is_writing(self) -> bool:
        with self._cond:
            return self._writer

    def acquire_read(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        with self._cond:
            if self._readers <= 0:
                raise RuntimeError("release_read called without a reader")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

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
            if not self._writer:
                raise RuntimeError("release_write called without a writer")
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()
