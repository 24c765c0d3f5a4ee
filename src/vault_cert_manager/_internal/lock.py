"""Reader/writer lock shared by Vault requests and credential refreshes."""
import contextlib
import threading
from typing import Iterator


class ReadWriteLock:
    """Lock admitting many readers or a single writer.

    Waiting writers take precedence over new readers so that a
    credential refresh is not starved by a steady stream of issuance
    requests.

    """
    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_read(self) -> None:
        """Block until the lock can be shared."""
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_read(self) -> None:
        """Release a shared hold."""
        with self._cond:
            if self._readers <= 0:
                raise RuntimeError('release_read called without a read hold')
            self._readers -= 1
            if not self._readers:
                self._cond.notify_all()

    def acquire_write(self) -> None:
        """Block until the lock is held exclusively."""
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_write(self) -> None:
        """Release the exclusive hold."""
        with self._cond:
            if not self._writer:
                raise RuntimeError('release_write called without a write hold')
            self._writer = False
            self._cond.notify_all()

    @contextlib.contextmanager
    def read_locked(self) -> Iterator[None]:
        """Context manager holding the lock shared."""
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextlib.contextmanager
    def write_locked(self) -> Iterator[None]:
        """Context manager holding the lock exclusively."""
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()
