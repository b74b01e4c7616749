"""
Reader/writer lock for pool state.

Many readers or one writer. Writer-preferring: once a writer is waiting, new
readers queue behind it, so a steady stream of price queries cannot starve
trades or settlement.

Both acquisitions take a timeout. Expiry raises StateUnavailable; the caller
may retry. There is no re-entrancy: a thread holding the write lock must not
ask for the read lock.
"""

import threading
import time
from contextlib import contextmanager
from typing import Optional

from worldmarket.errors import StateUnavailable


DEFAULT_TIMEOUT = 5.0


class RWLock:

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def _wait(self, predicate, timeout: Optional[float], what: str) -> None:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not predicate():
            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise StateUnavailable(
                        f"timed out after {timeout}s waiting for {what} lock")
            self._cond.wait(remaining)

    @contextmanager
    def read(self, timeout: Optional[float] = DEFAULT_TIMEOUT):
        with self._cond:
            self._wait(lambda: not self._writer and not self._writers_waiting,
                       timeout, "read")
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self, timeout: Optional[float] = DEFAULT_TIMEOUT):
        with self._cond:
            self._writers_waiting += 1
            try:
                self._wait(lambda: not self._writer and self._readers == 0,
                           timeout, "write")
            finally:
                self._writers_waiting -= 1
                # on timeout, readers parked behind us may go now
                self._cond.notify_all()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()
