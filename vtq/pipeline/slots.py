import threading
from typing import Optional


class SlotToken:
    """Proof that one unit of a SlotPool is held. Release is idempotent."""

    def __init__(self, pool: "SlotPool"):
        self._pool = pool
        self.released = False

    def release(self):
        if not self.released:
            self.released = True
            self._pool._give_back()


class SlotPool:
    """Non-blocking counting semaphore that hands out explicit tokens.

    The coordinator owns one pool for the download buffer and one for
    transcode slots and stores the tokens on each job, so capacity can never
    leak through a forgotten counter decrement.
    """

    def __init__(self, name: str, capacity: int):
        if capacity < 1:
            raise ValueError(f"{name} capacity must be >= 1")
        self.name = name
        self.capacity = capacity
        self._in_use = 0
        self._lock = threading.Lock()

    @property
    def in_use(self) -> int:
        with self._lock:
            return self._in_use

    @property
    def available(self) -> int:
        with self._lock:
            return self.capacity - self._in_use

    def try_acquire(self) -> Optional[SlotToken]:
        with self._lock:
            if self._in_use >= self.capacity:
                return None
            self._in_use += 1
        return SlotToken(self)

    def _give_back(self):
        with self._lock:
            if self._in_use <= 0:
                raise RuntimeError(f"{self.name}: released more slots than acquired")
            self._in_use -= 1
