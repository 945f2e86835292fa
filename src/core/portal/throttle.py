import time
from collections import deque
from threading import Lock
from typing import Callable, Optional


class InvalidAttemptThrottle:
    """Sliding-window count of invalid token presentations per client key.

    Only keys with failures inside the window are kept in memory.
    """

    def __init__(
        self,
        *,
        limit: int = 10,
        window_seconds: float = 300.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._limit = max(1, limit)
        self._window_seconds = max(1.0, window_seconds)
        self._clock = clock or time.monotonic
        self._lock = Lock()
        self._attempts: dict[str, deque[float]] = {}

    def is_blocked(self, key: str) -> bool:
        with self._lock:
            attempts = self._attempts.get(key)
            if attempts is None:
                return False
            self._prune(key, attempts)
            return len(attempts) >= self._limit

    def record_failure(self, key: str) -> None:
        with self._lock:
            for stale_key, attempts in list(self._attempts.items()):
                self._prune(stale_key, attempts)
            self._attempts.setdefault(key, deque()).append(self._clock())

    def reset(self) -> None:
        with self._lock:
            self._attempts.clear()

    def _prune(self, key: str, attempts: deque[float]) -> None:
        cutoff = self._clock() - self._window_seconds
        while attempts and attempts[0] <= cutoff:
            attempts.popleft()
        if not attempts:
            del self._attempts[key]
