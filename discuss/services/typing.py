"""
In-memory typing indicator set with self-expiring entries.
"""

import time
from collections.abc import Callable, Iterable


class TypingIndicatorSet:
    """Employee ids currently composing in one channel.

    Each entry carries an expiry timestamp that is checked lazily on read,
    so an id disappears after ``timeout`` seconds even if the matching stop
    event never arrives.
    """

    def __init__(self, timeout: float = 3.0, clock: Callable[[], float] = time.monotonic):
        self.timeout = timeout
        self._clock = clock
        self._expires: dict[int, float] = {}

    def start(self, emp_id: int) -> None:
        """Record (or refresh) a typing signal."""
        self._expires[emp_id] = self._clock() + self.timeout

    def stop(self, emp_id: int) -> None:
        self._expires.pop(emp_id, None)

    def clear(self) -> None:
        self._expires.clear()

    def _prune(self) -> None:
        now = self._clock()
        self._expires = {k: v for k, v in self._expires.items() if v > now}

    def active(self, exclude: Iterable[int] = ()) -> list[int]:
        """Live ids in the order typing started."""
        self._prune()
        skip = set(exclude)
        return [emp_id for emp_id in self._expires if emp_id not in skip]

    def __contains__(self, emp_id: int) -> bool:
        self._prune()
        return emp_id in self._expires

    def __len__(self) -> int:
        self._prune()
        return len(self._expires)
