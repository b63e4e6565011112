"""Per-upstream request pacing.

:class:`RateLimiter` keeps one "time of last call" per target (typically
the upstream host) and blocks the calling thread until the configured
minimum spacing has passed. Each caller reserves its slot (the later of
"now" and the previous slot plus the interval) inside a short critical
section and then sleeps outside the lock, so two threads never share a slot
and a caller waiting on one host does not hold up callers for another.

Example::

    limiter = RateLimiter(0.5)
    with limiter.pace("api.eve-central.com"):
        response = client.post(url, data=body)
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Iterator

logger = logging.getLogger(__name__)


class RateLimiter:
    """Serialise and pace outgoing calls per target.

    Args:
        min_interval: Minimum number of seconds between two calls to the
            same target. ``0`` disables pacing.
        clock: Monotonic time source, injectable for tests.
        sleep: Sleep function, injectable for tests.
    """

    def __init__(
        self,
        min_interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if min_interval < 0:
            raise ValueError("min_interval must not be negative")
        self.min_interval = min_interval
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._last_call: dict[str, float] = {}

    def acquire(self, target: str = "default") -> float:
        """Reserve the next slot for *target* and sleep until it arrives.

        Returns:
            The number of seconds spent waiting.
        """
        with self._lock:
            now = self._clock()
            last = self._last_call.get(target)
            slot = now if last is None else max(now, last + self.min_interval)
            self._last_call[target] = slot
        waited = slot - now
        if waited > 0:
            logger.debug("Rate limiting %s for %.3fs", target, waited)
            self._sleep(waited)
        return waited

    @contextmanager
    def pace(self, target: str = "default") -> Iterator[float]:
        """Context manager form of :meth:`acquire`."""
        yield self.acquire(target)

    def reset(self) -> None:
        """Forget all recorded call times."""
        with self._lock:
            self._last_call.clear()
