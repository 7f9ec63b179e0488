"""Process-wide gate for calls to the remote spreadsheet API.

This module provides:
- RateLimiter: two sliding 60s windows (reads, writes) with fixed caps,
  plus an exponential backoff state entered on explicit rate-limit signals

One instance is shared by every sync target, mirroring the remote's
account-wide quota. Waiting blocks only the calling thread.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable

logger = logging.getLogger(__name__)

# Conservative Google Sheets quotas
DEFAULT_MAX_READS_PER_MINUTE = 250
DEFAULT_MAX_WRITES_PER_MINUTE = 50
DEFAULT_WINDOW = 60.0  # seconds
DEFAULT_INITIAL_BACKOFF = 1.0  # seconds
DEFAULT_MAX_BACKOFF = 64.0  # seconds


class RateLimiter:
    """Token-accounting gate with read/write budgets and backoff."""

    def __init__(
        self,
        max_reads_per_minute: int = DEFAULT_MAX_READS_PER_MINUTE,
        max_writes_per_minute: int = DEFAULT_MAX_WRITES_PER_MINUTE,
        window: float = DEFAULT_WINDOW,
        initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
        max_backoff: float = DEFAULT_MAX_BACKOFF,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize the limiter.

        Args:
            max_reads_per_minute: Read calls allowed per window.
            max_writes_per_minute: Write calls allowed per window.
            window: Sliding window length in seconds.
            initial_backoff: First backoff duration in seconds.
            max_backoff: Cap on the escalating backoff.
            clock: Monotonic time source.
            sleep: Blocking sleep used while waiting.
        """
        self._max_reads = max_reads_per_minute
        self._max_writes = max_writes_per_minute
        self._window = window
        self._initial_backoff = initial_backoff
        self._max_backoff = max_backoff
        self._clock = clock
        self._sleep = sleep

        self._lock = threading.Lock()
        self._reads: deque[float] = deque()
        self._writes: deque[float] = deque()
        self._backoff_until: float | None = None
        self._current_backoff = initial_backoff

    @property
    def current_backoff(self) -> float:
        """Backoff that the next rate-limit signal will apply at minimum."""
        with self._lock:
            return self._current_backoff

    @property
    def is_rate_limited(self) -> bool:
        with self._lock:
            return self._backoff_until is not None and self._clock() < self._backoff_until

    @property
    def estimated_wait(self) -> float:
        """Seconds left in the current backoff (0 if none)."""
        with self._lock:
            if self._backoff_until is None:
                return 0.0
            return max(0.0, self._backoff_until - self._clock())

    def wait_for_read_slot(self) -> None:
        """Block until a read call may be made, then account for it."""
        self._acquire(self._reads, self._max_reads, "read")

    def wait_for_write_slot(self) -> None:
        """Block until a write call may be made, then account for it."""
        self._acquire(self._writes, self._max_writes, "write")

    def handle_rate_limit(self, retry_after: float | None = None) -> float:
        """Enter backoff after a "too many requests" response.

        The wait is the larger of the server's hint and the current
        escalating backoff; the backoff then doubles up to its cap.

        Returns:
            Seconds callers will be held back.
        """
        with self._lock:
            wait = max(retry_after or 0.0, self._current_backoff)
            until = self._clock() + wait
            if self._backoff_until is None or until > self._backoff_until:
                self._backoff_until = until
            self._current_backoff = min(self._current_backoff * 2, self._max_backoff)
        logger.warning("Rate limited, backing off for %.1fs", wait)
        return wait

    def record_success(self) -> None:
        """Reset the backoff after a clean response."""
        with self._lock:
            if self._current_backoff != self._initial_backoff:
                logger.debug("Rate limit backoff reset")
            self._current_backoff = self._initial_backoff
            if self._backoff_until is not None and self._clock() >= self._backoff_until:
                self._backoff_until = None

    def _evict(self, stamps: deque[float], now: float) -> None:
        cutoff = now - self._window
        while stamps and stamps[0] <= cutoff:
            stamps.popleft()

    def _acquire(self, stamps: deque[float], cap: int, kind: str) -> None:
        while True:
            with self._lock:
                now = self._clock()
                wait = 0.0
                if self._backoff_until is not None:
                    wait = self._backoff_until - now
                    if wait <= 0:
                        self._backoff_until = None
                        wait = 0.0
                if wait <= 0:
                    self._evict(stamps, now)
                    if len(stamps) < cap:
                        stamps.append(now)
                        return
                    wait = stamps[0] + self._window - now

            logger.debug("Waiting %.2fs for a %s slot", wait, kind)
            self._sleep(max(wait, 0.0))
