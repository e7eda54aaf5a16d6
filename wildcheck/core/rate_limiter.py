"""Query-rate control: adaptive global limiter and windowed per-resolver quota."""

from __future__ import annotations

import asyncio
import time
from typing import Callable


class AdaptiveRateLimiter:
    """Minimum-interval rate limiter that adapts to DNS timeouts.

    Every pool-level timeout multiplies the rate by *backoff_factor* (< 1).
    Every successful answer raises it by *recovery_factor* (> 1), up to
    *initial_qps*.

    Args:
        initial_qps: Starting (and maximum) queries per second. ``0`` disables
            limiting entirely.
        min_qps: The rate never falls below this.
        backoff_factor: Multiplicative factor applied on a timeout.
        recovery_factor: Multiplicative factor applied on a success.
    """

    def __init__(
        self,
        initial_qps: float = 100.0,
        min_qps: float = 1.0,
        backoff_factor: float = 0.9,
        recovery_factor: float = 1.05,
    ) -> None:
        self._initial_qps = initial_qps
        self._min_qps = min(min_qps, initial_qps) if initial_qps > 0 else min_qps
        self._backoff_factor = backoff_factor
        self._recovery_factor = recovery_factor
        self._qps = initial_qps
        self._throttled = False
        self._lock = asyncio.Lock()
        self._last_query: float = 0.0

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def current_qps(self) -> float:
        """Current queries-per-second rate."""
        return self._qps

    @property
    def is_throttled(self) -> bool:
        """``True`` while the rate is below its ceiling."""
        return self._throttled

    # ------------------------------------------------------------------
    # Token acquisition
    # ------------------------------------------------------------------

    async def acquire(self) -> None:
        """Wait until a query slot is available."""
        if self._initial_qps <= 0:
            return
        async with self._lock:
            min_interval = 1.0 / self._qps
            elapsed = time.monotonic() - self._last_query
            if elapsed < min_interval:
                await asyncio.sleep(min_interval - elapsed)
            self._last_query = time.monotonic()

    # ------------------------------------------------------------------
    # Feedback loop
    # ------------------------------------------------------------------

    def record_timeout(self) -> None:
        """Back off after a query that no resolver answered."""
        if self._initial_qps <= 0:
            return
        self._qps = max(self._qps * self._backoff_factor, self._min_qps)
        self._throttled = True

    def record_success(self) -> None:
        """Recover towards the ceiling after a definitive answer."""
        if self._initial_qps <= 0:
            return
        self._qps = min(self._qps * self._recovery_factor, self._initial_qps)
        if self._qps >= self._initial_qps * 0.99:
            self._throttled = False


class WindowQuota:
    """Fixed-window query quota for a single resolver.

    Args:
        limit: Queries allowed per window.
        window: Window length in seconds.
        clock: Monotonic time source.
    """

    def __init__(
        self,
        limit: int,
        window: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.limit = max(1, int(limit))
        self.window = window
        self._clock = clock
        self._window_start = self._current_window()
        self._used = 0

    def _current_window(self) -> float:
        now = self._clock()
        return now - (now % self.window)

    def _roll(self) -> None:
        start = self._current_window()
        if start != self._window_start:
            self._window_start = start
            self._used = 0

    def remaining(self) -> int:
        """Queries still allowed in the current window."""
        self._roll()
        return max(0, self.limit - self._used)

    def consume(self) -> bool:
        """Take one query from the current window; ``False`` when exhausted."""
        self._roll()
        if self._used >= self.limit:
            return False
        self._used += 1
        return True

    def seconds_until_reset(self) -> float:
        """Time left before the current window rolls over."""
        return max(0.0, self._window_start + self.window - self._clock())
