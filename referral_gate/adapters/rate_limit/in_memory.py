"""In-memory sliding-window rate limiter.

Notes:
- Per-process only: running multiple workers multiplies the effective limit.
- Thread-safe: one lock serializes the read-check-increment-write sequence.
- Windows are anchored at each key's first request, not at wall-clock
  boundaries.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

from referral_gate.adapters.rate_limit.base import AbstractRateLimiter, RateLimitDecision

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 60
DEFAULT_WINDOW_MS = 60_000

# Bucket used when the caller could not derive a key
UNKNOWN_KEY = "unknown"


def monotonic_ms() -> int:
    """Default clock: monotonic time in whole milliseconds."""
    return time.monotonic_ns() // 1_000_000


@dataclass
class RateLimitEntry:
    window_start: int
    count: int


class InMemorySlidingWindowRateLimiter(AbstractRateLimiter):
    """Count requests per key inside a window that opens on the key's first hit.

    Every key owns at most one entry. An entry whose window has elapsed
    (``now - window_start > window_ms``) is treated exactly like a missing
    one: the next request replaces it with a fresh window and is allowed.
    Sweeping only reclaims memory.
    """

    def __init__(
        self,
        *,
        limit: int = DEFAULT_LIMIT,
        window_ms: int = DEFAULT_WINDOW_MS,
        sweep_interval_ms: int | None = None,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        """Initialize the limiter.

        Args:
            limit: Maximum number of allowed requests per window.
            window_ms: Window length in milliseconds.
            sweep_interval_ms: Minimum gap between sweeps triggered through
                ``maybe_sweep``; defaults to ``window_ms``.
            clock: Time source returning milliseconds.

        Raises:
            ValueError: If limit, window_ms or sweep_interval_ms are invalid.
        """
        if limit < 1:
            raise ValueError("limit must be >= 1")
        if window_ms < 1:
            raise ValueError("window_ms must be >= 1")
        if sweep_interval_ms is not None and sweep_interval_ms < 1:
            raise ValueError("sweep_interval_ms must be >= 1")

        self._limit = limit
        self._window_ms = window_ms
        self._sweep_interval_ms = sweep_interval_ms or window_ms
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: dict[str, RateLimitEntry] = {}
        self._last_sweep: int | None = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __repr__(self) -> str:  # pragma: no cover - representation only
        return (
            f"InMemorySlidingWindowRateLimiter(limit={self._limit}, "
            f"window_ms={self._window_ms}, entries={len(self._entries)})"
        )

    @property
    def limit(self) -> int:
        return self._limit

    @property
    def window_ms(self) -> int:
        return self._window_ms

    def _is_expired(self, entry: RateLimitEntry, now: int) -> bool:
        # A clock that went backwards also opens a new window
        return now - entry.window_start > self._window_ms or now < entry.window_start

    def consume(self, key: str, *, now: int | None = None) -> RateLimitDecision:
        """Record one request for ``key`` and decide whether it is allowed.

        The first request of a window is always allowed. Later requests
        increment the count and are allowed while ``count <= limit``; requests
        past the limit keep counting until the window rolls over.

        Args:
            key: Bucket identity. Empty keys share the ``"unknown"`` bucket.
            now: Clock override in milliseconds.

        Returns:
            RateLimitDecision with allowance and window metadata.
        """
        key = key or UNKNOWN_KEY
        if now is None:
            now = self._clock()

        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._is_expired(entry, now):
                entry = RateLimitEntry(window_start=now, count=1)
                self._entries[key] = entry
            else:
                entry.count += 1
            count = entry.count
            window_start = entry.window_start

        reset_at = window_start + self._window_ms
        if count <= self._limit:
            return RateLimitDecision(
                allowed=True,
                limit=self._limit,
                count=count,
                remaining=self._limit - count,
                window_start=window_start,
                reset_at=reset_at,
            )

        return RateLimitDecision(
            allowed=False,
            limit=self._limit,
            count=count,
            remaining=0,
            window_start=window_start,
            reset_at=reset_at,
            retry_after_seconds=max(1, math.ceil((reset_at - now) / 1000)),
        )

    def sweep(self, *, now: int | None = None) -> int:
        """Remove every expired entry.

        Args:
            now: Clock override in milliseconds.

        Returns:
            Number of entries removed.
        """
        if now is None:
            now = self._clock()

        with self._lock:
            return self._sweep_locked(now)

    def _sweep_locked(self, now: int) -> int:
        expired = [key for key, entry in self._entries.items() if self._is_expired(entry, now)]
        for key in expired:
            del self._entries[key]
        self._last_sweep = now

        if expired:
            logger.debug(
                "rate_limit.swept",
                extra={"removed": len(expired), "entries": len(self._entries)},
            )
        return len(expired)

    def maybe_sweep(self, *, now: int | None = None) -> int:
        """Sweep when at least ``sweep_interval_ms`` passed since the last one."""
        if now is None:
            now = self._clock()

        with self._lock:
            last = self._last_sweep
            if last is not None and 0 <= now - last < self._sweep_interval_ms:
                return 0
            return self._sweep_locked(now)

    def reset(self) -> None:
        with self._lock:
            self._entries.clear()
            self._last_sweep = None
