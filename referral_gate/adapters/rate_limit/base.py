"""Rate limiter interfaces.

The request filter depends on this abstraction (not the concrete
implementation) so a shared external counter can replace the in-process
table without touching the HTTP layer.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of recording one request against a key.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Max requests per window.
        count: Requests observed in the current window, this one included.
        remaining: Requests left in the current window (0 when blocked).
        window_start: Clock reading (ms) at which the key's window opened.
        reset_at: Clock reading (ms) after which the window expires.
        retry_after_seconds: Whole seconds until the window expires, only set
            when blocked.
    """

    allowed: bool
    limit: int
    count: int
    remaining: int
    window_start: int
    reset_at: int
    retry_after_seconds: int | None = None


class AbstractRateLimiter(ABC):
    """Interface for per-key request limiters."""

    @abstractmethod
    def consume(self, key: str, *, now: int | None = None) -> RateLimitDecision:
        """Record one request for ``key`` and decide whether it is allowed.

        Args:
            key: Bucket identity (e.g. client address + route).
            now: Clock override in milliseconds; defaults to the limiter clock.

        Returns:
            RateLimitDecision describing the outcome.
        """
        raise NotImplementedError

    def check_and_record(self, key: str, *, now: int | None = None) -> bool:
        """Record one request for ``key`` and return whether it is allowed."""
        return self.consume(key, now=now).allowed

    @abstractmethod
    def sweep(self, *, now: int | None = None) -> int:
        """Drop expired state and return how many entries were removed."""
        raise NotImplementedError

    def maybe_sweep(self, *, now: int | None = None) -> int:
        """Opportunistic sweep hook called once per request; no-op by default."""
        return 0

    def reset(self) -> None:
        """Forget all recorded requests."""

    @abstractmethod
    def __len__(self) -> int:
        """Number of tracked keys."""
        raise NotImplementedError
