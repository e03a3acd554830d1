"""Rate limiting adapters.

The request filter starts with an in-process table and can later move to a
shared store without changing the HTTP layer.
"""

from referral_gate.adapters.rate_limit.base import AbstractRateLimiter, RateLimitDecision
from referral_gate.adapters.rate_limit.in_memory import InMemorySlidingWindowRateLimiter

__all__ = ["AbstractRateLimiter", "InMemorySlidingWindowRateLimiter", "RateLimitDecision"]
