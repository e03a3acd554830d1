"""Application-level exception types.

This module defines domain errors used across the filter, access policy and
routes, enabling consistent error handling, logging, and API responses.

Throttling is deliberately absent here: an over-limit request is a
``RateLimitDecision`` turned into a 429 response, not an exception.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients."""

    hint: str
    role: str


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when request input fails validation."""


class AuthenticationAppError(AppError):
    """Raised when no valid session could be established."""


class AuthorizationAppError(AppError):
    """Raised when an authenticated identity lacks the required role."""


class ConfigurationAppError(AppError):
    """Raised when the service is missing a required collaborator or setting."""
