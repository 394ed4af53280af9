"""Shared enums for the link resolver.

This module defines all status and state enums used across the codebase.
Using enums instead of string literals provides type safety and prevents typos.
"""

from enum import StrEnum

__all__ = [
    "HealthStatus",
    "CacheStatus",
    "CircuitState",
    "CallOutcome",
    "ResolutionStatus",
    "NotFoundReason",
    "ErrorCode",
]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"

    @classmethod
    def from_str(cls, value: str) -> "HealthStatus":
        """Safely parse from string, falling back to UNHEALTHY for unknown values."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNHEALTHY


class CacheStatus(StrEnum):
    """Cache lookup outcome, used as a metrics label."""

    HIT = "hit"
    MISS = "miss"


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CallOutcome(StrEnum):
    """How a call guarded by the circuit breaker ended."""

    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"
    REJECTED = "rejected"


class ResolutionStatus(StrEnum):
    """Final outcome of resolving a short code."""

    REDIRECT = "redirect"
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    INTERNAL_ERROR = "internal_error"


class NotFoundReason(StrEnum):
    """Why a resolution ended as not-found.

    Callers only ever see a 404; the reason is for logs and metrics.
    """

    ABSENT = "absent"
    INACTIVE = "inactive"
    STORE_UNAVAILABLE = "store_unavailable"
    BREAKER_OPEN = "breaker_open"


class ErrorCode(StrEnum):
    """Error codes carried in JSON error bodies."""

    INVALID_SHORT_CODE = "INVALID_SHORT_CODE"
    NOT_FOUND = "NOT_FOUND"
    BAD_REQUEST = "BAD_REQUEST"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"
