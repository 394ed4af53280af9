"""Pydantic schemas for cache payloads, analytics events and HTTP bodies.

Schema Hierarchy
=================
::
    CachedLinkPayload (Redis value)
    ├─ short_code, destination_url, is_active
    ├─ click_count (snapshot at write time)
    ├─ cached_at, ttl_seconds
    └─ expires_at (optional)

    RequestMetadata (inbound request facts)
    └─ user agent, referer, language, ip, geo, network

    AnalyticsEvent (Kafka value, immutable)
    ├─ short_code, timestamp
    ├─ geo / network / client fields
    └─ bot_score, is_bot

    ErrorResponse (HTTP 4xx/5xx body)
    ├─ error: {code, message}
    ├─ timestamp
    └─ requestId

    HealthResponse (HTTP /health body)

Key Behaviours
===============
- All datetime fields are timezone-aware.
- ``CachedLinkPayload`` reads straight from ``ShortLink`` rows (from_attributes).
- ``AnalyticsEvent`` is frozen: it is a fact about one resolution.
- ``ErrorResponse`` serializes ``request_id`` as ``requestId``.
"""

import datetime

from pydantic import BaseModel, ConfigDict, Field

from linkresolver.enums import CircuitState, ErrorCode, HealthStatus

__all__ = [
    "CachedLinkPayload",
    "RequestMetadata",
    "AnalyticsEvent",
    "ErrorDetail",
    "ErrorResponse",
    "HealthResponse",
]


class CachedLinkPayload(BaseModel):
    """Redis cache payload for a short link. Never the source of truth."""

    short_code: str
    destination_url: str
    is_active: bool = True
    click_count: int = Field(0, ge=0)
    cached_at: datetime.datetime
    ttl_seconds: int = Field(..., ge=0)
    expires_at: datetime.datetime | None = None

    model_config = {"from_attributes": True}

    def is_servable(self, now: datetime.datetime) -> bool:
        if not self.is_active:
            return False
        return self.expires_at is None or self.expires_at > now


class RequestMetadata(BaseModel):
    """Facts about the inbound request that feed the analytics event."""

    user_agent: str | None = None
    referer: str | None = None
    accept_language: str | None = None
    ip_address: str | None = None
    country: str | None = None
    continent: str | None = None
    region: str | None = None
    city: str | None = None
    asn: int | None = None
    as_organization: str | None = None
    colo: str | None = None
    http_protocol: str | None = None


class AnalyticsEvent(BaseModel):
    """One successful resolution, published to the analytics queue."""

    short_code: str = Field(..., description="Short code that was resolved, e.g. 'abc123'")
    timestamp: datetime.datetime

    country: str | None = None
    continent: str | None = None
    region: str | None = None
    city: str | None = None

    asn: int | None = None
    as_organization: str | None = None
    colo: str | None = None

    user_agent: str | None = None
    language: str | None = None
    referer: str | None = None

    bot_score: float = Field(0.0, ge=0.0, le=1.0, description="Likelihood the client is automated.")
    is_bot: bool = False

    ip_address: str | None = None
    http_protocol: str | None = None

    model_config = ConfigDict(frozen=True)


class ErrorDetail(BaseModel):
    code: ErrorCode
    message: str


class ErrorResponse(BaseModel):
    error: ErrorDetail
    timestamp: datetime.datetime
    request_id: str = Field(..., serialization_alias="requestId")


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
    circuit_breaker: CircuitState
