"""FastAPI route definitions for the link resolver.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    GET  /:short_code
        ├─ 302 Redirect (Location, Cache-Control: no-cache)
        ├─ 400 INVALID_SHORT_CODE
        ├─ 404 NOT_FOUND
        └─ 500 INTERNAL_SERVER_ERROR

Request Flow Diagram
====================
::
    ┌─────────────┐
    │  HTTP       │
    │  Request    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Request     │
    │ context     │
    │ (id, meta)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ LinkResolver│
    │ .resolve()  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Map outcome │
    │ to HTTP     │
    └─────────────┘

Key Behaviours
===============
- Every response carries ``X-Request-ID``.
- Redirects never include diagnostic detail and are never cached by clients.
- All error bodies share one shape: ``{error: {code, message}, timestamp, requestId}``.
"""

import datetime

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, RedirectResponse, Response

from linkresolver.dependencies import RequestContext, ServiceManager, get_link_resolver, get_request_context, get_service_manager
from linkresolver.enums import ErrorCode, HealthStatus, ResolutionStatus
from linkresolver.resolution import LinkResolver, Resolution
from linkresolver.schemas import ErrorDetail, ErrorResponse, HealthResponse

__all__ = ["router", "error_response"]

router = APIRouter()

REDIRECT_CACHE_CONTROL = "no-cache, no-store, must-revalidate"

_ERROR_STATUS = {
    ResolutionStatus.INVALID_INPUT: (400, ErrorCode.INVALID_SHORT_CODE),
    ResolutionStatus.NOT_FOUND: (404, ErrorCode.NOT_FOUND),
    ResolutionStatus.INTERNAL_ERROR: (500, ErrorCode.INTERNAL_SERVER_ERROR),
}


def error_response(status_code: int, code: ErrorCode, message: str, request_id: str) -> JSONResponse:
    body = ErrorResponse(
        error=ErrorDetail(code=code, message=message),
        timestamp=datetime.datetime.now(datetime.UTC),
        request_id=request_id,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True),
        headers={"X-Request-ID": request_id},
    )


def _to_response(resolution: Resolution) -> Response:
    if resolution.is_redirect:
        return RedirectResponse(
            url=resolution.destination_url,
            status_code=302,
            headers={"Cache-Control": REDIRECT_CACHE_CONTROL, "X-Request-ID": resolution.request_id},
        )
    status_code, code = _ERROR_STATUS[resolution.status]
    return error_response(status_code, code, resolution.message or "", resolution.request_id)


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(
    ctx: RequestContext = Depends(get_request_context),
    manager: ServiceManager = Depends(get_service_manager),
) -> HealthResponse:
    ctx.logger.info("Health check requested")
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await manager.store.ping()
        ctx.logger.debug("Database health check passed")
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    if not await manager.cache.ping():
        cache_status = HealthStatus.UNHEALTHY

    if db_status is HealthStatus.UNHEALTHY:
        status = HealthStatus.UNHEALTHY
    elif cache_status is HealthStatus.UNHEALTHY:
        # Redirects still work from the store when the cache is down.
        status = HealthStatus.DEGRADED
    else:
        status = HealthStatus.HEALTHY

    ctx.logger.info(f"Health check completed: {status.value}")
    return HealthResponse(
        status=status,
        database=db_status,
        cache=cache_status,
        circuit_breaker=manager.breaker.state,
    )


@router.get("/{short_code}", tags=["redirect"])
async def resolve_short_code(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    resolver: LinkResolver = Depends(get_link_resolver),
) -> Response:
    ctx.add_tag("redirect")
    ctx.logger.info(
        f"Redirect requested for short code: {short_code}",
        extra={"operation": "redirect", "short_code": short_code},
    )

    resolution = await resolver.resolve(short_code, ctx.metadata, request_id=ctx.request_id)

    ctx.logger.info(
        f"Redirect {resolution.status.value}: {short_code}",
        extra={
            "operation": "redirect",
            "short_code": short_code,
            "status": resolution.status.value,
            "cache": resolution.cache_status.value if resolution.cache_status else None,
            "duration_ms": ctx.get_duration(),
        },
    )
    return _to_response(resolution)
