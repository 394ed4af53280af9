"""FastAPI application entry point for the link resolver service.

Application Lifecycle Diagram
=============================
::
    ┌─────────────┐
    │  uvicorn    │
    │  startup    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ startup:    │
    │ init_db()   │
    │ services    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Serve HTTP  │
    │ requests    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ lifespan()  │
    │ shutdown:   │
    │ drain tasks │
    │ close Kafka │
    │ close Redis │
    │ close_db()  │
    └─────────────┘

How to Use
===========
**Step 1: Run with uvicorn**::
    uvicorn linkresolver.main:app --host 0.0.0.0 --port 8000

**Step 2: Resolve a short code**::
    curl -i http://localhost:8000/abc123

Key Behaviours
===============
- Tables are created automatically on startup.
- Pending cache warms and analytics events are drained before shutdown.
- Unhandled exceptions become the standard 500 JSON error body, keeping the
  request id already assigned to the request.
- Routing errors (unknown path, wrong method) use the same error body.
- Prometheus metrics are exposed at /metrics unless METRICS_ENABLED is false.
"""

__all__ = ["app"]

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.exceptions import HTTPException as StarletteHTTPException

from linkresolver.config import get_settings
from linkresolver.database import close_db, init_db
from linkresolver.dependencies import _service_manager, resolve_request_id
from linkresolver.enums import ErrorCode
from linkresolver.resolution import INTERNAL_ERROR_MESSAGE
from linkresolver.routes import error_response, router

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await _service_manager.cleanup()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Short link resolution with cache warming and store circuit breaking",
    lifespan=lifespan,
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = resolve_request_id(request)
    logger.error(
        f"Unhandled error on {request.url.path}: {exc!r}",
        exc_info=exc,
        extra={"request_id": request_id},
    )
    return error_response(500, ErrorCode.INTERNAL_SERVER_ERROR, INTERNAL_ERROR_MESSAGE, request_id)


_HTTP_ERROR_CODES = {
    404: ErrorCode.NOT_FOUND,
    405: ErrorCode.METHOD_NOT_ALLOWED,
}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render routing errors (unknown path, wrong method) with the standard error body."""
    if exc.status_code >= 500:
        code = ErrorCode.INTERNAL_SERVER_ERROR
    else:
        code = _HTTP_ERROR_CODES.get(exc.status_code, ErrorCode.BAD_REQUEST)
    response = error_response(exc.status_code, code, str(exc.detail), resolve_request_id(request))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


if settings.METRICS_ENABLED:
    Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=False,
        should_respect_env_var=False,
    ).instrument(app).expose(app, include_in_schema=False)

app.include_router(router)
