"""Dependency injection with a singleton service manager.

This module wires the process-wide resolver components (Redis client, circuit
breaker, store client, Kafka emitter, background task tracker) once at startup
and provides a lightweight per-request context for logging and correlation.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends, Request

from linkresolver.analytics import AnalyticsEmitter
from linkresolver.background import BackgroundTaskTracker
from linkresolver.cache import LinkCache
from linkresolver.circuit_breaker import CircuitBreaker
from linkresolver.config import Settings, get_settings
from linkresolver.database import async_session
from linkresolver.resolution import LinkResolver
from linkresolver.schemas import RequestMetadata
from linkresolver.store import LinkStore


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton service manager for shared resources.

    The circuit breaker lives here, one per process, and is handed to the
    store client rather than kept as a module global.
    """

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(self) -> None:
        """Initialize shared resources once at startup."""
        if self._initialized:
            return

        self.settings = get_settings()
        self.logger = self._setup_logger()
        self.redis_client = redis.from_url(self.settings.REDIS_URL, encoding="utf-8", decode_responses=True)
        self.cache = LinkCache(self.redis_client, key_prefix=self.settings.CACHE_KEY_PREFIX)
        self.breaker = CircuitBreaker(
            "link-store",
            failure_threshold=self.settings.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
            recovery_timeout_seconds=self.settings.circuit_breaker_recovery_timeout_seconds,
        )
        self.store = LinkStore(
            async_session,
            self.breaker,
            timeout_seconds=self.settings.STORE_LOOKUP_TIMEOUT_SECONDS,
        )
        self.emitter = AnalyticsEmitter(self.settings.KAFKA_BOOTSTRAP_SERVERS, self.settings.KAFKA_ANALYTICS_TOPIC)
        await self.emitter.start()
        self.tasks = BackgroundTaskTracker()
        self.resolver = LinkResolver(
            self.cache,
            self.store,
            self.emitter,
            self.tasks,
            min_length=self.settings.SHORT_CODE_MIN_LENGTH,
            max_length=self.settings.SHORT_CODE_MAX_LENGTH,
            bot_score_threshold=self.settings.BOT_SCORE_THRESHOLD,
        )
        self._initialized = True
        self.logger.info(f"Service manager initialized ({self.settings.APP_ENV})")

    def _setup_logger(self) -> logging.Logger:
        """Setup logger once."""
        logger = logging.getLogger("linkresolver")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
        logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def cleanup(self) -> None:
        """Drain detached work, then release shared resources at shutdown."""
        if not self._initialized:
            return
        await self.tasks.drain(timeout=self.settings.BACKGROUND_DRAIN_TIMEOUT_SECONDS)
        await self.emitter.stop()
        await self.redis_client.aclose()
        self._initialized = False


# Global singleton instance
_service_manager = ServiceManager()


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request tracking and correlation data.

    Attributes:
        settings: Application settings
        metadata: Request facts used for analytics
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    settings: Settings
    metadata: RequestMetadata
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())
    tags: list[str] = field(default_factory=list)

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Get logger with request context attached."""
        return logging.LoggerAdapter(
            logging.getLogger("linkresolver.request"),
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.metadata.ip_address,
                "user_agent": self.metadata.user_agent,
                "tags": ",".join(self.tags),
            },
        )

    def add_tag(self, tag: str) -> None:
        """Add a tag to the request context."""
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


def _client_ip(request: Request) -> str | None:
    connecting_ip = request.headers.get("cf-connecting-ip")
    if connecting_ip:
        return connecting_ip
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",", 1)[0].strip()
    return request.client.host if request.client else None


def _colo(cf_ray: str | None) -> str | None:
    # cf-ray looks like "7d1c2b3a4f5e6a7b-SFO"
    if not cf_ray or "-" not in cf_ray:
        return None
    return cf_ray.rsplit("-", 1)[1] or None


def _int_header(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def extract_request_metadata(request: Request) -> RequestMetadata:
    headers = request.headers
    http_version = request.scope.get("http_version")
    return RequestMetadata(
        user_agent=headers.get("user-agent"),
        referer=headers.get("referer"),
        accept_language=headers.get("accept-language"),
        ip_address=_client_ip(request),
        country=headers.get("cf-ipcountry"),
        continent=headers.get("cf-ipcontinent"),
        region=headers.get("cf-region"),
        city=headers.get("cf-ipcity"),
        asn=_int_header(headers.get("x-client-asn")),
        as_organization=headers.get("x-client-as-organization"),
        colo=_colo(headers.get("cf-ray")),
        http_protocol=f"HTTP/{http_version}" if http_version else None,
    )


def _incoming_request_id(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return None


def resolve_request_id(request: Request) -> str:
    """Return the correlation id for this request, fixing it on first use.

    A well-formed UUID in the incoming ``X-Request-ID`` header is reused;
    anything else gets a fresh UUID4.
    """
    request_id = getattr(request.state, "request_id", None)
    if request_id is None:
        request_id = _incoming_request_id(request.headers.get("x-request-id")) or str(uuid.uuid4())
        request.state.request_id = request_id
    return request_id


async def get_service_manager() -> ServiceManager:
    """Get the singleton service manager, initializing it on first use."""
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_request_context(request: Request) -> RequestContext:
    """Build the per-request context from headers and client info."""
    return RequestContext(
        settings=get_settings(),
        metadata=extract_request_metadata(request),
        request_id=resolve_request_id(request),
        trace_id=request.headers.get("x-trace-id"),
    )


async def get_link_resolver(manager: ServiceManager = Depends(get_service_manager)) -> LinkResolver:
    """Get the process-wide resolver."""
    return manager.resolver
