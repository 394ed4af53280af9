"""Resolution orchestrator: short code in, redirect decision out.

Flow Diagram: resolve()
=======================
::
    ┌─────────────┐
    │ short_code  │
    └──────┬──────┘
           ▼
    ┌─────────────┐  invalid
    │ Validate    │ ─────────▶ INVALID_INPUT
    └──────┬──────┘
           ▼
    ┌─────────────┐  hit (inactive/expired) ─▶ NOT_FOUND
    │ Redis GET   │ ───────────── hit ──────────────┐
    └──────┬──────┘                                 │
      miss │                                        │
           ▼                                        │
    ┌─────────────┐  no value (absent, failed,      │
    │ Breaker ▶   │  timed out, rejected)           │
    │ PostgreSQL  │ ──────────────────▶ NOT_FOUND   │
    └──────┬──────┘                                 │
     found │                                        │
           ▼                                        │
    ┌─────────────┐                                 │
    │ spawn cache │                                 │
    │ warm (TTL)  │                                 │
    └──────┬──────┘                                 │
           ▼                                        │
    ┌─────────────┐ ◀───────────────────────────────┘
    │ spawn       │
    │ analytics   │
    └──────┬──────┘
           ▼
       REDIRECT

Key Behaviours
===============
- The cache is always consulted first; the store is never touched on a hit.
- Cache warm and analytics publish are detached; ``resolve`` does not wait.
- Store outages and breaker rejections look like NOT_FOUND to callers. The
  ``not_found_reason`` on the result (and the metric) tells them apart.
- Any unexpected exception becomes INTERNAL_ERROR with the request id.
"""

import datetime
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from prometheus_client import Counter, Histogram

from linkresolver.analytics import AnalyticsEmitter, build_analytics_event
from linkresolver.background import BackgroundTaskTracker
from linkresolver.cache import LinkCache
from linkresolver.enums import CacheStatus, CallOutcome, NotFoundReason, ResolutionStatus
from linkresolver.exceptions import InvalidShortCodeError
from linkresolver.models import ShortLink
from linkresolver.schemas import CachedLinkPayload, RequestMetadata
from linkresolver.store import LinkStore
from linkresolver.ttl import compute_ttl
from linkresolver.validation import MAX_SHORT_CODE_LENGTH, MIN_SHORT_CODE_LENGTH, validate_short_code

__all__ = ["LinkResolver", "Resolution"]

logger = logging.getLogger(__name__)

RESOLUTIONS_TOTAL = Counter(
    "link_resolver_resolutions_total",
    "Resolution outcomes",
    ["status", "cache"],
)
NOT_FOUND_TOTAL = Counter(
    "link_resolver_not_found_total",
    "Not-found resolutions by underlying reason",
    ["reason"],
)
RESOLUTION_DURATION = Histogram(
    "link_resolver_resolution_duration_seconds",
    "Time taken to resolve a short code, excluding detached work",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5],
)

INTERNAL_ERROR_MESSAGE = "An unexpected error occurred while resolving the short URL"

_OUTCOME_REASONS = {
    CallOutcome.SUCCESS: NotFoundReason.ABSENT,
    CallOutcome.FAILURE: NotFoundReason.STORE_UNAVAILABLE,
    CallOutcome.TIMEOUT: NotFoundReason.STORE_UNAVAILABLE,
    CallOutcome.REJECTED: NotFoundReason.BREAKER_OPEN,
}


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


@dataclass(frozen=True)
class Resolution:
    """Outcome of one ``resolve`` call."""

    status: ResolutionStatus
    request_id: str
    short_code: str
    destination_url: str | None = None
    message: str | None = None
    cache_status: CacheStatus | None = None
    not_found_reason: NotFoundReason | None = None

    @property
    def is_redirect(self) -> bool:
        return self.status is ResolutionStatus.REDIRECT


class LinkResolver:
    """Cache-then-store resolution with breaker protection and TTL warming.

    Example:
        >>> resolver = LinkResolver(cache, store, emitter, tasks)
        >>> resolution = await resolver.resolve("abc123", metadata)
        >>> resolution.destination_url
        'https://example.com'
    """

    def __init__(
        self,
        cache: LinkCache,
        store: LinkStore,
        emitter: AnalyticsEmitter,
        tasks: BackgroundTaskTracker,
        *,
        min_length: int = MIN_SHORT_CODE_LENGTH,
        max_length: int = MAX_SHORT_CODE_LENGTH,
        bot_score_threshold: float = 0.8,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ):
        self._cache = cache
        self._store = store
        self._emitter = emitter
        self._tasks = tasks
        self._min_length = min_length
        self._max_length = max_length
        self._bot_score_threshold = bot_score_threshold
        self._clock = clock

    # ========================================================================
    # PUBLIC API METHODS
    # ========================================================================

    async def resolve(
        self,
        short_code: str,
        metadata: RequestMetadata | None = None,
        request_id: str | None = None,
    ) -> Resolution:
        """Resolve ``short_code`` to a redirect, not-found, or error outcome.

        Args:
            short_code: Code taken from the request path.
            metadata: Request facts for the analytics event.
            request_id: Correlation id; a fresh UUID4 when omitted.

        Returns:
            Resolution: never raises.
        """
        request_id = request_id or str(uuid.uuid4())
        start_time = time.perf_counter()
        try:
            resolution = await self._resolve(short_code, metadata, request_id)
        except Exception as exc:
            logger.exception(
                f"Unexpected error resolving {short_code!r}: {exc!r}",
                extra={"request_id": request_id, "short_code": short_code},
            )
            resolution = Resolution(
                status=ResolutionStatus.INTERNAL_ERROR,
                request_id=request_id,
                short_code=short_code,
                message=INTERNAL_ERROR_MESSAGE,
            )

        RESOLUTION_DURATION.observe(time.perf_counter() - start_time)
        RESOLUTIONS_TOTAL.labels(
            status=resolution.status,
            cache=resolution.cache_status or "none",
        ).inc()
        return resolution

    async def warm_cache(self, link: ShortLink, *, is_new_link: bool = False) -> bool:
        """Write ``link`` to the cache with a TTL from the popularity policy."""
        now = self._clock()
        ttl_seconds = compute_ttl(link.click_count or 0, link.expires_at, is_new_link=is_new_link, now=now)
        entry = CachedLinkPayload(
            short_code=link.short_code,
            destination_url=link.destination_url,
            is_active=link.is_active,
            click_count=link.click_count or 0,
            cached_at=now,
            ttl_seconds=ttl_seconds,
            expires_at=link.expires_at,
        )
        return await self._cache.put(link.short_code, entry, ttl_seconds)

    # ========================================================================
    # PRIVATE HELPER METHODS
    # ========================================================================

    async def _resolve(self, short_code: str, metadata: RequestMetadata | None, request_id: str) -> Resolution:
        try:
            validate_short_code(short_code, self._min_length, self._max_length)
        except InvalidShortCodeError as exc:
            logger.info(f"Rejected short code {short_code!r}: {exc.message}", extra={"request_id": request_id})
            return Resolution(
                status=ResolutionStatus.INVALID_INPUT,
                request_id=request_id,
                short_code=short_code,
                message=exc.message,
            )

        cached = await self._cache.get(short_code)
        if cached is not None:
            if not cached.is_servable(self._clock()):
                return self._not_found(short_code, request_id, NotFoundReason.INACTIVE, CacheStatus.HIT)
            destination_url = cached.destination_url
            cache_status = CacheStatus.HIT
        else:
            result = await self._store.lookup(short_code)
            link = result.value
            if link is None:
                return self._not_found(short_code, request_id, _OUTCOME_REASONS[result.outcome], CacheStatus.MISS)
            destination_url = link.destination_url
            cache_status = CacheStatus.MISS
            self._tasks.spawn(self.warm_cache(link, is_new_link=False), name=f"cache-warm:{short_code}")

        self._tasks.spawn(self._emit_analytics(short_code, metadata), name=f"analytics:{short_code}")
        logger.debug(
            f"Resolved {short_code} -> {destination_url} (cache {cache_status.value})",
            extra={"request_id": request_id, "short_code": short_code},
        )
        return Resolution(
            status=ResolutionStatus.REDIRECT,
            request_id=request_id,
            short_code=short_code,
            destination_url=destination_url,
            cache_status=cache_status,
        )

    def _not_found(
        self,
        short_code: str,
        request_id: str,
        reason: NotFoundReason,
        cache_status: CacheStatus,
    ) -> Resolution:
        NOT_FOUND_TOTAL.labels(reason=reason).inc()
        log = logger.info if reason in (NotFoundReason.ABSENT, NotFoundReason.INACTIVE) else logger.warning
        log(
            f"Short code {short_code} not found ({reason.value})",
            extra={"request_id": request_id, "short_code": short_code, "reason": reason.value},
        )
        return Resolution(
            status=ResolutionStatus.NOT_FOUND,
            request_id=request_id,
            short_code=short_code,
            message=f"Short URL not found: {short_code}",
            cache_status=cache_status,
            not_found_reason=reason,
        )

    async def _emit_analytics(self, short_code: str, metadata: RequestMetadata | None) -> None:
        event = build_analytics_event(short_code, metadata, bot_score_threshold=self._bot_score_threshold)
        await self._emitter.emit(event)
