"""Redis cache client for resolved short links.

Flow Diagram: get()
===================
::
    ┌─────────────┐
    │ GET link:   │
    │ {code}      │
    └──────┬──────┘
           ▼
    ┌─────────────┐   error    ┌─────────────┐
    │ Redis reply │ ─────────▶ │ log, count, │
    └──────┬──────┘            │ return None │
           ▼                   └─────────────┘
    ┌─────────────┐
    │ Decode JSON │ ── invalid ──▶ (same as error)
    └──────┬──────┘
           ▼
    CachedLinkPayload | None

Key Behaviours
===============
- Cache unavailability never surfaces to the caller: failed reads are misses,
  failed writes return ``False``.
- Every read and write updates ``CacheStats`` and the Prometheus counters.
- Entries are written with ``SETEX`` so Redis enforces the chosen TTL.
"""

import logging
from dataclasses import dataclass

import redis.asyncio as redis
from prometheus_client import Counter

from linkresolver.schemas import CachedLinkPayload

__all__ = ["CacheStats", "LinkCache"]

logger = logging.getLogger(__name__)

CACHE_OPERATIONS_TOTAL = Counter(
    "link_resolver_cache_operations_total",
    "Cache operations by operation and result",
    ["operation", "result"],
)


@dataclass
class CacheStats:
    """Running totals of cache outcomes for this client."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        """Hit rate as a percentage of successful lookups."""
        total = self.hits + self.misses
        return (self.hits / max(total, 1)) * 100


class LinkCache:
    """Get/put access to cached links in Redis."""

    def __init__(self, client: redis.Redis, key_prefix: str = "link"):
        self._client = client
        self._key_prefix = key_prefix
        self.stats = CacheStats()

    def key(self, short_code: str) -> str:
        return f"{self._key_prefix}:{short_code}"

    async def get(self, short_code: str) -> CachedLinkPayload | None:
        """Return the cached entry for ``short_code``, or ``None`` on miss or error."""
        try:
            raw = await self._client.get(self.key(short_code))
        except Exception as exc:
            self._record_error("get")
            logger.warning(f"Cache read failed for {short_code}: {exc!r}", extra={"short_code": short_code})
            return None

        if raw is None:
            self.stats.misses += 1
            CACHE_OPERATIONS_TOTAL.labels(operation="get", result="miss").inc()
            return None

        try:
            entry = CachedLinkPayload.model_validate_json(raw)
        except ValueError as exc:
            self._record_error("get")
            logger.error(f"Cache deserialization error for {short_code}: {exc}", extra={"short_code": short_code})
            return None

        self.stats.hits += 1
        CACHE_OPERATIONS_TOTAL.labels(operation="get", result="hit").inc()
        return entry

    async def put(self, short_code: str, entry: CachedLinkPayload, ttl_seconds: int) -> bool:
        """Store ``entry`` for ``ttl_seconds``. Returns whether the write happened."""
        if ttl_seconds <= 0:
            logger.debug(f"Skipping cache write for {short_code}: non-positive TTL {ttl_seconds}")
            return False

        try:
            await self._client.setex(self.key(short_code), ttl_seconds, entry.model_dump_json())
        except Exception as exc:
            self._record_error("put")
            logger.warning(f"Cache write failed for {short_code}: {exc!r}", extra={"short_code": short_code})
            return False

        self.stats.writes += 1
        CACHE_OPERATIONS_TOTAL.labels(operation="put", result="ok").inc()
        return True

    async def ping(self) -> bool:
        try:
            return bool(await self._client.ping())
        except Exception as exc:
            logger.error(f"Cache health check failed: {exc!r}")
            return False

    def _record_error(self, operation: str) -> None:
        self.stats.errors += 1
        CACHE_OPERATIONS_TOTAL.labels(operation=operation, result="error").inc()
