"""Durable store client: looks short links up in PostgreSQL.

Key Behaviours
===============
- Only consulted on a cache miss, and only through the circuit breaker.
- Inactive and expired links are filtered out in the query itself.
- Every query is bounded by ``timeout_seconds``; a timeout counts as a breaker
  failure like any other transport error.
- ``fetch_active`` raises on failure. Swallowing is the breaker's job.
"""

import asyncio
import datetime
from collections.abc import Callable

from prometheus_client import Histogram
from sqlalchemy import or_, select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from linkresolver.circuit_breaker import CallResult, CircuitBreaker
from linkresolver.models import ShortLink

__all__ = ["LinkStore"]

STORE_LOOKUP_DURATION = Histogram(
    "link_resolver_store_lookup_duration_seconds",
    "Time spent querying the durable store for a short code",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class LinkStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        breaker: CircuitBreaker,
        timeout_seconds: float = 3.0,
        clock: Callable[[], datetime.datetime] = _utcnow,
    ):
        self._session_factory = session_factory
        self._breaker = breaker
        self._timeout_seconds = timeout_seconds
        self._clock = clock

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def lookup(self, short_code: str) -> CallResult[ShortLink]:
        """Look ``short_code`` up through the circuit breaker."""
        return await self._breaker.call(lambda: self.fetch_active(short_code))

    async def fetch_active(self, short_code: str) -> ShortLink | None:
        """Return the active, unexpired link for ``short_code`` or ``None``.

        Raises:
            TimeoutError: If the query exceeds ``timeout_seconds``.
            SQLAlchemyError: On any database failure.
        """
        with STORE_LOOKUP_DURATION.time():
            return await asyncio.wait_for(self._query(short_code), timeout=self._timeout_seconds)

    async def ping(self) -> bool:
        async with self._session_factory() as session:
            await session.execute(text("SELECT 1"))
        return True

    async def _query(self, short_code: str) -> ShortLink | None:
        now = self._clock()
        statement = (
            select(ShortLink)
            .where(
                ShortLink.short_code == short_code,
                ShortLink.is_active.is_(True),
                or_(ShortLink.expires_at.is_(None), ShortLink.expires_at > now),
            )
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(statement)
            return result.scalar_one_or_none()
