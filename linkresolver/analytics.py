"""Analytics events for successful resolutions, published to Kafka.

Flow Diagram: emit()
====================
::
    ┌─────────────┐
    │ Redirect    │
    │ resolved    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ build_      │
    │ analytics_  │
    │ event()     │
    └──────┬──────┘
           ▼
    ┌─────────────┐   no producer / send error   ┌─────────────┐
    │ send_and_   │ ───────────────────────────▶ │ log, count, │
    │ wait(topic) │                              │ return False│
    └──────┬──────┘                              └─────────────┘
           ▼
      return True

Key Behaviours
===============
- ``emit`` never raises: analytics completeness ranks below redirect latency.
- Events are keyed by short code so one link's events share a partition.
- If the producer failed to start, ``emit`` reports ``False`` for every event.
- Bot likelihood is a user-agent heuristic; ``is_bot`` applies a threshold to it.
"""

import datetime
import json
import logging
import re

from aiokafka import AIOKafkaProducer
from prometheus_client import Counter

from linkresolver.schemas import AnalyticsEvent, RequestMetadata

__all__ = [
    "AnalyticsEmitter",
    "build_analytics_event",
    "parse_language",
    "score_bot_likelihood",
]

logger = logging.getLogger(__name__)

ANALYTICS_EVENTS_TOTAL = Counter(
    "link_resolver_analytics_events_total",
    "Analytics events by publish result",
    ["result"],
)

BOT_USER_AGENT_PATTERN = re.compile(
    r"bot|crawl|spider|slurp|fetcher|scanner|monitor|preview|headless|"
    r"curl|wget|python-requests|python-httpx|go-http-client|okhttp|java/",
    re.IGNORECASE,
)

KNOWN_BOT_SCORE = 0.95
MISSING_USER_AGENT_SCORE = 0.6
BROWSER_SCORE = 0.1


def score_bot_likelihood(user_agent: str | None) -> float:
    """Return a 0..1 likelihood that the client is automated."""
    if not user_agent or not user_agent.strip():
        return MISSING_USER_AGENT_SCORE
    if BOT_USER_AGENT_PATTERN.search(user_agent):
        return KNOWN_BOT_SCORE
    return BROWSER_SCORE


def parse_language(accept_language: str | None) -> str | None:
    """Return the first language tag of an Accept-Language header.

    >>> parse_language("en-US,en;q=0.9")
    'en-US'
    """
    if not accept_language:
        return None
    first = accept_language.split(",", 1)[0].split(";", 1)[0].strip()
    return first or None


def build_analytics_event(
    short_code: str,
    metadata: RequestMetadata | None = None,
    *,
    bot_score_threshold: float = 0.8,
    now: datetime.datetime | None = None,
) -> AnalyticsEvent:
    metadata = metadata or RequestMetadata()
    bot_score = score_bot_likelihood(metadata.user_agent)
    return AnalyticsEvent(
        short_code=short_code,
        timestamp=now or datetime.datetime.now(datetime.UTC),
        country=metadata.country,
        continent=metadata.continent,
        region=metadata.region,
        city=metadata.city,
        asn=metadata.asn,
        as_organization=metadata.as_organization,
        colo=metadata.colo,
        user_agent=metadata.user_agent,
        language=parse_language(metadata.accept_language),
        referer=metadata.referer,
        bot_score=bot_score,
        is_bot=bot_score >= bot_score_threshold,
        ip_address=metadata.ip_address,
        http_protocol=metadata.http_protocol,
    )


class AnalyticsEmitter:
    """Best-effort Kafka publisher for ``AnalyticsEvent``."""

    def __init__(self, bootstrap_servers: str, topic: str, producer: AIOKafkaProducer | None = None):
        self._bootstrap_servers = bootstrap_servers
        self._topic = topic
        self._producer = producer

    @property
    def started(self) -> bool:
        return self._producer is not None

    async def start(self) -> None:
        if self._producer is not None:
            return

        producer = AIOKafkaProducer(
            bootstrap_servers=self._bootstrap_servers,
            value_serializer=lambda payload: json.dumps(payload).encode("utf-8"),
        )
        try:
            await producer.start()
        except Exception as exc:
            logger.warning(f"Kafka producer unavailable, analytics disabled: {exc!r}")
            await producer.stop()
            return
        self._producer = producer

    async def stop(self) -> None:
        if self._producer is None:
            return
        await self._producer.stop()
        self._producer = None

    async def emit(self, event: AnalyticsEvent) -> bool:
        """Publish ``event``. Returns ``False`` instead of raising on failure."""
        if self._producer is None:
            ANALYTICS_EVENTS_TOTAL.labels(result="dropped").inc()
            logger.warning(f"Analytics event dropped for {event.short_code}: producer not started")
            return False

        try:
            await self._producer.send_and_wait(
                self._topic,
                event.model_dump(mode="json"),
                key=event.short_code.encode("utf-8"),
            )
        except Exception as exc:
            ANALYTICS_EVENTS_TOTAL.labels(result="failed").inc()
            logger.error(
                f"Analytics publish error for {event.short_code}: {exc!r}",
                extra={"short_code": event.short_code},
            )
            return False

        ANALYTICS_EVENTS_TOTAL.labels(result="published").inc()
        return True
