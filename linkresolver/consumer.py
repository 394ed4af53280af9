"""Analytics consumer for link resolution events.

Consumes ``AnalyticsEvent`` messages from Kafka, folds them into per-link click
count increments on the OLTP table, and stores one analytics row per event in
ClickHouse. This is the only writer of ``links.click_count``.

Offsets are committed only after a batch reaches both sinks. A failing batch is
rewound and retried up to ``CONSUMER_MAX_ATTEMPTS`` times, then published to
the dead-letter topic and committed.

Run with::

    python -m linkresolver.consumer
"""

import asyncio
import datetime
import json
import logging
from collections.abc import Iterable

import clickhouse_connect
from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from clickhouse_connect.driver.client import Client as ClickHouseClient
from prometheus_client import Counter, start_http_server
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from linkresolver.config import get_settings
from linkresolver.database import async_session
from linkresolver.models import ShortLink
from linkresolver.schemas import AnalyticsEvent

__all__ = [
    "ClickAggregates",
    "aggregate_clicks",
    "apply_click_counts",
    "consume_batch",
    "parse_events",
    "process_batch",
    "run",
    "send_to_dead_letter",
    "write_analytics_rows",
]

settings = get_settings()
logger = logging.getLogger(__name__)

LINK_CLICKS_TABLE_DDL = """
CREATE TABLE IF NOT EXISTS link_clicks (
    short_code String,
    event_time DateTime64(3, 'UTC'),
    country String,
    continent String,
    region String,
    city String,
    asn UInt32,
    colo String,
    user_agent String,
    language String,
    referer String,
    ip_address String,
    http_protocol String,
    bot_score Float64,
    is_bot UInt8
) ENGINE = MergeTree
ORDER BY (short_code, event_time)
"""

LINK_CLICKS_COLUMNS = [
    "short_code",
    "event_time",
    "country",
    "continent",
    "region",
    "city",
    "asn",
    "colo",
    "user_agent",
    "language",
    "referer",
    "ip_address",
    "http_protocol",
    "bot_score",
    "is_bot",
]

CONSUMER_EVENTS_TOTAL = Counter(
    "link_analytics_consumer_events_total",
    "Analytics events consumed, by result",
    ["result"],
)
CONSUMER_DB_UPDATES_TOTAL = Counter(
    "link_analytics_consumer_db_updates_total",
    "Aggregated click_count updates applied to the links table",
)
CONSUMER_CLICKHOUSE_ROWS_TOTAL = Counter(
    "link_analytics_consumer_clickhouse_rows_total",
    "Analytics rows inserted into ClickHouse",
)
CONSUMER_BATCH_FAILURES_TOTAL = Counter(
    "link_analytics_consumer_batch_failures_total",
    "Batches that failed to apply and were rewound for retry or dead-lettered",
)
CONSUMER_DEAD_LETTER_TOTAL = Counter(
    "link_analytics_consumer_dead_letter_total",
    "Payloads published to the dead-letter topic after exhausting retries",
)


class ClickAggregates(BaseModel):
    """Aggregated click deltas ready to be flushed.

    Example::

        {"abc123": 57, "zzz999": 12}
    """

    by_short_code: dict[str, int] = Field(
        default_factory=dict,
        description="Mapping of short_code -> clicks to add to links.click_count.",
        examples=[{"abc123": 57, "zzz999": 12}],
    )

    @property
    def total_clicks(self) -> int:
        return sum(self.by_short_code.values())


def parse_events(payloads: Iterable[object]) -> list[AnalyticsEvent]:
    """Validate raw payloads, dropping (and logging) anything malformed."""
    events: list[AnalyticsEvent] = []
    for payload in payloads:
        try:
            events.append(AnalyticsEvent.model_validate(payload))
        except ValidationError:
            CONSUMER_EVENTS_TOTAL.labels(result="invalid").inc()
            logger.warning("invalid analytics payload", exc_info=True)
            continue
        CONSUMER_EVENTS_TOTAL.labels(result="valid").inc()
    return events


def aggregate_clicks(events: Iterable[AnalyticsEvent]) -> ClickAggregates:
    aggregates = ClickAggregates()
    for event in events:
        aggregates.by_short_code[event.short_code] = aggregates.by_short_code.get(event.short_code, 0) + 1
    return aggregates


async def _increment_click_counts(session: AsyncSession, aggregates: ClickAggregates) -> int:
    for short_code, delta in sorted(aggregates.by_short_code.items()):
        await session.execute(
            update(ShortLink)
            .where(ShortLink.short_code == short_code)
            .values(click_count=ShortLink.click_count + delta)
        )
        CONSUMER_DB_UPDATES_TOTAL.inc()
    return len(aggregates.by_short_code)


async def apply_click_counts(
    session_factory: async_sessionmaker[AsyncSession],
    aggregates: ClickAggregates,
) -> int:
    """Add the aggregated clicks to ``links.click_count`` in one transaction."""
    if not aggregates.by_short_code:
        return 0

    async with session_factory() as session:
        updated = await _increment_click_counts(session, aggregates)
        await session.commit()
    return updated


def write_analytics_rows(clickhouse_client: ClickHouseClient, events: list[AnalyticsEvent]) -> int:
    if not events:
        return 0

    rows = [
        [
            event.short_code,
            event.timestamp,
            event.country or "",
            event.continent or "",
            event.region or "",
            event.city or "",
            event.asn or 0,
            event.colo or "",
            event.user_agent or "",
            event.language or "",
            event.referer or "",
            event.ip_address or "",
            event.http_protocol or "",
            event.bot_score,
            int(event.is_bot),
        ]
        for event in events
    ]
    clickhouse_client.insert(table="link_clicks", data=rows, column_names=LINK_CLICKS_COLUMNS)
    CONSUMER_CLICKHOUSE_ROWS_TOTAL.inc(len(rows))
    return len(rows)


async def process_batch(
    payloads: Iterable[object],
    session_factory: async_sessionmaker[AsyncSession],
    clickhouse_client: ClickHouseClient,
) -> ClickAggregates:
    """Apply one batch to both sinks.

    The click_count transaction commits only after the ClickHouse insert
    succeeded, so a failed insert leaves the links table untouched.
    """
    events = parse_events(payloads)
    aggregates = aggregate_clicks(events)
    if not events:
        return aggregates

    async with session_factory() as session:
        await _increment_click_counts(session, aggregates)
        write_analytics_rows(clickhouse_client, events)
        await session.commit()
    return aggregates


async def send_to_dead_letter(
    producer: AIOKafkaProducer,
    topic: str,
    payloads: list[object],
    error: BaseException,
    attempts: int,
) -> int:
    """Publish each payload of a batch that kept failing, wrapped with the failure details."""
    failed_at = datetime.datetime.now(datetime.UTC).isoformat()
    for payload in payloads:
        await producer.send_and_wait(
            topic,
            {"payload": payload, "error": repr(error), "attempts": attempts, "failed_at": failed_at},
        )
    CONSUMER_DEAD_LETTER_TOTAL.inc(len(payloads))
    return len(payloads)


async def consume_batch(
    consumer: AIOKafkaConsumer,
    session_factory: async_sessionmaker[AsyncSession],
    clickhouse_client: ClickHouseClient,
    dead_letter_producer: AIOKafkaProducer,
    *,
    failed_attempts: int = 0,
    max_attempts: int = settings.CONSUMER_MAX_ATTEMPTS,
    retry_backoff_seconds: float = settings.CONSUMER_RETRY_BACKOFF_SECONDS,
    dead_letter_topic: str = settings.KAFKA_DEAD_LETTER_TOPIC,
) -> int:
    """Fetch and process one batch. Returns the failed-attempt count for the next call.

    Offsets are committed only once a batch is applied or dead-lettered. On
    failure the consumer rewinds to its committed offsets so the same records
    are fetched again.
    """
    records = await consumer.getmany(timeout_ms=settings.CONSUMER_BLOCK_MS, max_records=settings.CONSUMER_BATCH_SIZE)
    payloads = [record.value for partition_records in records.values() for record in partition_records]
    if not payloads:
        return failed_attempts

    try:
        aggregates = await process_batch(payloads, session_factory, clickhouse_client)
    except Exception as exc:
        attempts = failed_attempts + 1
        CONSUMER_BATCH_FAILURES_TOTAL.inc()
        if attempts < max_attempts:
            logger.warning(f"Analytics batch failed (attempt {attempts}/{max_attempts}), retrying", exc_info=True)
            await consumer.seek_to_committed()
            await asyncio.sleep(retry_backoff_seconds)
            return attempts

        logger.error(
            f"Analytics batch of {len(payloads)} events failed {attempts} times, sending to {dead_letter_topic}",
            exc_info=True,
        )
        await send_to_dead_letter(dead_letter_producer, dead_letter_topic, payloads, exc, attempts)
        await consumer.commit()
        return 0

    await consumer.commit()
    logger.debug(f"Applied {aggregates.total_clicks} clicks across {len(aggregates.by_short_code)} links")
    return 0


def _clickhouse_client() -> ClickHouseClient:
    host, _, port = settings.CLICKHOUSE_URL.removeprefix("http://").partition(":")
    return clickhouse_connect.get_client(
        host=host,
        port=int(port or 8123),
        username=settings.CLICKHOUSE_USERNAME,
        password=settings.CLICKHOUSE_PASSWORD,
        database=settings.CLICKHOUSE_DATABASE,
    )


async def run() -> None:
    logging.basicConfig(level=settings.LOG_LEVEL.upper())
    start_http_server(settings.CONSUMER_METRICS_PORT)

    clickhouse_client = _clickhouse_client()
    clickhouse_client.command(LINK_CLICKS_TABLE_DDL)

    consumer = AIOKafkaConsumer(
        settings.KAFKA_ANALYTICS_TOPIC,
        bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
        group_id=settings.ANALYTICS_CONSUMER_GROUP,
        client_id=settings.ANALYTICS_CONSUMER_NAME,
        value_deserializer=lambda payload: json.loads(payload.decode("utf-8")),
        enable_auto_commit=False,
    )
    dead_letter_producer = AIOKafkaProducer(
        bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
        value_serializer=lambda payload: json.dumps(payload).encode("utf-8"),
    )
    await consumer.start()
    await dead_letter_producer.start()
    logger.info(f"Consuming analytics events from {settings.KAFKA_ANALYTICS_TOPIC}")

    failed_attempts = 0
    try:
        while True:
            try:
                failed_attempts = await consume_batch(
                    consumer,
                    async_session,
                    clickhouse_client,
                    dead_letter_producer,
                    failed_attempts=failed_attempts,
                )
            except Exception:
                # Dead-letter publish or commit failed: nothing was committed, fetch again.
                logger.warning("analytics consumer iteration failed", exc_info=True)
                await consumer.seek_to_committed()
                await asyncio.sleep(settings.CONSUMER_RETRY_BACKOFF_SECONDS)
    finally:
        await dead_letter_producer.stop()
        await consumer.stop()


if __name__ == "__main__":
    asyncio.run(run())
