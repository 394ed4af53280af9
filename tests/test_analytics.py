"""Analytics event building and Kafka emitter tests."""

import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaConnectionError

from linkresolver.analytics import AnalyticsEmitter, build_analytics_event, parse_language, score_bot_likelihood
from linkresolver.schemas import RequestMetadata

NOW = datetime.datetime(2026, 1, 1, 12, 0, tzinfo=datetime.UTC)
BROWSER_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 Chrome/120.0 Safari/537.36"


@pytest.fixture
def metadata() -> RequestMetadata:
    return RequestMetadata(
        user_agent=BROWSER_UA,
        referer="https://news.example.org/",
        accept_language="en-US,en;q=0.9",
        ip_address="203.0.113.7",
        country="US",
        continent="NA",
        region="California",
        city="San Francisco",
        asn=13335,
        as_organization="Cloudflare",
        colo="SFO",
        http_protocol="HTTP/2",
    )


@pytest.mark.parametrize(
    ("user_agent", "expected"),
    [
        ("Googlebot/2.1 (+http://www.google.com/bot.html)", 0.95),
        ("curl/8.4.0", 0.95),
        ("python-requests/2.31", 0.95),
        (None, 0.6),
        ("   ", 0.6),
        (BROWSER_UA, 0.1),
    ],
)
def test_score_bot_likelihood(user_agent: str | None, expected: float) -> None:
    assert score_bot_likelihood(user_agent) == expected


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ("en-US,en;q=0.9", "en-US"),
        ("fr;q=0.8", "fr"),
        ("", None),
        (None, None),
    ],
)
def test_parse_language(header: str | None, expected: str | None) -> None:
    assert parse_language(header) == expected


def test_build_event_copies_request_facts(metadata: RequestMetadata) -> None:
    event = build_analytics_event("abc123", metadata, now=NOW)

    assert event.short_code == "abc123"
    assert event.timestamp == NOW
    assert event.country == "US"
    assert event.city == "San Francisco"
    assert event.asn == 13335
    assert event.colo == "SFO"
    assert event.language == "en-US"
    assert event.referer == "https://news.example.org/"
    assert event.ip_address == "203.0.113.7"
    assert event.http_protocol == "HTTP/2"
    assert event.bot_score == 0.1
    assert event.is_bot is False


def test_build_event_without_metadata() -> None:
    event = build_analytics_event("abc123")

    assert event.user_agent is None
    assert event.bot_score == 0.6
    assert event.is_bot is False
    assert event.timestamp.tzinfo is not None


def test_is_bot_uses_threshold() -> None:
    crawler = RequestMetadata(user_agent="Bingbot/2.0")

    assert build_analytics_event("abc123", crawler).is_bot is True
    assert build_analytics_event("abc123", crawler, bot_score_threshold=0.99).is_bot is False
    assert build_analytics_event("abc123", None, bot_score_threshold=0.5).is_bot is True


@pytest.mark.asyncio
async def test_emit_publishes_keyed_json(metadata: RequestMetadata) -> None:
    producer = AsyncMock(spec=AIOKafkaProducer)
    emitter = AnalyticsEmitter("kafka:9092", "link_analytics", producer=producer)
    event = build_analytics_event("abc123", metadata, now=NOW)

    assert await emitter.emit(event) is True

    producer.send_and_wait.assert_awaited_once()
    args, kwargs = producer.send_and_wait.await_args
    assert args[0] == "link_analytics"
    assert args[1]["short_code"] == "abc123"
    assert args[1]["timestamp"] == "2026-01-01T12:00:00Z"
    assert kwargs["key"] == b"abc123"


@pytest.mark.asyncio
async def test_emit_failure_returns_false() -> None:
    producer = AsyncMock(spec=AIOKafkaProducer)
    producer.send_and_wait.side_effect = KafkaConnectionError("broker down")
    emitter = AnalyticsEmitter("kafka:9092", "link_analytics", producer=producer)

    assert await emitter.emit(build_analytics_event("abc123", now=NOW)) is False


@pytest.mark.asyncio
async def test_emit_without_producer_drops_event() -> None:
    emitter = AnalyticsEmitter("kafka:9092", "link_analytics")

    assert emitter.started is False
    assert await emitter.emit(build_analytics_event("abc123", now=NOW)) is False


@pytest.mark.asyncio
async def test_start_failure_leaves_emitter_disabled() -> None:
    producer = MagicMock()
    producer.start = AsyncMock(side_effect=KafkaConnectionError("broker down"))
    producer.stop = AsyncMock()

    with patch("linkresolver.analytics.AIOKafkaProducer", return_value=producer):
        emitter = AnalyticsEmitter("kafka:9092", "link_analytics")
        await emitter.start()

    assert emitter.started is False
    producer.stop.assert_awaited_once()


@pytest.mark.asyncio
async def test_start_and_stop() -> None:
    producer = MagicMock()
    producer.start = AsyncMock()
    producer.stop = AsyncMock()

    with patch("linkresolver.analytics.AIOKafkaProducer", return_value=producer):
        emitter = AnalyticsEmitter("kafka:9092", "link_analytics")
        await emitter.start()
        assert emitter.started is True

        await emitter.stop()

    assert emitter.started is False
    producer.stop.assert_awaited_once()
