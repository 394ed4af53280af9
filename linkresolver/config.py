"""Configuration management for the link resolver service.

This module provides centralized configuration management using Pydantic BaseSettings
with environment variable support and caching for performance.

Flow Diagram: get_settings()
============================
::
    ┌─────────────┐
    │  Call get_  │
    │  settings() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache  │
    │ (lru_cache)  │
    └──────┬──────┘
    HIT?  │
    ┌─────┴─────┐
    │ NO         │ YES
    ▼            ▼
┌─────────┐  ┌─────────┐
│ Create  │  │ Return  │
│ Settings│  │ cached  │
│ instance│  │ value   │
└─────────┘  └─────────┘

How to Use
===========
**Step 1: Import**::
    from linkresolver.config import get_settings

**Step 2: Get settings**::
    settings = get_settings()
    timeout = settings.STORE_LOOKUP_TIMEOUT_SECONDS

Key Behaviours
===============
- Settings are cached after first access for performance.
- Environment variables override defaults automatically.
- The breaker recovery timeout is configured in milliseconds and exposed in
  seconds through ``circuit_breaker_recovery_timeout_seconds``.

Classes:
    Settings:  Pydantic model for all configuration values.

"""

__all__ = ["Settings", "get_settings"]

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "link-resolver"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # PostgreSQL
    DATABASE_URL: str = "postgresql+asyncpg://linkresolver:linkresolver@db:5432/linkresolver"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis
    REDIS_URL: str = "redis://redis:6379/0"
    CACHE_KEY_PREFIX: str = "link"

    # Short code format
    SHORT_CODE_MIN_LENGTH: int = 3
    SHORT_CODE_MAX_LENGTH: int = 10

    # Durable store protection
    CIRCUIT_BREAKER_FAILURE_THRESHOLD: int = 5
    CIRCUIT_BREAKER_RECOVERY_TIMEOUT_MS: int = 30000
    STORE_LOOKUP_TIMEOUT_SECONDS: float = 3.0

    # Detached cache-warm / analytics tasks
    BACKGROUND_DRAIN_TIMEOUT_SECONDS: float = 5.0

    # Analytics
    BOT_SCORE_THRESHOLD: float = 0.8
    KAFKA_BOOTSTRAP_SERVERS: str = "kafka:9092"
    KAFKA_ANALYTICS_TOPIC: str = "link_analytics"

    # Analytics consumer
    ANALYTICS_CONSUMER_GROUP: str = "link_analytics_consumer"
    ANALYTICS_CONSUMER_NAME: str = "analytics-consumer-1"
    CONSUMER_BATCH_SIZE: int = 500
    CONSUMER_BLOCK_MS: int = 1000
    CONSUMER_METRICS_PORT: int = 9200
    CONSUMER_MAX_ATTEMPTS: int = 5
    CONSUMER_RETRY_BACKOFF_SECONDS: float = 1.0
    KAFKA_DEAD_LETTER_TOPIC: str = "link_analytics_dead_letter"

    # ClickHouse analytics storage (consumer only)
    CLICKHOUSE_URL: str = "http://clickhouse:8123"
    CLICKHOUSE_USERNAME: str = "default"
    CLICKHOUSE_PASSWORD: str = "clickhouse"
    CLICKHOUSE_DATABASE: str = "default"

    METRICS_ENABLED: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
    )

    @property
    def circuit_breaker_recovery_timeout_seconds(self) -> float:
        return self.CIRCUIT_BREAKER_RECOVERY_TIMEOUT_MS / 1000


@lru_cache()
def get_settings() -> Settings:
    return Settings()
