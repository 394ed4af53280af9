"""Database configuration and session management for the link resolver.

This module provides SQLAlchemy async engine setup, the session factory used by
the durable store client, and database lifecycle operations using PostgreSQL
as the backend.

Flow Diagram: Store Lookup Session
==================================
::
    ┌─────────────┐
    │ Cache miss  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ LinkStore   │
    │ (breaker)   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ async_      │
    │ session()   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ SELECT ...  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Auto-close   │
    │ (async with) │
    └─────────────┘

How to Use
===========
**Step 1: Initialize on startup**::
    await init_db()  # Creates tables

**Step 2: Open a session on demand**::
    async with async_session() as session:
        result = await session.execute(select(ShortLink))

**Step 3: Cleanup on shutdown**::
    await close_db()

Key Behaviours
===============
- Sessions are only opened on a cache miss, never on the cache-hit path.
- Connection pooling is configured for production workloads.
- Tables are created automatically on application startup.
- Engine is properly disposed on application shutdown.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
"""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from linkresolver.config import get_settings

__all__ = ["Base", "async_session", "engine", "init_db", "close_db"]

settings = get_settings()

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    pool_size=settings.DATABASE_POOL_SIZE,
    max_overflow=settings.DATABASE_MAX_OVERFLOW,
    pool_pre_ping=True,
)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def init_db() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
