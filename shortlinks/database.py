"""Database configuration and session management for the short link service.

This module provides SQLAlchemy async engine setup, session management,
and database lifecycle operations using PostgreSQL as the backend.

Flow Diagram — Database Operations
=================================
::
    ┌─────────────┐      ┌──────────────────┐
    │  Request    │      │ Background job   │
    │  handler    │      │ (click / visit)  │
    └──────┬──────┘      └────────┬─────────┘
           ▼                      ▼
    ┌─────────────┐      ┌──────────────────┐
    │ get_db()    │      │ async_session()  │
    │ dependency  │      │ (own session)    │
    └──────┬──────┘      └────────┬─────────┘
           ▼                      ▼
    ┌─────────────────────────────────────┐
    │        shared async engine          │
    └─────────────────────────────────────┘

How to Use
===========
**Step 1 — Initialize on startup**::
    await init_db()  # Creates tables

**Step 2 — Use in FastAPI endpoints**::
    @app.get("/links")
    async def get_links(db: AsyncSession = Depends(get_db)):
        result = await db.execute(select(ShortLink))
        return result.scalars().all()

**Step 3 — Cleanup on shutdown**::
    await close_db()

Key Behaviours
===============
- Request sessions are automatically closed after each request.
- Background jobs never reuse a request session; they open their own from
  the same session factory so they can outlive the request.
- Tables are created automatically on application startup.
- Engine is properly disposed on application shutdown.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    create_engine_for():  Builds an async engine for a database URL.
    get_db():  FastAPI dependency for database sessions.
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlinks.config import get_settings

__all__ = ["Base", "async_session", "close_db", "create_engine_for", "engine", "get_db", "init_db"]

settings = get_settings()


def create_engine_for(database_url: str, echo: bool = False) -> AsyncEngine:
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)
    return create_async_engine(
        database_url,
        echo=echo,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
    )


engine = create_engine_for(settings.DATABASE_URL, echo=settings.DATABASE_ECHO)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


async def init_db(target: AsyncEngine | None = None) -> None:
    # Import models so every table is registered on Base.metadata.
    from shortlinks import models  # noqa: F401

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    await engine.dispose()
