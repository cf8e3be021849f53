"""Async SQLAlchemy engine and session management.

Provides:
- Base: Declarative base for all tables (tenant isolation is by tenant_id column)
- get_session(): Request-scoped session generator for FastAPI dependencies
- open_session(): First session of a session_factory, closed on exit
- session_scope(): Explicit engine + session lifecycle for batch jobs and scripts
- init_db() / close_db(): Application lifespan hooks
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import aclosing, asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from src.leadsync.config import get_settings

# ── Module-level engine (lazy init, web process only) ──────────────────────

_engine: AsyncEngine | None = None


def get_engine() -> AsyncEngine:
    """Get or create the async engine singleton used by the API process."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.DATABASE_URL,
            pool_size=10,
            max_overflow=5,
            echo=False,
        )
    return _engine


# ── Declarative Base ────────────────────────────────────────────────────────


class Base(DeclarativeBase):
    """Base class for all models. Rows are scoped by an explicit tenant_id."""


# ── Session Factories ───────────────────────────────────────────────────────


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an AsyncSession bound to the shared engine."""
    engine = get_engine()
    async with AsyncSession(engine, expire_on_commit=False) as session:
        yield session


@asynccontextmanager
async def open_session(
    session_factory: Callable[[], AsyncGenerator[AsyncSession, None]],
) -> AsyncGenerator[AsyncSession, None]:
    """Take one session from a session_factory generator.

    The generator is closed when the block exits, so the session is released
    before the caller returns rather than when the generator is collected.
    """
    async with aclosing(session_factory()) as sessions:
        yield await anext(sessions)


@asynccontextmanager
async def session_scope(database_url: str | None = None) -> AsyncGenerator[AsyncSession, None]:
    """Open a dedicated engine and session for one batch run.

    The engine is disposed when the block exits, so a reconciliation job
    owns its connection pool for exactly as long as it runs.
    """
    url = database_url or get_settings().DATABASE_URL
    engine = create_async_engine(url, pool_size=2, max_overflow=0)
    try:
        async with AsyncSession(engine, expire_on_commit=False) as session:
            yield session
    finally:
        await engine.dispose()


# ── Database Initialization ─────────────────────────────────────────────────


async def init_db() -> None:
    """Create tables if they don't exist (development convenience; Alembic owns prod)."""
    import src.leadsync.models  # noqa: F401 -- register tables on Base.metadata

    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of the engine and close all connections."""
    global _engine
    if _engine:
        await _engine.dispose()
        _engine = None
