"""Async engine and session lifecycle.

One engine and one sessionmaker per process, created lazily on first use.
``get_async_session`` is the FastAPI dependency: a request's unit of work
commits when the handler returns and rolls back if it raises.

SQLite URLs (``sqlite+aiosqlite://``) are accepted for local runs and the
simulation; they get no pool sizing because aiosqlite uses a static pool.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from keywork.config import get_settings
from keywork.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = get_logger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        options: dict[str, Any] = {"echo": settings.db_echo_sql}
        if not settings.is_sqlite:
            options.update(
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_timeout=settings.db_pool_timeout,
                pool_pre_ping=True,
            )
        _engine = create_async_engine(settings.database_url, **options)
        logger.info(
            "database.engine_created",
            dialect=_engine.dialect.name,
            pooled=not settings.is_sqlite,
        )
    return _engine


def _get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=_get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
    return _session_factory


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for code that runs outside a request (MCP tools, scripts)."""
    return _get_session_factory()


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield one session per request; commit on success, roll back on error."""
    async with _get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create the engine and, in development, any missing tables.

    Staging and production schemas are owned by Alembic.
    """
    from keywork.infrastructure.database.orm_models import Base

    engine = _get_engine()
    if get_settings().is_development:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("database.tables_created", tables=len(Base.metadata.tables))
    else:
        logger.info("database.skipping_create_all", reason="schema managed by alembic")


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("database.engine_disposed")
    _engine = None
    _session_factory = None
