"""
Database Infrastructure
=======================

Manages the row store connection, session lifecycle and error translation.

Uses SQLAlchemy 2.0 async. Production runs on PostgreSQL through asyncpg;
tests run the same models on SQLite through aiosqlite.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from config import settings
from core import StoreUnavailableException, RepositoryException


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy models.

    SQLAlchemy 2.0 style using DeclarativeBase.
    """
    pass


# Global engine and session maker
_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Get the database engine.

    Raises:
        RuntimeError: If engine has not been initialized
    """
    if _engine is None:
        raise RuntimeError("Database engine not initialized. Call init_database() first.")
    return _engine


def init_database(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Initialize the database engine and session maker.

    Should be called during application startup.

    Args:
        database_url: Override for ``settings.database_url``

    Returns:
        AsyncEngine: The initialized engine
    """
    global _engine, _session_maker

    # asyncpg expects ssl=, not libpq's sslmode=
    url = (database_url or settings.database_url).replace("sslmode=", "ssl=")

    engine_kwargs = {"echo": settings.debug}
    if not url.startswith("sqlite"):
        engine_kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )

    _engine = create_async_engine(url, **engine_kwargs)

    _session_maker = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    return _engine


async def close_database() -> None:
    """
    Close the database engine and dispose of connections.

    Should be called during application shutdown.
    """
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Async generator for database sessions, for use with FastAPI's Depends().

    Repositories commit their own writes so that a pointer update survives a
    failed audit append; the trailing commit here only flushes reads.

    Yields:
        AsyncSession: SQLAlchemy async session
    """
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with _session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Async context manager for database sessions.

    For use in background jobs (reconciliation) and scripts.

    Usage:
        async with get_session_context() as session:
            ...
    """
    if _session_maker is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")

    async with _session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def translate_db_errors(operation: str) -> AsyncGenerator[None, None]:
    """
    Translate driver errors into the application taxonomy.

    Connection and operational failures become StoreUnavailableException
    (retryable, no assumed state change); any other DBAPI error becomes a
    RepositoryException.

    Usage:
        async with translate_db_errors("append governance event"):
            await session.execute(stmt)
    """
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        raise StoreUnavailableException(
            f"Row store unavailable during {operation}",
            {"operation": operation, "error": str(e.orig) if e.orig else str(e)}
        ) from e
    except DBAPIError as e:
        if e.connection_invalidated:
            raise StoreUnavailableException(
                f"Row store connection lost during {operation}",
                {"operation": operation}
            ) from e
        raise RepositoryException(
            f"Row store error during {operation}",
            {"operation": operation, "error": str(e.orig) if e.orig else str(e)}
        ) from e


async def create_tables() -> None:
    """
    Create all database tables.

    Development and tests only; production schemas are managed by migrations.
    """
    engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
