"""
Database Persistence Layer - Core Engine.

============================================================
ASYNC DATABASE PERSISTENCE
============================================================

Engine and session factory for the copy-trading record store.

Requirements:
- SQLAlchemy 2.0 async ORM (asyncpg on PostgreSQL, aiosqlite in tests)
- Explicit transaction management
- Hard failures on persistence errors

============================================================
"""

import os
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from dotenv import load_dotenv

from core.exceptions import MissingConfigError, RecordStoreError

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# =============================================================
# DECLARATIVE BASE
# =============================================================


class Base(DeclarativeBase):
    """Base class for ORM models."""
    pass


# =============================================================
# DATABASE ENGINE
# =============================================================

_engine: Optional[AsyncEngine] = None
_SessionFactory: Optional[async_sessionmaker] = None


def get_database_url() -> str:
    """
    Get the async database URL from environment.

    Plain postgresql:// URLs are upgraded to the asyncpg driver.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise MissingConfigError("DATABASE_URL")
    return normalize_database_url(url)


def normalize_database_url(url: str) -> str:
    """Point plain PostgreSQL URLs at the asyncpg driver."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def _redact(url: str) -> str:
    return url.split("@")[-1]


def create_database_engine(
    url: Optional[str] = None,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_recycle: int = 1800,
    echo: bool = False,
) -> AsyncEngine:
    """
    Create an async SQLAlchemy engine.

    Args:
        url: Database URL (defaults to DATABASE_URL)
        pool_size: Number of connections to keep in pool
        max_overflow: Max connections beyond pool_size
        pool_recycle: Recycle connections after N seconds
        echo: Log SQL statements

    Returns:
        AsyncEngine
    """
    database_url = normalize_database_url(url) if url else get_database_url()
    logger.info(f"Creating database engine for: {_redact(database_url)}")

    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)

    return create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_recycle=pool_recycle,
        pool_pre_ping=True,
        echo=echo,
    )


def get_engine() -> AsyncEngine:
    """Get the process-wide engine, creating if necessary."""
    global _engine
    if _engine is None:
        _engine = create_database_engine()
    return _engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


def get_session_factory() -> async_sessionmaker:
    """Get the process-wide session factory, creating if necessary."""
    global _SessionFactory
    if _SessionFactory is None:
        _SessionFactory = create_session_factory(get_engine())
    return _SessionFactory


# =============================================================
# SESSION MANAGEMENT
# =============================================================


@asynccontextmanager
async def transaction_scope(
    session_factory: async_sessionmaker,
    operation: Optional[str] = None,
) -> AsyncIterator[AsyncSession]:
    """
    Session with an explicit transaction boundary.

    Commits only if no exception occurs; rolls back on any.
    SQLAlchemy errors surface as RecordStoreError.

    Usage:
        async with transaction_scope(factory, "insert_execution") as session:
            session.add(model)
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database transaction failed ({operation}), rolling back: {e}")
            await session.rollback()
            raise RecordStoreError(f"Transaction failed: {e}", operation=operation, cause=e) from e
        except Exception:
            await session.rollback()
            raise


# =============================================================
# DATABASE INITIALIZATION
# =============================================================


async def create_all_tables(engine: Optional[AsyncEngine] = None) -> None:
    """
    Create all tables defined in ORM models.

    Raises:
        RecordStoreError if table creation fails
    """
    from . import models  # noqa: F401

    engine = engine or get_engine()
    try:
        logger.info("Creating database tables...")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create database tables: {e}")
        raise RecordStoreError(f"Table creation failed: {e}", operation="create_all_tables") from e


async def dispose_engine() -> None:
    """Close pooled connections of the process-wide engine."""
    global _engine, _SessionFactory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _SessionFactory = None


# =============================================================
# EXPORTS
# =============================================================

__all__ = [
    "Base",
    "get_database_url",
    "normalize_database_url",
    "create_database_engine",
    "get_engine",
    "create_session_factory",
    "get_session_factory",
    "transaction_scope",
    "create_all_tables",
    "dispose_engine",
]
