"""Engine and unit-of-work sessions for the relational triage store."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

from threatlens.config import DatabaseConfig, get_config

logger = structlog.get_logger()

_database: Optional[DatabaseConfig] = None
_engine: Optional[AsyncEngine] = None
_sessions: Optional[async_sessionmaker[AsyncSession]] = None


def configure_database(database: DatabaseConfig) -> None:
    """Select the database for every later session.

    Call before the first session is opened; an engine that already exists
    keeps its settings until ``close_db``.
    """
    global _database
    _database = database


def get_database_config() -> DatabaseConfig:
    """Settings from ``configure_database``, else from the loaded config."""
    return _database or get_config().database


def engine_options(database: DatabaseConfig) -> dict[str, Any]:
    """Keyword arguments for ``create_async_engine``.

    Without a pool size every session opens its own connection, which suits
    the one-shot CLI commands. The long-running scheduler sets a pool.
    """
    options: dict[str, Any] = {"echo": database.echo}
    if database.pool_size is None:
        options["poolclass"] = NullPool
    else:
        options["pool_size"] = database.pool_size
        options["pool_pre_ping"] = True
    return options


def get_async_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        database = get_database_config()
        _engine = create_async_engine(database.url, **engine_options(database))
    return _engine


def _session_maker() -> async_sessionmaker[AsyncSession]:
    global _sessions
    if _sessions is None:
        _sessions = async_sessionmaker(get_async_engine(), expire_on_commit=False)
    return _sessions


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """One unit of work: commit when the block exits, roll back if it raises."""
    async with _session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create the alert, incident, mapping and activity tables if missing."""
    from threatlens.persistence import models  # noqa: F401

    async with get_async_engine().begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("database_schema_ready", tables=sorted(SQLModel.metadata.tables))


async def close_db() -> None:
    global _engine, _sessions
    if _engine is None:
        return
    await _engine.dispose()
    _engine = None
    _sessions = None
