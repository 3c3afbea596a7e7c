"""Engine, session and transaction helpers for the SQL payment store."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from sqlalchemy import MetaData
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import StorefrontSettings

# Seconds a SQLite connection waits on a locked database before failing.
SQLITE_BUSY_TIMEOUT = 30


@dataclass(slots=True)
class DatabaseHandle:
    engine: AsyncEngine
    sessions: async_sessionmaker[AsyncSession]


_HANDLES: dict[str, DatabaseHandle] = {}


def _engine_options(database_url: str) -> dict[str, Any]:
    if make_url(database_url).get_backend_name() == "sqlite":
        return {"connect_args": {"timeout": SQLITE_BUSY_TIMEOUT}}
    return {"pool_pre_ping": True}


def get_database(database_url: str) -> DatabaseHandle:
    """Return the engine and session factory for ``database_url``, creating them once."""

    handle = _HANDLES.get(database_url)
    if handle is None:
        engine = create_async_engine(database_url, **_engine_options(database_url))
        handle = DatabaseHandle(engine=engine, sessions=async_sessionmaker(engine, expire_on_commit=False))
        _HANDLES[database_url] = handle
    return handle


def create_engine(database_url: str) -> AsyncEngine:
    return get_database(database_url).engine


def get_session_factory(database_url: str) -> async_sessionmaker[AsyncSession]:
    return get_database(database_url).sessions


@asynccontextmanager
async def unit_of_work(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    """Run the enclosed statements as one transaction.

    Commits when the block exits normally and rolls back on any exception, so a
    multi-row write is either fully visible or not at all.
    """

    async with session_factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        await session.commit()


async def create_schema(database_url: str, metadata: MetaData) -> None:
    async with create_engine(database_url).begin() as conn:
        await conn.run_sync(metadata.create_all)


def resolve_database_url(settings: StorefrontSettings, fallback: str) -> str:
    return settings.database_url or fallback


async def dispose_engines() -> None:
    """Dispose every cached engine; called on shutdown and between tests."""

    handles = list(_HANDLES.values())
    _HANDLES.clear()
    for handle in handles:
        await handle.engine.dispose()
