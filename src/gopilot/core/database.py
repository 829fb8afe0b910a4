"""
Database Engine and Session Management

Async SQLAlchemy engine shared by the API, plus the `get_db` dependency.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from gopilot.config import settings


def configure_sqlite(async_engine: AsyncEngine) -> None:
    """Let SQLAlchemy own transaction boundaries on SQLite.

    The sqlite3 driver defers BEGIN until the first DML statement, which breaks
    SAVEPOINT handling. Emitting BEGIN ourselves restores nested transactions.
    """

    @event.listens_for(async_engine.sync_engine, "connect")
    def _on_connect(dbapi_connection: Any, connection_record: Any) -> None:  # noqa: ARG001
        dbapi_connection.isolation_level = None

    @event.listens_for(async_engine.sync_engine, "begin")
    def _on_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL."""
    async_engine = create_async_engine(url, echo=echo, pool_pre_ping=not url.startswith("sqlite"))
    if url.startswith("sqlite"):
        configure_sqlite(async_engine)
    return async_engine


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

async_session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for one request."""
    async with async_session_factory() as session:
        yield session


async def close_db() -> None:
    """Dispose of the connection pool."""
    await engine.dispose()
