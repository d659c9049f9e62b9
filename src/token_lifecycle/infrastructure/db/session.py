"""Async SQLAlchemy session factory helpers."""

from __future__ import annotations

from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)


def create_session_factory(
    database_url: str,
    *,
    echo: bool = False,
) -> async_sessionmaker[AsyncSession]:
    """Create a reusable async session factory for the provided database URL."""

    engine = create_async_engine(database_url, echo=echo, pool_pre_ping=True)
    if make_url(database_url).get_backend_name() == "sqlite":
        _begin_sqlite_transactions_immediately(engine)
    return async_sessionmaker(engine, expire_on_commit=False)


def _begin_sqlite_transactions_immediately(engine: AsyncEngine) -> None:
    """Take the SQLite write lock when a transaction starts, not at its first write.

    Deferred transactions let two read-then-write units interleave their reads,
    which breaks the session cap and other check-then-act sequences.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(connection: Connection) -> None:
        connection.exec_driver_sql("BEGIN IMMEDIATE")
