"""Alembic environment for the token lifecycle schema."""

from __future__ import annotations

import asyncio
import os
from logging.config import fileConfig
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context
from token_lifecycle.infrastructure.db.metadata import metadata

config = context.config
target_metadata = metadata

_DEFAULT_ALEMBIC_URL = "sqlite:///./token_lifecycle.db"
_ASYNC_DRIVERS = ("+asyncpg", "+aiosqlite")

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def _resolve_database_url() -> str:
    """Prefer DATABASE_URL unless a caller already set an explicit URL."""

    load_dotenv(Path(__file__).resolve().parents[1] / ".env")
    configured_url = config.get_main_option("sqlalchemy.url") or _DEFAULT_ALEMBIC_URL
    database_url = os.getenv("DATABASE_URL")
    if database_url and configured_url == _DEFAULT_ALEMBIC_URL:
        config.set_main_option("sqlalchemy.url", database_url)
        return database_url
    return configured_url


def _configure_context(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )


def do_run_migrations(connection: Connection) -> None:
    _configure_context(connection)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_offline(url: str) -> None:
    """Emit migration SQL without a live connection."""

    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    connectable = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


def run_migrations_online(url: str) -> None:
    """Run migrations with the sync or async engine matching the URL driver."""

    if any(driver in url for driver in _ASYNC_DRIVERS):
        asyncio.run(run_async_migrations())
        return

    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        do_run_migrations(connection)


_url = _resolve_database_url()
if context.is_offline_mode():
    run_migrations_offline(_url)
else:
    run_migrations_online(_url)
