"""Alembic environment -- async migrations over asyncpg.

DATABASE_URL comes from the environment or, failing that, from
``app.config`` (which loads .env).  SQLAlchemy needs the
``postgresql+asyncpg://`` scheme, so plain postgres URLs are rewritten.
"""

import asyncio
import os
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import async_engine_from_config

sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

_ASYNC_SCHEME = "postgresql+asyncpg://"


def _get_url() -> str:
    url = os.getenv("DATABASE_URL", "")
    if not url:
        from app.config import settings

        url = settings.DATABASE_URL
    if not url:
        raise RuntimeError("DATABASE_URL is not set.  Export it or add it to .env.")
    for prefix in ("postgres://", "postgresql://"):
        if url.startswith(prefix):
            return _ASYNC_SCHEME + url[len(prefix):]
    return url


def run_migrations_offline() -> None:
    """Emit SQL without connecting (``alembic upgrade --sql``)."""
    context.configure(
        url=_get_url(),
        target_metadata=None,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _run_sync(connection) -> None:  # type: ignore[no-untyped-def]
    context.configure(connection=connection, target_metadata=None)
    with context.begin_transaction():
        context.run_migrations()


async def _run_async() -> None:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = _get_url()
    engine = async_engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
    async with engine.connect() as connection:
        await connection.run_sync(_run_sync)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(_run_async())
