"""
Alembic environment for the SiteScope run store (async, asyncpg).

    alembic upgrade head
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from sitescope.core.config import get_settings
from sitescope.core.database import Base
from sitescope.models import models  # noqa: F401  registers every table on Base.metadata

settings = get_settings()
config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

CONFIGURE_OPTIONS = {
    "target_metadata": Base.metadata,
    "compare_type": True,
}


def _migrate() -> None:
    with context.begin_transaction():
        context.run_migrations()


def run_offline() -> None:
    """Emit SQL to stdout instead of connecting."""
    context.configure(
        url=settings.postgres_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **CONFIGURE_OPTIONS,
    )
    _migrate()


def _run_sync(connection: Connection) -> None:
    context.configure(connection=connection, **CONFIGURE_OPTIONS)
    _migrate()


async def run_online() -> None:
    engine = create_async_engine(settings.postgres_url, poolclass=pool.NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_run_sync)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    asyncio.run(run_online())
