from __future__ import annotations
from logging.config import fileConfig
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine
from alembic import context
from leaps.config import settings
from leaps.db import Base
import leaps.models.user  # ensure models are registered
import leaps.models.activity
import leaps.models.submission
import leaps.models.ledger
import leaps.models.audit
import leaps.models.external_event
import leaps.models.badge
import leaps.models.aggregates

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

def run_migrations_offline():
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()

def do_run_migrations(connection: Connection):
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)
    with context.begin_transaction():
        context.run_migrations()

def _database_url() -> str:
    # `alembic -x url=...` targets another database without touching the environment
    return context.get_x_argument(as_dictionary=True).get("url", settings.database_url)

async def run_migrations_online():
    connectable = create_async_engine(_database_url(), poolclass=pool.NullPool, future=True)
    async with connectable.begin() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()

if context.is_offline_mode():
    run_migrations_offline()
else:
    import asyncio
    asyncio.run(run_migrations_online())
