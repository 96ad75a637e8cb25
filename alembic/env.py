import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from wallet_ledger.core.config import config as app_config
from wallet_ledger.core.database import Base
import wallet_ledger.models  # noqa: F401  реєструє таблиці в Base.metadata


config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    # alembic -x db_url=sqlite+aiosqlite:///./ledger.db upgrade head
    return context.get_x_argument(as_dictionary=True).get("db_url") or app_config.DATABASE_URL


def configure(url: str, **kwargs):
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        # ALTER у sqlite можливий лише через batch-режим
        render_as_batch=url.startswith("sqlite"),
        **kwargs,
    )


def run_migrations_offline() -> None:
    url = get_url()
    configure(
        url,
        url=url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    configure(get_url(), connection=connection)

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    connectable = create_async_engine(get_url(), poolclass=pool.NullPool)

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
