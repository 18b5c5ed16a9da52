"""Alembic environment for the billing database (async MySQL).

Online migrations run through aiomysql; offline SQL generation swaps the
driver for pymysql. DATABASE_URL comes from the environment or .env.
"""

import asyncio
import os
from logging.config import fileConfig

from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config
from sqlmodel import SQLModel

from alembic import context

load_dotenv()

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Every table must be registered on SQLModel.metadata for autogenerate
from billing.models.fee import PlatformFee  # noqa: F401, E402
from billing.models.payout import PayoutRequest, PayoutRequestStatusHistory  # noqa: F401, E402
from billing.models.subscription import (  # noqa: F401, E402
    SubscriptionPlan,
    SubscriptionPrice,
    UserSubscription,
)
from billing.models.token import PaymentToken  # noqa: F401, E402
from billing.models.transaction import Transaction  # noqa: F401, E402
from billing.models.wallet import Currency, WalletBalance  # noqa: F401, E402

target_metadata = SQLModel.metadata

DATABASE_URL = os.getenv("DATABASE_URL", "")


def get_sync_url() -> str:
    """Offline mode renders SQL without a DBAPI connection: use pymysql."""
    return DATABASE_URL.replace("+aiomysql", "+pymysql")


def configure_context(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit the migration SQL to stdout."""
    configure_context(
        url=get_sync_url(),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    configure_context(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Apply migrations over an aiomysql connection."""
    configuration = config.get_section(config.config_ini_section, {})
    configuration["sqlalchemy.url"] = DATABASE_URL

    connectable = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
