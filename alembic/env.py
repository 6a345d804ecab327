"""Alembic migration environment configuration (sync SQLAlchemy)."""

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

# Import Base first
from db.base import Base

# Import all models here so Alembic can detect them for autogenerate
from db.models.storage_config import (  # noqa: F401
    ProjectStorageConfigRecord,
    StorageProviderConfigRecord,
)
from packages.storage.settings import get_storage_settings

# this is the Alembic Config object
config = context.config


def _sync_url(url: str) -> str:
    """Swap async drivers for their sync counterparts."""
    return url.replace("+aiosqlite", "").replace("+asyncpg", "+psycopg2")


# Get database URL from environment (takes precedence) or application settings
database_url = os.getenv("DATABASE_URL") or get_storage_settings().database_url
config.set_main_option("sqlalchemy.url", _sync_url(database_url))

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Add your model's MetaData object here for 'autogenerate' support
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode.

    Emits SQL to the script output using only the URL, without a DBAPI.
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (sync)."""
    connectable = create_engine(
        config.get_main_option("sqlalchemy.url"),
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
