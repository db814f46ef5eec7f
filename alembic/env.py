"""Alembic migration environment for both SQLite (dev) and PostgreSQL (prod).

Run migrations:
    # From the repository root:
    alembic upgrade head          # apply all pending migrations
    alembic downgrade -1          # roll back one revision

Environment variables (same as the worker):
    DATABASE_URL     Target database URL

The env.py uses the *synchronous* URL from settings.sync_db_url() because
Alembic's built-in context.run_migrations() is synchronous.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from dicehelper.config import ConfigurationError, settings
from dicehelper.db.models import Base

# ── Alembic Config ──────────────────────────────────────────────────────────
config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

if not settings.DATABASE_URL:
    raise ConfigurationError("DATABASE_URL must be set to run migrations")
config.set_main_option("sqlalchemy.url", settings.sync_db_url())


def run_migrations_offline() -> None:
    """Generate SQL script without connecting to the DB.

    Usage:  alembic upgrade head --sql
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=True,  # needed for SQLite ALTER TABLE support
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations against a live DB connection."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=settings.is_sqlite,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
