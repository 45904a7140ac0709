"""
Alembic environment configuration for Rehearsal Scheduler.

This module configures Alembic to work with our SQLAlchemy models and database.
"""

import logging
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context

# Import application config to get database URL
from rehearsal_scheduler.config import get_settings

# Import Base for autogenerate support
from rehearsal_scheduler.models.base import Base

# Import all models so Alembic can detect them for autogenerate
from rehearsal_scheduler.models.bands import User, Band, BandMember, Venue  # noqa: F401
from rehearsal_scheduler.models.rehearsals import RehearsalSeries, RehearsalOccurrence  # noqa: F401
from rehearsal_scheduler.models.responses import (  # noqa: F401
    Invitation,
    AvailabilityResponse,
    AttendanceRecord,
)
from rehearsal_scheduler.models.conflicts import SchedulingConflict  # noqa: F401
from rehearsal_scheduler.models.subscriptions import BandSubscription  # noqa: F401

# Alembic Config object
config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

# Database URL comes from application settings (overrides alembic.ini)
settings = get_settings()
config.set_main_option("sqlalchemy.url", settings.database_url)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """
    Run migrations in 'offline' mode.

    Configures the context with just a URL, so no DBAPI is needed.
    Calls to context.execute() emit the given string to the script output.
    """
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,  # Required for SQLite ALTER TABLE support
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode against a live connection."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,  # Don't pool connections for migrations
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=True,
            compare_type=True,
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    logger.info("Running migrations offline")
    run_migrations_offline()
else:
    logger.info("Running migrations online")
    run_migrations_online()
