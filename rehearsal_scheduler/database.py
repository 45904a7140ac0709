"""
Database engine, sessions and the scheduling entry point.

Provides:
- build_engine() for the configured backend (SQLite or PostgreSQL)
- SessionLocal factory bound to the application engine
- get_db_context() for one committed-or-rolled-back session
- open_scheduling() yielding a SchedulingService wired from Settings
- init_db() for development databases (production uses Alembic)
"""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from rehearsal_scheduler.config import Settings, get_settings
from rehearsal_scheduler.services.notifications import Notifier, WebhookNotifier
from rehearsal_scheduler.services.persistence import SQLAlchemyPersistence
from rehearsal_scheduler.services.scheduling import SchedulingService

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    """Enable foreign key constraints (ON DELETE CASCADE / SET NULL) in SQLite."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(settings: Settings) -> Engine:
    """
    Create an engine for settings.database_url.

    SQLite files get a connection per session so concurrent commits really
    are separate transactions; an in-memory SQLite database has to share one
    connection. PostgreSQL gets a pre-pinged, recycled pool.
    """
    url = settings.database_url
    echo = settings.log_level == "DEBUG"

    if url.lower().startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}, "echo": echo}
        if ":memory:" in url or url.rstrip("/").lower() == "sqlite:":
            options["poolclass"] = StaticPool
        engine = create_engine(url, **options)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    return create_engine(
        url,
        pool_size=5,
        pool_recycle=3600,  # Recycle connections after 1 hour
        pool_pre_ping=True,
        echo=echo,
    )


settings = get_settings()

if settings.is_production:
    settings.validate_production_config()

engine = build_engine(settings)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    expire_on_commit=False,
    bind=engine,
)


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    Context manager for database sessions.

    Commits on normal exit, rolls back if the block raises.

    Yields:
        Session: SQLAlchemy database session
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@contextmanager
def open_scheduling(
    notifier: Optional[Notifier] = None,
    settings: Optional[Settings] = None,
) -> Generator[SchedulingService, None, None]:
    """
    Open a session and yield a SchedulingService configured from Settings.

    Lock wait, quorum, expansion cap, commit deadline and timezone all come
    from settings. Without an explicit notifier, events go to the bands'
    webhook subscriptions.

    Usage for scripts and background workers:
        with open_scheduling() as service:
            service.complete_elapsed()
    """
    settings = settings or get_settings()
    with get_db_context() as db:
        persistence = SQLAlchemyPersistence.from_settings(db, settings)
        if notifier is None:
            notifier = WebhookNotifier.from_settings(persistence, settings)
        yield SchedulingService.from_settings(persistence, notifier, settings)


def init_db() -> None:
    """
    Create all tables on the application engine.

    Useful for development and tests. In production, use Alembic migrations.
    """
    from rehearsal_scheduler.models import Base

    logger.info("Creating database tables...")
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")
