"""
Unit tests for database wiring.

The module-level engine is swapped for an in-memory SQLite engine so the
helpers never touch the configured database file.
"""

import pytest
from sqlalchemy import inspect, select, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rehearsal_scheduler import database
from rehearsal_scheduler.config import Settings
from rehearsal_scheduler.models.bands import Band, User
from rehearsal_scheduler.services.notifications import InMemoryNotifier, WebhookNotifier


@pytest.fixture
def memory_engine(monkeypatch):
    engine = database.build_engine(Settings(_env_file=None, database_url="sqlite:///:memory:"))
    monkeypatch.setattr(database, "engine", engine)
    monkeypatch.setattr(
        database,
        "SessionLocal",
        sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine),
    )
    database.init_db()
    yield engine
    engine.dispose()


class TestBuildEngine:
    def test_memory_database_shares_one_connection(self):
        engine = database.build_engine(Settings(_env_file=None, database_url="sqlite:///:memory:"))

        assert isinstance(engine.pool, StaticPool)
        engine.dispose()

    def test_file_database_pools_connections(self, tmp_path):
        engine = database.build_engine(
            Settings(_env_file=None, database_url=f"sqlite:///{tmp_path / 'pool.db'}")
        )

        try:
            assert not isinstance(engine.pool, StaticPool)
            with engine.connect() as connection:
                assert connection.execute(text("PRAGMA foreign_keys")).scalar() == 1
        finally:
            engine.dispose()

    def test_debug_logging_echoes_sql(self):
        engine = database.build_engine(
            Settings(_env_file=None, database_url="sqlite:///:memory:", log_level="DEBUG")
        )

        assert engine.echo is True
        engine.dispose()


class TestDatabaseHelpers:
    def test_init_db_creates_schema(self, memory_engine):
        tables = set(inspect(memory_engine).get_table_names())

        assert {
            "users",
            "bands",
            "band_members",
            "venues",
            "rehearsal_series",
            "rehearsal_occurrences",
            "invitations",
            "availability_responses",
            "attendance_records",
            "scheduling_conflicts",
            "band_subscriptions",
        } <= tables

    def test_context_commits_on_success(self, memory_engine):
        with database.get_db_context() as db:
            db.add(User(display_name="Committed"))

        with database.get_db_context() as db:
            names = db.scalars(select(User.display_name)).all()

        assert names == ["Committed"]

    def test_context_rolls_back_on_error(self, memory_engine):
        with pytest.raises(RuntimeError):
            with database.get_db_context() as db:
                db.add(User(display_name="Discarded"))
                db.flush()
                raise RuntimeError("abort")

        with database.get_db_context() as db:
            assert db.scalars(select(User)).all() == []


class TestOpenScheduling:
    """Test the settings-wired service entry point."""

    def test_service_configured_from_settings(self, memory_engine):
        settings = Settings(
            _env_file=None,
            max_expansion=7,
            lock_timeout_seconds=0.5,
            timezone="Europe/Berlin",
        )
        with database.get_db_context() as db:
            owner = User(display_name="Owner")
            db.add(owner)

        with database.open_scheduling(notifier=InMemoryNotifier(), settings=settings) as service:
            assert service.max_expansion == 7
            assert service.timezone_name == "Europe/Berlin"
            assert service.persistence.lock_timeout == 0.5
            service.create_band(owner.id, "Wired")

        with database.get_db_context() as db:
            assert db.scalars(select(Band.name)).all() == ["Wired"]

    def test_webhooks_by_default(self, memory_engine):
        settings = Settings(_env_file=None, webhook_max_retries=2)

        with database.open_scheduling(settings=settings) as service:
            assert isinstance(service.notifier, WebhookNotifier)
            assert service.notifier.max_retries == 2
            assert service.notifier.persistence is service.persistence
