"""
Unit tests for the SQLAlchemy persistence collaborator.

Tests:
- get/query/upsert/delete/refresh outside a unit of work
- A failed commit rolls the session back
- with_exclusive() commits on success, rolls back on failure
- Nested units of work commit once at the outermost level
- Lock timeouts and release
"""

import uuid

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from rehearsal_scheduler.config import Settings
from rehearsal_scheduler.domain.errors import SeriesCommitFailed
from rehearsal_scheduler.models.bands import User, Venue
from rehearsal_scheduler.services.persistence import LockRegistry, SQLAlchemyPersistence


class TestBasicOperations:
    """Test get/query/upsert/delete."""

    def test_upsert_commits_immediately(self, persistence: SQLAlchemyPersistence, db_session: Session):
        user = persistence.upsert(User(display_name="Committed"))

        db_session.rollback()

        assert persistence.get(User, user.id) is not None

    def test_get_missing_returns_none(self, persistence: SQLAlchemyPersistence):
        assert persistence.get(User, uuid.uuid4()) is None
        assert persistence.get(User, None) is None

    def test_get_hides_soft_deleted(self, persistence: SQLAlchemyPersistence):
        user = persistence.upsert(User(display_name="Ghost"))
        user.soft_delete()
        persistence.upsert(user)

        assert persistence.get(User, user.id) is None

    def test_query_filters_orders_and_limits(self, persistence: SQLAlchemyPersistence):
        persistence.upsert_all([
            Venue(name="Studio C", capacity=4),
            Venue(name="Studio A", capacity=10),
            Venue(name="Studio B", capacity=8),
        ])

        rows = persistence.query(Venue, Venue.capacity >= 5, order_by=Venue.name)
        first = persistence.query(Venue, order_by=[Venue.capacity.desc()], limit=1)

        assert [v.name for v in rows] == ["Studio A", "Studio B"]
        assert [v.name for v in first] == ["Studio A"]

    def test_query_excludes_soft_deleted(self, persistence: SQLAlchemyPersistence):
        kept = persistence.upsert(Venue(name="Kept"))
        gone = persistence.upsert(Venue(name="Gone"))
        gone.soft_delete()
        persistence.upsert(gone)

        assert [v.id for v in persistence.query(Venue)] == [kept.id]

    def test_delete(self, persistence: SQLAlchemyPersistence):
        venue = persistence.upsert(Venue(name="Temporary"))

        assert persistence.delete(Venue, venue.id) is True
        assert persistence.delete(Venue, venue.id) is False
        assert persistence.query(Venue) == []

    def test_failed_commit_leaves_session_usable(self, persistence: SQLAlchemyPersistence):
        persistence.upsert(User(display_name="First", email="same@example.com"))

        with pytest.raises(IntegrityError):
            persistence.upsert(User(display_name="Second", email="same@example.com"))

        persistence.upsert(User(display_name="After"))
        names = sorted(u.display_name for u in persistence.query(User))
        assert names == ["After", "First"]

    def test_refresh_discards_unsaved_changes(self, persistence: SQLAlchemyPersistence):
        venue = persistence.upsert(Venue(name="Kept"))
        venue.name = "Unsaved"

        persistence.refresh(venue)

        assert venue.name == "Kept"

    def test_from_settings_uses_lock_timeout(self, db_session: Session):
        settings = Settings(_env_file=None, lock_timeout_seconds=0.25)

        persistence = SQLAlchemyPersistence.from_settings(db_session, settings)

        assert persistence.lock_timeout == 0.25
        assert persistence.session is db_session


class TestWithExclusive:
    """Test the exclusive unit of work."""

    def test_returns_result_and_commits(self, persistence: SQLAlchemyPersistence, db_session: Session):
        def work():
            persistence.upsert(Venue(name="Inside"))
            assert persistence.in_unit_of_work
            return "done"

        assert persistence.with_exclusive("venue:new", work) == "done"
        db_session.rollback()

        assert [v.name for v in persistence.query(Venue)] == ["Inside"]
        assert not persistence.in_unit_of_work

    def test_exception_rolls_back_everything(self, persistence: SQLAlchemyPersistence):
        def work():
            persistence.upsert(Venue(name="First"))
            persistence.upsert(Venue(name="Second"))
            raise ValueError("boom")

        with pytest.raises(ValueError, match="boom"):
            persistence.with_exclusive("band:x", work)

        assert persistence.query(Venue) == []

    def test_database_error_becomes_commit_failure(self, persistence: SQLAlchemyPersistence):
        def work():
            persistence.upsert(Venue(name="Doomed"))
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        with pytest.raises(SeriesCommitFailed) as exc_info:
            persistence.with_exclusive("band:x", work)

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.original_error, OperationalError)
        assert persistence.query(Venue) == []

    def test_nested_unit_commits_with_outer(self, persistence: SQLAlchemyPersistence):
        """A failure after a nested block also discards the nested writes."""

        def inner():
            persistence.upsert(Venue(name="Nested"))

        def outer():
            persistence.with_exclusive("venue:inner", inner)
            raise RuntimeError("outer failed")

        with pytest.raises(RuntimeError):
            persistence.with_exclusive("band:outer", outer)

        assert persistence.query(Venue) == []

    def test_lock_timeout(self, db_session: Session):
        registry = LockRegistry()
        persistence = SQLAlchemyPersistence(db_session, lock_timeout=0.01, locks=registry)
        calls = []
        held = registry.get("band:busy")
        held.acquire()
        try:
            with pytest.raises(SeriesCommitFailed, match="band:busy"):
                persistence.with_exclusive("band:busy", lambda: calls.append("ran"))
        finally:
            held.release()

        assert calls == []

    def test_locks_released_after_failure(self, db_session: Session):
        registry = LockRegistry()
        persistence = SQLAlchemyPersistence(db_session, locks=registry)

        def fail():
            raise ValueError("x")

        with pytest.raises(ValueError):
            persistence.with_exclusive(["band:a", "venue:b"], fail)

        assert not registry.get("band:a").locked()
        assert not registry.get("venue:b").locked()

    def test_duplicate_keys_acquired_once(self, persistence: SQLAlchemyPersistence):
        """Passing the same key twice must not deadlock on a non-reentrant lock."""
        result = persistence.with_exclusive(["band:a", "band:a"], lambda: 42, timeout=0.1)

        assert result == 42


class TestLockRegistry:
    def test_same_key_same_lock(self):
        registry = LockRegistry()

        assert registry.get("band:1") is registry.get("band:1")
        assert registry.get("band:1") is not registry.get("band:2")
