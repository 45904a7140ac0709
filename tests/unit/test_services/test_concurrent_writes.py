"""
Unit tests for concurrent writers, each with its own session.

Uses a file-backed SQLite database so every thread gets a real connection
and transaction of its own. The threads share one LockRegistry, as
services in one process do.

Tests:
- Concurrent first availability answers for the same member
- Two bands committing overlapping slots at the same venue
- The same series committed twice at once
"""

import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from rehearsal_scheduler.config import Settings
from rehearsal_scheduler.database import build_engine
from rehearsal_scheduler.domain.errors import InvalidTransition
from rehearsal_scheduler.domain.intervals import Interval
from rehearsal_scheduler.domain.recurrence import Frequency, RecurrenceRule
from rehearsal_scheduler.models.base import Base
from rehearsal_scheduler.models.bands import User, Venue
from rehearsal_scheduler.models.rehearsals import RehearsalOccurrence
from rehearsal_scheduler.models.responses import AvailabilityResponse, Invitation
from rehearsal_scheduler.services.persistence import LockRegistry, SQLAlchemyPersistence
from rehearsal_scheduler.services.scheduling import SchedulingService

START = datetime(2026, 3, 9, 19, 0, tzinfo=timezone.utc)
SLOT = Interval(START, START + timedelta(hours=2))
ROUNDS = 10


class SharedDatabase:
    """A file database plus a factory for independent scheduling services."""

    def __init__(self, session_factory, clock):
        self.session_factory = session_factory
        self.locks = LockRegistry()
        self.clock = clock

    def service(self, session) -> SchedulingService:
        persistence = SQLAlchemyPersistence(session, lock_timeout=5.0, locks=self.locks)
        return SchedulingService(persistence, clock=self.clock)

    def run_concurrently(self, *calls):
        """Run each call(service) in its own thread and session, released together."""
        barrier = threading.Barrier(len(calls))
        results = [None] * len(calls)
        errors = [None] * len(calls)

        def worker(index, call):
            session = self.session_factory()
            try:
                service = self.service(session)
                barrier.wait()
                results[index] = call(service)
            except Exception as e:
                errors[index] = e
            finally:
                session.close()

        threads = [threading.Thread(target=worker, args=(i, c)) for i, c in enumerate(calls)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)
        return results, errors


@pytest.fixture
def shared_db(tmp_path, clock):
    settings = Settings(_env_file=None, database_url=f"sqlite:///{tmp_path / 'concurrency.db'}")
    engine = build_engine(settings)
    Base.metadata.create_all(bind=engine)
    try:
        yield SharedDatabase(sessionmaker(bind=engine, autoflush=False, expire_on_commit=False), clock)
    finally:
        engine.dispose()


@pytest.fixture
def setup_session(shared_db):
    session = shared_db.session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def people(setup_session):
    people = {
        name: User(display_name=name.title(), email=f"{name}@example.com")
        for name in ("owner", "alice", "carol")
    }
    setup_session.add_all(people.values())
    setup_session.commit()
    return {name: user.id for name, user in people.items()}


class TestConcurrentAvailability:
    def test_first_answers_race_keeps_newest(self, shared_db, setup_session, people):
        service = shared_db.service(setup_session)
        band = service.create_band(people["owner"], "Racers")
        service.add_member(band.id, people["owner"], people["alice"])
        result = service.schedule_series(
            people["owner"],
            band.id,
            SLOT,
            rule=RecurrenceRule(Frequency.WEEKLY, occurrence_count=ROUNDS),
        )
        occurrence_ids = [o.id for o in result.committed]
        alice = people["alice"]
        now = shared_db.clock.now
        later = now + timedelta(seconds=1)

        failures = []
        for occurrence_id in occurrence_ids:
            _, errors = shared_db.run_concurrently(
                lambda s, o=occurrence_id: s.record_availability(o, alice, "tentative", responded_at=now),
                lambda s, o=occurrence_id: s.record_availability(o, alice, "available", responded_at=later),
            )
            failures.extend(e for e in errors if e is not None)

        assert failures == []
        setup_session.expire_all()
        rows = setup_session.scalars(select(AvailabilityResponse)).all()
        assert len(rows) == ROUNDS
        assert {(r.status, r.responded_at) for r in rows} == {("available", later)}


class TestConcurrentCommits:
    def test_overlapping_venue_slots_commit_once(self, shared_db, setup_session, people):
        service = shared_db.service(setup_session)
        venue = Venue(name="Shared Room")
        setup_session.add(venue)
        setup_session.commit()
        ours = service.create_band(people["owner"], "Ours")
        theirs = service.create_band(people["carol"], "Theirs")
        late = Interval(SLOT.start + timedelta(hours=1), SLOT.end + timedelta(hours=1))
        first = service.schedule_series(
            people["owner"], ours.id, SLOT, venue_id=venue.id, auto_commit=False
        ).series.id
        second = service.schedule_series(
            people["carol"], theirs.id, late, venue_id=venue.id, auto_commit=False
        ).series.id

        results, errors = shared_db.run_concurrently(
            lambda s: len(s.commit_series(first, people["owner"]).committed),
            lambda s: len(s.commit_series(second, people["carol"]).committed),
        )

        assert errors == [None, None]
        assert sorted(results) == [0, 1]
        setup_session.expire_all()
        confirmed = setup_session.scalars(
            select(RehearsalOccurrence).where(
                RehearsalOccurrence.venue_id == venue.id,
                RehearsalOccurrence.status == "confirmed",
            )
        ).all()
        assert len(confirmed) == 1

    def test_same_series_committed_twice(self, shared_db, setup_session, people):
        service = shared_db.service(setup_session)
        band = service.create_band(people["owner"], "Twice")
        service.add_member(band.id, people["owner"], people["alice"])
        series_id = service.schedule_series(
            people["owner"],
            band.id,
            SLOT,
            rule=RecurrenceRule(Frequency.WEEKLY, occurrence_count=3),
            auto_commit=False,
        ).series.id

        results, errors = shared_db.run_concurrently(
            lambda s: len(s.commit_series(series_id, people["owner"]).committed),
            lambda s: len(s.commit_series(series_id, people["alice"]).committed),
        )

        assert [r for r in results if r is not None] == [3]
        assert [type(e) for e in errors if e is not None] == [InvalidTransition]
        setup_session.expire_all()
        assert len(setup_session.scalars(select(Invitation)).all()) == 6
