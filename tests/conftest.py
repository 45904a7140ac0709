"""
Pytest configuration and fixtures for Rehearsal Scheduler tests.

Provides database session fixtures, a controllable clock and sample data
(users, a band, a venue) for testing.
"""

from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest
import sqlalchemy as sa
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from rehearsal_scheduler.models.base import Base
from rehearsal_scheduler.models.bands import User, Band, Venue
from rehearsal_scheduler.services.notifications import InMemoryNotifier
from rehearsal_scheduler.services.persistence import LockRegistry, SQLAlchemyPersistence
from rehearsal_scheduler.services.scheduling import SchedulingService

# Monday 2 March 2026, noon UTC
NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# Configure SQLite to enforce foreign key constraints in tests
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key constraints for SQLite connections."""
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


class FakeClock:
    """Settable UTC clock for the scheduling service."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return now


class RecordingSubscriber:
    """Collects (event_name, payload) pairs published to a band."""

    def __init__(self):
        self.events: list[tuple[str, dict]] = []

    def __call__(self, event_name: str, payload: dict) -> None:
        self.events.append((event_name, payload))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """
    Create a clean database session for each test.

    Uses an in-memory SQLite database that is torn down after each test.

    Yields:
        Session: SQLAlchemy session for database operations
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.rollback()
        session.close()
        # Disable foreign key constraints for drop operations
        with engine.begin() as connection:
            connection.execute(sa.text("PRAGMA foreign_keys=OFF"))
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def persistence(db_session: Session) -> SQLAlchemyPersistence:
    """Persistence over the test session with its own lock registry."""
    return SQLAlchemyPersistence(db_session, lock_timeout=1.0, locks=LockRegistry())


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> InMemoryNotifier:
    return InMemoryNotifier()


@pytest.fixture
def service(persistence, notifier, clock) -> SchedulingService:
    """SchedulingService with a fake clock and in-memory notifier."""
    return SchedulingService(persistence, notifier, clock=clock)


@pytest.fixture
def users(db_session: Session) -> dict[str, User]:
    """
    Create sample users.

    Returns:
        dict: owner, alice, bob, carol, dave
    """
    people = {
        "owner": User(display_name="Olivia Owner", email="olivia@example.com"),
        "alice": User(display_name="Alice Guitar", email="alice@example.com"),
        "bob": User(display_name="Bob Bass", email="bob@example.com"),
        "carol": User(display_name="Carol Keys", email="carol@example.com"),
        "dave": User(display_name="Dave Drums", email="dave@example.com"),
    }
    db_session.add_all(people.values())
    db_session.commit()
    return people


@pytest.fixture
def band(service: SchedulingService, users) -> Band:
    """A band owned by 'owner' with alice and bob as members."""
    band = service.create_band(users["owner"].id, "The Rehearsals", "Practice makes perfect")
    service.add_member(band.id, users["owner"].id, users["alice"].id)
    service.add_member(band.id, users["owner"].id, users["bob"].id)
    return band


@pytest.fixture
def other_band(service: SchedulingService, users) -> Band:
    """A second band owned by dave; alice plays in both."""
    band = service.create_band(users["dave"].id, "Side Project")
    service.add_member(band.id, users["dave"].id, users["alice"].id)
    return band


@pytest.fixture
def venue(db_session: Session) -> Venue:
    """A persisted rehearsal venue."""
    venue = Venue(
        name="Studio B",
        location="12 Harbour Street",
        capacity=8,
        venue_metadata={"backline": ["drums", "bass amp"]},
    )
    db_session.add(venue)
    db_session.commit()
    return venue


@pytest.fixture
def band_events(notifier: InMemoryNotifier, band: Band) -> RecordingSubscriber:
    """Events published to the main band."""
    subscriber = RecordingSubscriber()
    notifier.subscribe(band.id, subscriber)
    return subscriber
