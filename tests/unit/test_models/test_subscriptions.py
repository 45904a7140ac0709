"""
Unit tests for BandSubscription model.
"""

import pytest
from sqlalchemy.orm import Session

from rehearsal_scheduler.models.bands import Band, User
from rehearsal_scheduler.models.subscriptions import BandSubscription


@pytest.fixture
def subscription(db_session: Session) -> BandSubscription:
    owner = User(display_name="Manager")
    db_session.add(owner)
    db_session.commit()
    band = Band(name="Subscribed Band", owner_id=owner.id)
    db_session.add(band)
    db_session.commit()

    subscription = BandSubscription(
        band_id=band.id,
        url="https://hooks.example.com/rehearsals",
        secret="s3cret",
    )
    db_session.add(subscription)
    db_session.commit()
    return subscription


class TestBandSubscription:
    """Test BandSubscription model functionality."""

    def test_defaults(self, subscription: BandSubscription):
        assert subscription.active is True
        assert subscription.failure_count == 0
        assert subscription.last_triggered is None
        assert "rehearsal.scheduled" in subscription.event_type_list
        assert "availability.updated" in subscription.event_type_list

    def test_should_trigger(self, subscription: BandSubscription):
        subscription.event_types = "rehearsal.cancelled, rehearsal.rescheduled"

        assert subscription.should_trigger("rehearsal.cancelled")
        assert not subscription.should_trigger("rehearsal.scheduled")

    def test_inactive_never_triggers(self, subscription: BandSubscription):
        subscription.active = False

        assert not subscription.should_trigger("rehearsal.scheduled")

    def test_record_success_resets_failures(self, subscription: BandSubscription):
        subscription.failure_count = 4

        subscription.record_success()

        assert subscription.failure_count == 0
        assert subscription.last_triggered is not None

    def test_disabled_after_ten_failures(self, subscription: BandSubscription):
        for _ in range(9):
            subscription.record_failure()
        assert subscription.active is True

        subscription.record_failure()

        assert subscription.failure_count == 10
        assert subscription.active is False
