"""
Unit tests for single-occurrence operations of SchedulingService.

Tests:
- Cancelling an occurrence
- Rescheduling into a replacement occurrence
- Completion sweep and explicit close
- Venue deletion flagging upcoming occurrences
"""

from datetime import datetime, timedelta, timezone

import pytest

from rehearsal_scheduler.domain.conflicts import ConflictKind
from rehearsal_scheduler.domain.errors import (
    InvalidTransition,
    OccurrenceFrozen,
    OccurrenceNotConcluded,
)
from rehearsal_scheduler.domain.intervals import Interval
from rehearsal_scheduler.domain.recurrence import Frequency, RecurrenceRule
from rehearsal_scheduler.models.bands import Venue
from rehearsal_scheduler.models.rehearsals import RehearsalOccurrence, RehearsalSeries
from rehearsal_scheduler.services import queries

START = datetime(2026, 3, 9, 19, 0, tzinfo=timezone.utc)
SLOT = Interval(START, START + timedelta(hours=2))
NEXT_DAY = Interval(START + timedelta(days=1), START + timedelta(days=1, hours=2))


@pytest.fixture
def occurrence(service, band, venue, users) -> RehearsalOccurrence:
    """A confirmed rehearsal at Studio B on Monday 9 March, 19:00-21:00 UTC."""
    return service.schedule_series(users["owner"].id, band.id, SLOT, venue_id=venue.id).committed[0]


class TestCancelOccurrence:
    def test_cancel(self, service, occurrence, users, band_events, clock):
        cancelled = service.cancel_occurrence(occurrence.id, users["alice"].id, reason="singer ill")

        assert cancelled.status == "cancelled"
        assert cancelled.cancellation_reason == "singer ill"
        assert cancelled.cancelled_at == clock.now
        assert band_events.names()[-1] == "rehearsal.cancelled"

    def test_cancelled_occurrence_is_frozen(self, service, occurrence, users):
        service.record_availability(occurrence.id, users["bob"].id, "available")
        service.cancel_occurrence(occurrence.id, users["owner"].id)

        with pytest.raises(OccurrenceFrozen):
            service.record_availability(occurrence.id, users["alice"].id, "available")

        # Answers given before the cancellation stay readable
        assert service.availability_summary(occurrence.id).available == 1

    def test_cancel_twice_rejected(self, service, occurrence, users):
        service.cancel_occurrence(occurrence.id, users["owner"].id)

        with pytest.raises(InvalidTransition):
            service.cancel_occurrence(occurrence.id, users["owner"].id)

    def test_cannot_cancel_after_end(self, service, occurrence, users, clock):
        clock.set(SLOT.end + timedelta(minutes=1))

        with pytest.raises(InvalidTransition):
            service.cancel_occurrence(occurrence.id, users["owner"].id)

    def test_cancelled_slot_frees_venue(self, service, occurrence, band, venue, users):
        service.cancel_occurrence(occurrence.id, users["owner"].id)

        result = service.schedule_series(users["owner"].id, band.id, SLOT, venue_id=venue.id)

        assert len(result.committed) == 1


class TestRescheduleOccurrence:
    """Rescheduling creates a replacement and cancels the original."""

    def test_reschedule_confirmed(self, service, persistence, occurrence, band, users, band_events):
        result = service.reschedule_occurrence(occurrence.id, users["bob"].id, NEXT_DAY)

        replacement = result.replacement
        assert result.conflicts == []
        assert replacement.status == "confirmed"
        assert replacement.interval == NEXT_DAY
        assert replacement.replaces_occurrence_id == occurrence.id
        assert replacement.series_id == occurrence.series_id
        assert replacement.venue_id == occurrence.venue_id
        assert result.original.status == "cancelled"
        assert result.original.cancellation_reason == "rescheduled"
        assert queries.get_invited_ids(persistence, replacement.id) == queries.get_member_ids(
            persistence, band.id
        )
        name, payload = band_events.events[-1]
        assert name == "rehearsal.rescheduled"
        assert payload["replacesOccurrenceId"] == str(occurrence.id)

    def test_overlap_with_original_allowed(self, service, occurrence, users):
        """Pushing a rehearsal back by half an hour overlaps only the occurrence it replaces."""
        later = Interval(SLOT.start + timedelta(minutes=30), SLOT.end + timedelta(minutes=30))

        result = service.reschedule_occurrence(occurrence.id, users["owner"].id, later)

        assert result.replacement is not None
        assert result.replacement.interval == later

    def test_conflicting_slot_changes_nothing(self, service, persistence, occurrence, venue, users):
        rivals = service.create_band(users["carol"].id, "Rivals")
        taken = service.schedule_series(
            users["carol"].id, rivals.id, NEXT_DAY, venue_id=venue.id
        ).committed[0]

        result = service.reschedule_occurrence(occurrence.id, users["owner"].id, NEXT_DAY)

        assert result.replacement is None
        assert [(c.kind, c.with_occurrence_id) for c in result.conflicts] == [
            (ConflictKind.VENUE, taken.id)
        ]
        assert persistence.get(RehearsalOccurrence, occurrence.id).status == "confirmed"
        assert len(queries.get_series_occurrences(persistence, occurrence.series_id)) == 1

    def test_change_venue_only(self, service, persistence, occurrence, users):
        other_venue = persistence.upsert(Venue(name="Garage"))

        result = service.reschedule_occurrence(
            occurrence.id, users["owner"].id, SLOT, venue_id=other_venue.id
        )

        assert result.replacement.venue_id == other_venue.id
        assert result.replacement.interval == SLOT

    def test_proposed_stays_proposed(self, service, persistence, band, users):
        pending = service.schedule_series(users["owner"].id, band.id, SLOT, auto_commit=False)
        original = queries.get_series_occurrences(persistence, pending.series.id)[0]

        result = service.reschedule_occurrence(original.id, users["owner"].id, NEXT_DAY)

        assert result.replacement.status == "proposed"
        assert queries.get_invited_ids(persistence, result.replacement.id) == set()

    def test_cancelled_cannot_be_rescheduled(self, service, occurrence, users):
        service.cancel_occurrence(occurrence.id, users["owner"].id)

        with pytest.raises(InvalidTransition):
            service.reschedule_occurrence(occurrence.id, users["owner"].id, NEXT_DAY)


class TestCompletion:
    def test_effective_status_before_sweep(self, occurrence, clock):
        clock.set(SLOT.end)

        assert occurrence.status == "confirmed"
        assert occurrence.effective_status(clock.now) == "completed"

    def test_complete_elapsed(self, service, occurrence, band_events, clock):
        clock.set(SLOT.end)

        completed = service.complete_elapsed()

        assert [o.id for o in completed] == [occurrence.id]
        assert completed[0].status == "completed"
        assert completed[0].completed_at == SLOT.end
        assert band_events.names()[-1] == "rehearsal.completed"
        assert service.complete_elapsed() == []

    def test_sweep_skips_running_rehearsals(self, service, occurrence, clock):
        clock.set(SLOT.start + timedelta(hours=1))

        assert service.complete_elapsed() == []

    def test_close_before_start_rejected(self, service, occurrence, users):
        with pytest.raises(OccurrenceNotConcluded):
            service.close_occurrence(occurrence.id, users["owner"].id)

    def test_close_once_started(self, service, occurrence, users, clock):
        clock.set(SLOT.start + timedelta(minutes=90))

        closed = service.close_occurrence(occurrence.id, users["owner"].id)

        assert closed.status == "completed"
        with pytest.raises(InvalidTransition):
            service.close_occurrence(occurrence.id, users["owner"].id)


class TestDeleteVenue:
    def test_upcoming_occurrences_flagged(self, service, persistence, band, venue, users, clock):
        result = service.schedule_series(
            users["owner"].id,
            band.id,
            SLOT,
            rule=RecurrenceRule(Frequency.WEEKLY, occurrence_count=2),
            venue_id=venue.id,
        )
        past, upcoming = result.committed
        clock.set(START + timedelta(days=1))

        flagged = service.delete_venue(venue.id)

        assert [o.id for o in flagged] == [upcoming.id]
        assert persistence.get(Venue, venue.id) is None
        past = persistence.get(RehearsalOccurrence, past.id)
        upcoming = persistence.get(RehearsalOccurrence, upcoming.id)
        assert past.venue_id is None
        assert past.needs_reschedule is False
        assert upcoming.venue_id is None
        assert upcoming.needs_reschedule is True
        assert upcoming.status == "confirmed"
        assert persistence.get(RehearsalSeries, result.series.id).venue_id is None
