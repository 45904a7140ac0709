"""
Unit tests for availability and attendance through SchedulingService.

Tests:
- Recording availability and the quorum summary
- Last-timestamp-wins for out-of-order answers
- Stale responses from users who left the band
- Attendance timing rules and the manual override
- Reconciling availability against attendance
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest

from rehearsal_scheduler.domain.errors import (
    EntityNotFound,
    OccurrenceFrozen,
    OccurrenceNotConcluded,
)
from rehearsal_scheduler.domain.intervals import Interval
from rehearsal_scheduler.models.rehearsals import RehearsalOccurrence
from rehearsal_scheduler.models.responses import AttendanceRecord, AvailabilityResponse
from rehearsal_scheduler.services import queries

START = datetime(2026, 3, 9, 19, 0, tzinfo=timezone.utc)
SLOT = Interval(START, START + timedelta(hours=2))


@pytest.fixture
def occurrence(service, band, users) -> RehearsalOccurrence:
    return service.schedule_series(users["owner"].id, band.id, SLOT).committed[0]


@pytest.fixture
def five_piece(service, band, users):
    """The main band grown to five members."""
    service.add_member(band.id, users["owner"].id, users["carol"].id)
    service.add_member(band.id, users["owner"].id, users["dave"].id)
    return band


class TestRecordAvailability:
    """Test availability responses and summaries."""

    def test_record_and_summarize(self, service, occurrence, users, band_events):
        outcome = service.record_availability(occurrence.id, users["alice"].id, "available")

        assert outcome.stale is None
        assert outcome.record.status == "available"
        summary = service.availability_summary(occurrence.id)
        assert summary.invited_count == 3
        assert summary.available == 1
        assert summary.no_response == 2
        assert summary.required == 2
        assert summary.quorum_met is False

        name, payload = band_events.events[-1]
        assert name == "availability.updated"
        assert payload["userId"] == str(users["alice"].id)
        assert payload["summary"]["available"] == 1

    def test_quorum_with_custom_fraction(self, service, five_piece, users):
        """Five invited, four available: 60% needs three, so quorum is met."""
        occurrence = service.schedule_series(users["owner"].id, five_piece.id, SLOT).committed[0]
        for name in ("owner", "alice", "bob", "carol"):
            service.record_availability(occurrence.id, users[name].id, "available")
        service.record_availability(occurrence.id, users["dave"].id, "unavailable")

        summary = service.availability_summary(occurrence.id, quorum_fraction=0.6)

        assert summary.invited_count == 5
        assert summary.available == 4
        assert summary.unavailable == 1
        assert summary.required == 3
        assert summary.quorum_met is True

    def test_default_quorum_is_two_thirds(self, service, five_piece, users):
        occurrence = service.schedule_series(users["owner"].id, five_piece.id, SLOT).committed[0]
        for name in ("owner", "alice", "bob"):
            service.record_availability(occurrence.id, users[name].id, "available")

        summary = service.availability_summary(occurrence.id)

        assert summary.required == 4
        assert summary.quorum_met is False

    def test_answer_replaced_by_newer(self, service, persistence, occurrence, users, clock):
        service.record_availability(occurrence.id, users["bob"].id, "tentative")
        clock.advance(hours=1)

        service.record_availability(occurrence.id, users["bob"].id, "available")

        rows = persistence.query(AvailabilityResponse)
        assert [(r.status, r.responded_at) for r in rows] == [("available", clock.now)]

    def test_older_answer_never_overwrites_newer(self, service, occurrence, users, clock):
        later = clock.now + timedelta(hours=2)
        service.record_availability(occurrence.id, users["bob"].id, "available", responded_at=later)

        outcome = service.record_availability(
            occurrence.id, users["bob"].id, "unavailable", responded_at=clock.now
        )

        assert outcome.record.status == "available"
        assert outcome.record.responded_at == later
        assert service.availability_summary(occurrence.id).available == 1

    def test_unknown_user(self, service, occurrence):
        with pytest.raises(EntityNotFound):
            service.record_availability(occurrence.id, uuid.uuid4(), "available")

    def test_invalid_status(self, service, occurrence, users):
        with pytest.raises(ValueError):
            service.record_availability(occurrence.id, users["bob"].id, "maybe")


class TestStaleMembership:
    """Members who leave keep their answers, flagged as stale."""

    def test_removed_member_becomes_stale(self, service, persistence, five_piece, users):
        occurrence = service.schedule_series(users["owner"].id, five_piece.id, SLOT).committed[0]
        for name in ("owner", "alice", "bob", "carol"):
            service.record_availability(occurrence.id, users[name].id, "available")

        service.remove_member(five_piece.id, users["owner"].id, users["alice"].id)

        assert users["alice"].id not in queries.get_invited_ids(persistence, occurrence.id)
        summary = service.availability_summary(occurrence.id, quorum_fraction=0.8)
        assert summary.invited_count == 4
        assert summary.available == 3
        assert summary.stale_user_ids == (users["alice"].id,)
        assert summary.required == 4
        assert summary.quorum_met is False

        outcome = service.record_availability(occurrence.id, users["alice"].id, "unavailable")

        assert outcome.stale is not None
        assert outcome.stale.user_id == users["alice"].id
        assert outcome.record.status == "unavailable"

    def test_non_member_response_recorded_with_notice(self, service, occurrence, users):
        outcome = service.record_availability(occurrence.id, users["carol"].id, "available")

        assert outcome.stale.band_id == occurrence.band_id
        assert service.availability_summary(occurrence.id).stale_user_ids == (users["carol"].id,)


class TestAttendance:
    """Test attendance recording rules."""

    def test_before_end_requires_override(self, service, occurrence, users):
        with pytest.raises(OccurrenceNotConcluded):
            service.record_attendance(occurrence.id, users["alice"].id, "attended")

    def test_override_marks_record(self, service, occurrence, users):
        outcome = service.record_attendance(
            occurrence.id, users["alice"].id, "attended", override=True
        )

        assert outcome.record.manual_override is True

    def test_after_end(self, service, persistence, occurrence, users, clock):
        clock.set(SLOT.end)

        first = service.record_attendance(occurrence.id, users["alice"].id, "absent")
        second = service.record_attendance(occurrence.id, users["alice"].id, "attended")

        assert first.record.id == second.record.id
        assert second.record.manual_override is False
        assert [r.status for r in persistence.query(AttendanceRecord)] == ["attended"]

    def test_cancelled_occurrence_frozen(self, service, occurrence, users, clock):
        service.cancel_occurrence(occurrence.id, users["owner"].id)
        clock.set(SLOT.end)

        with pytest.raises(OccurrenceFrozen):
            service.record_attendance(occurrence.id, users["alice"].id, "attended")


class TestReconcileAttendance:
    def test_not_before_completion(self, service, occurrence):
        with pytest.raises(OccurrenceNotConcluded):
            service.reconcile_attendance(occurrence.id)

    def test_report(self, service, occurrence, users, clock):
        service.record_availability(occurrence.id, users["owner"].id, "available")
        service.record_availability(occurrence.id, users["alice"].id, "unavailable")
        clock.set(SLOT.end + timedelta(minutes=5))
        service.record_attendance(occurrence.id, users["owner"].id, "absent")
        service.record_attendance(occurrence.id, users["alice"].id, "attended")
        service.record_attendance(occurrence.id, users["carol"].id, "attended")

        report = service.reconcile_attendance(occurrence.id)

        assert report.said_available_but_absent == (users["owner"].id,)
        assert report.said_unavailable_but_attended == (users["alice"].id,)
        assert report.silent_no_shows == (users["bob"].id,)
        assert report.uninvited_attendees == (users["carol"].id,)
        assert not report.is_clean

    def test_clean_report_after_sweep(self, service, occurrence, users, clock):
        service.record_availability(occurrence.id, users["owner"].id, "available")
        service.record_availability(occurrence.id, users["alice"].id, "unavailable")
        service.record_availability(occurrence.id, users["bob"].id, "available")
        clock.set(SLOT.end)
        service.complete_elapsed()
        service.record_attendance(occurrence.id, users["owner"].id, "attended")
        service.record_attendance(occurrence.id, users["alice"].id, "excused")
        service.record_attendance(occurrence.id, users["bob"].id, "attended")

        assert service.reconcile_attendance(occurrence.id).is_clean
