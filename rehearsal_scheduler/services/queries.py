"""
Query helpers for bands, occurrences, responses and conflicts.

All reads go through the Persistence collaborator. Occurrence lookups are
time-window range queries served by the (band_id, start_time) and
(venue_id, start_time) indexes, so conflict detection never scans a band's
whole history.
"""

from datetime import datetime
from typing import Iterable, Optional, Sequence
from uuid import UUID

from sqlalchemy import or_

from rehearsal_scheduler.domain.attendance import AttendanceEntry, AttendanceStatus
from rehearsal_scheduler.domain.availability import AvailabilityStatus, ResponseEntry
from rehearsal_scheduler.domain.conflicts import OccurrenceIndex, ScheduledSlot
from rehearsal_scheduler.domain.intervals import Interval
from rehearsal_scheduler.models.bands import BandMember
from rehearsal_scheduler.models.conflicts import SchedulingConflict
from rehearsal_scheduler.models.rehearsals import (
    RehearsalOccurrence,
    OCCURRENCE_CONFIRMED,
    OCCURRENCE_COMPLETED,
    OCCURRENCE_PROPOSED,
)
from rehearsal_scheduler.models.responses import (
    AttendanceRecord,
    AvailabilityResponse,
    Invitation,
)
from rehearsal_scheduler.services.persistence import Persistence

# Statuses that occupy a slot for conflict purposes
BLOCKING_STATUSES = (OCCURRENCE_CONFIRMED, OCCURRENCE_COMPLETED)


# =============================================================================
# Membership Queries
# =============================================================================


def get_membership(persistence: Persistence, band_id: UUID, user_id: UUID) -> Optional[BandMember]:
    """Get the membership row for a band-user pair, or None."""
    rows = persistence.query(
        BandMember,
        BandMember.band_id == band_id,
        BandMember.user_id == user_id,
        limit=1,
    )
    return rows[0] if rows else None


def get_member_ids(persistence: Persistence, band_id: UUID) -> set[UUID]:
    """Get the user IDs of all current members of a band."""
    return {m.user_id for m in persistence.query(BandMember, BandMember.band_id == band_id)}


def get_bands_sharing_members(
    persistence: Persistence,
    band_id: UUID,
    member_ids: Iterable[UUID],
) -> set[UUID]:
    """
    Find other bands that have at least one of the given members.

    Args:
        persistence: Storage collaborator
        band_id: Band to exclude
        member_ids: Members to look up

    Returns:
        Band IDs (excluding band_id)
    """
    member_ids = list(member_ids)
    if not member_ids:
        return set()
    rows = persistence.query(
        BandMember,
        BandMember.user_id.in_(member_ids),
        BandMember.band_id != band_id,
    )
    return {row.band_id for row in rows}


def get_members_by_band(persistence: Persistence, band_ids: Iterable[UUID]) -> dict[UUID, frozenset]:
    """Map each band ID to the frozenset of its member IDs."""
    band_ids = list(band_ids)
    members: dict[UUID, set] = {band_id: set() for band_id in band_ids}
    if band_ids:
        for row in persistence.query(BandMember, BandMember.band_id.in_(band_ids)):
            members[row.band_id].add(row.user_id)
    return {band_id: frozenset(ids) for band_id, ids in members.items()}


# =============================================================================
# Occurrence Queries
# =============================================================================


def find_blocking_occurrences(
    persistence: Persistence,
    window: Interval,
    band_ids: Iterable[UUID] = (),
    venue_ids: Iterable[UUID] = (),
    exclude_ids: Iterable[UUID] = (),
) -> Sequence[RehearsalOccurrence]:
    """
    Find confirmed or completed occurrences overlapping a window.

    Args:
        persistence: Storage collaborator
        window: Time range to check
        band_ids: Match occurrences of these bands
        venue_ids: Match occurrences at these venues
        exclude_ids: Occurrences to leave out (e.g., one being rescheduled)

    Returns:
        Occurrences ordered by start time
    """
    band_ids = [b for b in band_ids if b is not None]
    venue_ids = [v for v in venue_ids if v is not None]
    if not band_ids and not venue_ids:
        return []

    scope = []
    if band_ids:
        scope.append(RehearsalOccurrence.band_id.in_(band_ids))
    if venue_ids:
        scope.append(RehearsalOccurrence.venue_id.in_(venue_ids))

    criteria = [
        or_(*scope),
        RehearsalOccurrence.status.in_(BLOCKING_STATUSES),
        # Overlap condition: starts before the window ends AND ends after it starts
        RehearsalOccurrence.start_time < window.end,
        RehearsalOccurrence.end_time > window.start,
    ]
    exclude_ids = list(exclude_ids)
    if exclude_ids:
        criteria.append(RehearsalOccurrence.id.not_in(exclude_ids))

    return persistence.query(
        RehearsalOccurrence,
        *criteria,
        order_by=RehearsalOccurrence.start_time,
    )


def to_slot(occurrence: RehearsalOccurrence, member_ids: Iterable[UUID]) -> ScheduledSlot:
    """Convert an occurrence into the detector's view of it."""
    return ScheduledSlot(
        occurrence_id=occurrence.id,
        band_id=occurrence.band_id,
        interval=occurrence.interval,
        venue_id=occurrence.venue_id,
        member_ids=frozenset(member_ids),
    )


def build_occurrence_index(
    persistence: Persistence,
    band_id: UUID,
    window: Interval,
    venue_ids: Iterable[UUID] = (),
    exclude_ids: Iterable[UUID] = (),
) -> tuple[OccurrenceIndex, frozenset]:
    """
    Load everything a band's candidates could conflict with.

    Covers the band's own confirmed occurrences, those at the candidate
    venues, and those of other bands sharing a member, all within window.

    Returns:
        (index, member IDs of band_id)
    """
    members = frozenset(get_member_ids(persistence, band_id))
    other_bands = get_bands_sharing_members(persistence, band_id, members)

    occurrences = find_blocking_occurrences(
        persistence,
        window,
        band_ids=[band_id, *other_bands],
        venue_ids=venue_ids,
        exclude_ids=exclude_ids,
    )

    members_by_band = get_members_by_band(
        persistence, {o.band_id for o in occurrences} | {band_id}
    )
    index = OccurrenceIndex(
        to_slot(o, members_by_band.get(o.band_id, frozenset())) for o in occurrences
    )
    return index, members


def get_series_occurrences(
    persistence: Persistence,
    series_id: UUID,
    statuses: Optional[Sequence[str]] = None,
) -> Sequence[RehearsalOccurrence]:
    """Get a series' occurrences ordered by start time."""
    criteria = [RehearsalOccurrence.series_id == series_id]
    if statuses:
        criteria.append(RehearsalOccurrence.status.in_(list(statuses)))
    return persistence.query(
        RehearsalOccurrence,
        *criteria,
        order_by=RehearsalOccurrence.start_time,
    )


def get_upcoming_occurrences(
    persistence: Persistence,
    band_id: UUID,
    after: datetime,
    limit: int = 10,
) -> Sequence[RehearsalOccurrence]:
    """Get a band's next confirmed occurrences starting after a time."""
    return persistence.query(
        RehearsalOccurrence,
        RehearsalOccurrence.band_id == band_id,
        RehearsalOccurrence.status == OCCURRENCE_CONFIRMED,
        RehearsalOccurrence.start_time >= after,
        order_by=RehearsalOccurrence.start_time,
        limit=limit,
    )


def find_open_occurrences_for_user(
    persistence: Persistence,
    band_id: UUID,
    after: datetime,
) -> Sequence[RehearsalOccurrence]:
    """Proposed or confirmed occurrences of a band that have not started yet."""
    return persistence.query(
        RehearsalOccurrence,
        RehearsalOccurrence.band_id == band_id,
        RehearsalOccurrence.status.in_([OCCURRENCE_PROPOSED, OCCURRENCE_CONFIRMED]),
        RehearsalOccurrence.start_time > after,
        order_by=RehearsalOccurrence.start_time,
    )


def find_elapsed_confirmed(persistence: Persistence, now: datetime) -> Sequence[RehearsalOccurrence]:
    """Confirmed occurrences whose end time has passed."""
    return persistence.query(
        RehearsalOccurrence,
        RehearsalOccurrence.status == OCCURRENCE_CONFIRMED,
        RehearsalOccurrence.end_time <= now,
        order_by=RehearsalOccurrence.start_time,
    )


# =============================================================================
# Invitation / Response / Attendance Queries
# =============================================================================


def get_invited_ids(persistence: Persistence, occurrence_id: UUID) -> set[UUID]:
    """Get the users invited to an occurrence."""
    return {
        i.user_id
        for i in persistence.query(Invitation, Invitation.occurrence_id == occurrence_id)
    }


def get_availability_response(
    persistence: Persistence,
    occurrence_id: UUID,
    user_id: UUID,
) -> Optional[AvailabilityResponse]:
    rows = persistence.query(
        AvailabilityResponse,
        AvailabilityResponse.occurrence_id == occurrence_id,
        AvailabilityResponse.user_id == user_id,
        limit=1,
    )
    return rows[0] if rows else None


def get_response_entries(persistence: Persistence, occurrence_id: UUID) -> list[ResponseEntry]:
    """Get availability responses for an occurrence as domain entries."""
    rows = persistence.query(
        AvailabilityResponse,
        AvailabilityResponse.occurrence_id == occurrence_id,
        order_by=AvailabilityResponse.responded_at,
    )
    return [ResponseEntry(r.user_id, AvailabilityStatus(r.status), r.responded_at) for r in rows]


def get_attendance_record(
    persistence: Persistence,
    occurrence_id: UUID,
    user_id: UUID,
) -> Optional[AttendanceRecord]:
    rows = persistence.query(
        AttendanceRecord,
        AttendanceRecord.occurrence_id == occurrence_id,
        AttendanceRecord.user_id == user_id,
        limit=1,
    )
    return rows[0] if rows else None


def get_attendance_entries(persistence: Persistence, occurrence_id: UUID) -> list[AttendanceEntry]:
    """Get attendance records for an occurrence as domain entries."""
    rows = persistence.query(AttendanceRecord, AttendanceRecord.occurrence_id == occurrence_id)
    return [AttendanceEntry(r.user_id, AttendanceStatus(r.status)) for r in rows]


# =============================================================================
# Conflict Queries
# =============================================================================


def get_unresolved_conflicts(
    persistence: Persistence,
    series_id: UUID,
) -> Sequence[SchedulingConflict]:
    """Get conflicts of a series that are still awaiting a decision."""
    return persistence.query(
        SchedulingConflict,
        SchedulingConflict.series_id == series_id,
        SchedulingConflict.status == "detected",
        order_by=SchedulingConflict.detected_at,
    )
