"""
Attendance reconciliation.

Compares final attendance with what members said beforehand. The report is
read-only output: neither the responses nor the attendance records are
modified.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable
import uuid

from rehearsal_scheduler.domain.availability import (
    AvailabilityStatus,
    ResponseEntry,
    merge_response,
)


class AttendanceStatus(str, Enum):
    ATTENDED = "attended"
    ABSENT = "absent"
    EXCUSED = "excused"


@dataclass(frozen=True)
class AttendanceEntry:
    user_id: uuid.UUID
    status: AttendanceStatus


@dataclass(frozen=True)
class DiscrepancyReport:
    """
    Differences between availability and attendance for one occurrence.

    Each user appears in at most one category.
    """

    said_available_but_absent: tuple = ()
    said_unavailable_but_attended: tuple = ()
    silent_no_shows: tuple = ()
    uninvited_attendees: tuple = ()

    @property
    def is_clean(self) -> bool:
        return not (
            self.said_available_but_absent
            or self.said_unavailable_but_attended
            or self.silent_no_shows
        )

    def to_dict(self) -> dict:
        return {
            "saidAvailableButAbsent": [str(u) for u in self.said_available_but_absent],
            "saidUnavailableButAttended": [str(u) for u in self.said_unavailable_but_attended],
            "silentNoShows": [str(u) for u in self.silent_no_shows],
            "uninvitedAttendees": [str(u) for u in self.uninvited_attendees],
        }


def _sorted_ids(ids) -> tuple:
    return tuple(sorted(ids, key=str))


def reconcile(
    invited_ids: Iterable[uuid.UUID],
    responses: Iterable[ResponseEntry],
    attendance: Iterable[AttendanceEntry],
) -> DiscrepancyReport:
    """
    Build a discrepancy report for a concluded occurrence.

    Categories:
    - said_available_but_absent: answered available, recorded absent
    - said_unavailable_but_attended: answered unavailable, recorded attended
    - silent_no_shows: invited, no response and no attendance record
      (distinct from excused, which is never a discrepancy)
    - uninvited_attendees: attended without being invited

    Args:
        invited_ids: Members invited to the occurrence
        responses: Availability responses (latest per user wins)
        attendance: Attendance records, one per user

    Returns:
        DiscrepancyReport
    """
    invited = set(invited_ids)

    latest: dict[uuid.UUID, ResponseEntry] = {}
    for response in responses:
        latest[response.user_id] = merge_response(latest.get(response.user_id), response)

    records = {entry.user_id: AttendanceStatus(entry.status) for entry in attendance}

    available_absent = []
    unavailable_attended = []
    silent = []
    uninvited = []

    for user_id, status in records.items():
        if user_id not in invited:
            if status is AttendanceStatus.ATTENDED:
                uninvited.append(user_id)
            continue
        said = latest.get(user_id)
        if said is None:
            continue
        said_status = AvailabilityStatus(said.status)
        if said_status is AvailabilityStatus.AVAILABLE and status is AttendanceStatus.ABSENT:
            available_absent.append(user_id)
        elif said_status is AvailabilityStatus.UNAVAILABLE and status is AttendanceStatus.ATTENDED:
            unavailable_attended.append(user_id)

    for user_id in invited:
        if user_id not in latest and user_id not in records:
            silent.append(user_id)

    return DiscrepancyReport(
        said_available_but_absent=_sorted_ids(available_absent),
        said_unavailable_but_attended=_sorted_ids(unavailable_attended),
        silent_no_shows=_sorted_ids(silent),
        uninvited_attendees=_sorted_ids(uninvited),
    )
