"""
Domain errors for rehearsal scheduling.

Provides structured error handling with retryable flags. Conflicts are not
errors: they are collected as ConflictDetected records (see
rehearsal_scheduler.domain.conflicts) and returned to the caller.
"""

import uuid
from dataclasses import dataclass
from typing import Optional


class SchedulingError(Exception):
    """Base exception for scheduling operations."""

    retryable: bool = False

    def __init__(self, message: str, original_error: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class InvalidInterval(SchedulingError):
    """
    Interval rejected at construction.

    Causes:
    - end <= start (zero-length or inverted)
    - naive datetime (no timezone)
    - unknown timezone name at the input boundary
    """


class InvalidRecurrenceRule(SchedulingError):
    """Recurrence rule fields are inconsistent (e.g., days of week on a daily rule)."""


class RecurrenceBoundsMissing(SchedulingError):
    """Expansion requested with neither an until-date nor an occurrence count."""

    def __init__(self, message: str = "Recurrence expansion needs an until-date or an occurrence count"):
        super().__init__(message)


class SeriesCommitFailed(SchedulingError):
    """
    Persistence or lock failure while committing a series.

    Nothing from the failed attempt is left confirmed. Retryable.
    """

    retryable = True

    def __init__(
        self,
        message: str,
        series_id: Optional[str] = None,
        original_error: Exception | None = None,
    ):
        super().__init__(message, original_error=original_error)
        self.series_id = series_id


class CommitTimeout(SeriesCommitFailed):
    """The commit did not finish within its deadline."""


class EntityNotFound(SchedulingError):
    """A referenced band, series, occurrence, user or venue does not exist."""

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class PermissionDenied(SchedulingError):
    """The acting user is not allowed to perform this operation (membership/ownership)."""


class InvalidTransition(SchedulingError):
    """Lifecycle transition not allowed from the current status."""

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"Cannot move {entity} from '{current}' to '{target}'")
        self.current = current
        self.target = target


class OccurrenceFrozen(SchedulingError):
    """The occurrence is cancelled; its responses can be read but not changed."""


class OccurrenceNotConcluded(SchedulingError):
    """Attendance or reconciliation requested before the occurrence has ended."""


@dataclass(frozen=True)
class StaleMembership:
    """
    Notice attached to availability/attendance actions by a former member.

    The action is still recorded; this flags it for the caller.
    """

    band_id: uuid.UUID
    user_id: uuid.UUID
    occurrence_id: uuid.UUID

    def __str__(self) -> str:
        return f"user {self.user_id} is no longer a member of band {self.band_id}"
