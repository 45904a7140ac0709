"""
Pure scheduling core.

Interval arithmetic, recurrence expansion, conflict detection, availability
aggregation and attendance reconciliation. Nothing here performs I/O or reads
configuration; callers pass everything in.
"""

from rehearsal_scheduler.domain.errors import (
    SchedulingError,
    InvalidInterval,
    InvalidRecurrenceRule,
    RecurrenceBoundsMissing,
    SeriesCommitFailed,
    CommitTimeout,
    EntityNotFound,
    PermissionDenied,
    InvalidTransition,
    OccurrenceFrozen,
    OccurrenceNotConcluded,
    StaleMembership,
)
from rehearsal_scheduler.domain.intervals import (
    Interval,
    overlaps,
    contains,
    normalize_instant,
)
from rehearsal_scheduler.domain.recurrence import (
    Frequency,
    RecurrenceRule,
    ExpansionHorizon,
    OccurrenceSpec,
    expand,
    format_occurrence_key,
    parse_weekday,
)
from rehearsal_scheduler.domain.conflicts import (
    ConflictKind,
    ConflictPolicy,
    ConflictDetected,
    ScheduledSlot,
    OccurrenceIndex,
    detect_conflicts,
    detect_series_conflicts,
)
from rehearsal_scheduler.domain.availability import (
    DEFAULT_QUORUM_FRACTION,
    AvailabilityStatus,
    AvailabilitySummary,
    ResponseEntry,
    quorum_required,
    summarize,
    merge_response,
)
from rehearsal_scheduler.domain.attendance import (
    AttendanceStatus,
    AttendanceEntry,
    DiscrepancyReport,
    reconcile,
)

__all__ = [
    # Errors
    "SchedulingError",
    "InvalidInterval",
    "InvalidRecurrenceRule",
    "RecurrenceBoundsMissing",
    "SeriesCommitFailed",
    "CommitTimeout",
    "EntityNotFound",
    "PermissionDenied",
    "InvalidTransition",
    "OccurrenceFrozen",
    "OccurrenceNotConcluded",
    "StaleMembership",
    # Intervals
    "Interval",
    "overlaps",
    "contains",
    "normalize_instant",
    # Recurrence
    "Frequency",
    "RecurrenceRule",
    "ExpansionHorizon",
    "OccurrenceSpec",
    "expand",
    "format_occurrence_key",
    "parse_weekday",
    # Conflicts
    "ConflictKind",
    "ConflictPolicy",
    "ConflictDetected",
    "ScheduledSlot",
    "OccurrenceIndex",
    "detect_conflicts",
    "detect_series_conflicts",
    # Availability
    "DEFAULT_QUORUM_FRACTION",
    "AvailabilityStatus",
    "AvailabilitySummary",
    "ResponseEntry",
    "quorum_required",
    "summarize",
    "merge_response",
    # Attendance
    "AttendanceStatus",
    "AttendanceEntry",
    "DiscrepancyReport",
    "reconcile",
]
