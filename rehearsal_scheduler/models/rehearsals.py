"""
RehearsalSeries and RehearsalOccurrence models.

Entities:
- RehearsalSeries: Authoring intent, a single rehearsal or a recurrence rule
- RehearsalOccurrence: One concrete scheduled rehearsal with a fixed interval
"""

import uuid
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, Boolean, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rehearsal_scheduler.domain.intervals import Interval
from rehearsal_scheduler.domain.recurrence import RecurrenceRule
from rehearsal_scheduler.models.base import BaseModel, UTCDateTime, get_json_type, utcnow

# Avoid circular imports for type hints
if TYPE_CHECKING:
    from rehearsal_scheduler.models.bands import Band, User, Venue
    from rehearsal_scheduler.models.conflicts import SchedulingConflict
    from rehearsal_scheduler.models.responses import (
        AvailabilityResponse,
        AttendanceRecord,
        Invitation,
    )

# Series lifecycle: draft -> expanding -> validated -> committed
SERIES_DRAFT = "draft"
SERIES_EXPANDING = "expanding"
SERIES_VALIDATED = "validated"
SERIES_COMMITTED = "committed"

# Occurrence lifecycle: proposed -> confirmed -> cancelled | completed
OCCURRENCE_PROPOSED = "proposed"
OCCURRENCE_CONFIRMED = "confirmed"
OCCURRENCE_CANCELLED = "cancelled"
OCCURRENCE_COMPLETED = "completed"


class RehearsalSeries(BaseModel):
    """
    A rehearsal series.

    Holds the anchor interval and optional recurrence rule that occurrences
    are generated from. Owned by a band, created by a member.

    Editing a committed series creates a new series (previous_series_id
    points back) instead of rewriting this one.
    """

    __tablename__ = "rehearsal_series"

    band_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("bands.id", ondelete="CASCADE"),
        nullable=False,
        doc="Band this series belongs to"
    )

    created_by: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        doc="Member who created the series"
    )

    title: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        doc="Rehearsal title (e.g., 'Weekly Practice')"
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="What the rehearsal is for"
    )

    anchor_start: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        doc="Start of the first occurrence (UTC)"
    )

    anchor_end: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        doc="End of the first occurrence (UTC)"
    )

    timezone: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="UTC",
        doc="Wall-clock timezone used when stepping the recurrence"
    )

    venue_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("venues.id", ondelete="SET NULL"),
        nullable=True,
        doc="Default venue for generated occurrences"
    )

    recurrence: Mapped[Optional[dict]] = mapped_column(
        get_json_type(),
        nullable=True,
        doc="Recurrence rule {frequency, intervalCount, daysOfWeek?, until?, occurrenceCount?}; NULL for a single rehearsal"
    )

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=SERIES_DRAFT,
        doc="Status: 'draft', 'expanding', 'validated', 'committed'"
    )

    committed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When the series was committed"
    )

    previous_series_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("rehearsal_series.id"),
        nullable=True,
        doc="Series this one replaced when it was edited"
    )

    band: Mapped["Band"] = relationship("Band", back_populates="series")
    creator: Mapped["User"] = relationship("User", foreign_keys=[created_by])

    occurrences: Mapped[list["RehearsalOccurrence"]] = relationship(
        "RehearsalOccurrence",
        back_populates="series",
        cascade="all, delete-orphan",
        order_by="RehearsalOccurrence.start_time",
        doc="Occurrences ordered by start time"
    )

    conflicts: Mapped[list["SchedulingConflict"]] = relationship(
        "SchedulingConflict",
        back_populates="series",
        cascade="all, delete-orphan",
        doc="Conflicts found while validating this series"
    )

    previous_series: Mapped[Optional["RehearsalSeries"]] = relationship(
        "RehearsalSeries",
        remote_side="RehearsalSeries.id",
        doc="Series this one replaced"
    )

    __table_args__ = (
        Index("idx_series_band", "band_id"),
        Index("idx_series_status", "status"),
        Index("idx_series_deleted", "deleted_at"),
    )

    @property
    def anchor(self) -> Interval:
        return Interval(self.anchor_start, self.anchor_end)

    @property
    def rule(self) -> Optional[RecurrenceRule]:
        if not self.recurrence:
            return None
        return RecurrenceRule.from_dict(self.recurrence)

    @property
    def is_recurring(self) -> bool:
        return self.recurrence is not None

    def __repr__(self) -> str:
        return f"<RehearsalSeries(title='{self.title}', status='{self.status}')>"


class RehearsalOccurrence(BaseModel):
    """
    One concrete rehearsal.

    Status workflow: proposed -> confirmed -> cancelled | completed.
    A confirmed occurrence is never moved: rescheduling creates a new
    occurrence (replaces_occurrence_id) and cancels this one.
    """

    __tablename__ = "rehearsal_occurrences"

    series_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("rehearsal_series.id", ondelete="CASCADE"),
        nullable=False,
        doc="Series this occurrence was generated from"
    )

    band_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("bands.id", ondelete="CASCADE"),
        nullable=False,
        doc="Band (denormalized from the series for range queries)"
    )

    start_time: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        doc="Start (UTC, inclusive)"
    )

    end_time: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        doc="End (UTC, exclusive)"
    )

    venue_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("venues.id", ondelete="SET NULL"),
        nullable=True,
        doc="Venue, NULL if none or if the venue was deleted"
    )

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=OCCURRENCE_PROPOSED,
        doc="Status: 'proposed', 'confirmed', 'cancelled', 'completed'"
    )

    needs_reschedule: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="Set when the venue was removed after scheduling"
    )

    replaces_occurrence_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("rehearsal_occurrences.id"),
        nullable=True,
        doc="Occurrence this one replaced when rescheduled"
    )

    cancellation_reason: Mapped[Optional[str]] = mapped_column(
        String(200),
        nullable=True,
        doc="Why the occurrence was cancelled ('conflict', 'series_edited', free text)"
    )

    # Status timestamps for audit trail
    proposed_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        doc="When the occurrence was generated"
    )

    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When the occurrence was confirmed"
    )

    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When the occurrence was cancelled"
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When the occurrence was marked completed"
    )

    series: Mapped["RehearsalSeries"] = relationship("RehearsalSeries", back_populates="occurrences")
    venue: Mapped[Optional["Venue"]] = relationship("Venue", back_populates="occurrences")

    replaces: Mapped[Optional["RehearsalOccurrence"]] = relationship(
        "RehearsalOccurrence",
        remote_side="RehearsalOccurrence.id",
        doc="Occurrence this one replaced"
    )

    invitations: Mapped[list["Invitation"]] = relationship(
        "Invitation",
        back_populates="occurrence",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    availability_responses: Mapped[list["AvailabilityResponse"]] = relationship(
        "AvailabilityResponse",
        back_populates="occurrence",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    attendance_records: Mapped[list["AttendanceRecord"]] = relationship(
        "AttendanceRecord",
        back_populates="occurrence",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    # Range queries use (band, start) and (venue, start)
    __table_args__ = (
        Index("idx_occurrence_series", "series_id"),
        Index("idx_occurrence_band_start", "band_id", "start_time"),
        Index("idx_occurrence_venue_start", "venue_id", "start_time"),
        Index("idx_occurrence_status_start", "status", "start_time"),
        Index("idx_occurrence_deleted", "deleted_at"),
    )

    @property
    def interval(self) -> Interval:
        return Interval(self.start_time, self.end_time)

    def effective_status(self, now: datetime) -> str:
        """Confirmed occurrences whose end has passed count as completed."""
        if self.status == OCCURRENCE_CONFIRMED and self.end_time <= now:
            return OCCURRENCE_COMPLETED
        return self.status

    def __repr__(self) -> str:
        return f"<RehearsalOccurrence(start='{self.start_time}', status='{self.status}')>"
