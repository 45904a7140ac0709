"""
SchedulingConflict model.

Entities:
- SchedulingConflict: A conflict found while validating a rehearsal series
"""

import uuid
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rehearsal_scheduler.models.base import BaseModel, UTCDateTime, get_json_type, utcnow

# Avoid circular imports for type hints
if TYPE_CHECKING:
    from rehearsal_scheduler.models.rehearsals import RehearsalSeries, RehearsalOccurrence


class SchedulingConflict(BaseModel):
    """
    A conflict between a proposed occurrence and a confirmed one.

    Conflict kinds:
    - venue: same venue, overlapping time
    - band: same band, overlapping time
    - member: another band sharing a member, overlapping time

    Lifecycle:
    1. detected: found during validation, series waits in 'validated'
    2. resolved: the occurrence was skipped or the clash went away
    3. ignored: the caller force-committed despite the conflict
    """

    __tablename__ = "scheduling_conflicts"

    series_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("rehearsal_series.id", ondelete="CASCADE"),
        nullable=False,
        doc="Series being validated"
    )

    occurrence_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("rehearsal_occurrences.id", ondelete="CASCADE"),
        nullable=False,
        doc="Proposed occurrence that conflicts"
    )

    conflicting_occurrence_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("rehearsal_occurrences.id", ondelete="SET NULL"),
        nullable=True,
        doc="Existing occurrence it collides with"
    )

    conflict_kind: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        doc="Conflict kind: 'venue', 'band', 'member'"
    )

    description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        doc="Human-readable conflict description"
    )

    member_ids: Mapped[list] = mapped_column(
        get_json_type(),
        nullable=False,
        default=list,
        doc="Double-booked member IDs (member conflicts only)"
    )

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="detected",
        doc="Status: 'detected', 'resolved', 'ignored'"
    )

    detected_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        doc="Timestamp when conflict was detected (UTC)"
    )

    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="Timestamp when conflict was resolved or ignored (UTC)"
    )

    series: Mapped["RehearsalSeries"] = relationship("RehearsalSeries", back_populates="conflicts")

    occurrence: Mapped["RehearsalOccurrence"] = relationship(
        "RehearsalOccurrence",
        foreign_keys=[occurrence_id],
    )

    conflicting_occurrence: Mapped[Optional["RehearsalOccurrence"]] = relationship(
        "RehearsalOccurrence",
        foreign_keys=[conflicting_occurrence_id],
    )

    __table_args__ = (
        Index("idx_conflict_series", "series_id"),
        Index("idx_conflict_occurrence", "occurrence_id"),
        Index("idx_conflict_kind", "conflict_kind"),
        Index("idx_conflict_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<SchedulingConflict(kind='{self.conflict_kind}', status='{self.status}')>"
