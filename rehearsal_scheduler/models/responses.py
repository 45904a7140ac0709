"""
Invitation, AvailabilityResponse and AttendanceRecord models.

All three are explicit join entities keyed by (occurrence, user). Deleting
either the occurrence or the user deletes the row.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import String, Boolean, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rehearsal_scheduler.models.base import BaseModel, UTCDateTime, utcnow

# Avoid circular imports for type hints
if TYPE_CHECKING:
    from rehearsal_scheduler.models.bands import User
    from rehearsal_scheduler.models.rehearsals import RehearsalOccurrence


class Invitation(BaseModel):
    """
    A member invited to an occurrence.

    Seeded for every band member when the occurrence is confirmed; this is
    the denominator of the availability quorum.
    """

    __tablename__ = "invitations"

    occurrence_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("rehearsal_occurrences.id", ondelete="CASCADE"),
        nullable=False,
        doc="Occurrence ID"
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        doc="Invited user ID"
    )

    invited_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        doc="When the invitation was created"
    )

    occurrence: Mapped["RehearsalOccurrence"] = relationship(
        "RehearsalOccurrence", back_populates="invitations"
    )
    user: Mapped["User"] = relationship("User", back_populates="invitations")

    __table_args__ = (
        UniqueConstraint("occurrence_id", "user_id", name="uq_invitation"),
        Index("idx_invitation_occurrence", "occurrence_id"),
        Index("idx_invitation_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<Invitation(occurrence_id={self.occurrence_id}, user_id={self.user_id})>"


class AvailabilityResponse(BaseModel):
    """
    A member's availability answer for an occurrence.

    One row per (occurrence, user); a later answer overwrites an earlier one.
    """

    __tablename__ = "availability_responses"

    occurrence_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("rehearsal_occurrences.id", ondelete="CASCADE"),
        nullable=False,
        doc="Occurrence ID"
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        doc="Responding user ID"
    )

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        doc="Status: 'available', 'unavailable', 'tentative'"
    )

    responded_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        doc="Timestamp of the latest answer"
    )

    occurrence: Mapped["RehearsalOccurrence"] = relationship(
        "RehearsalOccurrence", back_populates="availability_responses"
    )
    user: Mapped["User"] = relationship("User", back_populates="availability_responses")

    __table_args__ = (
        UniqueConstraint("occurrence_id", "user_id", name="uq_availability_response"),
        Index("idx_availability_occurrence", "occurrence_id"),
        Index("idx_availability_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<AvailabilityResponse(user_id={self.user_id}, status='{self.status}')>"


class AttendanceRecord(BaseModel):
    """
    Who actually showed up.

    Recorded once the occurrence has ended, or earlier with a manual
    override. One row per (occurrence, user).
    """

    __tablename__ = "attendance_records"

    occurrence_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("rehearsal_occurrences.id", ondelete="CASCADE"),
        nullable=False,
        doc="Occurrence ID"
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        doc="User ID"
    )

    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        doc="Status: 'attended', 'absent', 'excused'"
    )

    recorded_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        doc="When attendance was recorded"
    )

    manual_override: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        doc="Recorded before the occurrence ended"
    )

    occurrence: Mapped["RehearsalOccurrence"] = relationship(
        "RehearsalOccurrence", back_populates="attendance_records"
    )
    user: Mapped["User"] = relationship("User", back_populates="attendance_records")

    __table_args__ = (
        UniqueConstraint("occurrence_id", "user_id", name="uq_attendance_record"),
        Index("idx_attendance_occurrence", "occurrence_id"),
        Index("idx_attendance_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<AttendanceRecord(user_id={self.user_id}, status='{self.status}')>"
