"""
User, Band, BandMember and Venue models.

Entities:
- User: Identity reference (authentication lives elsewhere)
- Band: A group that rehearses together, owned by one user
- BandMember: Explicit membership join entity (one row per band-user pair)
- Venue: Rehearsal location, referenced weakly by occurrences
"""

import uuid
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import String, Text, Integer, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rehearsal_scheduler.models.base import BaseModel, UTCDateTime, get_json_type, utcnow

# Avoid circular imports for type hints
if TYPE_CHECKING:
    from rehearsal_scheduler.models.rehearsals import RehearsalSeries, RehearsalOccurrence
    from rehearsal_scheduler.models.responses import (
        AvailabilityResponse,
        AttendanceRecord,
        Invitation,
    )


class User(BaseModel):
    """
    A person who can own bands, join them and answer rehearsal invitations.

    Only display identity is stored here; credentials belong to the
    identity service.
    """

    __tablename__ = "users"

    display_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        doc="Name shown to other band members"
    )

    email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        doc="Email address for notifications"
    )

    memberships: Mapped[list["BandMember"]] = relationship(
        "BandMember",
        back_populates="user",
        cascade="all, delete-orphan",
        doc="Band memberships of this user"
    )

    invitations: Mapped[list["Invitation"]] = relationship(
        "Invitation",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    availability_responses: Mapped[list["AvailabilityResponse"]] = relationship(
        "AvailabilityResponse",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    attendance_records: Mapped[list["AttendanceRecord"]] = relationship(
        "AttendanceRecord",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_user_email", "email"),
        Index("idx_user_deleted", "deleted_at"),
    )

    def __repr__(self) -> str:
        return f"<User(display_name='{self.display_name}')>"


class Band(BaseModel):
    """
    A band.

    The owner is always a member; the scheduling service adds the owner's
    BandMember row when the band is created and refuses to remove it.
    """

    __tablename__ = "bands"

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        doc="Band name"
    )

    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        doc="Band description"
    )

    logo_url: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        doc="URL to the band's logo image"
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        doc="User who created and owns the band"
    )

    owner: Mapped["User"] = relationship(
        "User",
        foreign_keys=[owner_id],
        doc="Owner of this band"
    )

    members: Mapped[list["BandMember"]] = relationship(
        "BandMember",
        back_populates="band",
        cascade="all, delete-orphan",
        doc="Memberships (explicit join rows)"
    )

    series: Mapped[list["RehearsalSeries"]] = relationship(
        "RehearsalSeries",
        back_populates="band",
        cascade="all, delete-orphan",
        doc="Rehearsal series owned by the band"
    )

    __table_args__ = (
        Index("idx_band_owner", "owner_id"),
        Index("idx_band_deleted", "deleted_at"),
    )

    @property
    def member_ids(self) -> set[uuid.UUID]:
        return {m.user_id for m in self.members}

    def __repr__(self) -> str:
        return f"<Band(name='{self.name}')>"


class BandMember(BaseModel):
    """
    Membership of a user in a band.

    Association object with its own lifecycle; unique per (band, user).
    """

    __tablename__ = "band_members"

    band_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("bands.id", ondelete="CASCADE"),
        nullable=False,
        doc="Band ID"
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        doc="Member user ID"
    )

    role: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="member",
        doc="Role in band: 'owner', 'member'"
    )

    joined_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        doc="When the user joined the band"
    )

    band: Mapped["Band"] = relationship("Band", back_populates="members")
    user: Mapped["User"] = relationship("User", back_populates="memberships")

    __table_args__ = (
        UniqueConstraint("band_id", "user_id", name="uq_band_member"),
        Index("idx_band_member_band", "band_id"),
        Index("idx_band_member_user", "user_id"),
    )

    def __repr__(self) -> str:
        return f"<BandMember(band_id={self.band_id}, user_id={self.user_id}, role='{self.role}')>"


class Venue(BaseModel):
    """
    A rehearsal location.

    Occurrences reference venues weakly: deleting a venue nulls the
    reference and flags the occurrence for rescheduling.
    """

    __tablename__ = "venues"

    name: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        doc="Venue name (e.g., 'Studio B')"
    )

    location: Mapped[Optional[str]] = mapped_column(
        String(500),
        nullable=True,
        doc="Address or directions"
    )

    capacity: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        doc="Maximum number of people"
    )

    venue_metadata: Mapped[dict] = mapped_column(
        get_json_type(),
        nullable=False,
        default=dict,
        doc="Additional venue data (equipment, access codes, etc.)"
    )

    occurrences: Mapped[list["RehearsalOccurrence"]] = relationship(
        "RehearsalOccurrence",
        back_populates="venue",
        passive_deletes=True,
        doc="Occurrences scheduled at this venue"
    )

    __table_args__ = (
        Index("idx_venue_deleted", "deleted_at"),
    )

    def __repr__(self) -> str:
        return f"<Venue(name='{self.name}')>"
