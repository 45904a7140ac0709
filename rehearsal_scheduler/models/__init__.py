"""
SQLAlchemy models for Rehearsal Scheduler.

This module exports all database models for easy importing and
ensures Alembic can discover them for migrations.
"""

# Import base classes
from rehearsal_scheduler.models.base import Base, BaseModel, GUID, UTCDateTime, get_json_type

# Import all models (must be imported for Alembic autogenerate)
from rehearsal_scheduler.models.bands import User, Band, BandMember, Venue
from rehearsal_scheduler.models.rehearsals import RehearsalSeries, RehearsalOccurrence
from rehearsal_scheduler.models.responses import Invitation, AvailabilityResponse, AttendanceRecord
from rehearsal_scheduler.models.conflicts import SchedulingConflict
from rehearsal_scheduler.models.subscriptions import BandSubscription

# Export all for easy importing
__all__ = [
    # Base classes
    "Base",
    "BaseModel",
    "GUID",
    "UTCDateTime",
    "get_json_type",
    # Band models
    "User",
    "Band",
    "BandMember",
    "Venue",
    # Rehearsal models
    "RehearsalSeries",
    "RehearsalOccurrence",
    # Response models
    "Invitation",
    "AvailabilityResponse",
    "AttendanceRecord",
    # Conflict model
    "SchedulingConflict",
    # Subscription model
    "BandSubscription",
]
