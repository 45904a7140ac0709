"""
Pydantic models for the JSON shapes accepted at the service boundary.

Callers (an HTTP layer, a CLI, a worker) validate raw payloads with these
models and hand the resulting domain objects to SchedulingService.
"""

from datetime import datetime
from typing import Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from rehearsal_scheduler.domain.availability import AvailabilityStatus
from rehearsal_scheduler.domain.attendance import AttendanceStatus
from rehearsal_scheduler.domain.conflicts import ConflictPolicy
from rehearsal_scheduler.domain.errors import InvalidRecurrenceRule
from rehearsal_scheduler.domain.intervals import Interval, normalize_instant
from rehearsal_scheduler.domain.recurrence import (
    ExpansionHorizon,
    RecurrenceRule,
    WEEKDAY_NAMES,
    parse_weekday,
)


class RecurrenceRuleSchema(BaseModel):
    """Recurrence rule JSON: {frequency, intervalCount, daysOfWeek?, until?, occurrenceCount?}."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    frequency: Literal["daily", "weekly", "monthly"]
    interval_count: int = Field(1, alias="intervalCount", ge=1)
    days_of_week: Optional[list[Union[int, str]]] = Field(None, alias="daysOfWeek")
    until: Optional[datetime] = None
    occurrence_count: Optional[int] = Field(None, alias="occurrenceCount", ge=1)

    @field_validator("days_of_week")
    @classmethod
    def validate_days(cls, v):
        if v is None:
            return v
        try:
            return [WEEKDAY_NAMES[parse_weekday(day)] for day in v]
        except InvalidRecurrenceRule as e:
            raise ValueError(e.message)

    @model_validator(mode="after")
    def validate_days_frequency(self):
        if self.days_of_week and self.frequency != "weekly":
            raise ValueError("daysOfWeek is only valid for weekly rules")
        return self

    def to_rule(self, tz_name: Optional[str] = None) -> RecurrenceRule:
        """Build the domain rule; a naive until is read in tz_name."""
        until = self.until
        if until is not None and until.tzinfo is None and tz_name:
            until = normalize_instant(until, tz_name)
        return RecurrenceRule(
            frequency=self.frequency,
            interval_count=self.interval_count,
            days_of_week=tuple(self.days_of_week) if self.days_of_week else None,
            until=until,
            occurrence_count=self.occurrence_count,
        )


class IntervalSchema(BaseModel):
    """A time range, either aware or naive local times plus a timezone."""

    start: datetime
    end: datetime
    timezone: Optional[str] = Field(None, description="IANA timezone for naive start/end")

    def to_interval(self, default_tz: Optional[str] = None) -> Interval:
        tz_name = self.timezone or default_tz
        return Interval(normalize_instant(self.start, tz_name), normalize_instant(self.end, tz_name))


class HorizonSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    until: Optional[datetime] = None
    max_occurrences: Optional[int] = Field(None, alias="maxOccurrences", ge=1)

    def to_horizon(self, tz_name: Optional[str] = None) -> ExpansionHorizon:
        until = normalize_instant(self.until, tz_name) if self.until else None
        return ExpansionHorizon(until=until, max_occurrences=self.max_occurrences)


class ScheduleSeriesRequest(BaseModel):
    """Request to schedule a rehearsal or a recurring series."""

    model_config = ConfigDict(populate_by_name=True)

    band_id: UUID = Field(..., alias="bandId")
    title: str = Field("Rehearsal", min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    anchor: IntervalSchema
    rule: Optional[RecurrenceRuleSchema] = None
    venue_id: Optional[UUID] = Field(None, alias="venueId")
    horizon: Optional[HorizonSchema] = None
    policy: ConflictPolicy = ConflictPolicy.SKIP_CONFLICTING
    auto_commit: bool = Field(True, alias="autoCommit")
    timezone: Optional[str] = None

    @field_validator("title")
    @classmethod
    def validate_title_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v.strip()


class AvailabilityRequest(BaseModel):
    """A member's availability answer."""

    model_config = ConfigDict(populate_by_name=True)

    status: AvailabilityStatus
    responded_at: Optional[datetime] = Field(None, alias="respondedAt")


class AttendanceRequest(BaseModel):
    """Attendance for one member."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: UUID = Field(..., alias="userId")
    status: AttendanceStatus
    override: bool = False
