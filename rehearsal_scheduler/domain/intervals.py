"""
Half-open time intervals.

Every instant in the domain is timezone-aware and normalized to UTC.
Local (wall-clock) input is converted with normalize_instant() before it
reaches this model.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from dateutil import tz

from rehearsal_scheduler.domain.errors import InvalidInterval


def normalize_instant(value: datetime, tz_name: Optional[str] = None) -> datetime:
    """
    Convert a datetime to an absolute UTC instant.

    Args:
        value: Aware datetime, or naive local datetime when tz_name is given
        tz_name: IANA timezone of a naive value (e.g., 'Europe/Berlin')

    Returns:
        Timezone-aware datetime in UTC

    Raises:
        InvalidInterval: If value is naive and no timezone is given, or the
            timezone name is unknown
    """
    if value.tzinfo is None or value.utcoffset() is None:
        if not tz_name:
            raise InvalidInterval(f"Naive datetime {value.isoformat()} has no timezone")
        zone = tz.gettz(tz_name)
        if zone is None:
            raise InvalidInterval(f"Unknown timezone: {tz_name}")
        # Nonexistent local times (DST gap) are shifted forward
        value = tz.resolve_imaginary(value.replace(tzinfo=zone))
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class Interval:
    """A time range [start, end) with start < end, both in UTC."""

    start: datetime
    end: datetime

    def __post_init__(self):
        start = normalize_instant(self.start)
        end = normalize_instant(self.end)
        if end <= start:
            raise InvalidInterval(
                f"Interval end {end.isoformat()} must be after start {start.isoformat()}"
            )
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)

    @classmethod
    def from_local(cls, start: datetime, end: datetime, tz_name: str) -> "Interval":
        """Build an interval from naive wall-clock times in the given timezone."""
        return cls(normalize_instant(start, tz_name), normalize_instant(end, tz_name))

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    def shifted_to(self, start: datetime) -> "Interval":
        """Same duration, new start."""
        return Interval(start, start + self.duration)

    def overlaps(self, other: "Interval") -> bool:
        return overlaps(self, other)

    def contains(self, instant: datetime) -> bool:
        return contains(self, instant)

    def __str__(self) -> str:
        return f"[{self.start.isoformat()}, {self.end.isoformat()})"


def overlaps(a: Interval, b: Interval) -> bool:
    """
    Check whether two half-open intervals share any instant.

    Touching endpoints do not overlap: [9:00, 10:00) and [10:00, 11:00) are
    disjoint.
    """
    return a.start < b.end and b.start < a.end


def contains(interval: Interval, instant: datetime) -> bool:
    """Check whether instant falls in [start, end)."""
    instant = normalize_instant(instant)
    return interval.start <= instant < interval.end
