"""
Recurrence expansion.

Turns a rehearsal anchor interval plus a recurrence rule into a bounded,
ordered list of concrete occurrence specs. Pure: identical inputs always
give identical outputs.

Rules round-trip through the JSON shape
{frequency, intervalCount, daysOfWeek?, until?, occurrenceCount?}.

Uses python-dateutil: rrule enumerates daily and weekly starts, relativedelta
handles month arithmetic and tz handles local wall-clock time.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Optional
import uuid

from dateutil import tz
from dateutil.parser import isoparse
from dateutil.relativedelta import relativedelta
from dateutil.rrule import DAILY, MO, WEEKLY, rrule

from rehearsal_scheduler.domain.errors import (
    InvalidInterval,
    InvalidRecurrenceRule,
    RecurrenceBoundsMissing,
)
from rehearsal_scheduler.domain.intervals import Interval, normalize_instant


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


WEEKDAY_NAMES = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)


def parse_weekday(value: Any) -> int:
    """
    Parse a weekday into 0 (Monday) .. 6 (Sunday).

    Accepts integers, full names ('monday') and three-letter abbreviations
    ('mon'), case-insensitive.
    """
    if isinstance(value, bool):
        raise InvalidRecurrenceRule(f"Invalid weekday: {value!r}")
    if isinstance(value, int):
        if 0 <= value <= 6:
            return value
        raise InvalidRecurrenceRule(f"Weekday out of range: {value}")
    if isinstance(value, str):
        name = value.strip().lower()
        for index, full in enumerate(WEEKDAY_NAMES):
            if name == full or name == full[:3]:
                return index
    raise InvalidRecurrenceRule(f"Invalid weekday: {value!r}")


@dataclass(frozen=True)
class RecurrenceRule:
    """
    A recurrence rule.

    Fields:
    - frequency: daily, weekly or monthly
    - interval_count: repeat every N units (>= 1)
    - days_of_week: weekly only, weekday numbers 0 (Mon) .. 6 (Sun)
    - until: exclusive end instant (UTC)
    - occurrence_count: maximum number of occurrences, anchor included
    """

    frequency: Frequency
    interval_count: int = 1
    days_of_week: Optional[tuple[int, ...]] = None
    until: Optional[datetime] = None
    occurrence_count: Optional[int] = None

    def __post_init__(self):
        try:
            frequency = Frequency(self.frequency)
        except ValueError:
            raise InvalidRecurrenceRule(f"Unknown frequency: {self.frequency!r}")
        object.__setattr__(self, "frequency", frequency)

        if not isinstance(self.interval_count, int) or self.interval_count < 1:
            raise InvalidRecurrenceRule("intervalCount must be a positive integer")

        if self.occurrence_count is not None and (
            not isinstance(self.occurrence_count, int) or self.occurrence_count < 1
        ):
            raise InvalidRecurrenceRule("occurrenceCount must be a positive integer")

        if self.days_of_week:
            if frequency is not Frequency.WEEKLY:
                raise InvalidRecurrenceRule("daysOfWeek is only valid for weekly rules")
            days = tuple(sorted({parse_weekday(d) for d in self.days_of_week}))
            object.__setattr__(self, "days_of_week", days)
        else:
            object.__setattr__(self, "days_of_week", None)

        if self.until is not None:
            try:
                object.__setattr__(self, "until", normalize_instant(self.until))
            except InvalidInterval as e:
                raise InvalidRecurrenceRule(f"Invalid until: {e.message}", original_error=e)

    @property
    def has_bound(self) -> bool:
        """Whether the rule itself limits expansion."""
        return self.until is not None or self.occurrence_count is not None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the JSON shape used by API clients."""
        data: dict[str, Any] = {
            "frequency": self.frequency.value,
            "intervalCount": self.interval_count,
        }
        if self.days_of_week:
            data["daysOfWeek"] = [WEEKDAY_NAMES[d] for d in self.days_of_week]
        if self.until is not None:
            data["until"] = self.until.isoformat()
        if self.occurrence_count is not None:
            data["occurrenceCount"] = self.occurrence_count
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], tz_name: Optional[str] = None) -> "RecurrenceRule":
        """
        Parse the JSON shape produced by to_dict().

        Args:
            data: Rule dictionary (camelCase keys; snake_case also accepted)
            tz_name: Timezone for a naive 'until' value

        Raises:
            InvalidRecurrenceRule: If the dictionary is malformed
        """
        if not isinstance(data, dict) or "frequency" not in data:
            raise InvalidRecurrenceRule("Recurrence rule must contain frequency")

        def pick(camel: str, snake: str):
            return data[camel] if camel in data else data.get(snake)

        until = pick("until", "until")
        if isinstance(until, str):
            try:
                until = isoparse(until)
            except ValueError as e:
                raise InvalidRecurrenceRule(f"Invalid until: {until}", original_error=e)
        if until is not None:
            try:
                until = normalize_instant(until, tz_name)
            except InvalidInterval as e:
                raise InvalidRecurrenceRule(f"Invalid until: {e.message}", original_error=e)

        days = pick("daysOfWeek", "days_of_week")
        interval_count = pick("intervalCount", "interval_count")

        return cls(
            frequency=data["frequency"],
            interval_count=1 if interval_count is None else interval_count,
            days_of_week=tuple(days) if days else None,
            until=until,
            occurrence_count=pick("occurrenceCount", "occurrence_count"),
        )


@dataclass(frozen=True)
class ExpansionHorizon:
    """Caller-supplied lookahead bound: an exclusive date, a count, or both."""

    until: Optional[datetime] = None
    max_occurrences: Optional[int] = None

    def __post_init__(self):
        if self.until is not None:
            object.__setattr__(self, "until", normalize_instant(self.until))
        if self.max_occurrences is not None and self.max_occurrences < 1:
            raise InvalidRecurrenceRule("max_occurrences must be at least 1")


@dataclass(frozen=True)
class OccurrenceSpec:
    """One generated occurrence, not yet persisted."""

    start: datetime
    end: datetime
    venue_id: Optional[uuid.UUID] = None
    status: str = "proposed"

    @property
    def interval(self) -> Interval:
        return Interval(self.start, self.end)

    @property
    def key(self) -> str:
        return format_occurrence_key(self.start)


def format_occurrence_key(dt: datetime) -> str:
    """
    Format an occurrence start as a stable key (YYYYMMDDTHHMMSSZ, UTC).

    Identifies generated occurrences before they have database IDs.
    """
    return normalize_instant(dt).strftime("%Y%m%dT%H%M%SZ")


def _earliest(*values):
    present = [v for v in values if v is not None]
    return min(present) if present else None


def _to_utc(local: datetime, zone) -> datetime:
    if zone is not None:
        local = tz.resolve_imaginary(local)
    return local.astimezone(timezone.utc)


def _candidate_starts(anchor_start: datetime, rule: RecurrenceRule, zone) -> Iterator[datetime]:
    """Yield candidate starts in ascending order, forever. Callers bound it."""
    local = anchor_start.astimezone(zone) if zone is not None else anchor_start

    if rule.frequency is Frequency.MONTHLY:
        # rrule would skip months without the anchor's day; relativedelta
        # clamps day 29-31 to the last day of shorter months instead
        k = 0
        while True:
            # Always offset from the anchor so clamped months don't drift
            yield _to_utc(local + relativedelta(months=k * rule.interval_count), zone)
            k += 1

    recurrence = rrule(
        DAILY if rule.frequency is Frequency.DAILY else WEEKLY,
        dtstart=local,
        interval=rule.interval_count,
        byweekday=rule.days_of_week or None,
        wkst=MO,
        cache=False,
    )
    for candidate in recurrence:
        # rrule drops sub-second precision from dtstart
        yield _to_utc(candidate.replace(microsecond=local.microsecond), zone)


def expand(
    anchor: Interval,
    rule: Optional[RecurrenceRule],
    horizon: Optional[ExpansionHorizon] = None,
    venue_id: Optional[uuid.UUID] = None,
    tz_name: Optional[str] = None,
) -> list[OccurrenceSpec]:
    """
    Expand a rehearsal anchor into concrete occurrences.

    Args:
        anchor: First occurrence; its duration is reused for every occurrence
        rule: Recurrence rule, or None for a single rehearsal
        horizon: Caller bound (until and/or max occurrences)
        venue_id: Venue inherited by every occurrence
        tz_name: Wall-clock timezone for stepping (keeps 19:00 local across
            DST changes); None steps in UTC

    Returns:
        Ordered list of OccurrenceSpec, status 'proposed'

    Raises:
        RecurrenceBoundsMissing: If neither rule nor horizon bounds expansion
        InvalidInterval: If tz_name is unknown
    """
    if rule is None:
        return [OccurrenceSpec(anchor.start, anchor.end, venue_id)]

    horizon = horizon or ExpansionHorizon()
    until = _earliest(rule.until, horizon.until)
    count = _earliest(rule.occurrence_count, horizon.max_occurrences)
    if until is None and count is None:
        raise RecurrenceBoundsMissing()

    zone = None
    if tz_name:
        zone = tz.gettz(tz_name)
        if zone is None:
            raise InvalidInterval(f"Unknown timezone: {tz_name}")

    duration = anchor.duration
    specs: list[OccurrenceSpec] = []
    for start in _candidate_starts(anchor.start, rule, zone):
        if count is not None and len(specs) >= count:
            break
        if until is not None and start >= until:
            break
        specs.append(OccurrenceSpec(start, start + duration, venue_id))

    return specs
