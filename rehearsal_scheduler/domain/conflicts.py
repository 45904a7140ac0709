"""
Scheduling conflict detection.

Three independent checks per candidate occurrence:
- venue: overlaps a confirmed occurrence at the same venue
- band: overlaps a confirmed occurrence of the same band
- member: overlaps a confirmed occurrence of a different band that shares
  at least one member

Conflicts are returned as records, never raised. The caller (the scheduling
service) decides what to do with them according to a ConflictPolicy.
"""

from bisect import bisect_left, bisect_right
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Any, Hashable, Iterable, Optional, Sequence
import uuid

from rehearsal_scheduler.domain.intervals import Interval, overlaps


class ConflictKind(str, Enum):
    VENUE = "venue"
    BAND = "band"
    MEMBER = "member"


class ConflictPolicy(str, Enum):
    """
    What a series commit does with conflicting occurrences.

    - reject_series: commit nothing if any occurrence conflicts
    - skip_conflicting: commit the clean occurrences, reject the rest (default)
    - force: commit everything and record the conflicts as ignored
    """

    REJECT_SERIES = "reject_series"
    SKIP_CONFLICTING = "skip_conflicting"
    FORCE = "force"


@dataclass(frozen=True)
class ScheduledSlot:
    """What the detector needs to know about an occurrence."""

    occurrence_id: Any
    band_id: uuid.UUID
    interval: Interval
    venue_id: Optional[uuid.UUID] = None
    member_ids: frozenset = field(default_factory=frozenset)


@dataclass(frozen=True)
class ConflictDetected:
    """A conflict between a candidate occurrence and an existing one."""

    kind: ConflictKind
    occurrence_id: Any
    with_occurrence_id: Any
    member_ids: tuple = ()

    def describe(self) -> str:
        if self.kind is ConflictKind.VENUE:
            return f"Venue is already booked by occurrence {self.with_occurrence_id}"
        if self.kind is ConflictKind.BAND:
            return f"Band already rehearses at this time (occurrence {self.with_occurrence_id})"
        members = ", ".join(str(m) for m in self.member_ids)
        return f"Members {members} are booked by another band (occurrence {self.with_occurrence_id})"


class _SortedSlots:
    """Slots for one index key, sorted by start time."""

    def __init__(self):
        self._starts: list = []
        self._slots: list[ScheduledSlot] = []
        self._max_duration = timedelta(0)

    def add(self, slot: ScheduledSlot) -> None:
        position = bisect_right(self._starts, slot.interval.start)
        self._starts.insert(position, slot.interval.start)
        self._slots.insert(position, slot)
        self._max_duration = max(self._max_duration, slot.interval.duration)

    def overlapping(self, interval: Interval) -> list[ScheduledSlot]:
        # Any overlapping slot starts in [interval.start - longest slot, interval.end)
        lo = bisect_left(self._starts, interval.start - self._max_duration)
        hi = bisect_left(self._starts, interval.end)
        return [slot for slot in self._slots[lo:hi] if overlaps(slot.interval, interval)]

    def __len__(self) -> int:
        return len(self._slots)


class OccurrenceIndex:
    """
    Interval index over confirmed occurrences.

    Keys are ("band", band_id), ("venue", venue_id) and ("member", user_id).
    Lookups cost O(log n + k) per key.
    """

    def __init__(self, slots: Iterable[ScheduledSlot] = ()):
        self._buckets: dict[Hashable, _SortedSlots] = defaultdict(_SortedSlots)
        self._ids: set = set()
        for slot in slots:
            self.add(slot)

    def add(self, slot: ScheduledSlot) -> None:
        if slot.occurrence_id in self._ids:
            return
        self._ids.add(slot.occurrence_id)
        self._buckets[("band", slot.band_id)].add(slot)
        if slot.venue_id is not None:
            self._buckets[("venue", slot.venue_id)].add(slot)
        for member_id in slot.member_ids:
            self._buckets[("member", member_id)].add(slot)

    def overlapping(self, key: Hashable, interval: Interval) -> list[ScheduledSlot]:
        bucket = self._buckets.get(key)
        if bucket is None:
            return []
        return bucket.overlapping(interval)

    def __contains__(self, occurrence_id) -> bool:
        return occurrence_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)


def _slot_order(slot: ScheduledSlot):
    return (slot.interval.start, str(slot.occurrence_id))


def detect_conflicts(candidate: ScheduledSlot, index: OccurrenceIndex) -> list[ConflictDetected]:
    """
    Find every conflict between a candidate and the indexed occurrences.

    Args:
        candidate: Occurrence being validated
        index: Confirmed occurrences relevant to the candidate's band, venue
            and members

    Returns:
        Conflicts ordered by kind (venue, band, member), then by start time
    """
    conflicts: list[ConflictDetected] = []

    def others(key):
        found = [
            slot
            for slot in index.overlapping(key, candidate.interval)
            if slot.occurrence_id != candidate.occurrence_id
        ]
        return sorted(found, key=_slot_order)

    if candidate.venue_id is not None:
        for slot in others(("venue", candidate.venue_id)):
            conflicts.append(
                ConflictDetected(ConflictKind.VENUE, candidate.occurrence_id, slot.occurrence_id)
            )

    for slot in others(("band", candidate.band_id)):
        conflicts.append(
            ConflictDetected(ConflictKind.BAND, candidate.occurrence_id, slot.occurrence_id)
        )

    shared: dict[Any, tuple[ScheduledSlot, set]] = {}
    for member_id in candidate.member_ids:
        for slot in others(("member", member_id)):
            if slot.band_id == candidate.band_id:
                continue
            shared.setdefault(slot.occurrence_id, (slot, set()))[1].add(member_id)

    for slot, members in sorted(shared.values(), key=lambda item: _slot_order(item[0])):
        conflicts.append(
            ConflictDetected(
                ConflictKind.MEMBER,
                candidate.occurrence_id,
                slot.occurrence_id,
                member_ids=tuple(sorted(members, key=str)),
            )
        )

    return conflicts


def detect_series_conflicts(
    candidates: Sequence[ScheduledSlot],
    index: OccurrenceIndex,
    index_conflicting: bool = False,
) -> list[tuple[ScheduledSlot, list[ConflictDetected]]]:
    """
    Validate a batch of candidates in ascending start order.

    Each accepted candidate is added to the index, so when two candidates of
    the same batch collide the earlier one wins and the later one is reported
    against it. The index is modified in place.

    Args:
        candidates: Occurrences of one series commit
        index: Existing confirmed occurrences
        index_conflicting: Also index conflicting candidates (force commits)

    Returns:
        (candidate, conflicts) pairs in ascending start order
    """
    results = []
    for slot in sorted(candidates, key=_slot_order):
        found = detect_conflicts(slot, index)
        if not found or index_conflicting:
            index.add(slot)
        results.append((slot, found))
    return results
