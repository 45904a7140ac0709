"""
Availability aggregation.

Merges member availability responses for one occurrence into a summary with
a quorum decision. Recomputed from scratch on every call, so running it twice
over the same inputs always gives the same summary.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from fractions import Fraction
from typing import Iterable, Optional
import math
import uuid

DEFAULT_QUORUM_FRACTION = Fraction(2, 3)


class AvailabilityStatus(str, Enum):
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    TENTATIVE = "tentative"


@dataclass(frozen=True)
class ResponseEntry:
    """One member's latest availability answer."""

    user_id: uuid.UUID
    status: AvailabilityStatus
    responded_at: datetime


@dataclass(frozen=True)
class AvailabilitySummary:
    """Per-occurrence readiness view."""

    invited_count: int
    available: int
    unavailable: int
    tentative: int
    no_response: int
    required: int
    quorum_met: bool
    stale_user_ids: tuple = ()

    def to_dict(self) -> dict:
        return {
            "invited": self.invited_count,
            "available": self.available,
            "unavailable": self.unavailable,
            "tentative": self.tentative,
            "noResponse": self.no_response,
            "required": self.required,
            "quorumMet": self.quorum_met,
            "staleUserIds": [str(u) for u in self.stale_user_ids],
        }


def _as_fraction(value) -> Fraction:
    # limit_denominator turns 0.6 into exactly 3/5
    fraction = Fraction(value).limit_denominator(10_000)
    if fraction <= 0 or fraction > 1:
        raise ValueError(f"quorum_fraction must be in (0, 1], got {value}")
    return fraction


def quorum_required(invited_count: int, quorum_fraction=DEFAULT_QUORUM_FRACTION) -> int:
    """Available answers needed for quorum: ceil(invited × fraction)."""
    return math.ceil(invited_count * _as_fraction(quorum_fraction))


def summarize(
    invited_ids: Iterable[uuid.UUID],
    responses: Iterable[ResponseEntry],
    quorum_fraction=DEFAULT_QUORUM_FRACTION,
) -> AvailabilitySummary:
    """
    Build the availability summary for one occurrence.

    Responses from users outside the invited set (e.g., members who left the
    band) are excluded from the counts and reported in stale_user_ids.
    If a user appears more than once, the latest response counts.

    Args:
        invited_ids: Members invited to the occurrence
        responses: Availability responses recorded for it
        quorum_fraction: Fraction of invited members that must be available

    Returns:
        AvailabilitySummary
    """
    invited = set(invited_ids)

    latest: dict[uuid.UUID, ResponseEntry] = {}
    for response in responses:
        latest[response.user_id] = merge_response(latest.get(response.user_id), response)

    counts = {status: 0 for status in AvailabilityStatus}
    stale = []
    for user_id, response in latest.items():
        if user_id not in invited:
            stale.append(user_id)
            continue
        counts[response.status] += 1

    answered = sum(counts.values())
    required = quorum_required(len(invited), quorum_fraction)
    available = counts[AvailabilityStatus.AVAILABLE]

    return AvailabilitySummary(
        invited_count=len(invited),
        available=available,
        unavailable=counts[AvailabilityStatus.UNAVAILABLE],
        tentative=counts[AvailabilityStatus.TENTATIVE],
        no_response=len(invited) - answered,
        required=required,
        # Nobody invited means nobody can show up
        quorum_met=bool(invited) and available >= required,
        stale_user_ids=tuple(sorted(stale, key=str)),
    )


def merge_response(
    existing: Optional[ResponseEntry],
    incoming: ResponseEntry,
) -> ResponseEntry:
    """
    Last-timestamp-wins merge for one (occurrence, user) pair.

    Ties go to the incoming response.
    """
    if existing is None or incoming.responded_at >= existing.responded_at:
        return incoming
    return existing
