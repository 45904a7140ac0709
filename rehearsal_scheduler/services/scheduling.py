"""
Scheduling service.

Drives rehearsal series and occurrences through their lifecycles:

    series:     draft -> expanding -> validated -> committed
    occurrence: proposed -> confirmed -> cancelled | completed

and owns band membership, availability and attendance bookkeeping around
them. The algorithms live in rehearsal_scheduler.domain; this module wires
them to the Persistence and Notifier collaborators.

Every validate-then-persist step runs inside Persistence.with_exclusive()
keyed by band and venue, so two commits proposing overlapping slots for the
same band or venue are serialized. A series commit is all-or-nothing.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Sequence, Union

from pydantic import ValidationError

from rehearsal_scheduler.config import Settings, get_settings
from rehearsal_scheduler.domain.attendance import AttendanceStatus, DiscrepancyReport, reconcile
from rehearsal_scheduler.domain.availability import (
    DEFAULT_QUORUM_FRACTION,
    AvailabilityStatus,
    AvailabilitySummary,
    ResponseEntry,
    merge_response,
    summarize,
)
from rehearsal_scheduler.domain.conflicts import (
    ConflictDetected,
    ConflictPolicy,
    ScheduledSlot,
    detect_conflicts,
    detect_series_conflicts,
)
from rehearsal_scheduler.domain.errors import (
    CommitTimeout,
    EntityNotFound,
    InvalidRecurrenceRule,
    InvalidTransition,
    OccurrenceFrozen,
    OccurrenceNotConcluded,
    PermissionDenied,
    RecurrenceBoundsMissing,
    SeriesCommitFailed,
    StaleMembership,
)
from rehearsal_scheduler.domain.intervals import Interval, normalize_instant
from rehearsal_scheduler.domain.recurrence import (
    ExpansionHorizon,
    OccurrenceSpec,
    RecurrenceRule,
    expand,
)
from rehearsal_scheduler.models.bands import Band, BandMember, User, Venue
from rehearsal_scheduler.models.base import utcnow
from rehearsal_scheduler.models.conflicts import SchedulingConflict
from rehearsal_scheduler.models.rehearsals import (
    RehearsalOccurrence,
    RehearsalSeries,
    OCCURRENCE_CANCELLED,
    OCCURRENCE_COMPLETED,
    OCCURRENCE_CONFIRMED,
    OCCURRENCE_PROPOSED,
    SERIES_COMMITTED,
    SERIES_DRAFT,
    SERIES_EXPANDING,
    SERIES_VALIDATED,
)
from rehearsal_scheduler.models.responses import AttendanceRecord, AvailabilityResponse, Invitation
from rehearsal_scheduler.schemas import RecurrenceRuleSchema, ScheduleSeriesRequest
from rehearsal_scheduler.services import queries
from rehearsal_scheduler.services.notifications import (
    AVAILABILITY_UPDATED,
    REHEARSAL_CANCELLED,
    REHEARSAL_COMPLETED,
    REHEARSAL_RESCHEDULED,
    REHEARSAL_SCHEDULED,
    InMemoryNotifier,
    Notifier,
)
from rehearsal_scheduler.services.persistence import Persistence

logger = logging.getLogger(__name__)

SERIES_TRANSITIONS = {
    SERIES_DRAFT: (SERIES_EXPANDING,),
    SERIES_EXPANDING: (SERIES_VALIDATED,),
    SERIES_VALIDATED: (SERIES_COMMITTED,),
    SERIES_COMMITTED: (),
}

OCCURRENCE_TRANSITIONS = {
    OCCURRENCE_PROPOSED: (OCCURRENCE_CONFIRMED, OCCURRENCE_CANCELLED),
    OCCURRENCE_CONFIRMED: (OCCURRENCE_CANCELLED, OCCURRENCE_COMPLETED),
    OCCURRENCE_CANCELLED: (),
    OCCURRENCE_COMPLETED: (),
}

OPEN_STATUSES = (OCCURRENCE_PROPOSED, OCCURRENCE_CONFIRMED)

# Cancellation reasons set by the service itself
REASON_CONFLICT = "conflict"
REASON_SERIES_EDITED = "series_edited"
REASON_SERIES_CANCELLED = "series_cancelled"
REASON_RESCHEDULED = "rescheduled"

# Marks an argument the caller did not pass (None is a meaningful value)
_UNCHANGED: Any = object()


@dataclass
class SchedulingResult:
    """Outcome of scheduling, committing or editing a series."""

    series: RehearsalSeries
    committed: list[RehearsalOccurrence] = field(default_factory=list)
    rejected: list[RehearsalOccurrence] = field(default_factory=list)
    conflicts: list[ConflictDetected] = field(default_factory=list)

    @property
    def status(self) -> str:
        return self.series.status

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)


@dataclass
class RescheduleResult:
    """Outcome of rescheduling one occurrence. replacement is None on conflict."""

    original: RehearsalOccurrence
    replacement: Optional[RehearsalOccurrence] = None
    conflicts: list[ConflictDetected] = field(default_factory=list)


@dataclass
class ResponseOutcome:
    """A recorded availability or attendance row, plus a stale-membership notice."""

    record: Union[AvailabilityResponse, AttendanceRecord]
    stale: Optional[StaleMembership] = None


def _occurrence_payload(occurrence: RehearsalOccurrence) -> dict[str, Any]:
    return {
        "occurrenceId": str(occurrence.id),
        "seriesId": str(occurrence.series_id),
        "bandId": str(occurrence.band_id),
        "start": occurrence.start_time.isoformat(),
        "end": occurrence.end_time.isoformat(),
        "venueId": str(occurrence.venue_id) if occurrence.venue_id else None,
        "status": occurrence.status,
    }


def _lock_keys(band_id: uuid.UUID, venue_ids: Iterable[Optional[uuid.UUID]] = ()) -> list[str]:
    keys = [f"band:{band_id}"]
    keys.extend(f"venue:{venue_id}" for venue_id in venue_ids if venue_id is not None)
    return keys


def _advance_series(series: RehearsalSeries, target: str) -> None:
    if target not in SERIES_TRANSITIONS.get(series.status, ()):
        raise InvalidTransition("series", series.status, target)
    series.status = target


def _advance_occurrence(
    occurrence: RehearsalOccurrence,
    target: str,
    now: datetime,
    reason: Optional[str] = None,
) -> None:
    if target not in OCCURRENCE_TRANSITIONS.get(occurrence.status, ()):
        raise InvalidTransition("occurrence", occurrence.status, target)
    occurrence.status = target
    if target == OCCURRENCE_CONFIRMED:
        occurrence.confirmed_at = now
    elif target == OCCURRENCE_CANCELLED:
        occurrence.cancelled_at = now
        occurrence.cancellation_reason = reason
    elif target == OCCURRENCE_COMPLETED:
        occurrence.completed_at = now


class SchedulingService:
    """
    Rehearsal scheduling orchestrator.

    Configuration is passed in explicitly; use from_settings() at the
    application boundary to take the defaults from Settings.

    Example:
        with open_scheduling() as service:
            result = service.schedule_series(
                actor_id=user.id,
                band_id=band.id,
                anchor=Interval(start, end),
                rule=RecurrenceRule(Frequency.WEEKLY, occurrence_count=8),
            )
    """

    def __init__(
        self,
        persistence: Persistence,
        notifier: Optional[Notifier] = None,
        quorum_fraction=DEFAULT_QUORUM_FRACTION,
        max_expansion: int = 500,
        commit_timeout: float = 10.0,
        timezone_name: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
        monotonic: Optional[Callable[[], float]] = None,
    ):
        self.persistence = persistence
        self.notifier = notifier if notifier is not None else InMemoryNotifier()
        self.quorum_fraction = quorum_fraction
        self.max_expansion = max_expansion
        self.commit_timeout = commit_timeout
        self.timezone_name = timezone_name
        self._clock = clock or utcnow
        self._monotonic = monotonic or time.monotonic

    @classmethod
    def from_settings(
        cls,
        persistence: Persistence,
        notifier: Optional[Notifier] = None,
        settings: Optional[Settings] = None,
        **overrides,
    ) -> "SchedulingService":
        """Build a service with defaults taken from application settings."""
        settings = settings or get_settings()
        options = {
            "quorum_fraction": settings.quorum_fraction,
            "max_expansion": settings.max_expansion,
            "commit_timeout": settings.commit_timeout_seconds,
            "timezone_name": settings.timezone,
        }
        options.update(overrides)
        return cls(persistence, notifier, **options)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _now(self) -> datetime:
        return self._clock()

    def _require(self, entity_type: type, entity_id, name: str):
        entity = self.persistence.get(entity_type, entity_id)
        if entity is None:
            raise EntityNotFound(name, entity_id)
        return entity

    def _require_member(self, band_id: uuid.UUID, user_id: uuid.UUID) -> BandMember:
        membership = queries.get_membership(self.persistence, band_id, user_id)
        if membership is None:
            raise PermissionDenied(f"User {user_id} is not a member of band {band_id}")
        return membership

    def _require_owner(self, band: Band, user_id: uuid.UUID) -> None:
        if band.owner_id != user_id:
            raise PermissionDenied(f"Only the owner of band {band.id} can do this")

    def _emit(self, band_id: uuid.UUID, event_name: str, payload: dict[str, Any]) -> None:
        try:
            self.notifier.publish(band_id, event_name, payload)
        except Exception as e:
            logger.warning(f"Failed to publish {event_name} for band {band_id}: {e}")

    def _stale_notice(
        self,
        occurrence: RehearsalOccurrence,
        user_id: uuid.UUID,
    ) -> Optional[StaleMembership]:
        if queries.get_membership(self.persistence, occurrence.band_id, user_id) is not None:
            return None
        logger.warning(
            f"User {user_id} is not a member of band {occurrence.band_id}; "
            f"recording for occurrence {occurrence.id} anyway"
        )
        return StaleMembership(occurrence.band_id, user_id, occurrence.id)

    def _check_deadline(self, deadline: float, series: RehearsalSeries) -> None:
        if self._monotonic() > deadline:
            raise CommitTimeout(
                f"Commit of series {series.id} exceeded {self.commit_timeout}s",
                series_id=series.id,
            )

    # =========================================================================
    # Bands
    # =========================================================================

    def create_band(
        self,
        owner_id: uuid.UUID,
        name: str,
        description: Optional[str] = None,
        logo_url: Optional[str] = None,
    ) -> Band:
        """
        Create a band. The owner becomes its first member.

        Raises:
            EntityNotFound: If the owner does not exist
        """
        self._require(User, owner_id, "User")
        band = Band(
            id=uuid.uuid4(),
            name=name,
            description=description,
            logo_url=logo_url,
            owner_id=owner_id,
        )

        def create():
            self.persistence.upsert(band)
            self.persistence.upsert(
                BandMember(band_id=band.id, user_id=owner_id, role="owner", joined_at=self._now())
            )
            return band

        self.persistence.with_exclusive(f"band:{band.id}", create)
        logger.info(f"Created band {band.id} ('{name}') owned by {owner_id}")
        return band

    def add_member(self, band_id: uuid.UUID, actor_id: uuid.UUID, user_id: uuid.UUID) -> BandMember:
        """
        Add a user to a band (owner only). Adding an existing member is a no-op.

        Raises:
            EntityNotFound: If the band or user does not exist
            PermissionDenied: If the actor is not the owner
        """
        band = self._require(Band, band_id, "Band")
        self._require_owner(band, actor_id)
        self._require(User, user_id, "User")

        existing = queries.get_membership(self.persistence, band_id, user_id)
        if existing is not None:
            return existing

        membership = self.persistence.upsert(
            BandMember(band_id=band_id, user_id=user_id, role="member", joined_at=self._now())
        )
        logger.info(f"Added user {user_id} to band {band_id}")
        return membership

    def remove_member(self, band_id: uuid.UUID, actor_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """
        Remove a user from a band.

        The owner can remove anyone but themselves; members can remove
        themselves. Invitations to occurrences that have not started yet are
        withdrawn; past invitations and every response are kept.

        Returns:
            True if a membership was removed
        """
        band = self._require(Band, band_id, "Band")
        if actor_id != user_id:
            self._require_owner(band, actor_id)
        if user_id == band.owner_id:
            raise PermissionDenied(f"The owner cannot be removed from band {band_id}")

        membership = queries.get_membership(self.persistence, band_id, user_id)
        if membership is None:
            return False

        now = self._now()

        def remove():
            self.persistence.delete(BandMember, membership.id)
            upcoming = queries.find_open_occurrences_for_user(self.persistence, band_id, now)
            withdrawn = 0
            if upcoming:
                invitations = self.persistence.query(
                    Invitation,
                    Invitation.user_id == user_id,
                    Invitation.occurrence_id.in_([o.id for o in upcoming]),
                )
                for invitation in invitations:
                    self.persistence.delete(Invitation, invitation.id)
                    withdrawn += 1
            return withdrawn

        withdrawn = self.persistence.with_exclusive(_lock_keys(band_id), remove)
        logger.info(
            f"Removed user {user_id} from band {band_id} "
            f"({withdrawn} upcoming invitations withdrawn)"
        )
        return True

    def delete_venue(self, venue_id: uuid.UUID) -> list[RehearsalOccurrence]:
        """
        Delete a venue.

        Occurrences and series referencing it lose the reference. Upcoming
        proposed/confirmed occurrences are flagged needs_reschedule.

        Returns:
            The flagged occurrences
        """
        self._require(Venue, venue_id, "Venue")
        now = self._now()

        def remove():
            flagged = []
            for occurrence in self.persistence.query(
                RehearsalOccurrence, RehearsalOccurrence.venue_id == venue_id
            ):
                if occurrence.status in OPEN_STATUSES and occurrence.end_time > now:
                    occurrence.needs_reschedule = True
                    flagged.append(occurrence)
                occurrence.venue_id = None
                self.persistence.upsert(occurrence)
            for series in self.persistence.query(RehearsalSeries, RehearsalSeries.venue_id == venue_id):
                series.venue_id = None
                self.persistence.upsert(series)
            self.persistence.delete(Venue, venue_id)
            return flagged

        flagged = self.persistence.with_exclusive(f"venue:{venue_id}", remove)
        if flagged:
            logger.warning(f"Venue {venue_id} deleted; {len(flagged)} occurrences need rescheduling")
        else:
            logger.info(f"Venue {venue_id} deleted")
        return flagged

    # =========================================================================
    # Series lifecycle
    # =========================================================================

    def _coerce_rule(self, rule, tz_name: str) -> Optional[RecurrenceRule]:
        if rule is None or isinstance(rule, RecurrenceRule):
            return rule
        if isinstance(rule, RecurrenceRuleSchema):
            return rule.to_rule(tz_name)
        try:
            return RecurrenceRuleSchema.model_validate(rule).to_rule(tz_name)
        except ValidationError as e:
            raise InvalidRecurrenceRule(f"Invalid recurrence rule: {e}", original_error=e)

    def _bounded_horizon(
        self,
        rule: Optional[RecurrenceRule],
        horizon: Optional[ExpansionHorizon],
    ) -> Optional[ExpansionHorizon]:
        if rule is None:
            return horizon
        horizon = horizon or ExpansionHorizon()
        if not rule.has_bound and horizon.until is None and horizon.max_occurrences is None:
            raise RecurrenceBoundsMissing()
        cap = horizon.max_occurrences
        if cap is None or cap > self.max_expansion:
            cap = self.max_expansion
        return ExpansionHorizon(until=horizon.until, max_occurrences=cap)

    def _plan(
        self,
        anchor: Interval,
        rule: Optional[RecurrenceRule],
        horizon: Optional[ExpansionHorizon],
        venue_id: Optional[uuid.UUID],
        tz_name: str,
        not_before: Optional[datetime] = None,
    ) -> list[OccurrenceSpec]:
        bounded = self._bounded_horizon(rule, horizon)
        specs = expand(anchor, rule, bounded, venue_id=venue_id, tz_name=tz_name if rule else None)
        if rule is not None and len(specs) >= self.max_expansion:
            logger.warning(f"Recurrence expansion truncated at {self.max_expansion} occurrences")
        if not_before is not None:
            specs = [spec for spec in specs if spec.start >= not_before]
        return specs

    def _detect(
        self,
        series: RehearsalSeries,
        candidates: Sequence[RehearsalOccurrence],
        force: bool = False,
    ) -> tuple[list[tuple[ScheduledSlot, list[ConflictDetected]]], frozenset]:
        if not candidates:
            members = frozenset(queries.get_member_ids(self.persistence, series.band_id))
            return [], members
        window = Interval(
            min(o.start_time for o in candidates),
            max(o.end_time for o in candidates),
        )
        index, members = queries.build_occurrence_index(
            self.persistence,
            series.band_id,
            window,
            venue_ids={o.venue_id for o in candidates},
        )
        slots = [queries.to_slot(o, members) for o in candidates]
        return detect_series_conflicts(slots, index, index_conflicting=force), members

    def _replace_conflict_records(
        self,
        series: RehearsalSeries,
        conflicts: Sequence[ConflictDetected],
        status: str,
        now: datetime,
    ) -> None:
        # The latest detection supersedes whatever was recorded before
        for old in queries.get_unresolved_conflicts(self.persistence, series.id):
            self.persistence.delete(SchedulingConflict, old.id)
        for conflict in conflicts:
            self.persistence.upsert(
                SchedulingConflict(
                    series_id=series.id,
                    occurrence_id=conflict.occurrence_id,
                    conflicting_occurrence_id=conflict.with_occurrence_id,
                    conflict_kind=conflict.kind.value,
                    description=conflict.describe(),
                    member_ids=[str(m) for m in conflict.member_ids],
                    status=status,
                    detected_at=now,
                    resolved_at=None if status == "detected" else now,
                )
            )

    def _validate_new_series(
        self,
        series: RehearsalSeries,
        specs: Sequence[OccurrenceSpec],
        before: Optional[Callable[[], Any]] = None,
    ) -> tuple[list[RehearsalOccurrence], list[ConflictDetected], Any]:
        """Persist a draft series and its proposed occurrences, then validate them."""
        now = self._now()
        occurrences = [
            RehearsalOccurrence(
                id=uuid.uuid4(),
                series_id=series.id,
                band_id=series.band_id,
                start_time=spec.start,
                end_time=spec.end,
                venue_id=spec.venue_id,
                status=OCCURRENCE_PROPOSED,
                proposed_at=now,
            )
            for spec in specs
        ]

        def validate():
            before_result = before() if before is not None else None
            self.persistence.upsert(series)
            _advance_series(series, SERIES_EXPANDING)
            for occurrence in occurrences:
                self.persistence.upsert(occurrence)
            self.persistence.upsert(series)

            results, _ = self._detect(series, occurrences)
            conflicts = [c for _, found in results for c in found]
            self._replace_conflict_records(series, conflicts, "detected", now)
            _advance_series(series, SERIES_VALIDATED)
            self.persistence.upsert(series)
            return conflicts, before_result

        venue_ids = {spec.venue_id for spec in specs} | {series.venue_id}
        conflicts, before_result = self.persistence.with_exclusive(
            _lock_keys(series.band_id, venue_ids), validate
        )
        if conflicts:
            logger.warning(f"Series {series.id} validated with {len(conflicts)} conflicts")
        else:
            logger.info(f"Series {series.id} validated ({len(occurrences)} occurrences)")
        return occurrences, conflicts, before_result

    def _finish(
        self,
        series: RehearsalSeries,
        actor_id: uuid.UUID,
        conflicts: list[ConflictDetected],
        policy: ConflictPolicy,
        auto_commit: bool,
    ) -> SchedulingResult:
        if auto_commit and (not conflicts or policy is not ConflictPolicy.REJECT_SERIES):
            return self.commit_series(series.id, actor_id, policy=policy)
        return SchedulingResult(series=series, conflicts=conflicts)

    def schedule_series(
        self,
        actor_id: uuid.UUID,
        band_id: uuid.UUID,
        anchor: Interval,
        rule: Union[RecurrenceRule, dict, None] = None,
        venue_id: Optional[uuid.UUID] = None,
        title: str = "Rehearsal",
        description: Optional[str] = None,
        horizon: Optional[ExpansionHorizon] = None,
        policy: Union[ConflictPolicy, str] = ConflictPolicy.SKIP_CONFLICTING,
        auto_commit: bool = True,
        tz_name: Optional[str] = None,
    ) -> SchedulingResult:
        """
        Schedule a single rehearsal or a recurring series.

        Expands the rule, persists the occurrences as proposed and validates
        them (series ends up 'validated' with its conflict list). With
        auto_commit the series is then committed, unless the policy is
        reject_series and conflicts were found.

        Args:
            actor_id: Member creating the series
            band_id: Band the series belongs to
            anchor: First occurrence; its duration applies to all
            rule: Recurrence rule (or its dict form); None for a one-off
            venue_id: Venue for every occurrence
            title: Series title
            description: Optional description
            horizon: Lookahead bound, required if the rule has none
            policy: What to do with conflicting occurrences at commit
            auto_commit: Commit right after validation
            tz_name: Wall-clock timezone for stepping (default from config)

        Returns:
            SchedulingResult

        Raises:
            EntityNotFound: Band or venue missing
            PermissionDenied: Actor is not a band member
            RecurrenceBoundsMissing: Neither rule nor horizon bounds expansion
            SeriesCommitFailed: Commit failed; nothing was confirmed
        """
        policy = ConflictPolicy(policy)
        tz_name = tz_name or self.timezone_name
        self._require(Band, band_id, "Band")
        self._require_member(band_id, actor_id)
        if venue_id is not None:
            self._require(Venue, venue_id, "Venue")

        rule = self._coerce_rule(rule, tz_name)
        specs = self._plan(anchor, rule, horizon, venue_id, tz_name)

        series = RehearsalSeries(
            id=uuid.uuid4(),
            band_id=band_id,
            created_by=actor_id,
            title=title,
            description=description,
            anchor_start=anchor.start,
            anchor_end=anchor.end,
            timezone=tz_name,
            venue_id=venue_id,
            recurrence=rule.to_dict() if rule else None,
            status=SERIES_DRAFT,
        )
        _, conflicts, _ = self._validate_new_series(series, specs)
        return self._finish(series, actor_id, conflicts, policy, auto_commit)

    def schedule_request(self, actor_id: uuid.UUID, request: ScheduleSeriesRequest) -> SchedulingResult:
        """schedule_series() for a validated JSON payload; naive times use its timezone."""
        tz_name = request.timezone or self.timezone_name
        return self.schedule_series(
            actor_id=actor_id,
            band_id=request.band_id,
            anchor=request.anchor.to_interval(tz_name),
            rule=request.rule.to_rule(tz_name) if request.rule else None,
            venue_id=request.venue_id,
            title=request.title,
            description=request.description,
            horizon=request.horizon.to_horizon(tz_name) if request.horizon else None,
            policy=request.policy,
            auto_commit=request.auto_commit,
            tz_name=tz_name,
        )

    def commit_series(
        self,
        series_id: uuid.UUID,
        actor_id: uuid.UUID,
        policy: Union[ConflictPolicy, str] = ConflictPolicy.SKIP_CONFLICTING,
    ) -> SchedulingResult:
        """
        Commit a validated series.

        Conflicts are detected again against current data, in ascending
        start order, while holding the band and venue locks:
        - skip_conflicting: confirm clean occurrences, cancel the others
        - force: confirm everything, record conflicts as ignored
        - reject_series: confirm nothing if anything conflicts

        Confirmed occurrences get an invitation per current band member.
        One rehearsal.scheduled event per confirmed occurrence is published
        after the commit succeeds.

        Raises:
            InvalidTransition: Series is not validated
            SeriesCommitFailed: Lock, persistence or deadline failure; no
                occurrence from this attempt stays confirmed
        """
        policy = ConflictPolicy(policy)
        series = self._require(RehearsalSeries, series_id, "Series")
        self._require_member(series.band_id, actor_id)
        if series.status != SERIES_VALIDATED:
            raise InvalidTransition("series", series.status, SERIES_COMMITTED)

        candidates = list(
            queries.get_series_occurrences(self.persistence, series.id, [OCCURRENCE_PROPOSED])
        )
        deadline = self._monotonic() + self.commit_timeout

        def commit():
            # Another caller may have committed this series while we waited for the lock
            self.persistence.refresh(series)
            if series.status != SERIES_VALIDATED:
                raise InvalidTransition("series", series.status, SERIES_COMMITTED)
            proposed = list(
                queries.get_series_occurrences(self.persistence, series.id, [OCCURRENCE_PROPOSED])
            )
            now = self._now()
            results, members = self._detect(series, proposed, force=policy is ConflictPolicy.FORCE)
            self._check_deadline(deadline, series)
            conflicts = [c for _, found in results for c in found]

            if conflicts and policy is ConflictPolicy.REJECT_SERIES:
                self._replace_conflict_records(series, conflicts, "detected", now)
                return [], [], conflicts

            by_id = {o.id: o for o in proposed}
            confirmed, rejected = [], []
            for slot, found in results:
                occurrence = by_id[slot.occurrence_id]
                if found and policy is ConflictPolicy.SKIP_CONFLICTING:
                    _advance_occurrence(occurrence, OCCURRENCE_CANCELLED, now, REASON_CONFLICT)
                    self.persistence.upsert(occurrence)
                    rejected.append(occurrence)
                    continue

                _advance_occurrence(occurrence, OCCURRENCE_CONFIRMED, now)
                self.persistence.upsert(occurrence)
                for member_id in sorted(members, key=str):
                    self.persistence.upsert(
                        Invitation(occurrence_id=occurrence.id, user_id=member_id, invited_at=now)
                    )
                confirmed.append(occurrence)
                self._check_deadline(deadline, series)

            outcome = "ignored" if policy is ConflictPolicy.FORCE else "resolved"
            self._replace_conflict_records(series, conflicts, outcome, now)
            _advance_series(series, SERIES_COMMITTED)
            series.committed_at = now
            self.persistence.upsert(series)
            self._check_deadline(deadline, series)
            return confirmed, rejected, conflicts

        venue_ids = {o.venue_id for o in candidates}
        try:
            confirmed, rejected, conflicts = self.persistence.with_exclusive(
                _lock_keys(series.band_id, venue_ids), commit
            )
        except SeriesCommitFailed as e:
            if e.series_id is None:
                e.series_id = series.id
            logger.error(f"Commit of series {series.id} failed: {e.message}", exc_info=True)
            raise

        if series.status != SERIES_COMMITTED:
            logger.warning(
                f"Series {series.id} not committed: {len(conflicts)} conflicts under {policy.value}"
            )
            return SchedulingResult(series=series, conflicts=conflicts)

        if conflicts:
            logger.warning(
                f"Series {series.id} committed with {len(conflicts)} conflicts under {policy.value}"
            )
        logger.info(
            f"Series {series.id} committed: {len(confirmed)} confirmed, {len(rejected)} rejected"
        )
        for occurrence in confirmed:
            self._emit(series.band_id, REHEARSAL_SCHEDULED, _occurrence_payload(occurrence))
        return SchedulingResult(series, confirmed, rejected, conflicts)

    def _cancel_upcoming(
        self,
        series: RehearsalSeries,
        now: datetime,
        reason: str,
    ) -> list[RehearsalOccurrence]:
        cancelled = []
        for occurrence in queries.get_series_occurrences(self.persistence, series.id, OPEN_STATUSES):
            if occurrence.start_time <= now:
                continue
            _advance_occurrence(occurrence, OCCURRENCE_CANCELLED, now, reason)
            self.persistence.upsert(occurrence)
            cancelled.append(occurrence)
        return cancelled

    def edit_series(
        self,
        series_id: uuid.UUID,
        actor_id: uuid.UUID,
        rule=_UNCHANGED,
        anchor: Optional[Interval] = None,
        venue_id=_UNCHANGED,
        title: Optional[str] = None,
        horizon: Optional[ExpansionHorizon] = None,
        policy: Union[ConflictPolicy, str] = ConflictPolicy.SKIP_CONFLICTING,
        auto_commit: bool = True,
    ) -> SchedulingResult:
        """
        Edit a series going forward.

        Upcoming (not yet started) occurrences are cancelled and a new series
        linked by previous_series_id is scheduled in their place. Candidates
        starting before now are dropped; past and in-progress occurrences
        are left alone.

        Args:
            series_id: Series to edit
            actor_id: Member making the change
            rule: New rule (None makes it a one-off); omitted keeps the old one
            anchor: New anchor; None keeps the old one
            venue_id: New venue (None clears it); omitted keeps the old one
            title: New title; None keeps the old one
            horizon: Lookahead bound for the new series
            policy: Conflict policy for the new series
            auto_commit: Commit the new series right away

        Returns:
            SchedulingResult for the new series
        """
        policy = ConflictPolicy(policy)
        series = self._require(RehearsalSeries, series_id, "Series")
        self._require_member(series.band_id, actor_id)
        if series.status not in (SERIES_VALIDATED, SERIES_COMMITTED):
            raise InvalidTransition("series", series.status, "edited")

        rule = series.rule if rule is _UNCHANGED else self._coerce_rule(rule, series.timezone)
        venue_id = series.venue_id if venue_id is _UNCHANGED else venue_id
        if venue_id is not None:
            self._require(Venue, venue_id, "Venue")
        anchor = anchor or series.anchor

        now = self._now()
        specs = self._plan(anchor, rule, horizon, venue_id, series.timezone, not_before=now)

        replacement = RehearsalSeries(
            id=uuid.uuid4(),
            band_id=series.band_id,
            created_by=actor_id,
            title=title or series.title,
            description=series.description,
            anchor_start=anchor.start,
            anchor_end=anchor.end,
            timezone=series.timezone,
            venue_id=venue_id,
            recurrence=rule.to_dict() if rule else None,
            status=SERIES_DRAFT,
            previous_series_id=series.id,
        )

        _, conflicts, cancelled = self._validate_new_series(
            replacement,
            specs,
            before=lambda: self._cancel_upcoming(series, now, REASON_SERIES_EDITED),
        )
        logger.info(
            f"Series {series.id} edited: {len(cancelled)} upcoming occurrences cancelled, "
            f"replaced by series {replacement.id}"
        )
        for occurrence in cancelled:
            self._emit(series.band_id, REHEARSAL_CANCELLED, _occurrence_payload(occurrence))

        return self._finish(replacement, actor_id, conflicts, policy, auto_commit)

    def cancel_series(self, series_id: uuid.UUID, actor_id: uuid.UUID) -> list[RehearsalOccurrence]:
        """
        Cancel every upcoming proposed or confirmed occurrence of a series.

        Returns:
            The cancelled occurrences
        """
        series = self._require(RehearsalSeries, series_id, "Series")
        self._require_member(series.band_id, actor_id)
        now = self._now()

        cancelled = self.persistence.with_exclusive(
            _lock_keys(series.band_id),
            lambda: self._cancel_upcoming(series, now, REASON_SERIES_CANCELLED),
        )
        logger.info(f"Series {series.id} cancelled ({len(cancelled)} occurrences)")
        for occurrence in cancelled:
            self._emit(series.band_id, REHEARSAL_CANCELLED, _occurrence_payload(occurrence))
        return cancelled

    def series_conflicts(self, series_id: uuid.UUID) -> Sequence[SchedulingConflict]:
        """Conflicts recorded for a series that still await a decision."""
        self._require(RehearsalSeries, series_id, "Series")
        return queries.get_unresolved_conflicts(self.persistence, series_id)

    # =========================================================================
    # Occurrence lifecycle
    # =========================================================================

    def cancel_occurrence(
        self,
        occurrence_id: uuid.UUID,
        actor_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> RehearsalOccurrence:
        """
        Cancel one occurrence before it ends.

        Responses and attendance stay readable.

        Raises:
            InvalidTransition: Already cancelled/completed, or already over
        """
        occurrence = self._require(RehearsalOccurrence, occurrence_id, "Occurrence")
        self._require_member(occurrence.band_id, actor_id)
        now = self._now()
        if occurrence.end_time <= now:
            raise InvalidTransition("occurrence", occurrence.effective_status(now), OCCURRENCE_CANCELLED)

        _advance_occurrence(occurrence, OCCURRENCE_CANCELLED, now, reason)
        self.persistence.upsert(occurrence)
        logger.info(f"Occurrence {occurrence.id} cancelled by {actor_id}")
        self._emit(occurrence.band_id, REHEARSAL_CANCELLED, _occurrence_payload(occurrence))
        return occurrence

    def reschedule_occurrence(
        self,
        occurrence_id: uuid.UUID,
        actor_id: uuid.UUID,
        new_interval: Interval,
        venue_id=_UNCHANGED,
    ) -> RescheduleResult:
        """
        Move an occurrence to a new time and/or venue.

        The original is never modified in place: a replacement occurrence is
        created and the original cancelled, in one unit of work. If the new
        slot conflicts, nothing changes and the conflicts are returned.

        Raises:
            InvalidTransition: The occurrence is not open or already over
        """
        original = self._require(RehearsalOccurrence, occurrence_id, "Occurrence")
        self._require_member(original.band_id, actor_id)
        now = self._now()
        if original.status not in OPEN_STATUSES or original.end_time <= now:
            raise InvalidTransition("occurrence", original.effective_status(now), "rescheduled")

        venue_id = original.venue_id if venue_id is _UNCHANGED else venue_id
        if venue_id is not None:
            self._require(Venue, venue_id, "Venue")

        def apply():
            index, members = queries.build_occurrence_index(
                self.persistence,
                original.band_id,
                new_interval,
                venue_ids=[venue_id],
                exclude_ids=[original.id],
            )
            replacement_id = uuid.uuid4()
            candidate = ScheduledSlot(
                occurrence_id=replacement_id,
                band_id=original.band_id,
                interval=new_interval,
                venue_id=venue_id,
                member_ids=members,
            )
            conflicts = detect_conflicts(candidate, index)
            if conflicts:
                return None, conflicts

            replacement = RehearsalOccurrence(
                id=replacement_id,
                series_id=original.series_id,
                band_id=original.band_id,
                start_time=new_interval.start,
                end_time=new_interval.end,
                venue_id=venue_id,
                status=OCCURRENCE_PROPOSED,
                replaces_occurrence_id=original.id,
                proposed_at=now,
            )
            was_confirmed = original.status == OCCURRENCE_CONFIRMED
            if was_confirmed:
                _advance_occurrence(replacement, OCCURRENCE_CONFIRMED, now)
            self.persistence.upsert(replacement)
            _advance_occurrence(original, OCCURRENCE_CANCELLED, now, REASON_RESCHEDULED)
            self.persistence.upsert(original)
            if was_confirmed:
                for member_id in sorted(members, key=str):
                    self.persistence.upsert(
                        Invitation(occurrence_id=replacement_id, user_id=member_id, invited_at=now)
                    )
            return replacement, []

        replacement, conflicts = self.persistence.with_exclusive(
            _lock_keys(original.band_id, {original.venue_id, venue_id}), apply
        )
        if replacement is None:
            logger.warning(
                f"Reschedule of occurrence {original.id} rejected: {len(conflicts)} conflicts"
            )
            return RescheduleResult(original=original, conflicts=conflicts)

        logger.info(f"Occurrence {original.id} rescheduled as {replacement.id}")
        payload = _occurrence_payload(replacement)
        payload["replacesOccurrenceId"] = str(original.id)
        self._emit(original.band_id, REHEARSAL_RESCHEDULED, payload)
        return RescheduleResult(original=original, replacement=replacement)

    def complete_elapsed(self, now: Optional[datetime] = None) -> list[RehearsalOccurrence]:
        """
        Mark every confirmed occurrence whose end has passed as completed.

        Returns:
            The occurrences completed by this sweep
        """
        now = now or self._now()

        def sweep():
            completed = []
            for occurrence in queries.find_elapsed_confirmed(self.persistence, now):
                _advance_occurrence(occurrence, OCCURRENCE_COMPLETED, now)
                self.persistence.upsert(occurrence)
                completed.append(occurrence)
            return completed

        completed = self.persistence.with_exclusive("occurrences:completion", sweep)
        if completed:
            logger.info(f"Completed {len(completed)} elapsed occurrences")
        for occurrence in completed:
            self._emit(occurrence.band_id, REHEARSAL_COMPLETED, _occurrence_payload(occurrence))
        return completed

    def close_occurrence(self, occurrence_id: uuid.UUID, actor_id: uuid.UUID) -> RehearsalOccurrence:
        """
        Explicitly complete a confirmed occurrence once it has started.

        Raises:
            OccurrenceNotConcluded: It has not started yet
            InvalidTransition: It is not confirmed
        """
        occurrence = self._require(RehearsalOccurrence, occurrence_id, "Occurrence")
        self._require_member(occurrence.band_id, actor_id)
        now = self._now()
        if occurrence.start_time > now:
            raise OccurrenceNotConcluded(f"Occurrence {occurrence.id} has not started yet")

        _advance_occurrence(occurrence, OCCURRENCE_COMPLETED, now)
        self.persistence.upsert(occurrence)
        logger.info(f"Occurrence {occurrence.id} closed by {actor_id}")
        self._emit(occurrence.band_id, REHEARSAL_COMPLETED, _occurrence_payload(occurrence))
        return occurrence

    # =========================================================================
    # Availability and attendance
    # =========================================================================

    def record_availability(
        self,
        occurrence_id: uuid.UUID,
        user_id: uuid.UUID,
        status: Union[AvailabilityStatus, str],
        responded_at: Optional[datetime] = None,
    ) -> ResponseOutcome:
        """
        Record a member's availability for an occurrence.

        One response per (occurrence, user); an older response never
        overwrites a newer one. The read-and-merge runs under a lock on the
        (occurrence, user) pair, so concurrent first answers cannot race
        each other into a duplicate row. Users who left the band are still
        recorded and get a StaleMembership notice.

        Raises:
            OccurrenceFrozen: The occurrence is cancelled
            SeriesCommitFailed: The lock or the write failed; nothing stored
        """
        status = AvailabilityStatus(status)
        occurrence = self._require(RehearsalOccurrence, occurrence_id, "Occurrence")
        self._require(User, user_id, "User")
        if occurrence.status == OCCURRENCE_CANCELLED:
            raise OccurrenceFrozen(f"Occurrence {occurrence.id} is cancelled")

        incoming = ResponseEntry(user_id, status, normalize_instant(responded_at or self._now()))

        def write() -> AvailabilityResponse:
            record = queries.get_availability_response(self.persistence, occurrence_id, user_id)
            if record is None:
                record = AvailabilityResponse(
                    occurrence_id=occurrence_id,
                    user_id=user_id,
                    status=status.value,
                    responded_at=incoming.responded_at,
                )
                return self.persistence.upsert(record)

            self.persistence.refresh(record)
            existing = ResponseEntry(
                user_id, AvailabilityStatus(record.status), record.responded_at
            )
            if merge_response(existing, incoming) is existing:
                logger.debug(f"Ignoring out-of-order response from {user_id} for {occurrence_id}")
                return record
            record.status = status.value
            record.responded_at = incoming.responded_at
            return self.persistence.upsert(record)

        record = self.persistence.with_exclusive(f"response:{occurrence_id}:{user_id}", write)

        stale = self._stale_notice(occurrence, user_id)
        summary = self.availability_summary(occurrence_id)
        self._emit(
            occurrence.band_id,
            AVAILABILITY_UPDATED,
            {
                "occurrenceId": str(occurrence_id),
                "userId": str(user_id),
                "status": record.status,
                "summary": summary.to_dict(),
            },
        )
        return ResponseOutcome(record=record, stale=stale)

    def availability_summary(
        self,
        occurrence_id: uuid.UUID,
        quorum_fraction=None,
    ) -> AvailabilitySummary:
        """Availability summary for an occurrence, recomputed from stored rows."""
        self._require(RehearsalOccurrence, occurrence_id, "Occurrence")
        return summarize(
            queries.get_invited_ids(self.persistence, occurrence_id),
            queries.get_response_entries(self.persistence, occurrence_id),
            quorum_fraction if quorum_fraction is not None else self.quorum_fraction,
        )

    def record_attendance(
        self,
        occurrence_id: uuid.UUID,
        user_id: uuid.UUID,
        status: Union[AttendanceStatus, str],
        override: bool = False,
    ) -> ResponseOutcome:
        """
        Record whether a user attended an occurrence.

        Allowed once the occurrence has ended, or earlier with override.

        Raises:
            OccurrenceFrozen: The occurrence is cancelled
            OccurrenceNotConcluded: Not over yet and no override
            SeriesCommitFailed: The lock or the write failed; nothing stored
        """
        status = AttendanceStatus(status)
        occurrence = self._require(RehearsalOccurrence, occurrence_id, "Occurrence")
        self._require(User, user_id, "User")
        if occurrence.status == OCCURRENCE_CANCELLED:
            raise OccurrenceFrozen(f"Occurrence {occurrence.id} is cancelled")

        now = self._now()
        early = occurrence.end_time > now
        if early and not override:
            raise OccurrenceNotConcluded(f"Occurrence {occurrence.id} has not ended yet")

        def write() -> AttendanceRecord:
            record = queries.get_attendance_record(self.persistence, occurrence_id, user_id)
            if record is None:
                record = AttendanceRecord(occurrence_id=occurrence_id, user_id=user_id)
            record.status = status.value
            record.recorded_at = now
            record.manual_override = early
            return self.persistence.upsert(record)

        record = self.persistence.with_exclusive(f"attendance:{occurrence_id}:{user_id}", write)

        return ResponseOutcome(record=record, stale=self._stale_notice(occurrence, user_id))

    def reconcile_attendance(self, occurrence_id: uuid.UUID) -> DiscrepancyReport:
        """
        Compare availability answers with final attendance.

        Raises:
            OccurrenceNotConcluded: The occurrence is not completed
        """
        occurrence = self._require(RehearsalOccurrence, occurrence_id, "Occurrence")
        if occurrence.effective_status(self._now()) != OCCURRENCE_COMPLETED:
            raise OccurrenceNotConcluded(
                f"Occurrence {occurrence.id} is {occurrence.status}, not completed"
            )
        return reconcile(
            queries.get_invited_ids(self.persistence, occurrence_id),
            queries.get_response_entries(self.persistence, occurrence_id),
            queries.get_attendance_entries(self.persistence, occurrence_id),
        )
