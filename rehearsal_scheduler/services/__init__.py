"""
Service layer for the Rehearsal Scheduler.

Provides:
- Persistence collaborator (SQLAlchemy session, exclusive units of work)
- Range queries feeding conflict detection
- Notification delivery (in-process subscribers, signed webhooks)
- SchedulingService, the orchestrator for series and occurrence lifecycles
"""

from rehearsal_scheduler.services.persistence import (
    Persistence,
    SQLAlchemyPersistence,
    LockRegistry,
)

from rehearsal_scheduler.services.notifications import (
    Notifier,
    InMemoryNotifier,
    WebhookNotifier,
    CompositeNotifier,
    generate_signature,
    verify_signature,
    REHEARSAL_SCHEDULED,
    REHEARSAL_CANCELLED,
    REHEARSAL_RESCHEDULED,
    REHEARSAL_COMPLETED,
    AVAILABILITY_UPDATED,
)

from rehearsal_scheduler.services.scheduling import (
    SchedulingService,
    SchedulingResult,
    RescheduleResult,
    ResponseOutcome,
)

__all__ = [
    # Persistence
    "Persistence",
    "SQLAlchemyPersistence",
    "LockRegistry",
    # Notifications
    "Notifier",
    "InMemoryNotifier",
    "WebhookNotifier",
    "CompositeNotifier",
    "generate_signature",
    "verify_signature",
    "REHEARSAL_SCHEDULED",
    "REHEARSAL_CANCELLED",
    "REHEARSAL_RESCHEDULED",
    "REHEARSAL_COMPLETED",
    "AVAILABILITY_UPDATED",
    # Scheduling
    "SchedulingService",
    "SchedulingResult",
    "RescheduleResult",
    "ResponseOutcome",
]
