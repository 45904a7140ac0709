"""
Band subscription models.

Stores webhook URLs that receive a band's rehearsal notifications
(rehearsal.scheduled, rehearsal.cancelled, ...).
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import String, Text, Boolean, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from rehearsal_scheduler.models.base import BaseModel, UTCDateTime, utcnow

DEFAULT_EVENT_TYPES = (
    "rehearsal.scheduled,rehearsal.cancelled,rehearsal.rescheduled,"
    "rehearsal.completed,availability.updated"
)


class BandSubscription(BaseModel):
    """
    Webhook subscription to a band's events.

    Attributes:
        band_id: Band whose events are delivered
        url: HTTPS URL to send notifications to
        secret: Shared secret for HMAC signature verification
        event_types: Comma-separated list of event types to receive
        active: Whether the subscription is currently active
        last_triggered: When it was last successfully triggered
        failure_count: Consecutive failures (reset on success)
    """

    __tablename__ = "band_subscriptions"

    band_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("bands.id", ondelete="CASCADE"),
        nullable=False,
        doc="Band this subscription listens to"
    )

    url: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        doc="HTTPS URL to send notifications to"
    )

    secret: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        doc="Shared secret for HMAC-SHA256 signature"
    )

    event_types: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        default=DEFAULT_EVENT_TYPES,
        doc="Comma-separated event types"
    )

    active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        doc="Whether the subscription is active"
    )

    last_triggered: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime,
        nullable=True,
        doc="When the subscription was last successfully triggered"
    )

    failure_count: Mapped[int] = mapped_column(
        nullable=False,
        default=0,
        doc="Consecutive delivery failures (resets on success)"
    )

    __table_args__ = (
        Index("ix_band_subscriptions_band_active", "band_id", "active"),
    )

    @property
    def event_type_list(self) -> list[str]:
        """Get event types as a list."""
        return [t.strip() for t in self.event_types.split(",") if t.strip()]

    def should_trigger(self, event_type: str) -> bool:
        """Check if this subscription should be triggered for an event type."""
        return self.active and event_type in self.event_type_list

    def record_success(self) -> None:
        self.last_triggered = utcnow()
        self.failure_count = 0

    def record_failure(self) -> None:
        self.failure_count += 1
        # Disable after 10 consecutive failures
        if self.failure_count >= 10:
            self.active = False

    def __repr__(self) -> str:
        return f"<BandSubscription(band_id={self.band_id}, url={self.url[:50]}..., active={self.active})>"
