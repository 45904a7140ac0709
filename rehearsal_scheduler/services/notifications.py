"""
Notification delivery.

Publishes band events (rehearsal.scheduled, rehearsal.cancelled, ...) to
in-process subscribers or to registered webhook endpoints with HMAC
signature verification and retry logic.

Publishing is fire-and-forget: a failing subscriber or endpoint is logged
and never fails the scheduling operation that produced the event.
"""

import hashlib
import hmac
import json
import logging
import threading
from abc import abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol
from uuid import UUID

import httpx
from tenacity import (
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from rehearsal_scheduler.config import Settings, get_settings
from rehearsal_scheduler.models.subscriptions import BandSubscription

logger = logging.getLogger(__name__)

# Event names
REHEARSAL_SCHEDULED = "rehearsal.scheduled"
REHEARSAL_CANCELLED = "rehearsal.cancelled"
REHEARSAL_RESCHEDULED = "rehearsal.rescheduled"
REHEARSAL_COMPLETED = "rehearsal.completed"
AVAILABILITY_UPDATED = "availability.updated"

Subscriber = Callable[[str, dict[str, Any]], None]


class Notifier(Protocol):
    """
    Protocol for event publishers.

    Implementations:
    - InMemoryNotifier: Calls subscriber callbacks in-process
    - WebhookNotifier: POSTs signed payloads to band subscriptions
    - CompositeNotifier: Fans out to several notifiers
    """

    @abstractmethod
    def publish(self, band_id: UUID, event_name: str, payload: dict[str, Any]) -> None:
        """Publish an event to everyone subscribed to a band."""
        ...


class InMemoryNotifier:
    """
    Per-band subscriber registry.

    Example:
        notifier = InMemoryNotifier()
        notifier.subscribe(band.id, lambda event, payload: print(event))
    """

    def __init__(self):
        self._subscribers: dict[UUID, list[Subscriber]] = {}
        self._lock = threading.Lock()

    def subscribe(self, band_id: UUID, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers.setdefault(band_id, []).append(callback)

    def unsubscribe(self, band_id: UUID, callback: Subscriber) -> bool:
        with self._lock:
            callbacks = self._subscribers.get(band_id, [])
            if callback not in callbacks:
                return False
            callbacks.remove(callback)
            return True

    def subscriber_count(self, band_id: UUID) -> int:
        return len(self._subscribers.get(band_id, []))

    def publish(self, band_id: UUID, event_name: str, payload: dict[str, Any]) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get(band_id, []))

        for callback in callbacks:
            try:
                callback(event_name, payload)
            except Exception as e:
                logger.error(f"Subscriber for band {band_id} failed on {event_name}: {e}")


class CompositeNotifier:
    """Publishes every event to each wrapped notifier in turn."""

    def __init__(self, *notifiers: Notifier):
        self.notifiers = list(notifiers)

    def publish(self, band_id: UUID, event_name: str, payload: dict[str, Any]) -> None:
        for notifier in self.notifiers:
            notifier.publish(band_id, event_name, payload)


# =============================================================================
# Webhooks
# =============================================================================


class WebhookDeliveryError(Exception):
    """A single webhook delivery attempt failed."""

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


def _is_retryable_error(exception: BaseException) -> bool:
    """Check if an exception should trigger a retry."""
    if isinstance(exception, WebhookDeliveryError):
        return exception.retryable
    return isinstance(exception, httpx.TransportError)


def generate_signature(payload: str, secret: str) -> str:
    """
    Generate HMAC-SHA256 signature for webhook payload.

    Args:
        payload: JSON string payload
        secret: Subscription secret

    Returns:
        Hex-encoded signature
    """
    return hmac.new(
        secret.encode("utf-8"),
        payload.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def verify_signature(payload: str, secret: str, signature: str) -> bool:
    """Check a received signature against the payload in constant time."""
    return hmac.compare_digest(generate_signature(payload, secret), signature)


class WebhookNotifier:
    """
    Delivers events to a band's active BandSubscriptions.

    Each delivery is retried with exponential backoff on transport errors
    and 5xx/429 responses. The outcome is recorded on the subscription
    (failure_count, last_triggered).
    """

    def __init__(
        self,
        persistence,
        timeout: float = 10.0,
        max_retries: int = 3,
        client: Optional[httpx.Client] = None,
        wait=None,
    ):
        self.persistence = persistence
        self.timeout = timeout
        self.max_retries = max_retries
        self._client = client
        self._wait = wait if wait is not None else wait_exponential(multiplier=1, min=1, max=10)

    @classmethod
    def from_settings(
        cls,
        persistence,
        settings: Optional[Settings] = None,
        client: Optional[httpx.Client] = None,
    ) -> "WebhookNotifier":
        """Build a notifier with timeout and retry count taken from application settings."""
        settings = settings or get_settings()
        return cls(
            persistence,
            timeout=settings.webhook_timeout_seconds,
            max_retries=settings.webhook_max_retries,
            client=client,
        )

    def _post(self, url: str, content: str, headers: dict[str, str]) -> httpx.Response:
        if self._client is not None:
            return self._client.post(url, content=content, headers=headers)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(url, content=content, headers=headers)

    def _send_once(self, subscription: BandSubscription, content: str, headers: dict[str, str]) -> None:
        response = self._post(subscription.url, content, headers)
        if 200 <= response.status_code < 300:
            return
        raise WebhookDeliveryError(
            f"HTTP {response.status_code}: {response.text[:200]}",
            retryable=response.status_code >= 500 or response.status_code == 429,
        )

    def deliver(
        self,
        subscription: BandSubscription,
        event_name: str,
        payload: dict[str, Any],
    ) -> bool:
        """
        Deliver one event to one subscription.

        Returns:
            True if delivery succeeded (or the subscription does not want
            this event type), False otherwise
        """
        if not subscription.should_trigger(event_name):
            logger.debug(f"Subscription {subscription.id} not configured for {event_name}")
            return True

        body = {
            "event_type": event_name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": payload,
        }
        content = json.dumps(body, default=str)
        headers = {
            "Content-Type": "application/json",
            "X-Webhook-Signature": generate_signature(content, subscription.secret),
            "X-Webhook-Event": event_name,
            "X-Webhook-Timestamp": body["timestamp"],
        }

        retrying = Retrying(
            stop=stop_after_attempt(max(1, self.max_retries)),
            wait=self._wait,
            retry=retry_if_exception(_is_retryable_error),
            reraise=True,
        )
        try:
            retrying(self._send_once, subscription, content, headers)
        except (WebhookDeliveryError, httpx.HTTPError) as e:
            logger.error(f"Subscription {subscription.id} delivery of {event_name} failed: {e}")
            subscription.record_failure()
            self.persistence.upsert(subscription)
            return False

        logger.info(f"Subscription {subscription.id} received {event_name}")
        subscription.record_success()
        self.persistence.upsert(subscription)
        return True

    def publish(self, band_id: UUID, event_name: str, payload: dict[str, Any]) -> None:
        subscriptions = self.persistence.query(
            BandSubscription,
            BandSubscription.band_id == band_id,
            BandSubscription.active.is_(True),
        )
        if not subscriptions:
            logger.debug(f"No active subscriptions for band {band_id}")
            return

        logger.info(f"Publishing {event_name} to {len(subscriptions)} subscriptions of band {band_id}")
        for subscription in subscriptions:
            try:
                self.deliver(subscription, event_name, payload)
            except Exception as e:
                logger.error(f"Error delivering to subscription {subscription.id}: {e}")
