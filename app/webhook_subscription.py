"""Manage the Strava push subscription that delivers activity webhooks.

Strava allows one subscription per application. `ensure_subscription_exists`
is the hands-off entrypoint: look for an existing subscription, check that
our callback answers the verification handshake, then create one. It is run
off the request path by `SubscriptionJob`, whose status an operator can poll.
"""

from __future__ import annotations

import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import requests

from app.app_types import Clock, utc_now
from app.errors import UpstreamError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="webhook_subscription")

VERIFY_TIMEOUT_SECONDS = 5


@dataclass(frozen=True)
class WebhookSubscription:
    id: int
    callback_url: str
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "WebhookSubscription":
        return cls(
            id=int(payload["id"]),
            callback_url=payload.get("callback_url", ""),
            created_at=payload.get("created_at", ""),
            updated_at=payload.get("updated_at", ""),
        )


class WebhookSubscriptionService:
    """Thin wrapper around Strava's push_subscriptions endpoints."""

    def __init__(
        self,
        *,
        client_id: str | None,
        client_secret: str | None,
        verify_token: str | None,
        callback_url: str,
        api_base_url: str = "https://www.strava.com/api/v3",
        timeout: float = 10.0,
        session: requests.Session | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.verify_token = verify_token
        self.callback_url = callback_url
        self.subscription_url = f"{api_base_url.rstrip('/')}/push_subscriptions"
        self.timeout = timeout
        self.session = session or requests.Session()

    def _credentials(self) -> Dict[str, Any]:
        return {"client_id": self.client_id, "client_secret": self.client_secret}

    def view_subscription(self) -> Optional[WebhookSubscription]:
        """Return the application's subscription, or None if there is none."""
        logger.debug("Checking for existing webhook subscription")
        resp = self.session.get(self.subscription_url, params=self._credentials(), timeout=self.timeout)
        if not resp.ok:
            logger.error("Failed to retrieve webhook subscription: %d - %s", resp.status_code, (resp.text or "")[:200])
            raise UpstreamError(f"Failed to view subscription: {resp.status_code}", status_code=resp.status_code)

        subscriptions = resp.json() or []
        if not subscriptions:
            logger.debug("No existing webhook subscription found")
            return None
        subscription = WebhookSubscription.from_payload(subscriptions[0])
        logger.info(
            "Found existing webhook subscription: %s", subscription.id,
            extra={"callback_url": subscription.callback_url},
        )
        return subscription

    def create_subscription(self, callback_url: str) -> WebhookSubscription:
        """Register `callback_url`. Refuses when a subscription already exists."""
        logger.info("Creating webhook subscription", extra={"callback_url": callback_url})
        existing = self.view_subscription()
        if existing is not None:
            raise ValueError(f"Subscription {existing.id} already exists; delete it first")
        if not callback_url.startswith("https://"):
            raise ValueError("Callback URL must use HTTPS")

        data = {**self._credentials(), "callback_url": callback_url, "verify_token": self.verify_token}
        resp = self.session.post(self.subscription_url, data=data, timeout=self.timeout)
        if not resp.ok:
            body = (resp.text or "")[:200]
            logger.error("Failed to create webhook subscription: %d - %s", resp.status_code, body)
            raise UpstreamError(f"Failed to create subscription: {body}", status_code=resp.status_code)

        subscription = WebhookSubscription.from_payload(resp.json())
        logger.info("Webhook subscription created: %s", subscription.id)
        return subscription

    def delete_subscription(self, subscription_id: int) -> None:
        logger.info("Deleting webhook subscription %s", subscription_id)
        resp = self.session.delete(
            f"{self.subscription_url}/{subscription_id}", params=self._credentials(), timeout=self.timeout
        )
        if resp.status_code == 204 or resp.ok:
            logger.info("Webhook subscription %s deleted", subscription_id)
            return
        logger.error("Failed to delete webhook subscription: %d - %s", resp.status_code, (resp.text or "")[:200])
        raise UpstreamError(f"Failed to delete subscription: {resp.status_code}", status_code=resp.status_code)

    def verify_endpoint(self, callback_url: str) -> bool:
        """Run the verification handshake against our own callback; True only if echoed back."""
        challenge = f"test_challenge_{int(time.time())}"
        params = {"hub.mode": "subscribe", "hub.verify_token": self.verify_token, "hub.challenge": challenge}
        try:
            resp = self.session.get(callback_url, params=params, timeout=VERIFY_TIMEOUT_SECONDS)
        except requests.exceptions.RequestException as exc:
            logger.error("Failed to verify webhook endpoint: %s", exc, extra={"callback_url": callback_url})
            return False
        if not resp.ok:
            logger.warning("Webhook endpoint returned non-OK status: %d", resp.status_code)
            return False
        try:
            echoed = (resp.json() or {}).get("hub.challenge")
        except ValueError:
            echoed = None
        if echoed != challenge:
            logger.warning("Webhook endpoint returned incorrect challenge")
            return False
        logger.info("Webhook endpoint verified", extra={"callback_url": callback_url})
        return True

    def ensure_subscription(self) -> WebhookSubscription:
        """View, verify, create. Raises on any failure."""
        existing = self.view_subscription()
        if existing is not None:
            return existing
        logger.info("No webhook subscription found, creating one")
        if not self.verify_endpoint(self.callback_url):
            raise UpstreamError(f"Webhook endpoint is not accessible: {self.callback_url}")
        return self.create_subscription(self.callback_url)

    def ensure_subscription_exists(self) -> bool:
        """Like `ensure_subscription` but never raises; returns whether a subscription is in place."""
        try:
            self.ensure_subscription()
            return True
        except Exception as exc:
            logger.error("Failed to ensure webhook subscription exists: %s", exc)
            return False


class JobState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class JobStatus:
    state: JobState = JobState.IDLE
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    last_error: Optional[str] = None
    subscription_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        for key in ("started_at", "finished_at"):
            data[key] = data[key].isoformat() if data[key] else None
        return data


class SubscriptionJob:
    """Run `ensure_subscription` on a background thread with its own error boundary."""

    def __init__(self, service: WebhookSubscriptionService, *, clock: Clock = utc_now) -> None:
        self.service = service
        self.clock = clock
        self._status = JobStatus()
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def status(self) -> JobStatus:
        with self._lock:
            return JobStatus(**asdict(self._status))

    def schedule(self) -> bool:
        """Start the job unless one is already running. Returns whether it was started."""
        with self._lock:
            if self._status.state is JobState.RUNNING:
                return False
            self._status = JobStatus(state=JobState.RUNNING, started_at=self.clock())
            self._thread = threading.Thread(target=self._run, name="webhook-subscription", daemon=True)
            self._thread.start()
        return True

    def run(self) -> JobStatus:
        """Run the job synchronously (used at startup and in tests)."""
        with self._lock:
            self._status = JobStatus(state=JobState.RUNNING, started_at=self.clock())
        self._run()
        return self.status

    def join(self, timeout: Optional[float] = None) -> None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)

    def _run(self) -> None:
        try:
            subscription = self.service.ensure_subscription()
        except Exception as exc:
            logger.error("Webhook subscription job failed: %s", exc)
            with self._lock:
                self._status.state = JobState.FAILED
                self._status.last_error = str(exc)
                self._status.finished_at = self.clock()
            return
        with self._lock:
            self._status.state = JobState.SUCCEEDED
            self._status.subscription_id = subscription.id
            self._status.last_error = None
            self._status.finished_at = self.clock()
        logger.info("Webhook subscription job finished", extra={"subscription_id": subscription.id})
