"""
Notification Sinks
==================

Fire-and-forget delivery of case notifications.

Delivery is best-effort: `BestEffortNotifier` wraps a sink and reports
failures as `DeliveryReport` values instead of raising, so a broken
webhook can never block a case-state mutation.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from repairdesk.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Notification:
    """A message addressed to a role (or a specific user) about a case."""
    case_id: str
    subject: str
    body: str
    recipient_role: Optional[str] = None
    recipient_id: Optional[str] = None
    category: str = "general"
    data: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryReport:
    """Outcome of one best-effort delivery."""
    notification: Notification
    delivered: bool
    error: Optional[str] = None
    attempted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class INotificationSink(ABC):
    """Interface for notification delivery."""

    @abstractmethod
    async def send(self, notification: Notification) -> None:
        """Deliver a notification; raise on failure."""

    async def close(self) -> None:
        """Release transport resources."""


class LoggingNotificationSink(INotificationSink):
    """Sink used when no delivery channel is configured."""

    async def send(self, notification: Notification) -> None:
        logger.info(
            "Notification",
            extra={
                "case_id": notification.case_id,
                "subject": notification.subject,
                "recipient_role": notification.recipient_role,
                "recipient_id": notification.recipient_id,
                "category": notification.category,
            }
        )


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            elapsed = time.monotonic() - self._last_failure_time
            if elapsed >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        """Check if request should be allowed."""
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        """Record successful request."""
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        """Record failed request."""
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class SlackNotificationSink(INotificationSink):
    """
    Slack webhook sink with circuit breaker and retry logic.

    Handles sending structured case notifications to Slack with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry
    - Timeout handling
    """

    def __init__(
        self,
        webhook_url: str,
        channel: str,
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self._webhook_url = webhook_url
        self._channel = channel
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._circuit_breaker = CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )
        self._http_client = http_client

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    def _build_message(self, notification: Notification) -> Dict[str, Any]:
        """Build Slack Block Kit message."""
        fields = [
            {"type": "mrkdwn", "text": f"*Case:*\n{notification.case_id}"},
            {"type": "mrkdwn", "text": f"*Category:*\n{notification.category}"},
        ]
        if notification.recipient_role:
            fields.append(
                {"type": "mrkdwn", "text": f"*Notify:*\n{notification.recipient_role}"}
            )
        for key, value in notification.data.items():
            label = key.replace("_", " ").title()
            fields.append({"type": "mrkdwn", "text": f"*{label}:*\n{value}"})

        blocks: List[Dict[str, Any]] = [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": notification.subject}
            },
            {"type": "section", "text": {"type": "mrkdwn", "text": notification.body}},
            {"type": "section", "fields": fields[:10]},
        ]

        return {"channel": self._channel, "blocks": blocks}

    async def send(self, notification: Notification) -> None:
        """
        Send a notification to the Slack webhook.

        Raises:
            RuntimeError: circuit open or every attempt failed
        """
        if not self._circuit_breaker.allow_request():
            raise RuntimeError("Slack circuit breaker open")

        message = self._build_message(notification)
        last_error = "no attempt made"

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._webhook_url, json=message)

                if response.status_code == 200:
                    self._circuit_breaker.record_success()
                    return
                last_error = f"Slack webhook returned {response.status_code}"
                logger.warning(
                    "Slack webhook returned non-200",
                    extra={
                        "status_code": response.status_code,
                        "attempt": attempt + 1
                    }
                )
            except httpx.HTTPError as e:
                last_error = str(e) or e.__class__.__name__
                logger.warning(
                    "Slack notification attempt failed",
                    extra={
                        "error": last_error,
                        "attempt": attempt + 1,
                        "case_id": notification.case_id
                    }
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        self._circuit_breaker.record_failure()
        raise RuntimeError(last_error)

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


class BestEffortNotifier:
    """
    Delivers notifications without ever raising.

    Every failure is logged and returned in the `DeliveryReport`.
    """

    def __init__(self, sink: INotificationSink):
        self._sink = sink

    async def notify(self, notification: Notification) -> DeliveryReport:
        try:
            await self._sink.send(notification)
        except Exception as e:  # delivery failures never propagate
            logger.warning(
                "Notification delivery failed",
                extra={
                    "case_id": notification.case_id,
                    "category": notification.category,
                    "error": str(e),
                }
            )
            return DeliveryReport(notification=notification, delivered=False, error=str(e))
        return DeliveryReport(notification=notification, delivered=True)

    async def notify_all(self, notifications: List[Notification]) -> List[DeliveryReport]:
        return [await self.notify(n) for n in notifications]

    async def close(self) -> None:
        await self._sink.close()
