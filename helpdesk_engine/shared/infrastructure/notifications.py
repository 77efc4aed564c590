"""
Notification Sinks
==================

Concrete sinks for notification intents:
- LoggingNotificationSink: writes intents to the structured log
- WebhookNotificationSink: posts intents to the external delivery service
  with a circuit breaker and exponential backoff retry, all attempts
  bounded by one delivery deadline
"""

import asyncio
import time
from typing import Optional

import httpx

from helpdesk_engine.core import NotificationDeliveryException
from helpdesk_engine.shared.domain.notifications import INotificationSink, NotificationIntent
from helpdesk_engine.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


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
        recovery_timeout: float = 60.0,
        clock=time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class LoggingNotificationSink(INotificationSink):
    """Sink that only records intents in the log."""

    async def emit(self, intent: NotificationIntent) -> None:
        logger.info("Notification intent", extra=intent.to_dict())


class WebhookNotificationSink(INotificationSink):
    """
    Posts intents as JSON to the external delivery service.

    Handles:
    - Circuit breaker to stop hammering a dead endpoint
    - Exponential backoff retry
    - Timeout handling: delivery_deadline_seconds caps the whole send,
      retries and backoff included
    """

    def __init__(
        self,
        url: str,
        timeout_seconds: float = 5.0,
        max_retries: int = 3,
        circuit_breaker: Optional[CircuitBreaker] = None,
        client: Optional[httpx.AsyncClient] = None,
        delivery_deadline_seconds: float = 3.0,
    ):
        self._url = url
        self._timeout = timeout_seconds
        self._max_retries = max_retries
        self._delivery_deadline = delivery_deadline_seconds
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=5,
            recovery_timeout=60
        )
        self._http_client = client

    async def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def emit(self, intent: NotificationIntent) -> None:
        """
        Deliver an intent.

        Raises:
            NotificationDeliveryException: the intent was not delivered
        """
        if not await self.send(intent):
            raise NotificationDeliveryException(intent.kind.value, intent.ticket_id, "delivery failed")

    async def send(self, intent: NotificationIntent) -> bool:
        """
        Deliver an intent to the webhook.

        Returns:
            True if delivered, False otherwise
        """
        if not self._circuit_breaker.allow_request():
            logger.warning(
                "Circuit breaker open, dropping notification intent",
                extra={"kind": intent.kind.value, "ticket_id": intent.ticket_id}
            )
            return False

        try:
            delivered = await asyncio.wait_for(self._post_with_retry(intent), self._delivery_deadline)
        except asyncio.TimeoutError:
            logger.error(
                "Notification delivery deadline exceeded",
                extra={
                    "kind": intent.kind.value,
                    "ticket_id": intent.ticket_id,
                    "deadline_seconds": self._delivery_deadline,
                }
            )
            delivered = False

        if not delivered:
            self._circuit_breaker.record_failure()
        return delivered

    async def _post_with_retry(self, intent: NotificationIntent) -> bool:
        body = intent.to_dict()

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post(self._url, json=body)

                if response.status_code < 300:
                    self._circuit_breaker.record_success()
                    logger.info(
                        "Notification intent delivered",
                        extra={"kind": intent.kind.value, "ticket_id": intent.ticket_id}
                    )
                    return True

                logger.warning(
                    "Notification webhook returned error status",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )

            except httpx.HTTPError as e:
                logger.error(
                    "Notification webhook call failed",
                    extra={
                        "error": str(e),
                        "attempt": attempt + 1,
                        "ticket_id": intent.ticket_id
                    }
                )

            if attempt < self._max_retries - 1:
                await asyncio.sleep(2 ** attempt)

        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
