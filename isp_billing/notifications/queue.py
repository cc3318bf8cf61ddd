"""Post-commit notification dispatch.

Billing operations enqueue messages while they compute and call
``dispatch()`` only after their writes have committed. Delivery failures
are counted and logged; they never propagate into billing state.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
)

from isp_billing.exceptions import NotificationError
from isp_billing.models.base import Notification

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    """Outcome of delivering one message."""

    success: bool
    message_id: str | None = None
    error: str | None = None


@dataclass
class DispatchSummary:
    """Aggregate outcome of a bulk send."""

    sent: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
    results: list[SendResult] = field(default_factory=list)


class NotificationGateway(Protocol):
    """Anything that can deliver a customer notification."""

    def send(self, notification: Notification) -> SendResult: ...


def send_bulk(
    gateway: NotificationGateway,
    notifications: Iterable[Notification],
    batch_size: int = 10,
    batch_delay_seconds: float = 1.0,
    max_attempts: int = 1,
    sleep: Callable[[float], None] = time.sleep,
) -> DispatchSummary:
    """Send messages in batches with a pause between batches.

    Parameters
    ----------
    gateway : NotificationGateway
        Delivery backend.
    notifications : Iterable[Notification]
        Messages to send.
    batch_size : int
        Messages per batch (default 10).
    batch_delay_seconds : float
        Pause between batches to respect provider rate limits.
    max_attempts : int
        Attempts per message before it is counted as failed.
    sleep : Callable[[float], None]
        Sleep function (injectable for tests).

    Returns
    -------
    DispatchSummary
        Sent/failed counts and per-message results.
    """
    pending = list(notifications)
    summary = DispatchSummary()

    for start in range(0, len(pending), batch_size):
        batch = pending[start : start + batch_size]

        for notification in batch:
            result = _send_with_retry(gateway, notification, max_attempts)
            summary.results.append(result)
            if result.success:
                summary.sent += 1
            else:
                summary.failed += 1
                summary.errors.append(
                    f"{notification.kind} for {notification.subscription_id or notification.recipient}: "
                    f"{result.error}"
                )

        if start + batch_size < len(pending) and batch_delay_seconds > 0:
            sleep(batch_delay_seconds)

    logger.info("Notifications dispatched: sent=%d, failed=%d", summary.sent, summary.failed)
    return summary


def _failed_result(retry_state: RetryCallState) -> SendResult:
    """Turn the last attempt's outcome into a failed result."""
    outcome = retry_state.outcome
    if outcome.failed:
        return SendResult(success=False, error=str(outcome.exception()))
    return outcome.result()


def _send_with_retry(
    gateway: NotificationGateway,
    notification: Notification,
    max_attempts: int,
) -> SendResult:
    attempts = max(1, max_attempts)

    def log_failure(retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome.failed else outcome.result().error
        logger.warning(
            "Notification attempt %d/%d failed for %s: %s",
            retry_state.attempt_number,
            attempts,
            notification.recipient,
            error,
        )

    retryer = Retrying(
        stop=stop_after_attempt(attempts),
        retry=retry_if_result(lambda result: not result.success)
        | retry_if_exception_type(NotificationError),
        after=log_failure,
        retry_error_callback=_failed_result,
    )
    return retryer(gateway.send, notification)


class NotificationQueue:
    """Buffer of messages released after a billing write commits."""

    def __init__(
        self,
        gateway: NotificationGateway | None,
        batch_size: int = 10,
        batch_delay_seconds: float = 1.0,
        max_attempts: int = 2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.gateway = gateway
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._pending: list[Notification] = []

    def __len__(self) -> int:
        return len(self._pending)

    def enqueue(self, notification: Notification) -> None:
        """Add a message to the pending batch."""
        self._pending.append(notification)

    def discard(self) -> None:
        """Drop pending messages (their billing write did not commit)."""
        if self._pending:
            logger.info("Discarding %d undelivered notifications", len(self._pending))
        self._pending.clear()

    def dispatch(self) -> DispatchSummary:
        """Send and clear all pending messages."""
        pending, self._pending = self._pending, []
        if not pending:
            return DispatchSummary()

        if self.gateway is None:
            logger.warning("No notification gateway configured; %d messages dropped", len(pending))
            return DispatchSummary(
                failed=len(pending),
                errors=["Notification gateway not configured"],
            )

        return send_bulk(
            self.gateway,
            pending,
            batch_size=self.batch_size,
            batch_delay_seconds=self.batch_delay_seconds,
            max_attempts=self.max_attempts,
            sleep=self._sleep,
        )
