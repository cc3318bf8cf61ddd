"""Tests for notification dispatch and message templates."""

from datetime import date
from decimal import Decimal

import pytest

from isp_billing.exceptions import NotificationError
from isp_billing.models.base import Notification
from isp_billing.notifications import NotificationQueue, SendResult, send_bulk, templates


def make_notifications(count: int) -> list[Notification]:
    return [
        Notification(recipient=f"0917000{i:04d}", message=f"msg {i}", kind="invoice_generated")
        for i in range(count)
    ]


class FlakyGateway:
    """Fails the first attempt for every recipient, then succeeds."""

    def __init__(self) -> None:
        self.seen: set[str] = set()
        self.attempts = 0

    def send(self, notification: Notification) -> SendResult:
        self.attempts += 1
        if notification.recipient not in self.seen:
            self.seen.add(notification.recipient)
            return SendResult(success=False, error="timeout")
        return SendResult(success=True, message_id="ok")


class RaisingGateway:
    def send(self, notification: Notification) -> SendResult:
        raise NotificationError("connection refused")


class DroppedConnectionGateway:
    """Raises on the first attempt, then delivers."""

    def __init__(self, error: Exception) -> None:
        self.error = error
        self.attempts = 0

    def send(self, notification: Notification) -> SendResult:
        self.attempts += 1
        if self.attempts == 1:
            raise self.error
        return SendResult(success=True, message_id="ok")


class TestSendBulk:
    """Batched delivery."""

    def test_pauses_between_batches(self, gateway, sleeps) -> None:
        summary = send_bulk(gateway, make_notifications(25), sleep=sleeps.append)

        assert summary.sent == 25
        assert summary.failed == 0
        assert sleeps == [1.0, 1.0]

    def test_no_pause_after_last_batch(self, gateway, sleeps) -> None:
        send_bulk(gateway, make_notifications(20), sleep=sleeps.append)

        assert sleeps == [1.0]

    def test_custom_batching(self, gateway, sleeps) -> None:
        send_bulk(
            gateway,
            make_notifications(5),
            batch_size=2,
            batch_delay_seconds=0.5,
            sleep=sleeps.append,
        )

        assert sleeps == [0.5, 0.5]

    def test_failures_counted(self, failing_gateway, sleeps) -> None:
        notification = make_notifications(1)[0]
        notification.subscription_id = "sub-001"

        summary = send_bulk(failing_gateway, [notification], sleep=sleeps.append)

        assert summary.sent == 0
        assert summary.failed == 1
        assert summary.errors == ["invoice_generated for sub-001: gateway down"]

    def test_retries_until_success(self, sleeps) -> None:
        flaky = FlakyGateway()

        summary = send_bulk(flaky, make_notifications(3), max_attempts=2, sleep=sleeps.append)

        assert summary.sent == 3
        assert flaky.attempts == 6

    def test_gives_up_after_max_attempts(self, failing_gateway, sleeps) -> None:
        summary = send_bulk(
            failing_gateway, make_notifications(2), max_attempts=3, sleep=sleeps.append
        )

        assert summary.failed == 2
        assert failing_gateway.attempts == 6

    def test_gateway_exception_is_a_failure(self, sleeps) -> None:
        summary = send_bulk(RaisingGateway(), make_notifications(1), sleep=sleeps.append)

        assert summary.failed == 1
        assert summary.results[0].error == "connection refused"

    def test_raised_delivery_error_is_retried(self, sleeps) -> None:
        dropped = DroppedConnectionGateway(NotificationError("connection reset"))

        summary = send_bulk(dropped, make_notifications(1), max_attempts=2, sleep=sleeps.append)

        assert summary.sent == 1
        assert dropped.attempts == 2

    def test_unexpected_exception_propagates(self, sleeps) -> None:
        broken = DroppedConnectionGateway(RuntimeError("bug in gateway"))

        with pytest.raises(RuntimeError, match="bug in gateway"):
            send_bulk(broken, make_notifications(1), max_attempts=3, sleep=sleeps.append)

        assert broken.attempts == 1

    def test_empty(self, gateway, sleeps) -> None:
        summary = send_bulk(gateway, [], sleep=sleeps.append)

        assert summary.sent == 0
        assert sleeps == []


class TestNotificationQueue:
    """Post-commit buffering."""

    def test_dispatch_sends_and_clears(self, gateway, sleeps) -> None:
        queue = NotificationQueue(gateway, sleep=sleeps.append)
        for notification in make_notifications(3):
            queue.enqueue(notification)

        assert len(queue) == 3
        summary = queue.dispatch()

        assert summary.sent == 3
        assert len(queue) == 0
        assert queue.dispatch().sent == 0

    def test_discard(self, gateway) -> None:
        queue = NotificationQueue(gateway)
        queue.enqueue(make_notifications(1)[0])

        queue.discard()

        assert queue.dispatch().sent == 0
        assert gateway.sent == []

    def test_without_gateway(self) -> None:
        queue = NotificationQueue(None)
        queue.enqueue(make_notifications(1)[0])

        summary = queue.dispatch()

        assert summary.failed == 1
        assert summary.errors == ["Notification gateway not configured"]

    def test_retries_by_default(self, failing_gateway, sleeps) -> None:
        queue = NotificationQueue(failing_gateway, sleep=sleeps.append)
        queue.enqueue(make_notifications(1)[0])

        queue.dispatch()

        assert failing_gateway.attempts == 2


class TestTemplates:
    """Customer message wording."""

    @pytest.mark.parametrize(
        ("amount", "expected"),
        [
            (Decimal("1000"), "1,000"),
            (Decimal("1000.00"), "1,000"),
            (Decimal("966.67"), "966.67"),
            (Decimal("12345.5"), "12,345.50"),
        ],
    )
    def test_format_amount(self, amount, expected) -> None:
        assert templates.format_amount(amount) == expected

    def test_format_date(self) -> None:
        assert templates.format_date_ph(date(2025, 12, 5)) == "December 5, 2025"

    def test_invoice_generated(self) -> None:
        message = templates.invoice_generated(
            "Juan", Decimal("1299"), date(2024, 3, 15), "Bulihan"
        )

        assert message == (
            "Hi Juan! Your Bulihan internet bill of P1,299 is now ready. "
            "Due: March 15, 2024. Please pay on time to avoid disconnection. "
            "Thank you! - Allstar"
        )

    def test_due_reminder_mentions_amount_and_date(self) -> None:
        message = templates.due_date_reminder("Juan", Decimal("500"), date(2024, 3, 15), "ISP")

        assert message.startswith("Reminder: Hi Juan, your internet bill of P500 is due March 15, 2024.")
        assert message.endswith("- ISP")

    def test_disconnection_warning(self) -> None:
        message = templates.disconnection_warning("Juan", date(2024, 3, 20))

        assert message.startswith("URGENT: Hi Juan, your internet will be disconnected on March 20, 2024")

    @pytest.mark.parametrize(
        ("balance", "line"),
        [
            (Decimal("250"), "Remaining balance: P250."),
            (Decimal("-200"), "You have P200 credits."),
            (Decimal("0"), "Your account is fully paid."),
        ],
    )
    def test_payment_received_balance_line(self, balance, line) -> None:
        message = templates.payment_received("Juan", Decimal("1000"), balance)

        assert "We received your payment of P1,000." in message
        assert line in message

    def test_new_subscription(self) -> None:
        message = templates.new_subscription("Juan", "Fiber 50 Mbps", Decimal("1299"), "Allstar")

        assert message.startswith("Welcome Juan! Your Fiber 50 Mbps subscription is now active.")
        assert "Monthly fee: P1,299." in message
