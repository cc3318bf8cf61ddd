"""Tests for notification delivery backends."""

import json
from datetime import datetime
from decimal import Decimal
from unittest.mock import MagicMock, patch

import httpx
import pytest

from isp_billing.config import BillingConfig, KafkaConfig, SmsConfig
from isp_billing.exceptions import ConfigurationError
from isp_billing.models.base import Notification
from isp_billing.models.billing import Customer
from isp_billing.sinks import ConsoleSink, create_gateway
from isp_billing.sinks.kafka import KafkaNotificationSink, ProducerStats
from isp_billing.sinks.sms import SemaphoreSmsGateway


@pytest.fixture
def notification() -> Notification:
    return Notification(
        recipient="0917-123-4567",
        message="Hi Juan! Your bill is ready.",
        kind="invoice_generated",
        subscription_id="sub-001",
        created_at=datetime(2024, 3, 10, 9, 0),
        metadata={"invoice_id": "inv-1"},
    )


def sms_gateway(handler, api_key: str | None = "secret") -> SemaphoreSmsGateway:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return SemaphoreSmsGateway(SmsConfig(api_key=api_key), client=client)


class TestSemaphoreSmsGateway:
    """SMS delivery over HTTP."""

    def test_success_list_response(self, notification) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=[{"message_id": 12345, "status": "Queued"}])

        result = sms_gateway(handler).send(notification)

        assert result.success
        assert result.message_id == "12345"
        [request] = requests
        assert request.method == "POST"
        assert str(request.url) == "https://api.semaphore.co/api/v4/messages"
        body = json.loads(request.content)
        assert body == {
            "apikey": "secret",
            "number": "639171234567",
            "message": "Hi Juan! Your bill is ready.",
            "sendername": "ALLSTAR",
        }

    def test_success_object_response(self) -> None:
        gateway = sms_gateway(lambda request: httpx.Response(200, json={"message_id": "abc"}))

        result = gateway.send_sms("09171234567", "hello")

        assert result.success
        assert result.message_id == "abc"

    def test_api_error(self) -> None:
        gateway = sms_gateway(
            lambda request: httpx.Response(200, json={"error": {"number": ["invalid"]}})
        )

        result = gateway.send_sms("09171234567", "hello")

        assert not result.success
        assert result.error == '{"number": ["invalid"]}'

    def test_non_json_response(self) -> None:
        gateway = sms_gateway(lambda request: httpx.Response(502, text="Bad Gateway"))

        result = gateway.send_sms("09171234567", "hello")

        assert not result.success
        assert result.error == "Invalid JSON response: Bad Gateway"

    def test_unexpected_status(self) -> None:
        gateway = sms_gateway(lambda request: httpx.Response(500, json={"status": "down"}))

        result = gateway.send_sms("09171234567", "hello")

        assert not result.success
        assert result.error.startswith("Unexpected response (500)")

    def test_list_of_strings_response(self) -> None:
        gateway = sms_gateway(lambda request: httpx.Response(200, json=["queued"]))

        result = gateway.send_sms("09171234567", "hello")

        assert not result.success
        assert result.error == 'Unexpected response (200): ["queued"]'

    def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = sms_gateway(handler).send_sms("09171234567", "hello")

        assert not result.success
        assert result.error == "connection refused"

    def test_missing_api_key(self) -> None:
        handler = MagicMock()

        result = sms_gateway(handler, api_key=None).send_sms("09171234567", "hello")

        assert result.error == "SMS service not configured"
        handler.assert_not_called()


class TestKafkaNotificationSink:
    """Outbox publishing with a mocked producer."""

    @patch("isp_billing.sinks.kafka.Producer")
    def test_init_with_string(self, mock_producer_class: MagicMock) -> None:
        sink = KafkaNotificationSink("broker:9092")

        assert sink.config.bootstrap_servers == "broker:9092"
        mock_producer_class.assert_called_once_with(
            {"bootstrap.servers": "broker:9092", "acks": "all", "linger.ms": 5, "retries": 3}
        )

    @patch("isp_billing.sinks.kafka.Producer")
    def test_send_keys_by_subscription(
        self, mock_producer_class: MagicMock, notification
    ) -> None:
        producer = mock_producer_class.return_value
        sink = KafkaNotificationSink(KafkaConfig(topic="outbox"))

        result = sink.send(notification)

        assert result.success
        kwargs = producer.produce.call_args.kwargs
        assert kwargs["topic"] == "outbox"
        assert kwargs["key"] == b"sub-001"
        event = json.loads(kwargs["value"])
        assert event["recipient"] == "639171234567"
        assert event["kind"] == "invoice_generated"
        assert event["metadata"] == {"invoice_id": "inv-1"}
        assert event["created_at"] == "2024-03-10T09:00:00"
        producer.poll.assert_called_once_with(0)
        assert sink.stats.sent == 1

    @patch("isp_billing.sinks.kafka.Producer")
    def test_send_without_subscription_has_no_key(
        self, mock_producer_class: MagicMock, notification
    ) -> None:
        notification.subscription_id = None
        sink = KafkaNotificationSink("localhost:9092")

        sink.send(notification)

        assert mock_producer_class.return_value.produce.call_args.kwargs["key"] is None

    @patch("isp_billing.sinks.kafka.Producer")
    def test_buffer_full(self, mock_producer_class: MagicMock, notification) -> None:
        mock_producer_class.return_value.produce.side_effect = BufferError("queue full")
        sink = KafkaNotificationSink("localhost:9092")

        result = sink.send(notification)

        assert not result.success
        assert result.error == "queue full"
        assert sink.stats.sent == 0

    @patch("isp_billing.sinks.kafka.Producer")
    def test_delivery_callback(self, mock_producer_class: MagicMock) -> None:
        sink = KafkaNotificationSink("localhost:9092")
        msg = MagicMock()
        msg.topic.return_value = "billing.notifications"
        msg.partition.return_value = 0
        msg.offset.return_value = 7

        sink._delivery_callback(None, msg)
        sink._delivery_callback("broker down", msg)

        assert sink.stats.delivered == 1
        assert sink.stats.failed == 1
        assert sink.stats.success_rate == 0.5

    @patch("isp_billing.sinks.kafka.Producer")
    def test_close_flushes(self, mock_producer_class: MagicMock) -> None:
        sink = KafkaNotificationSink("localhost:9092")

        sink.close()

        mock_producer_class.return_value.flush.assert_called_once_with(30.0)

    def test_stats_without_reports(self) -> None:
        assert ProducerStats().success_rate == 0.0


class TestConsoleSink:
    """Stdout sink."""

    def test_send_prints_message(self, notification, capsys: pytest.CaptureFixture) -> None:
        sink = ConsoleSink()

        result = sink.send(notification)
        captured = capsys.readouterr()

        assert result.success
        assert "[invoice_generated] -> 0917-123-4567: Hi Juan!" in captured.out

    def test_write_batch_dataclass(self, capsys: pytest.CaptureFixture) -> None:
        sink = ConsoleSink(pretty=False)
        customer = Customer(
            customer_id="cust-001",
            name="Juan Dela Cruz",
            mobile_number="09171234567",
            created_at=datetime(2024, 1, 1),
        )

        sink.write_batch("customers", [customer])
        captured = capsys.readouterr()

        assert "customers (1 records)" in captured.out
        assert '"customer_id": "cust-001"' in captured.out

    def test_max_records(self, capsys: pytest.CaptureFixture) -> None:
        sink = ConsoleSink(max_records=2)

        sink.write_batch("payments", [{"amount": Decimal(i)} for i in range(5)])
        captured = capsys.readouterr()

        assert "and 3 more records" in captured.out

    def test_close_prints_summary(self, notification, capsys: pytest.CaptureFixture) -> None:
        sink = ConsoleSink()
        sink.send(notification)
        sink.write_batch("plans", [{"id": 1}, {"id": 2}])

        sink.close()
        captured = capsys.readouterr()

        assert "notifications: 1" in captured.out
        assert "plans: 2" in captured.out


class TestCreateGateway:
    """Backend selection from configuration."""

    def test_sms(self) -> None:
        config = BillingConfig()
        config.sms.api_key = "secret"

        gateway = create_gateway(config)

        assert isinstance(gateway, SemaphoreSmsGateway)
        gateway.close()

    @patch("isp_billing.sinks.kafka.Producer")
    def test_kafka(self, mock_producer_class: MagicMock) -> None:
        config = BillingConfig()
        config.notifications.sink = "kafka"

        assert isinstance(create_gateway(config), KafkaNotificationSink)

    def test_console(self) -> None:
        config = BillingConfig()
        config.notifications.sink = "console"

        assert isinstance(create_gateway(config), ConsoleSink)

    def test_unknown(self) -> None:
        config = BillingConfig()
        config.notifications.sink = "pigeon"

        with pytest.raises(ConfigurationError):
            create_gateway(config)
