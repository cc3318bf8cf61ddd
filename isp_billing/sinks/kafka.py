"""Kafka sink publishing notifications to an outbox topic."""

import json
import logging
from dataclasses import dataclass

from confluent_kafka import KafkaException, Producer

from isp_billing.config import KafkaConfig
from isp_billing.models.base import Notification
from isp_billing.notifications.queue import SendResult
from isp_billing.sinks.serialization import notification_event
from isp_billing.validation import format_phone_number

logger = logging.getLogger(__name__)


@dataclass
class ProducerStats:
    """Track producer delivery statistics."""

    sent: int = 0
    delivered: int = 0
    failed: int = 0

    @property
    def success_rate(self) -> float:
        """Calculate success rate."""
        total = self.delivered + self.failed
        return self.delivered / total if total > 0 else 0.0


class KafkaNotificationSink:
    """Publish notifications for a downstream SMS worker to deliver.

    Messages are keyed by subscription id so every customer's
    notifications stay ordered within a partition.
    """

    def __init__(self, config: KafkaConfig | str) -> None:
        """Initialize Kafka sink.

        Parameters
        ----------
        config : KafkaConfig | str
            Producer configuration or bootstrap servers string.
        """
        if isinstance(config, str):
            config = KafkaConfig(bootstrap_servers=config)

        self.config = config
        self.producer = Producer(config.to_dict())
        self.stats = ProducerStats()

    def _delivery_callback(self, err, msg) -> None:
        """Handle delivery reports."""
        if err:
            self.stats.failed += 1
            logger.error("Delivery failed: %s", err)
        else:
            self.stats.delivered += 1
            logger.debug("Delivered to %s[%d]@%d", msg.topic(), msg.partition(), msg.offset())

    def send(self, notification: Notification) -> SendResult:
        """Enqueue one notification on the outbox topic."""
        event = notification_event(notification, format_phone_number(notification.recipient))
        key = notification.subscription_id

        try:
            self.producer.produce(
                topic=self.config.topic,
                key=key.encode("utf-8") if key else None,
                value=json.dumps(event, ensure_ascii=False).encode("utf-8"),
                callback=self._delivery_callback,
            )
        except (BufferError, KafkaException) as exc:
            logger.error("Failed to enqueue %s notification: %s", notification.kind, exc)
            return SendResult(success=False, error=str(exc))

        self.stats.sent += 1
        self.producer.poll(0)
        return SendResult(success=True)

    def flush(self, timeout: float = 30.0) -> None:
        """Flush pending messages."""
        self.producer.flush(timeout)

    def close(self) -> None:
        """Flush and close the producer."""
        self.flush()
        logger.info(
            "Kafka sink closed: sent=%d, delivered=%d, failed=%d",
            self.stats.sent,
            self.stats.delivered,
            self.stats.failed,
        )
