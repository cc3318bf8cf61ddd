"""Notification delivery backends."""

from isp_billing.config import BillingConfig
from isp_billing.exceptions import ConfigurationError
from isp_billing.sinks.console import ConsoleSink
from isp_billing.sinks.kafka import KafkaNotificationSink
from isp_billing.sinks.sms import SemaphoreSmsGateway

__all__ = ["ConsoleSink", "KafkaNotificationSink", "SemaphoreSmsGateway", "create_gateway"]


def create_gateway(config: BillingConfig):
    """Build the delivery backend named by ``config.notifications.sink``."""
    sink = config.notifications.sink
    if sink == "sms":
        return SemaphoreSmsGateway(config.sms)
    if sink == "kafka":
        return KafkaNotificationSink(config.kafka)
    if sink == "console":
        return ConsoleSink()
    raise ConfigurationError(f"Unknown notification sink: {sink!r}")
