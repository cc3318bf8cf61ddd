"""Customer notifications: message templates and post-commit dispatch."""

from isp_billing.notifications import templates
from isp_billing.notifications.queue import (
    DispatchSummary,
    NotificationGateway,
    NotificationQueue,
    SendResult,
    send_bulk,
)

__all__ = [
    "DispatchSummary",
    "NotificationGateway",
    "NotificationQueue",
    "SendResult",
    "send_bulk",
    "templates",
]
